from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from fastapi import HTTPException
from sqlalchemy.orm import Session

from app.core.logging import get_logger
from app.db import models
from app.services.import_rows import NormalizedRecord
from app.services.sync_sessions import as_utc, record_completed_session

logger = get_logger(__name__)

GREEK_LANGUAGE_ID = 4
TITLE_CHARACTERISTIC_ID = 297
TITLE_CHARACTERISTIC = "Τίτλος"
DESCRIPTION_CHARACTERISTIC_ID = 299
DESCRIPTION_CHARACTERISTIC = "Επιπλέον κείμενο (ΧΕ)"

VALID_STATUS_IDS = {models.PropertyStatus.active.value, models.PropertyStatus.inactive.value}


def _to_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        pass
    try:
        as_float = float(value)
    except (TypeError, ValueError):
        return None
    return int(as_float) if math.isfinite(as_float) else None


def _to_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    return parsed if math.isfinite(parsed) else None


def _to_str(value: Any) -> str | None:
    if value is None:
        return None
    normalized = str(value).strip()
    return normalized or None


def parse_ilist_datetime(value: Any) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, str):
        candidate = value.strip()
        if candidate.endswith("Z"):
            candidate = f"{candidate[:-1]}+00:00"
        try:
            parsed = datetime.fromisoformat(candidate)
        except ValueError:
            return None
        return as_utc(parsed)
    return None


def extract_characteristic(
    characteristics: list[dict[str, Any]] | None,
    *,
    title: str,
    characteristic_id: int,
    language_id: int = GREEK_LANGUAGE_ID,
) -> str | None:
    for item in characteristics or []:
        if not isinstance(item, dict):
            continue
        if _to_int(item.get("Language_Id")) != language_id:
            continue
        if item.get("Title") == title or _to_int(item.get("Id")) == characteristic_id:
            return _to_str(item.get("Value"))
    return None


def _apply_children(prop: models.Property, payload: dict[str, Any]) -> None:
    images = [img for img in payload.get("Images") or [] if isinstance(img, dict) and _to_str(img.get("Url"))]
    prop.images = [
        models.PropertyImage(
            ilist_image_id=_to_int(img.get("Id")),
            order_num=_to_int(img.get("OrderNum")) or 0,
            url=str(img["Url"]).strip(),
            thumb_url=_to_str(img.get("ThumbUrl")),
        )
        for img in images
    ]

    prop.characteristics = [
        models.PropertyCharacteristic(
            ilist_characteristic_id=_to_int(item.get("Id")),
            language_id=_to_int(item.get("Language_Id")),
            title=str(item.get("Title") or "").strip() or "-",
            value=_to_str(item.get("Value")),
            lookup_type=_to_str(item.get("LookupType")),
        )
        for item in payload.get("Characteristics") or []
        if isinstance(item, dict)
    ]

    partner = payload.get("Partner")
    if not isinstance(partner, dict):
        prop.partner = None
        return

    # Update in place; partner rows are unique per property.
    target = prop.partner or models.PropertyPartner()
    target.ilist_partner_id = _to_int(partner.get("Id"))
    target.firstname = _to_str(partner.get("Firstname"))
    target.lastname = _to_str(partner.get("Lastname"))
    target.email = _to_str(partner.get("Email"))
    target.phone = _to_str(partner.get("Phone"))
    target.photo_url = _to_str(partner.get("PhotoUrl"))
    prop.partner = target


def upsert_property_from_ilist(db: Session, payload: dict[str, Any]) -> tuple[models.Property, bool]:
    """
    Insert or update the property keyed by the payload's iList ``Id``.

    Child rows (images, characteristics, partner) are replaced from the payload
    and the payload itself is kept in ``ilist_raw_data``. Returns the property
    and whether it was created.
    """
    ilist_id = _to_int(payload.get("Id"))
    if ilist_id is None or ilist_id == 0:
        raise ValueError("iList payload is missing a valid Id")

    now = datetime.now(UTC)
    existing = db.query(models.Property).filter(models.Property.ilist_id == ilist_id).one_or_none()
    prop = existing or models.Property(ilist_id=ilist_id, created_at=now)

    characteristics = payload.get("Characteristics") or []
    prop.title = extract_characteristic(
        characteristics, title=TITLE_CHARACTERISTIC, characteristic_id=TITLE_CHARACTERISTIC_ID
    )
    prop.description = extract_characteristic(
        characteristics, title=DESCRIPTION_CHARACTERISTIC, characteristic_id=DESCRIPTION_CHARACTERISTIC_ID
    )
    prop.category_id = _to_int(payload.get("Category_ID"))
    prop.subcategory_id = _to_int(payload.get("SubCategory_ID"))
    prop.aim_id = _to_int(payload.get("Aim_ID"))
    prop.custom_code = _to_str(payload.get("CustomCode"))
    prop.price = _to_float(payload.get("Price"))
    prop.sqr_meters = _to_int(payload.get("SqrMeters"))
    prop.price_per_sqrm = _to_float(payload.get("PricePerSqrm"))
    prop.plot_sqr_meters = _to_int(payload.get("PlotSqrMeters"))
    prop.building_year = _to_int(payload.get("BuildingYear"))
    prop.rooms = _to_int(payload.get("Rooms"))
    prop.master_bedrooms = _to_int(payload.get("MasterBedrooms"))
    prop.bathrooms = _to_int(payload.get("Bathrooms"))
    prop.wc = _to_int(payload.get("WC"))
    prop.floor_id = _to_int(payload.get("Floor_ID"))
    prop.levels = _to_str(payload.get("Levels"))
    prop.total_parkings = _to_int(payload.get("TotalParkings"))
    prop.area_id = _to_int(payload.get("Area_ID"))
    prop.subarea_id = _to_int(payload.get("SubArea_ID"))
    prop.latitude = _to_float(payload.get("Latitude"))
    prop.longitude = _to_float(payload.get("Longitude"))
    prop.postal_code = _to_str(payload.get("PostalCode"))
    prop.energy_class_id = _to_int(payload.get("EnergyClass_ID"))
    prop.status_id = _to_int(payload.get("StatusID")) or models.PropertyStatus.active.value
    prop.is_sync = payload.get("isSync") is not False
    prop.send_date = parse_ilist_datetime(payload.get("SendDate"))
    prop.update_date = parse_ilist_datetime(payload.get("UpdateDate"))
    prop.ilist_raw_data = dict(payload)
    prop.last_ilist_sync = now
    prop.updated_at = now

    _apply_children(prop, payload)

    db.add(prop)
    db.flush()
    return prop, existing is None


def record_to_ilist_payload(record: NormalizedRecord, *, now: datetime | None = None) -> dict[str, Any]:
    """Shape an imported spreadsheet row like an iList property so both paths share one upsert."""
    timestamp = (now or datetime.now(UTC)).isoformat()

    characteristics = [
        {
            "Id": TITLE_CHARACTERISTIC_ID,
            "Language_Id": GREEK_LANGUAGE_ID,
            "Title": TITLE_CHARACTERISTIC,
            "Value": record.title,
            "LookupType": "",
        }
    ]
    if record.description:
        characteristics.append(
            {
                "Id": DESCRIPTION_CHARACTERISTIC_ID,
                "Language_Id": GREEK_LANGUAGE_ID,
                "Title": DESCRIPTION_CHARACTERISTIC,
                "Value": record.description,
                "LookupType": "",
            }
        )

    partner = None
    if record.partner_name or record.partner_email or record.partner_phone:
        first, _, last = (record.partner_name or "").partition(" ")
        partner = {
            "Id": None,
            "Firstname": first,
            "Lastname": last.strip(),
            "Email": record.partner_email or "",
            "Phone": record.partner_phone or "",
            "PhotoUrl": "",
        }

    return {
        "Id": record.ilist_id,
        "Category_ID": record.property_type,
        "SubCategory_ID": 1,
        "Aim_ID": record.aim_id,
        "CustomCode": record.custom_code,
        "Price": record.price,
        "SqrMeters": record.sqr_meters,
        "Rooms": record.rooms,
        "Bathrooms": record.bathrooms,
        "Area_ID": record.area_id,
        "SubArea_ID": record.subarea_id,
        "Latitude": record.latitude,
        "Longitude": record.longitude,
        "PostalCode": record.postal_code,
        "EnergyClass_ID": record.energy_class_id,
        "BuildingYear": record.building_year,
        "Characteristics": characteristics,
        "Images": [],
        "Partner": partner,
        "SendDate": timestamp,
        "UpdateDate": timestamp,
        "isSync": True,
        "StatusID": models.PropertyStatus.active.value,
    }


def get_property(db: Session, property_id: UUID) -> models.Property:
    prop = db.query(models.Property).filter(models.Property.id == property_id).one_or_none()
    if not prop:
        raise HTTPException(status_code=404, detail="Property not found")
    return prop


def get_property_by_ilist_id(db: Session, ilist_id: int) -> models.Property | None:
    return db.query(models.Property).filter(models.Property.ilist_id == ilist_id).one_or_none()


def change_property_status(prop: models.Property, status_id: int) -> int:
    """Flip the local status and mirror it into the stored iList payload. Returns the old status."""
    if status_id not in VALID_STATUS_IDS:
        raise HTTPException(status_code=400, detail="Invalid status. Use 1 for active, 2 for inactive")

    now = datetime.now(UTC)
    old_status = prop.status_id
    prop.status_id = status_id
    prop.update_date = now
    prop.updated_at = now
    prop.ilist_raw_data = {**(prop.ilist_raw_data or {}), "StatusID": status_id, "UpdateDate": now.isoformat()}
    return old_status


@dataclass(frozen=True)
class StatusChange:
    property: models.Property
    old_status: int
    new_status: int
    session: models.SyncSession


def set_property_status(
    db: Session, *, property_id: UUID, status_id: int, triggered_by: str | None = None
) -> StatusChange:
    prop = get_property(db, property_id)
    old_status = change_property_status(prop, status_id)
    db.add(prop)
    db.flush()

    session = record_completed_session(
        db,
        sync_type=models.SyncType.status_update,
        updated=1,
        triggered_by=triggered_by,
        api_responses=[
            {
                "action": "status_update",
                "property_id": str(prop.id),
                "ilist_id": prop.ilist_id,
                "old_status": old_status,
                "new_status": status_id,
            }
        ],
    )
    logger.info(
        "property.status.changed",
        extra={
            "property_id": str(prop.id),
            "ilist_id": prop.ilist_id,
            "old_status": old_status,
            "new_status": status_id,
            "sync_session_id": str(session.id),
        },
    )
    return StatusChange(property=prop, old_status=old_status, new_status=status_id, session=session)
