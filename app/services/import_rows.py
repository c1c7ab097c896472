from __future__ import annotations

import math
import re
from dataclasses import dataclass, field

_PRICE_STRIP = re.compile(r"[^0-9.\-]")
_NON_DIGITS = re.compile(r"[^0-9]")
_POSTAL_CODE = re.compile(r"[0-9][0-9 ]*")

INTEGER_FIELDS = (
    "rooms",
    "bathrooms",
    "building_year",
    "area_id",
    "subarea_id",
    "energy_class_id",
)
TEXT_FIELDS = (
    "description",
    "custom_code",
    "partner_name",
    "partner_email",
    "partner_phone",
)
COORDINATE_BOUNDS = {
    "latitude": (-90.0, 90.0),
    "longitude": (-180.0, 180.0),
}
DEFAULT_CATEGORY_ID = 1
DEFAULT_AIM_ID = 1


@dataclass(frozen=True)
class NormalizedRecord:
    ilist_id: int
    title: str
    price: float
    synthetic_id: bool = False
    property_type: int = DEFAULT_CATEGORY_ID
    aim_id: int = DEFAULT_AIM_ID
    description: str | None = None
    sqr_meters: int | None = None
    rooms: int | None = None
    bathrooms: int | None = None
    building_year: int | None = None
    area_id: int | None = None
    subarea_id: int | None = None
    energy_class_id: int | None = None
    latitude: float | None = None
    longitude: float | None = None
    postal_code: str | None = None
    custom_code: str | None = None
    partner_name: str | None = None
    partner_email: str | None = None
    partner_phone: str | None = None


@dataclass(frozen=True)
class FieldWarning:
    field: str
    message: str


@dataclass
class RowOutcome:
    record: NormalizedRecord | None
    errors: list[str] = field(default_factory=list)
    warnings: list[FieldWarning] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.record is not None


def _mapped_value(row: dict[str, str], mapping: dict[str, str], field_id: str) -> str:
    column = mapping.get(field_id)
    if not column:
        return ""
    value = row.get(column)
    return "" if value is None else str(value).strip()


def _parse_int(value: str) -> int | None:
    try:
        return int(value)
    except ValueError:
        pass
    try:
        as_float = float(value)
    except ValueError:
        return None
    if math.isfinite(as_float) and as_float.is_integer():
        return int(as_float)
    return None


def _parse_float(value: str) -> float | None:
    try:
        parsed = float(value)
    except ValueError:
        return None
    return parsed if math.isfinite(parsed) else None


def _parse_price(raw: str, errors: list[str]) -> float | None:
    if not raw:
        errors.append("Price is required")
        return None
    price = _parse_float(_PRICE_STRIP.sub("", raw))
    if price is None or price <= 0:
        errors.append("Price must be a positive number")
        return None
    return price


def normalize_row(
    row: dict[str, str],
    mapping: dict[str, str],
    *,
    fallback_ilist_id: int,
) -> RowOutcome:
    """
    Apply ``mapping`` to one raw row.

    Title and price are required; their problems are errors and the row yields
    no record. Optional fields that fail coercion produce a warning and are
    left out of the record. ``fallback_ilist_id`` is used when the row carries
    no usable iList id.
    """
    errors: list[str] = []
    warnings: list[FieldWarning] = []

    title = _mapped_value(row, mapping, "title")
    if not title:
        errors.append("Title is required")

    price = _parse_price(_mapped_value(row, mapping, "price"), errors)

    values: dict[str, object] = {}

    raw_size = _mapped_value(row, mapping, "sqr_meters")
    if raw_size:
        digits = _NON_DIGITS.sub("", raw_size)
        if digits:
            values["sqr_meters"] = int(digits)
        else:
            warnings.append(FieldWarning("sqr_meters", f"Size '{raw_size}' is not a number; field skipped"))

    for field_id in INTEGER_FIELDS:
        raw = _mapped_value(row, mapping, field_id)
        if not raw:
            continue
        parsed = _parse_int(raw)
        if parsed is None:
            warnings.append(FieldWarning(field_id, f"'{raw}' is not a whole number; field skipped"))
        else:
            values[field_id] = parsed

    for field_id, (low, high) in COORDINATE_BOUNDS.items():
        raw = _mapped_value(row, mapping, field_id)
        if not raw:
            continue
        parsed_coord = _parse_float(raw)
        if parsed_coord is None or not low <= parsed_coord <= high:
            warnings.append(
                FieldWarning(field_id, f"'{raw}' is not a valid {field_id} between {low:g} and {high:g}; field skipped")
            )
        else:
            values[field_id] = parsed_coord

    raw_postal = _mapped_value(row, mapping, "postal_code")
    if raw_postal:
        if _POSTAL_CODE.fullmatch(raw_postal):
            values["postal_code"] = raw_postal
        else:
            warnings.append(FieldWarning("postal_code", f"'{raw_postal}' is not a numeric postal code; field skipped"))

    for field_id in TEXT_FIELDS:
        raw = _mapped_value(row, mapping, field_id)
        if raw:
            values[field_id] = raw

    for field_id, default in (("property_type", DEFAULT_CATEGORY_ID), ("aim_id", DEFAULT_AIM_ID)):
        raw_code = _mapped_value(row, mapping, field_id)
        parsed_code = _parse_int(raw_code) if raw_code else None
        values[field_id] = parsed_code if parsed_code and parsed_code > 0 else default

    ilist_id = fallback_ilist_id
    synthetic = True
    raw_id = _mapped_value(row, mapping, "ilist_id")
    if raw_id:
        parsed_id = _parse_int(raw_id)
        if parsed_id is not None and parsed_id > 0:
            ilist_id = parsed_id
            synthetic = False
        else:
            warnings.append(FieldWarning("ilist_id", f"'{raw_id}' is not a valid iList id; a local id was assigned"))

    if errors or price is None:
        return RowOutcome(record=None, errors=errors, warnings=warnings)

    record = NormalizedRecord(
        ilist_id=ilist_id,
        title=title,
        price=price,
        synthetic_id=synthetic,
        **values,  # type: ignore[arg-type]
    )
    return RowOutcome(record=record, errors=[], warnings=warnings)
