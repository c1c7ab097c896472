from __future__ import annotations

import enum
import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# JSONB on Postgres, plain JSON elsewhere (sqlite for local runs and tests).
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    pass


# -------------------------
# Enums
# -------------------------


class PropertyStatus(int, enum.Enum):
    active = 1
    inactive = 2  # deleted in iList, or deactivated locally


class SyncType(str, enum.Enum):
    full = "full"
    incremental = "incremental"
    status_update = "status_update"
    csv_import = "csv_import"
    webhook = "webhook"
    lookups = "lookups"


class SyncStatus(str, enum.Enum):
    syncing = "syncing"
    completed = "completed"
    failed = "failed"


# -------------------------
# Tables
# -------------------------


class Property(Base):
    """
    A listing mirrored from iList (or imported from a spreadsheet).
    ``ilist_id`` is the upsert key; spreadsheet rows without one get a negative id.
    """

    __tablename__ = "properties"
    __table_args__ = (
        UniqueConstraint("ilist_id", name="uq_properties_ilist_id"),
        Index("ix_properties_status_area", "status_id", "area_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    ilist_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    title: Mapped[str | None] = mapped_column(String(500))
    description: Mapped[str | None] = mapped_column(Text)

    category_id: Mapped[int | None] = mapped_column(Integer)
    subcategory_id: Mapped[int | None] = mapped_column(Integer)
    aim_id: Mapped[int | None] = mapped_column(Integer)  # 1=sale, 2=rent
    custom_code: Mapped[str | None] = mapped_column(String(120))

    price: Mapped[float | None] = mapped_column(Float)
    sqr_meters: Mapped[int | None] = mapped_column(Integer)
    price_per_sqrm: Mapped[float | None] = mapped_column(Float)
    plot_sqr_meters: Mapped[int | None] = mapped_column(Integer)
    building_year: Mapped[int | None] = mapped_column(Integer)
    rooms: Mapped[int | None] = mapped_column(Integer)
    master_bedrooms: Mapped[int | None] = mapped_column(Integer)
    bathrooms: Mapped[int | None] = mapped_column(Integer)
    wc: Mapped[int | None] = mapped_column(Integer)
    floor_id: Mapped[int | None] = mapped_column(Integer)
    levels: Mapped[str | None] = mapped_column(String(60))
    total_parkings: Mapped[int | None] = mapped_column(Integer)

    area_id: Mapped[int | None] = mapped_column(Integer)
    subarea_id: Mapped[int | None] = mapped_column(Integer)
    latitude: Mapped[float | None] = mapped_column(Float)
    longitude: Mapped[float | None] = mapped_column(Float)
    postal_code: Mapped[str | None] = mapped_column(String(20))
    energy_class_id: Mapped[int | None] = mapped_column(Integer)

    status_id: Mapped[int] = mapped_column(Integer, nullable=False, default=PropertyStatus.active.value)
    is_sync: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    send_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    update_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    ilist_raw_data: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    last_ilist_sync: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)

    images: Mapped[list[PropertyImage]] = relationship(
        back_populates="property", cascade="all, delete-orphan", order_by="PropertyImage.order_num"
    )
    characteristics: Mapped[list[PropertyCharacteristic]] = relationship(
        back_populates="property", cascade="all, delete-orphan"
    )
    partner: Mapped[PropertyPartner | None] = relationship(
        back_populates="property", cascade="all, delete-orphan", uselist=False
    )


class PropertyImage(Base):
    __tablename__ = "property_images"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    property_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("properties.id", ondelete="CASCADE"), nullable=False, index=True
    )
    ilist_image_id: Mapped[int | None] = mapped_column(BigInteger)
    order_num: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    url: Mapped[str] = mapped_column(String(1000), nullable=False)
    thumb_url: Mapped[str | None] = mapped_column(String(1000))

    property: Mapped[Property] = relationship(back_populates="images")


class PropertyCharacteristic(Base):
    __tablename__ = "property_characteristics"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    property_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("properties.id", ondelete="CASCADE"), nullable=False, index=True
    )
    ilist_characteristic_id: Mapped[int | None] = mapped_column(Integer)
    language_id: Mapped[int | None] = mapped_column(Integer)
    title: Mapped[str] = mapped_column(String(300), nullable=False)
    value: Mapped[str | None] = mapped_column(Text)
    lookup_type: Mapped[str | None] = mapped_column(String(120))

    property: Mapped[Property] = relationship(back_populates="characteristics")


class PropertyPartner(Base):
    __tablename__ = "property_partners"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    property_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("properties.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    ilist_partner_id: Mapped[int | None] = mapped_column(BigInteger)
    firstname: Mapped[str | None] = mapped_column(String(120))
    lastname: Mapped[str | None] = mapped_column(String(120))
    email: Mapped[str | None] = mapped_column(String(320))
    phone: Mapped[str | None] = mapped_column(String(60))
    photo_url: Mapped[str | None] = mapped_column(String(1000))

    property: Mapped[Property] = relationship(back_populates="partner")


class SyncSession(Base):
    """
    One import/sync run (CRM sync, spreadsheet import, webhook event or status flip).
    Counts are finalized when the run ends; ``api_responses`` holds per-action entries.
    """

    __tablename__ = "ilist_sync_sessions"
    __table_args__ = (
        Index("ix_ilist_sync_sessions_type_status_completed", "sync_type", "status", "completed_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    sync_type: Mapped[str] = mapped_column(String(30), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=SyncStatus.syncing.value)

    include_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    update_date_from_utc: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    total_properties: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    new_properties: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_properties: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    deleted_properties: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    skipped_properties: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_properties: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    error_message: Mapped[str | None] = mapped_column(Text)
    error_details: Mapped[dict[str, Any] | None] = mapped_column(JSONType)
    api_responses: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)

    triggered_by: Mapped[str | None] = mapped_column(String(120))

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    duration_seconds: Mapped[int | None] = mapped_column(Integer)


class IListConfig(Base):
    __tablename__ = "ilist_config"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    # Sealed with CredentialCipher; never returned by the API.
    auth_token: Mapped[str] = mapped_column(Text, nullable=False)
    api_base_url: Mapped[str] = mapped_column(String(500), nullable=False)
    rate_limit_per_minute: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class IListLookup(Base):
    __tablename__ = "ilist_lookups"
    __table_args__ = (
        UniqueConstraint("lookup_type", "lookup_id", "language_id", name="uq_ilist_lookups_type_id_lang"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    lookup_type: Mapped[str] = mapped_column(String(80), nullable=False)
    lookup_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    language_id: Mapped[int] = mapped_column(Integer, nullable=False)
    value: Mapped[str | None] = mapped_column(String(500))
    raw_data: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
