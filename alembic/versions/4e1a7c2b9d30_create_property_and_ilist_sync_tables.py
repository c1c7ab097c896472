"""create property, iList sync session, config and lookup tables

Revision ID: 4e1a7c2b9d30
Revises:
Create Date: 2026-10-17 00:00:00.000000
"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "4e1a7c2b9d30"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "properties",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("ilist_id", sa.BigInteger(), nullable=False),
        sa.Column("title", sa.String(length=500), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category_id", sa.Integer(), nullable=True),
        sa.Column("subcategory_id", sa.Integer(), nullable=True),
        sa.Column("aim_id", sa.Integer(), nullable=True),
        sa.Column("custom_code", sa.String(length=120), nullable=True),
        sa.Column("price", sa.Float(), nullable=True),
        sa.Column("sqr_meters", sa.Integer(), nullable=True),
        sa.Column("price_per_sqrm", sa.Float(), nullable=True),
        sa.Column("plot_sqr_meters", sa.Integer(), nullable=True),
        sa.Column("building_year", sa.Integer(), nullable=True),
        sa.Column("rooms", sa.Integer(), nullable=True),
        sa.Column("master_bedrooms", sa.Integer(), nullable=True),
        sa.Column("bathrooms", sa.Integer(), nullable=True),
        sa.Column("wc", sa.Integer(), nullable=True),
        sa.Column("floor_id", sa.Integer(), nullable=True),
        sa.Column("levels", sa.String(length=60), nullable=True),
        sa.Column("total_parkings", sa.Integer(), nullable=True),
        sa.Column("area_id", sa.Integer(), nullable=True),
        sa.Column("subarea_id", sa.Integer(), nullable=True),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("postal_code", sa.String(length=20), nullable=True),
        sa.Column("energy_class_id", sa.Integer(), nullable=True),
        sa.Column("status_id", sa.Integer(), nullable=False),
        sa.Column("is_sync", sa.Boolean(), nullable=False),
        sa.Column("send_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("update_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ilist_raw_data", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("last_ilist_sync", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("ilist_id", name="uq_properties_ilist_id"),
    )
    op.create_index("ix_properties_status_area", "properties", ["status_id", "area_id"], unique=False)

    op.create_table(
        "property_images",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("property_id", sa.UUID(), nullable=False),
        sa.Column("ilist_image_id", sa.BigInteger(), nullable=True),
        sa.Column("order_num", sa.Integer(), nullable=False),
        sa.Column("url", sa.String(length=1000), nullable=False),
        sa.Column("thumb_url", sa.String(length=1000), nullable=True),
        sa.ForeignKeyConstraint(["property_id"], ["properties.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_property_images_property_id", "property_images", ["property_id"], unique=False)

    op.create_table(
        "property_characteristics",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("property_id", sa.UUID(), nullable=False),
        sa.Column("ilist_characteristic_id", sa.Integer(), nullable=True),
        sa.Column("language_id", sa.Integer(), nullable=True),
        sa.Column("title", sa.String(length=300), nullable=False),
        sa.Column("value", sa.Text(), nullable=True),
        sa.Column("lookup_type", sa.String(length=120), nullable=True),
        sa.ForeignKeyConstraint(["property_id"], ["properties.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_property_characteristics_property_id", "property_characteristics", ["property_id"], unique=False
    )

    op.create_table(
        "property_partners",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("property_id", sa.UUID(), nullable=False),
        sa.Column("ilist_partner_id", sa.BigInteger(), nullable=True),
        sa.Column("firstname", sa.String(length=120), nullable=True),
        sa.Column("lastname", sa.String(length=120), nullable=True),
        sa.Column("email", sa.String(length=320), nullable=True),
        sa.Column("phone", sa.String(length=60), nullable=True),
        sa.Column("photo_url", sa.String(length=1000), nullable=True),
        sa.ForeignKeyConstraint(["property_id"], ["properties.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("property_id"),
    )

    op.create_table(
        "ilist_sync_sessions",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("sync_type", sa.String(length=30), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("include_deleted", sa.Boolean(), nullable=False),
        sa.Column("update_date_from_utc", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_properties", sa.Integer(), nullable=False),
        sa.Column("new_properties", sa.Integer(), nullable=False),
        sa.Column("updated_properties", sa.Integer(), nullable=False),
        sa.Column("deleted_properties", sa.Integer(), nullable=False),
        sa.Column("skipped_properties", sa.Integer(), nullable=False),
        sa.Column("failed_properties", sa.Integer(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("error_details", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("api_responses", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("triggered_by", sa.String(length=120), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_seconds", sa.Integer(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_ilist_sync_sessions_type_status_completed",
        "ilist_sync_sessions",
        ["sync_type", "status", "completed_at"],
        unique=False,
    )

    op.create_table(
        "ilist_config",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("auth_token", sa.Text(), nullable=False),
        sa.Column("api_base_url", sa.String(length=500), nullable=False),
        sa.Column("rate_limit_per_minute", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "ilist_lookups",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("lookup_type", sa.String(length=80), nullable=False),
        sa.Column("lookup_id", sa.BigInteger(), nullable=False),
        sa.Column("language_id", sa.Integer(), nullable=False),
        sa.Column("value", sa.String(length=500), nullable=True),
        sa.Column("raw_data", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("last_updated", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("lookup_type", "lookup_id", "language_id", name="uq_ilist_lookups_type_id_lang"),
    )


def downgrade() -> None:
    op.drop_table("ilist_lookups")
    op.drop_table("ilist_config")
    op.drop_index("ix_ilist_sync_sessions_type_status_completed", table_name="ilist_sync_sessions")
    op.drop_table("ilist_sync_sessions")
    op.drop_table("property_partners")
    op.drop_index("ix_property_characteristics_property_id", table_name="property_characteristics")
    op.drop_table("property_characteristics")
    op.drop_index("ix_property_images_property_id", table_name="property_images")
    op.drop_table("property_images")
    op.drop_index("ix_properties_status_area", table_name="properties")
    op.drop_table("properties")
