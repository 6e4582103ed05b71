"""Initial ledger schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

batch_status = sa.Enum("ACTIVE", "USED", name="batch_status")
event_type = sa.Enum("ENTRY", "WASTE", name="event_type")


def upgrade() -> None:
    op.create_table(
        "restaurants",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("alert_days_before_expiry", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("warning_days_before_expiry", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_restaurants_id", "restaurants", ["id"])

    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("restaurant_id", sa.Integer(), sa.ForeignKey("restaurants.id"), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("alert_days_before_expiry", sa.Integer(), nullable=True),
        sa.Column("warning_days_before_expiry", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("restaurant_id", "name", name="uq_categories_restaurant_name"),
    )
    op.create_index("ix_categories_id", "categories", ["id"])
    op.create_index("ix_categories_restaurant_id", "categories", ["restaurant_id"])

    op.create_table(
        "locations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("restaurant_id", sa.Integer(), sa.ForeignKey("restaurants.id"), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("restaurant_id", "name", name="uq_locations_restaurant_name"),
    )
    op.create_index("ix_locations_id", "locations", ["id"])
    op.create_index("ix_locations_restaurant_id", "locations", ["restaurant_id"])

    op.create_table(
        "product_batches",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("restaurant_id", sa.Integer(), sa.ForeignKey("restaurants.id"), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("quantity", sa.Float(), nullable=False),
        sa.Column("unit", sa.String(), nullable=False),
        sa.Column("expiry_date", sa.Date(), nullable=False),
        sa.Column("status", batch_status, nullable=False),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("categories.id", ondelete="SET NULL"), nullable=True),
        sa.Column("location_id", sa.Integer(), sa.ForeignKey("locations.id", ondelete="SET NULL"), nullable=True),
        sa.Column("packaging_type", sa.String(), nullable=True),
        sa.Column("size", sa.Float(), nullable=True),
        sa.Column("size_unit", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_product_batches_id", "product_batches", ["id"])
    op.create_index("ix_product_batches_restaurant_expiry", "product_batches", ["restaurant_id", "expiry_date"])

    op.create_table(
        "stock_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("restaurant_id", sa.Integer(), sa.ForeignKey("restaurants.id"), nullable=False),
        sa.Column("type", event_type, nullable=False),
        sa.Column("product_name", sa.String(), nullable=False),
        sa.Column("quantity", sa.Float(), nullable=False),
        sa.Column("unit", sa.String(), nullable=False),
        sa.Column("batch_id", sa.Integer(), sa.ForeignKey("product_batches.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_stock_events_id", "stock_events", ["id"])
    op.create_index("ix_stock_events_batch_id", "stock_events", ["batch_id"])
    op.create_index("ix_stock_events_restaurant_created", "stock_events", ["restaurant_id", "created_at"])


def downgrade() -> None:
    op.drop_table("stock_events")
    op.drop_table("product_batches")
    op.drop_table("locations")
    op.drop_table("categories")
    op.drop_table("restaurants")
    batch_status.drop(op.get_bind(), checkfirst=True)
    event_type.drop(op.get_bind(), checkfirst=True)
