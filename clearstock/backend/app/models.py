# app/models.py

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Column, Integer, String, Float, Date, DateTime, Enum, ForeignKey, UniqueConstraint, Index,
)

from .config import DEFAULT_ALERT_DAYS, DEFAULT_UNIT
from .database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp; every DateTime column stores UTC without tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)

class BatchStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    USED = "USED"

class EventType(str, enum.Enum):
    ENTRY = "ENTRY"
    WASTE = "WASTE"

class Restaurant(Base):
    __tablename__ = "restaurants"
    id                         = Column(Integer, primary_key=True, index=True)
    name                       = Column(String, nullable=False)
    alert_days_before_expiry   = Column(Integer, nullable=False, default=DEFAULT_ALERT_DAYS)
    warning_days_before_expiry = Column(Integer, nullable=True)
    created_at                 = Column(DateTime, default=utcnow)
    updated_at                 = Column(DateTime, default=utcnow, onupdate=utcnow)

class Category(Base):
    __tablename__ = "categories"
    __table_args__ = (UniqueConstraint("restaurant_id", "name", name="uq_categories_restaurant_name"),)
    id                         = Column(Integer, primary_key=True, index=True)
    restaurant_id              = Column(Integer, ForeignKey("restaurants.id"), nullable=False, index=True)
    name                       = Column(String, nullable=False)
    alert_days_before_expiry   = Column(Integer, nullable=True)
    warning_days_before_expiry = Column(Integer, nullable=True)
    created_at                 = Column(DateTime, default=utcnow)

class Location(Base):
    __tablename__ = "locations"
    __table_args__ = (UniqueConstraint("restaurant_id", "name", name="uq_locations_restaurant_name"),)
    id            = Column(Integer, primary_key=True, index=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False, index=True)
    name          = Column(String, nullable=False)
    created_at    = Column(DateTime, default=utcnow)

class ProductBatch(Base):
    __tablename__ = "product_batches"
    __table_args__ = (Index("ix_product_batches_restaurant_expiry", "restaurant_id", "expiry_date"),)
    id             = Column(Integer, primary_key=True, index=True)
    restaurant_id  = Column(Integer, ForeignKey("restaurants.id"), nullable=False)
    name           = Column(String, nullable=False)
    quantity       = Column(Float, nullable=False)
    unit           = Column(String, nullable=False, default=DEFAULT_UNIT)
    expiry_date    = Column(Date, nullable=False)
    status         = Column(Enum(BatchStatus, name="batch_status"), nullable=False, default=BatchStatus.ACTIVE)
    category_id    = Column(Integer, ForeignKey("categories.id", ondelete="SET NULL"), nullable=True)
    location_id    = Column(Integer, ForeignKey("locations.id", ondelete="SET NULL"), nullable=True)
    packaging_type = Column(String, nullable=True)
    size           = Column(Float, nullable=True)
    size_unit      = Column(String, nullable=True)
    created_at     = Column(DateTime, default=utcnow)
    updated_at     = Column(DateTime, default=utcnow, onupdate=utcnow)

class StockEvent(Base):
    __tablename__ = "stock_events"
    __table_args__ = (Index("ix_stock_events_restaurant_created", "restaurant_id", "created_at"),)
    id            = Column(Integer, primary_key=True, index=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False)
    type          = Column(Enum(EventType, name="event_type"), nullable=False)
    product_name  = Column(String, nullable=False)
    quantity      = Column(Float, nullable=False)
    unit          = Column(String, nullable=False)
    batch_id      = Column(Integer, ForeignKey("product_batches.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at    = Column(DateTime, default=utcnow)
