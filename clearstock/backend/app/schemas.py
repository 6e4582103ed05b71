from pydantic import BaseModel, ConfigDict, Field, field_validator
from datetime import date, datetime
from typing import Dict, List, Optional, Union

from app.models import BatchStatus, EventType
from app.status import Tier


class BatchFields(BaseModel):
    # Raw form values; the ledger does the sanitising.
    name: str = ""
    quantity: Optional[Union[float, str]] = None
    unit: Optional[str] = None
    expiry_date: Optional[Union[date, str]] = None
    category_id: Optional[Union[int, str]] = None
    location_id: Optional[Union[int, str]] = None
    packaging_type: Optional[str] = None
    size: Optional[Union[float, str]] = None
    size_unit: Optional[str] = None


class QuantityAdjustment(BaseModel):
    delta: float


class ThresholdUpdate(BaseModel):
    alert_days_before_expiry: int = Field(ge=0)
    warning_days_before_expiry: Optional[int] = Field(default=None, ge=0)


class RestaurantNameUpdate(BaseModel):
    # trimmed and checked by crud.update_restaurant_name
    name: Optional[str] = None


class CategoryThresholdUpdate(BaseModel):
    alert_days_before_expiry: Optional[int] = Field(default=None, ge=0)
    warning_days_before_expiry: Optional[int] = Field(default=None, ge=0)


class NamedCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("name must not be blank")
        return value


class CategoryCreate(NamedCreate):
    alert_days_before_expiry: Optional[int] = Field(default=None, ge=0)
    warning_days_before_expiry: Optional[int] = Field(default=None, ge=0)


class LocationCreate(NamedCreate):
    pass


class CategorySchema(BaseModel):
    id: int
    name: str
    alert_days_before_expiry: Optional[int] = None
    warning_days_before_expiry: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class LocationSchema(BaseModel):
    id: int
    name: str

    model_config = ConfigDict(from_attributes=True)


class RestaurantSchema(BaseModel):
    id: int
    name: str
    alert_days_before_expiry: int
    warning_days_before_expiry: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class SettingsSchema(BaseModel):
    restaurant: RestaurantSchema
    categories: List[CategorySchema]
    locations: List[LocationSchema]


class ExpiryStatusSchema(BaseModel):
    tier: Tier
    days_to_expiry: int
    label: str

    model_config = ConfigDict(from_attributes=True)


class BatchSchema(BaseModel):
    id: int
    name: str
    quantity: float
    unit: str
    expiry_date: date
    status: BatchStatus
    category_id: Optional[int] = None
    location_id: Optional[int] = None
    packaging_type: Optional[str] = None
    size: Optional[float] = None
    size_unit: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    expiry_status: Optional[ExpiryStatusSchema] = None

    model_config = ConfigDict(from_attributes=True)


class BackfillReport(BaseModel):
    ok: bool
    linked_events: int = 0
    history_events: int = 0
    warning: Optional[str] = None


class BatchUpdateResponse(BaseModel):
    batch: BatchSchema
    backfill: Optional[BackfillReport] = None


class StockEventSchema(BaseModel):
    id: int
    type: EventType
    product_name: str
    quantity: float
    unit: str
    batch_id: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class WasteResponse(BaseModel):
    message: str
    event: Optional[StockEventSchema] = None


class MonthlyEvents(BaseModel):
    month: str
    label: str
    events: List[StockEventSchema]


class SuggestionSchema(BaseModel):
    kind: str
    quantity: Optional[int] = None
    text: str


class ProductSummarySchema(BaseModel):
    product_name: str
    normalized_name: str
    unit: str
    total_ordered: float
    total_wasted: float
    waste_percentage: Optional[float] = None
    has_entry_data: bool
    suggestion: SuggestionSchema


class UnitTotalsSchema(BaseModel):
    unit: str
    ordered: float
    wasted: float
    waste_percentage: Optional[float] = None


class MonthlySummarySchema(BaseModel):
    totals_by_unit: List[UnitTotalsSchema]
    waste_percentage: Optional[float] = None
    has_enough_data: bool
    has_mixed_units: bool


class MonthlyReportSchema(BaseModel):
    month: str
    label: str
    event_count: int
    with_entry_data: List[ProductSummarySchema]
    without_entry_data: List[ProductSummarySchema]
    products_with_multiple_units: List[str]
    summary: MonthlySummarySchema


class ScanResultSchema(BaseModel):
    restaurant_id: int
    expired_count: int
    expired_batch_ids: List[int]
    scanned_at: datetime
    cached: bool


class LocationQuantitySchema(BaseModel):
    name: str
    quantity: float
    unit: str


class CategoryGroupSchema(BaseModel):
    name: str
    needs_action_count: int
    batches: List[BatchSchema]


class ProductStockSchema(BaseModel):
    name: str
    unit: str
    total_quantity: float
    nearest_expiry: date
    needs_action: bool
    locations: List[LocationQuantitySchema]
    batches: List[BatchSchema]


class StockViewSchema(BaseModel):
    group_by: str
    counts: Dict[Tier, int]
    categories: List[CategoryGroupSchema] = []
    products: List[ProductStockSchema] = []
