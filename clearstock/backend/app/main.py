import logging
from contextlib import asynccontextmanager
from typing import Dict, List, Literal, Optional

import uvicorn
from fastapi import FastAPI, Depends, Form, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.analytics import (
    build_monthly_report,
    format_month_label,
    get_events_for_month,
    month_key,
    parse_month_key,
)
from app.celery_app import celery_app
from app.config import API_HOST, API_PORT, LOG_LEVEL, configure_logging
from app.crud import (
    create_category,
    create_location,
    delete_category,
    delete_location,
    get_restaurant,
    list_categories,
    list_locations,
    update_category_thresholds,
    update_restaurant_name,
    update_thresholds,
)
from app.database import init_db, get_db
from app.errors import BackfillPartialFailure, ConflictOrTransient, NotFound, ValidationError
from app.ledger import (
    adjust_quantity,
    create_batch,
    delete_batch,
    get_batch,
    list_batches,
    mark_as_waste,
    update_batch,
)
from app.models import Category, ProductBatch, Restaurant
from app.scanner import ExpiryScanner, get_scanner
from app.schemas import (
    BackfillReport,
    BatchFields,
    BatchSchema,
    BatchUpdateResponse,
    CategoryCreate,
    CategoryGroupSchema,
    CategorySchema,
    CategoryThresholdUpdate,
    ExpiryStatusSchema,
    LocationCreate,
    LocationQuantitySchema,
    LocationSchema,
    MonthlyEvents,
    MonthlyReportSchema,
    ProductStockSchema,
    QuantityAdjustment,
    RestaurantNameUpdate,
    RestaurantSchema,
    ScanResultSchema,
    SettingsSchema,
    StockEventSchema,
    StockViewSchema,
    ThresholdUpdate,
    WasteResponse,
)
from app.status import (
    Tier,
    aggregate_batches_by_product,
    batch_status,
    count_by_tier,
    filter_batches,
    group_batches_by_category,
    needs_action,
    urgent_first,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    await init_db()
    yield


app = FastAPI(title="Clearstock Inventory Ledger", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=422, content={"detail": exc.message})


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    return JSONResponse(status_code=404, content={"detail": exc.message})


@app.exception_handler(ConflictOrTransient)
async def conflict_handler(request: Request, exc: ConflictOrTransient):
    return JSONResponse(status_code=409, content={"detail": exc.message})


async def get_current_restaurant(
    x_restaurant_id: Optional[str] = Header(default=None),
    db: AsyncSession = Depends(get_db),
) -> Restaurant:
    # Authentication happens upstream; this only resolves the tenant scope.
    if not x_restaurant_id:
        raise HTTPException(status_code=400, detail="X-Restaurant-Id header required")
    try:
        restaurant_id = int(x_restaurant_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid X-Restaurant-Id header")
    return await get_restaurant(db, restaurant_id)


def batch_form(
    name: str = Form(""),
    quantity: Optional[str] = Form(None),
    unit: Optional[str] = Form(None),
    expiry_date: Optional[str] = Form(None),
    category_id: Optional[str] = Form(None),
    location_id: Optional[str] = Form(None),
    packaging_type: Optional[str] = Form(None),
    size: Optional[str] = Form(None),
    size_unit: Optional[str] = Form(None),
) -> BatchFields:
    return BatchFields(
        name=name,
        quantity=quantity,
        unit=unit,
        expiry_date=expiry_date,
        category_id=category_id,
        location_id=location_id,
        packaging_type=packaging_type,
        size=size,
        size_unit=size_unit,
    )


def batch_out(batch: ProductBatch, restaurant: Restaurant, categories: Dict[int, Category]) -> BatchSchema:
    out = BatchSchema.model_validate(batch)
    expiry = batch_status(batch, restaurant, categories.get(batch.category_id))
    out.expiry_status = ExpiryStatusSchema.model_validate(expiry)
    return out


async def categories_by_id(db: AsyncSession, restaurant_id: int) -> Dict[int, Category]:
    return {c.id: c for c in await list_categories(db, restaurant_id)}


def status_lookup(restaurant: Restaurant, categories: Dict[int, Category]):
    """Memoised batch -> expiry status for one request."""
    statuses = {}

    def status_of(batch):
        if batch.id not in statuses:
            statuses[batch.id] = batch_status(batch, restaurant, categories.get(batch.category_id))
        return statuses[batch.id]
    return status_of


@app.get("/")
async def read_root():
    return {"message": "Clearstock Inventory Ledger"}


@app.get("/settings", response_model=SettingsSchema)
async def read_settings(
    db: AsyncSession = Depends(get_db),
    restaurant: Restaurant = Depends(get_current_restaurant),
):
    return SettingsSchema(
        restaurant=RestaurantSchema.model_validate(restaurant),
        categories=[CategorySchema.model_validate(c) for c in await list_categories(db, restaurant.id)],
        locations=[LocationSchema.model_validate(loc) for loc in await list_locations(db, restaurant.id)],
    )


@app.put("/settings/thresholds", response_model=RestaurantSchema)
async def update_restaurant_thresholds(
    thresholds: ThresholdUpdate,
    db: AsyncSession = Depends(get_db),
    restaurant: Restaurant = Depends(get_current_restaurant),
):
    return await update_thresholds(db, restaurant, thresholds)


@app.put("/settings/name", response_model=RestaurantSchema)
async def rename_restaurant(
    update: RestaurantNameUpdate,
    db: AsyncSession = Depends(get_db),
    restaurant: Restaurant = Depends(get_current_restaurant),
):
    return await update_restaurant_name(db, restaurant, update)


@app.post("/categories", response_model=CategorySchema)
async def create_new_category(
    category: CategoryCreate,
    db: AsyncSession = Depends(get_db),
    restaurant: Restaurant = Depends(get_current_restaurant),
):
    return await create_category(db, restaurant.id, category)


@app.put("/categories/{category_id}/thresholds", response_model=CategorySchema)
async def update_existing_category_thresholds(
    category_id: int,
    thresholds: CategoryThresholdUpdate,
    db: AsyncSession = Depends(get_db),
    restaurant: Restaurant = Depends(get_current_restaurant),
):
    return await update_category_thresholds(db, restaurant.id, category_id, thresholds)


@app.delete("/categories/{category_id}")
async def delete_existing_category(
    category_id: int,
    db: AsyncSession = Depends(get_db),
    restaurant: Restaurant = Depends(get_current_restaurant),
):
    await delete_category(db, restaurant.id, category_id)
    return {"message": "Category deleted"}


@app.post("/locations", response_model=LocationSchema)
async def create_new_location(
    location: LocationCreate,
    db: AsyncSession = Depends(get_db),
    restaurant: Restaurant = Depends(get_current_restaurant),
):
    return await create_location(db, restaurant.id, location)


@app.delete("/locations/{location_id}")
async def delete_existing_location(
    location_id: int,
    db: AsyncSession = Depends(get_db),
    restaurant: Restaurant = Depends(get_current_restaurant),
):
    await delete_location(db, restaurant.id, location_id)
    return {"message": "Location deleted"}


@app.get("/batches", response_model=List[BatchSchema])
async def get_batches(
    include_used: bool = True,
    tier: Optional[Tier] = None,
    search: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    restaurant: Restaurant = Depends(get_current_restaurant),
):
    categories = await categories_by_id(db, restaurant.id)
    batches = await list_batches(db, restaurant.id, include_used=include_used)
    status_of = status_lookup(restaurant, categories)
    batches = filter_batches(batches, status_of, tier=tier, search=search)
    return [batch_out(b, restaurant, categories) for b in batches]


@app.get("/stock", response_model=StockViewSchema)
async def get_stock_view(
    group_by: Literal["category", "product"] = "category",
    include_used: bool = False,
    tier: Optional[Tier] = None,
    search: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    restaurant: Restaurant = Depends(get_current_restaurant),
):
    categories = await categories_by_id(db, restaurant.id)
    status_of = status_lookup(restaurant, categories)
    batches = await list_batches(db, restaurant.id, include_used=include_used)
    counts = count_by_tier(status_of(b) for b in batches)
    batches = filter_batches(batches, status_of, tier=tier, search=search)
    view = StockViewSchema(group_by=group_by, counts=counts)

    if group_by == "category":
        groups = group_batches_by_category(batches, categories)
        view.categories = [
            CategoryGroupSchema(
                name=name,
                needs_action_count=sum(needs_action(status_of(b)) for b in groups[name]),
                batches=[batch_out(b, restaurant, categories) for b in groups[name]],
            )
            for name in urgent_first(groups, status_of)
        ]
        return view

    locations = {loc.id: loc for loc in await list_locations(db, restaurant.id)}
    products = aggregate_batches_by_product(batches, locations)
    order = urgent_first({name: p.batches for name, p in products.items()}, status_of)
    view.products = [
        ProductStockSchema(
            name=p.name,
            unit=p.unit,
            total_quantity=p.total_quantity,
            nearest_expiry=p.nearest_expiry,
            needs_action=any(needs_action(status_of(b)) for b in p.batches),
            locations=[LocationQuantitySchema(name=loc.name, quantity=loc.quantity, unit=loc.unit) for loc in p.locations],
            batches=[batch_out(b, restaurant, categories) for b in p.batches],
        )
        for p in (products[name] for name in order)
    ]
    return view


@app.post("/batches", response_model=BatchSchema)
async def create_new_batch(
    fields: BatchFields = Depends(batch_form),
    db: AsyncSession = Depends(get_db),
    restaurant: Restaurant = Depends(get_current_restaurant),
):
    batch = await create_batch(db, restaurant.id, fields)
    return batch_out(batch, restaurant, await categories_by_id(db, restaurant.id))


@app.get("/batches/{batch_id}", response_model=BatchSchema)
async def read_batch(
    batch_id: int,
    db: AsyncSession = Depends(get_db),
    restaurant: Restaurant = Depends(get_current_restaurant),
):
    batch = await get_batch(db, restaurant.id, batch_id)
    return batch_out(batch, restaurant, await categories_by_id(db, restaurant.id))


@app.put("/batches/{batch_id}", response_model=BatchUpdateResponse)
async def update_existing_batch(
    batch_id: int,
    fields: BatchFields = Depends(batch_form),
    db: AsyncSession = Depends(get_db),
    restaurant: Restaurant = Depends(get_current_restaurant),
):
    try:
        batch, backfill = await update_batch(db, restaurant.id, batch_id, fields)
        report = None
        if backfill is not None:
            report = BackfillReport(
                ok=True,
                linked_events=backfill.linked_events,
                history_events=backfill.history_events,
            )
    except BackfillPartialFailure as e:
        # the edit itself is committed; tell the caller history may lag behind
        batch = e.batch
        report = BackfillReport(ok=False, warning=e.message)
    return BatchUpdateResponse(
        batch=batch_out(batch, restaurant, await categories_by_id(db, restaurant.id)),
        backfill=report,
    )


@app.post("/batches/{batch_id}/adjust", response_model=BatchSchema)
async def adjust_batch_quantity(
    batch_id: int,
    adjustment: QuantityAdjustment,
    db: AsyncSession = Depends(get_db),
    restaurant: Restaurant = Depends(get_current_restaurant),
):
    batch = await adjust_quantity(db, restaurant.id, batch_id, adjustment.delta)
    return batch_out(batch, restaurant, await categories_by_id(db, restaurant.id))


@app.post("/batches/{batch_id}/waste", response_model=WasteResponse)
async def mark_batch_as_waste(
    batch_id: int,
    db: AsyncSession = Depends(get_db),
    restaurant: Restaurant = Depends(get_current_restaurant),
):
    event = await mark_as_waste(db, restaurant.id, batch_id)
    return WasteResponse(
        message="Batch marked as waste",
        event=StockEventSchema.model_validate(event) if event is not None else None,
    )


@app.delete("/batches/{batch_id}")
async def delete_existing_batch(
    batch_id: int,
    db: AsyncSession = Depends(get_db),
    restaurant: Restaurant = Depends(get_current_restaurant),
):
    await delete_batch(db, restaurant.id, batch_id)
    return {"message": "Batch deleted"}


@app.get("/expiry-scan", response_model=ScanResultSchema)
async def scan_expired_batches(
    db: AsyncSession = Depends(get_db),
    restaurant: Restaurant = Depends(get_current_restaurant),
    scanner: ExpiryScanner = Depends(get_scanner),
):
    result = await scanner.scan(db, restaurant.id)
    return ScanResultSchema(
        restaurant_id=result.restaurant_id,
        expired_count=result.expired_count,
        expired_batch_ids=list(result.expired_batch_ids),
        scanned_at=result.scanned_at,
        cached=result.cached,
    )


@app.get("/history", response_model=MonthlyEvents)
async def get_history(
    month: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    restaurant: Restaurant = Depends(get_current_restaurant),
):
    year, month_number = parse_month_key(month)
    events = await get_events_for_month(db, restaurant.id, year, month_number)
    logger.info(f"History for restaurant {restaurant.id}, {month_key(year, month_number)}: {len(events)} events")
    return MonthlyEvents(
        month=month_key(year, month_number),
        label=format_month_label(year, month_number),
        events=[StockEventSchema.model_validate(e) for e in events],
    )


@app.get("/analytics", response_model=MonthlyReportSchema)
async def get_analytics(
    month: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    restaurant: Restaurant = Depends(get_current_restaurant),
):
    return await build_monthly_report(db, restaurant.id, month)


@app.post("/generate-report")
async def generate_report(
    month: Optional[str] = None,
    restaurant: Restaurant = Depends(get_current_restaurant),
):
    year, month_number = parse_month_key(month)
    key = month_key(year, month_number)
    task = celery_app.send_task("tasks.generate_monthly_report", args=[restaurant.id, key])
    logger.info(f"Started generate_monthly_report task with ID: {task.id}")
    return {"task_id": task.id, "month": key, "status": "Report generation started"}


@app.get("/report/{task_id}")
async def get_report(
    task_id: str,
    restaurant: Restaurant = Depends(get_current_restaurant),
):
    task_result = celery_app.AsyncResult(task_id)
    state = getattr(task_result, "state", getattr(task_result, "status", None))
    logger.info(f"Checking report task {task_id}, state: {state}")
    if not task_result.ready():
        return {"status": "PENDING", "detail": "Task is still processing"}
    if task_result.failed():
        raise HTTPException(
            status_code=500,
            detail=f"Report generation failed: {task_result.get(propagate=False)}",
        )
    result = task_result.get()
    if isinstance(result, dict) and result.get("restaurant_id") not in (None, restaurant.id):
        raise HTTPException(status_code=404, detail="Report not found")
    return {"status": "SUCCESS", "result": result}


def run():
    """Console entry point: serve the API with uvicorn."""
    uvicorn.run(app, host=API_HOST, port=API_PORT, log_level=LOG_LEVEL.lower())


if __name__ == "__main__":
    run()
