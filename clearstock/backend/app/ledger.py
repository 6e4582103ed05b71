"""Inventory ledger: every state transition of batches and stock events.

A batch is one received lot of a product. Stock events are the audit log:
ENTRY when stock comes in, WASTE when it is declared thrown away. The ledger
is the only writer of both tables, and every public operation here runs as
one transaction on the caller's session (``update_batch`` runs two, see its
docstring).
"""
import logging
import math
from dataclasses import dataclass, asdict
from datetime import date, datetime
from typing import List, Optional, Tuple

from sqlalchemy import select, update, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import DEFAULT_UNIT
from app.errors import (
    BackfillPartialFailure,
    ConflictOrTransient,
    LedgerError,
    NotFound,
    ValidationError,
)
from app.models import (
    BatchStatus, Category, EventType, Location, ProductBatch, StockEvent, utcnow,
)
from app.schemas import BatchFields
from app.status import parse_date

logger = logging.getLogger(__name__)


@dataclass
class CleanBatchFields:
    name: str
    quantity: float
    unit: str
    expiry_date: date
    category_id: Optional[int]
    location_id: Optional[int]
    packaging_type: Optional[str]
    size: Optional[float]
    size_unit: Optional[str]


@dataclass
class BackfillResult:
    linked_events: int
    history_events: int


def normalize_product_name(name: Optional[str]) -> str:
    """Grouping key for product names: "Leite ", "leite" and "LEITE" match."""
    return (name or "").strip().lower()


def _clean_text(raw) -> Optional[str]:
    if raw is None:
        return None
    text = str(raw).strip()
    return text or None


def _parse_quantity(raw) -> float:
    # Missing, unparseable or non-positive quantities become 1.
    if raw is None or isinstance(raw, bool):
        return 1.0
    try:
        quantity = float(raw.strip() if isinstance(raw, str) else raw)
    except (TypeError, ValueError):
        return 1.0
    if not math.isfinite(quantity) or quantity <= 0:
        return 1.0
    return quantity


def _parse_size(raw) -> Optional[float]:
    text = _clean_text(raw)
    if text is None:
        return None
    try:
        size = float(text)
    except ValueError:
        return None
    if not math.isfinite(size) or size <= 0:
        return None
    return size


def _parse_reference(raw, label: str) -> Optional[int]:
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, str):
        raw = raw.strip()
        if raw in ("", "undefined", "null", "none"):
            return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {label} id: {raw!r}") from None


def _parse_delta(raw) -> float:
    if raw is None or isinstance(raw, bool):
        raise ValidationError("Quantity adjustment must be a number")
    try:
        delta = float(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"Quantity adjustment must be a number, got {raw!r}") from None
    if not math.isfinite(delta):
        raise ValidationError("Quantity adjustment must be finite")
    return delta


def clean_batch_fields(fields: BatchFields) -> CleanBatchFields:
    """Validate and sanitise raw batch input.

    Raises ``ValidationError`` for a blank name or missing expiry date and
    ``InvalidDate`` for an unparseable one.
    """
    name = (fields.name or "").strip()
    if not name:
        raise ValidationError("Product name is required")

    if fields.expiry_date is None or (isinstance(fields.expiry_date, str) and not fields.expiry_date.strip()):
        raise ValidationError("Expiry date is required")
    expiry_date = parse_date(fields.expiry_date)

    size = _parse_size(fields.size)
    return CleanBatchFields(
        name=name,
        quantity=_parse_quantity(fields.quantity),
        unit=_clean_text(fields.unit) or DEFAULT_UNIT,
        expiry_date=expiry_date,
        category_id=_parse_reference(fields.category_id, "category"),
        location_id=_parse_reference(fields.location_id, "location"),
        packaging_type=_clean_text(fields.packaging_type),
        size=size,
        # a size unit without a size means nothing
        size_unit=_clean_text(fields.size_unit) if size is not None else None,
    )


async def _check_reference(db: AsyncSession, model, restaurant_id: int, ref_id: Optional[int], label: str):
    if ref_id is None:
        return
    result = await db.execute(
        select(model.id).where(model.id == ref_id, model.restaurant_id == restaurant_id)
    )
    if result.scalar_one_or_none() is None:
        raise NotFound(f"{label} {ref_id} not found")


async def _lock_batch(db: AsyncSession, restaurant_id: int, batch_id: int) -> ProductBatch:
    # Row lock + fresh read, so the new quantity is computed inside the
    # transaction that writes it.
    result = await db.execute(
        select(ProductBatch)
        .where(ProductBatch.id == batch_id, ProductBatch.restaurant_id == restaurant_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    batch = result.scalars().first()
    if batch is None:
        raise NotFound(f"Batch {batch_id} not found")
    return batch


async def _commit(db: AsyncSession, action: str):
    try:
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Failed to {action}: {e}")
        raise ConflictOrTransient(f"Could not {action}, please try again") from e


async def get_batch(db: AsyncSession, restaurant_id: int, batch_id: int) -> ProductBatch:
    result = await db.execute(
        select(ProductBatch).where(
            ProductBatch.id == batch_id, ProductBatch.restaurant_id == restaurant_id
        )
    )
    batch = result.scalars().first()
    if batch is None:
        raise NotFound(f"Batch {batch_id} not found")
    return batch


async def list_batches(db: AsyncSession, restaurant_id: int, include_used: bool = True) -> List[ProductBatch]:
    query = select(ProductBatch).where(ProductBatch.restaurant_id == restaurant_id)
    if not include_used:
        query = query.where(ProductBatch.status == BatchStatus.ACTIVE)
    result = await db.execute(query.order_by(ProductBatch.expiry_date, ProductBatch.id))
    return list(result.scalars().all())


async def list_events(
    db: AsyncSession,
    restaurant_id: int,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> List[StockEvent]:
    """Events of a tenant, oldest first; ``start`` inclusive, ``end`` exclusive."""
    query = select(StockEvent).where(StockEvent.restaurant_id == restaurant_id)
    if start is not None:
        query = query.where(StockEvent.created_at >= start)
    if end is not None:
        query = query.where(StockEvent.created_at < end)
    result = await db.execute(query.order_by(StockEvent.created_at, StockEvent.id))
    return list(result.scalars().all())


async def create_batch(
    db: AsyncSession,
    restaurant_id: int,
    fields: BatchFields,
    today: Optional[date] = None,
) -> ProductBatch:
    """Register a received lot and its audit event in one transaction.

    A lot that is already past its expiry date on arrival is logged as WASTE
    rather than ENTRY, so it never counts as successfully ordered stock.
    """
    clean = clean_batch_fields(fields)
    await _check_reference(db, Category, restaurant_id, clean.category_id, "Category")
    await _check_reference(db, Location, restaurant_id, clean.location_id, "Location")

    today = today or date.today()
    already_expired = clean.expiry_date < today
    event_type = EventType.WASTE if already_expired else EventType.ENTRY

    now = utcnow()
    batch = ProductBatch(
        restaurant_id=restaurant_id,
        status=BatchStatus.ACTIVE,
        created_at=now,
        updated_at=now,
        **asdict(clean),
    )
    db.add(batch)
    try:
        # flush to get the batch id for the event link
        await db.flush()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Failed to create batch {clean.name!r}: {e}")
        raise ConflictOrTransient("Could not create batch, please try again") from e
    db.add(StockEvent(
        restaurant_id=restaurant_id,
        type=event_type,
        product_name=clean.name,
        quantity=clean.quantity,
        unit=clean.unit,
        batch_id=batch.id,
        created_at=now,
    ))
    await _commit(db, "create batch")
    logger.info(
        f"Created batch {batch.id} ({clean.name}, {clean.quantity} {clean.unit}, "
        f"expires {clean.expiry_date}) with {event_type.value} event"
    )
    return batch


async def adjust_quantity(db: AsyncSession, restaurant_id: int, batch_id: int, delta) -> ProductBatch:
    """Add ``delta`` (may be negative) to a batch, clamping at zero.

    Consumption and corrections are not waste: no event is written.
    """
    delta = _parse_delta(delta)
    batch = await _lock_batch(db, restaurant_id, batch_id)

    new_quantity = max(0.0, batch.quantity + delta)
    batch.quantity = new_quantity
    if new_quantity <= 0:
        batch.status = BatchStatus.USED
    elif batch.status == BatchStatus.USED:
        batch.status = BatchStatus.ACTIVE
    batch.updated_at = utcnow()

    await _commit(db, "adjust quantity")
    logger.info(f"Adjusted batch {batch_id} by {delta:+g} to {new_quantity:g} {batch.unit} ({batch.status.value})")
    return batch


async def mark_as_waste(db: AsyncSession, restaurant_id: int, batch_id: int) -> Optional[StockEvent]:
    """Declare a batch thrown away: WASTE event for what is left, then delete it.

    Both writes share one transaction, so a batch never disappears without
    its waste being recorded. Returns the event, or None when nothing was left.
    """
    batch = await _lock_batch(db, restaurant_id, batch_id)

    event = None
    if batch.quantity > 0:
        event = StockEvent(
            restaurant_id=restaurant_id,
            type=EventType.WASTE,
            product_name=batch.name,
            quantity=batch.quantity,
            unit=batch.unit,
            batch_id=batch.id,
            created_at=utcnow(),
        )
        db.add(event)
    try:
        await db.flush()
        await db.delete(batch)
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Failed to mark batch {batch_id} as waste: {e}")
        raise ConflictOrTransient("Could not record waste, the batch was kept") from e

    if event is not None:
        logger.info(f"Marked batch {batch_id} as waste ({event.quantity:g} {event.unit} of {event.product_name})")
    else:
        logger.info(f"Removed empty batch {batch_id} as waste (nothing left to record)")
    return event


async def delete_batch(db: AsyncSession, restaurant_id: int, batch_id: int) -> None:
    """Technical removal (data fixes, test data): leaves no trace in the event log."""
    batch = await _lock_batch(db, restaurant_id, batch_id)
    await db.delete(batch)
    await _commit(db, "delete batch")
    logger.info(f"Deleted batch {batch_id} without waste event")


async def backfill_event_history(
    db: AsyncSession,
    restaurant_id: int,
    batch_id: int,
    old_name: str,
    old_unit: str,
    new_name: str,
    new_unit: str,
) -> BackfillResult:
    """Rewrite historical events after a rename or unit change.

    Events linked to the batch always follow it. Other events of the tenant
    (unlinked, or linked to another batch) follow when their trimmed,
    case-insensitive name matches the old name and their unit is the old
    unit. Commits its own transaction.
    """
    linked = await db.execute(
        update(StockEvent)
        .where(StockEvent.restaurant_id == restaurant_id, StockEvent.batch_id == batch_id)
        .values(product_name=new_name, unit=new_unit)
    )

    # Name matching happens in Python: SQL lower() is ASCII-only on SQLite.
    target = normalize_product_name(old_name)
    candidates = await db.execute(
        select(StockEvent.id, StockEvent.product_name).where(
            StockEvent.restaurant_id == restaurant_id,
            StockEvent.unit == old_unit,
            or_(StockEvent.batch_id.is_(None), StockEvent.batch_id != batch_id),
        )
    )
    matching_ids = [row.id for row in candidates if normalize_product_name(row.product_name) == target]

    history_count = 0
    if matching_ids:
        history = await db.execute(
            update(StockEvent)
            .where(StockEvent.id.in_(matching_ids))
            .values(product_name=new_name, unit=new_unit)
        )
        history_count = history.rowcount
    await db.commit()
    return BackfillResult(linked_events=linked.rowcount, history_events=history_count)


async def update_batch(
    db: AsyncSession,
    restaurant_id: int,
    batch_id: int,
    fields: BatchFields,
) -> Tuple[ProductBatch, Optional[BackfillResult]]:
    """Edit a batch, then backfill history if its name or unit changed.

    Phase one commits the batch edit. Phase two (only on a name/unit change)
    runs :func:`backfill_event_history` in a separate transaction; if it
    fails, the edit stays and ``BackfillPartialFailure`` is raised with the
    updated batch attached. Returns ``(batch, backfill_result_or_None)``.
    """
    clean = clean_batch_fields(fields)
    await _check_reference(db, Category, restaurant_id, clean.category_id, "Category")
    await _check_reference(db, Location, restaurant_id, clean.location_id, "Location")

    batch = await _lock_batch(db, restaurant_id, batch_id)
    old_name, old_unit = batch.name, batch.unit

    for key, value in asdict(clean).items():
        setattr(batch, key, value)
    # The edit form always carries a quantity and a blank or zero one reads
    # as 1, so saving a USED batch brings it back as ACTIVE with 1 left.
    if batch.quantity > 0 and batch.status == BatchStatus.USED:
        batch.status = BatchStatus.ACTIVE
    batch.updated_at = utcnow()
    await _commit(db, "update batch")
    logger.info(f"Updated batch {batch_id}")

    if old_name == clean.name and old_unit == clean.unit:
        return batch, None

    try:
        result = await backfill_event_history(
            db, restaurant_id, batch_id, old_name, old_unit, clean.name, clean.unit
        )
    except (SQLAlchemyError, LedgerError) as e:
        await db.rollback()
        await db.refresh(batch)
        logger.error(
            f"Backfill failed for batch {batch_id} "
            f"({old_name!r} {old_unit} -> {clean.name!r} {clean.unit}): {e}"
        )
        raise BackfillPartialFailure(
            "Batch updated, but its history could not be updated to the new name/unit",
            batch=batch,
            cause=e,
        ) from e

    logger.info(
        f"Backfilled {result.linked_events} linked and {result.history_events} historical events "
        f"for batch {batch_id} ({old_name!r} {old_unit} -> {clean.name!r} {clean.unit})"
    )
    return batch, result
