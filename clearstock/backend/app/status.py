"""Urgency classification for a batch, from its expiry date and thresholds.

Pure functions only: nothing here touches the database. Read paths call
:func:`batch_status` to label a batch; the thresholds come from the tenant
and, when set, from the batch's category.
"""
import enum
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from app.errors import InvalidDate

DateLike = Union[date, datetime, str]


class Tier(str, enum.Enum):
    EXPIRED = "EXPIRED"
    URGENT = "URGENT"
    ATTENTION = "ATTENTION"
    OK = "OK"


# lower = more urgent
TIER_RANK = {Tier.EXPIRED: 0, Tier.URGENT: 1, Tier.ATTENTION: 2, Tier.OK: 3}


@dataclass(frozen=True)
class BatchStatus:
    tier: Tier
    days_to_expiry: int
    label: str


def parse_date(value: DateLike) -> date:
    """Coerce ``value`` to a calendar day, raising :class:`InvalidDate` otherwise.

    Accepts ``date``, ``datetime`` (time of day dropped), ``YYYY-MM-DD`` and
    ISO-8601 datetime strings.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            raise InvalidDate("Expiry date is empty")
        try:
            return date.fromisoformat(text)
        except ValueError:
            pass
        try:
            return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
        except ValueError:
            raise InvalidDate(f"Invalid date: {value!r}") from None
    raise InvalidDate(f"Invalid date: {value!r}")


def days_to_expiry(expiry_date: DateLike, today: DateLike) -> int:
    """Whole calendar days from ``today`` to ``expiry_date`` (negative once past)."""
    return (parse_date(expiry_date) - parse_date(today)).days


def _label(tier: Tier, days: int) -> str:
    if tier is Tier.EXPIRED:
        return "Expired"
    if tier is Tier.URGENT:
        return f"Use urgently ({days} days)"
    if tier is Tier.ATTENTION:
        return f"Expiring soon ({days} days)"
    return "OK"


def classify(
    expiry_date: DateLike,
    today: DateLike,
    urgent_days: int,
    warning_days: Optional[int] = None,
) -> BatchStatus:
    # The urgent check always runs first, so warning_days < urgent_days
    # simply makes ATTENTION unreachable.
    if warning_days is None:
        warning_days = urgent_days
    days = days_to_expiry(expiry_date, today)

    if days < 0:
        tier = Tier.EXPIRED
    elif days <= urgent_days:
        tier = Tier.URGENT
    elif days <= warning_days:
        tier = Tier.ATTENTION
    else:
        tier = Tier.OK
    return BatchStatus(tier=tier, days_to_expiry=days, label=_label(tier, days))


def resolve_thresholds(restaurant, category=None) -> Tuple[int, int]:
    """(urgent_days, warning_days) for a batch.

    Category overrides win; an unset override falls back to the tenant value,
    and an unset warning threshold falls back to the resolved urgent one.
    """
    urgent = None
    warning = None
    if category is not None:
        urgent = category.alert_days_before_expiry
        warning = category.warning_days_before_expiry
    if urgent is None:
        urgent = restaurant.alert_days_before_expiry
    if warning is None:
        warning = restaurant.warning_days_before_expiry
    if warning is None:
        warning = urgent
    return urgent, warning


def batch_status(batch, restaurant, category=None, today: Optional[DateLike] = None) -> BatchStatus:
    urgent, warning = resolve_thresholds(restaurant, category)
    return classify(batch.expiry_date, today or date.today(), urgent, warning)


# --- stock views ---

NO_CATEGORY = "No category"


def needs_action(status: BatchStatus) -> bool:
    """EXPIRED or URGENT: what the kitchen should look at first."""
    return status.tier in (Tier.EXPIRED, Tier.URGENT)


def count_by_tier(statuses: Iterable[BatchStatus]) -> Dict[Tier, int]:
    counts = {tier: 0 for tier in Tier}
    for status in statuses:
        counts[status.tier] += 1
    return counts


def filter_batches(
    batches: Iterable,
    status_of: Callable[[object], BatchStatus],
    tier: Optional[Tier] = None,
    search: Optional[str] = None,
) -> list:
    """Keep batches in ``tier`` whose name contains ``search`` (case-insensitive)."""
    query = (search or "").strip().casefold()
    kept = []
    for batch in batches:
        if query and query not in batch.name.casefold():
            continue
        if tier is not None and status_of(batch).tier is not tier:
            continue
        kept.append(batch)
    return kept


def group_batches_by_category(batches: Iterable, categories: Mapping[int, object]) -> Dict[str, list]:
    """Batches keyed by category name; uncategorised ones go under ``NO_CATEGORY``."""
    groups: Dict[str, list] = {}
    for batch in batches:
        category = categories.get(batch.category_id)
        name = category.name if category is not None else NO_CATEGORY
        groups.setdefault(name, []).append(batch)
    return groups


@dataclass
class LocationQuantity:
    name: str
    quantity: float
    unit: str


@dataclass
class ProductStock:
    name: str
    unit: str
    total_quantity: float
    nearest_expiry: date
    locations: List[LocationQuantity] = field(default_factory=list)
    batches: list = field(default_factory=list)


def aggregate_batches_by_product(batches: Iterable, locations: Mapping[int, object]) -> Dict[str, ProductStock]:
    """One entry per product name: total quantity, where it is kept, nearest expiry.

    The unit is the first batch's; per-location quantities keep the unit of
    the batch that opened that location's line. Batches without a location
    count towards the total only.
    """
    products: Dict[str, ProductStock] = {}
    for batch in batches:
        expiry = parse_date(batch.expiry_date)
        product = products.get(batch.name)
        if product is None:
            product = products[batch.name] = ProductStock(
                name=batch.name, unit=batch.unit, total_quantity=0.0, nearest_expiry=expiry,
            )
        product.batches.append(batch)
        product.total_quantity += batch.quantity
        if expiry < product.nearest_expiry:
            product.nearest_expiry = expiry

        location = locations.get(batch.location_id)
        if location is None:
            continue
        line = next((loc for loc in product.locations if loc.name == location.name), None)
        if line is None:
            product.locations.append(LocationQuantity(location.name, batch.quantity, batch.unit))
        else:
            line.quantity += batch.quantity
    return products


def urgent_first(groups: Mapping[str, list], status_of: Callable[[object], BatchStatus]) -> List[str]:
    """Group names, those holding an EXPIRED/URGENT batch first, then by name."""
    def key(name):
        flagged = any(needs_action(status_of(b)) for b in groups[name])
        return not flagged, name.casefold()
    return sorted(groups, key=key)
