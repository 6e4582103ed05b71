"""Monthly waste/ordering analytics over the stock event log.

ENTRY quantities are what was ordered, WASTE quantities what was thrown away.
Products are grouped by trimmed, case-insensitive name *and* unit, and unit
totals are never added together: "kg" and "un" stay in separate buckets.
"""
import calendar
import enum
import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import DEFAULT_UNIT
from app.errors import ValidationError
from app.ledger import list_events, normalize_product_name
from app.models import EventType

# Ratios above this come from data problems, not kitchens.
MAX_PLAUSIBLE_PERCENTAGE = 200.0
HIGH_WASTE_PERCENTAGE = 30.0
UNNAMED_PRODUCT = "Unnamed product"

_MONTH_KEY = re.compile(r"^(\d{4})-(\d{2})$")


class SuggestionKind(str, enum.Enum):
    NO_HISTORY = "NO_HISTORY"
    MOSTLY_SPOILED = "MOSTLY_SPOILED"
    KEEP = "KEEP"
    REDUCE = "REDUCE"
    CONSIDER = "CONSIDER"


@dataclass
class Suggestion:
    kind: SuggestionKind
    quantity: Optional[int]
    text: str


@dataclass
class ProductSummary:
    product_name: str
    normalized_name: str
    unit: str
    total_ordered: float
    total_wasted: float
    waste_percentage: Optional[float]
    has_entry_data: bool
    suggestion: Suggestion


@dataclass
class AggregatedProducts:
    with_entry_data: List[ProductSummary] = field(default_factory=list)
    without_entry_data: List[ProductSummary] = field(default_factory=list)
    products_with_multiple_units: List[str] = field(default_factory=list)


@dataclass
class UnitTotals:
    unit: str
    ordered: float
    wasted: float
    waste_percentage: Optional[float]


@dataclass
class MonthlySummary:
    totals_by_unit: List[UnitTotals]
    waste_percentage: Optional[float]
    has_enough_data: bool
    has_mixed_units: bool


@dataclass
class MonthlyReport:
    month: str
    label: str
    event_count: int
    with_entry_data: List[ProductSummary]
    without_entry_data: List[ProductSummary]
    products_with_multiple_units: List[str]
    summary: MonthlySummary


def _event_type(event) -> EventType:
    return EventType(getattr(event.type, "value", event.type))


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def waste_percentage(ordered: float, wasted: float) -> Optional[float]:
    """wasted/ordered as a percentage; None without orders or when implausible."""
    if ordered <= 0:
        return None
    percentage = wasted / ordered * 100
    if percentage > MAX_PLAUSIBLE_PERCENTAGE:
        return None
    return percentage


def representative_name(names: List[str]) -> str:
    if not names:
        return UNNAMED_PRODUCT
    for name in names:
        if name.strip():
            return name
    return names[-1]


def generate_suggestion(
    ordered: float,
    wasted: float,
    unit: str,
    percentage: Optional[float],
) -> Suggestion:
    if ordered == 0:
        return Suggestion(
            SuggestionKind.NO_HISTORY,
            None,
            "No ordering history this period (probably old stock).",
        )

    if wasted >= ordered:
        return Suggestion(
            SuggestionKind.MOSTLY_SPOILED,
            0,
            f"Almost all spoiled ({wasted:.0f} {unit} of {ordered:.0f} {unit}) "
            f"→ order much less or pause for now.",
        )

    if wasted == 0:
        keep = round_half_up(ordered)
        return Suggestion(SuggestionKind.KEEP, keep, f"Keep ordering ~{keep} {unit}.")

    base = round_half_up(ordered - wasted)
    if percentage is not None and percentage >= HIGH_WASTE_PERCENTAGE:
        return Suggestion(
            SuggestionKind.REDUCE,
            base,
            f"A significant share was wasted ({percentage:.0f}%) → consider reducing to ~{base} {unit}.",
        )
    return Suggestion(SuggestionKind.CONSIDER, base, f"Consider ordering ~{base} {unit}.")


def _with_entry_sort_key(summary: ProductSummary):
    # anomalies (percentage None) count as the worst waste
    percentage = summary.waste_percentage
    rank = -math.inf if percentage is None else -percentage
    return rank, summary.product_name.casefold()


def aggregate_events_by_product(events: Iterable) -> AggregatedProducts:
    """Group events per (normalized name, unit) into product summaries.

    ``events`` are anything with ``type``, ``product_name``, ``quantity`` and
    ``unit`` attributes (ORM rows or plain objects).
    """
    groups: Dict[Tuple[str, str], dict] = {}
    for event in events:
        normalized = normalize_product_name(event.product_name)
        key = (normalized, event.unit)
        group = groups.setdefault(key, {"names": [], "entry": 0.0, "waste": 0.0})
        if event.product_name not in group["names"]:
            group["names"].append(event.product_name)
        if _event_type(event) is EventType.ENTRY:
            group["entry"] += event.quantity
        else:
            group["waste"] += event.quantity

    units_by_name: Dict[str, set] = {}
    for (normalized, unit), group in groups.items():
        if group["entry"] > 0 or group["waste"] > 0:
            units_by_name.setdefault(normalized, set()).add(unit)

    result = AggregatedProducts(
        products_with_multiple_units=sorted(n for n, units in units_by_name.items() if len(units) > 1)
    )
    for (normalized, unit), group in groups.items():
        ordered, wasted = group["entry"], group["waste"]
        percentage = waste_percentage(ordered, wasted)
        summary = ProductSummary(
            product_name=representative_name(group["names"]),
            normalized_name=normalized,
            unit=unit,
            total_ordered=ordered,
            total_wasted=wasted,
            waste_percentage=percentage,
            has_entry_data=ordered > 0,
            suggestion=generate_suggestion(ordered, wasted, unit, percentage),
        )
        if summary.has_entry_data:
            result.with_entry_data.append(summary)
        else:
            result.without_entry_data.append(summary)

    result.with_entry_data.sort(key=_with_entry_sort_key)
    result.without_entry_data.sort(key=lambda s: s.product_name.casefold())
    return result


def calculate_monthly_summary(events: Iterable) -> MonthlySummary:
    totals: Dict[str, List[float]] = {}
    for event in events:
        unit = event.unit or DEFAULT_UNIT
        bucket = totals.setdefault(unit, [0.0, 0.0])
        if _event_type(event) is EventType.ENTRY:
            bucket[0] += event.quantity
        else:
            bucket[1] += event.quantity

    totals_by_unit = [
        UnitTotals(unit=unit, ordered=ordered, wasted=wasted, waste_percentage=waste_percentage(ordered, wasted))
        for unit, (ordered, wasted) in sorted(totals.items())
    ]
    has_mixed_units = len(totals_by_unit) > 1
    has_enough_data = any(t.ordered > 0 for t in totals_by_unit)

    overall = None
    if has_enough_data and len(totals_by_unit) == 1:
        overall = totals_by_unit[0].waste_percentage
    return MonthlySummary(
        totals_by_unit=totals_by_unit,
        waste_percentage=overall,
        has_enough_data=has_enough_data,
        has_mixed_units=has_mixed_units,
    )


def parse_month_key(month: Optional[str], today: Optional[date] = None) -> Tuple[int, int]:
    """``"YYYY-MM"`` -> (year, month); None means the current month."""
    if month is None or not month.strip():
        today = today or date.today()
        return today.year, today.month
    match = _MONTH_KEY.match(month.strip())
    if not match:
        raise ValidationError(f"Month must look like YYYY-MM, got {month!r}")
    year, month_number = int(match.group(1)), int(match.group(2))
    if not 1 <= month_number <= 12 or year < 1:
        raise ValidationError(f"Month out of range: {month!r}")
    return year, month_number


def month_key(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


def month_bounds(year: int, month: int) -> Tuple[datetime, datetime]:
    """[first instant of the month, first instant of the next month)."""
    start = datetime(year, month, 1)
    end = datetime(year + 1, 1, 1) if month == 12 else datetime(year, month + 1, 1)
    return start, end


def format_month_label(year: int, month: int) -> str:
    return f"{calendar.month_name[month]} {year}"


def build_report(year: int, month: int, events: List) -> MonthlyReport:
    products = aggregate_events_by_product(events)
    return MonthlyReport(
        month=month_key(year, month),
        label=format_month_label(year, month),
        event_count=len(events),
        with_entry_data=products.with_entry_data,
        without_entry_data=products.without_entry_data,
        products_with_multiple_units=products.products_with_multiple_units,
        summary=calculate_monthly_summary(events),
    )


async def get_events_for_month(db: AsyncSession, restaurant_id: int, year: int, month: int) -> List:
    start, end = month_bounds(year, month)
    return await list_events(db, restaurant_id, start, end)


async def build_monthly_report(db: AsyncSession, restaurant_id: int, month: Optional[str] = None) -> MonthlyReport:
    year, month_number = parse_month_key(month)
    events = await get_events_for_month(db, restaurant_id, year, month_number)
    return build_report(year, month_number, events)
