from datetime import date, datetime, timedelta
from types import SimpleNamespace

import pytest

from app.errors import InvalidDate, ValidationError
from app.status import (
    NO_CATEGORY,
    TIER_RANK,
    Tier,
    aggregate_batches_by_product,
    batch_status,
    classify,
    count_by_tier,
    days_to_expiry,
    filter_batches,
    group_batches_by_category,
    needs_action,
    parse_date,
    resolve_thresholds,
    urgent_first,
)

TODAY = date(2026, 3, 10)


def test_parse_date_accepts_common_shapes():
    assert parse_date(date(2026, 3, 10)) == date(2026, 3, 10)
    assert parse_date(datetime(2026, 3, 10, 23, 59)) == date(2026, 3, 10)
    assert parse_date("2026-03-10") == date(2026, 3, 10)
    assert parse_date(" 2026-03-10 ") == date(2026, 3, 10)
    assert parse_date("2026-03-10T08:30:00") == date(2026, 3, 10)
    assert parse_date("2026-03-10T08:30:00Z") == date(2026, 3, 10)


@pytest.mark.parametrize("value", ["", "tomorrow", "2026-13-01", "10/03/2026", None, 12345])
def test_parse_date_rejects_garbage(value):
    with pytest.raises(InvalidDate):
        parse_date(value)


def test_invalid_date_is_a_validation_error():
    with pytest.raises(ValidationError):
        classify("not a date", TODAY, 3)


def test_days_to_expiry_ignores_time_of_day():
    assert days_to_expiry(datetime(2026, 3, 11, 0, 1), datetime(2026, 3, 10, 23, 59)) == 1
    assert days_to_expiry("2026-03-09", TODAY) == -1
    assert days_to_expiry(TODAY, TODAY) == 0


def test_classify_tiers_and_labels():
    expired = classify(TODAY - timedelta(days=1), TODAY, 3, 7)
    assert expired.tier is Tier.EXPIRED
    assert expired.days_to_expiry == -1
    assert expired.label == "Expired"

    today = classify(TODAY, TODAY, 3, 7)
    assert today.tier is Tier.URGENT
    assert today.label == "Use urgently (0 days)"

    edge = classify(TODAY + timedelta(days=3), TODAY, 3, 7)
    assert edge.tier is Tier.URGENT

    soon = classify(TODAY + timedelta(days=5), TODAY, 3, 7)
    assert soon.tier is Tier.ATTENTION
    assert soon.label == "Expiring soon (5 days)"

    fine = classify(TODAY + timedelta(days=8), TODAY, 3, 7)
    assert fine.tier is Tier.OK
    assert fine.label == "OK"


def test_classify_without_warning_threshold_has_no_attention_band():
    assert classify(TODAY + timedelta(days=3), TODAY, 3).tier is Tier.URGENT
    assert classify(TODAY + timedelta(days=4), TODAY, 3).tier is Tier.OK


def test_classify_urgent_wins_when_warning_is_smaller():
    # thresholds are not validated against each other
    status = classify(TODAY + timedelta(days=4), TODAY, 5, 2)
    assert status.tier is Tier.URGENT
    assert classify(TODAY + timedelta(days=6), TODAY, 5, 2).tier is Tier.OK


@pytest.mark.parametrize("urgent,warning", [(0, 0), (3, 3), (3, 7), (1, 14)])
def test_classify_is_monotonic_in_days(urgent, warning):
    ranks = [
        TIER_RANK[classify(TODAY + timedelta(days=offset), TODAY, urgent, warning).tier]
        for offset in range(-5, 30)
    ]
    assert ranks == sorted(ranks)


def test_resolve_thresholds_fallback_chain():
    restaurant = SimpleNamespace(alert_days_before_expiry=3, warning_days_before_expiry=None)
    assert resolve_thresholds(restaurant) == (3, 3)

    restaurant.warning_days_before_expiry = 7
    assert resolve_thresholds(restaurant) == (3, 7)

    category = SimpleNamespace(alert_days_before_expiry=1, warning_days_before_expiry=None)
    assert resolve_thresholds(restaurant, category) == (1, 7)

    category.warning_days_before_expiry = 2
    assert resolve_thresholds(restaurant, category) == (1, 2)

    unset = SimpleNamespace(alert_days_before_expiry=None, warning_days_before_expiry=None)
    assert resolve_thresholds(restaurant, unset) == (3, 7)


def test_batch_status_uses_category_override():
    restaurant = SimpleNamespace(alert_days_before_expiry=3, warning_days_before_expiry=None)
    fish = SimpleNamespace(alert_days_before_expiry=5, warning_days_before_expiry=None)
    batch = SimpleNamespace(expiry_date=TODAY + timedelta(days=4))

    assert batch_status(batch, restaurant, today=TODAY).tier is Tier.OK
    assert batch_status(batch, restaurant, fish, today=TODAY).tier is Tier.URGENT


# --- stock views ---

KITCHEN = SimpleNamespace(alert_days_before_expiry=3, warning_days_before_expiry=7)


def stock(id, name, days, quantity=1.0, unit="kg", category_id=None, location_id=None):
    return SimpleNamespace(
        id=id, name=name, quantity=quantity, unit=unit,
        expiry_date=TODAY + timedelta(days=days),
        category_id=category_id, location_id=location_id,
    )


def status_of(batch):
    return batch_status(batch, KITCHEN, today=TODAY)


def test_needs_action_and_tier_counts():
    batches = [stock(1, "a", -1), stock(2, "b", 2), stock(3, "c", 5), stock(4, "d", 30), stock(5, "e", 40)]
    statuses = [status_of(b) for b in batches]

    assert [needs_action(s) for s in statuses] == [True, True, False, False, False]
    assert count_by_tier(statuses) == {Tier.EXPIRED: 1, Tier.URGENT: 1, Tier.ATTENTION: 1, Tier.OK: 2}
    assert count_by_tier([]) == {tier: 0 for tier in Tier}


def test_filter_batches_by_tier_and_name():
    batches = [stock(1, "Batata", -1), stock(2, "batata doce", 2), stock(3, "Cebola", 2)]

    assert [b.id for b in filter_batches(batches, status_of, tier=Tier.URGENT)] == [2, 3]
    assert [b.id for b in filter_batches(batches, status_of, search=" BATATA ")] == [1, 2]
    assert [b.id for b in filter_batches(batches, status_of, tier=Tier.URGENT, search="bat")] == [2]
    assert filter_batches(batches, status_of, search="  ") == batches


def test_group_batches_by_category_has_a_no_category_bucket():
    dairy = SimpleNamespace(id=10, name="Dairy")
    batches = [stock(1, "Leite", 5, category_id=10), stock(2, "Sal", 90), stock(3, "Queijo", 5, category_id=10),
               stock(4, "Ghost", 5, category_id=99)]

    groups = group_batches_by_category(batches, {10: dairy})

    assert set(groups) == {"Dairy", NO_CATEGORY}
    assert [b.id for b in groups["Dairy"]] == [1, 3]
    assert [b.id for b in groups[NO_CATEGORY]] == [2, 4]


def test_aggregate_batches_by_product():
    fridge = SimpleNamespace(id=1, name="Fridge")
    shelf = SimpleNamespace(id=2, name="Shelf")
    batches = [
        stock(1, "Leite", 6, quantity=2, unit="l", location_id=1),
        stock(2, "Leite", 3, quantity=1.5, unit="l", location_id=1),
        stock(3, "Leite", 9, quantity=4, unit="l", location_id=2),
        stock(4, "Leite", 1, quantity=1, unit="l"),
        stock(5, "Ovos", 12, quantity=12, unit="un"),
    ]

    products = aggregate_batches_by_product(batches, {1: fridge, 2: shelf})

    milk = products["Leite"]
    assert milk.total_quantity == pytest.approx(8.5)
    assert milk.unit == "l"
    assert milk.nearest_expiry == TODAY + timedelta(days=1)
    assert [(loc.name, loc.quantity, loc.unit) for loc in milk.locations] == [("Fridge", 3.5, "l"), ("Shelf", 4, "l")]
    assert [b.id for b in milk.batches] == [1, 2, 3, 4]
    assert products["Ovos"].locations == []


def test_urgent_first_orders_groups():
    groups = {
        "Vegetables": [stock(1, "Alface", 30)],
        "dairy": [stock(2, "Leite", 30), stock(3, "Natas", 1)],
        "Bakery": [stock(4, "Pão", 20)],
        "Fish": [stock(5, "Robalo", -2)],
    }

    assert urgent_first(groups, status_of) == ["dairy", "Fish", "Bakery", "Vegetables"]
