import random
from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from booking_schemas import AddOn, AddOnResolution, DateRange, LineItem
from errors import InvalidRange, NotBookable, UnknownAddOn
from pricing import build_line_items, compute_price, rental_days, round2


def gps(rate="10"):
    return LineItem(add_on_ref="gps", name="GPS Navigation", daily_rate=Decimal(rate))


def test_two_day_rental():
    quote = compute_price(Decimal("45"), DateRange(start=date(2024, 1, 1), end=date(2024, 1, 3)))

    assert quote.pricing.total_days == 2
    assert quote.pricing.base_amount == Decimal("90")
    assert quote.pricing.add_ons_amount == Decimal("0")
    assert quote.pricing.tax_amount == Decimal("9.00")
    assert quote.total_amount == Decimal("99.00")


def test_three_day_rental_with_add_on():
    quote = compute_price(Decimal("50"), DateRange(start=date(2024, 5, 1), end=date(2024, 5, 4)), [gps()])

    assert quote.pricing.total_days == 3
    assert quote.pricing.base_amount == Decimal("150")
    assert quote.pricing.add_ons_amount == Decimal("30")
    assert quote.pricing.tax_amount == Decimal("18.00")
    assert quote.total_amount == Decimal("198.00")
    assert [item.add_on_ref for item in quote.line_items] == ["gps"]


def test_partial_day_rounds_up():
    two_days_and_an_hour = DateRange(start=datetime(2024, 1, 1, 10), end=datetime(2024, 1, 3, 11))
    assert rental_days(two_days_and_an_hour) == 3

    one_hour = DateRange(start=datetime(2024, 1, 1, 10), end=datetime(2024, 1, 1, 11))
    assert rental_days(one_hour) == 1


@pytest.mark.parametrize("start,end", [
    (date(2024, 1, 3), date(2024, 1, 3)),
    (date(2024, 1, 3), date(2024, 1, 1)),
])
def test_non_positive_range_is_rejected(start, end):
    with pytest.raises(InvalidRange):
        compute_price(Decimal("45"), DateRange(start=start, end=end))


def test_tax_rounds_half_up():
    # subtotal 0.25 -> tax 0.025 -> 0.03
    quote = compute_price(Decimal("0.25"), DateRange(start=date(2024, 1, 1), end=date(2024, 1, 2)))
    assert quote.pricing.tax_amount == Decimal("0.03")
    assert quote.total_amount == Decimal("0.28")


def test_vehicle_without_a_rate_is_not_bookable():
    with pytest.raises(NotBookable):
        compute_price(Decimal("0"), DateRange(start=date(2024, 1, 1), end=date(2024, 1, 2)))


def test_pricing_is_deterministic_over_random_inputs():
    rng = random.Random(20240101)
    for _ in range(300):
        rate = Decimal(rng.randint(1, 50000)) / 100
        start = datetime(2024, 1, 1) + timedelta(days=rng.randint(0, 365), hours=rng.randint(0, 23))
        end = start + timedelta(days=rng.randint(0, 30), hours=rng.randint(1, 23))
        add_ons = [
            LineItem(add_on_ref=f"extra-{i}", name=f"Extra {i}", daily_rate=Decimal(rng.randint(0, 5000)) / 100)
            for i in range(rng.randint(0, 3))
        ]
        date_range = DateRange(start=start, end=end)

        first = compute_price(rate, date_range, add_ons)
        second = compute_price(rate, date_range, list(add_ons))

        assert first == second
        pricing = first.pricing
        assert first.total_amount == round2(pricing.base_amount + pricing.add_ons_amount + pricing.tax_amount)
        assert pricing.base_amount == round2(rate * pricing.total_days)
        assert pricing.tax_amount == round2((pricing.base_amount + pricing.add_ons_amount) * Decimal("0.10"))


def test_line_items_follow_request_order_and_collapse_repeats():
    resolution = AddOnResolution(found=[
        AddOn(id="seat", name="Child Seat", daily_rate=Decimal("12")),
        AddOn(id="gps", name="GPS Navigation", daily_rate=Decimal("10")),
    ])

    items = build_line_items(["gps", "seat", "gps"], resolution)

    assert [(item.add_on_ref, item.quantity) for item in items] == [("gps", 1), ("seat", 1)]
    assert items[0].name == "GPS Navigation"
    assert items[0].daily_rate == Decimal("10")


def test_unresolved_add_on_is_rejected():
    resolution = AddOnResolution(found=[AddOn(id="gps", name="GPS", daily_rate=Decimal("10"))], unresolved=["jetpack"])
    with pytest.raises(UnknownAddOn):
        build_line_items(["gps", "jetpack"], resolution)


def test_disabled_add_on_is_rejected():
    resolution = AddOnResolution(found=[AddOn(id="gps", name="GPS", daily_rate=Decimal("10"), is_bookable=False)])
    with pytest.raises(UnknownAddOn):
        build_line_items(["gps"], resolution)
