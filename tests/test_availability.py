from datetime import date
from decimal import Decimal

import pytest

from availability import AvailabilityChecker, ranges_overlap
from booking_schemas import DateRange, Pricing, Reservation
from persistence.crud import InMemoryReservationStore


def span(start, end):
    return DateRange(start=start, end=end)


def seed(store, vehicle_ref, start, end, status="pending"):
    reservation = Reservation(
        customer_ref="cust-1",
        vehicle_ref=vehicle_ref,
        date_range=span(start, end),
        pricing=Pricing(base_amount=Decimal("40"), total_days=(end - start).days),
        total_amount=Decimal("44.00"),
        status=status,
    )
    store.create(reservation)
    return reservation


@pytest.mark.parametrize("a,b,expected", [
    (span(date(2030, 11, 1), date(2030, 11, 5)), span(date(2030, 11, 3), date(2030, 11, 7)), True),
    (span(date(2030, 11, 1), date(2030, 11, 5)), span(date(2030, 11, 2), date(2030, 11, 3)), True),
    # checkout day and next check-in on the same day conflict
    (span(date(2030, 11, 1), date(2030, 11, 5)), span(date(2030, 11, 5), date(2030, 11, 8)), True),
    (span(date(2030, 11, 1), date(2030, 11, 5)), span(date(2030, 11, 6), date(2030, 11, 10)), False),
    (span(date(2030, 11, 6), date(2030, 11, 10)), span(date(2030, 11, 1), date(2030, 11, 5)), False),
])
def test_ranges_overlap(a, b, expected):
    assert ranges_overlap(a, b) is expected
    assert ranges_overlap(b, a) is expected


def test_active_reservation_blocks_overlapping_range():
    store = InMemoryReservationStore()
    existing = seed(store, "car-1", date(2030, 11, 1), date(2030, 11, 5), status="active")
    checker = AvailabilityChecker(store)

    conflict = checker.find_conflict("car-1", span(date(2030, 11, 3), date(2030, 11, 7)))

    assert conflict is not None
    assert conflict.id == existing.id
    assert not checker.is_available("car-1", span(date(2030, 11, 3), date(2030, 11, 7)))


@pytest.mark.parametrize("status", ["completed", "cancelled"])
def test_closed_reservations_never_block(status):
    store = InMemoryReservationStore()
    seed(store, "car-1", date(2030, 11, 1), date(2030, 11, 5), status=status)

    assert AvailabilityChecker(store).is_available("car-1", span(date(2030, 11, 1), date(2030, 11, 5)))


def test_other_vehicles_do_not_block():
    store = InMemoryReservationStore()
    seed(store, "car-1", date(2030, 11, 1), date(2030, 11, 5))

    assert AvailabilityChecker(store).is_available("car-2", span(date(2030, 11, 1), date(2030, 11, 5)))
