from typing import Optional

from booking_schemas import BLOCKING_STATUSES, DateRange, Reservation


def ranges_overlap(a: DateRange, b: DateRange) -> bool:
    """
    Inclusive overlap: a booking that ends on the day another one starts still
    conflicts with it (no same-day turnover).
    """
    return a.start <= b.end and b.start <= a.end


class AvailabilityChecker:
    """
    Answers whether a vehicle is free for a date range, based on the reservations
    currently in the store. Only pending, confirmed and active reservations block.

    The answer is only as fresh as the read; callers that go on to insert must
    hold the vehicle lock across check and insert.
    """

    def __init__(self, store):
        self.store = store

    def find_conflict(self, vehicle_ref: str, date_range: DateRange) -> Optional[Reservation]:
        candidates = self.store.find_by_vehicle_and_range(vehicle_ref, date_range, statuses=BLOCKING_STATUSES)
        for reservation in candidates:
            # a store may return a superset of the overlapping rows
            if reservation.status in BLOCKING_STATUSES and ranges_overlap(reservation.date_range, date_range):
                return reservation
        return None

    def is_available(self, vehicle_ref: str, date_range: DateRange) -> bool:
        return self.find_conflict(vehicle_ref, date_range) is None
