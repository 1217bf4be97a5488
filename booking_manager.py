import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence, Tuple

from availability import AvailabilityChecker
from booking_schemas import (
    RESERVATION_STATUSES,
    Actor,
    Cancellation,
    DateRange,
    Page,
    PageRequest,
    PriceQuote,
    Reservation,
    ReservationFilters,
    utcnow,
)
from config import Config
from errors import (
    AlreadyPaid,
    Conflict,
    Forbidden,
    InvalidRange,
    InvalidStatus,
    InvalidTransition,
    NotBookable,
    NotFound,
    NotPaid,
    ValidationFailed,
)
from locks import LockRegistry
from pricing import build_line_items, compute_price

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    "pending": {"confirmed", "cancelled"},
    "confirmed": {"active", "cancelled"},
    "active": {"completed", "cancelled"},
    "completed": set(),
    "cancelled": set(),
}


def validate_transition(current: str, target: str):
    if target not in ALLOWED_TRANSITIONS.get(current, set()):
        if target == "cancelled":
            raise InvalidTransition(current, target, f"Cannot cancel a {current} booking")
        raise InvalidTransition(current, target)


def validate_booking_input(date_range: DateRange, notes: Optional[str] = None):
    """Boundary checks for a new booking, before any catalog or store access."""
    if date_range.end <= date_range.start:
        raise InvalidRange(
            "End date must be after start date",
            start=date_range.start.isoformat(),
            end=date_range.end.isoformat(),
        )
    if notes is not None and len(notes) > Config.MAX_NOTES_LENGTH:
        raise ValidationFailed(f"Notes cannot exceed {Config.MAX_NOTES_LENGTH} characters")


def validate_start_not_past(date_range: DateRange, now: datetime):
    """New bookings may start today at the earliest; previews are not checked."""
    if date_range.start.date() < now.date():
        raise InvalidRange("Start date cannot be in the past", start=date_range.start.isoformat())


class BookingLifecycleManager:
    """
    Creates bookings and moves them through their status lifecycle.

    This is the only writer of reservation status and payment fields. Creation
    holds the vehicle lock across the conflict check and the insert; every
    later write holds the reservation lock across read, validation and write.
    Payment fields are written through the ``record_payment_intent`` /
    ``mark_*`` methods, which the payment coordinator calls.
    """

    def __init__(self, store, vehicle_catalog, add_on_catalog=None, audit=None,
                 locks: LockRegistry = None, tax_rate: Decimal = None, currency: str = None,
                 clock=utcnow):
        self.store = store
        self.vehicle_catalog = vehicle_catalog
        self.add_on_catalog = add_on_catalog or vehicle_catalog
        self.availability = AvailabilityChecker(store)
        self.audit = audit
        self.locks = LockRegistry() if locks is None else locks
        self.tax_rate = tax_rate
        self.currency = currency or Config.CURRENCY
        self.clock = clock

    # ------------------------------------------------------------------ queries

    def preview_price(self, vehicle_ref: str, date_range: DateRange,
                      add_on_refs: Sequence[str] = ()) -> PriceQuote:
        validate_booking_input(date_range)
        vehicle = self._resolve_vehicle(vehicle_ref)
        return self._quote(vehicle, date_range, add_on_refs)

    def get_booking(self, reservation_id: str, actor: Actor) -> Reservation:
        reservation = self.store.get(reservation_id)
        self._authorize_owner_or_admin(reservation, actor, "view")
        return reservation

    def list_customer_bookings(self, actor: Actor, filters: ReservationFilters = None,
                               page: PageRequest = None) -> Page:
        return self.store.find_by_customer(actor.ref, filters, page)

    def list_all_bookings(self, actor: Actor, filters: ReservationFilters = None,
                          page: PageRequest = None) -> Page:
        self._require_admin(actor, "list all bookings")
        return self.store.list_all(filters, page)

    # ------------------------------------------------------------------ writes

    def create_booking(self, customer_ref: str, vehicle_ref: str, date_range: DateRange,
                       add_on_refs: Sequence[str] = (), pickup_location: str = None,
                       dropoff_location: str = None, notes: str = None) -> Reservation:
        validate_booking_input(date_range, notes)
        validate_start_not_past(date_range, self.clock())
        vehicle = self._resolve_vehicle(vehicle_ref)

        with self.locks.vehicle(vehicle_ref):
            conflict = self.availability.find_conflict(vehicle_ref, date_range)
            if conflict is not None:
                logger.info(f"Booking conflict on vehicle {vehicle_ref} with reservation {conflict.id}")
                raise Conflict(
                    "Car is already booked for these dates",
                    vehicle_ref=vehicle_ref,
                    conflicting_reservation_id=conflict.id,
                )

            quote = self._quote(vehicle, date_range, add_on_refs)
            reservation = Reservation(
                customer_ref=customer_ref,
                vehicle_ref=vehicle_ref,
                date_range=date_range,
                pickup_location=pickup_location or Config.DEFAULT_LOCATION,
                dropoff_location=dropoff_location or Config.DEFAULT_LOCATION,
                notes=notes,
                line_items=quote.line_items,
                pricing=quote.pricing,
                total_amount=quote.total_amount,
                currency=quote.currency,
                status="pending",
                payment_status="pending",
            )
            reservation_id = self.store.create(reservation)

        created = self.store.get(reservation_id)
        logger.info(f"Booking created: {reservation_id}, vehicle {vehicle_ref}, total {created.total_amount}")
        self._emit("BOOKING_CREATE", customer_ref, reservation_id, {
            "vehicle_ref": vehicle_ref,
            "start": date_range.start.isoformat(),
            "end": date_range.end.isoformat(),
            "total_amount": str(created.total_amount),
        })
        return created

    def cancel_booking(self, reservation_id: str, actor: Actor, reason: str = None) -> Reservation:
        with self.locks.reservation(reservation_id):
            reservation = self.store.get(reservation_id)
            self._authorize_owner_or_admin(reservation, actor, "cancel")
            validate_transition(reservation.status, "cancelled")
            updated = self.store.update_status(reservation_id, "cancelled", {
                "cancellation": Cancellation(reason=reason or "Cancelled by user", timestamp=utcnow()),
            })
        logger.info(f"Booking cancelled: {reservation_id} by {actor.ref}")
        self._emit("BOOKING_CANCEL", actor.ref, reservation_id, {"reason": reason})
        return updated

    def set_status(self, reservation_id: str, new_status: str, actor: Actor) -> Reservation:
        self._require_admin(actor, "change booking status")
        if new_status not in RESERVATION_STATUSES:
            raise InvalidStatus(f"Invalid status: {new_status}", status=new_status)

        with self.locks.reservation(reservation_id):
            reservation = self.store.get(reservation_id)
            previous_status = reservation.status
            validate_transition(previous_status, new_status)
            fields = {}
            if new_status == "cancelled":
                fields["cancellation"] = Cancellation(reason="Cancelled by admin", timestamp=utcnow())
            updated = self.store.update_status(reservation_id, new_status, fields)

        logger.info(f"Booking {reservation_id} status {previous_status} -> {new_status} by {actor.ref}")
        self._emit("BOOKING_UPDATE", actor.ref, reservation_id, {
            "previous_status": previous_status,
            "new_status": new_status,
        })
        return updated

    # ------------------------------------------------------------------ payment write path

    def record_payment_intent(self, reservation_id: str, intent_ref: str) -> Reservation:
        with self.locks.reservation(reservation_id):
            reservation = self.store.get(reservation_id)
            if reservation.payment_status == "paid":
                raise AlreadyPaid("Booking is already paid", reservation_id=reservation_id)
            return self.store.update_fields(reservation_id, {"payment_intent_ref": intent_ref})

    def mark_paid(self, reservation_id: str, payment_ref: str) -> Tuple[Reservation, bool]:
        """Record a successful charge. Returns the reservation and whether anything changed."""
        with self.locks.reservation(reservation_id):
            reservation = self.store.get(reservation_id)
            if reservation.payment_status in ("paid", "refunded"):
                return reservation, False
            fields = {"payment_status": "paid", "payment_ref": payment_ref}
            if reservation.status == "pending":
                updated = self.store.update_status(reservation_id, "confirmed", fields)
            else:
                updated = self.store.update_fields(reservation_id, fields)
        logger.info(f"Booking {reservation_id} paid ({payment_ref}), status {updated.status}")
        return updated, True

    def mark_payment_failed(self, reservation_id: str, external_ref: str) -> Tuple[Reservation, bool]:
        """
        Record a failed charge without touching the booking status. Failures for an
        intent other than the current one, or arriving after the booking was paid
        or refunded, are ignored.
        """
        with self.locks.reservation(reservation_id):
            reservation = self.store.get(reservation_id)
            if reservation.payment_status in ("paid", "refunded", "failed"):
                return reservation, False
            if reservation.payment_intent_ref and reservation.payment_intent_ref != external_ref:
                logger.info(f"Ignoring failure for stale intent {external_ref} on booking {reservation_id}")
                return reservation, False
            updated = self.store.update_fields(reservation_id, {"payment_status": "failed"})
        logger.info(f"Booking {reservation_id} payment failed ({external_ref})")
        return updated, True

    def mark_refunded(self, reservation_id: str) -> Tuple[Reservation, bool]:
        """
        Record a refund the processor already accepted. A booking refunded in the
        meantime is returned unchanged; one that is no longer paid raises NotPaid.
        """
        with self.locks.reservation(reservation_id):
            reservation = self.store.get(reservation_id)
            if reservation.payment_status == "refunded":
                return reservation, False
            if reservation.payment_status != "paid":
                raise NotPaid("Cannot refund unpaid booking", reservation_id=reservation_id)
            fields = {"payment_status": "refunded"}
            if "cancelled" in ALLOWED_TRANSITIONS[reservation.status]:
                fields["cancellation"] = Cancellation(reason="Refunded", timestamp=utcnow())
                updated = self.store.update_status(reservation_id, "cancelled", fields)
            else:
                updated = self.store.update_fields(reservation_id, fields)
        logger.info(f"Booking {reservation_id} refunded, status {updated.status}")
        return updated, True

    # ------------------------------------------------------------------ helpers

    def _resolve_vehicle(self, vehicle_ref: str):
        vehicle = self.vehicle_catalog.resolve_vehicle(vehicle_ref)
        if vehicle is None:
            raise NotFound("Car not found", vehicle_ref=vehicle_ref)
        if not vehicle.is_bookable:
            raise NotBookable("Car is not available for booking", vehicle_ref=vehicle_ref)
        return vehicle

    def _quote(self, vehicle, date_range: DateRange, add_on_refs: Sequence[str]) -> PriceQuote:
        add_on_refs = list(add_on_refs or ())
        line_items = []
        if add_on_refs:
            resolution = self.add_on_catalog.resolve_add_ons(add_on_refs)
            line_items = build_line_items(add_on_refs, resolution)
        quote = compute_price(vehicle.daily_rate, date_range, line_items,
                              tax_rate=self.tax_rate, currency=self.currency)
        quote.vehicle_ref = vehicle.id
        return quote

    @staticmethod
    def _require_admin(actor: Actor, action: str):
        if not actor.is_admin:
            raise Forbidden(f"Not authorized to {action}", actor_ref=actor.ref)

    @staticmethod
    def _authorize_owner_or_admin(reservation: Reservation, actor: Actor, action: str):
        if reservation.customer_ref != actor.ref and not actor.is_admin:
            raise Forbidden(f"Not authorized to {action} this booking", actor_ref=actor.ref)

    def _emit(self, action: str, actor_ref: str, reservation_id: str, details: dict):
        if self.audit is not None:
            self.audit.emit(action, actor_ref=actor_ref, reservation_id=reservation_id, details=details)
