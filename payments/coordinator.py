import logging
import time
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from booking_schemas import Actor, PaymentIntent, PaymentNotification, Reservation
from config import Config
from errors import (
    AlreadyPaid,
    BookingError,
    Forbidden,
    InvalidTransition,
    NotFound,
    NotPaid,
    ProcessorUnavailable,
    RefundFailed,
)

logger = logging.getLogger(__name__)


def to_minor_units(amount: Decimal) -> int:
    # processors expect cents
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PaymentCoordinator:
    """
    Bridges the booking lifecycle to the external payment processor.

    Outcomes from synchronous ``confirm`` calls and from webhook notifications go
    through the same idempotent path (``BookingLifecycleManager.mark_paid`` /
    ``mark_payment_failed``), so duplicates and late arrivals collapse into a
    single applied outcome and a failure never overwrites a paid booking.
    """

    def __init__(self, manager, processor, audit=None, max_retries: int = None,
                 retry_backoff: float = None, sleep=time.sleep):
        self.manager = manager
        self.store = manager.store
        self.processor = processor
        self.audit = audit
        self.max_retries = Config.PROCESSOR_MAX_RETRIES if max_retries is None else max_retries
        self.retry_backoff = Config.PROCESSOR_RETRY_BACKOFF_SECONDS if retry_backoff is None else retry_backoff
        self.sleep = sleep

    def initiate(self, reservation_id: str, actor: Actor) -> PaymentIntent:
        reservation = self.store.get(reservation_id)
        if reservation.customer_ref != actor.ref:
            raise Forbidden("Not authorized to pay for this booking", actor_ref=actor.ref)
        if reservation.payment_status == "paid":
            raise AlreadyPaid("Booking is already paid", reservation_id=reservation_id)
        if reservation.status in ("cancelled", "completed"):
            raise InvalidTransition(reservation.status, "confirmed",
                                    f"Cannot pay for a {reservation.status} booking")

        amount_minor = to_minor_units(reservation.total_amount)
        intent = self._call(self.processor.open_intent, amount_minor, reservation.currency, {
            "reservation_id": reservation_id,
            "customer_ref": reservation.customer_ref,
            "vehicle_ref": reservation.vehicle_ref,
        })
        self.manager.record_payment_intent(reservation_id, intent.ref)

        logger.info(f"Payment intent {intent.ref} opened for booking {reservation_id}, {amount_minor} minor units")
        self._emit("PAYMENT_INITIATED", actor.ref, reservation_id, {
            "amount": str(reservation.total_amount),
            "payment_intent_ref": intent.ref,
        })
        return intent

    def confirm(self, reservation_id: str, external_ref: str, actor: Actor = None) -> Reservation:
        reservation = self.store.get(reservation_id)
        if actor is not None and reservation.customer_ref != actor.ref and not actor.is_admin:
            raise Forbidden("Not authorized to confirm payment for this booking", actor_ref=actor.ref)
        if reservation.payment_status == "paid" and reservation.payment_ref == external_ref:
            return reservation

        intent = self._call(self.processor.query_intent, external_ref)
        owner = intent.metadata.get("reservation_id")
        if owner and owner != reservation_id:
            raise Forbidden("Payment does not belong to this booking", payment_ref=external_ref)
        return self._apply(reservation_id, external_ref, intent.status, actor.ref if actor else None)

    def notify_async(self, notification: PaymentNotification) -> Optional[Reservation]:
        """
        Apply a webhook notification. Unknown references are logged and dropped.
        A success is only applied once the processor itself reports the intent as
        succeeded for this booking.
        """
        reservation = self.store.find_by_payment_ref(notification.external_ref)
        if reservation is None and notification.reservation_id:
            try:
                reservation = self.store.get(notification.reservation_id)
            except NotFound:
                reservation = None
        if reservation is None:
            logger.warning(f"Payment notification for unknown reference {notification.external_ref}")
            return None

        outcome = notification.outcome
        if outcome == "succeeded" and reservation.payment_ref != notification.external_ref:
            intent = self._call(self.processor.query_intent, notification.external_ref)
            owner = intent.metadata.get("reservation_id")
            if intent.status != "succeeded" or (owner and owner != reservation.id):
                logger.warning(
                    f"Ignoring success notification for {notification.external_ref}: "
                    f"processor reports {intent.status} for booking {owner or reservation.id}"
                )
                return reservation
        return self._apply(reservation.id, notification.external_ref, outcome, "payment-processor")

    def refund(self, reservation_id: str, actor: Actor) -> Reservation:
        if not actor.is_admin:
            raise Forbidden("Not authorized to refund bookings", actor_ref=actor.ref)

        reservation = self.store.get(reservation_id)
        if reservation.payment_status != "paid":
            raise NotPaid("Cannot refund unpaid booking", reservation_id=reservation_id)
        # processor call runs unlocked; mark_refunded re-checks the payment state
        result = self._call(self.processor.refund, reservation.payment_ref or reservation.payment_intent_ref)
        if not result.succeeded:
            logger.warning(f"Refund declined for booking {reservation_id}: {result.raw}")
            raise RefundFailed("Refund failed", reservation_id=reservation_id)
        updated, applied = self.manager.mark_refunded(reservation_id)

        if applied:
            self._emit("PAYMENT_REFUND", actor.ref, reservation_id, {"refund_ref": result.refund_ref})
        return updated

    def payment_status(self, reservation_id: str, actor: Actor) -> dict:
        reservation = self.store.get(reservation_id)
        if reservation.customer_ref != actor.ref and not actor.is_admin:
            raise Forbidden("Not authorized", actor_ref=actor.ref)

        processor_status = None
        if reservation.payment_intent_ref:
            try:
                processor_status = self.processor.query_intent(reservation.payment_intent_ref).status
            except BookingError as e:
                logger.error(f"Error fetching payment intent {reservation.payment_intent_ref}: {e}")
        return {
            "reservation_id": reservation.id,
            "payment_status": reservation.payment_status,
            "processor_status": processor_status,
            "amount": reservation.total_amount,
        }

    def _apply(self, reservation_id: str, external_ref: str, outcome: str, actor_ref: Optional[str]) -> Reservation:
        if outcome == "succeeded":
            updated, applied = self.manager.mark_paid(reservation_id, external_ref)
            if applied:
                self._emit("PAYMENT_SUCCESS", actor_ref, reservation_id, {
                    "amount": str(updated.total_amount),
                    "payment_ref": external_ref,
                })
            return updated
        if outcome == "failed":
            updated, applied = self.manager.mark_payment_failed(reservation_id, external_ref)
            if applied:
                self._emit("PAYMENT_FAILED", actor_ref, reservation_id, {"payment_ref": external_ref})
            return updated
        return self.store.get(reservation_id)

    def _call(self, operation, *args):
        attempts = self.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return operation(*args)
            except ProcessorUnavailable:
                if attempt == attempts:
                    raise
                logger.warning(f"Payment processor unavailable (attempt {attempt}/{attempts}), retrying")
                self.sleep(self.retry_backoff * attempt)

    def _emit(self, action: str, actor_ref: Optional[str], reservation_id: str, details: dict):
        if self.audit is not None:
            self.audit.emit(action, actor_ref=actor_ref, reservation_id=reservation_id, details=details)
