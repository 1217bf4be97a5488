"""
Caller-facing operation surface of the booking core.

Every operation returns an ``OperationResult``: either ``success=True`` with
``data``, or ``success=False`` with an ``error`` whose ``kind`` is one of the
booking error kinds. Unexpected exceptions are logged and reported as
``InternalError``; nothing escapes as a raw exception.
"""
import logging
from typing import Any, Optional, Sequence

from pydantic import BaseModel, Field

from audit import AuditEmitter, SqlAuditSink
from booking_manager import BookingLifecycleManager
from booking_schemas import Actor, DateRange, PageRequest, PaymentNotification, ReservationFilters
from catalog import SqlCatalog
from config import Config
from errors import BookingError
from locks import LockRegistry
from payments.coordinator import PaymentCoordinator
from payments.processor import build_processor
from persistence.crud import SqlReservationStore
from persistence.db import SessionLocal

logger = logging.getLogger(__name__)


class ErrorInfo(BaseModel):
    kind: str
    message: str
    details: dict = Field(default_factory=dict)


class OperationResult(BaseModel):
    success: bool
    data: Any = None
    error: Optional[ErrorInfo] = None


class BookingService:
    def __init__(self, manager: BookingLifecycleManager, payments: PaymentCoordinator, audit: AuditEmitter = None):
        self.manager = manager
        self.payments = payments
        self.audit = audit

    @classmethod
    def from_config(cls, session_factory=SessionLocal, processor=None, audit_sink=None) -> "BookingService":
        audit = AuditEmitter.threaded(audit_sink or SqlAuditSink(session_factory), workers=Config.AUDIT_WORKERS)
        catalog = SqlCatalog(session_factory)
        manager = BookingLifecycleManager(
            store=SqlReservationStore(session_factory),
            vehicle_catalog=catalog,
            add_on_catalog=catalog,
            audit=audit,
            locks=LockRegistry(),
        )
        payments = PaymentCoordinator(manager, processor or build_processor(), audit=audit)
        return cls(manager, payments, audit)

    def shutdown(self):
        if self.audit is not None:
            self.audit.shutdown()

    def _run(self, name: str, operation, *args, **kwargs) -> OperationResult:
        try:
            return OperationResult(success=True, data=operation(*args, **kwargs))
        except BookingError as e:
            logger.info(f"{name} failed: {e.kind}: {e.message}")
            return OperationResult(success=False, error=ErrorInfo(kind=e.kind, message=e.message, details=e.details))
        except Exception:
            logger.exception(f"Unexpected failure in {name}")
            return OperationResult(success=False, error=ErrorInfo(kind="InternalError", message="Internal error"))

    # bookings

    def create_booking(self, actor: Actor, vehicle_ref: str, date_range: DateRange,
                       add_on_refs: Sequence[str] = (), pickup_location: str = None,
                       dropoff_location: str = None, notes: str = None) -> OperationResult:
        return self._run("create_booking", self.manager.create_booking, actor.ref, vehicle_ref, date_range,
                         add_on_refs, pickup_location, dropoff_location, notes)

    def cancel_booking(self, reservation_id: str, actor: Actor, reason: str = None) -> OperationResult:
        return self._run("cancel_booking", self.manager.cancel_booking, reservation_id, actor, reason)

    def set_status(self, reservation_id: str, new_status: str, actor: Actor) -> OperationResult:
        return self._run("set_status", self.manager.set_status, reservation_id, new_status, actor)

    def preview_price(self, vehicle_ref: str, date_range: DateRange,
                      add_on_refs: Sequence[str] = ()) -> OperationResult:
        return self._run("preview_price", self.manager.preview_price, vehicle_ref, date_range, add_on_refs)

    def get_booking(self, reservation_id: str, actor: Actor) -> OperationResult:
        return self._run("get_booking", self.manager.get_booking, reservation_id, actor)

    def list_my_bookings(self, actor: Actor, filters: ReservationFilters = None,
                         page: PageRequest = None) -> OperationResult:
        return self._run("list_my_bookings", self.manager.list_customer_bookings, actor, filters, page)

    def list_all_bookings(self, actor: Actor, filters: ReservationFilters = None,
                          page: PageRequest = None) -> OperationResult:
        return self._run("list_all_bookings", self.manager.list_all_bookings, actor, filters, page)

    # payments

    def initiate_payment(self, reservation_id: str, actor: Actor) -> OperationResult:
        return self._run("initiate_payment", self.payments.initiate, reservation_id, actor)

    def confirm_payment(self, reservation_id: str, external_ref: str, actor: Actor = None) -> OperationResult:
        return self._run("confirm_payment", self.payments.confirm, reservation_id, external_ref, actor)

    def notify_payment(self, notification: PaymentNotification) -> OperationResult:
        return self._run("notify_payment", self.payments.notify_async, notification)

    def refund_payment(self, reservation_id: str, actor: Actor) -> OperationResult:
        return self._run("refund_payment", self.payments.refund, reservation_id, actor)

    def payment_status(self, reservation_id: str, actor: Actor) -> OperationResult:
        return self._run("payment_status", self.payments.payment_status, reservation_id, actor)
