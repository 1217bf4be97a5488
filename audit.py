"""
Audit trail delivery.

The booking core emits discrete ``AuditEvent``s through an ``AuditEmitter``.
Delivery is fire-and-forget: a slow or broken sink is logged locally and never
reaches the caller of the booking operation.
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import List

from booking_schemas import AuditEvent
from persistence.db import SessionLocal
from persistence.models import AuditLogModel

logger = logging.getLogger(__name__)


class LoggingAuditSink:
    def write(self, event: AuditEvent):
        logger.info(
            f"audit {event.action} reservation={event.reservation_id} actor={event.actor_ref} details={event.details}"
        )


class InMemoryAuditSink:
    def __init__(self):
        self._lock = threading.Lock()
        self.events: List[AuditEvent] = []

    def write(self, event: AuditEvent):
        with self._lock:
            self.events.append(event)

    def actions(self) -> List[str]:
        with self._lock:
            return [e.action for e in self.events]


class SqlAuditSink:
    def __init__(self, session_factory=SessionLocal):
        self.session_factory = session_factory

    def write(self, event: AuditEvent):
        db = self.session_factory()
        try:
            db.add(AuditLogModel(
                action=event.action,
                resource=event.resource,
                actor_ref=event.actor_ref,
                reservation_id=event.reservation_id,
                details=event.model_dump(mode="json")["details"],
                created_at=event.created_at,
            ))
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


class AuditEmitter:
    """
    Hands events to a sink. With an executor (the default for the service) the
    write happens on a worker thread; without one it happens inline. Either way
    sink failures are logged and swallowed.
    """

    def __init__(self, sink, executor: ThreadPoolExecutor = None):
        self.sink = sink
        self.executor = executor

    @classmethod
    def threaded(cls, sink, workers: int = 2) -> "AuditEmitter":
        return cls(sink, ThreadPoolExecutor(max_workers=workers, thread_name_prefix="audit"))

    def emit(self, action: str, actor_ref: str = None, reservation_id: str = None,
             details: dict = None, resource: str = None):
        try:
            event = AuditEvent(
                action=action,
                actor_ref=actor_ref,
                reservation_id=reservation_id,
                resource=resource or ("payment" if action.startswith("PAYMENT") else "booking"),
                details=details or {},
            )
            if self.executor is None:
                self._deliver(event)
            else:
                self.executor.submit(self._deliver, event)
        except Exception:
            logger.exception(f"Failed to queue audit event {action} for reservation {reservation_id}")

    def _deliver(self, event: AuditEvent):
        try:
            self.sink.write(event)
        except Exception:
            logger.exception(f"Audit sink failed for {event.action} on reservation {event.reservation_id}")

    def shutdown(self, wait: bool = True):
        if self.executor is not None:
            self.executor.shutdown(wait=wait)
