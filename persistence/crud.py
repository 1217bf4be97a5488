"""
Reservation store: the persistence boundary of the booking core.

Two implementations share one contract: ``SqlReservationStore`` (SQLAlchemy,
used by the service) and ``InMemoryReservationStore`` (tests, demos). Only the
booking lifecycle manager writes through either of them.
"""
import math
import threading
from contextlib import contextmanager
from typing import Dict, Iterable, List, Optional

from sqlalchemy import or_

from booking_schemas import (
    BLOCKING_STATUSES,
    Cancellation,
    DateRange,
    LineItem,
    Page,
    PageRequest,
    Pricing,
    Reservation,
    ReservationFilters,
    utcnow,
)
from errors import NotFound
from .db import SessionLocal
from .models import ReservationModel, ReservationLineItemModel, new_id

UPDATABLE_FIELDS = {"payment_status", "payment_ref", "payment_intent_ref", "cancellation"}


def model_to_pydantic(row: ReservationModel) -> Reservation:
    cancellation = None
    if row.cancelled_at is not None:
        cancellation = Cancellation(reason=row.cancellation_reason or "", timestamp=row.cancelled_at)
    return Reservation(
        id=row.id,
        customer_ref=row.customer_ref,
        vehicle_ref=row.vehicle_ref,
        date_range=DateRange(start=row.start_at, end=row.end_at),
        pickup_location=row.pickup_location,
        dropoff_location=row.dropoff_location,
        notes=row.notes,
        line_items=[
            LineItem(add_on_ref=it.add_on_ref, name=it.name, daily_rate=it.daily_rate, quantity=it.quantity)
            for it in row.line_items
        ],
        pricing=Pricing(
            base_amount=row.base_amount,
            add_ons_amount=row.add_ons_amount,
            tax_amount=row.tax_amount,
            total_days=row.total_days,
        ),
        total_amount=row.total_amount,
        currency=row.currency,
        status=row.status,
        payment_status=row.payment_status,
        payment_intent_ref=row.payment_intent_ref,
        payment_ref=row.payment_ref,
        cancellation=cancellation,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def pydantic_to_model(reservation: Reservation) -> ReservationModel:
    row = ReservationModel(
        id=reservation.id,
        customer_ref=reservation.customer_ref,
        vehicle_ref=reservation.vehicle_ref,
        start_at=reservation.date_range.start,
        end_at=reservation.date_range.end,
        pickup_location=reservation.pickup_location,
        dropoff_location=reservation.dropoff_location,
        notes=reservation.notes,
        base_amount=reservation.pricing.base_amount,
        add_ons_amount=reservation.pricing.add_ons_amount,
        tax_amount=reservation.pricing.tax_amount,
        total_days=reservation.pricing.total_days,
        total_amount=reservation.total_amount,
        currency=reservation.currency,
        status=reservation.status,
        payment_status=reservation.payment_status,
        payment_intent_ref=reservation.payment_intent_ref,
        payment_ref=reservation.payment_ref,
        created_at=reservation.created_at,
        updated_at=reservation.updated_at,
    )
    row.line_items = [
        ReservationLineItemModel(
            position=position,
            add_on_ref=item.add_on_ref,
            name=item.name,
            daily_rate=item.daily_rate,
            quantity=item.quantity,
        )
        for position, item in enumerate(reservation.line_items)
    ]
    return row


def _apply_fields(row: ReservationModel, fields: dict):
    for name, value in fields.items():
        if name not in UPDATABLE_FIELDS:
            raise ValueError(f"Field cannot be updated after creation: {name}")
        if name == "cancellation":
            row.cancellation_reason = value.reason if value else None
            row.cancelled_at = value.timestamp if value else None
        else:
            setattr(row, name, value)


def _page_of(items: List[Reservation], total: int, page: PageRequest) -> Page:
    return Page(
        items=items,
        page=page.page,
        limit=page.limit,
        total=total,
        pages=math.ceil(total / page.limit) if total else 0,
    )


class SqlReservationStore:
    def __init__(self, session_factory=SessionLocal):
        self.session_factory = session_factory

    @contextmanager
    def _session(self):
        db = self.session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def create(self, reservation: Reservation) -> str:
        reservation.id = reservation.id or new_id()
        with self._session() as db:
            db.add(pydantic_to_model(reservation))
        return reservation.id

    def get(self, reservation_id: str) -> Reservation:
        with self._session() as db:
            row = db.get(ReservationModel, reservation_id)
            if row is None:
                raise NotFound("Booking not found", reservation_id=reservation_id)
            return model_to_pydantic(row)

    def find_by_vehicle_and_range(
        self, vehicle_ref: str, date_range: DateRange, statuses: Iterable[str] = BLOCKING_STATUSES
    ) -> List[Reservation]:
        with self._session() as db:
            rows = (
                db.query(ReservationModel)
                .filter(
                    ReservationModel.vehicle_ref == vehicle_ref,
                    ReservationModel.status.in_(list(statuses)),
                    ReservationModel.start_at <= date_range.end,
                    ReservationModel.end_at >= date_range.start,
                )
                .order_by(ReservationModel.start_at)
                .all()
            )
            return [model_to_pydantic(row) for row in rows]

    def find_by_payment_ref(self, external_ref: str) -> Optional[Reservation]:
        with self._session() as db:
            row = (
                db.query(ReservationModel)
                .filter(or_(ReservationModel.payment_intent_ref == external_ref,
                            ReservationModel.payment_ref == external_ref))
                .first()
            )
            return model_to_pydantic(row) if row else None

    def find_by_customer(self, customer_ref: str, filters: ReservationFilters = None,
                         page: PageRequest = None) -> Page:
        return self._list(filters, page, customer_ref=customer_ref)

    def list_all(self, filters: ReservationFilters = None, page: PageRequest = None) -> Page:
        return self._list(filters, page or PageRequest(limit=20))

    def _list(self, filters, page, customer_ref=None) -> Page:
        filters = filters or ReservationFilters()
        page = page or PageRequest()
        with self._session() as db:
            query = db.query(ReservationModel)
            if customer_ref is not None:
                query = query.filter(ReservationModel.customer_ref == customer_ref)
            if filters.status:
                query = query.filter(ReservationModel.status == filters.status)
            if filters.created_from:
                query = query.filter(ReservationModel.created_at >= filters.created_from)
            if filters.created_to:
                query = query.filter(ReservationModel.created_at <= filters.created_to)
            total = query.count()
            rows = (
                query.order_by(ReservationModel.created_at.desc(), ReservationModel.id)
                .offset((page.page - 1) * page.limit)
                .limit(page.limit)
                .all()
            )
            return _page_of([model_to_pydantic(row) for row in rows], total, page)

    def update_status(self, reservation_id: str, new_status: str, fields: dict = None) -> Reservation:
        with self._session() as db:
            row = self._load_for_update(db, reservation_id)
            row.status = new_status
            _apply_fields(row, fields or {})
            row.updated_at = utcnow()
            db.flush()
            return model_to_pydantic(row)

    def update_fields(self, reservation_id: str, fields: dict) -> Reservation:
        with self._session() as db:
            row = self._load_for_update(db, reservation_id)
            _apply_fields(row, fields)
            row.updated_at = utcnow()
            db.flush()
            return model_to_pydantic(row)

    @staticmethod
    def _load_for_update(db, reservation_id: str) -> ReservationModel:
        row = (
            db.query(ReservationModel)
            .filter(ReservationModel.id == reservation_id)
            .with_for_update()
            .first()
        )
        if row is None:
            raise NotFound("Booking not found", reservation_id=reservation_id)
        return row


class InMemoryReservationStore:
    """Dict-backed store with the same contract; hands out copies, never live records."""

    def __init__(self):
        self._lock = threading.RLock()
        self._rows: Dict[str, Reservation] = {}

    def create(self, reservation: Reservation) -> str:
        with self._lock:
            reservation.id = reservation.id or new_id()
            self._rows[reservation.id] = reservation.model_copy(deep=True)
            return reservation.id

    def get(self, reservation_id: str) -> Reservation:
        with self._lock:
            row = self._rows.get(reservation_id)
            if row is None:
                raise NotFound("Booking not found", reservation_id=reservation_id)
            return row.model_copy(deep=True)

    def find_by_vehicle_and_range(
        self, vehicle_ref: str, date_range: DateRange, statuses: Iterable[str] = BLOCKING_STATUSES
    ) -> List[Reservation]:
        statuses = set(statuses)
        with self._lock:
            rows = [
                r.model_copy(deep=True)
                for r in self._rows.values()
                if r.vehicle_ref == vehicle_ref
                and r.status in statuses
                and r.date_range.start <= date_range.end
                and r.date_range.end >= date_range.start
            ]
        return sorted(rows, key=lambda r: r.date_range.start)

    def find_by_payment_ref(self, external_ref: str) -> Optional[Reservation]:
        with self._lock:
            for row in self._rows.values():
                if external_ref in (row.payment_intent_ref, row.payment_ref):
                    return row.model_copy(deep=True)
        return None

    def find_by_customer(self, customer_ref: str, filters: ReservationFilters = None,
                         page: PageRequest = None) -> Page:
        return self._list(filters, page, customer_ref=customer_ref)

    def list_all(self, filters: ReservationFilters = None, page: PageRequest = None) -> Page:
        return self._list(filters, page or PageRequest(limit=20))

    def _list(self, filters, page, customer_ref=None) -> Page:
        filters = filters or ReservationFilters()
        page = page or PageRequest()
        with self._lock:
            rows = [r.model_copy(deep=True) for r in self._rows.values()]
        if customer_ref is not None:
            rows = [r for r in rows if r.customer_ref == customer_ref]
        if filters.status:
            rows = [r for r in rows if r.status == filters.status]
        if filters.created_from:
            rows = [r for r in rows if r.created_at >= filters.created_from]
        if filters.created_to:
            rows = [r for r in rows if r.created_at <= filters.created_to]
        rows.sort(key=lambda r: r.id)
        rows.sort(key=lambda r: r.created_at, reverse=True)
        start = (page.page - 1) * page.limit
        return _page_of(rows[start:start + page.limit], len(rows), page)

    def update_status(self, reservation_id: str, new_status: str, fields: dict = None) -> Reservation:
        with self._lock:
            return self._write(reservation_id, dict(fields or {}, status=new_status))

    def update_fields(self, reservation_id: str, fields: dict) -> Reservation:
        with self._lock:
            return self._write(reservation_id, dict(fields))

    def _write(self, reservation_id: str, fields: dict) -> Reservation:
        row = self._rows.get(reservation_id)
        if row is None:
            raise NotFound("Booking not found", reservation_id=reservation_id)
        for name in fields:
            if name != "status" and name not in UPDATABLE_FIELDS:
                raise ValueError(f"Field cannot be updated after creation: {name}")
        # build the whole new record before swapping it in
        updated = row.model_copy(update=dict(fields, updated_at=utcnow()), deep=True)
        self._rows[reservation_id] = updated
        return updated.model_copy(deep=True)
