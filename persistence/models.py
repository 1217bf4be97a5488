import uuid

from sqlalchemy import Column, Integer, String, Numeric, Text, ForeignKey, JSON, DateTime, Boolean, Index
from sqlalchemy.orm import relationship

from booking_schemas import utcnow
from .db import Base


def new_id() -> str:
    return uuid.uuid4().hex


class ReservationModel(Base):
    __tablename__ = "reservations"

    id = Column(String(32), primary_key=True, default=new_id)
    customer_ref = Column(String, nullable=False, index=True)
    vehicle_ref = Column(String, nullable=False, index=True)
    start_at = Column(DateTime, nullable=False)
    end_at = Column(DateTime, nullable=False)
    pickup_location = Column(String, default="Main Office")
    dropoff_location = Column(String, default="Main Office")
    notes = Column(Text, nullable=True)

    # pricing snapshot, written once at creation
    base_amount = Column(Numeric(12, 2), nullable=False)
    add_ons_amount = Column(Numeric(12, 2), default=0)
    tax_amount = Column(Numeric(12, 2), default=0)
    total_days = Column(Integer, nullable=False)
    total_amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(8), default="usd")

    status = Column(String(32), default="pending", nullable=False)
    payment_status = Column(String(32), default="pending", nullable=False)
    payment_intent_ref = Column(String, nullable=True, index=True)
    payment_ref = Column(String, nullable=True, index=True)
    cancellation_reason = Column(String, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    line_items = relationship(
        "ReservationLineItemModel",
        back_populates="reservation",
        cascade="all, delete-orphan",
        order_by="ReservationLineItemModel.position",
        lazy="selectin",
    )

    __table_args__ = (
        Index("ix_reservations_vehicle_range", "vehicle_ref", "start_at", "end_at"),
        Index("ix_reservations_customer_status", "customer_ref", "status"),
        Index("ix_reservations_status_created", "status", "created_at"),
    )


class ReservationLineItemModel(Base):
    __tablename__ = "reservation_line_items"

    id = Column(Integer, primary_key=True, index=True)
    reservation_id = Column(String(32), ForeignKey("reservations.id", ondelete="CASCADE"), index=True)
    position = Column(Integer, nullable=False, default=0)
    add_on_ref = Column(String, nullable=False)
    name = Column(String, nullable=False)
    daily_rate = Column(Numeric(12, 2), nullable=False)
    quantity = Column(Integer, default=1)

    reservation = relationship("ReservationModel", back_populates="line_items")


class VehicleModel(Base):
    __tablename__ = "vehicles"

    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    daily_rate = Column(Numeric(12, 2), nullable=False)
    is_bookable = Column(Boolean, default=True)


class AddOnModel(Base):
    __tablename__ = "add_ons"

    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False, unique=True)
    daily_rate = Column(Numeric(12, 2), nullable=False)
    is_bookable = Column(Boolean, default=True)


class AuditLogModel(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    action = Column(String(32), nullable=False, index=True)
    resource = Column(String(32), nullable=False)
    actor_ref = Column(String, nullable=True, index=True)
    reservation_id = Column(String(32), nullable=True, index=True)
    details = Column(JSON, default=dict)
    created_at = Column(DateTime, default=utcnow, index=True)
