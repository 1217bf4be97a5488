from datetime import date, datetime, time, timezone
from decimal import Decimal
from pydantic import BaseModel, Field, field_validator
from typing import List, Literal, Optional


ReservationStatus = Literal["pending", "confirmed", "active", "completed", "cancelled"]
PaymentStatus = Literal["pending", "paid", "refunded", "failed"]

RESERVATION_STATUSES = ("pending", "confirmed", "active", "completed", "cancelled")
PAYMENT_STATUSES = ("pending", "paid", "refunded", "failed")
# statuses that hold a vehicle for their date range
BLOCKING_STATUSES = ("pending", "confirmed", "active")


def utcnow() -> datetime:
    """Naive UTC timestamp; every stored datetime in the booking core is naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def coerce_calendar_date(value):
    """Plain dates (objects or YYYY-MM-DD strings) become midnight datetimes."""
    if isinstance(value, str) and len(value) == 10:
        value = date.fromisoformat(value)
    if isinstance(value, date) and not isinstance(value, datetime):
        return datetime.combine(value, time.min)
    return value


class DateRange(BaseModel):
    start: datetime
    end: datetime

    @field_validator("start", "end", mode="before")
    @classmethod
    def _coerce_calendar_dates(cls, value):
        return coerce_calendar_date(value)

    @field_validator("start", "end")
    @classmethod
    def _to_naive_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value


class LineItem(BaseModel):
    add_on_ref: str
    name: str                    # snapshot of the catalog name at booking time
    daily_rate: Decimal          # snapshot of the catalog rate at booking time
    quantity: int = 1


class Pricing(BaseModel):
    base_amount: Decimal
    add_ons_amount: Decimal = Decimal("0.00")
    tax_amount: Decimal = Decimal("0.00")
    total_days: int


class PriceQuote(BaseModel):
    vehicle_ref: Optional[str] = None
    daily_rate: Decimal
    pricing: Pricing
    line_items: List[LineItem] = Field(default_factory=list)
    total_amount: Decimal
    currency: str = "usd"


class Cancellation(BaseModel):
    reason: str
    timestamp: datetime


class Reservation(BaseModel):
    id: Optional[str] = None     # assigned by the store
    customer_ref: str
    vehicle_ref: str
    date_range: DateRange
    pickup_location: str = "Main Office"
    dropoff_location: str = "Main Office"
    notes: Optional[str] = None
    line_items: List[LineItem] = Field(default_factory=list)
    pricing: Pricing
    total_amount: Decimal
    currency: str = "usd"
    status: ReservationStatus = "pending"
    payment_status: PaymentStatus = "pending"
    payment_intent_ref: Optional[str] = None   # processor intent opened by the last initiate
    payment_ref: Optional[str] = None          # processor reference of the successful charge
    cancellation: Optional[Cancellation] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Vehicle(BaseModel):
    id: str
    name: str = ""
    daily_rate: Decimal
    is_bookable: bool = True


class AddOn(BaseModel):
    id: str
    name: str
    daily_rate: Decimal
    is_bookable: bool = True


class AddOnResolution(BaseModel):
    found: List[AddOn] = Field(default_factory=list)
    unresolved: List[str] = Field(default_factory=list)


class Actor(BaseModel):
    ref: str
    role: Literal["customer", "admin"] = "customer"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


class ReservationFilters(BaseModel):
    status: Optional[ReservationStatus] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None


class PageRequest(BaseModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)


class Page(BaseModel):
    items: List[Reservation]
    page: int
    limit: int
    total: int
    pages: int


class PaymentIntent(BaseModel):
    ref: str
    client_secret: Optional[str] = None
    amount_minor: int
    currency: str


class IntentStatus(BaseModel):
    ref: str
    status: Literal["succeeded", "failed", "pending"]
    metadata: dict = Field(default_factory=dict)


class RefundResult(BaseModel):
    succeeded: bool
    refund_ref: Optional[str] = None
    raw: dict = Field(default_factory=dict)


class PaymentNotification(BaseModel):
    external_ref: str
    outcome: Literal["succeeded", "failed"]
    reservation_id: Optional[str] = None   # from intent metadata, when the processor sends it


class AuditEvent(BaseModel):
    action: Literal[
        "BOOKING_CREATE",
        "BOOKING_CANCEL",
        "BOOKING_UPDATE",
        "PAYMENT_INITIATED",
        "PAYMENT_SUCCESS",
        "PAYMENT_FAILED",
        "PAYMENT_REFUND",
    ]
    actor_ref: Optional[str] = None
    reservation_id: Optional[str] = None
    resource: Literal["booking", "payment"] = "booking"
    details: dict = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
