from datetime import datetime
from decimal import Decimal

import pytest

from audit import AuditEmitter, InMemoryAuditSink
from booking_manager import BookingLifecycleManager
from booking_schemas import Actor, AddOn, Vehicle
from catalog import InMemoryCatalog
from payments.coordinator import PaymentCoordinator
from payments.processor import MockPaymentProcessor
from persistence.crud import InMemoryReservationStore, SqlReservationStore
from persistence.db import init_db, make_engine, make_session_factory

# bookings in the suites start on or after this day
TODAY = datetime(2024, 1, 1, 9, 30)


@pytest.fixture
def catalog():
    return InMemoryCatalog(
        vehicles=[
            Vehicle(id="car-45", name="Compact", daily_rate=Decimal("45")),
            Vehicle(id="car-50", name="Midsize", daily_rate=Decimal("50")),
            Vehicle(id="car-off", name="In the shop", daily_rate=Decimal("60"), is_bookable=False),
        ],
        add_ons=[
            AddOn(id="gps", name="GPS Navigation", daily_rate=Decimal("10")),
            AddOn(id="seat", name="Child Seat", daily_rate=Decimal("12")),
            AddOn(id="retired", name="Retired Extra", daily_rate=Decimal("5"), is_bookable=False),
        ],
    )


@pytest.fixture
def session_factory(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'booking.db'}")
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture(params=["memory", "sql"])
def store(request):
    if request.param == "memory":
        return InMemoryReservationStore()
    return SqlReservationStore(request.getfixturevalue("session_factory"))


@pytest.fixture
def audit_sink():
    return InMemoryAuditSink()


@pytest.fixture
def manager(store, catalog, audit_sink):
    return BookingLifecycleManager(store, catalog, audit=AuditEmitter(audit_sink), clock=lambda: TODAY)


@pytest.fixture
def processor():
    return MockPaymentProcessor()


@pytest.fixture
def coordinator(manager, processor, audit_sink):
    return PaymentCoordinator(manager, processor, audit=AuditEmitter(audit_sink), sleep=lambda seconds: None)


@pytest.fixture
def customer():
    return Actor(ref="cust-1")


@pytest.fixture
def stranger():
    return Actor(ref="cust-2")


@pytest.fixture
def admin():
    return Actor(ref="admin-1", role="admin")
