"""
Vehicle and add-on catalog adapters.

The catalog is owned elsewhere; the booking core only reads rates and the
bookable flag. ``SqlCatalog`` reads the shared tables, ``InMemoryCatalog`` is
the deterministic stand-in for demos and tests.
"""
import logging
from decimal import Decimal
from typing import Dict, Iterable, Optional, Sequence

from booking_schemas import AddOn, AddOnResolution, Vehicle
from persistence.db import SessionLocal
from persistence.models import AddOnModel, VehicleModel

logger = logging.getLogger(__name__)

DEMO_VEHICLES = [
    {"id": "veh-economy-1", "name": "2024 Toyota Yaris", "daily_rate": Decimal("45.00")},
    {"id": "veh-midsize-1", "name": "2024 Toyota Camry", "daily_rate": Decimal("50.00")},
    {"id": "veh-suv-1", "name": "2025 Honda CR-V", "daily_rate": Decimal("75.00")},
    {"id": "veh-premium-1", "name": "2025 BMW 5 Series", "daily_rate": Decimal("120.00")},
]

DEMO_ADD_ONS = [
    {"id": "gps", "name": "GPS Navigation", "daily_rate": Decimal("10.00")},
    {"id": "child_seat", "name": "Child Seat", "daily_rate": Decimal("12.00")},
    {"id": "additional_driver", "name": "Additional Driver", "daily_rate": Decimal("15.00")},
    {"id": "insurance", "name": "Full Insurance Coverage", "daily_rate": Decimal("25.00")},
]


def _dedupe(ids: Iterable[str]):
    return list(dict.fromkeys(ids))


class InMemoryCatalog:
    def __init__(self, vehicles: Iterable[Vehicle] = (), add_ons: Iterable[AddOn] = ()):
        self.vehicles: Dict[str, Vehicle] = {v.id: v for v in vehicles}
        self.add_ons: Dict[str, AddOn] = {a.id: a for a in add_ons}

    @classmethod
    def demo(cls) -> "InMemoryCatalog":
        return cls(
            vehicles=[Vehicle(**v) for v in DEMO_VEHICLES],
            add_ons=[AddOn(**a) for a in DEMO_ADD_ONS],
        )

    def resolve_vehicle(self, vehicle_ref: str) -> Optional[Vehicle]:
        return self.vehicles.get(vehicle_ref)

    def resolve_add_ons(self, ids: Sequence[str]) -> AddOnResolution:
        resolution = AddOnResolution()
        for add_on_id in _dedupe(ids):
            add_on = self.add_ons.get(add_on_id)
            if add_on is None:
                resolution.unresolved.append(add_on_id)
            else:
                resolution.found.append(add_on)
        return resolution


class SqlCatalog:
    def __init__(self, session_factory=SessionLocal):
        self.session_factory = session_factory

    def resolve_vehicle(self, vehicle_ref: str) -> Optional[Vehicle]:
        db = self.session_factory()
        try:
            row = db.get(VehicleModel, vehicle_ref)
            if row is None:
                return None
            return Vehicle(id=row.id, name=row.name, daily_rate=row.daily_rate, is_bookable=row.is_bookable)
        finally:
            db.close()

    def resolve_add_ons(self, ids: Sequence[str]) -> AddOnResolution:
        wanted = _dedupe(ids)
        if not wanted:
            return AddOnResolution()
        db = self.session_factory()
        try:
            rows = {row.id: row for row in db.query(AddOnModel).filter(AddOnModel.id.in_(wanted)).all()}
        finally:
            db.close()
        resolution = AddOnResolution()
        for add_on_id in wanted:
            row = rows.get(add_on_id)
            if row is None:
                resolution.unresolved.append(add_on_id)
            else:
                resolution.found.append(
                    AddOn(id=row.id, name=row.name, daily_rate=row.daily_rate, is_bookable=row.is_bookable)
                )
        return resolution


def seed_catalog(db):
    """Load the demo vehicles and add-ons into an empty catalog."""
    existing = db.query(VehicleModel).count()
    if existing > 0:
        logger.info(f"Catalog already has {existing} vehicles, skipping seed")
        return
    for vehicle in DEMO_VEHICLES:
        db.add(VehicleModel(**vehicle))
    for add_on in DEMO_ADD_ONS:
        db.add(AddOnModel(**add_on))
    db.commit()
    logger.info(f"Seeded {len(DEMO_VEHICLES)} vehicles and {len(DEMO_ADD_ONS)} add-ons")
