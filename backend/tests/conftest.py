"""Test fixtures: in-memory SQLite database, deterministic time and route fakes."""

from __future__ import annotations

import os

# Must be set before app.config is imported anywhere
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("DIRECTIONS_USE_MOCK", "true")
os.environ.setdefault("SIMULATION_SYNC_URL", "")

from typing import List, Optional, Tuple

import pytest

from app.db.session import Base, engine
from app.schemas.simulation import Route, SimulationInput
from app.services import geo
from app.services.simulation_service import SimulationService
from app.services.simulation_store import InMemorySimulationStore, PersistenceError
from app.services.tick_sync import TickSyncQueue
from app.services.vehicle_factory import VehicleStateFactory

KL = (101.6953, 3.1493)
JB = (103.7414, 1.4927)


@pytest.fixture(scope="session", autouse=True)
def _create_tables():
    """Create all tables once before the test session."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


class FakeTime:
    """Callable clock that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.t = start

    def __call__(self) -> float:
        return self.t

    def advance(self, seconds: float) -> float:
        self.t += seconds
        return self.t


class FakeResolver:
    """Stands in for RouteResolver; returns a fixed polyline or None."""

    def __init__(self, coords: Optional[List[Tuple[float, float]]] = None, fail: bool = False):
        self.coords = coords or [KL, (102.7, 2.3), JB]
        self.fail = fail
        self.calls = 0

    async def resolve(self, origin, destination, *, use_mock=None):
        self.calls += 1
        if self.fail:
            return None
        return Route(coordinates=self.coords, distance_m=geo.polyline_length(self.coords), source="directions")

    async def close(self):
        pass


class FlakyStore(InMemorySimulationStore):
    """In-memory store whose writes can be made to fail per store."""

    def __init__(self):
        super().__init__()
        self.fail_state = False
        self.fail_active = False

    def set_state(self, vehicle):
        if self.fail_state:
            raise PersistenceError("state", "disk full")
        super().set_state(vehicle)

    def add_active(self, shipment_id):
        if self.fail_active:
            raise PersistenceError("active", "connection reset")
        super().add_active(shipment_id)

    def remove_active(self, shipment_id):
        if self.fail_active:
            raise PersistenceError("active", "connection reset")
        return super().remove_active(shipment_id)


def make_input(shipment_id: str = "SHP-1", status: Optional[str] = "IN_TRANSIT", **kw) -> SimulationInput:
    data = {"shipment_id": shipment_id, "origin": KL, "destination": JB, "external_status": status}
    data.update(kw)
    return SimulationInput(**data)


@pytest.fixture()
def fake_time():
    return FakeTime()


@pytest.fixture()
def fake_resolver():
    return FakeResolver()


@pytest.fixture()
def store():
    return FlakyStore()


@pytest.fixture()
def service(store, fake_resolver, fake_time):
    return SimulationService(
        store=store,
        factory=VehicleStateFactory(fake_resolver, now=fake_time),
        sync=TickSyncQueue(url=""),
        now=fake_time,
        persist_interval_s=0.0,
    )
