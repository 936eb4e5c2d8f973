from __future__ import annotations

import logging
from typing import Dict, List, Optional, Protocol, Set

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from app.db.models import ActiveSimulation, SimulationStateRow
from app.schemas.simulation import SimulatedVehicle
from app.utils.time import utc_now

logger = logging.getLogger("app.simulation_store")


class PersistenceError(Exception):
    """A read or write against one of the two keyed stores failed.

    `store` is "state" for vehicle records and "active" for the
    active-simulation set.
    """

    def __init__(self, store: str, message: str):
        super().__init__(f"{store} store: {message}")
        self.store = store


class SimulationStore(Protocol):
    def get_state(self, shipment_id: str) -> Optional[SimulatedVehicle]: ...

    def set_state(self, vehicle: SimulatedVehicle) -> None: ...

    def delete_state(self, shipment_id: str) -> None: ...

    def list_states(self) -> List[SimulatedVehicle]: ...

    def add_active(self, shipment_id: str) -> None: ...

    def remove_active(self, shipment_id: str) -> bool: ...

    def is_active(self, shipment_id: str) -> bool: ...

    def active_ids(self) -> List[str]: ...


class InMemorySimulationStore:
    """Process-local store, used in tests and when no database is wanted."""

    def __init__(self):
        self._states: Dict[str, str] = {}
        self._active: Set[str] = set()

    def get_state(self, shipment_id: str) -> Optional[SimulatedVehicle]:
        raw = self._states.get(shipment_id)
        return SimulatedVehicle.model_validate_json(raw) if raw is not None else None

    def set_state(self, vehicle: SimulatedVehicle) -> None:
        # Serialized so callers never share a mutable copy with the store
        self._states[vehicle.shipment_id] = vehicle.model_dump_json()

    def delete_state(self, shipment_id: str) -> None:
        self._states.pop(shipment_id, None)

    def list_states(self) -> List[SimulatedVehicle]:
        return [SimulatedVehicle.model_validate_json(raw) for raw in self._states.values()]

    def add_active(self, shipment_id: str) -> None:
        self._active.add(shipment_id)

    def remove_active(self, shipment_id: str) -> bool:
        if shipment_id in self._active:
            self._active.discard(shipment_id)
            return True
        return False

    def is_active(self, shipment_id: str) -> bool:
        return shipment_id in self._active

    def active_ids(self) -> List[str]:
        return sorted(self._active)


class SqlSimulationStore:
    """SQLAlchemy-backed store: one short session per operation."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def get_state(self, shipment_id: str) -> Optional[SimulatedVehicle]:
        db = self._session_factory()
        try:
            row = db.get(SimulationStateRow, shipment_id)
            return SimulatedVehicle.model_validate_json(row.payload_json) if row else None
        except SQLAlchemyError as e:
            raise PersistenceError("state", str(e)) from e
        finally:
            db.close()

    def set_state(self, vehicle: SimulatedVehicle) -> None:
        db = self._session_factory()
        try:
            row = db.get(SimulationStateRow, vehicle.shipment_id)
            if row is None:
                row = SimulationStateRow(shipment_id=vehicle.shipment_id)
                db.add(row)
            row.status = vehicle.status.value
            row.payload_json = vehicle.model_dump_json()
            row.updated_at = utc_now()
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError("state", str(e)) from e
        finally:
            db.close()

    def delete_state(self, shipment_id: str) -> None:
        db = self._session_factory()
        try:
            db.query(SimulationStateRow).filter(SimulationStateRow.shipment_id == shipment_id).delete()
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError("state", str(e)) from e
        finally:
            db.close()

    def list_states(self) -> List[SimulatedVehicle]:
        db = self._session_factory()
        try:
            rows = db.query(SimulationStateRow).order_by(SimulationStateRow.updated_at.desc()).all()
            return [SimulatedVehicle.model_validate_json(r.payload_json) for r in rows]
        except SQLAlchemyError as e:
            raise PersistenceError("state", str(e)) from e
        finally:
            db.close()

    def add_active(self, shipment_id: str) -> None:
        db = self._session_factory()
        try:
            if db.get(ActiveSimulation, shipment_id) is None:
                db.add(ActiveSimulation(shipment_id=shipment_id, added_at=utc_now()))
                db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError("active", str(e)) from e
        finally:
            db.close()

    def remove_active(self, shipment_id: str) -> bool:
        db = self._session_factory()
        try:
            n = db.query(ActiveSimulation).filter(ActiveSimulation.shipment_id == shipment_id).delete()
            db.commit()
            return n > 0
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceError("active", str(e)) from e
        finally:
            db.close()

    def is_active(self, shipment_id: str) -> bool:
        db = self._session_factory()
        try:
            return db.get(ActiveSimulation, shipment_id) is not None
        except SQLAlchemyError as e:
            raise PersistenceError("active", str(e)) from e
        finally:
            db.close()

    def active_ids(self) -> List[str]:
        db = self._session_factory()
        try:
            rows = db.query(ActiveSimulation.shipment_id).order_by(ActiveSimulation.shipment_id).all()
            return [r[0] for r in rows]
        except SQLAlchemyError as e:
            raise PersistenceError("active", str(e)) from e
        finally:
            db.close()
