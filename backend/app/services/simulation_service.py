from __future__ import annotations

import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from app.config import settings
from app.policies.transitions import INACTIVE, can_transition
from app.schemas.events import WsMessage
from app.schemas.simulation import (
    ActionResult,
    FailureKind,
    ReconcileReport,
    SimulatedVehicle,
    SimulationInput,
    StopResult,
    SyncStats,
    VehicleStatus,
)
from app.services import geo
from app.services.simulation_clock import SimulationClock
from app.services.simulation_store import PersistenceError, SimulationStore
from app.services.tick_sync import TickSyncQueue
from app.services.vehicle_factory import VehicleStateFactory

logger = logging.getLogger("app.simulation_service")

InputProvider = Callable[[str], Awaitable[Optional[SimulationInput]]]
Broadcaster = Callable[[str, Dict[str, Any]], Awaitable[None]]


class InvalidInput(ValueError):
    pass


def validate_simulation_input(data: SimulationInput, *, require_delivery_date: bool = False) -> None:
    """Reject shipment data that cannot describe a trip."""
    if not data.shipment_id or not data.shipment_id.strip():
        raise InvalidInput("shipment_id is required")
    for name in ("origin", "destination"):
        c = getattr(data, name)
        if c is None:
            raise InvalidInput(f"{name} coordinates are missing")
        if not geo.is_valid_coordinate(c):
            raise InvalidInput(f"{name} coordinates out of range: {c}")
    if require_delivery_date and data.requested_delivery_date is None:
        raise InvalidInput("requested_delivery_date is required")


def _failure(kind: FailureKind, error: str) -> ActionResult:
    return ActionResult(success=False, error=error, error_kind=kind)


class SimulationService:
    """Engine context: owns the vehicle map, the clock, the store and the sync queue.

    Every public action returns a result model; nothing raises across this
    boundary except the plain read accessors.

    Lifecycle per shipment:
    - start() builds (or rejoins) state, persists it, registers it as active
    - the clock moves En Route vehicles until they reach the destination
    - confirm_pickup() / confirm_delivery() are the gated manual transitions
    - stop() deregisters and parks the vehicle (En Route -> Idle)
    """

    def __init__(
        self,
        *,
        store: SimulationStore,
        factory: VehicleStateFactory,
        sync: Optional[TickSyncQueue] = None,
        input_provider: Optional[InputProvider] = None,
        now: Callable[[], float] = time.time,
        tick_interval_s: Optional[float] = None,
        average_speed_mps: Optional[float] = None,
        speed_multiplier: Optional[float] = None,
        max_consecutive_failed_ticks: Optional[int] = None,
        persist_interval_s: Optional[float] = None,
        require_delivery_date: Optional[bool] = None,
    ):
        self.store = store
        self.factory = factory
        self.sync = sync or TickSyncQueue()
        self.input_provider = input_provider
        self._now = now
        self.persist_interval_s = (
            settings.simulation_persist_interval_s if persist_interval_s is None else persist_interval_s
        )
        self.require_delivery_date = (
            settings.simulation_require_delivery_date if require_delivery_date is None else require_delivery_date
        )

        self._vehicles: Dict[str, SimulatedVehicle] = {}
        # shipment_id -> (status, last_update_time) of the last write to the store
        self._persisted: Dict[str, tuple] = {}
        self._ws_broadcast: Optional[Broadcaster] = None

        self.clock = SimulationClock(
            self._vehicles,
            interval_s=tick_interval_s,
            average_speed_mps=average_speed_mps,
            speed_multiplier=speed_multiplier,
            now=now,
            on_tick=self._on_tick,
            sync=self.sync,
            max_consecutive_failed_ticks=max_consecutive_failed_ticks,
        )

    def bind_broadcaster(self, broadcaster: Broadcaster) -> None:
        self._ws_broadcast = broadcaster

    # ------------------------------------------------------------------
    # Control surface
    # ------------------------------------------------------------------

    async def start(self, target: Union[str, SimulationInput]) -> ActionResult:
        try:
            return await self._start(target)
        except Exception as e:
            logger.exception("start() failed unexpectedly: %s", e)
            return _failure(FailureKind.INTERNAL, str(e))

    async def _start(self, target: Union[str, SimulationInput]) -> ActionResult:
        data = target if isinstance(target, SimulationInput) else None
        shipment_id = data.shipment_id if data is not None else target
        if not shipment_id or not shipment_id.strip():
            return _failure(FailureKind.INVALID_INPUT, "shipment_id is required")

        try:
            existing = self._load(shipment_id)
            active = self.store.is_active(shipment_id)
        except PersistenceError as e:
            return _failure(FailureKind.PERSISTENCE_FAILURE, str(e))

        if existing is not None:
            if existing.status in INACTIVE and not active and data is not None and data.restart:
                logger.info(
                    "Rebuilding inactive simulation for %s (was %s)", shipment_id, existing.status.value
                )
                self._forget(shipment_id)
            else:
                return self._rejoin(existing, active)

        if data is None:
            if self.input_provider is None:
                return _failure(FailureKind.NOT_FOUND, f"no simulation state for {shipment_id}")
            data = await self.input_provider(shipment_id)
            if data is None:
                return _failure(FailureKind.NOT_FOUND, f"no shipment data for {shipment_id}")
            try:
                validate_simulation_input(data, require_delivery_date=self.require_delivery_date)
            except InvalidInput as e:
                logger.warning("Rejected input for %s: %s", shipment_id, e)
                return _failure(FailureKind.INVALID_INPUT, str(e))

        vehicle = await self.factory.create(data)
        if vehicle is None:
            return _failure(FailureKind.CALCULATION_FAILURE, f"could not build vehicle state for {shipment_id}")

        try:
            self.store.set_state(vehicle)
        except PersistenceError as e:
            logger.error("Initial state write failed for %s: %s", shipment_id, e)
            self._best_effort_delete(shipment_id)
            return _failure(FailureKind.PERSISTENCE_FAILURE, str(e))

        if vehicle.status not in INACTIVE:
            try:
                self.store.add_active(shipment_id)
            except PersistenceError as e:
                logger.error("Registering %s as active failed; rolling back: %s", shipment_id, e)
                self._best_effort_delete(shipment_id)
                self._forget(shipment_id)
                return _failure(FailureKind.PERSISTENCE_FAILURE, str(e))

        self._remember(vehicle)
        if vehicle.status is VehicleStatus.EN_ROUTE:
            self.clock.start()
        logger.info("Started simulation %s for %s (%s)", vehicle.id, shipment_id, vehicle.status.value)
        return ActionResult(success=True, message="started", state=vehicle)

    def _rejoin(self, vehicle: SimulatedVehicle, active: bool) -> ActionResult:
        shipment_id = vehicle.shipment_id
        if not active and vehicle.status not in INACTIVE:
            try:
                self.store.add_active(shipment_id)
            except PersistenceError as e:
                return _failure(FailureKind.PERSISTENCE_FAILURE, str(e))
        if shipment_id not in self._vehicles and vehicle.status not in INACTIVE:
            if vehicle.status is VehicleStatus.EN_ROUTE:
                vehicle = vehicle.model_copy(update={"last_update_time": self._now()})
            self._vehicles[shipment_id] = vehicle
        if vehicle.status is VehicleStatus.EN_ROUTE:
            self.clock.start()
        logger.debug("Rejoined existing simulation for %s", shipment_id)
        return ActionResult(success=True, message="rejoined", state=vehicle)

    async def stop(self, shipment_id: str) -> StopResult:
        try:
            return await self._stop(shipment_id)
        except Exception as e:
            logger.exception("stop() failed unexpectedly: %s", e)
            return StopResult(success=False, error=str(e), error_kind=FailureKind.INTERNAL)

    async def _stop(self, shipment_id: str) -> StopResult:
        errors: List[str] = []
        registry_removed = False
        try:
            self.store.remove_active(shipment_id)
            registry_removed = True
        except PersistenceError as e:
            logger.error("Removing %s from active set failed: %s", shipment_id, e)
            errors.append(str(e))

        try:
            vehicle = self._load(shipment_id)
        except PersistenceError as e:
            errors.append(str(e))
            vehicle = None
        self._vehicles.pop(shipment_id, None)
        if not self.clock.has_en_route():
            await self.clock.stop()

        if vehicle is None:
            return StopResult(
                success=not errors,
                registry_removed=registry_removed,
                error="; ".join(errors) or None,
                error_kind=FailureKind.PERSISTENCE_FAILURE if errors else None,
            )

        now = self._now()
        update: Dict[str, Any] = {
            "last_update_time": now,
            "current_position": vehicle.current_position.model_copy(update={"timestamp": now}),
        }
        if vehicle.status is VehicleStatus.EN_ROUTE:
            update["status"] = VehicleStatus.IDLE
        parked = vehicle.model_copy(update=update)

        state_persisted = False
        try:
            self.store.set_state(parked)
            self._persisted[shipment_id] = (parked.status, parked.last_update_time)
            state_persisted = True
        except PersistenceError as e:
            logger.error("Persisting stopped state for %s failed: %s", shipment_id, e)
            errors.append(str(e))
            # parked state stays in memory until a write succeeds
            self._vehicles[shipment_id] = parked

        await self._broadcast(parked)
        logger.info("Stopped simulation for %s (status=%s)", shipment_id, parked.status.value)
        return StopResult(
            success=not errors,
            updated_state=parked,
            registry_removed=registry_removed,
            state_persisted=state_persisted,
            error="; ".join(errors) or None,
            error_kind=FailureKind.PERSISTENCE_FAILURE if errors else None,
        )

    async def confirm_pickup(self, shipment_id: str) -> ActionResult:
        try:
            return await self._transition(shipment_id, VehicleStatus.IDLE, VehicleStatus.EN_ROUTE)
        except Exception as e:
            logger.exception("confirm_pickup() failed unexpectedly: %s", e)
            return _failure(FailureKind.INTERNAL, str(e))

    async def confirm_delivery(self, shipment_id: str) -> ActionResult:
        try:
            return await self._transition(
                shipment_id, VehicleStatus.PENDING_DELIVERY_CONFIRMATION, VehicleStatus.COMPLETED
            )
        except Exception as e:
            logger.exception("confirm_delivery() failed unexpectedly: %s", e)
            return _failure(FailureKind.INTERNAL, str(e))

    async def _transition(
        self,
        shipment_id: str,
        expected: VehicleStatus,
        target: VehicleStatus,
    ) -> ActionResult:
        try:
            vehicle = self._load(shipment_id)
        except PersistenceError as e:
            return _failure(FailureKind.PERSISTENCE_FAILURE, str(e))
        if vehicle is None:
            return _failure(FailureKind.NOT_FOUND, f"no simulation state for {shipment_id}")
        if vehicle.status is not expected or not can_transition(vehicle.status, target):
            return ActionResult(
                success=False,
                error=f"cannot move {shipment_id} from {vehicle.status.value} to {target.value}",
                error_kind=FailureKind.REJECTED_TRANSITION,
                state=vehicle,
            )

        # Pickup restarts the clock from now; idle time is not travel time
        now = self._now()
        updated = vehicle.model_copy(update={
            "status": target,
            "last_update_time": now,
            "current_position": vehicle.current_position.model_copy(update={"timestamp": now}),
        })

        try:
            self.store.set_state(updated)
        except PersistenceError as e:
            return _failure(FailureKind.PERSISTENCE_FAILURE, str(e))

        try:
            if target is VehicleStatus.EN_ROUTE:
                self.store.add_active(shipment_id)
            else:
                self.store.remove_active(shipment_id)
        except PersistenceError as e:
            logger.error("Active set update for %s failed; restoring %s: %s", shipment_id, vehicle.status.value, e)
            try:
                self.store.set_state(vehicle)
            except PersistenceError:
                logger.error("Restoring state for %s failed as well", shipment_id)
            return _failure(FailureKind.PERSISTENCE_FAILURE, str(e))

        if target is VehicleStatus.EN_ROUTE:
            self._remember(updated)
            self.clock.start()
        else:
            self._forget(shipment_id)

        await self._broadcast(updated)
        logger.info("Shipment %s: %s -> %s", shipment_id, vehicle.status.value, target.value)
        return ActionResult(success=True, message=f"status changed to {target.value}", state=updated)

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    def get_state(self, shipment_id: str) -> Optional[SimulatedVehicle]:
        return self._load(shipment_id)

    def list_states(self) -> List[SimulatedVehicle]:
        by_id = {v.shipment_id: v for v in self.store.list_states()}
        by_id.update(self._vehicles)
        return list(by_id.values())

    def set_speed_multiplier(self, value: float) -> float:
        self.clock.speed_multiplier = value
        logger.info("Speed multiplier set to %.2f", self.clock.speed_multiplier)
        return self.clock.speed_multiplier

    @property
    def speed_multiplier(self) -> float:
        return self.clock.speed_multiplier

    def sync_stats(self) -> SyncStats:
        return self.sync.stats()

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def reconcile(self) -> ReconcileReport:
        """Sweep the active set: drop orphans and finished runs, resume En Route ones."""
        report = ReconcileReport()
        try:
            active_ids = self.store.active_ids()
        except PersistenceError as e:
            report.errors.append(str(e))
            return report

        for shipment_id in active_ids:
            report.checked += 1
            try:
                vehicle = self._load(shipment_id)
                if vehicle is None or vehicle.status in INACTIVE:
                    self.store.remove_active(shipment_id)
                    self._vehicles.pop(shipment_id, None)
                    report.cleaned.append(shipment_id)
                    continue
                if vehicle.status is VehicleStatus.EN_ROUTE and shipment_id not in self._vehicles:
                    self._remember(vehicle.model_copy(update={"last_update_time": self._now()}))
                    report.resumed.append(shipment_id)
            except PersistenceError as e:
                report.errors.append(f"{shipment_id}: {e}")

        if self.clock.has_en_route():
            self.clock.start()
        logger.info(
            "Reconcile: checked=%d cleaned=%d resumed=%d errors=%d",
            report.checked, len(report.cleaned), len(report.resumed), len(report.errors),
        )
        return report

    def rehydrate(self) -> int:
        """Load active simulations from the store after a restart.

        En Route vehicles resume from their stored distance; time spent
        offline is not counted as travel.
        """
        loaded = 0
        try:
            active_ids = self.store.active_ids()
        except PersistenceError as e:
            logger.warning("rehydrate failed: %s", e)
            return 0

        for shipment_id in active_ids:
            try:
                vehicle = self.store.get_state(shipment_id)
            except PersistenceError as e:
                logger.warning("Failed to load state for %s: %s", shipment_id, e)
                continue
            if vehicle is None or vehicle.status in INACTIVE:
                continue
            if vehicle.status is VehicleStatus.EN_ROUTE:
                vehicle = vehicle.model_copy(update={"last_update_time": self._now()})
            self._remember(vehicle)
            loaded += 1

        if loaded:
            logger.info("Rehydrated %d simulation(s)", loaded)
        if self.clock.has_en_route():
            self.clock.start()
        return loaded

    async def shutdown(self) -> None:
        await self.clock.stop()
        for vehicle in list(self._vehicles.values()):
            try:
                self.store.set_state(vehicle)
            except PersistenceError as e:
                logger.error("Final persist for %s failed: %s", vehicle.shipment_id, e)
        await self.sync.close()
        logger.info("Simulation service shut down (%d vehicles persisted)", len(self._vehicles))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load(self, shipment_id: str) -> Optional[SimulatedVehicle]:
        vehicle = self._vehicles.get(shipment_id)
        if vehicle is not None:
            return vehicle
        return self.store.get_state(shipment_id)

    def _remember(self, vehicle: SimulatedVehicle) -> None:
        self._vehicles[vehicle.shipment_id] = vehicle
        self._persisted[vehicle.shipment_id] = (vehicle.status, vehicle.last_update_time)

    def _forget(self, shipment_id: str) -> None:
        self._vehicles.pop(shipment_id, None)
        self._persisted.pop(shipment_id, None)

    def _best_effort_delete(self, shipment_id: str) -> None:
        try:
            self.store.delete_state(shipment_id)
        except PersistenceError as e:
            logger.error("Rollback of state for %s failed: %s", shipment_id, e)

    async def _on_tick(self, updated: List[SimulatedVehicle]) -> None:
        failures: List[PersistenceError] = []
        for vehicle in updated:
            shipment_id = vehicle.shipment_id
            # stopped while this tick was being handled
            if self._vehicles.get(shipment_id) is not vehicle:
                continue

            last_status, last_time = self._persisted.get(shipment_id, (None, 0.0))
            due = vehicle.last_update_time - last_time >= self.persist_interval_s
            if vehicle.status is not last_status or due:
                try:
                    self.store.set_state(vehicle)
                    self._persisted[shipment_id] = (vehicle.status, vehicle.last_update_time)
                except PersistenceError as e:
                    logger.warning("Persisting tick for %s failed: %s", shipment_id, e)
                    failures.append(e)

            if vehicle.status is VehicleStatus.ERROR:
                try:
                    self.store.remove_active(shipment_id)
                except PersistenceError as e:
                    failures.append(e)
                self._vehicles.pop(shipment_id, None)

            await self._broadcast(vehicle)

        if failures:
            raise failures[0]

    async def _broadcast(self, vehicle: SimulatedVehicle) -> None:
        if not self._ws_broadcast:
            return
        try:
            message = WsMessage(kind="vehicle", shipment_id=vehicle.shipment_id, data=vehicle.model_dump(mode="json"))
            await self._ws_broadcast(vehicle.shipment_id, message.model_dump())
        except Exception as e:
            logger.warning("Broadcast for %s failed: %s", vehicle.shipment_id, e)
