from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional

from app.config import settings
from app.schemas.simulation import SimulatedVehicle, TickSyncPayload, VehiclePosition, VehicleStatus
from app.services import geo
from app.services.tick_sync import TickSyncQueue

logger = logging.getLogger("app.simulation_clock")

TickHook = Callable[[List[SimulatedVehicle]], Awaitable[None]]


@dataclass
class TickReport:
    advanced: List[str] = field(default_factory=list)
    arrived: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


def advance_vehicle(
    vehicle: SimulatedVehicle,
    now: float,
    speed_mps: float,
) -> Optional[SimulatedVehicle]:
    """Return the vehicle moved forward to `now`, or None when nothing changes.

    Only En Route vehicles move. Raises on geodesic failures; the caller
    decides what to do with the vehicle.
    """
    if vehicle.status is not VehicleStatus.EN_ROUTE:
        return None
    delta = now - vehicle.last_update_time
    if delta <= 0:
        return None
    if vehicle.route is None:
        raise ValueError(f"vehicle {vehicle.shipment_id} is En Route without a route")

    length = vehicle.route_distance
    traveled = min(max(vehicle.traveled_distance + speed_mps * delta, 0.0), length)
    status = vehicle.status
    if traveled >= length:
        traveled = length
        status = VehicleStatus.PENDING_DELIVERY_CONFIRMATION

    position, bearing = geo.point_along(vehicle.route.coordinates, traveled)
    return vehicle.model_copy(update={
        "status": status,
        "traveled_distance": traveled,
        "current_position": VehiclePosition(coordinates=position, bearing=bearing, timestamp=now),
        "bearing": bearing,
        "last_update_time": now,
    })


class SimulationClock:
    """Single periodic task that advances every En Route vehicle.

    Vehicles live in a dict owned by the caller (shipment_id -> vehicle) and
    are replaced whole on each tick. The clock stops itself once no vehicle is
    En Route, and halts after too many consecutive failing ticks.
    """

    def __init__(
        self,
        vehicles: Dict[str, SimulatedVehicle],
        *,
        interval_s: Optional[float] = None,
        average_speed_mps: Optional[float] = None,
        speed_multiplier: Optional[float] = None,
        now: Callable[[], float] = time.time,
        on_tick: Optional[TickHook] = None,
        sync: Optional[TickSyncQueue] = None,
        max_consecutive_failed_ticks: Optional[int] = None,
    ):
        self.vehicles = vehicles
        self.interval_s = settings.simulation_tick_interval_ms / 1000.0 if interval_s is None else interval_s
        self.average_speed_mps = settings.average_speed_mps if average_speed_mps is None else average_speed_mps
        self._speed_multiplier = self.clamp_multiplier(
            settings.simulation_speed_multiplier if speed_multiplier is None else speed_multiplier
        )
        self._now = now
        self.on_tick = on_tick
        self.sync = sync
        self.max_consecutive_failed_ticks = (
            settings.simulation_max_consecutive_failed_ticks
            if max_consecutive_failed_ticks is None
            else max_consecutive_failed_ticks
        )
        self._task: Optional[asyncio.Task] = None
        self._failed_streak = 0
        self.hook_failures = 0
        self.halted = False

    @staticmethod
    def clamp_multiplier(value: float) -> float:
        return min(
            max(float(value), settings.simulation_min_speed_multiplier),
            settings.simulation_max_speed_multiplier,
        )

    @property
    def speed_multiplier(self) -> float:
        return self._speed_multiplier

    @speed_multiplier.setter
    def speed_multiplier(self, value: float) -> None:
        self._speed_multiplier = self.clamp_multiplier(value)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def has_en_route(self) -> bool:
        return any(v.status is VehicleStatus.EN_ROUTE for v in self.vehicles.values())

    def start(self) -> bool:
        """Start the loop if any vehicle is En Route. Safe to call repeatedly."""
        if self.is_running:
            return True
        if not self.has_en_route():
            return False
        self.halted = False
        self._failed_streak = 0
        self._task = asyncio.create_task(self._run())
        logger.info("Simulation clock started (interval=%.3fs)", self.interval_s)
        return True

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Simulation clock stopped")

    async def tick(self, now: Optional[float] = None) -> TickReport:
        now = self._now() if now is None else now
        speed = self.average_speed_mps * self._speed_multiplier
        report = TickReport()
        updated: List[SimulatedVehicle] = []

        for shipment_id, vehicle in list(self.vehicles.items()):
            if vehicle.status is not VehicleStatus.EN_ROUTE:
                continue
            delta = now - vehicle.last_update_time
            try:
                moved = advance_vehicle(vehicle, now, speed)
            except Exception as e:
                logger.error("Tick failed for %s; marking Error: %s", shipment_id, e)
                # last position stays only as a marker
                moved = vehicle.model_copy(update={
                    "status": VehicleStatus.ERROR,
                    "route": None,
                    "route_distance": 0.0,
                    "traveled_distance": 0.0,
                    "last_update_time": now,
                })
                report.failed.append(shipment_id)
            if moved is None:
                continue

            self.vehicles[shipment_id] = moved
            updated.append(moved)
            if moved.status is VehicleStatus.EN_ROUTE or moved.status is VehicleStatus.PENDING_DELIVERY_CONFIRMATION:
                report.advanced.append(shipment_id)
            if moved.status is VehicleStatus.PENDING_DELIVERY_CONFIRMATION:
                report.arrived.append(shipment_id)
                logger.info("Vehicle %s reached destination", shipment_id)

            if self.sync is not None and moved.status is not VehicleStatus.ERROR:
                self.sync.enqueue(TickSyncPayload(
                    shipment_id=shipment_id,
                    time_delta=delta,
                    speed_multiplier=self._speed_multiplier,
                    timestamp=now,
                ))

        if updated and self.on_tick is not None:
            try:
                await self.on_tick(updated)
            except Exception as e:
                # hook failures do not count toward the halt streak
                self.hook_failures += 1
                logger.exception("Tick hook failed: %s", e)

        if report.failed:
            self._failed_streak += 1
        else:
            self._failed_streak = 0
        return report

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        next_at = loop.time()
        try:
            while True:
                await self.tick()
                if self._failed_streak >= self.max_consecutive_failed_ticks:
                    self.halted = True
                    logger.error(
                        "Simulation clock halted after %d consecutive failed ticks",
                        self._failed_streak,
                    )
                    break
                if not self.has_en_route():
                    logger.info("No vehicles en route; clock stopping")
                    break
                next_at += self.interval_s
                # fixed rate; skip missed slots rather than bursting
                delay = next_at - loop.time()
                if delay < 0:
                    next_at = loop.time()
                    delay = 0
                await asyncio.sleep(delay)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("Simulation clock crashed: %s", e)
        finally:
            if self._task is asyncio.current_task():
                self._task = None
