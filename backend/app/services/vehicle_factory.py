from __future__ import annotations

import logging
import math
import time
from typing import Callable, List, Optional, Tuple

from app.config import settings
from app.policies.status_mapping import ROUTE_REQUIRED, map_external_status
from app.schemas.simulation import (
    Coordinate,
    Route,
    SimulatedVehicle,
    SimulationInput,
    VehiclePosition,
    VehicleStatus,
)
from app.services import geo
from app.services.route_resolver import RouteResolver
from app.utils.ids import new_id

logger = logging.getLogger("app.vehicle_factory")

# Input fields copied onto the vehicle untouched
_PASSTHROUGH = (
    "driver_phone",
    "driver_ic",
    "remarks",
    "origin_address",
    "destination_address",
    "recipient_name",
    "recipient_phone",
    "requested_delivery_date",
)


class VehicleStateFactory:
    """Builds the initial SimulatedVehicle for a shipment.

    Construction is pure: nothing is persisted and no clock is started.
    create() returns None instead of raising.
    """

    def __init__(
        self,
        resolver: RouteResolver,
        *,
        fallback_position: Optional[Coordinate] = None,
        now: Callable[[], float] = time.time,
    ):
        self.resolver = resolver
        self.fallback_position = fallback_position or (
            settings.simulation_fallback_lon,
            settings.simulation_fallback_lat,
        )
        self._now = now

    async def create(self, data: SimulationInput) -> Optional[SimulatedVehicle]:
        try:
            return await self._create(data)
        except Exception as e:
            logger.exception("Failed to build vehicle for shipment %s: %s", data.shipment_id, e)
            return None

    async def _create(self, data: SimulationInput) -> SimulatedVehicle:
        status = map_external_status(data.external_status)

        if not (geo.is_valid_coordinate(data.origin) and geo.is_valid_coordinate(data.destination)):
            if status is not VehicleStatus.AWAITING_STATUS:
                logger.warning(
                    "Shipment %s has invalid coordinates (origin=%s destination=%s); "
                    "forcing AWAITING_STATUS over %s",
                    data.shipment_id, data.origin, data.destination, status.value,
                )
            return self._placeholder(data, VehicleStatus.AWAITING_STATUS)

        if status not in ROUTE_REQUIRED:
            return self._placeholder(data, status)

        route = self._supplied_route(data)
        if route is None:
            route = await self.resolver.resolve(tuple(data.origin), tuple(data.destination))
        if route is None:
            logger.error("No route for shipment %s; downgrading %s to Error", data.shipment_id, status.value)
            return self._placeholder(data, VehicleStatus.ERROR)

        try:
            return self._on_route(data, status, route)
        except (ValueError, ArithmeticError) as e:
            logger.error("Geodesic initialization failed for shipment %s: %s", data.shipment_id, e)
            return self._placeholder(data, VehicleStatus.ERROR)

    def _supplied_route(self, data: SimulationInput) -> Optional[Route]:
        if not data.route:
            return None
        points: List[Tuple[float, float]] = [
            (float(p[0]), float(p[1])) for p in data.route if geo.is_valid_coordinate(p)
        ]
        if len(points) < 2:
            logger.info("Ignoring supplied route for shipment %s (fewer than two valid points)", data.shipment_id)
            return None
        return Route(coordinates=points, distance_m=geo.polyline_length(points), source="supplied")

    def _on_route(self, data: SimulationInput, status: VehicleStatus, route: Route) -> SimulatedVehicle:
        coords = route.coordinates
        length = route.distance_m
        origin = (float(data.origin[0]), float(data.origin[1]))
        destination = (float(data.destination[0]), float(data.destination[1]))

        if status is VehicleStatus.EN_ROUTE:
            resume = data.initial_traveled_distance or 0.0
            if not math.isfinite(resume):
                raise ValueError(f"resume distance must be finite, got {resume!r}")
            traveled = min(max(resume, 0.0), length)
            if traveled > 0:
                position, bearing = geo.point_along(coords, traveled)
            else:
                position, bearing = origin, geo.first_segment_bearing(coords)
        elif status in (VehicleStatus.PENDING_DELIVERY_CONFIRMATION, VehicleStatus.COMPLETED):
            traveled = length
            position, bearing = destination, geo.last_segment_bearing(coords)
        else:
            traveled = 0.0
            position, bearing = origin, geo.first_segment_bearing(coords)

        return self._build(
            data,
            status,
            position=position,
            bearing=bearing,
            route=route,
            route_distance=length,
            traveled=traveled,
        )

    def _placeholder(self, data: SimulationInput, status: VehicleStatus) -> SimulatedVehicle:
        """Vehicle without a route; position is a map marker only."""
        if geo.is_valid_coordinate(data.origin):
            position = (float(data.origin[0]), float(data.origin[1]))
        else:
            position = self.fallback_position
        return self._build(data, status, position=position, bearing=0.0, route=None, route_distance=0.0, traveled=0.0)

    def _build(
        self,
        data: SimulationInput,
        status: VehicleStatus,
        *,
        position: Coordinate,
        bearing: float,
        route: Optional[Route],
        route_distance: float,
        traveled: float,
    ) -> SimulatedVehicle:
        now = self._now()
        origin = data.origin if geo.is_valid_coordinate(data.origin) else position
        destination = data.destination if geo.is_valid_coordinate(data.destination) else position
        extra = {k: getattr(data, k) for k in _PASSTHROUGH}
        return SimulatedVehicle(
            id=new_id("veh"),
            shipment_id=data.shipment_id,
            status=status,
            origin=origin,
            destination=destination,
            route=route,
            route_distance=route_distance,
            traveled_distance=traveled,
            current_position=VehiclePosition(coordinates=position, bearing=bearing, timestamp=now),
            bearing=bearing,
            last_update_time=now,
            truck_id=data.truck_id or "TRUCK_UNKNOWN",
            driver_name=data.driver_name or "Driver Unknown",
            **extra,
        )
