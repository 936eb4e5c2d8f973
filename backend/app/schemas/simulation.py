from __future__ import annotations

import datetime as dt
import enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

# (longitude, latitude), GeoJSON order
Coordinate = Tuple[float, float]


class VehicleStatus(str, enum.Enum):
    AWAITING_STATUS = "AWAITING_STATUS"
    IDLE = "Idle"
    EN_ROUTE = "En Route"
    PENDING_DELIVERY_CONFIRMATION = "Pending Delivery Confirmation"
    COMPLETED = "Completed"
    ERROR = "Error"


class FailureKind(str, enum.Enum):
    INVALID_INPUT = "invalid_input"
    ROUTE_UNAVAILABLE = "route_unavailable"
    CALCULATION_FAILURE = "calculation_failure"
    PERSISTENCE_FAILURE = "persistence_failure"
    NETWORK_SYNC_FAILURE = "network_sync_failure"
    NOT_FOUND = "not_found"
    REJECTED_TRANSITION = "rejected_transition"
    INTERNAL = "internal"


class Route(BaseModel):
    coordinates: List[Coordinate] = Field(..., min_length=2)
    distance_m: float = Field(..., ge=0)
    source: str = "directions"  # directions | fallback | supplied


class VehiclePosition(BaseModel):
    coordinates: Coordinate
    bearing: float = 0.0
    timestamp: float


class SimulationInput(BaseModel):
    """Shipment data needed to start a simulation.

    Supplied by the upstream shipment provider; coordinates may be missing or
    out of range, in which case the vehicle is created as AWAITING_STATUS.
    """

    shipment_id: str
    origin: Optional[Coordinate] = None
    destination: Optional[Coordinate] = None
    external_status: Optional[str] = None
    route: Optional[List[Coordinate]] = None
    initial_traveled_distance: Optional[float] = None
    requested_delivery_date: Optional[dt.datetime] = None
    # rebuild a finished (Completed, Error, AWAITING_STATUS) record instead of rejoining it
    restart: bool = False

    truck_id: Optional[str] = None
    driver_name: Optional[str] = None
    driver_phone: Optional[str] = None
    driver_ic: Optional[str] = None
    remarks: Optional[str] = None
    origin_address: Optional[str] = None
    destination_address: Optional[str] = None
    recipient_name: Optional[str] = None
    recipient_phone: Optional[str] = None


class SimulatedVehicle(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    shipment_id: str
    vehicle_type: str = "Truck"
    status: VehicleStatus

    origin: Coordinate
    destination: Coordinate
    route: Optional[Route] = None
    route_distance: float = 0.0
    traveled_distance: float = 0.0
    current_position: VehiclePosition
    bearing: float = 0.0
    last_update_time: float

    truck_id: str = "TRUCK_UNKNOWN"
    driver_name: str = "Driver Unknown"
    driver_phone: Optional[str] = None
    driver_ic: Optional[str] = None
    remarks: Optional[str] = None
    origin_address: Optional[str] = None
    destination_address: Optional[str] = None
    recipient_name: Optional[str] = None
    recipient_phone: Optional[str] = None
    requested_delivery_date: Optional[dt.datetime] = None


class ActionResult(BaseModel):
    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[FailureKind] = None
    state: Optional[SimulatedVehicle] = None


class StopResult(BaseModel):
    success: bool
    updated_state: Optional[SimulatedVehicle] = None
    registry_removed: bool = False
    state_persisted: bool = False
    error: Optional[str] = None
    error_kind: Optional[FailureKind] = None


class ReconcileReport(BaseModel):
    checked: int = 0
    cleaned: List[str] = Field(default_factory=list)
    resumed: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


class SpeedUpdate(BaseModel):
    multiplier: float = Field(..., ge=0)


class TickSyncPayload(BaseModel):
    """Body of the backend tick call; camelCase on the wire."""

    model_config = ConfigDict(populate_by_name=True)

    shipment_id: str = Field(..., alias="shipmentId")
    time_delta: float = Field(..., alias="timeDelta")
    speed_multiplier: float = Field(..., alias="speedMultiplier")
    timestamp: float


class SyncStats(BaseModel):
    enabled: bool
    enqueued: int = 0
    delivered: int = 0
    failed: int = 0
    dropped: int = 0
    pending: int = 0


class TickReceipt(BaseModel):
    ok: bool = True
    applied: bool
    reason: Optional[str] = None
