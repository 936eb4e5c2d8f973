from __future__ import annotations

from typing import Dict, Optional

from app.schemas.simulation import VehicleStatus


# External shipment status code -> internal simulation state.
# Codes are matched after normalize_status_code().
EXTERNAL_STATUS_MAP: Dict[str, VehicleStatus] = {
    "PLANNED": VehicleStatus.IDLE,
    "BOOKED": VehicleStatus.IDLE,
    "AT_PICKUP": VehicleStatus.IDLE,
    "PENDING_PICKUP": VehicleStatus.IDLE,
    "IN_TRANSIT": VehicleStatus.EN_ROUTE,
    "EN_ROUTE": VehicleStatus.EN_ROUTE,
    "AT_DROPOFF": VehicleStatus.PENDING_DELIVERY_CONFIRMATION,
    "PENDING_DELIVERY": VehicleStatus.PENDING_DELIVERY_CONFIRMATION,
    "COMPLETED": VehicleStatus.COMPLETED,
    "DELIVERED": VehicleStatus.COMPLETED,
    "EXCEPTION": VehicleStatus.ERROR,
    "AWAITING_STATUS": VehicleStatus.AWAITING_STATUS,
    "CANCELLED": VehicleStatus.AWAITING_STATUS,
}

# Missing and unrecognized codes land here.
DEFAULT_STATUS = VehicleStatus.AWAITING_STATUS

# States whose initial position is derived from a route polyline.
ROUTE_REQUIRED = frozenset({
    VehicleStatus.IDLE,
    VehicleStatus.EN_ROUTE,
    VehicleStatus.PENDING_DELIVERY_CONFIRMATION,
    VehicleStatus.COMPLETED,
})


def normalize_status_code(code: Optional[str]) -> str:
    if code is None:
        return ""
    return code.strip().upper().replace("-", "_").replace(" ", "_")


def map_external_status(code: Optional[str]) -> VehicleStatus:
    """Look up the internal state for an external shipment status code."""
    return EXTERNAL_STATUS_MAP.get(normalize_status_code(code), DEFAULT_STATUS)


def is_known_status(code: Optional[str]) -> bool:
    return normalize_status_code(code) in EXTERNAL_STATUS_MAP
