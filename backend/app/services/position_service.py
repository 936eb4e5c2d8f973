from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from app.db.models import VehiclePositionRow
from app.schemas.simulation import SimulatedVehicle, TickReceipt, TickSyncPayload
from app.utils.time import utc_now

logger = logging.getLogger("app.position_service")


class PositionService:
    """Last-known-position log fed by the backend tick endpoint.

    Tick calls arrive fire-and-forget and may be reordered or dropped, so a
    payload only overwrites the row when its timestamp is newer.
    """

    def record_tick(
        self,
        db: Session,
        payload: TickSyncPayload,
        vehicle: Optional[SimulatedVehicle],
    ) -> TickReceipt:
        if vehicle is None:
            return TickReceipt(applied=False, reason="no simulation")

        row = db.get(VehiclePositionRow, payload.shipment_id)
        if row is not None and payload.timestamp <= row.reported_at:
            logger.debug(
                "Ignoring stale tick for %s (%.3f <= %.3f)",
                payload.shipment_id, payload.timestamp, row.reported_at,
            )
            return TickReceipt(applied=False, reason="stale")

        if row is None:
            row = VehiclePositionRow(shipment_id=payload.shipment_id)
            db.add(row)
        lon, lat = vehicle.current_position.coordinates
        row.lon = float(lon)
        row.lat = float(lat)
        row.bearing = float(vehicle.bearing)
        row.status = vehicle.status.value
        row.reported_at = payload.timestamp
        row.updated_at = utc_now()
        db.commit()
        return TickReceipt(applied=True)

    def latest(self, db: Session, shipment_id: str) -> Optional[Dict[str, Any]]:
        row = db.get(VehiclePositionRow, shipment_id)
        if row is None:
            return None
        return {
            "shipment_id": row.shipment_id,
            "coordinates": [row.lon, row.lat],
            "bearing": row.bearing,
            "status": row.status,
            "reported_at": row.reported_at,
        }
