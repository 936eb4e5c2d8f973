from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.auth.jwt import get_current_user
from app.deps import get_db, get_simulation
from app.schemas.simulation import (
    ActionResult,
    ReconcileReport,
    SimulatedVehicle,
    SimulationInput,
    SpeedUpdate,
    StopResult,
    SyncStats,
    TickReceipt,
    TickSyncPayload,
)
from app.services.position_service import PositionService
from app.services.simulation_service import SimulationService
from app.services.simulation_store import PersistenceError

router = APIRouter()
positions = PositionService()


@router.post("/simulations", response_model=ActionResult)
async def start_simulation(
    body: SimulationInput,
    svc: SimulationService = Depends(get_simulation),
    user: str | None = Depends(get_current_user),
):
    """Start (or rejoin) a simulation from full shipment data."""
    return await svc.start(body)


@router.get("/simulations", response_model=List[SimulatedVehicle])
def list_simulations(svc: SimulationService = Depends(get_simulation)):
    try:
        return svc.list_states()
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=str(e))


# Registered before the {shipment_id} routes so the literal paths win
@router.put("/simulations/speed")
def set_speed(
    body: SpeedUpdate,
    svc: SimulationService = Depends(get_simulation),
    user: str | None = Depends(get_current_user),
):
    return {"speed_multiplier": svc.set_speed_multiplier(body.multiplier)}


@router.post("/simulations/reconcile", response_model=ReconcileReport)
async def reconcile(
    svc: SimulationService = Depends(get_simulation),
    user: str | None = Depends(get_current_user),
):
    return await svc.reconcile()


@router.get("/simulations/sync/stats", response_model=SyncStats)
def sync_stats(svc: SimulationService = Depends(get_simulation)):
    return svc.sync_stats()


@router.get("/simulations/{shipment_id}", response_model=SimulatedVehicle)
def get_simulation_state(shipment_id: str, svc: SimulationService = Depends(get_simulation)):
    try:
        vehicle = svc.get_state(shipment_id)
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=str(e))
    if not vehicle:
        raise HTTPException(status_code=404, detail="Simulation not found")
    return vehicle


@router.get("/simulations/{shipment_id}/position")
def last_reported_position(shipment_id: str, db: Session = Depends(get_db)):
    """Last position accepted by the tick receiver."""
    latest = positions.latest(db, shipment_id)
    if not latest:
        raise HTTPException(status_code=404, detail="No reported position")
    return latest


@router.post("/simulations/{shipment_id}/start", response_model=ActionResult)
async def start_by_id(
    shipment_id: str,
    svc: SimulationService = Depends(get_simulation),
    user: str | None = Depends(get_current_user),
):
    """Rejoin existing state, or build it from the shipment provider."""
    return await svc.start(shipment_id)


@router.post("/simulations/{shipment_id}/stop", response_model=StopResult)
async def stop_simulation(
    shipment_id: str,
    svc: SimulationService = Depends(get_simulation),
    user: str | None = Depends(get_current_user),
):
    return await svc.stop(shipment_id)


@router.post("/simulations/{shipment_id}/confirm-pickup", response_model=ActionResult)
async def confirm_pickup(
    shipment_id: str,
    svc: SimulationService = Depends(get_simulation),
    user: str | None = Depends(get_current_user),
):
    return await svc.confirm_pickup(shipment_id)


@router.post("/simulations/{shipment_id}/confirm-delivery", response_model=ActionResult)
async def confirm_delivery(
    shipment_id: str,
    svc: SimulationService = Depends(get_simulation),
    user: str | None = Depends(get_current_user),
):
    return await svc.confirm_delivery(shipment_id)


@router.post("/simulation/tick", response_model=TickReceipt)
def receive_tick(
    body: TickSyncPayload,
    db: Session = Depends(get_db),
    svc: SimulationService = Depends(get_simulation),
):
    """Backend side of the per-tick sync; tolerates reordered and repeated calls."""
    try:
        vehicle = svc.get_state(body.shipment_id)
    except PersistenceError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return positions.record_tick(db, body, vehicle)
