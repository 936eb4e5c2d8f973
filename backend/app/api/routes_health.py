from __future__ import annotations

from fastapi import APIRouter, Request
from app.config import settings

router = APIRouter()


@router.get("/health")
def health(request: Request):
    """Health check with engine and provider status."""
    svc = getattr(request.app.state, "simulation", None)
    return {
        "status": "ok",
        "environment": settings.environment,
        "directions_enabled": settings.directions_configured,
        "store": settings.simulation_store,
        "clock_running": bool(svc and svc.clock.is_running),
        "sync_enabled": bool(svc and svc.sync.enabled),
        "version": "0.1.0",
    }
