from __future__ import annotations

from typing import Iterator

from fastapi import Request
from sqlalchemy.orm import Session

from app.db.session import SessionLocal
from app.services.simulation_service import SimulationService


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_simulation(request: Request) -> SimulationService:
    svc = getattr(request.app.state, "simulation", None)
    assert svc is not None, "SimulationService not initialized"
    return svc
