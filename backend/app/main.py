from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.observability.logging import configure_logging
from app.db.session import engine, Base, SessionLocal
from sqlalchemy import text
from app.api.routes_health import router as health_router
from app.api.routes_simulations import router as simulations_router
from app.api.routes_ws import router as ws_router, hub
from app.auth.routes import router as auth_router
from app.services.directions_adapter import DirectionsAdapter
from app.services.route_resolver import RouteResolver
from app.services.simulation_service import SimulationService
from app.services.simulation_store import InMemorySimulationStore, SqlSimulationStore
from app.services.tick_sync import TickSyncQueue
from app.services.vehicle_factory import VehicleStateFactory

configure_logging()
logger = logging.getLogger("app")


def init_database(max_retries: int = 5, retry_delay: int = 2):
    """
    Initialize database with retry logic.
    Managed databases may take a moment to accept connections.
    """
    for attempt in range(max_retries):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            Base.metadata.create_all(bind=engine)
            logger.info("Database initialized")
            return True
        except Exception as e:
            logger.warning("Database connection attempt %d/%d failed: %s", attempt + 1, max_retries, e)
            if attempt < max_retries - 1:
                time.sleep(retry_delay)
            else:
                logger.error("Failed to connect to database after all retries")
                # Don't crash - allow app to start, health check will report it
                return False
    return False


def build_simulation_service() -> SimulationService:
    """Wire the engine from settings."""
    adapter = DirectionsAdapter() if settings.directions_configured else None
    resolver = RouteResolver(adapter)
    if settings.simulation_store == "memory":
        store = InMemorySimulationStore()
    else:
        store = SqlSimulationStore(SessionLocal)
    return SimulationService(
        store=store,
        factory=VehicleStateFactory(resolver),
        sync=TickSyncQueue(),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("Starting Fleet Simulation API")
    logger.info("   Environment: %s", settings.environment)
    logger.info("   Directions: %s", "Mapbox" if settings.directions_configured else "straight-line fallback")
    logger.info("   Store: %s", settings.simulation_store)

    init_database()

    service = build_simulation_service()
    service.bind_broadcaster(hub.broadcast)
    app.state.simulation = service
    service.rehydrate()

    yield

    logger.info("Shutting down...")
    await service.shutdown()
    await service.factory.resolver.close()
    app.state.simulation = None


app = FastAPI(
    title="Fleet Simulation API",
    version="0.1.0",
    lifespan=lifespan,
)


@app.get("/")
def root():
    return {
        "name": "Fleet Simulation API",
        "status": "ok",
        "docs": "/docs",
        "health": "/health",
    }


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(health_router)
app.include_router(auth_router)
app.include_router(simulations_router)
app.include_router(ws_router)
