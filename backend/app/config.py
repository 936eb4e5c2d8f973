from __future__ import annotations

import secrets
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def generate_secret() -> str:
    """Generate a secure random token."""
    return secrets.token_hex(32)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ------------------------------------------------------------
    # Server
    # ------------------------------------------------------------
    backend_host: str = "0.0.0.0"
    backend_port: int = 8080
    environment: str = "development"  # development | staging | production

    # ------------------------------------------------------------
    # Database
    # ------------------------------------------------------------
    database_url: str = "sqlite:///./data/app.db"

    # ------------------------------------------------------------
    # Authentication (JWT)
    # ------------------------------------------------------------
    # In production, MUST be set via env var JWT_SECRET
    jwt_secret: str = Field(default_factory=generate_secret)
    jwt_issuer: str = "fleet-sim"
    jwt_audience: str = "fleet-admin"
    access_token_expire_minutes: int = 720
    jwt_algorithm: str = "HS256"

    # ------------------------------------------------------------
    # CORS
    # ------------------------------------------------------------
    # Comma-separated origins, e.g.:
    # "http://localhost:3000,https://admin.example.com"
    cors_origins: str = "http://localhost:3000"

    # ------------------------------------------------------------
    # Directions provider (Mapbox Directions v5)
    # ------------------------------------------------------------
    directions_base_url: str = "https://api.mapbox.com/directions/v5/mapbox"
    directions_profile: str = "driving"
    directions_token: Optional[str] = None
    directions_timeout_s: float = 10.0
    directions_max_retries: int = 2
    directions_retry_delay_s: float = 1.0
    directions_failure_ttl_s: float = 60.0
    directions_cache_size: int = 512
    # Skip the provider entirely and synthesize straight-line routes
    directions_use_mock: bool = False
    # When False, a provider failure is reported as "no route" instead
    directions_fallback_enabled: bool = True

    # ------------------------------------------------------------
    # Simulation engine
    # ------------------------------------------------------------
    simulation_store: str = "sql"  # sql | memory
    simulation_tick_interval_ms: float = 1000 / 30
    simulation_average_speed_kph: float = 60.0
    simulation_speed_multiplier: float = 1.0
    simulation_min_speed_multiplier: float = 0.0
    simulation_max_speed_multiplier: float = 500.0
    simulation_max_consecutive_failed_ticks: int = 3
    simulation_persist_interval_s: float = 1.0
    simulation_require_delivery_date: bool = False
    # Neutral map position used when a shipment has no usable origin (Kuala Lumpur)
    simulation_fallback_lon: float = 101.6869
    simulation_fallback_lat: float = 3.1390

    # Backend tick endpoint. Unset disables the per-tick sync.
    simulation_sync_url: Optional[str] = None
    simulation_sync_timeout_s: float = 2.0
    simulation_sync_queue_size: int = 256

    # ------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------
    log_level: str = "INFO"
    log_format: str = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

    @property
    def cors_origins_list(self) -> List[str]:
        return [x.strip() for x in self.cors_origins.split(",") if x.strip()]

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def directions_configured(self) -> bool:
        return bool(self.directions_token) and not self.directions_use_mock

    @property
    def average_speed_mps(self) -> float:
        return self.simulation_average_speed_kph * 1000.0 / 3600.0

    def validate_runtime(self) -> None:
        """Fail fast on missing critical config in production."""
        import os
        if self.is_production:
            missing = []
            # Require explicitly-set secrets in production (not auto-generated)
            if not os.environ.get("JWT_SECRET"):
                missing.append("JWT_SECRET")
            if missing:
                raise RuntimeError(
                    f"Missing required environment variables in production: {', '.join(missing)}"
                )


settings = Settings()
settings.validate_runtime()
