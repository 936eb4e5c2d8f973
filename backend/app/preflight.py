from __future__ import annotations

"""Preflight checks for container startup.

- ensures data directory exists for SQLite
- prints config summary (secrets masked)
"""

import os
from app.config import settings


def _mask_db_url(db_url: str) -> str:
    if "@" not in db_url:
        return db_url
    parts = db_url.split("@")
    return parts[0].split("://")[0] + "://***@" + parts[-1]


def main():
    if settings.database_url.startswith("sqlite:///./"):
        os.makedirs("data", exist_ok=True)
    print("Preflight OK")
    print(f"DATABASE_URL={_mask_db_url(settings.database_url)}")
    print(f"SIMULATION_STORE={settings.simulation_store}")
    print(f"DIRECTIONS={'mapbox' if settings.directions_configured else 'straight-line fallback'}")
    print(f"SIMULATION_SYNC_URL={settings.simulation_sync_url or '(disabled)'}")
    print(f"CORS_ORIGINS={settings.cors_origins}")


if __name__ == "__main__":
    main()
