from __future__ import annotations

import httpx
from typing import Any, Dict, List, Optional, Tuple

from app.config import settings

Coord = Tuple[float, float]


class DirectionsError(Exception):
    """The provider answered, but without a usable route."""


class DirectionsAdapter:
    """Minimal HTTP adapter for the Mapbox Directions API.

    GET {base_url}/{profile}/{lon},{lat};{lon},{lat}
        ?geometries=geojson&overview=full&access_token=...
    -> {"routes": [{"geometry": {"type": "LineString", "coordinates": [...]},
                    "distance": meters, "duration": seconds}], ...}
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        profile: Optional[str] = None,
        timeout_s: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.directions_base_url).rstrip("/")
        self.token = token if token is not None else settings.directions_token
        self.profile = profile or settings.directions_profile
        # Single shared client for all provider calls
        self._client = httpx.AsyncClient(
            timeout=timeout_s or settings.directions_timeout_s,
            transport=transport,
        )

    @property
    def configured(self) -> bool:
        return bool(self.token)

    async def fetch_route(self, origin: Coord, destination: Coord) -> List[Coord]:
        """Return the road-following polyline as (lon, lat) pairs."""
        if not self.token:
            raise DirectionsError("directions token not configured")

        coords = f"{origin[0]},{origin[1]};{destination[0]},{destination[1]}"
        params = {
            "geometries": "geojson",
            "overview": "full",
            "access_token": self.token,
        }
        r = await self._client.get(f"{self.base_url}/{self.profile}/{coords}", params=params)
        r.raise_for_status()
        return self._parse(r.json())

    @staticmethod
    def _parse(data: Dict[str, Any]) -> List[Coord]:
        routes = data.get("routes") or []
        if not routes:
            raise DirectionsError(data.get("message") or "no routes in provider response")
        geometry = routes[0].get("geometry") or {}
        if geometry.get("type") != "LineString":
            raise DirectionsError("route geometry is not a LineString")
        points = [(float(c[0]), float(c[1])) for c in geometry.get("coordinates") or []]
        if len(points) < 2:
            raise DirectionsError("route geometry has fewer than two points")
        return points

    async def close(self) -> None:
        await self._client.aclose()
