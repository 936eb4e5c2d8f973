from __future__ import annotations

import asyncio
import logging
import random
import time
from collections import OrderedDict
from typing import Dict, List, Optional, Tuple

from app.config import settings
from app.schemas.simulation import Route
from app.services import geo
from app.services.directions_adapter import DirectionsAdapter

logger = logging.getLogger("app.route_resolver")

Coord = Tuple[float, float]

# Max latitude offset (degrees) applied to the synthetic midpoint
MIDPOINT_JITTER_DEG = 0.005


class RouteResolver:
    """Resolves origin/destination pairs into a route polyline.

    Order of preference:
    1. cached provider route for the same coordinate pair
    2. directions provider (with retries and a per-call timeout)
    3. synthetic straight line with a jittered midpoint

    resolve() never raises; None means no route could be produced.
    """

    def __init__(
        self,
        adapter: Optional[DirectionsAdapter] = None,
        *,
        use_mock: Optional[bool] = None,
        fallback_enabled: Optional[bool] = None,
        timeout_s: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_delay_s: Optional[float] = None,
        failure_ttl_s: Optional[float] = None,
        cache_size: Optional[int] = None,
        rng: Optional[random.Random] = None,
    ):
        self.adapter = adapter
        self.use_mock = settings.directions_use_mock if use_mock is None else use_mock
        self.fallback_enabled = (
            settings.directions_fallback_enabled if fallback_enabled is None else fallback_enabled
        )
        self.timeout_s = settings.directions_timeout_s if timeout_s is None else timeout_s
        self.max_retries = settings.directions_max_retries if max_retries is None else max_retries
        self.retry_delay_s = settings.directions_retry_delay_s if retry_delay_s is None else retry_delay_s
        self.failure_ttl_s = settings.directions_failure_ttl_s if failure_ttl_s is None else failure_ttl_s
        self.cache_size = settings.directions_cache_size if cache_size is None else cache_size
        self._rng = rng or random.Random()
        self._cache: "OrderedDict[str, Route]" = OrderedDict()
        self._failures: Dict[str, float] = {}

    @staticmethod
    def cache_key(origin: Coord, destination: Coord) -> str:
        return f"{origin[0]},{origin[1]}|{destination[0]},{destination[1]}"

    def clear_cache(self) -> None:
        self._cache.clear()
        self._failures.clear()
        logger.info("Route cache cleared")

    async def resolve(
        self,
        origin: Coord,
        destination: Coord,
        *,
        use_mock: Optional[bool] = None,
    ) -> Optional[Route]:
        try:
            return await self._resolve(origin, destination, use_mock)
        except Exception as e:
            logger.exception("Route resolution crashed for %s -> %s: %s", origin, destination, e)
            return None

    async def _resolve(self, origin: Coord, destination: Coord, use_mock: Optional[bool]) -> Optional[Route]:
        if not (geo.is_valid_coordinate(origin) and geo.is_valid_coordinate(destination)):
            logger.warning("Refusing to resolve route for invalid coordinates %s -> %s", origin, destination)
            return None

        mock = self.use_mock if use_mock is None else use_mock
        if mock or self.adapter is None:
            logger.debug("Using synthetic route for %s -> %s", origin, destination)
            return self.straight_line(origin, destination)

        key = self.cache_key(origin, destination)
        cached = self._cache.get(key)
        if cached is not None:
            self._cache.move_to_end(key)
            logger.debug("Returning cached route for %s", key)
            return cached

        if self._recently_failed(key):
            logger.info("Provider failed recently for %s; skipping to fallback", key)
            return self._fallback(origin, destination)

        points = await self._fetch_with_retries(origin, destination)
        if points is None:
            self._failures[key] = time.monotonic()
            return self._fallback(origin, destination)

        route = Route(coordinates=points, distance_m=geo.polyline_length(points), source="directions")
        self._remember(key, route)
        return route

    async def _fetch_with_retries(self, origin: Coord, destination: Coord) -> Optional[List[Coord]]:
        attempts = max(self.max_retries, 0) + 1
        for attempt in range(attempts):
            try:
                return await asyncio.wait_for(
                    self.adapter.fetch_route(origin, destination), timeout=self.timeout_s
                )
            except asyncio.TimeoutError:
                logger.warning(
                    "Directions request timed out after %.1fs (attempt %d/%d)",
                    self.timeout_s, attempt + 1, attempts,
                )
            except Exception as e:
                logger.warning("Directions request failed (attempt %d/%d): %s", attempt + 1, attempts, e)
            if attempt < attempts - 1 and self.retry_delay_s > 0:
                await asyncio.sleep(self.retry_delay_s * (2 ** attempt))
        return None

    def _fallback(self, origin: Coord, destination: Coord) -> Optional[Route]:
        if not self.fallback_enabled:
            logger.warning("No route for %s -> %s and fallback disabled", origin, destination)
            return None
        logger.warning("Falling back to straight-line route for %s -> %s", origin, destination)
        return self.straight_line(origin, destination)

    def straight_line(self, origin: Coord, destination: Coord) -> Route:
        """Synthetic route; a two-point line gets a slightly jittered midpoint."""
        mid = (
            (origin[0] + destination[0]) / 2,
            (origin[1] + destination[1]) / 2 + self._rng.uniform(-MIDPOINT_JITTER_DEG, MIDPOINT_JITTER_DEG),
        )
        points = [tuple(origin), mid, tuple(destination)]
        return Route(coordinates=points, distance_m=geo.polyline_length(points), source="fallback")

    def _recently_failed(self, key: str) -> bool:
        ts = self._failures.get(key)
        if ts is None:
            return False
        if time.monotonic() - ts < self.failure_ttl_s:
            return True
        self._failures.pop(key, None)
        return False

    def _remember(self, key: str, route: Route) -> None:
        if self.cache_size <= 0:
            return
        self._cache[key] = route
        self._cache.move_to_end(key)
        while len(self._cache) > self.cache_size:
            self._cache.popitem(last=False)

    async def close(self) -> None:
        if self.adapter is not None:
            await self.adapter.close()
