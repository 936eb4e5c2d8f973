from __future__ import annotations

import math
from typing import Sequence, Tuple

Coord = Tuple[float, float]  # (lon, lat)

EARTH_RADIUS_M = 6371008.8


def is_valid_coordinate(c) -> bool:
    """True for a finite (lon, lat) pair inside WGS84 bounds."""
    try:
        lon, lat = float(c[0]), float(c[1])
    except (TypeError, ValueError, IndexError):
        return False
    if not (math.isfinite(lon) and math.isfinite(lat)):
        return False
    return -180.0 <= lon <= 180.0 and -90.0 <= lat <= 90.0


def haversine_distance(a: Coord, b: Coord) -> float:
    """Great-circle distance in meters."""
    lon1, lat1 = math.radians(a[0]), math.radians(a[1])
    lon2, lat2 = math.radians(b[0]), math.radians(b[1])
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def normalize_bearing(deg: float) -> float:
    return (deg % 360.0 + 360.0) % 360.0


def initial_bearing(a: Coord, b: Coord) -> float:
    """Heading from a to b, degrees clockwise from north in [0, 360)."""
    lon1, lat1 = math.radians(a[0]), math.radians(a[1])
    lon2, lat2 = math.radians(b[0]), math.radians(b[1])
    dlon = lon2 - lon1
    y = math.sin(dlon) * math.cos(lat2)
    x = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(dlon)
    return normalize_bearing(math.degrees(math.atan2(y, x)))


def destination_point(origin: Coord, distance_m: float, bearing_deg: float) -> Coord:
    """Point reached travelling distance_m from origin on the given heading."""
    lon1, lat1 = math.radians(origin[0]), math.radians(origin[1])
    brg = math.radians(bearing_deg)
    delta = distance_m / EARTH_RADIUS_M

    lat2 = math.asin(
        math.sin(lat1) * math.cos(delta) + math.cos(lat1) * math.sin(delta) * math.cos(brg)
    )
    lon2 = lon1 + math.atan2(
        math.sin(brg) * math.sin(delta) * math.cos(lat1),
        math.cos(delta) - math.sin(lat1) * math.sin(lat2),
    )
    lon = (math.degrees(lon2) + 540.0) % 360.0 - 180.0
    return (lon, math.degrees(lat2))


def polyline_length(coords: Sequence[Coord]) -> float:
    if len(coords) < 2:
        raise ValueError("polyline needs at least two points")
    return sum(haversine_distance(coords[i], coords[i + 1]) for i in range(len(coords) - 1))


def first_segment_bearing(coords: Sequence[Coord]) -> float:
    for i in range(len(coords) - 1):
        if haversine_distance(coords[i], coords[i + 1]) > 0:
            return initial_bearing(coords[i], coords[i + 1])
    return 0.0


def last_segment_bearing(coords: Sequence[Coord]) -> float:
    for i in range(len(coords) - 1, 0, -1):
        if haversine_distance(coords[i - 1], coords[i]) > 0:
            return initial_bearing(coords[i - 1], coords[i])
    return 0.0


def point_along(coords: Sequence[Coord], distance_m: float) -> Tuple[Coord, float]:
    """Locate the point distance_m along a polyline.

    Returns (coordinate, bearing of the containing segment). The distance is
    clamped to [0, length]; zero-length segments are skipped.
    """
    if len(coords) < 2:
        raise ValueError("polyline needs at least two points")
    if not math.isfinite(distance_m):
        raise ValueError(f"distance must be finite, got {distance_m!r}")

    if distance_m <= 0:
        start = (float(coords[0][0]), float(coords[0][1]))
        return start, first_segment_bearing(coords)

    travelled = 0.0
    for i in range(len(coords) - 1):
        a, b = coords[i], coords[i + 1]
        seg = haversine_distance(a, b)
        if seg <= 0:
            continue
        if travelled + seg >= distance_m:
            brg = initial_bearing(a, b)
            remaining = distance_m - travelled
            if remaining >= seg:
                return (float(b[0]), float(b[1])), brg
            return destination_point(a, remaining, brg), brg
        travelled += seg

    end = (float(coords[-1][0]), float(coords[-1][1]))
    return end, last_segment_bearing(coords)


def distance_to_polyline(p: Coord, coords: Sequence[Coord]) -> float:
    """Approximate meters from p to the nearest polyline segment.

    Uses a local equirectangular projection per segment, which is accurate
    enough for on-route tolerance checks.
    """
    best = math.inf
    for i in range(len(coords) - 1):
        a, b = coords[i], coords[i + 1]
        lat0 = math.radians((a[1] + b[1]) / 2)
        kx = math.cos(lat0) * EARTH_RADIUS_M * math.pi / 180.0
        ky = EARTH_RADIUS_M * math.pi / 180.0
        ax, ay = 0.0, 0.0
        bx, by = (b[0] - a[0]) * kx, (b[1] - a[1]) * ky
        px, py = (p[0] - a[0]) * kx, (p[1] - a[1]) * ky
        ab2 = bx * bx + by * by
        if ab2 <= 1e-9:
            d = math.hypot(px, py)
        else:
            t = max(0.0, min(1.0, (px * bx + py * by) / ab2))
            d = math.hypot(px - t * bx, py - t * by)
        best = min(best, d)
    return best
