from __future__ import annotations

from .config import DEFAULT_CACHE_CONFIG


def origin_key(lat: float, lng: float, precision: int = DEFAULT_CACHE_CONFIG.coord_precision) -> str:
    """Round a coordinate into a cache bucket shared by nearby origins."""
    return f"{round(lat, precision):.{precision}f},{round(lng, precision):.{precision}f}"


def search_key(lat: float, lng: float, query: str, radius: int) -> str:
    return f"{origin_key(lat, lng)}:{radius}:{query.lower().strip()}"


def distance_key(lat: float, lng: float, venue_id: str) -> str:
    return f"{origin_key(lat, lng)}:{venue_id}"
