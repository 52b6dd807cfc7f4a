from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from ..errors import BackendUnavailableError, ProviderError
from ..recommendations.models import Duration, LatLng
from .config import DEFAULT_PROVIDER_CONFIG, ProviderConfig
from .http import request_json

logger = logging.getLogger(__name__)

# Distance Matrix statuses that mean the backend will not serve us at all.
_UNAVAILABLE_STATUSES = {"REQUEST_DENIED", "OVER_DAILY_LIMIT", "OVER_QUERY_LIMIT"}


class RoutingBackend(Protocol):
    """Walking durations from one origin to many destinations.

    Returns one entry per destination, in order; ``None`` marks an element
    the backend could not route.
    """

    name: str

    async def durations(self, origin: LatLng, destinations: list[LatLng]) -> list[Duration | None]:
        ...


def format_duration(seconds: float) -> str:
    """Human text in the same shape Distance Matrix uses ("1 min", "1 hour 5 mins")."""
    minutes = max(1, round(seconds / 60))
    hours, minutes = divmod(minutes, 60)
    parts = []
    if hours:
        parts.append(f"{hours} hour" if hours == 1 else f"{hours} hours")
    if minutes or not hours:
        parts.append(f"{minutes} min" if minutes == 1 else f"{minutes} mins")
    return " ".join(parts)


class GoogleDistanceMatrixBackend:
    name = "google"

    def __init__(
        self,
        config: ProviderConfig = DEFAULT_PROVIDER_CONFIG,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config
        self._client = client or httpx.AsyncClient()

    async def durations(self, origin: LatLng, destinations: list[LatLng]) -> list[Duration | None]:
        if not destinations:
            return []
        if not self.config.google_api_key:
            raise BackendUnavailableError("GOOGLE_MAPS_API_KEY not set")

        data = await request_json(
            self._client,
            "GET",
            self.config.distance_matrix_url,
            service="Distance Matrix",
            params={
                "origins": f"{origin.lat},{origin.lng}",
                "destinations": "|".join(f"{d.lat},{d.lng}" for d in destinations),
                "mode": "walking",
                "key": self.config.google_api_key,
            },
            timeout=self.config.routing_timeout,
        )
        status = data.get("status")
        if status in _UNAVAILABLE_STATUSES:
            raise BackendUnavailableError(f"Distance Matrix status {status}")
        if status != "OK":
            raise ProviderError(f"Distance Matrix status {status}")

        rows = data.get("rows") or []
        elements = rows[0].get("elements", []) if rows else []
        results: list[Duration | None] = []
        for i in range(len(destinations)):
            element = elements[i] if i < len(elements) else {}
            results.append(_element_duration(element))
        return results

    async def aclose(self) -> None:
        await self._client.aclose()


def _element_duration(element: dict[str, Any]) -> Duration | None:
    if element.get("status") != "OK" or "duration" not in element:
        return None
    duration = element["duration"]
    seconds = int(duration["value"])
    return Duration(text=duration.get("text") or format_duration(seconds), seconds=seconds)


class OsrmBackend:
    """OSRM table service with the ``foot`` profile."""

    name = "osrm"

    def __init__(
        self,
        config: ProviderConfig = DEFAULT_PROVIDER_CONFIG,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config
        self._client = client or httpx.AsyncClient()

    async def durations(self, origin: LatLng, destinations: list[LatLng]) -> list[Duration | None]:
        if not destinations:
            return []
        if not self.config.osrm_base_url:
            raise BackendUnavailableError("OSRM_BASE_URL not set")

        # OSRM wants lng,lat pairs; index 0 is the origin.
        coords = ";".join(f"{p.lng},{p.lat}" for p in [origin, *destinations])
        data = await request_json(
            self._client,
            "GET",
            f"{self.config.osrm_base_url.rstrip('/')}/table/v1/foot/{coords}",
            service="OSRM",
            params={"sources": "0", "annotations": "duration"},
            timeout=self.config.routing_timeout,
        )
        if data.get("code") != "Ok":
            raise ProviderError(f"OSRM returned code {data.get('code')}")

        row = (data.get("durations") or [[]])[0][1:]
        results: list[Duration | None] = []
        for i in range(len(destinations)):
            seconds = row[i] if i < len(row) else None
            if seconds is None:
                results.append(None)
                continue
            seconds = int(round(seconds))
            results.append(Duration(text=format_duration(seconds), seconds=seconds))
        return results

    async def aclose(self) -> None:
        await self._client.aclose()
