"""
Google Places API (New) client.

Text search only asks for place ids (cheapest field mask); the full record
comes from a separate details call so it can be cached per venue.
"""
from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from ..errors import BackendUnavailableError, ProviderError
from ..recommendations.models import (
    LatLng,
    OpeningHours,
    PaymentOptions,
    Review,
    Venue,
)
from .config import DEFAULT_PROVIDER_CONFIG, ProviderConfig
from .http import request_json

logger = logging.getLogger(__name__)

PRICE_LEVEL_MAP: dict[str, int] = {
    "FREE": 1,
    "INEXPENSIVE": 2,
    "MODERATE": 3,
    "EXPENSIVE": 4,
    "VERY_EXPENSIVE": 5,
}

DETAIL_FIELDS = [
    "id",
    "displayName",
    "location",
    "rating",
    "userRatingCount",
    "priceLevel",
    "types",
    "editorialSummary",
    "regularOpeningHours",
    "reviews",
    "servesVegetarianFood",
    "paymentOptions",
    "utcOffsetMinutes",
]


class SearchProvider(Protocol):
    async def search(self, query: str, origin: LatLng, radius: int) -> list[str]:
        ...

    async def details(self, venue_id: str) -> Venue:
        ...


# ---------------------------------------------------------------------------
# Payload mapping
# ---------------------------------------------------------------------------


def _price_level(raw: Any) -> int | None:
    if isinstance(raw, int):
        return raw if 1 <= raw <= 5 else None
    if not isinstance(raw, str):
        return None
    return PRICE_LEVEL_MAP.get(raw.removeprefix("PRICE_LEVEL_"))


def _text(raw: Any) -> str:
    if isinstance(raw, dict):
        return raw.get("text") or ""
    return raw or ""


def place_to_venue(place: dict[str, Any]) -> Venue:
    """Map a Places API (New) place object onto ``Venue``."""
    location = place.get("location")
    hours = place.get("regularOpeningHours")
    payment = place.get("paymentOptions")
    summary = _text(place.get("editorialSummary"))

    return Venue(
        id=place["id"],
        name=_text(place.get("displayName")) or place["id"],
        location=LatLng(lat=location["latitude"], lng=location["longitude"]) if location else None,
        rating=place.get("rating"),
        rating_count=place.get("userRatingCount") or 0,
        price_level=_price_level(place.get("priceLevel")),
        types=place.get("types") or [],
        opening_hours=OpeningHours(
            weekday_text=hours.get("weekdayDescriptions") or [],
            open_now=hours.get("openNow"),
        ) if hours else None,
        reviews=[
            Review(
                text=_text(r.get("text") or r.get("originalText")),
                stars=r.get("rating"),
                relative_age=r.get("relativePublishTimeDescription"),
            )
            for r in place.get("reviews") or []
        ],
        payment_options=PaymentOptions(
            cash_only=payment.get("acceptsCashOnly"),
            accepts_cards=payment.get("acceptsCreditCards"),
        ) if payment else None,
        editorial_summary=summary or None,
        serves_vegetarian_food=place.get("servesVegetarianFood"),
        utc_offset_minutes=place.get("utcOffsetMinutes"),
    )


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class GooglePlacesClient:
    def __init__(
        self,
        config: ProviderConfig = DEFAULT_PROVIDER_CONFIG,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config
        self._client = client or httpx.AsyncClient()

    def _headers(self, field_mask: str) -> dict[str, str]:
        if not self.config.google_api_key:
            raise BackendUnavailableError("GOOGLE_MAPS_API_KEY not set")
        return {
            "X-Goog-Api-Key": self.config.google_api_key,
            "X-Goog-FieldMask": field_mask,
        }

    async def search(self, query: str, origin: LatLng, radius: int) -> list[str]:
        """Return the venue ids matching *query* around *origin*."""
        body = {
            "textQuery": query,
            "maxResultCount": self.config.max_results_per_search,
            "languageCode": self.config.language,
            "locationBias": {
                "circle": {
                    "center": {"latitude": origin.lat, "longitude": origin.lng},
                    "radius": float(radius),
                },
            },
        }
        data = await request_json(
            self._client,
            "POST",
            f"{self.config.places_base_url}/places:searchText",
            service="Places search",
            json=body,
            headers=self._headers("places.id"),
            timeout=self.config.search_timeout,
        )
        ids = [p["id"] for p in (data or {}).get("places", []) if p.get("id")]
        logger.debug("Search %r returned %d places", query, len(ids))
        return ids

    async def details(self, venue_id: str) -> Venue:
        data = await request_json(
            self._client,
            "GET",
            f"{self.config.places_base_url}/places/{venue_id}",
            service="Places details",
            params={"languageCode": self.config.language},
            headers=self._headers(",".join(DETAIL_FIELDS)),
            timeout=self.config.details_timeout,
        )
        try:
            return place_to_venue(data)
        except (KeyError, TypeError, ValueError) as exc:
            raise ProviderError(f"Malformed place details for {venue_id}: {exc}") from exc

    async def aclose(self) -> None:
        await self._client.aclose()
