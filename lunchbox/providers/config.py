from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
load_dotenv(Path(__file__).resolve().parent.parent.parent / ".env")


@dataclass(frozen=True)
class ProviderConfig:
    google_api_key: str = os.getenv("GOOGLE_MAPS_API_KEY", "")
    places_base_url: str = os.getenv("PLACES_BASE_URL", "https://places.googleapis.com/v1")
    distance_matrix_url: str = os.getenv(
        "DISTANCE_MATRIX_URL",
        "https://maps.googleapis.com/maps/api/distancematrix/json",
    )
    osrm_base_url: str = os.getenv("OSRM_BASE_URL", "https://router.project-osrm.org")
    search_timeout: float = float(os.getenv("SEARCH_TIMEOUT", "10"))
    details_timeout: float = float(os.getenv("DETAILS_TIMEOUT", "10"))
    routing_timeout: float = float(os.getenv("ROUTING_TIMEOUT", "10"))
    max_results_per_search: int = 20
    language: str = os.getenv("PLACES_LANGUAGE", "en")


DEFAULT_PROVIDER_CONFIG = ProviderConfig()
