from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(Path(__file__).resolve().parent.parent.parent / ".env")

_MINUTE = 60
_HOUR = 60 * _MINUTE
_DAY = 24 * _HOUR


@dataclass(frozen=True)
class CacheConfig:
    search_l1_ttl: float = float(os.getenv("SEARCH_L1_TTL", str(30 * _MINUTE)))
    search_l2_ttl: float = float(os.getenv("SEARCH_L2_TTL", str(_DAY)))
    details_l1_ttl: float = float(os.getenv("DETAILS_L1_TTL", str(_HOUR)))
    details_l2_ttl: float = float(os.getenv("DETAILS_L2_TTL", str(7 * _DAY)))
    distance_l1_ttl: float = float(os.getenv("DISTANCE_L1_TTL", str(_HOUR)))
    distance_l2_ttl: float = float(os.getenv("DISTANCE_L2_TTL", str(3 * _DAY)))
    # 3 decimals ~ 111 m of latitude
    coord_precision: int = 3
    redis_url: str = os.getenv("REDIS_URL", "")
    history_max_len: int = 1000


DEFAULT_CACHE_CONFIG = CacheConfig()

# Estimated EUR cost of one avoided provider call, per cache.
COST_PER_CALL_EUR: dict[str, float] = {
    "search": 0.032,
    "details": 0.017,
    "distance": 0.005,
}
