from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
load_dotenv(Path(__file__).resolve().parent.parent.parent / ".env")


@dataclass(frozen=True)
class PipelineConfig:
    max_live_searches: int = int(os.getenv("MAX_LIVE_SEARCHES", "2"))
    duration_sample_size: int = 50
    routing_batch_size: int = 25
    routing_timeout: float = float(os.getenv("ROUTING_BATCH_TIMEOUT", "10"))
    details_concurrency: int = 10
    relaxed_factor: float = 1.5
    emergency_count: int = 5
    top_n: int = 40
    ai_candidates: int = 25
    reviews_per_venue: int = 30
    recommendation_count: int = 3
    error_reset_delay: float = float(os.getenv("ERROR_RESET_DELAY", "5"))


DEFAULT_PIPELINE_CONFIG = PipelineConfig()
