from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(Path(__file__).resolve().parent.parent.parent / ".env")


@dataclass(frozen=True)
class LLMConfig:
    api_key: str = os.getenv("GROQ_API_KEY", "")
    model: str = os.getenv("GROQ_MODEL", "llama-3.3-70b-versatile")
    light_model: str = os.getenv("GROQ_LIGHT_MODEL", "llama-3.1-8b-instant")
    timeout: float = float(os.getenv("GROQ_TIMEOUT", "30"))
    # Selection answers carry reasons and dishes for up to 25 venues
    max_tokens: int = 2048
    enabled: bool = os.getenv("LLM_ENABLED", "true").lower() != "false"

    @property
    def usable(self) -> bool:
        return self.enabled and bool(self.api_key)


DEFAULT_LLM_CONFIG = LLMConfig()
