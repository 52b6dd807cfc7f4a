from __future__ import annotations

from pydantic import BaseModel, Field


class TranslatedIntent(BaseModel):
    search_queries: list[str] = Field(default_factory=list)
    newly_opened_only: bool | None = None
    popular_only: bool | None = None
    cuisine_type: str | None = None


class SearchPlan(BaseModel):
    queries: list[str]
    cuisine: str | None = None
    newly_opened_only: bool = False
    popular_only: bool = False
    source: str = Field(..., description='"cuisine", "translator", "fallback" or "vibe"')
