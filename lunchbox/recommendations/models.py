from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


# ── Tagged variants ──────────────────────────────────────────────────────


class HungerVibe(str, Enum):
    grab_and_go = "Grab & Go"
    light_and_clean = "Light & Clean"
    hearty_and_rich = "Hearty & Rich"
    spicy_and_bold = "Spicy & Bold"
    view_and_vibe = "View & Vibe"
    authentic_and_classic = "Authentic & Classic"


class PricePoint(str, Enum):
    paying_myself = "Paying Myself"  # price levels 1-2
    company_card = "Company Card"  # price levels 3-4


class WalkLimit(str, Enum):
    five_min = "5 min"
    fifteen_min = "15 min"
    thirty_min = "30 min"


class DietaryRestriction(str, Enum):
    gluten_free = "Gluten-Free"
    vegan = "Vegan"
    vegetarian = "Vegetarian"


_WALK_CONFIG: dict[WalkLimit, tuple[int, int]] = {
    WalkLimit.five_min: (1000, 300),
    WalkLimit.fifteen_min: (2500, 900),
    WalkLimit.thirty_min: (5000, 2400),
}


def walk_config(limit: WalkLimit | str) -> tuple[int, int]:
    """Return ``(search_radius_m, max_duration_s)`` for a walk limit."""
    try:
        return _WALK_CONFIG[WalkLimit(limit)]
    except ValueError:
        return _WALK_CONFIG[WalkLimit.thirty_min]


# ── Venue data ───────────────────────────────────────────────────────────


class LatLng(BaseModel):
    lat: float = Field(..., ge=-90.0, le=90.0)
    lng: float = Field(..., ge=-180.0, le=180.0)


class Review(BaseModel):
    text: str = ""
    stars: int | None = None
    relative_age: str | None = None


class OpeningHours(BaseModel):
    weekday_text: list[str] = Field(default_factory=list, description="Monday-first")
    open_now: bool | None = None


class PaymentOptions(BaseModel):
    cash_only: bool | None = None
    accepts_cards: bool | None = None


class Venue(BaseModel):
    id: str = Field(..., min_length=1)
    name: str
    location: LatLng | None = None
    rating: float | None = Field(default=None, ge=0.0, le=5.0)
    rating_count: int = Field(default=0, ge=0)
    price_level: int | None = Field(default=None, ge=1, le=5)
    types: list[str] = Field(default_factory=list)
    opening_hours: OpeningHours | None = None
    reviews: list[Review] = Field(default_factory=list)
    payment_options: PaymentOptions | None = None
    editorial_summary: str | None = None
    serves_vegetarian_food: bool | None = None
    # Minutes east of UTC at the venue, as reported by the provider.
    utc_offset_minutes: int | None = Field(default=None, ge=-840, le=840)

    @property
    def is_cash_only(self) -> bool:
        opts = self.payment_options
        if opts is None:
            return False
        return bool(opts.cash_only) or opts.accepts_cards is False


class Duration(BaseModel):
    text: str
    seconds: int = Field(..., ge=0)


class Candidate(BaseModel):
    venue: Venue
    duration: Duration | None = None
    estimated: bool = False
    score: float = 0.0

    @property
    def duration_seconds(self) -> int | None:
        return self.duration.seconds if self.duration else None


# ── Preferences & results ────────────────────────────────────────────────


class Preferences(BaseModel):
    lat: float | None = Field(default=None, ge=-90.0, le=90.0)
    lng: float | None = Field(default=None, ge=-180.0, le=180.0)
    address: str = ""
    vibe: HungerVibe | None = None
    price: PricePoint | None = None
    walk_limit: WalkLimit = WalkLimit.fifteen_min
    no_cash: bool = False
    newly_opened_only: bool = False
    dietary_restrictions: list[DietaryRestriction] = Field(default_factory=list)
    freestyle_prompt: str | None = Field(default=None, max_length=500)
    # Minutes east of UTC for the user, used when a venue reports none.
    utc_offset_minutes: int | None = Field(default=None, ge=-840, le=840)

    @property
    def origin(self) -> LatLng | None:
        if self.lat is None or self.lng is None:
            return None
        return LatLng(lat=self.lat, lng=self.lng)


class Recommendation(BaseModel):
    venue_id: str
    reason: str
    recommended_dish: str
    is_cash_only: bool = False
    is_fresh_drop: bool = False
    caveat: str | None = None
    source: str = Field(default="ai", description='"ai" or "backfill"')

    @property
    def is_backfill(self) -> bool:
        return self.source == "backfill"


class FinalResult(BaseModel):
    venue: Venue
    recommendation: Recommendation
    walking_time_text: str
    walking_time_seconds: int | None = None
    cash_warning: str | None = None
