"""Data models for the restaurant recommendation engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from utils import normalize_tags

PRICE_TIERS = ["$", "$$", "$$$", "$$$$"]
DISPLAY_REASON_LIMIT = 2


@dataclass
class Preferences:
    cuisine_preferences: list[str] = field(default_factory=list)
    price_range: Optional[str] = None
    dietary_restrictions: list[str] = field(default_factory=list)
    allergens: list[str] = field(default_factory=list)
    favorite_meal_times: list[str] = field(default_factory=list)
    delivery_radius: Optional[float] = None  # km
    street: Optional[str] = None

    @property
    def total_preference_count(self) -> int:
        # meal times, radius and street are bonuses only, they never count as signals;
        # tags are counted the way scoring matches them
        return (
            len(normalize_tags(self.cuisine_preferences))
            + (1 if self.price_range in PRICE_TIERS else 0)
            + len(normalize_tags(self.dietary_restrictions))
            + len(normalize_tags(self.allergens))
        )

    @property
    def is_empty(self) -> bool:
        return self.total_preference_count == 0


@dataclass
class RestaurantAnalytics:
    profile_views: int = 0
    menu_views: int = 0
    average_rating: Optional[float] = None
    rating_count: int = 0


@dataclass
class Restaurant:
    id: str
    name: str
    cuisine_type: list[str] = field(default_factory=list)
    price_range: Optional[str] = None
    address: Optional[str] = None
    delivery_radius: Optional[float] = None  # km
    specialties: list[str] = field(default_factory=list)
    analytics: RestaurantAnalytics = field(default_factory=RestaurantAnalytics)


@dataclass
class Menu:
    restaurant_id: str
    cuisine_type: Optional[str] = None
    dietary_restrictions: list[str] = field(default_factory=list)
    allergens: list[str] = field(default_factory=list)
    is_active: bool = True
    id: Optional[str] = None
    name: Optional[str] = None


@dataclass
class ScoreResult:
    restaurant: Restaurant
    score: float
    reasons: list[str] = field(default_factory=list)
    matched: bool = False

    @property
    def display_reasons(self) -> List[str]:
        return self.reasons[:DISPLAY_REASON_LIMIT]


@dataclass(frozen=True)
class RatingSnapshot:
    average: Optional[float] = None  # None means unrated, never 0
    count: int = 0


@dataclass
class Recommendation:
    result: ScoreResult
    rating: RatingSnapshot = field(default_factory=RatingSnapshot)


@dataclass
class RecommendationOutcome:
    recommendations: list[Recommendation] = field(default_factory=list)
    status: str = "ok"  # ok | fallback | empty | unavailable | pending
    source: str = "rules"  # rules | ai
    generation: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.recommendations
