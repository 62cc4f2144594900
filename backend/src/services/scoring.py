"""Rule-based relevance scoring for a single restaurant.

Scores sit on a 100-point scale. Rule importance is
cuisine > price > dietary / allergen > meal time > popularity and quality
> delivery > street hint.
Only the cuisine and price rules may exclude a restaurant, and only in strict
mode; every other rule degrades to a minimal score plus a caveat reason so
that incomplete menu data never hides a restaurant.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, NamedTuple, Optional, Sequence

from models import PRICE_TIERS, Menu, Preferences, Restaurant, ScoreResult
from utils import normalize_tag, normalize_tags

FLEXIBLE_SIGNAL_COUNT = 1

NO_PREFERENCE_SCORE = 30.0
CUISINE_WEIGHT = 40.0
CUISINE_DISCOVERY_SCORE = 8.0
PRICE_WEIGHT = 25.0
PRICE_ADJACENT_SCORE = 12.0
PRICE_TOKEN_SCORE = 3.0
DIETARY_WEIGHT = 15.0
DIETARY_MINIMAL_SCORE = 3.0
ALLERGEN_WEIGHT = 15.0
ALLERGEN_MINIMAL_SCORE = 2.0
MEAL_TIME_BOTH_SCORE = 10.0
MEAL_TIME_SPECIALTY_SCORE = 6.0
MEAL_TIME_TIME_SCORE = 4.0
DELIVERY_BONUS = 5.0
DELIVERY_PENALTY = 5.0
STREET_BONUS = 3.0
POPULARITY_WEIGHT = 4.0
POPULARITY_FULL_VIEWS = 100
POPULAR_VIEWS_THRESHOLD = 50
QUALITY_WEIGHT = 3.0
HIGHLY_RATED_THRESHOLD = 4.0
EXCELLENT_RATING_THRESHOLD = 4.5
MAX_RATING = 5.0
FLEXIBLE_RESCUE_SCORE = 5.0

REASON_POPULAR = "Popular and available now"
REASON_DISCOVER = "Discover a new cuisine"
REASON_SUGGESTED = "Suggested for you"
REASON_PRICE_UNKNOWN = "Price not listed"
REASON_OUTSIDE_BUDGET = "Outside your usual budget"
REASON_CHEAPER = "More economical than your budget"
REASON_PRICIER = "Slightly more expensive than your budget"
REASON_DIETARY_UNLISTED = "Dietary options not listed, check with the restaurant"
REASON_DIETARY_NONE = "No menu confirmed for your dietary needs"
REASON_ALLERGENS_SAFE = "All dishes free of your allergens"
REASON_ALLERGENS_VERIFY = "Verify allergens on site"
REASON_LIMITED_DELIVERY = "Limited delivery area"
REASON_POPULAR_DINERS = "Popular with diners"
REASON_HIGHLY_RATED = "Highly rated"
REASON_EXCELLENT_RATING = "Excellently rated"

MEAL_TIME_LABELS = {
    "breakfast": "breakfast",
    "lunch": "lunch",
    "snack": "snacks",
    "dinner": "dinner",
    "late_night": "late-night dining",
}

MEAL_TIME_SPECIALTIES: Dict[str, set[str]] = {
    "breakfast": {"breakfast", "brunch", "breakfast_brunch"},
    "lunch": {"lunch", "quick_lunch"},
    "snack": {"snack", "snacks", "cafe", "dessert"},
    "dinner": {"dinner", "supper", "dinner_supper"},
    "late_night": {"late_night", "night"},
}


class _Rule(NamedTuple):
    points: float
    reason: Optional[str]
    matched: bool


def current_meal_time(now: Optional[datetime] = None) -> str:
    hour = (now or datetime.now()).hour
    if 6 <= hour < 11:
        return "breakfast"
    if 11 <= hour < 15:
        return "lunch"
    if 15 <= hour < 17:
        return "snack"
    if 17 <= hour < 23:
        return "dinner"
    return "late_night"


def is_flexible(prefs: Preferences) -> bool:
    return prefs.total_preference_count == FLEXIBLE_SIGNAL_COUNT


def _price_index(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return PRICE_TIERS.index(str(value).strip())
    except ValueError:
        return None


def _plural(count: int, word: str, suffix: str = "s") -> str:
    return f"{count} {word}{suffix if count != 1 else ''}"


def _score_cuisine(
    restaurant: Restaurant, menus: Sequence[Menu], prefs: Preferences, flexible: bool
) -> Optional[_Rule]:
    wanted: Dict[str, str] = {}
    for cuisine in prefs.cuisine_preferences:
        tag = normalize_tag(cuisine)
        if tag and tag not in wanted:
            wanted[tag] = cuisine
    if not wanted:
        return _Rule(0.0, None, False)

    offered = normalize_tags(restaurant.cuisine_type) | normalize_tags(
        m.cuisine_type for m in menus if m.cuisine_type
    )
    matches = [label for tag, label in wanted.items() if tag in offered]
    if matches:
        points = min(CUISINE_WEIGHT, CUISINE_WEIGHT * len(matches) / len(wanted))
        reason = f"{_plural(len(matches), 'cuisine match', 'es')}: {', '.join(matches)}"
        return _Rule(points, reason, True)
    if flexible:
        return _Rule(CUISINE_DISCOVERY_SCORE, REASON_DISCOVER, True)
    return None


def _score_price(restaurant: Restaurant, prefs: Preferences, flexible: bool) -> Optional[_Rule]:
    wanted = _price_index(prefs.price_range)
    if wanted is None:
        return _Rule(0.0, None, False)
    actual = _price_index(restaurant.price_range)
    if actual is None:
        # missing restaurant data is not a mismatch
        return _Rule(0.0, REASON_PRICE_UNKNOWN, False)

    diff = actual - wanted
    if diff == 0:
        return _Rule(PRICE_WEIGHT, f"In your budget ({PRICE_TIERS[wanted]})", True)
    if abs(diff) == 1:
        reason = REASON_CHEAPER if diff < 0 else REASON_PRICIER
        return _Rule(PRICE_ADJACENT_SCORE, reason, True)
    if flexible:
        return _Rule(PRICE_TOKEN_SCORE, REASON_OUTSIDE_BUDGET, False)
    return None


def _score_dietary(menus: Sequence[Menu], prefs: Preferences) -> _Rule:
    required = normalize_tags(prefs.dietary_restrictions)
    if not required:
        return _Rule(0.0, None, False)
    if not menus:
        return _Rule(DIETARY_MINIMAL_SCORE, REASON_DIETARY_UNLISTED, False)

    compatible = sum(1 for m in menus if required <= normalize_tags(m.dietary_restrictions))
    if not compatible:
        return _Rule(DIETARY_MINIMAL_SCORE, REASON_DIETARY_NONE, False)
    share = compatible / len(menus)
    percent = int(share * 100 + 0.5)
    return _Rule(DIETARY_WEIGHT * share, f"{percent}% of menus fit your dietary needs", True)


def _score_allergens(menus: Sequence[Menu], prefs: Preferences) -> _Rule:
    avoid: Dict[str, str] = {}
    for allergen in prefs.allergens:
        tag = normalize_tag(allergen)
        if tag and tag not in avoid:
            avoid[tag] = allergen
    if not avoid:
        return _Rule(0.0, None, False)
    if not menus:
        return _Rule(ALLERGEN_MINIMAL_SCORE, REASON_ALLERGENS_VERIFY, False)

    present: set[str] = set()
    for menu in menus:
        present |= normalize_tags(menu.allergens)
    found = [label for tag, label in avoid.items() if tag in present]
    if not found:
        return _Rule(ALLERGEN_WEIGHT, REASON_ALLERGENS_SAFE, True)
    return _Rule(ALLERGEN_MINIMAL_SCORE, f"Caution: contains {', '.join(found)}", False)


def _score_meal_time(restaurant: Restaurant, prefs: Preferences, now: datetime) -> _Rule:
    favorites: List[str] = []
    for meal in prefs.favorite_meal_times:
        tag = normalize_tag(meal)
        if tag in MEAL_TIME_LABELS and tag not in favorites:
            favorites.append(tag)
    if not favorites:
        return _Rule(0.0, None, False)

    current = current_meal_time(now)
    specialties = normalize_tags(restaurant.specialties)
    specialty_meals = [meal for meal in favorites if MEAL_TIME_SPECIALTIES[meal] & specialties]
    time_match = current in favorites

    if time_match and current in specialty_meals:
        label = MEAL_TIME_LABELS[current]
        return _Rule(MEAL_TIME_BOTH_SCORE, f"Known for {label}, right on time", True)
    if specialty_meals:
        return _Rule(MEAL_TIME_SPECIALTY_SCORE, f"Known for {MEAL_TIME_LABELS[specialty_meals[0]]}", True)
    if time_match:
        return _Rule(MEAL_TIME_TIME_SCORE, f"Perfect timing for {MEAL_TIME_LABELS[current]}", True)
    return _Rule(0.0, None, False)


def _score_delivery(restaurant: Restaurant, prefs: Preferences) -> _Rule:
    if not prefs.delivery_radius or restaurant.delivery_radius is None:
        return _Rule(0.0, None, False)
    if restaurant.delivery_radius >= prefs.delivery_radius:
        return _Rule(DELIVERY_BONUS, f"Delivers within {prefs.delivery_radius:g} km", True)
    return _Rule(-DELIVERY_PENALTY, REASON_LIMITED_DELIVERY, False)


def _score_street(restaurant: Restaurant, prefs: Preferences) -> _Rule:
    street = (prefs.street or "").strip()
    if not street or not restaurant.address:
        return _Rule(0.0, None, False)
    if street.lower() in restaurant.address.lower():
        return _Rule(STREET_BONUS, f"Near {street}", True)
    return _Rule(0.0, None, False)


def _score_popularity(restaurant: Restaurant) -> _Rule:
    views = max(0, restaurant.analytics.profile_views)
    if not views:
        return _Rule(0.0, None, False)
    points = POPULARITY_WEIGHT * min(views / POPULARITY_FULL_VIEWS, 1.0)
    reason = REASON_POPULAR_DINERS if views > POPULAR_VIEWS_THRESHOLD else None
    return _Rule(points, reason, False)


def _score_quality(restaurant: Restaurant) -> _Rule:
    average = restaurant.analytics.average_rating
    if not average or average <= 0:
        return _Rule(0.0, None, False)
    points = QUALITY_WEIGHT * min(average / MAX_RATING, 1.0)
    if average > EXCELLENT_RATING_THRESHOLD:
        return _Rule(points, REASON_EXCELLENT_RATING, False)
    if average > HIGHLY_RATED_THRESHOLD:
        return _Rule(points, REASON_HIGHLY_RATED, False)
    return _Rule(points, None, False)


def score_restaurant(
    restaurant: Restaurant,
    menus: Optional[Sequence[Menu]],
    preferences: Optional[Preferences],
    *,
    now: Optional[datetime] = None,
) -> Optional[ScoreResult]:
    """Score one restaurant; returns None when strict matching excludes it."""
    prefs = preferences or Preferences()
    active_menus = [m for m in (menus or []) if m.is_active]
    now = now or datetime.now()
    flexible = is_flexible(prefs)

    score = 0.0
    reasons: list[str] = []
    has_match = False

    if prefs.is_empty:
        score += NO_PREFERENCE_SCORE
        reasons.append(REASON_POPULAR)
        has_match = True

    strict_rules = (
        lambda: _score_cuisine(restaurant, active_menus, prefs, flexible),
        lambda: _score_price(restaurant, prefs, flexible),
    )
    for rule in strict_rules:
        outcome = rule()
        if outcome is None:
            return None
        score += outcome.points
        if outcome.reason:
            reasons.append(outcome.reason)
        has_match = has_match or outcome.matched

    for outcome in (
        _score_dietary(active_menus, prefs),
        _score_allergens(active_menus, prefs),
        _score_meal_time(restaurant, prefs, now),
        _score_delivery(restaurant, prefs),
        _score_street(restaurant, prefs),
        _score_popularity(restaurant),
        _score_quality(restaurant),
    ):
        score += outcome.points
        if outcome.reason:
            reasons.append(outcome.reason)
        has_match = has_match or outcome.matched

    if not has_match and flexible:
        score += FLEXIBLE_RESCUE_SCORE
        reasons.append(REASON_SUGGESTED)

    return ScoreResult(
        restaurant=restaurant,
        score=round(max(0.0, score), 2),
        reasons=reasons,
        matched=has_match,
    )
