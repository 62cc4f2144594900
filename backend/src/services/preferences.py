from __future__ import annotations

import hashlib
import json
from typing import Any, Optional

from loguru import logger

from models import PRICE_TIERS, Preferences
from utils import dedupe_strings, dedupe_tags, normalize_tag

MEAL_TIMES = ("breakfast", "lunch", "snack", "dinner", "late_night")

# stored rows come from the app (snake_case) or from JSON clients (camelCase)
FIELD_ALIASES = {
    "cuisine_preferences": ("cuisine_preferences", "cuisinePreferences", "cuisines"),
    "price_range": ("price_range", "priceRange"),
    "dietary_restrictions": ("dietary_restrictions", "dietaryRestrictions"),
    "allergens": ("allergens",),
    "favorite_meal_times": ("favorite_meal_times", "favoriteMealTimes"),
    "delivery_radius": ("delivery_radius", "deliveryRadius"),
    "street": ("street",),
}


def _pick(data: dict[str, Any], name: str) -> Any:
    for key in FIELD_ALIASES[name]:
        if key in data:
            return data[key]
    return None


def _coerce_price(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if text not in PRICE_TIERS:
        logger.debug("ignoring unrecognized price_range {!r}", value)
        return None
    return text


def _coerce_radius(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        radius = float(value)
    except (TypeError, ValueError):
        logger.debug("ignoring non-numeric delivery_radius {!r}", value)
        return None
    if radius <= 0:
        return None
    return radius


def _coerce_meal_times(value: Any) -> list[str]:
    out: list[str] = []
    for item in dedupe_strings(value):
        tag = normalize_tag(item)
        if tag not in MEAL_TIMES:
            logger.debug("ignoring unknown meal time {!r}", item)
            continue
        if tag not in out:
            out.append(tag)
    return out


def parse_preferences(raw: Optional[dict[str, Any]]) -> Preferences:
    """Build Preferences from a stored row, degrading malformed fields to 'unset'."""
    if not raw or not isinstance(raw, dict):
        return Preferences()

    street = _pick(raw, "street")
    street_text = str(street).strip() if street is not None else ""

    return Preferences(
        cuisine_preferences=dedupe_tags(_pick(raw, "cuisine_preferences")),
        price_range=_coerce_price(_pick(raw, "price_range")),
        dietary_restrictions=dedupe_tags(_pick(raw, "dietary_restrictions")),
        allergens=dedupe_tags(_pick(raw, "allergens")),
        favorite_meal_times=_coerce_meal_times(_pick(raw, "favorite_meal_times")),
        delivery_radius=_coerce_radius(_pick(raw, "delivery_radius")),
        street=street_text or None,
    )


def preferences_to_record(prefs: Preferences) -> dict[str, Any]:
    return {
        "cuisine_preferences": list(prefs.cuisine_preferences),
        "price_range": prefs.price_range,
        "dietary_restrictions": list(prefs.dietary_restrictions),
        "allergens": list(prefs.allergens),
        "favorite_meal_times": list(prefs.favorite_meal_times),
        "delivery_radius": prefs.delivery_radius,
        "street": prefs.street,
    }


def preferences_version(prefs: Optional[Preferences]) -> str:
    """Stable short hash of a preference state; list order does not matter."""
    record = preferences_to_record(prefs or Preferences())
    for key, value in record.items():
        if isinstance(value, list):
            record[key] = sorted(normalize_tag(v) for v in value)
    normalized = json.dumps(record, sort_keys=True, default=str)
    return hashlib.sha256(normalized.encode()).hexdigest()[:16]
