from __future__ import annotations

from typing import Any, Dict, List, Optional

from models import Preferences, Recommendation, RecommendationOutcome

NO_RECOMMENDATIONS = "no_recommendations"
RECOVERY_ACTIONS = [
    {"action": "adjust_preferences", "label": "Adjust your preferences"},
    {"action": "refresh", "label": "Try again"},
]

_EMPTY_MESSAGES = {
    "empty": "No restaurants are available right now.",
    "unavailable": "Recommendations are temporarily unavailable.",
    "pending": "Recommendations are being prepared.",
}


def format_rating(rec: Recommendation) -> str:
    if rec.rating.average is None:
        return "Not yet rated"
    noun = "review" if rec.rating.count == 1 else "reviews"
    return f"{rec.rating.average:.1f}/5 ({rec.rating.count} {noun})"


def empty_state(outcome: RecommendationOutcome) -> Dict[str, Any]:
    """Payload shown instead of a list; never carries the raw failure."""
    return {
        "kind": NO_RECOMMENDATIONS,
        "message": _EMPTY_MESSAGES.get(outcome.status, _EMPTY_MESSAGES["empty"]),
        "actions": [dict(a) for a in RECOVERY_ACTIONS],
    }


def _preference_lines(prefs: Preferences) -> List[str]:
    return [
        f"- Cuisines: {', '.join(prefs.cuisine_preferences) if prefs.cuisine_preferences else 'Any'}",
        f"- Budget: {prefs.price_range or 'Any'}",
        f"- Dietary: {', '.join(prefs.dietary_restrictions) if prefs.dietary_restrictions else 'None'}",
        f"- Avoid: {', '.join(prefs.allergens) if prefs.allergens else 'None'}",
    ]


def build_report(outcome: RecommendationOutcome, preferences: Optional[Preferences] = None) -> str:
    lines = ["## Recommended for you", ""]
    if preferences is not None and not preferences.is_empty:
        lines += _preference_lines(preferences)
        lines.append("")

    if outcome.is_empty:
        state = empty_state(outcome)
        lines.append(f"> {state['message']}")
        lines += [f"- {a['label']}" for a in state["actions"]]
        return "\n".join(lines)

    if outcome.status == "fallback":
        lines += ["> Nothing matched your preferences exactly, here are some places to explore.", ""]

    for idx, rec in enumerate(outcome.recommendations, start=1):
        restaurant = rec.result.restaurant
        lines += [
            f"#### {idx}. {restaurant.name}",
            f"- Cuisine: {', '.join(restaurant.cuisine_type) if restaurant.cuisine_type else 'Not provided'}",
            f"- Price: {restaurant.price_range or 'Not listed'}",
            f"- Rating: {format_rating(rec)}",
            f"- Match score: {rec.result.score:.0f}",
        ]
        lines += [f"  * {reason}" for reason in rec.result.display_reasons]
        lines.append("")

    return "\n".join(lines).rstrip() + "\n"
