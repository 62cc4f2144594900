from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, List, Optional

import requests
from loguru import logger

from config import Configuration
from models import Preferences, Restaurant, ScoreResult
from services.preferences import preferences_to_record

MAX_AI_SCORE = 100.0


class AiScorerError(RuntimeError):
    pass


def _restaurant_payload(restaurant: Restaurant) -> Dict[str, Any]:
    payload = asdict(restaurant)
    analytics = payload.pop("analytics", {}) or {}
    payload.update(analytics)
    return payload


def _coerce_reasons(value: Any) -> List[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


class AiScorerClient:
    """Client for the optional external scoring function.

    Its output is mapped onto ScoreResult so callers cannot tell it apart
    from the rule-based engine.
    """

    def __init__(self, cfg: Configuration) -> None:
        if not cfg.ai_scorer_url:
            raise ValueError("AI_SCORER_URL is required")
        self.cfg = cfg
        self.url = cfg.ai_scorer_url
        self.session = requests.Session()

    def _post(self, body: Dict[str, Any]) -> Dict[str, Any]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.cfg.ai_scorer_api_key:
            headers["Authorization"] = f"Bearer {self.cfg.ai_scorer_api_key}"
        try:
            resp = self.session.post(self.url, json=body, headers=headers, timeout=self.cfg.ai_scorer_timeout)
        except requests.RequestException as exc:
            raise AiScorerError(f"request error: {exc}")
        if not resp.ok:
            raise AiScorerError(f"upstream {resp.status_code}: {resp.text[:300]}")
        try:
            data = resp.json()
        except ValueError:
            raise AiScorerError("invalid json response")
        if not isinstance(data, dict):
            raise AiScorerError("unexpected payload")
        if data.get("error"):
            raise AiScorerError(f"scorer error: {data['error']}")
        return data

    def rank(
        self,
        restaurants: List[Restaurant],
        preferences: Optional[Preferences],
        *,
        limit: int,
    ) -> List[ScoreResult]:
        if not restaurants:
            return []
        body = {
            "restaurants": [_restaurant_payload(r) for r in restaurants],
            "preferences": preferences_to_record(preferences or Preferences()),
        }
        data = self._post(body)
        items = data.get("recommendations")
        if not isinstance(items, list):
            raise AiScorerError("missing recommendations list")

        by_id = {r.id: r for r in restaurants}
        results: list[ScoreResult] = []
        seen: set[str] = set()
        for item in items:
            if not isinstance(item, dict):
                continue
            rid = str(item.get("id") or "")
            restaurant = by_id.get(rid)
            if restaurant is None or rid in seen:
                logger.debug("ai scorer returned unknown or duplicate restaurant {!r}", rid)
                continue
            raw_score = item.get("ai_score", item.get("score"))
            try:
                score = float(raw_score)
            except (TypeError, ValueError):
                continue
            seen.add(rid)
            results.append(
                ScoreResult(
                    restaurant=restaurant,
                    score=round(max(0.0, min(MAX_AI_SCORE, score)), 2),
                    reasons=_coerce_reasons(item.get("ai_reasons", item.get("reasons"))),
                    matched=True,
                )
            )
        results.sort(key=lambda r: r.score, reverse=True)
        return results[:limit]
