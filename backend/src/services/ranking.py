from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from loguru import logger

from models import (
    Menu,
    Preferences,
    RatingSnapshot,
    Recommendation,
    RecommendationOutcome,
    Restaurant,
    ScoreResult,
)
from services.cache import RatingCache, ScoreCache, is_miss
from services.preferences import preferences_version
from services.ratings import collect_rating_snapshots
from services.scoring import current_meal_time, is_flexible, score_restaurant

FALLBACK_SCORE = 1.0
FALLBACK_REASONS = ("Available near you", "Explore something new")

STATUS_OK = "ok"
STATUS_FALLBACK = "fallback"
STATUS_EMPTY = "empty"
STATUS_UNAVAILABLE = "unavailable"

_SKIPPED = object()


@dataclass
class Ranking:
    results: List[ScoreResult] = field(default_factory=list)
    fallback_used: bool = False


def group_menus(menus: Optional[Sequence[Menu]]) -> Dict[str, List[Menu]]:
    grouped: Dict[str, List[Menu]] = {}
    for menu in menus or []:
        if not menu.is_active:
            continue
        grouped.setdefault(menu.restaurant_id, []).append(menu)
    return grouped


def order_results(results: Sequence[ScoreResult], limit: int) -> List[ScoreResult]:
    """Highest score first; sorted() is stable so ties keep input order."""
    ordered = sorted(results, key=lambda r: r.score, reverse=True)
    return ordered[: max(0, limit)]


def fallback_results(restaurants: Sequence[Restaurant], limit: int) -> List[ScoreResult]:
    return [
        ScoreResult(restaurant=r, score=FALLBACK_SCORE, reasons=list(FALLBACK_REASONS), matched=False)
        for r in list(restaurants)[: max(0, limit)]
    ]


def _score_batch(
    restaurants: Sequence[Restaurant],
    menus_by_restaurant: Dict[str, List[Menu]],
    prefs: Preferences,
    now: datetime,
    max_workers: int,
) -> list:
    def score_one(restaurant: Restaurant):
        try:
            return score_restaurant(restaurant, menus_by_restaurant.get(restaurant.id, []), prefs, now=now)
        except Exception as exc:
            logger.warning("scoring failed for restaurant {}: {}", getattr(restaurant, "id", "?"), exc)
            return _SKIPPED

    if max_workers > 1 and len(restaurants) > 1:
        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="scoring") as pool:
            return list(pool.map(score_one, restaurants))
    return [score_one(r) for r in restaurants]


def rank_restaurants(
    restaurants: Sequence[Restaurant],
    menus: Optional[Sequence[Menu]],
    preferences: Optional[Preferences],
    *,
    limit: int = 6,
    now: Optional[datetime] = None,
    max_workers: int = 1,
    cache: Optional[ScoreCache] = None,
    cache_epoch: Optional[int] = None,
) -> Ranking:
    prefs = preferences or Preferences()
    if cache is not None and cache_epoch is None:
        cache_epoch = cache.epoch
    now = now or datetime.now()
    restaurants = list(restaurants or [])
    menus_by_restaurant = group_menus(menus)

    version = preferences_version(prefs)
    meal_time = current_meal_time(now)
    outcomes: list = [_SKIPPED] * len(restaurants)
    pending: list[int] = []
    for idx, restaurant in enumerate(restaurants):
        cached = cache.get((restaurant.id, version, meal_time)) if cache is not None else None
        if cache is not None and not is_miss(cached):
            outcomes[idx] = cached
        else:
            pending.append(idx)

    scored = _score_batch([restaurants[i] for i in pending], menus_by_restaurant, prefs, now, max_workers)
    for idx, outcome in zip(pending, scored):
        outcomes[idx] = outcome
        if cache is not None and outcome is not _SKIPPED:
            cache.set((restaurants[idx].id, version, meal_time), outcome, epoch=cache_epoch)

    survivors = [o for o in outcomes if o is not None and o is not _SKIPPED]
    excluded = sum(1 for o in outcomes if o is None)
    logger.debug(
        "ranking candidates={} survivors={} excluded={} flexible={}",
        len(restaurants), len(survivors), excluded, is_flexible(prefs),
    )

    if survivors:
        return Ranking(results=order_results(survivors, limit), fallback_used=False)
    if restaurants:
        logger.info("no restaurant matched strictly, serving fallback list of {}", min(limit, len(restaurants)))
        return Ranking(results=fallback_results(restaurants, limit), fallback_used=True)
    return Ranking()


def attach_ratings(
    results: Sequence[ScoreResult],
    rating_source,
    *,
    max_workers: int = 8,
    rating_cache: Optional[RatingCache] = None,
    rating_epoch: Optional[int] = None,
) -> List[Recommendation]:
    if rating_cache is not None and rating_epoch is None:
        rating_epoch = rating_cache.epoch
    ids = [r.restaurant.id for r in results]
    known: Dict[str, RatingSnapshot] = {}
    missing: list[str] = []
    for rid in ids:
        cached = rating_cache.get(rid) if rating_cache is not None else None
        if cached is not None:
            known[rid] = cached
        else:
            missing.append(rid)

    fetched = collect_rating_snapshots(rating_source, missing, max_workers=max_workers)
    if rating_cache is not None:
        for rid, snapshot in fetched.items():
            rating_cache.set(rid, snapshot, epoch=rating_epoch)
    known.update(fetched)
    return [Recommendation(result=r, rating=known.get(r.restaurant.id, RatingSnapshot())) for r in results]


def recommend(
    catalog,
    preferences: Optional[Preferences],
    *,
    limit: int = 6,
    ai_scorer=None,
    max_workers: int = 1,
    rating_concurrency: int = 8,
    now: Optional[datetime] = None,
    cache: Optional[ScoreCache] = None,
    rating_cache: Optional[RatingCache] = None,
) -> RecommendationOutcome:
    """One full ranking pass: load, score (AI or rules), rank, attach ratings."""
    # captured before any load so writes from pre-change data are dropped
    cache_epoch = cache.epoch if cache is not None else None
    rating_epoch = rating_cache.epoch if rating_cache is not None else None
    try:
        restaurants = catalog.list_active_restaurants()
    except Exception as exc:
        logger.error("restaurant catalog unavailable: {}", exc)
        return RecommendationOutcome(status=STATUS_UNAVAILABLE)

    if not restaurants:
        return RecommendationOutcome(status=STATUS_EMPTY)

    try:
        menus = catalog.list_active_menus()
    except Exception as exc:
        logger.warning("menu catalog unavailable, scoring without menus: {}", exc)
        menus = []
        cache = None  # scores computed without menus must not outlive the outage

    results: List[ScoreResult] = []
    source = "rules"
    status = STATUS_OK
    if ai_scorer is not None:
        try:
            results = ai_scorer.rank(restaurants, preferences, limit=limit)
            source = "ai" if results else source
        except Exception as exc:
            logger.warning("ai scorer failed, using rule-based ranking: {}", exc)
            results = []

    if not results:
        source = "rules"
        ranking = rank_restaurants(
            restaurants,
            menus,
            preferences,
            limit=limit,
            now=now,
            max_workers=max_workers,
            cache=cache,
            cache_epoch=cache_epoch,
        )
        results = ranking.results
        status = STATUS_FALLBACK if ranking.fallback_used else STATUS_OK

    recommendations = attach_ratings(
        results,
        catalog,
        max_workers=rating_concurrency,
        rating_cache=rating_cache,
        rating_epoch=rating_epoch,
    )
    logger.info(
        "recommendation pass source={} status={} candidates={} returned={}",
        source, status, len(restaurants), len(recommendations),
    )
    return RecommendationOutcome(recommendations=recommendations, status=status, source=source)
