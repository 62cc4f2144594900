from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Optional

from loguru import logger

from models import RatingSnapshot

UNRATED = RatingSnapshot(average=None, count=0)


def aggregate_ratings(values: Optional[Iterable[object]]) -> RatingSnapshot:
    """Average of 1-5 ratings rounded half-up to one decimal; None when unrated."""
    ratings: list[Decimal] = []
    for value in values or []:
        if value is None or isinstance(value, bool):
            continue
        try:
            ratings.append(Decimal(str(value)))
        except ArithmeticError:
            continue
    if not ratings:
        return UNRATED
    mean = sum(ratings) / Decimal(len(ratings))
    average = float(mean.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))
    return RatingSnapshot(average=average, count=len(ratings))


def fetch_rating_snapshot(source, restaurant_id: str) -> RatingSnapshot:
    try:
        values = source.list_ratings(restaurant_id)
    except Exception as exc:
        logger.warning("rating lookup failed for {}: {}", restaurant_id, exc)
        return UNRATED
    return aggregate_ratings(values)


def collect_rating_snapshots(
    source,
    restaurant_ids: List[str],
    *,
    max_workers: int = 8,
) -> Dict[str, RatingSnapshot]:
    """Fetch snapshots for many restaurants with a bounded worker pool."""
    unique_ids = list(dict.fromkeys(restaurant_ids))
    if not unique_ids:
        return {}
    workers = max(1, min(max_workers, len(unique_ids)))
    if workers == 1:
        return {rid: fetch_rating_snapshot(source, rid) for rid in unique_ids}
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ratings") as pool:
        snapshots = pool.map(lambda rid: fetch_rating_snapshot(source, rid), unique_ids)
        return dict(zip(unique_ids, snapshots))
