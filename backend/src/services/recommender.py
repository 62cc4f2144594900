from __future__ import annotations

import itertools
import threading
from datetime import datetime
from typing import Callable, Optional, Set, Tuple

from loguru import logger

from config import Configuration
from models import Preferences, RecommendationOutcome
from services.ai_scorer import AiScorerClient
from services.cache import RatingCache, ScoreCache
from services.debounce import Debouncer
from services.events import ChangeEvent, ChangeFeed, ChangeKind
from services.preferences import preferences_version
from services.ranking import recommend
from services.repository import InMemoryCatalog, RestCatalog

STATUS_PENDING = "pending"


def build_catalog(cfg: Configuration, feed: Optional[ChangeFeed] = None):
    """Data API when configured, else the JSON seed file, else an empty catalog."""
    if cfg.data_api_url:
        return RestCatalog(cfg)
    if cfg.catalog_path:
        return InMemoryCatalog.from_file(cfg.catalog_path, feed=feed)
    logger.warning("no DATA_API_URL or CATALOG_PATH configured, starting with an empty catalog")
    return InMemoryCatalog(feed=feed)


def build_ai_scorer(cfg: Configuration) -> Optional[AiScorerClient]:
    return AiScorerClient(cfg) if cfg.ai_scorer_active else None


class RecommendationService:
    """Keeps the published recommendation list current for one user.

    Triggers (preference saves, catalog change events) are debounced into a
    single pass. Every pass takes a generation number when it starts and only
    commits if no newer pass has committed already, so a slow stale pass can
    never overwrite fresher results.
    """

    def __init__(
        self,
        cfg: Configuration,
        catalog,
        *,
        ai_scorer=None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.cfg = cfg
        self.catalog = catalog
        self.ai_scorer = ai_scorer
        self._clock = clock or datetime.now
        self.score_cache = ScoreCache()
        self.rating_cache = RatingCache()
        self._lock = threading.Lock()
        self._generations = itertools.count(1)
        self._committed_generation = 0
        self._inflight: Set[Tuple[str, int]] = set()
        self._data_version = 0
        self._last_preferences: Optional[Preferences] = None
        self._published = RecommendationOutcome(status=STATUS_PENDING)
        self._debouncer = Debouncer(cfg.debounce_sec, self.refresh)
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def current(self) -> RecommendationOutcome:
        return self._published

    @property
    def preferences(self) -> Optional[Preferences]:
        return self._last_preferences

    @property
    def refresh_pending(self) -> bool:
        return self._debouncer.pending

    def _load_preferences(self) -> Optional[Preferences]:
        try:
            prefs = self.catalog.get_current_preferences()
        except Exception as exc:
            logger.warning("preferences unavailable, keeping last known state: {}", exc)
            return self._last_preferences
        self._last_preferences = prefs
        return prefs

    def refresh(self) -> RecommendationOutcome:
        """Run one pass now and publish it unless a newer pass already has."""
        prefs = self._load_preferences()
        version = preferences_version(prefs)
        with self._lock:
            state = (version, self._data_version)
            if state in self._inflight:
                logger.debug("refresh skipped, pass for state {} already running", state)
                return self._published
            self._inflight.add(state)
            generation = next(self._generations)

        try:
            self.score_cache.retain_version(version)
            outcome = recommend(
                self.catalog,
                prefs,
                limit=self.cfg.recommendation_limit,
                ai_scorer=self.ai_scorer,
                max_workers=self.cfg.scoring_workers,
                rating_concurrency=self.cfg.rating_concurrency,
                now=self._clock(),
                cache=self.score_cache,
                rating_cache=self.rating_cache,
            )
        finally:
            with self._lock:
                self._inflight.discard(state)

        outcome.generation = generation
        self._commit(outcome)
        return self._published

    def _commit(self, outcome: RecommendationOutcome) -> bool:
        with self._lock:
            if outcome.generation < self._committed_generation:
                logger.debug(
                    "discarding stale pass generation={} committed={}",
                    outcome.generation, self._committed_generation,
                )
                return False
            self._committed_generation = outcome.generation
            self._published = outcome
        return True

    def request_refresh(self) -> None:
        self._debouncer.trigger()

    def flush(self) -> bool:
        return self._debouncer.flush()

    def handle_event(self, event: ChangeEvent) -> None:
        if event.kind is ChangeKind.RATING:
            self.rating_cache.invalidate(event.restaurant_id)
        elif event.kind in (ChangeKind.RESTAURANTS, ChangeKind.MENUS):
            with self._lock:
                self._data_version += 1
            if event.restaurant_id:
                self.score_cache.invalidate_restaurant(event.restaurant_id)
            else:
                self.score_cache.clear()
        logger.debug("change event {} restaurant={}", event.kind.value, event.restaurant_id)
        self.request_refresh()

    def attach(self, feed: ChangeFeed) -> None:
        self.detach()
        self._unsubscribe = feed.subscribe(self.handle_event)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def close(self) -> None:
        self.detach()
        self._debouncer.cancel()
