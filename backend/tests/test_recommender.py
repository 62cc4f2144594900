from __future__ import annotations

import threading
import time
from datetime import datetime

from config import Configuration
from models import Menu, Preferences, RatingSnapshot, Restaurant
from services.cache import RatingCache, ScoreCache, is_miss
from services.debounce import Debouncer
from services.events import ChangeEvent, ChangeFeed, ChangeKind
from services.recommender import STATUS_PENDING, RecommendationService, build_catalog
from services.repository import InMemoryCatalog
from services.scoring import REASON_ALLERGENS_SAFE

DINNER = datetime(2024, 5, 1, 19, 0)


def _restaurants() -> list[Restaurant]:
    return [
        Restaurant(id="r1", name="Trattoria", cuisine_type=["Italian"], price_range="$$"),
        Restaurant(id="r2", name="Thai Garden", cuisine_type=["Thai"], price_range="$$"),
        Restaurant(id="r3", name="Taqueria", cuisine_type=["Mexican"], price_range="$"),
    ]


class CountingCatalog(InMemoryCatalog):
    def __init__(self, **kwargs) -> None:
        kwargs.setdefault("restaurants", _restaurants())
        super().__init__(**kwargs)
        self.passes = 0

    def list_active_restaurants(self):
        self.passes += 1
        return super().list_active_restaurants()


class BlockingCatalog(CountingCatalog):
    """Blocks the first restaurant load until released."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.entered = threading.Event()
        self.release = threading.Event()

    def list_active_restaurants(self):
        if self.passes == 0:
            self.passes += 1
            self.entered.set()
            self.release.wait(timeout=5)
            return InMemoryCatalog.list_active_restaurants(self)
        return super().list_active_restaurants()


def _service(catalog, debounce_sec: float = 0.2) -> RecommendationService:
    cfg = Configuration(debounce_sec=debounce_sec)
    return RecommendationService(cfg, catalog, clock=lambda: DINNER)


def _wait_for(predicate, timeout: float = 3.0) -> bool:
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


def _top_id(service: RecommendationService) -> str:
    return service.current.recommendations[0].result.restaurant.id


def test_debouncer_coalesces_bursts() -> None:
    calls: list[int] = []
    debouncer = Debouncer(0.1, lambda: calls.append(1))
    for _ in range(3):
        debouncer.trigger()
        time.sleep(0.02)
    assert _wait_for(lambda: calls)
    time.sleep(0.2)
    assert calls == [1]
    assert not debouncer.pending


def test_debouncer_flush_and_cancel() -> None:
    calls: list[int] = []
    debouncer = Debouncer(10, lambda: calls.append(1))
    assert not debouncer.flush()
    debouncer.trigger()
    assert debouncer.pending
    assert debouncer.flush()
    assert calls == [1]

    debouncer.trigger()
    debouncer.cancel()
    assert not debouncer.pending
    assert calls == [1]


def test_debouncer_survives_failing_call() -> None:
    def boom() -> None:
        raise RuntimeError("pass failed")

    debouncer = Debouncer(10, boom)
    debouncer.trigger()
    assert debouncer.flush()


def test_preference_burst_runs_one_pass_with_latest_state() -> None:
    catalog = CountingCatalog()
    service = _service(catalog)
    try:
        for cuisine in ("Italian", "Thai", "Mexican"):
            catalog.preferences = Preferences(cuisine_preferences=[cuisine])
            service.request_refresh()
            time.sleep(0.03)
        assert _wait_for(lambda: service.current.status != STATUS_PENDING)
        time.sleep(0.3)
        assert catalog.passes == 1
        assert service.preferences.cuisine_preferences == ["Mexican"]
        assert _top_id(service) == "r3"
    finally:
        service.close()


def test_change_feed_events_are_debounced() -> None:
    feed = ChangeFeed()
    catalog = CountingCatalog(feed=feed)
    service = _service(catalog)
    service.attach(feed)
    try:
        for cuisine in ("Italian", "Thai", "Mexican"):
            catalog.save_preferences(Preferences(cuisine_preferences=[cuisine]))
        assert service.refresh_pending
        assert service.flush()
        assert catalog.passes == 1
        assert _top_id(service) == "r3"
    finally:
        service.close()
    assert len(feed) == 0


def test_stale_pass_never_overwrites_newer_result() -> None:
    catalog = BlockingCatalog(preferences=Preferences(cuisine_preferences=["Italian"]))
    service = _service(catalog)
    slow = threading.Thread(target=service.refresh)
    slow.start()
    try:
        assert catalog.entered.wait(timeout=2)
        catalog.preferences = Preferences(cuisine_preferences=["Thai"])
        service.refresh()
        assert _top_id(service) == "r2"
        assert service.current.generation == 2
    finally:
        catalog.release.set()
        slow.join(timeout=5)
    assert _top_id(service) == "r2"
    assert service.current.generation == 2


def test_duplicate_pass_for_same_state_is_skipped() -> None:
    catalog = BlockingCatalog(preferences=Preferences(cuisine_preferences=["Italian"]))
    service = _service(catalog)
    slow = threading.Thread(target=service.refresh)
    slow.start()
    try:
        assert catalog.entered.wait(timeout=2)
        outcome = service.refresh()
        assert outcome.status == STATUS_PENDING
        assert catalog.passes == 1
    finally:
        catalog.release.set()
        slow.join(timeout=5)
    assert _top_id(service) == "r1"


def test_menu_event_invalidates_only_that_restaurant() -> None:
    catalog = CountingCatalog(menus=[Menu(restaurant_id="r1", cuisine_type="Italian")])
    service = _service(catalog)
    try:
        service.refresh()
        assert len(service.score_cache) == 3
        service.handle_event(ChangeEvent(kind=ChangeKind.MENUS, restaurant_id="r1"))
        assert len(service.score_cache) == 2
        service.handle_event(ChangeEvent(kind=ChangeKind.RESTAURANTS))
        assert len(service.score_cache) == 0
        assert service.refresh_pending
    finally:
        service.close()


def test_rating_event_refreshes_snapshot_only() -> None:
    feed = ChangeFeed()
    catalog = CountingCatalog(ratings={"r1": [4], "r2": [5]}, feed=feed)
    service = _service(catalog)
    service.attach(feed)
    try:
        service.refresh()
        assert "r1" in service.rating_cache and "r2" in service.rating_cache
        scored = len(service.score_cache)

        catalog.add_rating("r1", 5)
        assert "r1" not in service.rating_cache
        assert "r2" in service.rating_cache
        assert len(service.score_cache) == scored

        service.flush()
        rating = [rec.rating for rec in service.current.recommendations if rec.result.restaurant.id == "r1"][0]
        assert rating.average == 4.5
        assert rating.count == 2
    finally:
        service.close()


def test_preferences_failure_keeps_last_known_state() -> None:
    catalog = CountingCatalog(preferences=Preferences(cuisine_preferences=["Thai"]))
    service = _service(catalog)
    service.refresh()

    def broken():
        raise RuntimeError("preferences table unreachable")

    catalog.get_current_preferences = broken
    service.refresh()
    assert service.preferences.cuisine_preferences == ["Thai"]
    assert _top_id(service) == "r2"


def test_build_catalog_defaults_to_empty_catalog() -> None:
    catalog = build_catalog(Configuration())
    assert isinstance(catalog, InMemoryCatalog)
    assert catalog.list_active_restaurants() == []


class MenuSwapCatalog(CountingCatalog):
    """Changes r1's menu while the first pass is still scoring the old one."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.service = None
        self.swapped = False

    def list_active_menus(self):
        menus = super().list_active_menus()
        if not self.swapped:
            self.swapped = True
            self.menus = [Menu(restaurant_id="r1", cuisine_type="Italian", allergens=["peanuts"])]
            self.service.handle_event(ChangeEvent(kind=ChangeKind.MENUS, restaurant_id="r1"))
        return menus


class RatingSwapCatalog(CountingCatalog):
    """Adds a rating for r1 right after the first pass has read the old ones."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.service = None
        self.swapped = False

    def list_ratings(self, restaurant_id: str):
        values = super().list_ratings(restaurant_id)
        if restaurant_id == "r1" and not self.swapped:
            self.swapped = True
            self.ratings["r1"].append(5)
            self.service.handle_event(ChangeEvent(kind=ChangeKind.RATING, restaurant_id="r1"))
        return values


def _reasons_for(service: RecommendationService, rid: str) -> list[str]:
    return [rec.result.reasons for rec in service.current.recommendations if rec.result.restaurant.id == rid][0]


def test_menu_change_during_pass_is_not_masked_by_cache() -> None:
    catalog = MenuSwapCatalog(
        menus=[Menu(restaurant_id="r1", cuisine_type="Italian", allergens=["dairy"])],
        preferences=Preferences(cuisine_preferences=["Italian"], allergens=["peanuts"]),
    )
    service = _service(catalog, debounce_sec=5)
    catalog.service = service
    try:
        service.refresh()
        assert REASON_ALLERGENS_SAFE in _reasons_for(service, "r1")
        assert len(service.score_cache) == 0

        service.refresh()
        reasons = _reasons_for(service, "r1")
        assert "Caution: contains peanuts" in reasons
        assert REASON_ALLERGENS_SAFE not in reasons
    finally:
        service.close()


def test_rating_change_during_pass_is_not_masked_by_cache() -> None:
    catalog = RatingSwapCatalog(ratings={"r1": [4], "r2": [5]})
    service = _service(catalog, debounce_sec=5)
    catalog.service = service
    try:
        service.refresh()
        assert "r1" not in service.rating_cache

        service.refresh()
        rating = [rec.rating for rec in service.current.recommendations if rec.result.restaurant.id == "r1"][0]
        assert rating.count == 2
        assert rating.average == 4.5
    finally:
        service.close()


def test_cache_drops_writes_from_before_an_invalidation() -> None:
    scores = ScoreCache()
    epoch = scores.epoch
    assert scores.set(("r1", "v1", "dinner"), None, epoch=epoch)
    scores.invalidate_restaurant("r1")
    assert not scores.set(("r1", "v1", "dinner"), None, epoch=epoch)
    assert is_miss(scores.get(("r1", "v1", "dinner")))
    # retaining a preference version is not a data change
    epoch = scores.epoch
    scores.retain_version("v2")
    assert scores.set(("r2", "v2", "dinner"), None, epoch=epoch)

    ratings = RatingCache()
    epoch = ratings.epoch
    ratings.invalidate("r9")
    assert not ratings.set("r1", RatingSnapshot(average=4.0, count=1), epoch=epoch)
    assert "r1" not in ratings


def test_cache_tolerates_concurrent_writers() -> None:
    cache = ScoreCache()
    errors: list[BaseException] = []

    def writer(worker: int) -> None:
        try:
            for i in range(300):
                cache.set((f"r{i % 7}", f"v{worker % 2}", "dinner"), None)
                if i % 5 == 0:
                    cache.invalidate_restaurant(f"r{i % 7}")
                if i % 11 == 0:
                    cache.retain_version(f"v{worker % 2}")
                cache.stats()
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=writer, args=(n,)) for n in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)
    assert errors == []
