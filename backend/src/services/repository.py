from __future__ import annotations

import json
import time
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

import requests
from loguru import logger

from config import Configuration
from models import Menu, Preferences, Restaurant, RestaurantAnalytics
from services.events import ChangeEvent, ChangeFeed, ChangeKind
from services.preferences import parse_preferences, preferences_to_record
from utils import dedupe_strings


class DataSourceError(RuntimeError):
    pass


class CandidateRepository(Protocol):
    def list_active_restaurants(self) -> List[Restaurant]: ...

    def list_active_menus(self) -> List[Menu]: ...


class RatingSource(Protocol):
    def list_ratings(self, restaurant_id: str) -> List[float]: ...


class PreferencesSource(Protocol):
    def get_current_preferences(self) -> Optional[Preferences]: ...


class Catalog(CandidateRepository, RatingSource, PreferencesSource, Protocol):
    pass


def _as_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_int(value: Any) -> int:
    number = _as_float(value)
    return int(number) if number is not None else 0


def restaurant_from_row(row: Dict[str, Any]) -> Restaurant:
    analytics_raw = row.get("restaurant_analytics") or row.get("analytics") or {}
    if isinstance(analytics_raw, list):
        analytics_raw = analytics_raw[0] if analytics_raw else {}
    rating = _as_float(analytics_raw.get("average_rating"))
    analytics = RestaurantAnalytics(
        profile_views=_as_int(analytics_raw.get("profile_views")),
        menu_views=_as_int(analytics_raw.get("menu_views")),
        average_rating=rating if rating else None,
        rating_count=_as_int(analytics_raw.get("rating_count")),
    )
    if row.get("id") is None:
        raise ValueError("restaurant row without id")
    price = row.get("price_range")
    return Restaurant(
        id=str(row["id"]),
        name=str(row.get("name") or "Restaurant"),
        cuisine_type=dedupe_strings(row.get("cuisine_type")),
        price_range=str(price).strip() if price else None,
        address=row.get("address") or None,
        delivery_radius=_as_float(row.get("delivery_radius")),
        specialties=dedupe_strings(row.get("specialties") or row.get("service_types")),
        analytics=analytics,
    )


def menu_from_row(row: Dict[str, Any]) -> Menu:
    if row.get("restaurant_id") is None:
        raise ValueError("menu row without restaurant_id")
    return Menu(
        restaurant_id=str(row["restaurant_id"]),
        cuisine_type=row.get("cuisine_type") or None,
        dietary_restrictions=dedupe_strings(row.get("dietary_restrictions")),
        allergens=dedupe_strings(row.get("allergens")),
        is_active=bool(row.get("is_active", True)),
        id=str(row["id"]) if row.get("id") is not None else None,
        name=row.get("name") or None,
    )


def _parse_rows(rows: List[Dict[str, Any]], parser, label: str) -> list:
    parsed = []
    for row in rows:
        try:
            parsed.append(parser(row))
        except (TypeError, ValueError, AttributeError) as exc:
            logger.warning("skipping malformed {} row: {}", label, exc)
    return parsed


class InMemoryCatalog:
    """List-backed catalog that publishes a change event on every mutation."""

    def __init__(
        self,
        restaurants: Optional[List[Restaurant]] = None,
        menus: Optional[List[Menu]] = None,
        ratings: Optional[Dict[str, List[float]]] = None,
        preferences: Optional[Preferences] = None,
        feed: Optional[ChangeFeed] = None,
    ) -> None:
        self.restaurants: List[Restaurant] = list(restaurants or [])
        self.menus: List[Menu] = list(menus or [])
        self.ratings: Dict[str, List[float]] = {k: list(v) for k, v in (ratings or {}).items()}
        self.preferences = preferences
        self.feed = feed

    @classmethod
    def from_file(cls, path: str | Path, feed: Optional[ChangeFeed] = None) -> "InMemoryCatalog":
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        restaurants = _parse_rows(data.get("restaurants") or [], restaurant_from_row, "restaurant")
        menus = _parse_rows(data.get("menus") or [], menu_from_row, "menu")
        ratings: Dict[str, List[float]] = {}
        for row in data.get("ratings") or []:
            value = _as_float(row.get("rating"))
            if row.get("restaurant_id") is None or value is None:
                continue
            ratings.setdefault(str(row["restaurant_id"]), []).append(value)
        prefs_raw = data.get("preferences")
        preferences = parse_preferences(prefs_raw) if prefs_raw else None
        logger.info(
            "catalog loaded path={} restaurants={} menus={} rated={}",
            path, len(restaurants), len(menus), len(ratings),
        )
        return cls(restaurants, menus, ratings, preferences, feed)

    # reads
    def list_active_restaurants(self) -> List[Restaurant]:
        return list(self.restaurants)

    def list_active_menus(self) -> List[Menu]:
        return [m for m in self.menus if m.is_active]

    def list_ratings(self, restaurant_id: str) -> List[float]:
        return list(self.ratings.get(restaurant_id, []))

    def get_current_preferences(self) -> Optional[Preferences]:
        return self.preferences

    # writes
    def _publish(self, kind: ChangeKind, restaurant_id: Optional[str] = None) -> None:
        if self.feed is not None:
            self.feed.publish(ChangeEvent(kind=kind, restaurant_id=restaurant_id))

    def insert_restaurant(self, restaurant: Restaurant) -> None:
        self.restaurants.append(restaurant)
        self._publish(ChangeKind.RESTAURANTS, restaurant.id)

    def update_restaurant(self, restaurant_id: str, **changes: Any) -> Restaurant:
        for idx, existing in enumerate(self.restaurants):
            if existing.id == restaurant_id:
                updated = replace(existing, **changes)
                self.restaurants[idx] = updated
                self._publish(ChangeKind.RESTAURANTS, restaurant_id)
                return updated
        raise KeyError(restaurant_id)

    def delete_restaurant(self, restaurant_id: str) -> None:
        self.restaurants = [r for r in self.restaurants if r.id != restaurant_id]
        self.menus = [m for m in self.menus if m.restaurant_id != restaurant_id]
        self._publish(ChangeKind.RESTAURANTS, restaurant_id)

    def insert_menu(self, menu: Menu) -> None:
        self.menus.append(menu)
        self._publish(ChangeKind.MENUS, menu.restaurant_id)

    def add_rating(self, restaurant_id: str, value: float) -> None:
        self.ratings.setdefault(restaurant_id, []).append(value)
        self._publish(ChangeKind.RATING, restaurant_id)

    def save_preferences(self, preferences: Preferences) -> None:
        self.preferences = preferences
        self._publish(ChangeKind.PREFERENCES)


@dataclass
class _RetryPolicy:
    retries: int = 3
    base_delay: float = 0.5


class RestCatalog:
    """Catalog backed by a PostgREST-style data API (``/rest/v1/<table>``)."""

    RESTAURANT_COLUMNS = (
        "id,name,address,cuisine_type,price_range,delivery_radius,specialties,"
        "restaurant_analytics(profile_views,menu_views,rating_count,average_rating)"
    )
    MENU_COLUMNS = "id,restaurant_id,cuisine_type,dietary_restrictions,allergens,is_active"

    def __init__(self, cfg: Configuration, user_id: Optional[str] = None) -> None:
        cfg.require_data_api()
        self.cfg = cfg
        self.base = f"{cfg.data_api_url.rstrip('/')}/rest/v1"
        self.user_id = user_id or cfg.user_id
        self.session = requests.Session()
        self.retry = _RetryPolicy()

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.cfg.data_api_key:
            headers["apikey"] = self.cfg.data_api_key
            headers["Authorization"] = f"Bearer {self.cfg.data_api_key}"
        return headers

    def _request(self, method: str, table: str, *, params: dict, payload: Any = None, headers: Optional[dict] = None) -> Any:
        url = f"{self.base}/{table}"
        all_headers = {**self._headers(), **(headers or {})}
        attempt = 0
        while True:
            attempt += 1
            try:
                resp = self.session.request(
                    method,
                    url,
                    params=params,
                    json=payload,
                    headers=all_headers,
                    timeout=self.cfg.data_api_timeout,
                )
            except requests.RequestException as exc:
                if attempt <= self.retry.retries:
                    time.sleep(self.retry.base_delay * attempt)
                    continue
                raise DataSourceError(f"request error: {exc}")

            if resp.status_code in (429, 500, 502, 503, 504):
                if attempt <= self.retry.retries:
                    time.sleep(self.retry.base_delay * attempt)
                    continue
                raise DataSourceError(f"upstream {resp.status_code}: {resp.text[:300]}")

            if not resp.ok:
                raise DataSourceError(f"upstream {resp.status_code}: {resp.text[:300]}")

            if not resp.content:
                return None
            try:
                return resp.json()
            except ValueError:
                raise DataSourceError("invalid json response")

    def _select(self, table: str, params: dict) -> List[Dict[str, Any]]:
        rows = self._request("GET", table, params=params)
        if rows is None:
            return []
        if not isinstance(rows, list):
            raise DataSourceError(f"unexpected payload for {table}")
        return rows

    def list_active_restaurants(self) -> List[Restaurant]:
        rows = self._select("restaurants", {"select": self.RESTAURANT_COLUMNS, "is_active": "eq.true"})
        return _parse_rows(rows, restaurant_from_row, "restaurant")

    def list_active_menus(self) -> List[Menu]:
        rows = self._select("menus", {"select": self.MENU_COLUMNS, "is_active": "eq.true"})
        return [m for m in _parse_rows(rows, menu_from_row, "menu") if m.is_active]

    def list_ratings(self, restaurant_id: str) -> List[float]:
        rows = self._select(
            "comments",
            {"select": "rating", "restaurant_id": f"eq.{restaurant_id}", "rating": "not.is.null"},
        )
        values = [_as_float(row.get("rating")) for row in rows]
        return [v for v in values if v is not None]

    def get_current_preferences(self) -> Optional[Preferences]:
        if not self.user_id:
            return None
        rows = self._select("user_preferences", {"select": "*", "user_id": f"eq.{self.user_id}"})
        if not rows:
            return None
        return parse_preferences(rows[0])

    def save_preferences(self, preferences: Preferences) -> None:
        if not self.user_id:
            raise ValueError("user_id is required to save preferences")
        record = {**preferences_to_record(preferences), "user_id": self.user_id}
        self._request(
            "POST",
            "user_preferences",
            params={"on_conflict": "user_id"},
            payload=record,
            headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
        )
