from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional

from loguru import logger


class ChangeKind(str, Enum):
    RESTAURANTS = "restaurants"
    MENUS = "menus"
    RATING = "rating"
    PREFERENCES = "preferences"


@dataclass(frozen=True)
class ChangeEvent:
    kind: ChangeKind
    restaurant_id: Optional[str] = None


# table names used by the data API, mapped onto event kinds
TABLE_KINDS = {
    "restaurants": ChangeKind.RESTAURANTS,
    "menus": ChangeKind.MENUS,
    "ratings": ChangeKind.RATING,
    "comments": ChangeKind.RATING,
    "user_preferences": ChangeKind.PREFERENCES,
    "preferences": ChangeKind.PREFERENCES,
}


def parse_change_event(payload: Any) -> ChangeEvent:
    """Accept either {"kind", "restaurant_id"} or a table/record change payload."""
    if not isinstance(payload, dict):
        raise ValueError("change event must be an object")

    kind_raw = payload.get("kind")
    if kind_raw is not None:
        try:
            kind = ChangeKind(str(kind_raw).strip().lower())
        except ValueError:
            raise ValueError(f"unknown change kind: {kind_raw}")
    else:
        table = str(payload.get("table") or "").strip().lower()
        if table not in TABLE_KINDS:
            raise ValueError(f"unknown change table: {table or 'missing'}")
        kind = TABLE_KINDS[table]

    record = payload.get("record") or payload.get("old_record") or {}
    restaurant_id = payload.get("restaurant_id")
    if restaurant_id is None and isinstance(record, dict):
        if kind is ChangeKind.RESTAURANTS:
            restaurant_id = record.get("id")
        else:
            restaurant_id = record.get("restaurant_id")
    return ChangeEvent(kind=kind, restaurant_id=str(restaurant_id) if restaurant_id else None)


Handler = Callable[[ChangeEvent], None]


class ChangeFeed:
    """In-process publish/subscribe for catalog change notifications."""

    def __init__(self) -> None:
        self._handlers: List[Handler] = []

    def subscribe(self, handler: Handler) -> Callable[[], None]:
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def publish(self, event: ChangeEvent) -> None:
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception as exc:
                logger.exception("change handler failed for {}: {}", event, exc)

    def __len__(self) -> int:
        return len(self._handlers)
