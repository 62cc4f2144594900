from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from config import Configuration
from main import app, get_service
from models import Menu, Preferences, Restaurant
from services.recommender import RecommendationService
from services.repository import InMemoryCatalog


def _catalog() -> InMemoryCatalog:
    return InMemoryCatalog(
        restaurants=[
            Restaurant(id="r1", name="Trattoria", cuisine_type=["Italian"], price_range="$$"),
            Restaurant(id="r2", name="Thai Garden", cuisine_type=["Thai"], price_range="$$"),
        ],
        menus=[Menu(restaurant_id="r1", allergens=["dairy"])],
        ratings={"r1": [4, 5, 4, 3]},
        preferences=Preferences(cuisine_preferences=["Thai"]),
    )


@pytest.fixture
def service():
    svc = RecommendationService(Configuration(debounce_sec=5), _catalog())
    app.dependency_overrides[get_service] = lambda: svc
    yield svc
    svc.close()
    app.dependency_overrides.clear()


@pytest.fixture
def client(service):
    return TestClient(app)


def test_healthz(client) -> None:
    assert client.get("/healthz").json() == {"status": "ok"}


def test_recommendations_with_inline_preferences(client) -> None:
    resp = client.post(
        "/recommendations",
        json={"preferences": {"cuisinePreferences": ["Italian"], "priceRange": "$$", "allergens": ["nuts"]}},
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["empty_state"] is None
    assert [rec["restaurant"]["id"] for rec in data["recommendations"]] == ["r1"]
    top = data["recommendations"][0]
    assert top["rating"] == 4.0 and top["rating_count"] == 4
    assert len(top["reasons"]) == 2
    assert "Trattoria" in data["recommendations_markdown"]


def test_inline_preferences_leave_shared_cache_alone(service, client) -> None:
    for cuisine in ("Italian", "Thai", "Mexican", "French"):
        resp = client.post("/recommendations", json={"preferences": {"cuisinePreferences": [cuisine]}})
        assert resp.status_code == 200
    assert len(service.score_cache) == 0

    client.post("/recommendations", json={})
    assert len(service.score_cache) == 2


def test_recommendations_use_saved_preferences_and_limit(client) -> None:
    data = client.post("/recommendations", json={"limit": 1}).json()
    assert [rec["restaurant"]["id"] for rec in data["recommendations"]] == ["r2"]
    assert data["recommendations"][0]["rating"] is None


def test_empty_catalog_returns_recovery_actions(service, client) -> None:
    service.catalog = InMemoryCatalog()
    data = client.post("/recommendations", json={}).json()
    assert data["status"] == "empty"
    assert data["recommendations"] == []
    assert data["empty_state"]["kind"] == "no_recommendations"
    assert [a["action"] for a in data["empty_state"]["actions"]] == ["adjust_preferences", "refresh"]


def test_invalid_limit_is_rejected(client) -> None:
    assert client.post("/recommendations", json={"limit": 0}).status_code == 422


def test_current_computes_first_pass(client) -> None:
    data = client.get("/recommendations/current").json()
    assert data["status"] == "ok"
    assert data["generation"] == 1
    assert data["recommendations"][0]["restaurant"]["id"] == "r2"


def test_save_preferences_schedules_refresh(service, client) -> None:
    resp = client.put("/preferences", json={"cuisine_preferences": ["Italian"], "price_range": "$$"})
    assert resp.status_code == 200
    assert resp.json()["preferences"]["price_range"] == "$$"
    assert service.refresh_pending
    assert service.flush()
    assert service.current.recommendations[0].result.restaurant.id == "r1"


def test_events_webhook(service, client) -> None:
    service.refresh()
    resp = client.post("/events", json={"table": "comments", "record": {"restaurant_id": "r1", "rating": 5}})
    assert resp.status_code == 202
    assert resp.json() == {"accepted": True, "kind": "rating", "restaurant_id": "r1"}
    assert "r1" not in service.rating_cache
    assert service.refresh_pending

    assert client.post("/events", json={"table": "orders"}).status_code == 400


def test_restaurant_rating(client) -> None:
    assert client.get("/restaurants/r1/rating").json() == {"restaurant_id": "r1", "average": 4.0, "count": 4}
    assert client.get("/restaurants/zzz/rating").json() == {"restaurant_id": "zzz", "average": None, "count": 0}
