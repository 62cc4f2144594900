from __future__ import annotations

import sys
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger
from pydantic import BaseModel, Field

from config import Configuration
from models import Preferences, Recommendation, RecommendationOutcome
from services.events import ChangeFeed, parse_change_event
from services.preferences import parse_preferences, preferences_to_record
from services.ranking import recommend
from services.ratings import fetch_rating_snapshot
from services.recommender import (
    STATUS_PENDING,
    RecommendationService,
    build_ai_scorer,
    build_catalog,
)
from services.report import build_report, empty_state
from services.scoring import current_meal_time

load_dotenv()

app = FastAPI(title="Restaurant Recommender")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_feed = ChangeFeed()
_service: Optional[RecommendationService] = None


def configure_logging(cfg: Configuration) -> None:
    logger.remove()
    logger.add(sys.stderr, level=cfg.log_level.upper())


def get_service() -> RecommendationService:
    global _service
    if _service is None:
        cfg = Configuration.from_env()
        configure_logging(cfg)
        logger.info("cfg: {}", cfg.log_summary())
        catalog = build_catalog(cfg, _feed)
        _service = RecommendationService(cfg, catalog, ai_scorer=build_ai_scorer(cfg))
        _service.attach(_feed)
    return _service


class RecommendRequest(BaseModel):
    preferences: Optional[Dict[str, Any]] = Field(
        None, description="Preferences to score against; the saved ones are used when omitted"
    )
    limit: Optional[int] = Field(None, ge=1, le=50, description="Number of recommendations to return")


class RestaurantPayload(BaseModel):
    id: str
    name: str
    cuisine_type: List[str] = []
    price_range: Optional[str] = None
    address: Optional[str] = None


class RecommendationPayload(BaseModel):
    restaurant: RestaurantPayload
    score: float
    reasons: List[str] = []
    matched: bool = False
    rating: Optional[float] = None
    rating_count: int = 0


class EmptyStatePayload(BaseModel):
    kind: str
    message: str
    actions: List[Dict[str, str]] = []


class RecommendResponse(BaseModel):
    status: str
    source: str
    generation: int = 0
    meal_time: str
    recommendations: List[RecommendationPayload] = []
    recommendations_markdown: str
    empty_state: Optional[EmptyStatePayload] = None


class RatingResponse(BaseModel):
    restaurant_id: str
    average: Optional[float] = None
    count: int = 0


def _to_payload(rec: Recommendation) -> RecommendationPayload:
    r = rec.result.restaurant
    return RecommendationPayload(
        restaurant=RestaurantPayload(
            id=r.id,
            name=r.name,
            cuisine_type=r.cuisine_type,
            price_range=r.price_range,
            address=r.address,
        ),
        score=rec.result.score,
        reasons=rec.result.display_reasons,
        matched=rec.result.matched,
        rating=rec.rating.average,
        rating_count=rec.rating.count,
    )


def _to_response(outcome: RecommendationOutcome, prefs: Optional[Preferences]) -> RecommendResponse:
    return RecommendResponse(
        status=outcome.status,
        source=outcome.source,
        generation=outcome.generation,
        meal_time=current_meal_time(),
        recommendations=[_to_payload(rec) for rec in outcome.recommendations],
        recommendations_markdown=build_report(outcome, prefs),
        empty_state=EmptyStatePayload(**empty_state(outcome)) if outcome.is_empty else None,
    )


@app.get("/healthz")
def healthz() -> dict:
    return {"status": "ok"}


@app.post("/recommendations", response_model=RecommendResponse)
def create_recommendations(
    req: RecommendRequest, service: RecommendationService = Depends(get_service)
) -> RecommendResponse:
    try:
        # ad-hoc preferences bypass the shared score cache, only refresh() prunes it
        cache = None
        if req.preferences is not None:
            prefs = parse_preferences(req.preferences)
        else:
            prefs = service.catalog.get_current_preferences()
            cache = service.score_cache
        outcome = recommend(
            service.catalog,
            prefs,
            limit=req.limit or service.cfg.recommendation_limit,
            ai_scorer=service.ai_scorer,
            max_workers=service.cfg.scoring_workers,
            rating_concurrency=service.cfg.rating_concurrency,
            cache=cache,
            rating_cache=service.rating_cache,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except Exception as exc:
        logger.exception("recommendation failed: {}", exc)
        raise HTTPException(status_code=500, detail="internal error")
    return _to_response(outcome, prefs)


@app.get("/recommendations/current", response_model=RecommendResponse)
def current_recommendations(service: RecommendationService = Depends(get_service)) -> RecommendResponse:
    try:
        outcome = service.current
        if outcome.status == STATUS_PENDING:
            outcome = service.refresh()
    except Exception as exc:
        logger.exception("refresh failed: {}", exc)
        raise HTTPException(status_code=500, detail="internal error")
    return _to_response(outcome, service.preferences)


@app.put("/preferences")
def save_preferences(payload: Dict[str, Any], service: RecommendationService = Depends(get_service)) -> dict:
    try:
        prefs = parse_preferences(payload)
        service.catalog.save_preferences(prefs)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except Exception as exc:
        logger.exception("saving preferences failed: {}", exc)
        raise HTTPException(status_code=500, detail="internal error")
    # catalogs without a change feed still need the debounced refresh
    service.request_refresh()
    return {"saved": True, "preferences": preferences_to_record(prefs)}


@app.post("/events", status_code=202)
def receive_event(payload: Dict[str, Any], service: RecommendationService = Depends(get_service)) -> dict:
    try:
        event = parse_change_event(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    service.handle_event(event)
    return {"accepted": True, "kind": event.kind.value, "restaurant_id": event.restaurant_id}


@app.get("/restaurants/{restaurant_id}/rating", response_model=RatingResponse)
def restaurant_rating(restaurant_id: str, service: RecommendationService = Depends(get_service)) -> RatingResponse:
    snapshot = fetch_rating_snapshot(service.catalog, restaurant_id)
    return RatingResponse(restaurant_id=restaurant_id, average=snapshot.average, count=snapshot.count)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8010, reload=True)
