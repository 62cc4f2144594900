from __future__ import annotations

import os
from typing import Any, Optional

from pydantic import BaseModel, Field

from utils import mask_secret


class Configuration(BaseModel):
    # Data API (PostgREST / Supabase style)
    data_api_url: Optional[str] = Field(default=None)
    data_api_key: Optional[str] = Field(default=None)
    data_api_timeout: int = Field(default=10)
    catalog_path: Optional[str] = Field(default=None)
    user_id: Optional[str] = Field(default=None)

    # External AI scorer (optional)
    ai_scorer_enabled: bool = Field(default=False)
    ai_scorer_url: Optional[str] = Field(default=None)
    ai_scorer_api_key: Optional[str] = Field(default=None)
    ai_scorer_timeout: int = Field(default=20)

    # Ranking
    recommendation_limit: int = Field(default=6, ge=1, le=50)
    debounce_sec: float = Field(default=0.4, ge=0.0)
    scoring_workers: int = Field(default=1, ge=1)
    rating_concurrency: int = Field(default=8, ge=1)

    log_level: str = Field(default="INFO")

    @classmethod
    def from_env(cls, overrides: Optional[dict[str, Any]] = None) -> "Configuration":
        raw: dict[str, Any] = {}

        env_map = {
            "data_api_url": os.getenv("DATA_API_URL"),
            "data_api_key": os.getenv("DATA_API_KEY"),
            "data_api_timeout": os.getenv("DATA_API_TIMEOUT"),
            "catalog_path": os.getenv("CATALOG_PATH"),
            "user_id": os.getenv("RECOMMENDER_USER_ID"),
            "ai_scorer_enabled": os.getenv("AI_SCORER_ENABLED"),
            "ai_scorer_url": os.getenv("AI_SCORER_URL"),
            "ai_scorer_api_key": os.getenv("AI_SCORER_API_KEY"),
            "ai_scorer_timeout": os.getenv("AI_SCORER_TIMEOUT"),
            "recommendation_limit": os.getenv("RECOMMENDATION_LIMIT"),
            "debounce_sec": os.getenv("DEBOUNCE_SEC"),
            "scoring_workers": os.getenv("SCORING_WORKERS"),
            "rating_concurrency": os.getenv("RATING_CONCURRENCY"),
            "log_level": os.getenv("LOG_LEVEL"),
        }

        bool_fields = {"ai_scorer_enabled"}

        for k, v in env_map.items():
            if v is None:
                continue
            if k in bool_fields:
                raw[k] = str(v).lower() in {"1", "true", "yes", "on"}
            else:
                raw[k] = v

        if overrides:
            raw.update({k: v for k, v in overrides.items() if v is not None})

        return cls(**raw)

    def require_data_api(self) -> None:
        if not self.data_api_url:
            raise ValueError("DATA_API_URL is required")

    @property
    def ai_scorer_active(self) -> bool:
        return bool(self.ai_scorer_enabled and self.ai_scorer_url)

    def log_summary(self) -> str:
        return (
            "data_api=%s timeout=%s api_key=%s catalog=%s ai_scorer=%s limit=%s debounce=%.2fs workers=%s rating_concurrency=%s"
            % (
                self.data_api_url or "unset",
                self.data_api_timeout,
                mask_secret(self.data_api_key),
                self.catalog_path or "unset",
                self.ai_scorer_active,
                self.recommendation_limit,
                self.debounce_sec,
                self.scoring_workers,
                self.rating_concurrency,
            )
        )
