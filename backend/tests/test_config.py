from __future__ import annotations

import pytest
from pydantic import ValidationError

from config import Configuration


def test_from_env_reads_settings(monkeypatch) -> None:
    monkeypatch.setenv("DATA_API_URL", "https://db.example.test")
    monkeypatch.setenv("DATA_API_KEY", "abcdefghijklmnop")
    monkeypatch.setenv("AI_SCORER_ENABLED", "yes")
    monkeypatch.setenv("AI_SCORER_URL", "https://ai.example.test")
    monkeypatch.setenv("RECOMMENDATION_LIMIT", "10")
    monkeypatch.setenv("DEBOUNCE_SEC", "0.25")

    cfg = Configuration.from_env({"recommendation_limit": 3, "data_api_timeout": None})
    assert cfg.data_api_url == "https://db.example.test"
    assert cfg.ai_scorer_active
    assert cfg.recommendation_limit == 3
    assert cfg.debounce_sec == 0.25
    assert cfg.data_api_timeout == 10

    summary = cfg.log_summary()
    assert "abcdefghijklmnop" not in summary
    assert "abcd...mnop" in summary


def test_defaults_without_env(monkeypatch) -> None:
    for name in ("DATA_API_URL", "AI_SCORER_ENABLED", "AI_SCORER_URL", "RECOMMENDATION_LIMIT", "DEBOUNCE_SEC"):
        monkeypatch.delenv(name, raising=False)
    cfg = Configuration.from_env()
    assert cfg.recommendation_limit == 6
    assert cfg.debounce_sec == 0.4
    assert not cfg.ai_scorer_active
    with pytest.raises(ValueError):
        cfg.require_data_api()


def test_rejects_out_of_range_limit() -> None:
    with pytest.raises(ValidationError):
        Configuration(recommendation_limit=0)
