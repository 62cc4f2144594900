"""Utility helpers for the restaurant recommendation engine."""

from __future__ import annotations

import re
from typing import Iterable, List, Optional

_SEPARATORS = re.compile(r"[\s_\-]+")


def mask_secret(value: Optional[str], visible: int = 4) -> str:
    if not value:
        return "unset"
    if len(value) <= visible * 2:
        return "*" * len(value)
    return f"{value[:visible]}...{value[-visible:]}"


def normalize_tag(value: Optional[str]) -> str:
    """Lowercase a tag and fold '-', '_' and whitespace runs into one '_'."""
    if not value:
        return ""
    return _SEPARATORS.sub("_", str(value).strip().lower()).strip("_")


def normalize_tags(values: Optional[Iterable[str]]) -> set[str]:
    if not values:
        return set()
    return {tag for tag in (normalize_tag(v) for v in values) if tag}


def dedupe_strings(values: object) -> List[str]:
    """Coerce list-ish input to a list of stripped, unique, non-empty strings."""
    if values is None:
        return []
    if isinstance(values, str):
        values = [values]
    if not isinstance(values, (list, tuple, set)):
        return []
    seen: set[str] = set()
    out: list[str] = []
    for item in values:
        if item is None:
            continue
        text = str(item).strip()
        if text and text not in seen:
            seen.add(text)
            out.append(text)
    return out


def dedupe_tags(values: object) -> List[str]:
    """Like dedupe_strings, but entries equal after normalize_tag count once; first spelling wins."""
    seen: set[str] = set()
    out: list[str] = []
    for text in dedupe_strings(values):
        tag = normalize_tag(text)
        if tag and tag not in seen:
            seen.add(tag)
            out.append(text)
    return out
