"""General-purpose helper utilities shared across the application."""

from __future__ import annotations

import re
from typing import Any, Iterable
from urllib.parse import urlparse

import pandas as pd


__all__ = [
    "clean_optional_text",
    "dedupe_preserve_order",
    "derive_game_name",
    "has_text",
    "normalize_game_slug",
    "slug_from_url",
    "slugify",
    "titleize_game_slug",
]

_SLUG_PATTERN = re.compile(r"[^a-z0-9]+")
_REPEATED_DASHES = re.compile(r"--+")


def has_text(value: Any) -> bool:
    """Return ``True`` when ``value`` contains non-empty text."""

    if value is None:
        return False
    if isinstance(value, str):
        text = value.strip()
    else:
        try:
            if pd.isna(value):
                return False
        except (TypeError, ValueError):
            pass
        text = str(value).strip()
    if not text:
        return False
    if text.lower() == "nan":
        return False
    return True


def clean_optional_text(value: Any) -> str | None:
    """Return ``value`` trimmed, or ``None`` when it carries no text."""

    if not has_text(value):
        return None
    return str(value).strip()


def dedupe_preserve_order(values: Iterable[Any]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for value in values:
        if not isinstance(value, str):
            continue
        text = value.strip()
        if not text or text in seen:
            continue
        seen.add(text)
        result.append(text)
    return result


def slugify(value: Any) -> str:
    """Lower-case ``value`` and collapse runs of other characters into ``-``."""

    text = str(value or "").strip().lower()
    text = _SLUG_PATTERN.sub("-", text).strip("-")
    return _REPEATED_DASHES.sub("-", text)


def normalize_game_slug(value: str | None, fallback: str | None = None) -> str:
    base = value if value and value.strip() else (fallback or "")
    return slugify(base)


def slug_from_url(url: str | None) -> str | None:
    """Return the slug of the last path segment of ``url``."""

    if not url or not isinstance(url, str):
        return None
    parsed = urlparse(url.strip())
    if not parsed.scheme or not parsed.netloc:
        return None
    segments = [segment for segment in parsed.path.split("/") if segment]
    if not segments:
        return None
    return slugify(segments[-1])


def titleize_game_slug(slug: str | None) -> str:
    parts = [part for part in (slug or "").split("-") if part]
    return " ".join(part[:1].upper() + part[1:] for part in parts)


def derive_game_name(
    name: str | None = None,
    slug: str | None = None,
    source_url: str | None = None,
) -> str | None:
    """Return ``name`` when given, else a title built from the slug or URL."""

    if name and name.strip():
        return name.strip()
    slug_source = slug or slug_from_url(source_url) or ""
    if slug_source:
        return titleize_game_slug(slug_source) or None
    return None
