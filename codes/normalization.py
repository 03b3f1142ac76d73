"""Canonical display and comparison forms for promotional codes."""

from __future__ import annotations

import re
from typing import Any

_NON_ALNUM = re.compile(r"[^A-Z0-9]")


def sanitize_code_display(raw: Any) -> str | None:
    """Return the stored form of ``raw``: trimmed and upper-cased.

    ``None``, non-strings and whitespace-only values yield ``None``.
    """

    if not raw or not isinstance(raw, str):
        return None
    cleaned = raw.strip()
    if not cleaned:
        return None
    return cleaned.upper()


def normalize_code_key(raw: Any) -> str | None:
    """Return the comparison key of ``raw`` (``[A-Z0-9]`` only) or ``None``.

    Two codes are the same code when their keys match, whatever their dashes
    or spacing.  Keys are derived on demand and never stored.
    """

    sanitized = sanitize_code_display(raw)
    if not sanitized:
        return None
    normalized = _NON_ALNUM.sub("", sanitized)
    return normalized or None


__all__ = ["normalize_code_key", "sanitize_code_display"]
