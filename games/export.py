"""CSV export of the admin game list."""

from __future__ import annotations

import csv
from typing import Any, Iterable, Mapping

import pandas as pd

EXPORT_FIELDS = (
    "id",
    "name",
    "slug",
    "is_published",
    "author",
    "active_count",
    "check_count",
    "expired_count",
    "active_codes",
    "source_url",
    "source_url_2",
    "source_url_3",
    "created_at",
    "updated_at",
)


def _export_value(value: Any) -> Any:
    if isinstance(value, bool):
        return "true" if value else "false"
    return value


def build_games_csv(rows: Iterable[Mapping[str, Any]]) -> str:
    """Render ``rows`` as CSV text.

    The header is the union of all row keys in first-seen order.  Missing and
    ``None`` cells are empty; cells holding a comma, quote or newline are
    quoted with inner quotes doubled.
    """

    materialized = [dict(row) for row in rows]
    if not materialized:
        return ""

    headers: list[str] = []
    for row in materialized:
        for key in row:
            if key not in headers:
                headers.append(key)

    frame = pd.DataFrame(
        [[_export_value(row.get(key)) for key in headers] for row in materialized],
        columns=headers,
        dtype=object,
    )
    text = frame.to_csv(
        index=False,
        na_rep="",
        quoting=csv.QUOTE_MINIMAL,
        lineterminator="\n",
    )
    return text.rstrip("\n")


def games_export_rows(summaries: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
    """Flatten admin game summaries into one export row per game."""

    rows: list[dict[str, Any]] = []
    for summary in summaries:
        counts = summary.get("counts") or {}
        author = summary.get("author") or {}
        active = (summary.get("codes") or {}).get("active") or []
        values = {
            "id": summary.get("id"),
            "name": summary.get("name"),
            "slug": summary.get("slug"),
            "is_published": bool(summary.get("is_published")),
            "author": author.get("name"),
            "active_count": counts.get("active", 0),
            "check_count": counts.get("check", 0),
            "expired_count": counts.get("expired", 0),
            "active_codes": ", ".join(entry.get("code", "") for entry in active),
            "source_url": summary.get("source_url"),
            "source_url_2": summary.get("source_url_2"),
            "source_url_3": summary.get("source_url_3"),
            "created_at": summary.get("created_at"),
            "updated_at": summary.get("updated_at"),
        }
        rows.append({name: values[name] for name in EXPORT_FIELDS})
    return rows


__all__ = ["EXPORT_FIELDS", "build_games_csv", "games_export_rows"]
