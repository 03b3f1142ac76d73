"""Refresh pass: import fresh codes for a game, then prune the stale ones."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

from codes.normalization import normalize_code_key
from codes.sources import SourceAggregator, scrape_sources
from codes.store import CodeStore, PersistenceError
from codes.sync import sync_game_codes_from_sources

logger = logging.getLogger(__name__)

SOURCE_FIELDS = ("source_url", "source_url_2", "source_url_3")
PRUNABLE_STATUSES = frozenset({"active", "check"})


@dataclass
class RefreshResult:
    success: bool
    found: int = 0
    upserted: int = 0
    removed: int = 0
    expired: int = 0
    error: str | None = None

    @classmethod
    def failure(cls, error: str) -> "RefreshResult":
        return cls(success=False, error=error)

    def to_dict(self) -> dict[str, Any]:
        if not self.success:
            return {"success": False, "error": self.error}
        return {
            "success": True,
            "found": self.found,
            "upserted": self.upserted,
            "removed": self.removed,
            "expired": self.expired,
        }


def refresh_game_codes(
    store: CodeStore,
    game: Mapping[str, Any],
    *,
    aggregator: SourceAggregator = scrape_sources,
) -> RefreshResult:
    """Re-scrape ``game``'s sources and delete active/check codes no longer listed.

    Only codes upserted by this pass count as still listed, so a candidate
    that lost on provider priority does not protect its persisted row.
    Expired rows are left alone.
    """

    game_id = game["id"]
    sources = [game.get(name) for name in SOURCE_FIELDS]

    try:
        sync_result = sync_game_codes_from_sources(
            store, game_id, sources, aggregator=aggregator
        )
    except PersistenceError as exc:
        logger.error("Code refresh for game %s failed: %s", game_id, exc)
        return RefreshResult.failure(str(exc))

    if sync_result.errors:
        return RefreshResult.failure(", ".join(sync_result.errors))

    try:
        existing_rows = store.list_codes(game_id)
    except PersistenceError as exc:
        return RefreshResult.failure(str(exc))

    incoming = {
        key
        for key in (normalize_code_key(entry.get("code")) for entry in sync_result.codes)
        if key
    }

    to_delete = [
        row["code"]
        for row in existing_rows
        if row.get("status") in PRUNABLE_STATUSES
        and row.get("code")
        and normalize_code_key(row["code"])
        and normalize_code_key(row["code"]) not in incoming
    ]

    if to_delete:
        try:
            store.delete_codes(game_id, to_delete)
        except PersistenceError as exc:
            return RefreshResult.failure(str(exc))
        logger.info("Pruned %d stale code(s) for game %s", len(to_delete), game_id)

    return RefreshResult(
        success=True,
        found=sync_result.codes_found,
        upserted=sync_result.codes_upserted,
        removed=len(to_delete),
        expired=len(sync_result.expired_codes),
    )


__all__ = ["PRUNABLE_STATUSES", "RefreshResult", "SOURCE_FIELDS", "refresh_game_codes"]
