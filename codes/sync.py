"""Import pass: merge scraped codes for a game into the persisted code set."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from codes.normalization import normalize_code_key, sanitize_code_display
from codes.sources import (
    ScrapedCode,
    ScrapeResult,
    SourceAggregator,
    expired_entry_code,
    scrape_sources,
)
from codes.store import CodeStore, PersistenceError
from helpers import dedupe_preserve_order

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    codes_found: int = 0
    codes_upserted: int = 0
    expired_codes: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    codes: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "codes_found": self.codes_found,
            "codes_upserted": self.codes_upserted,
            "expired_codes": list(self.expired_codes),
            "errors": list(self.errors),
            "codes": [dict(entry) for entry in self.codes],
        }


def clean_source_list(sources: Iterable[Any]) -> list[str]:
    """Trim ``sources``, dropping blanks, non-strings and repeats (order kept)."""

    return dedupe_preserve_order(sources)


def _coerce_candidate(entry: Any) -> ScrapedCode | None:
    if isinstance(entry, ScrapedCode):
        return entry
    if isinstance(entry, Mapping):
        return ScrapedCode.from_mapping(entry)
    return None


def _coerce_priority(value: Any) -> int:
    try:
        return max(0, int(value or 0))
    except (TypeError, ValueError):
        return 0


def dedupe_expired_codes(entries: Iterable[Any]) -> list[str]:
    """Return display forms of ``entries``, one per comparison key."""

    expired: dict[str, str] = {}
    for entry in entries:
        sanitized = sanitize_code_display(expired_entry_code(entry))
        if not sanitized:
            continue
        key = normalize_code_key(sanitized)
        if not key or key in expired:
            continue
        expired[key] = sanitized
    return list(expired.values())


def sync_game_codes_from_sources(
    store: CodeStore,
    game_id: str,
    sources: Iterable[Any],
    *,
    aggregator: SourceAggregator = scrape_sources,
) -> SyncResult:
    """Scrape ``sources`` and upsert the codes they report for ``game_id``.

    A candidate only reaches the database when its provider priority beats
    the best priority already known for its comparison key, either from a
    persisted row or from an earlier candidate of the same pass.  Equal
    priority never overwrites.

    Aggregator failures, including results of the wrong shape, are returned
    in ``errors`` before anything is written.
    Database failures raise :class:`~codes.store.PersistenceError`; upserts
    already issued stay committed.
    """

    source_list = clean_source_list(sources)
    if not source_list:
        return SyncResult()

    try:
        scraped = ScrapeResult.coerce(aggregator(source_list))
    except Exception as exc:
        message = str(exc) or exc.__class__.__name__
        logger.warning("Code scrape failed for game %s: %s", game_id, message)
        return SyncResult(errors=[message])

    for warning in scraped.errors or []:
        logger.warning("Code scrape warning for game %s: %s", game_id, warning)

    try:
        existing_rows = store.list_codes(game_id)
    except PersistenceError as exc:
        raise PersistenceError(f"Failed to load existing codes: {exc}") from exc

    best_priority: dict[str, int] = {}
    for row in existing_rows:
        key = normalize_code_key(row.get("code"))
        if not key:
            continue
        priority = _coerce_priority(row.get("provider_priority"))
        if key in best_priority and best_priority[key] >= priority:
            continue
        best_priority[key] = priority

    upserted = 0
    accepted: list[ScrapedCode] = []

    for raw_entry in scraped.codes or []:
        entry = _coerce_candidate(raw_entry)
        if entry is None:
            continue
        display = sanitize_code_display(entry.code)
        if not display:
            continue
        key = normalize_code_key(display)
        if not key:
            continue
        priority = _coerce_priority(entry.provider_priority)
        if key in best_priority and best_priority[key] >= priority:
            continue
        best_priority[key] = priority

        try:
            store.upsert_code(
                game_id,
                display,
                status=entry.status,
                rewards_text=entry.rewards_text,
                level_requirement=entry.level_requirement,
                is_new=bool(entry.is_new) if entry.is_new is not None else False,
                provider_priority=priority,
            )
        except PersistenceError as exc:
            raise PersistenceError(f"Upsert failed for {entry.code}: {exc}") from exc

        upserted += 1
        accepted.append(
            ScrapedCode(
                code=display,
                status=entry.status,
                rewards_text=entry.rewards_text,
                level_requirement=entry.level_requirement,
                is_new=entry.is_new,
                provider_priority=priority,
            )
        )

    expired_codes = dedupe_expired_codes(scraped.expired_codes or [])
    store.set_expired_codes(game_id, expired_codes)
    if expired_codes:
        removed = store.delete_codes_with_status(game_id, "expired")
        if removed:
            logger.info("Removed %d expired code row(s) for game %s", removed, game_id)

    logger.info(
        "Synced codes for game %s: %d accepted, %d upserted, %d expired",
        game_id,
        len(accepted),
        upserted,
        len(expired_codes),
    )

    return SyncResult(
        codes_found=len(accepted),
        codes_upserted=upserted,
        expired_codes=expired_codes,
        errors=[],
        codes=[{"code": entry.code, "status": entry.status} for entry in accepted],
    )


__all__ = [
    "SyncResult",
    "clean_source_list",
    "dedupe_expired_codes",
    "sync_game_codes_from_sources",
]
