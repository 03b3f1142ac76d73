"""Game, author and manual code workflows used by the admin routes."""

from __future__ import annotations

import logging
import re
from typing import Any, Iterable, Mapping, Sequence
from urllib.parse import urlparse

from sqlalchemy import delete as sa_delete, func, insert, select, update as sa_update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from codes.normalization import sanitize_code_display
from codes.refresh import RefreshResult, refresh_game_codes
from codes.sources import (
    SOCIAL_LINK_FIELDS,
    SocialLinkScraper,
    SourceAggregator,
    scrape_social_links_from_sources,
    scrape_sources,
)
from codes.store import CodeStore, PersistenceError
from codes.sync import clean_source_list, sync_game_codes_from_sources
from db import utils as db_utils
from db.schema import CODE_STATUSES, authors, codes, games, new_id, now_utc_iso
from helpers import clean_optional_text, derive_game_name, normalize_game_slug, slug_from_url

logger = logging.getLogger(__name__)

GAME_PAGE_SIZE = 500
CODE_CHUNK_SIZE = 100
MANUAL_CODE_PRIORITY = 100

URL_FIELDS = (
    "source_url",
    "source_url_2",
    "source_url_3",
    "roblox_link",
    "community_link",
    "twitter_link",
    "discord_link",
    "youtube_link",
)
TEXT_FIELDS = (
    "intro_md",
    "redeem_md",
    "troubleshoot_md",
    "rewards_md",
    "about_game_md",
    "description_md",
    "seo_title",
    "seo_description",
    "cover_image",
)
SOCIAL_LINK_COLUMNS = {field: f"{field}_link" for field in SOCIAL_LINK_FIELDS}

SUMMARY_FIELDS = (
    "id",
    "name",
    "slug",
    "is_published",
    "created_at",
    "updated_at",
    *URL_FIELDS,
    *TEXT_FIELDS,
)

_UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)
_MARKDOWN_IMAGE_PATTERN = re.compile(r'!\[[^\]]*\]\([^)\s]+(?:\s+"[^"]*")?\)')

DatabaseLike = db_utils.DatabaseHandle | db_utils.DatabaseEngine


class GameServiceError(RuntimeError):
    """Base class for game service errors."""


class GameNotFoundError(GameServiceError):
    """Raised when a game (or code) cannot be located."""


class GameConflictError(GameServiceError):
    """Raised when a game slug is already taken by another game."""


def _db_error(exc: SQLAlchemyError) -> PersistenceError:
    original = getattr(exc, "orig", None)
    return PersistenceError(str(original if original is not None else exc))


def compute_game_details(
    name: str | None, slug: str | None, source_url: str | None
) -> tuple[str, str]:
    """Return ``(slug, name)`` derived from whatever the editor provided."""

    fallback = name or slug_from_url(source_url) or ""
    resolved_slug = normalize_game_slug(slug, fallback)
    if not resolved_slug:
        raise ValueError("Slug could not be generated. Provide a name or valid source URL.")
    resolved_name = derive_game_name(name=name, slug=resolved_slug, source_url=source_url)
    if not resolved_name:
        raise ValueError("Name could not be derived. Provide a game name or valid source URL.")
    return resolved_slug, resolved_name


def _coerce_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _validate_url(field: str, value: Any) -> str | None:
    text = clean_optional_text(value)
    if text is None:
        return None
    parsed = urlparse(text)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(f"{field} must be a valid http(s) URL.")
    return text


def _required_text(payload: Mapping[str, Any], field: str) -> str:
    value = payload.get(field)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{field} is required.")
    return value.strip()


def _validate_game_payload(payload: Mapping[str, Any]) -> dict[str, Any]:
    if not isinstance(payload, Mapping):
        raise ValueError("Game payload must be an object.")

    cleaned: dict[str, Any] = {
        "id": clean_optional_text(payload.get("id")),
        "name": _required_text(payload, "name"),
        "slug": _required_text(payload, "slug"),
        "author_id": clean_optional_text(payload.get("author_id")),
        "is_published": _coerce_flag(payload.get("is_published", False)),
    }
    for field in URL_FIELDS:
        cleaned[field] = _validate_url(field, payload.get(field))
    for field in TEXT_FIELDS:
        value = payload.get(field)
        if value is not None and not isinstance(value, str):
            raise ValueError(f"{field} must be a string.")
        cleaned[field] = value or None
    return cleaned


def _author_exists(conn, author_id: str) -> bool:
    return (
        conn.execute(select(authors.c.id).where(authors.c.id == author_id)).scalar()
        is not None
    )


def save_game(
    db: DatabaseLike,
    store: CodeStore,
    payload: Mapping[str, Any],
    *,
    aggregator: SourceAggregator = scrape_sources,
) -> dict[str, Any]:
    """Create or update a game, then import codes from its sources.

    Raises ``ValueError`` for invalid input, :class:`GameConflictError` when the
    slug is taken and :class:`GameNotFoundError` when updating an unknown id.
    Code import problems do not undo the save; they come back as
    ``sync_errors``.
    """

    cleaned = _validate_game_payload(payload)
    slug, name = compute_game_details(
        cleaned["name"], cleaned["slug"], cleaned["source_url"]
    )
    timestamp = now_utc_iso()
    record = {
        key: value for key, value in cleaned.items() if key not in {"id", "name", "slug"}
    }
    record.update({"name": name, "slug": slug, "updated_at": timestamp})

    game_id = cleaned["id"]
    try:
        with db.transaction() as conn:
            if record["author_id"] and not _author_exists(conn, record["author_id"]):
                raise ValueError("author_id does not match a known author.")
            if game_id:
                current = conn.execute(
                    select(games.c.published_at).where(games.c.id == game_id)
                ).first()
                if current is None:
                    raise GameNotFoundError(f"Game {game_id} not found.")
                if record["is_published"] and not current.published_at:
                    record["published_at"] = timestamp
                conn.execute(sa_update(games).where(games.c.id == game_id).values(**record))
            else:
                game_id = new_id()
                if record["is_published"]:
                    record["published_at"] = timestamp
                conn.execute(
                    insert(games).values(
                        id=game_id,
                        created_at=timestamp,
                        expired_codes=[],
                        internal_links=0,
                        **record,
                    )
                )
    except IntegrityError as exc:
        raise GameConflictError(f"A game with slug '{slug}' already exists.") from exc
    except SQLAlchemyError as exc:
        raise _db_error(exc) from exc

    logger.info("Saved game %s (%s)", slug, game_id)

    sources = [record["source_url"], record["source_url_2"], record["source_url_3"]]
    try:
        sync_result = sync_game_codes_from_sources(
            store, game_id, sources, aggregator=aggregator
        )
        sync_errors = list(sync_result.errors)
        codes_found = sync_result.codes_found
        codes_upserted = sync_result.codes_upserted
    except PersistenceError as exc:
        logger.error("Code import after saving game %s failed: %s", slug, exc)
        sync_errors = [str(exc)]
        codes_found = codes_upserted = 0

    return {
        "success": True,
        "id": game_id,
        "slug": slug,
        "codes_found": codes_found,
        "codes_upserted": codes_upserted,
        "sync_errors": sync_errors,
    }


def _game_columns():
    return [games.c[name] for name in SUMMARY_FIELDS] + [
        games.c.expired_codes,
        games.c.internal_links,
        authors.c.id.label("author_ref_id"),
        authors.c.name.label("author_name"),
    ]


def _games_query():
    return select(*_game_columns()).select_from(
        games.outerjoin(authors, games.c.author_id == authors.c.id)
    )


def _code_columns():
    return (
        codes.c.id,
        codes.c.game_id,
        codes.c.code,
        codes.c.status,
        codes.c.rewards_text,
        codes.c.level_requirement,
        codes.c.is_new,
        codes.c.posted_online,
        codes.c.first_seen_at,
        codes.c.last_seen_at,
    )


def _chunks(values: Sequence[str], size: int) -> Iterable[Sequence[str]]:
    for index in range(0, len(values), size):
        yield values[index:index + size]


def count_redeem_images(markdown: Any) -> int:
    """Return how many markdown image links ``markdown`` contains."""

    if not isinstance(markdown, str):
        return 0
    return len(_MARKDOWN_IMAGE_PATTERN.findall(markdown))


def build_game_summary(game: Mapping[str, Any], code_rows: Iterable[Mapping[str, Any]]) -> dict[str, Any]:
    grouped: dict[str, list[dict[str, Any]]] = {"active": [], "check": []}
    counts = {"active": 0, "check": 0, "expired": 0}
    for row in code_rows:
        status = row.get("status")
        if status in counts:
            counts[status] += 1
        if status in grouped:
            grouped[status].append(
                {
                    "id": row.get("id"),
                    "code": row.get("code"),
                    "status": status,
                    "rewards_text": row.get("rewards_text"),
                    "level_requirement": row.get("level_requirement"),
                    "is_new": row.get("is_new"),
                    "posted_online": bool(row.get("posted_online")),
                    "first_seen_at": row.get("first_seen_at"),
                    "last_seen_at": row.get("last_seen_at"),
                }
            )

    expired_codes = game.get("expired_codes")
    if not isinstance(expired_codes, list):
        expired_codes = []
    internal_links = game.get("internal_links")

    summary = {name: game.get(name) for name in SUMMARY_FIELDS}
    summary["is_published"] = bool(summary["is_published"])
    summary.update(
        {
            "internal_links": internal_links if isinstance(internal_links, int) else None,
            "expired_codes": list(expired_codes),
            "redeem_image_count": count_redeem_images(game.get("redeem_md")),
            "author": {
                "id": game.get("author_ref_id"),
                "name": game.get("author_name"),
            },
            "counts": {
                "active": counts["active"],
                "check": counts["check"],
                "expired": counts["expired"] + len(expired_codes),
            },
            "codes": {
                "active": grouped["active"],
                "check": grouped["check"],
                "expired": list(expired_codes),
            },
        }
    )
    return summary


def fetch_admin_games(db: DatabaseLike) -> list[dict[str, Any]]:
    """Return summaries for every game, most recently updated first."""

    game_rows: list[dict[str, Any]] = []
    code_rows: dict[str, list[dict[str, Any]]] = {}
    try:
        with db.sa_connection() as conn:
            offset = 0
            while True:
                chunk = (
                    conn.execute(
                        _games_query()
                        .order_by(games.c.updated_at.desc(), games.c.id)
                        .limit(GAME_PAGE_SIZE)
                        .offset(offset)
                    )
                    .mappings()
                    .all()
                )
                game_rows.extend(dict(row) for row in chunk)
                if len(chunk) < GAME_PAGE_SIZE:
                    break
                offset += GAME_PAGE_SIZE

            game_ids = [row["id"] for row in game_rows]
            for chunk_ids in _chunks(game_ids, CODE_CHUNK_SIZE):
                result = conn.execute(
                    select(*_code_columns())
                    .where(codes.c.game_id.in_(list(chunk_ids)))
                    .order_by(codes.c.first_seen_at, codes.c.code)
                )
                for row in result.mappings():
                    code_rows.setdefault(row["game_id"], []).append(dict(row))
    except SQLAlchemyError as exc:
        raise _db_error(exc) from exc

    return [build_game_summary(game, code_rows.get(game["id"], [])) for game in game_rows]


def _fetch_game_record(conn, field: str, value: str) -> dict[str, Any] | None:
    row = conn.execute(_games_query().where(games.c[field] == value)).mappings().first()
    return dict(row) if row is not None else None


def fetch_admin_game_by_identifier(db: DatabaseLike, identifier: str) -> dict[str, Any] | None:
    """Return the summary of the game whose slug or id is ``identifier``.

    Identifiers shaped like a UUID are looked up by id first.
    """

    if not identifier:
        return None
    attempts = [("id", identifier)]
    if _UUID_PATTERN.match(identifier):
        attempts.append(("slug", identifier))
    else:
        attempts.insert(0, ("slug", identifier))

    try:
        with db.sa_connection() as conn:
            game = None
            for field, value in attempts:
                game = _fetch_game_record(conn, field, value)
                if game is not None:
                    break
            if game is None:
                return None
            rows = (
                conn.execute(
                    select(*_code_columns())
                    .where(codes.c.game_id == game["id"])
                    .order_by(codes.c.first_seen_at, codes.c.code)
                )
                .mappings()
                .all()
            )
    except SQLAlchemyError as exc:
        raise _db_error(exc) from exc

    return build_game_summary(game, [dict(row) for row in rows])


def fetch_admin_authors(db: DatabaseLike) -> list[dict[str, Any]]:
    try:
        with db.sa_connection() as conn:
            rows = conn.execute(
                select(authors.c.id, authors.c.name).order_by(authors.c.name)
            ).all()
    except SQLAlchemyError as exc:
        raise _db_error(exc) from exc
    return [{"id": row.id, "name": row.name} for row in rows]


def create_author(db: DatabaseLike, name: str, *, slug: str | None = None) -> dict[str, Any]:
    """Insert an author; used by seed scripts and tests."""

    name = (name or "").strip()
    if not name:
        raise ValueError("Author name is required.")
    author_slug = normalize_game_slug(slug, name)
    timestamp = now_utc_iso()
    author_id = new_id()
    try:
        with db.transaction() as conn:
            conn.execute(
                insert(authors).values(
                    id=author_id,
                    name=name,
                    slug=author_slug,
                    created_at=timestamp,
                    updated_at=timestamp,
                )
            )
    except IntegrityError as exc:
        raise GameConflictError(f"An author with slug '{author_slug}' already exists.") from exc
    return {"id": author_id, "name": name, "slug": author_slug}


def _load_game_by_slug(conn, slug: str) -> dict[str, Any] | None:
    row = conn.execute(select(games).where(games.c.slug == slug)).mappings().first()
    return dict(row) if row is not None else None


def delete_game(db: DatabaseLike, game_id: str, *, media=None) -> dict[str, Any]:
    """Delete a game with its codes and drop its media folder."""

    try:
        with db.transaction() as conn:
            slug = conn.execute(select(games.c.slug).where(games.c.id == game_id)).scalar()
            if slug is None:
                raise GameNotFoundError("Game not found")
            conn.execute(sa_delete(codes).where(codes.c.game_id == game_id))
            conn.execute(sa_delete(games).where(games.c.id == game_id))
    except SQLAlchemyError as exc:
        raise _db_error(exc) from exc

    logger.info("Deleted game %s (%s)", slug, game_id)
    if media is not None and slug:
        try:
            media.remove_tree(f"games/{slug}")
        except OSError:
            logger.exception("Failed to clean up media for game %s", slug)
    return {"success": True, "slug": slug}


def upsert_game_code(store: CodeStore, payload: Mapping[str, Any]) -> dict[str, Any]:
    """Insert or update a code typed in by staff.

    Manual entries carry a provider priority high enough that later scrapes
    never overwrite their casing or rewards.
    """

    game_id = clean_optional_text(payload.get("game_id"))
    if not game_id:
        raise ValueError("game_id is required.")
    status = str(payload.get("status") or "active")
    if status not in CODE_STATUSES:
        raise ValueError(f"Unsupported code status '{status}'.")
    sanitized = sanitize_code_display(payload.get("code"))
    if not sanitized:
        raise ValueError("Code cannot be empty after normalization")

    level = payload.get("level_requirement")
    if level in (None, ""):
        level_requirement = None
    else:
        try:
            level_requirement = int(level)
        except (TypeError, ValueError) as exc:
            raise ValueError("level_requirement must be an integer.") from exc

    if not _game_exists(store.db, game_id):
        raise GameNotFoundError(f"Game {game_id} not found.")

    store.upsert_code(
        game_id,
        sanitized,
        status=status,
        rewards_text=clean_optional_text(payload.get("rewards_text")),
        level_requirement=level_requirement,
        is_new=_coerce_flag(payload.get("is_new", False)),
        provider_priority=MANUAL_CODE_PRIORITY,
    )
    return {"success": True, "code": sanitized}


def _game_exists(db: DatabaseLike, game_id: str) -> bool:
    try:
        with db.sa_connection() as conn:
            found = conn.execute(select(games.c.id).where(games.c.id == game_id)).scalar()
    except SQLAlchemyError as exc:
        raise _db_error(exc) from exc
    return found is not None


def update_code_status(store: CodeStore, code_id: str, status: str) -> dict[str, Any]:
    if not store.update_code_status(code_id, status):
        raise GameNotFoundError(f"Code {code_id} not found.")
    return {"success": True}


def delete_code(store: CodeStore, code_id: str) -> dict[str, Any]:
    if not store.delete_code_by_id(code_id):
        raise GameNotFoundError(f"Code {code_id} not found.")
    return {"success": True}


def refresh_game_codes_by_slug(
    db: DatabaseLike,
    store: CodeStore,
    slug: str,
    *,
    aggregator: SourceAggregator = scrape_sources,
) -> RefreshResult:
    try:
        with db.sa_connection() as conn:
            game = _load_game_by_slug(conn, slug)
    except SQLAlchemyError as exc:
        return RefreshResult.failure(str(_db_error(exc)))
    if game is None:
        raise GameNotFoundError("Game not found")
    return refresh_game_codes(store, game, aggregator=aggregator)


def backfill_game_social_links(
    db: DatabaseLike,
    slug: str,
    *,
    scraper: SocialLinkScraper = scrape_social_links_from_sources,
) -> dict[str, Any]:
    """Fill empty social link columns of a game from its source pages."""

    try:
        with db.sa_connection() as conn:
            game = _load_game_by_slug(conn, slug)
    except SQLAlchemyError as exc:
        raise _db_error(exc) from exc
    if game is None:
        raise GameNotFoundError("Game not found.")

    sources = clean_source_list(
        [game.get("source_url"), game.get("source_url_2"), game.get("source_url_3")]
    )
    if not sources:
        return {"success": False, "error": "No sources configured for this game."}

    result = scraper(sources)
    warnings = list(result.errors or [])
    updates: dict[str, str] = {}
    for field in SOCIAL_LINK_FIELDS:
        column = SOCIAL_LINK_COLUMNS[field]
        value = result.links.get(field)
        if not value or game.get(column):
            continue
        updates[column] = value

    if not updates:
        return {"success": True, "updated_fields": [], "warnings": warnings}

    try:
        with db.transaction() as conn:
            conn.execute(
                sa_update(games)
                .where(games.c.id == game["id"])
                .values(updated_at=now_utc_iso(), **updates)
            )
    except SQLAlchemyError as exc:
        raise _db_error(exc) from exc

    logger.info("Backfilled %s for game %s", ", ".join(updates), slug)
    return {"success": True, "updated_fields": list(updates), "warnings": warnings}


def count_games(db: DatabaseLike) -> dict[str, int]:
    """Return dashboard counters for games and codes."""

    try:
        with db.sa_connection() as conn:
            total = conn.execute(select(func.count()).select_from(games)).scalar() or 0
            published = (
                conn.execute(
                    select(func.count()).select_from(games).where(games.c.is_published.is_(True))
                ).scalar()
                or 0
            )
            active = (
                conn.execute(
                    select(func.count()).select_from(codes).where(codes.c.status == "active")
                ).scalar()
                or 0
            )
    except SQLAlchemyError as exc:
        raise _db_error(exc) from exc
    return {"games": int(total), "published_games": int(published), "active_codes": int(active)}


__all__ = [
    "CODE_CHUNK_SIZE",
    "GAME_PAGE_SIZE",
    "GameConflictError",
    "GameNotFoundError",
    "GameServiceError",
    "MANUAL_CODE_PRIORITY",
    "backfill_game_social_links",
    "build_game_summary",
    "compute_game_details",
    "count_games",
    "count_redeem_images",
    "create_author",
    "delete_code",
    "delete_game",
    "fetch_admin_authors",
    "fetch_admin_game_by_identifier",
    "fetch_admin_games",
    "refresh_game_codes_by_slug",
    "save_game",
    "update_code_status",
    "upsert_game_code",
]
