"""Table definitions for authors, games and their promotional codes."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.engine import Engine

CODE_STATUSES = ("active", "check", "expired")

metadata = MetaData()

authors = Table(
    "authors",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("name", Text, nullable=False),
    Column("slug", String(255), nullable=False, unique=True),
    Column("avatar_url", Text),
    Column("bio_md", Text),
    Column("created_at", String(64), nullable=False),
    Column("updated_at", String(64), nullable=False),
)

games = Table(
    "games",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("name", Text, nullable=False),
    Column("slug", String(255), nullable=False, unique=True),
    Column("author_id", String(36), ForeignKey("authors.id", ondelete="SET NULL")),
    Column("source_url", Text),
    Column("source_url_2", Text),
    Column("source_url_3", Text),
    Column("roblox_link", Text),
    Column("community_link", Text),
    Column("discord_link", Text),
    Column("twitter_link", Text),
    Column("youtube_link", Text),
    Column("expired_codes", JSON, nullable=False, default=list),
    Column("cover_image", Text),
    Column("seo_title", Text),
    Column("seo_description", Text),
    Column("intro_md", Text),
    Column("redeem_md", Text),
    Column("troubleshoot_md", Text),
    Column("rewards_md", Text),
    Column("about_game_md", Text),
    Column("description_md", Text),
    Column("internal_links", Integer, nullable=False, default=0),
    Column("is_published", Boolean, nullable=False, default=False),
    Column("published_at", String(64)),
    Column("created_at", String(64), nullable=False),
    Column("updated_at", String(64), nullable=False),
)

codes = Table(
    "codes",
    metadata,
    Column("id", String(36), primary_key=True),
    Column(
        "game_id",
        String(36),
        ForeignKey("games.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("code", String(255), nullable=False),
    Column("status", String(16), nullable=False),
    Column("rewards_text", Text),
    Column("level_requirement", Integer),
    Column("is_new", Boolean),
    Column("provider_priority", Integer, nullable=False, default=0),
    Column("posted_online", Boolean, nullable=False, default=False),
    Column("first_seen_at", String(64), nullable=False),
    Column("last_seen_at", String(64), nullable=False),
    UniqueConstraint("game_id", "code", name="uq_codes_game_code"),
    CheckConstraint(
        "status in ('active','expired','check')", name="ck_codes_status"
    ),
)

Index("idx_codes_game_code_upper", codes.c.game_id, func.upper(codes.c.code), unique=True)
Index("idx_codes_game_status_seen", codes.c.game_id, codes.c.status, codes.c.last_seen_at)
Index("idx_games_published_name", games.c.is_published, games.c.name)


def now_utc_iso() -> str:
    """Return the current UTC time as an ISO-8601 string."""

    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return str(uuid.uuid4())


def create_schema(engine: Engine) -> None:
    """Create every table and index that does not exist yet."""

    metadata.create_all(engine)


__all__ = [
    "CODE_STATUSES",
    "authors",
    "codes",
    "create_schema",
    "games",
    "metadata",
    "new_id",
    "now_utc_iso",
]
