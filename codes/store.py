"""Persistence for the ``codes`` table and the per-game expired-code array."""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Sequence

from sqlalchemy import delete as sa_delete, func, insert, select, update as sa_update
from sqlalchemy.dialects.postgresql import insert as postgres_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from codes.normalization import normalize_code_key
from db import utils as db_utils
from db.schema import CODE_STATUSES, codes, games, new_id, now_utc_iso

logger = logging.getLogger(__name__)

CODE_COLUMNS = (
    "id",
    "game_id",
    "code",
    "status",
    "rewards_text",
    "level_requirement",
    "is_new",
    "provider_priority",
    "posted_online",
    "first_seen_at",
    "last_seen_at",
)


class PersistenceError(RuntimeError):
    """Raised when a database call made on behalf of the admin panel fails."""


def _describe(exc: BaseException) -> str:
    original = getattr(exc, "orig", None)
    text = str(original if original is not None else exc).strip()
    return text or exc.__class__.__name__


class CodeStore:
    """Reads and writes promotional codes for games.

    Every write runs in its own short transaction, so a failure part-way
    through a reconciliation pass leaves earlier writes committed.  Writes are
    idempotent and the pass can simply be re-run.
    """

    def __init__(
        self,
        db: db_utils.DatabaseHandle | db_utils.DatabaseEngine,
        *,
        now: Callable[[], str] = now_utc_iso,
    ) -> None:
        self._db = db
        self._now = now

    @property
    def db(self) -> db_utils.DatabaseHandle | db_utils.DatabaseEngine:
        return self._db

    def list_codes(self, game_id: str) -> list[dict[str, Any]]:
        """Return every persisted code row for ``game_id``."""

        statement = (
            select(*(codes.c[name] for name in CODE_COLUMNS))
            .where(codes.c.game_id == game_id)
            .order_by(codes.c.first_seen_at, codes.c.code)
        )
        try:
            with self._db.sa_connection() as conn:
                rows = conn.execute(statement).mappings().all()
        except SQLAlchemyError as exc:
            raise PersistenceError(_describe(exc)) from exc
        return [dict(row) for row in rows]

    def _insert_statement(self, game_id: str, values: dict[str, Any]):
        row = {
            "id": new_id(),
            "game_id": game_id,
            "first_seen_at": values["last_seen_at"],
            **values,
        }
        dialect = self._db.dialect_name
        if dialect == "sqlite":
            statement = sqlite_insert(codes).values(**row)
        elif dialect == "postgresql":
            statement = postgres_insert(codes).values(**row)
        else:
            return insert(codes).values(**row)
        return statement.on_conflict_do_update(
            index_elements=[codes.c.game_id, codes.c.code],
            set_={name: statement.excluded[name] for name in values},
        )

    @staticmethod
    def _find_id_by_key(conn, game_id: str, display: str) -> str | None:
        key = normalize_code_key(display)
        if not key:
            return None
        rows = conn.execute(
            select(codes.c.id, codes.c.code).where(codes.c.game_id == game_id)
        ).all()
        for row in rows:
            if normalize_code_key(row.code) == key:
                return row.id
        return None

    def upsert_code(
        self,
        game_id: str,
        code: str,
        *,
        status: str,
        rewards_text: str | None = None,
        level_requirement: int | None = None,
        is_new: bool | None = False,
        provider_priority: int = 0,
    ) -> bool:
        """Insert or update ``code`` for ``game_id``.

        Existing rows are matched case-insensitively, then by comparison key,
        so formatting variants of a code share one row.  Updates replace the
        stored code, status, rewards text, level requirement, the "new" flag
        and provider priority, bump ``last_seen_at`` and keep
        ``first_seen_at``.  Returns ``False``
        when ``code`` is blank and nothing was written.
        """

        display = code.strip() if isinstance(code, str) else ""
        if not display:
            return False

        values = {
            "code": display,
            "status": status,
            "rewards_text": rewards_text,
            "level_requirement": level_requirement,
            "is_new": is_new,
            "provider_priority": int(provider_priority or 0),
            "last_seen_at": self._now(),
        }
        case_insensitive_match = (
            (codes.c.game_id == game_id)
            & (func.upper(codes.c.code) == func.upper(display))
        )

        try:
            with self._db.transaction() as conn:
                existing_id = conn.execute(
                    select(codes.c.id).where(case_insensitive_match).limit(1)
                ).scalar()
                if existing_id is None:
                    existing_id = self._find_id_by_key(conn, game_id, display)
                if existing_id is None:
                    conn.execute(self._insert_statement(game_id, values))
                else:
                    conn.execute(
                        sa_update(codes).where(codes.c.id == existing_id).values(**values)
                    )
            return True
        except IntegrityError as exc:
            integrity_error = exc
        except SQLAlchemyError as exc:
            raise PersistenceError(_describe(exc)) from exc

        # Another writer claimed the same upper-cased code after the lookup.
        logger.debug("Retrying upsert of %s for game %s by upper(code)", display, game_id)
        try:
            with self._db.transaction() as conn:
                result = conn.execute(
                    sa_update(codes).where(case_insensitive_match).values(**values)
                )
        except SQLAlchemyError as exc:
            raise PersistenceError(_describe(exc)) from exc
        if not result.rowcount:
            raise PersistenceError(_describe(integrity_error)) from integrity_error
        return True

    def set_expired_codes(self, game_id: str, expired_codes: Sequence[str]) -> bool:
        """Replace the expired-code array stored on the game record."""

        try:
            with self._db.transaction() as conn:
                result = conn.execute(
                    sa_update(games)
                    .where(games.c.id == game_id)
                    .values(expired_codes=list(expired_codes))
                )
        except SQLAlchemyError as exc:
            raise PersistenceError(_describe(exc)) from exc
        return bool(result.rowcount)

    def delete_codes_with_status(self, game_id: str, status: str) -> int:
        try:
            with self._db.transaction() as conn:
                result = conn.execute(
                    sa_delete(codes).where(
                        (codes.c.game_id == game_id) & (codes.c.status == status)
                    )
                )
        except SQLAlchemyError as exc:
            raise PersistenceError(_describe(exc)) from exc
        return int(result.rowcount or 0)

    def delete_codes(self, game_id: str, display_codes: Iterable[str]) -> int:
        """Delete rows of ``game_id`` whose stored code is in ``display_codes``."""

        targets = [value for value in display_codes if value]
        if not targets:
            return 0
        try:
            with self._db.transaction() as conn:
                result = conn.execute(
                    sa_delete(codes).where(
                        (codes.c.game_id == game_id) & codes.c.code.in_(targets)
                    )
                )
        except SQLAlchemyError as exc:
            raise PersistenceError(_describe(exc)) from exc
        return int(result.rowcount or 0)

    def update_code_status(self, code_id: str, status: str) -> bool:
        if status not in CODE_STATUSES:
            raise ValueError(f"Unsupported code status '{status}'.")
        try:
            with self._db.transaction() as conn:
                result = conn.execute(
                    sa_update(codes).where(codes.c.id == code_id).values(status=status)
                )
        except SQLAlchemyError as exc:
            raise PersistenceError(_describe(exc)) from exc
        return bool(result.rowcount)

    def delete_code_by_id(self, code_id: str) -> bool:
        try:
            with self._db.transaction() as conn:
                result = conn.execute(sa_delete(codes).where(codes.c.id == code_id))
        except SQLAlchemyError as exc:
            raise PersistenceError(_describe(exc)) from exc
        return bool(result.rowcount)


__all__ = ["CODE_COLUMNS", "CodeStore", "PersistenceError"]
