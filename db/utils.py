"""Shared helpers for working with the admin database."""

from __future__ import annotations

import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator

from flask import g, has_app_context
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Connection, Engine
from urllib.parse import unquote, urlparse


class DatabaseEngine:
    """Wrapper exposing context-managed SQLAlchemy Core connections."""

    def __init__(self, engine: Engine):
        self._engine = engine

    @property
    def engine(self) -> Engine:
        """Return the underlying SQLAlchemy :class:`~sqlalchemy.engine.Engine`."""

        return self._engine

    @property
    def dialect_name(self) -> str:
        return self._engine.dialect.name

    @contextmanager
    def sa_connection(self) -> Iterator[Connection]:
        """Yield a SQLAlchemy :class:`~sqlalchemy.engine.Connection`."""

        with self._engine.connect() as conn:
            yield conn

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """Yield a connection inside a transaction committed on success."""

        with self._engine.begin() as conn:
            yield conn

    def dispose(self) -> None:
        """Dispose the underlying engine's connection pool."""

        self._engine.dispose()


class DatabaseHandle:
    """Request-scoped proxy over a :class:`DatabaseEngine`.

    Handles are cheap; one is cached per Flask request on :data:`flask.g` and
    released by :func:`close_db` at teardown.  Outside a request callers build
    their own handle from an engine and pass it explicitly.
    """

    def __init__(self, engine: DatabaseEngine):
        self._engine_wrapper = engine
        self._closed = False

    @property
    def engine(self) -> Engine:
        return self._engine_wrapper.engine

    @property
    def dialect_name(self) -> str:
        return self._engine_wrapper.dialect_name

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True

    def dispose(self) -> None:
        self._engine_wrapper.dispose()

    @contextmanager
    def sa_connection(self) -> Iterator[Connection]:
        with self._engine_wrapper.sa_connection() as conn:
            yield conn

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        with self._engine_wrapper.transaction() as conn:
            yield conn


def _configure_sqlite_connection(conn: Any, *, busy_timeout: float | None = None) -> Any:
    """Apply foreign-key enforcement and timeout tuning to SQLite connections."""

    if not isinstance(conn, sqlite3.Connection):
        return conn

    busy_timeout_ms = None
    if busy_timeout is not None:
        busy_timeout_ms = int(max(busy_timeout, 0) * 1000)
        if busy_timeout_ms <= 0:
            busy_timeout_ms = None

    pragmas: tuple[tuple[str, str | int | float | None, bool], ...] = (
        ("foreign_keys", "ON", False),
        ("busy_timeout", busy_timeout_ms, False),
        ("journal_mode", "WAL", True),
    )

    for name, value, fetch_result in pragmas:
        if value is None:
            continue
        try:
            cursor = conn.execute(f"PRAGMA {name}={value}")
            if fetch_result:
                cursor.fetchone()
        except sqlite3.OperationalError:  # pragma: no cover - best effort only
            continue

    return conn


def _resolve_sqlite_path_from_dsn(dsn: str) -> str:
    """Extract a filesystem path from a ``sqlite:///`` DSN string."""

    parsed = urlparse(dsn)
    if parsed.scheme != "sqlite":
        raise ValueError(f"Unsupported DSN scheme for SQLite resolver: {parsed.scheme}")

    path = unquote(parsed.path or "")
    if parsed.netloc and parsed.netloc not in {"", "localhost"}:
        path = f"//{parsed.netloc}{path}"

    if not path:
        raise ValueError("SQLite DSN must include a filesystem path")

    candidate = Path(path)
    if not candidate.is_absolute():
        candidate = candidate.resolve()
    return os.fspath(candidate)


def build_engine_from_dsn(
    dsn: str,
    *,
    timeout: float | None = None,
    pool_size: int = 5,
    pool_recycle: int = 1_800,
    pool_pre_ping: bool = True,
) -> DatabaseEngine:
    """Return a :class:`DatabaseEngine` configured from ``dsn``."""

    parsed = urlparse(dsn)
    connect_args: dict[str, object] = {}
    effective_timeout = timeout if timeout is not None else 5.0

    if parsed.scheme == "sqlite":
        sqlite_path = _resolve_sqlite_path_from_dsn(dsn)
        normalized_dsn = f"sqlite:///{sqlite_path}"
        connect_args["check_same_thread"] = False
    else:
        normalized_dsn = dsn
        dialect_name = parsed.scheme.split("+", 1)[0]
        if dialect_name in {"postgresql", "postgres"}:
            connect_args["connect_timeout"] = max(int(effective_timeout), 1)

    engine = create_engine(
        normalized_dsn,
        future=True,
        pool_size=pool_size,
        pool_recycle=pool_recycle,
        pool_pre_ping=pool_pre_ping,
        connect_args=connect_args,
    )

    if parsed.scheme == "sqlite":

        @event.listens_for(engine, "connect")
        def _on_connect(dbapi_conn, connection_record):  # type: ignore[override]
            _configure_sqlite_connection(dbapi_conn, busy_timeout=effective_timeout)

    return DatabaseEngine(engine)


def get_db(
    connection_factory: Callable[[], DatabaseHandle | DatabaseEngine],
    *,
    context_key: str = 'db',
) -> DatabaseHandle:
    """Return the active :class:`DatabaseHandle`, creating one if necessary.

    Inside a Flask application context the handle is cached on :data:`flask.g`
    under ``context_key`` so every helper in a request shares it.  Outside an
    app context a fresh handle is returned on every call.
    """

    def _coerce_handle(value: DatabaseHandle | DatabaseEngine) -> DatabaseHandle:
        if isinstance(value, DatabaseHandle):
            return value
        if isinstance(value, DatabaseEngine):
            return DatabaseHandle(value)
        raise TypeError('connection_factory must return DatabaseHandle or DatabaseEngine')

    if not has_app_context():
        return _coerce_handle(connection_factory())

    value = getattr(g, context_key, None)
    if isinstance(value, DatabaseHandle) and not value.closed:
        return value
    handle = _coerce_handle(connection_factory())
    setattr(g, context_key, handle)
    return handle


def close_db(exc: BaseException | None = None, *, context_key: str = 'db') -> None:
    """Release the request-scoped handle stored on :data:`flask.g`."""

    handle = g.pop(context_key, None)
    if handle is not None:
        handle.close()


__all__ = [
    "DatabaseEngine",
    "DatabaseHandle",
    "build_engine_from_dsn",
    "close_db",
    "get_db",
]
