"""Application startup orchestration helpers."""

from __future__ import annotations

import logging
from typing import Callable

from config import RUN_DB_MIGRATIONS
from db import utils as db_utils

logger = logging.getLogger(__name__)


def initialize_app(
    *,
    ensure_dirs: Callable[[], None],
    init_db: Callable[..., None],
    connection_factory: Callable[[], db_utils.DatabaseHandle | db_utils.DatabaseEngine],
    run_migrations: bool = RUN_DB_MIGRATIONS,
) -> db_utils.DatabaseHandle:
    """Perform the core startup tasks required for the application.

    The initializer ensures the log and media directories exist, creates the
    database schema when migrations are enabled, and opens a handle to verify
    the database is reachable before the first request arrives.

    Parameters are callables so the orchestration stays testable and reusable
    from scripts.
    """

    ensure_dirs()

    try:
        init_db(run_migrations=run_migrations)
    except Exception:
        logger.exception("Failed to prepare the database schema during startup")
        raise

    connection = connection_factory()
    handle = (
        connection
        if isinstance(connection, db_utils.DatabaseHandle)
        else db_utils.DatabaseHandle(connection)
    )
    logger.info("Database ready (%s)", handle.dialect_name)
    return handle


__all__ = ["initialize_app"]
