#!/usr/bin/env python3
"""Refresh promotional codes for every game (or the given slugs)."""

import argparse
import logging
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from sqlalchemy import select

from codes.refresh import refresh_game_codes
from codes.store import CodeStore
from config import DB_CONNECT_TIMEOUT_SECONDS, DB_DSN
from db import utils as db_utils
from db.schema import games


def _load_games(db: db_utils.DatabaseEngine, slugs: list[str]) -> list[dict]:
    statement = select(
        games.c.id,
        games.c.slug,
        games.c.source_url,
        games.c.source_url_2,
        games.c.source_url_3,
    ).order_by(games.c.slug)
    if slugs:
        statement = statement.where(games.c.slug.in_(slugs))
    with db.sa_connection() as conn:
        return [dict(row) for row in conn.execute(statement).mappings()]


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("slugs", nargs="*", help="only refresh these game slugs")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")

    db = db_utils.build_engine_from_dsn(DB_DSN, timeout=DB_CONNECT_TIMEOUT_SECONDS)
    store = CodeStore(db)
    failures = 0
    try:
        rows = _load_games(db, args.slugs)
        if not rows:
            print("No games matched; nothing to refresh.")
            return 0
        for game in rows:
            result = refresh_game_codes(store, game)
            if result.success:
                print(
                    f"{game['slug']}: found={result.found} upserted={result.upserted} "
                    f"removed={result.removed} expired={result.expired}"
                )
            else:
                failures += 1
                print(f"{game['slug']}: failed ({result.error})")
    finally:
        db.dispose()

    print(f"Refreshed {len(rows) - failures} of {len(rows)} game(s).")
    return 1 if failures else 0


if __name__ == "__main__":  # pragma: no cover - manual execution path
    sys.exit(main())
