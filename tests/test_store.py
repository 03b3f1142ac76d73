import pytest

from sqlalchemy import delete, select

from codes.store import CodeStore, PersistenceError
from db.schema import games
from tests.app_helpers import insert_game


def test_upsert_inserts_new_code(store, db):
    game_id = insert_game(db)

    assert store.upsert_code(game_id, " ABC1 ", status="active", rewards_text="Gems") is True

    rows = store.list_codes(game_id)
    assert len(rows) == 1
    row = rows[0]
    assert row["code"] == "ABC1"
    assert row["rewards_text"] == "Gems"
    assert row["provider_priority"] == 0
    assert row["posted_online"] is False
    assert row["first_seen_at"] == row["last_seen_at"]


def test_upsert_updates_case_insensitively_and_keeps_first_seen(store, db):
    game_id = insert_game(db)
    store.upsert_code(game_id, "ABC1", status="active")
    first = store.list_codes(game_id)[0]

    store.upsert_code(
        game_id, "abc1", status="check", level_requirement=5, provider_priority=20
    )

    rows = store.list_codes(game_id)
    assert len(rows) == 1
    row = rows[0]
    assert row["id"] == first["id"]
    assert row["status"] == "check"
    assert row["level_requirement"] == 5
    assert row["provider_priority"] == 20
    assert row["first_seen_at"] == first["first_seen_at"]
    assert row["last_seen_at"] > first["last_seen_at"]


def test_upsert_ignores_blank_code(store, db):
    game_id = insert_game(db)
    assert store.upsert_code(game_id, "   ", status="active") is False
    assert store.list_codes(game_id) == []


def test_upsert_for_unknown_game_raises_persistence_error(store):
    with pytest.raises(PersistenceError):
        store.upsert_code("missing-game", "ABC1", status="active")


def test_upsert_with_invalid_status_raises_persistence_error(store, db):
    game_id = insert_game(db)
    with pytest.raises(PersistenceError):
        store.upsert_code(game_id, "ABC1", status="bogus")


def test_set_expired_codes_replaces_array(store, db):
    game_id = insert_game(db, expired_codes=["OLD1"])

    assert store.set_expired_codes(game_id, ["OLD2", "OLD3"]) is True
    with db.sa_connection() as conn:
        stored = conn.execute(
            select(games.c.expired_codes).where(games.c.id == game_id)
        ).scalar()
    assert stored == ["OLD2", "OLD3"]
    assert store.set_expired_codes("missing-game", []) is False


def test_delete_helpers(store, db):
    game_id = insert_game(db)
    store.upsert_code(game_id, "KEEP1", status="active")
    store.upsert_code(game_id, "GONE1", status="expired")
    store.upsert_code(game_id, "GONE2", status="expired")
    store.upsert_code(game_id, "DROP1", status="check")

    assert store.delete_codes_with_status(game_id, "expired") == 2
    assert store.delete_codes(game_id, ["DROP1", "NOPE"]) == 1
    assert store.delete_codes(game_id, []) == 0
    assert [row["code"] for row in store.list_codes(game_id)] == ["KEEP1"]


def test_update_and_delete_by_id(store, db):
    game_id = insert_game(db)
    store.upsert_code(game_id, "ABC1", status="active")
    code_id = store.list_codes(game_id)[0]["id"]

    assert store.update_code_status(code_id, "expired") is True
    assert store.list_codes(game_id)[0]["status"] == "expired"
    with pytest.raises(ValueError):
        store.update_code_status(code_id, "bogus")

    assert store.delete_code_by_id(code_id) is True
    assert store.delete_code_by_id(code_id) is False


def test_codes_are_removed_with_their_game(db):
    store = CodeStore(db)
    game_id = insert_game(db)
    store.upsert_code(game_id, "ABC1", status="active")

    with db.transaction() as conn:
        conn.execute(delete(games).where(games.c.id == game_id))

    assert store.list_codes(game_id) == []


def test_upsert_matches_formatting_variants_by_key(store, db):
    game_id = insert_game(db)
    store.upsert_code(game_id, "SUB-2025", status="active")

    store.upsert_code(game_id, "SUB2025", status="check")

    rows = store.list_codes(game_id)
    assert [(row["code"], row["status"]) for row in rows] == [("SUB2025", "check")]
