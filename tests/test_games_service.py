import pytest

from games import service as games_service
from games.service import GameConflictError, GameNotFoundError
from media.covers import MediaStorage
from tests.app_helpers import (
    failing_aggregator,
    fake_aggregator,
    fake_social_scraper,
    insert_game,
)


def _payload(**overrides):
    payload = {
        "name": "Blox Fruits",
        "slug": "Blox Fruits",
        "source_url": "https://example.com/blox-fruits-codes",
        "is_published": "on",
    }
    payload.update(overrides)
    return payload


def test_compute_game_details_fallbacks():
    assert games_service.compute_game_details("Blox Fruits", "", None) == (
        "blox-fruits",
        "Blox Fruits",
    )
    assert games_service.compute_game_details(
        None, None, "https://example.com/games/anime-defenders/"
    ) == ("anime-defenders", "Anime Defenders")
    with pytest.raises(ValueError):
        games_service.compute_game_details(None, None, "not a url")


def test_save_game_creates_and_imports_codes(db, store):
    aggregator = fake_aggregator(codes=[{"code": "gems100"}], expired=["old"])

    result = games_service.save_game(db, store, _payload(), aggregator=aggregator)

    assert result["success"] is True
    assert result["slug"] == "blox-fruits"
    assert result["codes_found"] == 1
    assert result["codes_upserted"] == 1
    assert result["sync_errors"] == []
    aggregator.assert_called_once_with(["https://example.com/blox-fruits-codes"])

    summary = games_service.fetch_admin_game_by_identifier(db, result["id"])
    assert summary["is_published"] is True
    assert summary["codes"]["active"][0]["code"] == "GEMS100"
    assert summary["expired_codes"] == ["OLD"]


def test_save_game_updates_existing_record(db, store):
    created = games_service.save_game(db, store, _payload(), aggregator=fake_aggregator())

    updated = games_service.save_game(
        db,
        store,
        _payload(id=created["id"], name="Blox Fruits 2", slug="blox-fruits-2"),
        aggregator=fake_aggregator(),
    )

    assert updated["id"] == created["id"]
    summary = games_service.fetch_admin_game_by_identifier(db, "blox-fruits-2")
    assert summary["name"] == "Blox Fruits 2"


def test_save_game_validation_and_conflicts(db, store):
    with pytest.raises(ValueError):
        games_service.save_game(db, store, _payload(name=""))
    with pytest.raises(ValueError):
        games_service.save_game(db, store, _payload(discord_link="ftp://nope"))
    with pytest.raises(ValueError):
        games_service.save_game(db, store, _payload(author_id="unknown"))

    games_service.save_game(db, store, _payload(), aggregator=fake_aggregator())
    with pytest.raises(GameConflictError):
        games_service.save_game(db, store, _payload(), aggregator=fake_aggregator())
    with pytest.raises(GameNotFoundError):
        games_service.save_game(
            db, store, _payload(id="missing", slug="other"), aggregator=fake_aggregator()
        )


def test_save_game_keeps_record_when_scrape_fails(db, store):
    result = games_service.save_game(
        db, store, _payload(), aggregator=failing_aggregator("offline")
    )

    assert result["success"] is True
    assert result["sync_errors"] == ["offline"]
    assert games_service.fetch_admin_game_by_identifier(db, "blox-fruits") is not None


def test_fetch_admin_games_groups_and_counts(db, store):
    author = games_service.create_author(db, "Jane Writer")
    older = insert_game(db, slug="older", updated_at="2024-01-01T00:00:00+00:00")
    newer = insert_game(
        db,
        slug="newer",
        author_id=author["id"],
        expired_codes=["OLD1", "OLD2"],
        redeem_md='Step 1 ![menu](/img/a.png) then ![shop](/img/b.png "Shop")',
        updated_at="2025-01-01T00:00:00+00:00",
    )
    store.upsert_code(newer, "LIVE1", status="active")
    store.upsert_code(newer, "MAYBE", status="check")
    store.upsert_code(newer, "DEAD1", status="expired")

    summaries = games_service.fetch_admin_games(db)

    assert [summary["slug"] for summary in summaries] == ["newer", "older"]
    newest = summaries[0]
    assert newest["author"] == {"id": author["id"], "name": "Jane Writer"}
    assert newest["counts"] == {"active": 1, "check": 1, "expired": 3}
    assert [code["code"] for code in newest["codes"]["active"]] == ["LIVE1"]
    assert [code["code"] for code in newest["codes"]["check"]] == ["MAYBE"]
    assert newest["codes"]["expired"] == ["OLD1", "OLD2"]
    assert newest["redeem_image_count"] == 2
    assert summaries[1]["id"] == older
    assert summaries[1]["author"] == {"id": None, "name": None}
    assert summaries[1]["counts"] == {"active": 0, "check": 0, "expired": 0}


def test_fetch_admin_games_pages_through_large_lists(db, monkeypatch):
    monkeypatch.setattr(games_service, "GAME_PAGE_SIZE", 2)
    monkeypatch.setattr(games_service, "CODE_CHUNK_SIZE", 2)
    for index in range(5):
        insert_game(db, slug=f"game-{index}")

    assert len(games_service.fetch_admin_games(db)) == 5


def test_fetch_by_identifier_accepts_slug_or_id(db):
    game_id = insert_game(db, slug="pet-sim")

    assert games_service.fetch_admin_game_by_identifier(db, "pet-sim")["id"] == game_id
    assert games_service.fetch_admin_game_by_identifier(db, game_id)["slug"] == "pet-sim"
    assert games_service.fetch_admin_game_by_identifier(db, "missing") is None
    assert games_service.fetch_admin_game_by_identifier(db, "") is None


def test_fetch_admin_authors_sorted(db):
    games_service.create_author(db, "Zed")
    games_service.create_author(db, "Amy")

    assert [author["name"] for author in games_service.fetch_admin_authors(db)] == ["Amy", "Zed"]


def test_manual_code_upsert_uses_manual_priority(db, store):
    game_id = insert_game(db)

    result = games_service.upsert_game_code(
        store,
        {"game_id": game_id, "code": " new-code ", "status": "active", "level_requirement": "10"},
    )

    assert result == {"success": True, "code": "NEW-CODE"}
    row = store.list_codes(game_id)[0]
    assert row["provider_priority"] == games_service.MANUAL_CODE_PRIORITY
    assert row["level_requirement"] == 10

    with pytest.raises(ValueError):
        games_service.upsert_game_code(store, {"game_id": game_id, "code": "   "})
    with pytest.raises(ValueError):
        games_service.upsert_game_code(
            store, {"game_id": game_id, "code": "X", "status": "bogus"}
        )
    with pytest.raises(GameNotFoundError):
        games_service.upsert_game_code(store, {"game_id": "missing", "code": "X"})


def test_code_status_and_delete(db, store):
    game_id = insert_game(db)
    store.upsert_code(game_id, "ABC1", status="active")
    code_id = store.list_codes(game_id)[0]["id"]

    assert games_service.update_code_status(store, code_id, "expired") == {"success": True}
    assert games_service.delete_code(store, code_id) == {"success": True}
    with pytest.raises(GameNotFoundError):
        games_service.delete_code(store, code_id)


def test_delete_game_removes_codes_and_media(db, store, tmp_path):
    media = MediaStorage(tmp_path / "media")
    media.save("games/doomed/cover-1.webp", b"data")
    game_id = insert_game(db, slug="doomed")
    store.upsert_code(game_id, "ABC1", status="active")

    assert games_service.delete_game(db, game_id, media=media) == {
        "success": True,
        "slug": "doomed",
    }
    assert store.list_codes(game_id) == []
    assert not (tmp_path / "media" / "games" / "doomed").exists()
    with pytest.raises(GameNotFoundError):
        games_service.delete_game(db, game_id, media=media)


def test_refresh_by_slug(db, store):
    game_id = insert_game(db, slug="doors", source_url="https://example.com/doors")
    store.upsert_code(game_id, "STALE", status="active")

    result = games_service.refresh_game_codes_by_slug(
        db, store, "doors", aggregator=fake_aggregator(codes=[{"code": "FRESH"}])
    )

    assert result.to_dict() == {
        "success": True,
        "found": 1,
        "upserted": 1,
        "removed": 1,
        "expired": 0,
    }
    with pytest.raises(GameNotFoundError):
        games_service.refresh_game_codes_by_slug(db, store, "missing")


def test_backfill_social_links_only_fills_empty_columns(db):
    insert_game(
        db,
        slug="doors",
        source_url="https://example.com/doors",
        discord_link="https://discord.gg/existing",
    )
    scraper = fake_social_scraper(
        {
            "discord": "https://discord.gg/new",
            "roblox": "https://www.roblox.com/games/1",
        },
        errors=["youtube lookup failed"],
    )

    result = games_service.backfill_game_social_links(db, "doors", scraper=scraper)

    assert result == {
        "success": True,
        "updated_fields": ["roblox_link"],
        "warnings": ["youtube lookup failed"],
    }
    summary = games_service.fetch_admin_game_by_identifier(db, "doors")
    assert summary["roblox_link"] == "https://www.roblox.com/games/1"
    assert summary["discord_link"] == "https://discord.gg/existing"


def test_backfill_social_links_requires_sources(db):
    insert_game(db, slug="no-sources")
    scraper = fake_social_scraper({})

    result = games_service.backfill_game_social_links(db, "no-sources", scraper=scraper)

    assert result == {"success": False, "error": "No sources configured for this game."}
    scraper.assert_not_called()


def test_dashboard_counts(db, store):
    game_id = insert_game(db, is_published=True)
    insert_game(db, slug="draft")
    store.upsert_code(game_id, "A1", status="active")
    store.upsert_code(game_id, "B1", status="expired")

    assert games_service.count_games(db) == {
        "games": 2,
        "published_games": 1,
        "active_codes": 1,
    }
