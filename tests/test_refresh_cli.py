import functools
import importlib

from tests.app_helpers import failing_aggregator, fake_aggregator, insert_game


def _load_script(monkeypatch, tmp_path, aggregator):
    module = importlib.import_module("scripts.refresh_codes")
    monkeypatch.setattr(module, "DB_DSN", f"sqlite:///{tmp_path / 'codes.db'}")
    monkeypatch.setattr(
        module,
        "refresh_game_codes",
        functools.partial(module.refresh_game_codes, aggregator=aggregator),
    )
    return module


def test_refresh_cli_reports_each_game(db, store, tmp_path, monkeypatch, capsys):
    insert_game(db, slug="doors", source_url="https://example.com/doors")
    insert_game(db, slug="skipped", source_url="https://example.com/skipped")
    aggregator = fake_aggregator(codes=[{"code": "FRESH"}])
    script = _load_script(monkeypatch, tmp_path, aggregator)

    assert script.main(["doors"]) == 0

    out = capsys.readouterr().out
    assert "doors: found=1 upserted=1 removed=0 expired=0" in out
    assert "skipped" not in out
    assert "Refreshed 1 of 1 game(s)." in out
    aggregator.assert_called_once_with(["https://example.com/doors"])


def test_refresh_cli_exit_code_on_failure(db, tmp_path, monkeypatch, capsys):
    insert_game(db, slug="doors", source_url="https://example.com/doors")
    script = _load_script(monkeypatch, tmp_path, failing_aggregator("blocked"))

    assert script.main([]) == 1
    assert "doors: failed (blocked)" in capsys.readouterr().out


def test_refresh_cli_without_matches(db, tmp_path, monkeypatch, capsys):
    script = _load_script(monkeypatch, tmp_path, fake_aggregator())

    assert script.main(["unknown"]) == 0
    assert "nothing to refresh" in capsys.readouterr().out
