import math

from helpers import (
    clean_optional_text,
    dedupe_preserve_order,
    derive_game_name,
    has_text,
    normalize_game_slug,
    slug_from_url,
    slugify,
    titleize_game_slug,
)


def test_slugify_collapses_separators():
    assert slugify("  Blox Fruits: Update 20!! ") == "blox-fruits-update-20"
    assert slugify(None) == ""
    assert normalize_game_slug("   ", "Pet Simulator 99") == "pet-simulator-99"
    assert normalize_game_slug("Doors", "ignored") == "doors"


def test_slug_from_url_uses_last_path_segment():
    assert slug_from_url("https://example.com/codes/Anime_Defenders/") == "anime-defenders"
    assert slug_from_url("https://example.com/") is None
    assert slug_from_url("not a url") is None
    assert slug_from_url(None) is None


def test_game_name_derivation():
    assert titleize_game_slug("blox-fruits") == "Blox Fruits"
    assert derive_game_name(name="  Doors ") == "Doors"
    assert derive_game_name(slug="pet-sim") == "Pet Sim"
    assert derive_game_name(source_url="https://example.com/a/tower-defense") == "Tower Defense"
    assert derive_game_name() is None


def test_text_helpers():
    assert dedupe_preserve_order([" a ", "b", "a", "", None, 3, "b"]) == ["a", "b"]
    assert has_text("x") is True
    assert has_text("  ") is False
    assert has_text(math.nan) is False
    assert clean_optional_text("  hi ") == "hi"
    assert clean_optional_text("nan") is None
