"""Tests for the asset resolver and registry."""

from __future__ import annotations

import pytest

from coslang.assets import DEFAULT_FOLDERS, Asset, AssetRegistry, resolve_asset_path
from coslang.nodes import AssetDecl


@pytest.fixture()
def registry() -> AssetRegistry:
    return AssetRegistry.from_declarations(
        [
            AssetDecl("image", "hero", "Hero.PNG", {"fit": "contain", "opacity": 0.8}),
            AssetDecl("audio", "theme", "https://cdn.example.com/theme.ogg"),
            AssetDecl("video", "intro", "intro.mp4"),
        ]
    )


# ---------------------------------------------------------------------------
# resolve_asset_path
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "asset_type, value, expected",
    [
        ("image", "hero.png", "assets/images/hero.png"),
        ("audio", "rain.mp3", "assets/audio/rain.mp3"),
        ("video", "clips/a.mp4", "assets/video/clips/a.mp4"),
        ("image", "https://example.com/a.png", "https://example.com/a.png"),
        ("audio", "HTTP://example.com/b.mp3", "HTTP://example.com/b.mp3"),
    ],
)
def test_resolve_asset_path(asset_type, value, expected):
    assert resolve_asset_path(asset_type, value) == expected


def test_resolve_asset_path_custom_folders():
    assert resolve_asset_path("image", "a.png", {"image": "static/img/"}) == "static/img/a.png"


def test_resolve_asset_path_unknown_type():
    with pytest.raises(ValueError, match="Unknown asset type"):
        resolve_asset_path("font", "a.ttf")


# ---------------------------------------------------------------------------
# Registry lookup
# ---------------------------------------------------------------------------


def test_lookup_by_alias(registry):
    hero = registry.get("image", "hero")
    assert hero == Asset("image", "hero", "Hero.PNG", "assets/images/Hero.PNG", {"fit": "contain", "opacity": 0.8})


def test_lookup_by_file_name_ignores_case(registry):
    assert registry.get("image", "hero.png").name == "hero"
    assert registry.get("image", "HERO").name == "hero"


def test_remote_asset_passes_through(registry):
    assert registry.get("audio", "theme").path == "https://cdn.example.com/theme.ogg"


def test_literal_fallback_for_file_like_references(registry):
    asset = registry.get("video", "outro.mp4")
    assert asset.path == "assets/video/outro.mp4"
    assert asset.name == "outro.mp4"


def test_bare_unknown_name_is_unresolved(registry):
    assert registry.get("image", "villain") is None


def test_type_is_part_of_the_key(registry):
    assert registry.get("audio", "hero") is None
    assert registry.get("font", "hero") is None


def test_literal_fallback_can_be_disabled():
    registry = AssetRegistry(literal_fallback=False)
    assert registry.get("image", "a.png") is None


def test_registry_folders_override_defaults():
    registry = AssetRegistry({"image": "img/"})
    asset = registry.add(AssetDecl("image", "bg", "bg.jpg"))
    assert asset.path == "img/bg.jpg"
    assert registry.folders["audio"] == DEFAULT_FOLDERS["audio"]


def test_add_rejects_unknown_type():
    with pytest.raises(ValueError):
        AssetRegistry().add(AssetDecl("font", "f", "f.ttf"))


def test_controls(registry):
    hero = registry.get("image", "hero")
    assert hero.control("fit") == "contain"
    assert hero.control("missing") is None
    assert hero.controls() == {"fit": "contain", "opacity": 0.8}


def test_listing(registry):
    assert [a.name for a in registry.by_type("image")] == ["hero"]
    assert [a.name for a in registry.all()] == ["hero", "theme", "intro"]
