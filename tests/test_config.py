"""Tests for render configuration objects."""

import dataclasses

import pytest

from qrstyle.config import Background, LogoSpec, RenderConfig, RenderSettings, normalize_color


@pytest.mark.parametrize("value,expected", [
    ("black", "#000000"),
    ("#FFF", "#ffffff"),
    ("rgb(18, 52, 86)", "#123456"),
    ("#12345678", "#123456"),
])
def test_normalize_color(value, expected):
    assert normalize_color(value) == expected


def test_invalid_colour_rejected():
    with pytest.raises(ValueError):
        normalize_color("not-a-colour")
    with pytest.raises(ValueError):
        RenderConfig("HELLO", module_color="nope")


@pytest.mark.parametrize("rotation,expected", [
    (0, 0.0),
    (360, 0.0),
    (-0.0, 0.0),
    (397, 37.0),
    (-90, 270.0),
])
def test_rotation_is_normalised(rotation, expected):
    assert RenderConfig("HELLO", rotation=rotation).rotation == expected


def test_full_turn_configs_compare_equal():
    assert RenderConfig("HELLO", rotation=10) == RenderConfig("HELLO", rotation=370)


def test_config_is_immutable():
    config = RenderConfig("HELLO")
    with pytest.raises(dataclasses.FrozenInstanceError):
        config.text = "OTHER"
    assert config.replace(text="OTHER").text == "OTHER"


def test_background_and_logo_modes():
    assert Background().is_solid
    assert not Background.transparent().is_solid
    assert not Background.image(b"x").is_solid
    assert not LogoSpec.none().requested
    assert LogoSpec.default().requested
    with pytest.raises(ValueError):
        Background(kind="gradient")
    with pytest.raises(ValueError):
        Background(kind="image")
    with pytest.raises(ValueError):
        LogoSpec(kind="custom")


def test_settings_validation():
    assert RenderSettings().logo_clip == "rect"
    assert RenderSettings().replace(logo_clip="circle").logo_clip == "circle"
    with pytest.raises(ValueError):
        RenderSettings(logo_clip="star")
    with pytest.raises(ValueError):
        RenderSettings(debounce_seconds=-1)


def test_error_correction_is_fixed_at_h():
    assert RenderConfig("HELLO", error_correction="h").error_correction == "H"
    for level in ("L", "M", "Q", "Z"):
        with pytest.raises(ValueError):
            RenderConfig("HELLO", error_correction=level)


def test_finder_colours_default_to_module_colour():
    config = RenderConfig("HELLO", module_color="navy")
    assert config.fill_for("ring") == config.fill_for("center") == config.fill_for(None) == "#000080"
    styled = config.replace(finder_ring_color="RED", finder_center_color="#00F")
    assert styled.fill_for("ring") == "#ff0000"
    assert styled.fill_for("center") == "#0000ff"
    assert styled.fill_for(None) == "#000080"
    with pytest.raises(ValueError):
        RenderConfig("HELLO", finder_ring_color="nope")
