import dataclasses

import pytest

from keyoverlay.errors import UnknownPresetError
from keyoverlay.presets import (
    DEFAULT_KEY_FILTER,
    DEFAULT_PRESET_TAG,
    DEFAULT_SETTINGS,
    PRESETS,
    PRESET_NAMES,
    derive_default_settings,
    describe_presets,
    known_tags,
    resolve_preset,
)
from keyoverlay.settings_model import validate_patch


def test_preset_table_is_fixed():
    assert PRESET_NAMES == ("minimal", "gaming", "retro", "neon")
    with pytest.raises(TypeError):
        PRESETS["custom"] = DEFAULT_SETTINGS  # type: ignore[index]
    with pytest.raises(dataclasses.FrozenInstanceError):
        PRESETS["minimal"].font_size = 99  # type: ignore[misc]


def test_resolve_preset_sets_tag():
    retro = resolve_preset("retro")
    assert retro.font_family == "Press Start 2P"
    assert retro.font_size == 16
    assert retro.animation_style == "fade"
    assert retro.preset == "retro"
    assert PRESETS["retro"].preset is None


def test_default_is_minimal_with_overrides():
    minimal = PRESETS["minimal"].values_without_tag()
    expected = dict(minimal, font_family="monospace", show_mouse_click_combos=True)

    assert DEFAULT_SETTINGS.values_without_tag() == expected
    assert DEFAULT_SETTINGS.preset == DEFAULT_PRESET_TAG
    assert derive_default_settings() == DEFAULT_SETTINGS
    assert resolve_preset(DEFAULT_PRESET_TAG) is DEFAULT_SETTINGS


def test_presets_share_behavior_defaults():
    for name in PRESET_NAMES:
        preset = PRESETS[name]
        assert preset.key_filter == DEFAULT_KEY_FILTER
        assert preset.key_filter_enabled is True
        assert preset.show_mouse_clicks is False
        assert preset.show_mouse_click_combos is True


def test_every_preset_passes_validation():
    for name in PRESET_NAMES:
        value = resolve_preset(name)
        values = validate_patch(value.to_payload(), known_tags=known_tags())
        assert values == dataclasses.asdict(value)


def test_unknown_preset_raises_lookup_error():
    with pytest.raises(UnknownPresetError) as excinfo:
        resolve_preset("vaporwave")
    assert isinstance(excinfo.value, LookupError)
    assert excinfo.value.name == "vaporwave"


def test_known_tags_and_description():
    assert known_tags() == frozenset({"minimal", "gaming", "retro", "neon", "minimal-default"})
    names = [entry["name"] for entry in describe_presets()]
    assert names == ["minimal", "gaming", "retro", "neon", "minimal-default"]
