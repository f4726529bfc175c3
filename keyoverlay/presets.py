"""Built-in overlay presets and the derived default."""

from __future__ import annotations

from types import MappingProxyType
from typing import Any, Mapping

from .errors import UnknownPresetError
from .settings_model import OverlaySettings

DEFAULT_PRESET_TAG = "minimal-default"
DEFAULT_KEY_FILTER = "Q,W,E,R,1,2,3,4,5,6"

_SHARED_BEHAVIOR: dict[str, Any] = {
    "show_modifiers_alone": False,
    "show_mouse_clicks": False,
    "show_mouse_click_combos": True,
    "combo_mode": True,
    "key_filter": DEFAULT_KEY_FILTER,
    "key_filter_enabled": True,
    "layout": "horizontal",
}


def _preset(**values: Any) -> OverlaySettings:
    return OverlaySettings(**_SHARED_BEHAVIOR, **values, preset=None)


PRESETS: Mapping[str, OverlaySettings] = MappingProxyType(
    {
        "minimal": _preset(
            font_family="Inter",
            font_size=28,
            text_color="#ffffff",
            border_color="#ffffff",
            background_color="rgba(0,0,0,0.35)",
            border_width=1,
            border_radius=8,
            background_blur=4,
            text_shadow=False,
            text_shadow_color="#000000",
            key_display_duration=1200,
            animation_style="pop",
            max_visible_keys=5,
        ),
        "gaming": _preset(
            font_family="Inter",
            font_size=32,
            text_color="#00ff88",
            border_color="#00ff88",
            background_color="rgba(0,0,0,0.6)",
            border_width=2,
            border_radius=6,
            background_blur=0,
            text_shadow=True,
            text_shadow_color="#00ff88",
            key_display_duration=900,
            animation_style="pop",
            max_visible_keys=6,
        ),
        "retro": _preset(
            font_family="Press Start 2P",
            font_size=16,
            text_color="#ffff00",
            border_color="#ffff00",
            background_color="rgba(0,0,0,0.85)",
            border_width=3,
            border_radius=0,
            background_blur=0,
            text_shadow=False,
            text_shadow_color="#000000",
            key_display_duration=1500,
            animation_style="fade",
            max_visible_keys=4,
        ),
        "neon": _preset(
            font_family="Inter",
            font_size=30,
            text_color="#ff00ff",
            border_color="#ff00ff",
            background_color="rgba(20,0,40,0.5)",
            border_width=2,
            border_radius=12,
            background_blur=8,
            text_shadow=True,
            text_shadow_color="#ff00ff",
            key_display_duration=1000,
            animation_style="pop",
            max_visible_keys=5,
        ),
    }
)

PRESET_NAMES: tuple[str, ...] = tuple(PRESETS)


def derive_default_settings() -> OverlaySettings:
    """``minimal`` with a monospace font and click combos forced on."""
    return PRESETS["minimal"].merged(
        {
            "font_family": "monospace",
            "show_mouse_click_combos": True,
            "preset": DEFAULT_PRESET_TAG,
        }
    )


DEFAULT_SETTINGS = derive_default_settings()


def resolve_preset(name: str) -> OverlaySettings:
    """Return the complete value for ``name`` carrying ``name`` as its tag."""
    if name == DEFAULT_PRESET_TAG:
        return DEFAULT_SETTINGS
    try:
        value = PRESETS[name]
    except (KeyError, TypeError):
        raise UnknownPresetError(str(name)) from None
    return value.merged({"preset": name})


def known_tags() -> frozenset[str]:
    return frozenset(PRESET_NAMES) | {DEFAULT_PRESET_TAG}


def describe_presets() -> list[dict[str, Any]]:
    entries = [
        {"name": name, "settings": resolve_preset(name).to_payload()}
        for name in PRESET_NAMES
    ]
    entries.append({"name": DEFAULT_PRESET_TAG, "settings": DEFAULT_SETTINGS.to_payload()})
    return entries


__all__ = [
    "DEFAULT_KEY_FILTER",
    "DEFAULT_PRESET_TAG",
    "DEFAULT_SETTINGS",
    "PRESETS",
    "PRESET_NAMES",
    "derive_default_settings",
    "describe_presets",
    "known_tags",
    "resolve_preset",
]
