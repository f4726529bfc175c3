"""Overlay settings value type, field catalogue and validation.

Settings travel over the wire (WebSocket broadcast, persisted blob, control
API) with camelCase keys so the browser overlay can consume them as-is. Inside
Python they are a frozen :class:`OverlaySettings`. Patches may name a field by
either spelling.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, replace
from typing import Any, Collection, Mapping

from .errors import SettingsValidationError

FONT_FAMILIES: tuple[str, ...] = (
    "Inter",
    "monospace",
    "JetBrains Mono",
    "Press Start 2P",
    "system-ui",
)
LAYOUT_DIRECTIONS: tuple[str, ...] = ("horizontal", "vertical")
ANIMATION_STYLES: tuple[str, ...] = ("fade", "slide", "pop")

_HEX_COLOR_RE = re.compile(r"^#(?:[0-9a-fA-F]{3,4}|[0-9a-fA-F]{6}|[0-9a-fA-F]{8})$")
_FUNCTIONAL_COLOR_RE = re.compile(r"^rgba?\(\s*[0-9.%\s,/]+\)$", re.IGNORECASE)
_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class FieldSpec:
    """Describes one settings field and the values it accepts."""

    name: str
    wire: str
    kind: str
    min_value: int | None = None
    max_value: int | None = None
    choices: tuple[str, ...] = ()


SETTINGS_FIELDS: tuple[FieldSpec, ...] = (
    # Typography
    FieldSpec("font_family", "fontFamily", "enum", choices=FONT_FAMILIES),
    FieldSpec("font_size", "fontSize", "int", 12, 72),
    # Colors
    FieldSpec("text_color", "textColor", "hex"),
    FieldSpec("border_color", "borderColor", "hex"),
    FieldSpec("background_color", "backgroundColor", "color"),
    # Shape
    FieldSpec("border_width", "borderWidth", "int", 0, 6),
    FieldSpec("border_radius", "borderRadius", "int", 0, 32),
    FieldSpec("background_blur", "backgroundBlur", "int", 0, 24),
    FieldSpec("text_shadow", "textShadow", "bool"),
    FieldSpec("text_shadow_color", "textShadowColor", "hex"),
    # Behavior
    FieldSpec("key_display_duration", "keyDisplayDuration", "int", 300, 5000),
    FieldSpec("show_modifiers_alone", "showModifiersAlone", "bool"),
    FieldSpec("show_mouse_clicks", "showMouseClicks", "bool"),
    FieldSpec("show_mouse_click_combos", "showMouseClickCombos", "bool"),
    FieldSpec("combo_mode", "comboMode", "bool"),
    FieldSpec("key_filter", "keyFilter", "text"),
    FieldSpec("key_filter_enabled", "keyFilterEnabled", "bool"),
    # Layout
    FieldSpec("layout", "layout", "enum", choices=LAYOUT_DIRECTIONS),
    FieldSpec("animation_style", "animationStyle", "enum", choices=ANIMATION_STYLES),
    FieldSpec("max_visible_keys", "maxVisibleKeys", "int", 1, 10),
    # Preset tag (None = hand-edited)
    FieldSpec("preset", "preset", "tag"),
)

_FIELDS_BY_NAME = {spec.name: spec for spec in SETTINGS_FIELDS}
_FIELDS_BY_WIRE = {spec.wire: spec for spec in SETTINGS_FIELDS}


@dataclass(frozen=True)
class OverlaySettings:
    """The single authoritative overlay configuration."""

    font_family: str
    font_size: int
    text_color: str
    border_color: str
    background_color: str
    border_width: int
    border_radius: int
    background_blur: int
    text_shadow: bool
    text_shadow_color: str
    key_display_duration: int
    show_modifiers_alone: bool
    show_mouse_clicks: bool
    show_mouse_click_combos: bool
    combo_mode: bool
    key_filter: str
    key_filter_enabled: bool
    layout: str
    animation_style: str
    max_visible_keys: int
    preset: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return {spec.wire: getattr(self, spec.name) for spec in SETTINGS_FIELDS}

    def merged(self, patch: Mapping[str, Any]) -> "OverlaySettings":
        """Return a copy with ``patch`` (already validated, snake_case) applied."""
        return replace(self, **patch)

    def values_without_tag(self) -> dict[str, Any]:
        return {
            spec.name: getattr(self, spec.name)
            for spec in SETTINGS_FIELDS
            if spec.name != "preset"
        }


def resolve_field(key: str) -> FieldSpec | None:
    return _FIELDS_BY_NAME.get(key) or _FIELDS_BY_WIRE.get(key)


def _coerce_int(
    value: Any,
    field: str,
    errors: list[str],
    *,
    min_value: int | None = None,
    max_value: int | None = None,
) -> int | None:
    if isinstance(value, bool):
        errors.append(f"{field} must be a number")
        return None
    candidate: int | None = None
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            errors.append(f"{field} must be a finite number")
            return None
        candidate = int(round(value))
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            errors.append(f"{field} is required")
            return None
        try:
            candidate = int(text, 10)
        except ValueError:
            errors.append(f"{field} must be an integer")
            return None
    else:
        errors.append(f"{field} must be an integer")
        return None

    if min_value is not None and candidate < min_value:
        errors.append(f"{field} must be at least {min_value}")
        return None

    if max_value is not None and candidate > max_value:
        errors.append(f"{field} must be at most {max_value}")
        return None

    return candidate


def _coerce_bool(value: Any, field: str, errors: list[str]) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in _TRUE_VALUES:
            return True
        if normalized in _FALSE_VALUES:
            return False
    errors.append(f"{field} must be true or false")
    return None


def _coerce_string(value: Any, field: str, errors: list[str]) -> str | None:
    if not isinstance(value, str):
        errors.append(f"{field} must be a string")
        return None
    return value


def _coerce_choice(
    value: Any, field: str, errors: list[str], choices: Collection[str]
) -> str | None:
    if isinstance(value, str) and value in choices:
        return value
    errors.append(f"{field} must be one of: {', '.join(choices)}")
    return None


def _coerce_color(
    value: Any, field: str, errors: list[str], *, allow_functional: bool
) -> str | None:
    if isinstance(value, str):
        text = value.strip()
        if _HEX_COLOR_RE.match(text):
            return text
        if allow_functional and _FUNCTIONAL_COLOR_RE.match(text):
            return text.replace(" ", "")
    if allow_functional:
        errors.append(f"{field} must be a hex or rgb()/rgba() color")
    else:
        errors.append(f"{field} must be a hex color")
    return None


def _coerce_tag(
    value: Any, field: str, errors: list[str], known_tags: Collection[str] | None
) -> str | None:
    if value is None:
        return None
    if isinstance(value, str) and value.strip():
        tag = value.strip()
        if known_tags is None or tag in known_tags:
            return tag
        errors.append(f"{field} must be one of: {', '.join(sorted(known_tags))} or null")
        return None
    errors.append(f"{field} must be a preset name or null")
    return None


def _coerce_field(
    spec: FieldSpec,
    value: Any,
    errors: list[str],
    known_tags: Collection[str] | None = None,
) -> Any:
    field = spec.wire
    if spec.kind == "int":
        return _coerce_int(
            value, field, errors, min_value=spec.min_value, max_value=spec.max_value
        )
    if spec.kind == "bool":
        return _coerce_bool(value, field, errors)
    if spec.kind == "enum":
        return _coerce_choice(value, field, errors, spec.choices)
    if spec.kind == "hex":
        return _coerce_color(value, field, errors, allow_functional=False)
    if spec.kind == "color":
        return _coerce_color(value, field, errors, allow_functional=True)
    if spec.kind == "text":
        return _coerce_string(value, field, errors)
    return _coerce_tag(value, field, errors, known_tags)


def validate_patch(
    patch: Any, *, known_tags: Collection[str] | None = None
) -> dict[str, Any]:
    """Validate a partial settings mapping and return it keyed by attribute name.

    Raises :class:`SettingsValidationError` listing every problem; nothing is
    returned for a patch with any invalid entry. When ``known_tags`` is given a
    ``preset`` tag outside it is rejected.
    """
    if not isinstance(patch, Mapping):
        raise SettingsValidationError(["settings patch must be an object"])

    errors: list[str] = []
    normalized: dict[str, Any] = {}
    for key, value in patch.items():
        spec = resolve_field(key) if isinstance(key, str) else None
        if spec is None:
            errors.append(f"unknown settings field {key!r}")
            continue
        before = len(errors)
        candidate = _coerce_field(spec, value, errors, known_tags)
        if len(errors) == before:
            normalized[spec.name] = candidate

    if errors:
        raise SettingsValidationError(errors)
    return normalized


def _parse_stored_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return int(round(value))
    if isinstance(value, str):
        try:
            return int(value.strip(), 10)
        except ValueError:
            return None
    return None


_INVALID = object()


def _normalize_stored_value(spec: FieldSpec, value: Any, known_tags: Collection[str]) -> Any:
    if spec.kind == "int":
        candidate = _parse_stored_int(value)
        if candidate is None:
            return _INVALID
        if spec.min_value is not None:
            candidate = max(spec.min_value, candidate)
        if spec.max_value is not None:
            candidate = min(spec.max_value, candidate)
        return candidate
    if spec.kind == "tag":
        if value is None:
            return None
        if isinstance(value, str) and value in known_tags:
            return value
        # A tag we cannot vouch for means the object no longer matches a preset.
        return None
    errors: list[str] = []
    candidate = _coerce_field(spec, value, errors)
    if errors:
        return _INVALID
    return candidate


def normalize_persisted(
    raw: Mapping[str, Any],
    defaults: OverlaySettings,
    *,
    known_tags: Collection[str],
) -> tuple[OverlaySettings, list[str]]:
    """Merge a persisted blob over ``defaults`` field by field.

    Persisted values win for every known field they carry. Unknown keys are
    dropped; malformed values keep the default; integers outside their bounds
    are clamped. Returns the merged settings and a list of the wire keys that
    were ignored.
    """
    values: dict[str, Any] = {}
    ignored: list[str] = []
    for key, value in raw.items():
        spec = _FIELDS_BY_WIRE.get(key)
        if spec is None:
            ignored.append(str(key))
            continue
        candidate = _normalize_stored_value(spec, value, known_tags)
        if candidate is _INVALID:
            ignored.append(key)
            continue
        values[spec.name] = candidate
    return replace(defaults, **values), ignored


__all__ = [
    "ANIMATION_STYLES",
    "FONT_FAMILIES",
    "LAYOUT_DIRECTIONS",
    "FieldSpec",
    "OverlaySettings",
    "SETTINGS_FIELDS",
    "normalize_persisted",
    "resolve_field",
    "validate_patch",
]
