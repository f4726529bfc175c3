"""Turn raw key and mouse transitions into overlay labels."""

from __future__ import annotations

import re
import threading
from typing import Iterable

from .settings_model import OverlaySettings

META = "⌘"
MODIFIER_NAMES = frozenset({META, "Win", "Shift", "Ctrl", "Alt", "Caps", "Fn"})
# Order in which held modifiers are written in a combo label.
_COMBO_ORDER = (META, "Ctrl", "Alt", "Shift")
_FILTER_SPLIT_RE = re.compile(r"[,\s]")

MOUSE_BUTTON_LABELS = {"left": "LClick", "right": "RClick"}


def is_modifier_name(name: str) -> bool:
    return name in MODIFIER_NAMES


def key_filter_allows(key_filter: str, key_name: str) -> bool:
    """Empty filter lets everything through; otherwise an exact token match.

    Tokens are separated by commas or whitespace and compared case-insensitively.
    """
    text = (key_filter or "").strip()
    if not text:
        return True
    wanted = key_name.upper()
    return any(
        token.strip().upper() == wanted
        for token in _FILTER_SPLIT_RE.split(text)
        if token.strip()
    )


def build_combo(held: Iterable[str], trigger: str) -> str:
    """Write held modifiers in ``⌘+Ctrl+Alt+Shift`` order, then the trigger.

    A modifier trigger takes its own slot in that order instead of going last,
    so pressing Shift while holding Ctrl reads ``Ctrl+Shift``.
    """
    held_set = set(held)
    if is_modifier_name(trigger):
        parts = [name for name in _COMBO_ORDER if name in held_set or name == trigger]
        if trigger not in _COMBO_ORDER:
            parts.append(trigger)
        return "+".join(parts)
    parts = [name for name in _COMBO_ORDER if name in held_set]
    parts.append(trigger)
    return "+".join(parts)


class ComboTracker:
    """Holds the set of pressed keys and decides what each transition shows.

    Methods return the label to display, or ``None`` when the current
    settings hide the event. Safe to drive from a backend listener thread
    while settings are swapped from the event loop.
    """

    def __init__(self, settings: OverlaySettings):
        self._settings = settings
        self._held: set[str] = set()
        self._lock = threading.Lock()

    def update_settings(self, settings: OverlaySettings) -> None:
        with self._lock:
            self._settings = settings

    @property
    def held(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._held)

    def reset(self) -> None:
        with self._lock:
            self._held.clear()

    def key_down(self, name: str) -> str | None:
        with self._lock:
            settings = self._settings
            is_mod = is_modifier_name(name)
            was_held = name in self._held
            self._held.add(name)
            if is_mod and was_held:
                return None
            if is_mod and not settings.show_modifiers_alone:
                return None
            if settings.key_filter_enabled and not key_filter_allows(
                settings.key_filter, name
            ):
                return None
            label = build_combo(self._held, name) if settings.combo_mode else name
        return label or None

    def key_up(self, name: str) -> None:
        with self._lock:
            self._held.discard(name)
        return None

    def mouse_down(self, button: str) -> str | None:
        label = MOUSE_BUTTON_LABELS.get(button)
        if label is None:
            return None
        with self._lock:
            settings = self._settings
            modifiers = {name for name in self._held if is_modifier_name(name)}
        if modifiers:
            if settings.show_mouse_click_combos:
                return build_combo(modifiers, label)
            return None
        if settings.show_mouse_clicks:
            return label
        return None


__all__ = [
    "ComboTracker",
    "MODIFIER_NAMES",
    "MOUSE_BUTTON_LABELS",
    "build_combo",
    "is_modifier_name",
    "key_filter_allows",
]
