"""Desktop capture backend built on pynput listeners."""

from __future__ import annotations

import logging
import sys
import threading
from typing import Any

from .activity import ComboTracker, MOUSE_BUTTON_LABELS
from .capture_backend import (
    PERMISSION_DENIED_MARKER,
    START_ALREADY_RUNNING,
    START_STARTED,
    CaptureBackend,
)
from .errors import CaptureBackendError, CapturePermissionError

_SPECIAL_KEY_NAMES = {
    "Key.shift": "Shift",
    "Key.shift_l": "Shift",
    "Key.shift_r": "Shift",
    "Key.ctrl": "Ctrl",
    "Key.ctrl_l": "Ctrl",
    "Key.ctrl_r": "Ctrl",
    "Key.alt": "Alt",
    "Key.alt_l": "Alt",
    "Key.alt_r": "Alt",
    "Key.alt_gr": "Alt",
    "Key.caps_lock": "Caps",
    "Key.enter": "↩",
    "Key.tab": "Tab",
    "Key.space": "Space",
    "Key.backspace": "⌫",
    "Key.esc": "Esc",
    "Key.delete": "Del",
    "Key.home": "Home",
    "Key.end": "End",
    "Key.page_up": "PgUp",
    "Key.page_down": "PgDn",
    "Key.left": "←",
    "Key.right": "→",
    "Key.up": "↑",
    "Key.down": "↓",
}
_COMMAND_KEYS = {"Key.cmd", "Key.cmd_l", "Key.cmd_r"}


def display_name(key: Any, *, platform: str | None = None) -> str | None:
    """Map a pynput key object to the label shown on the overlay."""
    platform = platform or sys.platform
    token = str(key)
    if token in _COMMAND_KEYS:
        return "⌘" if platform == "darwin" else "Win"
    if token in _SPECIAL_KEY_NAMES:
        return _SPECIAL_KEY_NAMES[token]
    char = getattr(key, "char", None)
    if char:
        if char.isalpha():
            return char.upper()
        if char.isprintable():
            return char
        return None
    if token.startswith("Key.f") and token[5:].isdigit():
        return "F" + token[5:]
    vk = getattr(key, "vk", None)
    if isinstance(vk, int):
        return f"#{vk:02X}"
    return None


class PynputCaptureBackend(CaptureBackend):
    """Keyboard and mouse listeners feeding a :class:`ComboTracker`.

    On macOS the listeners report whether the process is trusted for input
    monitoring; an untrusted start is refused with the permission marker.
    Other platforms need no grant.
    """

    def __init__(self, tracker: ComboTracker, *, platform: str | None = None):
        super().__init__()
        self._tracker = tracker
        self._platform = platform or sys.platform
        self._keyboard_listener: Any = None
        self._mouse_listener: Any = None
        self._lock = threading.Lock()
        self._log = logging.getLogger("keyoverlay.capture.pynput")

    @staticmethod
    def _modules() -> tuple[Any, Any]:
        try:
            from pynput import keyboard, mouse
        except ImportError as exc:
            # pynput raises ImportError when no input backend (e.g. X display) exists
            raise CaptureBackendError(f"pynput is unavailable: {exc}") from exc
        return keyboard, mouse

    def announce_permission(self) -> None:
        try:
            granted = self.check_permission()
        except CaptureBackendError as exc:
            self._log.warning("Startup permission probe failed: %s", exc)
            return
        self._emit_permission(granted)

    def check_permission(self) -> bool:
        if self._platform != "darwin":
            return True
        keyboard, _ = self._modules()
        probe = keyboard.Listener()
        probe.start()
        try:
            probe.wait()
            return bool(getattr(probe, "IS_TRUSTED", True))
        finally:
            probe.stop()

    def start_capture(self) -> str:
        with self._lock:
            if self._keyboard_listener is not None:
                return START_ALREADY_RUNNING
            keyboard, mouse = self._modules()
            key_listener = keyboard.Listener(
                on_press=self._on_press, on_release=self._on_release
            )
            key_listener.start()
            key_listener.wait()
            if self._platform == "darwin" and not getattr(key_listener, "IS_TRUSTED", True):
                key_listener.stop()
                raise CapturePermissionError(PERMISSION_DENIED_MARKER)
            mouse_listener = mouse.Listener(on_click=self._on_click)
            mouse_listener.start()
            self._keyboard_listener = key_listener
            self._mouse_listener = mouse_listener
        self._log.info("Keyboard and mouse listeners active")
        return START_STARTED

    def stop_capture(self) -> None:
        with self._lock:
            listeners = (self._keyboard_listener, self._mouse_listener)
            self._keyboard_listener = None
            self._mouse_listener = None
        for listener in listeners:
            if listener is not None:
                listener.stop()
        self._tracker.reset()
        self._log.info("Keyboard and mouse listeners stopped")

    def _on_press(self, key: Any) -> None:
        name = display_name(key, platform=self._platform)
        if name:
            self._emit_activity(self._tracker.key_down(name))

    def _on_release(self, key: Any) -> None:
        name = display_name(key, platform=self._platform)
        if name:
            self._tracker.key_up(name)

    def _on_click(self, x: float, y: float, button: Any, pressed: bool) -> None:
        if not pressed:
            return
        button_name = getattr(button, "name", "")
        if button_name in MOUSE_BUTTON_LABELS:
            self._emit_activity(self._tracker.mouse_down(button_name))


__all__ = ["PynputCaptureBackend", "display_name"]
