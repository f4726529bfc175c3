"""Exception hierarchy shared by the KeyOverlay control plane."""

from __future__ import annotations

from typing import Iterable


class KeyOverlayError(Exception):
    """Base class for every error raised by the control plane."""


class SettingsValidationError(KeyOverlayError, ValueError):
    """Raised when a settings patch contains unknown keys or invalid values."""

    def __init__(self, errors: Iterable[str]) -> None:
        self.errors = list(errors)
        message = self.errors[0] if self.errors else "invalid settings patch"
        super().__init__(message)


class UnknownPresetError(KeyOverlayError, LookupError):
    """Raised when a preset name is not part of the built-in table."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"unknown preset {name!r}")


class SettingsNotLoadedError(KeyOverlayError):
    """Raised when an intent arrives before persisted settings were loaded."""


class SettingsPersistenceError(KeyOverlayError):
    """Raised when the settings blob cannot be read or written."""


class CaptureTransitionError(KeyOverlayError):
    """Raised when a capture intent is not valid in the current state."""

    def __init__(self, action: str, state: str) -> None:
        self.action = action
        self.state = state
        super().__init__(f"cannot {action} capture while {state}")


class CaptureBackendError(KeyOverlayError):
    """Raised by a native capture backend when an operation fails."""


class CapturePermissionError(CaptureBackendError):
    """Raised by a native capture backend when the OS refuses input access."""


__all__ = [
    "KeyOverlayError",
    "SettingsValidationError",
    "UnknownPresetError",
    "SettingsNotLoadedError",
    "SettingsPersistenceError",
    "CaptureTransitionError",
    "CaptureBackendError",
    "CapturePermissionError",
]
