"""Interface between the capture controller and a native input hook."""

from __future__ import annotations

import abc
import logging
import threading
from typing import Callable

from .errors import CapturePermissionError

PERMISSION_DENIED_MARKER = "accessibility_denied"
START_STARTED = "started"
START_ALREADY_RUNNING = "already_running"

ActivityCallback = Callable[[str], None]
PermissionCallback = Callable[[bool], None]


class CaptureBackend(abc.ABC):
    """Blocking native capture operations.

    The controller calls these from a worker thread. ``start_capture`` returns
    :data:`START_STARTED` or :data:`START_ALREADY_RUNNING` and raises on any
    failure; a refusal by the OS must raise :class:`CapturePermissionError` or
    mention :data:`PERMISSION_DENIED_MARKER` in its message.
    """

    def __init__(self) -> None:
        self.on_activity: ActivityCallback | None = None
        self.on_permission: PermissionCallback | None = None

    def bind(
        self,
        *,
        on_activity: ActivityCallback | None = None,
        on_permission: PermissionCallback | None = None,
    ) -> None:
        self.on_activity = on_activity
        self.on_permission = on_permission

    def announce_permission(self) -> None:
        """Deliver the one-shot startup permission notification, if supported."""

    @abc.abstractmethod
    def check_permission(self) -> bool: ...

    @abc.abstractmethod
    def start_capture(self) -> str: ...

    @abc.abstractmethod
    def stop_capture(self) -> None: ...

    def _emit_activity(self, label: str | None) -> None:
        callback = self.on_activity
        if label and callback is not None:
            callback(label)

    def _emit_permission(self, granted: bool) -> None:
        callback = self.on_permission
        if callback is not None:
            callback(granted)


class NullCaptureBackend(CaptureBackend):
    """Backend with no OS hook; used headless and as a scriptable test double.

    ``permission_granted`` decides what the permission probe and ``start``
    report. Labels fed through :meth:`inject` reach the activity callback as if
    they had been captured.
    """

    def __init__(self, *, permission_granted: bool = True, announce: bool = False):
        super().__init__()
        self.permission_granted = permission_granted
        self._announce = announce
        self._running = False
        self._lock = threading.Lock()
        self._log = logging.getLogger("keyoverlay.capture.null")

    @property
    def running(self) -> bool:
        with self._lock:
            return self._running

    def announce_permission(self) -> None:
        if self._announce:
            self._emit_permission(self.permission_granted)

    def check_permission(self) -> bool:
        return self.permission_granted

    def start_capture(self) -> str:
        with self._lock:
            if self._running:
                return START_ALREADY_RUNNING
            if not self.permission_granted:
                raise CapturePermissionError(PERMISSION_DENIED_MARKER)
            self._running = True
        self._log.debug("Null capture started")
        return START_STARTED

    def stop_capture(self) -> None:
        with self._lock:
            self._running = False
        self._log.debug("Null capture stopped")

    def inject(self, label: str) -> None:
        if self.running:
            self._emit_activity(label)


__all__ = [
    "ActivityCallback",
    "CaptureBackend",
    "NullCaptureBackend",
    "PERMISSION_DENIED_MARKER",
    "PermissionCallback",
    "START_ALREADY_RUNNING",
    "START_STARTED",
]
