"""Capture session state machine and permission tracking."""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from enum import Enum
from typing import Any, Callable

from . import events as event_types
from .capture_backend import (
    PERMISSION_DENIED_MARKER,
    START_ALREADY_RUNNING,
    START_STARTED,
    CaptureBackend,
)
from .errors import CapturePermissionError, CaptureTransitionError
from .events import ControlEventBus
from .overlay_hub import OverlayHub


class CaptureState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    DENIED = "denied"


class PermissionState(str, Enum):
    UNKNOWN = "unknown"
    GRANTED = "granted"
    DENIED = "denied"


_STARTABLE = (CaptureState.IDLE, CaptureState.DENIED)


def is_permission_denial(exc: BaseException) -> bool:
    return isinstance(exc, CapturePermissionError) or PERMISSION_DENIED_MARKER in str(exc)


class CaptureLifecycleController:
    """Drives a :class:`CaptureBackend` through idle/starting/running/stopping/denied.

    All methods run on the event loop that owns the controller; backend calls
    are pushed to worker threads. Guards are checked and the next state is set
    before the first await, so a second ``start_capture`` issued while one is
    in flight is rejected instead of queued.
    """

    def __init__(
        self,
        backend: CaptureBackend,
        *,
        events: ControlEventBus | None = None,
        hub: OverlayHub | None = None,
        permission_wait_seconds: float = 2.0,
        logger: logging.Logger | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._backend = backend
        self._events = events
        self._hub = hub
        self._permission_wait = max(0.0, float(permission_wait_seconds))
        self._logger = logger or logging.getLogger("keyoverlay.capture")
        self._clock = clock
        self._created_at = clock()
        self._state = CaptureState.IDLE
        self._permission = PermissionState.UNKNOWN
        self._last_activity: str | None = None
        self._startup_notice = threading.Event()
        self._startup_wait_done = False

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def permission(self) -> PermissionState:
        return self._permission

    @property
    def last_activity(self) -> str | None:
        return self._last_activity

    def snapshot(self) -> dict[str, Any]:
        return {
            "state": self._state.value,
            "permission": self._permission.value,
            "last_activity": self._last_activity,
        }

    def _publish(self, event_type: str, payload: dict[str, Any]) -> None:
        if self._events is not None:
            self._events.publish(event_type, payload)

    def _set_state(self, state: CaptureState) -> None:
        if state is self._state:
            return
        previous = self._state
        self._state = state
        self._logger.info("Capture state %s -> %s", previous.value, state.value)
        self._publish(event_types.CAPTURE_STATE_CHANGED, {"state": state.value})

    def _set_permission(self, permission: PermissionState) -> None:
        if permission is self._permission:
            return
        self._permission = permission
        self._logger.info("Input permission %s", permission.value)
        self._publish(event_types.PERMISSION_CHANGED, {"permission": permission.value})

    def notify_permission_status(self, granted: bool) -> None:
        """Apply an unsolicited permission report from the backend."""
        self._set_permission(PermissionState.GRANTED if granted else PermissionState.DENIED)
        self._startup_notice.set()

    async def _await_startup_notice(self) -> None:
        if self._startup_wait_done:
            return
        self._startup_wait_done = True
        remaining = self._permission_wait - (self._clock() - self._created_at)
        if remaining > 0 and not self._startup_notice.is_set():
            await asyncio.to_thread(self._startup_notice.wait, remaining)

    async def check_permission(self) -> PermissionState:
        await self._await_startup_notice()
        try:
            granted = await asyncio.to_thread(self._backend.check_permission)
        except Exception as exc:
            self._logger.warning("Permission probe failed, treating as denied: %s", exc)
            granted = False
        self._set_permission(PermissionState.GRANTED if granted else PermissionState.DENIED)
        return self._permission

    async def start_capture(self) -> CaptureState:
        if self._state not in _STARTABLE:
            raise CaptureTransitionError("start", self._state.value)
        self._set_state(CaptureState.STARTING)
        try:
            result = await asyncio.to_thread(self._backend.start_capture)
        except Exception as exc:
            if is_permission_denial(exc):
                self._logger.warning("Capture refused: input permission not granted")
                self._set_permission(PermissionState.DENIED)
                self._set_state(CaptureState.DENIED)
            else:
                self._fail_start(str(exc) or exc.__class__.__name__)
            return self._state

        if result not in (START_STARTED, START_ALREADY_RUNNING):
            self._fail_start(f"unexpected start result {result!r}")
            return self._state
        # A backend that started has been granted access.
        self._set_permission(PermissionState.GRANTED)
        self._set_state(CaptureState.RUNNING)
        return self._state

    def _fail_start(self, message: str) -> None:
        self._logger.error("Capture start failed: %s", message)
        self._publish(event_types.CAPTURE_ERROR, {"action": "start", "error": message})
        self._set_state(CaptureState.IDLE)

    async def stop_capture(self) -> CaptureState:
        if self._state is not CaptureState.RUNNING:
            raise CaptureTransitionError("stop", self._state.value)
        self._set_state(CaptureState.STOPPING)
        try:
            await asyncio.to_thread(self._backend.stop_capture)
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            self._logger.warning("Capture stop failed, returning to idle anyway: %s", message)
            self._publish(event_types.CAPTURE_ERROR, {"action": "stop", "error": message})
        finally:
            self._set_state(CaptureState.IDLE)
        return self._state

    def record_activity(self, label: str) -> None:
        self._last_activity = label
        if self._hub is not None:
            self._hub.publish_keypress(label)
        self._publish(event_types.LAST_ACTIVITY, {"label": label})


__all__ = [
    "CaptureLifecycleController",
    "CaptureState",
    "PermissionState",
    "is_permission_denial",
]
