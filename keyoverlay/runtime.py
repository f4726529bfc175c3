"""Wires the control plane components onto one event loop."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Dict

from . import config
from . import events as event_types
from .activity import ComboTracker
from .capture_backend import CaptureBackend, NullCaptureBackend
from .capture_controller import CaptureLifecycleController, CaptureState
from .events import ControlEventBus
from .overlay_hub import OverlayHub
from .presets import DEFAULT_SETTINGS
from .settings_store import JsonBlobStore
from .settings_sync import BlobStore, SettingsSyncService


def create_backend(cfg: Dict[str, Any], tracker: ComboTracker) -> CaptureBackend:
    name = str(cfg.get("capture", {}).get("backend") or "pynput").lower()
    if name == "none":
        return NullCaptureBackend()
    if name != "pynput":
        raise ValueError(f"unknown capture backend {name!r}")
    from .pynput_backend import PynputCaptureBackend

    return PynputCaptureBackend(tracker)


class OverlayRuntime:
    """Owns the event bus, overlay hub, settings service and capture controller.

    ``startup`` must run on the loop that will serve every app; backend
    callbacks arriving on listener threads are marshalled onto that loop.
    """

    def __init__(
        self,
        cfg: Dict[str, Any],
        *,
        backend: CaptureBackend | None = None,
        store: BlobStore | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.cfg = cfg
        self._logger = logger or logging.getLogger("keyoverlay.runtime")
        events_cfg = cfg.get("events", {})
        self.events = ControlEventBus(
            max_queue_size=int(events_cfg.get("max_queue_size", 128)),
            history_limit=int(events_cfg.get("history_limit", 256)),
        )
        self.hub = OverlayHub(on_clients_changed=self._on_clients_changed)
        self.tracker = ComboTracker(DEFAULT_SETTINGS)
        self.backend = backend if backend is not None else create_backend(cfg, self.tracker)
        store_cfg = cfg.get("store", {})
        self.store = store if store is not None else JsonBlobStore(config.store_path(cfg))
        self.settings = SettingsSyncService(
            self.store,
            hub=self.hub,
            events=self.events,
            store_key=str(store_cfg.get("key") or "settings"),
            on_change=self.tracker.update_settings,
        )
        self.capture = CaptureLifecycleController(
            self.backend,
            events=self.events,
            hub=self.hub,
            permission_wait_seconds=float(
                cfg.get("capture", {}).get("permission_wait_seconds", 2.0)
            ),
        )
        self._loop: asyncio.AbstractEventLoop | None = None
        self._announce_task: asyncio.Task | None = None
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    async def startup(self) -> None:
        if self._started:
            return
        self._started = True
        loop = asyncio.get_running_loop()
        self._loop = loop
        self.events.set_loop(loop)
        self.hub.set_loop(loop)
        self.backend.bind(
            on_activity=self._activity_from_backend,
            on_permission=self._permission_from_backend,
        )
        await self.settings.load()
        self._announce_task = loop.create_task(
            asyncio.to_thread(self.backend.announce_permission)
        )
        self._logger.info("KeyOverlay control plane ready")

    async def shutdown(self) -> None:
        if not self._started:
            return
        self._started = False
        task = self._announce_task
        self._announce_task = None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if self.capture.state is CaptureState.RUNNING:
            await self.capture.stop_capture()
        await self.hub.close_all()
        self._logger.info("KeyOverlay control plane stopped")

    def _call_on_loop(self, callback, *args: Any) -> None:
        loop = self._loop
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if loop is None or loop is running or loop.is_closed():
            callback(*args)
        else:
            loop.call_soon_threadsafe(callback, *args)

    def _activity_from_backend(self, label: str) -> None:
        self._call_on_loop(self.capture.record_activity, label)

    def _permission_from_backend(self, granted: bool) -> None:
        self._call_on_loop(self.capture.notify_permission_status, granted)

    def _on_clients_changed(self, count: int) -> None:
        self.events.publish(event_types.OVERLAY_CLIENTS_CHANGED, {"count": count})


def create_runtime(cfg: Dict[str, Any] | None = None, **kwargs: Any) -> OverlayRuntime:
    return OverlayRuntime(cfg if cfg is not None else config.get_cfg(), **kwargs)


__all__ = ["OverlayRuntime", "create_backend", "create_runtime"]
