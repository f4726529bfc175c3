"""In-process event fan-out from the control plane to control surfaces."""

from __future__ import annotations

import asyncio
import copy
import threading
import time
from collections import deque
from typing import Any, Deque, Set

SETTINGS_CHANGED = "settings_changed"
SETTINGS_ERROR = "settings_error"
PERMISSION_CHANGED = "permission_changed"
CAPTURE_STATE_CHANGED = "capture_state_changed"
CAPTURE_ERROR = "capture_error"
OVERLAY_CLIENTS_CHANGED = "overlay_clients_changed"
LAST_ACTIVITY = "last_activity"

EVENT_TYPES = frozenset(
    {
        SETTINGS_CHANGED,
        SETTINGS_ERROR,
        PERMISSION_CHANGED,
        CAPTURE_STATE_CHANGED,
        CAPTURE_ERROR,
        OVERLAY_CLIENTS_CHANGED,
        LAST_ACTIVITY,
    }
)


class ControlEventBus:
    """Publishes control events to subscriber queues and keeps a short history.

    ``publish`` may be called from any thread; delivery happens on the loop
    registered through ``set_loop`` (or the loop of the first subscriber).
    A subscriber that falls behind loses its oldest queued events.
    """

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop | None = None,
        max_queue_size: int = 128,
        history_limit: int = 256,
    ) -> None:
        if max_queue_size <= 0:
            raise ValueError("max_queue_size must be positive")
        if history_limit <= 0:
            raise ValueError("history_limit must be positive")
        self._loop = loop
        self._max_queue_size = max_queue_size
        self._history: Deque[dict[str, Any]] = deque(maxlen=history_limit)
        self._queues: Set[asyncio.Queue] = set()
        self._seq = 0
        self._lock = threading.Lock()

    def set_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        with self._lock:
            self._loop = loop

    async def subscribe(self, *, last_event_id: str | None = None) -> asyncio.Queue:
        """Register a queue, pre-filled with history newer than ``last_event_id``."""
        self.set_loop(asyncio.get_running_loop())
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._max_queue_size)
        with self._lock:
            self._queues.add(queue)
            history = list(self._history)

        after = _event_seq(last_event_id)
        for event in history:
            if after is None or event["seq"] > after:
                put_dropping_oldest(queue, event)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        with self._lock:
            self._queues.discard(queue)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._queues)

    def publish(self, event_type: str, payload: Any = None) -> str:
        if event_type not in EVENT_TYPES:
            raise ValueError(f"unknown event type {event_type!r}")
        with self._lock:
            self._seq += 1
            event = {
                "id": str(self._seq),
                "seq": self._seq,
                "type": event_type,
                "timestamp": time.time(),
                "payload": copy.deepcopy(payload),
            }
            self._history.append(event)
            loop = self._loop
            queues = list(self._queues)

        if not queues:
            return event["id"]

        def _deliver() -> None:
            for queue in queues:
                put_dropping_oldest(queue, event)

        if loop is None or loop.is_closed():
            _deliver()
        else:
            loop.call_soon_threadsafe(_deliver)
        return event["id"]

    def history_snapshot(self) -> list[dict[str, Any]]:
        with self._lock:
            return list(self._history)

    def latest(self, event_type: str) -> dict[str, Any] | None:
        with self._lock:
            for event in reversed(self._history):
                if event["type"] == event_type:
                    return event
        return None


def put_dropping_oldest(queue: asyncio.Queue, event: dict[str, Any]) -> None:
    try:
        queue.put_nowait(event)
        return
    except asyncio.QueueFull:
        pass
    try:
        queue.get_nowait()
    except asyncio.QueueEmpty:
        pass
    try:
        queue.put_nowait(event)
    except asyncio.QueueFull:
        pass


def _event_seq(candidate: str | None) -> int | None:
    if not candidate:
        return None
    try:
        return int(candidate)
    except (TypeError, ValueError):
        return None


__all__ = [
    "CAPTURE_ERROR",
    "CAPTURE_STATE_CHANGED",
    "ControlEventBus",
    "put_dropping_oldest",
    "EVENT_TYPES",
    "LAST_ACTIVITY",
    "OVERLAY_CLIENTS_CHANGED",
    "PERMISSION_CHANGED",
    "SETTINGS_CHANGED",
    "SETTINGS_ERROR",
]
