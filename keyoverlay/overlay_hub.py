"""WebSocket fan-out of settings and captured input to overlay render clients."""

from __future__ import annotations

import asyncio
import contextlib
import copy
import json
import logging
import threading
from typing import Any, Callable

from aiohttp import WSMsgType, web

from .events import put_dropping_oldest


class _OverlayClient:
    __slots__ = ("ws", "queue", "writer", "peer")

    def __init__(self, ws: web.WebSocketResponse, queue: asyncio.Queue, peer: str):
        self.ws = ws
        self.queue = queue
        self.peer = peer
        self.writer: asyncio.Task | None = None


class OverlayHub:
    """Tracks connected render clients and pushes messages to each of them.

    Every client owns a bounded queue drained by its own writer task, so one
    stalled socket never delays the others. ``broadcast_settings`` and
    ``publish_keypress`` are safe to call from any thread.
    """

    def __init__(
        self,
        *,
        max_queue_size: int = 64,
        on_clients_changed: Callable[[int], None] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        if max_queue_size <= 0:
            raise ValueError("max_queue_size must be positive")
        self._max_queue_size = max_queue_size
        self._on_clients_changed = on_clients_changed
        self._logger = logger or logging.getLogger("keyoverlay.overlay")
        self._clients: set[_OverlayClient] = set()
        self._latest_settings: dict[str, Any] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._lock = threading.Lock()

    def set_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        with self._lock:
            self._loop = loop

    @property
    def client_count(self) -> int:
        with self._lock:
            return len(self._clients)

    @property
    def latest_settings(self) -> dict[str, Any] | None:
        with self._lock:
            return copy.deepcopy(self._latest_settings)

    def broadcast_settings(self, payload: dict[str, Any]) -> None:
        message = {"type": "settings", "data": copy.deepcopy(payload)}
        self._dispatch(message, remember=True)

    def publish_keypress(self, label: str) -> None:
        self._dispatch({"type": "keypress", "combo": label}, remember=False)

    def _dispatch(self, message: dict[str, Any], *, remember: bool) -> None:
        with self._lock:
            loop = self._loop
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if loop is None or loop is running or loop.is_closed():
            self._deliver(message, remember)
        else:
            loop.call_soon_threadsafe(self._deliver, message, remember)

    def _deliver(self, message: dict[str, Any], remember: bool) -> None:
        with self._lock:
            if remember:
                self._latest_settings = message["data"]
            clients = list(self._clients)
        for client in clients:
            put_dropping_oldest(client.queue, message)

    async def handle_websocket(self, request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse(heartbeat=20)
        await ws.prepare(request)
        self.set_loop(asyncio.get_running_loop())

        client = _OverlayClient(
            ws, asyncio.Queue(maxsize=self._max_queue_size), request.remote or "?"
        )
        # Snapshot and registration happen without yielding so no broadcast
        # can slip between them.
        with self._lock:
            if self._latest_settings is not None:
                client.queue.put_nowait(
                    {"type": "settings", "data": self._latest_settings}
                )
            self._clients.add(client)
            count = len(self._clients)
        client.writer = asyncio.create_task(self._write_loop(client))
        self._logger.info("Overlay client connected from %s (%d total)", client.peer, count)
        self._notify_count(count)

        try:
            async for msg in ws:
                if msg.type == WSMsgType.ERROR:
                    self._logger.debug(
                        "Overlay client %s socket error: %s", client.peer, ws.exception()
                    )
                    break
        finally:
            await self._drop_client(client)
        return ws

    async def _write_loop(self, client: _OverlayClient) -> None:
        while True:
            message = await client.queue.get()
            try:
                await client.ws.send_str(json.dumps(message))
            except (ConnectionResetError, RuntimeError) as exc:
                self._logger.debug("Overlay client %s send failed: %s", client.peer, exc)
                return

    async def _drop_client(self, client: _OverlayClient) -> None:
        with self._lock:
            if client not in self._clients:
                return
            self._clients.discard(client)
            count = len(self._clients)
        writer = client.writer
        if writer is not None:
            writer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await writer
        if not client.ws.closed:
            await client.ws.close()
        self._logger.info("Overlay client %s disconnected (%d total)", client.peer, count)
        self._notify_count(count)

    def _notify_count(self, count: int) -> None:
        callback = self._on_clients_changed
        if callback is None:
            return
        try:
            callback(count)
        except Exception as exc:  # pragma: no cover
            self._logger.warning("overlay client count observer failed: %s", exc)

    async def close_all(self) -> None:
        with self._lock:
            clients = list(self._clients)
        for client in clients:
            await self._drop_client(client)


__all__ = ["OverlayHub"]
