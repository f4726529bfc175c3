"""aiohttp servers for the control API, the overlay WebSocket and the overlay page."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import copy
import json
import logging
import threading
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict

from aiohttp import web
from aiohttp.web import AppKey

from . import config
from .errors import (
    CaptureTransitionError,
    SettingsNotLoadedError,
    SettingsValidationError,
    UnknownPresetError,
)
from .overlay_hub import OverlayHub
from .presets import DEFAULT_PRESET_TAG, describe_presets
from .runtime import OverlayRuntime, create_runtime

EVENT_STREAM_HEARTBEAT_SECONDS = 20.0
EVENT_STREAM_RETRY_MILLIS = 3000

RUNTIME_KEY: AppKey[OverlayRuntime] = web.AppKey("keyoverlay_runtime", OverlayRuntime)
HUB_KEY: AppKey[OverlayHub] = web.AppKey("overlay_hub", OverlayHub)
PAGE_PATH_KEY: AppKey[Path] = web.AppKey("overlay_page_path", Path)


def _quiet_noisy_dependencies(level: int = logging.WARNING) -> None:
    """Tone down overly chatty third-party loggers."""

    for name in ("aiohttp.access", "asyncio"):
        logging.getLogger(name).setLevel(level)


def _error(message: str, status: int, errors: list[str] | None = None) -> web.Response:
    body: Dict[str, Any] = {"error": message}
    if errors:
        body["errors"] = errors
    return web.json_response(body, status=status)


async def _read_json(request: web.Request) -> tuple[Any, web.Response | None]:
    if not request.can_read_body:
        return {}, None
    try:
        return await request.json(), None
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        return None, _error(f"Invalid JSON payload: {exc}", 400)


def build_control_app(runtime: OverlayRuntime) -> web.Application:
    log = logging.getLogger("keyoverlay.server")
    app = web.Application()
    app[RUNTIME_KEY] = runtime

    async def _startup(_: web.Application) -> None:
        await runtime.startup()

    async def _cleanup(_: web.Application) -> None:
        await runtime.shutdown()

    app.on_startup.append(_startup)
    app.on_cleanup.append(_cleanup)

    def _settings_body() -> Dict[str, Any]:
        return {"settings": runtime.settings.snapshot()}

    async def _run_settings_intent(intent: Callable[[], Awaitable[Any]]) -> web.Response:
        try:
            await intent()
        except SettingsNotLoadedError as exc:
            return _error(str(exc), 503)
        except SettingsValidationError as exc:
            return _error(exc.errors[0] if exc.errors else str(exc), 400, exc.errors)
        except UnknownPresetError as exc:
            return _error(str(exc), 404)
        return web.json_response(_settings_body())

    async def settings_get(request: web.Request) -> web.Response:
        try:
            return web.json_response(_settings_body())
        except SettingsNotLoadedError as exc:
            return _error(str(exc), 503)

    async def settings_update(request: web.Request) -> web.Response:
        data, failure = await _read_json(request)
        if failure is not None:
            return failure
        return await _run_settings_intent(lambda: runtime.settings.update(data))

    async def settings_apply_preset(request: web.Request) -> web.Response:
        data, failure = await _read_json(request)
        if failure is not None:
            return failure
        name = data.get("name") if isinstance(data, dict) else None
        if not isinstance(name, str) or not name.strip():
            return _error("name is required", 400, ["name is required"])
        return await _run_settings_intent(lambda: runtime.settings.apply_preset(name.strip()))

    async def settings_reset(request: web.Request) -> web.Response:
        return await _run_settings_intent(runtime.settings.reset_to_default)

    async def presets_list(request: web.Request) -> web.Response:
        return web.json_response({"presets": describe_presets(), "default": DEFAULT_PRESET_TAG})

    def _capture_body() -> Dict[str, Any]:
        body = runtime.capture.snapshot()
        body["overlay_clients"] = runtime.hub.client_count
        return body

    async def capture_get(request: web.Request) -> web.Response:
        return web.json_response(_capture_body())

    async def capture_start(request: web.Request) -> web.Response:
        try:
            await runtime.capture.start_capture()
        except CaptureTransitionError as exc:
            return _error(str(exc), 409)
        return web.json_response(_capture_body())

    async def capture_stop(request: web.Request) -> web.Response:
        try:
            await runtime.capture.stop_capture()
        except CaptureTransitionError as exc:
            return _error(str(exc), 409)
        return web.json_response(_capture_body())

    async def permission_check(request: web.Request) -> web.Response:
        await runtime.capture.check_permission()
        return web.json_response(_capture_body())

    async def healthz(request: web.Request) -> web.Response:
        return web.json_response(
            {
                "status": "ok",
                "settings_loaded": runtime.settings.loaded,
                "capture_state": runtime.capture.state.value,
                "overlay_clients": runtime.hub.client_count,
            }
        )

    async def events_stream(request: web.Request) -> web.StreamResponse:
        bus = runtime.events
        last_event_id = request.headers.get("Last-Event-ID") or request.query.get(
            "last_event_id", ""
        )
        queue = await bus.subscribe(last_event_id=last_event_id)

        response = web.StreamResponse(
            status=200,
            headers={
                "Cache-Control": "no-store",
                "Content-Type": "text/event-stream",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",
            },
        )
        await response.prepare(request)
        heartbeat_chunk = b"event: heartbeat\ndata: {}\n\n"

        try:
            await response.write(f"retry: {EVENT_STREAM_RETRY_MILLIS}\n\n".encode("utf-8"))
            while True:
                try:
                    event = await asyncio.wait_for(
                        queue.get(), timeout=EVENT_STREAM_HEARTBEAT_SECONDS
                    )
                except asyncio.TimeoutError:
                    await response.write(heartbeat_chunk)
                    continue

                data_text = json.dumps(
                    event.get("payload"), separators=(",", ":"), ensure_ascii=False
                )
                chunk = f"id: {event['id']}\nevent: {event['type']}\ndata: {data_text}\n\n"
                await response.write(chunk.encode("utf-8"))
        except ConnectionResetError:
            log.debug("Event stream client went away")
        finally:
            bus.unsubscribe(queue)
            with contextlib.suppress(Exception):
                await response.write_eof()

        return response

    app.router.add_get("/api/settings", settings_get)
    app.router.add_post("/api/settings", settings_update)
    app.router.add_post("/api/settings/preset", settings_apply_preset)
    app.router.add_post("/api/settings/reset", settings_reset)
    app.router.add_get("/api/presets", presets_list)
    app.router.add_get("/api/capture", capture_get)
    app.router.add_post("/api/capture/start", capture_start)
    app.router.add_post("/api/capture/stop", capture_stop)
    app.router.add_post("/api/permission/check", permission_check)
    app.router.add_get("/api/events", events_stream)
    app.router.add_get("/healthz", healthz)
    return app


def build_overlay_app(hub: OverlayHub) -> web.Application:
    app = web.Application()
    app[HUB_KEY] = hub
    app.router.add_get("/", hub.handle_websocket)
    return app


def build_page_app(page_path: Path | None) -> web.Application:
    app = web.Application()

    async def overlay_page(request: web.Request) -> web.StreamResponse:
        path = request.app.get(PAGE_PATH_KEY)
        if path is None or not path.is_file():
            raise web.HTTPNotFound(text="overlay page not configured")
        return web.FileResponse(path)

    if page_path is not None:
        app[PAGE_PATH_KEY] = page_path
    app.router.add_get("/", overlay_page)
    return app


def _page_path(cfg: Dict[str, Any]) -> Path | None:
    raw = cfg.get("overlay", {}).get("page_path")
    if not raw:
        return None
    return Path(str(raw)).expanduser()


class ServerHandle:
    """Handle returned by start_server_in_thread(). Call stop() to cleanly shut down."""

    def __init__(
        self,
        thread: threading.Thread,
        loop: asyncio.AbstractEventLoop,
        runners: list[web.AppRunner],
        runtime: OverlayRuntime,
    ):
        self.thread = thread
        self.loop = loop
        self.runners = runners
        self.runtime = runtime

    def stop(self, timeout: float = 5.0) -> None:
        log = logging.getLogger("keyoverlay.server")
        log.info("Stopping KeyOverlay servers ...")
        if self.loop.is_running():

            async def _cleanup() -> None:
                # Control runner first: its cleanup closes overlay sockets.
                for runner in self.runners:
                    try:
                        await runner.cleanup()
                    except Exception as exc:
                        log.warning("Error during aiohttp runner cleanup: %r", exc)

            fut = asyncio.run_coroutine_threadsafe(_cleanup(), self.loop)
            try:
                fut.result(timeout=timeout)
            except Exception as exc:
                log.warning("Error awaiting cleanup: %r", exc)
            self.loop.call_soon_threadsafe(self.loop.stop)
        self.thread.join(timeout=timeout)
        log.info("KeyOverlay servers stopped")


def start_server_in_thread(
    cfg: Dict[str, Any] | None = None,
    *,
    runtime: OverlayRuntime | None = None,
    access_log: bool = False,
) -> ServerHandle:
    """Run the control, overlay WebSocket and page servers on one loop in a thread."""
    cfg = cfg if cfg is not None else config.get_cfg()
    runtime = runtime if runtime is not None else create_runtime(cfg)
    log = logging.getLogger("keyoverlay.server")
    overlay_cfg = cfg.get("overlay", {})
    control_cfg = cfg.get("control", {})

    overlay_host = overlay_cfg.get("host", "127.0.0.1")
    sites = [
        (
            build_control_app(runtime),
            control_cfg.get("host", "127.0.0.1"),
            int(control_cfg.get("port", 9003)),
        ),
        (build_overlay_app(runtime.hub), overlay_host, int(overlay_cfg.get("ws_port", 9001))),
        (build_page_app(_page_path(cfg)), overlay_host, int(overlay_cfg.get("http_port", 9002))),
    ]

    loop = asyncio.new_event_loop()
    ready = threading.Event()
    runners: list[web.AppRunner] = []
    failure: list[BaseException] = []

    def _run() -> None:
        asyncio.set_event_loop(loop)
        try:
            for app, host, port in sites:
                access_logger = logging.getLogger("aiohttp.access") if access_log else None
                runner = web.AppRunner(app, access_log=access_logger)
                loop.run_until_complete(runner.setup())
                runners.append(runner)
                loop.run_until_complete(web.TCPSite(runner, host, port).start())
                log.info("Listening on %s:%s", host, port)
        except BaseException as exc:
            failure.append(exc)
            for runner in reversed(runners):
                with contextlib.suppress(Exception):
                    loop.run_until_complete(runner.cleanup())
            ready.set()
            loop.close()
            return
        ready.set()
        try:
            loop.run_forever()
        finally:
            for runner in reversed(runners):
                with contextlib.suppress(Exception):
                    loop.run_until_complete(runner.cleanup())
            loop.close()

    thread = threading.Thread(target=_run, name="keyoverlay", daemon=True)
    thread.start()
    ready.wait()
    if failure:
        thread.join()
        raise RuntimeError(f"unable to start KeyOverlay servers: {failure[0]}") from failure[0]
    return ServerHandle(thread, loop, runners, runtime)


def configure_logging(cfg: Dict[str, Any], override: str | None = None) -> None:
    level = config.log_level(cfg)
    if override:
        level = getattr(logging, override.upper(), level)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    _quiet_noisy_dependencies()


def cli_main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="KeyOverlay control plane and overlay broadcaster.")
    parser.add_argument("--host", help="Override bind host for every server (defaults to config).")
    parser.add_argument("--ws-port", type=int, help="Override the overlay WebSocket port.")
    parser.add_argument("--http-port", type=int, help="Override the overlay page port.")
    parser.add_argument("--control-port", type=int, help="Override the control API port.")
    parser.add_argument("--store", help="Path of the settings store JSON file.")
    parser.add_argument(
        "--backend",
        choices=sorted(config.CAPTURE_BACKENDS),
        help="Capture backend (defaults to config).",
    )
    parser.add_argument("--access-log", action="store_true", help="Enable aiohttp access logs.")
    parser.add_argument("--log-level", help="Python logging level (defaults to config).")
    args = parser.parse_args(argv)

    cfg = copy.deepcopy(config.reload_cfg())
    configure_logging(cfg, args.log_level)
    log = logging.getLogger("keyoverlay.server")

    if args.host:
        cfg["overlay"]["host"] = args.host
        cfg["control"]["host"] = args.host
    if args.ws_port:
        cfg["overlay"]["ws_port"] = args.ws_port
    if args.http_port:
        cfg["overlay"]["http_port"] = args.http_port
    if args.control_port:
        cfg["control"]["port"] = args.control_port
    if args.store:
        cfg["store"]["path"] = args.store
    if args.backend:
        cfg["capture"]["backend"] = args.backend

    active = config.active_config_path()
    log.info("Using config %s", active if active is not None else "<built-in defaults>")
    log.info("Settings store %s", config.store_path(cfg))

    try:
        handle = start_server_in_thread(cfg, access_log=args.access_log)
    except RuntimeError as exc:
        log.error("%s", exc)
        return 1

    try:
        while handle.thread.is_alive():
            time.sleep(1.0)
    except KeyboardInterrupt:
        pass
    handle.stop()
    return 0


if __name__ == "__main__":
    raise SystemExit(cli_main())
