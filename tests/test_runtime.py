import asyncio
import copy
import time

import pytest

from keyoverlay import config as config_module
from keyoverlay.capture_backend import NullCaptureBackend
from keyoverlay.capture_controller import CaptureState, PermissionState
from keyoverlay.runtime import OverlayRuntime, create_backend
from keyoverlay.settings_store import JsonBlobStore


def _cfg(tmp_path):
    cfg = copy.deepcopy(config_module._DEFAULTS)
    cfg["capture"]["permission_wait_seconds"] = 0.0
    cfg["capture"]["backend"] = "none"
    cfg["store"]["path"] = str(tmp_path / "settings.json")
    return cfg


async def _wait_for(predicate, timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


def test_startup_loads_settings_and_is_idempotent(tmp_path):
    async def runner():
        runtime = OverlayRuntime(_cfg(tmp_path))
        assert isinstance(runtime.backend, NullCaptureBackend)
        assert runtime.store.path == tmp_path / "settings.json"

        await runtime.startup()
        await runtime.startup()

        assert runtime.started
        assert runtime.settings.loaded
        assert runtime.hub.latest_settings["preset"] == "minimal-default"
        assert len(runtime.events.history_snapshot()) == 1

        await runtime.shutdown()
        assert not runtime.started

    asyncio.run(runner())


def test_backend_activity_crosses_threads_to_the_loop(tmp_path):
    async def runner():
        backend = NullCaptureBackend()
        runtime = OverlayRuntime(_cfg(tmp_path), backend=backend)
        await runtime.startup()
        await runtime.capture.start_capture()

        await asyncio.to_thread(backend.inject, "Ctrl+W")
        await _wait_for(lambda: runtime.capture.last_activity == "Ctrl+W")
        assert runtime.events.latest("last_activity")["payload"] == {"label": "Ctrl+W"}

        await runtime.shutdown()
        assert runtime.capture.state is CaptureState.IDLE
        assert backend.running is False

    asyncio.run(runner())


def test_settings_changes_reach_the_combo_tracker(tmp_path):
    async def runner():
        runtime = OverlayRuntime(_cfg(tmp_path))
        await runtime.startup()
        assert runtime.tracker.key_down("Z") is None

        await runtime.settings.update({"keyFilterEnabled": False})
        assert runtime.tracker.key_down("Z") == "Z"
        await runtime.shutdown()

    asyncio.run(runner())


def test_startup_permission_notice_is_announced(tmp_path):
    async def runner():
        backend = NullCaptureBackend(permission_granted=False, announce=True)
        runtime = OverlayRuntime(_cfg(tmp_path), backend=backend)
        await runtime.startup()

        await _wait_for(lambda: runtime.capture.permission is PermissionState.DENIED)
        assert runtime.events.latest("permission_changed")["payload"] == {"permission": "denied"}
        await runtime.shutdown()

    asyncio.run(runner())


def test_overlay_client_count_is_published(tmp_path):
    runtime = OverlayRuntime(_cfg(tmp_path))
    runtime.hub._notify_count(3)
    assert runtime.events.latest("overlay_clients_changed")["payload"] == {"count": 3}


def test_create_backend_choices(tmp_path):
    runtime = OverlayRuntime(_cfg(tmp_path))
    assert isinstance(create_backend({"capture": {"backend": "none"}}, runtime.tracker), NullCaptureBackend)
    with pytest.raises(ValueError):
        create_backend({"capture": {"backend": "evdev"}}, runtime.tracker)


def test_persisted_settings_survive_restart(tmp_path):
    async def runner():
        first = OverlayRuntime(_cfg(tmp_path))
        await first.startup()
        await first.settings.apply_preset("gaming")
        await first.shutdown()

        second = OverlayRuntime(_cfg(tmp_path), store=JsonBlobStore(tmp_path / "settings.json"))
        await second.startup()
        assert second.settings.get_settings().preset == "gaming"
        await second.shutdown()

    asyncio.run(runner())
