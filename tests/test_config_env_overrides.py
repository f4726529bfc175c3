"""Tests covering config file layering and environment overrides."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from keyoverlay import config as config_module

_ENV_KEYS = (
    "DEV",
    "KEYOVERLAY_CONFIG",
    "KEYOVERLAY_LOG_LEVEL",
    "KEYOVERLAY_STORE",
    "KEYOVERLAY_HOST",
    "KEYOVERLAY_WS_PORT",
    "KEYOVERLAY_HTTP_PORT",
    "KEYOVERLAY_CONTROL_PORT",
    "KEYOVERLAY_PERMISSION_WAIT",
    "KEYOVERLAY_CAPTURE_BACKEND",
)


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch, tmp_path: Path):
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.chdir(tmp_path)
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    _reset_config_state(monkeypatch)


def _reset_config_state(monkeypatch) -> None:
    monkeypatch.setattr(config_module, "_cfg_cache", None, raising=False)
    monkeypatch.setattr(config_module, "_search_paths", [], raising=False)
    monkeypatch.setattr(config_module, "_active_config_path", None, raising=False)


def test_defaults_without_any_config() -> None:
    cfg = config_module.get_cfg()

    assert cfg["overlay"]["ws_port"] == 9001
    assert cfg["overlay"]["http_port"] == 9002
    assert cfg["control"]["port"] == 9003
    assert cfg["capture"]["backend"] == "pynput"
    assert config_module.log_level(cfg) == logging.INFO


def test_explicit_config_file_is_merged(monkeypatch, tmp_path: Path) -> None:
    config_path = tmp_path / "custom.yaml"
    config_path.write_text("overlay:\n  ws_port: 9101\ncapture:\n  backend: none\n")
    monkeypatch.setenv("KEYOVERLAY_CONFIG", str(config_path))

    cfg = config_module.get_cfg()

    assert cfg["overlay"]["ws_port"] == 9101
    assert cfg["overlay"]["http_port"] == 9002
    assert cfg["capture"]["backend"] == "none"
    assert config_module.active_config_path() == config_path.resolve()


def test_port_and_host_env_overrides(monkeypatch) -> None:
    monkeypatch.setenv("KEYOVERLAY_WS_PORT", "9201")
    monkeypatch.setenv("KEYOVERLAY_HTTP_PORT", "9202")
    monkeypatch.setenv("KEYOVERLAY_CONTROL_PORT", "9203")
    monkeypatch.setenv("KEYOVERLAY_HOST", "0.0.0.0")
    monkeypatch.setenv("KEYOVERLAY_PERMISSION_WAIT", "0.5")

    cfg = config_module.get_cfg()

    assert cfg["overlay"]["ws_port"] == 9201
    assert cfg["overlay"]["http_port"] == 9202
    assert cfg["control"]["port"] == 9203
    assert cfg["overlay"]["host"] == "0.0.0.0"
    assert cfg["control"]["host"] == "0.0.0.0"
    assert cfg["capture"]["permission_wait_seconds"] == 0.5


def test_invalid_env_values_are_ignored(monkeypatch) -> None:
    monkeypatch.setenv("KEYOVERLAY_WS_PORT", "not-a-port")
    monkeypatch.setenv("KEYOVERLAY_CAPTURE_BACKEND", "evdev")

    cfg = config_module.get_cfg()

    assert cfg["overlay"]["ws_port"] == 9001
    assert cfg["capture"]["backend"] == "pynput"


def test_backend_override(monkeypatch) -> None:
    monkeypatch.setenv("KEYOVERLAY_CAPTURE_BACKEND", "NONE")
    assert config_module.get_cfg()["capture"]["backend"] == "none"


def test_dev_mode_forces_debug(monkeypatch) -> None:
    monkeypatch.setenv("KEYOVERLAY_LOG_LEVEL", "warning")
    cfg = config_module.get_cfg()
    assert config_module.log_level(cfg) == logging.WARNING

    monkeypatch.setenv("DEV", "1")
    cfg = config_module.reload_cfg()
    assert cfg["logging"]["dev_mode"] is True
    assert config_module.log_level(cfg) == logging.DEBUG


def test_store_path_expands_home(monkeypatch, tmp_path: Path) -> None:
    cfg = config_module.get_cfg()
    assert config_module.store_path(cfg) == tmp_path / "home" / ".config" / "keyoverlay" / "settings.json"

    monkeypatch.setenv("KEYOVERLAY_STORE", str(tmp_path / "blob.json"))
    cfg = config_module.reload_cfg()
    assert config_module.store_path(cfg) == tmp_path / "blob.json"
