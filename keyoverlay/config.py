#!/usr/bin/env python3
"""
Runtime configuration loader for KeyOverlay.

Load order (first found wins, later entries are merged underneath):
  1) KEYOVERLAY_CONFIG (env, absolute or relative to CWD)
  2) ~/.config/keyoverlay/config.yaml
  3) <project_root>/config.yaml (derived from this file's location)
  4) ./config.yaml (current working directory)

Environment variables override file values when present.

This file only covers how the process runs (ports, store location, capture
backend, logging). The overlay appearance lives in the settings blob owned by
``keyoverlay.settings_sync``.
"""
from __future__ import annotations

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict

import yaml

_DEFAULTS: Dict[str, Any] = {
    "overlay": {
        "host": "127.0.0.1",
        "ws_port": 9001,
        "http_port": 9002,
        "page_path": "",
    },
    "control": {
        "host": "127.0.0.1",
        "port": 9003,
    },
    "store": {
        "path": "~/.config/keyoverlay/settings.json",
        "key": "settings",
    },
    "capture": {
        "backend": "pynput",
        "permission_wait_seconds": 2.0,
    },
    "events": {
        "history_limit": 256,
        "max_queue_size": 128,
    },
    "logging": {
        "dev_mode": False,  # if True or ENV DEV=1, enable verbose debug
        "level": "INFO",
    },
}

CAPTURE_BACKENDS = {"pynput", "none"}

_cfg_cache: Dict[str, Any] | None = None
_search_paths: list[Path] = []
_active_config_path: Path | None = None

log = logging.getLogger("keyoverlay.config")


def _load_yaml_if_exists(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as exc:
        # Ignore parse errors and continue with other locations/defaults
        log.warning("Ignoring unreadable config %s: %s", path, exc)
        return {}
    if isinstance(data, dict):
        return data
    log.warning("Ignoring config %s: top level is not a mapping", path)
    return {}


def _candidate_search_paths(project_root: Path) -> list[Path]:
    search: list[Path] = []
    env_cfg = os.getenv("KEYOVERLAY_CONFIG")
    if env_cfg:
        search.append(Path(env_cfg).expanduser())
    search.extend(
        [
            Path("~/.config/keyoverlay/config.yaml").expanduser(),
            project_root / "config.yaml",
            Path.cwd() / "config.yaml",
        ]
    )
    seen: set[Path] = set()
    ordered: list[Path] = []
    for candidate in search:
        try:
            resolved = candidate.resolve()
        except OSError:
            resolved = candidate
        if resolved in seen:
            continue
        seen.add(resolved)
        ordered.append(resolved)
    return ordered


def _deep_merge(base: Dict[str, Any], extra: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(base)
    for k, v in extra.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _apply_env_overrides(cfg: Dict[str, Any]) -> None:
    # DEV mode
    if os.getenv("DEV") == "1":
        cfg.setdefault("logging", {})["dev_mode"] = True
    if "KEYOVERLAY_LOG_LEVEL" in os.environ:
        value = os.environ["KEYOVERLAY_LOG_LEVEL"].strip()
        if value:
            cfg.setdefault("logging", {})["level"] = value.upper()
    if "KEYOVERLAY_STORE" in os.environ:
        value = os.environ["KEYOVERLAY_STORE"].strip()
        if value:
            cfg.setdefault("store", {})["path"] = value
    if "KEYOVERLAY_HOST" in os.environ:
        value = os.environ["KEYOVERLAY_HOST"].strip()
        if value:
            cfg.setdefault("overlay", {})["host"] = value
            cfg.setdefault("control", {})["host"] = value

    env_map = {
        "KEYOVERLAY_WS_PORT": ("overlay", "ws_port", int),
        "KEYOVERLAY_HTTP_PORT": ("overlay", "http_port", int),
        "KEYOVERLAY_CONTROL_PORT": ("control", "port", int),
        "KEYOVERLAY_PERMISSION_WAIT": ("capture", "permission_wait_seconds", float),
    }
    for env_key, (section, key, cast) in env_map.items():
        if env_key in os.environ:
            try:
                cfg.setdefault(section, {})[key] = cast(os.environ[env_key])
            except ValueError:
                pass

    if "KEYOVERLAY_CAPTURE_BACKEND" in os.environ:
        value = os.environ["KEYOVERLAY_CAPTURE_BACKEND"].strip().lower()
        if value in CAPTURE_BACKENDS:
            cfg.setdefault("capture", {})["backend"] = value


def get_cfg() -> Dict[str, Any]:
    global _cfg_cache, _search_paths, _active_config_path
    if _cfg_cache is not None:
        return _cfg_cache

    cfg = copy.deepcopy(_DEFAULTS)

    # Derive project root relative to this file (keyoverlay/ -> project root)
    project_root = Path(__file__).resolve().parent.parent

    search = _candidate_search_paths(project_root)
    _search_paths = list(search)

    active: Path | None = None
    for candidate in search:
        try:
            if candidate.exists():
                active = candidate
                break
        except OSError:
            pass

    for candidate in reversed(search):
        cfg = _deep_merge(cfg, _load_yaml_if_exists(candidate))

    _active_config_path = active
    _apply_env_overrides(cfg)
    _cfg_cache = cfg
    return cfg


def reload_cfg() -> Dict[str, Any]:
    global _cfg_cache
    _cfg_cache = None
    return get_cfg()


def active_config_path() -> Path | None:
    if _cfg_cache is None:
        get_cfg()
    return _active_config_path


def search_paths() -> list[Path]:
    if not _search_paths:
        get_cfg()
    return list(_search_paths)


def store_path(cfg: Dict[str, Any] | None = None) -> Path:
    cfg = cfg if cfg is not None else get_cfg()
    raw = cfg.get("store", {}).get("path") or _DEFAULTS["store"]["path"]
    return Path(str(raw)).expanduser()


def log_level(cfg: Dict[str, Any] | None = None) -> int:
    cfg = cfg if cfg is not None else get_cfg()
    logging_cfg = cfg.get("logging", {})
    if logging_cfg.get("dev_mode"):
        return logging.DEBUG
    level_name = str(logging_cfg.get("level") or "INFO").upper()
    return getattr(logging, level_name, logging.INFO)
