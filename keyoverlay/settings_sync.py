"""Authoritative overlay settings: load, migrate, update, persist and broadcast."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict
from typing import Any, Callable, Mapping, Protocol

from . import events as event_types
from .errors import SettingsNotLoadedError
from .events import ControlEventBus
from .presets import (
    DEFAULT_KEY_FILTER,
    DEFAULT_SETTINGS,
    known_tags,
    resolve_preset,
)
from .settings_model import OverlaySettings, normalize_persisted, validate_patch

SCHEMA_VERSION = 2
SCHEMA_VERSION_KEY = "schemaVersion"


class BlobStore(Protocol):
    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, blob: Any) -> None: ...


class SettingsBroadcaster(Protocol):
    def broadcast_settings(self, payload: dict[str, Any]) -> None: ...


def _blob_version(raw: Mapping[str, Any]) -> int | None:
    version = raw.get(SCHEMA_VERSION_KEY)
    if isinstance(version, bool) or not isinstance(version, int):
        return None
    return version


def migrate_blob(raw: Any, *, logger: logging.Logger | None = None) -> tuple[OverlaySettings, bool]:
    """Merge a persisted blob over the built-in default.

    Returns the migrated settings and whether the blob on disk should be
    rewritten. Fixups:

    * a blank key filter gets the default filter back and filtering re-enabled
      (checked on every load);
    * blobs written before schema version 2 get mouse click combos switched on
      and bare mouse clicks switched off.
    """
    log = logger or logging.getLogger("keyoverlay.settings")
    if raw is None:
        return DEFAULT_SETTINGS, False
    if not isinstance(raw, Mapping):
        log.warning("Persisted settings are not an object; using defaults")
        return DEFAULT_SETTINGS, True

    version = _blob_version(raw)
    legacy = version is None or version < SCHEMA_VERSION
    body = {key: value for key, value in raw.items() if key != SCHEMA_VERSION_KEY}

    settings, ignored = normalize_persisted(body, DEFAULT_SETTINGS, known_tags=known_tags())
    if ignored:
        log.info("Ignored persisted settings fields: %s", ", ".join(sorted(ignored)))

    if not settings.key_filter.strip():
        settings = settings.merged(
            {"key_filter": DEFAULT_KEY_FILTER, "key_filter_enabled": True}
        )
    if legacy:
        log.info(
            "Migrating settings from schema version %s to %d",
            version if version is not None else "<none>",
            SCHEMA_VERSION,
        )
        settings = settings.merged(
            {"show_mouse_click_combos": True, "show_mouse_clicks": False}
        )

    return settings, legacy or settings.to_payload() != body


class SettingsSyncService:
    """Sole owner of the in-memory :class:`OverlaySettings`.

    Every change goes through ``_commit``: under one lock the new value
    replaces the old, is written to the store and is pushed to render
    clients, in the order changes were requested. Persist or broadcast
    failures are reported on the event bus and never roll back memory.
    """

    def __init__(
        self,
        store: BlobStore,
        *,
        hub: SettingsBroadcaster | None = None,
        events: ControlEventBus | None = None,
        store_key: str = "settings",
        on_change: Callable[[OverlaySettings], None] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._store = store
        self._hub = hub
        self._events = events
        self._store_key = store_key
        self._on_change = on_change
        self._logger = logger or logging.getLogger("keyoverlay.settings")
        self._current: OverlaySettings | None = None
        self._lock = asyncio.Lock()

    @property
    def loaded(self) -> bool:
        return self._current is not None

    def get_settings(self) -> OverlaySettings:
        if self._current is None:
            raise SettingsNotLoadedError("settings have not been loaded yet")
        return self._current

    def snapshot(self) -> dict[str, Any]:
        return self.get_settings().to_payload()

    async def load(self) -> OverlaySettings:
        async with self._lock:
            try:
                raw = await asyncio.to_thread(self._store.get, self._store_key)
            except Exception as exc:
                self._logger.error("Could not read persisted settings, using defaults: %s", exc)
                self._publish_error("load", exc)
                raw = None

            settings, rewrite = migrate_blob(raw, logger=self._logger)
            if rewrite:
                await self._persist(settings)
            self._current = settings
            self._logger.info(
                "Settings loaded (preset=%s)", settings.preset if settings.preset else "custom"
            )
            self._propagate(settings)
        return settings

    async def update(self, patch: Mapping[str, Any]) -> OverlaySettings:
        """Merge a partial patch (camelCase or snake_case keys) into the settings.

        The caller decides the preset tag; a hand edit should send ``preset: None``.
        """
        self.get_settings()
        values = validate_patch(patch, known_tags=known_tags())
        return await self._commit(values)

    async def apply_preset(self, name: str) -> OverlaySettings:
        value = resolve_preset(name)
        self.get_settings()
        return await self._commit(asdict(value))

    async def reset_to_default(self) -> OverlaySettings:
        self.get_settings()
        return await self._commit(asdict(DEFAULT_SETTINGS))

    async def _commit(self, values: Mapping[str, Any]) -> OverlaySettings:
        async with self._lock:
            current = self.get_settings()
            updated = current.merged(values)
            self._current = updated
            await self._persist(updated)
            self._propagate(updated)
        return updated

    async def _persist(self, settings: OverlaySettings) -> bool:
        blob = settings.to_payload()
        blob[SCHEMA_VERSION_KEY] = SCHEMA_VERSION
        try:
            await asyncio.to_thread(self._store.set, self._store_key, blob)
        except Exception as exc:
            self._logger.error("Failed to persist settings: %s", exc)
            self._publish_error("persist", exc)
            return False
        return True

    def _propagate(self, settings: OverlaySettings) -> None:
        payload = settings.to_payload()
        if self._hub is not None:
            try:
                self._hub.broadcast_settings(payload)
            except Exception as exc:
                self._logger.error("Failed to broadcast settings: %s", exc)
                self._publish_error("broadcast", exc)
        if self._on_change is not None:
            self._on_change(settings)
        if self._events is not None:
            self._events.publish(event_types.SETTINGS_CHANGED, {"settings": payload})

    def _publish_error(self, stage: str, exc: BaseException) -> None:
        if self._events is not None:
            self._events.publish(
                event_types.SETTINGS_ERROR, {"stage": stage, "error": str(exc)}
            )


__all__ = [
    "BlobStore",
    "SCHEMA_VERSION",
    "SettingsBroadcaster",
    "SettingsSyncService",
    "migrate_blob",
]
