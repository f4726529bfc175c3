"""JSON-file backed key/blob store for persisted overlay settings."""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any

from .errors import SettingsPersistenceError

log = logging.getLogger("keyoverlay.store")


class JsonBlobStore:
    """One JSON object on disk mapping keys to whole blobs.

    ``get`` returns ``None`` for a missing key or an unreadable file. ``set``
    rewrites the whole file through a temporary sibling and ``os.replace``.
    """

    def __init__(self, path: str | os.PathLike[str]):
        self._path = Path(path)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _read_all(self) -> dict[str, Any]:
        try:
            with self._path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
        except FileNotFoundError:
            return {}
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            log.warning("Ignoring corrupt settings store %s: %s", self._path, exc)
            return {}
        except OSError as exc:
            raise SettingsPersistenceError(
                f"unable to read settings store {self._path}: {exc}"
            ) from exc
        if not isinstance(data, dict):
            log.warning("Ignoring settings store %s: top level is not an object", self._path)
            return {}
        return data

    def get(self, key: str) -> Any | None:
        with self._lock:
            return self._read_all().get(key)

    def set(self, key: str, blob: Any) -> None:
        with self._lock:
            data = self._read_all()
            data[key] = blob
            tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                with tmp_path.open("w", encoding="utf-8") as handle:
                    json.dump(data, handle, indent=2, sort_keys=True)
                    handle.write("\n")
                os.replace(tmp_path, self._path)
            except (OSError, TypeError, ValueError) as exc:
                try:
                    tmp_path.unlink()
                except OSError:
                    pass
                raise SettingsPersistenceError(
                    f"unable to write settings store {self._path}: {exc}"
                ) from exc
        log.debug("Persisted %s to %s", key, self._path)


__all__ = ["JsonBlobStore"]
