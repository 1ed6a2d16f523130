"""Small keyed JSON document persisted to disk, cached in memory."""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict, Mapping, Optional


class JsonStateStore:
    """Persist ``{key: mapping}`` entries under one root key of a JSON file.

    Read failures degrade to an empty document; write failures are logged and
    swallowed because callers only keep advisory copies here.
    """

    def __init__(self, path: Path, root_key: str, *, logger: Optional[logging.Logger] = None) -> None:
        self._path = Path(path)
        self._root_key = root_key
        self._cache: Optional[Dict[str, Dict[str, Any]]] = None
        self._lock = threading.Lock()
        self._logger = logger or logging.getLogger(__name__)

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> Dict[str, Dict[str, Any]]:
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
            entries = payload.get(self._root_key, {})
            if not isinstance(entries, dict):
                raise ValueError("root is not an object")
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError, ValueError, AttributeError) as exc:
            self._logger.warning("Failed to load state from %s: %s", self._path, exc)
            return {}
        return {str(key): dict(value) for key, value in entries.items() if isinstance(value, Mapping)}

    def _write(self, entries: Mapping[str, Mapping[str, Any]]) -> None:
        payload = {self._root_key: {key: dict(value) for key, value in entries.items()}}
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2, default=str), encoding="utf-8")
            os.replace(tmp_path, self._path)
        except OSError as exc:
            self._logger.warning("Failed to persist state to %s: %s", self._path, exc)

    def load(self, *, reload: bool = False) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            if reload or self._cache is None:
                self._cache = self._read()
            return {key: dict(value) for key, value in self._cache.items()}

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        entry = self.load().get(key)
        return dict(entry) if entry is not None else None

    def put(self, key: str, value: Mapping[str, Any]) -> None:
        with self._lock:
            if self._cache is None:
                self._cache = self._read()
            self._cache[key] = dict(value)
            self._write(self._cache)

    def discard(self, key: Optional[str] = None) -> None:
        """Drop one entry, or every entry when ``key`` is None."""
        with self._lock:
            if self._cache is None:
                self._cache = self._read()
            if key is None:
                self._cache = {}
            elif self._cache.pop(key, None) is None:
                return
            self._write(self._cache)

    def reset(self, *, path: Optional[Path] = None) -> None:
        """Clear cached state and optionally repoint the underlying file."""
        with self._lock:
            if path is not None:
                self._path = Path(path)
            self._cache = None


__all__ = ["JsonStateStore"]
