"""String key-value persistence for engine state."""
from __future__ import annotations

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from threading import Lock

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Minimal get/set-string storage interface."""

    @abstractmethod
    def get(self, key: str) -> str | None:  # pragma: no cover - interface only
        raise NotImplementedError

    @abstractmethod
    def set(self, key: str, value: str) -> None:  # pragma: no cover - interface only
        raise NotImplementedError


class MemoryStore(KeyValueStore):
    """Volatile store used when persistence is not wanted."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._values: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = str(value)


class JsonFileStore(KeyValueStore):
    """Stores string values in a JSON object on disk.

    Every ``set`` rewrites the file through a synced temporary file and an
    atomic rename, so a value is durable once ``set`` returns.
    """

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)
        self._lock = Lock()
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._values = self._load()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Unable to read state file %s: %s", self._path, exc)
            return {}
        if not isinstance(payload, dict):
            logger.warning("State file %s does not contain a JSON object", self._path)
            return {}
        return {str(key): value for key, value in payload.items() if isinstance(value, str)}

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._values[key] = str(value)
            self._write_locked()

    def _write_locked(self) -> None:
        data = json.dumps(self._values, indent=2, ensure_ascii=False)
        fd, temp_name = tempfile.mkstemp(
            prefix=f".{self._path.name}.", suffix=".tmp", dir=self._path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(temp_name, self._path)
        except BaseException:
            try:
                os.unlink(temp_name)
            except OSError:
                pass
            raise


__all__ = ["JsonFileStore", "KeyValueStore", "MemoryStore"]
