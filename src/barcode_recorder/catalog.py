"""Persisted catalog of recorded groups and saved group names."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Iterator

from .store import KeyValueStore

logger = logging.getLogger(__name__)

CATALOG_KEY = "group_barcodes"
GROUP_NAMES_KEY = "saved_group_names"


@dataclass(frozen=True, slots=True)
class GroupEntry:
    """Codes collected during one completed recording session."""

    group: str
    barcodes: tuple[str, ...]

    def __post_init__(self) -> None:
        if not isinstance(self.group, str):
            raise ValueError("Group name must be a string")
        barcodes = tuple(self.barcodes)
        if not all(isinstance(code, str) for code in barcodes):
            raise ValueError("Barcodes must be strings")
        object.__setattr__(self, "barcodes", barcodes)

    def to_dict(self) -> dict[str, object]:
        return {"group": self.group, "barcodes": list(self.barcodes)}


def _parse_entry(value: Any) -> GroupEntry:
    if not isinstance(value, dict):
        raise ValueError("Catalog entries must be JSON objects")
    barcodes = value.get("barcodes")
    if not isinstance(barcodes, list):
        raise ValueError("Catalog entry barcodes must be a list")
    return GroupEntry(group=value.get("group"), barcodes=tuple(barcodes))


def _load_json_list(store: KeyValueStore, key: str) -> list[Any]:
    raw = store.get(key)
    if raw is None:
        return []
    payload = json.loads(raw)
    if not isinstance(payload, list):
        raise ValueError(f"Stored {key} must be a JSON list")
    return payload


class GroupCatalog:
    """Ordered, append-only history of completed groups."""

    def __init__(self, store: KeyValueStore, *, key: str = CATALOG_KEY) -> None:
        self._store = store
        self._key = key
        self._entries: list[GroupEntry] = self._load()

    def _load(self) -> list[GroupEntry]:
        try:
            return [_parse_entry(item) for item in _load_json_list(self._store, self._key)]
        except ValueError as exc:
            logger.warning("Discarding unreadable group catalog: %s", exc)
            return []

    def _save(self) -> None:
        payload = [entry.to_dict() for entry in self._entries]
        self._store.set(self._key, json.dumps(payload, ensure_ascii=False))

    @property
    def entries(self) -> tuple[GroupEntry, ...]:
        return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[GroupEntry]:
        return iter(tuple(self._entries))

    def has_group(self, name: str) -> bool:
        return any(entry.group == name for entry in self._entries)

    def append(self, entry: GroupEntry) -> None:
        if not entry.barcodes:
            raise ValueError("Cannot append a group without barcodes")
        self._entries.append(entry)
        self._save()
        logger.info("Stored group %r with %d code(s)", entry.group, len(entry.barcodes))

    def clear(self) -> None:
        self._entries.clear()
        self._save()
        logger.info("Cleared group catalog")

    def to_table(self) -> list[tuple[str, str]]:
        """Flatten the catalog into ``(barcode, group)`` rows."""

        return [
            (barcode, entry.group)
            for entry in self._entries
            for barcode in entry.barcodes
        ]


class SavedGroupNames:
    """User-curated group name suggestions."""

    def __init__(self, store: KeyValueStore, *, key: str = GROUP_NAMES_KEY) -> None:
        self._store = store
        self._key = key
        self._names: list[str] = self._load()

    def _load(self) -> list[str]:
        try:
            payload = _load_json_list(self._store, self._key)
        except ValueError as exc:
            logger.warning("Discarding unreadable saved group names: %s", exc)
            return []
        if not all(isinstance(name, str) for name in payload):
            logger.warning("Discarding saved group names with non-string values")
            return []
        return list(payload)

    def _save(self) -> None:
        self._store.set(self._key, json.dumps(self._names, ensure_ascii=False))

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(self._names)

    def add(self, name: str) -> bool:
        """Add *name*, returning ``False`` if it is blank or already saved."""

        if not isinstance(name, str) or not name.strip():
            return False
        cleaned = name.strip()
        if cleaned in self._names:
            return False
        self._names.append(cleaned)
        self._save()
        return True

    def remove(self, name: str) -> bool:
        remaining = [existing for existing in self._names if existing != name]
        if len(remaining) == len(self._names):
            return False
        self._names = remaining
        self._save()
        return True


__all__ = [
    "CATALOG_KEY",
    "GROUP_NAMES_KEY",
    "GroupCatalog",
    "GroupEntry",
    "SavedGroupNames",
]
