"""Persistent JSON store of key metadata."""

from __future__ import annotations

import dataclasses
import json
import os
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path


class KeyType(str, Enum):
    """Type of a cryptographic key."""

    ZMK = "ZMK"
    ZPK = "ZPK"
    TMK = "TMK"
    PVK = "PVK"
    KEK = "KEK"


@dataclass
class KeyEntry:
    """A stored key record."""

    name: str
    type: KeyType | str
    length: int
    check_value: str
    created_at: datetime | None = None


class KeyStoreError(RuntimeError):
    """Raised when the key store cannot complete an operation."""


def _parse_time(value: str) -> datetime:
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


def _coerce_type(value: str) -> KeyType | str:
    try:
        return KeyType(value)
    except ValueError:
        return value


def _entry_to_json(entry: KeyEntry) -> dict:
    key_type = entry.type.value if isinstance(entry.type, KeyType) else entry.type
    return {
        "name": entry.name,
        "type": key_type,
        "length": entry.length,
        "check_value": entry.check_value,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }


def _entry_from_json(data: dict) -> KeyEntry:
    created = data.get("created_at")
    return KeyEntry(
        name=data.get("name", ""),
        type=_coerce_type(data.get("type", "")),
        length=int(data.get("length", 0)),
        check_value=data.get("check_value", ""),
        created_at=_parse_time(created) if created else None,
    )


class KeyStore:
    """Thread-safe key metadata store persisted to a JSON file."""

    def __init__(self, store_path: str | os.PathLike) -> None:
        self.file_path = Path(store_path)
        try:
            self.file_path.parent.mkdir(mode=0o750, parents=True, exist_ok=True)
        except OSError as exc:
            raise KeyStoreError(f"failed to create storage directory: {exc}") from exc
        self._lock = threading.RLock()
        self._keys: dict[str, KeyEntry] = {}
        try:
            self._load()
        except FileNotFoundError:
            pass
        except (OSError, ValueError, TypeError, AttributeError) as exc:
            raise KeyStoreError(f"failed to load keys: {exc}") from exc

    def _load(self) -> None:
        raw = json.loads(self.file_path.read_text(encoding="utf-8"))
        if raw is None:
            return
        if not isinstance(raw, dict):
            raise ValueError("key store must hold a JSON object")
        self._keys = {name: _entry_from_json(item) for name, item in raw.items()}

    def _save(self) -> None:
        payload = json.dumps(
            {name: _entry_to_json(entry) for name, entry in self._keys.items()},
            indent=2,
        )
        fd = os.open(self.file_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(payload)

    def store(self, entry: KeyEntry) -> None:
        """Add or replace an entry and persist the store."""
        with self._lock:
            if not entry.name:
                raise KeyStoreError("key name cannot be empty")
            stored = dataclasses.replace(
                entry, created_at=entry.created_at or datetime.now().astimezone()
            )
            self._keys[stored.name] = stored
            self._save()

    def get(self, name: str) -> KeyEntry | None:
        """Return the entry with this name, or None."""
        with self._lock:
            entry = self._keys.get(name)
            return dataclasses.replace(entry) if entry is not None else None

    def list(self) -> list[KeyEntry]:
        """Return all entries."""
        with self._lock:
            return [dataclasses.replace(entry) for entry in self._keys.values()]

    def delete(self, name: str) -> None:
        """Remove an entry and persist the store."""
        with self._lock:
            if name not in self._keys:
                raise KeyStoreError("key not found")
            del self._keys[name]
            self._save()

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._keys