"""
Durable key-value storage.

Trackers persist serialized snapshots (entries, sync flags, cached streaks)
through the narrow ``KeyValueStore`` interface. Implementations enforce a
per-key size ceiling and never leave a partially written value behind:
either the old value or the new one is readable after a failed save.
"""

import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Protocol, runtime_checkable

from health_tracker_sync.utils.exceptions import (
    DataTooLargeError,
    PersistenceError,
    PersistenceVerificationError,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_VALUE_BYTES = 1_048_576

_SAFE_KEY = re.compile(r"^[A-Za-z0-9_.\-]+$")


@runtime_checkable
class KeyValueStore(Protocol):
    """Durable blob storage addressed by key."""

    def save(self, blob: bytes, key: str) -> None:
        """Persist ``blob`` under ``key``, replacing any previous value."""
        ...

    def load(self, key: str) -> bytes | None:
        """Return the stored blob, or None when the key is absent."""
        ...

    def remove(self, key: str) -> None:
        """Delete the key. Removing an absent key is not an error."""
        ...

    def exists(self, key: str) -> bool:
        """Whether a value is stored under ``key``."""
        ...


def _check_size(blob: bytes, key: str, limit: int) -> None:
    if len(blob) > limit:
        raise DataTooLargeError(key, len(blob), limit)


class InMemoryKeyValueStore:
    """Process-local store, used by tests and ephemeral sessions."""

    def __init__(self, max_value_bytes: int = DEFAULT_MAX_VALUE_BYTES) -> None:
        self.max_value_bytes = max_value_bytes
        self._data: dict[str, bytes] = {}

    def save(self, blob: bytes, key: str) -> None:
        _check_size(blob, key, self.max_value_bytes)
        self._data[key] = bytes(blob)

    def load(self, key: str) -> bytes | None:
        return self._data.get(key)

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def exists(self, key: str) -> bool:
        return key in self._data


class FileKeyValueStore:
    """
    One file per key inside a directory.

    Writes go to a temporary file in the same directory and are moved into
    place with ``os.replace``, then read back for verification.
    """

    def __init__(self, directory: str | Path, max_value_bytes: int = DEFAULT_MAX_VALUE_BYTES) -> None:
        """
        Initialize file store.

        Args:
            directory: Directory that holds one file per key.
            max_value_bytes: Per-key size ceiling.
        """
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.max_value_bytes = max_value_bytes

    def _path(self, key: str) -> Path:
        if not _SAFE_KEY.match(key):
            raise PersistenceError(f"Invalid storage key: {key!r}", key)
        return self.directory / f"{key}.json"

    def save(self, blob: bytes, key: str) -> None:
        """
        Persist a blob atomically.

        Raises:
            DataTooLargeError: If the blob exceeds the size ceiling (nothing is written).
            PersistenceVerificationError: If the value cannot be read back.
            PersistenceError: If the write fails.
        """
        path = self._path(key)
        _check_size(blob, key, self.max_value_bytes)

        tmp_name: str | None = None
        try:
            with tempfile.NamedTemporaryFile(
                "wb", dir=self.directory, prefix=f".{key}.", suffix=".tmp", delete=False
            ) as tmp:
                tmp_name = tmp.name
                tmp.write(blob)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, path)
            tmp_name = None
        except OSError as e:
            raise PersistenceError(f"Failed to persist data for key '{key}': {e}", key) from e
        finally:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)

        if self.load(key) != blob:
            raise PersistenceVerificationError(f"Failed to verify data for key '{key}'", key)

        logger.debug(f"Saved {len(blob)} bytes under {key}")

    def load(self, key: str) -> bytes | None:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return path.read_bytes()
        except OSError as e:
            raise PersistenceError(f"Failed to read data for key '{key}': {e}", key) from e

    def remove(self, key: str) -> None:
        path = self._path(key)
        if not path.exists():
            return
        try:
            path.unlink()
        except OSError as e:
            raise PersistenceError(f"Failed to remove data for key '{key}': {e}", key) from e

        if path.exists():
            raise PersistenceVerificationError(f"Failed to verify removal of key '{key}'", key)

    def exists(self, key: str) -> bool:
        return self._path(key).exists()
