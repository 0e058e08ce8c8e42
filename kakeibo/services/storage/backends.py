"""
Key-Value Backend Implementations

InMemoryKeyValueBackend: for tests and ephemeral sessions.
FileKeyValueBackend: one JSON file per key, survives restarts.

Both enforce the same byte quota so that quota handling can be
exercised in tests exactly as it behaves on disk.
"""

import os
import tempfile
from pathlib import Path
from typing import Optional, Union

import structlog

from kakeibo.services.storage.interface import (
    KeyValueBackend,
    LocalPersistenceError,
    QuotaExceededError,
)


logger = structlog.get_logger(__name__)


def _size(value: str) -> int:
    return len(value.encode("utf-8"))


class InMemoryKeyValueBackend(KeyValueBackend):
    """Dictionary-backed storage with a quota."""

    def __init__(self, quota_bytes: int = 5 * 1024 * 1024):
        self._data: dict[str, str] = {}
        self._quota_bytes = quota_bytes

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        current = self.used_bytes() - _size(self._data.get(key, ""))
        if current + _size(value) > self._quota_bytes:
            raise QuotaExceededError(
                f"Writing {key} would exceed the {self._quota_bytes} byte quota"
            )
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)

    def used_bytes(self) -> int:
        return sum(_size(v) for v in self._data.values())


class FileKeyValueBackend(KeyValueBackend):
    """
    Directory-backed storage.

    Each key is stored as <directory>/<key>.json. Writes go to a temporary
    file first and are moved into place, so a crash mid-write leaves the
    previous value intact.
    """

    SUFFIX = ".json"

    def __init__(self, directory: Union[str, Path], quota_bytes: int = 5 * 1024 * 1024):
        self._directory = Path(directory)
        self._quota_bytes = quota_bytes
        self._directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        if not key or "/" in key or "\\" in key or key.startswith("."):
            raise ValueError(f"Invalid storage key: {key!r}")
        return self._directory / f"{key}{self.SUFFIX}"

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            # Unreadable bytes are handled like corrupt JSON by the record store
            logger.warning("storage_read_failed", key=key, error=str(e))
            return ""

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        existing = path.stat().st_size if path.exists() else 0
        if self.used_bytes() - existing + _size(value) > self._quota_bytes:
            raise QuotaExceededError(
                f"Writing {key} would exceed the {self._quota_bytes} byte quota"
            )

        try:
            fd, tmp_name = tempfile.mkstemp(dir=self._directory, prefix=".tmp-")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(value)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise LocalPersistenceError(f"Failed to write {key}: {e}") from e

    def remove(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as e:
            raise LocalPersistenceError(f"Failed to remove {key}: {e}") from e

    def keys(self) -> list[str]:
        return sorted(
            p.name[: -len(self.SUFFIX)]
            for p in self._directory.glob(f"*{self.SUFFIX}")
            if not p.name.startswith(".")
        )

    def used_bytes(self) -> int:
        return sum(
            p.stat().st_size
            for p in self._directory.glob(f"*{self.SUFFIX}")
            if not p.name.startswith(".")
        )
