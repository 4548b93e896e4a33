"""Byte-capacity-limited key/blob media backing the persistent collections."""

from __future__ import annotations

import errno
import logging
import os
import re
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_.-]")
_CAPACITY_ERRNOS = {errno.ENOSPC, getattr(errno, "EDQUOT", errno.ENOSPC)}


class StorageError(Exception):
    """Base class for persistence failures."""


class CapacityExceededError(StorageError):
    """The medium has no room for the value being written."""


class StorageUnavailableError(StorageError):
    """The medium could not be read or written for a reason other than space."""


class StorageMedium(ABC):
    """Key -> blob store exposing get/set/remove."""

    @abstractmethod
    def get(self, key: str) -> Optional[bytes]:
        """Return the blob stored under ``key`` or ``None``."""

    @abstractmethod
    def set(self, key: str, value: bytes) -> None:
        """Store ``value`` under ``key``, replacing any previous blob atomically."""

    @abstractmethod
    def remove(self, key: str) -> None:
        """Delete ``key``; missing keys are ignored."""

    @abstractmethod
    def usage(self) -> int:
        """Return the number of bytes currently stored."""


class InMemoryStorageMedium(StorageMedium):
    """Dictionary-backed medium with an optional byte capacity."""

    def __init__(self, capacity_bytes: Optional[int] = None) -> None:
        self.capacity_bytes = capacity_bytes
        self._data: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: bytes) -> None:
        with self._lock:
            if self.capacity_bytes is not None:
                others = sum(len(blob) for name, blob in self._data.items() if name != key)
                if others + len(value) > self.capacity_bytes:
                    raise CapacityExceededError(
                        f"Writing {len(value)} bytes to '{key}' exceeds capacity "
                        f"of {self.capacity_bytes} bytes"
                    )
            self._data[key] = bytes(value)

    def remove(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def usage(self) -> int:
        with self._lock:
            return sum(len(blob) for blob in self._data.values())


class FileStorageMedium(StorageMedium):
    """One file per key inside ``root``, capped at ``capacity_bytes`` in total."""

    suffix = ".json"

    def __init__(self, root: Path, capacity_bytes: Optional[int] = None) -> None:
        self.root = Path(root)
        self.capacity_bytes = capacity_bytes
        self._lock = threading.Lock()

    def _path_for(self, key: str) -> Path:
        if not key:
            raise ValueError("Storage key must not be empty")
        return self.root / f"{_UNSAFE_KEY_CHARS.sub('_', key)}{self.suffix}"

    def _usage_excluding(self, path: Optional[Path]) -> int:
        if not self.root.exists():
            return 0
        total = 0
        for child in self.root.glob(f"*{self.suffix}"):
            if path is not None and child == path:
                continue
            try:
                total += child.stat().st_size
            except FileNotFoundError:
                continue
        return total

    def get(self, key: str) -> Optional[bytes]:
        path = self._path_for(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageUnavailableError(f"Cannot read '{key}': {exc}") from exc

    def set(self, key: str, value: bytes) -> None:
        path = self._path_for(key)
        with self._lock:
            if self.capacity_bytes is not None:
                used = self._usage_excluding(path)
                if used + len(value) > self.capacity_bytes:
                    raise CapacityExceededError(
                        f"Writing {len(value)} bytes to '{key}' exceeds capacity "
                        f"({used} of {self.capacity_bytes} bytes in use)"
                    )
            tmp_name: Optional[str] = None
            try:
                self.root.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(dir=self.root, prefix=".tmp-", suffix=".part")
                with os.fdopen(fd, "wb") as handle:
                    handle.write(value)
                    handle.flush()
                    os.fsync(handle.fileno())
                os.replace(tmp_name, path)
                tmp_name = None
            except OSError as exc:
                if exc.errno in _CAPACITY_ERRNOS:
                    raise CapacityExceededError(f"No space left writing '{key}': {exc}") from exc
                raise StorageUnavailableError(f"Cannot write '{key}': {exc}") from exc
            finally:
                if tmp_name is not None:
                    try:
                        os.unlink(tmp_name)
                    except OSError:
                        logger.debug("Could not remove temporary file %s", tmp_name)

    def remove(self, key: str) -> None:
        path = self._path_for(key)
        with self._lock:
            try:
                path.unlink()
            except FileNotFoundError:
                return
            except OSError as exc:
                raise StorageUnavailableError(f"Cannot remove '{key}': {exc}") from exc

    def usage(self) -> int:
        return self._usage_excluding(None)
