"""Bounded persistent collections with write-time eviction."""

from __future__ import annotations

import json
import logging
import threading
from typing import Any, Callable, Dict, Generic, List, Optional, Protocol, Type, TypeVar

from modules.storage.medium import CapacityExceededError, StorageError, StorageMedium

logger = logging.getLogger(__name__)


class StorageExhaustedError(StorageError):
    """Even a single record no longer fits on the device."""

    user_message = "Device storage is full. The image could not be saved."

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.user_message)


class StorableRecord(Protocol):
    id: str

    @property
    def size_bytes(self) -> int: ...

    def to_dict(self) -> Dict[str, Any]: ...

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StorableRecord": ...


R = TypeVar("R", bound=StorableRecord)

CHANGE_NOT_SAVED = "Device storage is full. The change could not be saved."


class QuotaAwareStore(Generic[R]):
    """Newest-first collection persisted as one JSON blob under ``key``.

    Writes enforce ``max_items`` first, then the byte ceiling of the medium
    (and ``max_bytes`` when set) by dropping the oldest records one at a time
    until the blob fits. The record being inserted is always evicted last.
    """

    def __init__(
        self,
        medium: StorageMedium,
        key: str,
        record_type: Type[R],
        max_items: int,
        max_bytes: Optional[int] = None,
    ) -> None:
        if max_items < 1:
            raise ValueError("max_items must be at least 1")
        self.medium = medium
        self.key = key
        self.record_type = record_type
        self.max_items = max_items
        self.max_bytes = max_bytes
        self._lock = threading.RLock()

    # Reads -------------------------------------------------------------------
    def list(self) -> List[R]:
        """Return the stored records, most recently inserted first."""
        with self._lock:
            return self._load()

    def get(self, record_id: str) -> Optional[R]:
        """Return the record with ``record_id`` if present."""
        for record in self.list():
            if record.id == record_id:
                return record
        return None

    def total_bytes(self) -> int:
        """Return the cumulative encoded image size of the stored records."""
        return sum(record.size_bytes for record in self.list())

    def __len__(self) -> int:
        return len(self.list())

    # Writes ------------------------------------------------------------------
    def insert(self, record: R) -> List[R]:
        """Prepend ``record`` and persist, evicting the oldest entries on overflow.

        Returns the records that were persisted. Raises
        ``StorageExhaustedError`` when the new record cannot be stored even
        after the collection was cleared.
        """
        with self._lock:
            current = self._load()
            if any(existing.id == record.id for existing in current):
                raise ValueError(f"Record id '{record.id}' already exists in '{self.key}'")

            candidate = [record, *current][: self.max_items]
            dropped = len(current) + 1 - len(candidate)
            if dropped:
                logger.info("Count ceiling %d reached for '%s'; dropping %d oldest", self.max_items, self.key, dropped)

            while True:
                try:
                    self._persist(candidate)
                    return candidate
                except CapacityExceededError:
                    if len(candidate) <= 1:
                        break
                    evicted = candidate.pop()
                    logger.info("Storage full for '%s'; evicted oldest record %s", self.key, evicted.id)

            logger.warning("Record %s does not fit alongside any history; clearing '%s'", record.id, self.key)
            self.medium.remove(self.key)
            try:
                self._persist([record])
            except CapacityExceededError as exc:
                logger.error("Device storage exhausted while saving %s to '%s'", record.id, self.key)
                raise StorageExhaustedError() from exc
            return [record]

    def remove(self, record_id: str) -> bool:
        """Delete the record with ``record_id``; absent ids are ignored."""
        with self._lock:
            current = self._load()
            remaining = [record for record in current if record.id != record_id]
            if len(remaining) == len(current):
                return False
            self._rewrite(remaining)
            return True

    def update(self, record_id: str, mutator: Callable[[R], R]) -> Optional[R]:
        """Replace the record with ``mutator(record)``; ``None`` when absent.

        Raises ``StorageExhaustedError`` when the changed collection no longer
        fits; the stored collection is left as it was.
        """
        with self._lock:
            current = self._load()
            for index, record in enumerate(current):
                if record.id == record_id:
                    updated = mutator(record)
                    if updated.id != record_id:
                        raise ValueError("Mutator must not change the record id")
                    current[index] = updated
                    self._rewrite(current)
                    return updated
            return None

    def clear(self) -> None:
        """Drop the whole collection."""
        with self._lock:
            self.medium.remove(self.key)

    # Internal helpers --------------------------------------------------------
    def _load(self) -> List[R]:
        try:
            blob = self.medium.get(self.key)
        except StorageError as exc:
            logger.warning("Could not read '%s', starting with an empty collection: %s", self.key, exc)
            return []
        if not blob:
            return []

        try:
            raw_entries = json.loads(blob.decode("utf-8"))
            if not isinstance(raw_entries, list):
                raise ValueError(f"expected a list, got {type(raw_entries).__name__}")
            return [self.record_type.from_dict(entry) for entry in raw_entries]
        except (ValueError, TypeError, KeyError, AttributeError) as exc:
            # UnicodeDecodeError and JSONDecodeError are ValueErrors.
            logger.warning("Collection '%s' is unreadable, treating it as empty: %s", self.key, exc)
            return []

    def _rewrite(self, records: List[R]) -> None:
        """Persist an in-place change; nothing is evicted to make room for it."""
        try:
            self._persist(records)
        except CapacityExceededError as exc:
            logger.error("No room to rewrite '%s'; previous contents kept", self.key)
            raise StorageExhaustedError(CHANGE_NOT_SAVED) from exc

    def _persist(self, records: List[R]) -> None:
        blob = json.dumps([record.to_dict() for record in records], ensure_ascii=False).encode("utf-8")
        if self.max_bytes is not None and len(blob) > self.max_bytes:
            raise CapacityExceededError(
                f"'{self.key}' would take {len(blob)} bytes, above its {self.max_bytes} byte ceiling"
            )
        self.medium.set(self.key, blob)
