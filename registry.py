"""
In-memory license key registry.

Keys live for the lifetime of the process. There is no persistence and no
eviction: expired or exhausted keys stay in the map and are rejected lazily
at validation time.

All access goes through a single reader/writer lock:
  get, snapshot, len: shared
  insert, exclusive(): exclusive
The lock is only ever held around in-memory dict work, never across I/O.
"""

import threading
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Dict, Iterator, List, Optional


@dataclass
class KeyRecord:
    valid: bool
    created_at: datetime
    expires_at: datetime
    usage_count: int = 0
    max_usage: int = 0

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def is_exhausted(self) -> bool:
        return self.usage_count >= self.max_usage

    def is_active(self, now: datetime) -> bool:
        """Enabled and not yet expired. Usage quota is not considered."""
        return self.valid and not self.is_expired(now)


class RWLock:
    """
    Shared/exclusive lock built on a Condition.

    Waiting writers block new readers, so a steady stream of stats
    requests cannot starve validation.
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    def acquire_read(self):
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1

    def release_read(self):
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_write(self):
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True

    def release_write(self):
        with self._cond:
            self._writer = False
            self._cond.notify_all()

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()


class KeyRegistry:
    """Thread-safe mapping from key string to KeyRecord."""

    def __init__(self):
        self._records: Dict[str, KeyRecord] = {}
        self._lock = RWLock()

    def insert(self, key: str, record: KeyRecord) -> None:
        """Add a record. An existing record under the same key is replaced."""
        with self._lock.write_locked():
            self._records[key] = record

    def get(self, key: str) -> Optional[KeyRecord]:
        """
        Point-in-time copy of a record, or None for an unknown key.

        Mutating the returned copy has no effect on the registry; use
        exclusive() for check-then-update sequences.
        """
        with self._lock.read_locked():
            record = self._records.get(key)
            return replace(record) if record is not None else None

    @contextmanager
    def exclusive(self) -> Iterator[Dict[str, KeyRecord]]:
        """
        Hold the write lock and expose the live mapping.

        Everything done inside the block is atomic with respect to every
        other registry operation.
        """
        with self._lock.write_locked():
            yield self._records

    def snapshot(self) -> List[KeyRecord]:
        """Consistent copies of every record, taken under one shared lock."""
        with self._lock.read_locked():
            return [replace(record) for record in self._records.values()]

    def __len__(self) -> int:
        with self._lock.read_locked():
            return len(self._records)

    def __contains__(self, key: object) -> bool:
        with self._lock.read_locked():
            return key in self._records
