"""
Short-lived memory of recent creates and deletes.

Object stores offer no native directories and no guaranteed read-after-write
visibility. A ConsistencyCache remembers what this process recently created or
deleted so that an immediate existence check answers from memory instead of a
possibly stale backend listing. Entries expire after a fixed ttl; other
processes talking to the same backend are not covered.
"""

import time
from datetime import timedelta
from typing import Callable

DEFAULT_TTL = timedelta(minutes=2)


class ConsistencyCache:
    def __init__(
        self,
        ttl: timedelta | float = DEFAULT_TTL,
        separator: str = "/",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl.total_seconds() if isinstance(ttl, timedelta) else float(ttl)
        if self.ttl <= 0:
            raise ValueError("Cache ttl must be positive")
        self.separator = separator
        self.clock = clock
        self._created: dict[str, float] = {}
        self._deleted: dict[str, float] = {}

    def normalize_key(self, key: str) -> str:
        """
        Strip leading separators and collapse trailing ones to a single separator.
        Directory keys keep their trailing separator so "a" (file) and "a/" (directory) stay apart.
        """
        key = key.strip()
        while key.startswith(self.separator):
            key = key[len(self.separator) :]
        if not key.endswith(self.separator):
            return key
        while key.endswith(self.separator):
            key = key[: -len(self.separator)]
        return key + self.separator

    def purge(self) -> None:
        """Drop expired entries. Called before every lookup or update, there is no sweeper."""
        now = self.clock()
        for entries in (self._created, self._deleted):
            for key in [key for key, expiry in entries.items() if expiry <= now]:
                del entries[key]

    def record_create(self, key: str) -> None:
        self.purge()
        key = self.normalize_key(key)
        if not key:
            return
        self._created[key] = self.clock() + self.ttl
        self._deleted.pop(key, None)

    def record_delete(self, key: str) -> None:
        self.purge()
        key = self.normalize_key(key)
        if not key:
            return
        self._deleted[key] = self.clock() + self.ttl
        self._created.pop(key, None)

    def lookup(self, key: str) -> bool | None:
        """
        False if key was deleted recently, True if it was created recently,
        None if the backend has to be asked
        """
        self.purge()
        key = self.normalize_key(key)
        if key in self._deleted:
            return False
        if key in self._created:
            return True
        return None

    def is_created(self, key: str) -> bool:
        return self.lookup(key) is True

    def is_deleted(self, key: str) -> bool:
        return self.lookup(key) is False

    def clear(self) -> None:
        self._created.clear()
        self._deleted.clear()

    def __len__(self) -> int:
        self.purge()
        return len(self._created) + len(self._deleted)
