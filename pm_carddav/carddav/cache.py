"""In-memory contact cache."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

from ..protonmail import Contact


@dataclass
class CacheState:
    """Cached contacts and the number of contacts upstream reported.

    ``total == -1`` means the upstream count is unknown. ``epoch`` advances on
    every change that a full reconciliation must not overwrite.
    """

    entries: dict[str, Contact] = field(default_factory=dict)
    total: int = -1
    epoch: int = 0

    def complete(self) -> bool:
        return self.total >= 0 and len(self.entries) == self.total

    def clear(self) -> None:
        self.entries = {}
        self.total = -1
        self.epoch += 1


class ContactCache:
    """Contact cache guarded by a single lock.

    Every method is atomic. Callers that need several steps under the lock,
    such as the event applier, use :meth:`locked` and must not await or do
    upstream I/O inside it.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = CacheState()

    @contextmanager
    def locked(self) -> Iterator[CacheState]:
        with self._lock:
            yield self._state

    def get(self, contact_id: str) -> Contact | None:
        with self._lock:
            return self._state.entries.get(contact_id)

    def put(self, contact: Contact) -> int:
        """Insert or overwrite a contact, returning the new epoch."""
        with self._lock:
            self._state.entries[contact.id] = contact
            self._state.epoch += 1
            return self._state.epoch

    def delete(self, contact_id: str) -> None:
        with self._lock:
            self._state.entries.pop(contact_id, None)
            self._state.epoch += 1

    def complete(self) -> bool:
        with self._lock:
            return self._state.complete()

    def replace_all(
        self, entries: dict[str, Contact], total: int, since: int | None = None
    ) -> bool:
        """Replace the whole cache.

        When ``since`` is given the replacement only happens if the epoch did
        not move since then. Returns whether the cache was replaced.
        """
        with self._lock:
            if since is not None and self._state.epoch != since:
                return False
            self._state.entries = dict(entries)
            self._state.total = total
            self._state.epoch += 1
            return True

    def clear(self) -> None:
        with self._lock:
            self._state.clear()

    @property
    def total(self) -> int:
        with self._lock:
            return self._state.total

    @property
    def epoch(self) -> int:
        with self._lock:
            return self._state.epoch

    def set_total(self, total: int) -> None:
        with self._lock:
            self._state.total = total

    def adjust_total(self, delta: int) -> None:
        """Add ``delta`` to a known total; an unknown total stays unknown."""
        with self._lock:
            if self._state.total >= 0:
                self._state.total = max(self._state.total + delta, 0)
            self._state.epoch += 1

    def __len__(self) -> int:
        with self._lock:
            return len(self._state.entries)
