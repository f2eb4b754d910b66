"""Applies upstream contact events to the cache."""

from __future__ import annotations

import logging

from ..protonmail import Event, EventAction, EventRefresh, EventStream
from .cache import ContactCache


class EventApplier:
    """Keeps a :class:`ContactCache` in line with upstream events.

    Each event is applied while holding the cache lock, so readers never see
    half of an event.
    """

    def __init__(self, cache: ContactCache, logger: logging.Logger | None = None) -> None:
        self.cache = cache
        self.logger = logger or logging.getLogger("pm_carddav.carddav")

    def apply(self, event: Event) -> None:
        with self.cache.locked() as state:
            if event.refresh & EventRefresh.CONTACTS:
                # Per-contact changes of a refresh event are stale by definition
                self.logger.info("contacts refresh requested, clearing cache")
                state.clear()
                return

            state.epoch += 1
            for change in event.contacts:
                if change.action == EventAction.CREATE:
                    if state.total >= 0:
                        state.total += 1
                    self._set(state.entries, change.id, change.contact)
                elif change.action == EventAction.UPDATE:
                    self._set(state.entries, change.id, change.contact)
                elif change.action == EventAction.DELETE:
                    state.entries.pop(change.id, None)
                    if state.total >= 0:
                        state.total -= 1
                else:
                    self.logger.debug(
                        "ignoring contact event action %s for %s", change.action, change.id
                    )

    def _set(self, entries, contact_id, contact) -> None:
        if contact is None:
            # Nothing to cache, a later lookup will fetch it
            self.logger.warning("contact event for %s carries no contact", contact_id)
            entries.pop(contact_id, None)
            return
        entries[contact_id] = contact

    async def run(self, stream: EventStream) -> None:
        """Apply events in arrival order until the stream is closed."""
        async for event in stream:
            self.apply(event)
        self.logger.debug("event stream closed")
