"""Upstream event model, event channel and event poller."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import IntEnum, IntFlag
from typing import TYPE_CHECKING, Any

from ..errors import UpstreamError
from .contacts import Contact

if TYPE_CHECKING:
    from .client import ProtonClient

logger = logging.getLogger("pm_carddav.protonmail")


class EventAction(IntEnum):
    DELETE = 0
    CREATE = 1
    UPDATE = 2
    UPDATE_FLAGS = 3


class EventRefresh(IntFlag):
    """Coarse "resync from scratch" signals."""

    NONE = 0
    MAIL = 1
    CONTACTS = 2


@dataclass
class EventContact:
    """One contact change carried by an event."""

    action: int
    id: str
    contact: Contact | None = None

    @staticmethod
    def from_dict(data: dict[str, Any]) -> EventContact:
        raw_action = int(data.get("Action", EventAction.DELETE))
        try:
            action: int = EventAction(raw_action)
        except ValueError:
            action = raw_action
        contact = data.get("Contact")
        return EventContact(
            action=action,
            id=data["ID"],
            contact=Contact.from_dict(contact) if contact else None,
        )


@dataclass
class Event:
    """A batch of upstream changes."""

    id: str = ""
    refresh: EventRefresh = EventRefresh.NONE
    contacts: list[EventContact] = field(default_factory=list)
    more: bool = False

    @property
    def touches_contacts(self) -> bool:
        return bool(self.refresh & EventRefresh.CONTACTS) or bool(self.contacts)

    @staticmethod
    def from_dict(data: dict[str, Any]) -> Event:
        return Event(
            id=data.get("EventID") or "",
            refresh=EventRefresh(int(data.get("Refresh") or 0)),
            contacts=[EventContact.from_dict(c) for c in data.get("Contacts") or []],
            more=bool(data.get("More")),
        )


class EventStream:
    """Unidirectional, closable channel of events.

    Iterating the stream yields events in the order they were sent and stops
    once the stream has been closed and drained.
    """

    _CLOSED = object()

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, event: Event) -> None:
        if self._closed:
            raise RuntimeError("event stream is closed")
        self._queue.put_nowait(event)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(self._CLOSED)

    def __aiter__(self) -> EventStream:
        return self

    async def __anext__(self) -> Event:
        item = await self._queue.get()
        if item is self._CLOSED:
            # Keep the marker so that later iterations stop too
            self._queue.put_nowait(item)
            raise StopAsyncIteration
        return item


class EventPoller:
    """Polls the events endpoint and fans contact events out to subscribers.

    Polling starts from the latest event id. When the API reports more
    pending events the next poll happens right away, otherwise after
    ``interval`` seconds. Upstream errors and undecodable events are logged
    and polling goes on.
    Stopping the poller closes every subscribed stream.
    """

    def __init__(self, client: ProtonClient, interval: float = 30.0) -> None:
        self.client = client
        self.interval = interval
        self._streams: list[EventStream] = []
        self._task: asyncio.Task[None] | None = None

    def subscribe(self) -> EventStream:
        stream = EventStream()
        self._streams.append(stream)
        return stream

    def _dispatch(self, event: Event) -> None:
        for stream in self._streams:
            if not stream.closed:
                stream.send(event)

    async def _latest_event_id(self) -> str:
        while True:
            try:
                return await self.client.get_latest_event_id()
            except UpstreamError as e:
                logger.warning("cannot get latest event id, retrying: %s", e)
                await asyncio.sleep(self.interval)

    async def run(self) -> None:
        try:
            event_id = await self._latest_event_id()
            logger.info("polling events from %s", event_id)
            while True:
                try:
                    event = await self.client.get_event(event_id)
                except UpstreamError as e:
                    logger.warning("cannot poll events: %s", e)
                    await asyncio.sleep(self.interval)
                    continue
                except Exception:
                    logger.exception("cannot decode event after %s", event_id)
                    await asyncio.sleep(self.interval)
                    continue

                if event.id:
                    event_id = event.id
                if event.touches_contacts:
                    logger.debug(
                        "event %s: refresh=%d, %d contact change(s)",
                        event.id,
                        event.refresh,
                        len(event.contacts),
                    )
                    self._dispatch(event)
                if not event.more:
                    await asyncio.sleep(self.interval)
        finally:
            for stream in self._streams:
                stream.close()

    def start(self) -> asyncio.Task[None]:
        if self._task is None:
            self._task = asyncio.create_task(self.run(), name="event-poller")
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
