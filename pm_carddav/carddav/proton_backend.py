"""CardDAV backend for the upstream contacts API.

Contacts are cached in memory. The cache is kept consistent by the event
applier when an event stream is attached; otherwise the backend adjusts the
known contact total itself on create and delete.
"""

from __future__ import annotations

import asyncio
import logging

from starlette.requests import Request
from vobject.base import Component

from ..errors import (
    APIError,
    NotFoundError,
    PreconditionFailedError,
    ProtocolInvariantError,
)
from ..protonmail import Contact, EventStream, Keyring, ProtonClient
from ..protonmail.client import CODE_NOT_EXISTS
from .applier import EventApplier
from .cache import ContactCache
from .carddav import (
    AddressBook,
    AddressBookQuery,
    AddressDataRequest,
    AddressObject,
    PutAddressObjectOptions,
    filter_address_objects,
)
from .paths import ADDRESSBOOK_PATH, format_address_object_path, parse_address_object_path
from .transform import format_card, select_properties, to_address_object

PRINCIPAL_PATH = "/"
HOME_SET_PATH = "/contacts"
MAX_RESOURCE_SIZE = 100 * 1024


class ProtonCardDAVBackend:
    """Single address book backed by the upstream contacts API.

    Args:
        client: Upstream API client
        keyring: Owner's private keys; the first one signs and encrypts cards
        events: Optional stream of upstream events keeping the cache fresh
        logger: Logger for this backend (defaults to ``pm_carddav.carddav``)
    """

    def __init__(
        self,
        client: ProtonClient,
        keyring: Keyring,
        events: EventStream | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.client = client
        self.keyring = keyring
        self.events = events
        self.logger = logger or logging.getLogger("pm_carddav.carddav")
        self.cache = ContactCache()
        self.applier = EventApplier(self.cache, self.logger)
        self._applier_task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        """Start applying events, if there is an event stream."""
        if self.events is not None and self._applier_task is None:
            self._applier_task = asyncio.create_task(
                self.applier.run(self.events), name="event-applier"
            )

    async def aclose(self) -> None:
        """Stop applying events and close the upstream client."""
        if self._applier_task is not None:
            self._applier_task.cancel()
            try:
                await self._applier_task
            except asyncio.CancelledError:
                pass
            self._applier_task = None
        await self.client.close()

    async def current_user_principal(self, request: Request) -> str:
        return PRINCIPAL_PATH

    async def addressbook_home_set_path(self, request: Request) -> str:
        return HOME_SET_PATH

    async def get_addressbook(self, request: Request) -> AddressBook:
        return AddressBook(
            path=ADDRESSBOOK_PATH,
            name="ProtonMail",
            description="ProtonMail contacts",
            max_resource_size=MAX_RESOURCE_SIZE,
        )

    async def get_address_object(
        self, request: Request, path: str, data_request: AddressDataRequest | None = None
    ) -> AddressObject:
        contact_id = parse_address_object_path(path)

        contact = self.cache.get(contact_id)
        if contact is None:
            if self.cache.complete():
                raise NotFoundError()
            contact = await self.client.get_contact(contact_id)
            self.cache.put(contact)

        return to_address_object(contact, self.keyring, data_request)

    async def list_address_objects(
        self, request: Request, data_request: AddressDataRequest | None = None
    ) -> list[AddressObject]:
        with self.cache.locked() as state:
            if state.complete():
                return [
                    to_address_object(contact, self.keyring, data_request)
                    for contact in state.entries.values()
                ]
        return await self._reconcile(data_request)

    async def _reconcile(self, data_request: AddressDataRequest | None) -> list[AddressObject]:
        """Fetch every contact upstream and refill the cache."""
        total, contacts = await self.client.list_contacts(0, 0)
        self.cache.set_total(total)
        epoch = self.cache.epoch
        interleaved = False

        metadata: dict[str, Contact] = {contact.id: contact for contact in contacts}
        collected: dict[str, Contact] = {}
        objects: list[AddressObject] = []
        page = 0
        while True:
            _, exported = await self.client.list_contacts_export(page, 0)
            for export in exported:
                contact = metadata.get(export.id)
                if contact is None or contact.id in collected:
                    continue
                contact.cards = export.cards

                new_epoch = self.cache.put(contact)
                interleaved = interleaved or new_epoch != epoch + 1
                epoch = new_epoch

                collected[contact.id] = contact
                objects.append(to_address_object(contact, self.keyring, data_request))

            if len(objects) >= total or not exported:
                break
            page += 1

        if len(objects) < total:
            self.logger.warning(
                "listed %d contacts out of %d, upstream dropped some ids", len(objects), total
            )
        elif not interleaved:
            # Evict contacts that vanished upstream without an event
            self.cache.replace_all(collected, total, since=epoch)

        return objects

    async def query_address_objects(
        self, request: Request, query: AddressBookQuery | None
    ) -> list[AddressObject]:
        # Filters need every property, the selection happens afterwards
        objects = await self.list_address_objects(request, AddressDataRequest(allprop=True))
        matched = filter_address_objects(query, objects)
        if query is not None:
            for obj in matched:
                select_properties(obj.card, query.data_request)
        return matched

    def _check_preconditions(
        self, existing: AddressObject | None, opts: PutAddressObjectOptions
    ) -> None:
        etag = existing.etag if existing is not None else ""
        if opts.if_match and opts.if_match.is_set():
            if not opts.if_match.match_etag(etag):
                raise PreconditionFailedError("carddav: If-Match condition failed")
        if opts.if_none_match and opts.if_none_match.is_set():
            if opts.if_none_match.match_etag(etag):
                raise PreconditionFailedError("carddav: If-None-Match condition failed")

    async def _find_existing(self, request: Request, path: str) -> AddressObject | None:
        """Look up the object a PUT would replace, None if there is none.

        Only a definite "does not exist" answer means absence, any other
        upstream failure propagates.
        """
        try:
            return await self.get_address_object(request, path, AddressDataRequest())
        except NotFoundError:
            pass
        except APIError as e:
            if e.code != CODE_NOT_EXISTS:
                raise
        self.logger.debug("%s does not exist, creating it", path)
        return None

    async def put_address_object(
        self,
        request: Request,
        path: str,
        card: Component,
        opts: PutAddressObjectOptions | None = None,
    ) -> str:
        contact_id = parse_address_object_path(path)
        contact_import = format_card(card, self.keyring)

        existing = await self._find_existing(request, path)

        if opts is not None:
            self._check_preconditions(existing, opts)

        if existing is not None:
            contact = await self.client.update_contact(contact_id, contact_import)
        else:
            responses = await self.client.create_contacts([contact_import])
            if len(responses) != 1:
                raise ProtocolInvariantError(
                    "carddav: expected exactly one response when creating contact"
                )
            resp = responses[0]
            err = resp.err()
            if err is not None:
                raise err
            if resp.contact is None:
                raise ProtocolInvariantError("carddav: created contact missing from response")
            contact = resp.contact
            if self.events is None:
                self.cache.adjust_total(1)

        # Card bodies are not returned by the server
        contact.cards = contact_import.cards
        self.cache.put(contact)
        return format_address_object_path(contact.id)

    async def delete_address_object(self, request: Request, path: str) -> None:
        contact_id = parse_address_object_path(path)

        responses = await self.client.delete_contacts([contact_id])
        if len(responses) != 1:
            raise ProtocolInvariantError(
                "carddav: expected exactly one response when deleting contact"
            )

        self.cache.delete(contact_id)
        err = responses[0].err()
        if err is not None:
            raise err
        if self.events is None:
            self.cache.adjust_total(-1)
