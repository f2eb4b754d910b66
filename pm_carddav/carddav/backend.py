"""CardDAV backend interface."""

from __future__ import annotations

from typing import Protocol

from starlette.requests import Request
from vobject.base import Component

from .carddav import (
    AddressBook,
    AddressBookQuery,
    AddressDataRequest,
    AddressObject,
    PutAddressObjectOptions,
)


class CardDAVBackend(Protocol):
    """CardDAV server backend interface.

    A backend serves a single address book below its home set.
    """

    async def current_user_principal(self, request: Request) -> str:
        """Get the current user's principal path.

        Args:
            request: HTTP request

        Returns:
            Path to user principal (e.g., "/")
        """
        ...

    async def addressbook_home_set_path(self, request: Request) -> str:
        """Get the addressbook home set path for the current user.

        Args:
            request: HTTP request

        Returns:
            Path to addressbook home set (e.g., "/contacts")
        """
        ...

    async def get_addressbook(self, request: Request) -> AddressBook:
        """Get the address book.

        Args:
            request: HTTP request

        Returns:
            AddressBook object
        """
        ...

    async def get_address_object(
        self, request: Request, path: str, data_request: AddressDataRequest | None = None
    ) -> AddressObject:
        """Get an address object (vCard).

        Args:
            request: HTTP request
            path: Address object path
            data_request: vCard properties to return (all if None)

        Returns:
            AddressObject

        Raises:
            NotFoundError: If the object does not exist
        """
        ...

    async def list_address_objects(
        self, request: Request, data_request: AddressDataRequest | None = None
    ) -> list[AddressObject]:
        """List all address objects in the address book.

        Args:
            request: HTTP request
            data_request: vCard properties to return (all if None)

        Returns:
            List of AddressObject
        """
        ...

    async def query_address_objects(
        self, request: Request, query: AddressBookQuery | None
    ) -> list[AddressObject]:
        """Query address objects with filters.

        Args:
            request: HTTP request
            query: CardDAV query with filters, limit and requested properties

        Returns:
            List of matching AddressObject
        """
        ...

    async def put_address_object(
        self,
        request: Request,
        path: str,
        card: Component,
        opts: PutAddressObjectOptions | None = None,
    ) -> str:
        """Create or update an address object.

        Args:
            request: HTTP request
            path: Address object path
            card: Parsed vCard
            opts: If-Match / If-None-Match preconditions

        Returns:
            Path of the stored object, which may differ from ``path``

        Raises:
            PreconditionFailedError: If a precondition does not hold
        """
        ...

    async def delete_address_object(self, request: Request, path: str) -> None:
        """Delete an address object.

        Args:
            request: HTTP request
            path: Address object path

        Raises:
            NotFoundError: If the path is not an address object path
        """
        ...
