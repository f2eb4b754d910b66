"""Client for the upstream contacts API.

Only the calls the CardDAV bridge needs are implemented. Every failure,
transport or API-level, is raised as :class:`~pm_carddav.errors.UpstreamError`
with the client operation as message prefix.
"""

from __future__ import annotations

from typing import Any

import httpx

from ..config import BridgeConfig
from ..errors import APIError, UpstreamError
from .contacts import (
    Contact,
    ContactImport,
    CreateContactResponse,
    DeleteContactResponse,
)
from .events import Event

# Response codes meaning success (single and batch requests)
CODE_OK = 1000
CODE_MULTI_OK = 1001
# The requested object does not exist
CODE_NOT_EXISTS = 2501


class ProtonClient:
    """Asynchronous client for the contacts and events endpoints."""

    def __init__(
        self,
        config: BridgeConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        debug: bool = False,
    ) -> None:
        """Initialize the client.

        Args:
            config: Bridge configuration (uses default if None)
            transport: Optional httpx transport, used by tests
            debug: Log every API request and response
        """
        self.config = config or BridgeConfig()
        self.debug = debug
        self._transport = transport
        self._http_client: httpx.AsyncClient | None = None

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self.config.base_url,
                timeout=self.config.timeout,
                transport=self._transport,
                headers={
                    "Content-Type": "application/json",
                    "x-pm-appversion": self.config.app_version,
                },
            )
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client and cleanup resources."""
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> ProtonClient:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def _make_request(
        self,
        op: str,
        method: str,
        path: str,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """Make an authenticated request and return the decoded body.

        Args:
            op: Operation name used as error prefix
            method: HTTP method (GET, POST, etc.)
            path: API path (e.g., "/contacts")
            **kwargs: Additional arguments for httpx request

        Raises:
            APIError: If the API answers with an error code
            UpstreamError: If the request fails otherwise
        """
        client = await self._get_http_client()

        headers = kwargs.pop("headers", {})
        headers["x-pm-uid"] = self.config.uid
        headers["Authorization"] = f"Bearer {self.config.access_token}"

        if self.debug:
            from ..debug import log_api_request

            log_api_request(method, path, headers, kwargs.get("json"))

        try:
            response = await client.request(method, path, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise UpstreamError(f"{op}: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = None

        if self.debug:
            from ..debug import log_api_response

            log_api_response(response.status_code, data)

        if isinstance(data, dict):
            code = data.get("Code", CODE_OK)
            if code not in (CODE_OK, CODE_MULTI_OK):
                raise APIError(op, int(code), data.get("Error") or "")
        if response.is_error:
            raise UpstreamError(f"{op}: HTTP {response.status_code} {response.reason_phrase}")
        if not isinstance(data, dict):
            raise UpstreamError(f"{op}: unexpected response body")

        return data

    async def get_contact(self, contact_id: str) -> Contact:
        """Get a single contact, cards included."""
        data = await self._make_request("get_contact", "GET", f"/contacts/{contact_id}")
        return Contact.from_dict(data["Contact"])

    @staticmethod
    def _page_params(page: int, page_size: int) -> dict[str, int]:
        params = {"Page": page}
        # A page size of 0 means the server default
        if page_size > 0:
            params["PageSize"] = page_size
        return params

    async def list_contacts(self, page: int, page_size: int = 0) -> tuple[int, list[Contact]]:
        """List contact metadata (no cards).

        Returns:
            Tuple of (total number of contacts, contacts on this page)
        """
        data = await self._make_request(
            "list_contacts", "GET", "/contacts", params=self._page_params(page, page_size)
        )
        contacts = [Contact.from_dict(c) for c in data.get("Contacts") or []]
        return int(data.get("Total", len(contacts))), contacts

    async def list_contacts_export(
        self, page: int, page_size: int = 0
    ) -> tuple[int, list[Contact]]:
        """List contacts with their cards; only ``id`` and ``cards`` are populated."""
        data = await self._make_request(
            "list_contacts_export",
            "GET",
            "/contacts/export",
            params=self._page_params(page, page_size),
        )
        contacts = [Contact.from_dict(c) for c in data.get("Contacts") or []]
        return int(data.get("Total", len(contacts))), contacts

    async def create_contacts(
        self, imports: list[ContactImport]
    ) -> list[CreateContactResponse]:
        """Create contacts in one batch, one response per import."""
        payload = {
            "Contacts": [contact_import.to_dict() for contact_import in imports],
            "Overwrite": 0,
            "Groups": 0,
            "Labels": 0,
        }
        data = await self._make_request("create_contacts", "POST", "/contacts", json=payload)

        responses = []
        for item in data.get("Responses") or []:
            resp = item.get("Response") or {}
            contact = resp.get("Contact")
            responses.append(
                CreateContactResponse(
                    index=int(item.get("Index", len(responses))),
                    code=int(resp.get("Code", 0)),
                    contact=Contact.from_dict(contact) if contact else None,
                    error=resp.get("Error") or "",
                )
            )
        return responses

    async def update_contact(self, contact_id: str, contact_import: ContactImport) -> Contact:
        """Replace the cards of an existing contact."""
        data = await self._make_request(
            "update_contact", "PUT", f"/contacts/{contact_id}", json=contact_import.to_dict()
        )
        return Contact.from_dict(data["Contact"])

    async def delete_contacts(self, ids: list[str]) -> list[DeleteContactResponse]:
        """Delete contacts in one batch, one response per id."""
        data = await self._make_request(
            "delete_contacts", "PUT", "/contacts/delete", json={"IDs": ids}
        )

        responses = []
        for item in data.get("Responses") or []:
            resp = item.get("Response") or {}
            responses.append(
                DeleteContactResponse(
                    id=item.get("ID", ""),
                    code=int(resp.get("Code", 0)),
                    error=resp.get("Error") or "",
                )
            )
        return responses

    async def get_latest_event_id(self) -> str:
        data = await self._make_request("get_latest_event_id", "GET", "/events/latest")
        return data["EventID"]

    async def get_event(self, event_id: str) -> Event:
        """Get the changes that happened since ``event_id``."""
        data = await self._make_request("get_event", "GET", f"/events/{event_id}")
        return Event.from_dict(data)
