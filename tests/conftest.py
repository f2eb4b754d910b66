"""Shared fixtures: an OpenPGP key, a keyring and an in-memory contacts API."""

from __future__ import annotations

from dataclasses import replace

import pgpy
import pytest
from pgpy.constants import (
    CompressionAlgorithm,
    HashAlgorithm,
    KeyFlags,
    PubKeyAlgorithm,
    SymmetricKeyAlgorithm,
)

from pm_carddav.carddav import vcard
from pm_carddav.carddav.transform import format_card
from pm_carddav.errors import APIError
from pm_carddav.protonmail import (
    Contact,
    ContactImport,
    CreateContactResponse,
    DeleteContactResponse,
    Keyring,
)


def generate_key(name: str = "Test User", email: str = "test@example.com") -> pgpy.PGPKey:
    key = pgpy.PGPKey.new(PubKeyAlgorithm.RSAEncryptOrSign, 2048)
    uid = pgpy.PGPUID.new(name, email=email)
    key.add_uid(
        uid,
        usage={KeyFlags.Sign, KeyFlags.EncryptCommunications, KeyFlags.EncryptStorage},
        hashes=[HashAlgorithm.SHA256],
        ciphers=[SymmetricKeyAlgorithm.AES256],
        compression=[CompressionAlgorithm.Uncompressed],
    )
    return key


@pytest.fixture(scope="session")
def private_key() -> pgpy.PGPKey:
    return generate_key()


@pytest.fixture(scope="session")
def other_key() -> pgpy.PGPKey:
    return generate_key("Someone Else", "else@example.com")


@pytest.fixture(scope="session")
def keyring(private_key) -> Keyring:
    return Keyring([private_key])


def build_vcard(fn: str = "Ada Lovelace", email: str = "ada@example.com", **extra: str) -> str:
    lines = ["BEGIN:VCARD", "VERSION:3.0", f"FN:{fn}", "N:Lovelace;Ada;;;"]
    if email:
        lines.append(f"EMAIL;TYPE=INTERNET:{email}")
    for name, value in extra.items():
        lines.append(f"{name.upper().replace('_', '-')}:{value}")
    lines.append("END:VCARD")
    return "\r\n".join(lines) + "\r\n"


@pytest.fixture
def make_vcard():
    """vCard 3 text builder; extra keyword arguments become properties."""
    return build_vcard


@pytest.fixture
def make_contact(keyring):
    """Build an upstream contact whose cards hold the given vCard."""

    def _make(
        contact_id: str, modify_time: int = 1700000000, size: int = 512, **kwargs
    ) -> Contact:
        card = vcard.decode(build_vcard(**kwargs))
        contact_import = format_card(card, keyring)
        return Contact(
            id=contact_id,
            modify_time=modify_time,
            size=size,
            name=kwargs.get("fn", "Ada Lovelace"),
            cards=contact_import.cards,
        )

    return _make


class FakeProtonClient:
    """In-memory stand-in for ProtonClient that records every call."""

    def __init__(self, contacts: list[Contact] | None = None, export_page_size: int = 2):
        self.contacts: dict[str, Contact] = {c.id: c for c in contacts or []}
        self.export_page_size = export_page_size
        self.calls: list[tuple] = []
        self.closed = False
        self.create_code = 1000
        self.delete_code = 1000
        self.extra_responses = 0
        self._next_id = 0
        self._clock = 1800000000

    def _tick(self) -> int:
        self._clock += 1
        return self._clock

    async def get_contact(self, contact_id: str) -> Contact:
        self.calls.append(("get_contact", contact_id))
        if contact_id not in self.contacts:
            raise APIError("get_contact", 2501, "Contact does not exist")
        c = self.contacts[contact_id]
        return replace(c, cards=list(c.cards))

    async def list_contacts(self, page: int, page_size: int = 0) -> tuple[int, list[Contact]]:
        self.calls.append(("list_contacts", page, page_size))
        return len(self.contacts), [replace(c, cards=[]) for c in self.contacts.values()]

    async def list_contacts_export(
        self, page: int, page_size: int = 0
    ) -> tuple[int, list[Contact]]:
        self.calls.append(("list_contacts_export", page, page_size))
        items = list(self.contacts.values())
        start = page * self.export_page_size
        chunk = items[start : start + self.export_page_size]
        return len(items), [Contact(id=c.id, cards=list(c.cards)) for c in chunk]

    async def create_contacts(self, imports: list[ContactImport]) -> list[CreateContactResponse]:
        self.calls.append(("create_contacts", imports))
        responses = []
        for i, contact_import in enumerate(imports):
            if self.create_code != 1000:
                responses.append(
                    CreateContactResponse(index=i, code=self.create_code, error="Invalid")
                )
                continue
            self._next_id += 1
            contact = Contact(
                id=f"new-{self._next_id}",
                modify_time=self._tick(),
                size=sum(len(c.data) for c in contact_import.cards),
                cards=list(contact_import.cards),
            )
            self.contacts[contact.id] = contact
            responses.append(
                CreateContactResponse(index=i, code=1000, contact=replace(contact, cards=[]))
            )
        responses.extend(responses[:1] * self.extra_responses)
        return responses

    async def update_contact(self, contact_id: str, contact_import: ContactImport) -> Contact:
        self.calls.append(("update_contact", contact_id, contact_import))
        if contact_id not in self.contacts:
            raise APIError("update_contact", 2501, "Contact does not exist")
        contact = replace(
            self.contacts[contact_id],
            modify_time=self._tick(),
            cards=list(contact_import.cards),
        )
        self.contacts[contact_id] = contact
        return replace(contact, cards=[])

    async def delete_contacts(self, ids: list[str]) -> list[DeleteContactResponse]:
        self.calls.append(("delete_contacts", ids))
        responses = []
        for contact_id in ids:
            if self.delete_code == 1000:
                self.contacts.pop(contact_id, None)
            responses.append(
                DeleteContactResponse(id=contact_id, code=self.delete_code, error="")
            )
        responses.extend(responses[:1] * self.extra_responses)
        return responses

    async def close(self) -> None:
        self.closed = True

    def ops(self) -> list[str]:
        return [call[0] for call in self.calls]


@pytest.fixture
def fake_client() -> FakeProtonClient:
    return FakeProtonClient()


@pytest.fixture
def make_client():
    """Factory for in-memory clients preloaded with contacts."""
    return FakeProtonClient
