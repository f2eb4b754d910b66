"""Contacts as the upstream API represents them."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import IntFlag
from typing import Any

from ..errors import APIError


class CardType(IntFlag):
    """How a contact card body is protected."""

    CLEARTEXT = 0
    ENCRYPTED = 1
    SIGNED = 2
    ENCRYPTED_SIGNED = 3


@dataclass
class ContactCard:
    """One vCard body of a contact.

    ``data`` is the vCard text for cleartext cards and an armored OpenPGP
    message for encrypted ones. ``signature`` is an armored detached
    signature over the plaintext.
    """

    type: CardType
    data: str
    signature: str = ""

    @property
    def encrypted(self) -> bool:
        return bool(self.type & CardType.ENCRYPTED)

    @property
    def signed(self) -> bool:
        return bool(self.type & CardType.SIGNED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "Type": int(self.type),
            "Data": self.data,
            "Signature": self.signature or None,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> ContactCard:
        return ContactCard(
            type=CardType(int(data.get("Type", 0))),
            data=data.get("Data") or "",
            signature=data.get("Signature") or "",
        )


@dataclass
class Contact:
    """Upstream contact record."""

    id: str
    modify_time: int = 0  # Unix timestamp
    size: int = 0
    name: str = ""
    uid: str = ""
    cards: list[ContactCard] = field(default_factory=list)

    @property
    def mod_time(self) -> datetime:
        return datetime.fromtimestamp(self.modify_time, UTC)

    @staticmethod
    def from_dict(data: dict[str, Any]) -> Contact:
        return Contact(
            id=data["ID"],
            modify_time=int(data.get("ModifyTime") or 0),
            size=int(data.get("Size") or 0),
            name=data.get("Name") or "",
            uid=data.get("UID") or "",
            cards=[ContactCard.from_dict(c) for c in data.get("Cards") or []],
        )


@dataclass
class ContactImport:
    """Payload of a contact create or update: signed card first, then encrypted."""

    cards: list[ContactCard] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"Cards": [card.to_dict() for card in self.cards]}


@dataclass
class CreateContactResponse:
    """Per-contact result of a batch create."""

    index: int
    code: int
    contact: Contact | None = None
    error: str = ""

    def err(self) -> Exception | None:
        if self.code != 1000:
            return APIError("create_contacts", self.code, self.error or "contact not created")
        return None


@dataclass
class DeleteContactResponse:
    """Per-contact result of a batch delete."""

    id: str
    code: int
    error: str = ""

    def err(self) -> Exception | None:
        if self.code != 1000:
            return APIError("delete_contacts", self.code, self.error or "contact not deleted")
        return None
