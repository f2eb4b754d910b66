"""Upstream contacts API: data model, OpenPGP cards, HTTP client and events."""

from .client import ProtonClient
from .contacts import (
    CardType,
    Contact,
    ContactCard,
    ContactImport,
    CreateContactResponse,
    DeleteContactResponse,
)
from .crypto import Keyring, MessageDetails, new_encrypted_card, new_signed_card, read_card
from .events import (
    Event,
    EventAction,
    EventContact,
    EventPoller,
    EventRefresh,
    EventStream,
)

__all__ = [
    "CardType",
    "Contact",
    "ContactCard",
    "ContactImport",
    "CreateContactResponse",
    "DeleteContactResponse",
    "Event",
    "EventAction",
    "EventContact",
    "EventPoller",
    "EventRefresh",
    "EventStream",
    "Keyring",
    "MessageDetails",
    "ProtonClient",
    "new_encrypted_card",
    "new_signed_card",
    "read_card",
]
