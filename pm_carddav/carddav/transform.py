"""Conversion between client vCards and upstream contact cards.

Upstream stores a contact as two cards. The signed card holds the properties
that must be readable without the private key; the encrypted card holds
everything else. ``VERSION`` is written to both so that each card decodes on
its own.
"""

from __future__ import annotations

from vobject.base import Component

from ..protonmail import (
    Contact,
    ContactImport,
    Keyring,
    new_encrypted_card,
    new_signed_card,
    read_card,
)
from . import vcard
from .carddav import AddressDataRequest, AddressObject
from .paths import format_address_object_path

SIGNED_CARD_PROPS = ("VERSION", "PRODID", "FN", "UID", "EMAIL")


def _is_empty(card: Component) -> bool:
    return not any(card.contents.values())


def format_card(card: Component, keyring: Keyring) -> ContactImport:
    """Split a client vCard into a signed card and an encrypted card.

    The input card is left untouched.

    Raises:
        CodecError: If a card cannot be serialized
        CryptoError: If signing or encryption fails
    """
    card = vcard.copy_card(card)
    vcard.to_v4(card)

    # Emails are grouped so that per-email settings can refer to them
    i = 1
    for email in card.contents.get("email", []):
        if not email.group:
            email.group = f"item{i}"
            i += 1

    to_sign = vcard.extract(card, SIGNED_CARD_PROPS)
    to_encrypt = card
    for name in SIGNED_CARD_PROPS:
        if name != "VERSION":
            vcard.remove_property(to_encrypt, name)

    contact_import = ContactImport()
    if not _is_empty(to_sign):
        data = vcard.encode(to_sign).encode("utf-8")
        contact_import.cards.append(new_signed_card(data, keyring))
    if not _is_empty(to_encrypt):
        data = vcard.encode(to_encrypt).encode("utf-8")
        contact_import.cards.append(new_encrypted_card(data, [keyring.primary], keyring))
    return contact_import


def select_properties(card: Component, request: AddressDataRequest | None) -> None:
    """Drop the properties a data request did not ask for; VERSION always stays."""
    if request is None or request.allprop or not request.props:
        return
    keep = {name.upper() for name in request.props} | {"VERSION"}
    for name in list(card.contents):
        if name.upper() not in keep:
            del card.contents[name]


def to_address_object(
    contact: Contact, keyring: Keyring, request: AddressDataRequest | None = None
) -> AddressObject:
    """Merge the cards of a contact into one vCard.

    Every card signature must verify, otherwise nothing is returned.

    Raises:
        CryptoError: If a card cannot be decrypted or its signature is invalid
        CodecError: If a card is not a vCard
    """
    merged = vcard.new_card()
    for contact_card in contact.cards:
        details = read_card(contact_card, keyring)
        decoded = vcard.decode(details.unverified_body)

        # The signature result is only meaningful once the body hit EOF
        details.unverified_body.read()
        err = details.signature_error
        if err is not None:
            raise err

        for line in vcard.properties(decoded):
            if line.name.upper() == "VERSION" and merged.contents.get("version"):
                continue
            vcard.add_property(merged, line)

    select_properties(merged, request)

    return AddressObject(
        path=format_address_object_path(contact.id),
        mod_time=contact.mod_time,
        etag=f"{contact.modify_time:x}{contact.size:x}",
        card=merged,
    )
