"""CardDAV address book backed by the upstream contacts API."""

from .applier import EventApplier
from .backend import CardDAVBackend
from .cache import CacheState, ContactCache
from .carddav import (
    AddressBook,
    AddressBookQuery,
    AddressDataRequest,
    AddressObject,
    ConditionalMatch,
    ParamFilter,
    PropFilter,
    PutAddressObjectOptions,
    TextMatch,
    filter_address_objects,
)
from .paths import format_address_object_path, parse_address_object_path
from .proton_backend import ProtonCardDAVBackend
from .transform import format_card, to_address_object

__all__ = [
    "AddressBook",
    "AddressBookQuery",
    "AddressDataRequest",
    "AddressObject",
    "CacheState",
    "CardDAVBackend",
    "ConditionalMatch",
    "ContactCache",
    "EventApplier",
    "ParamFilter",
    "PropFilter",
    "ProtonCardDAVBackend",
    "PutAddressObjectOptions",
    "TextMatch",
    "filter_address_objects",
    "format_address_object_path",
    "format_card",
    "parse_address_object_path",
    "to_address_object",
]
