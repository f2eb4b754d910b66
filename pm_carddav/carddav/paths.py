"""Mapping between address object paths and contact ids."""

from __future__ import annotations

from ..errors import NotFoundError

ADDRESSBOOK_PATH = "/contacts/default"
OBJECT_EXTENSION = ".vcf"


def format_address_object_path(contact_id: str) -> str:
    return f"{ADDRESSBOOK_PATH}/{contact_id}{OBJECT_EXTENSION}"


def parse_address_object_path(path: str) -> str:
    """Extract the contact id from an address object path.

    The id itself is not validated.

    Raises:
        NotFoundError: If the path is not a ``.vcf`` file directly inside the
            address book
    """
    dirname, _, filename = path.rpartition("/")
    dot = filename.rfind(".")
    ext = filename[dot:] if dot >= 0 else ""
    if dirname != ADDRESSBOOK_PATH or ext != OBJECT_EXTENSION:
        raise NotFoundError()
    return filename[: -len(ext)]
