"""vCard codec on top of vobject.

A card is a ``vobject`` component; its properties are the content lines in
``card.contents``, keyed by lower-case property name.
"""

from __future__ import annotations

import codecs
from collections.abc import Iterable, Iterator
from typing import IO

import vobject
from vobject.base import Component, ContentLine, VObjectError

from ..errors import CodecError

VERSION_4 = "4.0"


def decode(data: str | bytes | IO[bytes]) -> Component:
    """Parse a single vCard from text, bytes or a binary stream.

    Raises:
        CodecError: If the data is not a vCard
    """
    if isinstance(data, bytes):
        try:
            data = data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise CodecError(f"vcard: {e}") from e
    elif not isinstance(data, str):
        data = codecs.getreader("utf-8")(data)

    try:
        card = vobject.readOne(data)
    except StopIteration as e:
        raise CodecError("vcard: no card found") from e
    except (VObjectError, ValueError) as e:
        raise CodecError(f"vcard: {e}") from e

    if card.name != "VCARD":
        raise CodecError(f"vcard: expected VCARD, got {card.name}")
    return card


def encode(card: Component) -> str:
    """Serialize a card.

    Raises:
        CodecError: If the card cannot be serialized
    """
    try:
        # Cards are partial by construction (FN lives in one card only)
        return card.serialize(validate=False)
    except (VObjectError, ValueError, TypeError) as e:
        raise CodecError(f"vcard: cannot encode card: {e}") from e


def new_card() -> Component:
    return vobject.vCard()


def copy_card(card: Component) -> Component:
    return card.duplicate(card)


def properties(card: Component) -> Iterator[ContentLine]:
    """Iterate over every content line of a card."""
    for lines in card.contents.values():
        yield from lines


def property_names(card: Component) -> list[str]:
    """Upper-case names of the properties present on a card."""
    return [name.upper() for name, lines in card.contents.items() if lines]


def add_property(card: Component, line: ContentLine) -> None:
    card.add(line.duplicate(line))


def remove_property(card: Component, name: str) -> None:
    card.contents.pop(name.lower(), None)


def extract(card: Component, names: Iterable[str]) -> Component:
    """Copy of the named properties of ``card`` into a new card."""
    out = new_card()
    for name in names:
        for line in card.contents.get(name.lower(), []):
            add_property(out, line)
    return out


def get_version(card: Component) -> str:
    lines = card.contents.get("version")
    return lines[0].value if lines else ""


def _has_pref_type(line: ContentLine) -> bool:
    types = line.params.get("TYPE", [])
    return any(t.lower() == "pref" for t in types) or any(
        p.lower() == "pref" for p in line.singletonparams
    )


def to_v4(card: Component) -> None:
    """Convert a card to vCard 4 in place.

    Besides the version, ``TYPE=pref`` becomes ``PREF=1``.
    """
    if get_version(card).startswith("4."):
        return

    lines = card.contents.get("version")
    if lines:
        del lines[1:]
        lines[0].value = VERSION_4
    else:
        card.add("version").value = VERSION_4

    for line in properties(card):
        if line.name.upper() == "VERSION" or not _has_pref_type(line):
            continue
        types = [t for t in line.params.get("TYPE", []) if t.lower() != "pref"]
        if types:
            line.params["TYPE"] = types
        else:
            line.params.pop("TYPE", None)
        line.singletonparams = [p for p in line.singletonparams if p.lower() != "pref"]
        line.params["PREF"] = ["1"]


def value_text(line: ContentLine) -> str:
    """Text form of a property value, used for matching."""
    value = line.value
    if isinstance(value, str):
        return value
    if isinstance(value, (list, tuple)):
        return ";".join(str(v) for v in value)
    return str(value)


def param_values(line: ContentLine, name: str) -> list[str] | None:
    """Values of a parameter, or None if the parameter is absent."""
    name = name.upper()
    if name in line.params:
        return list(line.params[name])
    if name == "TYPE":
        # Bare parameters like ``TEL;CELL:`` are types
        singletons = list(line.singletonparams)
        return singletons or None
    return None
