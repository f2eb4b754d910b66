"""CardDAV types and query filtering.

CardDAV is defined in RFC 6352.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from functools import cached_property

from vobject.base import Component, ContentLine

from . import vcard

# CardDAV capability
CAPABILITY_ADDRESSBOOK = "addressbook"

FILTER_ANY_OF = "anyof"
FILTER_ALL_OF = "allof"

MATCH_TYPES = ("equals", "contains", "starts-with", "ends-with")


@dataclass
class AddressBook:
    """CardDAV address book collection."""

    path: str
    name: str = ""
    description: str = ""
    max_resource_size: int = 0


@dataclass
class AddressDataRequest:
    """Which vCard properties a client asked for in ``address-data``."""

    props: list[str] = field(default_factory=list)
    allprop: bool = False


@dataclass
class AddressObject:
    """CardDAV address object."""

    path: str
    card: Component
    mod_time: datetime | None = None
    etag: str = ""

    @cached_property
    def data(self) -> str:
        return vcard.encode(self.card)

    @property
    def content_length(self) -> int:
        return len(self.data.encode("utf-8"))


def _combine(test: str):
    return all if test == FILTER_ALL_OF else any


@dataclass
class TextMatch:
    """Text matching filter, compared with the ``i;unicode-casemap`` collation."""

    text: str
    negate_condition: bool = False
    match_type: str = "contains"  # contains, equals, starts-with, ends-with

    def matches(self, value: str) -> bool:
        needle = self.text.casefold()
        haystack = value.casefold()
        if self.match_type == "equals":
            ok = haystack == needle
        elif self.match_type == "starts-with":
            ok = haystack.startswith(needle)
        elif self.match_type == "ends-with":
            ok = haystack.endswith(needle)
        else:
            ok = needle in haystack
        return ok != self.negate_condition


@dataclass
class ParamFilter:
    """Parameter filter for address book queries."""

    name: str
    is_not_defined: bool = False
    text_match: TextMatch | None = None

    def matches(self, line: ContentLine) -> bool:
        values = vcard.param_values(line, self.name)
        if self.is_not_defined:
            return values is None
        if values is None:
            return False
        if self.text_match is None:
            return True
        return any(self.text_match.matches(v) for v in values)


@dataclass
class PropFilter:
    """Property filter for address book queries."""

    name: str
    test: str = FILTER_ANY_OF
    is_not_defined: bool = False
    text_matches: list[TextMatch] = field(default_factory=list)
    param_filters: list[ParamFilter] = field(default_factory=list)

    def matches(self, card: Component) -> bool:
        lines = card.contents.get(self.name.lower(), [])
        if self.is_not_defined:
            return not lines
        return any(self._matches_line(line) for line in lines)

    def _matches_line(self, line: ContentLine) -> bool:
        if not self.text_matches and not self.param_filters:
            return True
        text = vcard.value_text(line)
        results = [tm.matches(text) for tm in self.text_matches]
        results += [pf.matches(line) for pf in self.param_filters]
        return _combine(self.test)(results)


@dataclass
class AddressBookQuery:
    """CardDAV addressbook-query REPORT request."""

    data_request: AddressDataRequest = field(default_factory=AddressDataRequest)
    prop_filters: list[PropFilter] = field(default_factory=list)
    filter_test: str = FILTER_ANY_OF
    limit: int = 0  # <= 0 means unlimited

    def matches(self, card: Component) -> bool:
        if not self.prop_filters:
            return True
        return _combine(self.filter_test)(pf.matches(card) for pf in self.prop_filters)


class ConditionalMatch(str):
    """Conditional match value from If-Match or If-None-Match headers.

    The value can either be a wildcard (*) or an ETag.
    """

    def is_set(self) -> bool:
        return bool(self)

    def is_wildcard(self) -> bool:
        return self == "*"

    def get_etag(self) -> str:
        """ETag value without quotes."""
        if not self or self == "*":
            return ""
        return self.strip('"')

    def match_etag(self, etag: str) -> bool:
        """Check the condition against the current ETag ("" if no resource)."""
        if not etag:
            return False
        if self.is_wildcard():
            return True
        return self.get_etag() == etag.strip('"')


@dataclass
class PutAddressObjectOptions:
    """Preconditions of a PUT."""

    if_match: ConditionalMatch | None = None
    if_none_match: ConditionalMatch | None = None


def filter_address_objects(
    query: AddressBookQuery | None, objects: list[AddressObject]
) -> list[AddressObject]:
    """Apply an addressbook-query filter and limit to address objects."""
    if query is None:
        return objects

    matched = [obj for obj in objects if query.matches(obj.card)]
    if query.limit > 0:
        matched = matched[: query.limit]
    return matched
