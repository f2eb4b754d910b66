"""CardDAV REPORT request parsing."""

from __future__ import annotations

from dataclasses import dataclass, field

from lxml import etree

from ..internal.elements import ADDRESS_DATA, CARDDAV_NAMESPACE, NAMESPACE
from .carddav import (
    FILTER_ALL_OF,
    FILTER_ANY_OF,
    MATCH_TYPES,
    AddressBookQuery,
    AddressDataRequest,
    ParamFilter,
    PropFilter,
    TextMatch,
)

# Collations that compare case-insensitively, as TextMatch does
SUPPORTED_COLLATIONS = ("i;unicode-casemap", "i;ascii-casemap")


def _c(name: str) -> str:
    return f"{{{CARDDAV_NAMESPACE}}}{name}"


@dataclass
class AddressBookQueryReport:
    """CardDAV addressbook-query REPORT request."""

    query: AddressBookQuery = field(default_factory=AddressBookQuery)
    prop: list[str] | None = None
    allprop: bool = False
    propname: bool = False


@dataclass
class AddressBookMultigetReport:
    """CardDAV addressbook-multiget REPORT request."""

    hrefs: list[str] = field(default_factory=list)
    data_request: AddressDataRequest = field(default_factory=AddressDataRequest)
    prop: list[str] | None = None
    allprop: bool = False
    propname: bool = False


def parse_addressbook_report(
    root: etree._Element,
) -> AddressBookQueryReport | AddressBookMultigetReport:
    """Parse CardDAV REPORT request body.

    Args:
        root: XML root element

    Returns:
        Parsed REPORT request

    Raises:
        ValueError: If the REPORT request is invalid
    """
    if root.tag == _c("addressbook-query"):
        return _parse_addressbook_query(root)
    elif root.tag == _c("addressbook-multiget"):
        return _parse_addressbook_multiget(root)
    else:
        raise ValueError(f"carddav: unsupported REPORT type {root.tag}")


def _parse_address_data(elem: etree._Element) -> AddressDataRequest:
    """Parse ``<C:address-data>``; no ``<C:prop>`` child means every property."""
    props = []
    for child in elem:
        if child.tag == _c("prop"):
            name = child.get("name")
            if not name:
                raise ValueError("carddav: address-data prop without name")
            props.append(name.upper())
        elif child.tag == _c("allprop"):
            return AddressDataRequest(allprop=True)
    return AddressDataRequest(props=props, allprop=not props)


def _parse_prop(
    elem: etree._Element,
) -> tuple[list[str], AddressDataRequest]:
    names = []
    data_request = AddressDataRequest(allprop=True)
    for child in elem:
        if not isinstance(child.tag, str):
            continue
        names.append(child.tag)
        if child.tag == ADDRESS_DATA:
            data_request = _parse_address_data(child)
    return names, data_request


def _parse_test(elem: etree._Element) -> str:
    test = elem.get("test", FILTER_ANY_OF)
    if test not in (FILTER_ANY_OF, FILTER_ALL_OF):
        raise ValueError(f"carddav: invalid test {test!r}")
    return test


def _parse_text_match(elem: etree._Element) -> TextMatch:
    collation = elem.get("collation", SUPPORTED_COLLATIONS[0])
    if collation not in SUPPORTED_COLLATIONS:
        raise ValueError(f"carddav: unsupported collation {collation!r}")

    match_type = elem.get("match-type", "contains")
    if match_type not in MATCH_TYPES:
        raise ValueError(f"carddav: invalid match-type {match_type!r}")

    negate = elem.get("negate-condition", "no")
    if negate not in ("yes", "no"):
        raise ValueError(f"carddav: invalid negate-condition {negate!r}")

    return TextMatch(
        text=elem.text or "",
        negate_condition=negate == "yes",
        match_type=match_type,
    )


def _parse_param_filter(elem: etree._Element) -> ParamFilter:
    name = elem.get("name")
    if not name:
        raise ValueError("carddav: param-filter without name")

    pf = ParamFilter(name=name.upper())
    for child in elem:
        if child.tag == _c("is-not-defined"):
            pf.is_not_defined = True
        elif child.tag == _c("text-match"):
            pf.text_match = _parse_text_match(child)
    return pf


def _parse_prop_filter(elem: etree._Element) -> PropFilter:
    name = elem.get("name")
    if not name:
        raise ValueError("carddav: prop-filter without name")

    pf = PropFilter(name=name.upper(), test=_parse_test(elem))
    for child in elem:
        if child.tag == _c("is-not-defined"):
            pf.is_not_defined = True
        elif child.tag == _c("text-match"):
            pf.text_matches.append(_parse_text_match(child))
        elif child.tag == _c("param-filter"):
            pf.param_filters.append(_parse_param_filter(child))
    return pf


def _parse_limit(elem: etree._Element) -> int:
    nresults = elem.find(_c("nresults"))
    if nresults is None:
        return 0
    try:
        limit = int((nresults.text or "").strip())
    except ValueError as e:
        raise ValueError(f"carddav: invalid nresults {nresults.text!r}") from e
    if limit < 0:
        raise ValueError(f"carddav: invalid nresults {limit}")
    return limit


def _parse_addressbook_query(root: etree._Element) -> AddressBookQueryReport:
    """Parse addressbook-query REPORT."""
    report = AddressBookQueryReport()
    query = report.query

    for child in root:
        if child.tag == f"{{{NAMESPACE}}}prop":
            report.prop, query.data_request = _parse_prop(child)
        elif child.tag == f"{{{NAMESPACE}}}allprop":
            report.allprop = True
        elif child.tag == f"{{{NAMESPACE}}}propname":
            report.propname = True
        elif child.tag == _c("filter"):
            query.filter_test = _parse_test(child)
            query.prop_filters = [
                _parse_prop_filter(pf) for pf in child.findall(_c("prop-filter"))
            ]
        elif child.tag == _c("limit"):
            query.limit = _parse_limit(child)

    if report.prop is None and not report.propname:
        report.allprop = True
    return report


def _parse_addressbook_multiget(root: etree._Element) -> AddressBookMultigetReport:
    """Parse addressbook-multiget REPORT."""
    report = AddressBookMultigetReport()

    for child in root:
        if child.tag == f"{{{NAMESPACE}}}href":
            if child.text and child.text.strip():
                report.hrefs.append(child.text.strip())
        elif child.tag == f"{{{NAMESPACE}}}prop":
            report.prop, report.data_request = _parse_prop(child)
        elif child.tag == f"{{{NAMESPACE}}}allprop":
            report.allprop = True
        elif child.tag == f"{{{NAMESPACE}}}propname":
            report.propname = True

    if report.prop is None and not report.propname:
        report.allprop = True
    return report
