"""WebDAV XML elements used when answering PROPFIND and REPORT."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from email.utils import format_datetime
from http import HTTPStatus

from lxml import etree

# WebDAV namespace
NAMESPACE = "DAV:"
CARDDAV_NAMESPACE = "urn:ietf:params:xml:ns:carddav"

# Common XML names
RESOURCE_TYPE = "{DAV:}resourcetype"
DISPLAY_NAME = "{DAV:}displayname"
GET_CONTENT_LENGTH = "{DAV:}getcontentlength"
GET_CONTENT_TYPE = "{DAV:}getcontenttype"
GET_LAST_MODIFIED = "{DAV:}getlastmodified"
GET_ETAG = "{DAV:}getetag"
COLLECTION = "{DAV:}collection"
PRINCIPAL = "{DAV:}principal"
CURRENT_USER_PRINCIPAL = "{DAV:}current-user-principal"
CURRENT_USER_PRIVILEGE_SET = "{DAV:}current-user-privilege-set"

ADDRESSBOOK = f"{{{CARDDAV_NAMESPACE}}}addressbook"
ADDRESSBOOK_HOME_SET = f"{{{CARDDAV_NAMESPACE}}}addressbook-home-set"
ADDRESSBOOK_DESCRIPTION = f"{{{CARDDAV_NAMESPACE}}}addressbook-description"
ADDRESS_DATA = f"{{{CARDDAV_NAMESPACE}}}address-data"
SUPPORTED_ADDRESS_DATA = f"{{{CARDDAV_NAMESPACE}}}supported-address-data"
MAX_RESOURCE_SIZE = f"{{{CARDDAV_NAMESPACE}}}max-resource-size"


@dataclass
class Status:
    """HTTP status for WebDAV responses."""

    code: int
    text: str = ""

    def to_string(self) -> str:
        """Marshal status to text."""
        text = self.text if self.text else HTTPStatus(self.code).phrase
        return f"HTTP/1.1 {self.code} {text}"


@dataclass
class Prop:
    """WebDAV prop element."""

    raw: list[etree._Element] = field(default_factory=list)

    def to_xml(self) -> etree._Element:
        prop = etree.Element(f"{{{NAMESPACE}}}prop")
        for elem in self.raw:
            prop.append(elem)
        return prop

    @staticmethod
    def from_xml(element: etree._Element) -> Prop:
        return Prop(raw=list(element))

    def names(self) -> list[str]:
        """Clark-notation names of the requested properties."""
        return [elem.tag for elem in self.raw if isinstance(elem.tag, str)]


@dataclass
class PropStat:
    """WebDAV propstat element."""

    prop: Prop
    status: Status

    def to_xml(self) -> etree._Element:
        propstat = etree.Element(f"{{{NAMESPACE}}}propstat")
        propstat.append(self.prop.to_xml())
        status_el = etree.SubElement(propstat, f"{{{NAMESPACE}}}status")
        status_el.text = self.status.to_string()
        return propstat


@dataclass
class Response:
    """WebDAV response element."""

    href: str
    propstats: list[PropStat] = field(default_factory=list)
    status: Status | None = None
    response_description: str = ""

    def to_xml(self) -> etree._Element:
        resp = etree.Element(f"{{{NAMESPACE}}}response")

        href_el = etree.SubElement(resp, f"{{{NAMESPACE}}}href")
        href_el.text = self.href

        for propstat in self.propstats:
            resp.append(propstat.to_xml())

        if self.status:
            status_el = etree.SubElement(resp, f"{{{NAMESPACE}}}status")
            status_el.text = self.status.to_string()

        if self.response_description:
            desc = etree.SubElement(resp, f"{{{NAMESPACE}}}responsedescription")
            desc.text = self.response_description

        return resp


@dataclass
class MultiStatus:
    """WebDAV multistatus response."""

    responses: list[Response] = field(default_factory=list)

    def to_xml(self) -> etree._Element:
        root = etree.Element(
            f"{{{NAMESPACE}}}multistatus",
            nsmap={"D": NAMESPACE, "C": CARDDAV_NAMESPACE},
        )
        for resp in self.responses:
            root.append(resp.to_xml())
        return root


@dataclass
class PropFind:
    """WebDAV PROPFIND request."""

    prop: Prop | None = None
    allprop: bool = False
    propname: bool = False

    @staticmethod
    def from_xml(element: etree._Element) -> PropFind:
        """Parse from XML element."""
        prop_el = element.find(f"{{{NAMESPACE}}}prop")
        prop = Prop.from_xml(prop_el) if prop_el is not None else None

        allprop = element.find(f"{{{NAMESPACE}}}allprop") is not None
        propname = element.find(f"{{{NAMESPACE}}}propname") is not None

        if prop is None and not propname:
            allprop = True

        return PropFind(prop=prop, allprop=allprop, propname=propname)


def href_element(tag: str, path: str) -> etree._Element:
    """Create ``<tag><D:href>path</D:href></tag>``."""
    elem = etree.Element(tag)
    href = etree.SubElement(elem, f"{{{NAMESPACE}}}href")
    href.text = path
    return elem


def text_element(tag: str, text: str) -> etree._Element:
    """Create ``<tag>text</tag>``."""
    elem = etree.Element(tag)
    elem.text = text
    return elem


def resource_type(*types: str) -> etree._Element:
    rt = etree.Element(RESOURCE_TYPE)
    for t in types:
        etree.SubElement(rt, t)
    return rt


def etag_element(etag: str) -> etree._Element:
    # ETags are quoted on the wire
    return text_element(GET_ETAG, etag if etag.startswith('"') else f'"{etag}"')


def last_modified_element(dt: datetime) -> etree._Element:
    return text_element(GET_LAST_MODIFIED, format_datetime(dt, usegmt=True))
