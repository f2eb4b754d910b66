"""CardDAV request handling.

Each handler takes the Starlette request and the backend and returns a
response; errors are raised and turned into responses by the caller.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from email.utils import format_datetime
from urllib.parse import quote, unquote, urlparse

from lxml import etree
from starlette.requests import Request
from starlette.responses import Response

from ..errors import BridgeError, CodecError
from ..internal import Depth, HTTPError, MultiStatus, Prop, PropFind, PropStat, Status, parse_depth
from ..internal import Response as WebDAVResponse
from ..internal.elements import (
    ADDRESS_DATA,
    ADDRESSBOOK,
    ADDRESSBOOK_DESCRIPTION,
    ADDRESSBOOK_HOME_SET,
    CARDDAV_NAMESPACE,
    COLLECTION,
    CURRENT_USER_PRINCIPAL,
    CURRENT_USER_PRIVILEGE_SET,
    DISPLAY_NAME,
    GET_CONTENT_LENGTH,
    GET_CONTENT_TYPE,
    GET_ETAG,
    GET_LAST_MODIFIED,
    MAX_RESOURCE_SIZE,
    NAMESPACE,
    PRINCIPAL,
    RESOURCE_TYPE,
    SUPPORTED_ADDRESS_DATA,
    etag_element,
    href_element,
    last_modified_element,
    resource_type,
    text_element,
)
from ..internal.server import decode_xml_request, is_request_body_empty, serve_multistatus
from . import vcard
from .backend import CardDAVBackend
from .carddav import (
    CAPABILITY_ADDRESSBOOK,
    AddressBook,
    AddressDataRequest,
    AddressObject,
    ConditionalMatch,
    PutAddressObjectOptions,
)
from .report import AddressBookQueryReport, parse_addressbook_report

logger = logging.getLogger("pm_carddav.carddav")

VCARD_CONTENT_TYPE = "text/vcard"

ALLOWED_METHODS = ["OPTIONS", "GET", "HEAD", "PUT", "DELETE", "PROPFIND", "REPORT"]

PRINCIPAL_URL = f"{{{NAMESPACE}}}principal-URL"
SUPPORTED_REPORT_SET = f"{{{NAMESPACE}}}supported-report-set"

PropBuilder = Callable[[], etree._Element]


def _href(path: str) -> str:
    return quote(path)


def _clean_path(path: str) -> str:
    return path.rstrip("/") or "/"


def handle_options(request: Request) -> Response:
    """Handle OPTIONS request."""
    caps = ["1", "3", CAPABILITY_ADDRESSBOOK]
    headers = {
        "DAV": ", ".join(caps),
        "Allow": ", ".join(ALLOWED_METHODS),
    }
    return Response(status_code=204, headers=headers)


def _propfind_response(
    path: str,
    props: dict[str, PropBuilder],
    propfind: PropFind,
    hidden: frozenset[str] = frozenset(),
) -> WebDAVResponse:
    """Build the response for one resource.

    ``hidden`` properties are only returned when asked for by name.
    """
    href = _href(path)

    if propfind.propname:
        names = [etree.Element(name) for name in props]
        return WebDAVResponse(href=href, propstats=[PropStat(Prop(names), Status(200))])

    if propfind.allprop:
        requested = [name for name in props if name not in hidden]
        # RFC 4918 allows naming extra properties next to allprop
        if propfind.prop is not None:
            requested += [name for name in propfind.prop.names() if name not in requested]
    elif propfind.prop is not None:
        requested = propfind.prop.names()
    else:
        requested = []

    found = []
    not_found = []
    for name in requested:
        if name in props:
            found.append(props[name]())
        else:
            not_found.append(etree.Element(name))

    propstats = []
    if found:
        propstats.append(PropStat(Prop(found), Status(200)))
    if not_found:
        propstats.append(PropStat(Prop(not_found), Status(404)))

    return WebDAVResponse(href=href, propstats=propstats)


def _privilege_set() -> etree._Element:
    elem = etree.Element(CURRENT_USER_PRIVILEGE_SET)
    for privilege in ("read", "write"):
        priv = etree.SubElement(elem, f"{{{NAMESPACE}}}privilege")
        etree.SubElement(priv, f"{{{NAMESPACE}}}{privilege}")
    return elem


def _supported_address_data() -> etree._Element:
    elem = etree.Element(SUPPORTED_ADDRESS_DATA)
    for version in ("3.0", "4.0"):
        data_type = etree.SubElement(elem, f"{{{CARDDAV_NAMESPACE}}}address-data-type")
        data_type.set("content-type", VCARD_CONTENT_TYPE)
        data_type.set("version", version)
    return elem


def _supported_report_set() -> etree._Element:
    elem = etree.Element(SUPPORTED_REPORT_SET)
    for report in ("addressbook-query", "addressbook-multiget"):
        supported = etree.SubElement(elem, f"{{{NAMESPACE}}}supported-report")
        report_el = etree.SubElement(supported, f"{{{NAMESPACE}}}report")
        etree.SubElement(report_el, f"{{{CARDDAV_NAMESPACE}}}{report}")
    return elem


def _propfind_principal(
    path: str, propfind: PropFind, principal_path: str, home_set_path: str
) -> WebDAVResponse:
    props: dict[str, PropBuilder] = {
        RESOURCE_TYPE: lambda: resource_type(COLLECTION, PRINCIPAL),
        DISPLAY_NAME: lambda: text_element(DISPLAY_NAME, "ProtonMail"),
        CURRENT_USER_PRINCIPAL: lambda: href_element(CURRENT_USER_PRINCIPAL, principal_path),
        PRINCIPAL_URL: lambda: href_element(PRINCIPAL_URL, principal_path),
        ADDRESSBOOK_HOME_SET: lambda: href_element(ADDRESSBOOK_HOME_SET, home_set_path),
    }
    return _propfind_response(path, props, propfind)


def _propfind_home_set(
    path: str, propfind: PropFind, principal_path: str, home_set_path: str
) -> WebDAVResponse:
    props: dict[str, PropBuilder] = {
        RESOURCE_TYPE: lambda: resource_type(COLLECTION),
        DISPLAY_NAME: lambda: text_element(DISPLAY_NAME, "Contacts"),
        CURRENT_USER_PRINCIPAL: lambda: href_element(CURRENT_USER_PRINCIPAL, principal_path),
        ADDRESSBOOK_HOME_SET: lambda: href_element(ADDRESSBOOK_HOME_SET, home_set_path),
    }
    return _propfind_response(path, props, propfind)


def _propfind_addressbook(
    addressbook: AddressBook, propfind: PropFind, principal_path: str
) -> WebDAVResponse:
    props: dict[str, PropBuilder] = {
        RESOURCE_TYPE: lambda: resource_type(COLLECTION, ADDRESSBOOK),
        DISPLAY_NAME: lambda: text_element(DISPLAY_NAME, addressbook.name),
        ADDRESSBOOK_DESCRIPTION: lambda: text_element(
            ADDRESSBOOK_DESCRIPTION, addressbook.description
        ),
        CURRENT_USER_PRINCIPAL: lambda: href_element(CURRENT_USER_PRINCIPAL, principal_path),
        CURRENT_USER_PRIVILEGE_SET: _privilege_set,
        SUPPORTED_ADDRESS_DATA: _supported_address_data,
        SUPPORTED_REPORT_SET: _supported_report_set,
    }
    if addressbook.max_resource_size > 0:
        props[MAX_RESOURCE_SIZE] = lambda: text_element(
            MAX_RESOURCE_SIZE, str(addressbook.max_resource_size)
        )
    return _propfind_response(addressbook.path, props, propfind)


def _propfind_address_object(obj: AddressObject, propfind: PropFind) -> WebDAVResponse:
    props: dict[str, PropBuilder] = {
        RESOURCE_TYPE: lambda: resource_type(),
        GET_CONTENT_TYPE: lambda: text_element(GET_CONTENT_TYPE, VCARD_CONTENT_TYPE),
        GET_CONTENT_LENGTH: lambda: text_element(GET_CONTENT_LENGTH, str(obj.content_length)),
        GET_ETAG: lambda: etag_element(obj.etag),
        ADDRESS_DATA: lambda: text_element(ADDRESS_DATA, obj.data),
    }
    if obj.mod_time is not None:
        props[GET_LAST_MODIFIED] = lambda: last_modified_element(obj.mod_time)
    # The vCard body is expensive, clients ask for it explicitly
    return _propfind_response(obj.path, props, propfind, hidden=frozenset({ADDRESS_DATA}))


async def handle_propfind(request: Request, backend: CardDAVBackend) -> Response:
    """Handle PROPFIND request."""
    if await is_request_body_empty(request):
        propfind = PropFind(allprop=True)
    else:
        propfind = PropFind.from_xml(await decode_xml_request(request))

    depth = parse_depth(request.headers.get("depth", "0"))

    path = _clean_path(request.url.path)
    principal_path = await backend.current_user_principal(request)
    home_set_path = await backend.addressbook_home_set_path(request)
    addressbook = await backend.get_addressbook(request)

    responses: list[WebDAVResponse] = []
    if path == _clean_path(principal_path):
        responses.append(_propfind_principal(path, propfind, principal_path, home_set_path))
        if depth != Depth.ZERO and _clean_path(home_set_path) != path:
            responses.append(
                _propfind_home_set(home_set_path, propfind, principal_path, home_set_path)
            )
    elif path == _clean_path(home_set_path):
        responses.append(_propfind_home_set(path, propfind, principal_path, home_set_path))
        if depth != Depth.ZERO:
            responses.append(_propfind_addressbook(addressbook, propfind, principal_path))
    elif path == _clean_path(addressbook.path):
        responses.append(_propfind_addressbook(addressbook, propfind, principal_path))
        if depth != Depth.ZERO:
            for obj in await backend.list_address_objects(request):
                responses.append(_propfind_address_object(obj, propfind))
    else:
        obj = await backend.get_address_object(request, request.url.path)
        responses.append(_propfind_address_object(obj, propfind))

    return serve_multistatus(MultiStatus(responses=responses))


def _report_propfind(report) -> PropFind:
    prop = None
    if report.prop is not None:
        prop = Prop(raw=[etree.Element(name) for name in report.prop])
    return PropFind(prop=prop, allprop=report.allprop, propname=report.propname)


async def handle_report(request: Request, backend: CardDAVBackend) -> Response:
    """Handle addressbook-query and addressbook-multiget REPORT requests."""
    root = await decode_xml_request(request)
    try:
        report = parse_addressbook_report(root)
    except ValueError as e:
        raise HTTPError(400, e) from e

    propfind = _report_propfind(report)
    responses: list[WebDAVResponse] = []

    if isinstance(report, AddressBookQueryReport):
        objects = await backend.query_address_objects(request, report.query)
        for obj in objects:
            responses.append(_propfind_address_object(obj, propfind))
    else:
        for href in report.hrefs:
            path = unquote(urlparse(href).path)
            try:
                obj = await backend.get_address_object(request, path, report.data_request)
            except BridgeError as e:
                code = e.code if isinstance(e, HTTPError) else 500
                if code >= 500:
                    logger.warning("multiget %s: %s", href, e)
                responses.append(WebDAVResponse(href=href, status=Status(code)))
                continue
            responses.append(_propfind_address_object(obj, propfind))

    return serve_multistatus(MultiStatus(responses=responses))


async def handle_get(request: Request, backend: CardDAVBackend) -> Response:
    """Handle GET and HEAD requests on address objects."""
    obj = await backend.get_address_object(request, request.url.path)
    data = obj.data.encode("utf-8")

    headers = {
        "ETag": f'"{obj.etag}"',
        "Content-Length": str(len(data)),
    }
    if obj.mod_time is not None:
        headers["Last-Modified"] = format_datetime(obj.mod_time, usegmt=True)

    if request.method == "HEAD":
        return Response(headers=headers, media_type=VCARD_CONTENT_TYPE)
    return Response(content=data, headers=headers, media_type=VCARD_CONTENT_TYPE)


async def handle_put(request: Request, backend: CardDAVBackend) -> Response:
    """Handle PUT request: create or update an address object."""
    addressbook = await backend.get_addressbook(request)

    body = await request.body()
    if addressbook.max_resource_size > 0 and len(body) > addressbook.max_resource_size:
        raise HTTPError(413, Exception("carddav: vCard exceeds max resource size"))

    try:
        card = vcard.decode(body)
    except CodecError as e:
        raise HTTPError(400, e) from e

    opts = PutAddressObjectOptions(
        if_match=ConditionalMatch(request.headers.get("if-match", "")),
        if_none_match=ConditionalMatch(request.headers.get("if-none-match", "")),
    )
    location = await backend.put_address_object(request, request.url.path, card, opts)

    headers = {}
    try:
        obj = await backend.get_address_object(request, location, AddressDataRequest())
    except BridgeError as e:
        logger.warning("cannot read back %s after write: %s", location, e)
    else:
        if obj.etag:
            headers["ETag"] = f'"{obj.etag}"'

    # Updates stay at the request path, creates get a server-assigned one
    if location == request.url.path:
        return Response(status_code=204, headers=headers)
    headers["Location"] = _href(location)
    return Response(status_code=201, headers=headers)


async def handle_delete(request: Request, backend: CardDAVBackend) -> Response:
    """Handle DELETE request."""
    await backend.delete_address_object(request, request.url.path)
    return Response(status_code=204)
