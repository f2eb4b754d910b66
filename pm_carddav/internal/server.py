"""Internal server utilities for WebDAV."""

from __future__ import annotations

from lxml import etree
from starlette.requests import Request
from starlette.responses import Response as StarletteResponse

from .elements import MultiStatus
from .internal import HTTPError


def serve_error(err: Exception) -> StarletteResponse:
    """Serve an error response."""
    code = err.code if isinstance(err, HTTPError) else 500
    return StarletteResponse(content=str(err), status_code=code, media_type="text/plain")


async def is_request_body_empty(request: Request) -> bool:
    """Check if request body is empty."""
    body = await request.body()
    return len(body.strip()) == 0


async def decode_xml_request(request: Request) -> etree._Element:
    """Decode XML request body."""
    body = await request.body()
    try:
        return etree.fromstring(body)
    except etree.XMLSyntaxError as e:
        raise HTTPError(400, e) from e


def serve_multistatus(ms: MultiStatus) -> StarletteResponse:
    """Serve a multistatus response."""
    xml_str = etree.tostring(
        ms.to_xml(), encoding="unicode", xml_declaration=False, pretty_print=True
    )
    return StarletteResponse(
        content='<?xml version="1.0" encoding="utf-8"?>\n' + xml_str,
        status_code=207,  # Multi-Status
        media_type="application/xml; charset=utf-8",
    )
