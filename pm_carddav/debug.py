"""Logging setup, access log and debug dumps."""

from __future__ import annotations

import json
import logging
import time
from typing import Any

from lxml import etree
from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger("pm_carddav")
access_logger = logging.getLogger("pm_carddav.access")
api_logger = logging.getLogger("pm_carddav.api")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def format_xml(xml_bytes: bytes | str) -> str:
    """Format XML with proper indentation.

    Args:
        xml_bytes: XML content as bytes or string

    Returns:
        Pretty-formatted XML string
    """
    if isinstance(xml_bytes, str):
        xml_bytes = xml_bytes.encode("utf-8")
    try:
        parser = etree.XMLParser(remove_blank_text=True)
        root = etree.fromstring(xml_bytes, parser)
    except etree.XMLSyntaxError:
        # Not XML after all, dump as text
        return xml_bytes.decode("utf-8", errors="replace")
    return etree.tostring(root, pretty_print=True, encoding="unicode")


def is_xml_content(content_type: str | None) -> bool:
    """Check if content type is XML."""
    if not content_type:
        return False
    return any(t in content_type.lower() for t in ("application/xml", "text/xml"))


def _log_body(title: str, content_type: str, body: bytes) -> None:
    logger.debug("-" * 80)
    logger.debug(title)
    if is_xml_content(content_type):
        for line in format_xml(body).split("\n"):
            if line.strip():
                logger.debug(f"  {line}")
    else:
        preview = body[:200].decode("utf-8", errors="replace")
        logger.debug(f"  [{len(body)} bytes] {preview}")
        if len(body) > 200:
            logger.debug(f"  ... ({len(body) - 200} more bytes)")


def log_request(method: str, path: str, headers: dict[str, str], body: bytes | None) -> None:
    """Log an incoming HTTP request.

    Args:
        method: HTTP method
        path: Request path
        headers: Request headers (lower-case names)
        body: Request body (if any)
    """
    logger.debug("=" * 80)
    logger.debug(f">>> INCOMING REQUEST: {method} {path}")
    logger.debug("-" * 80)

    interesting_headers = [
        "Content-Type",
        "Content-Length",
        "Depth",
        "If-Match",
        "If-None-Match",
        "Authorization",
    ]

    logger.debug("Headers:")
    for header in interesting_headers:
        value = headers.get(header.lower())
        if value:
            if header == "Authorization":
                value = "[REDACTED]"
            logger.debug(f"  {header}: {value}")

    if body:
        _log_body("Request Body:", headers.get("content-type", ""), body)

    logger.debug("=" * 80)


def log_response(status_code: int, headers: dict[str, Any], body: bytes | None) -> None:
    """Log an outgoing HTTP response.

    Args:
        status_code: HTTP status code
        headers: Response headers (lower-case names)
        body: Response body (if any)
    """
    logger.debug("=" * 80)
    logger.debug(f"<<< OUTGOING RESPONSE: {status_code}")
    logger.debug("-" * 80)

    interesting_headers = ["Content-Type", "Content-Length", "ETag", "Location", "DAV", "Allow"]

    logger.debug("Headers:")
    for header in interesting_headers:
        value = headers.get(header.lower())
        if value:
            logger.debug(f"  {header}: {value}")

    if body:
        _log_body("Response Body:", headers.get("content-type", ""), body)

    logger.debug("=" * 80)


def log_api_request(method: str, url: str, headers: dict[str, Any], body: Any) -> None:
    """Log an outgoing contacts API request in JSON format.

    Args:
        method: HTTP method
        url: Request URL
        headers: Request headers
        body: Request body (dict, list, or None)
    """
    request_data: dict[str, Any] = {
        "type": "request",
        "method": method,
        "url": url,
        "headers": {
            k: "[REDACTED]" if k.lower() == "authorization" else v for k, v in headers.items()
        },
    }
    if body is not None:
        request_data["body"] = body

    api_logger.debug(json.dumps(request_data, indent=2, ensure_ascii=False))


def log_api_response(status_code: int, body: Any) -> None:
    """Log an incoming contacts API response in JSON format.

    Args:
        status_code: HTTP status code
        body: Decoded response body (dict, list, or None)
    """
    response_data: dict[str, Any] = {
        "type": "response",
        "status_code": status_code,
    }
    if body is not None:
        response_data["body"] = body

    api_logger.debug(json.dumps(response_data, indent=2, ensure_ascii=False))


def setup_logging(level: int | str = logging.INFO) -> None:
    """Configure console logging for the ``pm_carddav`` loggers."""
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    logger.setLevel(level)
    logger.addHandler(handler)

    # Prevent propagation to avoid duplicate logs
    logger.propagate = False


def setup_debug_logging() -> None:
    """Log request/response dumps and API traffic."""
    setup_logging(logging.DEBUG)


class AccessLogMiddleware:
    """Logs one line per request: method, URI, status, response size and duration."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start = time.perf_counter()
        status = 500
        size = 0

        async def send_wrapper(message: Message) -> None:
            nonlocal status, size
            if message["type"] == "http.response.start":
                status = message["status"]
            elif message["type"] == "http.response.body":
                size += len(message.get("body", b""))
            await send(message)

        uri = scope["path"]
        if scope.get("query_string"):
            uri += "?" + scope["query_string"].decode("latin-1")

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            access_logger.info(
                "%s %s %d %d %.1fms",
                scope["method"],
                uri,
                status,
                size,
                (time.perf_counter() - start) * 1000,
            )
