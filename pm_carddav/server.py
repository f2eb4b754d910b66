"""CardDAV HTTP server."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import RedirectResponse
from starlette.responses import Response as StarletteResponse
from starlette.routing import Route

from .carddav import CardDAVBackend
from .carddav.server import (
    ALLOWED_METHODS,
    handle_delete,
    handle_get,
    handle_options,
    handle_propfind,
    handle_put,
    handle_report,
)
from .debug import AccessLogMiddleware
from .errors import BridgeError
from .internal import HTTPError
from .internal.server import serve_error
from .protonmail import EventPoller

logger = logging.getLogger("pm_carddav")

WELL_KNOWN_CARDDAV = "/.well-known/carddav"


class Handler:
    """CardDAV HTTP handler."""

    def __init__(self, backend: CardDAVBackend, debug: bool = False):
        """Initialize handler.

        Args:
            backend: CardDAV backend
            debug: Log full requests and responses
        """
        self.backend = backend
        self.debug = debug

    async def handle(self, request: Request) -> StarletteResponse:
        """Handle a CardDAV HTTP request.

        Args:
            request: Starlette request

        Returns:
            Starlette response
        """
        if self.debug:
            from .debug import log_request

            # The body can only be read once, keep it for the handlers
            request_body = await request.body()
            log_request(request.method, request.url.path, dict(request.headers), request_body)

            async def receive():
                return {"type": "http.request", "body": request_body}

            request = Request(scope=request.scope, receive=receive)

        try:
            response = await self._dispatch(request)
        except HTTPError as e:
            if e.code >= 500:
                logger.error("%s %s: %s", request.method, request.url.path, e)
            response = serve_error(e)
        except BridgeError as e:
            logger.error("%s %s: %s", request.method, request.url.path, e)
            response = serve_error(e)
        except Exception as e:
            logger.exception("%s %s: unexpected error", request.method, request.url.path)
            response = StarletteResponse(content=f"Internal error: {e}", status_code=500)

        if self.debug:
            self._log_response(response)

        return response

    async def _dispatch(self, request: Request) -> StarletteResponse:
        if request.url.path.rstrip("/") == WELL_KNOWN_CARDDAV:
            principal = await self.backend.current_user_principal(request)
            return RedirectResponse(url=principal, status_code=308)

        method = request.method
        if method == "OPTIONS":
            return handle_options(request)
        elif method == "PROPFIND":
            return await handle_propfind(request, self.backend)
        elif method == "REPORT":
            return await handle_report(request, self.backend)
        elif method in ("GET", "HEAD"):
            return await handle_get(request, self.backend)
        elif method == "PUT":
            return await handle_put(request, self.backend)
        elif method == "DELETE":
            return await handle_delete(request, self.backend)
        raise HTTPError(405, Exception(f"carddav: unsupported method {method}"))

    def _log_response(self, response: StarletteResponse) -> None:
        from .debug import log_response

        headers: dict[str, Any] = dict(response.headers.items())
        log_response(response.status_code, headers, getattr(response, "body", None))


def create_app(
    backend: CardDAVBackend,
    poller: EventPoller | None = None,
    debug: bool = False,
) -> Starlette:
    """Create a Starlette app serving ``backend`` over CardDAV.

    The backend's event applier and the event poller run for the lifetime
    of the application.

    Args:
        backend: CardDAV backend
        poller: Optional event poller feeding the backend's event stream
        debug: Log full requests and responses

    Returns:
        Starlette application
    """
    handler = Handler(backend, debug=debug)

    async def carddav_handler(request: Request) -> StarletteResponse:
        return await handler.handle(request)

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        start = getattr(backend, "start", None)
        if start is not None:
            await start()
        if poller is not None:
            poller.start()
        try:
            yield
        finally:
            if poller is not None:
                await poller.stop()
            aclose = getattr(backend, "aclose", None)
            if aclose is not None:
                await aclose()

    routes = [
        Route("/{path:path}", carddav_handler, methods=ALLOWED_METHODS),
    ]

    return Starlette(
        routes=routes,
        middleware=[Middleware(AccessLogMiddleware)],
        lifespan=lifespan,
    )
