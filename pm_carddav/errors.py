"""Error kinds raised by the bridge.

Everything the bridge raises on purpose derives from :class:`BridgeError`.
The HTTP layer is the only place that turns these into status codes:
:class:`NotFoundError` and :class:`PreconditionFailedError` are also
:class:`HTTPError` instances and carry their own code, anything else is a 500.
"""

from __future__ import annotations

from .internal.internal import HTTPError


class BridgeError(Exception):
    """Base class for bridge errors."""


class NotFoundError(BridgeError, HTTPError):
    """The path is outside the address book, or the contact does not exist."""

    def __init__(self, message: str = "carddav: not found"):
        HTTPError.__init__(self, 404, Exception(message))


class PreconditionFailedError(BridgeError, HTTPError):
    """An If-Match / If-None-Match condition does not hold."""

    def __init__(self, message: str):
        HTTPError.__init__(self, 412, Exception(message))


class UpstreamError(BridgeError):
    """A call to the contacts API failed."""


class APIError(UpstreamError):
    """The contacts API answered with an error code."""

    def __init__(self, op: str, code: int, message: str):
        self.op = op
        self.code = code
        self.message = message
        super().__init__(f"{op}: API error {code}: {message}")


class CryptoError(BridgeError):
    """Decryption, signing or signature verification failed."""


class CodecError(BridgeError):
    """A vCard could not be decoded or encoded."""


class ProtocolInvariantError(BridgeError):
    """The API returned a different number of responses than requests."""
