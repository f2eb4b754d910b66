"""Internal WebDAV helpers shared by the CardDAV server."""

from .elements import (
    MultiStatus,
    Prop,
    PropFind,
    PropStat,
    Response,
    Status,
)
from .internal import Depth, HTTPError, parse_depth

__all__ = [
    "Depth",
    "HTTPError",
    "MultiStatus",
    "Prop",
    "PropFind",
    "PropStat",
    "Response",
    "Status",
    "parse_depth",
]
