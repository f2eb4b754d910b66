"""CardDAV bridge for ProtonMail contacts."""

from .carddav import ProtonCardDAVBackend
from .config import BridgeConfig
from .server import Handler, create_app

__version__ = "0.1.0"

__all__ = [
    "BridgeConfig",
    "Handler",
    "ProtonCardDAVBackend",
    "create_app",
]
