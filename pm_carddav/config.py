"""Bridge configuration.

Defaults come from the environment so that the CLI and the tests can build
a :class:`BridgeConfig` without arguments.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

PROTON_API_URL = os.getenv("PROTON_API_URL")
PROTON_UID = os.getenv("PROTON_UID")
PROTON_ACCESS_TOKEN = os.getenv("PROTON_ACCESS_TOKEN")
PROTON_PRIVATE_KEY = os.getenv("PROTON_PRIVATE_KEY")
PROTON_KEY_PASSPHRASE = os.getenv("PROTON_KEY_PASSPHRASE")
PROTON_APP_VERSION = os.getenv("PROTON_APP_VERSION")


@dataclass
class BridgeConfig:
    """Configuration for the contacts API client and the bridge around it.

    Authentication is not performed by the bridge: ``uid`` and
    ``access_token`` belong to an already established session.
    """

    # Session credentials
    uid: str = PROTON_UID or ""
    access_token: str = PROTON_ACCESS_TOKEN or ""

    # Owner keys
    private_key_file: str = PROTON_PRIVATE_KEY or ""
    key_passphrase: str | None = PROTON_KEY_PASSPHRASE

    # API configuration
    base_url: str = PROTON_API_URL or "https://mail.proton.me/api"
    app_version: str = PROTON_APP_VERSION or "Other"
    timeout: float = 30.0  # Request timeout in seconds

    # Event polling
    poll_interval: float = 30.0  # Seconds between event polls
