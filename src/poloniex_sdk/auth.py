"""
auth.py – Credentials and endpoint configuration for Poloniex.

One PoloniexAuth instance is shared by the REST and WebSocket clients so
credentials and endpoint overrides are configured once.  Public
market data needs no credentials; private calls raise ValueError before
any network I/O when the key or secret is missing.

Usage
-----
    from poloniex_sdk import PoloniexAuth

    auth = PoloniexAuth(api_key="...", api_secret="...")
    headers = auth.sign_request("GET", "/accounts", {})
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Optional

from .signing import (
    NonceProvider,
    _default_nonce,
    sign_legacy,
    sign_request,
    ws_auth_payload,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PoloniexEndpoints:
    """Base URLs.  Override for proxies or test servers."""
    rest:           str = "https://api.poloniex.com"
    legacy_public:  str = "https://poloniex.com/public"
    legacy_private: str = "https://poloniex.com/tradingApi"
    ws_legacy:      str = "wss://api2.poloniex.com"
    ws_public:      str = "wss://ws.poloniex.com/ws/public"
    ws_private:     str = "wss://ws.poloniex.com/ws/private"


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------

@dataclass
class PoloniexAuth:
    """
    API key / secret holder and signer.

    Parameters
    ----------
    api_key        : Poloniex API key (optional for public endpoints)
    api_secret     : matching secret; never logged or included in repr
    endpoints      : base URLs
    nonce_provider : nonce source for the legacy trading API
    """

    api_key:        str = ""
    api_secret:     str = field(default="", repr=False)
    endpoints:      PoloniexEndpoints = field(default_factory=PoloniexEndpoints)
    nonce_provider: NonceProvider = field(default=_default_nonce, repr=False)

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key and self.api_secret)

    def require_credentials(self) -> None:
        if not self.has_credentials:
            raise ValueError("Poloniex API key and secret required")

    def sign_request(
        self,
        method: str,
        path: str,
        params: Mapping[str, Any],
        body: Optional[str] = None,
        timestamp: Optional[int] = None,
    ) -> dict[str, str]:
        """Return signed headers for a current-API request."""
        self.require_credentials()
        logger.debug("Signing %s %s", method.upper(), path)
        return sign_request(method, path, params, body, self.api_key, self.api_secret, timestamp)

    def sign_legacy(self, command: str, params: Mapping[str, Any]) -> tuple[str, dict[str, str]]:
        """Add command + nonce to params and sign them for the legacy trading API."""
        self.require_credentials()
        form = {"command": command, **params, "nonce": self.nonce_provider()}
        return sign_legacy(form, self.api_key, self.api_secret)

    def ws_auth_payload(self, timestamp: Optional[int] = None) -> dict[str, Any]:
        self.require_credentials()
        return ws_auth_payload(self.api_key, self.api_secret, timestamp)
