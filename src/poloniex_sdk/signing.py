"""
signing.py – HMAC request signing for Poloniex.

Three schemes are in use:

Current REST API (api.poloniex.com)
-----------------------------------
1. Collect every query parameter plus ``signTimestamp`` (and
   ``requestBody=<json>`` when the request carries a body).
2. URL-encode the values, sort the ``key=value`` strings in ASCII order
   and join them with ``&``.
3. Sign ``METHOD\\npath\\nparamString`` with HMAC-SHA256 and base64
   encode the digest.

WebSocket gateway authentication
--------------------------------
The same HMAC-SHA256 scheme over ``GET\\n/ws\\nsignTimestamp=<ts>``,
sent as an ``auth`` subscription.

Legacy trading API (poloniex.com/tradingApi)
--------------------------------------------
HMAC-SHA512 of the url-encoded form body, hex encoded, sent in the
``Key`` / ``Sign`` headers.  Every call carries a strictly increasing
``nonce``.

All functions here are pure given an explicit timestamp / nonce, which
is what the tests rely on.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from collections.abc import Mapping
from typing import Any, Callable, Optional
from urllib.parse import quote

# Callable with no args that returns a strictly increasing nonce
NonceProvider = Callable[[], int]

SIGNATURE_METHOD  = "HmacSHA256"
SIGNATURE_VERSION = "2"

# encodeURIComponent leaves these unescaped; the server verifies against that
_URI_SAFE = "!*'()"


def _default_timestamp() -> int:
    """Milliseconds since the epoch."""
    return int(time.time() * 1000)


def _default_nonce() -> int:
    """Microseconds since the epoch (16 digits)."""
    return time.time_ns() // 1000


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def encode_params(params: Mapping[str, Any]) -> str:
    """Encode params as a query string, keeping insertion order and skipping None."""
    return "&".join(
        f"{key}={quote(_format_value(value), safe=_URI_SAFE)}"
        for key, value in params.items()
        if value is not None
    )


def encode_body(body: Optional[Mapping[str, Any]]) -> Optional[str]:
    """Serialise a request body exactly as it is signed and sent."""
    if not body:
        return None
    return json.dumps(body, separators=(",", ":"))


def build_param_string(
    params: Mapping[str, Any],
    timestamp: int,
    body: Optional[str] = None,
) -> str:
    """Return the sorted, &-joined parameter string that is signed."""
    items = [f"signTimestamp={timestamp}"]
    items.extend(
        f"{key}={quote(_format_value(value), safe=_URI_SAFE)}"
        for key, value in params.items()
        if value is not None
    )
    if body:
        items.append(f"requestBody={body}")
    return "&".join(sorted(items))


def _hmac_sha256_b64(secret: str, payload: str) -> str:
    digest = hmac.new(secret.encode(), payload.encode(), hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def sign_request(
    method: str,
    path: str,
    params: Mapping[str, Any],
    body: Optional[str],
    api_key: str,
    api_secret: str,
    timestamp: Optional[int] = None,
) -> dict[str, str]:
    """
    Return the authentication headers for a current-API request.

    Parameters
    ----------
    method     : HTTP method, any case
    path       : request path, e.g. "/orders"
    params     : query parameters (None values are skipped)
    body       : JSON body exactly as it will be sent (see encode_body)
    api_key    : API key
    api_secret : API secret used as the HMAC key
    timestamp  : milliseconds since epoch; defaults to now
    """
    if timestamp is None:
        timestamp = _default_timestamp()

    param_string = build_param_string(params, timestamp, body)
    payload      = f"{method.upper()}\n{path}\n{param_string}"

    return {
        "Content-Type":     "application/json",
        "key":              api_key,
        "signatureMethod":  SIGNATURE_METHOD,
        "signatureVersion": SIGNATURE_VERSION,
        "signature":        _hmac_sha256_b64(api_secret, payload),
        "signTimestamp":    str(timestamp),
    }


def ws_auth_payload(api_key: str, api_secret: str, timestamp: Optional[int] = None) -> dict[str, Any]:
    """Build the ``auth`` subscription for the private WebSocket gateway."""
    if timestamp is None:
        timestamp = _default_timestamp()

    signature = _hmac_sha256_b64(api_secret, f"GET\n/ws\nsignTimestamp={timestamp}")
    return {
        "event":   "subscribe",
        "channel": ["auth"],
        "params": {
            "key":              api_key,
            "signTimestamp":    timestamp,
            "signatureMethod":  SIGNATURE_METHOD,
            "signatureVersion": SIGNATURE_VERSION,
            "signature":        signature,
        },
    }


def sign_legacy(
    params: Mapping[str, Any],
    api_key: str,
    api_secret: str,
) -> tuple[str, dict[str, str]]:
    """
    Sign a legacy trading-API form body.

    Returns the encoded body (send it verbatim) and the Key/Sign headers.
    """
    body      = encode_params(params)
    signature = hmac.new(api_secret.encode(), body.encode(), hashlib.sha512).hexdigest()
    return body, {"Key": api_key, "Sign": signature}
