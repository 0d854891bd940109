"""
Poloniex SDK – Python SDK for the Poloniex exchange.

Provides:
  - Unified façade                     (client.py        → PoloniexClient)
  - Async WebSocket market data        (ws.py            → PoloniexWebSocketClient)
  - Frame decoding                     (decoder.py       → decode)
  - Channel name ↔ wire id mapping     (channels.py      → ChannelRegistry)
  - Subscription bookkeeping           (subscriptions.py → SubscriptionManager)
  - Reconnecting transport             (transport.py     → WebSocketTransport)
  - Market reference table             (markets.py       → MarketTable)
  - Synchronous REST client            (rest.py          → PoloniexRestClient)
  - Async REST client                  (rest.py          → AsyncPoloniexRestClient)
  - HMAC request signing               (signing.py, auth.py → PoloniexAuth)
  - Call-rate reporting                (ratelimit.py     → CallRateTracker)
  - Typed Pydantic v2 models           (types.py)

Quickstart
----------
    import asyncio
    from poloniex_sdk import EventKind, PoloniexWebSocketClient

    async def main() -> None:
        async def on_message(channel, payload, sequence) -> None:
            print(channel, payload)

        async with PoloniexWebSocketClient() as ws:
            ws.on(EventKind.MESSAGE, on_message)
            await ws.subscribe("ticker.BTC_USDT")
            await ws.run_forever()

    asyncio.run(main())
"""

from .types import (
    # Enums
    Protocol,
    ChannelKind,
    EventKind,
    # Reference data
    Market,
    # Decoded payloads
    Ticker,
    Footer,
    Heartbeat,
    OrderBookSnapshot,
    OrderBookDelta,
    Trade,
    ChannelData,
    BookEntry,
    Payload,
    MarketEvent,
    # Errors reported as events
    DecodeError,
    ErrorInfo,
)
from .markets import MarketTable
from .channels import ChannelRegistry, UnknownChannelError, LEGACY_RESERVED, split_named
from .decoder import decode, REMOVAL_AMOUNT
from .signing import sign_request, sign_legacy, ws_auth_payload, NonceProvider
from .auth import PoloniexAuth, PoloniexEndpoints
from .ratelimit import CallCategory, CallRateTracker
from .rest import PoloniexRestClient, AsyncPoloniexRestClient, PoloniexAPIError
from .transport import ReconnectPolicy, Transport, TransportError, WebSocketTransport
from .subscriptions import Subscription, SubscriptionManager
from .ws import (
    ConnectionState,
    ConnectionStatus,
    LegacyNumericChannel,
    NamedChannel,
    PoloniexWebSocketClient,
)
from .client import PoloniexClient

__all__ = [
    # Enums
    "Protocol",
    "ChannelKind",
    "EventKind",
    # Reference data
    "Market",
    "MarketTable",
    # Payloads
    "Ticker",
    "Footer",
    "Heartbeat",
    "OrderBookSnapshot",
    "OrderBookDelta",
    "Trade",
    "ChannelData",
    "BookEntry",
    "Payload",
    "MarketEvent",
    "DecodeError",
    "ErrorInfo",
    # Channels and decoding
    "ChannelRegistry",
    "UnknownChannelError",
    "LEGACY_RESERVED",
    "split_named",
    "decode",
    "REMOVAL_AMOUNT",
    # Signing
    "sign_request",
    "sign_legacy",
    "ws_auth_payload",
    "NonceProvider",
    # Auth / config
    "PoloniexAuth",
    "PoloniexEndpoints",
    # REST
    "CallCategory",
    "CallRateTracker",
    "PoloniexRestClient",
    "AsyncPoloniexRestClient",
    "PoloniexAPIError",
    # WebSocket
    "ReconnectPolicy",
    "Transport",
    "TransportError",
    "WebSocketTransport",
    "Subscription",
    "SubscriptionManager",
    "ConnectionState",
    "ConnectionStatus",
    "LegacyNumericChannel",
    "NamedChannel",
    "PoloniexWebSocketClient",
    # Unified façade
    "PoloniexClient",
]

__version__ = "0.1.0"
