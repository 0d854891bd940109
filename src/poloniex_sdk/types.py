"""
types.py – Pydantic v2 models and enums for the Poloniex SDK.

Two families of models live here:

  * Reference data   – Market, built from the REST ticker and used to map
                       numeric channel ids to currency pairs.
  * Decoded events   – the typed payloads produced by the WebSocket
                       decoder (Ticker, Footer, Heartbeat, OrderBookSnapshot,
                       OrderBookDelta, Trade, ChannelData) wrapped in a
                       MarketEvent.

Monetary values
---------------
Poloniex sends rates and amounts as strings to preserve precision.  The
SDK keeps that convention: fields stay str and Trade.total is computed
with Decimal, never float.

Ticker fields are deliberately untyped (Any).  The legacy ticker is a
positional array and position is the only contract, so the decoder
passes values through as they arrived instead of rejecting a frame the
exchange decided to send with a different JSON type.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, unique
from typing import Any, Optional, Union

from pydantic import BaseModel, field_validator


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

@unique
class Protocol(str, Enum):
    """WebSocket protocol generation."""
    LEGACY_NUMERIC = "legacy"   # wss://api2.poloniex.com, positional frames
    NAMED          = "named"    # wss://ws.poloniex.com, named-field frames

    @property
    def uses_numeric_channels(self) -> bool:
        return self is Protocol.LEGACY_NUMERIC


@unique
class ChannelKind(str, Enum):
    TICKER      = "ticker"
    FOOTER      = "footer"
    HEARTBEAT   = "heartbeat"
    MARKET_DATA = "market_data"
    TROLLBOX    = "trollbox"
    ACCOUNT     = "account"
    UNKNOWN     = "unknown"


@unique
class EventKind(str, Enum):
    """Consumer-facing event vocabulary."""
    OPEN      = "open"
    CLOSE     = "close"
    ERROR     = "error"
    MESSAGE   = "message"
    HEARTBEAT = "heartbeat"


# ---------------------------------------------------------------------------
# Reference data
# ---------------------------------------------------------------------------

# legacy channel ids at or above this are reserved feeds, below it markets
RESERVED_THRESHOLD = 1000


class Market(BaseModel):
    """One entry of the market reference table."""
    id:            int
    base:          str
    quote:         str
    currency_pair: str
    base_id:       Optional[int] = None
    quote_id:      Optional[int] = None
    is_frozen:     bool = False

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: int) -> int:
        if v <= 0:
            raise ValueError(f"market id must be positive, got {v}")
        if v >= RESERVED_THRESHOLD:
            raise ValueError(f"market id must be below {RESERVED_THRESHOLD}, got {v}")
        return v

    @field_validator("currency_pair")
    @classmethod
    def validate_pair(cls, v: str) -> str:
        base, sep, quote = v.partition("_")
        if not sep or not base or not quote:
            raise ValueError(f"currency_pair '{v}' is not of the form BASE_QUOTE")
        return v

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Decoded payloads
# ---------------------------------------------------------------------------

class Ticker(BaseModel):
    """Legacy ticker update.  Field order is the wire order."""
    currency_pair:  Any
    last:           Any
    lowest_ask:     Any
    highest_bid:    Any
    percent_change: Any
    base_volume:    Any
    quote_volume:   Any
    is_frozen:      Any
    high_24h:       Any
    low_24h:        Any

    model_config = {"frozen": True}


class Footer(BaseModel):
    """Legacy footer: server time, users online and 24h volume per market."""
    server_time:  Any
    users_online: Any
    volume:       Any

    model_config = {"frozen": True}


class Heartbeat(BaseModel):
    model_config = {"frozen": True}


class OrderBookSnapshot(BaseModel):
    """Full book for one market; asks and bids map rate → amount."""
    currency_pair: str
    asks:          dict[str, str] = {}
    bids:          dict[str, str] = {}

    model_config = {"frozen": True}


class OrderBookDelta(BaseModel):
    """
    A change to one price level.

    is_removal is True when the wire amount was exactly "0.00000000";
    otherwise the level is set to amount.
    """
    side:       str     # "bid" | "ask"
    rate:       str
    amount:     str
    is_removal: bool

    model_config = {"frozen": True}


class Trade(BaseModel):
    """A public trade on a market channel."""
    trade_id:  str
    side:      str      # "buy" | "sell"
    rate:      str
    amount:    str
    total:     str      # rate × amount, 8 fractional digits
    timestamp: str      # ISO-8601 UTC

    model_config = {"frozen": True}


class ChannelData(BaseModel):
    """Named-field payload passed through as received."""
    channel: str
    data:    Any

    model_config = {"frozen": True}


BookEntry = Union[OrderBookSnapshot, OrderBookDelta, Trade]

Payload = Union[Ticker, Footer, Heartbeat, ChannelData, list[BookEntry]]


class MarketEvent(BaseModel):
    """
    One decoded message.

    channel_name : logical subscription name ("ticker", "BTC_ETH", ...)
    payload      : one of the payload models, or for legacy per-market
                   channels the ordered list of book/trade entries
    sequence     : per-channel sequence number (market channels only);
                   passed through, never validated
    """
    channel_name: str
    payload:      Payload
    sequence:     Optional[int] = None

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Errors reported through the event stream
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DecodeError:
    """A non-fatal decode failure for a single frame or sub-record."""
    message: str
    channel: Optional[Union[int, str]] = None
    frame:   Any = None


@dataclass(frozen=True)
class ErrorInfo:
    """
    Payload of the `error` event.

    source    : one of "decode", "parse", "server", "subscription",
                "transport" or "auth"
    message   : human readable description
    channel   : offending channel id or name, when known
    exception : the underlying exception, when there is one
    """
    source:    str
    message:   str
    channel:   Optional[Union[int, str]] = None
    exception: Optional[BaseException] = None

    @classmethod
    def from_decode_error(cls, err: DecodeError) -> "ErrorInfo":
        return cls(source="decode", message=err.message, channel=err.channel)
