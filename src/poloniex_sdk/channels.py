"""
channels.py – Logical subscription name ↔ wire channel translation.

Legacy numeric protocol
-----------------------
Reserved feeds have fixed ids at or above 1000:

    1000  accountNotifications
    1001  trollbox
    1002  ticker
    1003  footer (24h volume, users online)
    1010  heartbeat

Every market has its own channel whose id is the market id (< 1000) from
the MarketTable, e.g. "BTC_ETH" → 148.

Named protocol
--------------
Channels are addressed by name, so resolve() is the identity.  A name
may carry a symbol suffix ("book_lv2.BTC_USDT"); split_named() separates
the two parts for the subscribe command.
"""

from __future__ import annotations

from typing import NamedTuple, Optional, Union

from .markets import MarketTable
from .types import RESERVED_THRESHOLD, ChannelKind, Protocol

WireChannel = Union[int, str]

LEGACY_RESERVED: dict[str, int] = {
    "accountNotifications": 1000,
    "trollbox":             1001,
    "ticker":               1002,
    "footer":               1003,
    "heartbeat":            1010,
}

_LEGACY_KINDS: dict[int, ChannelKind] = {
    1000: ChannelKind.ACCOUNT,
    1001: ChannelKind.TROLLBOX,
    1002: ChannelKind.TICKER,
    1003: ChannelKind.FOOTER,
    1010: ChannelKind.HEARTBEAT,
}

_LEGACY_NAMES: dict[int, str] = {v: k for k, v in LEGACY_RESERVED.items()}

_NAMED_KINDS: dict[str, ChannelKind] = {
    "ticker":    ChannelKind.TICKER,
    "heartbeat": ChannelKind.HEARTBEAT,
    "auth":      ChannelKind.ACCOUNT,
    "balances":  ChannelKind.ACCOUNT,
    "orders":    ChannelKind.ACCOUNT,
}


class UnknownChannelError(KeyError):
    """Raised when a subscription name cannot be mapped to a wire channel."""

    def __init__(self, name: object, reason: str = "") -> None:
        self.name = name
        detail = f": {reason}" if reason else ""
        super().__init__(f"Unknown channel {name!r}{detail}")

    def __str__(self) -> str:
        return str(self.args[0])


class Classification(NamedTuple):
    kind: ChannelKind
    name: Optional[str]


def split_named(name: str) -> tuple[str, Optional[str]]:
    """Split "book_lv2.BTC_USDT" into ("book_lv2", "BTC_USDT")."""
    channel, sep, symbol = name.partition(".")
    return channel, (symbol if sep and symbol else None)


class ChannelRegistry:
    """
    Pure lookup over the reserved-feed constants and a MarketTable.

    Parameters
    ----------
    protocol : protocol whose channel addressing is used
    markets  : market table; required to resolve pairs under the legacy
               protocol, ignored otherwise
    """

    def __init__(self, protocol: Protocol, markets: Optional[MarketTable] = None) -> None:
        self.protocol = protocol
        self.markets  = markets if markets is not None else MarketTable()

    def resolve(self, name: str) -> WireChannel:
        """Return the wire channel for a subscription name."""
        if not name:
            raise UnknownChannelError(name, "empty channel name")

        if not self.protocol.uses_numeric_channels:
            return name

        if name in LEGACY_RESERVED:
            return LEGACY_RESERVED[name]

        market_id = self.markets.id_for(name)
        if market_id is None:
            raise UnknownChannelError(name, "currency pair not in market table")
        return market_id

    def classify(self, wire: object) -> Classification:
        """Classify an inbound wire channel and name it where possible."""
        if isinstance(wire, str):
            channel, _ = split_named(wire)
            return Classification(_NAMED_KINDS.get(channel, ChannelKind.MARKET_DATA), wire)

        if isinstance(wire, bool) or not isinstance(wire, int):
            return Classification(ChannelKind.UNKNOWN, None)

        if wire >= RESERVED_THRESHOLD:
            kind = _LEGACY_KINDS.get(wire, ChannelKind.UNKNOWN)
            return Classification(kind, _LEGACY_NAMES.get(wire))

        symbol = self.markets.symbol_for(wire)
        if symbol is None:
            return Classification(ChannelKind.UNKNOWN, None)
        return Classification(ChannelKind.MARKET_DATA, symbol)
