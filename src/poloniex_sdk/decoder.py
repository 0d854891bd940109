"""
decoder.py – Wire frame → typed MarketEvent decoding.

Legacy frames are positional JSON arrays:

    [1010]                                         heartbeat
    [1002, 1]                                      subscribe acknowledgement
    [1002, null, [148, "0.032", "0.033", "0.031",
                  "0.01", "120.5", "3800.1", 0,
                  "0.034", "0.030"]]               ticker
    [1003, null, ["2017-06-08 19:25", 5310, {...}]]  footer
    [148, 12001, [["i", {...}], ["o", 1, "0.05", "1.0"],
                  ["t", "9001", 0, "0.05", "1.0", 1496947529]]]
                                                   market data

Named frames are JSON objects:

    {"event": "pong"}
    {"event": "subscribe", "channel": "book_lv2", "symbols": [...]}
    {"channel": "book_lv2", "data": [{"symbol": "BTC_USDT", ...}]}

Decoding never raises and never does I/O: each call returns a list of
MarketEvent and DecodeError values in frame order.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional, Union

from pydantic import ValidationError

from .channels import ChannelRegistry
from .types import (
    BookEntry,
    ChannelData,
    ChannelKind,
    DecodeError,
    Footer,
    Heartbeat,
    MarketEvent,
    OrderBookDelta,
    OrderBookSnapshot,
    Ticker,
    Trade,
)

DecodeResult = Union[MarketEvent, DecodeError]

# Amount string the exchange sends for a price level that was removed.
# Compared as a string: "0" or 0.0 are modifications, not removals.
REMOVAL_AMOUNT = "0.00000000"

TICKER_FIELDS = (
    "currency_pair",
    "last",
    "lowest_ask",
    "highest_bid",
    "percent_change",
    "base_volume",
    "quote_volume",
    "is_frozen",
    "high_24h",
    "low_24h",
)

_TOTAL_QUANTUM = Decimal("0.00000001")

# Errors a malformed sub-record can raise while being unpacked
_RECORD_ERRORS = (
    AttributeError, IndexError, KeyError, TypeError, ValueError,
    ArithmeticError, OSError, ValidationError,
)


class _RecordMismatch(ValueError):
    pass


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

def decode(frame: Any, registry: ChannelRegistry) -> list[DecodeResult]:
    """Decode one parsed JSON frame of either protocol."""
    if isinstance(frame, list):
        return decode_legacy(frame, registry)
    if isinstance(frame, dict):
        return decode_named(frame)
    return [DecodeError(f"Unexpected frame type {type(frame).__name__}", frame=frame)]


def server_error(frame: Any) -> Optional[str]:
    """Return the message of an explicit error object, or None."""
    if not isinstance(frame, dict):
        return None
    if frame.get("event") == "error":
        return str(frame.get("message") or "server reported an error")
    if "error" in frame:
        return str(frame["error"])
    return None


# ---------------------------------------------------------------------------
# Legacy positional frames
# ---------------------------------------------------------------------------

def decode_legacy(frame: list[Any], registry: ChannelRegistry) -> list[DecodeResult]:
    if not frame:
        return [DecodeError("Empty frame", frame=frame)]

    channel        = frame[0]
    kind, name     = registry.classify(channel)

    if kind is ChannelKind.HEARTBEAT:
        return [MarketEvent(channel_name="heartbeat", payload=Heartbeat())]

    if kind is ChannelKind.UNKNOWN or name is None:
        return [DecodeError(f"Unknown channel {channel!r}", channel=channel, frame=frame)]

    if len(frame) == 2 and frame[1] in (0, 1):
        # [channel, 1] subscribed / [channel, 0] unsubscribed
        return []

    data = frame[2] if len(frame) > 2 else None
    if not isinstance(data, list) or not data:
        return [DecodeError(f"Empty payload on channel {name!r}", channel=channel, frame=frame)]

    if kind is ChannelKind.TICKER:
        return [_decode_ticker(data, registry, channel)]
    if kind is ChannelKind.FOOTER:
        return [_decode_footer(data, channel)]
    if kind is ChannelKind.MARKET_DATA:
        sequence = frame[1] if _is_int(frame[1]) else None
        return _decode_market(name, channel, sequence, data)

    # trollbox / account notifications are passed through untouched
    return [MarketEvent(channel_name=name, payload=ChannelData(channel=name, data=data))]


def _decode_ticker(data: list[Any], registry: ChannelRegistry, channel: int) -> DecodeResult:
    if len(data) < len(TICKER_FIELDS):
        return DecodeError(
            f"Ticker payload has {len(data)} fields, expected {len(TICKER_FIELDS)}",
            channel=channel, frame=data,
        )

    values = list(data[:len(TICKER_FIELDS)])
    if _is_int(values[0]):
        symbol = registry.markets.symbol_for(values[0])
        if symbol is not None:
            values[0] = symbol

    ticker = Ticker(**dict(zip(TICKER_FIELDS, values)))
    return MarketEvent(channel_name="ticker", payload=ticker)


def _decode_footer(data: list[Any], channel: int) -> DecodeResult:
    if len(data) < 3:
        return DecodeError(f"Footer payload has {len(data)} fields, expected 3", channel=channel, frame=data)
    footer = Footer(server_time=data[0], users_online=data[1], volume=data[2])
    return MarketEvent(channel_name="footer", payload=footer)


def _decode_market(
    name:     str,
    channel:  int,
    sequence: Optional[int],
    records:  list[Any],
) -> list[DecodeResult]:
    entries: list[BookEntry]   = []
    errors:  list[DecodeError] = []

    for record in records:
        if not isinstance(record, list) or not record:
            errors.append(DecodeError(f"Malformed record on {name!r}: {record!r}", channel=channel, frame=record))
            continue

        tag = record[0]
        try:
            if tag == "i":
                entries.append(_snapshot(name, record))
            elif tag == "o":
                entries.append(_delta(record))
            elif tag == "t":
                entries.append(_trade(record))
            else:
                errors.append(DecodeError(f"Unknown record type {tag!r} on {name!r}", channel=channel, frame=record))
        except _RecordMismatch as exc:
            errors.append(DecodeError(str(exc), channel=channel, frame=record))
        except _RECORD_ERRORS as exc:
            errors.append(DecodeError(f"Malformed {tag!r} record on {name!r}: {exc}", channel=channel, frame=record))

    results: list[DecodeResult] = []
    if entries:
        results.append(MarketEvent(channel_name=name, payload=entries, sequence=sequence))
    results.extend(errors)
    return results


def _snapshot(name: str, record: list[Any]) -> OrderBookSnapshot:
    info = record[1]
    pair = info["currencyPair"]
    if pair != name:
        raise _RecordMismatch(f"currencyPair mismatch: snapshot for {pair!r} arrived on {name!r}")

    asks, bids = info["orderBook"][0], info["orderBook"][1]
    return OrderBookSnapshot(
        currency_pair=pair,
        asks={str(rate): str(amount) for rate, amount in asks.items()},
        bids={str(rate): str(amount) for rate, amount in bids.items()},
    )


def _delta(record: list[Any]) -> OrderBookDelta:
    side, rate, amount = record[1], record[2], record[3]
    return OrderBookDelta(
        side="bid" if side == 1 else "ask",
        rate=str(rate),
        amount=str(amount),
        is_removal=amount == REMOVAL_AMOUNT,
    )


def _trade(record: list[Any]) -> Trade:
    trade_id, side, rate, amount, ts = record[1], record[2], record[3], record[4], record[5]
    total = (Decimal(str(rate)) * Decimal(str(amount))).quantize(_TOTAL_QUANTUM, rounding=ROUND_HALF_UP)
    when  = datetime.fromtimestamp(int(ts), tz=timezone.utc)
    return Trade(
        trade_id=str(trade_id),
        side="buy" if side == 1 else "sell",
        rate=str(rate),
        amount=str(amount),
        total=f"{total:f}",
        timestamp=when.strftime("%Y-%m-%dT%H:%M:%S.000Z"),
    )


# ---------------------------------------------------------------------------
# Named-field frames
# ---------------------------------------------------------------------------

def decode_named(frame: dict[str, Any]) -> list[DecodeResult]:
    event = frame.get("event")
    if event == "pong":
        return [MarketEvent(channel_name="heartbeat", payload=Heartbeat())]
    if event is not None:
        # subscribe / unsubscribe / list_subscriptions acknowledgements
        return []

    channel = frame.get("channel")
    if not isinstance(channel, str) or not channel:
        return [DecodeError("Frame has no channel", frame=frame)]

    data = frame.get("data")
    if data is None or data == [] or data == {}:
        return [DecodeError(f"Empty payload on channel {channel!r}", channel=channel, frame=frame)]

    results: list[DecodeResult] = []
    for entry in (data if isinstance(data, list) else [data]):
        symbol = entry.get("symbol") if isinstance(entry, dict) else None
        name   = f"{channel}.{symbol}" if isinstance(symbol, str) and symbol else channel
        results.append(MarketEvent(channel_name=name, payload=ChannelData(channel=channel, data=entry)))
    return results
