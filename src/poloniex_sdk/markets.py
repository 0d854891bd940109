"""
markets.py – Market reference table (numeric market id ↔ currency pair).

The legacy WebSocket protocol addresses per-market channels by a small
integer id.  The mapping is not part of the stream, so it is built from
the legacy REST ticker before the socket is opened:

    GET https://poloniex.com/public?command=returnTicker
    → {"BTC_ETH": {"id": 148, "last": "0.0321", ...}, ...}

The table is immutable once built.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping
from typing import Any, Optional

from pydantic import ValidationError

from .types import Market

logger = logging.getLogger(__name__)


class MarketTable:
    """Bidirectional id ↔ symbol lookup over a fixed set of markets."""

    def __init__(self, markets: Iterable[Market] = ()) -> None:
        by_id:     dict[int, Market] = {}
        by_symbol: dict[str, Market] = {}
        for market in markets:
            by_id[market.id] = market
            by_symbol[market.currency_pair] = market
        self._by_id     = by_id
        self._by_symbol = by_symbol

    @classmethod
    def from_ticker(cls, ticker: Mapping[str, Mapping[str, Any]]) -> "MarketTable":
        """
        Build a table from a legacy returnTicker response.

        Entries without a usable id are skipped with a warning rather than
        failing the whole table.  A response that is not an object
        raises ValueError.
        """
        if not isinstance(ticker, Mapping):
            raise ValueError(f"Ticker response must be an object, got {type(ticker).__name__}")
        markets: list[Market] = []
        for pair, info in ticker.items():
            base, _, quote = pair.partition("_")
            try:
                markets.append(Market(
                    id=int(info["id"]),
                    base=base,
                    quote=quote,
                    currency_pair=pair,
                    is_frozen=str(info.get("isFrozen", "0")) == "1",
                ))
            except (KeyError, TypeError, ValueError, ValidationError) as exc:
                logger.warning("Skipping market %r in ticker response: %s", pair, exc)
        logger.debug("Built market table with %d entries", len(markets))
        return cls(markets)

    def symbol_for(self, market_id: int) -> Optional[str]:
        market = self._by_id.get(market_id)
        return market.currency_pair if market else None

    def id_for(self, symbol: str) -> Optional[int]:
        market = self._by_symbol.get(symbol)
        return market.id if market else None

    def get(self, symbol: str) -> Optional[Market]:
        return self._by_symbol.get(symbol)

    def __contains__(self, symbol: object) -> bool:
        return symbol in self._by_symbol

    def __iter__(self) -> Iterator[Market]:
        return iter(self._by_symbol.values())

    def __len__(self) -> int:
        return len(self._by_symbol)
