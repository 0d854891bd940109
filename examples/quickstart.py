"""
examples/quickstart.py – End-to-end demo of the Poloniex SDK.

Walks through:
  1. Public REST reference data (server time, order book, market table)
  2. Private REST calls when credentials are set (balances, open orders)
  3. Live market data over the legacy numeric WebSocket
  4. Live market data over the named WebSocket

HOW TO RUN
----------
    export POLONIEX_API_KEY="your_api_key"        # optional
    export POLONIEX_API_SECRET="your_api_secret"  # optional
    python examples/quickstart.py

    Without credentials the private steps are skipped.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any

from poloniex_sdk import (
    ErrorInfo,
    EventKind,
    PoloniexAPIError,
    PoloniexAuth,
    PoloniexRestClient,
    PoloniexWebSocketClient,
    Protocol,
)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s – %(message)s",
)
logger = logging.getLogger("quickstart")

# ---------------------------------------------------------------------------
# Config – read from environment variables
# ---------------------------------------------------------------------------

API_KEY    = os.environ.get("POLONIEX_API_KEY",    "")
API_SECRET = os.environ.get("POLONIEX_API_SECRET", "")

SYMBOL        = "BTC_USDT"
LEGACY_MARKET = "USDT_BTC"   # legacy pairs are QUOTE_BASE
RUN_SECONDS   = 15


# ---------------------------------------------------------------------------
# Part 1 – REST: reference data + account
# ---------------------------------------------------------------------------

def rest_demo() -> None:
    logger.info("=== REST demo ===")

    auth = PoloniexAuth(api_key=API_KEY, api_secret=API_SECRET)
    with PoloniexRestClient(auth=auth) as client:
        logger.info("Server time: %s", client.get_timestamp().get("serverTime"))

        book = client.get_order_book(SYMBOL, limit=5)
        asks = book.get("asks", [])
        bids = book.get("bids", [])
        logger.info(
            "Best bid: %s  |  Best ask: %s",
            bids[0] if bids else "–",
            asks[0] if asks else "–",
        )

        table = client.get_market_table()
        logger.info("Market table: %d markets, %s → id %s",
                    len(table), LEGACY_MARKET, table.id_for(LEGACY_MARKET))

        if not auth.has_credentials:
            logger.info("No credentials set; skipping private calls")
        else:
            try:
                balances = client.get_accounts_balances()
                logger.info("Accounts: %d", len(balances))
                logger.info("Open orders: %d", len(client.get_open_orders(symbol=SYMBOL)))
            except PoloniexAPIError as exc:
                logger.warning("Private call failed: %s", exc)

        for name, count, limit in map(client.call_rate_info, client.call_rates()):
            logger.info("Call rate %-8s %d/%d per second", name, count, limit)


# ---------------------------------------------------------------------------
# Part 2 – WebSocket: both protocols side by side
# ---------------------------------------------------------------------------

async def on_message(channel: str, payload: Any, sequence: Any) -> None:
    logger.info("[%s] seq=%s %s", channel, sequence, payload)


async def on_error(info: ErrorInfo) -> None:
    logger.warning("[error] %s: %s", info.source, info.message)


async def on_open(details: dict[str, Any]) -> None:
    logger.info("[open ] %s", details)


async def run_ws(ws: PoloniexWebSocketClient) -> None:
    try:
        await asyncio.wait_for(ws.run_forever(), timeout=RUN_SECONDS)
    except asyncio.TimeoutError:
        pass
    finally:
        await ws.close()


async def ws_demo() -> None:
    logger.info("=== WebSocket demo (runs for %d s) ===", RUN_SECONDS)

    legacy = PoloniexWebSocketClient(protocol=Protocol.LEGACY_NUMERIC)
    named  = PoloniexWebSocketClient(protocol=Protocol.NAMED)

    for ws in (legacy, named):
        ws.on(EventKind.OPEN,    on_open)
        ws.on(EventKind.MESSAGE, on_message)
        ws.on(EventKind.ERROR,   on_error)

    await legacy.subscribe("ticker")
    await legacy.subscribe(LEGACY_MARKET)
    await named.subscribe(f"ticker.{SYMBOL}")
    await named.subscribe(f"trades.{SYMBOL}")

    await asyncio.gather(run_ws(legacy), run_ws(named))
    logger.info("WebSocket demo complete")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main() -> None:
    rest_demo()
    asyncio.run(ws_demo())


if __name__ == "__main__":
    main()
