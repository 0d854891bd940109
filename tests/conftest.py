"""
tests/conftest.py – Shared fixtures and the --integration switch.

FakeTransport stands in for WebSocketTransport: the test drives the
connection lifecycle explicitly (open / receive / drop / fail) and
inspects every command the client sent.
"""

from __future__ import annotations

import json
from typing import Any, Optional

import pytest

from poloniex_sdk.markets import MarketTable
from poloniex_sdk.transport import TransportError


# ---------------------------------------------------------------------------
# pytest plugin: --integration flag + skip logic
# ---------------------------------------------------------------------------

def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--integration",
        action="store_true",
        default=False,
        help="Run integration tests against the live Poloniex API",
    )


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "integration: mark test as a live-network integration test (use --integration to run)",
    )


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    if config.getoption("--integration"):
        return
    skip_integration = pytest.mark.skip(reason="pass --integration to run against the live API")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeTransport:
    """In-memory Transport driven by the test."""

    def __init__(self, url: str, reconnect: bool = True) -> None:
        self.url        = url
        self.sent:      list[Any] = []
        self.started    = False
        self.closed     = False
        self.fail_sends = False
        self._reconnect = reconnect
        self._open      = False

        self.on_open    = None
        self.on_message = None
        self.on_close   = None
        self.on_error   = None

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def reconnects(self) -> bool:
        return self._reconnect and not self.closed

    def start(self) -> None:
        self.started = True

    async def send(self, data: str) -> None:
        if not self._open or self.fail_sends:
            raise TransportError("fake transport cannot send")
        self.sent.append(json.loads(data))

    async def close(self) -> None:
        self.closed = True
        if self._open:
            await self.drop(1000, "client closed")

    async def wait_closed(self) -> None:
        return None

    # -- driven by tests ------------------------------------------------

    async def open(self) -> None:
        self._open = True
        await self.on_open()

    async def receive(self, frame: Any) -> None:
        raw = frame if isinstance(frame, (str, bytes)) else json.dumps(frame)
        await self.on_message(raw)

    async def drop(self, code: int = 1006, reason: str = "") -> None:
        self._open = False
        await self.on_close(code, reason)

    async def fail(self, exc: BaseException) -> None:
        await self.on_error(exc)


class FakeRest:
    """Async REST stand-in that serves a fixed market table."""

    def __init__(self, table: MarketTable, error: Optional[Exception] = None) -> None:
        self.table  = table
        self.error  = error
        self.calls  = 0
        self.closed = False

    async def get_market_table(self) -> MarketTable:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.table

    async def close(self) -> None:
        self.closed = True


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

TICKER_RESPONSE = {
    "BTC_ETH":  {"id": 148, "last": "0.03210000", "isFrozen": "0"},
    "BTC_XMR":  {"id": 114, "last": "0.00560000", "isFrozen": "0"},
    "USDT_BTC": {"id": 121, "last": "20123.5",    "isFrozen": "1"},
}


@pytest.fixture
def market_table() -> MarketTable:
    return MarketTable.from_ticker(TICKER_RESPONSE)


@pytest.fixture
def transports() -> list[FakeTransport]:
    """Every FakeTransport the client created, oldest first."""
    return []


@pytest.fixture
def transport_factory(transports: list[FakeTransport]):
    def factory(url: str) -> FakeTransport:
        transport = FakeTransport(url)
        transports.append(transport)
        return transport
    return factory


@pytest.fixture
def fake_rest(market_table: MarketTable) -> FakeRest:
    return FakeRest(market_table)
