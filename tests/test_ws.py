"""
tests/test_ws.py – Unit tests for the WebSocket client.

All tests run offline – a FakeTransport replaces the websockets
connection and a FakeRest serves the market table.  They verify:
  1. Legacy connections load the market table before connecting.
  2. Subscriptions made while closed are sent once the socket opens,
     in order, before the `open` event fires.
  3. Frames are decoded and dispatched as message / heartbeat / error.
  4. After a drop, reconnecting replays every subscription exactly once.
  5. Listener exceptions never escape the dispatch path.
  6. Named-protocol commands, keepalive and private authentication.
  7. Protocol switches drop subscriptions; close_connection stops for good.
  8. Data on channels nobody subscribed to is reported, not delivered.
  9. A connect or market-table failure leaves the client CLOSED and reusable.
"""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

import poloniex_sdk.transport as transport_mod
from poloniex_sdk.auth import PoloniexAuth, PoloniexEndpoints
from poloniex_sdk.rest import PoloniexAPIError
from poloniex_sdk.transport import ReconnectPolicy
from poloniex_sdk.types import (
    ChannelData,
    ErrorInfo,
    EventKind,
    OrderBookDelta,
    Protocol,
    Ticker,
    Trade,
)
from poloniex_sdk.ws import ConnectionStatus, PoloniexWebSocketClient

from conftest import FakeRest, FakeTransport


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class Recorder:
    """Registers a listener for every event kind and keeps what it saw."""

    def __init__(self, client: PoloniexWebSocketClient) -> None:
        self.events: list[tuple[Any, ...]] = []
        for kind in EventKind:
            client.on(kind, self._listener(kind))

    def _listener(self, kind: EventKind):
        async def listener(*args: Any) -> None:
            self.events.append((kind, *args))
        return listener

    def of(self, kind: EventKind) -> list[tuple[Any, ...]]:
        return [event[1:] for event in self.events if event[0] is kind]

    def kinds(self) -> list[EventKind]:
        return [event[0] for event in self.events]


def _legacy(transport_factory, rest: FakeRest) -> PoloniexWebSocketClient:
    return PoloniexWebSocketClient(
        protocol=Protocol.LEGACY_NUMERIC,
        rest=rest,
        transport_factory=transport_factory,
    )


def _named(transport_factory, **kwargs: Any) -> PoloniexWebSocketClient:
    return PoloniexWebSocketClient(protocol=Protocol.NAMED, transport_factory=transport_factory, **kwargs)


TICKER_FRAME = [1002, None, [148, "0.032", "0.033", "0.031", "0.01", "120.5", "3800.1", 0, "0.034", "0.030"]]


# ---------------------------------------------------------------------------
# Legacy protocol lifecycle
# ---------------------------------------------------------------------------

class TestLegacyConnection:
    @pytest.mark.asyncio
    async def test_open_loads_market_table_first(self, transport_factory, transports, fake_rest) -> None:
        client = _legacy(transport_factory, fake_rest)
        await client.open_connection()

        assert fake_rest.calls == 1
        [transport] = transports
        assert transport.url == PoloniexEndpoints().ws_legacy
        assert transport.started
        assert client.status is ConnectionStatus.CONNECTING
        assert client.resolve("BTC_ETH") == 148

    @pytest.mark.asyncio
    async def test_second_open_is_ignored(self, transport_factory, transports, fake_rest) -> None:
        client = _legacy(transport_factory, fake_rest)
        await client.open_connection()
        await client.open_connection()
        assert len(transports) == 1

    @pytest.mark.asyncio
    async def test_market_table_failure_reports_error(self, transport_factory, transports, market_table) -> None:
        rest   = FakeRest(market_table, error=PoloniexAPIError(503, "maintenance"))
        client = _legacy(transport_factory, rest)
        rec    = Recorder(client)

        await client.open_connection()

        assert transports == []
        assert client.status is ConnectionStatus.CLOSED
        [(info,)] = rec.of(EventKind.ERROR)
        assert isinstance(info.exception, PoloniexAPIError)

    @pytest.mark.asyncio
    async def test_unparseable_market_table_reports_error(self, transport_factory, transports, market_table) -> None:
        rest   = FakeRest(market_table, error=ValueError("Expecting value: line 1 column 1 (char 0)"))
        client = _legacy(transport_factory, rest)
        rec    = Recorder(client)

        await client.open_connection()

        assert transports == []
        assert client.status is ConnectionStatus.CLOSED
        [(info,)] = rec.of(EventKind.ERROR)
        assert isinstance(info.exception, ValueError)

        # the client is not wedged: a later open tries again
        rest.error = None
        await client.open_connection()
        assert rest.calls == 2
        assert len(transports) == 1

    @pytest.mark.asyncio
    async def test_end_to_end_ticker_and_market(self, transport_factory, transports, fake_rest) -> None:
        client = _legacy(transport_factory, fake_rest)
        rec    = Recorder(client)

        await client.subscribe("ticker")
        await client.subscribe("BTC_ETH")
        await client.open_connection()
        transport = transports[0]
        assert transport.sent == []

        await transport.open()
        assert transport.sent == [
            {"command": "subscribe", "channel": 1002},
            {"command": "subscribe", "channel": 148},
        ]
        assert client.status is ConnectionStatus.OPEN
        assert rec.kinds() == [EventKind.OPEN]

        await transport.receive(TICKER_FRAME)
        await transport.receive([148, 12001, [
            ["o", 1, "0.05", "0.00000000"],
            ["t", "9001", 1, "0.05", "2.0", 1496947529],
        ]])

        (name, ticker, seq), (market, entries, market_seq) = rec.of(EventKind.MESSAGE)
        assert (name, seq) == ("ticker", None)
        assert isinstance(ticker, Ticker)
        assert ticker.currency_pair == "BTC_ETH"
        assert (market, market_seq) == ("BTC_ETH", 12001)
        assert isinstance(entries[0], OrderBookDelta) and entries[0].is_removal
        assert isinstance(entries[1], Trade) and entries[1].total == "0.10000000"

    @pytest.mark.asyncio
    async def test_subscribe_while_open_sends_immediately(self, transport_factory, transports, fake_rest) -> None:
        client = _legacy(transport_factory, fake_rest)
        await client.open_connection()
        transport = transports[0]
        await transport.open()

        await client.subscribe("BTC_XMR")
        await client.unsubscribe("BTC_XMR")
        assert transport.sent == [
            {"command": "subscribe", "channel": 114},
            {"command": "unsubscribe", "channel": 114},
        ]
        assert client.subscriptions == []

    @pytest.mark.asyncio
    async def test_unknown_pair_reports_subscription_error(self, transport_factory, transports, fake_rest) -> None:
        client = _legacy(transport_factory, fake_rest)
        rec    = Recorder(client)
        await client.subscribe("DOGE_SHIB")
        await client.open_connection()
        await transports[0].open()

        [(info,)] = rec.of(EventKind.ERROR)
        assert info.source == "subscription"
        assert info.channel == "DOGE_SHIB"
        assert client.subscriptions == ["DOGE_SHIB"]


# ---------------------------------------------------------------------------
# Inbound frames
# ---------------------------------------------------------------------------

async def _opened(transport_factory, transports, fake_rest):
    """Open a legacy client and forget the events emitted while opening."""
    client = _legacy(transport_factory, fake_rest)
    rec    = Recorder(client)
    await client.open_connection()
    await transports[0].open()
    rec.events.clear()
    return client, rec, transports[0]


class TestInbound:
    @pytest.mark.asyncio
    async def test_heartbeat(self, transport_factory, transports, fake_rest) -> None:
        _, rec, transport = await _opened(transport_factory, transports, fake_rest)
        await transport.receive([1010])
        assert rec.kinds() == [EventKind.HEARTBEAT]

    @pytest.mark.asyncio
    async def test_ack_is_silent(self, transport_factory, transports, fake_rest) -> None:
        _, rec, transport = await _opened(transport_factory, transports, fake_rest)
        await transport.receive([1002, 1])
        assert rec.events == []

    @pytest.mark.asyncio
    async def test_non_json_is_parse_error(self, transport_factory, transports, fake_rest) -> None:
        _, rec, transport = await _opened(transport_factory, transports, fake_rest)
        await transport.receive("not json{")
        [(info,)] = rec.of(EventKind.ERROR)
        assert info.source == "parse"

    @pytest.mark.asyncio
    async def test_server_error_object(self, transport_factory, transports, fake_rest) -> None:
        _, rec, transport = await _opened(transport_factory, transports, fake_rest)
        await transport.receive({"error": "Invalid channel."})
        [(info,)] = rec.of(EventKind.ERROR)
        assert (info.source, info.message) == ("server", "Invalid channel.")

    @pytest.mark.asyncio
    async def test_unknown_channel_is_decode_error(self, transport_factory, transports, fake_rest) -> None:
        client, rec, transport = await _opened(transport_factory, transports, fake_rest)
        await transport.receive([777, 1, [["o", 1, "1", "1"]]])
        [(info,)] = rec.of(EventKind.ERROR)
        assert info.source == "decode"
        assert info.channel == 777
        assert client.status is ConnectionStatus.OPEN

    @pytest.mark.asyncio
    async def test_message_then_record_errors(self, transport_factory, transports, fake_rest) -> None:
        client, rec, transport = await _opened(transport_factory, transports, fake_rest)
        await client.subscribe("BTC_ETH")
        await transport.receive([148, 5, [["o", 1, "0.05", "1.0"], ["t", "1"]]])
        assert rec.kinds() == [EventKind.MESSAGE, EventKind.ERROR]

    @pytest.mark.asyncio
    async def test_unsubscribed_market_data_is_dropped(self, transport_factory, transports, fake_rest) -> None:
        client, rec, transport = await _opened(transport_factory, transports, fake_rest)
        await client.subscribe("ticker")
        await transport.receive([114, 5, [["o", 1, "0.05", "1.0"]]])

        assert rec.of(EventKind.MESSAGE) == []
        [(info,)] = rec.of(EventKind.ERROR)
        assert (info.source, info.channel) == ("decode", 114)
        assert "unsubscribed" in info.message

    @pytest.mark.asyncio
    async def test_unsubscribed_ticker_is_dropped(self, transport_factory, transports, fake_rest) -> None:
        client, rec, transport = await _opened(transport_factory, transports, fake_rest)
        await client.subscribe("BTC_ETH")
        await transport.receive(TICKER_FRAME)

        assert rec.of(EventKind.MESSAGE) == []
        [(info,)] = rec.of(EventKind.ERROR)
        assert info.channel == 1002

    @pytest.mark.asyncio
    async def test_footer_needs_no_subscription(self, transport_factory, transports, fake_rest) -> None:
        _, rec, transport = await _opened(transport_factory, transports, fake_rest)
        await transport.receive([1003, None, ["2017-06-08 19:25", 5310, {"BTC": "1.0"}]])
        assert [name for name, _, _ in rec.of(EventKind.MESSAGE)] == ["footer"]

    @pytest.mark.asyncio
    async def test_transport_error_does_not_close(self, transport_factory, transports, fake_rest) -> None:
        client, rec, transport = await _opened(transport_factory, transports, fake_rest)
        await transport.fail(OSError("network unreachable"))
        [(info,)] = rec.of(EventKind.ERROR)
        assert info.source == "transport"
        assert isinstance(info.exception, OSError)
        assert client.status is ConnectionStatus.OPEN


# ---------------------------------------------------------------------------
# Reconnect and close
# ---------------------------------------------------------------------------

class TestReconnect:
    @pytest.mark.asyncio
    async def test_drop_then_reopen_replays_once(self, transport_factory, transports, fake_rest) -> None:
        client = _legacy(transport_factory, fake_rest)
        rec    = Recorder(client)
        await client.subscribe("ticker")
        await client.subscribe("BTC_ETH")
        await client.open_connection()
        transport = transports[0]
        await transport.open()

        await transport.drop(1006, "abnormal")
        assert rec.of(EventKind.CLOSE) == [("abnormal", 1006)]
        assert client.status is ConnectionStatus.CONNECTING
        assert not client.is_open

        # subscribe during the outage only records
        await client.subscribe("BTC_XMR")
        assert len(transport.sent) == 2

        await transport.open()
        assert transport.sent[2:] == [
            {"command": "subscribe", "channel": 1002},
            {"command": "subscribe", "channel": 148},
            {"command": "subscribe", "channel": 114},
        ]
        assert rec.kinds().count(EventKind.OPEN) == 2

    @pytest.mark.asyncio
    async def test_drop_without_reconnect_closes(self, fake_rest) -> None:
        created: list[FakeTransport] = []

        def factory(url: str) -> FakeTransport:
            created.append(FakeTransport(url, reconnect=False))
            return created[-1]

        client = _legacy(factory, fake_rest)
        await client.open_connection()
        await created[0].open()
        await created[0].drop(1000, "bye")
        assert client.status is ConnectionStatus.CLOSED

    @pytest.mark.asyncio
    async def test_failed_connect_without_reconnect_closes(self, monkeypatch: pytest.MonkeyPatch) -> None:
        attempts: list[str] = []

        def refuse(url: str, **kw: Any) -> Any:
            attempts.append(url)
            raise OSError("connection refused")

        monkeypatch.setattr(transport_mod.websockets, "connect", refuse)

        client = PoloniexWebSocketClient(protocol=Protocol.NAMED, reconnect=ReconnectPolicy(enabled=False))
        rec    = Recorder(client)
        await client.run_forever()

        assert client.status is ConnectionStatus.CLOSED
        assert [info.source for (info,) in rec.of(EventKind.ERROR)] == ["transport"]
        [(reason, code)] = rec.of(EventKind.CLOSE)
        assert code == 1006
        assert "connection refused" in reason

        # a closed client can be opened again
        await client.run_forever()
        assert len(attempts) == 2
        await client.close()

    @pytest.mark.asyncio
    async def test_close_connection(self, transport_factory, transports, fake_rest) -> None:
        client = _legacy(transport_factory, fake_rest)
        rec    = Recorder(client)
        await client.open_connection()
        transport = transports[0]
        await transport.open()

        await client.close_connection()
        assert transport.closed
        assert client.status is ConnectionStatus.CLOSED
        assert client.state.transport is None
        assert rec.of(EventKind.CLOSE) == [("client closed", 1000)]

    @pytest.mark.asyncio
    async def test_reopen_after_close(self, transport_factory, transports, fake_rest) -> None:
        client = _legacy(transport_factory, fake_rest)
        await client.subscribe("ticker")
        await client.open_connection()
        await transports[0].open()
        await client.close_connection()

        await client.open_connection()
        await transports[1].open()
        assert transports[1].sent == [{"command": "subscribe", "channel": 1002}]


# ---------------------------------------------------------------------------
# Listener registry
# ---------------------------------------------------------------------------

class TestListeners:
    @pytest.mark.asyncio
    async def test_listener_exception_does_not_propagate(self, transport_factory, transports, fake_rest) -> None:
        client = _legacy(transport_factory, fake_rest)
        after: list[str] = []

        async def bad(*_: Any) -> None:
            raise RuntimeError("boom")

        async def good(channel: str, payload: Any, sequence: Any) -> None:
            after.append(channel)

        client.on(EventKind.MESSAGE, bad)
        client.on("message", good)
        await client.subscribe("ticker")
        await client.open_connection()
        await transports[0].open()
        await transports[0].receive(TICKER_FRAME)
        assert after == ["ticker"]

    @pytest.mark.asyncio
    async def test_off_removes_listener(self, transport_factory, transports, fake_rest) -> None:
        client = _legacy(transport_factory, fake_rest)
        seen: list[Any] = []

        async def listener(*args: Any) -> None:
            seen.append(args)

        client.on(EventKind.HEARTBEAT, listener)
        client.off(EventKind.HEARTBEAT, listener)
        client.off(EventKind.HEARTBEAT, listener)   # unknown listener is ignored
        await client.open_connection()
        await transports[0].open()
        await transports[0].receive([1010])
        assert seen == []

    def test_unknown_event_kind_rejected(self, transport_factory) -> None:
        client = _named(transport_factory)

        async def listener() -> None:
            pass

        with pytest.raises(ValueError):
            client.on("tick", listener)


# ---------------------------------------------------------------------------
# Named protocol
# ---------------------------------------------------------------------------

class TestNamedProtocol:
    @pytest.mark.asyncio
    async def test_commands_and_url(self, transport_factory, transports) -> None:
        client = _named(transport_factory)
        await client.subscribe("book_lv2.BTC_USDT")
        await client.subscribe("ticker")
        await client.open_connection()
        transport = transports[0]
        assert transport.url == PoloniexEndpoints().ws_public

        await transport.open()
        assert transport.sent == [
            {"event": "subscribe", "channel": ["book_lv2"], "symbols": ["BTC_USDT"]},
            {"event": "subscribe", "channel": ["ticker"]},
        ]
        await client.unsubscribe("book_lv2.BTC_USDT")
        assert transport.sent[-1] == {"event": "unsubscribe", "channel": ["book_lv2"], "symbols": ["BTC_USDT"]}
        await client.close_connection()

    @pytest.mark.asyncio
    async def test_data_frames_dispatched_per_symbol(self, transport_factory, transports) -> None:
        client = _named(transport_factory)
        rec    = Recorder(client)
        await client.subscribe("ticker")
        await client.open_connection()
        await transports[0].open()

        await transports[0].receive({"channel": "ticker", "data": [
            {"symbol": "BTC_USDT", "close": "20000"},
            {"symbol": "ETH_USDT", "close": "1500"},
        ]})
        names = [name for name, _, _ in rec.of(EventKind.MESSAGE)]
        assert names == ["ticker.BTC_USDT", "ticker.ETH_USDT"]
        assert isinstance(rec.of(EventKind.MESSAGE)[0][1], ChannelData)

        await transports[0].receive({"event": "pong"})
        assert rec.kinds()[-1] is EventKind.HEARTBEAT
        await client.close_connection()

    @pytest.mark.asyncio
    async def test_unsubscribed_channel_is_dropped(self, transport_factory, transports) -> None:
        client = _named(transport_factory)
        rec    = Recorder(client)
        await client.subscribe("ticker.BTC_USDT")
        await client.open_connection()
        await transports[0].open()

        await transports[0].receive({"channel": "trades", "data": [{"symbol": "BTC_USDT", "price": "1"}]})
        await transports[0].receive({"channel": "ticker", "data": [{"symbol": "ETH_USDT", "close": "1500"}]})
        await transports[0].receive({"channel": "ticker", "data": [{"symbol": "BTC_USDT", "close": "20000"}]})

        assert [name for name, _, _ in rec.of(EventKind.MESSAGE)] == ["ticker.BTC_USDT"]
        assert [info.channel for (info,) in rec.of(EventKind.ERROR)] == ["trades", "ticker"]
        await client.close_connection()

    @pytest.mark.asyncio
    async def test_keepalive_ping(self, transport_factory, transports) -> None:
        client = _named(transport_factory, keepalive_interval=0.01)
        await client.open_connection()
        await transports[0].open()
        assert client.state.keepalive is not None

        await asyncio.sleep(0.05)
        assert {"event": "ping"} in transports[0].sent

        await client.close_connection()
        assert client.state.keepalive is None

    @pytest.mark.asyncio
    async def test_legacy_has_no_keepalive(self, transport_factory, transports, fake_rest) -> None:
        client = _legacy(transport_factory, fake_rest)
        await client.open_connection()
        await transports[0].open()
        assert client.state.keepalive is None

    @pytest.mark.asyncio
    async def test_protocol_switch_drops_subscriptions(self, transport_factory, transports, fake_rest) -> None:
        client = _legacy(transport_factory, fake_rest)
        await client.subscribe("BTC_ETH")

        await client.open_connection(Protocol.NAMED)
        assert client.protocol is Protocol.NAMED
        assert client.subscriptions == []
        assert fake_rest.calls == 0
        await client.close_connection()


# ---------------------------------------------------------------------------
# Private gateway
# ---------------------------------------------------------------------------

class TestPrivateGateway:
    def _client(self, transport_factory) -> PoloniexWebSocketClient:
        auth = PoloniexAuth(api_key="test-key", api_secret="test-secret")
        return _named(transport_factory, auth=auth, private=True)

    @pytest.mark.asyncio
    async def test_auth_before_replay(self, transport_factory, transports) -> None:
        client = self._client(transport_factory)
        rec    = Recorder(client)
        await client.subscribe("orders")
        await client.open_connection()
        transport = transports[0]
        assert transport.url == PoloniexEndpoints().ws_private

        await transport.open()
        [auth_msg] = transport.sent
        assert auth_msg["channel"] == ["auth"]
        assert auth_msg["params"]["key"] == "test-key"
        assert not client.is_open

        await transport.receive({"channel": "auth", "data": {"success": True, "ts": 1}})
        assert transport.sent[1:] == [{"event": "subscribe", "channel": ["orders"]}]
        assert client.is_open
        assert [name for name, _, _ in rec.of(EventKind.MESSAGE)] == ["auth"]
        await client.close_connection()

    @pytest.mark.asyncio
    async def test_rejected_auth_reports_error(self, transport_factory, transports) -> None:
        client = self._client(transport_factory)
        rec    = Recorder(client)
        await client.subscribe("orders")
        await client.open_connection()
        await transports[0].open()

        await transports[0].receive({"channel": "auth", "data": {"success": False, "message": "bad key"}})
        errors: list[ErrorInfo] = [info for (info,) in rec.of(EventKind.ERROR)]
        assert [e.source for e in errors] == ["auth"]
        assert "bad key" in errors[0].message
        assert len(transports[0].sent) == 1
        await client.close_connection()

    @pytest.mark.asyncio
    async def test_missing_credentials_reported(self, transport_factory, transports) -> None:
        client = _named(transport_factory, private=True)
        rec    = Recorder(client)
        await client.open_connection()
        await transports[0].open()

        [(info,)] = rec.of(EventKind.ERROR)
        assert info.source == "auth"
        assert isinstance(info.exception, ValueError)
        await client.close_connection()
