"""
ws.py – Async WebSocket market-data client for Poloniex.

Two protocol generations are supported behind one event API:

Legacy numeric (wss://api2.poloniex.com)
  {"command": "subscribe", "channel": 1002}
  [1002, null, [148, "0.032", ...]]

Named (wss://ws.poloniex.com/ws/public and /ws/private)
  {"event": "subscribe", "channel": ["book_lv2"], "symbols": ["BTC_USDT"]}
  {"channel": "book_lv2", "data": [{"symbol": "BTC_USDT", ...}]}

This client:
1. Fetches the market table over REST before a legacy connection, so
   currency pairs can be mapped to numeric channel ids.
2. Keeps the subscription set across connections and replays it once
   on every open.
3. Sends an application-level ping where the protocol needs one and,
   on the private gateway, authenticates before replaying.
4. Decodes every frame into typed MarketEvents and dispatches them to
   registered async listeners.  Nothing raised while decoding or inside
   a listener escapes to the caller; failures become `error` events.

Usage
-----
    from poloniex_sdk import PoloniexWebSocketClient, EventKind, Protocol

    async def on_message(channel, payload, sequence) -> None:
        print(channel, payload)

    ws = PoloniexWebSocketClient(protocol=Protocol.LEGACY_NUMERIC)
    ws.on(EventKind.MESSAGE, on_message)
    await ws.subscribe("ticker")
    await ws.subscribe("BTC_ETH")
    await ws.run_forever()
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from enum import Enum, unique
from typing import Any, Optional, Union

from .auth import PoloniexAuth, PoloniexEndpoints
from .channels import ChannelRegistry, WireChannel, split_named
from .decoder import decode, server_error
from .markets import MarketTable
from .rest import AsyncPoloniexRestClient, PoloniexAPIError
from .subscriptions import SubscriptionManager
from .transport import ReconnectPolicy, Transport, TransportError, WebSocketTransport
from .types import ChannelData, DecodeError, ErrorInfo, EventKind, Heartbeat, Protocol

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Type aliases
# ---------------------------------------------------------------------------

# Listener signatures per event kind:
#   open(details: dict)
#   close(reason: str, code: int)
#   error(info: ErrorInfo)
#   message(channel_name: str, payload: Payload, sequence: Optional[int])
#   heartbeat()
Listener = Callable[..., Coroutine[Any, Any, None]]

TransportFactory = Callable[[str], Transport]


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_KEEPALIVE_S = 20.0

# delivered without a subscription
_UNSOLICITED = frozenset({"footer", "auth"})


# ---------------------------------------------------------------------------
# Protocol strategies
# ---------------------------------------------------------------------------

class ProtocolStrategy:
    """How one protocol generation frames commands and stays alive."""

    protocol:           Protocol
    keepalive_interval: Optional[float] = None
    needs_market_table: bool = False
    supports_auth:      bool = False

    def url(self, endpoints: PoloniexEndpoints, private: bool) -> str:
        raise NotImplementedError

    def command(self, name: str, wire: WireChannel, subscribe: bool) -> dict[str, Any]:
        raise NotImplementedError

    def keepalive_message(self) -> Optional[dict[str, Any]]:
        return None


class LegacyNumericChannel(ProtocolStrategy):
    protocol           = Protocol.LEGACY_NUMERIC
    needs_market_table = True

    def url(self, endpoints: PoloniexEndpoints, private: bool) -> str:
        return endpoints.ws_legacy

    def command(self, name: str, wire: WireChannel, subscribe: bool) -> dict[str, Any]:
        return {"command": "subscribe" if subscribe else "unsubscribe", "channel": wire}


class NamedChannel(ProtocolStrategy):
    protocol           = Protocol.NAMED
    keepalive_interval = _KEEPALIVE_S
    supports_auth      = True

    def url(self, endpoints: PoloniexEndpoints, private: bool) -> str:
        return endpoints.ws_private if private else endpoints.ws_public

    def command(self, name: str, wire: WireChannel, subscribe: bool) -> dict[str, Any]:
        channel, symbol = split_named(str(wire))
        msg: dict[str, Any] = {
            "event":   "subscribe" if subscribe else "unsubscribe",
            "channel": [channel],
        }
        if symbol is not None:
            msg["symbols"] = [symbol]
        return msg

    def keepalive_message(self) -> Optional[dict[str, Any]]:
        return {"event": "ping"}


STRATEGIES: dict[Protocol, ProtocolStrategy] = {
    Protocol.LEGACY_NUMERIC: LegacyNumericChannel(),
    Protocol.NAMED:          NamedChannel(),
}


# ---------------------------------------------------------------------------
# Connection state
# ---------------------------------------------------------------------------

@unique
class ConnectionStatus(str, Enum):
    CLOSED     = "closed"
    CONNECTING = "connecting"
    OPEN       = "open"


@dataclass
class ConnectionState:
    strategy:       ProtocolStrategy
    registry:       ChannelRegistry
    status:         ConnectionStatus = ConnectionStatus.CLOSED
    transport:      Optional[Transport] = None
    keepalive:      Optional[asyncio.Task] = None
    awaiting_auth:  bool = False
    closed_by_user: bool = False
    listeners:      dict[EventKind, list[Listener]] = field(
        default_factory=lambda: {kind: [] for kind in EventKind}
    )


def _wire_channel(frame: Any) -> Optional[WireChannel]:
    """Channel id or name a raw frame arrived on."""
    if isinstance(frame, list) and frame:
        return frame[0]
    if isinstance(frame, dict):
        return frame.get("channel")
    return None


# ---------------------------------------------------------------------------
# WebSocket client
# ---------------------------------------------------------------------------

class PoloniexWebSocketClient:
    """
    Async WebSocket client for Poloniex market data.

    Parameters
    ----------
    auth               : PoloniexAuth; credentials are only needed when private=True
    protocol           : Protocol.NAMED (default) or Protocol.LEGACY_NUMERIC
    private            : connect to the authenticated gateway (named protocol only)
    rest               : async REST client used to fetch the market table;
                         one is created on demand when omitted
    reconnect          : back-off policy for the default transport
    keepalive_interval : override the protocol's application ping interval
    transport_factory  : callable url → Transport, for tests or custom transports
    """

    def __init__(
        self,
        auth:               Optional[PoloniexAuth] = None,
        protocol:           Union[Protocol, str] = Protocol.NAMED,
        *,
        private:            bool = False,
        rest:               Optional[AsyncPoloniexRestClient] = None,
        reconnect:          ReconnectPolicy = ReconnectPolicy(),
        keepalive_interval: Optional[float] = None,
        transport_factory:  Optional[TransportFactory] = None,
    ) -> None:
        strategy = STRATEGIES[Protocol(protocol)]

        self._auth               = auth or PoloniexAuth()
        self._private            = private
        self._rest               = rest
        self._owns_rest          = rest is None
        self._keepalive_interval = keepalive_interval
        self._transport_factory  = transport_factory or (
            lambda url: WebSocketTransport(url, reconnect=reconnect)
        )
        self._state         = ConnectionState(strategy=strategy, registry=ChannelRegistry(strategy.protocol))
        self._subscriptions = SubscriptionManager(self)

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    async def __aenter__(self) -> "PoloniexWebSocketClient":
        return self

    async def __aexit__(self, *_: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def status(self) -> ConnectionStatus:
        return self._state.status

    @property
    def protocol(self) -> Protocol:
        return self._state.strategy.protocol

    @property
    def subscriptions(self) -> list[str]:
        return self._subscriptions.names

    @property
    def is_open(self) -> bool:
        """True when commands can be sent: socket open and, if private, authenticated."""
        st = self._state
        return (
            st.status is ConnectionStatus.OPEN
            and st.transport is not None
            and st.transport.is_open
            and not st.awaiting_auth
        )

    # ------------------------------------------------------------------
    # Listener registry
    # ------------------------------------------------------------------

    def on(self, event: Union[EventKind, str], listener: Listener) -> None:
        """Register an async listener for one event kind."""
        self._state.listeners[EventKind(event)].append(listener)

    def off(self, event: Union[EventKind, str], listener: Listener) -> None:
        """Remove a listener; unknown listeners are ignored."""
        listeners = self._state.listeners[EventKind(event)]
        if listener in listeners:
            listeners.remove(listener)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    async def subscribe(self, name: str) -> bool:
        """
        Subscribe to a channel by logical name.

        Legacy: "ticker", "footer", "trollbox" or a currency pair such as
        "BTC_ETH".  Named: a channel, optionally with a symbol suffix,
        e.g. "ticker.BTC_USDT" or "book_lv2.ETH_USDT".
        """
        return await self._subscriptions.subscribe(name)

    async def unsubscribe(self, name: str) -> bool:
        return await self._subscriptions.unsubscribe(name)

    async def send_raw(self, payload: dict[str, Any]) -> None:
        """Send a JSON message as-is, e.g. a named-gateway list_subscriptions request."""
        await self._send(payload)

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def open_connection(self, protocol: Optional[Union[Protocol, str]] = None) -> None:
        """
        Start connecting.  Returns once the transport has been started;
        the `open` event fires when the socket is up.

        Switching protocol drops every recorded subscription, since names
        are not portable between the two channel vocabularies.
        """
        st = self._state
        if st.status is not ConnectionStatus.CLOSED:
            logger.debug("open_connection ignored: connection is %s", st.status.value)
            return

        if protocol is not None and Protocol(protocol) is not st.strategy.protocol:
            logger.info(
                "Switching protocol %s → %s, dropping %d subscriptions",
                st.strategy.protocol.value, Protocol(protocol).value, len(self._subscriptions),
            )
            self._subscriptions.clear()
            st.strategy = STRATEGIES[Protocol(protocol)]

        strategy          = st.strategy
        st.status         = ConnectionStatus.CONNECTING
        st.closed_by_user = False

        markets: Optional[MarketTable] = None
        if strategy.needs_market_table:
            import aiohttp

            try:
                markets = await self._rest_client().get_market_table()
            except (PoloniexAPIError, aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
                logger.warning("Could not load market table: %s", exc)
                st.status = ConnectionStatus.CLOSED
                await self._emit(EventKind.ERROR, ErrorInfo(
                    source="transport",
                    message=f"Could not load market table: {exc}",
                    exception=exc,
                ))
                return
        st.registry = ChannelRegistry(strategy.protocol, markets)

        url       = strategy.url(self._auth.endpoints, self._private)
        transport = self._transport_factory(url)
        transport.on_open    = self._handle_open
        transport.on_message = self._handle_message
        transport.on_close   = self._handle_close
        transport.on_error   = self._handle_error
        st.transport = transport

        logger.info("Opening %s connection to %s", strategy.protocol.value, url)
        transport.start()

    async def close_connection(self) -> None:
        """Close the socket for good; no reconnect follows."""
        st = self._state
        st.closed_by_user = True
        self._stop_keepalive()

        transport = st.transport
        if transport is not None:
            await transport.close()
        st.transport     = None
        st.status        = ConnectionStatus.CLOSED
        st.awaiting_auth = False

    async def run_forever(self) -> None:
        """Open the connection (if needed) and wait until it is closed for good."""
        await self.open_connection()
        transport = self._state.transport
        if transport is not None:
            await transport.wait_closed()

    async def close(self) -> None:
        """Close the connection and any REST session this client created."""
        await self.close_connection()
        if self._owns_rest and self._rest is not None:
            await self._rest.close()
            self._rest = None

    # ------------------------------------------------------------------
    # SubscriptionLink
    # ------------------------------------------------------------------

    def resolve(self, name: str) -> WireChannel:
        return self._state.registry.resolve(name)

    async def send_subscription(self, name: str, wire: WireChannel, subscribe: bool) -> None:
        await self._send(self._state.strategy.command(name, wire, subscribe))

    async def report_error(self, info: ErrorInfo) -> None:
        await self._emit(EventKind.ERROR, info)

    # ------------------------------------------------------------------
    # Transport callbacks
    # ------------------------------------------------------------------

    async def _handle_open(self) -> None:
        st = self._state
        st.status = ConnectionStatus.OPEN
        self._start_keepalive()

        if self._private and st.strategy.supports_auth:
            st.awaiting_auth = True
            try:
                await self._send(self._auth.ws_auth_payload())
            except (TransportError, ValueError) as exc:
                await self._emit(EventKind.ERROR, ErrorInfo(
                    source="auth", message=f"Authentication not sent: {exc}", exception=exc,
                ))
        else:
            await self._subscriptions.replay_all()

        await self._emit(EventKind.OPEN, {
            "protocol": st.strategy.protocol.value,
            "private":  self._private,
        })

    async def _handle_message(self, raw: Any) -> None:
        try:
            frame = json.loads(raw)
        except (TypeError, ValueError) as exc:
            logger.warning("Received non-JSON WebSocket message: %r", raw)
            await self._emit(EventKind.ERROR, ErrorInfo(
                source="parse", message=f"Non-JSON frame: {raw!r:.200}", exception=exc,
            ))
            return

        message = server_error(frame)
        if message is not None:
            logger.warning("Server error: %s", message)
            await self._emit(EventKind.ERROR, ErrorInfo(source="server", message=message))
            return

        for result in decode(frame, self._state.registry):
            if isinstance(result, DecodeError):
                logger.debug("Decode error: %s", result.message)
                await self._emit(EventKind.ERROR, ErrorInfo.from_decode_error(result))
            elif isinstance(result.payload, Heartbeat):
                await self._emit(EventKind.HEARTBEAT)
            elif not self._is_subscribed(result.channel_name):
                wire = _wire_channel(frame)
                logger.debug("Dropping data on unsubscribed channel %r", wire)
                await self._emit(EventKind.ERROR, ErrorInfo(
                    source="decode", message=f"Data on unsubscribed channel {wire!r}", channel=wire,
                ))
            else:
                if self._state.awaiting_auth and result.channel_name == "auth":
                    await self._handle_auth(result.payload)
                await self._emit(EventKind.MESSAGE, result.channel_name, result.payload, result.sequence)

    async def _handle_auth(self, payload: Any) -> None:
        data    = payload.data if isinstance(payload, ChannelData) else None
        success = isinstance(data, dict) and bool(data.get("success"))
        if not success:
            reason = data.get("message") if isinstance(data, dict) else None
            await self._emit(EventKind.ERROR, ErrorInfo(
                source="auth", message=f"Authentication failed: {reason or 'rejected'}", channel="auth",
            ))
            return

        logger.info("Authenticated on private gateway")
        self._state.awaiting_auth = False
        await self._subscriptions.replay_all()

    async def _handle_close(self, code: int, reason: str) -> None:
        st = self._state
        self._stop_keepalive()
        self._subscriptions.mark_unsent()
        st.awaiting_auth = False

        transport = st.transport
        if st.closed_by_user or transport is None or not transport.reconnects:
            st.status = ConnectionStatus.CLOSED
        else:
            st.status = ConnectionStatus.CONNECTING

        logger.info("Connection closed (%d) %s; status %s", code, reason, st.status.value)
        await self._emit(EventKind.CLOSE, reason, code)

    async def _handle_error(self, exc: BaseException) -> None:
        await self._emit(EventKind.ERROR, ErrorInfo(
            source="transport", message=str(exc) or type(exc).__name__, exception=exc,
        ))

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _is_subscribed(self, name: str) -> bool:
        if name in _UNSOLICITED or name in self._subscriptions:
            return True
        # "ticker.BTC_USDT" is covered by a subscription to all of "ticker"
        channel, symbol = split_named(name)
        return symbol is not None and channel in self._subscriptions

    def _rest_client(self) -> AsyncPoloniexRestClient:
        if self._rest is None:
            self._rest = AsyncPoloniexRestClient(self._auth)
        return self._rest

    async def _send(self, payload: dict[str, Any]) -> None:
        transport = self._state.transport
        if transport is None:
            raise TransportError("Not connected")
        msg = json.dumps(payload)
        logger.debug("→ %s", msg)
        await transport.send(msg)

    def _start_keepalive(self) -> None:
        strategy = self._state.strategy
        interval = self._keepalive_interval or strategy.keepalive_interval
        message  = strategy.keepalive_message()
        if not interval or message is None:
            return
        self._stop_keepalive()
        self._state.keepalive = asyncio.create_task(self._keepalive_loop(interval, message))

    def _stop_keepalive(self) -> None:
        task = self._state.keepalive
        if task is not None:
            task.cancel()
            self._state.keepalive = None

    async def _keepalive_loop(self, interval: float, message: dict[str, Any]) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self._send(message)
            except TransportError as exc:
                # the close callback follows and cancels this task
                logger.debug("Keepalive not sent: %s", exc)
                return

    async def _emit(self, event: EventKind, *args: Any) -> None:
        """Call every listener for event; listener exceptions are logged, never raised."""
        for listener in list(self._state.listeners[event]):
            try:
                await listener(*args)
            except Exception:
                logger.exception("Unhandled exception in %s listener", event.value)
