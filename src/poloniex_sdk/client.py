"""
client.py – Unified PoloniexClient façade.

Single entry point that owns both the async REST client and the WebSocket
client, wired to a shared PoloniexAuth instance so credentials and
endpoints are configured once.  The WebSocket client reuses the REST
client to fetch the market table for legacy connections.

Usage
-----
    import asyncio
    from poloniex_sdk import EventKind, PoloniexClient, Protocol

    async def main() -> None:
        async with PoloniexClient(protocol=Protocol.LEGACY_NUMERIC) as client:

            # Reference data via REST
            markets = await client.rest.get_market_table()

            # Real-time market data via WebSocket
            async def on_message(channel, payload, sequence) -> None:
                print(channel, payload)

            client.ws.on(EventKind.MESSAGE, on_message)
            await client.ws.subscribe("BTC_ETH")
            await client.ws.run_forever()

    asyncio.run(main())
"""

from __future__ import annotations

from typing import Optional, Union

from .auth import PoloniexAuth, PoloniexEndpoints
from .rest import AsyncPoloniexRestClient
from .transport import ReconnectPolicy
from .types import Protocol
from .ws import PoloniexWebSocketClient


class PoloniexClient:
    """
    Unified façade for the Poloniex SDK.

    Parameters
    ----------
    api_key      : Poloniex API key (only needed for private calls)
    api_secret   : matching secret
    protocol     : WebSocket protocol, Protocol.NAMED or Protocol.LEGACY_NUMERIC
    private      : connect the WebSocket client to the authenticated gateway
    endpoints    : base URL overrides
    reconnect    : WebSocket reconnect back-off
    rest_timeout : HTTP timeout in seconds for REST requests
    """

    def __init__(
        self,
        api_key:    str = "",
        api_secret: str = "",
        *,
        protocol:     Union[Protocol, str] = Protocol.NAMED,
        private:      bool = False,
        endpoints:    Optional[PoloniexEndpoints] = None,
        reconnect:    ReconnectPolicy = ReconnectPolicy(),
        rest_timeout: float = 10.0,
    ) -> None:
        self._auth = PoloniexAuth(
            api_key=api_key,
            api_secret=api_secret,
            endpoints=endpoints or PoloniexEndpoints(),
        )
        self.rest = AsyncPoloniexRestClient(auth=self._auth, timeout=rest_timeout)
        self.ws   = PoloniexWebSocketClient(
            self._auth,
            protocol,
            private=private,
            rest=self.rest,
            reconnect=reconnect,
        )

    # ------------------------------------------------------------------
    # Async context manager
    # ------------------------------------------------------------------

    async def __aenter__(self) -> "PoloniexClient":
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the WebSocket connection and the REST session."""
        await self.ws.close()
        await self.rest.close()

    @property
    def auth(self) -> PoloniexAuth:
        """The shared PoloniexAuth instance."""
        return self._auth
