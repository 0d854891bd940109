"""
rest.py – REST clients (sync and async) for Poloniex.

Two HTTP APIs are covered:

  - the current API at api.poloniex.com (JSON, HMAC-SHA256 headers)
  - the legacy command API at poloniex.com/public and /tradingApi,
    which is still the source of the numeric market ids used by the
    legacy WebSocket protocol (see get_market_table)

Both clients raise PoloniexAPIError on non-2xx responses and on bodies
carrying an ``error`` key, and record every call in a CallRateTracker
so consumers can see how close they are to the exchange limits.

Usage – sync
------------
    from poloniex_sdk import PoloniexRestClient, PoloniexAuth

    client = PoloniexRestClient(PoloniexAuth(api_key="...", api_secret="..."))
    book   = client.get_order_book("BTC_USDT", limit=20)
    client.create_order("BTC_USDT", "BUY", price="20000", quantity="0.01")

Usage – async
-------------
    async with AsyncPoloniexRestClient(auth) as client:
        markets = await client.get_market_table()
        balances = await client.get_accounts_balances()
"""

from __future__ import annotations

import logging
from typing import Any, NamedTuple, Optional

import requests

from .auth import PoloniexAuth
from .markets import MarketTable
from .ratelimit import CallCategory, CallRateTracker
from .signing import encode_body, encode_params

logger = logging.getLogger(__name__)

_USER_AGENT      = "poloniex-sdk-python"
_DEFAULT_TIMEOUT = 10.0


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class PoloniexAPIError(Exception):
    """Raised when Poloniex returns an error response."""

    def __init__(self, status_code: int, body: str, method: str = "", path: str = "") -> None:
        self.status_code = status_code
        self.body        = body
        self.method      = method.upper()
        self.path        = path
        location = f" {self.method} {self.path}" if path else ""
        super().__init__(f"Poloniex API error [{status_code}]{location}: {body}")


# ---------------------------------------------------------------------------
# Request shaping (shared by sync and async clients)
# ---------------------------------------------------------------------------

class _Call(NamedTuple):
    method:   str
    path:     str                     # request path, or the command name for legacy calls
    category: CallCategory
    params:   dict[str, Any] = {}
    body:     Optional[dict[str, Any]] = None
    private:  bool = False
    legacy:   bool = False


def _compact(**kwargs: Any) -> dict[str, Any]:
    return {k: v for k, v in kwargs.items() if v is not None}


def _scoped(prefix: str, key: Optional[str], suffix: str = "") -> str:
    """Join prefix, optional key and suffix: /markets/BTC_USDT/price or /markets/price."""
    return f"{prefix}/{key}{suffix}" if key else f"{prefix}{suffix}"


def _prepare(auth: PoloniexAuth, call: _Call) -> tuple[str, dict[str, str], Optional[str]]:
    """Return (url, headers, body) for a call, signing it when private."""
    endpoints = auth.endpoints
    headers   = {"User-Agent": _USER_AGENT}

    if call.legacy:
        if call.private:
            data, signed = auth.sign_legacy(call.path, call.params)
            headers.update(signed)
            headers["Content-Type"] = "application/x-www-form-urlencoded"
            return endpoints.legacy_private, headers, data
        query = encode_params({"command": call.path, **call.params})
        return f"{endpoints.legacy_public}?{query}", headers, None

    query = encode_params(call.params)
    url   = endpoints.rest + call.path + (f"?{query}" if query else "")
    data  = encode_body(call.body)
    if call.private:
        headers.update(auth.sign_request(call.method, call.path, call.params, data))
    elif data is not None:
        headers["Content-Type"] = "application/json"
    return url, headers, data


def _unwrap(status: int, payload: Any, call: _Call) -> Any:
    if isinstance(payload, dict) and "error" in payload:
        raise PoloniexAPIError(status, str(payload["error"]), method=call.method, path=call.path)
    return payload


# Public – current API

def _get_symbols(symbol: Optional[str]) -> _Call:
    category = CallCategory.NRI_PUB if symbol else CallCategory.RI_PUB
    return _Call("GET", _scoped("/markets", symbol), category)


def _get_currencies(currency: Optional[str]) -> _Call:
    category = CallCategory.NRI_PUB if currency else CallCategory.RI_PUB
    return _Call("GET", _scoped("/currencies", currency), category)


def _get_timestamp() -> _Call:
    return _Call("GET", "/timestamp", CallCategory.NRI_PUB)


def _get_prices(symbol: Optional[str]) -> _Call:
    return _Call("GET", _scoped("/markets", symbol, "/price"), CallCategory.NRI_PUB)


def _get_mark_price(symbol: Optional[str]) -> _Call:
    return _Call("GET", _scoped("/markets", symbol, "/markPrice"), CallCategory.NRI_PUB)


def _get_order_book(symbol: str, scale: Optional[str], limit: Optional[int]) -> _Call:
    params = _compact(scale=scale, limit=limit)
    return _Call("GET", f"/markets/{symbol}/orderBook", CallCategory.NRI_PUB, params)


def _get_candles(
    symbol: str,
    interval: str,
    limit: Optional[int],
    start_time: Optional[int],
    end_time: Optional[int],
) -> _Call:
    params = _compact(interval=interval, limit=limit, startTime=start_time, endTime=end_time)
    return _Call("GET", f"/markets/{symbol}/candles", CallCategory.RI_PUB, params)


def _get_trades(symbol: str, limit: Optional[int]) -> _Call:
    return _Call("GET", f"/markets/{symbol}/trades", CallCategory.NRI_PUB, _compact(limit=limit))


def _get_ticker(symbol: Optional[str]) -> _Call:
    category = CallCategory.NRI_PUB if symbol else CallCategory.RI_PUB
    return _Call("GET", _scoped("/markets", symbol, "/ticker24h"), category)


# Public – legacy command API

def _return_ticker() -> _Call:
    return _Call("GET", "returnTicker", CallCategory.RI_PUB, legacy=True)


# Private – current API

def _get_accounts_info() -> _Call:
    return _Call("GET", "/accounts", CallCategory.NRI_PRIV, private=True)


def _get_accounts_balances(account_type: Optional[str]) -> _Call:
    params = _compact(accountType=account_type)
    return _Call("GET", "/accounts/balances", CallCategory.NRI_PRIV, params, private=True)


def _get_fee_info() -> _Call:
    return _Call("GET", "/feeinfo", CallCategory.NRI_PRIV, private=True)


def _create_order(
    symbol: str,
    side: str,
    type: str,
    price: Optional[str],
    quantity: Optional[str],
    amount: Optional[str],
    time_in_force: Optional[str],
    client_order_id: Optional[str],
) -> _Call:
    body = _compact(
        symbol=symbol,
        side=side.upper(),
        type=type.upper(),
        price=price,
        quantity=quantity,
        amount=amount,
        timeInForce=time_in_force,
        clientOrderId=client_order_id,
    )
    return _Call("POST", "/orders", CallCategory.NRI_PRIV, body=body, private=True)


def _cancel_order(order_id: str) -> _Call:
    return _Call("DELETE", f"/orders/{order_id}", CallCategory.NRI_PRIV, private=True)


def _get_open_orders(symbol: Optional[str], side: Optional[str], limit: Optional[int]) -> _Call:
    params = _compact(symbol=symbol, side=side.upper() if side else None, limit=limit)
    return _Call("GET", "/orders", CallCategory.RI_PRIV, params, private=True)


def _get_order_details(order_id: str) -> _Call:
    return _Call("GET", f"/orders/{order_id}", CallCategory.NRI_PRIV, private=True)


def _get_trades_history(
    symbols: Optional[list[str]],
    limit: Optional[int],
    start_time: Optional[int],
    end_time: Optional[int],
) -> _Call:
    params = _compact(
        symbols=",".join(symbols) if symbols else None,
        limit=limit,
        startTime=start_time,
        endTime=end_time,
    )
    return _Call("GET", "/trades", CallCategory.RI_PRIV, params, private=True)


def _get_order_trades(order_id: str) -> _Call:
    return _Call("GET", f"/orders/{order_id}/trades", CallCategory.NRI_PRIV, private=True)


# Private – legacy command API

def _return_balances() -> _Call:
    return _Call("POST", "returnBalances", CallCategory.NRI_PRIV, private=True, legacy=True)


# ---------------------------------------------------------------------------
# Synchronous client
# ---------------------------------------------------------------------------

class PoloniexRestClient:
    """
    Synchronous REST client for Poloniex.

    Parameters
    ----------
    auth    : PoloniexAuth (credentials only needed for private calls)
    timeout : Default HTTP timeout in seconds
    session : requests.Session to use; one is created when omitted
    rates   : CallRateTracker to record calls in
    """

    def __init__(
        self,
        auth:    Optional[PoloniexAuth] = None,
        timeout: float = _DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
        rates:   Optional[CallRateTracker] = None,
    ) -> None:
        self._auth    = auth or PoloniexAuth()
        self._timeout = timeout
        self._session = session or requests.Session()
        self._rates   = rates or CallRateTracker()

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> "PoloniexRestClient":
        return self

    def __exit__(self, *_: Any) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Internal request helper
    # ------------------------------------------------------------------

    def _request(self, call: _Call) -> Any:
        url, headers, data = _prepare(self._auth, call)
        count = self._rates.record(call.category)
        logger.debug("%s %s  category=%s  calls=%d", call.method, url, call.category.value, count)

        resp = self._session.request(call.method, url, data=data, headers=headers, timeout=self._timeout)
        if resp.status_code >= 400:
            raise PoloniexAPIError(resp.status_code, resp.text, method=call.method, path=call.path)
        return _unwrap(resp.status_code, resp.json(), call)

    # ------------------------------------------------------------------
    # Call-rate reporting
    # ------------------------------------------------------------------

    def call_rates(self) -> dict[str, int]:
        """Calls made in the last second, per category."""
        return self._rates.snapshot()

    def call_rate_info(self, category: CallCategory) -> tuple[str, int, int]:
        return self._rates.info(CallCategory(category))

    # ------------------------------------------------------------------
    # Market data (public)
    # ------------------------------------------------------------------

    def get_symbols(self, symbol: Optional[str] = None) -> Any:
        """Trading rules for every market, or for one symbol."""
        return self._request(_get_symbols(symbol))

    def get_currencies(self, currency: Optional[str] = None) -> Any:
        return self._request(_get_currencies(currency))

    def get_timestamp(self) -> Any:
        return self._request(_get_timestamp())

    def get_prices(self, symbol: Optional[str] = None) -> Any:
        return self._request(_get_prices(symbol))

    def get_mark_price(self, symbol: Optional[str] = None) -> Any:
        return self._request(_get_mark_price(symbol))

    def get_order_book(self, symbol: str, scale: Optional[str] = None, limit: Optional[int] = None) -> Any:
        return self._request(_get_order_book(symbol, scale, limit))

    def get_candles(
        self,
        symbol:     str,
        interval:   str,
        limit:      Optional[int] = None,
        start_time: Optional[int] = None,
        end_time:   Optional[int] = None,
    ) -> Any:
        """OHLC candles; interval is e.g. "MINUTE_1" or "HOUR_4"."""
        return self._request(_get_candles(symbol, interval, limit, start_time, end_time))

    def get_trades(self, symbol: str, limit: Optional[int] = None) -> Any:
        return self._request(_get_trades(symbol, limit))

    def get_ticker(self, symbol: Optional[str] = None) -> Any:
        """24h ticker for every market, or for one symbol."""
        return self._request(_get_ticker(symbol))

    def return_ticker(self) -> dict[str, Any]:
        """Legacy ticker keyed by currency pair; entries carry the numeric market id."""
        return self._request(_return_ticker())

    def get_market_table(self) -> MarketTable:
        return MarketTable.from_ticker(self.return_ticker())

    # ------------------------------------------------------------------
    # Account and orders (private)
    # ------------------------------------------------------------------

    def get_accounts_info(self) -> Any:
        return self._request(_get_accounts_info())

    def get_accounts_balances(self, account_type: Optional[str] = None) -> Any:
        return self._request(_get_accounts_balances(account_type))

    def get_fee_info(self) -> Any:
        return self._request(_get_fee_info())

    def create_order(
        self,
        symbol:          str,
        side:            str,
        type:            str = "LIMIT",
        price:           Optional[str] = None,
        quantity:        Optional[str] = None,
        amount:          Optional[str] = None,
        time_in_force:   Optional[str] = None,
        client_order_id: Optional[str] = None,
    ) -> Any:
        """Place an order; returns {"id": ..., "clientOrderId": ...}."""
        return self._request(_create_order(
            symbol, side, type, price, quantity, amount, time_in_force, client_order_id,
        ))

    def cancel_order(self, order_id: str) -> Any:
        return self._request(_cancel_order(order_id))

    def get_open_orders(
        self,
        symbol: Optional[str] = None,
        side:   Optional[str] = None,
        limit:  Optional[int] = None,
    ) -> Any:
        return self._request(_get_open_orders(symbol, side, limit))

    def get_order_details(self, order_id: str) -> Any:
        return self._request(_get_order_details(order_id))

    def get_trades_history(
        self,
        symbols:    Optional[list[str]] = None,
        limit:      Optional[int] = None,
        start_time: Optional[int] = None,
        end_time:   Optional[int] = None,
    ) -> Any:
        return self._request(_get_trades_history(symbols, limit, start_time, end_time))

    def get_order_trades(self, order_id: str) -> Any:
        return self._request(_get_order_trades(order_id))

    def return_balances(self) -> dict[str, str]:
        """Legacy exchange-account balances keyed by currency."""
        return self._request(_return_balances())


# ---------------------------------------------------------------------------
# Async client
# ---------------------------------------------------------------------------

class AsyncPoloniexRestClient:
    """
    Async REST client for Poloniex (aiohttp-based).

    Shares the same PoloniexAuth instance as the WebSocket client so a
    single event loop can drive both without thread-bridging.

    Usage
    -----
        async with AsyncPoloniexRestClient(auth) as client:
            ticker = await client.get_ticker("BTC_USDT")
    """

    def __init__(
        self,
        auth:    Optional[PoloniexAuth] = None,
        timeout: float = _DEFAULT_TIMEOUT,
        session: Any = None,
        rates:   Optional[CallRateTracker] = None,
    ) -> None:
        self._auth    = auth or PoloniexAuth()
        self._timeout = timeout
        self._session: Any = session   # aiohttp.ClientSession, created on first use
        self._rates   = rates or CallRateTracker()

    async def __aenter__(self) -> "AsyncPoloniexRestClient":
        return self

    async def __aexit__(self, *_: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    # ------------------------------------------------------------------
    # Internal async request helper
    # ------------------------------------------------------------------

    async def _request(self, call: _Call) -> Any:
        import aiohttp

        url, headers, data = _prepare(self._auth, call)

        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()

        count = self._rates.record(call.category)
        logger.debug("%s %s  category=%s  calls=%d", call.method, url, call.category.value, count)

        async with self._session.request(
            call.method, url,
            data=data,
            headers=headers,
            timeout=aiohttp.ClientTimeout(total=self._timeout),
        ) as resp:
            if resp.status >= 400:
                body = await resp.text()
                raise PoloniexAPIError(resp.status, body, method=call.method, path=call.path)
            payload = await resp.json(content_type=None)
            return _unwrap(resp.status, payload, call)

    # ------------------------------------------------------------------
    # Call-rate reporting
    # ------------------------------------------------------------------

    def call_rates(self) -> dict[str, int]:
        return self._rates.snapshot()

    def call_rate_info(self, category: CallCategory) -> tuple[str, int, int]:
        return self._rates.info(CallCategory(category))

    # ------------------------------------------------------------------
    # Market data (public)
    # ------------------------------------------------------------------

    async def get_symbols(self, symbol: Optional[str] = None) -> Any:
        return await self._request(_get_symbols(symbol))

    async def get_currencies(self, currency: Optional[str] = None) -> Any:
        return await self._request(_get_currencies(currency))

    async def get_timestamp(self) -> Any:
        return await self._request(_get_timestamp())

    async def get_prices(self, symbol: Optional[str] = None) -> Any:
        return await self._request(_get_prices(symbol))

    async def get_mark_price(self, symbol: Optional[str] = None) -> Any:
        return await self._request(_get_mark_price(symbol))

    async def get_order_book(self, symbol: str, scale: Optional[str] = None, limit: Optional[int] = None) -> Any:
        return await self._request(_get_order_book(symbol, scale, limit))

    async def get_candles(
        self,
        symbol:     str,
        interval:   str,
        limit:      Optional[int] = None,
        start_time: Optional[int] = None,
        end_time:   Optional[int] = None,
    ) -> Any:
        return await self._request(_get_candles(symbol, interval, limit, start_time, end_time))

    async def get_trades(self, symbol: str, limit: Optional[int] = None) -> Any:
        return await self._request(_get_trades(symbol, limit))

    async def get_ticker(self, symbol: Optional[str] = None) -> Any:
        return await self._request(_get_ticker(symbol))

    async def return_ticker(self) -> dict[str, Any]:
        return await self._request(_return_ticker())

    async def get_market_table(self) -> MarketTable:
        """Fetch the legacy ticker and build the id ↔ pair table from it."""
        return MarketTable.from_ticker(await self.return_ticker())

    # ------------------------------------------------------------------
    # Account and orders (private)
    # ------------------------------------------------------------------

    async def get_accounts_info(self) -> Any:
        return await self._request(_get_accounts_info())

    async def get_accounts_balances(self, account_type: Optional[str] = None) -> Any:
        return await self._request(_get_accounts_balances(account_type))

    async def get_fee_info(self) -> Any:
        return await self._request(_get_fee_info())

    async def create_order(
        self,
        symbol:          str,
        side:            str,
        type:            str = "LIMIT",
        price:           Optional[str] = None,
        quantity:        Optional[str] = None,
        amount:          Optional[str] = None,
        time_in_force:   Optional[str] = None,
        client_order_id: Optional[str] = None,
    ) -> Any:
        return await self._request(_create_order(
            symbol, side, type, price, quantity, amount, time_in_force, client_order_id,
        ))

    async def cancel_order(self, order_id: str) -> Any:
        return await self._request(_cancel_order(order_id))

    async def get_open_orders(
        self,
        symbol: Optional[str] = None,
        side:   Optional[str] = None,
        limit:  Optional[int] = None,
    ) -> Any:
        return await self._request(_get_open_orders(symbol, side, limit))

    async def get_order_details(self, order_id: str) -> Any:
        return await self._request(_get_order_details(order_id))

    async def get_trades_history(
        self,
        symbols:    Optional[list[str]] = None,
        limit:      Optional[int] = None,
        start_time: Optional[int] = None,
        end_time:   Optional[int] = None,
    ) -> Any:
        return await self._request(_get_trades_history(symbols, limit, start_time, end_time))

    async def get_order_trades(self, order_id: str) -> Any:
        return await self._request(_get_order_trades(order_id))

    async def return_balances(self) -> dict[str, str]:
        return await self._request(_return_balances())
