"""
transport.py – Reconnecting WebSocket transport.

WebSocketTransport owns one websockets connection at a time and reports
what happens to it through four async callbacks:

    on_open()                 connection established
    on_message(raw)           one text frame received
    on_close(code, reason)    connection ended (clean or not), or the final
                              connect attempt failed without reconnecting
    on_error(exc)             connect / handshake / network failure

Unless close() was called, a dropped connection is re-established with
exponential back-off.  The transport knows nothing about Poloniex
framing; the WebSocket client layers protocol handling on top.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import random
from collections.abc import Callable, Coroutine, Iterator
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Type aliases
# ---------------------------------------------------------------------------

OpenCallback    = Callable[[], Coroutine[Any, Any, None]]
MessageCallback = Callable[[Any], Coroutine[Any, Any, None]]
CloseCallback   = Callable[[int, str], Coroutine[Any, Any, None]]
ErrorCallback   = Callable[[BaseException], Coroutine[Any, Any, None]]


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_PING_INTERVAL_S = 20
_PONG_TIMEOUT_S  = 10
_OPEN_TIMEOUT_S  = 10
_ABNORMAL_CLOSE  = 1006


class TransportError(Exception):
    """Raised when a frame cannot be sent."""


@dataclass(frozen=True)
class ReconnectPolicy:
    """
    Exponential back-off between reconnect attempts.

    jitter is the fraction of each delay that is added at random.
    """
    initial_delay: float = 1.0
    factor:        float = 2.0
    max_delay:     float = 60.0
    jitter:        float = 0.1
    enabled:       bool  = True

    def delays(self) -> Iterator[float]:
        delay = self.initial_delay
        while True:
            yield delay + random.uniform(0, delay * self.jitter)
            delay = min(delay * self.factor, self.max_delay)


class Transport(Protocol):
    """Interface the WebSocket client drives; WebSocketTransport implements it."""

    on_open:    Optional[OpenCallback]
    on_message: Optional[MessageCallback]
    on_close:   Optional[CloseCallback]
    on_error:   Optional[ErrorCallback]

    @property
    def is_open(self) -> bool: ...

    @property
    def reconnects(self) -> bool: ...

    def start(self) -> None: ...

    async def send(self, data: str) -> None: ...

    async def close(self) -> None: ...

    async def wait_closed(self) -> None: ...


# ---------------------------------------------------------------------------
# websockets implementation
# ---------------------------------------------------------------------------

class WebSocketTransport:
    """
    Parameters
    ----------
    url           : wss:// endpoint
    reconnect     : back-off policy; ReconnectPolicy(enabled=False) connects once
    ping_interval : protocol-level ping interval in seconds (None disables)
    ping_timeout  : seconds to wait for a pong before dropping the connection
    open_timeout  : seconds allowed for the opening handshake
    """

    def __init__(
        self,
        url:           str,
        reconnect:     ReconnectPolicy = ReconnectPolicy(),
        ping_interval: Optional[float] = _PING_INTERVAL_S,
        ping_timeout:  Optional[float] = _PONG_TIMEOUT_S,
        open_timeout:  Optional[float] = _OPEN_TIMEOUT_S,
    ) -> None:
        self.url            = url
        self.reconnect      = reconnect
        self._ping_interval = ping_interval
        self._ping_timeout  = ping_timeout
        self._open_timeout  = open_timeout

        self.on_open:    Optional[OpenCallback]    = None
        self.on_message: Optional[MessageCallback] = None
        self.on_close:   Optional[CloseCallback]   = None
        self.on_error:   Optional[ErrorCallback]   = None

        self._ws:      Optional[Any]          = None
        self._task:    Optional[asyncio.Task] = None
        self._running  = False

    @property
    def is_open(self) -> bool:
        return self._ws is not None

    @property
    def reconnects(self) -> bool:
        return self._running and self.reconnect.enabled

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Begin connecting in a background task."""
        if self._task is not None and not self._task.done():
            return
        self._running = True
        self._task    = asyncio.create_task(self._run())

    async def send(self, data: str) -> None:
        ws = self._ws
        if ws is None:
            raise TransportError("WebSocket is not open")
        try:
            await ws.send(data)
        except ConnectionClosed as exc:
            raise TransportError(f"WebSocket closed while sending: {exc}") from exc

    async def close(self) -> None:
        """Close the connection and stop reconnecting."""
        self._running = False
        ws   = self._ws
        task = self._task

        if ws is not None:
            await ws.close()
        elif task is not None:
            # connecting or sleeping between attempts
            task.cancel()

        if task is not None and task is not asyncio.current_task():
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def wait_closed(self) -> None:
        """Return once the transport has stopped for good."""
        task = self._task
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await asyncio.shield(task)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        delays = self.reconnect.delays()

        while self._running:
            try:
                await self._connect_and_run()
                delays = self.reconnect.delays()   # successful connect resets back-off
            except asyncio.CancelledError:
                break
            except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
                logger.warning("WebSocket connection to %s failed: %s", self.url, exc)
                await self._emit(self.on_error, exc)
                if not self.reconnects:
                    # on_close has not fired for this attempt
                    await self._emit(self.on_close, _ABNORMAL_CLOSE, f"connect failed: {exc}")
                    break

            if not self.reconnects:
                break

            delay = next(delays)
            logger.info("Reconnecting to %s in %.1f s", self.url, delay)
            try:
                await asyncio.sleep(delay)
            except asyncio.CancelledError:
                break

        self._running = False

    async def _connect_and_run(self) -> None:
        logger.info("Connecting to WebSocket at %s", self.url)

        async with websockets.connect(
            self.url,
            ping_interval=self._ping_interval,
            ping_timeout=self._ping_timeout,
            open_timeout=self._open_timeout,
        ) as ws:
            self._ws = ws
            logger.info("WebSocket connected to %s", self.url)
            try:
                await self._emit(self.on_open)
                try:
                    async for raw in ws:
                        await self._emit(self.on_message, raw)
                except ConnectionClosed:
                    pass
            finally:
                self._ws = None

        code   = ws.close_code if ws.close_code is not None else _ABNORMAL_CLOSE
        reason = ws.close_reason or ""
        logger.info("WebSocket closed (%d) %s", code, reason)
        await self._emit(self.on_close, code, reason)

    async def _emit(self, callback: Optional[Callable[..., Coroutine[Any, Any, None]]], *args: Any) -> None:
        if callback is None:
            return
        try:
            await callback(*args)
        except Exception:
            logger.exception("Unhandled exception in transport callback")
