"""
subscriptions.py – The set of channels the consumer wants.

Subscriptions outlive individual connections: they are recorded even
while the socket is down and replayed, in the order they were added,
every time a connection opens.  Sends go through a SubscriptionLink
(implemented by the WebSocket client) which knows whether the socket
is usable, how to resolve a name for the active protocol and how to
frame the command.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterator, Optional, Protocol

from .channels import UnknownChannelError, WireChannel
from .transport import TransportError
from .types import ErrorInfo

logger = logging.getLogger(__name__)


class SubscriptionLink(Protocol):
    """What the manager needs from the connection that owns it."""

    @property
    def is_open(self) -> bool: ...

    def resolve(self, name: str) -> WireChannel: ...

    async def send_subscription(self, name: str, wire: WireChannel, subscribe: bool) -> None: ...

    async def report_error(self, info: ErrorInfo) -> None: ...


@dataclass
class Subscription:
    name:         str
    wire_channel: Optional[WireChannel] = None   # set once resolved and sent
    sent:         bool = False                   # command sent on the current connection


class SubscriptionManager:
    """
    Insertion-ordered subscription set.

    Parameters
    ----------
    link : connection used to resolve names and send commands
    """

    def __init__(self, link: SubscriptionLink) -> None:
        self._link = link
        self._subs: dict[str, Subscription] = {}

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def names(self) -> list[str]:
        return list(self._subs)

    def get(self, name: str) -> Optional[Subscription]:
        return self._subs.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._subs

    def __iter__(self) -> Iterator[Subscription]:
        return iter(list(self._subs.values()))

    def __len__(self) -> int:
        return len(self._subs)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def subscribe(self, name: str) -> bool:
        """
        Record a subscription and send it if the connection is open.

        Returns False when the name was already subscribed; nothing is
        sent in that case.
        """
        if name in self._subs:
            logger.debug("Already subscribed to %r", name)
            return False

        sub = Subscription(name=name)
        self._subs[name] = sub
        if self._link.is_open:
            await self._send(sub)
        return True

    async def unsubscribe(self, name: str) -> bool:
        """
        Forget a subscription, sending an unsubscribe command if open.

        The record is removed even when the command cannot be sent.
        Returns False when the name was not subscribed.
        """
        sub = self._subs.pop(name, None)
        if sub is None:
            logger.debug("Not subscribed to %r", name)
            return False

        if not self._link.is_open:
            return True

        wire = sub.wire_channel
        if wire is None:
            try:
                wire = self._link.resolve(name)
            except UnknownChannelError as exc:
                await self._report(name, str(exc), exc)
                return True

        try:
            await self._link.send_subscription(name, wire, False)
        except TransportError as exc:
            await self._report(name, f"Failed to unsubscribe from {name!r}: {exc}", exc)
        return True

    async def replay_all(self) -> int:
        """Send every subscription in insertion order; return how many were sent."""
        sent = 0
        for sub in list(self._subs.values()):
            if await self._send(sub):
                sent += 1
        logger.info("Replayed %d of %d subscriptions", sent, len(self._subs))
        return sent

    def mark_unsent(self) -> None:
        """Connection dropped: nothing is active on the server any more."""
        for sub in self._subs.values():
            sub.sent = False

    def clear(self) -> None:
        self._subs.clear()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _send(self, sub: Subscription) -> bool:
        try:
            wire = self._link.resolve(sub.name)
        except UnknownChannelError as exc:
            await self._report(sub.name, str(exc), exc)
            return False

        try:
            await self._link.send_subscription(sub.name, wire, True)
        except TransportError as exc:
            await self._report(sub.name, f"Failed to subscribe to {sub.name!r}: {exc}", exc)
            return False

        sub.wire_channel = wire
        sub.sent         = True
        return True

    async def _report(self, name: str, message: str, exc: Exception) -> None:
        logger.warning("%s", message)
        await self._link.report_error(
            ErrorInfo(source="subscription", message=message, channel=name, exception=exc)
        )
