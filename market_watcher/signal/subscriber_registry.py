"""
The set of subscribed recipients and how to reach each of them.
"""

import asyncio
import threading
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Any, Callable

from market_watcher.utils.logger import LOGGER as logger

DeliverFn = Callable[[str], Awaitable[Any]]


@dataclass(frozen=True)
class Subscription:
    recipient_id: int
    deliver: DeliverFn


class SubscriberRegistry:
    """
    Recipient id -> Subscription. Mutations and snapshots are serialized by a lock,
    so a snapshot never observes a half-applied add or remove.
    """

    def __init__(self) -> None:
        self._subscriptions: dict[int, Subscription] = {}
        self._lock = threading.Lock()

    def add(self, recipient_id: int, deliver: DeliverFn) -> bool:
        """Returns False if the recipient is already subscribed."""
        if deliver is None:
            raise ValueError("deliver must not be None")
        with self._lock:
            if recipient_id in self._subscriptions:
                return False
            self._subscriptions[recipient_id] = Subscription(recipient_id, deliver)
        logger.info(f"Recipient {recipient_id} subscribed.")
        return True

    def remove(self, recipient_id: int) -> bool:
        """Returns True if a subscription was removed."""
        with self._lock:
            removed = self._subscriptions.pop(recipient_id, None)
        if removed is None:
            return False
        logger.info(f"Recipient {recipient_id} unsubscribed.")
        return True

    def contains(self, recipient_id: int) -> bool:
        with self._lock:
            return recipient_id in self._subscriptions

    def __contains__(self, recipient_id: object) -> bool:
        return isinstance(recipient_id, int) and self.contains(recipient_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def snapshot(self) -> tuple[Subscription, ...]:
        with self._lock:
            return tuple(self._subscriptions.values())

    def recipients(self) -> list[int]:
        """Sorted ids of the current members."""
        return sorted(s.recipient_id for s in self.snapshot())

    async def for_each_snapshot(
        self, fn: Callable[[Subscription], Awaitable[Any]]
    ) -> list[tuple[Subscription, Any]]:
        """
        Runs fn concurrently for every member of a snapshot taken now.
        Returns (subscription, outcome) pairs; a failing call yields its exception as the outcome.
        """
        members = self.snapshot()
        if not members:
            return []
        outcomes = await asyncio.gather(*(fn(s) for s in members), return_exceptions=True)
        return list(zip(members, outcomes))
