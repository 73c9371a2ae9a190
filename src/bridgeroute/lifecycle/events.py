"""Transaction update fan-out.

Each subscriber gets its own queue. A subscription starts with the
transaction's current snapshot and ends after delivering a terminal one.
"""

import asyncio
import logging
from typing import Optional

from bridgeroute.lifecycle.models import TransactionSnapshot

logger = logging.getLogger(__name__)


class Subscription:
    """Async iterator over snapshots of one transaction."""

    def __init__(self, bus: "EventBus", transaction_id: str):
        self.bus = bus
        self.transaction_id = transaction_id
        self._queue: asyncio.Queue[Optional[TransactionSnapshot]] = asyncio.Queue()
        self._last_version = -1
        self._closed = False

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> TransactionSnapshot:
        while not self._closed:
            snapshot = await self._queue.get()
            if snapshot is None:
                break
            # Publishes may race the initial snapshot; never go backwards
            if snapshot.version <= self._last_version:
                continue
            self._last_version = snapshot.version
            if snapshot.is_terminal:
                self.close()
            return snapshot
        self.close()
        raise StopAsyncIteration

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def push(self, snapshot: Optional[TransactionSnapshot]) -> None:
        if not self._closed:
            self._queue.put_nowait(snapshot)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self.bus.unsubscribe(self)
            # Wake a reader blocked on the queue
            self._queue.put_nowait(None)


class EventBus:
    """Publishes transaction snapshots to per-transaction subscribers."""

    def __init__(self):
        self._subscribers: dict[str, set[Subscription]] = {}

    def subscribe(self, transaction_id: str, current: TransactionSnapshot) -> Subscription:
        """Subscribe and queue the current snapshot as the first item."""
        subscription = Subscription(self, transaction_id)
        subscription.push(current)
        if not current.is_terminal:
            self._subscribers.setdefault(transaction_id, set()).add(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subscribers = self._subscribers.get(subscription.transaction_id)
        if subscribers is None:
            return
        subscribers.discard(subscription)
        if not subscribers:
            del self._subscribers[subscription.transaction_id]

    def publish(self, snapshot: TransactionSnapshot) -> None:
        for subscription in list(self._subscribers.get(snapshot.id, ())):
            subscription.push(snapshot)
        if snapshot.is_terminal:
            self._subscribers.pop(snapshot.id, None)

    def close(self, transaction_id: str) -> None:
        """End every stream for a transaction (eviction or shutdown)."""
        for subscription in list(self._subscribers.pop(transaction_id, ())):
            subscription.push(None)

    def close_all(self) -> None:
        for transaction_id in list(self._subscribers):
            self.close(transaction_id)

    def subscriber_count(self, transaction_id: Optional[str] = None) -> int:
        if transaction_id is not None:
            return len(self._subscribers.get(transaction_id, ()))
        return sum(len(subs) for subs in self._subscribers.values())
