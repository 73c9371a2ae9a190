"""In-memory quote and transaction registries.

QuoteStore indexes handed-out quotes by id until they expire.
TransactionStore owns every Transaction: all mutation goes through
update() under the per-id lock, which also publishes the new snapshot
and writes the durable record when an archive is configured.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from bridgeroute.errors import QuoteExpired, QuoteNotFound, TransactionNotFound, ValidationError
from bridgeroute.ledger.repository import TransactionArchive
from bridgeroute.lifecycle.events import EventBus, Subscription
from bridgeroute.lifecycle.models import Transaction, TransactionSnapshot
from bridgeroute.routing.base import Quote
from bridgeroute.utils.locks import LockRegistry

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


class QuoteStore:
    """Quotes returned to callers, by id, until their TTL elapses."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._quotes: dict[str, Quote] = {}

    def __len__(self) -> int:
        return len(self._quotes)

    def add(self, quotes: Iterable[Quote]) -> None:
        for quote in quotes:
            self._quotes[quote.id] = quote

    def get(self, quote_id: str) -> Quote:
        """Get a live quote.

        Raises:
            QuoteNotFound: unknown id (or already swept)
            QuoteExpired: TTL elapsed; the quote is dropped
        """
        quote = self._quotes.get(quote_id)
        if quote is None:
            raise QuoteNotFound(f"Quote {quote_id} not found")
        if quote.is_expired(self._clock()):
            del self._quotes[quote_id]
            raise QuoteExpired(f"Quote {quote_id} from {quote.provider} has expired, request a new route")
        return quote

    def sweep(self) -> int:
        now = self._clock()
        expired = [qid for qid, quote in self._quotes.items() if quote.is_expired(now)]
        for qid in expired:
            del self._quotes[qid]
        return len(expired)


@dataclass(frozen=True)
class TransactionPage:
    """One page of an account's transaction history, newest first."""

    items: tuple[TransactionSnapshot, ...]
    total: int
    page: int
    page_size: int

    @property
    def has_more(self) -> bool:
        return self.page * self.page_size < self.total


class TransactionStore:
    """Registry of transactions with single-writer-per-id updates."""

    def __init__(
        self,
        events: Optional[EventBus] = None,
        archive: Optional[TransactionArchive] = None,
        retention_per_account: int = 50,
        retention_window: float = 86400.0,
        lock_timeout: Optional[float] = 30.0,
        clock: Callable[[], float] = time.time,
    ):
        self.events = events if events is not None else EventBus()
        self.archive = archive
        self.retention_per_account = retention_per_account
        self.retention_window = retention_window
        self.lock_timeout = lock_timeout
        self._clock = clock
        self._transactions: dict[str, Transaction] = {}
        self._locks = LockRegistry()

    def __len__(self) -> int:
        return len(self._transactions)

    def __contains__(self, transaction_id: str) -> bool:
        return transaction_id in self._transactions

    def get(self, transaction_id: str) -> Transaction:
        """Live transaction object. Callers outside update() must not mutate it."""
        tx = self._transactions.get(transaction_id)
        if tx is None:
            raise TransactionNotFound(f"Transaction {transaction_id} not found")
        return tx

    def snapshot(self, transaction_id: str) -> TransactionSnapshot:
        return self.get(transaction_id).snapshot()

    def all(self) -> list[Transaction]:
        return list(self._transactions.values())

    def lock(self, transaction_id: str, operation: str = "update"):
        """Hold the transaction's lock across a multi-step operation."""
        return self._locks.hold(transaction_id, timeout=self.lock_timeout, operation=operation)

    async def add(self, tx: Transaction) -> TransactionSnapshot:
        async with self.lock(tx.id, operation="create"):
            self._transactions[tx.id] = tx
            return await self._commit(tx)

    def restore(self, tx: Transaction) -> None:
        """Insert a reloaded transaction without publishing or persisting."""
        self._transactions[tx.id] = tx

    async def update(
        self,
        transaction_id: str,
        mutate: Callable[[Transaction], None],
        operation: str = "update",
    ) -> TransactionSnapshot:
        """Apply `mutate` under the transaction's lock, then publish.

        Exceptions raised by `mutate` propagate and nothing is published.
        """
        async with self.lock(transaction_id, operation=operation):
            tx = self.get(transaction_id)
            mutate(tx)
            return await self._commit(tx)

    async def commit_locked(self, tx: Transaction) -> TransactionSnapshot:
        """Publish a change made while the caller already holds the lock."""
        return await self._commit(tx)

    async def _commit(self, tx: Transaction) -> TransactionSnapshot:
        snapshot = tx.snapshot()
        if self.archive is not None:
            await self.archive.save(tx.to_record())
        self.events.publish(snapshot)
        return snapshot

    def subscribe(self, transaction_id: str) -> Subscription:
        current = self.snapshot(transaction_id)
        return self.events.subscribe(transaction_id, current)

    # ======================
    # History
    # ======================

    def list_for_account(self, account: str, page: int = 1, page_size: int = 20) -> TransactionPage:
        """Transactions sent by `account`, most recent first."""
        if page < 1:
            raise ValidationError(f"Page must be >= 1, got {page}")
        if not 1 <= page_size <= MAX_PAGE_SIZE:
            raise ValidationError(f"Page size must be between 1 and {MAX_PAGE_SIZE}, got {page_size}")

        account = account.lower()
        matching = sorted(
            (tx for tx in self._transactions.values() if tx.account.lower() == account),
            key=lambda tx: tx.created_at,
            reverse=True,
        )
        start = (page - 1) * page_size
        items = tuple(tx.snapshot() for tx in matching[start:start + page_size])
        return TransactionPage(items=items, total=len(matching), page=page, page_size=page_size)

    # ======================
    # Maintenance
    # ======================

    def sweep(self) -> list[str]:
        """Evict terminal transactions past the retention window or count cap.

        In-flight transactions are never evicted.
        """
        now = self._clock()
        evict: set[str] = set()

        by_account: dict[str, list[Transaction]] = {}
        for tx in self._transactions.values():
            by_account.setdefault(tx.account.lower(), []).append(tx)
            if tx.is_terminal and now - tx.updated_at > self.retention_window:
                evict.add(tx.id)

        for txs in by_account.values():
            txs.sort(key=lambda tx: tx.created_at, reverse=True)
            for tx in txs[self.retention_per_account:]:
                if tx.is_terminal:
                    evict.add(tx.id)

        evicted = []
        for tx_id in sorted(evict):
            if self._locks.is_locked(tx_id):
                continue
            del self._transactions[tx_id]
            self._locks.discard(tx_id)
            self.events.close(tx_id)
            evicted.append(tx_id)

        if evicted:
            logger.info(f"Transaction store sweep evicted {len(evicted)} transaction(s)")
        return evicted

    def find_stalled(self, budget_for: Callable[[Transaction], float]) -> list[str]:
        """Non-terminal transactions with no update within their budget."""
        now = self._clock()
        return [
            tx.id
            for tx in self._transactions.values()
            if not tx.is_terminal and now - tx.updated_at > budget_for(tx)
        ]
