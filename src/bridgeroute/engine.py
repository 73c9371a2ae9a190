"""Bridge routing engine.

The public entry point: owns the route aggregator (with its quote
cache), the quote and transaction stores and the lifecycle tracker.
There is no process-wide singleton; callers hold an engine instance.

Operations:
- get_best_route: ranked quotes for a route
- accept_quote: start executing a quote, returns the transaction id
- get_transaction / subscribe_transaction: observe progress
- cancel_transaction / retry_transaction: caller actions
- list_transactions: paginated history per account
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Union

import httpx

from bridgeroute.chain.base import ChainClient
from bridgeroute.chain.evm import RpcError
from bridgeroute.chains import ChainRef, TokenRef, get_chain, get_token, is_address
from bridgeroute.config import Settings, get_settings
from bridgeroute.errors import (
    ChainUnavailable,
    InsufficientAllowance,
    InsufficientBalance,
    QuoteExpired,
    ValidationError,
)
from bridgeroute.ledger.repository import TransactionArchive
from bridgeroute.lifecycle.events import EventBus, Subscription
from bridgeroute.lifecycle.models import (
    FailureReason,
    Transaction,
    TransactionFailure,
    TransactionSnapshot,
    TransactionStatus,
)
from bridgeroute.lifecycle.tracker import TrackerConfig, TransactionTracker
from bridgeroute.routing.aggregator import RouteAggregator
from bridgeroute.routing.base import Quote, RouteRequest
from bridgeroute.signing.base import WalletSigner
from bridgeroute.store import QuoteStore, TransactionPage, TransactionStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EngineConfig:
    """Engine tunables (seconds unless noted)."""

    default_slippage_bps: int = 50
    read_timeout: float = 15.0
    signing_timeout: float = 120.0
    confirmation_timeout: float = 120.0
    delivery_timeout: float = 1800.0
    status_poll_interval: float = 10.0
    auto_retry_limit: int = 0
    auto_retry_backoff: float = 5.0
    retention_per_account: int = 50
    retention_window: float = 86400.0
    store_sweep_interval: float = 60.0
    cache_sweep_interval: float = 60.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "EngineConfig":
        return cls(
            default_slippage_bps=settings.default_slippage_bps,
            read_timeout=settings.rpc_timeout_seconds,
            signing_timeout=settings.signing_timeout_seconds,
            confirmation_timeout=settings.confirmation_timeout_seconds,
            delivery_timeout=settings.delivery_timeout_seconds,
            status_poll_interval=settings.status_poll_interval_seconds,
            auto_retry_limit=settings.auto_retry_limit,
            auto_retry_backoff=settings.auto_retry_backoff_seconds,
            retention_per_account=settings.retention_per_account,
            retention_window=settings.retention_window_seconds,
            store_sweep_interval=settings.store_sweep_interval_seconds,
            cache_sweep_interval=settings.cache_sweep_interval_seconds,
        )

    @property
    def tracker_config(self) -> TrackerConfig:
        return TrackerConfig(
            read_timeout=self.read_timeout,
            signing_timeout=self.signing_timeout,
            confirmation_timeout=self.confirmation_timeout,
            delivery_timeout=self.delivery_timeout,
            status_poll_interval=self.status_poll_interval,
            auto_retry_limit=self.auto_retry_limit,
            auto_retry_backoff=self.auto_retry_backoff,
        )

    def stall_budget(self, tx: Transaction) -> float:
        """Longest a transaction may sit without progress before the watchdog fails it."""
        if tx.status is TransactionStatus.EXECUTING:
            return self.delivery_timeout + self.confirmation_timeout
        return self.read_timeout + self.signing_timeout + self.confirmation_timeout


class BridgeEngine:
    """Cross-chain bridge quote aggregation and transaction lifecycle engine."""

    def __init__(
        self,
        aggregator: RouteAggregator,
        chain: ChainClient,
        signer: WalletSigner,
        config: Optional[EngineConfig] = None,
        archive: Optional[TransactionArchive] = None,
    ):
        self.config = config or EngineConfig()
        self.aggregator = aggregator
        self.chain = chain
        self.signer = signer
        self.archive = archive
        self.events = EventBus()
        self.quotes = QuoteStore()
        self.transactions = TransactionStore(
            events=self.events,
            archive=archive,
            retention_per_account=self.config.retention_per_account,
            retention_window=self.config.retention_window,
        )
        self.tracker = TransactionTracker(
            store=self.transactions,
            chain=chain,
            signer=signer,
            provider_for=aggregator.get_provider,
            config=self.config.tracker_config,
        )
        self._background: list[asyncio.Task] = []

    # ======================
    # Lifecycle
    # ======================

    async def start(self) -> None:
        """Reload persisted transactions and start periodic sweeps."""
        if self.archive is not None:
            await self._reload()
        self._background = [
            asyncio.create_task(self._periodic("store sweep", self.config.store_sweep_interval, self.sweep)),
            asyncio.create_task(
                self._periodic("cache sweep", self.config.cache_sweep_interval, self._sweep_quotes)
            ),
        ]
        logger.info(
            f"Bridge engine started with providers: "
            f"{', '.join(p.name for p in self.aggregator.providers) or '(none)'}"
        )

    async def stop(self) -> None:
        for task in self._background:
            task.cancel()
        if self._background:
            await asyncio.wait(self._background)
        self._background = []
        await self.tracker.shutdown()
        self.events.close_all()
        logger.info("Bridge engine stopped")

    async def _periodic(self, name: str, interval: float, job: Callable[[], Awaitable[object]]) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await job()
            except Exception:
                logger.exception(f"Periodic {name} failed")

    async def _reload(self) -> None:
        """Restore recent transactions. Anything in flight is marked failed."""
        cutoff = time.time() - self.config.retention_window
        records = await self.archive.load_since(cutoff)
        restored = interrupted = 0
        for record in records:
            tx = Transaction.from_record(record)
            if not tx.is_terminal:
                tx.fail(
                    TransactionFailure.of(
                        FailureReason.ENGINE_RESTARTED,
                        f"Engine restarted while {tx.status.value}; retry to resume",
                        step_index=tx.current_step_index,
                    )
                )
                await self.archive.save(tx.to_record())
                interrupted += 1
            self.transactions.restore(tx)
            restored += 1
        self.transactions.sweep()
        logger.info(f"Restored {restored} transaction(s), {interrupted} interrupted by restart")

    # ======================
    # Routing
    # ======================

    async def get_best_route(
        self,
        from_chain_id: int,
        to_chain_id: int,
        from_token_address: str,
        to_token_address: str,
        amount: Union[int, str],
        slippage_bps: Optional[int] = None,
        recipient: Optional[str] = None,
    ) -> tuple[Quote, ...]:
        """Ranked quotes for a route, best first.

        Args:
            from_chain_id: Source chain id
            to_chain_id: Destination chain id
            from_token_address: Source token (0xEeee... or zero address for native)
            to_token_address: Destination token
            amount: Amount in the source token's smallest unit
            slippage_bps: Slippage tolerance, defaults to the configured value
            recipient: Optional destination address

        Raises:
            ValidationError: malformed request (no provider is called)
            NoRouteFound: every provider failed or none serves the route
        """
        from_chain = self._chain(from_chain_id)
        to_chain = self._chain(to_chain_id)
        request = RouteRequest(
            from_chain=from_chain,
            to_chain=to_chain,
            from_token=self._token(from_chain, from_token_address),
            to_token=self._token(to_chain, to_token_address),
            amount=_parse_amount(amount),
            slippage_bps=self.config.default_slippage_bps if slippage_bps is None else slippage_bps,
            recipient=recipient,
        )
        if recipient is not None and not is_address(recipient):
            raise ValidationError(f"Invalid recipient address {recipient!r}")

        ranked = await self.aggregator.get_best_route(request)
        self.quotes.add(ranked)
        return ranked

    def get_quote(self, quote_id: str) -> Quote:
        return self.quotes.get(quote_id)

    @staticmethod
    def _chain(chain_id: int) -> ChainRef:
        chain = get_chain(chain_id)
        if chain is None:
            raise ValidationError(f"Unsupported chain {chain_id}")
        return chain

    @staticmethod
    def _token(chain: ChainRef, address: str) -> TokenRef:
        token = get_token(chain.chain_id, address)
        if token is None:
            raise ValidationError(f"Unknown token {address} on {chain.name}")
        return token

    # ======================
    # Execution
    # ======================

    async def accept_quote(
        self,
        quote_id: str,
        recipient: Optional[str] = None,
        sender: Optional[str] = None,
    ) -> str:
        """Create a transaction for a live quote and start executing it.

        Returns:
            The transaction id. Progress is observed through
            get_transaction / subscribe_transaction.

        Raises:
            QuoteNotFound / QuoteExpired: request a fresh route
            InsufficientBalance / InsufficientAllowance: nothing is created
            ChainUnavailable: the pre-submission checks could not run
        """
        quote = self.quotes.get(quote_id)
        request = quote.request
        chain_id = request.from_chain.chain_id
        token = request.from_token

        sender = sender or await self.signer.get_address(chain_id)
        recipient = recipient or request.recipient or sender
        for label, address in (("sender", sender), ("recipient", recipient)):
            if not is_address(address):
                raise ValidationError(f"Invalid {label} address {address!r}")

        balance = await self._read(self.chain.get_balance(chain_id, token.address, sender), "balance")
        if balance < quote.amount_in:
            raise InsufficientBalance(
                f"Balance {balance} of {token.symbol} is below {quote.amount_in} for {sender}"
            )

        first = quote.steps[0]
        if not quote.needs_approval and not token.is_native and first.tx_request is not None:
            allowance = await self._read(
                self.chain.get_allowance(chain_id, token.address, sender, first.tx_request.to),
                "allowance",
            )
            if allowance < quote.amount_in:
                raise InsufficientAllowance(
                    f"Allowance {allowance} of {token.symbol} for {first.tx_request.to} "
                    f"is below {quote.amount_in} and {quote.provider} provided no approval step"
                )

        tx = Transaction(quote=quote, account=sender, recipient=recipient)
        await self.transactions.add(tx)
        logger.info(
            f"Accepted quote {quote.id} from {quote.provider} as transaction {tx.id} "
            f"({request.describe()}, {len(quote.steps)} step(s))"
        )
        self.tracker.start(tx.id)
        return tx.id

    async def _read(self, awaitable: Awaitable[int], what: str) -> int:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.config.read_timeout)
        except asyncio.TimeoutError:
            raise ChainUnavailable(f"Timed out reading {what}")
        except (RpcError, httpx.HTTPError) as e:
            raise ChainUnavailable(f"Could not read {what}: {e}") from e

    def get_transaction(self, transaction_id: str) -> TransactionSnapshot:
        """Raises TransactionNotFound."""
        return self.transactions.snapshot(transaction_id)

    def subscribe_transaction(self, transaction_id: str) -> Subscription:
        """Stream of snapshots: the current one, then one per update, ending on a terminal status."""
        return self.transactions.subscribe(transaction_id)

    async def cancel_transaction(self, transaction_id: str) -> TransactionSnapshot:
        """Stop a transaction.

        Before anything is broadcast this ends in failed/cancelled. After a
        broadcast the on-chain effect cannot be undone, so the transaction
        is failed with cancelled_after_submission set.

        Raises:
            TransactionNotFound
            InvalidTransition: already terminal
        """
        tx = self.transactions.get(transaction_id)
        if tx.is_terminal:
            tx.cancel()  # raises InvalidTransition

        await self.tracker.stop(transaction_id)
        snapshot = await self.transactions.update(transaction_id, lambda t: t.cancel(), operation="cancel")
        logger.info(
            f"Transaction {transaction_id} cancelled"
            + (" after submission" if snapshot.cancelled_after_submission else "")
        )
        return snapshot

    async def retry_transaction(self, transaction_id: str) -> TransactionSnapshot:
        """Failed -> created for retryable failures, then resume execution.

        Raises:
            TransactionNotFound
            InvalidTransition: not failed, or failed for a final reason
            QuoteExpired: nothing was sent yet and the quote is stale
        """
        tx = self.transactions.get(transaction_id)
        tx.ensure_retryable()
        if not any(tx.step_hashes) and tx.quote.is_expired():
            raise QuoteExpired(
                f"Quote {tx.quote.id} expired before transaction {transaction_id} sent anything; "
                "request a new route"
            )

        await self.tracker.stop(transaction_id)
        snapshot = await self.transactions.update(
            transaction_id, lambda t: t.reset_for_retry(), operation="retry"
        )
        logger.info(f"Retrying transaction {transaction_id} (attempt {snapshot.retry_count})")
        self.tracker.start(transaction_id)
        return snapshot

    def list_transactions(self, account: str, page: int = 1, page_size: int = 20) -> TransactionPage:
        """Account history, most recent first, bounded by the retention policy."""
        return self.transactions.list_for_account(account, page=page, page_size=page_size)

    # ======================
    # Maintenance
    # ======================

    async def sweep(self) -> dict:
        """Evict old transactions and fail stalled ones."""
        stalled = self.transactions.find_stalled(self.config.stall_budget)
        for transaction_id in stalled:
            await self._fail_stalled(transaction_id)
        evicted = self.transactions.sweep()
        return {"stalled": len(stalled), "evicted": len(evicted)}

    async def _fail_stalled(self, transaction_id: str) -> None:
        await self.tracker.stop(transaction_id)
        tx = self.transactions.get(transaction_id)
        if tx.is_terminal:
            return
        budget = self.config.stall_budget(tx)
        logger.warning(f"Transaction {transaction_id} stalled in {tx.status.value} for over {budget}s")

        def fail(t: Transaction) -> None:
            if not t.is_terminal:
                t.fail(
                    TransactionFailure.of(
                        FailureReason.CONFIRMATION_TIMEOUT,
                        f"No progress in {t.status.value} for over {budget}s",
                        step_index=t.current_step_index,
                    )
                )

        await self.transactions.update(transaction_id, fail, operation="watchdog")

    async def _sweep_quotes(self) -> dict:
        expired_entries = self.aggregator.cache.sweep()
        expired_quotes = self.quotes.sweep()
        return {"cache_entries": expired_entries, "quotes": expired_quotes}

    def stats(self) -> dict:
        statuses: dict[str, int] = {}
        for tx in self.transactions.all():
            statuses[tx.status.value] = statuses.get(tx.status.value, 0) + 1
        return {
            "providers": [p.name for p in self.aggregator.providers],
            "cache": self.aggregator.cache.stats(),
            "live_quotes": len(self.quotes),
            "transactions": len(self.transactions),
            "in_flight": self.tracker.active_count,
            "by_status": statuses,
            "subscribers": self.events.subscriber_count(),
        }


def _parse_amount(amount: Union[int, str]) -> int:
    if isinstance(amount, bool):
        raise ValidationError("Amount must be an integer in smallest units")
    if isinstance(amount, int):
        return amount
    text = str(amount).strip()
    if not text.isdigit():
        raise ValidationError(f"Amount must be a positive integer in smallest units, got {amount!r}")
    return int(text)


def create_engine(settings: Optional[Settings] = None) -> BridgeEngine:
    """Build an engine wired to the configured providers and collaborators.

    Dry-run mode uses simulated providers, an in-memory chain and a
    signer that never touches a network.
    """
    from bridgeroute.routing.factory import create_aggregator

    settings = settings or get_settings()
    aggregator = create_aggregator(settings)

    if settings.dry_run:
        from bridgeroute.chain.dry_run import DryRunChainClient
        from bridgeroute.signing.dry_run import DryRunSigner

        chain = DryRunChainClient()
        signer = DryRunSigner(chain, address=settings.wallet_address)
        logger.info("Dry-run mode: simulated chain client and signer")
    else:
        from bridgeroute.chain.evm import EvmRpcClient
        from bridgeroute.signing.local import create_local_signer

        chain = EvmRpcClient(
            settings.get_rpc_url,
            timeout=settings.rpc_timeout_seconds,
            poll_interval=settings.receipt_poll_interval_seconds,
        )
        key = settings.hot_wallet_private_key
        signer = create_local_signer(key.get_secret_value() if key else None, chain)
        if signer is None:
            raise ValueError("HOT_WALLET_PRIVATE_KEY must be set when DRY_RUN is false")

    archive = TransactionArchive(settings.database_url) if settings.persist_transactions else None
    return BridgeEngine(
        aggregator=aggregator,
        chain=chain,
        signer=signer,
        config=EngineConfig.from_settings(settings),
        archive=archive,
    )
