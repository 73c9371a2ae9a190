"""Transaction lifecycle driver.

One asyncio task per in-flight transaction walks its quote's steps in
order:

1. Approval (only when the first step is an approve and a fresh
   allowance check comes back short): approving ->
   awaiting_approval_confirmation -> submitting.
2. Source-chain steps up to and including the first bridge step. Each
   is built by the provider, signed by the wallet, and confirmed before
   the next one is sent. Sending the bridge step moves the transaction
   to awaiting_confirmation; its receipt moves it to executing.
3. Destination delivery: the provider's status endpoint is polled until
   it reports done, refunded or failed.

Every wait is bounded. Failures never escape the task: they are
recorded on the transaction as a TransactionFailure.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

import httpx

from bridgeroute.chain.base import ChainClient, Receipt
from bridgeroute.chain.evm import RpcError
from bridgeroute.errors import ProviderError
from bridgeroute.lifecycle.models import (
    FailureReason,
    Transaction,
    TransactionFailure,
    TransactionStatus,
)
from bridgeroute.routing.base import BridgeProvider, DeliveryStatus, Step, StepKind, TxRequest
from bridgeroute.signing.base import SigningError, WalletSigner
from bridgeroute.store import TransactionStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Network failures that are worth retrying
TRANSIENT_ERRORS = (httpx.HTTPError, RpcError, OSError)


@dataclass(frozen=True)
class TrackerConfig:
    """Time budgets for every suspension point (seconds)."""

    read_timeout: float = 15.0
    signing_timeout: float = 120.0
    confirmation_timeout: float = 120.0
    delivery_timeout: float = 1800.0
    status_poll_interval: float = 10.0
    auto_retry_limit: int = 0
    auto_retry_backoff: float = 5.0


class StepFailed(Exception):
    """Internal signal carrying the failure to record."""

    def __init__(self, failure: TransactionFailure):
        self.failure = failure
        super().__init__(failure.message)


def dispatch_end(steps: tuple[Step, ...]) -> int:
    """Number of leading steps the engine sends itself.

    Everything up to and including the first bridge step runs on the
    source chain. Later steps are executed by the bridge on the
    destination side and are only observed.
    """
    for index, step in enumerate(steps):
        if step.kind is StepKind.BRIDGE:
            return index + 1
    return len(steps)


class TransactionTracker:
    """Drives transactions through the lifecycle state machine."""

    def __init__(
        self,
        store: TransactionStore,
        chain: ChainClient,
        signer: WalletSigner,
        provider_for: Callable[[str], Optional[BridgeProvider]],
        config: Optional[TrackerConfig] = None,
    ):
        self.store = store
        self.chain = chain
        self.signer = signer
        self.provider_for = provider_for
        self.config = config or TrackerConfig()
        self._tasks: dict[str, asyncio.Task] = {}

    # ======================
    # Task management
    # ======================

    def start(self, transaction_id: str) -> asyncio.Task:
        """Start driving a transaction. A running driver is reused."""
        task = self._tasks.get(transaction_id)
        if task is not None and not task.done():
            return task
        task = asyncio.create_task(self._drive(transaction_id), name=f"tx-{transaction_id[:8]}")
        self._tasks[transaction_id] = task
        task.add_done_callback(lambda t, tid=transaction_id: self._forget(tid, t))
        return task

    def _forget(self, transaction_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(transaction_id) is task:
            del self._tasks[transaction_id]

    def is_running(self, transaction_id: str) -> bool:
        task = self._tasks.get(transaction_id)
        return task is not None and not task.done()

    @property
    def active_count(self) -> int:
        return sum(1 for task in self._tasks.values() if not task.done())

    async def stop(self, transaction_id: str) -> None:
        """Cancel the driver for a transaction and wait for it to exit."""
        task = self._tasks.get(transaction_id)
        if task is None or task.done():
            return
        if task is asyncio.current_task():
            return
        task.cancel()
        await asyncio.wait([task])

    async def shutdown(self) -> None:
        tasks = [task for task in self._tasks.values() if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.wait(tasks)
        self._tasks.clear()

    # ======================
    # Driver
    # ======================

    async def _drive(self, transaction_id: str) -> None:
        while True:
            try:
                await self._run(transaction_id)
            except StepFailed as e:
                await self._record_failure(transaction_id, e.failure)
            except ProviderError as e:
                await self._record_failure(
                    transaction_id, TransactionFailure.of(FailureReason.PROVIDER_ERROR, str(e))
                )
            except TRANSIENT_ERRORS as e:
                await self._record_failure(
                    transaction_id,
                    TransactionFailure.of(FailureReason.NETWORK_ERROR, f"{type(e).__name__}: {e}"),
                )
            except Exception as e:
                logger.exception(f"Transaction {transaction_id} driver crashed")
                await self._record_failure(
                    transaction_id,
                    TransactionFailure.of(FailureReason.INTERNAL_ERROR, f"{type(e).__name__}: {e}"),
                )

            if not await self._should_auto_retry(transaction_id):
                return

    async def _should_auto_retry(self, transaction_id: str) -> bool:
        if transaction_id not in self.store:
            return False
        tx = self.store.get(transaction_id)
        if tx.status is not TransactionStatus.FAILED or tx.failure is None or not tx.failure.retryable:
            return False
        if tx.retry_count >= self.config.auto_retry_limit:
            return False
        if not any(tx.step_hashes) and tx.quote.is_expired():
            logger.info(f"Not auto-retrying {transaction_id}: quote expired before anything was sent")
            return False

        logger.info(
            f"Auto-retrying transaction {transaction_id} in {self.config.auto_retry_backoff}s "
            f"(attempt {tx.retry_count + 1}/{self.config.auto_retry_limit})"
        )
        await asyncio.sleep(self.config.auto_retry_backoff)

        tx = self.store.get(transaction_id)
        if tx.status is not TransactionStatus.FAILED or tx.failure is None or not tx.failure.retryable:
            return False
        await self.store.update(transaction_id, lambda t: t.reset_for_retry(), operation="auto_retry")
        return True

    async def _record_failure(self, transaction_id: str, failure: TransactionFailure) -> None:
        def fail(tx: Transaction) -> None:
            if tx.is_terminal:
                return
            tx.fail(failure)

        tx = self.store.get(transaction_id)
        if tx.is_terminal:
            logger.debug(f"Transaction {transaction_id} already {tx.status.value}, dropping {failure.reason.value}")
            return
        step = f" at step {failure.step_index}" if failure.step_index is not None else ""
        log = logger.warning if failure.retryable else logger.error
        log(
            f"Transaction {transaction_id} failed{step} in {tx.status.value}: "
            f"{failure.reason.value} ({'retryable' if failure.retryable else 'final'}): {failure.message}"
        )
        await self.store.update(transaction_id, fail, operation="fail")

    async def _transition(self, transaction_id: str, target: TransactionStatus) -> None:
        tx = self.store.get(transaction_id)
        previous = tx.status
        await self.store.update(transaction_id, lambda t: t.transition(target), operation=target.value)
        logger.info(f"Transaction {transaction_id}: {previous.value} -> {target.value}")

    async def _run(self, transaction_id: str) -> None:
        tx = self.store.get(transaction_id)
        if tx.status is not TransactionStatus.CREATED:
            logger.warning(f"Transaction {transaction_id} is {tx.status.value}, nothing to drive")
            return

        quote = tx.quote
        provider = self.provider_for(quote.provider)
        if provider is None:
            raise StepFailed(
                TransactionFailure.of(
                    FailureReason.PROVIDER_ERROR, f"Provider {quote.provider} is not registered"
                )
            )

        if tx.current_step_index == 0 and quote.needs_approval:
            await self._approve(tx)
        else:
            await self._transition(tx.id, TransactionStatus.SUBMITTING)

        end = dispatch_end(quote.steps)
        while tx.current_step_index < end:
            await self._execute_step(tx, provider, tx.current_step_index, is_last=tx.current_step_index == end - 1)

        if tx.status is TransactionStatus.SUBMITTING:
            # Resumed after the source transaction had already confirmed
            await self._transition(tx.id, TransactionStatus.AWAITING_CONFIRMATION)
            await self._transition(tx.id, TransactionStatus.EXECUTING)

        await self._await_delivery(tx, provider, end - 1)

    # ======================
    # Steps
    # ======================

    async def _approve(self, tx: Transaction) -> None:
        step = tx.quote.steps[0]
        token = step.from_token
        chain_id = step.chain_id

        if tx.step_hashes[0] is None:
            allowance = await self._bounded(
                self.chain.get_allowance(chain_id, token.address, tx.account, step.spender),
                self.config.read_timeout,
                FailureReason.NETWORK_ERROR,
                "allowance check",
                step_index=0,
            )
            if allowance >= step.amount_in:
                logger.info(
                    f"Transaction {tx.id}: allowance {allowance} >= {step.amount_in} "
                    f"for {token.symbol}, skipping approval"
                )

                def skip(t: Transaction) -> None:
                    t.current_step_index = 1
                    t.transition(TransactionStatus.SUBMITTING)

                await self.store.update(tx.id, skip, operation="skip_approval")
                return

            await self._transition(tx.id, TransactionStatus.APPROVING)
            request = self.chain.build_approval(chain_id, token.address, step.spender, step.amount_in)
            tx_hash = await self._send(tx, 0, request)
            await self._record_hash(tx.id, 0, tx_hash, TransactionStatus.AWAITING_APPROVAL_CONFIRMATION)
        else:
            logger.info(f"Transaction {tx.id}: resuming approval {tx.step_hashes[0]}")
            await self._transition(tx.id, TransactionStatus.APPROVING)
            await self._transition(tx.id, TransactionStatus.AWAITING_APPROVAL_CONFIRMATION)

        await self._confirm(tx, 0)

        def approved(t: Transaction) -> None:
            t.current_step_index = 1
            t.transition(TransactionStatus.SUBMITTING)

        await self.store.update(tx.id, approved, operation="approved")
        logger.info(f"Transaction {tx.id}: approval confirmed, submitting")

    async def _execute_step(self, tx: Transaction, provider: BridgeProvider, index: int, is_last: bool) -> None:
        step = tx.quote.steps[index]
        sent_status = TransactionStatus.AWAITING_CONFIRMATION if is_last else None

        if tx.step_hashes[index] is None:
            request = await self._bounded(
                provider.build_transaction(tx.quote, index, sender=tx.account, recipient=tx.recipient),
                self.config.read_timeout,
                FailureReason.NETWORK_ERROR,
                f"building {step.kind.value} transaction",
                step_index=index,
            )
            tx_hash = await self._send(tx, index, request)
            await self._record_hash(tx.id, index, tx_hash, sent_status, tracking_id=request.tracking_id)
        else:
            logger.info(f"Transaction {tx.id}: resuming step {index} ({tx.step_hashes[index]})")
            if sent_status is not None:
                await self._transition(tx.id, sent_status)

        await self._confirm(tx, index)

        def advance(t: Transaction) -> None:
            t.current_step_index = index + 1
            if is_last:
                t.transition(TransactionStatus.EXECUTING)
            else:
                t.touch()

        await self.store.update(tx.id, advance, operation="step_confirmed")
        if is_last:
            logger.info(
                f"Transaction {tx.id}: source {step.kind.value} confirmed on chain {step.chain_id}, executing"
            )
        else:
            logger.info(f"Transaction {tx.id}: step {index} ({step.kind.value}) confirmed")

    async def _send(self, tx: Transaction, index: int, request: TxRequest) -> str:
        try:
            return await asyncio.wait_for(
                self.signer.sign_and_send(request.chain_id, request),
                timeout=self.config.signing_timeout,
            )
        except asyncio.TimeoutError:
            raise StepFailed(
                TransactionFailure.of(
                    FailureReason.SIGNING_TIMEOUT,
                    f"Wallet did not sign within {self.config.signing_timeout}s",
                    step_index=index,
                )
            )
        except SigningError as e:
            reason = FailureReason.SIGNING_REJECTED if e.rejected else FailureReason.NETWORK_ERROR
            raise StepFailed(TransactionFailure.of(reason, str(e), step_index=index))

    async def _record_hash(
        self,
        transaction_id: str,
        index: int,
        tx_hash: str,
        status: Optional[TransactionStatus],
        tracking_id: Optional[str] = None,
    ) -> None:
        def record(t: Transaction) -> None:
            t.step_hashes[index] = tx_hash
            if tracking_id is not None:
                t.tracking_id = tracking_id
            if status is not None:
                t.transition(status)
            else:
                t.touch()

        await self.store.update(transaction_id, record, operation="sent")
        target = f" -> {status.value}" if status is not None else ""
        logger.info(f"Transaction {transaction_id}: step {index} sent as {tx_hash}{target}")

    async def _confirm(self, tx: Transaction, index: int) -> Receipt:
        step = tx.quote.steps[index]
        tx_hash = tx.step_hashes[index]
        receipt = await self._bounded(
            self.chain.wait_for_receipt(step.chain_id, tx_hash),
            self.config.confirmation_timeout,
            FailureReason.CONFIRMATION_TIMEOUT,
            f"confirmation of {tx_hash}",
            step_index=index,
        )
        if not receipt.succeeded:
            detail = f": {receipt.revert_reason}" if receipt.revert_reason else ""
            raise StepFailed(
                TransactionFailure.of(
                    FailureReason.ON_CHAIN_REVERT,
                    f"{step.kind.value} transaction {tx_hash} reverted in block {receipt.block_number}{detail}",
                    step_index=index,
                )
            )
        return receipt

    async def _await_delivery(self, tx: Transaction, provider: BridgeProvider, bridge_index: int) -> None:
        tx_hash = tx.step_hashes[bridge_index]
        status = await self._bounded(
            self._poll_delivery(tx, provider, tx_hash),
            self.config.delivery_timeout,
            FailureReason.DELIVERY_TIMEOUT,
            f"delivery of {tx_hash}",
            step_index=bridge_index,
        )

        if status is DeliveryStatus.DONE:

            def complete(t: Transaction) -> None:
                t.current_step_index = len(t.quote.steps)
                t.transition(TransactionStatus.COMPLETED)

            await self.store.update(tx.id, complete, operation="completed")
            logger.info(f"Transaction {tx.id}: executing -> completed via {provider.name}")
        elif status is DeliveryStatus.REFUNDED:
            await self._transition(tx.id, TransactionStatus.REFUNDED)
        else:
            raise StepFailed(
                TransactionFailure.of(
                    FailureReason.DELIVERY_FAILED,
                    f"{provider.name} reported delivery failure for {tx_hash}",
                    step_index=bridge_index,
                )
            )

    async def _poll_delivery(self, tx: Transaction, provider: BridgeProvider, tx_hash: str) -> DeliveryStatus:
        while True:
            try:
                status = await asyncio.wait_for(
                    provider.get_status(tx.quote, tx_hash, tracking_id=tx.tracking_id),
                    timeout=self.config.read_timeout,
                )
            except (asyncio.TimeoutError, ProviderError, *TRANSIENT_ERRORS) as e:
                logger.warning(f"Transaction {tx.id}: status check with {provider.name} failed: {e}")
                status = DeliveryStatus.PENDING

            if status is not tx.delivery_status:

                def observe(t: Transaction, observed: DeliveryStatus = status) -> None:
                    t.delivery_status = observed
                    t.touch()

                await self.store.update(tx.id, observe, operation="delivery_status")

            if status is not DeliveryStatus.PENDING:
                return status
            await asyncio.sleep(self.config.status_poll_interval)

    async def _bounded(
        self,
        awaitable: Awaitable[T],
        timeout: float,
        reason: FailureReason,
        what: str,
        step_index: Optional[int] = None,
    ) -> T:
        """Await with a time budget; expiry becomes a typed failure."""
        try:
            return await asyncio.wait_for(awaitable, timeout=timeout)
        except asyncio.TimeoutError:
            raise StepFailed(
                TransactionFailure.of(reason, f"Timed out after {timeout}s waiting for {what}", step_index=step_index)
            )
