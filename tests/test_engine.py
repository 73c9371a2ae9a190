"""Tests for the bridge engine's caller-facing operations."""

import time
from unittest.mock import AsyncMock

import pytest

from bridgeroute.chain.dry_run import DryRunChainClient
from bridgeroute.chain.evm import RpcError
from bridgeroute.config import Settings
from bridgeroute.engine import create_engine
from bridgeroute.errors import (
    ChainUnavailable,
    InsufficientAllowance,
    InsufficientBalance,
    InvalidTransition,
    NoRouteFound,
    ProviderError,
    QuoteExpired,
    QuoteNotFound,
    TransactionNotFound,
    ValidationError,
)
from bridgeroute.lifecycle.models import (
    FailureReason,
    Transaction,
    TransactionFailure,
    TransactionStatus,
)
from bridgeroute.routing.dry_run import SimulatedBridgeProvider

from factories import (
    ACCOUNT,
    ETH_MAINNET,
    TENTH_ETH,
    WETH_ETH,
    WETH_OP,
    StubProvider,
    make_quote,
    wait_for_status,
)

S = TransactionStatus


async def weth_route(engine, **kwargs):
    return await engine.get_best_route(1, 10, WETH_ETH.address, WETH_OP.address, TENTH_ETH, **kwargs)


class TestGetBestRoute:
    """Tests for routing through the engine."""

    @pytest.mark.asyncio
    async def test_ranked_quotes_are_stored(self, make_engine):
        engine = make_engine(
            providers=[StubProvider("Low", amount_out=10**16), StubProvider("High", amount_out=10**16 * 9)]
        )

        ranked = await weth_route(engine)

        assert [q.provider for q in ranked] == ["High", "Low"]
        assert engine.get_quote(ranked[0].id) is ranked[0]

    @pytest.mark.asyncio
    async def test_default_slippage_applied(self, make_engine):
        engine = make_engine(default_slippage_bps=100)
        ranked = await weth_route(engine)
        assert ranked[0].request.slippage_bps == 100

    @pytest.mark.asyncio
    async def test_amount_as_string(self, make_engine):
        engine = make_engine()
        ranked = await engine.get_best_route(1, 10, WETH_ETH.address, WETH_OP.address, str(TENTH_ETH))
        assert ranked[0].amount_in == TENTH_ETH

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["0.1", "-5", "abc", True])
    async def test_malformed_amount(self, make_engine, amount):
        with pytest.raises(ValidationError):
            await make_engine().get_best_route(1, 10, WETH_ETH.address, WETH_OP.address, amount)

    @pytest.mark.asyncio
    async def test_same_chain_rejected_without_calls(self, make_engine):
        provider = StubProvider()
        engine = make_engine(providers=[provider])

        with pytest.raises(ValidationError):
            await engine.get_best_route(1, 1, WETH_ETH.address, ETH_MAINNET.address, TENTH_ETH)

        assert provider.calls == 0

    @pytest.mark.asyncio
    async def test_unknown_chain(self, make_engine):
        with pytest.raises(ValidationError, match="Unsupported chain"):
            await make_engine().get_best_route(999, 10, WETH_ETH.address, WETH_OP.address, TENTH_ETH)

    @pytest.mark.asyncio
    async def test_unknown_token(self, make_engine):
        with pytest.raises(ValidationError, match="Unknown token"):
            await make_engine().get_best_route(1, 10, "0x" + "99" * 20, WETH_OP.address, TENTH_ETH)

    @pytest.mark.asyncio
    async def test_invalid_recipient(self, make_engine):
        with pytest.raises(ValidationError, match="recipient"):
            await weth_route(make_engine(), recipient="not-an-address")

    @pytest.mark.asyncio
    async def test_no_route(self, make_engine):
        engine = make_engine(providers=[StubProvider(error=ProviderError("Stub", "down"))])
        with pytest.raises(NoRouteFound):
            await weth_route(engine)


class TestAcceptQuote:
    """Tests for pre-submission checks."""

    @pytest.mark.asyncio
    async def test_creates_transaction(self, make_engine):
        engine = make_engine()
        ranked = await weth_route(engine)

        tx_id = await engine.accept_quote(ranked[0].id)

        snapshot = engine.get_transaction(tx_id)
        assert snapshot.quote.id == ranked[0].id
        assert snapshot.account == ACCOUNT
        assert snapshot.recipient == ACCOUNT

    @pytest.mark.asyncio
    async def test_explicit_recipient(self, make_engine):
        engine = make_engine()
        ranked = await weth_route(engine)
        recipient = "0x" + "ab" * 20

        tx_id = await engine.accept_quote(ranked[0].id, recipient=recipient)

        assert engine.get_transaction(tx_id).recipient == recipient

    @pytest.mark.asyncio
    async def test_unknown_quote(self, make_engine):
        with pytest.raises(QuoteNotFound):
            await make_engine().accept_quote("missing")

    @pytest.mark.asyncio
    async def test_expired_quote(self, make_engine):
        engine = make_engine()
        quote = make_quote(ttl_seconds=0)
        engine.quotes.add([quote])

        with pytest.raises(QuoteExpired):
            await engine.accept_quote(quote.id)

        assert len(engine.transactions) == 0

    @pytest.mark.asyncio
    async def test_insufficient_balance(self, make_engine):
        chain = DryRunChainClient()
        chain.set_balance(1, WETH_ETH.address, ACCOUNT, TENTH_ETH - 1)
        engine = make_engine(chain=chain)
        ranked = await weth_route(engine)

        with pytest.raises(InsufficientBalance):
            await engine.accept_quote(ranked[0].id)

        assert len(engine.transactions) == 0

    @pytest.mark.asyncio
    async def test_missing_approval_step(self, make_engine):
        engine = make_engine(providers=[StubProvider(approve=False)])
        ranked = await weth_route(engine)

        with pytest.raises(InsufficientAllowance):
            await engine.accept_quote(ranked[0].id)

        assert len(engine.transactions) == 0

    @pytest.mark.asyncio
    async def test_chain_unavailable(self, make_engine):
        chain = DryRunChainClient()
        chain.get_balance = AsyncMock(side_effect=RpcError("eth_getBalance", "connection refused"))
        engine = make_engine(chain=chain)
        ranked = await weth_route(engine)

        with pytest.raises(ChainUnavailable):
            await engine.accept_quote(ranked[0].id)

    @pytest.mark.asyncio
    async def test_invalid_sender(self, make_engine):
        engine = make_engine()
        ranked = await weth_route(engine)

        with pytest.raises(ValidationError, match="sender"):
            await engine.accept_quote(ranked[0].id, sender="0x1234")


class TestTransactionOperations:
    """Tests for lookup, history, cancel and retry."""

    @pytest.mark.asyncio
    async def test_unknown_transaction(self, make_engine):
        engine = make_engine()
        with pytest.raises(TransactionNotFound):
            engine.get_transaction("missing")
        with pytest.raises(TransactionNotFound):
            engine.subscribe_transaction("missing")
        with pytest.raises(TransactionNotFound):
            await engine.cancel_transaction("missing")

    @pytest.mark.asyncio
    async def test_list_transactions(self, make_engine):
        engine = make_engine()
        ranked = await weth_route(engine)
        ids = [await engine.accept_quote(ranked[0].id) for _ in range(3)]

        page = engine.list_transactions(ACCOUNT, page=1, page_size=2)

        assert page.total == 3
        assert len(page.items) == 2
        assert page.has_more
        assert {s.id for s in page.items} <= set(ids)

    @pytest.mark.asyncio
    async def test_cancel_before_broadcast(self, make_engine):
        engine = make_engine()
        ranked = await weth_route(engine)
        tx_id = await engine.accept_quote(ranked[0].id)

        snapshot = await engine.cancel_transaction(tx_id)

        assert snapshot.status is S.FAILED
        assert snapshot.failure.reason is FailureReason.CANCELLED
        assert not snapshot.cancelled_after_submission
        assert engine.signer.sent == []

    @pytest.mark.asyncio
    async def test_cancel_terminal_rejected(self, make_engine):
        engine = make_engine()
        ranked = await weth_route(engine)
        tx_id = await engine.accept_quote(ranked[0].id)
        await wait_for_status(engine, tx_id, S.COMPLETED)

        with pytest.raises(InvalidTransition):
            await engine.cancel_transaction(tx_id)

    @pytest.mark.asyncio
    async def test_retry_requires_failure(self, make_engine):
        engine = make_engine()
        ranked = await weth_route(engine)
        tx_id = await engine.accept_quote(ranked[0].id)
        await wait_for_status(engine, tx_id, S.COMPLETED)

        with pytest.raises(InvalidTransition, match="not failed"):
            await engine.retry_transaction(tx_id)

    @pytest.mark.asyncio
    async def test_retry_cancelled_rejected(self, make_engine):
        engine = make_engine()
        ranked = await weth_route(engine)
        tx_id = await engine.accept_quote(ranked[0].id)
        await engine.cancel_transaction(tx_id)

        with pytest.raises(InvalidTransition, match="final"):
            await engine.retry_transaction(tx_id)

    @pytest.mark.asyncio
    async def test_retry_with_stale_quote_and_nothing_sent(self, make_engine):
        engine = make_engine()
        tx = Transaction(quote=make_quote(ttl_seconds=0), account=ACCOUNT, recipient=ACCOUNT)
        tx.fail(TransactionFailure.of(FailureReason.SIGNING_TIMEOUT, "wallet asleep"))
        await engine.transactions.add(tx)

        with pytest.raises(QuoteExpired):
            await engine.retry_transaction(tx.id)

        assert engine.get_transaction(tx.id).status is S.FAILED


class TestMaintenance:
    """Tests for the watchdog, sweeps and wiring."""

    @pytest.mark.asyncio
    async def test_watchdog_fails_stalled(self, make_engine):
        engine = make_engine()
        tx = Transaction(
            quote=make_quote(),
            account=ACCOUNT,
            recipient=ACCOUNT,
            status=S.AWAITING_CONFIRMATION,
            current_step_index=1,
        )
        tx.step_hashes[1] = "0xabc"
        tx.updated_at = time.time() - 600
        engine.transactions.restore(tx)

        result = await engine.sweep()

        assert result == {"stalled": 1, "evicted": 0}
        snapshot = engine.get_transaction(tx.id)
        assert snapshot.failure.reason is FailureReason.CONFIRMATION_TIMEOUT
        assert snapshot.failure.retryable

    @pytest.mark.asyncio
    async def test_sweep_evicts_old_terminal(self, make_engine):
        engine = make_engine(retention_window=60)
        tx = Transaction(quote=make_quote(), account=ACCOUNT, recipient=ACCOUNT, status=S.COMPLETED)
        tx.updated_at = time.time() - 120
        engine.transactions.restore(tx)

        result = await engine.sweep()

        assert result["evicted"] == 1
        with pytest.raises(TransactionNotFound):
            engine.get_transaction(tx.id)

    @pytest.mark.asyncio
    async def test_stats(self, make_engine):
        engine = make_engine()
        ranked = await weth_route(engine)
        tx_id = await engine.accept_quote(ranked[0].id)
        await wait_for_status(engine, tx_id, S.COMPLETED)

        stats = engine.stats()

        assert stats["providers"] == ["Stub"]
        assert stats["transactions"] == 1
        assert stats["by_status"] == {"completed": 1}
        assert stats["live_quotes"] == 1

    @pytest.mark.asyncio
    async def test_start_and_stop(self, make_engine):
        engine = make_engine()
        await engine.start()
        assert len(engine._background) == 2

        await engine.stop()

        assert engine._background == []

    def test_create_dry_run_engine(self):
        engine = create_engine(Settings(_env_file=None, dry_run=True))
        assert engine.aggregator.providers
        assert all(isinstance(p, SimulatedBridgeProvider) for p in engine.aggregator.providers)
        assert engine.archive is None

    def test_real_mode_requires_key(self):
        with pytest.raises(ValueError, match="HOT_WALLET_PRIVATE_KEY"):
            create_engine(Settings(_env_file=None, dry_run=False, hot_wallet_private_key=None))
