"""Test doubles and builders shared across test modules."""

import asyncio
import dataclasses
from typing import Optional

from bridgeroute.chains import get_chain, get_native_token, get_token
from bridgeroute.errors import ProviderError
from bridgeroute.lifecycle.models import TransactionSnapshot, TransactionStatus
from bridgeroute.routing.base import (
    BridgeProvider,
    DeliveryStatus,
    Quote,
    RouteRequest,
    Step,
    StepKind,
    TxRequest,
    apply_slippage,
)
from bridgeroute.signing.base import SigningError
from bridgeroute.signing.dry_run import DRY_RUN_ADDRESS, DryRunSigner

ACCOUNT = DRY_RUN_ADDRESS
OTHER_ACCOUNT = "0x2222222222222222222222222222222222222222"
ROUTER = "0x1111111111111111111111111111111111111111"

WETH_ETH = get_token(1, "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2")
WETH_OP = get_token(10, "0x4200000000000000000000000000000000000006")
ETH_MAINNET = get_native_token(1)
ETH_OP = get_native_token(10)

TENTH_ETH = 10**17


def route_request(
    amount: int = TENTH_ETH,
    from_token=None,
    to_token=None,
    slippage_bps: int = 50,
    recipient: Optional[str] = None,
) -> RouteRequest:
    """WETH Ethereum -> WETH Optimism unless told otherwise."""
    from_token = from_token or WETH_ETH
    to_token = to_token or WETH_OP
    return RouteRequest(
        from_chain=get_chain(from_token.chain_id),
        to_chain=get_chain(to_token.chain_id),
        from_token=from_token,
        to_token=to_token,
        amount=amount,
        slippage_bps=slippage_bps,
        recipient=recipient,
    )


def make_quote(
    request: Optional[RouteRequest] = None,
    provider: str = "Stub",
    amount_out: Optional[int] = None,
    duration: int = 300,
    approve: Optional[bool] = None,
    spender: str = ROUTER,
    ttl_seconds: float = 30.0,
    with_tx: bool = True,
) -> Quote:
    """Quote with an optional approve step and one bridge step."""
    request = request or route_request()
    amount_out = amount_out if amount_out is not None else request.amount * 999 // 1000
    if approve is None:
        approve = not request.from_token.is_native

    steps = []
    if approve:
        steps.append(
            Step(
                kind=StepKind.APPROVE,
                from_token=request.from_token,
                to_token=request.from_token,
                amount_in=request.amount,
                amount_out=request.amount,
                estimated_duration_seconds=0,
                tool="erc20",
                spender=spender,
            )
        )
    steps.append(
        Step(
            kind=StepKind.BRIDGE,
            from_token=request.from_token,
            to_token=request.to_token,
            amount_in=request.amount,
            amount_out=amount_out,
            estimated_duration_seconds=duration,
            tool=provider,
            tx_request=(
                TxRequest(
                    chain_id=request.from_chain.chain_id,
                    to=ROUTER,
                    data="0xdeadbeef",
                    value=request.amount if request.from_token.is_native else 0,
                )
                if with_tx
                else None
            ),
        )
    )
    return Quote(
        provider=provider,
        request=request,
        amount_out=amount_out,
        min_amount_out=apply_slippage(amount_out, request.slippage_bps),
        fee_amount=request.amount - amount_out,
        fee_token=request.from_token,
        estimated_duration_seconds=duration,
        steps=tuple(steps),
        ttl_seconds=ttl_seconds,
    )


class StubProvider(BridgeProvider):
    """Provider with scripted answers and call counting."""

    def __init__(
        self,
        name: str = "Stub",
        amount_out: Optional[int] = None,
        duration: int = 300,
        delay: float = 0.0,
        error: Optional[Exception] = None,
        chains: Optional[frozenset[int]] = None,
        approve: Optional[bool] = None,
        statuses: Optional[list[DeliveryStatus]] = None,
        inconsistent: bool = False,
        timeout: float = 1.0,
    ):
        super().__init__(timeout=timeout)
        self._name = name
        self.amount_out = amount_out
        self.duration = duration
        self.delay = delay
        self.error = error
        self._chains = chains or frozenset({1, 10, 137, 8453, 42161})
        self.approve = approve
        self.statuses = list(statuses or [DeliveryStatus.DONE])
        self.inconsistent = inconsistent
        self.calls = 0
        self.status_calls = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def supported_chains(self) -> frozenset[int]:
        return self._chains

    async def _fetch_quote(self, request: RouteRequest) -> Quote:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        quote = make_quote(
            request,
            provider=self.name,
            amount_out=self.amount_out,
            duration=self.duration,
            approve=self.approve,
        )
        if self.inconsistent:
            quote = dataclasses.replace(quote, estimated_duration_seconds=self.duration + 60)
        return quote

    async def get_status(
        self, quote: Quote, tx_hash: str, tracking_id: Optional[str] = None
    ) -> DeliveryStatus:
        self.status_calls += 1
        if len(self.statuses) > 1:
            return self.statuses.pop(0)
        return self.statuses[0]


class FailingStatusProvider(StubProvider):
    """Status endpoint errors a fixed number of times before answering."""

    def __init__(self, failures: int = 1, **kwargs):
        super().__init__(**kwargs)
        self.failures = failures

    async def get_status(
        self, quote: Quote, tx_hash: str, tracking_id: Optional[str] = None
    ) -> DeliveryStatus:
        if self.failures > 0:
            self.failures -= 1
            raise ProviderError(self.name, "status API error 502")
        return await super().get_status(quote, tx_hash, tracking_id)


class RequotingProvider(StubProvider):
    """Builds a fresh deposit with its own tracking id, as intent bridges do."""

    def __init__(self, fresh_tracking_id: str = "0xfresh", **kwargs):
        super().__init__(**kwargs)
        self.fresh_tracking_id = fresh_tracking_id
        self.built_for: list[tuple[str, str]] = []
        self.tracked: list[Optional[str]] = []

    async def build_transaction(self, quote: Quote, step_index: int, sender: str, recipient: str) -> TxRequest:
        self.built_for.append((sender, recipient))
        request = await super().build_transaction(quote, step_index, sender, recipient)
        return dataclasses.replace(request, tracking_id=self.fresh_tracking_id)

    async def get_status(
        self, quote: Quote, tx_hash: str, tracking_id: Optional[str] = None
    ) -> DeliveryStatus:
        self.tracked.append(tracking_id)
        if tracking_id != self.fresh_tracking_id:
            return DeliveryStatus.PENDING
        return await super().get_status(quote, tx_hash, tracking_id)


class SlowSigner(DryRunSigner):
    """Never finishes signing."""

    async def sign_and_send(self, chain_id: int, tx_request: TxRequest) -> str:
        await asyncio.sleep(3600)
        raise AssertionError("unreachable")


class FlakySigner(DryRunSigner):
    """Fails the first `failures` broadcasts with a non-rejection error."""

    def __init__(self, *args, failures: int = 1, **kwargs):
        super().__init__(*args, **kwargs)
        self.failures = failures

    async def sign_and_send(self, chain_id: int, tx_request: TxRequest) -> str:
        if self.failures > 0:
            self.failures -= 1
            raise SigningError("RPC node unreachable")
        return await super().sign_and_send(chain_id, tx_request)


def statuses(snapshots: list[TransactionSnapshot]) -> list[TransactionStatus]:
    """Status sequence with consecutive repeats collapsed."""
    seen: list[TransactionStatus] = []
    for snapshot in snapshots:
        if not seen or seen[-1] is not snapshot.status:
            seen.append(snapshot.status)
    return seen


async def collect(subscription, timeout: float = 3.0) -> list[TransactionSnapshot]:
    """Drain a subscription until it ends."""

    async def drain():
        return [snapshot async for snapshot in subscription]

    return await asyncio.wait_for(drain(), timeout=timeout)


async def wait_for_status(engine, transaction_id: str, *targets: TransactionStatus, timeout: float = 3.0):
    """Poll until the transaction reaches one of `targets`."""

    async def poll():
        while True:
            snapshot = engine.get_transaction(transaction_id)
            if snapshot.status in targets:
                return snapshot
            await asyncio.sleep(0.01)

    return await asyncio.wait_for(poll(), timeout=timeout)
