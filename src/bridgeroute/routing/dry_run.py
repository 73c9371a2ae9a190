"""Simulated bridge providers for dry-run mode and local testing.

Quotes follow the bridge dashboard's placeholder math: a basis-point
bridge fee, 5 minutes for L2 -> L2 transfers and 15 minutes whenever
Ethereum L1 is involved, 30 seconds for an ERC-20 approval.
"""

import asyncio
import logging
import secrets
from decimal import Decimal
from typing import Iterable, Optional

from bridgeroute.chains import CHAINS
from bridgeroute.errors import ProviderUnsupportedRoute
from bridgeroute.routing.base import (
    BPS_DENOMINATOR,
    BridgeProvider,
    DeliveryStatus,
    Quote,
    RouteRequest,
    Step,
    StepKind,
    TxRequest,
    apply_slippage,
    from_units,
    to_units,
)

logger = logging.getLogger(__name__)

# Simulated USD prices by symbol. Demonstration values only.
SIMULATED_PRICES: dict[str, Decimal] = {
    "ETH": Decimal("2000"),
    "WETH": Decimal("2000"),
    "SEP": Decimal("2000"),
    "POL": Decimal("0.50"),
    "AVAX": Decimal("25"),
    "USDC": Decimal("1"),
    "USDT": Decimal("1"),
    "DAI": Decimal("1"),
}

# Symbols that are value-equivalent and bridge 1:1
EQUIVALENT_SYMBOLS = [
    {"ETH", "WETH", "SEP"},
    {"USDC", "USDT", "DAI"},
]

APPROVAL_SECONDS = 30
L2_TRANSFER_SECONDS = 300
L1_TRANSFER_SECONDS = 900

# Placeholder router contract used as approval spender and call target
SIMULATED_ROUTER = "0x1111111111111111111111111111111111111111"


def _equivalent(a: str, b: str) -> bool:
    a, b = a.upper(), b.upper()
    return a == b or any(a in group and b in group for group in EQUIVALENT_SYMBOLS)


class SimulatedBridgeProvider(BridgeProvider):
    """
    Simulated bridge for dry-run mode.

    Provides deterministic quotes with:
    - Configurable fee in basis points
    - Configurable speed relative to the default transfer times
    - Optional artificial latency to exercise timeouts
    """

    def __init__(
        self,
        name: str = "Etherlink Bridge",
        fee_bps: int = 10,
        speed_factor: Decimal = Decimal("1"),
        chains: Optional[Iterable[int]] = None,
        latency: float = 0.0,
        router_address: str = SIMULATED_ROUTER,
        delivery_status: DeliveryStatus = DeliveryStatus.DONE,
        timeout: float = 5.0,
    ):
        super().__init__(timeout=timeout)
        self._name = name
        self.fee_bps = fee_bps
        self.speed_factor = Decimal(speed_factor)
        self._chains = frozenset(chains) if chains is not None else None
        self.latency = latency
        self.router_address = router_address
        self.delivery_status = delivery_status
        self._prices = SIMULATED_PRICES.copy()

    @property
    def name(self) -> str:
        return self._name

    @property
    def supported_chains(self) -> frozenset[int]:
        if self._chains is not None:
            return self._chains
        return frozenset(CHAINS)

    def set_price(self, symbol: str, price: Decimal) -> None:
        """Set simulated price for a symbol."""
        self._prices[symbol.upper()] = price

    def estimate_transfer_seconds(self, request: RouteRequest) -> int:
        base = L1_TRANSFER_SECONDS if (request.from_chain.is_l1 or request.to_chain.is_l1) else L2_TRANSFER_SECONDS
        return int(Decimal(base) * self.speed_factor)

    def _convert(self, request: RouteRequest, amount: int) -> int:
        """Convert an amount of from_token into to_token units."""
        from_token, to_token = request.from_token, request.to_token
        value = from_units(amount, from_token.decimals)
        if not _equivalent(from_token.symbol, to_token.symbol):
            from_price = self._prices.get(from_token.symbol.upper())
            to_price = self._prices.get(to_token.symbol.upper())
            if from_price is None or to_price is None:
                raise ProviderUnsupportedRoute(
                    self.name, f"no price for {from_token.symbol}/{to_token.symbol}"
                )
            value = value * from_price / to_price
        return to_units(value, to_token.decimals)

    async def _fetch_quote(self, request: RouteRequest) -> Quote:
        """Generate a simulated quote."""
        if self.latency:
            await asyncio.sleep(self.latency)

        fee_amount = request.amount * self.fee_bps // BPS_DENOMINATOR
        amount_out = self._convert(request, request.amount - fee_amount)
        if amount_out <= 0:
            raise ProviderUnsupportedRoute(self.name, "amount too small after fees")

        steps: list[Step] = []
        if not request.from_token.is_native:
            steps.append(
                Step(
                    kind=StepKind.APPROVE,
                    from_token=request.from_token,
                    to_token=request.from_token,
                    amount_in=request.amount,
                    amount_out=request.amount,
                    estimated_duration_seconds=APPROVAL_SECONDS,
                    tool="erc20",
                    spender=self.router_address,
                )
            )

        transfer_seconds = self.estimate_transfer_seconds(request)
        steps.append(
            Step(
                kind=StepKind.BRIDGE,
                from_token=request.from_token,
                to_token=request.to_token,
                amount_in=request.amount,
                amount_out=amount_out,
                estimated_duration_seconds=transfer_seconds,
                fee_amount=fee_amount,
                tool=self.name,
                tx_request=TxRequest(
                    chain_id=request.from_chain.chain_id,
                    to=self.router_address,
                    data="0x" + secrets.token_hex(4),
                    value=request.amount if request.from_token.is_native else 0,
                ),
            )
        )

        fee_usd = None
        price = self._prices.get(request.from_token.symbol.upper())
        if price is not None:
            fee_usd = from_units(fee_amount, request.from_token.decimals) * price

        quote = Quote(
            provider=self.name,
            request=request,
            amount_out=amount_out,
            min_amount_out=apply_slippage(amount_out, request.slippage_bps),
            fee_amount=fee_amount,
            fee_token=request.from_token,
            estimated_duration_seconds=sum(s.estimated_duration_seconds for s in steps),
            steps=tuple(steps),
            fee_usd=fee_usd,
            is_simulated=True,
        )
        return quote

    async def get_status(
        self, quote: Quote, tx_hash: str, tracking_id: Optional[str] = None
    ) -> DeliveryStatus:
        """Simulated destination status."""
        return self.delivery_status


def create_simulated_providers(timeout: float = 5.0) -> list[BridgeProvider]:
    """Create the default set of simulated providers with distinct fee/speed profiles."""
    mainnets = [cid for cid, chain in CHAINS.items() if not chain.is_testnet]
    return [
        SimulatedBridgeProvider("Etherlink Bridge", fee_bps=10, timeout=timeout),
        SimulatedBridgeProvider(
            "Hop (simulated)", fee_bps=4, speed_factor=Decimal("1.5"), chains=mainnets, timeout=timeout
        ),
        SimulatedBridgeProvider(
            "Stargate (simulated)", fee_bps=6, speed_factor=Decimal("0.8"), chains=mainnets, timeout=timeout
        ),
    ]
