"""Route requests, quotes and the abstract bridge provider interface."""

import asyncio
import hashlib
import logging
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Optional

import httpx

from bridgeroute.chains import ChainRef, TokenRef
from bridgeroute.errors import (
    ProviderError,
    ProviderTimeout,
    ProviderUnsupportedRoute,
    ValidationError,
)

logger = logging.getLogger(__name__)

BPS_DENOMINATOR = 10_000
DEFAULT_QUOTE_TTL = 30.0


def to_units(amount: Decimal, decimals: int) -> int:
    """Convert a human-readable amount to the token's smallest unit."""
    return int(Decimal(amount) * (Decimal(10) ** decimals))


def from_units(amount: int, decimals: int) -> Decimal:
    """Convert smallest-unit integer amount to a human-readable Decimal."""
    return Decimal(amount) / (Decimal(10) ** decimals)


def apply_slippage(amount: int, slippage_bps: int) -> int:
    """Minimum amount out after slippage tolerance."""
    return amount * (BPS_DENOMINATOR - slippage_bps) // BPS_DENOMINATOR


def bucket_amount(amount: int, significant_digits: int) -> int:
    """Round an amount down to a fixed number of significant digits."""
    digits = len(str(abs(amount)))
    if digits <= significant_digits:
        return amount
    scale = 10 ** (digits - significant_digits)
    return (amount // scale) * scale


@dataclass(frozen=True)
class RouteRequest:
    """A request to move `amount` of from_token on from_chain to to_token on to_chain."""

    from_chain: ChainRef
    to_chain: ChainRef
    from_token: TokenRef
    to_token: TokenRef
    amount: int  # smallest unit of from_token
    slippage_bps: int = 50
    recipient: Optional[str] = None

    def validate(self, max_slippage_bps: int = BPS_DENOMINATOR) -> None:
        """Reject malformed requests before any network call.

        Raises:
            ValidationError: on non-positive amount, identical chains, tokens
                scoped to the wrong chain or out-of-range slippage
        """
        if not isinstance(self.amount, int) or isinstance(self.amount, bool):
            raise ValidationError(f"Amount must be an integer in smallest units, got {self.amount!r}")
        if self.amount <= 0:
            raise ValidationError(f"Amount must be positive, got {self.amount}")
        if self.from_chain.chain_id == self.to_chain.chain_id:
            raise ValidationError(
                f"Source and destination chain are both {self.from_chain.chain_id}; "
                "same-chain routes are not supported"
            )
        if self.from_token.chain_id != self.from_chain.chain_id:
            raise ValidationError(
                f"Token {self.from_token.symbol} is not on source chain {self.from_chain.chain_id}"
            )
        if self.to_token.chain_id != self.to_chain.chain_id:
            raise ValidationError(
                f"Token {self.to_token.symbol} is not on destination chain {self.to_chain.chain_id}"
            )
        if not 0 <= self.slippage_bps <= max_slippage_bps:
            raise ValidationError(
                f"Slippage must be between 0 and {max_slippage_bps} bps, got {self.slippage_bps}"
            )

    def cache_key(self, significant_digits: int = 6) -> str:
        """Deterministic hash of the routing-relevant fields.

        The amount is bucketed so that near-identical amounts share a key.
        The recipient is part of the key since providers quote for it.
        """
        parts = [
            str(self.from_chain.chain_id),
            str(self.to_chain.chain_id),
            self.from_token.address.lower(),
            self.to_token.address.lower(),
            str(bucket_amount(self.amount, significant_digits)),
            str(self.slippage_bps),
            (self.recipient or "").lower(),
        ]
        return hashlib.sha256(":".join(parts).encode()).hexdigest()

    @property
    def amount_decimal(self) -> Decimal:
        return from_units(self.amount, self.from_token.decimals)

    def describe(self) -> str:
        return (
            f"{self.amount_decimal} {self.from_token.symbol}@{self.from_chain.name} -> "
            f"{self.to_token.symbol}@{self.to_chain.name}"
        )


@dataclass(frozen=True)
class TxRequest:
    """Unsigned transaction handed to the wallet collaborator."""

    chain_id: int
    to: str
    data: str = "0x"
    value: int = 0
    gas_limit: Optional[int] = None
    # Provider handle for following this transaction to the destination
    tracking_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "chain_id": self.chain_id,
            "to": self.to,
            "data": self.data,
            "value": str(self.value),
            "gas_limit": self.gas_limit,
            "tracking_id": self.tracking_id,
        }


class StepKind(str, Enum):
    """Kinds of execution legs within a quote."""

    APPROVE = "approve"
    SWAP = "swap"
    BRIDGE = "bridge"
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"


@dataclass(frozen=True)
class Step:
    """One execution leg of a quote.

    Field validity depends on kind:
    - approve: same token on both sides, `spender` required
    - swap: same chain, different tokens
    - bridge: different chains
    - deposit / withdraw: single chain
    """

    kind: StepKind
    from_token: TokenRef
    to_token: TokenRef
    amount_in: int
    amount_out: int
    estimated_duration_seconds: int
    fee_amount: int = 0
    tool: str = ""
    spender: Optional[str] = None
    tx_request: Optional[TxRequest] = None

    def __post_init__(self):
        kind = StepKind(self.kind)
        if kind is StepKind.APPROVE:
            if not self.spender:
                raise ValueError("approve step requires a spender")
            if self.from_token != self.to_token:
                raise ValueError("approve step must reference a single token")
        elif kind is StepKind.SWAP:
            if self.from_token.chain_id != self.to_token.chain_id:
                raise ValueError("swap step must stay on one chain")
        elif kind is StepKind.BRIDGE:
            if self.from_token.chain_id == self.to_token.chain_id:
                raise ValueError("bridge step must cross chains")
        elif kind in (StepKind.DEPOSIT, StepKind.WITHDRAW):
            if self.from_token.chain_id != self.to_token.chain_id:
                raise ValueError(f"{kind.value} step must stay on one chain")
        else:  # pragma: no cover - enum is exhaustive
            raise ValueError(f"Unknown step kind {kind}")
        if self.spender is not None and kind is not StepKind.APPROVE:
            raise ValueError("only approve steps carry a spender")

    @property
    def chain_id(self) -> int:
        """Chain the step is submitted on."""
        return self.from_token.chain_id

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "chain_id": self.chain_id,
            "from_token": self.from_token.address,
            "from_symbol": self.from_token.symbol,
            "to_chain_id": self.to_token.chain_id,
            "to_token": self.to_token.address,
            "to_symbol": self.to_token.symbol,
            "amount_in": str(self.amount_in),
            "amount_out": str(self.amount_out),
            "fee_amount": str(self.fee_amount),
            "estimated_duration_seconds": self.estimated_duration_seconds,
            "tool": self.tool,
            "spender": self.spender,
        }


@dataclass(frozen=True)
class Quote:
    """A priced, timed offer from one provider to execute a route."""

    provider: str
    request: RouteRequest
    amount_out: int
    min_amount_out: int
    fee_amount: int
    fee_token: TokenRef
    estimated_duration_seconds: int
    steps: tuple[Step, ...]
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: float = field(default_factory=time.time)
    ttl_seconds: float = DEFAULT_QUOTE_TTL
    fee_usd: Optional[Decimal] = None
    is_simulated: bool = False
    provider_data: dict = field(default_factory=dict, compare=False)

    @property
    def amount_in(self) -> int:
        return self.request.amount

    @property
    def expires_at(self) -> float:
        return self.created_at + self.ttl_seconds

    def is_expired(self, now: Optional[float] = None) -> bool:
        """Check if quote has expired."""
        return (now if now is not None else time.time()) >= self.expires_at

    @property
    def seconds_until_expiry(self) -> float:
        """Seconds until quote expires (negative if expired)."""
        return self.expires_at - time.time()

    @property
    def is_consistent(self) -> bool:
        """Step durations add up to the quote's own duration and approvals come first."""
        if not self.steps:
            return False
        if any(step.kind is StepKind.APPROVE for step in self.steps[1:]):
            return False
        total = sum(step.estimated_duration_seconds for step in self.steps)
        return total == self.estimated_duration_seconds

    @property
    def needs_approval(self) -> bool:
        return bool(self.steps) and self.steps[0].kind is StepKind.APPROVE

    @property
    def amount_out_decimal(self) -> Decimal:
        return from_units(self.amount_out, self.request.to_token.decimals)

    @property
    def exchange_rate(self) -> Decimal:
        """Output per unit of input in human-readable units."""
        amount_in = self.request.amount_decimal
        if amount_in == 0:
            return Decimal("0")
        return self.amount_out_decimal / amount_in

    def to_dict(self) -> dict:
        """Convert to dictionary for storage."""
        request = self.request
        return {
            "id": self.id,
            "provider": self.provider,
            "from_chain_id": request.from_chain.chain_id,
            "to_chain_id": request.to_chain.chain_id,
            "from_token": request.from_token.address,
            "to_token": request.to_token.address,
            "amount_in": str(self.amount_in),
            "amount_out": str(self.amount_out),
            "min_amount_out": str(self.min_amount_out),
            "fee_amount": str(self.fee_amount),
            "fee_token": self.fee_token.address,
            "fee_usd": str(self.fee_usd) if self.fee_usd is not None else None,
            "estimated_duration_seconds": self.estimated_duration_seconds,
            "slippage_bps": request.slippage_bps,
            "created_at": self.created_at,
            "expires_at": self.expires_at,
            "is_simulated": self.is_simulated,
            "steps": [step.to_dict() for step in self.steps],
        }


class DeliveryStatus(str, Enum):
    """Destination-side status reported by a provider."""

    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"
    REFUNDED = "refunded"


class BridgeProvider(ABC):
    """Abstract base class for bridge/aggregator adapters.

    Adapters are stateless per call and safe to share between concurrent
    requests. They do no caching; the aggregator owns that.
    """

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name identifier."""
        pass

    @property
    @abstractmethod
    def supported_chains(self) -> frozenset[int]:
        """Chain ids this provider can route between."""
        pass

    @abstractmethod
    async def _fetch_quote(self, request: RouteRequest) -> Quote:
        """Query the provider's API. Implementations raise ProviderError subclasses."""
        pass

    @abstractmethod
    async def get_status(
        self,
        quote: Quote,
        tx_hash: str,
        tracking_id: Optional[str] = None,
    ) -> DeliveryStatus:
        """Destination delivery status for the source transaction `tx_hash`.

        `tracking_id` is the handle carried by the broadcast TxRequest, if any.
        """
        pass

    def supports_route(self, request: RouteRequest) -> bool:
        """Check if this provider declares support for both chains."""
        chains = self.supported_chains
        return request.from_chain.chain_id in chains and request.to_chain.chain_id in chains

    async def get_quote(self, request: RouteRequest) -> Quote:
        """Get a quote, enforcing this provider's request timeout.

        Raises:
            ProviderUnsupportedRoute: the route is not served by this provider
            ProviderTimeout: no answer within `self.timeout`
            ProviderError: any other failure
        """
        if not self.supports_route(request):
            raise ProviderUnsupportedRoute(
                self.name,
                f"chains {request.from_chain.chain_id}->{request.to_chain.chain_id} not served",
            )
        try:
            quote = await asyncio.wait_for(self._fetch_quote(request), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise ProviderTimeout(self.name, self.timeout)
        except httpx.TimeoutException:
            raise ProviderTimeout(self.name, self.timeout)
        except ProviderError:
            raise
        except (httpx.HTTPError, KeyError, ValueError, TypeError) as e:
            raise ProviderError(self.name, f"{type(e).__name__}: {e}") from e

        logger.info(
            f"{self.name} quoted {request.describe()}: {quote.amount_out_decimal} "
            f"{request.to_token.symbol} in ~{quote.estimated_duration_seconds}s"
        )
        return quote

    async def build_transaction(
        self,
        quote: Quote,
        step_index: int,
        sender: str,
        recipient: str,
    ) -> TxRequest:
        """Transaction request for a non-approve step.

        The default returns the request the provider attached at quote time.
        """
        step = quote.steps[step_index]
        if step.tx_request is None:
            raise ProviderError(self.name, f"no transaction data for step {step_index} ({step.kind.value})")
        return step.tx_request
