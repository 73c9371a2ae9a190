"""Transaction model and status state machine.

Status flow:
    created -> approving -> awaiting_approval_confirmation -> submitting
            -> awaiting_confirmation -> executing -> completed

created may go straight to submitting when no approval is needed. Any
non-terminal status may move to failed; awaiting_confirmation and
executing may also end in refunded. The only way out of a terminal
status is an explicit retry of a retryable failure (failed -> created).
"""

import time
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from bridgeroute.chains import ChainRef, TokenRef, get_chain, get_token
from bridgeroute.errors import InvalidTransition
from bridgeroute.routing.base import (
    DeliveryStatus,
    Quote,
    RouteRequest,
    Step,
    StepKind,
    TxRequest,
)


class TransactionStatus(str, Enum):
    """Status of a tracked bridge transaction."""

    CREATED = "created"
    APPROVING = "approving"
    AWAITING_APPROVAL_CONFIRMATION = "awaiting_approval_confirmation"
    SUBMITTING = "submitting"
    AWAITING_CONFIRMATION = "awaiting_confirmation"  # Source tx broadcast
    EXECUTING = "executing"  # Source tx confirmed, delivery pending
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


TERMINAL_STATUSES = frozenset(
    {TransactionStatus.COMPLETED, TransactionStatus.FAILED, TransactionStatus.REFUNDED}
)

# Statuses in which a broadcast transaction may still land on-chain
SUBMITTED_STATUSES = frozenset(
    {
        TransactionStatus.AWAITING_APPROVAL_CONFIRMATION,
        TransactionStatus.AWAITING_CONFIRMATION,
        TransactionStatus.EXECUTING,
    }
)

ALLOWED_TRANSITIONS: dict[TransactionStatus, frozenset[TransactionStatus]] = {
    TransactionStatus.CREATED: frozenset(
        {TransactionStatus.APPROVING, TransactionStatus.SUBMITTING, TransactionStatus.FAILED}
    ),
    TransactionStatus.APPROVING: frozenset(
        {TransactionStatus.AWAITING_APPROVAL_CONFIRMATION, TransactionStatus.FAILED}
    ),
    TransactionStatus.AWAITING_APPROVAL_CONFIRMATION: frozenset(
        {TransactionStatus.SUBMITTING, TransactionStatus.FAILED}
    ),
    TransactionStatus.SUBMITTING: frozenset(
        {TransactionStatus.AWAITING_CONFIRMATION, TransactionStatus.FAILED}
    ),
    TransactionStatus.AWAITING_CONFIRMATION: frozenset(
        {TransactionStatus.EXECUTING, TransactionStatus.REFUNDED, TransactionStatus.FAILED}
    ),
    TransactionStatus.EXECUTING: frozenset(
        {TransactionStatus.COMPLETED, TransactionStatus.REFUNDED, TransactionStatus.FAILED}
    ),
    TransactionStatus.COMPLETED: frozenset(),
    TransactionStatus.FAILED: frozenset(),  # retry is handled by reset_for_retry()
    TransactionStatus.REFUNDED: frozenset(),
}


def can_transition(current: TransactionStatus, target: TransactionStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


class FailureReason(str, Enum):
    """Why a transaction ended in failed."""

    ON_CHAIN_REVERT = "on_chain_revert"
    CONFIRMATION_TIMEOUT = "confirmation_timeout"
    DELIVERY_TIMEOUT = "delivery_timeout"
    SIGNING_TIMEOUT = "signing_timeout"
    SIGNING_REJECTED = "signing_rejected"
    PROVIDER_ERROR = "provider_error"
    NETWORK_ERROR = "network_error"
    DELIVERY_FAILED = "delivery_failed"
    CANCELLED = "cancelled"
    CANCELLED_AFTER_SUBMISSION = "cancelled_after_submission"
    ENGINE_RESTARTED = "engine_restarted"
    INTERNAL_ERROR = "internal_error"


RETRYABLE_REASONS = frozenset(
    {
        FailureReason.CONFIRMATION_TIMEOUT,
        FailureReason.DELIVERY_TIMEOUT,
        FailureReason.SIGNING_TIMEOUT,
        FailureReason.NETWORK_ERROR,
        FailureReason.ENGINE_RESTARTED,
    }
)


@dataclass(frozen=True)
class TransactionFailure:
    """Typed failure attached to a failed transaction.

    Attributes:
        reason: Failure category
        message: Human-readable detail
        retryable: Whether retry (failed -> created) is allowed
        step_index: Step that was in progress, if any
    """

    reason: FailureReason
    message: str
    retryable: bool
    step_index: Optional[int] = None

    @classmethod
    def of(cls, reason: FailureReason, message: str, step_index: Optional[int] = None) -> "TransactionFailure":
        """Failure with the default retryability of its reason."""
        return cls(
            reason=reason,
            message=message,
            retryable=reason in RETRYABLE_REASONS,
            step_index=step_index,
        )

    def to_dict(self) -> dict:
        return {
            "reason": self.reason.value,
            "message": self.message,
            "retryable": self.retryable,
            "step_index": self.step_index,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TransactionFailure":
        return cls(
            reason=FailureReason(data["reason"]),
            message=data.get("message", ""),
            retryable=bool(data.get("retryable", False)),
            step_index=data.get("step_index"),
        )


@dataclass(frozen=True)
class TransactionSnapshot:
    """Immutable view of a transaction at one point in time."""

    id: str
    quote: Quote = field(repr=False)
    account: str
    recipient: str
    status: TransactionStatus
    current_step_index: int
    step_hashes: tuple[Optional[str], ...]
    retry_count: int
    failure: Optional[TransactionFailure]
    cancelled_after_submission: bool
    delivery_status: Optional[DeliveryStatus]
    tracking_id: Optional[str]
    created_at: float
    updated_at: float
    version: int

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def provider(self) -> str:
        return self.quote.provider

    def to_dict(self) -> dict:
        request = self.quote.request
        return {
            "id": self.id,
            "quote_id": self.quote.id,
            "provider": self.quote.provider,
            "account": self.account,
            "recipient": self.recipient,
            "from_chain_id": request.from_chain.chain_id,
            "to_chain_id": request.to_chain.chain_id,
            "from_token": request.from_token.address,
            "to_token": request.to_token.address,
            "amount_in": str(self.quote.amount_in),
            "amount_out": str(self.quote.amount_out),
            "min_amount_out": str(self.quote.min_amount_out),
            "status": self.status.value,
            "current_step_index": self.current_step_index,
            "steps": [step.to_dict() for step in self.quote.steps],
            "step_hashes": list(self.step_hashes),
            "retry_count": self.retry_count,
            "failure": self.failure.to_dict() if self.failure else None,
            "cancelled_after_submission": self.cancelled_after_submission,
            "delivery_status": self.delivery_status.value if self.delivery_status else None,
            "tracking_id": self.tracking_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "version": self.version,
        }


@dataclass
class Transaction:
    """Lifecycle-tracked execution of an accepted quote.

    The quote is frozen at acceptance time. Only the tracker (and the
    store, for cancel/retry/watchdog) mutates a transaction, always under
    its per-id lock.
    """

    quote: Quote
    account: str
    recipient: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: TransactionStatus = TransactionStatus.CREATED
    current_step_index: int = 0
    step_hashes: list[Optional[str]] = field(default_factory=list)
    retry_count: int = 0
    failure: Optional[TransactionFailure] = None
    cancelled_after_submission: bool = False
    delivery_status: Optional[DeliveryStatus] = None
    tracking_id: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    updated_at: float = 0.0
    version: int = 0

    def __post_init__(self):
        if not self.step_hashes:
            self.step_hashes = [None] * len(self.quote.steps)
        if not self.updated_at:
            self.updated_at = self.created_at

    @property
    def request(self) -> RouteRequest:
        return self.quote.request

    @property
    def steps(self) -> tuple[Step, ...]:
        return self.quote.steps

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def current_step(self) -> Optional[Step]:
        if 0 <= self.current_step_index < len(self.quote.steps):
            return self.quote.steps[self.current_step_index]
        return None

    def touch(self, now: Optional[float] = None) -> None:
        """Record progress without a status change."""
        self.updated_at = now if now is not None else time.time()
        self.version += 1

    def transition(
        self,
        target: TransactionStatus,
        failure: Optional[TransactionFailure] = None,
        now: Optional[float] = None,
    ) -> None:
        """Move to `target`.

        Raises:
            InvalidTransition: target is not reachable from the current status
        """
        if not can_transition(self.status, target):
            raise InvalidTransition(
                f"Transaction {self.id} cannot move from {self.status.value} to {target.value}"
            )
        if target is TransactionStatus.FAILED and failure is None:
            raise ValueError("failed transition requires a failure")
        self.status = target
        self.failure = failure if target is TransactionStatus.FAILED else None
        self.touch(now)

    @property
    def has_pending_broadcast(self) -> bool:
        """A sent transaction may still land on-chain."""
        if self.status in SUBMITTED_STATUSES:
            return True
        index = self.current_step_index
        return index < len(self.step_hashes) and self.step_hashes[index] is not None

    def fail(self, failure: TransactionFailure, now: Optional[float] = None) -> None:
        self.transition(TransactionStatus.FAILED, failure=failure, now=now)
        if failure.reason is FailureReason.CANCELLED_AFTER_SUBMISSION:
            self.cancelled_after_submission = True

    def cancel(self, now: Optional[float] = None) -> None:
        """Stop tracking. Cancelling after a broadcast is flagged, not hidden.

        Raises:
            InvalidTransition: already terminal
        """
        if self.is_terminal:
            raise InvalidTransition(f"Transaction {self.id} is already {self.status.value}")
        if self.has_pending_broadcast:
            failure = TransactionFailure.of(
                FailureReason.CANCELLED_AFTER_SUBMISSION,
                "Cancelled after broadcast; the on-chain transaction may still execute",
                step_index=self.current_step_index,
            )
        else:
            failure = TransactionFailure.of(FailureReason.CANCELLED, "Cancelled before submission")
        self.fail(failure, now=now)

    def ensure_retryable(self) -> None:
        """Raises InvalidTransition unless this is a retryable failure."""
        if self.status is not TransactionStatus.FAILED:
            raise InvalidTransition(f"Transaction {self.id} is {self.status.value}, not failed")
        if self.failure is None or not self.failure.retryable:
            reason = self.failure.reason.value if self.failure else "unknown"
            raise InvalidTransition(f"Transaction {self.id} failed with final reason {reason}")

    def reset_for_retry(self, now: Optional[float] = None) -> None:
        """Failed -> created for retryable failures.

        Confirmed steps and recorded hashes are kept so the tracker resumes
        instead of re-sending.

        Raises:
            InvalidTransition: not failed, or the failure is final
        """
        self.ensure_retryable()
        self.status = TransactionStatus.CREATED
        self.failure = None
        self.cancelled_after_submission = False
        self.retry_count += 1
        self.touch(now)

    def snapshot(self) -> TransactionSnapshot:
        return TransactionSnapshot(
            id=self.id,
            quote=self.quote,
            account=self.account,
            recipient=self.recipient,
            status=self.status,
            current_step_index=self.current_step_index,
            step_hashes=tuple(self.step_hashes),
            retry_count=self.retry_count,
            failure=self.failure,
            cancelled_after_submission=self.cancelled_after_submission,
            delivery_status=self.delivery_status,
            tracking_id=self.tracking_id,
            created_at=self.created_at,
            updated_at=self.updated_at,
            version=self.version,
        )

    # ======================
    # Flat record (persistence)
    # ======================

    def to_record(self) -> dict:
        """Flat JSON-compatible record with everything needed to resume."""
        return {
            "id": self.id,
            "account": self.account,
            "recipient": self.recipient,
            "status": self.status.value,
            "current_step_index": self.current_step_index,
            "step_hashes": list(self.step_hashes),
            "retry_count": self.retry_count,
            "failure": self.failure.to_dict() if self.failure else None,
            "cancelled_after_submission": self.cancelled_after_submission,
            "delivery_status": self.delivery_status.value if self.delivery_status else None,
            "tracking_id": self.tracking_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "version": self.version,
            "quote": _quote_to_record(self.quote),
        }

    @classmethod
    def from_record(cls, data: dict) -> "Transaction":
        failure = data.get("failure")
        delivery = data.get("delivery_status")
        return cls(
            id=data["id"],
            quote=_quote_from_record(data["quote"]),
            account=data["account"],
            recipient=data["recipient"],
            status=TransactionStatus(data["status"]),
            current_step_index=data.get("current_step_index", 0),
            step_hashes=list(data.get("step_hashes") or []),
            retry_count=data.get("retry_count", 0),
            failure=TransactionFailure.from_dict(failure) if failure else None,
            cancelled_after_submission=data.get("cancelled_after_submission", False),
            delivery_status=DeliveryStatus(delivery) if delivery else None,
            tracking_id=data.get("tracking_id"),
            created_at=data["created_at"],
            updated_at=data.get("updated_at", data["created_at"]),
            version=data.get("version", 0),
        )


def _chain_to_record(chain: ChainRef) -> dict:
    return {
        "chain_id": chain.chain_id,
        "name": chain.name,
        "native_symbol": chain.native_symbol,
        "native_decimals": chain.native_decimals,
        "explorer_url": chain.explorer_url,
        "is_l1": chain.is_l1,
        "is_testnet": chain.is_testnet,
    }


def _chain_from_record(data: dict) -> ChainRef:
    return get_chain(data["chain_id"]) or ChainRef(**data)


def _token_to_record(token: TokenRef) -> dict:
    return {
        "chain_id": token.chain_id,
        "address": token.address,
        "symbol": token.symbol,
        "decimals": token.decimals,
        "name": token.name,
    }


def _token_from_record(data: dict) -> TokenRef:
    return get_token(data["chain_id"], data["address"]) or TokenRef(**data)


def _step_to_record(step: Step) -> dict:
    tx = step.tx_request
    return {
        "kind": step.kind.value,
        "from_token": _token_to_record(step.from_token),
        "to_token": _token_to_record(step.to_token),
        "amount_in": str(step.amount_in),
        "amount_out": str(step.amount_out),
        "estimated_duration_seconds": step.estimated_duration_seconds,
        "fee_amount": str(step.fee_amount),
        "tool": step.tool,
        "spender": step.spender,
        "tx_request": tx.to_dict() if tx else None,
    }


def _step_from_record(data: dict) -> Step:
    tx: Optional[dict[str, Any]] = data.get("tx_request")
    return Step(
        kind=StepKind(data["kind"]),
        from_token=_token_from_record(data["from_token"]),
        to_token=_token_from_record(data["to_token"]),
        amount_in=int(data["amount_in"]),
        amount_out=int(data["amount_out"]),
        estimated_duration_seconds=data["estimated_duration_seconds"],
        fee_amount=int(data.get("fee_amount", "0")),
        tool=data.get("tool", ""),
        spender=data.get("spender"),
        tx_request=(
            TxRequest(
                chain_id=tx["chain_id"],
                to=tx["to"],
                data=tx["data"],
                value=int(tx["value"]),
                gas_limit=tx.get("gas_limit"),
                tracking_id=tx.get("tracking_id"),
            )
            if tx
            else None
        ),
    )


def _quote_to_record(quote: Quote) -> dict:
    request = quote.request
    return {
        "id": quote.id,
        "provider": quote.provider,
        "request": {
            "from_chain": _chain_to_record(request.from_chain),
            "to_chain": _chain_to_record(request.to_chain),
            "from_token": _token_to_record(request.from_token),
            "to_token": _token_to_record(request.to_token),
            "amount": str(request.amount),
            "slippage_bps": request.slippage_bps,
            "recipient": request.recipient,
        },
        "amount_out": str(quote.amount_out),
        "min_amount_out": str(quote.min_amount_out),
        "fee_amount": str(quote.fee_amount),
        "fee_token": _token_to_record(quote.fee_token),
        "fee_usd": str(quote.fee_usd) if quote.fee_usd is not None else None,
        "estimated_duration_seconds": quote.estimated_duration_seconds,
        "steps": [_step_to_record(step) for step in quote.steps],
        "created_at": quote.created_at,
        "ttl_seconds": quote.ttl_seconds,
        "is_simulated": quote.is_simulated,
        "provider_data": quote.provider_data,
    }


def _quote_from_record(data: dict) -> Quote:
    req = data["request"]
    request = RouteRequest(
        from_chain=_chain_from_record(req["from_chain"]),
        to_chain=_chain_from_record(req["to_chain"]),
        from_token=_token_from_record(req["from_token"]),
        to_token=_token_from_record(req["to_token"]),
        amount=int(req["amount"]),
        slippage_bps=req["slippage_bps"],
        recipient=req.get("recipient"),
    )
    return Quote(
        id=data["id"],
        provider=data["provider"],
        request=request,
        amount_out=int(data["amount_out"]),
        min_amount_out=int(data["min_amount_out"]),
        fee_amount=int(data["fee_amount"]),
        fee_token=_token_from_record(data["fee_token"]),
        fee_usd=Decimal(data["fee_usd"]) if data.get("fee_usd") is not None else None,
        estimated_duration_seconds=data["estimated_duration_seconds"],
        steps=tuple(_step_from_record(step) for step in data["steps"]),
        created_at=data["created_at"],
        ttl_seconds=data["ttl_seconds"],
        is_simulated=data.get("is_simulated", False),
        provider_data=data.get("provider_data") or {},
    )
