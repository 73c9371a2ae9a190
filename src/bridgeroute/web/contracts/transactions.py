"""Transaction contracts."""

from typing import Optional

from pydantic import BaseModel, Field

from bridgeroute.lifecycle.models import TransactionSnapshot
from bridgeroute.store import TransactionPage
from bridgeroute.web.contracts.routes import StepModel


class AcceptQuoteBody(BaseModel):
    """Request to execute a quote."""

    quote_id: str = Field(..., description="Quote ID from /routes")
    recipient: Optional[str] = Field(None, description="Destination address")
    sender: Optional[str] = Field(None, description="Sending account (defaults to the wallet)")


class AcceptQuoteResponse(BaseModel):
    transaction_id: str
    status: str


class FailureModel(BaseModel):
    reason: str
    message: str
    retryable: bool
    step_index: Optional[int] = None


class TransactionModel(BaseModel):
    """Snapshot of a tracked transaction."""

    id: str
    quote_id: str
    provider: str
    account: str
    recipient: str
    from_chain_id: int
    to_chain_id: int
    from_token: str
    to_token: str
    amount_in: str
    amount_out: str
    min_amount_out: str
    status: str = Field(..., description="Lifecycle status")
    current_step_index: int
    steps: list[StepModel] = Field(default_factory=list)
    step_hashes: list[Optional[str]] = Field(default_factory=list, description="Broadcast hash per step")
    retry_count: int = 0
    failure: Optional[FailureModel] = None
    cancelled_after_submission: bool = Field(
        False, description="Cancelled after broadcast; the on-chain effect may still occur"
    )
    delivery_status: Optional[str] = None
    tracking_id: Optional[str] = Field(None, description="Provider handle for the broadcast bridge transaction")
    created_at: float
    updated_at: float
    version: int

    @classmethod
    def from_snapshot(cls, snapshot: TransactionSnapshot) -> "TransactionModel":
        return cls(**snapshot.to_dict())


class TransactionPageModel(BaseModel):
    """One page of account history, newest first."""

    items: list[TransactionModel] = Field(default_factory=list)
    total: int
    page: int
    page_size: int
    has_more: bool

    @classmethod
    def from_page(cls, page: TransactionPage) -> "TransactionPageModel":
        return cls(
            items=[TransactionModel.from_snapshot(s) for s in page.items],
            total=page.total,
            page=page.page,
            page_size=page.page_size,
            has_more=page.has_more,
        )
