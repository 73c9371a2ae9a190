"""Route request and quote response contracts.

Amounts travel as decimal strings in the token's smallest unit so that
256-bit values survive JSON.
"""

from typing import Optional

from pydantic import BaseModel, Field, field_validator

from bridgeroute.routing.base import Quote, Step


def _validate_units(v: str) -> str:
    v = v.strip()
    if not v.isdigit() or int(v) <= 0:
        raise ValueError("Amount must be a positive integer in the token's smallest unit")
    return v


class RouteRequestBody(BaseModel):
    """Request for ranked bridge routes."""

    from_chain_id: int = Field(..., description="Source chain ID")
    to_chain_id: int = Field(..., description="Destination chain ID")
    from_token: str = Field(..., description="Source token address (0xEeee... for native)")
    to_token: str = Field(..., description="Destination token address")
    amount: str = Field(..., description="Amount in smallest units (e.g. wei)")
    slippage_bps: Optional[int] = Field(None, ge=0, description="Slippage tolerance in basis points")
    recipient: Optional[str] = Field(None, description="Destination address (defaults to sender)")

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: str) -> str:
        return _validate_units(v)


class StepModel(BaseModel):
    """One execution leg of a quote."""

    kind: str = Field(..., description="approve, swap, bridge, deposit or withdraw")
    chain_id: int
    to_chain_id: int
    from_token: str
    from_symbol: str
    to_token: str
    to_symbol: str
    amount_in: str
    amount_out: str
    fee_amount: str
    estimated_duration_seconds: int
    tool: str = ""
    spender: Optional[str] = None

    @classmethod
    def from_step(cls, step: Step) -> "StepModel":
        return cls(**step.to_dict())


class QuoteModel(BaseModel):
    """One provider's priced, timed offer."""

    id: str = Field(..., description="Quote ID, used to accept the quote")
    provider: str
    from_chain_id: int
    to_chain_id: int
    from_token: str
    to_token: str
    amount_in: str
    amount_out: str
    min_amount_out: str = Field(..., description="Amount out after slippage")
    fee_amount: str
    fee_token: str
    fee_usd: Optional[str] = None
    exchange_rate: str = Field(..., description="Output per unit of input (human units)")
    estimated_duration_seconds: int
    slippage_bps: int
    expires_at: float = Field(..., description="Unix time after which the quote is rejected")
    is_simulated: bool = False
    steps: list[StepModel] = Field(default_factory=list)

    @classmethod
    def from_quote(cls, quote: Quote) -> "QuoteModel":
        data = quote.to_dict()
        data.pop("created_at", None)
        data["steps"] = [StepModel.from_step(step) for step in quote.steps]
        data["exchange_rate"] = str(quote.exchange_rate)
        return cls(**data)


class RouteResponse(BaseModel):
    """Ranked quotes, best first."""

    quotes: list[QuoteModel] = Field(default_factory=list)
    best: Optional[QuoteModel] = None

    @classmethod
    def from_quotes(cls, quotes: tuple[Quote, ...]) -> "RouteResponse":
        models = [QuoteModel.from_quote(q) for q in quotes]
        return cls(quotes=models, best=models[0] if models else None)
