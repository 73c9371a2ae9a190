"""API contracts (pydantic request and response models)."""

from bridgeroute.web.contracts.chains import ChainModel, TokenModel
from bridgeroute.web.contracts.routes import QuoteModel, RouteRequestBody, RouteResponse, StepModel
from bridgeroute.web.contracts.transactions import (
    AcceptQuoteBody,
    AcceptQuoteResponse,
    FailureModel,
    TransactionModel,
    TransactionPageModel,
)

__all__ = [
    "ChainModel",
    "TokenModel",
    "RouteRequestBody",
    "StepModel",
    "QuoteModel",
    "RouteResponse",
    "AcceptQuoteBody",
    "AcceptQuoteResponse",
    "FailureModel",
    "TransactionModel",
    "TransactionPageModel",
]
