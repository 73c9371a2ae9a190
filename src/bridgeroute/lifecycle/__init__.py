"""Transaction lifecycle: status state machine, update fan-out and the driver."""

from bridgeroute.lifecycle.events import EventBus, Subscription
from bridgeroute.lifecycle.models import (
    FailureReason,
    Transaction,
    TransactionFailure,
    TransactionSnapshot,
    TransactionStatus,
)

__all__ = [
    "EventBus",
    "Subscription",
    "FailureReason",
    "Transaction",
    "TransactionFailure",
    "TransactionSnapshot",
    "TransactionStatus",
]
