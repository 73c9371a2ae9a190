"""Routing module for cross-chain bridge quote aggregation.

Providers:
- LI.FI: multi-bridge aggregator (EVM chains)
- Relay: intent-based bridge (EVM chains)
- Simulated: deterministic dry-run bridges for local use and tests
"""

from bridgeroute.routing.aggregator import RouteAggregator, rank_key
from bridgeroute.routing.base import (
    BridgeProvider,
    DeliveryStatus,
    Quote,
    RouteRequest,
    Step,
    StepKind,
    TxRequest,
)
from bridgeroute.routing.cache import QuoteCache
from bridgeroute.routing.dry_run import SimulatedBridgeProvider
from bridgeroute.routing.factory import create_aggregator, create_providers

__all__ = [
    # Data model
    "RouteRequest",
    "Quote",
    "Step",
    "StepKind",
    "TxRequest",
    "DeliveryStatus",
    # Providers
    "BridgeProvider",
    "SimulatedBridgeProvider",
    "create_providers",
    # Aggregation
    "QuoteCache",
    "RouteAggregator",
    "rank_key",
    "create_aggregator",
]
