"""Cross-chain bridge quote aggregation and transaction lifecycle engine."""

__version__ = "0.1.0"
