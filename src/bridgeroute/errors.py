"""Error taxonomy for the bridge routing engine.

Caller-facing operations raise subclasses of BridgeRouteError. Failures of
in-flight transactions are never raised: they are attached to the
transaction snapshot as a TransactionFailure (see lifecycle.models).
"""

from typing import Optional


class BridgeRouteError(Exception):
    """Base class for all engine errors."""

    code = "bridge_route_error"

    def __init__(self, message: str = ""):
        self.message = message or self.__class__.__name__
        super().__init__(self.message)


class ValidationError(BridgeRouteError):
    """Malformed route request. Rejected synchronously, never retried."""

    code = "validation_error"


# ======================
# Provider errors
# ======================


class ProviderError(BridgeRouteError):
    """A single provider adapter failed to produce a quote."""

    code = "provider_error"

    def __init__(self, provider: str, message: str = ""):
        self.provider = provider
        super().__init__(f"{provider}: {message}" if message else provider)


class ProviderTimeout(ProviderError):
    """Provider did not answer within its request timeout."""

    code = "provider_timeout"

    def __init__(self, provider: str, timeout: Optional[float] = None):
        self.timeout = timeout
        detail = f"timed out after {timeout}s" if timeout is not None else "timed out"
        super().__init__(provider, detail)


class ProviderUnsupportedRoute(ProviderError):
    """Provider does not serve this chain/token combination."""

    code = "provider_unsupported_route"


class NoRouteFound(BridgeRouteError):
    """Every applicable provider failed, or none supports the route."""

    code = "no_route_found"

    def __init__(self, message: str = "", errors: Optional[list[ProviderError]] = None):
        self.errors = errors or []
        super().__init__(message or "No route found")


# ======================
# Quote / acceptance errors
# ======================


class QuoteNotFound(BridgeRouteError):
    code = "quote_not_found"


class QuoteExpired(BridgeRouteError):
    """Quote TTL elapsed; request a fresh route before executing."""

    code = "quote_expired"


class InsufficientAllowance(BridgeRouteError):
    code = "insufficient_allowance"


class InsufficientBalance(BridgeRouteError):
    code = "insufficient_balance"


# ======================
# Transaction errors
# ======================


class TransactionNotFound(BridgeRouteError):
    code = "transaction_not_found"


class InvalidTransition(BridgeRouteError):
    """Requested action is not allowed from the transaction's current status."""

    code = "invalid_transition"


class ChainUnavailable(BridgeRouteError):
    """Chain RPC could not answer a pre-submission check."""

    code = "chain_unavailable"
