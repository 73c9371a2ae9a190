"""Route aggregation across bridge providers.

Fans a route request out to every applicable provider concurrently,
drops the ones that fail or time out, and ranks what is left:
amount out descending, then estimated duration ascending, then provider
name, so results are deterministic.
"""

import asyncio
import dataclasses
import logging
from typing import Optional

from bridgeroute.errors import NoRouteFound, ProviderError, ProviderTimeout
from bridgeroute.routing.base import BridgeProvider, Quote, RouteRequest
from bridgeroute.routing.cache import QuoteCache

logger = logging.getLogger(__name__)


def rank_key(quote: Quote) -> tuple:
    """Sort key: best net output first, then fastest, then provider name."""
    return (-quote.amount_out, quote.estimated_duration_seconds, quote.provider)


class RouteAggregator:
    """Aggregates quotes from multiple providers to find the best route."""

    def __init__(
        self,
        providers: Optional[list[BridgeProvider]] = None,
        cache: Optional[QuoteCache] = None,
        quote_ttl: float = 30.0,
        aggregate_timeout: float = 8.0,
        significant_digits: int = 6,
        max_slippage_bps: int = 5000,
    ):
        self.providers: list[BridgeProvider] = providers or []
        self.cache = cache if cache is not None else QuoteCache()
        self.quote_ttl = quote_ttl
        self.aggregate_timeout = aggregate_timeout
        self.significant_digits = significant_digits
        self.max_slippage_bps = max_slippage_bps

    def add_provider(self, provider: BridgeProvider) -> None:
        """Add a routing provider."""
        self.providers.append(provider)

    def get_provider(self, name: str) -> Optional[BridgeProvider]:
        for provider in self.providers:
            if provider.name == name:
                return provider
        return None

    async def get_best_route(self, request: RouteRequest) -> tuple[Quote, ...]:
        """Get ranked quotes for a route, best first.

        Raises:
            ValidationError: malformed request (no network calls are made)
            NoRouteFound: no provider produced a usable quote
        """
        request.validate(self.max_slippage_bps)
        key = request.cache_key(self.significant_digits)
        ranked, hit = await self.cache.get_or_fetch(key, lambda: self._fan_out(request))
        if hit:
            logger.debug(f"Serving {len(ranked)} cached quote(s) for {request.describe()}")
        return ranked

    async def get_best_quote(self, request: RouteRequest) -> Quote:
        """Get the single best quote across all providers."""
        ranked = await self.get_best_route(request)
        return ranked[0]

    async def _fan_out(self, request: RouteRequest) -> tuple[tuple[Quote, ...], float]:
        """Query all applicable providers concurrently and rank the results."""
        logger.info(f"Finding routes: {request.describe()}")
        applicable = [p for p in self.providers if p.supports_route(request)]
        if not applicable:
            logger.warning(
                f"No providers support {request.from_chain.chain_id}->{request.to_chain.chain_id}"
            )
            raise NoRouteFound(
                f"No provider supports chain {request.from_chain.chain_id} -> "
                f"{request.to_chain.chain_id}"
            )

        tasks = {asyncio.ensure_future(p.get_quote(request)): p for p in applicable}
        done, pending = await asyncio.wait(list(tasks), timeout=self.aggregate_timeout)

        errors: list[ProviderError] = []
        for task in pending:
            task.cancel()
            errors.append(ProviderTimeout(tasks[task].name, self.aggregate_timeout))
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        quotes: list[Quote] = []
        for task in done:
            provider = tasks[task]
            exc = task.exception()
            if exc is not None:
                if not isinstance(exc, ProviderError):
                    exc = ProviderError(provider.name, f"{type(exc).__name__}: {exc}")
                errors.append(exc)
                continue
            quote = self._normalize(task.result())
            if quote is not None:
                quotes.append(quote)

        for error in errors:
            logger.warning(f"Dropped provider {error.provider}: {type(error).__name__}: {error}")

        if not quotes:
            summary = "; ".join(str(e) for e in errors) or "no usable quotes"
            logger.error(f"No route for {request.describe()}. Errors: {summary}")
            raise NoRouteFound(f"No route found for {request.describe()}", errors=errors)

        ranked = tuple(sorted(quotes, key=rank_key))
        best = ranked[0]
        logger.info(
            f"Got {len(ranked)} quote(s) for {request.describe()}. "
            f"Best: {best.provider} ({best.amount_out_decimal} {request.to_token.symbol}, "
            f"{best.estimated_duration_seconds}s)"
        )
        return ranked, min(q.expires_at for q in ranked)

    def _normalize(self, quote: Quote) -> Optional[Quote]:
        """Cap the quote TTL and drop quotes that break quote invariants."""
        if quote.ttl_seconds > self.quote_ttl:
            quote = dataclasses.replace(quote, ttl_seconds=self.quote_ttl)
        if quote.is_expired():
            logger.warning(f"Dropped expired quote from {quote.provider}")
            return None
        if not quote.is_consistent:
            logger.warning(
                f"Dropped inconsistent quote from {quote.provider}: steps do not match "
                f"its {quote.estimated_duration_seconds}s estimate or approval order"
            )
            return None
        if quote.amount_out <= 0 or quote.min_amount_out > quote.amount_out:
            logger.warning(f"Dropped quote from {quote.provider} with invalid amounts")
            return None
        return quote
