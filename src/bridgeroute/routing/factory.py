"""Factory for creating bridge providers and the route aggregator.

Creates real providers unless dry-run mode is on, otherwise falls back
to simulated providers.
"""

import logging
from typing import Optional

from bridgeroute.config import Settings, get_settings
from bridgeroute.routing.aggregator import RouteAggregator
from bridgeroute.routing.base import BridgeProvider
from bridgeroute.routing.cache import QuoteCache

logger = logging.getLogger(__name__)


def create_lifi_provider(settings: Settings) -> BridgeProvider:
    """Create LI.FI aggregator provider."""
    from bridgeroute.routing.lifi import QUOTE_PLACEHOLDER_ADDRESS, LiFiProvider

    return LiFiProvider(
        api_key=settings.lifi_api_key or None,
        base_url=settings.lifi_api_url,
        timeout=settings.provider_timeout_seconds,
        quote_address=settings.wallet_address or QUOTE_PLACEHOLDER_ADDRESS,
    )


def create_relay_provider(settings: Settings) -> BridgeProvider:
    """Create Relay bridge provider."""
    from bridgeroute.routing.relay import QUOTE_PLACEHOLDER_ADDRESS, RelayProvider

    return RelayProvider(
        base_url=settings.relay_api_url,
        timeout=settings.provider_timeout_seconds,
        quote_address=settings.wallet_address or QUOTE_PLACEHOLDER_ADDRESS,
    )


PROVIDER_FACTORIES = {
    "lifi": create_lifi_provider,
    "relay": create_relay_provider,
}


def create_providers(settings: Optional[Settings] = None) -> list[BridgeProvider]:
    """Create all configured providers."""
    settings = settings or get_settings()

    if settings.dry_run:
        from bridgeroute.routing.dry_run import create_simulated_providers

        logger.info("Dry-run mode: using simulated bridge providers")
        return create_simulated_providers(timeout=settings.provider_timeout_seconds)

    providers: list[BridgeProvider] = []
    for name in settings.provider_names:
        factory = PROVIDER_FACTORIES.get(name)
        if factory is None:
            logger.warning(f"Unknown provider '{name}' in ENABLED_PROVIDERS, skipping")
            continue
        try:
            providers.append(factory(settings))
        except Exception as e:
            logger.warning(f"Failed to create {name} provider: {e}")

    if not providers:
        from bridgeroute.routing.dry_run import create_simulated_providers

        logger.warning("No real providers configured, falling back to simulated providers")
        return create_simulated_providers(timeout=settings.provider_timeout_seconds)

    logger.info(f"Created providers: {', '.join(p.name for p in providers)}")
    return providers


def create_aggregator(
    settings: Optional[Settings] = None,
    providers: Optional[list[BridgeProvider]] = None,
) -> RouteAggregator:
    """Create a route aggregator wired to the configured providers."""
    settings = settings or get_settings()
    return RouteAggregator(
        providers=providers if providers is not None else create_providers(settings),
        cache=QuoteCache(),
        quote_ttl=settings.quote_ttl_seconds,
        aggregate_timeout=settings.aggregate_timeout_seconds,
        significant_digits=settings.quote_amount_significant_digits,
        max_slippage_bps=settings.max_slippage_bps,
    )
