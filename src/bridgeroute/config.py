"""Application configuration using pydantic-settings.

Timeouts, TTLs and retention limits are tunables; defaults follow the
cadence of the bridge dashboard (30s quote freshness, 2 minute
confirmation budget, last 50 transactions per account).
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=False, description="Enable debug mode")
    dry_run: bool = Field(
        default=True,
        description="Use simulated providers, signer and chain client (no real transactions)",
    )

    # ======================
    # API
    # ======================
    api_host: str = Field(default="0.0.0.0", description="API server host")
    api_port: int = Field(default=8000, description="API server port")
    cors_origins: str = Field(default="", description="Comma-separated allowed CORS origins")

    # ======================
    # Database
    # ======================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/bridgeroute.db",
        description="Database connection URL",
    )
    persist_transactions: bool = Field(
        default=False, description="Write transaction records to the database"
    )

    # ======================
    # Quotes
    # ======================
    quote_ttl_seconds: float = Field(default=30.0, description="Quote validity period")
    quote_amount_significant_digits: int = Field(
        default=6, ge=1, description="Significant digits kept when bucketing amounts for cache keys"
    )
    cache_sweep_interval_seconds: float = Field(default=60.0, description="Quote cache sweep period")
    provider_timeout_seconds: float = Field(default=5.0, description="Per-provider request timeout")
    aggregate_timeout_seconds: float = Field(default=8.0, description="Overall fan-out timeout")
    default_slippage_bps: int = Field(default=50, ge=0, description="Default slippage (0.5%)")
    max_slippage_bps: int = Field(default=5000, ge=0, description="Maximum accepted slippage")

    # ======================
    # Transaction lifecycle
    # ======================
    signing_timeout_seconds: float = Field(default=120.0, description="Wallet signing budget")
    confirmation_timeout_seconds: float = Field(
        default=120.0, description="Budget per on-chain confirmation wait"
    )
    receipt_poll_interval_seconds: float = Field(default=3.0, description="Receipt polling period")
    delivery_timeout_seconds: float = Field(
        default=1800.0, description="Budget for destination-chain delivery"
    )
    status_poll_interval_seconds: float = Field(
        default=10.0, description="Provider delivery status polling period"
    )
    auto_retry_limit: int = Field(default=0, ge=0, description="Automatic retries (0 = disabled)")
    auto_retry_backoff_seconds: float = Field(default=5.0, description="Delay before auto retry")

    # ======================
    # Store retention
    # ======================
    retention_per_account: int = Field(default=50, ge=1, description="Transactions kept per account")
    retention_window_seconds: float = Field(
        default=86400.0, description="Age after which terminal transactions are evicted"
    )
    store_sweep_interval_seconds: float = Field(default=60.0, description="Store sweep period")

    # ======================
    # Providers
    # ======================
    enabled_providers: str = Field(
        default="lifi,relay", description="Comma-separated provider names (real mode)"
    )
    lifi_api_url: str = Field(default="https://li.quest/v1", description="LI.FI API URL")
    lifi_api_key: str = Field(default="", description="LI.FI API key")
    relay_api_url: str = Field(default="https://api.relay.link", description="Relay API URL")

    # ======================
    # Chain RPC Endpoints
    # ======================
    eth_rpc_url: str = Field(default="https://eth.llamarpc.com", description="Ethereum RPC URL")
    optimism_rpc_url: str = Field(
        default="https://optimism.publicnode.com", description="Optimism RPC URL"
    )
    arbitrum_rpc_url: str = Field(
        default="https://arbitrum.llamarpc.com", description="Arbitrum RPC URL"
    )
    polygon_rpc_url: str = Field(default="https://polygon-rpc.com", description="Polygon RPC URL")
    base_rpc_url: str = Field(default="https://mainnet.base.org", description="Base RPC URL")
    sepolia_rpc_url: str = Field(
        default="https://ethereum-sepolia.publicnode.com", description="Sepolia RPC URL"
    )
    fuji_rpc_url: str = Field(
        default="https://avalanche-fuji-c-chain.publicnode.com", description="Avalanche Fuji RPC URL"
    )

    # ======================
    # Wallet
    # ======================
    wallet_address: Optional[str] = Field(
        default=None, description="Default sender address for the dry-run signer"
    )
    hot_wallet_private_key: Optional[SecretStr] = Field(
        default=None, description="Private key for the local signer (real mode only)"
    )
    rpc_timeout_seconds: float = Field(default=15.0, description="JSON-RPC request timeout")

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def provider_names(self) -> list[str]:
        """Parse enabled provider names into a list."""
        return [p.strip().lower() for p in self.enabled_providers.split(",") if p.strip()]

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    def get_rpc_url(self, chain_id: int) -> str:
        """Get RPC URL for a chain id."""
        rpc_map = {
            1: self.eth_rpc_url,
            10: self.optimism_rpc_url,
            137: self.polygon_rpc_url,
            8453: self.base_rpc_url,
            42161: self.arbitrum_rpc_url,
            43113: self.fuji_rpc_url,
            11155111: self.sepolia_rpc_url,
        }
        return rpc_map.get(chain_id, "")

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "dry_run": self.dry_run,
            "api_host": self.api_host,
            "api_port": self.api_port,
            "database_url": self._redact_url(self.database_url),
            "persist_transactions": self.persist_transactions,
            "signer": "local" if self.hot_wallet_private_key else "dry_run",
            "quotes": {
                "ttl_seconds": self.quote_ttl_seconds,
                "provider_timeout_seconds": self.provider_timeout_seconds,
                "aggregate_timeout_seconds": self.aggregate_timeout_seconds,
                "default_slippage_bps": self.default_slippage_bps,
            },
            "lifecycle": {
                "confirmation_timeout_seconds": self.confirmation_timeout_seconds,
                "delivery_timeout_seconds": self.delivery_timeout_seconds,
                "auto_retry_limit": self.auto_retry_limit,
            },
            "providers": {
                "enabled": self.provider_names,
                "lifi": {"url": self.lifi_api_url, "api_key": "***" if self.lifi_api_key else "(not set)"},
                "relay": {"url": self.relay_api_url},
            },
            "retention": {
                "per_account": self.retention_per_account,
                "window_seconds": self.retention_window_seconds,
            },
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact sensitive parts of database URL."""
        if "://" in url and "@" in url:
            proto, rest = url.split("://", 1)
            if "@" in rest:
                creds, host = rest.rsplit("@", 1)
                if ":" in creds:
                    user, _ = creds.split(":", 1)
                    return f"{proto}://{user}:***@{host}"
        return url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
