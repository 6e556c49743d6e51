"""Application configuration using pydantic-settings.

The TRON mnemonic is the master secret for deposit address derivation.
"""

from decimal import Decimal
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # Database
    # ======================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/trondeposit.db",
        description="Database connection URL",
    )

    # ======================
    # API
    # ======================
    api_host: str = Field(default="0.0.0.0", description="API server host")
    api_port: int = Field(default=8000, description="API server port")

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=True, description="Enable debug mode")

    # ======================
    # Admin
    # ======================
    admin_token: str = Field(default="", description="Admin API token for protected endpoints")

    # ======================
    # HD Wallet
    # ======================
    tron_mnemonic: Optional[str] = Field(
        default=None, description="BIP-39 mnemonic used to derive deposit addresses"
    )
    address_assignment_retries: int = Field(
        default=5, ge=1, description="Attempts to assign a derivation index on conflict"
    )

    # ======================
    # Chain access
    # ======================
    chain_provider: str = Field(
        default="trongrid", description="Chain data source: trongrid or simulated"
    )
    trongrid_url: str = Field(
        default="https://api.trongrid.io", description="TronGrid API base URL"
    )
    trongrid_api_key: str = Field(default="", description="TronGrid API key")
    usdt_contract: str = Field(
        default="TR7NHqjeKQxGTCi8q8ZY4pL8otSzgjLj6t",
        description="TRC20 token contract watched for deposits",
    )
    token_decimals: int = Field(default=6, description="Decimals of the watched token")
    request_timeout_seconds: float = Field(default=30.0, description="HTTP timeout")

    # ======================
    # Scanner
    # ======================
    confirmation_depth: int = Field(
        default=20, ge=0, description="Blocks required on top of a transfer before crediting"
    )
    scan_interval_seconds: int = Field(default=30, ge=1, description="Seconds between scan ticks")
    scan_timeout_seconds: int = Field(
        default=120, ge=1, description="Time budget for a single scan pass"
    )
    scan_lock_ttl_seconds: int = Field(
        default=600, ge=1, description="Age after which a held scan flag may be taken over"
    )
    scan_max_blocks_per_pass: int = Field(
        default=200, ge=1, description="Maximum number of blocks processed per pass"
    )
    scan_start_block: Optional[int] = Field(
        default=None,
        ge=0,
        description=(
            "Checkpoint height used when no scan state exists yet; "
            "unset starts at the confirmed chain tip"
        ),
    )

    # ======================
    # Reconciliation
    # ======================
    amount_tolerance: Decimal = Field(
        default=Decimal("0.000001"),
        ge=0,
        description="Accepted difference between self-reported and on-chain amounts",
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def has_wallet(self) -> bool:
        """Check if a mnemonic is configured."""
        return bool(self.tron_mnemonic and len(self.tron_mnemonic.split()) >= 12)

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "api_host": self.api_host,
            "api_port": self.api_port,
            "database_url": self._redact_url(self.database_url),
            "admin_token": "***" if self.admin_token else "(not set)",
            "wallet_configured": self.has_wallet,
            "chain": {
                "provider": self.chain_provider,
                "trongrid_url": self.trongrid_url,
                "api_key": "***" if self.trongrid_api_key else "(not set)",
                "token_contract": self.usdt_contract,
            },
            "scanner": {
                "confirmation_depth": self.confirmation_depth,
                "interval": self.scan_interval_seconds,
                "timeout": self.scan_timeout_seconds,
                "max_blocks_per_pass": self.scan_max_blocks_per_pass,
                "start_block": self.scan_start_block,
            },
            "amount_tolerance": str(self.amount_tolerance),
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
