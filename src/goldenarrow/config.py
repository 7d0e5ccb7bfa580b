"""Application configuration using pydantic-settings.

The deposit xpub is the only key material the service ever sees. It is read
once from the environment (or `.env`) and may be stored Fernet-encrypted.
"""

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
        default="sqlite+aiosqlite:///./data/goldenarrow.db",
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
    debug: bool = Field(default=False, description="Enable debug mode")

    # ======================
    # Admin
    # ======================
    admin_token: str = Field(default="", description="Admin API token for protected endpoints")
    gateway_token: str = Field(
        default="",
        description="Shared token the authenticating gateway sends on user routes",
    )

    # ======================
    # HD Wallet
    # ======================
    xpub_key: Optional[str] = Field(
        default=None,
        description="Extended public key for deposit addresses (plain or Fernet-encrypted)",
    )
    xpub_encryption_key: Optional[str] = Field(
        default=None, description="Fernet key used to decrypt an encrypted XPUB_KEY"
    )
    derivation_start_index: int = Field(
        default=0, ge=0, description="First child index handed out for a new xpub"
    )
    allocation_lock_timeout: float = Field(
        default=30.0, gt=0, description="Seconds to wait for the address allocation lock"
    )

    # ======================
    # Chain / deposit scanning
    # ======================
    bsc_rpc_url: str = Field(
        default="https://bnb-mainnet.g.alchemy.com/v2", description="BSC Alchemy RPC base URL"
    )
    alchemy_api_key: str = Field(default="", description="Alchemy API key")
    usdt_contract_address: str = Field(
        default="0x55d398326f99059fF775485246999027B3197955",
        description="USDT (BEP-20) token contract",
    )
    usdt_decimals: int = Field(default=18, ge=0, description="USDT token decimals on BSC")
    min_confirmations: int = Field(
        default=15, ge=1, description="Blocks required before a transfer is credited"
    )
    scanner_timeout: float = Field(default=30.0, gt=0, description="RPC request timeout")

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def has_xpub(self) -> bool:
        """Check if a deposit xpub is configured."""
        return bool(self.xpub_key and self.xpub_key.strip())

    @property
    def rpc_endpoint(self) -> str:
        """Full JSON-RPC endpoint including the API key."""
        base = self.bsc_rpc_url.rstrip("/")
        if self.alchemy_api_key:
            return f"{base}/{self.alchemy_api_key}"
        return base

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "api_host": self.api_host,
            "api_port": self.api_port,
            "database_url": self._redact_url(self.database_url),
            "admin_token": "***" if self.admin_token else "(not set)",
            "gateway_token": "***" if self.gateway_token else "(not set)",
            "xpub_configured": self.has_xpub,
            "xpub_encrypted": bool(self.xpub_encryption_key),
            "chain": {
                "rpc": self.bsc_rpc_url,
                "api_key": "***" if self.alchemy_api_key else "(not set)",
                "usdt_contract": self.usdt_contract_address,
                "usdt_decimals": self.usdt_decimals,
                "min_confirmations": self.min_confirmations,
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
