"""Shared configuration management for the invoicing service.

Based on Pydantic Settings v2 best practices:
https://docs.pydantic.dev/latest/concepts/pydantic_settings/
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with the prefix 'APP_'.
    Example: APP_LEDGER_API_URL=http://canton:7575
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Service configuration
    service_name: str = Field(
        default="ledger-invoicing-service",
        description="Service identifier for metrics and logs",
    )
    service_version: str = Field(
        default="0.1.0",
        description="Service version",
    )

    # Ledger JSON API
    ledger_api_url: str = Field(
        default="http://localhost:7575",
        description="Base URL of the ledger JSON API (v2)",
    )
    ledger_access_token: str = Field(
        default="",
        description="Bearer token for the ledger JSON API (use env var APP_LEDGER_ACCESS_TOKEN)",
    )
    ledger_user_id: str = Field(
        default="app-provider-backend",
        description="Ledger user id submitting commands",
    )
    ledger_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout for a single ledger or registry HTTP call",
        gt=0,
    )
    ledger_query_attempts: int = Field(
        default=3,
        description="Attempts for read-only ledger/registry calls (commands are never retried)",
        ge=1,
    )

    # Parties
    admin_party: str = Field(
        default="",
        description="App provider party; acts for every provider-side command",
    )
    party_header: str = Field(
        default="X-Ledger-Party",
        description="Request header carrying the authenticated caller's party id",
    )

    # Token standard registry
    registry_url: str = Field(
        default="http://localhost:5012",
        description="Base URL of the token standard registry (scan proxy)",
    )
    instrument_id: str = Field(
        default="Amulet",
        description="Instrument id used as the invoice payment instrument",
    )

    # Display parties returned by /api/parties
    seller_party: str = Field(default="", description="Seller party id")
    buyer_party: str = Field(default="", description="Buyer party id")
    logistics_party: str = Field(default="", description="Logistics (carrier) party id")
    finance_party: str = Field(default="", description="Finance (bookkeeper) party id")


def get_settings() -> Settings:
    """Factory function to get settings instance.

    Returns:
        Configured Settings instance
    """
    return Settings()
