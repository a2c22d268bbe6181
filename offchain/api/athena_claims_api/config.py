"""
Configuration for Athena Claims API.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    API configuration settings.

    All settings can be overridden via environment variables.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # API Server
    # WARNING: If using host="0.0.0.0" (externally accessible), you MUST set
    # API_TOKEN, otherwise admin endpoints (pause, roles, root updates) are open.
    host: str = Field(
        default="127.0.0.1",
        description="API host (127.0.0.1 for local only, 0.0.0.0 for external - REQUIRES API_TOKEN)",
        alias="HOST",
    )
    port: int = Field(default=8000, description="API port", validation_alias="PORT")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Authentication (admin endpoints only)
    api_token: Optional[str] = Field(
        default=None,
        description="API token for admin endpoints (REQUIRED for non-local/production use)",
    )
    allowed_origins: list[str] = Field(
        default=["http://localhost:3000", "http://127.0.0.1:3000"],
        description="CORS allowed origins",
    )

    # EVM
    evm_rpc_url: str = Field(
        default="http://localhost:8545",
        description="EVM JSON-RPC URL",
    )
    chain_id: int = Field(default=31337, description="EVM chain ID")
    private_key: Optional[str] = Field(
        default=None,
        description="Operator private key for signing transactions",
    )
    athena_token_merkle: Optional[str] = Field(
        default=None,
        description="AthenaTokenMerkle contract address",
    )
    tx_gas_limit: int = Field(default=300_000, description="Gas limit for contract calls")
    tx_timeout_seconds: int = Field(default=120, description="Receipt wait timeout")

    # Database
    database_url: str = Field(
        default="sqlite:///./claims.db",
        description="SQLAlchemy URL (sqlite:///... or postgresql://...)",
    )

    # Allowlists
    allowlist_dir: Path = Field(
        default=Path("./allowlists"),
        description="Directory holding one <period>.json/.csv snapshot per claim period",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
