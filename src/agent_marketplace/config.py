"""Application configuration via pydantic-settings.

Reads from .env file or environment variables. All settings are validated
at startup — if a setting has the wrong type, the app fails fast with a
clear error message.

Usage:
    from agent_marketplace.config import get_settings
    settings = get_settings()
    print(settings.database_url)
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class Settings(BaseSettings):
    """Central configuration for the Agent Marketplace."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_env: Literal["development", "test", "staging", "production"] = "development"
    app_debug: bool = True
    app_log_level: str = "DEBUG"
    app_host: str = "0.0.0.0"
    app_port: int = 3000
    cors_origin: str = "*"

    # --- Database ---
    database_url: str = (
        "postgresql+asyncpg://marketplace:marketplace_dev"
        "@localhost:5432/agent_marketplace"
    )
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_echo_sql: bool = False
    db_create_tables: bool = True

    # --- Ledger (JSON-RPC node + marketplace contract) ---
    rpc_url: str = "http://localhost:8545"
    contract_address: str = ""
    contract_abi_path: str = "contracts/out/AgentMarketplace.sol/AgentMarketplace.json"
    start_block: int = 0
    poll_interval_ms: int = 5000
    indexer_max_block_range: int = 2000
    indexer_max_event_attempts: int = 3
    ledger_timeout_seconds: float = 10.0
    ledger_max_retries: int = 3

    # --- WebSocket ---
    ws_enabled: bool = True

    # --- Marketplace Defaults ---
    default_reputation: int = 100
    max_page_size: int = 100

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def indexer_enabled(self) -> bool:
        """The indexer only runs against a real (non-zero) contract address."""
        address = self.contract_address.strip().lower()
        return bool(address) and address != ZERO_ADDRESS

    @property
    def poll_interval_seconds(self) -> float:
        return self.poll_interval_ms / 1000


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton of the application settings."""
    return Settings()
