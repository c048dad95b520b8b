"""
Configuration management using Pydantic Settings.
Supports multiple environments: development, staging, production.
"""

from typing import Optional, List
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment-based configuration."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Application
    app_name: str = "HydroCred Ledger"
    app_version: str = "0.1.0"
    debug: bool = False
    environment: str = "development"

    # Chain
    rpc_url: str = "https://ethereum-sepolia.publicnode.com"
    fallback_rpc_urls: str = (
        "https://rpc.sepolia.org,"
        "https://ethereum-sepolia.publicnode.com,"
        "https://sepolia.drpc.org"
    )
    contract_address: str = "0xaA7b945a4Cd4381DcF5D4Bc6e0E5cc76e6A3Fc39"
    explorer_base_url: str = "https://sepolia.etherscan.io"

    # Endpoint probing and reads
    probe_timeout: float = 5.0  # seconds
    request_timeout: float = 30.0  # seconds
    read_max_attempts: int = 3
    read_base_delay: float = 1.0  # seconds, multiplied by attempt number

    # Reconciliation
    reconcile_timeout: float = 120.0  # seconds, whole get_credit_events call
    start_block: int = 0

    # Redis (sync cursor)
    redis_url: str = "redis://localhost:6379/0"
    cursor_key_prefix: str = "hydrocred:cursor:"

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console
    log_file: Optional[str] = None

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        allowed = ["development", "staging", "production"]
        if v not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed:
            raise ValueError(f"Log level must be one of: {allowed}")
        return v.upper()

    @field_validator("read_max_attempts")
    @classmethod
    def validate_max_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("read_max_attempts must be at least 1")
        return v

    @field_validator("start_block")
    @classmethod
    def validate_start_block(cls, v: int) -> int:
        if v < 0:
            raise ValueError("start_block cannot be negative")
        return v

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def endpoint_urls(self) -> List[str]:
        """Primary URL followed by fallbacks, in priority order, without duplicates."""
        urls: List[str] = []
        candidates = [self.rpc_url] + [u.strip() for u in self.fallback_rpc_urls.split(",")]
        for url in candidates:
            if url and url not in urls:
                urls.append(url)
        return urls


# Global settings instance
settings = Settings()


class ChainConfig:
    """Chain-specific configuration and constants."""

    ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

    # Contract event names per ledger category
    EVENT_NAMES = {
        "Issued": "CreditsIssued",
        "Transferred": "Transfer",
        "Retired": "CreditRetired",
    }

    @staticmethod
    def get_rpc_config() -> dict:
        """Get JSON-RPC connection configuration."""
        return {
            "endpoints": settings.endpoint_urls,
            "contract_address": settings.contract_address,
            "probe_timeout": settings.probe_timeout,
            "request_timeout": settings.request_timeout,
        }

    @staticmethod
    def get_retry_config() -> dict:
        """Get read retry policy configuration."""
        return {
            "max_attempts": settings.read_max_attempts,
            "base_delay": settings.read_base_delay,
        }
