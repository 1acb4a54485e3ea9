"""
SDK settings.

Loads configuration from environment variables (prefix ``SUPERPAY_``) or a
``.env`` file using pydantic-settings. Components accept explicit values and
only fall back to these settings when none are given.
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .types import TokenMeta


class SuperpaySettings(BaseSettings):
    """SDK settings loaded from environment variables."""

    # Supported payment token
    token_symbol: str = "USDC"
    token_contract: str = Field(
        default="0x4fcf1784b31630811181f670aea7a7bef803eaed",
        description="Contract address of the single supported payment token",
    )
    token_decimals: int = Field(default=6, ge=0)

    # Native gas token, tracked next to the payment token
    native_symbol: str = "SEI"
    native_decimals: int = Field(default=18, ge=0)

    # Network
    chain_id: int = 1328  # Sei EVM testnet
    rpc_url: str = "https://evm-rpc-testnet.sei-apis.com"
    rpc_timeout_seconds: float = Field(default=10.0, gt=0)
    rpc_max_retries: int = Field(default=3, ge=1)
    rpc_retry_delay_seconds: float = Field(default=5.0, ge=0)

    # Balance cache
    balance_ttl_ms: int = Field(default=60_000, ge=0)

    # Transfers
    default_gas_limit: int = Field(default=100_000, gt=0)
    gas_buffer_percent: int = Field(default=20, ge=0)
    retry_gas_percent: int = Field(default=50, ge=0)
    submit_timeout_seconds: float = Field(default=30.0, gt=0)
    timed_out_grace_seconds: float = Field(default=120.0, ge=0)
    submitted_retention_seconds: float = Field(default=3600.0, ge=0)

    # Payment monitoring
    poll_interval_seconds: float = Field(default=3.0, gt=0)
    session_ceiling_seconds: float = Field(default=300.0, gt=0)
    query_limit: int = Field(default=5, ge=1)

    model_config = SettingsConfigDict(
        env_prefix="SUPERPAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("token_contract")
    @classmethod
    def validate_contract_address(cls, v: str) -> str:
        """Validate the token contract address."""
        if not v.startswith("0x") or len(v) != 42:
            raise ValueError("Invalid contract address format")
        return v.lower()

    def supported_token(self) -> TokenMeta:
        return TokenMeta(
            symbol=self.token_symbol,
            contract=self.token_contract,
            decimals=self.token_decimals,
        )

    def native_token(self) -> TokenMeta:
        return TokenMeta(symbol=self.native_symbol, decimals=self.native_decimals)


@lru_cache
def get_settings() -> SuperpaySettings:
    """Return the process-wide settings, loaded once."""
    return SuperpaySettings()
