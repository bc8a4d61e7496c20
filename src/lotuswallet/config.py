"""
Configuration management using pydantic-settings.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from lotuswallet.constants import (
    COINBASE_MATURITY,
    DEFAULT_CHRONIK_URL,
    DEFAULT_FEE_RATE,
    RANK_OUTPUT_MIN_VALUE,
    STANDARD_DUST_LIMIT,
    WALLET_MAX_TX_INPUTS,
    WALLET_MAX_TX_SIZE,
)


class WalletSettings(BaseSettings):
    """Settings for the wallet engine, sync client and CLI."""

    model_config = SettingsConfigDict(
        env_prefix="LOTUS_", env_file=".env", env_file_encoding="utf-8", case_sensitive=False
    )

    network: Literal["mainnet", "testnet", "regtest"] = "mainnet"

    # Indexer
    chronik_url: str = DEFAULT_CHRONIK_URL
    chronik_ws_url: str = ""
    request_timeout: float = Field(default=30.0, gt=0, description="Seconds per indexer call")

    # Transaction policy
    fee_rate: int = Field(default=DEFAULT_FEE_RATE, ge=1, description="Fee rate in sats/byte")
    dust_threshold: int = Field(default=STANDARD_DUST_LIMIT, ge=0)
    rank_output_min_value: int = Field(default=RANK_OUTPUT_MIN_VALUE, ge=0)
    max_tx_size: int = Field(default=WALLET_MAX_TX_SIZE, ge=1000)
    max_tx_inputs: int = Field(default=WALLET_MAX_TX_INPUTS, ge=1)
    coinbase_maturity: int = Field(default=COINBASE_MATURITY, ge=0)

    # Sync client
    reconnect_initial_delay: float = Field(default=1.0, gt=0)
    reconnect_max_delay: float = Field(default=60.0, gt=0)
    reconcile_interval: float = Field(
        default=5.0, description="Seconds between idle reconciliations, <= 0 disables"
    )

    storage_path: Path | None = None
    log_level: str = "INFO"

    @model_validator(mode="after")
    def set_ws_url_default(self) -> WalletSettings:
        """Derive the websocket endpoint from the REST URL when not given."""
        if not self.chronik_ws_url:
            base = self.chronik_url.rstrip("/")
            if base.startswith("https://"):
                ws_url = "wss://" + base[len("https://") :]
            elif base.startswith("http://"):
                ws_url = "ws://" + base[len("http://") :]
            else:
                ws_url = base
            object.__setattr__(self, "chronik_ws_url", f"{ws_url}/ws")
        return self


def get_settings() -> WalletSettings:
    return WalletSettings()
