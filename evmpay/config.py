from __future__ import annotations

import os
from typing import Literal, Optional

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator
from web3 import Web3

ENV_KEYS = (
    "RPC_URL",
    "TREASURY_ADDRESS",
    "GATEWAY_NAME",
    "DATABASE_URL",
    "TRANSACTION_TYPE",
    "MIN_CONFIRMATIONS",
    "CONFIRMATION_TIMEOUT",
    "INVOICE_DELAY_SECONDS",
    "POLLER_DELAY_SECONDS",
    "EIP1559_RETRY_MAX",
    "EIP1559_RETRY_DELAY_SECONDS",
    "TRANSFER_GAS_LIMIT",
    "RPC_TIMEOUT",
    "WEBHOOK_URL",
    "WEBHOOK_INCLUDE_WALLET",
    "LOG_LEVEL",
    "AUDIT_LOG_PATH",
    "PORT",
)


class GatewayConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    rpc_url: str = Field(..., alias="RPC_URL")
    treasury_address: str = Field(..., alias="TREASURY_ADDRESS")
    name: str = Field("evmpay", alias="GATEWAY_NAME")
    # unset -> volatile in-memory store
    database_url: Optional[str] = Field(None, alias="DATABASE_URL")
    transaction_type: Literal["legacy", "eip1559"] = Field("legacy", alias="TRANSACTION_TYPE")
    min_confirmations: int = Field(1, ge=1, alias="MIN_CONFIRMATIONS")
    confirmation_timeout: float = Field(300, gt=0, alias="CONFIRMATION_TIMEOUT")
    invoice_delay_seconds: float = Field(1.0, ge=0, alias="INVOICE_DELAY_SECONDS")
    poller_delay_seconds: float = Field(10.0, ge=0, alias="POLLER_DELAY_SECONDS")
    fee_retry_max: int = Field(3, ge=0, alias="EIP1559_RETRY_MAX")
    fee_retry_delay_seconds: float = Field(2.0, ge=0, alias="EIP1559_RETRY_DELAY_SECONDS")
    transfer_gas_limit: Optional[int] = Field(None, gt=0, alias="TRANSFER_GAS_LIMIT")
    rpc_timeout: int = Field(60, gt=0, alias="RPC_TIMEOUT")
    webhook_url: Optional[str] = Field(None, alias="WEBHOOK_URL")
    webhook_include_wallet: bool = Field(False, alias="WEBHOOK_INCLUDE_WALLET")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    audit_log_path: Optional[str] = Field(None, alias="AUDIT_LOG_PATH")
    port: int = Field(5000, alias="PORT")

    @field_validator("treasury_address")
    @classmethod
    def _treasury_hex(cls, v: str) -> str:
        if not isinstance(v, str) or not Web3.is_address(v):
            raise ValueError("TREASURY_ADDRESS must be a 0x-prefixed 20 byte address")
        return Web3.to_checksum_address(v)

    @field_validator("transaction_type", mode="before")
    @classmethod
    def _tx_type_lower(cls, v):
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("log_level")
    @classmethod
    def _level_upper(cls, v: str) -> str:
        return v.strip().upper()


def load_config(env_file: Optional[str] = None) -> GatewayConfig:
    """Build the config from the process environment, after loading .env (never overriding)."""
    load_dotenv(env_file or find_dotenv(usecwd=True))
    env = {k: os.getenv(k) for k in ENV_KEYS}
    return GatewayConfig.model_validate({k: v for k, v in env.items() if v not in (None, "")})
