from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Optional

from pydantic import AnyUrl, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8-sig",
        case_sensitive=False,
        extra="ignore",
    )

    SUPABASE_URL: Optional[AnyUrl] = None
    SUPABASE_SERVICE_ROLE_KEY: str = ""
    APP_ENV: str = "local"
    FRONTEND_CORS_ORIGINS: list[str] = Field(
        default_factory=lambda: ["http://localhost:5173"],
    )

    # Ledger node (Ganache GUI listens on 7545, the CLI on 8545)
    LEDGER_NODE_URL: str = "http://127.0.0.1:7545"
    LEDGER_NETWORK_ID: int = 5777
    LEDGER_PRIVATE_KEY: str = ""
    RECIPE_REGISTRY_ADDRESS: str = ""
    LEDGER_GAS_LIMIT: int = 300_000
    LEDGER_GAS_PRICE: Optional[int] = 20_000_000_000  # 20 gwei
    LEDGER_RPC_TIMEOUT_SECONDS: float = 10.0
    LEDGER_RECEIPT_TIMEOUT_SECONDS: float = 60.0
    LEDGER_RECEIPT_POLL_SECONDS: float = 0.5

    # Anchoring
    ANCHOR_MODE: Literal["queued", "inline"] = "queued"
    ANCHOR_MAX_ATTEMPTS: int = 5
    ANCHOR_JOB_TIMEOUT_SECONDS: float = 120.0

    def ledger(self) -> "LedgerSettings":
        return LedgerSettings(
            node_url=self.LEDGER_NODE_URL,
            network_id=self.LEDGER_NETWORK_ID,
            private_key=self.LEDGER_PRIVATE_KEY,
            contract_address=self.RECIPE_REGISTRY_ADDRESS,
            gas_limit=self.LEDGER_GAS_LIMIT,
            gas_price=self.LEDGER_GAS_PRICE,
            rpc_timeout_seconds=self.LEDGER_RPC_TIMEOUT_SECONDS,
            receipt_timeout_seconds=self.LEDGER_RECEIPT_TIMEOUT_SECONDS,
            receipt_poll_seconds=self.LEDGER_RECEIPT_POLL_SECONDS,
        )


@dataclass(frozen=True)
class LedgerConfigCheck:
    """Result of validating the ledger configuration."""
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


@dataclass(frozen=True)
class LedgerSettings:
    """Connection parameters owned by a single ledger client."""
    node_url: str = ""
    network_id: int = 5777
    private_key: str = ""
    contract_address: str = ""
    gas_limit: int = 300_000
    gas_price: Optional[int] = None
    rpc_timeout_seconds: float = 10.0
    receipt_timeout_seconds: float = 60.0
    receipt_poll_seconds: float = 0.5

    def __repr__(self) -> str:
        return (
            f"LedgerSettings(node_url={self.node_url!r}, network_id={self.network_id}, "
            f"contract_address={self.contract_address!r}, private_key=<redacted>)"
        )

    @property
    def has_contract(self) -> bool:
        return bool(self.contract_address)

    def validate(self, require_contract: bool = False) -> LedgerConfigCheck:
        errors: list[str] = []
        warnings: list[str] = []

        if not self.node_url:
            errors.append("LEDGER_NODE_URL is not set")
        if not self.private_key:
            errors.append("LEDGER_PRIVATE_KEY is not set")
        if not self.contract_address:
            if require_contract:
                errors.append("RECIPE_REGISTRY_ADDRESS is not set. Contract needs to be deployed first.")
            else:
                warnings.append(
                    "RECIPE_REGISTRY_ADDRESS is not set. Contract functions will not work until deployed."
                )

        return LedgerConfigCheck(errors=errors, warnings=warnings)


settings = Settings()
