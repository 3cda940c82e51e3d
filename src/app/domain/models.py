# src/app/domain/models.py
"""
Domain models for recipe provenance and ledger anchoring.
These are pure data structures with no infrastructure dependencies.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from src.app.domain.errors import RETRYABLE_FAILURE_KINDS, LedgerFailureKind


class VerificationReason(str, Enum):
    """Why a provenance record is not verified."""
    HASH_ALREADY_EXISTS = "hash_already_exists"
    BLOCKCHAIN_ERROR = "blockchain_error"
    NO_WALLET_ADDRESS = "no_wallet_address"


class ProvenanceState(str, Enum):
    UNANCHORED_NO_WALLET = "unanchored_no_wallet"
    ANCHOR_PENDING = "anchor_pending"
    ANCHORED = "anchored"
    ANCHOR_FAILED = "anchor_failed"


class AnchorJobKind(str, Enum):
    REGISTER = "register"
    UPDATE = "update"


@dataclass(frozen=True)
class LedgerFailure:
    kind: LedgerFailureKind
    message: str

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_FAILURE_KINDS


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    try:
        text = str(value)
        normalized = text.replace("Z", "+00:00") if text.endswith("Z") else text
        return datetime.fromisoformat(normalized)
    except ValueError:
        return None


@dataclass(frozen=True)
class ProvenanceRecord:
    """
    Provenance of a recipe's current content.

    Owned by the recipe and replaced as a whole on every content-changing
    update. ``recipe_hash`` always matches the stored content.
    """
    recipe_hash: str
    author_wallet_address: Optional[str] = None
    transaction_hash: Optional[str] = None
    block_number: Optional[int] = None
    timestamp: Optional[datetime] = None
    is_verified: bool = False
    verification_reason: Optional[VerificationReason] = None

    @property
    def state(self) -> ProvenanceState:
        if self.is_verified:
            return ProvenanceState.ANCHORED
        if self.verification_reason == VerificationReason.NO_WALLET_ADDRESS:
            return ProvenanceState.UNANCHORED_NO_WALLET
        if self.verification_reason is not None:
            return ProvenanceState.ANCHOR_FAILED
        return ProvenanceState.ANCHOR_PENDING

    @property
    def is_anchored(self) -> bool:
        return self.is_verified and bool(self.recipe_hash)

    def to_document(self) -> dict[str, Any]:
        """Serialize as the recipe's ``blockchain`` sub-document."""
        return {
            "recipeHash": self.recipe_hash,
            "authorWalletAddress": self.author_wallet_address,
            "transactionHash": self.transaction_hash,
            "blockNumber": self.block_number,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "isVerified": self.is_verified,
            "verificationReason": self.verification_reason.value if self.verification_reason else None,
        }

    @classmethod
    def from_document(cls, doc: Optional[dict[str, Any]]) -> Optional["ProvenanceRecord"]:
        if not doc or not doc.get("recipeHash"):
            return None
        reason = doc.get("verificationReason")
        block_number = doc.get("blockNumber")
        return cls(
            recipe_hash=str(doc["recipeHash"]),
            author_wallet_address=doc.get("authorWalletAddress") or None,
            transaction_hash=doc.get("transactionHash") or None,
            block_number=int(block_number) if block_number is not None else None,
            timestamp=_parse_datetime(doc.get("timestamp")),
            is_verified=bool(doc.get("isVerified")),
            verification_reason=VerificationReason(reason) if reason else None,
        )


@dataclass
class AnchorResult:
    """Outcome of a state-changing ledger call. Never raised, always returned."""
    success: bool
    transaction_hash: Optional[str] = None
    block_number: Optional[int] = None
    timestamp: Optional[datetime] = None
    gas_used: Optional[str] = None
    error: Optional[str] = None
    failure: Optional[LedgerFailure] = None

    @classmethod
    def confirmed(cls, transaction_hash: str, block_number: int, gas_used: int | str) -> "AnchorResult":
        return cls(
            success=True,
            transaction_hash=transaction_hash,
            block_number=block_number,
            timestamp=datetime.now(timezone.utc),
            gas_used=str(gas_used),
        )

    @classmethod
    def failed(cls, message: str, kind: Optional[LedgerFailureKind] = None) -> "AnchorResult":
        failure = LedgerFailure(kind, message) if kind is not None else None
        return cls(success=False, error=message, failure=failure)


@dataclass
class HashLookup:
    """Result of a read-only hash query against the registry contract."""
    success: bool
    exists: bool = False
    author: Optional[str] = None
    timestamp: Optional[datetime] = None
    block_timestamp: Optional[int] = None
    configured: bool = True
    transaction_hash: Optional[str] = None
    block_number: Optional[int] = None
    error: Optional[str] = None
    failure: Optional[LedgerFailure] = None

    @classmethod
    def failed(cls, message: str, kind: LedgerFailureKind) -> "HashLookup":
        return cls(
            success=False,
            configured=kind != LedgerFailureKind.CONTRACT_NOT_DEPLOYED,
            error=message,
            failure=LedgerFailure(kind, message),
        )


@dataclass
class ConnectionStatus:
    success: bool
    connected: bool = False
    network_id: Optional[str] = None
    chain_id: Optional[int] = None
    url: Optional[str] = None
    error: Optional[str] = None


@dataclass
class LedgerInitResult:
    success: bool
    account: Optional[str] = None
    contract_address: Optional[str] = None
    warnings: list[str] = field(default_factory=list)
    error: Optional[str] = None
    failure: Optional[LedgerFailure] = None


@dataclass(frozen=True)
class AnchorJob:
    """A pending ledger write for one recipe's content hash."""
    recipe_id: str
    kind: AnchorJobKind
    new_hash: str
    wallet: str
    old_hash: Optional[str] = None
    attempts: int = 0

    def next_attempt(self) -> "AnchorJob":
        return AnchorJob(
            recipe_id=self.recipe_id,
            kind=self.kind,
            new_hash=self.new_hash,
            wallet=self.wallet,
            old_hash=self.old_hash,
            attempts=self.attempts + 1,
        )


@dataclass(frozen=True)
class AnchorOutcome:
    record: ProvenanceRecord
    result: Optional[AnchorResult] = None
    job: Optional[AnchorJob] = None

    @property
    def retryable(self) -> bool:
        if self.result is None or self.result.success:
            return False
        return self.result.failure is not None and self.result.failure.retryable


@dataclass(frozen=True)
class ProvenancePlan:
    """
    What to persist alongside the content, and what (if anything) to anchor.

    ``record`` is written in the same call as the content. ``job`` is None
    when no ledger call is needed.
    """
    record: ProvenanceRecord
    job: Optional[AnchorJob] = None
    content_changed: bool = True


@dataclass
class StoredRecipe:
    id: str
    content: dict[str, Any]
    provenance: Optional[ProvenanceRecord] = None
