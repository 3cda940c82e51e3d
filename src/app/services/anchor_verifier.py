# src/app/services/anchor_verifier.py
"""
Read-only interpretation of ledger lookups.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from src.app.domain.errors import LedgerFailureKind
from src.app.domain.models import HashLookup, ProvenanceRecord
from src.app.infra.ledger.base import LedgerClient
from src.app.services.recipe_hash import RecipeInput, compare_hashes, generate_recipe_hash


class AnchorStatus(str, Enum):
    NOT_CONFIGURED = "not_configured"
    NOT_FOUND = "not_found"
    FOUND = "found"
    ERROR = "error"


@dataclass
class AnchorVerification:
    recipe_hash: str
    status: AnchorStatus
    author: Optional[str] = None
    timestamp: Optional[datetime] = None
    transaction_hash: Optional[str] = None
    block_number: Optional[int] = None
    error: Optional[str] = None

    @property
    def exists(self) -> bool:
        return self.status == AnchorStatus.FOUND


@dataclass
class RecipeIntegrityReport:
    computed_hash: str
    stored_hash: Optional[str]
    content_matches: bool
    ledger: AnchorVerification
    author_matches: Optional[bool] = None


def interpret_lookup(recipe_hash: str, lookup: HashLookup) -> AnchorVerification:
    if not lookup.success:
        not_configured = not lookup.configured or (
            lookup.failure is not None and lookup.failure.kind == LedgerFailureKind.CONTRACT_NOT_DEPLOYED
        )
        return AnchorVerification(
            recipe_hash=recipe_hash,
            status=AnchorStatus.NOT_CONFIGURED if not_configured else AnchorStatus.ERROR,
            error=lookup.error,
        )
    if not lookup.exists:
        return AnchorVerification(recipe_hash=recipe_hash, status=AnchorStatus.NOT_FOUND)
    return AnchorVerification(
        recipe_hash=recipe_hash,
        status=AnchorStatus.FOUND,
        author=lookup.author,
        timestamp=lookup.timestamp,
        transaction_hash=lookup.transaction_hash,
        block_number=lookup.block_number,
    )


class AnchorVerifier:
    def __init__(self, ledger: LedgerClient):
        self._ledger = ledger

    def lookup(self, recipe_hash: str) -> AnchorVerification:
        """Three-way check: not configured, not found, found."""
        if not self._ledger.contract_configured:
            return AnchorVerification(
                recipe_hash=recipe_hash,
                status=AnchorStatus.NOT_CONFIGURED,
                error="Contract not deployed yet",
            )
        return interpret_lookup(recipe_hash, self._ledger.verify_recipe_hash(recipe_hash))

    def details(self, recipe_hash: str) -> AnchorVerification:
        if not self._ledger.contract_configured:
            return AnchorVerification(
                recipe_hash=recipe_hash,
                status=AnchorStatus.NOT_CONFIGURED,
                error="Contract not deployed yet",
            )
        return interpret_lookup(recipe_hash, self._ledger.get_recipe_info(recipe_hash))

    def check_recipe(
        self,
        content: RecipeInput,
        record: Optional[ProvenanceRecord] = None,
    ) -> RecipeIntegrityReport:
        """Recompute the content hash and compare it with the stored record and the ledger."""
        computed = generate_recipe_hash(content)
        stored = record.recipe_hash if record else None
        ledger = self.details(computed)

        author_matches: Optional[bool] = None
        wallet = record.author_wallet_address if record else None
        if ledger.exists and ledger.author and wallet:
            author_matches = ledger.author.lower() == wallet.lower()

        return RecipeIntegrityReport(
            computed_hash=computed,
            stored_hash=stored,
            content_matches=compare_hashes(computed, stored),
            ledger=ledger,
            author_matches=author_matches,
        )
