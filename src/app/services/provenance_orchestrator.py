# src/app/services/provenance_orchestrator.py
"""
Provenance state machine for recipe create/update.

Decides whether a content write needs a ledger call, performs it through
the injected LedgerClient and turns the outcome into a ProvenanceRecord.
Nothing in here raises: every path ends in a record, verified or not.
"""
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Optional

from src.app.domain.errors import LedgerFailureKind, is_duplicate_hash_message
from src.app.domain.models import (
    AnchorJob,
    AnchorJobKind,
    AnchorOutcome,
    AnchorResult,
    ProvenancePlan,
    ProvenanceRecord,
    VerificationReason,
)
from src.app.infra.ledger.base import LedgerClient
from src.app.services.recipe_hash import RecipeInput, generate_recipe_hash

logger = logging.getLogger(__name__)

_HEURISTIC_KINDS = (LedgerFailureKind.REVERTED, LedgerFailureKind.RPC)


def classify_failure(result: AnchorResult) -> VerificationReason:
    """
    Map a failed anchor onto the stored verification reason.

    Tagged duplicates win. Opaque reverts and untagged errors fall back to
    matching the error text.
    """
    failure = result.failure
    if failure is not None and failure.kind == LedgerFailureKind.DUPLICATE:
        return VerificationReason.HASH_ALREADY_EXISTS
    if failure is None or failure.kind in _HEURISTIC_KINDS:
        if is_duplicate_hash_message(result.error):
            return VerificationReason.HASH_ALREADY_EXISTS
    return VerificationReason.BLOCKCHAIN_ERROR


def _normalize_wallet(wallet: Optional[str]) -> Optional[str]:
    if wallet is None:
        return None
    wallet = wallet.strip()
    return wallet or None


class ProvenanceOrchestrator:
    """
    Drives a recipe's provenance through its states.

    States (derived from the stored record):
    - UNANCHORED_NO_WALLET: no author wallet, nothing sent to the ledger
    - ANCHOR_PENDING: hash persisted, ledger call outstanding
    - ANCHORED: transaction confirmed
    - ANCHOR_FAILED: ledger rejected or was unreachable
    """

    def __init__(self, ledger: LedgerClient):
        self._ledger = ledger

    @property
    def ledger(self) -> LedgerClient:
        return self._ledger

    # ------------------------------------------------------------------
    # Planning (no I/O)
    # ------------------------------------------------------------------

    def plan_create(
        self,
        recipe_id: str,
        content: RecipeInput,
        wallet: Optional[str] = None,
    ) -> ProvenancePlan:
        recipe_hash = generate_recipe_hash(content)
        return self._plan_registration(recipe_id, recipe_hash, _normalize_wallet(wallet))

    def plan_update(
        self,
        recipe_id: str,
        content: RecipeInput,
        wallet: Optional[str] = None,
        prior: Optional[ProvenanceRecord] = None,
    ) -> ProvenancePlan:
        new_hash = generate_recipe_hash(content)

        if prior is None:
            return self._plan_registration(recipe_id, new_hash, _normalize_wallet(wallet))

        if prior.recipe_hash == new_hash:
            return ProvenancePlan(record=prior, job=None, content_changed=False)

        known_wallet = _normalize_wallet(wallet) or _normalize_wallet(prior.author_wallet_address)
        if known_wallet is None:
            return ProvenancePlan(record=self._no_wallet_record(new_hash))

        if prior.is_anchored:
            job = AnchorJob(
                recipe_id=recipe_id,
                kind=AnchorJobKind.UPDATE,
                new_hash=new_hash,
                wallet=known_wallet,
                old_hash=prior.recipe_hash,
            )
            return ProvenancePlan(record=self._pending_record(new_hash, known_wallet), job=job)

        return self._plan_registration(recipe_id, new_hash, known_wallet)

    def _plan_registration(self, recipe_id: str, recipe_hash: str, wallet: Optional[str]) -> ProvenancePlan:
        if wallet is None:
            return ProvenancePlan(record=self._no_wallet_record(recipe_hash))
        job = AnchorJob(
            recipe_id=recipe_id,
            kind=AnchorJobKind.REGISTER,
            new_hash=recipe_hash,
            wallet=wallet,
        )
        return ProvenancePlan(record=self._pending_record(recipe_hash, wallet), job=job)

    @staticmethod
    def _no_wallet_record(recipe_hash: str) -> ProvenanceRecord:
        return ProvenanceRecord(
            recipe_hash=recipe_hash,
            is_verified=False,
            verification_reason=VerificationReason.NO_WALLET_ADDRESS,
        )

    @staticmethod
    def _pending_record(recipe_hash: str, wallet: str) -> ProvenanceRecord:
        return ProvenanceRecord(recipe_hash=recipe_hash, author_wallet_address=wallet)

    # ------------------------------------------------------------------
    # Resolution (ledger I/O)
    # ------------------------------------------------------------------

    def resolve(self, job: AnchorJob) -> AnchorOutcome:
        try:
            if job.kind == AnchorJobKind.UPDATE and job.old_hash:
                result = self._ledger.update_recipe_hash(job.old_hash, job.new_hash, job.wallet)
            else:
                result = self._ledger.register_recipe_hash(job.new_hash, job.wallet)
        except Exception as exc:
            # LedgerClient implementations must not raise; keep the contract anyway.
            logger.exception("Ledger client raised for recipe=%s", job.recipe_id)
            result = AnchorResult.failed(str(exc) or exc.__class__.__name__, LedgerFailureKind.RPC)

        if result.success:
            record = ProvenanceRecord(
                recipe_hash=job.new_hash,
                author_wallet_address=job.wallet,
                transaction_hash=result.transaction_hash,
                block_number=result.block_number,
                timestamp=result.timestamp,
                is_verified=True,
                verification_reason=None,
            )
            logger.info(
                "Recipe %s anchored: hash=%s tx=%s", job.recipe_id, job.new_hash, result.transaction_hash
            )
            return AnchorOutcome(record=record, result=result, job=job)

        reason = classify_failure(result)
        record = ProvenanceRecord(
            recipe_hash=job.new_hash,
            author_wallet_address=job.wallet,
            is_verified=False,
            verification_reason=reason,
        )

        if reason == VerificationReason.HASH_ALREADY_EXISTS and job.attempts > 0:
            record = self._reconcile_duplicate(job, record)

        if not record.is_verified:
            logger.warning(
                "Recipe %s not anchored: reason=%s error=%s", job.recipe_id, reason.value, result.error
            )
        return AnchorOutcome(record=record, result=result, job=job)

    def _reconcile_duplicate(self, job: AnchorJob, record: ProvenanceRecord) -> ProvenanceRecord:
        # A retried submission can collide with its own earlier attempt.
        try:
            info = self._ledger.get_recipe_info(job.new_hash)
        except Exception:
            logger.exception("Ledger lookup raised for recipe=%s", job.recipe_id)
            return record

        if not (info.success and info.exists and info.author):
            return record
        if info.author.lower() != job.wallet.lower():
            return record

        logger.info("Recipe %s hash already registered by the same author; treating as anchored", job.recipe_id)
        return replace(
            record,
            transaction_hash=info.transaction_hash,
            block_number=info.block_number,
            timestamp=info.timestamp,
            is_verified=True,
            verification_reason=None,
        )

    # ------------------------------------------------------------------
    # Inline create/update
    # ------------------------------------------------------------------

    def anchor_created(
        self,
        content: RecipeInput,
        wallet: Optional[str] = None,
        recipe_id: str = "",
    ) -> ProvenanceRecord:
        plan = self.plan_create(recipe_id, content, wallet)
        if plan.job is None:
            return plan.record
        return self.resolve(plan.job).record

    def anchor_updated(
        self,
        content: RecipeInput,
        wallet: Optional[str] = None,
        prior: Optional[ProvenanceRecord] = None,
        recipe_id: str = "",
    ) -> ProvenanceRecord:
        plan = self.plan_update(recipe_id, content, wallet, prior)
        if plan.job is None:
            return plan.record
        return self.resolve(plan.job).record
