from __future__ import annotations

from datetime import datetime, timezone

import pytest

from src.app.domain.errors import LedgerFailureKind
from src.app.domain.models import (
    AnchorJob,
    AnchorJobKind,
    AnchorResult,
    HashLookup,
    ProvenanceRecord,
    ProvenanceState,
    VerificationReason,
)
from src.app.services.provenance_orchestrator import ProvenanceOrchestrator, classify_failure
from src.app.services.recipe_hash import generate_recipe_hash

WALLET = "0x" + "aa" * 20
OTHER_WALLET = "0x" + "bb" * 20

RECIPE = {
    "title": "Phở Bò",
    "ingredients": [{"name": "Beef"}, {"name": "Rice noodles"}],
    "tags": ["soup", "beef"],
}
CHANGED = {**RECIPE, "title": "Phở Gà"}


@pytest.fixture
def orchestrator(ledger) -> ProvenanceOrchestrator:
    return ProvenanceOrchestrator(ledger)


def _anchored(content=RECIPE, wallet=WALLET) -> ProvenanceRecord:
    return ProvenanceRecord(
        recipe_hash=generate_recipe_hash(content),
        author_wallet_address=wallet,
        transaction_hash="0xold",
        block_number=3,
        timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
        is_verified=True,
    )


class TestClassifyFailure:
    def test_tagged_duplicate(self) -> None:
        result = AnchorResult.failed("rejected", LedgerFailureKind.DUPLICATE)

        assert classify_failure(result) == VerificationReason.HASH_ALREADY_EXISTS

    def test_untagged_duplicate_message(self) -> None:
        result = AnchorResult.failed("execution reverted: Recipe hash already registered")

        assert classify_failure(result) == VerificationReason.HASH_ALREADY_EXISTS

    def test_opaque_revert_with_duplicate_text(self) -> None:
        result = AnchorResult.failed("Hash already exists", LedgerFailureKind.REVERTED)

        assert classify_failure(result) == VerificationReason.HASH_ALREADY_EXISTS

    @pytest.mark.parametrize(
        "kind",
        [LedgerFailureKind.CONNECTION, LedgerFailureKind.TIMEOUT, LedgerFailureKind.TRANSACTION_FAILED],
    )
    def test_transport_failures(self, kind: LedgerFailureKind) -> None:
        result = AnchorResult.failed("socket hang up", kind)

        assert classify_failure(result) == VerificationReason.BLOCKCHAIN_ERROR

    def test_generic_error(self) -> None:
        assert classify_failure(AnchorResult.failed("Only author can update")) == VerificationReason.BLOCKCHAIN_ERROR


class TestAnchorCreated:
    def test_registration_succeeds(self, orchestrator, ledger) -> None:
        record = orchestrator.anchor_created(RECIPE, WALLET)

        assert record.is_verified
        assert record.transaction_hash == "0xtx1"
        assert record.block_number == 11
        assert record.verification_reason is None
        assert record.recipe_hash == generate_recipe_hash(RECIPE)
        assert record.author_wallet_address == WALLET
        assert ledger.register_calls == [(generate_recipe_hash(RECIPE), WALLET)]

    def test_duplicate_hash(self, orchestrator, ledger) -> None:
        ledger.fail_next_register("Recipe hash already registered", LedgerFailureKind.DUPLICATE)

        record = orchestrator.anchor_created(RECIPE, WALLET)

        assert not record.is_verified
        assert record.verification_reason == VerificationReason.HASH_ALREADY_EXISTS
        assert record.transaction_hash is None
        assert record.state == ProvenanceState.ANCHOR_FAILED

    def test_network_failure(self, orchestrator, ledger) -> None:
        ledger.fail_next_register("Cannot connect to ledger node", LedgerFailureKind.CONNECTION)

        record = orchestrator.anchor_created(RECIPE, WALLET)

        assert not record.is_verified
        assert record.verification_reason == VerificationReason.BLOCKCHAIN_ERROR
        assert record.recipe_hash == generate_recipe_hash(RECIPE)

    @pytest.mark.parametrize("wallet", [None, "", "   "])
    def test_no_wallet_makes_no_ledger_call(self, orchestrator, ledger, wallet) -> None:
        record = orchestrator.anchor_created(RECIPE, wallet)

        assert record.verification_reason == VerificationReason.NO_WALLET_ADDRESS
        assert not record.is_verified
        assert record.recipe_hash == generate_recipe_hash(RECIPE)
        assert ledger.calls == 0

    def test_ledger_exception_becomes_record(self, orchestrator, ledger) -> None:
        def _boom(recipe_hash, author):
            raise RuntimeError("unexpected")

        ledger.register_recipe_hash = _boom

        record = orchestrator.anchor_created(RECIPE, WALLET)

        assert not record.is_verified
        assert record.verification_reason == VerificationReason.BLOCKCHAIN_ERROR


class TestPlanUpdate:
    def test_unchanged_content_makes_no_ledger_call(self, orchestrator, ledger) -> None:
        prior = _anchored()

        plan = orchestrator.plan_update("r1", RECIPE, WALLET, prior)

        assert plan.job is None
        assert plan.record is prior
        assert not plan.content_changed
        assert ledger.calls == 0

    def test_unchanged_tag_order_is_not_a_change(self, orchestrator) -> None:
        reordered = {**RECIPE, "tags": ["beef", "soup"]}

        plan = orchestrator.plan_update("r1", reordered, WALLET, _anchored())

        assert plan.job is None

    def test_anchored_prior_yields_update_job(self, orchestrator) -> None:
        prior = _anchored()

        plan = orchestrator.plan_update("r1", CHANGED, WALLET, prior)

        assert plan.job is not None
        assert plan.job.kind == AnchorJobKind.UPDATE
        assert plan.job.old_hash == prior.recipe_hash
        assert plan.job.new_hash == generate_recipe_hash(CHANGED)
        assert plan.record.state == ProvenanceState.ANCHOR_PENDING
        assert plan.record.recipe_hash == generate_recipe_hash(CHANGED)
        assert not plan.record.is_verified

    def test_unanchored_prior_yields_registration(self, orchestrator) -> None:
        prior = ProvenanceRecord(
            recipe_hash=generate_recipe_hash(RECIPE),
            author_wallet_address=WALLET,
            verification_reason=VerificationReason.BLOCKCHAIN_ERROR,
        )

        plan = orchestrator.plan_update("r1", CHANGED, None, prior)

        assert plan.job.kind == AnchorJobKind.REGISTER
        assert plan.job.wallet == WALLET

    def test_falls_back_to_stored_wallet(self, orchestrator) -> None:
        plan = orchestrator.plan_update("r1", CHANGED, None, _anchored())

        assert plan.job.wallet == WALLET

    def test_request_wallet_wins(self, orchestrator) -> None:
        plan = orchestrator.plan_update("r1", CHANGED, OTHER_WALLET, _anchored())

        assert plan.job.wallet == OTHER_WALLET

    def test_no_wallet_anywhere(self, orchestrator) -> None:
        prior = ProvenanceRecord(
            recipe_hash=generate_recipe_hash(RECIPE),
            verification_reason=VerificationReason.NO_WALLET_ADDRESS,
        )

        plan = orchestrator.plan_update("r1", CHANGED, None, prior)

        assert plan.job is None
        assert plan.record.verification_reason == VerificationReason.NO_WALLET_ADDRESS
        assert plan.record.recipe_hash == generate_recipe_hash(CHANGED)

    def test_no_prior_registers(self, orchestrator) -> None:
        plan = orchestrator.plan_update("r1", CHANGED, WALLET, None)

        assert plan.job.kind == AnchorJobKind.REGISTER


class TestAnchorUpdated:
    def test_unchanged_content(self, orchestrator, ledger) -> None:
        prior = _anchored()

        record = orchestrator.anchor_updated(RECIPE, WALLET, prior)

        assert record == prior
        assert ledger.calls == 0

    def test_anchored_prior_calls_update_once(self, orchestrator, ledger) -> None:
        prior = _anchored()

        record = orchestrator.anchor_updated(CHANGED, WALLET, prior)

        assert ledger.update_calls == [(prior.recipe_hash, generate_recipe_hash(CHANGED), WALLET)]
        assert ledger.register_calls == []
        assert record.is_verified
        assert record.transaction_hash == "0xupd1"
        assert record.recipe_hash == generate_recipe_hash(CHANGED)

    def test_failed_update_is_unverified(self, orchestrator, ledger) -> None:
        ledger.update_results.append(AnchorResult.failed("Only author can update", LedgerFailureKind.REVERTED))

        record = orchestrator.anchor_updated(CHANGED, WALLET, _anchored())

        assert not record.is_verified
        assert record.verification_reason == VerificationReason.BLOCKCHAIN_ERROR
        assert record.recipe_hash == generate_recipe_hash(CHANGED)
        assert record.transaction_hash is None


class TestResolveRetries:
    def _job(self, attempts: int) -> AnchorJob:
        return AnchorJob(
            recipe_id="r1",
            kind=AnchorJobKind.REGISTER,
            new_hash=generate_recipe_hash(RECIPE),
            wallet=WALLET,
            attempts=attempts,
        )

    def test_first_attempt_duplicate_is_not_reconciled(self, orchestrator, ledger) -> None:
        ledger.fail_next_register("Recipe hash already registered", LedgerFailureKind.DUPLICATE)
        ledger.lookup_result = HashLookup(success=True, exists=True, author=WALLET)

        outcome = orchestrator.resolve(self._job(0))

        assert outcome.record.verification_reason == VerificationReason.HASH_ALREADY_EXISTS
        assert ledger.info_calls == []

    def test_retry_duplicate_by_same_author_is_anchored(self, orchestrator, ledger) -> None:
        ledger.fail_next_register("Recipe hash already registered", LedgerFailureKind.DUPLICATE)
        ledger.lookup_result = HashLookup(
            success=True,
            exists=True,
            author=WALLET.upper().replace("0X", "0x"),
            transaction_hash="0xfirst",
            block_number=4,
        )

        outcome = orchestrator.resolve(self._job(1))

        assert outcome.record.is_verified
        assert outcome.record.transaction_hash == "0xfirst"
        assert outcome.record.block_number == 4
        assert outcome.record.verification_reason is None

    def test_retry_duplicate_by_other_author_stays_failed(self, orchestrator, ledger) -> None:
        ledger.fail_next_register("Recipe hash already registered", LedgerFailureKind.DUPLICATE)
        ledger.lookup_result = HashLookup(success=True, exists=True, author=OTHER_WALLET)

        outcome = orchestrator.resolve(self._job(1))

        assert not outcome.record.is_verified
        assert outcome.record.verification_reason == VerificationReason.HASH_ALREADY_EXISTS

    def test_outcome_carries_result(self, orchestrator, ledger) -> None:
        ledger.fail_next_register("timed out", LedgerFailureKind.TIMEOUT)

        outcome = orchestrator.resolve(self._job(0))

        assert outcome.retryable
        assert outcome.job.recipe_id == "r1"
