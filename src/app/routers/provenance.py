# src/app/routers/provenance.py
"""
Provenance diagnostics and verification routes.
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from starlette.concurrency import run_in_threadpool

from src.app.deps import (
    CurrentUser,
    get_anchor_verifier,
    get_current_user,
    get_ledger_client,
    get_recipe_repository,
)
from src.app.domain.errors import RecipeRepositoryError
from src.app.domain.models import ProvenanceRecord
from src.app.infra.db.base import RecipeRepository
from src.app.infra.ledger.base import LedgerClient
from src.app.schemas.recipes import (
    AnchorVerificationResponse,
    ConnectionResponse,
    ProvenanceResponse,
    RecipeIntegrityResponse,
    RetryResponse,
)
from src.app.services.anchor_verifier import AnchorVerification, AnchorVerifier
from src.services import anchor_queue

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/provenance", tags=["Provenance"])


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def _verification_response(verification: AnchorVerification) -> AnchorVerificationResponse:
    return AnchorVerificationResponse(
        recipeHash=verification.recipe_hash,
        status=verification.status.value,
        exists=verification.exists,
        author=verification.author,
        timestamp=_iso(verification.timestamp),
        transactionHash=verification.transaction_hash,
        blockNumber=verification.block_number,
        error=verification.error,
    )


def _provenance_response(record: Optional[ProvenanceRecord]) -> Optional[ProvenanceResponse]:
    if record is None:
        return None
    doc = record.to_document()
    return ProvenanceResponse(**doc, state=record.state.value)


@router.get("/connection", response_model=ConnectionResponse)
async def check_connection(ledger: LedgerClient = Depends(get_ledger_client)) -> ConnectionResponse:
    result = await run_in_threadpool(ledger.check_connection)
    return ConnectionResponse(
        success=result.success,
        connected=result.connected,
        networkId=result.network_id,
        chainId=result.chain_id,
        url=result.url,
        error=result.error,
    )


@router.get("/hashes/{recipe_hash}", response_model=AnchorVerificationResponse)
async def verify_hash(
    recipe_hash: str,
    details: bool = Query(False, description="Include the registering transaction"),
    verifier: AnchorVerifier = Depends(get_anchor_verifier),
) -> AnchorVerificationResponse:
    lookup = verifier.details if details else verifier.lookup
    verification = await run_in_threadpool(lookup, recipe_hash)
    return _verification_response(verification)


@router.get("/recipes/{recipe_id}", response_model=RecipeIntegrityResponse)
async def check_recipe(
    recipe_id: str,
    repository: RecipeRepository = Depends(get_recipe_repository),
    verifier: AnchorVerifier = Depends(get_anchor_verifier),
) -> RecipeIntegrityResponse:
    try:
        stored = await run_in_threadpool(repository.get_recipe, recipe_id)
    except RecipeRepositoryError as exc:
        logger.error("Recipe lookup failed: %s", exc)
        raise HTTPException(status_code=502, detail=str(exc))
    if stored is None:
        raise HTTPException(status_code=404, detail="Recipe not found")

    report = await run_in_threadpool(verifier.check_recipe, stored.content, stored.provenance)
    return RecipeIntegrityResponse(
        recipeId=recipe_id,
        computedHash=report.computed_hash,
        storedHash=report.stored_hash,
        contentMatches=report.content_matches,
        authorMatches=report.author_matches,
        provenance=_provenance_response(stored.provenance),
        ledger=_verification_response(report.ledger),
    )


@router.post("/recipes/{recipe_id}/retry", response_model=RetryResponse)
async def retry_anchor(
    recipe_id: str,
    user: CurrentUser = Depends(get_current_user),
) -> RetryResponse:
    queued = await anchor_queue.retry(recipe_id)
    logger.info("Anchor retry requested: recipe=%s user=%s queued=%s", recipe_id, user.id, queued)
    return RetryResponse(recipeId=recipe_id, queued=queued)
