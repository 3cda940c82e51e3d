# src/app/services/recipe_provenance_service.py
"""
Recipe write path with provenance.

Responsibilities:
- Persist content first, together with a record whose hash matches it
- Anchor the hash inline or hand it to the anchor queue
- Never let anchoring turn a successful content write into a failure
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional

from starlette.concurrency import run_in_threadpool

from src.app.domain.models import ProvenancePlan, ProvenanceRecord
from src.app.infra.db.base import RecipeRepository
from src.app.schemas.recipes import RecipeContent
from src.app.services.provenance_orchestrator import ProvenanceOrchestrator
from src.app.services.recipe_hash import RecipeInput

if TYPE_CHECKING:
    from src.services.anchor_queue import AnchorQueue

logger = logging.getLogger(__name__)


@dataclass
class RecipeWriteResult:
    recipe_id: str
    content: dict[str, Any]
    provenance: ProvenanceRecord
    anchor_queued: bool = False


def _content_document(content: RecipeInput) -> dict[str, Any]:
    if isinstance(content, RecipeContent):
        return content.to_document()
    return RecipeContent.model_validate(dict(content)).to_document()


class RecipeProvenanceService:
    def __init__(
        self,
        repository: RecipeRepository,
        orchestrator: ProvenanceOrchestrator,
        queue: Optional["AnchorQueue"] = None,
        mode: str = "inline",
    ):
        if mode not in ("inline", "queued"):
            raise ValueError(f"Unknown anchor mode: {mode}")
        self._repo = repository
        self._orchestrator = orchestrator
        self._queue = queue
        self._mode = mode

    @property
    def mode(self) -> str:
        return self._mode

    async def create(
        self,
        recipe_id: str,
        content: RecipeInput,
        author_wallet: Optional[str] = None,
    ) -> RecipeWriteResult:
        """Store a new recipe, anchoring it the way the configured mode says."""
        if self._mode == "queued":
            return await self.create_recipe_queued(recipe_id, content, author_wallet)
        return await run_in_threadpool(self.create_recipe, recipe_id, content, author_wallet)

    async def update(
        self,
        recipe_id: str,
        content: RecipeInput,
        author_wallet: Optional[str] = None,
    ) -> RecipeWriteResult:
        if self._mode == "queued":
            return await self.update_recipe_queued(recipe_id, content, author_wallet)
        return await run_in_threadpool(self.update_recipe, recipe_id, content, author_wallet)

    # ------------------------------------------------------------------
    # Inline anchoring
    # ------------------------------------------------------------------

    def create_recipe(
        self,
        recipe_id: str,
        content: RecipeInput,
        author_wallet: Optional[str] = None,
    ) -> RecipeWriteResult:
        """
        Store a new recipe and anchor its hash before returning.

        Args:
            recipe_id: Id assigned by the recipe store
            content: Recipe content
            author_wallet: Optional author wallet address

        Returns:
            RecipeWriteResult with the final provenance record
        """
        document = _content_document(content)
        plan = self._orchestrator.plan_create(recipe_id, document, author_wallet)
        return self._write_inline(recipe_id, document, plan)

    def update_recipe(
        self,
        recipe_id: str,
        content: RecipeInput,
        author_wallet: Optional[str] = None,
    ) -> RecipeWriteResult:
        document = _content_document(content)
        prior = self._repo.get_provenance(recipe_id)
        plan = self._orchestrator.plan_update(recipe_id, document, author_wallet, prior)
        return self._write_inline(recipe_id, document, plan)

    def _write_inline(self, recipe_id: str, document: dict[str, Any], plan: ProvenancePlan) -> RecipeWriteResult:
        self._repo.save_content(recipe_id, document, plan.record)

        if plan.job is None:
            return RecipeWriteResult(recipe_id=recipe_id, content=document, provenance=plan.record)

        outcome = self._orchestrator.resolve(plan.job)
        try:
            written = self._repo.save_provenance_if_current(recipe_id, plan.job.new_hash, outcome.record)
        except Exception:
            # Content is already committed with a pending record; keep the write successful.
            logger.exception("Failed to store provenance for recipe %s", recipe_id)
            return RecipeWriteResult(recipe_id=recipe_id, content=document, provenance=plan.record)

        if not written:
            # Newer content replaced ours while anchoring; its record is what is stored.
            logger.info("Dropped stale provenance for recipe %s hash=%s", recipe_id, plan.job.new_hash)
            return RecipeWriteResult(recipe_id=recipe_id, content=document, provenance=plan.record)

        return RecipeWriteResult(recipe_id=recipe_id, content=document, provenance=outcome.record)

    # ------------------------------------------------------------------
    # Queued anchoring
    # ------------------------------------------------------------------

    async def create_recipe_queued(
        self,
        recipe_id: str,
        content: RecipeInput,
        author_wallet: Optional[str] = None,
    ) -> RecipeWriteResult:
        """Store the recipe and return immediately with a pending record."""
        document = _content_document(content)
        plan = self._orchestrator.plan_create(recipe_id, document, author_wallet)
        return await self._write_queued(recipe_id, document, plan)

    async def update_recipe_queued(
        self,
        recipe_id: str,
        content: RecipeInput,
        author_wallet: Optional[str] = None,
    ) -> RecipeWriteResult:
        document = _content_document(content)
        prior = await run_in_threadpool(self._repo.get_provenance, recipe_id)
        plan = self._orchestrator.plan_update(recipe_id, document, author_wallet, prior)
        return await self._write_queued(recipe_id, document, plan)

    async def _write_queued(self, recipe_id: str, document: dict[str, Any], plan: ProvenancePlan) -> RecipeWriteResult:
        if self._queue is None:
            raise RuntimeError("Anchor queue is not configured for queued writes")

        await run_in_threadpool(self._repo.save_content, recipe_id, document, plan.record)

        if plan.job is None:
            return RecipeWriteResult(recipe_id=recipe_id, content=document, provenance=plan.record)

        try:
            await self._queue.enqueue(plan.job)
        except Exception:
            logger.exception("Failed to enqueue anchoring for recipe %s", recipe_id)
            return RecipeWriteResult(recipe_id=recipe_id, content=document, provenance=plan.record)

        return RecipeWriteResult(
            recipe_id=recipe_id,
            content=document,
            provenance=plan.record,
            anchor_queued=True,
        )
