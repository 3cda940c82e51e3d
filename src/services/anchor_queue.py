from __future__ import annotations

import asyncio
import logging
from typing import Optional

from starlette.concurrency import run_in_threadpool

from src.app.config import settings
from src.app.domain.errors import LedgerFailureKind
from src.app.domain.models import (
    AnchorJob,
    AnchorJobKind,
    AnchorOutcome,
    AnchorResult,
    ProvenanceRecord,
    VerificationReason,
)
from src.app.infra.db.base import RecipeRepository
from src.app.services.provenance_orchestrator import ProvenanceOrchestrator

log = logging.getLogger("anchor_queue")


def _discard_late_outcome(task: "asyncio.Future[AnchorOutcome]") -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        log.error("anchor.worker_late_error error=%s", exc)


class AnchorQueue:
    """
    Resolves anchoring jobs off the request path.

    Content is already stored with a pending record when a job arrives; the
    worker only ever replaces that record, and only while the stored hash
    still matches the job. Delivery is at-least-once.
    """

    def __init__(
        self,
        orchestrator: ProvenanceOrchestrator,
        repository: RecipeRepository,
        max_attempts: int = 5,
        job_timeout_seconds: float = 120.0,
        retry_base_delay_seconds: float = 60.0,
        retry_max_delay_seconds: float = 300.0,
    ) -> None:
        self._orchestrator = orchestrator
        self._repository = repository
        self._queue: "asyncio.Queue[Optional[AnchorJob]]" = asyncio.Queue()
        self._worker: Optional[asyncio.Task[None]] = None
        self._lock = asyncio.Lock()
        self._retry_tasks: dict[asyncio.Task[None], tuple[AnchorJob, AnchorOutcome]] = {}
        self._max_attempts = max_attempts
        self._job_timeout = job_timeout_seconds
        self._retry_base_delay = retry_base_delay_seconds
        self._retry_max_delay = retry_max_delay_seconds

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    @property
    def pending_retries(self) -> int:
        return len(self._retry_tasks)

    async def start(self) -> None:
        async with self._lock:
            if self._worker and not self._worker.done():
                return
            self._worker = asyncio.create_task(self._run(), name="anchor-worker")

    async def stop(self) -> None:
        async with self._lock:
            await self._abandon_retries()
            if not self._worker:
                return
            await self._queue.put(None)
            try:
                await self._worker
            finally:
                self._worker = None
            # Jobs drained before the sentinel may have scheduled new retries.
            await self._abandon_retries()

    async def _abandon_retries(self) -> None:
        """Cancel scheduled retries and store their last failure, so no record stays pending."""
        abandoned = list(self._retry_tasks.items())
        self._retry_tasks.clear()
        for task, _ in abandoned:
            task.cancel()
        for _, (job, outcome) in abandoned:
            try:
                await self._persist(job, outcome)
            except Exception:
                log.exception("anchor.worker_stop_write_failed recipe=%s", job.recipe_id)

    async def join(self) -> None:
        """Wait until queued jobs and scheduled retries are all processed."""
        while True:
            await self._queue.join()
            if not self._retry_tasks:
                return
            await asyncio.gather(*list(self._retry_tasks), return_exceptions=True)

    async def enqueue(self, job: AnchorJob) -> None:
        log.info(
            "anchor.enqueued recipe=%s kind=%s hash=%s attempt=%s",
            job.recipe_id,
            job.kind.value,
            job.new_hash,
            job.attempts,
        )
        await self._queue.put(job)

    async def retry(self, recipe_id: str) -> bool:
        """Re-submit the current hash of a recipe whose anchoring did not succeed."""
        stored = await run_in_threadpool(self._repository.get_recipe, recipe_id)
        if stored is None or stored.provenance is None:
            return False
        record = stored.provenance
        if record.is_verified or not record.author_wallet_address:
            return False

        pending = ProvenanceRecord(
            recipe_hash=record.recipe_hash,
            author_wallet_address=record.author_wallet_address,
        )
        written = await run_in_threadpool(
            self._repository.save_provenance_if_current,
            recipe_id,
            record.recipe_hash,
            pending,
        )
        if not written:
            return False

        job = AnchorJob(
            recipe_id=recipe_id,
            kind=AnchorJobKind.REGISTER,
            new_hash=record.recipe_hash,
            wallet=record.author_wallet_address,
            attempts=1,
        )
        await self.enqueue(job)
        return True

    async def _run(self) -> None:
        while True:
            job = await self._queue.get()
            if job is None:
                self._queue.task_done()
                break
            try:
                await self._process_job(job)
            except Exception:
                log.exception("anchor.worker_unexpected_error recipe=%s", job.recipe_id)
            finally:
                self._queue.task_done()

    async def _resolve(self, job: AnchorJob) -> AnchorOutcome:
        task = asyncio.ensure_future(run_in_threadpool(self._orchestrator.resolve, job))
        done, _ = await asyncio.wait({task}, timeout=self._job_timeout)
        if task in done:
            return task.result()

        # Worker threads cannot be interrupted; the late outcome is discarded.
        task.add_done_callback(_discard_late_outcome)
        message = f"Anchoring timed out after {self._job_timeout}s"
        log.warning("anchor.worker_timeout recipe=%s hash=%s", job.recipe_id, job.new_hash)
        return AnchorOutcome(
            record=ProvenanceRecord(
                recipe_hash=job.new_hash,
                author_wallet_address=job.wallet,
                verification_reason=VerificationReason.BLOCKCHAIN_ERROR,
            ),
            result=AnchorResult.failed(message, LedgerFailureKind.TIMEOUT),
            job=job,
        )

    async def _process_job(self, job: AnchorJob) -> None:
        outcome = await self._resolve(job)

        if outcome.retryable and job.attempts + 1 < self._max_attempts:
            self._schedule(job, outcome)
            return
        await self._persist(job, outcome)

    async def _persist(self, job: AnchorJob, outcome: AnchorOutcome) -> None:
        written = await run_in_threadpool(
            self._repository.save_provenance_if_current,
            job.recipe_id,
            job.new_hash,
            outcome.record,
        )
        if not written:
            log.info("anchor.worker_stale recipe=%s hash=%s", job.recipe_id, job.new_hash)
            return
        if outcome.record.is_verified:
            log.info(
                "anchor.worker_done recipe=%s tx=%s", job.recipe_id, outcome.record.transaction_hash
            )
        else:
            log.error(
                "anchor.worker_failed recipe=%s reason=%s error=%s",
                job.recipe_id,
                outcome.record.verification_reason.value if outcome.record.verification_reason else None,
                outcome.result.error if outcome.result else None,
            )

    def _schedule(self, job: AnchorJob, outcome: AnchorOutcome) -> None:
        delay = min(self._retry_base_delay * (job.attempts + 1), self._retry_max_delay)
        log.warning(
            "anchor.worker_retry recipe=%s attempt=%s delay=%ss error=%s",
            job.recipe_id,
            job.attempts,
            delay,
            outcome.result.error if outcome.result else None,
        )
        task = asyncio.create_task(self._schedule_retry(job.next_attempt(), delay))
        self._retry_tasks[task] = (job, outcome)
        task.add_done_callback(lambda done: self._retry_tasks.pop(done, None))

    async def _schedule_retry(self, job: AnchorJob, delay: float) -> None:
        await asyncio.sleep(delay)
        await self._queue.put(job)


_ANCHOR_QUEUE: Optional[AnchorQueue] = None


def get_queue() -> AnchorQueue:
    global _ANCHOR_QUEUE
    if _ANCHOR_QUEUE is None:
        from src.app.deps import get_orchestrator, get_recipe_repository

        _ANCHOR_QUEUE = AnchorQueue(
            get_orchestrator(),
            get_recipe_repository(),
            max_attempts=settings.ANCHOR_MAX_ATTEMPTS,
            job_timeout_seconds=settings.ANCHOR_JOB_TIMEOUT_SECONDS,
        )
    return _ANCHOR_QUEUE


async def start_worker() -> None:
    await get_queue().start()


async def stop_worker() -> None:
    global _ANCHOR_QUEUE
    if _ANCHOR_QUEUE is None:
        return
    await _ANCHOR_QUEUE.stop()
    _ANCHOR_QUEUE = None


async def enqueue(job: AnchorJob) -> None:
    await get_queue().enqueue(job)


async def retry(recipe_id: str) -> bool:
    queue = get_queue()
    await queue.start()
    return await queue.retry(recipe_id)
