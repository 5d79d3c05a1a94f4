"""
Batch Processor
Drains render batches: claim a batch, render its pending jobs, record outcomes.

Any number of processors may run at once. Every batch and job status change
is a conditional UPDATE on the expected prior status, so two workers can
never both own the same batch or job. Ledger effects were applied at
admission; nothing here touches balances.
"""

import logging
import socket
import os
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from redis.exceptions import RedisError
from sqlalchemy import and_, func, or_, update
from sqlalchemy.orm import Session

from modelsnap.core.config import settings
from modelsnap.core.database import SessionLocal
from modelsnap.core.exceptions import InvalidStateError, NotFoundError, PipelineError, ValidationError
from modelsnap.models.job import (
    BatchPriority,
    BatchStatus,
    JobKind,
    JobStatus,
    RenderBatch,
    RenderJob,
    derive_batch_status,
)
from modelsnap.models.model_profile import ModelProfile
from modelsnap.workers.base import BaseWorker

logger = logging.getLogger(__name__)

ABANDON_MESSAGE = "Abandoned by administrator"


def default_worker_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


class BatchProcessor(BaseWorker):
    """
    One drain pass per ``process_next_batch`` call.

    Collaborators are injected so the loop can be driven with fakes:
        renderer: ``render(garment_url, model_image_url)`` and ``download_output(url)``
        storage: ``upload_bytes(data, path, content_type)``
        notifier: ``notify_completion(user_id, output_ref, kind)``
        dispatcher: ``enqueue_batch_drain(batch_id, priority, delay_seconds)``
    """

    TASK_NAME = "batch_drain"

    def __init__(
        self,
        renderer,
        storage,
        notifier=None,
        dispatcher=None,
        session_factory: Callable[[], Session] = SessionLocal,
        worker_id: Optional[str] = None,
        max_retries: Optional[int] = None,
    ):
        super().__init__()
        self.renderer = renderer
        self.storage = storage
        self.notifier = notifier
        self.dispatcher = dispatcher
        self.session_factory = session_factory
        self.worker_id = worker_id or default_worker_id()
        self.max_retries = settings.MAX_JOB_RETRIES if max_retries is None else max_retries

    # ------------------------------------------------------------------
    # Claiming
    # ------------------------------------------------------------------

    def claim_next_batch(self, db: Session) -> Optional[RenderBatch]:
        """
        Claim the oldest highest-priority batch that is pending, or whose
        processing claim has gone stale.
        """
        now = datetime.utcnow()
        stale_cutoff = now - timedelta(seconds=settings.STALE_BATCH_SECONDS)

        candidates = (
            db.query(RenderBatch)
            .filter(
                or_(
                    RenderBatch.status == BatchStatus.PENDING.value,
                    and_(
                        RenderBatch.status == BatchStatus.PROCESSING.value,
                        RenderBatch.updated_at <= stale_cutoff,
                    ),
                )
            )
            .order_by(RenderBatch.priority_rank.desc(), RenderBatch.created_at.asc())
            .limit(10)
            .all()
        )

        for candidate in candidates:
            prior_status = candidate.status
            stmt = update(RenderBatch).where(
                RenderBatch.id == candidate.id,
                RenderBatch.status == prior_status,
            )
            if prior_status == BatchStatus.PROCESSING.value:
                stmt = stmt.where(RenderBatch.updated_at == candidate.updated_at)

            result = db.execute(
                stmt.values(
                    status=BatchStatus.PROCESSING.value,
                    processed_by=self.worker_id,
                    started_at=candidate.started_at or now,
                    updated_at=now,
                ).execution_options(synchronize_session=False)
            )
            db.commit()

            if result.rowcount == 1:
                if prior_status == BatchStatus.PROCESSING.value:
                    logger.warning(f"[Drain] Reclaimed stale batch {candidate.id}")
                    self._recover_stuck_jobs(db, candidate.id)
                return db.get(RenderBatch, candidate.id)

            logger.debug(f"[Drain] Lost claim race for batch {candidate.id}")

        return None

    def _recover_stuck_jobs(self, db: Session, batch_id: str):
        """Jobs left processing by a dead worker count as a failed attempt."""
        stuck = (
            db.query(RenderJob)
            .filter(RenderJob.batch_id == batch_id, RenderJob.status == JobStatus.PROCESSING.value)
            .all()
        )
        for job in stuck:
            self._record_failure(db, job, "Worker stopped while rendering")

    # ------------------------------------------------------------------
    # Job transitions
    # ------------------------------------------------------------------

    def _record_failure(self, db: Session, job: RenderJob, message: str, retryable: bool = True) -> bool:
        """
        processing -> pending (retry_count + 1) while below the cap,
        processing -> failed otherwise or when the error is not retryable.

        Returns:
            True if the job is now terminally failed
        """
        next_retry = job.retry_count + 1
        terminal = not retryable or next_retry >= self.max_retries
        values: Dict[str, Any] = {
            "retry_count": next_retry,
            "error_message": message[:1000],
            "status": JobStatus.FAILED.value if terminal else JobStatus.PENDING.value,
        }
        if terminal:
            values["completed_at"] = datetime.utcnow()

        result = db.execute(
            update(RenderJob)
            .where(
                RenderJob.id == job.id,
                RenderJob.status == JobStatus.PROCESSING.value,
                RenderJob.retry_count == job.retry_count,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        db.commit()

        if result.rowcount == 0:
            logger.warning(f"[Drain] Job {job.id} changed state while failing; leaving it")
            return False

        if terminal:
            logger.error(f"[Drain] Job {job.id} failed permanently after {next_retry} attempt(s): {message}")
        else:
            logger.warning(f"[Drain] Job {job.id} requeued ({next_retry}/{self.max_retries}): {message}")
        return terminal

    def _resolve_model_image(self, db: Session, job: RenderJob) -> str:
        if job.job_kind is JobKind.AI_AVATAR:
            if not job.model_image_url:
                raise ValidationError(f"Job {job.id} has no avatar image")
            return job.model_image_url

        model = db.get(ModelProfile, job.model_id)
        image = model.primary_reference_image if model else None
        if not image:
            raise ValidationError(
                f"Model {job.model_id} has no reference image",
                code="MODEL_IMAGE_MISSING",
            )
        return image

    async def process_job(self, db: Session, job_id: str) -> Optional[bool]:
        """
        Render one pending job.

        Returns:
            True on success, False on failure, None when another worker
            (or an administrator) got to the job first
        """
        claimed = db.execute(
            update(RenderJob)
            .where(RenderJob.id == job_id, RenderJob.status == JobStatus.PENDING.value)
            .values(status=JobStatus.PROCESSING.value, started_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        db.commit()
        if claimed.rowcount == 0:
            logger.debug(f"[Drain] Job {job_id} is no longer pending, skipping")
            return None

        job = db.get(RenderJob, job_id)

        try:
            model_image_url = self._resolve_model_image(db, job)
            result = await self.renderer.render(job.garment_image_url, model_image_url)
            image_bytes = await self.renderer.download_output(result.output_url)
            output_ref = await self.storage.upload_bytes(
                image_bytes,
                f"renders/{job.business_id}/{job.id}.jpg",
                "image/jpeg",
            )
        except PipelineError as e:
            self._record_failure(db, job, e.message, retryable=e.retryable)
            return False
        except Exception as e:
            logger.exception(f"[Drain] Unexpected error rendering {job_id}")
            self._record_failure(db, job, f"Unexpected error: {e}")
            return False

        completed = db.execute(
            update(RenderJob)
            .where(RenderJob.id == job_id, RenderJob.status == JobStatus.PROCESSING.value)
            .values(
                status=JobStatus.COMPLETED.value,
                output_url=output_ref,
                external_id=result.external_id,
                model_image_url=model_image_url,
                error_message=None,
                completed_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        db.commit()

        if completed.rowcount == 0:
            logger.warning(f"[Drain] Job {job_id} was abandoned mid-render; output discarded")
            return None

        logger.info(f"[Drain] Job {job_id} completed -> {output_ref}")
        if self.notifier is not None:
            self.notifier.notify_completion(job.business_id, output_ref, job.kind)
        return True

    # ------------------------------------------------------------------
    # Batch aggregation
    # ------------------------------------------------------------------

    def refresh_batch(self, db: Session, batch_id: str, holding_claim: bool = False) -> RenderBatch:
        """
        Recompute counts and status from the batch's job rows.

        While a worker holds the claim the batch stays ``processing`` even if
        only pending jobs remain, so no one else claims it mid-pass.
        """
        statuses: List[str] = [
            row[0] for row in db.query(RenderJob.status).filter(RenderJob.batch_id == batch_id).all()
        ]
        status = derive_batch_status(statuses)
        if holding_claim and status == BatchStatus.PENDING:
            status = BatchStatus.PROCESSING

        values: Dict[str, Any] = {
            "status": status.value,
            "total_count": len(statuses),
            "completed_count": statuses.count(JobStatus.COMPLETED.value),
            "failed_count": statuses.count(JobStatus.FAILED.value),
            "processing_count": statuses.count(JobStatus.PROCESSING.value),
            "updated_at": datetime.utcnow(),
        }
        if status in (BatchStatus.COMPLETED, BatchStatus.FAILED):
            values["completed_at"] = func.coalesce(RenderBatch.completed_at, datetime.utcnow())
        else:
            values["completed_at"] = None

        db.execute(
            update(RenderBatch)
            .where(RenderBatch.id == batch_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return db.get(RenderBatch, batch_id)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def process_next_batch(self) -> Optional[Dict[str, Any]]:
        """
        Claim one batch and render its pending jobs once.

        Returns:
            Summary of the pass, or None when nothing was claimable
        """
        db = self.session_factory()
        try:
            batch = self.claim_next_batch(db)
            if batch is None:
                logger.debug("[Drain] No claimable batches")
                return None

            batch_id = batch.id
            priority = BatchPriority(batch.priority)
            self._log_start(self.TASK_NAME, batch_id=batch_id, worker=self.worker_id)

            job_ids = [
                row[0]
                for row in db.query(RenderJob.id)
                .filter(RenderJob.batch_id == batch_id, RenderJob.status == JobStatus.PENDING.value)
                .order_by(RenderJob.position)
                .all()
            ]

            outcomes = {"completed": 0, "failed": 0, "skipped": 0}
            for job_id in job_ids:
                outcome = await self.process_job(db, job_id)
                if outcome is None:
                    outcomes["skipped"] += 1
                elif outcome:
                    outcomes["completed"] += 1
                else:
                    outcomes["failed"] += 1
                self.refresh_batch(db, batch_id, holding_claim=True)

            batch = self.refresh_batch(db, batch_id)
            if batch.status == BatchStatus.PENDING.value:
                self._schedule_redrain(batch_id, priority)

            summary = {"batch_id": batch_id, "status": batch.status, **outcomes}
            self._log_complete(self.TASK_NAME, f"Batch {batch_id}: {outcomes}")
            return summary
        except Exception as e:
            # Per-job errors never get here; this is the database or the claim itself
            self._log_error(self.TASK_NAME, e)
            raise
        finally:
            db.close()

    def _schedule_redrain(self, batch_id: str, priority: BatchPriority, delay_seconds: Optional[int] = None):
        if self.dispatcher is None:
            return
        if delay_seconds is None:
            delay_seconds = settings.DRAIN_REQUEUE_DELAY
        try:
            self.dispatcher.enqueue_batch_drain(batch_id, priority=priority, delay_seconds=delay_seconds)
        except RedisError as e:
            logger.error(f"[Drain] Could not schedule re-drain for batch {batch_id}: {e}")

    def abandon_batch(self, db: Session, batch_id: str, reason: str = ABANDON_MESSAGE) -> RenderBatch:
        """
        Fail every non-terminal job of a batch. A render already in flight is
        not cancelled; its result is discarded when it returns.
        """
        if db.get(RenderBatch, batch_id) is None:
            raise NotFoundError("Batch not found", code="BATCH_NOT_FOUND")

        result = db.execute(
            update(RenderJob)
            .where(
                RenderJob.batch_id == batch_id,
                RenderJob.status.in_([JobStatus.PENDING.value, JobStatus.PROCESSING.value]),
            )
            .values(status=JobStatus.FAILED.value, error_message=reason, completed_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        db.commit()
        logger.warning(f"[Drain] Batch {batch_id} abandoned: {result.rowcount} job(s) failed")
        return self.refresh_batch(db, batch_id)

    def retry_failed_job(self, db: Session, job_id: str) -> RenderJob:
        """
        Put a terminally failed job back in the queue with a fresh retry budget.

        The job was paid for at admission, so the ledger is not touched. The
        batch is recomputed (a finished batch reopens as pending) and a drain
        is enqueued right away.
        """
        job = db.get(RenderJob, job_id)
        if job is None:
            raise NotFoundError("Job not found")

        result = db.execute(
            update(RenderJob)
            .where(RenderJob.id == job_id, RenderJob.status == JobStatus.FAILED.value)
            .values(
                status=JobStatus.PENDING.value,
                retry_count=0,
                error_message=None,
                started_at=None,
                completed_at=None,
            )
            .execution_options(synchronize_session=False)
        )
        db.commit()
        if result.rowcount == 0:
            raise InvalidStateError(
                f"Only failed jobs can be retried (job is {job.status})",
                code="JOB_NOT_FAILED",
            )

        logger.info(f"[Drain] Job {job_id} manually requeued")
        batch = self.refresh_batch(db, job.batch_id)
        self._schedule_redrain(batch.id, BatchPriority(batch.priority), delay_seconds=0)
        db.refresh(job)
        return job
