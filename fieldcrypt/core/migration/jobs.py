"""
Database-backed job queue for batch migrations.

A job row carries the persisted BatchState. Each run_step() loads it, lets the
runner process one page, and commits the migrated users together with the new
state, so an interrupted job resumes from its last committed page.

pending -> processing -> completed | failed

The finalizer is called exactly once per job, when it reaches a terminal status.
At most one worker is expected to step a given job at a time.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional, Union

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from fieldcrypt.core.database.models import MigrationJob
from fieldcrypt.core.exceptions import JobNotFoundError
from fieldcrypt.core.migration.finalizer import Finalizer
from fieldcrypt.core.migration.models import (
    BatchState,
    FinalizeResult,
    InvocationContext,
    JobStatus,
    Operation,
    ResultSummary,
)
from fieldcrypt.core.migration.runner import BatchRunner

logger = logging.getLogger(__name__)

_TERMINAL = (JobStatus.COMPLETED.value, JobStatus.FAILED.value)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class JobQueue:
    """Stores migration jobs and steps them until they complete."""

    def __init__(self, db: Session, runner: BatchRunner, finalizer: Finalizer):
        self.db = db
        self.runner = runner
        self.finalizer = finalizer
        self.last_finalize_result: Optional[FinalizeResult] = None

    # ------------------------------------------------------------------
    # Queue management
    # ------------------------------------------------------------------

    def enqueue(self, operation: Operation, context: InvocationContext = InvocationContext.NONE) -> MigrationJob:
        job = MigrationJob(
            operation=Operation.parse(operation).value,
            context=InvocationContext.parse(context).value,
            status=JobStatus.PENDING.value,
        )
        self.db.add(job)
        self.db.commit()
        logger.info(f"Queued {job.operation} migration job {job.id} (context={job.context})")
        return job

    def get(self, job_id: Union[str, uuid.UUID]) -> MigrationJob:
        try:
            key = job_id if isinstance(job_id, uuid.UUID) else uuid.UUID(str(job_id))
        except ValueError:
            raise JobNotFoundError(job_id) from None
        job = self.db.get(MigrationJob, key)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def list(self, status: Optional[JobStatus] = None) -> List[MigrationJob]:
        query = select(MigrationJob).order_by(MigrationJob.created_at)
        if status is not None:
            query = query.where(MigrationJob.status == JobStatus(status).value)
        return list(self.db.execute(query).scalars())

    def pending(self) -> List[MigrationJob]:
        return [job for job in self.list() if job.status not in _TERMINAL]

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def run_step(self, job_id: Union[str, uuid.UUID]) -> MigrationJob:
        """
        Process one page of a job.

        Terminal jobs are returned untouched. An exception from the step marks
        the job failed and finalizes it with success=False.
        """
        job = self.get(job_id)
        if job.status in _TERMINAL:
            return job

        operation = Operation.parse(job.operation)
        context = InvocationContext.parse(job.context)
        state = BatchState.from_dict(job.state) if job.state else None

        try:
            state = self.runner.step(state, operation, context)
        except Exception as e:
            self.db.rollback()
            logger.exception(f"Migration job {job_id} failed during step {job.steps + 1}")
            return self._fail(job_id, e)

        if job.started_at is None:
            job.started_at = _now()
        job.status = JobStatus.PROCESSING.value
        job.state = state.to_dict()
        job.processed_count = state.cursor.processed_count
        job.total_count = state.cursor.total_count
        job.steps = (job.steps or 0) + 1
        # Users migrated on this page and the cursor that covers them commit together
        self.db.commit()

        if state.finished:
            self._complete(job, True, state.summary)
        return job

    def run(self, job_id: Union[str, uuid.UUID], max_steps: Optional[int] = None) -> MigrationJob:
        """Step a job until it reaches a terminal status (or max_steps pages)."""
        job = self.get(job_id)
        steps = 0
        while job.status not in _TERMINAL:
            if max_steps is not None and steps >= max_steps:
                logger.info(f"Job {job.id} paused after {steps} step(s) at {job.completion_fraction:.0%}")
                break
            job = self.run_step(job.id)
            steps += 1
        return job

    def run_pending(self) -> List[MigrationJob]:
        """Run every unfinished job to completion, oldest first."""
        return [self.run(job.id) for job in self.pending()]

    def _fail(self, job_id, error: Exception) -> MigrationJob:
        job = self.get(job_id)
        job.status = JobStatus.FAILED.value
        job.last_error = str(error)
        job.completed_at = _now()
        self.db.commit()

        if job.state:
            summary = BatchState.from_dict(job.state).summary
        else:
            # Failed before the first page was committed
            total = job.total_count or 0
            try:
                total = self.runner.store.count()
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.warning(f"Could not count users for failed job {job.id}: {e}")
            summary = ResultSummary(
                total_users=total,
                operation=Operation.parse(job.operation),
                context=InvocationContext.parse(job.context),
            )
        self._finalize(job, False, summary)
        return job

    def _complete(self, job: MigrationJob, success: bool, summary: ResultSummary):
        job.status = JobStatus.COMPLETED.value
        job.completed_at = _now()
        self.db.commit()
        logger.info(f"Migration job {job.id} completed after {job.steps} step(s)")
        self._finalize(job, success, summary)

    def _finalize(self, job: MigrationJob, success: bool, summary: ResultSummary):
        if job.finalized:
            return
        job.finalized = True
        self.db.commit()
        self.last_finalize_result = self.finalizer.finish(success, summary.freeze())
