"""
Migration planner: runs small migrations inline, hands large ones to the job queue.

Both paths end in exactly one Finalizer.finish() call with the same summary shape.
"""
import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from fieldcrypt.core.config import Settings
from fieldcrypt.core.crypto.service import CryptoService
from fieldcrypt.core.database.row_store import RowStore
from fieldcrypt.core.messages import OperatorMessages
from fieldcrypt.core.migration.finalizer import Finalizer
from fieldcrypt.core.migration.jobs import JobQueue
from fieldcrypt.core.migration.models import (
    BatchState,
    InvocationContext,
    Operation,
    PlanMode,
    PlanOutcome,
    ResultSummary,
)
from fieldcrypt.core.migration.runner import BatchRunner
from fieldcrypt.core.migration.services import MigrationServices

logger = logging.getLogger(__name__)


class MigrationPlanner:
    """Decides between the inline path and a resumable batch job."""

    def __init__(
        self,
        store: RowStore,
        crypto: CryptoService,
        runner: BatchRunner,
        finalizer: Finalizer,
        queue: JobQueue,
        messages: OperatorMessages,
        inline_threshold: int = 15,
    ):
        self.store = store
        self.crypto = crypto
        self.runner = runner
        self.finalizer = finalizer
        self.queue = queue
        self.messages = messages
        self.inline_threshold = inline_threshold

    @classmethod
    def from_services(cls, services: MigrationServices, settings: Optional[Settings] = None) -> "MigrationPlanner":
        settings = settings or services.settings
        return cls(
            store=services.store,
            crypto=services.crypto,
            runner=services.runner,
            finalizer=services.finalizer,
            queue=services.queue,
            messages=services.messages,
            inline_threshold=settings.inline_threshold,
        )

    def run(
        self,
        operation,
        context=InvocationContext.NONE,
        force_batch: bool = False,
        run_now: bool = False,
    ) -> PlanOutcome:
        """
        Migrate every user with `operation`.

        Args:
            operation: Operation or its string value
            context: Why the migration runs (decides the cleanup afterwards)
            force_batch: Use a batch job even for small tables
            run_now: Step a queued batch job to completion before returning

        Raises:
            InvalidOperationError: unknown operation or context (nothing read or written)
            KeyNotFoundError / CryptoError: the key the operation needs is not usable
        """
        operation = Operation.parse(operation)
        context = InvocationContext.parse(context)

        total = self.store.count()
        if total == 0:
            self.messages.info(f"{operation.label}: no users found, nothing to do.")
            return PlanOutcome(mode=PlanMode.EMPTY, operation=operation, context=context)

        # Fail before touching any row if the key is not usable
        self.crypto.check(operation.key_ref)

        if not force_batch and total <= self.inline_threshold:
            return self._run_inline(operation, context, total)
        return self._run_batch(operation, context, total, run_now)

    def _run_inline(self, operation: Operation, context: InvocationContext, total: int) -> PlanOutcome:
        logger.info(f"Running {operation.value} inline for {total} users")
        try:
            state = self.runner.step(None, operation, context, page_size=max(total, 1))
            if not state.finished:
                # More users than counted; let the remaining pages run in the same call
                while not state.finished:
                    state = self.runner.step(state)
            self.store.db.commit()
        except SQLAlchemyError:
            self.store.db.rollback()
            logger.exception(f"Inline {operation.value} migration failed")
            self.finalizer.finish(False, ResultSummary(total_users=total, operation=operation, context=context))
            raise

        summary = state.summary.freeze()
        result = self.finalizer.finish(True, summary)
        return PlanOutcome(
            mode=PlanMode.INLINE,
            operation=operation,
            context=context,
            total_count=total,
            summary=summary,
            finalize_result=result,
        )

    def _run_batch(self, operation: Operation, context: InvocationContext, total: int, run_now: bool) -> PlanOutcome:
        job = self.queue.enqueue(operation, context)
        self.messages.info(
            f"{operation.label} of {total} users queued as job {job.id}.",
            f"python -m fieldcrypt jobs run {job.id}",
        )
        outcome = PlanOutcome(
            mode=PlanMode.BATCH,
            operation=operation,
            context=context,
            total_count=total,
            job_id=job.id,
        )
        if run_now:
            job = self.queue.run(job.id)
            if job.state:
                outcome.summary = BatchState.from_dict(job.state).summary.freeze()
            outcome.finalize_result = self.queue.last_finalize_result
        return outcome
