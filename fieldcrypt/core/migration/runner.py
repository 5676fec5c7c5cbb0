"""
Batch runner: migrates one page of users per step.

The runner keeps no state of its own. Each call to step() takes the BatchState
returned by the previous call (or None to start) and returns the advanced
state, so a scheduler can persist it between calls and resume later.
"""
import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from fieldcrypt.core.database.row_store import RowStore, UserRow
from fieldcrypt.core.migration.codec import RowCodec
from fieldcrypt.core.migration.models import (
    BatchState,
    InvocationContext,
    Operation,
    ProgressCursor,
    ResultSummary,
)

logger = logging.getLogger(__name__)


class BatchRunner:
    """Chunked execution of a field migration over the users table."""

    def __init__(self, store: RowStore, codec: RowCodec, page_size: int = 15):
        if page_size < 1:
            raise ValueError("page_size must be at least 1")
        self.store = store
        self.codec = codec
        self.page_size = page_size

    def start(self, operation: Operation, context: InvocationContext = InvocationContext.NONE) -> BatchState:
        """Fresh state: cursor at 0, total taken from the row store."""
        total = self.store.count()
        logger.info(f"Starting {operation.value} migration over {total} users (context={context.value})")
        return BatchState(
            cursor=ProgressCursor(processed_count=0, total_count=total),
            summary=ResultSummary(total_users=total, operation=operation, context=context),
        )

    def step(
        self,
        state: Optional[BatchState] = None,
        operation: Optional[Operation] = None,
        context: InvocationContext = InvocationContext.NONE,
        page_size: Optional[int] = None,
    ) -> BatchState:
        """
        Process one page starting at the cursor.

        Args:
            state: State returned by the previous step, or None on the first call
            operation: Required when state is None
            context: Invocation context recorded on a new state
            page_size: Override for this step only (the inline path covers every row at once)

        Returns:
            The advanced state; state.finished is the only completion signal
        """
        if state is None:
            if operation is None:
                raise ValueError("operation is required to start a migration")
            state = self.start(Operation.parse(operation), InvocationContext.parse(context))

        if state.finished:
            return state

        limit = page_size or self.page_size
        offset = state.cursor.processed_count
        rows = self.store.fetch_page(limit, offset)

        if not rows:
            # Fewer users than counted at start (some were deleted meanwhile)
            logger.warning(
                f"No users at offset {offset} of {state.cursor.total_count} - treating migration as complete"
            )
            state.cursor.finish()
            return state

        for row in rows:
            self._process_row(row, state)
            state.cursor.advance()

        logger.info(
            f"{state.summary.operation.label}: processed {state.cursor.processed_count}/"
            f"{state.cursor.total_count} users ({state.cursor.completion_fraction:.0%}), "
            f"{state.summary.updated_count} updated"
        )
        return state

    def _process_row(self, row: UserRow, state: BatchState):
        summary = state.summary
        changes = self.codec.transform(row, summary.operation)
        summary.failed_fields += len(changes.failed_fields)
        if not changes.changed:
            return

        try:
            # Savepoint per user so one failed UPDATE doesn't poison the page
            with self.store.db.begin_nested():
                written = self.store.apply(row.id, changes.updated_fields)
        except SQLAlchemyError as e:
            summary.failed_updates += 1
            logger.error(f"Failed to update user {row.id}: {e}")
            return

        if written:
            summary.updated_user_ids.append(row.id)
        else:
            summary.failed_updates += 1
            logger.warning(f"User {row.id} disappeared before it could be updated")
