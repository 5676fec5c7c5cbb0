"""
Row store for the users table.

Paged reads, keyed field updates and the two schema adjustments made when the
module is uninstalled. All statements run on the caller's session; committing
is the caller's job (the batch runner commits once per page).
"""
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence
import logging

import sqlalchemy as sa
from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from .models import User

logger = logging.getLogger(__name__)

PRIMARY_FIELD = "mail"
SECONDARY_FIELD = "init"
MIGRATED_FIELDS = (PRIMARY_FIELD, SECONDARY_FIELD)


@dataclass(frozen=True)
class UserRow:
    """The stored values of one user's migrated fields."""
    id: int
    mail: Optional[str]
    init: Optional[str]

    def get(self, field_name: str) -> Optional[str]:
        return getattr(self, field_name)


class RowStore:
    """Reads and writes users.mail / users.init by primary key."""

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def count(self) -> int:
        """Total number of user rows."""
        return self.db.execute(select(func.count()).select_from(User)).scalar() or 0

    def fetch_page(self, limit: int, offset: int) -> List[UserRow]:
        """
        One page of users ordered by id.

        Ordering by primary key keeps offset paging stable as long as nobody
        inserts or deletes users while a migration runs.
        """
        rows = self.db.execute(
            select(User.id, User.mail, User.init)
            .order_by(User.id)
            .limit(limit)
            .offset(offset)
        ).all()
        return [UserRow(id=row.id, mail=row.mail, init=row.init) for row in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def apply(self, user_id: int, changed_fields: Dict[str, str]) -> bool:
        """
        Write changed field values for one user.

        Returns:
            True if a row was updated, False for an empty change set or a missing user
        """
        values = {k: v for k, v in changed_fields.items() if k in MIGRATED_FIELDS}
        if not values:
            return False
        if len(values) != len(changed_fields):
            ignored = sorted(set(changed_fields) - set(values))
            logger.warning(f"Ignoring non-migrated fields for user {user_id}: {ignored}")

        result = self.db.execute(
            update(User).where(User.id == user_id).values(**values)
        )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Schema (administrative, uninstall only)
    # ------------------------------------------------------------------

    def _operations(self) -> Operations:
        return Operations(MigrationContext.configure(self.db.connection()))

    def widen_fields(self, length: int, fields: Sequence[str] = MIGRATED_FIELDS) -> List[str]:
        """
        Make sure the given columns hold at least `length` characters.

        Columns that are already wide enough (or unbounded) are left alone.

        Returns:
            Names of the columns that were altered
        """
        inspector = sa.inspect(self.db.connection())
        columns = {c["name"]: c for c in inspector.get_columns(User.__tablename__)}

        to_widen = []
        for name in fields:
            current = getattr(columns[name]["type"], "length", None)
            if current is not None and current < length:
                to_widen.append(name)

        if not to_widen:
            logger.info(f"Columns {list(fields)} already hold {length} characters")
            return []

        # batch_alter_table issues ALTER COLUMN on PostgreSQL and recreates the table on SQLite
        with self._operations().batch_alter_table(User.__tablename__) as batch:
            for name in to_widen:
                batch.alter_column(
                    name,
                    type_=sa.String(length),
                    existing_type=columns[name]["type"],
                    existing_nullable=columns[name]["nullable"],
                )
        logger.info(f"Widened users.{', users.'.join(to_widen)} to {length} characters")
        return to_widen

    def ensure_index(self, field_name: str, index_name: str) -> bool:
        """
        Create an index on a single users column unless one already exists.

        Returns:
            True if the index was created
        """
        inspector = sa.inspect(self.db.connection())
        for index in inspector.get_indexes(User.__tablename__):
            if list(index["column_names"]) == [field_name]:
                logger.info(f"Index {index['name']} already covers users.{field_name}")
                return False

        self._operations().create_index(index_name, User.__tablename__, [field_name])
        logger.info(f"Created index {index_name} on users.{field_name}")
        return True
