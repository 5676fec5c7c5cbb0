"""Data models for field migrations."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Tuple
from uuid import UUID

from fieldcrypt.core.crypto.keys import KeyRef
from fieldcrypt.core.exceptions import InvalidOperationError


class Operation(str, Enum):
    """Crypto transform applied to every user."""
    ENCRYPT = "encrypt"
    DECRYPT = "decrypt"
    CHANGE = "change"      # Decrypt with the previous key; a separate encrypt pass follows

    @classmethod
    def parse(cls, value) -> "Operation":
        """Accept an Operation or its string value."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise InvalidOperationError(value, "operation") from None

    @property
    def key_ref(self) -> KeyRef:
        return KeyRef.PREVIOUS if self is Operation.CHANGE else KeyRef.CURRENT

    @property
    def label(self) -> str:
        return {
            Operation.ENCRYPT: "Encryption",
            Operation.DECRYPT: "Decryption",
            Operation.CHANGE: "Key change",
        }[self]


class InvocationContext(str, Enum):
    """Why a migration runs; decides the cleanup done once it finishes."""
    NONE = "none"
    UNINSTALL = "uninstall"
    CHANGE = "change"

    @classmethod
    def parse(cls, value) -> "InvocationContext":
        if value is None:
            return cls.NONE
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise InvalidOperationError(value, "context") from None


class PlanMode(str, Enum):
    """How the planner ran a migration."""
    EMPTY = "empty"
    INLINE = "inline"
    BATCH = "batch"


class JobStatus(str, Enum):
    """Lifecycle of a persisted migration job."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class ProgressCursor:
    """How far a migration has got through the users table."""
    processed_count: int = 0
    total_count: int = 0

    def advance(self, rows: int = 1):
        # Never run past the total, even if more rows turn up than were counted
        self.processed_count = min(self.processed_count + rows, self.total_count)

    def finish(self):
        self.processed_count = self.total_count

    @property
    def completion_fraction(self) -> float:
        if self.processed_count >= self.total_count:
            return 1.0
        return self.processed_count / self.total_count

    @property
    def finished(self) -> bool:
        return self.completion_fraction >= 1.0


@dataclass(frozen=True)
class CompletedSummary:
    """Read-only result handed to the finalizer."""
    total_users: int
    updated_user_ids: Tuple[Any, ...]
    operation: Operation
    context: InvocationContext
    failed_fields: int = 0
    failed_updates: int = 0

    @property
    def updated_count(self) -> int:
        return len(self.updated_user_ids)


@dataclass
class ResultSummary:
    """Outcome accumulated across every page of a migration."""
    total_users: int
    operation: Operation
    context: InvocationContext
    updated_user_ids: List[Any] = field(default_factory=list)
    failed_fields: int = 0
    failed_updates: int = 0

    @property
    def updated_count(self) -> int:
        return len(self.updated_user_ids)

    def freeze(self) -> CompletedSummary:
        return CompletedSummary(
            total_users=self.total_users,
            updated_user_ids=tuple(self.updated_user_ids),
            operation=self.operation,
            context=self.context,
            failed_fields=self.failed_fields,
            failed_updates=self.failed_updates,
        )


@dataclass
class BatchState:
    """
    Everything a batch step needs to pick up where the previous one stopped.

    Persisted as JSON between steps (see MigrationJob.state).
    """
    cursor: ProgressCursor
    summary: ResultSummary

    @property
    def finished(self) -> bool:
        return self.cursor.finished

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "processedCount": self.cursor.processed_count,
            "totalCount": self.cursor.total_count,
            "totalUsers": self.summary.total_users,
            "updatedUserIds": list(self.summary.updated_user_ids),
            "operation": self.summary.operation.value,
            "context": self.summary.context.value,
            "failedFields": self.summary.failed_fields,
            "failedUpdates": self.summary.failed_updates,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BatchState":
        """Create from dictionary."""
        return cls(
            cursor=ProgressCursor(
                processed_count=data.get("processedCount", 0),
                total_count=data.get("totalCount", 0),
            ),
            summary=ResultSummary(
                total_users=data.get("totalUsers", 0),
                operation=Operation.parse(data["operation"]),
                context=InvocationContext.parse(data.get("context")),
                updated_user_ids=list(data.get("updatedUserIds", [])),
                failed_fields=data.get("failedFields", 0),
                failed_updates=data.get("failedUpdates", 0),
            ),
        )


@dataclass
class FieldChanges:
    """Result of transforming one row: only the fields whose value changed."""
    updated_fields: dict[str, str] = field(default_factory=dict)
    failed_fields: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.updated_fields)


@dataclass
class FinalizeResult:
    """What the finalizer decided and did."""
    real_success: bool
    updated_count: int
    total_users: int
    cleanup_actions: List[str] = field(default_factory=list)
    cleanup_errors: List[str] = field(default_factory=list)


@dataclass
class PlanOutcome:
    """Returned by MigrationPlanner.run."""
    mode: PlanMode
    operation: Operation
    context: InvocationContext
    total_count: int = 0
    summary: Optional[CompletedSummary] = None
    job_id: Optional[UUID] = None
    finalize_result: Optional[FinalizeResult] = None
