"""
Resumable encryption-state migration of users.mail and users.init.

    services = MigrationServices.build(db)
    planner = MigrationPlanner.from_services(services)
    planner.run(Operation.ENCRYPT)
"""
from .models import (
    Operation,
    InvocationContext,
    PlanMode,
    JobStatus,
    ProgressCursor,
    ResultSummary,
    CompletedSummary,
    BatchState,
    FieldChanges,
    FinalizeResult,
    PlanOutcome,
)
from .codec import RowCodec
from .runner import BatchRunner
from .finalizer import Finalizer
from .jobs import JobQueue
from .services import MigrationServices
from .planner import MigrationPlanner

__all__ = [
    'Operation',
    'InvocationContext',
    'PlanMode',
    'JobStatus',
    'ProgressCursor',
    'ResultSummary',
    'CompletedSummary',
    'BatchState',
    'FieldChanges',
    'FinalizeResult',
    'PlanOutcome',
    'RowCodec',
    'BatchRunner',
    'Finalizer',
    'JobQueue',
    'MigrationServices',
    'MigrationPlanner',
]
