"""
Reconciliation of released actual values.
"""

from .reconciliation_scheduler import (
    CancellationToken,
    ReconciliationScheduler,
    ReconciliationTask,
    SweepReport,
    TaskState,
)

__all__ = [
    "CancellationToken",
    "ReconciliationScheduler",
    "ReconciliationTask",
    "SweepReport",
    "TaskState",
]
