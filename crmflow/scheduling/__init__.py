from crmflow.scheduling.engine import (
    ExecutionEngine,
    ExecutionOutcome,
    OutcomeStatus,
    TickInProgressError,
    TickSummary,
)
from crmflow.scheduling.guard import should_skip
from crmflow.scheduling.recurrence import ScheduleSpec, compute_next_execution, next_execution_for
from crmflow.scheduling.selector import load_candidates, select_due

__all__ = [
    "ExecutionEngine",
    "ExecutionOutcome",
    "OutcomeStatus",
    "TickInProgressError",
    "TickSummary",
    "ScheduleSpec",
    "compute_next_execution",
    "next_execution_for",
    "should_skip",
    "load_candidates",
    "select_due",
]
