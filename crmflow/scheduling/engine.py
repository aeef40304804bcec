"""
Execution engine.

Runs due automations: one tick selects the due set against a single `now`
snapshot, then each automation is claimed, guarded, dispatched to its
handler, recorded and rescheduled. Failures are isolated per automation;
the tick always returns a summary with one outcome per due automation.

Per-automation flow:
1. Claim: compare-and-swap next_execution_at from the observed value to a
   lease in the future, so overlapping ticks cannot both dispatch it.
2. Guard: ONCE automations that already fired are skipped and cleaned up.
3. Dispatch: RUNNING execution record, handler call under a timeout.
4. Record: close the execution, update statistics, reschedule, commit.
"""

import asyncio
import enum
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from crmflow.config import AppConfig, get_config
from crmflow.core.datetime_utils import hours_between, utc_now
from crmflow.core.logging import get_logger
from crmflow.models.automation import (
    Automation,
    AutomationExecution,
    ExecutionStatus,
    ScheduleType,
)
from crmflow.scheduling.guard import ONCE_GUARD_WINDOW, should_skip
from crmflow.scheduling.recurrence import (
    ONCE_GRACE_WINDOW,
    CronEvaluator,
    croniter_evaluator,
    next_execution_for,
)
from crmflow.scheduling.selector import load_candidates, select_due
from crmflow.services.handlers import (
    HandlerError,
    HandlerRegistry,
    HandlerRequest,
    get_registry,
)

logger = get_logger(__name__)

# One tick at a time per process
_tick_lock = asyncio.Lock()


class TickInProgressError(RuntimeError):
    """Raised when a tick is requested while another one is still running."""


class OutcomeStatus(str, enum.Enum):
    """Per-automation result of a tick."""

    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"
    CRITICAL_ERROR = "CRITICAL_ERROR"


@dataclass
class ExecutionOutcome:
    """Result of processing one automation."""

    automation_id: uuid.UUID
    name: str
    status: OutcomeStatus
    execution_id: uuid.UUID | None = None
    error: str | None = None
    reason: str | None = None
    next_execution_at: datetime | None = None
    is_active_after: bool | None = None
    result: Any = None


@dataclass
class TickSummary:
    """Summary of one scheduler tick."""

    started_at: datetime
    evaluated_count: int = 0
    due_count: int = 0
    results: list[ExecutionOutcome] = field(default_factory=list)

    def count(self, status: OutcomeStatus) -> int:
        return sum(1 for r in self.results if r.status == status)


@dataclass(frozen=True)
class _DueItem:
    automation_id: uuid.UUID
    name: str
    next_execution_at: datetime


class ExecutionEngine:
    """Dispatches due automations and keeps their bookkeeping consistent."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        registry: HandlerRegistry | None = None,
        clock: Callable[[], datetime] = utc_now,
        handler_timeout_seconds: float = 30,
        max_concurrency: int = 4,
        once_grace: timedelta = ONCE_GRACE_WINDOW,
        once_guard_window: timedelta = ONCE_GUARD_WINDOW,
        claim_lease: timedelta = timedelta(minutes=5),
        cron_evaluator: CronEvaluator | None = croniter_evaluator,
    ) -> None:
        self._session_factory = session_factory
        self._registry = registry or get_registry()
        self._clock = clock
        self._handler_timeout = handler_timeout_seconds
        self._max_concurrency = max(1, max_concurrency)
        self._once_grace = once_grace
        self._once_guard_window = once_guard_window
        self._claim_lease = claim_lease
        self._cron_evaluator = cron_evaluator

    @classmethod
    def from_config(
        cls,
        session_factory: async_sessionmaker[AsyncSession],
        config: AppConfig | None = None,
        registry: HandlerRegistry | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> "ExecutionEngine":
        """Build an engine from the scheduler section of config.yml."""
        scheduler_config = (config or get_config()).scheduler
        return cls(
            session_factory,
            registry=registry,
            clock=clock,
            handler_timeout_seconds=scheduler_config.handler_timeout_seconds,
            max_concurrency=scheduler_config.max_concurrency,
            once_grace=timedelta(minutes=scheduler_config.once_grace_minutes),
            once_guard_window=timedelta(hours=scheduler_config.once_guard_hours),
            claim_lease=timedelta(seconds=scheduler_config.claim_lease_seconds),
        )

    def next_execution(self, automation: Automation, now: datetime) -> datetime | None:
        """Next due instant of an automation with this engine's recurrence settings."""
        return next_execution_for(
            automation,
            now,
            cron_evaluator=self._cron_evaluator,
            once_grace=self._once_grace,
        )

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    async def preview_due(self) -> list[Automation]:
        """Automations that a tick started now would process (no side effects)."""
        now = self._clock()
        async with self._session_factory() as db:
            candidates = await load_candidates(db)
        return select_due(candidates, now)

    async def run_tick(self) -> TickSummary:
        """
        Run one scheduler tick.

        Returns:
            Summary with one outcome per due automation

        Raises:
            TickInProgressError: If another tick is running in this process
        """
        if _tick_lock.locked():
            raise TickInProgressError("A scheduler tick is already running")

        async with _tick_lock:
            now = self._clock()
            async with self._session_factory() as db:
                candidates = await load_candidates(db)

            due = [
                _DueItem(a.id, a.name, a.next_execution_at)
                for a in select_due(candidates, now)
                if a.next_execution_at is not None
            ]
            summary = TickSummary(
                started_at=now,
                evaluated_count=len(candidates),
                due_count=len(due),
            )
            logger.bind(
                now=now.isoformat(),
                evaluated=summary.evaluated_count,
                due=summary.due_count,
            ).info("scheduler_tick_started")

            semaphore = asyncio.Semaphore(self._max_concurrency)

            async def _run(item: _DueItem) -> ExecutionOutcome:
                async with semaphore:
                    return await self.execute(
                        item.automation_id, item.next_execution_at, now, item.name
                    )

            summary.results = list(await asyncio.gather(*(_run(item) for item in due)))

            logger.bind(
                due=summary.due_count,
                succeeded=summary.count(OutcomeStatus.SUCCESS),
                failed=summary.count(OutcomeStatus.FAILED),
                skipped=summary.count(OutcomeStatus.SKIPPED),
                critical=summary.count(OutcomeStatus.CRITICAL_ERROR),
            ).info("scheduler_tick_completed")
            return summary

    async def execute(
        self,
        automation_id: uuid.UUID,
        expected_next_at: datetime,
        now: datetime,
        name: str = "",
    ) -> ExecutionOutcome:
        """
        Process one due automation of a tick.

        Never raises: persistence and other unexpected errors are reported
        as a CRITICAL_ERROR outcome so the rest of the tick proceeds.
        """
        try:
            if not await self._claim(automation_id, expected_next_at, now):
                logger.bind(automation_id=str(automation_id)).info("automation_claim_lost")
                return ExecutionOutcome(
                    automation_id=automation_id,
                    name=name,
                    status=OutcomeStatus.SKIPPED,
                    reason="Already claimed by another tick",
                )

            async with self._session_factory() as db:
                automation = await self._load(db, automation_id)
                if automation is None:
                    return ExecutionOutcome(
                        automation_id=automation_id,
                        name=name,
                        status=OutcomeStatus.SKIPPED,
                        reason="Automation no longer exists",
                    )

                if should_skip(automation, now, self._once_guard_window):
                    await db.commit()
                    hours = hours_between(automation.last_executed_at, now)
                    return ExecutionOutcome(
                        automation_id=automation.id,
                        name=automation.name,
                        status=OutcomeStatus.SKIPPED,
                        reason=f"ONCE automation already executed {round(hours)}h ago",
                        next_execution_at=None,
                        is_active_after=False,
                    )

                return await self.dispatch(db, automation, reschedule=True)

        except Exception as e:
            logger.bind(automation_id=str(automation_id), name=name, error=str(e)).exception(
                "automation_critical_error"
            )
            return ExecutionOutcome(
                automation_id=automation_id,
                name=name,
                status=OutcomeStatus.CRITICAL_ERROR,
                error=str(e) or type(e).__name__,
            )

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def dispatch(
        self,
        db: AsyncSession,
        automation: Automation,
        reschedule: bool = True,
    ) -> ExecutionOutcome:
        """
        Execute an automation's handler and record the run.

        Used by the tick (reschedule=True) and by manual execution
        (reschedule=False keeps next_execution_at of recurring automations).

        Raises:
            Exception: Persistence errors, after rolling back the session
        """
        execution = AutomationExecution(
            automation_id=automation.id,
            status=ExecutionStatus.RUNNING,
            started_at=self._clock(),
        )
        db.add(execution)
        await db.commit()
        execution_id = execution.id
        automation_id = automation.id
        is_once = automation.schedule_type == ScheduleType.ONCE

        request = HandlerRequest.from_automation(automation)
        logger.bind(
            automation_id=str(automation.id),
            name=automation.name,
            type=automation.type.value,
            execution_id=str(execution.id),
        ).info("automation_dispatch_started")

        result: Any = None
        error: str | None = None
        try:
            result = await self._invoke(request)
        except Exception as e:
            error = str(e) or type(e).__name__
            logger.bind(
                automation_id=str(automation.id),
                name=automation.name,
                error=error,
            ).warning("automation_handler_failed")

        finished_at = self._clock()
        try:
            execution.completed_at = finished_at
            if error is None:
                execution.status = ExecutionStatus.SUCCESS
                execution.result = result
            else:
                execution.status = ExecutionStatus.FAILED
                execution.error = error
            self._record_run(
                automation,
                succeeded=error is None,
                finished_at=finished_at,
                reschedule=reschedule,
            )
            await db.commit()
        except Exception as e:
            await db.rollback()
            await self._record_persistence_failure(
                execution_id=execution_id,
                automation_id=automation_id,
                is_once=is_once,
                finished_at=finished_at,
                error=str(e) or type(e).__name__,
            )
            raise

        status = OutcomeStatus.SUCCESS if error is None else OutcomeStatus.FAILED
        logger.bind(
            automation_id=str(automation.id),
            name=automation.name,
            status=status.value,
            next_execution_at=automation.next_execution_at.isoformat()
            if automation.next_execution_at
            else None,
            is_active=automation.is_active,
        ).info("automation_dispatch_completed")

        return ExecutionOutcome(
            automation_id=automation.id,
            name=automation.name,
            status=status,
            execution_id=execution.id,
            error=error,
            next_execution_at=automation.next_execution_at,
            is_active_after=automation.is_active,
            result=result,
        )

    async def _invoke(self, request: HandlerRequest) -> Any:
        handler = self._registry.get(request.automation_type)
        if handler is None:
            raise HandlerError(f"No handler registered for {request.automation_type.value}")
        try:
            return await asyncio.wait_for(
                handler.execute(request.config, request.recipients, request.acting_user),
                timeout=self._handler_timeout,
            )
        except TimeoutError:
            raise HandlerError(f"Handler timed out after {self._handler_timeout}s") from None

    def _record_run(
        self,
        automation: Automation,
        succeeded: bool,
        finished_at: datetime,
        reschedule: bool,
    ) -> None:
        """Apply statistics and the next schedule to the in-memory automation."""
        automation.total_executions += 1
        if succeeded:
            automation.successful_executions += 1
        automation.last_executed_at = finished_at

        if reschedule:
            # A failed run advances the schedule too: occurrences are never retried
            automation.next_execution_at = self.next_execution(automation, finished_at)

        if automation.schedule_type == ScheduleType.ONCE:
            automation.is_active = False
            automation.next_execution_at = None

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    async def _record_persistence_failure(
        self,
        execution_id: uuid.UUID,
        automation_id: uuid.UUID,
        is_once: bool,
        finished_at: datetime,
        error: str,
    ) -> None:
        """
        Close the execution record after the run could not be committed.

        The handler already ran: the record becomes FAILED, and a ONCE
        automation is completed so it is not dispatched again once the claim
        lease expires. Recurring automations keep the lease and run again
        after it. Best effort: a second failure is logged and the original
        error propagates.
        """
        try:
            async with self._session_factory() as db:
                await db.execute(
                    update(AutomationExecution)
                    .where(AutomationExecution.id == execution_id)
                    .values(
                        status=ExecutionStatus.FAILED,
                        completed_at=finished_at,
                        error=f"Run could not be recorded: {error}",
                    )
                    .execution_options(synchronize_session=False)
                )
                if is_once:
                    await db.execute(
                        update(Automation)
                        .where(Automation.id == automation_id)
                        .values(
                            is_active=False,
                            next_execution_at=None,
                            last_executed_at=finished_at,
                        )
                        .execution_options(synchronize_session=False)
                    )
                await db.commit()
        except Exception as e:
            logger.bind(
                automation_id=str(automation_id),
                execution_id=str(execution_id),
                error=str(e),
            ).exception("automation_failure_record_failed")
            return

        logger.bind(
            automation_id=str(automation_id),
            execution_id=str(execution_id),
            completed_once=is_once,
        ).warning("automation_run_recorded_as_failed")

    async def _claim(
        self, automation_id: uuid.UUID, expected_next_at: datetime, now: datetime
    ) -> bool:
        """Move next_execution_at to a lease if nobody else did it first."""
        lease_until = now + self._claim_lease
        async with self._session_factory() as db:
            result = await db.execute(
                update(Automation)
                .where(
                    Automation.id == automation_id,
                    Automation.is_active == True,  # noqa: E712
                    Automation.next_execution_at == expected_next_at,
                )
                .values(next_execution_at=lease_until)
                .execution_options(synchronize_session=False)
            )
            await db.commit()
        return bool(result.rowcount == 1)

    @staticmethod
    async def _load(db: AsyncSession, automation_id: uuid.UUID) -> Automation | None:
        result = await db.execute(select(Automation).where(Automation.id == automation_id))
        return result.scalar_one_or_none()
