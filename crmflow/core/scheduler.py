"""
APScheduler integration for FastAPI.

Runs the automation tick in-process on a fixed interval. The same tick is
also reachable over HTTP (external cron pingers) and from the CLI; the
engine's tick lock keeps the entry points from overlapping.

Jobs:
- Automation tick: dispatches due automations (every poll_interval_seconds)
"""

from typing import Any

from apscheduler import AsyncScheduler, CoalescePolicy, ConflictPolicy, JobOutcome, JobReleased
from apscheduler.datastores.memory import MemoryDataStore
from apscheduler.triggers.interval import IntervalTrigger

from crmflow.config import get_config, get_settings
from crmflow.core.database import AsyncSessionLocal
from crmflow.core.logging import get_logger

logger = get_logger(__name__)

TICK_SCHEDULE_ID = "automation_tick"

# Global scheduler instance
scheduler: AsyncScheduler | None = None


async def automation_tick_job() -> None:
    """Automation tick job - runs every due automation once."""
    # Import here to avoid circular imports
    from crmflow.scheduling.engine import ExecutionEngine, OutcomeStatus, TickInProgressError

    engine = ExecutionEngine.from_config(AsyncSessionLocal)
    try:
        summary = await engine.run_tick()
    except TickInProgressError:
        logger.debug("scheduled_tick_skipped_in_progress")
        return
    except Exception as e:
        logger.bind(error=str(e)).error("scheduled_tick_failed")
        raise  # Re-raise so APScheduler records the failure

    if summary.due_count:
        logger.bind(
            due=summary.due_count,
            failed=summary.count(OutcomeStatus.FAILED),
            critical=summary.count(OutcomeStatus.CRITICAL_ERROR),
        ).info("scheduled_tick_completed")


async def start_scheduler() -> AsyncScheduler | None:
    """Initialize and start the background scheduler."""
    global scheduler

    settings = get_settings()
    if not settings.scheduler_enabled:
        logger.info("scheduler_disabled_by_config")
        return None

    poll_interval = get_config().scheduler.poll_interval_seconds

    # Schedules are rebuilt at startup; automation state itself lives in the database
    data_store = MemoryDataStore()
    scheduler = AsyncScheduler(data_store=data_store)

    # Start the scheduler first (required before calling other methods in APScheduler 4.x)
    await scheduler.__aenter__()

    scheduler.subscribe(_on_job_released, {JobReleased})

    await scheduler.add_schedule(
        automation_tick_job,
        IntervalTrigger(seconds=poll_interval),
        id=TICK_SCHEDULE_ID,
        conflict_policy=ConflictPolicy.replace,
        coalesce=CoalescePolicy.latest,
    )

    # Start the scheduler's background worker to actually process jobs
    await scheduler.start_in_background()

    logger.bind(jobs=[TICK_SCHEDULE_ID], poll_interval_seconds=poll_interval).info(
        "scheduler_started"
    )
    return scheduler


async def _on_job_released(event: Any) -> None:
    """Log jobs that ended in error."""
    if isinstance(event, JobReleased) and event.outcome == JobOutcome.error:
        exception = getattr(event, "exception", None)
        logger.bind(
            schedule_id=event.schedule_id or "unknown",
            error=str(exception) if exception else None,
        ).error("scheduler_job_failed")


async def stop_scheduler() -> None:
    """Gracefully stop the scheduler."""
    global scheduler
    if scheduler:
        await scheduler.__aexit__(None, None, None)
        logger.info("scheduler_stopped")
        scheduler = None


def is_scheduler_running() -> bool:
    return scheduler is not None


async def get_job_schedules() -> list[dict[str, Any]]:
    """Get all registered job schedules."""
    if not scheduler:
        return []

    schedules = await scheduler.get_schedules()
    return [
        {
            "id": s.id,
            "task_id": s.task_id,
            "trigger": str(s.trigger),
            "next_fire_time": s.next_fire_time.isoformat() if s.next_fire_time else None,
            "last_fire_time": s.last_fire_time.isoformat() if s.last_fire_time else None,
        }
        for s in schedules
    ]
