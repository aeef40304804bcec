"""Scheduler trigger and monitoring endpoints."""

import hmac

from fastapi import APIRouter, Header, HTTPException, status

from crmflow.core.logging import get_logger
from crmflow.core.scheduler import get_job_schedules
from crmflow.dependencies import AppSettings, Engine
from crmflow.schemas.automation import OutcomeResponse, ScheduleResponse, TickResponse
from crmflow.scheduling.engine import TickInProgressError, TickSummary

logger = get_logger(__name__)

router = APIRouter()


def _verify_token(expected: str, provided: str | None) -> None:
    """Check the shared scheduler secret when one is configured."""
    if not expected:
        return
    if not provided or not hmac.compare_digest(expected, provided):
        logger.warning("scheduler_tick_forbidden")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid scheduler token",
        )


def _to_response(summary: TickSummary) -> TickResponse:
    return TickResponse(
        started_at=summary.started_at,
        evaluated_count=summary.evaluated_count,
        due_count=summary.due_count,
        results=[
            OutcomeResponse(
                automation_id=r.automation_id,
                name=r.name,
                status=r.status.value,
                error=r.error,
                reason=r.reason,
                execution_id=r.execution_id,
                next_execution_at=r.next_execution_at,
                is_active_after=r.is_active_after,
            )
            for r in summary.results
        ],
    )


@router.api_route("/scheduler/tick", methods=["GET", "POST"], response_model=TickResponse)
async def run_scheduler_tick(
    settings: AppSettings,
    engine: Engine,
    x_scheduler_token: str | None = Header(default=None),
) -> TickResponse:
    """
    Run one scheduler tick.

    GET is accepted for cron pingers that cannot send a POST.
    """
    _verify_token(settings.scheduler_secret, x_scheduler_token)

    try:
        summary = await engine.run_tick()
    except TickInProgressError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e

    return _to_response(summary)


@router.get("/scheduler/schedules", response_model=list[ScheduleResponse])
async def list_schedules() -> list[ScheduleResponse]:
    """
    List the registered background schedules.

    Returns schedule information including next/last fire times.
    """
    schedules = await get_job_schedules()
    return [ScheduleResponse(**s) for s in schedules]
