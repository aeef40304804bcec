"""Automation management API endpoints."""

import uuid

from fastapi import APIRouter, HTTPException, Query, status

from crmflow.dependencies import CurrentUser, DBSession, Engine, OwnedAutomation
from crmflow.models.automation import (
    Automation,
    AutomationExecution,
    AutomationType,
    ExecutionStatus,
)
from crmflow.schemas.automation import (
    AutomationCreate,
    AutomationListResponse,
    AutomationResponse,
    AutomationUpdate,
    ExecuteResponse,
    ExecutionListResponse,
    ExecutionResponse,
    Pagination,
)
from crmflow.scheduling.engine import OutcomeStatus
from crmflow.services import automation_service
from crmflow.services.automation_service import AutomationStateError

router = APIRouter()


def _to_response(
    automation: Automation,
    executions: list[AutomationExecution] | None = None,
    execution_count: int | None = None,
) -> AutomationResponse:
    response = AutomationResponse.model_validate(automation)
    response.recent_executions = [ExecutionResponse.model_validate(e) for e in executions or []]
    response.execution_count = execution_count
    return response


@router.get("/automations", response_model=AutomationListResponse)
async def list_automations(
    user: CurrentUser,
    db: DBSession,
    type: AutomationType | None = Query(default=None, description="Filter by automation type"),
    is_active: bool | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
) -> AutomationListResponse:
    """
    List the current user's automations, newest first.

    Each automation carries its five most recent executions.
    """
    automations, total = await automation_service.list_automations(
        db, user.id, automation_type=type, is_active=is_active, page=page, limit=limit
    )
    items = [
        _to_response(a, await automation_service.latest_executions(db, a.id, limit=5))
        for a in automations
    ]
    return AutomationListResponse(
        automations=items,
        pagination=Pagination.build(page, limit, total),
    )


@router.post(
    "/automations",
    response_model=AutomationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_automation(
    data: AutomationCreate,
    user: CurrentUser,
    db: DBSession,
) -> AutomationResponse:
    """Create an automation; its first execution is scheduled immediately."""
    automation = await automation_service.create_automation(db, user, data)
    return _to_response(automation, execution_count=0)


@router.get("/automations/executions", response_model=ExecutionListResponse)
async def list_executions(
    user: CurrentUser,
    db: DBSession,
    automation_id: uuid.UUID | None = Query(default=None, description="Filter by automation"),
    status_filter: ExecutionStatus | None = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
) -> ExecutionListResponse:
    """Execution history across the current user's automations."""
    executions, total = await automation_service.list_executions(
        db,
        user.id,
        automation_id=automation_id,
        status=status_filter,
        page=page,
        limit=limit,
    )
    return ExecutionListResponse(
        executions=[ExecutionResponse.model_validate(e) for e in executions],
        pagination=Pagination.build(page, limit, total),
    )


@router.get("/automations/{automation_id}", response_model=AutomationResponse)
async def get_automation(automation: OwnedAutomation, db: DBSession) -> AutomationResponse:
    """Get an automation with its ten most recent executions."""
    executions = await automation_service.latest_executions(db, automation.id, limit=10)
    count = await automation_service.count_executions(db, automation.id)
    return _to_response(automation, executions, count)


@router.put("/automations/{automation_id}", response_model=AutomationResponse)
async def update_automation(
    data: AutomationUpdate,
    automation: OwnedAutomation,
    db: DBSession,
) -> AutomationResponse:
    """
    Update an automation.

    Changing the schedule or the active flag recomputes the next execution.
    Activating a completed one-time automation reactivates it.
    """
    automation = await automation_service.update_automation(db, automation, data)
    return _to_response(automation)


@router.post("/automations/{automation_id}/reactivate", response_model=AutomationResponse)
async def reactivate_automation(automation: OwnedAutomation, db: DBSession) -> AutomationResponse:
    """Reactivate a completed one-time automation."""
    try:
        automation = await automation_service.reactivate_automation(db, automation)
    except AutomationStateError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    return _to_response(automation)


@router.delete("/automations/{automation_id}")
async def delete_automation(automation: OwnedAutomation, db: DBSession) -> dict:
    """Delete an automation and its execution history."""
    await automation_service.delete_automation(db, automation)
    return {"ok": True, "message": "Automation deleted"}


@router.post("/automations/{automation_id}/execute", response_model=ExecuteResponse)
async def execute_automation(
    automation: OwnedAutomation,
    db: DBSession,
    engine: Engine,
) -> ExecuteResponse:
    """
    Run an automation now.

    The run is recorded like a scheduled one, but the schedule of a
    recurring automation is left as it was.
    """
    if not automation.is_active:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Automation is not active",
        )

    outcome = await engine.dispatch(db, automation, reschedule=False)
    execution = await db.get(AutomationExecution, outcome.execution_id)
    return ExecuteResponse(
        success=outcome.status == OutcomeStatus.SUCCESS,
        execution=ExecutionResponse.model_validate(execution) if execution else None,
        error=outcome.error,
        result=outcome.result,
    )
