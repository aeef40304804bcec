"""
Automation management: create, update, reactivate, list.

Every write that touches scheduling recomputes next_execution_at through the
recurrence calculator so the stored value always reflects the current
definition.
"""

import uuid
from datetime import datetime

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from crmflow.config import get_settings
from crmflow.core.datetime_utils import utc_now
from crmflow.core.logging import get_logger
from crmflow.models.automation import (
    Automation,
    AutomationExecution,
    AutomationRecipient,
    AutomationType,
    ExecutionStatus,
    ScheduleType,
)
from crmflow.models.user import User
from crmflow.scheduling.recurrence import next_execution_for
from crmflow.schemas.automation import (
    SCHEDULE_FIELDS,
    AutomationCreate,
    AutomationUpdate,
    RecipientIn,
)

logger = get_logger(__name__)

# Columns that cannot be cleared by an update
_REQUIRED_FIELDS = ("name", "type", "schedule_type", "timezone", "is_active")


class AutomationStateError(ValueError):
    """Raised when a lifecycle transition is not allowed in the current state."""


def _build_recipients(recipients: list[RecipientIn]) -> list[AutomationRecipient]:
    return [
        AutomationRecipient(
            position=position,
            email=str(r.email),
            name=r.name,
            recipient_type=r.type,
        )
        for position, r in enumerate(recipients)
    ]


def _is_completed_once(automation: Automation) -> bool:
    return (
        automation.schedule_type == ScheduleType.ONCE
        and not automation.is_active
        and automation.last_executed_at is not None
    )


async def create_automation(
    db: AsyncSession,
    user: User,
    data: AutomationCreate,
    now: datetime | None = None,
) -> Automation:
    """
    Create an automation and compute its first execution.

    Args:
        db: Database session
        user: Owner
        data: Validated definition
        now: Reference instant (naive UTC), defaults to the current time

    Returns:
        The persisted automation
    """
    now = now or utc_now()
    automation = Automation(
        user_id=user.id,
        name=data.name,
        description=data.description,
        type=data.type,
        config=data.config,
        conditions=data.conditions,
        schedule_type=data.schedule_type,
        schedule_time=data.schedule_time,
        schedule_day_of_month=data.schedule_day_of_month,
        schedule_day_of_week=data.schedule_day_of_week,
        schedule_interval=data.schedule_interval,
        custom_cron_expression=data.custom_cron_expression,
        timezone=data.timezone or user.timezone or get_settings().default_timezone,
        is_active=data.is_active,
        total_executions=0,
        successful_executions=0,
        recipients=_build_recipients(data.recipients),
    )
    automation.next_execution_at = next_execution_for(automation, now)

    db.add(automation)
    await db.commit()
    await db.refresh(automation)

    logger.bind(
        automation_id=str(automation.id),
        user_id=str(user.id),
        type=automation.type.value,
        schedule_type=automation.schedule_type.value,
        next_execution_at=automation.next_execution_at.isoformat()
        if automation.next_execution_at
        else None,
    ).info("automation_created")
    return automation


async def update_automation(
    db: AsyncSession,
    automation: Automation,
    data: AutomationUpdate,
    now: datetime | None = None,
) -> Automation:
    """
    Apply a partial update.

    next_execution_at is recomputed when a schedule field or is_active
    changes. Setting is_active on a completed ONCE automation reactivates it
    (its last execution is forgotten so it can fire again). Switching a
    recurring automation to ONCE forgets its last execution too. Recipients
    are replaced when provided.
    """
    now = now or utc_now()
    changes = data.model_dump(exclude_unset=True)
    recipients = changes.pop("recipients", None)

    reactivating = changes.get("is_active") is True and _is_completed_once(automation)
    # A recurring run does not count as the firing of a new one-time schedule
    becoming_once = (
        changes.get("schedule_type") == ScheduleType.ONCE
        and automation.schedule_type != ScheduleType.ONCE
    )
    reschedule = "is_active" in changes or any(f in changes for f in SCHEDULE_FIELDS)

    for field_name, value in changes.items():
        if value is None and field_name in _REQUIRED_FIELDS:
            continue
        if field_name == "config" and value is None:
            value = {}
        setattr(automation, field_name, value)

    if recipients is not None:
        automation.recipients = _build_recipients(data.recipients or [])

    if reactivating or becoming_once:
        automation.last_executed_at = None

    if reschedule:
        automation.next_execution_at = next_execution_for(automation, now)

    await db.commit()
    await db.refresh(automation)

    logger.bind(
        automation_id=str(automation.id),
        fields=sorted(changes) + (["recipients"] if recipients is not None else []),
        reactivated=reactivating,
    ).info("automation_updated")
    return automation


async def reactivate_automation(
    db: AsyncSession,
    automation: Automation,
    now: datetime | None = None,
) -> Automation:
    """
    Reactivate a completed ONCE automation.

    Statistics are kept; the automation is scheduled as if it had never run.

    Raises:
        AutomationStateError: If the automation is not a completed ONCE automation
    """
    if not _is_completed_once(automation):
        raise AutomationStateError("Only a completed one-time automation can be reactivated")

    now = now or utc_now()
    automation.is_active = True
    automation.last_executed_at = None
    automation.next_execution_at = next_execution_for(automation, now)

    await db.commit()
    await db.refresh(automation)

    logger.bind(
        automation_id=str(automation.id),
        next_execution_at=automation.next_execution_at.isoformat()
        if automation.next_execution_at
        else None,
    ).info("automation_reactivated")
    return automation


async def delete_automation(db: AsyncSession, automation: Automation) -> None:
    """Delete an automation with its recipients and execution history."""
    automation_id = automation.id
    # SQLite does not enforce ON DELETE CASCADE
    await db.execute(
        delete(AutomationExecution).where(AutomationExecution.automation_id == automation_id)
    )
    await db.delete(automation)
    await db.commit()
    logger.bind(automation_id=str(automation_id)).info("automation_deleted")


async def get_user_automation(
    db: AsyncSession,
    user_id: uuid.UUID,
    automation_id: uuid.UUID,
) -> Automation | None:
    """Get an automation owned by the user."""
    result = await db.execute(
        select(Automation).where(
            Automation.id == automation_id,
            Automation.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


async def get_automation(db: AsyncSession, automation_id: uuid.UUID) -> Automation | None:
    """Get an automation regardless of owner (operator commands)."""
    result = await db.execute(select(Automation).where(Automation.id == automation_id))
    return result.scalar_one_or_none()


async def list_automations(
    db: AsyncSession,
    user_id: uuid.UUID,
    automation_type: AutomationType | None = None,
    is_active: bool | None = None,
    page: int = 1,
    limit: int = 10,
) -> tuple[list[Automation], int]:
    """
    List a user's automations, newest first.

    Returns:
        Tuple of (automations on the page, total count)
    """
    filters = [Automation.user_id == user_id]
    if automation_type is not None:
        filters.append(Automation.type == automation_type)
    if is_active is not None:
        filters.append(Automation.is_active == is_active)

    total = (
        await db.execute(select(func.count(Automation.id)).where(*filters))
    ).scalar() or 0

    result = await db.execute(
        select(Automation)
        .where(*filters)
        .order_by(Automation.created_at.desc(), Automation.id)
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(result.scalars().all()), total


async def latest_executions(
    db: AsyncSession,
    automation_id: uuid.UUID,
    limit: int = 5,
) -> list[AutomationExecution]:
    """Most recent executions of an automation."""
    result = await db.execute(
        select(AutomationExecution)
        .where(AutomationExecution.automation_id == automation_id)
        .order_by(AutomationExecution.started_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def count_executions(db: AsyncSession, automation_id: uuid.UUID) -> int:
    result = await db.execute(
        select(func.count(AutomationExecution.id)).where(
            AutomationExecution.automation_id == automation_id
        )
    )
    return result.scalar() or 0


async def list_executions(
    db: AsyncSession,
    user_id: uuid.UUID,
    automation_id: uuid.UUID | None = None,
    status: ExecutionStatus | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[AutomationExecution], int]:
    """
    Execution history across a user's automations, newest first.

    Returns:
        Tuple of (executions on the page, total count)
    """
    filters = [Automation.user_id == user_id]
    if automation_id is not None:
        filters.append(AutomationExecution.automation_id == automation_id)
    if status is not None:
        filters.append(AutomationExecution.status == status)

    total = (
        await db.execute(
            select(func.count(AutomationExecution.id)).join(Automation).where(*filters)
        )
    ).scalar() or 0

    result = await db.execute(
        select(AutomationExecution)
        .join(Automation)
        .where(*filters)
        .order_by(AutomationExecution.started_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(result.scalars().all()), total
