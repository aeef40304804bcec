import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from crmflow.models.automation import (
    AutomationType,
    ExecutionStatus,
    RecipientType,
    ScheduleType,
)

SCHEDULE_FIELDS = (
    "schedule_type",
    "schedule_time",
    "schedule_day_of_month",
    "schedule_day_of_week",
    "schedule_interval",
    "custom_cron_expression",
    "timezone",
)


def _normalize_schedule_time(v: str | None) -> str | None:
    if v is None:
        return v
    try:
        parts = v.split(":")
        if len(parts) != 2:
            raise ValueError("Time must be in HH:MM format")
        hour, minute = int(parts[0]), int(parts[1])
        if not (0 <= hour <= 23 and 0 <= minute <= 59):
            raise ValueError("Invalid hour or minute")
        return f"{hour:02d}:{minute:02d}"
    except (ValueError, IndexError) as e:
        raise ValueError(f"Invalid time format: {e}") from e


def _check_timezone(v: str | None) -> str | None:
    if v is None:
        return v
    from crmflow.core.datetime_utils import is_valid_timezone

    if not is_valid_timezone(v):
        raise ValueError(f"Invalid timezone: {v}")
    return v


class RecipientIn(BaseModel):
    """Recipient of an automation's messages."""

    email: EmailStr
    name: str | None = Field(default=None, max_length=255)
    type: RecipientType = RecipientType.CUSTOM


class RecipientOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    email: str
    name: str | None
    recipient_type: RecipientType


class AutomationCreate(BaseModel):
    """Request body for creating an automation."""

    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    type: AutomationType
    config: dict[str, Any] = Field(default_factory=dict)
    conditions: dict[str, Any] | None = None
    schedule_type: ScheduleType
    schedule_time: str | None = Field(default=None, max_length=5)
    schedule_day_of_month: int | None = Field(default=None, ge=1, le=31)
    schedule_day_of_week: int | None = Field(default=None, ge=0, le=6)
    schedule_interval: int | None = Field(default=None, ge=1)
    custom_cron_expression: str | None = Field(default=None, max_length=255)
    timezone: str | None = Field(default=None, max_length=50)
    is_active: bool = True
    recipients: list[RecipientIn] = Field(default_factory=list)

    @field_validator("schedule_time")
    @classmethod
    def validate_schedule_time(cls, v: str | None) -> str | None:
        return _normalize_schedule_time(v)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str | None) -> str | None:
        return _check_timezone(v)


class AutomationUpdate(BaseModel):
    """Request body for a partial automation update. Omitted fields are kept."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    type: AutomationType | None = None
    config: dict[str, Any] | None = None
    conditions: dict[str, Any] | None = None
    schedule_type: ScheduleType | None = None
    schedule_time: str | None = Field(default=None, max_length=5)
    schedule_day_of_month: int | None = Field(default=None, ge=1, le=31)
    schedule_day_of_week: int | None = Field(default=None, ge=0, le=6)
    schedule_interval: int | None = Field(default=None, ge=1)
    custom_cron_expression: str | None = Field(default=None, max_length=255)
    timezone: str | None = Field(default=None, max_length=50)
    is_active: bool | None = None
    recipients: list[RecipientIn] | None = None

    @field_validator("schedule_time")
    @classmethod
    def validate_schedule_time(cls, v: str | None) -> str | None:
        return _normalize_schedule_time(v)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str | None) -> str | None:
        return _check_timezone(v)


class ExecutionResponse(BaseModel):
    """Response model for an automation execution."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    automation_id: uuid.UUID
    status: ExecutionStatus
    started_at: datetime
    completed_at: datetime | None
    error: str | None
    result: Any = None


class AutomationResponse(BaseModel):
    """Response model for an automation."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    description: str | None
    type: AutomationType
    config: dict[str, Any]
    conditions: dict[str, Any] | None
    schedule_type: ScheduleType
    schedule_time: str | None
    schedule_day_of_month: int | None
    schedule_day_of_week: int | None
    schedule_interval: int | None
    custom_cron_expression: str | None
    timezone: str
    is_active: bool
    last_executed_at: datetime | None
    next_execution_at: datetime | None
    total_executions: int
    successful_executions: int
    created_at: datetime
    updated_at: datetime
    recipients: list[RecipientOut] = Field(default_factory=list)
    recent_executions: list[ExecutionResponse] = Field(default_factory=list)
    execution_count: int | None = None


class Pagination(BaseModel):
    page: int
    limit: int
    total_count: int
    total_pages: int

    @classmethod
    def build(cls, page: int, limit: int, total_count: int) -> "Pagination":
        return cls(
            page=page,
            limit=limit,
            total_count=total_count,
            total_pages=(total_count + limit - 1) // limit if limit else 0,
        )


class AutomationListResponse(BaseModel):
    automations: list[AutomationResponse]
    pagination: Pagination


class ExecutionListResponse(BaseModel):
    executions: list[ExecutionResponse]
    pagination: Pagination


class ExecuteResponse(BaseModel):
    """Result of a manual execution."""

    success: bool
    execution: ExecutionResponse | None
    error: str | None = None
    result: Any = None


class OutcomeResponse(BaseModel):
    """Per-automation outcome of a scheduler tick."""

    automation_id: uuid.UUID
    name: str
    status: str
    error: str | None = None
    reason: str | None = None
    execution_id: uuid.UUID | None = None
    next_execution_at: datetime | None = None
    is_active_after: bool | None = None


class TickResponse(BaseModel):
    """Summary of one scheduler tick."""

    started_at: datetime
    evaluated_count: int
    due_count: int
    results: list[OutcomeResponse]


class ScheduleResponse(BaseModel):
    """Response model for a background job schedule."""

    id: str
    task_id: str
    trigger: str
    next_fire_time: str | None
    last_fire_time: str | None
