"""Automation definitions and their execution history."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, Enum, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from crmflow.models.base import Base, TimestampMixin, UpdatedAtMixin
from crmflow.models.user import User


class AutomationType(str, enum.Enum):
    """Action an automation triggers when it runs."""

    EMAIL_REMINDER = "EMAIL_REMINDER"
    TASK_CREATION = "TASK_CREATION"
    STATUS_UPDATE = "STATUS_UPDATE"
    REPORT_GENERATION = "REPORT_GENERATION"
    CLIENT_FOLLOW_UP = "CLIENT_FOLLOW_UP"
    INVOICE_REMINDER = "INVOICE_REMINDER"
    BACKUP_DATA = "BACKUP_DATA"
    NOTIFICATION_SEND = "NOTIFICATION_SEND"
    PROJECT_ARCHIVE = "PROJECT_ARCHIVE"
    CLIENT_CHECK_IN = "CLIENT_CHECK_IN"
    DEADLINE_ALERT = "DEADLINE_ALERT"
    WEEKLY_SUMMARY = "WEEKLY_SUMMARY"


class ScheduleType(str, enum.Enum):
    """Recurrence policy of an automation."""

    ONCE = "ONCE"
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"
    INTERVAL = "INTERVAL"
    CUSTOM_CRON = "CUSTOM_CRON"


class ExecutionStatus(str, enum.Enum):
    """Lifecycle status of a single dispatch attempt."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class RecipientType(str, enum.Enum):
    """Where a recipient address comes from."""

    CUSTOM = "CUSTOM"
    CLIENT = "CLIENT"
    TEAM = "TEAM"
    PROJECT_MEMBERS = "PROJECT_MEMBERS"


def _enum_column(enum_cls: type[enum.Enum], name: str) -> Enum:
    return Enum(
        enum_cls,
        values_callable=lambda e: [x.value for x in e],
        name=name,
        native_enum=False,
        length=32,
    )


class Automation(Base, UpdatedAtMixin):
    """A user-owned recurring action definition."""

    __tablename__ = "automations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    name: Mapped[str] = mapped_column(String(255))
    description: Mapped[str | None] = mapped_column(Text, default=None)

    # Behavior
    type: Mapped[AutomationType] = mapped_column(_enum_column(AutomationType, "automationtype"))
    config: Mapped[dict[str, Any]] = mapped_column(default=dict)
    conditions: Mapped[dict[str, Any] | None] = mapped_column(default=None)

    # Scheduling
    schedule_type: Mapped[ScheduleType] = mapped_column(_enum_column(ScheduleType, "scheduletype"))
    schedule_time: Mapped[str | None] = mapped_column(String(5), default=None)  # HH:MM
    schedule_day_of_month: Mapped[int | None] = mapped_column(Integer, default=None)  # 1-31
    schedule_day_of_week: Mapped[int | None] = mapped_column(Integer, default=None)  # 0=Sunday
    schedule_interval: Mapped[int | None] = mapped_column(Integer, default=None)  # minutes
    custom_cron_expression: Mapped[str | None] = mapped_column(String(255), default=None)
    timezone: Mapped[str] = mapped_column(String(50), default="UTC")

    # Lifecycle
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    last_executed_at: Mapped[datetime | None] = mapped_column(default=None)
    next_execution_at: Mapped[datetime | None] = mapped_column(default=None, index=True)

    # Statistics
    total_executions: Mapped[int] = mapped_column(Integer, default=0)
    successful_executions: Mapped[int] = mapped_column(Integer, default=0)

    # Relationships
    user: Mapped[User] = relationship(lazy="selectin")
    recipients: Mapped[list[AutomationRecipient]] = relationship(
        back_populates="automation",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="AutomationRecipient.position",
    )
    executions: Mapped[list[AutomationExecution]] = relationship(
        back_populates="automation",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<Automation {self.name} ({self.type.value}/{self.schedule_type.value})>"


class AutomationRecipient(Base):
    """Recipient of an automation's messages. Owned by its automation."""

    __tablename__ = "automation_recipients"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    automation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("automations.id", ondelete="CASCADE"), index=True
    )
    position: Mapped[int] = mapped_column(Integer, default=0)
    email: Mapped[str] = mapped_column(String(255))
    name: Mapped[str | None] = mapped_column(String(255), default=None)
    recipient_type: Mapped[RecipientType] = mapped_column(
        _enum_column(RecipientType, "recipienttype"), default=RecipientType.CUSTOM
    )

    automation: Mapped[Automation] = relationship(back_populates="recipients")

    def __repr__(self) -> str:
        return f"<AutomationRecipient {self.email}>"


class AutomationExecution(Base, TimestampMixin):
    """One record per dispatch attempt of an automation."""

    __tablename__ = "automation_executions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    automation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("automations.id", ondelete="CASCADE"), index=True
    )
    status: Mapped[ExecutionStatus] = mapped_column(
        _enum_column(ExecutionStatus, "executionstatus"), default=ExecutionStatus.RUNNING
    )
    started_at: Mapped[datetime] = mapped_column(index=True)
    completed_at: Mapped[datetime | None] = mapped_column(default=None)
    error: Mapped[str | None] = mapped_column(Text, default=None)
    result: Mapped[dict[str, Any] | None] = mapped_column(default=None)

    automation: Mapped[Automation] = relationship(back_populates="executions")

    @property
    def is_terminal(self) -> bool:
        return self.completed_at is not None

    def __repr__(self) -> str:
        return f"<AutomationExecution {self.id} {self.status.value}>"
