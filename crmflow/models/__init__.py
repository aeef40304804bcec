from crmflow.models.automation import (
    Automation,
    AutomationExecution,
    AutomationRecipient,
    AutomationType,
    ExecutionStatus,
    RecipientType,
    ScheduleType,
)
from crmflow.models.base import Base
from crmflow.models.user import Session, User

__all__ = [
    "Base",
    "User",
    "Session",
    "Automation",
    "AutomationRecipient",
    "AutomationExecution",
    "AutomationType",
    "ScheduleType",
    "ExecutionStatus",
    "RecipientType",
]
