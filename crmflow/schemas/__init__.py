from crmflow.schemas.automation import (
    AutomationCreate,
    AutomationListResponse,
    AutomationResponse,
    AutomationUpdate,
    ExecuteResponse,
    ExecutionListResponse,
    ExecutionResponse,
    Pagination,
    RecipientIn,
    ScheduleResponse,
    TickResponse,
)

__all__ = [
    "AutomationCreate",
    "AutomationUpdate",
    "AutomationResponse",
    "AutomationListResponse",
    "ExecutionResponse",
    "ExecutionListResponse",
    "ExecuteResponse",
    "Pagination",
    "RecipientIn",
    "ScheduleResponse",
    "TickResponse",
]
