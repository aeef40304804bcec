"""One-shot guard: at most one dispatch of a ONCE automation per activation."""

from datetime import datetime, timedelta

from crmflow.core.datetime_utils import hours_between
from crmflow.core.logging import get_logger
from crmflow.models.automation import Automation, ScheduleType

logger = get_logger(__name__)

ONCE_GUARD_WINDOW = timedelta(hours=24)


def should_skip(
    automation: Automation,
    now: datetime,
    window: timedelta = ONCE_GUARD_WINDOW,
) -> bool:
    """
    Decide whether a ONCE automation already fired in this activation.

    A ONCE automation that executed less than `window` ago is skipped and,
    as a corrective side effect, deactivated and unscheduled on the passed
    (in-memory) automation. The caller persists the change. When the
    automation is already inactive and unscheduled nothing is modified.

    Args:
        automation: Automation about to be dispatched
        now: Current instant (naive UTC)
        window: How long a previous execution blocks a new one

    Returns:
        True when the dispatch must be skipped
    """
    if automation.schedule_type != ScheduleType.ONCE:
        return False
    if automation.last_executed_at is None:
        return False
    if now - automation.last_executed_at >= window:
        return False

    if automation.is_active or automation.next_execution_at is not None:
        automation.is_active = False
        automation.next_execution_at = None
        logger.bind(
            automation_id=str(automation.id),
            name=automation.name,
            hours_since_last=round(hours_between(automation.last_executed_at, now), 1),
        ).warning("once_automation_already_executed")

    return True
