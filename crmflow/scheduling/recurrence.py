"""
Recurrence calculator.

Given an automation's schedule and the current instant, computes the next
due timestamp or None when there is no further occurrence. Pure: no I/O,
no clock reads. All inputs and outputs are naive UTC; "HH:MM" schedule
times are wall-clock times in the schedule's IANA zone.

Policies:
- ONCE: today at HH:MM; a near miss (within the grace window) fires now,
  a larger miss rolls to tomorrow. None once it has fired.
- DAILY: next HH:MM strictly after now.
- WEEKLY: next day-of-week (0=Sunday) at HH:MM strictly after now.
- MONTHLY / YEARLY: day-of-month at HH:MM, stepping 1 / 12 months.
- INTERVAL: now + N minutes.
- CUSTOM_CRON: delegated to an injected evaluator.
"""

import calendar
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from croniter import CroniterError, croniter

from crmflow.core.datetime_utils import from_local, get_zone, parse_schedule_time, to_local
from crmflow.core.logging import get_logger
from crmflow.models.automation import ScheduleType

if TYPE_CHECKING:
    from crmflow.models.automation import Automation

logger = get_logger(__name__)

ONCE_GRACE_WINDOW = timedelta(minutes=5)

# (expression, now_local) -> next occurrence (aware, any zone) or None
CronEvaluator = Callable[[str, datetime], datetime | None]


@dataclass(frozen=True)
class ScheduleSpec:
    """Schedule configuration of an automation, detached from the ORM."""

    schedule_type: ScheduleType
    schedule_time: str | None = None
    day_of_month: int | None = None
    day_of_week: int | None = None
    interval_minutes: int | None = None
    cron_expression: str | None = None
    timezone: str = "UTC"

    @classmethod
    def from_automation(cls, automation: "Automation") -> "ScheduleSpec":
        return cls(
            schedule_type=automation.schedule_type,
            schedule_time=automation.schedule_time,
            day_of_month=automation.schedule_day_of_month,
            day_of_week=automation.schedule_day_of_week,
            interval_minutes=automation.schedule_interval,
            cron_expression=automation.custom_cron_expression,
            timezone=automation.timezone or "UTC",
        )


def croniter_evaluator(expression: str, now_local: datetime) -> datetime | None:
    """Default cron evaluator backed by croniter.

    Returns the first occurrence strictly after now_local, or None when the
    expression is rejected.
    """
    try:
        if not croniter.is_valid(expression):
            return None
        result: datetime = croniter(expression, now_local).get_next(datetime)
        return result
    except (CroniterError, ValueError, KeyError) as e:
        logger.bind(expression=expression, error=str(e)).warning("cron_expression_rejected")
        return None


def _missing(spec: ScheduleSpec, field: str) -> None:
    logger.bind(
        schedule_type=spec.schedule_type.value,
        missing=field,
    ).warning("schedule_parameter_missing")
    return None


def _at(local_day: datetime, at: time) -> datetime:
    """Same local calendar day as local_day, wall-clock time `at`."""
    return local_day.replace(hour=at.hour, minute=at.minute, second=0, microsecond=0)


def _shift_days(local_dt: datetime, days: int, at: time) -> datetime:
    """Move a local datetime by whole calendar days, keeping the wall-clock time.

    Date arithmetic is done on the naive date so a DST change in between
    does not shift the hour.
    """
    shifted = (local_dt.replace(tzinfo=None) + timedelta(days=days)).replace(
        hour=at.hour, minute=at.minute, second=0, microsecond=0
    )
    return shifted.replace(tzinfo=local_dt.tzinfo)


def _month_occurrence(year: int, month: int, day: int, at: time, zone: ZoneInfo) -> datetime:
    """day-of-month in (year, month), clamped to the month's last day."""
    last_day = calendar.monthrange(year, month)[1]
    return datetime(year, month, min(day, last_day), at.hour, at.minute, tzinfo=zone)


def _add_months(year: int, month: int, months: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + months
    return index // 12, index % 12 + 1


def _next_once(
    spec: ScheduleSpec,
    now: datetime,
    local_now: datetime,
    last_executed_at: datetime | None,
    grace: timedelta,
) -> datetime | None:
    if last_executed_at is not None:
        # Already fired in this activation; only an explicit reactivation re-arms it.
        return None
    at = parse_schedule_time(spec.schedule_time)
    if at is None:
        return _missing(spec, "schedule_time")

    candidate = _at(local_now, at)
    overdue = local_now - candidate
    if timedelta(0) <= overdue <= grace:
        return now
    if candidate < local_now:
        return from_local(_shift_days(candidate, 1, at))
    return from_local(candidate)


def _next_daily(spec: ScheduleSpec, local_now: datetime) -> datetime | None:
    at = parse_schedule_time(spec.schedule_time)
    if at is None:
        return _missing(spec, "schedule_time")

    candidate = _at(local_now, at)
    if candidate <= local_now:
        candidate = _shift_days(candidate, 1, at)
    return from_local(candidate)


def _next_weekly(spec: ScheduleSpec, local_now: datetime) -> datetime | None:
    at = parse_schedule_time(spec.schedule_time)
    if at is None:
        return _missing(spec, "schedule_time")
    if spec.day_of_week is None or not 0 <= spec.day_of_week <= 6:
        return _missing(spec, "schedule_day_of_week")

    # Python weekday() is Monday=0; schedules use Sunday=0
    today = (local_now.weekday() + 1) % 7
    days_ahead = (spec.day_of_week - today) % 7
    candidate = _shift_days(local_now, days_ahead, at)
    if candidate <= local_now:
        candidate = _shift_days(candidate, 7, at)
    return from_local(candidate)


def _next_month_step(
    spec: ScheduleSpec, local_now: datetime, zone: ZoneInfo, step: int
) -> datetime | None:
    at = parse_schedule_time(spec.schedule_time)
    if at is None:
        return _missing(spec, "schedule_time")
    if spec.day_of_month is None or not 1 <= spec.day_of_month <= 31:
        return _missing(spec, "schedule_day_of_month")

    year, month = local_now.year, local_now.month
    candidate = _month_occurrence(year, month, spec.day_of_month, at, zone)
    while candidate <= local_now:
        year, month = _add_months(year, month, step)
        candidate = _month_occurrence(year, month, spec.day_of_month, at, zone)
    return from_local(candidate)


def _next_interval(spec: ScheduleSpec, now: datetime) -> datetime | None:
    if not spec.interval_minutes or spec.interval_minutes < 1:
        return _missing(spec, "schedule_interval")
    return now + timedelta(minutes=spec.interval_minutes)


def _next_cron(
    spec: ScheduleSpec,
    local_now: datetime,
    cron_evaluator: CronEvaluator | None,
) -> datetime | None:
    if not spec.cron_expression:
        return _missing(spec, "custom_cron_expression")
    if cron_evaluator is None:
        logger.bind(expression=spec.cron_expression).warning("cron_evaluator_not_configured")
        return None

    result = cron_evaluator(spec.cron_expression, local_now)
    if result is None:
        return None
    if result.tzinfo is None:
        result = result.replace(tzinfo=local_now.tzinfo)
    next_at = from_local(result)
    if next_at <= from_local(local_now):
        logger.bind(expression=spec.cron_expression).warning("cron_evaluator_not_advancing")
        return None
    return next_at


def compute_next_execution(
    spec: ScheduleSpec,
    now: datetime,
    last_executed_at: datetime | None = None,
    cron_evaluator: CronEvaluator | None = croniter_evaluator,
    once_grace: timedelta = ONCE_GRACE_WINDOW,
) -> datetime | None:
    """
    Compute the next due timestamp of a schedule.

    Args:
        spec: Schedule configuration
        now: Current instant (naive UTC)
        last_executed_at: Last execution (naive UTC); only consulted for ONCE
        cron_evaluator: Evaluator for CUSTOM_CRON expressions
        once_grace: How late a ONCE automation may still fire immediately

    Returns:
        Next due instant (naive UTC), or None when the schedule has no
        further occurrence or is missing a required parameter
    """
    zone = get_zone(spec.timezone)
    if zone is None:
        logger.bind(timezone=spec.timezone).warning("schedule_timezone_invalid")
        return None
    local_now = to_local(now, zone)

    match spec.schedule_type:
        case ScheduleType.ONCE:
            return _next_once(spec, now, local_now, last_executed_at, once_grace)
        case ScheduleType.DAILY:
            return _next_daily(spec, local_now)
        case ScheduleType.WEEKLY:
            return _next_weekly(spec, local_now)
        case ScheduleType.MONTHLY:
            return _next_month_step(spec, local_now, zone, 1)
        case ScheduleType.YEARLY:
            return _next_month_step(spec, local_now, zone, 12)
        case ScheduleType.INTERVAL:
            return _next_interval(spec, now)
        case ScheduleType.CUSTOM_CRON:
            return _next_cron(spec, local_now, cron_evaluator)

    logger.bind(schedule_type=str(spec.schedule_type)).warning("schedule_type_unknown")
    return None


def next_execution_for(
    automation: "Automation",
    now: datetime,
    cron_evaluator: CronEvaluator | None = croniter_evaluator,
    once_grace: timedelta = ONCE_GRACE_WINDOW,
) -> datetime | None:
    """Next due instant for a persisted automation; None while it is inactive."""
    if not automation.is_active:
        return None
    return compute_next_execution(
        ScheduleSpec.from_automation(automation),
        now,
        last_executed_at=automation.last_executed_at,
        cron_evaluator=cron_evaluator,
        once_grace=once_grace,
    )
