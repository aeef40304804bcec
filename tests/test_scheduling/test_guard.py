"""Tests for the one-shot guard."""

from datetime import datetime, timedelta

from crmflow.models.automation import Automation, AutomationType, ScheduleType
from crmflow.scheduling.guard import should_skip

NOW = datetime(2026, 3, 10, 9, 0)


def make_automation(
    schedule_type: ScheduleType = ScheduleType.ONCE,
    last_executed_at: datetime | None = None,
    is_active: bool = True,
    next_execution_at: datetime | None = NOW,
) -> Automation:
    return Automation(
        name="Send proposal",
        type=AutomationType.EMAIL_REMINDER,
        schedule_type=schedule_type,
        schedule_time="09:00",
        is_active=is_active,
        last_executed_at=last_executed_at,
        next_execution_at=next_execution_at,
    )


class TestShouldSkip:
    """Tests for should_skip."""

    def test_recent_execution_is_skipped_and_cleaned_up(self):
        automation = make_automation(last_executed_at=NOW - timedelta(hours=1))

        assert should_skip(automation, NOW) is True
        assert automation.is_active is False
        assert automation.next_execution_at is None

    def test_never_executed(self):
        automation = make_automation()

        assert should_skip(automation, NOW) is False
        assert automation.is_active is True
        assert automation.next_execution_at == NOW

    def test_execution_older_than_window(self):
        automation = make_automation(last_executed_at=NOW - timedelta(hours=24))

        assert should_skip(automation, NOW) is False
        assert automation.is_active is True

    def test_recurring_types_never_skipped(self):
        automation = make_automation(
            schedule_type=ScheduleType.DAILY,
            last_executed_at=NOW - timedelta(minutes=1),
        )

        assert should_skip(automation, NOW) is False
        assert automation.is_active is True
        assert automation.next_execution_at == NOW

    def test_idempotent_when_already_cleaned(self):
        automation = make_automation(
            last_executed_at=NOW - timedelta(hours=2),
            is_active=False,
            next_execution_at=None,
        )

        assert should_skip(automation, NOW) is True
        assert should_skip(automation, NOW) is True
        assert automation.is_active is False
        assert automation.next_execution_at is None

    def test_custom_window(self):
        automation = make_automation(last_executed_at=NOW - timedelta(hours=2))

        assert should_skip(automation, NOW, window=timedelta(hours=1)) is False
