"""Tests for automation management."""

from datetime import datetime, timedelta

import pytest

from crmflow.models.automation import (
    Automation,
    AutomationType,
    ExecutionStatus,
    ScheduleType,
)
from crmflow.schemas.automation import AutomationCreate, AutomationUpdate, RecipientIn
from crmflow.services import automation_service
from crmflow.services.automation_service import AutomationStateError

pytestmark = pytest.mark.asyncio

NOW = datetime(2026, 3, 10, 8, 0)


class TestCreateAutomation:
    """Tests for create_automation."""

    async def test_schedules_first_execution(self, db_session, user_factory):
        user = await user_factory()
        data = AutomationCreate(
            name="Morning digest",
            type=AutomationType.WEEKLY_SUMMARY,
            schedule_type=ScheduleType.DAILY,
            schedule_time="9:30",
            recipients=[RecipientIn(email="me@example.com", name="Me")],
        )

        automation = await automation_service.create_automation(db_session, user, data, now=NOW)

        assert automation.id is not None
        assert automation.schedule_time == "09:30"
        assert automation.next_execution_at == datetime(2026, 3, 10, 9, 30)
        assert automation.is_active is True
        assert automation.total_executions == 0
        assert [r.email for r in automation.recipients] == ["me@example.com"]
        assert automation.created_at is not None

    async def test_defaults_to_owner_timezone(self, db_session, user_factory):
        user = await user_factory(timezone="Europe/Paris")
        data = AutomationCreate(
            name="Check-in",
            type=AutomationType.CLIENT_CHECK_IN,
            schedule_type=ScheduleType.DAILY,
            schedule_time="09:00",
        )

        automation = await automation_service.create_automation(db_session, user, data, now=NOW)

        assert automation.timezone == "Europe/Paris"
        assert automation.next_execution_at == datetime(2026, 3, 11, 8, 0)

    async def test_incomplete_schedule_left_unscheduled(self, db_session, user_factory):
        user = await user_factory()
        data = AutomationCreate(
            name="Weekly",
            type=AutomationType.WEEKLY_SUMMARY,
            schedule_type=ScheduleType.WEEKLY,
            schedule_time="09:00",
        )

        automation = await automation_service.create_automation(db_session, user, data, now=NOW)

        assert automation.next_execution_at is None
        assert automation.is_active is True

    async def test_inactive_not_scheduled(self, db_session, user_factory):
        user = await user_factory()
        data = AutomationCreate(
            name="Paused",
            type=AutomationType.BACKUP_DATA,
            schedule_type=ScheduleType.INTERVAL,
            schedule_interval=60,
            is_active=False,
        )

        automation = await automation_service.create_automation(db_session, user, data, now=NOW)

        assert automation.next_execution_at is None


class TestUpdateAutomation:
    """Tests for update_automation."""

    async def test_schedule_change_recomputes(self, db_session, automation_factory):
        automation = await automation_factory(next_execution_at=datetime(2026, 3, 10, 9, 0))

        updated = await automation_service.update_automation(
            db_session, automation, AutomationUpdate(schedule_time="17:45"), now=NOW
        )

        assert updated.schedule_time == "17:45"
        assert updated.next_execution_at == datetime(2026, 3, 10, 17, 45)

    async def test_non_schedule_change_keeps_next(self, db_session, automation_factory):
        next_at = datetime(2026, 3, 10, 9, 0)
        automation = await automation_factory(next_execution_at=next_at)

        updated = await automation_service.update_automation(
            db_session, automation, AutomationUpdate(name="Renamed", config={"a": 1}), now=NOW
        )

        assert updated.name == "Renamed"
        assert updated.config == {"a": 1}
        assert updated.next_execution_at == next_at

    async def test_deactivate_unschedules(self, db_session, automation_factory):
        automation = await automation_factory(next_execution_at=datetime(2026, 3, 10, 9, 0))

        updated = await automation_service.update_automation(
            db_session, automation, AutomationUpdate(is_active=False), now=NOW
        )

        assert updated.is_active is False
        assert updated.next_execution_at is None

    async def test_recipients_replaced(self, db_session, automation_factory):
        automation = await automation_factory(recipients=["old@example.com"])

        updated = await automation_service.update_automation(
            db_session,
            automation,
            AutomationUpdate(
                recipients=[
                    RecipientIn(email="new1@example.com"),
                    RecipientIn(email="new2@example.com"),
                ]
            ),
            now=NOW,
        )

        assert [r.email for r in updated.recipients] == ["new1@example.com", "new2@example.com"]

    async def test_activating_completed_once_reactivates(self, db_session, automation_factory):
        automation = await automation_factory(
            schedule_type=ScheduleType.ONCE,
            is_active=False,
            last_executed_at=NOW - timedelta(days=2),
            total_executions=1,
            successful_executions=1,
        )

        updated = await automation_service.update_automation(
            db_session, automation, AutomationUpdate(is_active=True), now=NOW
        )

        assert updated.is_active is True
        assert updated.last_executed_at is None
        assert updated.next_execution_at == datetime(2026, 3, 10, 9, 0)
        assert updated.total_executions == 1

    async def test_switch_to_once_after_recurring_runs(self, db_session, automation_factory):
        """A recurring automation switched to ONCE is scheduled to fire once more."""
        automation = await automation_factory(
            schedule_type=ScheduleType.DAILY,
            next_execution_at=datetime(2026, 3, 11, 9, 0),
            last_executed_at=datetime(2026, 3, 9, 9, 0),
            total_executions=3,
            successful_executions=3,
        )

        updated = await automation_service.update_automation(
            db_session, automation, AutomationUpdate(schedule_type=ScheduleType.ONCE), now=NOW
        )

        assert updated.schedule_type == ScheduleType.ONCE
        assert updated.is_active is True
        assert updated.last_executed_at is None
        assert updated.next_execution_at == datetime(2026, 3, 10, 9, 0)
        assert updated.total_executions == 3


class TestReactivateAutomation:
    """Tests for reactivate_automation."""

    async def test_completed_once_is_rearmed(self, db_session, automation_factory):
        """Reactivation schedules as if never run and keeps statistics."""
        automation = await automation_factory(
            schedule_type=ScheduleType.ONCE,
            is_active=False,
            next_execution_at=None,
            last_executed_at=NOW - timedelta(days=1),
            total_executions=3,
            successful_executions=2,
        )

        updated = await automation_service.reactivate_automation(db_session, automation, now=NOW)

        assert updated.is_active is True
        assert updated.last_executed_at is None
        assert updated.next_execution_at == datetime(2026, 3, 10, 9, 0)
        assert updated.total_executions == 3
        assert updated.successful_executions == 2

    async def test_recurring_rejected(self, db_session, automation_factory):
        automation = await automation_factory(is_active=False, last_executed_at=NOW)

        with pytest.raises(AutomationStateError):
            await automation_service.reactivate_automation(db_session, automation, now=NOW)

    async def test_never_run_once_rejected(self, db_session, automation_factory):
        automation = await automation_factory(schedule_type=ScheduleType.ONCE, is_active=False)

        with pytest.raises(AutomationStateError):
            await automation_service.reactivate_automation(db_session, automation, now=NOW)


class TestQueries:
    """Tests for listing, history and deletion."""

    async def test_list_paginates_and_filters(self, db_session, user_factory, automation_factory):
        user = await user_factory()
        other = await user_factory()
        for i in range(3):
            await automation_factory(user=user, name=f"task {i}")
        await automation_factory(user=user, type=AutomationType.BACKUP_DATA, is_active=False)
        await automation_factory(user=other)

        page, total = await automation_service.list_automations(db_session, user.id, limit=2)
        assert total == 4
        assert len(page) == 2

        backups, total = await automation_service.list_automations(
            db_session, user.id, automation_type=AutomationType.BACKUP_DATA
        )
        assert total == 1
        assert backups[0].type == AutomationType.BACKUP_DATA

        active, total = await automation_service.list_automations(
            db_session, user.id, is_active=True
        )
        assert total == 3
        assert all(a.is_active for a in active)

    async def test_get_user_automation_checks_owner(
        self, db_session, user_factory, automation_factory
    ):
        owner = await user_factory()
        stranger = await user_factory()
        automation = await automation_factory(user=owner)

        assert await automation_service.get_user_automation(db_session, owner.id, automation.id)
        assert (
            await automation_service.get_user_automation(db_session, stranger.id, automation.id)
            is None
        )

    async def test_execution_history(
        self, db_session, user_factory, automation_factory, execution_factory
    ):
        user = await user_factory()
        automation = await automation_factory(user=user)
        other_automation = await automation_factory()
        for minutes in range(7):
            await execution_factory(automation, started_at=NOW - timedelta(minutes=minutes))
        await execution_factory(automation, status=ExecutionStatus.FAILED, error="bounce")
        await execution_factory(other_automation)

        latest = await automation_service.latest_executions(db_session, automation.id)
        assert len(latest) == 5
        assert latest == sorted(latest, key=lambda e: e.started_at, reverse=True)
        assert await automation_service.count_executions(db_session, automation.id) == 8

        failed, total = await automation_service.list_executions(
            db_session, user.id, status=ExecutionStatus.FAILED
        )
        assert total == 1
        assert failed[0].error == "bounce"

        mine, total = await automation_service.list_executions(db_session, user.id)
        assert total == 8

    async def test_delete_cascades(self, db_session, automation_factory, execution_factory):
        automation = await automation_factory()
        await execution_factory(automation)
        automation_id = automation.id

        await automation_service.delete_automation(db_session, automation)

        assert await db_session.get(Automation, automation_id) is None
        assert await automation_service.count_executions(db_session, automation_id) == 0
