"""Due-set selection for a scheduler tick."""

from collections.abc import Iterable
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from crmflow.core.logging import get_logger
from crmflow.models.automation import Automation

logger = get_logger(__name__)


async def load_candidates(db: AsyncSession) -> list[Automation]:
    """Load every active automation that has a next execution scheduled.

    The due comparison is done by select_due() against the tick's single
    `now`, not in SQL.
    """
    result = await db.execute(
        select(Automation).where(
            Automation.is_active == True,  # noqa: E712
            Automation.next_execution_at.is_not(None),
        )
    )
    return list(result.scalars().all())


def is_due(automation: Automation, now: datetime) -> bool:
    """True when the automation is active and its next execution has passed."""
    return (
        automation.is_active
        and automation.next_execution_at is not None
        and automation.next_execution_at <= now
    )


def select_due(automations: Iterable[Automation], now: datetime) -> list[Automation]:
    """
    Filter the automations due at `now`.

    Args:
        automations: Candidate automations (any order, may contain duplicates)
        now: The tick's authoritative time snapshot (naive UTC)

    Returns:
        Due automations, oldest due first, each id at most once
    """
    seen: set = set()
    due: list[Automation] = []
    for automation in automations:
        if automation.id in seen or not is_due(automation, now):
            continue
        seen.add(automation.id)
        due.append(automation)

    due.sort(key=lambda a: (a.next_execution_at, str(a.id)))

    for automation in due:
        logger.bind(
            automation_id=str(automation.id),
            name=automation.name,
            next_execution_at=automation.next_execution_at.isoformat(),
            now=now.isoformat(),
        ).debug("automation_due")

    return due
