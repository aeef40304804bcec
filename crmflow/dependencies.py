import uuid
from typing import Annotated

from fastapi import Cookie, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import joinedload

from crmflow.config import AppConfig, Settings, get_config, get_settings
from crmflow.core.database import get_db, get_session_factory
from crmflow.core.datetime_utils import is_expired
from crmflow.models.automation import Automation
from crmflow.models.user import Session, User
from crmflow.scheduling.engine import ExecutionEngine
from crmflow.services.automation_service import get_user_automation

# Type aliases for dependency injection
DBSession = Annotated[AsyncSession, Depends(get_db)]
AppSettings = Annotated[Settings, Depends(get_settings)]
Config = Annotated[AppConfig, Depends(get_config)]
SessionFactory = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)]


async def get_current_user_optional(
    db: DBSession,
    session_id: str | None = Cookie(default=None, alias="session_id"),
) -> User | None:
    """Get the current user if authenticated, None otherwise."""
    if not session_id:
        return None

    try:
        session_uuid = uuid.UUID(session_id)
    except ValueError:
        return None

    result = await db.execute(
        select(Session).where(Session.id == session_uuid).options(joinedload(Session.user))
    )
    session = result.scalar_one_or_none()

    if not session:
        return None

    if is_expired(session.expires_at):
        # Clean up expired session
        await db.delete(session)
        return None

    user: User = session.user
    return user


async def get_current_user(
    user: User | None = Depends(get_current_user_optional),
) -> User:
    """Get the current user, raise 401 if not authenticated."""
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return user


# Type aliases for authenticated endpoints
CurrentUser = Annotated[User, Depends(get_current_user)]


async def get_owned_automation(
    automation_id: uuid.UUID,
    user: CurrentUser,
    db: DBSession,
) -> Automation:
    """Resolve an automation of the current user, raise 404 otherwise."""
    automation = await get_user_automation(db, user.id, automation_id)
    if automation is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Automation not found",
        )
    return automation


OwnedAutomation = Annotated[Automation, Depends(get_owned_automation)]


def get_engine(session_factory: SessionFactory, config: Config) -> ExecutionEngine:
    """Execution engine bound to the application's session factory."""
    return ExecutionEngine.from_config(session_factory, config)


Engine = Annotated[ExecutionEngine, Depends(get_engine)]
