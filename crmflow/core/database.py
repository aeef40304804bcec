import ssl
from collections.abc import AsyncGenerator
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from crmflow.config import get_settings
from crmflow.core.logging import get_logger

logger = get_logger(__name__)

settings = get_settings()


def clean_database_url(url: str) -> tuple[str, dict]:
    """
    Make a libpq-style URL usable by asyncpg.

    Hosted Postgres URLs carry params like sslmode that asyncpg rejects.
    They are stripped and SSL is passed through connect_args instead.
    Local hosts and SQLite URLs connect without SSL.
    """
    parsed = urlparse(url)
    if parsed.scheme.startswith("sqlite"):
        return url, {}

    params = parse_qs(parsed.query)
    wants_ssl = params.pop("sslmode", ["disable"])[0] not in ("disable", "allow")
    for param in ("channel_binding", "options"):
        params.pop(param, None)

    new_query = urlencode(params, doseq=True)
    clean_url = urlunparse(parsed._replace(query=new_query))

    hostname = parsed.hostname or ""
    is_local = hostname in ("localhost", "127.0.0.1", "db")

    if is_local or not wants_ssl:
        return clean_url, {}
    return clean_url, {"ssl": ssl.create_default_context()}


clean_url, connect_args = clean_database_url(settings.database_url)

engine = create_async_engine(
    clean_url,
    echo=settings.debug,
    pool_pre_ping=True,
    connect_args=connect_args,
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency that provides a database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            logger.bind(error=str(e)).error("database_transaction_rollback")
            await session.rollback()
            raise


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Dependency that provides the session factory used by the scheduler engine."""
    return AsyncSessionLocal
