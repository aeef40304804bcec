"""FastAPI application: automation API, tick trigger and background scheduler."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from crmflow.api.router import api_router
from crmflow.config import get_settings
from crmflow.core.logging import get_logger, setup_logging
from crmflow.core.scheduler import is_scheduler_running, start_scheduler, stop_scheduler

settings = get_settings()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    setup_logging()
    await start_scheduler()
    logger.bind(scheduler_running=is_scheduler_running()).info("crmflow_started")
    yield
    await stop_scheduler()
    logger.info("crmflow_stopped")


app = FastAPI(
    title="CRMflow",
    description="Automation scheduler and executor for the CRMflow freelancer CRM",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/api/docs" if settings.debug else None,
    redoc_url="/api/redoc" if settings.debug else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.base_url],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["*"],
)

app.include_router(api_router)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Liveness probe; also reports whether the in-process tick schedule runs."""
    return {
        "status": "healthy",
        "scheduler": "running" if is_scheduler_running() else "stopped",
    }
