from fastapi import APIRouter

from crmflow.api.automations import router as automations_router
from crmflow.api.scheduler import router as scheduler_router

api_router = APIRouter()

# Scheduler routes first: /api/automations/{automation_id} would shadow them
api_router.include_router(scheduler_router, prefix="/api/automations", tags=["scheduler"])
api_router.include_router(automations_router, prefix="/api", tags=["automations"])
