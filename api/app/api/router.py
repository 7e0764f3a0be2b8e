"""API router composition for all route groups."""

from fastapi import APIRouter

from .routes import auth, automations, events, ops, recipes, schedules, webhooks, work_items

api_router = APIRouter()
api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(recipes.router, prefix="/recipes", tags=["recipes"])
api_router.include_router(automations.router, prefix="/automations", tags=["automations"])
api_router.include_router(events.router, prefix="/events", tags=["events"])
api_router.include_router(schedules.router, prefix="/schedules", tags=["schedules"])
api_router.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
api_router.include_router(work_items.router, prefix="/work-items", tags=["work-items"])
api_router.include_router(ops.router, prefix="/ops", tags=["ops"])
