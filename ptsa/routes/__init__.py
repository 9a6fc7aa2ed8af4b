from fastapi import APIRouter

from ptsa.routes import (
    admin,
    announcements,
    communications,
    cron,
    events,
    members,
    payments,
    privacy,
    unsubscribe,
    webhooks,
)

api_router = APIRouter(prefix="/api")

api_router.include_router(privacy.router)
api_router.include_router(payments.router)
api_router.include_router(webhooks.router)
api_router.include_router(communications.router)
api_router.include_router(unsubscribe.router)
api_router.include_router(announcements.router)
api_router.include_router(events.router)
api_router.include_router(members.router)
api_router.include_router(members.users_router)
api_router.include_router(admin.router)
api_router.include_router(cron.router)
