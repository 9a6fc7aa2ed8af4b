"""
Cron Routes

HTTP triggers for the scheduled jobs, for deployments where an external
scheduler drives maintenance instead of the in-process one.
"""

import hmac
import logging

from fastapi import APIRouter, Depends, Request

from ptsa import scheduler
from ptsa.config import settings
from ptsa.exceptions import AuthenticationError
from ptsa.services.data_request_service import run_supervisor

logger = logging.getLogger(__name__)


def verify_cron_secret(request: Request) -> None:
    """Require ``Authorization: Bearer <CRON_SECRET>``."""
    expected = f"Bearer {settings.cron_secret}"
    provided = request.headers.get("authorization", "")
    if not settings.cron_secret or not hmac.compare_digest(provided.encode(), expected.encode()):
        logger.warning(f"Rejected cron call to {request.url.path}")
        raise AuthenticationError("Unauthorized")


router = APIRouter(prefix="/cron", tags=["Cron"], dependencies=[Depends(verify_cron_secret)])


@router.get("/daily-maintenance")
async def daily_maintenance():
    return {"success": True, **await scheduler.run_daily_maintenance()}


@router.get("/data-retention")
async def data_retention():
    return {"success": True, **await scheduler.run_data_retention()}


@router.get("/temp-cleanup")
async def temp_cleanup():
    return {"success": True, **await scheduler.run_temp_cleanup()}


@router.get("/coppa-age-out")
async def coppa_age_out():
    return {"success": True, **await scheduler.run_coppa_age_out()}


@router.get("/process-email-queue")
async def process_email_queue():
    return {"success": True, **await scheduler.run_email_queue()}


@router.get("/data-jobs")
async def data_jobs():
    return {"success": True, **await run_supervisor()}
