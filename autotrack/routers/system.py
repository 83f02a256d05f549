"""
System endpoints: scheduler status, audit log and manual sweep triggers.
"""

from typing import Any, Dict

from fastapi import APIRouter, HTTPException, Query
import structlog

from autotrack.services.scheduler_service import build_schedule, get_scheduler_service
from autotrack.infrastructure.config import get_settings

router = APIRouter()
logger = structlog.get_logger(__name__)


@router.get("/scheduler/status")
async def scheduler_status() -> Dict[str, Any]:
    """Get scheduler status with next run times."""
    return get_scheduler_service().get_status()


@router.get("/scheduler/audit")
async def scheduler_audit(limit: int = Query(50, ge=1, le=500)) -> Dict[str, Any]:
    """Get recent scheduler job execution history."""
    return await get_scheduler_service().get_audit_log(limit=limit)


@router.post("/scheduler/jobs/{job_name}/trigger")
async def trigger_job(job_name: str) -> Dict[str, Any]:
    """Run a sweep now instead of waiting for its cron tick."""
    if job_name not in build_schedule(get_settings()):
        raise HTTPException(status_code=404, detail=f"Unknown job: {job_name}")
    result = await get_scheduler_service().trigger_job(job_name)
    logger.info("scheduler_job_triggered", job=job_name, success=result.get("success"))
    return result
