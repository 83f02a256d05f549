"""
Sprint lifecycle scheduler for AutoTrack.

Drives the two scheduled passes:
- sprint_status_sweep: date-driven UPCOMING -> ACTIVE -> COMPLETED transitions
- sprint_reminder_sweep: "sprint ending soon" reminders

Uses APScheduler for cron-based scheduling.
All job executions are logged to the scheduler_audit_log table for observability.
"""
import time
from datetime import datetime
from typing import Optional, Dict, Any, Callable, Awaitable
import structlog

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy import select, func as sa_func

from autotrack.infrastructure.config import Settings, get_settings
from autotrack.infrastructure.database import get_session
from autotrack.db.models import SchedulerAuditLogModel
from autotrack.models.progress import SweepResult
from autotrack.services.sprint_service import SprintService, get_sprint_service

logger = structlog.get_logger(__name__)


def build_schedule(settings: Settings) -> Dict[str, Dict[str, Any]]:
    """Job name -> cron and description, from configuration."""
    return {
        "sprint_status_sweep": {
            "cron": settings.sprint_status_cron,
            "description": "Activate and complete sprints by date",
        },
        "sprint_reminder_sweep": {
            "cron": settings.sprint_reminder_cron,
            "description": "Remind owners of sprints ending soon",
        },
    }


class SchedulerService:
    """
    Runs the sprint sweeps on their cron schedules.

    A single instance is assumed; the sweeps themselves are sequential.
    """

    def __init__(self, settings: Optional[Settings] = None, sprint_service: Optional[SprintService] = None):
        self._settings = settings or get_settings()
        self._sprints = sprint_service
        self.scheduler = AsyncIOScheduler(timezone=self._settings.scheduler_timezone)
        self._running = False
        self._jobs: Dict[str, str] = {}  # job_name -> job_id

    @property
    def sprints(self) -> SprintService:
        if self._sprints is None:
            self._sprints = get_sprint_service()
        return self._sprints

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        """Start the scheduler with all configured jobs."""
        if self._running:
            logger.warning("scheduler_already_running")
            return

        logger.info("scheduler_starting")

        for job_name, config in build_schedule(self._settings).items():
            self._register_job(job_name, config)

        self.scheduler.start()
        self._running = True

        logger.info("scheduler_started", jobs=list(self._jobs.keys()))

    async def stop(self):
        """Stop the scheduler."""
        if not self._running:
            return

        logger.info("scheduler_stopping")
        self.scheduler.shutdown(wait=False)
        self._running = False
        logger.info("scheduler_stopped")

    def _register_job(self, job_name: str, config: Dict[str, Any]):
        """Register a scheduled job, wrapped with audit logging."""
        handler = self._get_handler(job_name)

        async def audited_handler(_name=job_name, _handler=handler):
            await self._run_with_audit(_name, _handler)

        trigger = CronTrigger.from_crontab(config["cron"], timezone=self._settings.scheduler_timezone)

        job = self.scheduler.add_job(
            audited_handler,
            trigger=trigger,
            id=job_name,
            name=config.get("description", job_name),
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

        self._jobs[job_name] = job.id
        logger.info("job_registered", job=job_name, cron=config["cron"])

    def _get_handler(self, job_name: str) -> Optional[Callable[[], Awaitable[SweepResult]]]:
        handlers = {
            "sprint_status_sweep": self.sprints.run_daily_sweep,
            "sprint_reminder_sweep": self.sprints.run_reminder_sweep,
        }
        return handlers.get(job_name)

    async def _run_with_audit(self, job_name: str, handler: Callable[[], Awaitable[SweepResult]]) -> Optional[SweepResult]:
        """Execute a sweep and record the outcome in the audit log."""
        started = datetime.utcnow()
        t0 = time.monotonic()
        result: Optional[SweepResult] = None
        status = "completed"
        error_msg = None

        try:
            result = await handler()
            if result.failure_count:
                status = "partial"
                error_msg = "; ".join(f"{f.sprint_id}: {f.error}" for f in result.failed)[:2000]
        except Exception as e:
            status = "failed"
            error_msg = str(e)
            logger.error("job_failed", job=job_name, error=error_msg)
        finally:
            duration = round(time.monotonic() - t0, 2)
            await self._append_audit(
                job_name=job_name,
                started_at=started,
                completed_at=datetime.utcnow(),
                status=status,
                duration_seconds=duration,
                processed=result.processed if result else 0,
                failed=result.failure_count if result else 0,
                error=error_msg,
            )
            logger.info("job_audit", job=job_name, status=status, duration=duration)

        return result

    async def _append_audit(
        self,
        job_name: str,
        started_at: datetime,
        completed_at: datetime,
        status: str,
        duration_seconds: float,
        processed: int = 0,
        failed: int = 0,
        error: Optional[str] = None,
    ):
        """Persist an execution record to the scheduler_audit_log table."""
        try:
            async with get_session() as session:
                session.add(SchedulerAuditLogModel(
                    job_name=job_name,
                    started_at=started_at,
                    completed_at=completed_at,
                    status=status,
                    duration_seconds=duration_seconds,
                    processed=processed,
                    failed=failed,
                    error=error,
                    created_at=completed_at,
                ))
        except Exception as e:
            logger.error("audit_log_write_failed", job=job_name, error=str(e))

    async def get_audit_log(self, limit: int = 50) -> Dict[str, Any]:
        """Return recent audit log entries in chronological order."""
        async with get_session() as session:
            count_result = await session.execute(
                select(sa_func.count()).select_from(SchedulerAuditLogModel)
            )
            total = count_result.scalar() or 0

            result = await session.execute(
                select(SchedulerAuditLogModel)
                .order_by(SchedulerAuditLogModel.id.desc())
                .limit(limit)
            )
            rows = result.scalars().all()

            executions = [
                {
                    "job_name": row.job_name,
                    "started_at": row.started_at.isoformat() if row.started_at else None,
                    "completed_at": row.completed_at.isoformat() if row.completed_at else None,
                    "status": row.status,
                    "duration_seconds": row.duration_seconds,
                    "processed": row.processed,
                    "failed": row.failed,
                    "error": row.error,
                }
                for row in reversed(rows)
            ]

        return {"executions": executions, "total": total}

    # ============================================
    # MANUAL TRIGGERS
    # ============================================

    async def trigger_job(self, job_name: str) -> Dict[str, Any]:
        """Manually trigger a scheduled job (goes through audit log)."""
        handler = self._get_handler(job_name)
        if not handler:
            return {"success": False, "error": f"Unknown job: {job_name}"}

        result = await self._run_with_audit(job_name, handler)
        if result is None:
            return {"success": False, "job": job_name, "error": "Job failed, see audit log"}
        return {"success": result.failure_count == 0, "job": job_name, "result": result.model_dump()}

    def get_status(self) -> Dict[str, Any]:
        """Get scheduler status."""
        jobs = []
        for job in self.scheduler.get_jobs():
            next_run = getattr(job, "next_run_time", None)
            jobs.append({
                "id": job.id,
                "name": job.name,
                "next_run": next_run.isoformat() if next_run else None
            })

        return {
            "running": self._running,
            "enabled": self._settings.scheduler_enabled,
            "timezone": self._settings.scheduler_timezone,
            "jobs": jobs,
            "job_count": len(jobs)
        }


# ============================================
# SINGLETON
# ============================================

_scheduler_service: Optional[SchedulerService] = None


def get_scheduler_service() -> SchedulerService:
    """Get the singleton scheduler service instance."""
    global _scheduler_service
    if _scheduler_service is None:
        _scheduler_service = SchedulerService()
    return _scheduler_service


async def start_scheduler():
    """Start the scheduler (call from app startup)."""
    scheduler = get_scheduler_service()
    await scheduler.start()


async def stop_scheduler():
    """Stop the scheduler (call from app shutdown)."""
    scheduler = get_scheduler_service()
    await scheduler.stop()
