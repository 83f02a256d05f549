"""
AutoTrack API - FastAPI Backend

Sprint lifecycle management, backlog planning and commit review.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import structlog

from autotrack.routers import sprints, tasks, backlog, commits, notifications, system
from autotrack.infrastructure.config import get_settings
from autotrack.infrastructure.database import init_database, close_database, create_tables
from autotrack.infrastructure.exceptions import register_exception_handlers

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.dev.ConsoleRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("autotrack_starting")
    settings = get_settings()

    await init_database(settings.database_url, echo=settings.database_echo)
    await create_tables()

    from autotrack.services.scheduler_service import start_scheduler, stop_scheduler
    if settings.scheduler_enabled:
        await start_scheduler()
        logger.info("scheduler_enabled", status_cron=settings.sprint_status_cron,
                    reminder_cron=settings.sprint_reminder_cron)
    else:
        logger.info("scheduler_disabled")

    yield

    await stop_scheduler()
    await close_database()
    logger.info("autotrack_stopped")


app = FastAPI(
    title="AutoTrack API",
    description="Sprint lifecycle, backlog planning and commit review",
    version="1.0.0",
    lifespan=lifespan,
)

# Register global exception handlers
register_exception_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(sprints.router, prefix="/api/sprints", tags=["Sprints"])
app.include_router(tasks.router, prefix="/api/tasks", tags=["Tasks"])
app.include_router(backlog.router, prefix="/api/backlog", tags=["Backlog"])
app.include_router(commits.router, prefix="/api/commits", tags=["Commits"])
app.include_router(notifications.router, prefix="/api/notifications", tags=["Notifications"])
app.include_router(system.router, prefix="/api/system", tags=["System"])


@app.get("/")
async def root():
    return {
        "status": "ok",
        "service": "AutoTrack API",
        "version": "1.0.0"
    }


@app.get("/health")
async def health():
    """Detailed health check."""
    from sqlalchemy import text
    from autotrack.infrastructure.database import get_session
    from autotrack.services.scheduler_service import get_scheduler_service

    try:
        async with get_session() as session:
            await session.execute(text("SELECT 1"))
        database = "ok"
    except Exception as e:
        logger.warning("health_database_unavailable", error=str(e))
        database = "unavailable"

    return {
        "status": "healthy" if database == "ok" else "degraded",
        "components": {
            "api": "ok",
            "database": database,
            "scheduler": "ok" if get_scheduler_service().running else "stopped",
        }
    }
