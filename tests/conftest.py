"""
Shared test fixtures for AutoTrack API tests.

Each test gets its own SQLite database file and a fixed clock.
"""
import uuid
from datetime import date, datetime
from unittest.mock import patch

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from autotrack.db.models import BacklogItemModel, PendingCommitModel, SprintModel, TaskModel
from autotrack.infrastructure.config import Settings
from autotrack.infrastructure.database import close_database, create_tables, get_session, init_database
from autotrack.services.backlog_service import BacklogService
from autotrack.services.commit_review_service import CommitReviewService
from autotrack.services.notification_service import NotificationService
from autotrack.services.progress_service import ProgressService
from autotrack.services.scheduler_service import SchedulerService
from autotrack.services.sprint_service import SprintService
from autotrack.services.task_service import TaskService

TODAY = date(2024, 3, 11)


class FixedClock:
    """Callable returning a settable "today"."""

    def __init__(self, today: date):
        self.today = today

    def __call__(self) -> date:
        return self.today


@pytest.fixture
def clock():
    return FixedClock(TODAY)


@pytest.fixture
def test_settings(tmp_path):
    """Settings pointing at a throwaway SQLite file, scheduler and gateway off."""
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'autotrack.db'}",
        scheduler_enabled=False,
        notification_gateway_url=None,
        notification_gateway_token=None,
    )


@pytest_asyncio.fixture
async def database(test_settings):
    await init_database(test_settings.database_url)
    await create_tables()
    yield
    await close_database()


@pytest.fixture
def notifications(test_settings, database):
    return NotificationService(settings=test_settings)


@pytest.fixture
def sprint_service(clock, test_settings, notifications):
    return SprintService(clock=clock, settings=test_settings, notifications=notifications)


@pytest.fixture
def task_service(notifications):
    return TaskService(notifications=notifications)


@pytest.fixture
def backlog_service(database):
    return BacklogService()


@pytest.fixture
def commit_service(clock, test_settings, notifications):
    return CommitReviewService(clock=clock, settings=test_settings, notifications=notifications)


@pytest.fixture
def progress_service(clock, database):
    return ProgressService(clock=clock)


@pytest.fixture
def scheduler_service(test_settings, sprint_service):
    return SchedulerService(settings=test_settings, sprint_service=sprint_service)


class Seeder:
    """Writes rows directly, bypassing service validation, to set up any state."""

    async def sprint(self, **kw) -> str:
        values = dict(
            id=str(uuid.uuid4()),
            name="Sprint",
            start_date=TODAY,
            end_date=TODAY,
            status="upcoming",
            project_id="proj",
            created_by="owner",
            created_at=datetime.utcnow(),
        )
        values.update(kw)
        async with get_session() as session:
            session.add(SprintModel(**values))
        return values["id"]

    async def task(self, **kw) -> str:
        values = dict(
            id=str(uuid.uuid4()),
            code=f"PROJ-{uuid.uuid4().hex[:6]}",
            title="Task",
            status="todo",
            project_id="proj",
            created_at=datetime.utcnow(),
        )
        values.update(kw)
        async with get_session() as session:
            session.add(TaskModel(**values))
        return values["id"]

    async def item(self, **kw) -> str:
        values = dict(
            id=str(uuid.uuid4()),
            title="Item",
            project_id="proj",
            priority_level="medium",
            priority_rank=1,
            story_points=3,
            status="product_backlog",
            created_at=datetime.utcnow(),
        )
        values.update(kw)
        async with get_session() as session:
            session.add(BacklogItemModel(**values))
        return values["id"]

    async def commit(self, **kw) -> str:
        values = dict(
            id=str(uuid.uuid4()),
            username="dev",
            commit_message="Fix things",
            branch="main",
            commit_time=datetime(2024, 3, 10, 12, 0),
            commit_sha=uuid.uuid4().hex,
            project_id="proj",
            status="pending_review",
            created_at=datetime.utcnow(),
        )
        values.update(kw)
        async with get_session() as session:
            session.add(PendingCommitModel(**values))
        return values["id"]

    async def get(self, model, id):
        async with get_session() as session:
            return await session.get(model, id)


@pytest.fixture
def seed(database):
    return Seeder()


@pytest_asyncio.fixture
async def client(database, sprint_service, task_service, backlog_service, commit_service,
                 progress_service, notifications, scheduler_service):
    """Async HTTP client with the routers wired to the test services.

    ASGITransport does not run the lifespan, so the database fixture
    provides the schema and the scheduler is never started.
    """
    from autotrack.main import app

    with patch("autotrack.routers.sprints.get_sprint_service", return_value=sprint_service), \
         patch("autotrack.routers.sprints.get_progress_service", return_value=progress_service), \
         patch("autotrack.routers.tasks.get_task_service", return_value=task_service), \
         patch("autotrack.routers.backlog.get_backlog_service", return_value=backlog_service), \
         patch("autotrack.routers.commits.get_commit_review_service", return_value=commit_service), \
         patch("autotrack.routers.notifications.get_notification_service", return_value=notifications), \
         patch("autotrack.routers.system.get_scheduler_service", return_value=scheduler_service):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac
