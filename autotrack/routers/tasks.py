"""
Task management API endpoints.
"""

from fastapi import APIRouter, Query
from typing import List, Optional
import structlog

from autotrack.models.task import Task, TaskCreate, TaskUpdate, TaskMove, TaskDecline, TaskStatus
from autotrack.services.task_service import get_task_service

router = APIRouter()
logger = structlog.get_logger(__name__)


@router.get("", response_model=List[Task])
async def list_tasks(
    sprint_id: Optional[str] = Query(None, description="Filter by sprint ID"),
    project_id: Optional[str] = Query(None, description="Filter by project ID"),
    status: Optional[TaskStatus] = Query(None, description="Filter by status"),
    assignee: Optional[str] = Query(None, description="Filter by assignee"),
    limit: int = Query(100, ge=1, le=500, description="Maximum tasks to return")
):
    """Get tasks with optional filters."""
    service = get_task_service()
    return await service.list_tasks(
        sprint_id=sprint_id, project_id=project_id, status=status, assignee=assignee, limit=limit
    )


@router.get("/backlog", response_model=List[Task])
async def get_backlog(project_id: Optional[str] = Query(None)):
    """Get backlog tasks (not assigned to any sprint)."""
    return await get_task_service().get_backlog(project_id)


@router.get("/{task_id}", response_model=Task)
async def get_task(task_id: str):
    return await get_task_service().get_task(task_id)


@router.post("", response_model=Task, status_code=201)
async def create_task(task_data: TaskCreate):
    """Create a new task."""
    return await get_task_service().create_task(task_data)


@router.patch("/{task_id}", response_model=Task)
async def update_task(task_id: str, updates: TaskUpdate):
    return await get_task_service().update_task(task_id, updates)


@router.post("/{task_id}/move", response_model=Task)
async def move_task(task_id: str, move: TaskMove):
    """Move task to a new status."""
    return await get_task_service().move_task(task_id, move)


@router.post("/{task_id}/decline", response_model=Task)
async def decline_task(task_id: str, decline: TaskDecline):
    """Send an in-progress task back to TODO with a reason."""
    return await get_task_service().decline_task(task_id, decline)


@router.delete("/{task_id}")
async def delete_task(task_id: str):
    await get_task_service().delete_task(task_id)
    return {"status": "deleted", "task_id": task_id}
