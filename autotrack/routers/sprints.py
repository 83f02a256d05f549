"""
Sprint management API endpoints.
"""

from fastapi import APIRouter, Query
from typing import List, Optional
import structlog

from autotrack.models.sprint import (
    DispositionPolicy, Sprint, SprintComplete, SprintCreate, SprintStatus, SprintUpdate,
)
from autotrack.models.progress import ReconciliationResult, SprintProgressSnapshot, SprintStatistics
from autotrack.models.task import Task
from autotrack.services.sprint_service import get_sprint_service
from autotrack.services.progress_service import get_progress_service

router = APIRouter()
logger = structlog.get_logger(__name__)


@router.get("", response_model=List[Sprint])
async def list_sprints(
    project_id: Optional[str] = Query(None, description="Filter by project ID"),
    status: Optional[SprintStatus] = Query(None, description="Filter by status"),
    limit: int = Query(50, ge=1, le=200, description="Max results"),
):
    """List sprints, newest first."""
    return await get_sprint_service().list_sprints(project_id=project_id, status=status, limit=limit)


@router.post("", response_model=Sprint, status_code=201)
async def create_sprint(data: SprintCreate):
    """Create a sprint."""
    return await get_sprint_service().create_sprint(data)


@router.get("/active/{project_id}", response_model=Optional[Sprint])
async def get_active_sprint(project_id: str):
    """Get the active sprint of a project, if any."""
    return await get_sprint_service().get_active_sprint(project_id)


@router.get("/{sprint_id}", response_model=Sprint)
async def get_sprint(sprint_id: str):
    return await get_sprint_service().get_sprint(sprint_id)


@router.patch("/{sprint_id}", response_model=Sprint)
async def update_sprint(sprint_id: str, updates: SprintUpdate):
    return await get_sprint_service().update_sprint(sprint_id, updates)


@router.delete("/{sprint_id}", response_model=ReconciliationResult)
async def delete_sprint(
    sprint_id: str,
    policy: DispositionPolicy = Query(..., description="What to do with the sprint's tasks and backlog items"),
):
    """Delete a sprint after applying the disposition policy to its work items."""
    return await get_sprint_service().delete_sprint(sprint_id, policy)


@router.post("/{sprint_id}/start", response_model=Sprint)
async def start_sprint(sprint_id: str):
    """Start an upcoming sprint early."""
    return await get_sprint_service().start_sprint(sprint_id)


@router.post("/{sprint_id}/complete", response_model=Sprint)
async def complete_sprint(sprint_id: str, body: Optional[SprintComplete] = None):
    """Complete an active sprint, optionally with retrospective notes."""
    body = body or SprintComplete()
    return await get_sprint_service().complete_sprint(sprint_id, notes=body.notes, policy=body.policy)


@router.post("/{sprint_id}/cancel", response_model=Sprint)
async def cancel_sprint(sprint_id: str, policy: Optional[DispositionPolicy] = Query(None)):
    return await get_sprint_service().cancel_sprint(sprint_id, policy=policy)


@router.post("/{sprint_id}/tasks/{task_id}", response_model=Task)
async def assign_task(sprint_id: str, task_id: str):
    """Add a task to the sprint."""
    return await get_sprint_service().assign_task_to_sprint(task_id, sprint_id)


@router.delete("/{sprint_id}/tasks/{task_id}", response_model=Task)
async def remove_task(sprint_id: str, task_id: str):
    """Take a task out of the sprint."""
    return await get_sprint_service().remove_task_from_sprint(task_id, sprint_id)


@router.get("/{sprint_id}/progress", response_model=SprintProgressSnapshot)
async def get_sprint_progress(sprint_id: str):
    """Progress snapshot with burndown, recomputed on every call."""
    return await get_progress_service().get_sprint_progress(sprint_id)


@router.get("/{sprint_id}/statistics", response_model=SprintStatistics)
async def get_sprint_statistics(sprint_id: str):
    return await get_progress_service().get_sprint_statistics(sprint_id)
