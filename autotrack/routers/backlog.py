"""
Backlog API endpoints.
"""

from fastapi import APIRouter, Query
from typing import List
import structlog

from autotrack.models.backlog import (
    BacklogAnalytics, BacklogItem, BacklogItemCreate, BacklogItemUpdate, BacklogReorder, VelocityData,
)
from autotrack.services.backlog_service import get_backlog_service

router = APIRouter()
logger = structlog.get_logger(__name__)


@router.post("", response_model=BacklogItem, status_code=201)
async def create_item(data: BacklogItemCreate):
    return await get_backlog_service().create_item(data)


@router.get("/project/{project_id}", response_model=List[BacklogItem])
async def get_product_backlog(project_id: str):
    """Product backlog in priority order."""
    return await get_backlog_service().get_product_backlog(project_id)


@router.put("/project/{project_id}/order", response_model=List[BacklogItem])
async def reorder(project_id: str, body: BacklogReorder):
    return await get_backlog_service().reorder(project_id, body.item_ids)


@router.get("/project/{project_id}/velocity", response_model=List[VelocityData])
async def get_velocity(project_id: str):
    return await get_backlog_service().get_velocity_data(project_id)


@router.get("/project/{project_id}/analytics", response_model=BacklogAnalytics)
async def get_analytics(project_id: str):
    return await get_backlog_service().get_backlog_analytics(project_id)


@router.get("/project/{project_id}/search", response_model=List[BacklogItem])
async def search(
    project_id: str,
    q: str = Query(..., min_length=1, description="Text to match in title or description"),
    limit: int = Query(20, ge=1, le=100),
):
    return await get_backlog_service().search(project_id, q, limit)


@router.get("/sprint/{sprint_id}", response_model=List[BacklogItem])
async def get_sprint_backlog(sprint_id: str):
    """Sprint backlog in priority order."""
    return await get_backlog_service().get_sprint_backlog(sprint_id)


@router.get("/{item_id}", response_model=BacklogItem)
async def get_item(item_id: str):
    return await get_backlog_service().get_item(item_id)


@router.patch("/{item_id}", response_model=BacklogItem)
async def update_item(item_id: str, updates: BacklogItemUpdate):
    return await get_backlog_service().update_item(item_id, updates)


@router.post("/{item_id}/sprint/{sprint_id}", response_model=BacklogItem)
async def move_to_sprint(item_id: str, sprint_id: str):
    """Schedule an item into a sprint (capacity checked)."""
    return await get_backlog_service().move_to_sprint(item_id, sprint_id)


@router.post("/{item_id}/unschedule", response_model=BacklogItem)
async def move_to_product_backlog(item_id: str):
    return await get_backlog_service().move_to_product_backlog(item_id)


@router.post("/{item_id}/start", response_model=BacklogItem)
async def start_item(item_id: str):
    return await get_backlog_service().start_item(item_id)


@router.post("/{item_id}/complete", response_model=BacklogItem)
async def complete_item(item_id: str):
    return await get_backlog_service().complete_item(item_id)


@router.post("/{item_id}/archive", response_model=BacklogItem)
async def archive_item(item_id: str):
    """Archive instead of deleting."""
    return await get_backlog_service().archive_item(item_id)
