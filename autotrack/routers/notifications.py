"""
Notification API endpoints.
"""

from fastapi import APIRouter, Query
from typing import List
import structlog

from autotrack.models.notification import Notification
from autotrack.services.notification_service import get_notification_service

router = APIRouter()
logger = structlog.get_logger(__name__)


@router.get("", response_model=List[Notification])
async def list_notifications(
    user: str = Query(..., description="Recipient"),
    unread_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
):
    return await get_notification_service().list_notifications(user=user, unread_only=unread_only, limit=limit)


@router.get("/unread-count")
async def unread_count(user: str = Query(...)):
    return {"user": user, "unread": await get_notification_service().get_unread_count(user)}


@router.post("/read-all")
async def mark_all_read(user: str = Query(...)):
    return {"user": user, "marked": await get_notification_service().mark_all_as_read(user)}


@router.post("/{notification_id}/read", response_model=Notification)
async def mark_read(notification_id: str):
    return await get_notification_service().mark_as_read(notification_id)


@router.delete("/{notification_id}")
async def delete_notification(notification_id: str):
    await get_notification_service().delete_notification(notification_id)
    return {"status": "deleted", "notification_id": notification_id}
