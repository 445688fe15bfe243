"""Notification log endpoints."""

from uuid import UUID

from fastapi import APIRouter, HTTPException, Query

from ..core import get_core
from ..models import NotificationEvent, NotificationListResponse
from ..notifications import NotificationNotFoundError

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    limit: int = Query(50, ge=1, le=500, description="Max notifications to return"),
    unread_only: bool = Query(False, description="Only unread notifications"),
):
    """List notifications, newest first."""
    sink = get_core().notifications
    notifications = sink.list_notifications(limit=limit, unread_only=unread_only)
    return NotificationListResponse(
        notifications=notifications,
        count=len(notifications),
        unread_count=sink.unread_count,
    )


@router.post("/read-all")
async def mark_all_read():
    """Mark every notification as read."""
    count = get_core().notifications.mark_all_read()
    return {"status": "ok", "marked": count}


@router.post("/{notification_id}/read", response_model=NotificationEvent)
async def mark_read(notification_id: UUID):
    """Mark one notification as read."""
    try:
        return get_core().notifications.mark_read(notification_id)
    except NotificationNotFoundError:
        raise HTTPException(status_code=404, detail=f"Notification not found: {notification_id}")


@router.delete("", status_code=204)
async def clear_notifications():
    """Remove all notifications."""
    get_core().notifications.clear()
