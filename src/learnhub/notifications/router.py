"""Notification API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from learnhub.auth.dependencies import get_current_user
from learnhub.database import get_session
from learnhub.db.models import User
from learnhub.notifications.schemas import (
    NotificationListResponse,
    NotificationResponse,
    UnreadCountResponse,
)
from learnhub.notifications.service import (
    get_notifications,
    get_unread_count,
    mark_all_as_read,
    mark_as_read,
)

router = APIRouter(prefix="/api/v1/notifications", tags=["Notifications"])


@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    unread_only: bool = Query(False),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> NotificationListResponse:
    """List user's notifications (paginated)."""
    notifications, total = await get_notifications(db, user.id, page, per_page, unread_only=unread_only)
    return NotificationListResponse(
        notifications=[NotificationResponse.model_validate(n) for n in notifications],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.get("/unread-count", response_model=UnreadCountResponse)
async def get_unread_notification_count(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> UnreadCountResponse:
    """Get unread notification count."""
    count = await get_unread_count(db, user.id)
    return UnreadCountResponse(unread_count=count)


@router.post("/read-all")
async def mark_all_read(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> dict[str, str | int]:
    """Mark all notifications as read."""
    count = await mark_all_as_read(db, user.id)
    await db.commit()
    return {"detail": f"Marked {count} notifications as read", "updated": count}


@router.post("/{notification_id}/read")
async def mark_notification_read(
    notification_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> dict[str, str]:
    """Mark a notification as read."""
    found = await mark_as_read(db, user.id, notification_id)
    if not found:
        raise HTTPException(status_code=404, detail="Notification not found")
    await db.commit()
    return {"detail": "Notification marked as read"}
