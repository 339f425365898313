"""Notification creation and delivery service.

Notifications are:
1. Persisted in the database
2. Published on the user's Redis channel (see ``redis_client.user_channel``) when Redis is configured
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from learnhub.db.models import Notification
from learnhub.redis_client import publish_json, user_channel

logger = logging.getLogger(__name__)


class NotificationType(str, Enum):
    SESSION_CREATED = "SESSION_CREATED"
    SESSION_JOIN = "SESSION_JOIN"
    SESSION_STARTED = "SESSION_STARTED"
    SESSION_COMPLETED = "SESSION_COMPLETED"
    SESSION_CANCELLED = "SESSION_CANCELLED"
    MEETING_CREATED = "MEETING_CREATED"
    MEET_JOIN_REQUEST = "MEET_JOIN_REQUEST"
    TEAM_CREATED = "TEAM_CREATED"
    TEAM_JOIN = "TEAM_JOIN"
    TEAM_MEMBER_LEFT = "TEAM_MEMBER_LEFT"
    TEAM_MESSAGE = "TEAM_MESSAGE"
    TEAM_LEADERSHIP = "TEAM_LEADERSHIP"
    BADGE_EARNED = "BADGE_EARNED"
    CHALLENGE_COMPLETE = "CHALLENGE_COMPLETE"
    PAYMENT = "PAYMENT"
    SUBSCRIPTION = "SUBSCRIPTION"


async def create_notification(
    db: AsyncSession,
    user_id: int,
    type_: NotificationType,
    title: str,
    message: str,
    related_entity_type: str | None = None,
    related_entity_id: int | None = None,
) -> Notification:
    """Create a notification and publish it for live delivery."""
    notification = Notification(
        user_id=user_id,
        notification_type=type_.value,
        title=title,
        message=message,
        related_entity_type=related_entity_type,
        related_entity_id=related_entity_id,
        created_at=datetime.now(UTC),
    )
    db.add(notification)
    await db.flush()

    await publish_json(
        user_channel(user_id),
        {
            "event": "notification",
            "data": {
                "id": str(notification.id),
                "type": notification.notification_type,
                "title": notification.title,
                "message": notification.message,
                "relatedEntityType": notification.related_entity_type,
                "relatedEntityId": notification.related_entity_id,
                "timestamp": notification.created_at.isoformat(),
                "read": False,
            },
        },
    )

    return notification


async def notify_users(
    db: AsyncSession,
    user_ids: Iterable[int],
    type_: NotificationType,
    title: str,
    message: str,
    related_entity_type: str | None = None,
    related_entity_id: int | None = None,
    exclude_user_id: int | None = None,
) -> int:
    """Send the same notification to several users. Returns the count sent."""
    sent = 0
    for uid in dict.fromkeys(user_ids):
        if uid == exclude_user_id:
            continue
        await create_notification(
            db,
            uid,
            type_,
            title,
            message,
            related_entity_type=related_entity_type,
            related_entity_id=related_entity_id,
        )
        sent += 1
    return sent


async def get_notifications(
    db: AsyncSession,
    user_id: int,
    page: int = 1,
    per_page: int = 20,
    unread_only: bool = False,
) -> tuple[list[Notification], int]:
    """Get user's notifications (paginated, most recent first)."""
    offset = (page - 1) * per_page
    filters = [Notification.user_id == user_id]
    if unread_only:
        filters.append(Notification.read.is_(False))

    total_result = await db.execute(select(func.count()).select_from(Notification).where(*filters))
    total = total_result.scalar_one()

    result = await db.execute(
        select(Notification)
        .where(*filters)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .offset(offset)
        .limit(per_page)
    )
    return list(result.scalars().all()), total


async def mark_as_read(db: AsyncSession, user_id: int, notification_id: int) -> bool:
    """Mark a single notification as read. Returns True if found."""
    result = await db.execute(
        update(Notification)
        .where(Notification.id == notification_id, Notification.user_id == user_id)
        .values(read=True)
    )
    await db.flush()
    return result.rowcount > 0  # type: ignore[attr-defined, no-any-return]


async def mark_all_as_read(db: AsyncSession, user_id: int) -> int:
    """Mark all unread notifications as read. Returns count updated."""
    result = await db.execute(
        update(Notification)
        .where(Notification.user_id == user_id, Notification.read.is_(False))
        .values(read=True)
    )
    await db.flush()
    return result.rowcount  # type: ignore[attr-defined, no-any-return]


async def get_unread_count(db: AsyncSession, user_id: int) -> int:
    """Get count of unread notifications."""
    result = await db.execute(
        select(func.count())
        .select_from(Notification)
        .where(Notification.user_id == user_id, Notification.read.is_(False))
    )
    return result.scalar_one()
