"""In-app notification sink."""

from __future__ import annotations

from enum import Enum
import json
import logging
from typing import Any, Dict, List, Optional
import uuid

from sqlalchemy import func, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from database import async_session_maker
from models.notification import Notification

logger = logging.getLogger(__name__)


class NotificationType(str, Enum):
    INFO = "INFO"
    SUCCESS = "SUCCESS"
    WARNING = "WARNING"


async def create_notification(
    *,
    user_id: str,
    title: str,
    message: str,
    type: NotificationType = NotificationType.INFO,
    metadata: Optional[Dict[str, Any]] = None,
) -> Optional[str]:
    """
    Write one notification in its own session and return its id.

    Delivery is fire-and-forget: failures are logged and None is returned.
    """
    try:
        async with async_session_maker() as session:
            row = Notification(
                id=str(uuid.uuid4()),
                user_id=user_id,
                title=title,
                message=message,
                type=NotificationType(type).value,
                metadata_json=json.dumps(metadata) if metadata else None,
            )
            session.add(row)
            await session.commit()
            return row.id
    except Exception as exc:
        logger.warning("Failed to create notification for %s: %s", user_id, exc)
        return None


def _serialize(row: Notification) -> Dict[str, Any]:
    metadata = None
    if row.metadata_json:
        try:
            metadata = json.loads(row.metadata_json)
        except ValueError:
            metadata = None
    return {
        "id": row.id,
        "title": row.title,
        "message": row.message,
        "type": row.type,
        "metadata": metadata,
        "read": bool(row.read),
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }


async def list_notifications(user_id: str, db: AsyncSession, limit: int = 50) -> Dict[str, Any]:
    result = await db.execute(
        select(Notification)
        .where(Notification.user_id == user_id)
        .order_by(Notification.created_at.desc())
        .limit(max(1, min(int(limit), 200)))
    )
    items: List[Dict[str, Any]] = [_serialize(row) for row in result.scalars().all()]
    return {
        "notifications": items,
        "unread_count": await get_unread_count(user_id, db),
    }


async def get_unread_count(user_id: str, db: AsyncSession) -> int:
    result = await db.execute(
        select(func.count(Notification.id)).where(
            Notification.user_id == user_id,
            Notification.read.is_(False),
        )
    )
    return int(result.scalar() or 0)


async def mark_notification_read(notification_id: str, user_id: str, db: AsyncSession) -> bool:
    result = await db.execute(
        update(Notification)
        .where(Notification.id == notification_id, Notification.user_id == user_id)
        .values(read=True)
    )
    await db.commit()
    return (result.rowcount or 0) > 0


async def mark_all_notifications_read(user_id: str, db: AsyncSession) -> int:
    result = await db.execute(
        update(Notification)
        .where(Notification.user_id == user_id, Notification.read.is_(False))
        .values(read=True)
    )
    await db.commit()
    return int(result.rowcount or 0)
