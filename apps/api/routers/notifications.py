"""In-app notification inbox."""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models.user import User
from routers.auth_scope import get_current_user
from services.notifications import (
    list_notifications,
    mark_all_notifications_read,
    mark_notification_read,
)

router = APIRouter()


@router.get("")
async def get_notifications(
    limit: int = Query(default=50, ge=1, le=200),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await list_notifications(user.id, db, limit=limit)


@router.post("/read_all")
async def read_all_notifications(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    updated = await mark_all_notifications_read(user.id, db)
    return {"ok": True, "updated": updated}


@router.post("/{notification_id}/read")
async def read_notification(
    notification_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if not await mark_notification_read(notification_id, user.id, db):
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"ok": True}
