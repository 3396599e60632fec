"""Search across the caller's workspaces, projects and tasks."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models.user import User
from routers.auth_scope import get_current_user
from services.search import search_user_content

router = APIRouter()


@router.get("")
async def search_endpoint(
    q: str = Query(default="", max_length=200),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await search_user_content(q, user.id, db)
