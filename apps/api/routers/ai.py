"""Workspace AI assistant endpoints."""

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models.user import User
from routers.auth_scope import get_current_user
from routers.rate_limit import preset
from services.ai_chat import get_ai_history, send_ai_message

router = APIRouter()


class AIChatRequest(BaseModel):
    workspace_id: str
    message: str = Field(min_length=1, max_length=8000)


@router.post("/chat")
async def ai_chat_endpoint(
    request: AIChatRequest,
    _rate_limit: None = Depends(preset("ai_chat", "AI")),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await send_ai_message(user.id, request.workspace_id, request.message, db)


@router.get("/chat")
async def ai_history_endpoint(
    workspace_id: str = Query(...),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await get_ai_history(user.id, workspace_id, db)
