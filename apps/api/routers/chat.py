"""Workspace team chat history endpoints."""

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models.user import User
from routers.auth_scope import get_current_user
from routers.rate_limit import preset
from services.team_chat import list_chat_messages, post_chat_message

router = APIRouter()


class ChatMessageRequest(BaseModel):
    workspace_id: str = Field(min_length=1)
    content: str = Field(min_length=1, max_length=4000)


@router.get("/messages")
async def list_messages_endpoint(
    workspace_id: str = Query(...),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return {"messages": await list_chat_messages(workspace_id, user.id, db)}


@router.post("/messages", status_code=201)
async def post_message_endpoint(
    request: ChatMessageRequest,
    _rate_limit: None = Depends(preset("chat_message", "GENERAL")),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return {"message": await post_chat_message(request.workspace_id, request.content, user, db)}
