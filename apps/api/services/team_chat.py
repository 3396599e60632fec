"""Workspace team chat history."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import uuid

from fastapi import HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.chat_message import ChatMessage
from models.user import User
from services.workspace_access import ensure_member

CHAT_HISTORY_LIMIT = 50


def _serialize(message: ChatMessage, author: Optional[User]) -> Dict[str, Any]:
    return {
        "id": message.id,
        "user_id": message.user_id,
        "user_name": (author.name if author else None) or "Unknown",
        "user_avatar": author.avatar if author else None,
        "content": message.content,
        "created_at": message.created_at.isoformat() if message.created_at else None,
    }


async def list_chat_messages(workspace_id: str, user_id: str, db: AsyncSession) -> List[Dict[str, Any]]:
    """The most recent CHAT_HISTORY_LIMIT messages, oldest first."""
    await ensure_member(workspace_id, user_id, db)
    result = await db.execute(
        select(ChatMessage, User)
        .outerjoin(User, User.id == ChatMessage.user_id)
        .where(ChatMessage.workspace_id == workspace_id)
        .order_by(ChatMessage.created_at.desc(), ChatMessage.id.desc())
        .limit(CHAT_HISTORY_LIMIT)
    )
    rows = result.all()
    return [_serialize(message, author) for message, author in reversed(rows)]


async def post_chat_message(workspace_id: str, content: str, user: User, db: AsyncSession) -> Dict[str, Any]:
    text = (content or "").strip()
    if not text:
        raise HTTPException(status_code=400, detail="Message content is required")
    await ensure_member(workspace_id, user.id, db)

    message = ChatMessage(
        id=str(uuid.uuid4()),
        user_id=user.id,
        workspace_id=workspace_id,
        content=text,
        created_at=datetime.now(timezone.utc),
    )
    db.add(message)
    await db.commit()
    return _serialize(message, user)
