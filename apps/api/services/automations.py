"""Workspace automations and member notification fan-out."""

from __future__ import annotations

import asyncio
from enum import Enum
import logging
from typing import Any, Dict, List, Optional
import uuid

from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.automation import Automation
from models.workspace_member import WorkspaceMember
from services.coins import add_coins
from services.notifications import NotificationType, create_notification
from services.workspace_access import ensure_member, get_membership, is_owner

logger = logging.getLogger(__name__)


class AutomationType(str, Enum):
    TASK_DONE = "TASK_DONE"
    DEADLINE = "DEADLINE"
    PROJECT_CREATED = "PROJECT_CREATED"


AUTOMATION_DESCRIPTIONS: Dict[AutomationType, Dict[str, str]] = {
    AutomationType.TASK_DONE: {
        "title": "Task Completion Alerts",
        "description": "Get notified when tasks are marked as done",
    },
    AutomationType.DEADLINE: {
        "title": "Deadline Reminders",
        "description": "Get notified when task deadlines are approaching",
    },
    AutomationType.PROJECT_CREATED: {
        "title": "New Project Alerts",
        "description": "Get notified when new projects are created in the workspace",
    },
}


async def get_workspace_automation(
    workspace_id: str,
    automation_type: AutomationType,
    db: AsyncSession,
) -> Optional[Automation]:
    result = await db.execute(
        select(Automation).where(
            Automation.workspace_id == workspace_id,
            Automation.type == AutomationType(automation_type).value,
        )
    )
    return result.scalar_one_or_none()


async def is_automation_enabled(workspace_id: str, automation_type: AutomationType, db: AsyncSession) -> bool:
    automation = await get_workspace_automation(workspace_id, automation_type, db)
    return bool(automation and automation.enabled)


async def notify_workspace_members(
    workspace_id: str,
    automation_type: AutomationType,
    title: str,
    message: str,
    db: AsyncSession,
    exclude_user_id: Optional[str] = None,
) -> int:
    """
    Notify every member except exclude_user_id when the automation is on.

    Deliveries run concurrently and independently; a failed delivery is
    logged and does not stop the rest. Returns the number delivered.
    """
    if not await is_automation_enabled(workspace_id, automation_type, db):
        return 0

    result = await db.execute(
        select(WorkspaceMember.user_id).where(WorkspaceMember.workspace_id == workspace_id)
    )
    recipients = sorted({user_id for user_id in result.scalars().all() if user_id != exclude_user_id})
    if not recipients:
        return 0

    outcomes = await asyncio.gather(
        *[
            create_notification(
                user_id=user_id,
                title=title,
                message=message,
                type=NotificationType.INFO,
            )
            for user_id in recipients
        ],
        return_exceptions=True,
    )
    delivered = 0
    for user_id, outcome in zip(recipients, outcomes):
        if isinstance(outcome, BaseException) or outcome is None:
            logger.warning(
                "Automation %s notification to %s in workspace %s failed: %s",
                automation_type,
                user_id,
                workspace_id,
                outcome,
            )
            continue
        delivered += 1
    return delivered


def _serialize(automation: Automation) -> Dict[str, Any]:
    automation_type = AutomationType(automation.type)
    info = AUTOMATION_DESCRIPTIONS[automation_type]
    return {
        "id": automation.id,
        "workspace_id": automation.workspace_id,
        "type": automation_type.value,
        "title": info["title"],
        "description": info["description"],
        "enabled": bool(automation.enabled),
        "exists": True,
        "created_at": automation.created_at.isoformat() if automation.created_at else None,
    }


async def list_workspace_automations(workspace_id: str, user_id: str, db: AsyncSession) -> Dict[str, Any]:
    check = await ensure_member(workspace_id, user_id, db)
    result = await db.execute(
        select(Automation)
        .where(Automation.workspace_id == workspace_id)
        .order_by(Automation.created_at.asc())
    )
    stored = {row.type: row for row in result.scalars().all()}

    items: List[Dict[str, Any]] = []
    for automation_type in AutomationType:
        existing = stored.get(automation_type.value)
        if existing is not None:
            items.append(_serialize(existing))
            continue
        info = AUTOMATION_DESCRIPTIONS[automation_type]
        items.append(
            {
                "id": None,
                "workspace_id": workspace_id,
                "type": automation_type.value,
                "title": info["title"],
                "description": info["description"],
                "enabled": False,
                "exists": False,
                "created_at": None,
            }
        )
    return {"automations": items, "is_owner": is_owner(check.membership)}


async def create_automation(
    workspace_id: str,
    automation_type: AutomationType,
    user_id: str,
    db: AsyncSession,
) -> Dict[str, Any]:
    """First-time enablement by the workspace owner, rewarded once with coins."""
    membership = await get_membership(workspace_id, user_id, db)
    if not is_owner(membership):
        raise HTTPException(status_code=403, detail="Only workspace owners can create automations")

    if await get_workspace_automation(workspace_id, automation_type, db) is not None:
        raise HTTPException(status_code=409, detail="This automation already exists")

    automation = Automation(
        id=str(uuid.uuid4()),
        workspace_id=workspace_id,
        type=AutomationType(automation_type).value,
        enabled=True,
    )
    db.add(automation)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise HTTPException(status_code=409, detail="This automation already exists") from exc
    await db.refresh(automation)

    reward = max(int(settings.AUTOMATION_COIN_REWARD), 0)
    coin_result = await add_coins(
        user_id,
        reward,
        "Automation created",
        f"automation-created-{automation.id}",
        db,
    )
    if not coin_result.success:
        logger.warning("Automation reward for %s not applied: %s", user_id, coin_result.error)

    info = AUTOMATION_DESCRIPTIONS[AutomationType(automation_type)]
    await create_notification(
        user_id=user_id,
        title="Automation Created",
        message=f'You created "{info["title"]}" and earned {reward} coins!',
        type=NotificationType.SUCCESS,
    )

    return {
        "automation": _serialize(automation),
        "coins_earned": reward if coin_result.success else 0,
        "new_tier": coin_result.new_tier.value,
    }


async def set_automation_enabled(automation_id: str, enabled: bool, user_id: str, db: AsyncSession) -> Dict[str, Any]:
    result = await db.execute(select(Automation).where(Automation.id == automation_id))
    automation = result.scalar_one_or_none()
    if automation is None:
        raise HTTPException(status_code=404, detail="Automation not found")

    membership = await get_membership(automation.workspace_id, user_id, db)
    if not is_owner(membership):
        raise HTTPException(status_code=403, detail="Only workspace owners can update automations")

    automation.enabled = bool(enabled)
    await db.commit()
    return {"automation": _serialize(automation)}
