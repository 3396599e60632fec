"""Projects and tasks, including the task completion reward."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
import logging
from typing import Any, Dict, List, Optional
import uuid

from fastapi import HTTPException
from sqlalchemy import delete, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.project import Project
from models.task import Task
from models.user import User
from services.automations import AutomationType, notify_workspace_members
from services.coins import add_coins
from services.workspace_access import ensure_member, get_membership, is_owner

logger = logging.getLogger(__name__)

_UNSET: Any = object()


class TaskStatus(str, Enum):
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"


def task_reward_reference(task_id: str) -> str:
    return f"task-done-{task_id}"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _serialize_project(project: Project, task_count: int = 0) -> Dict[str, Any]:
    return {
        "id": project.id,
        "workspace_id": project.workspace_id,
        "name": project.name,
        "description": project.description,
        "created_by": project.created_by,
        "task_count": int(task_count or 0),
        "created_at": _iso(project.created_at),
    }


def _serialize_task(task: Task) -> Dict[str, Any]:
    return {
        "id": task.id,
        "project_id": task.project_id,
        "title": task.title,
        "status": task.status,
        "assigned_to": task.assigned_to,
        "created_by": task.created_by,
        "due_date": _iso(task.due_date),
        "completed_at": _iso(task.completed_at),
        "created_at": _iso(task.created_at),
    }


async def _get_project(project_id: str, db: AsyncSession) -> Project:
    result = await db.execute(select(Project).where(Project.id == project_id))
    project = result.scalar_one_or_none()
    if project is None:
        raise HTTPException(status_code=404, detail="Project not found")
    return project


async def _get_task_with_project(task_id: str, db: AsyncSession):
    result = await db.execute(
        select(Task, Project).join(Project, Project.id == Task.project_id).where(Task.id == task_id)
    )
    row = result.first()
    if row is None:
        raise HTTPException(status_code=404, detail="Task not found")
    return row[0], row[1]


async def _ensure_assignee(workspace_id: str, assignee_id: Optional[str], db: AsyncSession) -> None:
    if assignee_id and await get_membership(workspace_id, assignee_id, db) is None:
        raise HTTPException(status_code=400, detail="Assignee must be a workspace member")


async def create_project(
    workspace_id: str,
    name: str,
    description: Optional[str],
    user: User,
    db: AsyncSession,
) -> Dict[str, Any]:
    clean_name = (name or "").strip()
    if not clean_name:
        raise HTTPException(status_code=400, detail="Project name is required")
    await ensure_member(workspace_id, user.id, db)

    project = Project(
        id=str(uuid.uuid4()),
        workspace_id=workspace_id,
        name=clean_name,
        description=(description or "").strip() or None,
        created_by=user.id,
    )
    db.add(project)
    await db.commit()
    await db.refresh(project)

    await notify_workspace_members(
        workspace_id,
        AutomationType.PROJECT_CREATED,
        "New Project Created",
        f'{user.name or user.email} created the project "{project.name}"',
        db,
        exclude_user_id=user.id,
    )
    return _serialize_project(project)


async def list_projects(workspace_id: str, user_id: str, db: AsyncSession) -> List[Dict[str, Any]]:
    await ensure_member(workspace_id, user_id, db)
    task_counts = (
        select(Task.project_id, func.count(Task.id).label("task_count"))
        .group_by(Task.project_id)
        .subquery()
    )
    result = await db.execute(
        select(Project, task_counts.c.task_count)
        .outerjoin(task_counts, task_counts.c.project_id == Project.id)
        .where(Project.workspace_id == workspace_id)
        .order_by(Project.created_at.desc())
    )
    return [_serialize_project(project, task_count) for project, task_count in result.all()]


async def delete_project(project_id: str, user_id: str, db: AsyncSession) -> None:
    project = await _get_project(project_id, db)
    membership = await get_membership(project.workspace_id, user_id, db)
    if membership is None:
        raise HTTPException(status_code=403, detail="You are not a member of this workspace")
    if not is_owner(membership):
        raise HTTPException(status_code=403, detail="Only workspace owners can delete projects")
    await db.execute(delete(Task).where(Task.project_id == project_id))
    await db.execute(delete(Project).where(Project.id == project_id))
    await db.commit()


async def list_tasks(project_id: str, user_id: str, db: AsyncSession) -> List[Dict[str, Any]]:
    project = await _get_project(project_id, db)
    await ensure_member(project.workspace_id, user_id, db)
    result = await db.execute(
        select(Task).where(Task.project_id == project_id).order_by(Task.created_at.desc())
    )
    return [_serialize_task(task) for task in result.scalars().all()]


async def create_task(
    project_id: str,
    title: str,
    user_id: str,
    db: AsyncSession,
    assigned_to: Optional[str] = None,
    due_date: Optional[datetime] = None,
) -> Dict[str, Any]:
    clean_title = (title or "").strip()
    if not clean_title:
        raise HTTPException(status_code=400, detail="Task title is required")
    project = await _get_project(project_id, db)
    await ensure_member(project.workspace_id, user_id, db)
    await _ensure_assignee(project.workspace_id, assigned_to, db)

    task = Task(
        id=str(uuid.uuid4()),
        project_id=project_id,
        title=clean_title,
        status=TaskStatus.TODO.value,
        assigned_to=assigned_to or None,
        created_by=user_id,
        due_date=due_date,
    )
    db.add(task)
    await db.commit()
    await db.refresh(task)
    return _serialize_task(task)


async def update_task(
    task_id: str,
    user: User,
    db: AsyncSession,
    *,
    title: Optional[str] = None,
    status: Optional[TaskStatus] = None,
    assigned_to: Any = _UNSET,
) -> Dict[str, Any]:
    """
    Apply a partial task update.

    The first move to DONE stamps completed_at, pays TASK_COIN_REWARD once per
    task and notifies the other workspace members. Leaving DONE keeps
    completed_at, so re-completing a task never pays again.
    """
    task, project = await _get_task_with_project(task_id, db)
    await ensure_member(project.workspace_id, user.id, db)

    if title is not None:
        clean_title = title.strip()
        if not clean_title:
            raise HTTPException(status_code=400, detail="Task title cannot be empty")
        task.title = clean_title

    if assigned_to is not _UNSET:
        await _ensure_assignee(project.workspace_id, assigned_to, db)
        task.assigned_to = assigned_to or None

    coin_awarded = False
    coins_earned = 0
    new_tier = None
    first_completion = False
    if status is not None:
        status = TaskStatus(status)
        task.status = status.value
        if status == TaskStatus.DONE and task.completed_at is None:
            first_completion = True
            task.completed_at = datetime.now(timezone.utc)

    await db.commit()
    await db.refresh(task)

    if first_completion:
        reward = max(int(settings.TASK_COIN_REWARD), 0)
        coin_result = await add_coins(
            user.id,
            reward,
            "Task completed",
            task_reward_reference(task.id),
            db,
        )
        if coin_result.success:
            coin_awarded = True
            coins_earned = reward
            new_tier = coin_result.new_tier.value
        else:
            logger.info("Task reward for %s not applied: %s", task.id, coin_result.error)

        await notify_workspace_members(
            project.workspace_id,
            AutomationType.TASK_DONE,
            "Task Completed",
            f'{user.name or user.email} completed "{task.title}" in {project.name}',
            db,
            exclude_user_id=user.id,
        )

    return {
        "task": _serialize_task(task),
        "coin_awarded": coin_awarded,
        "coins_earned": coins_earned,
        "new_tier": new_tier,
    }


async def delete_task(task_id: str, user_id: str, db: AsyncSession) -> None:
    task, project = await _get_task_with_project(task_id, db)
    await ensure_member(project.workspace_id, user_id, db)
    await db.delete(task)
    await db.commit()
