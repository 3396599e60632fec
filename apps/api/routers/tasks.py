"""Task endpoints; completing a task pays coins once."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models.user import User
from routers.auth_scope import get_current_user
from services.projects import TaskStatus, create_task, delete_task, list_tasks, update_task

router = APIRouter()


class CreateTaskRequest(BaseModel):
    project_id: str
    title: str = Field(min_length=1, max_length=500)
    assigned_to: Optional[str] = None
    due_date: Optional[datetime] = None


class UpdateTaskRequest(BaseModel):
    title: Optional[str] = Field(default=None, max_length=500)
    status: Optional[TaskStatus] = None
    assigned_to: Optional[str] = None


@router.get("")
async def list_tasks_endpoint(
    project_id: str = Query(...),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return {"tasks": await list_tasks(project_id, user.id, db)}


@router.post("", status_code=201)
async def create_task_endpoint(
    request: CreateTaskRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    task = await create_task(
        request.project_id,
        request.title,
        user.id,
        db,
        assigned_to=request.assigned_to,
        due_date=request.due_date,
    )
    return {"task": task}


@router.patch("/{task_id}")
async def update_task_endpoint(
    task_id: str,
    request: UpdateTaskRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    changes = {"title": request.title, "status": request.status}
    # An explicit null unassigns; an absent field leaves the assignee alone.
    if "assigned_to" in request.model_fields_set:
        changes["assigned_to"] = request.assigned_to
    return await update_task(task_id, user, db, **changes)


@router.delete("/{task_id}")
async def delete_task_endpoint(
    task_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await delete_task(task_id, user.id, db)
    return {"message": "Task deleted successfully"}
