"""Project endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models.user import User
from routers.auth_scope import get_current_user
from services.projects import create_project, delete_project, list_projects

router = APIRouter()


class CreateProjectRequest(BaseModel):
    workspace_id: str
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)


@router.post("", status_code=201)
async def create_project_endpoint(
    request: CreateProjectRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    project = await create_project(request.workspace_id, request.name, request.description, user, db)
    return {"project": project}


@router.get("")
async def list_projects_endpoint(
    workspace_id: str = Query(...),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return {"projects": await list_projects(workspace_id, user.id, db)}


@router.delete("/{project_id}")
async def delete_project_endpoint(
    project_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await delete_project(project_id, user.id, db)
    return {"message": "Project deleted successfully"}
