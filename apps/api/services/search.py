"""Name search across the workspaces a user belongs to."""

from __future__ import annotations

from typing import Any, Dict

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.project import Project
from models.task import Task
from models.workspace import Workspace
from models.workspace_member import WorkspaceMember

SEARCH_MIN_QUERY_LENGTH = 2
SEARCH_WORKSPACE_LIMIT = 5
SEARCH_PROJECT_LIMIT = 5
SEARCH_TASK_LIMIT = 10


def _empty() -> Dict[str, Any]:
    return {"workspaces": [], "projects": [], "tasks": []}


async def search_user_content(query: str, user_id: str, db: AsyncSession) -> Dict[str, Any]:
    """
    Case-insensitive substring match on workspace names, project names and
    task titles. Only workspaces the user is a member of are searched, and
    queries shorter than SEARCH_MIN_QUERY_LENGTH return nothing.
    """
    term = (query or "").strip().lower()
    if len(term) < SEARCH_MIN_QUERY_LENGTH:
        return _empty()

    member_of = select(WorkspaceMember.workspace_id).where(WorkspaceMember.user_id == user_id)

    workspaces = await db.execute(
        select(Workspace.id, Workspace.name)
        .where(Workspace.id.in_(member_of), Workspace.name.icontains(term, autoescape=True))
        .order_by(Workspace.name.asc())
        .limit(SEARCH_WORKSPACE_LIMIT)
    )
    projects = await db.execute(
        select(Project.id, Project.name, Project.workspace_id, Workspace.name.label("workspace_name"))
        .join(Workspace, Workspace.id == Project.workspace_id)
        .where(Project.workspace_id.in_(member_of), Project.name.icontains(term, autoescape=True))
        .order_by(Project.name.asc())
        .limit(SEARCH_PROJECT_LIMIT)
    )
    tasks = await db.execute(
        select(
            Task.id,
            Task.title,
            Task.status,
            Task.project_id,
            Project.name.label("project_name"),
            Project.workspace_id,
        )
        .join(Project, Project.id == Task.project_id)
        .where(Project.workspace_id.in_(member_of), Task.title.icontains(term, autoescape=True))
        .order_by(Task.title.asc())
        .limit(SEARCH_TASK_LIMIT)
    )

    return {
        "workspaces": [{"id": row.id, "name": row.name} for row in workspaces.all()],
        "projects": [
            {
                "id": row.id,
                "name": row.name,
                "workspace_id": row.workspace_id,
                "workspace_name": row.workspace_name,
            }
            for row in projects.all()
        ],
        "tasks": [
            {
                "id": row.id,
                "title": row.title,
                "status": row.status,
                "project_id": row.project_id,
                "project_name": row.project_name,
                "workspace_id": row.workspace_id,
            }
            for row in tasks.all()
        ],
    }
