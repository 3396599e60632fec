"""Workspace, invitation and member management endpoints."""

from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models.user import User
from routers.auth_scope import get_current_user
from routers.rate_limit import preset
from services.workspace_access import WorkspaceRole
from services.workspaces import (
    accept_invitation,
    change_member_role,
    create_workspace,
    get_workspace_detail,
    invite_member,
    list_user_workspaces,
    reject_invitation,
    remove_member,
)

router = APIRouter()


class CreateWorkspaceRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)


class InviteMemberRequest(BaseModel):
    workspace_id: str
    email: str = Field(min_length=3, max_length=320)


class ChangeRoleRequest(BaseModel):
    workspace_id: str
    target_user_id: str
    new_role: Literal["ADMIN", "MEMBER"]


class RemoveMemberRequest(BaseModel):
    workspace_id: str
    target_user_id: str


@router.post("", status_code=201)
async def create_workspace_endpoint(
    request: CreateWorkspaceRequest,
    _rate_limit: None = Depends(preset("workspaces_create", "GENERAL")),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    workspace = await create_workspace(request.name, user.id, db)
    return {"message": "Workspace created successfully", "workspace": workspace}


@router.get("")
async def list_workspaces_endpoint(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return {"workspaces": await list_user_workspaces(user.id, db)}


@router.post("/members/invite", status_code=201)
async def invite_member_endpoint(
    request: InviteMemberRequest,
    _rate_limit: None = Depends(preset("workspaces_invite", "GENERAL")),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    invitation = await invite_member(request.workspace_id, request.email, user, db)
    return {"message": "Invitation sent successfully", "invitation": invitation}


@router.patch("/members/role")
async def change_role_endpoint(
    request: ChangeRoleRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    member = await change_member_role(
        request.workspace_id,
        request.target_user_id,
        WorkspaceRole(request.new_role),
        user.id,
        db,
    )
    return {"message": "Member role updated successfully", "member": member}


@router.delete("/members/remove")
async def remove_member_endpoint(
    request: RemoveMemberRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await remove_member(request.workspace_id, request.target_user_id, user, db)
    return {"message": "Member removed successfully"}


@router.post("/invitations/{invitation_id}/accept")
async def accept_invitation_endpoint(
    invitation_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    workspace = await accept_invitation(invitation_id, user, db)
    return {"message": "Invitation accepted successfully", "workspace": workspace}


@router.post("/invitations/{invitation_id}/reject")
async def reject_invitation_endpoint(
    invitation_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await reject_invitation(invitation_id, user, db)
    return {"message": "Invitation declined"}


@router.get("/{workspace_id}")
async def workspace_detail_endpoint(
    workspace_id: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await get_workspace_detail(workspace_id, user.id, db)
