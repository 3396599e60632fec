"""Workspaces, invitations and membership management."""

from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any, Dict, List, Optional
import uuid

from fastapi import HTTPException
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.notification import Notification
from models.user import User
from models.workspace import Workspace
from models.workspace_invitation import WorkspaceInvitation
from models.workspace_member import WorkspaceMember
from services.notifications import NotificationType, create_notification
from services.workspace_access import (
    WorkspaceRole,
    ensure_can_change_role,
    ensure_can_remove_member,
    ensure_member,
    get_membership,
    parse_role,
    require_admin_or_owner,
    require_owner,
)

logger = logging.getLogger(__name__)

INVITATION_PENDING = "PENDING"
INVITATION_ACCEPTED = "ACCEPTED"
INVITATION_REJECTED = "REJECTED"

WORKSPACE_NAME_MAX_LENGTH = 100


def _display_name(user: User) -> str:
    return user.name or user.email


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _user_summary(user: Optional[User]) -> Optional[Dict[str, Any]]:
    if user is None:
        return None
    return {"id": user.id, "name": user.name, "email": user.email, "avatar": user.avatar}


async def _get_user(user_id: str, db: AsyncSession) -> Optional[User]:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def _get_workspace(workspace_id: str, db: AsyncSession) -> Workspace:
    result = await db.execute(select(Workspace).where(Workspace.id == workspace_id))
    workspace = result.scalar_one_or_none()
    if workspace is None:
        raise HTTPException(status_code=404, detail="Workspace not found")
    return workspace


async def create_workspace(name: str, user_id: str, db: AsyncSession) -> Dict[str, Any]:
    clean_name = (name or "").strip()
    if not clean_name:
        raise HTTPException(status_code=400, detail="Workspace name is required")
    if len(clean_name) > WORKSPACE_NAME_MAX_LENGTH:
        raise HTTPException(status_code=400, detail="Workspace name must be 100 characters or fewer")

    workspace = Workspace(id=str(uuid.uuid4()), name=clean_name, owner_id=user_id)
    db.add(workspace)
    db.add(
        WorkspaceMember(
            id=str(uuid.uuid4()),
            user_id=user_id,
            workspace_id=workspace.id,
            role=WorkspaceRole.OWNER.value,
        )
    )
    await db.commit()

    await create_notification(
        user_id=user_id,
        title="Workspace Created",
        message=f'Your workspace "{workspace.name}" is ready. Start adding projects and team members!',
        type=NotificationType.SUCCESS,
    )
    return {"id": workspace.id, "name": workspace.name}


async def list_user_workspaces(user_id: str, db: AsyncSession) -> List[Dict[str, Any]]:
    member_counts = (
        select(WorkspaceMember.workspace_id, func.count(WorkspaceMember.id).label("member_count"))
        .group_by(WorkspaceMember.workspace_id)
        .subquery()
    )
    result = await db.execute(
        select(WorkspaceMember, Workspace, User, member_counts.c.member_count)
        .join(Workspace, Workspace.id == WorkspaceMember.workspace_id)
        .join(User, User.id == Workspace.owner_id)
        .join(member_counts, member_counts.c.workspace_id == Workspace.id)
        .where(WorkspaceMember.user_id == user_id)
        .order_by(WorkspaceMember.created_at.desc())
    )
    return [
        {
            "id": workspace.id,
            "name": workspace.name,
            "role": membership.role,
            "owner": {"id": owner.id, "name": owner.name, "email": owner.email},
            "member_count": int(member_count or 0),
            "created_at": _iso(workspace.created_at),
        }
        for membership, workspace, owner, member_count in result.all()
    ]


async def get_workspace_detail(workspace_id: str, user_id: str, db: AsyncSession) -> Dict[str, Any]:
    check = await ensure_member(workspace_id, user_id, db)
    workspace = await _get_workspace(workspace_id, db)

    owner = await _get_user(workspace.owner_id, db)
    result = await db.execute(
        select(WorkspaceMember, User)
        .join(User, User.id == WorkspaceMember.user_id)
        .where(WorkspaceMember.workspace_id == workspace_id)
        .order_by(WorkspaceMember.created_at.asc())
    )
    members = [
        {
            "id": membership.id,
            "user_id": member.id,
            "name": member.name,
            "email": member.email,
            "avatar": member.avatar,
            "role": membership.role,
            "joined_at": _iso(membership.created_at),
        }
        for membership, member in result.all()
    ]
    user_role = check.role
    return {
        "workspace": {
            "id": workspace.id,
            "name": workspace.name,
            "created_at": _iso(workspace.created_at),
            "owner": _user_summary(owner),
        },
        "members": members,
        "user_role": user_role.value if user_role else None,
        "is_owner": user_role == WorkspaceRole.OWNER,
    }


async def invite_member(workspace_id: str, email: str, inviter: User, db: AsyncSession) -> Dict[str, Any]:
    check = await require_admin_or_owner(workspace_id, inviter.id, db)
    if not check.allowed:
        raise HTTPException(status_code=403, detail="Only workspace owners and admins can invite members")
    workspace = await _get_workspace(workspace_id, db)

    result = await db.execute(select(User).where(User.email == (email or "").strip().lower()))
    invitee = result.scalar_one_or_none()
    if invitee is None:
        raise HTTPException(status_code=404, detail="User not found. They must have an account first.")
    if invitee.id == inviter.id:
        raise HTTPException(status_code=400, detail="You cannot invite yourself")
    if await get_membership(workspace_id, invitee.id, db) is not None:
        raise HTTPException(status_code=400, detail="User is already a member of this workspace")

    existing_result = await db.execute(
        select(WorkspaceInvitation).where(
            WorkspaceInvitation.workspace_id == workspace_id,
            WorkspaceInvitation.invitee_id == invitee.id,
        )
    )
    existing = existing_result.scalar_one_or_none()
    if existing is not None:
        if existing.status == INVITATION_PENDING:
            raise HTTPException(status_code=400, detail="An invitation is already pending for this user")
        # Answered invitations are replaced so the user can be invited again.
        await db.delete(existing)
        await db.flush()

    invitation = WorkspaceInvitation(
        id=str(uuid.uuid4()),
        workspace_id=workspace_id,
        inviter_id=inviter.id,
        invitee_id=invitee.id,
        status=INVITATION_PENDING,
    )
    db.add(invitation)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise HTTPException(status_code=400, detail="An invitation is already pending for this user") from exc

    await create_notification(
        user_id=invitee.id,
        title="Workspace Invitation",
        message=f'{_display_name(inviter)} invited you to join workspace "{workspace.name}"',
        type=NotificationType.INFO,
        metadata={
            "type": "WORKSPACE_INVITATION",
            "invitation_id": invitation.id,
            "workspace_id": workspace_id,
            "workspace_name": workspace.name,
        },
    )
    return {
        "id": invitation.id,
        "status": invitation.status,
        "invitee": _user_summary(invitee),
    }


async def _get_pending_invitation(invitation_id: str, user_id: str, db: AsyncSession) -> WorkspaceInvitation:
    result = await db.execute(select(WorkspaceInvitation).where(WorkspaceInvitation.id == invitation_id))
    invitation = result.scalar_one_or_none()
    if invitation is None:
        raise HTTPException(status_code=404, detail="Invitation not found")
    if invitation.invitee_id != user_id:
        raise HTTPException(status_code=403, detail="This invitation is not for you")
    if invitation.status != INVITATION_PENDING:
        raise HTTPException(
            status_code=400,
            detail=f"This invitation has already been {str(invitation.status).lower()}",
        )
    return invitation


async def _clear_invitation_notifications(invitation_id: str, user_id: str, db: AsyncSession) -> None:
    await db.execute(
        update(Notification)
        .where(
            Notification.user_id == user_id,
            Notification.metadata_json.contains(invitation_id),
        )
        .values(read=True, metadata_json=None)
    )


async def accept_invitation(invitation_id: str, user: User, db: AsyncSession) -> Dict[str, Any]:
    invitation = await _get_pending_invitation(invitation_id, user.id, db)
    workspace = await _get_workspace(invitation.workspace_id, db)
    responded_at = datetime.now(timezone.utc)

    if await get_membership(invitation.workspace_id, user.id, db) is not None:
        invitation.status = INVITATION_ACCEPTED
        invitation.responded_at = responded_at
        await db.commit()
        raise HTTPException(status_code=400, detail="You are already a member of this workspace")

    db.add(
        WorkspaceMember(
            id=str(uuid.uuid4()),
            user_id=user.id,
            workspace_id=invitation.workspace_id,
            role=WorkspaceRole.MEMBER.value,
        )
    )
    invitation.status = INVITATION_ACCEPTED
    invitation.responded_at = responded_at
    await _clear_invitation_notifications(invitation_id, user.id, db)
    await db.commit()

    await create_notification(
        user_id=invitation.inviter_id,
        title="Invitation Accepted",
        message=f'{_display_name(user)} accepted your invitation to join "{workspace.name}"',
        type=NotificationType.SUCCESS,
    )
    return {"id": workspace.id, "name": workspace.name}


async def reject_invitation(invitation_id: str, user: User, db: AsyncSession) -> None:
    invitation = await _get_pending_invitation(invitation_id, user.id, db)
    workspace = await _get_workspace(invitation.workspace_id, db)

    invitation.status = INVITATION_REJECTED
    invitation.responded_at = datetime.now(timezone.utc)
    await _clear_invitation_notifications(invitation_id, user.id, db)
    await db.commit()

    await create_notification(
        user_id=invitation.inviter_id,
        title="Invitation Declined",
        message=f'{_display_name(user)} declined your invitation to join "{workspace.name}"',
        type=NotificationType.WARNING,
    )


async def change_member_role(
    workspace_id: str,
    target_user_id: str,
    new_role: WorkspaceRole,
    actor_id: str,
    db: AsyncSession,
) -> Dict[str, Any]:
    check = await require_owner(workspace_id, actor_id, db)
    if not check.allowed:
        raise HTTPException(status_code=403, detail="Only workspace owners can change member roles")
    if actor_id == target_user_id:
        raise HTTPException(status_code=400, detail="You cannot change your own role")

    target = await get_membership(workspace_id, target_user_id, db)
    if target is None:
        raise HTTPException(status_code=404, detail="Member not found")
    ensure_can_change_role(
        actor_id=actor_id,
        target_id=target_user_id,
        target_role=parse_role(target.role),
        new_role=WorkspaceRole(new_role),
    )

    target.role = WorkspaceRole(new_role).value
    await db.commit()
    return {"user_id": target.user_id, "role": target.role}


async def remove_member(workspace_id: str, target_user_id: str, actor: User, db: AsyncSession) -> None:
    actor_membership = await get_membership(workspace_id, actor.id, db)
    target = await get_membership(workspace_id, target_user_id, db)
    ensure_can_remove_member(
        actor_id=actor.id,
        actor_role=parse_role(actor_membership.role) if actor_membership else None,
        target_id=target_user_id,
        target_role=parse_role(target.role) if target else None,
    )

    workspace = await _get_workspace(workspace_id, db)
    await db.delete(target)
    await db.commit()

    await create_notification(
        user_id=target_user_id,
        title="Removed from Workspace",
        message=f'You have been removed from the workspace "{workspace.name}" by {_display_name(actor)}',
        type=NotificationType.WARNING,
    )
    logger.info("Removed %s from workspace %s", target_user_id, workspace_id)
