"""Workspace role resolution and permission checks."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from fastapi import HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.user import User
from models.workspace_member import WorkspaceMember


class WorkspaceRole(str, Enum):
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"


class SystemRole(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"


_ROLE_RANK = {
    WorkspaceRole.MEMBER: 0,
    WorkspaceRole.ADMIN: 1,
    WorkspaceRole.OWNER: 2,
}


def parse_role(value: Any) -> WorkspaceRole:
    """Convert a stored role string; unknown roles are a data error."""
    return WorkspaceRole(str(value or "").upper())


def role_at_least(role: WorkspaceRole, minimum: WorkspaceRole) -> bool:
    return _ROLE_RANK[role] >= _ROLE_RANK[minimum]


def is_system_admin(user: Optional[User]) -> bool:
    if user is None:
        return False
    return str(user.role or "").upper() == SystemRole.ADMIN.value


def is_owner(membership: Optional[WorkspaceMember]) -> bool:
    return membership is not None and parse_role(membership.role) == WorkspaceRole.OWNER


@dataclass
class PermissionCheck:
    allowed: bool
    membership: Optional[WorkspaceMember]
    is_system_admin: bool

    @property
    def role(self) -> Optional[WorkspaceRole]:
        if self.membership is None:
            return None
        return parse_role(self.membership.role)


async def get_membership(workspace_id: str, user_id: str, db: AsyncSession) -> Optional[WorkspaceMember]:
    result = await db.execute(
        select(WorkspaceMember).where(
            WorkspaceMember.workspace_id == workspace_id,
            WorkspaceMember.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


async def _check(
    workspace_id: str,
    user_id: str,
    db: AsyncSession,
    minimum: WorkspaceRole,
) -> PermissionCheck:
    membership = await get_membership(workspace_id, user_id, db)
    user_result = await db.execute(select(User).where(User.id == user_id))
    admin = is_system_admin(user_result.scalar_one_or_none())
    if admin:
        return PermissionCheck(True, membership, True)
    if membership is None:
        return PermissionCheck(False, None, False)
    return PermissionCheck(role_at_least(parse_role(membership.role), minimum), membership, False)


async def require_member(workspace_id: str, user_id: str, db: AsyncSession) -> PermissionCheck:
    return await _check(workspace_id, user_id, db, WorkspaceRole.MEMBER)


async def require_admin_or_owner(workspace_id: str, user_id: str, db: AsyncSession) -> PermissionCheck:
    return await _check(workspace_id, user_id, db, WorkspaceRole.ADMIN)


async def require_owner(workspace_id: str, user_id: str, db: AsyncSession) -> PermissionCheck:
    return await _check(workspace_id, user_id, db, WorkspaceRole.OWNER)


async def ensure_member(workspace_id: str, user_id: str, db: AsyncSession) -> PermissionCheck:
    """require_member that raises 403 for routes that only need read access."""
    check = await require_member(workspace_id, user_id, db)
    if not check.allowed:
        raise HTTPException(status_code=403, detail="You are not a member of this workspace")
    return check


def ensure_can_change_role(
    *,
    actor_id: str,
    target_id: str,
    target_role: WorkspaceRole,
    new_role: WorkspaceRole,
) -> None:
    """Role-change rules applied after the actor passed require_owner."""
    if actor_id == target_id:
        raise HTTPException(status_code=400, detail="You cannot change your own role")
    if target_role == WorkspaceRole.OWNER:
        raise HTTPException(status_code=403, detail="Cannot modify owner role")
    if new_role == WorkspaceRole.OWNER:
        raise HTTPException(status_code=400, detail="Ownership cannot be assigned by changing roles")


def ensure_can_remove_member(
    *,
    actor_id: str,
    actor_role: Optional[WorkspaceRole],
    target_id: str,
    target_role: Optional[WorkspaceRole],
) -> None:
    """
    Member removal rules.

    OWNER removes ADMIN or MEMBER, ADMIN removes MEMBER only, and nobody
    removes themselves. A target_role of None means the target is not a member.
    """
    if actor_role is None:
        raise HTTPException(status_code=403, detail="You are not a member of this workspace")
    if not role_at_least(actor_role, WorkspaceRole.ADMIN):
        raise HTTPException(status_code=403, detail="Only owners and admins can remove members")
    if actor_id == target_id:
        raise HTTPException(status_code=400, detail="You cannot remove yourself from the workspace")
    if target_role is None:
        raise HTTPException(status_code=404, detail="Member not found")
    if target_role == WorkspaceRole.OWNER:
        raise HTTPException(status_code=403, detail="Cannot remove the workspace owner")
    if actor_role == WorkspaceRole.ADMIN and target_role == WorkspaceRole.ADMIN:
        raise HTTPException(
            status_code=403,
            detail="Admins cannot remove other admins. Only the owner can do this.",
        )
