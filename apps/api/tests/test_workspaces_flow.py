import json

import pytest
from sqlalchemy import select

from models.notification import Notification
from models.workspace_member import WorkspaceMember


async def _notifications(session_maker, user_id):
    async with session_maker() as session:
        result = await session.execute(
            select(Notification).where(Notification.user_id == user_id).order_by(Notification.created_at.asc())
        )
        return result.scalars().all()


async def _create_workspace(api_client, auth, owner, name="Platform"):
    response = await api_client.post("/workspaces", json={"name": name}, headers=auth(owner))
    assert response.status_code == 201
    return response.json()["workspace"]["id"]


async def _join(api_client, auth, session_maker, workspace_id, inviter, invitee):
    invite = await api_client.post(
        "/workspaces/members/invite",
        json={"workspace_id": workspace_id, "email": f"{invitee}@example.com"},
        headers=auth(inviter),
    )
    assert invite.status_code == 201
    invitation_id = invite.json()["invitation"]["id"]
    accepted = await api_client.post(f"/workspaces/invitations/{invitation_id}/accept", headers=auth(invitee))
    assert accepted.status_code == 200
    return invitation_id


@pytest.mark.asyncio
async def test_creator_becomes_owner(api_client, session_maker, make_user, auth):
    owner = await make_user("olga")

    workspace_id = await _create_workspace(api_client, auth, owner)

    listing = await api_client.get("/workspaces", headers=auth(owner))
    workspaces = listing.json()["workspaces"]
    assert len(workspaces) == 1
    assert workspaces[0]["id"] == workspace_id
    assert workspaces[0]["role"] == "OWNER"
    assert workspaces[0]["member_count"] == 1

    detail = await api_client.get(f"/workspaces/{workspace_id}", headers=auth(owner))
    assert detail.json()["is_owner"] is True
    assert [n.title for n in await _notifications(session_maker, owner)] == ["Workspace Created"]


@pytest.mark.asyncio
async def test_invitation_lifecycle(api_client, session_maker, make_user, auth):
    owner = await make_user("olga")
    bob = await make_user("bob")
    workspace_id = await _create_workspace(api_client, auth, owner)

    assert (
        await api_client.post(
            "/workspaces/members/invite",
            json={"workspace_id": workspace_id, "email": f"{owner}@example.com"},
            headers=auth(owner),
        )
    ).status_code == 400
    assert (
        await api_client.post(
            "/workspaces/members/invite",
            json={"workspace_id": workspace_id, "email": "ghost@example.com"},
            headers=auth(owner),
        )
    ).status_code == 404
    assert (
        await api_client.post(
            "/workspaces/members/invite",
            json={"workspace_id": workspace_id, "email": f"{owner}@example.com"},
            headers=auth(bob),
        )
    ).status_code == 403

    invite = await api_client.post(
        "/workspaces/members/invite",
        json={"workspace_id": workspace_id, "email": f"{bob}@example.com"},
        headers=auth(owner),
    )
    assert invite.status_code == 201
    invitation_id = invite.json()["invitation"]["id"]

    duplicate = await api_client.post(
        "/workspaces/members/invite",
        json={"workspace_id": workspace_id, "email": f"{bob}@example.com"},
        headers=auth(owner),
    )
    assert duplicate.status_code == 400

    invite_notice = (await _notifications(session_maker, bob))[0]
    assert json.loads(invite_notice.metadata_json)["invitation_id"] == invitation_id

    assert (await api_client.post(f"/workspaces/invitations/{invitation_id}/accept", headers=auth(owner))).status_code == 403
    accepted = await api_client.post(f"/workspaces/invitations/{invitation_id}/accept", headers=auth(bob))
    assert accepted.status_code == 200
    assert accepted.json()["workspace"]["id"] == workspace_id
    assert (await api_client.post(f"/workspaces/invitations/{invitation_id}/accept", headers=auth(bob))).status_code == 400

    detail = await api_client.get(f"/workspaces/{workspace_id}", headers=auth(bob))
    assert detail.status_code == 200
    roles = {member["user_id"]: member["role"] for member in detail.json()["members"]}
    assert roles == {owner: "OWNER", bob: "MEMBER"}

    bob_notices = await _notifications(session_maker, bob)
    assert bob_notices[0].read is True
    assert bob_notices[0].metadata_json is None
    assert "Invitation Accepted" in [n.title for n in await _notifications(session_maker, owner)]


@pytest.mark.asyncio
async def test_rejected_invitation_can_be_sent_again(api_client, session_maker, make_user, auth):
    owner = await make_user("olga")
    dan = await make_user("dan")
    workspace_id = await _create_workspace(api_client, auth, owner)

    first = await api_client.post(
        "/workspaces/members/invite",
        json={"workspace_id": workspace_id, "email": f"{dan}@example.com"},
        headers=auth(owner),
    )
    first_id = first.json()["invitation"]["id"]
    rejected = await api_client.post(f"/workspaces/invitations/{first_id}/reject", headers=auth(dan))
    assert rejected.status_code == 200

    second = await api_client.post(
        "/workspaces/members/invite",
        json={"workspace_id": workspace_id, "email": f"{dan}@example.com"},
        headers=auth(owner),
    )
    assert second.status_code == 201
    assert second.json()["invitation"]["id"] != first_id
    assert "Invitation Declined" in [n.title for n in await _notifications(session_maker, owner)]


@pytest.mark.asyncio
async def test_role_changes(api_client, session_maker, make_user, auth):
    owner = await make_user("olga")
    bob = await make_user("bob")
    staff = await make_user("staff", role="ADMIN")
    workspace_id = await _create_workspace(api_client, auth, owner)
    await _join(api_client, auth, session_maker, workspace_id, owner, bob)

    def change(actor, target, role):
        return api_client.patch(
            "/workspaces/members/role",
            json={"workspace_id": workspace_id, "target_user_id": target, "new_role": role},
            headers=auth(actor),
        )

    assert (await change(bob, owner, "MEMBER")).status_code == 403
    assert (await change(owner, owner, "ADMIN")).status_code == 400
    assert (await change(owner, "missing-user", "ADMIN")).status_code == 404
    assert (await change(owner, bob, "OWNER")).status_code == 422
    assert (await change(staff, owner, "MEMBER")).status_code == 403

    promoted = await change(owner, bob, "ADMIN")
    assert promoted.status_code == 200
    assert promoted.json()["member"] == {"user_id": bob, "role": "ADMIN"}

    demoted_by_staff = await change(staff, bob, "MEMBER")
    assert demoted_by_staff.status_code == 200


@pytest.mark.asyncio
async def test_member_removal_rules(api_client, session_maker, make_user, auth):
    owner = await make_user("olga")
    bob = await make_user("bob")
    carol = await make_user("carol")
    dave = await make_user("dave")
    workspace_id = await _create_workspace(api_client, auth, owner)
    for invitee in (bob, carol, dave):
        await _join(api_client, auth, session_maker, workspace_id, owner, invitee)
    for admin in (bob, dave):
        response = await api_client.patch(
            "/workspaces/members/role",
            json={"workspace_id": workspace_id, "target_user_id": admin, "new_role": "ADMIN"},
            headers=auth(owner),
        )
        assert response.status_code == 200

    def remove(actor, target):
        return api_client.request(
            "DELETE",
            "/workspaces/members/remove",
            json={"workspace_id": workspace_id, "target_user_id": target},
            headers=auth(actor),
        )

    assert (await remove(carol, bob)).status_code == 403
    assert (await remove(bob, owner)).status_code == 403
    assert (await remove(bob, dave)).status_code == 403
    assert (await remove(bob, bob)).status_code == 400
    assert (await remove(bob, "missing-user")).status_code == 404

    removed = await remove(bob, carol)
    assert removed.status_code == 200
    assert (await remove(owner, dave)).status_code == 200

    async with session_maker() as session:
        members = (
            await session.execute(
                select(WorkspaceMember.user_id).where(WorkspaceMember.workspace_id == workspace_id)
            )
        ).scalars().all()
    assert set(members) == {owner, bob}

    removal_notices = [n for n in await _notifications(session_maker, carol) if n.title == "Removed from Workspace"]
    assert len(removal_notices) == 1
    assert removal_notices[0].type == "WARNING"


@pytest.mark.asyncio
async def test_workspace_detail_does_not_reveal_existence_to_outsiders(api_client, make_user, auth):
    owner = await make_user("nina")
    outsider = await make_user("ned")
    workspace_id = await _create_workspace(api_client, auth, owner, name="Hidden")

    existing = await api_client.get(f"/workspaces/{workspace_id}", headers=auth(outsider))
    missing = await api_client.get("/workspaces/does-not-exist", headers=auth(outsider))

    assert existing.status_code == 403
    assert missing.status_code == 403
    assert existing.json() == missing.json()
