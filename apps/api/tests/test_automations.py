import uuid
from unittest.mock import patch

import pytest
from sqlalchemy import select

from models.automation import Automation
from models.notification import Notification
from models.user import User
from models.workspace import Workspace
from models.workspace_member import WorkspaceMember
from services.automations import AutomationType, notify_workspace_members
from services.notifications import create_notification


async def _team(session_maker, make_user, automation_enabled=True):
    owner = await make_user("alice")
    bob = await make_user("bob")
    carol = await make_user("carol")
    workspace_id = str(uuid.uuid4())
    async with session_maker() as session:
        session.add(Workspace(id=workspace_id, name="Launch", owner_id=owner))
        session.add(WorkspaceMember(user_id=owner, workspace_id=workspace_id, role="OWNER"))
        session.add(WorkspaceMember(user_id=bob, workspace_id=workspace_id, role="ADMIN"))
        session.add(WorkspaceMember(user_id=carol, workspace_id=workspace_id, role="MEMBER"))
        if automation_enabled is not None:
            session.add(
                Automation(
                    workspace_id=workspace_id,
                    type=AutomationType.TASK_DONE.value,
                    enabled=automation_enabled,
                )
            )
        await session.commit()
    return workspace_id, owner, bob, carol


async def _notifications_for(session_maker, user_id):
    async with session_maker() as session:
        result = await session.execute(select(Notification).where(Notification.user_id == user_id))
        return result.scalars().all()


@pytest.mark.asyncio
async def test_fan_out_notifies_everyone_but_the_actor(session_maker, make_user):
    workspace_id, owner, bob, carol = await _team(session_maker, make_user)

    async with session_maker() as session:
        delivered = await notify_workspace_members(
            workspace_id,
            AutomationType.TASK_DONE,
            "Task Completed",
            "Bob completed a task",
            session,
            exclude_user_id=bob,
        )

    assert delivered == 2
    assert len(await _notifications_for(session_maker, owner)) == 1
    assert len(await _notifications_for(session_maker, carol)) == 1
    assert await _notifications_for(session_maker, bob) == []


@pytest.mark.asyncio
async def test_disabled_or_missing_automation_sends_nothing(session_maker, make_user):
    workspace_id, owner, bob, carol = await _team(session_maker, make_user, automation_enabled=False)

    async with session_maker() as session:
        assert await notify_workspace_members(
            workspace_id, AutomationType.TASK_DONE, "Task Completed", "done", session
        ) == 0
        assert await notify_workspace_members(
            workspace_id, AutomationType.PROJECT_CREATED, "New Project", "created", session
        ) == 0

    for user_id in (owner, bob, carol):
        assert await _notifications_for(session_maker, user_id) == []


@pytest.mark.asyncio
async def test_one_failed_delivery_does_not_block_the_rest(session_maker, make_user):
    workspace_id, owner, bob, carol = await _team(session_maker, make_user)

    async def flaky_create_notification(**kwargs):
        if kwargs["user_id"] == owner:
            raise RuntimeError("notification sink unavailable")
        return await create_notification(**kwargs)

    with patch("services.automations.create_notification", side_effect=flaky_create_notification):
        async with session_maker() as session:
            delivered = await notify_workspace_members(
                workspace_id,
                AutomationType.TASK_DONE,
                "Task Completed",
                "Carol completed a task",
                session,
                exclude_user_id=carol,
            )

    assert delivered == 1
    assert await _notifications_for(session_maker, owner) == []
    assert len(await _notifications_for(session_maker, bob)) == 1


@pytest.mark.asyncio
async def test_owner_creates_automation_once_and_is_rewarded(api_client, session_maker, make_user, auth):
    workspace_id, owner, bob, carol = await _team(session_maker, make_user, automation_enabled=None)

    response = await api_client.post(
        "/automations",
        json={"workspace_id": workspace_id, "type": "PROJECT_CREATED"},
        headers=auth(owner),
    )
    assert response.status_code == 201
    payload = response.json()
    assert payload["coins_earned"] == 15
    assert payload["automation"]["enabled"] is True
    assert payload["automation"]["title"] == "New Project Alerts"

    again = await api_client.post(
        "/automations",
        json={"workspace_id": workspace_id, "type": "PROJECT_CREATED"},
        headers=auth(owner),
    )
    assert again.status_code == 409

    async with session_maker() as session:
        user = (await session.execute(select(User).where(User.id == owner))).scalar_one()
        assert user.coins == 15
    titles = [row.title for row in await _notifications_for(session_maker, owner)]
    assert titles == ["Automation Created"]


@pytest.mark.asyncio
async def test_only_owner_manages_automations(api_client, session_maker, make_user, auth):
    workspace_id, owner, bob, carol = await _team(session_maker, make_user)

    denied = await api_client.post(
        "/automations",
        json={"workspace_id": workspace_id, "type": "DEADLINE"},
        headers=auth(bob),
    )
    assert denied.status_code == 403

    listing = await api_client.get(f"/automations?workspace_id={workspace_id}", headers=auth(carol))
    assert listing.status_code == 200
    body = listing.json()
    assert body["is_owner"] is False
    by_type = {item["type"]: item for item in body["automations"]}
    assert set(by_type) == {"TASK_DONE", "DEADLINE", "PROJECT_CREATED"}
    assert by_type["TASK_DONE"]["exists"] is True
    assert by_type["DEADLINE"]["exists"] is False

    automation_id = by_type["TASK_DONE"]["id"]
    toggle_denied = await api_client.patch(
        f"/automations/{automation_id}", json={"enabled": False}, headers=auth(carol)
    )
    assert toggle_denied.status_code == 403

    toggled = await api_client.patch(
        f"/automations/{automation_id}", json={"enabled": False}, headers=auth(owner)
    )
    assert toggled.status_code == 200
    assert toggled.json()["automation"]["enabled"] is False
