from datetime import datetime, timedelta, timezone
import uuid

import pytest

from models.chat_message import ChatMessage
from models.project import Project
from models.task import Task
from models.workspace import Workspace
from models.workspace_member import WorkspaceMember


async def _workspace(session_maker, owner, name, members=()):
    workspace_id = str(uuid.uuid4())
    async with session_maker() as session:
        session.add(Workspace(id=workspace_id, name=name, owner_id=owner))
        session.add(WorkspaceMember(user_id=owner, workspace_id=workspace_id, role="OWNER"))
        for member in members:
            session.add(WorkspaceMember(user_id=member, workspace_id=workspace_id, role="MEMBER"))
        await session.commit()
    return workspace_id


@pytest.mark.asyncio
async def test_chat_messages_are_member_only(api_client, session_maker, make_user, auth):
    owner = await make_user("iris")
    outsider = await make_user("ivan")
    workspace_id = await _workspace(session_maker, owner, "Design")

    posted = await api_client.post(
        "/chat/messages",
        json={"workspace_id": workspace_id, "content": "  standup in 5  "},
        headers=auth(owner),
    )
    assert posted.status_code == 201
    message = posted.json()["message"]
    assert message["content"] == "standup in 5"
    assert message["user_id"] == owner
    assert message["user_name"] == "Iris"

    assert (
        await api_client.post(
            "/chat/messages", json={"workspace_id": workspace_id, "content": "hi"}, headers=auth(outsider)
        )
    ).status_code == 403
    assert (
        await api_client.get(f"/chat/messages?workspace_id={workspace_id}", headers=auth(outsider))
    ).status_code == 403
    assert (
        await api_client.post(
            "/chat/messages", json={"workspace_id": workspace_id, "content": "   "}, headers=auth(owner)
        )
    ).status_code == 400


@pytest.mark.asyncio
async def test_chat_history_returns_latest_fifty_oldest_first(api_client, session_maker, make_user, auth):
    owner = await make_user("jo")
    workspace_id = await _workspace(session_maker, owner, "Ops")
    start = datetime(2026, 10, 1, tzinfo=timezone.utc)
    async with session_maker() as session:
        for index in range(55):
            session.add(
                ChatMessage(
                    user_id=owner,
                    workspace_id=workspace_id,
                    content=f"message {index}",
                    created_at=start + timedelta(minutes=index),
                )
            )
        await session.commit()

    response = await api_client.get(f"/chat/messages?workspace_id={workspace_id}", headers=auth(owner))

    contents = [message["content"] for message in response.json()["messages"]]
    assert len(contents) == 50
    assert contents[0] == "message 5"
    assert contents[-1] == "message 54"


@pytest.mark.asyncio
async def test_search_is_scoped_to_memberships(api_client, session_maker, make_user, auth):
    kim = await make_user("kim")
    lee = await make_user("lee")
    mine = await _workspace(session_maker, kim, "Launch Team")
    theirs = await _workspace(session_maker, lee, "Launch Secret")
    async with session_maker() as session:
        session.add(Project(id="p-mine", workspace_id=mine, name="Launch site", created_by=kim))
        session.add(Project(id="p-theirs", workspace_id=theirs, name="Launch plan", created_by=lee))
        session.add(Task(id="t-mine", project_id="p-mine", title="Prep launch email", status="TODO", created_by=kim))
        session.add(Task(id="t-theirs", project_id="p-theirs", title="Launch budget", status="TODO", created_by=lee))
        await session.commit()

    response = await api_client.get("/search?q=LAUNCH", headers=auth(kim))

    assert response.status_code == 200
    payload = response.json()
    assert payload["workspaces"] == [{"id": mine, "name": "Launch Team"}]
    assert payload["projects"] == [
        {"id": "p-mine", "name": "Launch site", "workspace_id": mine, "workspace_name": "Launch Team"}
    ]
    assert [task["id"] for task in payload["tasks"]] == ["t-mine"]
    assert payload["tasks"][0]["project_name"] == "Launch site"


@pytest.mark.asyncio
async def test_search_ignores_short_queries_and_caps_results(api_client, session_maker, make_user, auth):
    max_user = await make_user("max")
    for index in range(7):
        await _workspace(session_maker, max_user, f"Alpha {index}")
    workspace_id = await _workspace(session_maker, max_user, "Projects")
    async with session_maker() as session:
        session.add(Project(id="p-alpha", workspace_id=workspace_id, name="Alpha board", created_by=max_user))
        for index in range(12):
            session.add(
                Task(
                    id=f"t-alpha-{index}",
                    project_id="p-alpha",
                    title=f"alpha task {index:02d}",
                    status="TODO",
                    created_by=max_user,
                )
            )
        await session.commit()

    short = await api_client.get("/search?q=a", headers=auth(max_user))
    assert short.json() == {"workspaces": [], "projects": [], "tasks": []}

    capped = (await api_client.get("/search?q=alpha", headers=auth(max_user))).json()
    assert len(capped["workspaces"]) == 5
    assert len(capped["projects"]) == 1
    assert len(capped["tasks"]) == 10
    assert capped["tasks"][0]["title"] == "alpha task 00"
