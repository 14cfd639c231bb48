# tests/test_views.py — PRD, Markdown and board views
import pytest
from httpx import AsyncClient

from presence import PresenceConnection
from fakes import FakeSocket


@pytest.mark.asyncio
async def test_prd_view(client: AsyncClient, project, make_story, make_member):
    """Full PRD: stories with criteria, running agents and team"""
    second = await make_story(title="Second", priority=2, criteria=["b1"])
    first = await make_story(title="First", priority=1, criteria=["a1", "a2"])
    await make_member(name="Bob")
    run = (await client.post("/agent/start", json={"storyId": second["id"]})).json()

    resp = await client.get(f"/views/prd/{project['id']}")
    assert resp.status_code == 200
    data = resp.json()
    assert data["project"]["id"] == project["id"]
    assert [s["id"] for s in data["stories"]] == [first["id"], second["id"]]
    assert [c["description"] for c in data["stories"][0]["criteria"]] == ["a1", "a2"]
    assert [a["id"] for a in data["activeAgents"]] == [run["id"]]
    assert data["onlineUsers"] == []
    assert [m["name"] for m in data["teamMembers"]] == ["Bob"]


@pytest.mark.asyncio
async def test_prd_view_drops_finished_agents(client: AsyncClient, project, make_story):
    story = await make_story()
    run = (await client.post("/agent/start", json={"storyId": story["id"]})).json()
    await client.post("/agent/complete", json={"runId": run["id"], "exitSignal": "COMPLETE"})

    data = (await client.get(f"/views/prd/{project['id']}")).json()
    assert data["activeAgents"] == []


@pytest.mark.asyncio
async def test_prd_view_missing_project(client: AsyncClient):
    resp = await client.get("/views/prd/nope")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_prd_view_lists_online_users(client: AsyncClient, project, presence_registry):
    """Participants in the project's presence room show up as online"""

    conn = PresenceConnection(FakeSocket())
    room = await presence_registry.open(project["id"], conn)
    await room.join(conn, {"userId": "u1", "name": "Alice"})

    data = (await client.get(f"/views/prd/{project['id']}")).json()
    assert [u["userId"] for u in data["onlineUsers"]] == ["u1"]
    assert data["onlineUsers"][0]["name"] == "Alice"


@pytest.mark.asyncio
async def test_markdown_export(client: AsyncClient, project, make_story):
    """Stories sorted by priority, criteria as task-list items"""
    later = await make_story(title="Dashboard", priority=2, description="Charts", criteria=["Loads"])
    await make_story(title="Login", priority=1, description="Auth flow", criteria=["Form", "Submit"])
    await client.patch(f"/criteria/{later['criteria'][0]['id']}", json={"passed": True})

    resp = await client.get(f"/views/prd/{project['id']}/markdown")
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/markdown")
    body = resp.text

    assert body.startswith("# Todo App\n")
    assert "**Goal:** Ship a todo list" in body
    assert "**Tech Stack:** TypeScript, React" in body
    assert "## Stories" in body
    login = body.index("### 📝 Story 1: Login")
    dashboard = body.index("### ✓ Story 2: Dashboard")
    assert login < dashboard
    assert "- [ ] Form" in body
    assert "- [ ] Submit" in body
    assert "- [x] Loads" in body
    assert "**Status:** passed" in body


@pytest.mark.asyncio
async def test_markdown_export_missing_project(client: AsyncClient):
    resp = await client.get("/views/prd/nope/markdown")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_board_view_columns(client: AsyncClient, project, make_story):
    """Five fixed columns in workflow order"""
    draft = await make_story(title="Draft")
    approved = await make_story(title="Approved")
    await client.post(f"/stories/{approved['id']}/approve")
    running = await make_story(title="Running")
    await client.post("/agent/start", json={"storyId": running["id"]})

    resp = await client.get(f"/views/board/{project['id']}")
    assert resp.status_code == 200
    columns = resp.json()["columns"]
    assert [c["status"] for c in columns] == ["draft", "approved", "in_progress", "passed", "blocked"]

    by_status = {c["status"]: [s["id"] for s in c["stories"]] for c in columns}
    assert by_status["draft"] == [draft["id"]]
    assert by_status["approved"] == [approved["id"]]
    assert by_status["in_progress"] == [running["id"]]
    assert by_status["passed"] == []
    assert by_status["blocked"] == []


@pytest.mark.asyncio
async def test_board_view_empty_project(client: AsyncClient, project):
    data = (await client.get(f"/views/board/{project['id']}")).json()
    assert len(data["columns"]) == 5
    assert all(c["stories"] == [] for c in data["columns"])
    assert data["teamMembers"] == []
