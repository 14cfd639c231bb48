# tests/test_stories.py — Stories, criteria auto-transitions and assignment
import asyncio

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_create_story_draft_with_criteria(client: AsyncClient, project):
    """New stories start in draft with every criterion unpassed"""
    resp = await client.post(
        "/stories",
        json={
            "projectId": project["id"],
            "title": "Sign up",
            "description": "Users can register",
            "priority": 1,
            "criteria": ["Form renders", "Email validated"],
        },
    )
    assert resp.status_code == 201
    data = resp.json()
    assert data["status"] == "draft"
    assert data["assignedAgent"] is None
    assert data["assignees"] == []
    assert [c["description"] for c in data["criteria"]] == ["Form renders", "Email validated"]
    assert all(c["passed"] is False for c in data["criteria"])


@pytest.mark.asyncio
async def test_create_story_unknown_project(client: AsyncClient):
    resp = await client.post("/stories", json={"projectId": "missing", "title": "Orphan"})
    assert resp.status_code == 404
    assert resp.json()["error"] == "Project not found"


@pytest.mark.asyncio
async def test_get_story(client: AsyncClient, make_story):
    story = await make_story(title="Read me", criteria=["one"])
    resp = await client.get(f"/stories/{story['id']}")
    assert resp.status_code == 200
    data = resp.json()
    assert data["title"] == "Read me"
    assert len(data["criteria"]) == 1


@pytest.mark.asyncio
async def test_get_missing_story(client: AsyncClient):
    resp = await client.get("/stories/nope")
    assert resp.status_code == 404
    assert resp.json() == {"error": "Story not found"}


@pytest.mark.asyncio
async def test_list_project_stories_by_priority(client: AsyncClient, project, make_story):
    await make_story(title="Later", priority=3)
    await make_story(title="First", priority=1)
    await make_story(title="Middle", priority=2)
    resp = await client.get(f"/stories/project/{project['id']}")
    assert resp.status_code == 200
    assert [s["title"] for s in resp.json()] == ["First", "Middle", "Later"]


@pytest.mark.asyncio
async def test_update_story_fields(client: AsyncClient, make_story):
    story = await make_story(title="Old", priority=5)
    resp = await client.patch(f"/stories/{story['id']}", json={"title": "New", "priority": 2})
    assert resp.status_code == 200
    data = resp.json()
    assert data["title"] == "New"
    assert data["priority"] == 2
    assert data["status"] == "draft"


@pytest.mark.asyncio
async def test_update_status_is_unchecked_override(client: AsyncClient, make_story):
    """An explicit status write is accepted even off the workflow graph"""
    story = await make_story()
    resp = await client.patch(f"/stories/{story['id']}", json={"status": "blocked"})
    assert resp.status_code == 200
    assert resp.json()["status"] == "blocked"

    resp = await client.patch(f"/stories/{story['id']}", json={"status": "draft"})
    assert resp.json()["status"] == "draft"


@pytest.mark.asyncio
async def test_update_story_rejects_unknown_status(client: AsyncClient, make_story):
    story = await make_story()
    resp = await client.patch(f"/stories/{story['id']}", json={"status": "shipped"})
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_approve_draft_story(client: AsyncClient, make_story):
    story = await make_story()
    resp = await client.post(f"/stories/{story['id']}/approve", json={"approvedBy": "alice"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "approved"
    assert data["approvedBy"] == ["alice"]


@pytest.mark.asyncio
async def test_approve_without_body(client: AsyncClient, make_story):
    story = await make_story()
    resp = await client.post(f"/stories/{story['id']}/approve")
    assert resp.status_code == 200
    assert resp.json()["approvedBy"] == ["system"]


@pytest.mark.asyncio
async def test_approve_twice_is_invalid_transition(client: AsyncClient, make_story):
    story = await make_story()
    await client.post(f"/stories/{story['id']}/approve")
    resp = await client.post(f"/stories/{story['id']}/approve")
    assert resp.status_code == 400
    data = resp.json()
    assert data["currentStatus"] == "approved"
    assert data["requestedStatus"] == "approved"


# ============================================================
# CRITERIA
# ============================================================

@pytest.mark.asyncio
async def test_add_criterion(client: AsyncClient, make_story):
    story = await make_story(criteria=["first"])
    resp = await client.post(f"/stories/{story['id']}/criteria", json={"description": "second"})
    assert resp.status_code == 201
    assert resp.json()["passed"] is False

    detail = (await client.get(f"/stories/{story['id']}")).json()
    assert [c["description"] for c in detail["criteria"]] == ["first", "second"]


@pytest.mark.asyncio
async def test_add_criterion_does_not_reopen_passed_story(client: AsyncClient, make_story):
    story = await make_story(criteria=["only"])
    await client.patch(f"/criteria/{story['criteria'][0]['id']}", json={"passed": True})
    await client.post(f"/stories/{story['id']}/criteria", json={"description": "extra"})
    detail = (await client.get(f"/stories/{story['id']}")).json()
    assert detail["status"] == "passed"


@pytest.mark.asyncio
async def test_marking_last_criterion_passes_story(client: AsyncClient, make_story):
    """[A, B] with A passed: passing B passes the story, unpassing B reopens it"""
    story = await make_story(criteria=["A", "B"])
    a, b = story["criteria"]

    await client.patch(f"/criteria/{a['id']}", json={"passed": True})
    assert (await client.get(f"/stories/{story['id']}")).json()["status"] == "draft"

    resp = await client.patch(f"/criteria/{b['id']}", json={"passed": True, "evidence": "tests green"})
    assert resp.status_code == 200
    assert resp.json()["evidence"] == "tests green"
    assert (await client.get(f"/stories/{story['id']}")).json()["status"] == "passed"

    await client.patch(f"/criteria/{b['id']}", json={"passed": False})
    assert (await client.get(f"/stories/{story['id']}")).json()["status"] == "in_progress"


@pytest.mark.asyncio
async def test_concurrent_criteria_passes_story_once(client: AsyncClient, project, make_story):
    """Passing every criterion at once still ends with exactly one auto-pass"""
    story = await make_story(criteria=["A", "B", "C", "D"])
    responses = await asyncio.gather(*(
        client.patch(f"/criteria/{c['id']}", json={"passed": True}) for c in story["criteria"]
    ))
    assert all(r.status_code == 200 for r in responses)

    detail = (await client.get(f"/stories/{story['id']}")).json()
    assert detail["status"] == "passed"
    assert all(c["passed"] for c in detail["criteria"])

    events = (await client.get(f"/projects/{project['id']}/events")).json()
    transitions = [e for e in events if e["type"] == "story.status_changed"]
    assert [e["payload"]["status"] for e in transitions] == ["passed"]


@pytest.mark.asyncio
async def test_unchecking_outside_passed_keeps_status(client: AsyncClient, make_story):
    story = await make_story(criteria=["A", "B"])
    a = story["criteria"][0]
    await client.patch(f"/criteria/{a['id']}", json={"passed": True})
    await client.patch(f"/criteria/{a['id']}", json={"passed": False})
    assert (await client.get(f"/stories/{story['id']}")).json()["status"] == "draft"


@pytest.mark.asyncio
async def test_description_only_update_skips_auto_transition(client: AsyncClient, make_story):
    story = await make_story(criteria=["A"])
    a = story["criteria"][0]
    resp = await client.patch(f"/criteria/{a['id']}", json={"description": "A, reworded"})
    assert resp.status_code == 200
    assert resp.json()["description"] == "A, reworded"
    assert (await client.get(f"/stories/{story['id']}")).json()["status"] == "draft"


@pytest.mark.asyncio
async def test_update_missing_criterion(client: AsyncClient):
    resp = await client.patch("/criteria/nope", json={"passed": True})
    assert resp.status_code == 404
    assert resp.json() == {"error": "Criterion not found"}


# ============================================================
# ASSIGNMENT
# ============================================================

@pytest.mark.asyncio
async def test_assign_member_snapshot(client: AsyncClient, make_story, make_member):
    story = await make_story()
    member = await make_member(name="Bob", color="#123456")
    resp = await client.post(f"/stories/{story['id']}/assign", json={"memberId": member["id"]})
    assert resp.status_code == 200
    assert resp.json()["assignees"] == [
        {"id": member["id"], "name": "Bob", "type": "human", "color": "#123456", "avatar": None}
    ]


@pytest.mark.asyncio
async def test_assign_twice_fails_and_leaves_list(client: AsyncClient, make_story, make_member):
    story = await make_story()
    member = await make_member()
    await client.post(f"/stories/{story['id']}/assign", json={"memberId": member["id"]})

    resp = await client.post(f"/stories/{story['id']}/assign", json={"memberId": member["id"]})
    assert resp.status_code == 400
    assert resp.json()["memberId"] == member["id"]

    detail = (await client.get(f"/stories/{story['id']}")).json()
    assert [a["id"] for a in detail["assignees"]] == [member["id"]]


@pytest.mark.asyncio
async def test_assign_unknown_member(client: AsyncClient, make_story):
    story = await make_story()
    resp = await client.post(f"/stories/{story['id']}/assign", json={"memberId": "ghost"})
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_assign_member_from_other_project(client: AsyncClient, make_story):
    story = await make_story()
    other = (await client.post("/projects", json={"name": "Other"})).json()
    stranger = (await client.post(f"/projects/{other['id']}/team", json={"name": "Eve"})).json()
    resp = await client.post(f"/stories/{story['id']}/assign", json={"memberId": stranger["id"]})
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_unassign(client: AsyncClient, make_story, make_member):
    story = await make_story()
    bob = await make_member(name="Bob")
    ada = await make_member(name="Ada", type="agent")
    for m in (bob, ada):
        await client.post(f"/stories/{story['id']}/assign", json={"memberId": m["id"]})

    resp = await client.post(f"/stories/{story['id']}/unassign", json={"memberId": bob["id"]})
    assert resp.status_code == 200
    assert [a["name"] for a in resp.json()["assignees"]] == ["Ada"]


@pytest.mark.asyncio
async def test_unassign_absent_member_is_noop(client: AsyncClient, make_story):
    story = await make_story()
    resp = await client.post(f"/stories/{story['id']}/unassign", json={"memberId": "nobody"})
    assert resp.status_code == 200
    assert resp.json()["assignees"] == []
