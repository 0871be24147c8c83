"""Tests for the Projects router."""
import uuid

import pytest
from sqlalchemy import select

from models import Project, Task
from tests.conftest import get_auth_headers


@pytest.mark.asyncio
async def test_list_projects_of_current_org(client, supervisor, test_project):
    resp = await client.get("/api/v1/projects", headers=get_auth_headers(supervisor))
    assert resp.status_code == 200
    assert [p["name"] for p in resp.json()] == ["Website Redesign"]


@pytest.mark.asyncio
async def test_list_projects_other_org_hidden(client, outside_supervisor, test_project):
    resp = await client.get("/api/v1/projects", headers=get_auth_headers(outside_supervisor))
    assert resp.status_code == 200
    assert resp.json() == []


@pytest.mark.asyncio
async def test_staff_can_create_project(client, staff_user, test_org):
    resp = await client.post("/api/v1/projects", json={"name": "Side quest"}, headers=get_auth_headers(staff_user))
    assert resp.status_code == 201
    body = resp.json()
    assert body["organization_id"] == test_org.id
    assert body["created_by_id"] == staff_user.id
    assert body["task_count"] == 0


@pytest.mark.asyncio
async def test_create_project_needs_current_org(client, db_session, unapproved_user):
    resp = await client.post("/api/v1/projects", json={"name": "Nowhere"}, headers=get_auth_headers(unapproved_user))
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_team_lead_updates_only_own_project(client, team_lead, test_project):
    headers = get_auth_headers(team_lead)
    resp = await client.patch(f"/api/v1/projects/{test_project.id}", json={"name": "Mine now"}, headers=headers)
    assert resp.status_code == 403
    assert resp.json()["detail"]["reason"] == "not_owner"

    created = await client.post("/api/v1/projects", json={"name": "Lead project"}, headers=headers)
    project_id = created.json()["id"]
    resp = await client.patch(f"/api/v1/projects/{project_id}", json={"description": "Updated"}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["description"] == "Updated"


@pytest.mark.asyncio
async def test_staff_cannot_update_project(client, staff_user, test_project):
    resp = await client.patch(
        f"/api/v1/projects/{test_project.id}", json={"name": "X"}, headers=get_auth_headers(staff_user),
    )
    assert resp.status_code == 403
    assert resp.json()["detail"]["reason"] == "insufficient_role"


@pytest.mark.asyncio
async def test_team_lead_cannot_delete_project(client, db_session, team_lead, test_org):
    project = Project(id=str(uuid.uuid4()), organization_id=test_org.id, name="Lead's", created_by_id=team_lead.id)
    db_session.add(project)
    await db_session.commit()
    resp = await client.delete(f"/api/v1/projects/{project.id}", headers=get_auth_headers(team_lead))
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_supervisor_deletes_project_with_tasks(client, db_session, supervisor, test_project):
    db_session.add(Task(project_id=test_project.id, title="Orphan-to-be", created_by_id=supervisor.id))
    await db_session.commit()

    resp = await client.delete(f"/api/v1/projects/{test_project.id}", headers=get_auth_headers(supervisor))
    assert resp.status_code == 200
    remaining = (await db_session.execute(select(Task.id).where(Task.project_id == test_project.id))).all()
    assert remaining == []


@pytest.mark.asyncio
async def test_cross_org_project_update_forbidden(client, outside_supervisor, test_project):
    resp = await client.patch(
        f"/api/v1/projects/{test_project.id}", json={"name": "Takeover"},
        headers=get_auth_headers(outside_supervisor),
    )
    assert resp.status_code == 403
    assert resp.json()["detail"]["reason"] == "cross_organization"


@pytest.mark.asyncio
async def test_get_project_from_other_org_is_404(client, outside_supervisor, test_project):
    resp = await client.get(f"/api/v1/projects/{test_project.id}", headers=get_auth_headers(outside_supervisor))
    assert resp.status_code == 404
