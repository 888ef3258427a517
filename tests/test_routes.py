import anyio
import pytest
from fastapi.testclient import TestClient

from workplan.auth.security import create_access_token
from workplan.db import build_engine
from workplan.main import create_app
from workplan.schemas.users import Role, User
from workplan.services.notifications import ASSIGNED_SUBJECT
from workplan.services.store import TenantRegistry
from workplan.services.users import UserDirectory


@pytest.fixture
def people(settings, group):
    """Provision the group and its users before the app loads groups."""
    registry = TenantRegistry(build_engine(settings.database_url))
    registry.create_schema()
    registry.load_groups()
    registry.add_group(group)
    directory = UserDirectory(registry)

    async def seed():
        users = {}
        for username, roles in [("admin", [Role.ADMIN]), ("alice", [Role.USER]), ("bob", [Role.USER])]:
            users[username] = await directory.save_user(
                User(username=username, email=f"{username}@example.com", roles=roles), group
            )
        return users

    users = anyio.run(seed)
    registry.dispose()
    return users


@pytest.fixture
def client(settings, people, transport):
    app = create_app(settings, transport=transport)
    with TestClient(app) as client:
        yield client


@pytest.fixture
def auth(settings, people, group):
    def _headers(username):
        user = people[username]
        token = create_access_token(settings, user.id, group, user.roles)
        return {"Authorization": f"Bearer {token}"}

    return _headers


def settle(client):
    client.portal.call(client.app.state.background.drain)
    client.portal.call(client.app.state.mailer.flush)


def create_project(client, auth, name="Site A"):
    r = client.post("/admin/projects", json={"name": name}, headers=auth("admin"))
    assert r.status_code == 200, r.text
    return r.json()


def test_health_and_request_id(client):
    r = client.get("/health", headers={"X-Request-ID": "req-1"})
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}
    assert r.headers["X-Request-ID"] == "req-1"


def test_requires_token(client):
    assert client.get("/admin/projects").status_code == 401
    r = client.get("/admin/projects", headers={"Authorization": "Bearer garbage"})
    assert r.status_code == 401


def test_admin_routes_need_admin_role(client, auth):
    assert client.get("/admin/projects", headers=auth("alice")).status_code == 403


def test_unknown_group_in_token(client, settings, people):
    token = create_access_token(settings, people["admin"].id, "initech", [Role.ADMIN])
    r = client.get("/admin/projects", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 401


def test_project_crud(client, auth):
    project = create_project(client, auth)
    assert project["id"]
    assert project["project_type"] == "WORK"

    r = client.get(f"/admin/projects/{project['id']}", headers=auth("admin"))
    assert r.status_code == 200
    assert r.json()["name"] == "Site A"
    assert [p["name"] for p in client.get("/admin/projects", headers=auth("admin")).json()] == ["Site A"]
    assert client.get("/admin/projects/nope", headers=auth("admin")).status_code == 404


def test_upsert_entry_assigns_and_mails(client, auth, people, transport):
    project = create_project(client, auth)
    payload = {
        "start": "04/11/2024 06:00",
        "end": "04/11/2024 14:00",
        "employee_ids": [people["alice"].id],
        "title": "Morning",
    }
    r = client.post(f"/admin/projects/{project['id']}/planning", json=payload, headers=auth("admin"))
    assert r.status_code == 200, r.text
    entry = r.json()
    assert entry["project_id"] == project["id"]

    settle(client)

    assert [(m.to, m.subject) for m in transport.delivered] == [(["alice@example.com"], ASSIGNED_SUBJECT)]
    r = client.get("/planning/assignments", headers=auth("alice"))
    assert r.status_code == 200
    details = r.json()
    assert len(details) == 1
    assert details[0]["entry"]["id"] == entry["id"]
    assert details[0]["project"]["name"] == "Site A"

    planning = client.get(f"/admin/projects/{project['id']}/planning", headers=auth("admin")).json()
    assert [e["id"] for e in planning] == [entry["id"]]


def test_entry_errors(client, auth, people):
    project = create_project(client, auth)
    url = f"/admin/projects/{project['id']}/planning"
    both = [people["alice"].id, people["bob"].id]

    r = client.post(
        url,
        json={"start": "04/11/2024 06:00", "end": "04/11/2024 14:00", "employee_ids": both, "title": "x"},
        headers=auth("admin"),
    )
    assert r.status_code == 400
    assert r.json()["detail"] == "multiple assignment is not allowed for this entry"

    r = client.post(
        url,
        json={"start": "04/11/2024 14:00", "end": "04/11/2024 06:00", "title": "x"},
        headers=auth("admin"),
    )
    assert r.status_code == 400
    assert r.json()["detail"] == "start cannot be after end"

    r = client.post(url, json={"start": "soon", "end": "04/11/2024 14:00"}, headers=auth("admin"))
    assert r.status_code == 400
    assert set(r.json()["messages"]) == {"start", "title"}

    r = client.post(
        "/admin/projects/nope/planning",
        json={"start": "04/11/2024 06:00", "end": "04/11/2024 14:00", "title": "x"},
        headers=auth("admin"),
    )
    assert r.status_code == 404


def test_validate_entry(client, auth, people):
    project = create_project(client, auth)
    r = client.post(
        f"/admin/projects/{project['id']}/planning/validate",
        json={"start": "04/11/2024 06:00", "end": "04/11/2024 14:00", "employee_ids": ["ghost"], "title": "x"},
        headers=auth("admin"),
    )
    assert r.status_code == 200
    report = r.json()
    assert report["valid"] is False
    assert report["comments"][0]["user_id"] == "ghost"


def test_cycle_validate_and_commit(client, auth, people, transport):
    project = create_project(client, auth)
    cycle = {
        "start": "04/11/2024",
        "end": "10/11/2024",
        "employee_ids": [people["bob"].id],
        "title": "Line 1",
        "rotation_frequency": 1,
        "rotation_frequency_type": "DAYS",
        "shifts": [{"start_hour": 6, "end_hour": 14}, {"start_hour": 14, "end_hour": 22}],
    }
    base = f"/admin/projects/{project['id']}/planning/cycle"

    r = client.post(f"{base}/validate", json=cycle, headers=auth("admin"))
    assert r.status_code == 200
    preview = r.json()
    assert preview["report"]["valid"] is True
    assert [e["id"] for e in preview["entries"]] == [None] * 5
    assert client.get(f"/admin/projects/{project['id']}/planning", headers=auth("admin")).json() == []

    r = client.post(base, json=cycle, headers=auth("admin"))
    assert r.status_code == 200, r.text
    assert len(r.json()) == 5

    settle(client)

    assert len(transport.delivered) == 1
    assert transport.delivered[0].html_body.count("<br>") == 4

    r = client.post(base, json={**cycle, "rotation_frequency_type": "MONTHS"}, headers=auth("admin"))
    assert r.status_code == 400
    assert r.json()["detail"] == "unknown rotation frequency type"
