"""
HTTP tests for api.py through FastAPI's TestClient.

Each test gets its own in-memory database through a dependency override
on get_uow; the demo startup seed is not used.
"""

from __future__ import annotations

from typing import Dict, Optional

import pytest
from fastapi.testclient import TestClient

from api import app, get_uow
from infrastructure import InMemoryUnitOfWork


def _headers(user, roles: str = "teacher", permissions: Optional[str] = None) -> Dict[str, str]:
    headers = {"X-Actor-Id": str(user.id), "X-Actor-Roles": roles}
    if permissions:
        headers["X-Actor-Permissions"] = permissions
    return headers


@pytest.fixture
def client(db, catalog):
    app.dependency_overrides[get_uow] = lambda: InMemoryUnitOfWork(db)
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def teacher(catalog) -> Dict[str, str]:
    return _headers(catalog.teacher)


@pytest.fixture
def project(client, catalog, teacher) -> dict:
    resp = client.post(
        "/api/v1/projects",
        json={
            "title": "Robotics Lab",
            "term_id": str(catalog.term1.id),
            "staff_assignment_ids": [str(catalog.a1.id)],
            "participant_names": ["Ana", "Beto"],
        },
        headers=teacher,
    )
    assert resp.status_code == 201
    return resp.json()["data"]


def test_health(client) -> None:
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


class TestActorHeaders:
    def test_missing_actor(self, client, catalog) -> None:
        resp = client.post("/api/v1/projects", json={"title": "X", "term_id": str(catalog.term1.id)})
        assert resp.status_code == 401

    def test_malformed_actor(self, client, catalog) -> None:
        resp = client.post(
            "/api/v1/projects",
            json={"title": "X", "term_id": str(catalog.term1.id)},
            headers={"X-Actor-Id": "not-a-uuid"},
        )
        assert resp.status_code == 401


class TestProjectRoutes:
    def test_create_and_get(self, client, project) -> None:
        assert project["status"] == "proposal"
        assert [p["name"] for p in project["participants"]] == ["Ana", "Beto"]

        resp = client.get(f"/api/v1/projects/{project['id']}")
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert data["term_code"] == "2024-1"
        assert data["assignments"][0]["subject_code"] == "SWE-101"

    def test_duplicate_title_is_unprocessable(self, client, catalog, teacher, project) -> None:
        resp = client.post(
            "/api/v1/projects",
            json={"title": "robotics lab", "term_id": str(catalog.term1.id)},
            headers=teacher,
        )
        assert resp.status_code == 422
        assert "already exists" in resp.json()["detail"]

    def test_unknown_project(self, client, catalog) -> None:
        resp = client.get(f"/api/v1/projects/{catalog.term1.id}")
        assert resp.status_code == 404

    def test_update_by_other_teacher_is_forbidden(self, client, catalog, project) -> None:
        resp = client.put(
            f"/api/v1/projects/{project['id']}",
            json={"title": "Hijacked"},
            headers=_headers(catalog.other_teacher),
        )
        assert resp.status_code == 403

    def test_update_with_stale_version(self, client, teacher, project) -> None:
        resp = client.put(
            f"/api/v1/projects/{project['id']}",
            json={"title": "Vision Lab", "expected_version": 5},
            headers=teacher,
        )
        assert resp.status_code == 409

    def test_update_participants(self, client, teacher, project) -> None:
        ana = project["participants"][0]
        resp = client.put(
            f"/api/v1/projects/{project['id']}",
            json={
                "title": "Robotics Lab",
                "participants": [{"id": ana["id"], "name": "Ana María"}, {"name": "Carla"}],
            },
            headers=teacher,
        )
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert [p["name"] for p in data["participants"]] == ["Ana María", "Carla"]
        assert data["version"] == 1

    def test_list_term_projects(self, client, catalog, project) -> None:
        resp = client.get(f"/api/v1/terms/{catalog.term1.id}/projects")
        assert [p["id"] for p in resp.json()["data"]] == [project["id"]]

        resp = client.get(f"/api/v1/terms/{catalog.term1.id}/staff/{catalog.teacher.id}/projects")
        assert [p["id"] for p in resp.json()["data"]] == [project["id"]]


class TestLifecycleRoutes:
    def test_unknown_status_value(self, client, teacher, project) -> None:
        resp = client.post(
            f"/api/v1/projects/{project['id']}/status", json={"status": "finished"}, headers=teacher
        )
        assert resp.status_code == 422

    def test_completion_gate(self, client, teacher, project) -> None:
        resp = client.post(
            f"/api/v1/projects/{project['id']}/status", json={"status": "completed"}, headers=teacher
        )
        assert resp.status_code == 422
        assert "formal_document" in resp.json()["detail"]

    def test_continue_then_complete_cascades(self, client, catalog, teacher, project) -> None:
        pid = project["id"]
        resp = client.post(
            f"/api/v1/projects/{pid}/continuations",
            json={"target_term_id": str(catalog.term2.id), "participant_names": ["Ana"]},
            headers=teacher,
        )
        assert resp.status_code == 201
        successor = resp.json()["data"]["successor"]
        assert successor["continuation_of"] == pid

        resp = client.post(
            f"/api/v1/projects/{pid}/attachments",
            json={"type": "formal_document", "name": "report.pdf", "file_key": "files/report.pdf"},
            headers=teacher,
        )
        assert resp.status_code == 201

        resp = client.post(f"/api/v1/projects/{pid}/status", json={"status": "completed"}, headers=teacher)
        assert resp.status_code == 200
        result = resp.json()["data"]
        assert result["previous_status"] == "in_continuing"
        assert result["cascaded_project_ids"] == [successor["id"]]

        chain = client.get(f"/api/v1/projects/{successor['id']}/chain").json()["data"]
        assert [p["id"] for p in chain] == [pid, successor["id"]]
        assert {p["status"] for p in chain} == {"completed"}

    def test_continuation_into_earlier_term(self, client, catalog, teacher, project) -> None:
        resp = client.post(
            f"/api/v1/projects/{project['id']}/continuations",
            json={"target_term_id": str(catalog.term_early.id)},
            headers=teacher,
        )
        assert resp.status_code == 422


class TestHistoryRoutes:
    def test_project_history(self, client, teacher, project) -> None:
        client.put(f"/api/v1/projects/{project['id']}", json={"title": "Vision Lab"}, headers=teacher)

        resp = client.get(f"/api/v1/projects/{project['id']}/history", headers=teacher)
        assert resp.status_code == 200
        assert [e["action"] for e in resp.json()["data"]] == ["title_updated", "created"]

        resp = client.get(
            f"/api/v1/projects/{project['id']}/history", params={"action": "created"}, headers=teacher
        )
        assert len(resp.json()["data"]) == 1

    def test_history_requires_permission(self, client, catalog, project) -> None:
        url = f"/api/v1/projects/{project['id']}/history"
        assert client.get(url, headers=_headers(catalog.other_teacher)).status_code == 403
        viewer = _headers(catalog.other_teacher, permissions="projects.history.view_all")
        assert client.get(url, headers=viewer).status_code == 200

    def test_user_history(self, client, catalog, teacher, project) -> None:
        resp = client.get(f"/api/v1/users/{catalog.teacher.id}/history", headers=teacher)
        assert resp.status_code == 200
        assert len(resp.json()["data"]) == 1


class TestAdminAndAttachmentRoutes:
    def test_admin_create_requires_admin(self, client, catalog, teacher) -> None:
        body = {
            "title": "Data Lab",
            "term_id": str(catalog.term1.id),
            "responsible_staff_id": str(catalog.other_teacher.id),
        }
        assert client.post("/api/v1/admin/projects", json=body, headers=teacher).status_code == 403

        admin = _headers(catalog.admin, roles="admin")
        resp = client.post("/api/v1/admin/projects", json=body, headers=admin)
        assert resp.status_code == 201
        assert resp.json()["data"]["responsible_staff_id"] == str(catalog.other_teacher.id)

    def test_remove_attachment(self, client, teacher, project) -> None:
        resp = client.post(
            f"/api/v1/projects/{project['id']}/attachments",
            json={"type": "evidence", "name": "photo.jpg", "file_key": "files/photo.jpg"},
            headers=teacher,
        )
        attachment_id = resp.json()["data"]["id"]

        resp = client.delete(f"/api/v1/attachments/{attachment_id}", headers=teacher)
        assert resp.status_code == 200
        assert resp.json()["data"]["is_deleted"] is True
        assert client.get(f"/api/v1/projects/{project['id']}/attachments").json()["data"] == []

    def test_unknown_attachment_type(self, client, teacher, project) -> None:
        resp = client.post(
            f"/api/v1/projects/{project['id']}/attachments",
            json={"type": "spreadsheet", "name": "x.xls", "file_key": "files/x.xls"},
            headers=teacher,
        )
        assert resp.status_code == 422
