"""Tests for the FastAPI router."""

import json

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from hrflow.api.router import create_router
from hrflow.ir.schema import Role
from hrflow.main import WorkflowEngine
from hrflow.runtime.directory import StaticApproverDirectory
from hrflow.samples import LEAVE_APPROVAL_ID, leave_approval_structure


@pytest.fixture
def client():
    directory = StaticApproverDirectory({Role.MANAGER: ["mgr-1"], Role.HR_MANAGER: ["hr-1"]})
    app = FastAPI()
    app.include_router(create_router(WorkflowEngine(directory=directory)))
    return TestClient(app)


def _sample_payload():
    return json.loads(leave_approval_structure().to_json())


def _publish_and_start(client):
    response = client.post("/hrflow/definitions/publish", json={"structure": _sample_payload()})
    assert response.status_code == 200
    response = client.post(
        "/hrflow/instances",
        json={
            "definition_id": LEAVE_APPROVAL_ID,
            "initiator": {"user_id": "emp-1", "role": "employee"},
            "context": {"long_leave": "false"},
        },
    )
    assert response.status_code == 200
    return response.json()


def _act(client, instance_id, task_id, user_id, role, action):
    return client.post(
        f"/hrflow/instances/{instance_id}/tasks/{task_id}/action",
        json={"actor": {"user_id": user_id, "role": role}, "action": action},
    )


class TestDefinitionsApi:
    def test_health(self, client):
        assert client.get("/hrflow/health").json() == {"status": "ok"}

    def test_validate(self, client):
        response = client.post("/hrflow/definitions/validate", json=_sample_payload())
        assert response.status_code == 200
        assert response.json() == {"valid": True, "violations": []}

    def test_publish_returns_version(self, client):
        response = client.post(
            "/hrflow/definitions/publish", json={"structure": _sample_payload(), "bump_part": "minor"}
        )
        assert response.json()["version"] == "1.0.0"
        response = client.post(
            "/hrflow/definitions/publish", json={"structure": _sample_payload(), "bump_part": "minor"}
        )
        assert response.json()["version"] == "1.1.0"

    def test_publish_invalid_structure_is_unprocessable(self, client):
        payload = _sample_payload()
        payload["steps"] = [step for step in payload["steps"] if not step["final"]]
        payload["transitions"] = []
        response = client.post("/hrflow/definitions/publish", json={"structure": payload})
        assert response.status_code == 422
        codes = [item["code"] for item in response.json()["detail"]["violations"]]
        assert "no_final_step" in codes


class TestInstancesApi:
    def test_full_approval_over_http(self, client):
        instance = _publish_and_start(client)
        (task,) = client.get("/hrflow/tasks", params={"user_id": "emp-1"}).json()

        response = _act(client, instance["id"], task["id"], "emp-1", "employee", "submit")
        assert response.status_code == 200
        assert response.json()["outcome"] == "advanced"

        (review,) = client.get("/hrflow/tasks", params={"user_id": "mgr-1", "status": "pending"}).json()
        response = _act(client, instance["id"], review["id"], "mgr-1", "manager", "approve")

        body = response.json()
        assert body["outcome"] == "completed"
        assert body["new_step_id"] == f"{LEAVE_APPROVAL_ID}-approved"
        current = client.get(f"/hrflow/instances/{instance['id']}").json()
        assert current["status"] == "completed"

    def test_unknown_instance_is_not_found(self, client):
        assert client.get("/hrflow/instances/missing").status_code == 404

    def test_unpublished_definition_is_not_found(self, client):
        response = client.post(
            "/hrflow/instances",
            json={"definition_id": "nope", "initiator": {"user_id": "emp-1", "role": "employee"}},
        )
        assert response.status_code == 404

    def test_wrong_actor_is_forbidden(self, client):
        instance = _publish_and_start(client)
        (task,) = client.get("/hrflow/tasks", params={"user_id": "emp-1"}).json()
        response = _act(client, instance["id"], task["id"], "mgr-1", "manager", "submit")
        assert response.status_code == 403

    def test_acting_twice_conflicts(self, client):
        instance = _publish_and_start(client)
        (task,) = client.get("/hrflow/tasks", params={"user_id": "emp-1"}).json()
        _act(client, instance["id"], task["id"], "emp-1", "employee", "submit")
        response = _act(client, instance["id"], task["id"], "emp-1", "employee", "submit")
        assert response.status_code == 409
