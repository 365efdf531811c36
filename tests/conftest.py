"""Pytest configuration and fixtures."""

import pytest

from hrflow.ir.schema import Actor, Role, Step, Transition, WorkflowDefinition, WorkflowStructure
from hrflow.ir.versioning import DefinitionVersionManager
from hrflow.runtime.directory import StaticApproverDirectory
from hrflow.runtime.router import TaskRouter
from hrflow.runtime.telemetry import TelemetryCollector


def build_structure(steps, transitions, workflow_id="wf"):
    """
    steps: list of dicts with an "id" plus any Step fields.
    transitions: tuples of (from, to, action) or (from, to, action, condition).
    """

    step_models = []
    for index, entry in enumerate(steps):
        fields = dict(entry)
        step_id = fields.pop("id")
        fields.setdefault("name", step_id)
        fields.setdefault("order", index + 1)
        step_models.append(Step(id=step_id, workflow_id=workflow_id, **fields))

    transition_models = []
    for index, entry in enumerate(transitions):
        source, target, action = entry[:3]
        extra = {"condition": entry[3]} if len(entry) > 3 else {}
        transition_models.append(
            Transition(
                id=f"t{index + 1}",
                workflow_id=workflow_id,
                from_step_id=source,
                to_step_id=target,
                action_name=action,
                **extra,
            )
        )
    return WorkflowStructure(
        definition=WorkflowDefinition(id=workflow_id, name=workflow_id),
        steps=step_models,
        transitions=transition_models,
    )


@pytest.fixture
def make_structure():
    return build_structure


@pytest.fixture
def linear_structure():
    """Submitted -> Review -> Approved, one HR approver at Review."""

    return build_structure(
        [
            {"id": "submitted", "name": "Submitted", "initial": True},
            {"id": "review", "name": "Review", "allowed_roles": {Role.HR_MANAGER}},
            {"id": "approved", "name": "Approved", "final": True},
        ],
        [
            ("submitted", "review", "submit"),
            ("review", "approved", "approve"),
        ],
        workflow_id="linear",
    )


@pytest.fixture
def directory():
    return StaticApproverDirectory(
        {
            Role.MANAGER: ["mgr-1", "mgr-2", "mgr-3", "mgr-4", "mgr-5"],
            Role.HR_MANAGER: ["hr-1"],
            Role.EMPLOYEE: ["emp-1"],
        }
    )


@pytest.fixture
def employee():
    return Actor(user_id="emp-1", role=Role.EMPLOYEE)


@pytest.fixture
def versions():
    return DefinitionVersionManager()


@pytest.fixture
def telemetry():
    return TelemetryCollector()


@pytest.fixture
def router(versions, directory, telemetry):
    return TaskRouter(versions=versions, directory=directory, telemetry=telemetry)
