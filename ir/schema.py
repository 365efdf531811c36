"""
Typed intermediate representation for hrflow workflow definitions and runs.

Field names are snake_case; the backend's wire names are accepted and
emitted through aliases so a `/structure` payload validates as-is.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Set, Union

from pydantic import BaseModel, ConfigDict, Field, field_serializer, model_validator


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class StrictModel(BaseModel):
    """Base model that rejects undeclared fields."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class Role(str, Enum):
    SUPER_ADMIN = "super_admin"
    HR_MANAGER = "hr_manager"
    MANAGER = "manager"
    EMPLOYEE = "employee"


# Conditions: a closed tagged union. New kinds go through `custom` and the
# predicate table in hrflow.runtime.conditions.


class AlwaysCondition(StrictModel):
    kind: Literal["always"] = "always"


class EqualsCondition(StrictModel):
    kind: Literal["equals"] = "equals"
    field: str
    value: str


class RoleIsCondition(StrictModel):
    kind: Literal["role_is"] = "role_is"
    role: Role


class CustomCondition(StrictModel):
    kind: Literal["custom"] = "custom"
    name: str
    params: Dict[str, Any] = Field(default_factory=dict)


Condition = Annotated[
    Union[AlwaysCondition, EqualsCondition, RoleIsCondition, CustomCondition],
    Field(discriminator="kind"),
]


def condition_from_wire(condition_type: Optional[str], condition_value: Optional[str]) -> Condition:
    """Decode the backend's `condition_type` / `condition_value` string pair."""

    kind = (condition_type or "").strip()
    raw = condition_value or ""
    if kind in ("", "always", "none"):
        return AlwaysCondition()
    if kind == "equals":
        field, sep, value = raw.partition("=")
        if not sep or not field.strip():
            raise ValueError(f"equals condition expects 'field=value', got: {raw!r}")
        return EqualsCondition(field=field.strip(), value=value.strip())
    if kind == "role_is":
        return RoleIsCondition(role=Role(raw.strip()))
    return CustomCondition(name=kind, params={"value": raw})


def condition_to_wire(condition: Condition) -> Dict[str, str]:
    if isinstance(condition, EqualsCondition):
        return {"condition_type": "equals", "condition_value": f"{condition.field}={condition.value}"}
    if isinstance(condition, RoleIsCondition):
        return {"condition_type": "role_is", "condition_value": condition.role.value}
    if isinstance(condition, CustomCondition):
        return {
            "condition_type": condition.name,
            "condition_value": str(condition.params.get("value", "")),
        }
    return {"condition_type": "always", "condition_value": ""}


class WorkflowDefinition(StrictModel):
    id: str
    name: str
    description: str = ""
    active: bool = Field(default=True, alias="is_active")
    created_by: Optional[str] = None
    created_at: str = Field(default_factory=utc_now)
    updated_at: str = Field(default_factory=utc_now)
    step_count: Optional[int] = None
    transition_count: Optional[int] = None


class Step(StrictModel):
    id: str
    workflow_id: str
    name: str = Field(alias="step_name")
    order: int = Field(default=0, alias="step_order")
    initial: bool = False
    final: bool = False
    allowed_roles: Set[Role] = Field(default_factory=set)
    requires_all_approvers: bool = False
    min_approvals: int = Field(default=1, ge=0)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @model_validator(mode="after")
    def _initial_and_final_are_exclusive(self) -> "Step":
        if self.initial and self.final:
            raise ValueError(f"Step '{self.name}' cannot be both initial and final.")
        return self

    @field_serializer("allowed_roles")
    def _serialize_roles(self, roles: Set[Role]) -> List[str]:
        return sorted(role.value for role in roles)


class Transition(StrictModel):
    id: str
    workflow_id: str
    from_step_id: str
    to_step_id: str
    action_name: str
    condition: Condition = Field(default_factory=AlwaysCondition)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _accept_wire_condition(cls, data: Any) -> Any:
        if isinstance(data, dict) and "condition_type" in data:
            data = dict(data)
            data["condition"] = condition_from_wire(
                data.pop("condition_type"), data.pop("condition_value", "")
            )
        return data

    @property
    def is_self_loop(self) -> bool:
        return self.from_step_id == self.to_step_id

    def to_wire(self) -> Dict[str, Any]:
        payload = self.model_dump(exclude={"condition"})
        payload.update(condition_to_wire(self.condition))
        return payload


class WorkflowStructure(StrictModel):
    definition: WorkflowDefinition = Field(alias="workflow")
    steps: List[Step] = Field(default_factory=list)
    transitions: List[Transition] = Field(default_factory=list)

    def step_map(self) -> Dict[str, Step]:
        return {step.id: step for step in self.steps}

    def initial_step(self) -> Optional[Step]:
        for step in self.steps:
            if step.initial:
                return step
        return None

    def outgoing(self, step_id: str) -> List[Transition]:
        return [item for item in self.transitions if item.from_step_id == step_id]

    def to_json(self, indent: int = 2) -> str:
        payload = self.model_dump(mode="json", by_alias=True, exclude={"transitions"})
        payload["transitions"] = [item.to_wire() for item in self.transitions]
        return json.dumps(payload, indent=indent, sort_keys=True)


class PublishedDefinition(StrictModel):
    definition_id: str
    version: str
    published_at: str = Field(default_factory=utc_now)
    structure: WorkflowStructure


class InstanceStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    TERMINATED = "terminated"


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    SKIPPED = "skipped"


OPEN_TASK_STATUSES = frozenset({TaskStatus.PENDING, TaskStatus.IN_PROGRESS})


class DecisionOutcome(str, Enum):
    PENDING = "pending"
    SATISFIED = "satisfied"
    REJECTED = "rejected"


class Actor(StrictModel):
    user_id: str
    role: Role


class Action(StrictModel):
    action: str
    comments: str = ""
    payload: Dict[str, Any] = Field(default_factory=dict)


class RecordedAction(StrictModel):
    task_id: str
    actor_id: str
    actor_role: Role
    action: str
    comments: str = ""
    recorded_at: str = Field(default_factory=utc_now)


class StepVisit(StrictModel):
    step_id: str
    entered_at: str = Field(default_factory=utc_now)
    actions: List[RecordedAction] = Field(default_factory=list)
    decision: DecisionOutcome = DecisionOutcome.PENDING
    chosen_action: Optional[str] = None
    left_at: Optional[str] = None


class WorkflowInstance(StrictModel):
    id: str
    definition_id: str
    definition_version: str
    current_step_id: str
    status: InstanceStatus = InstanceStatus.RUNNING
    context: Dict[str, Any] = Field(default_factory=dict)
    initiated_by: Optional[str] = None
    history: List[StepVisit] = Field(default_factory=list)
    termination_reason: Optional[str] = None
    created_at: str = Field(default_factory=utc_now)
    updated_at: str = Field(default_factory=utc_now)

    @property
    def current_visit(self) -> int:
        return len(self.history) - 1


class Task(StrictModel):
    id: str
    instance_id: str
    step_id: str
    visit: int = 0
    assigned_to: str
    assigned_by: Optional[str] = None
    status: TaskStatus = TaskStatus.PENDING
    due_date: Optional[str] = None
    details: Optional[str] = None
    created_at: str = Field(default_factory=utc_now)
    completed_at: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_TASK_STATUSES
