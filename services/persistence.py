"""
Persistence collaborator for workflow definitions.

`WorkflowBackend` is the shape the editor session talks to (the admin REST
API in production). Payloads use the backend's wire field names.
`InMemoryWorkflowBackend` implements it for tests and local runs.
"""

from __future__ import annotations

import threading
import uuid
from typing import Any, Dict, List, Optional, Protocol

from hrflow.ir.schema import Step, Transition, WorkflowDefinition, WorkflowStructure, utc_now


class WorkflowBackend(Protocol):
    def list_workflows(self) -> List[WorkflowDefinition]:
        ...

    def get_workflow(self, workflow_id: str) -> WorkflowDefinition:
        ...

    def create_workflow(self, name: str, description: str) -> WorkflowDefinition:
        ...

    def update_workflow(self, workflow_id: str, fields: Dict[str, Any]) -> WorkflowDefinition:
        ...

    def create_step(self, data: Dict[str, Any]) -> Step:
        ...

    def update_step(self, step_id: str, fields: Dict[str, Any]) -> Step:
        ...

    def delete_step(self, step_id: str) -> None:
        ...

    def create_transition(self, data: Dict[str, Any]) -> Transition:
        ...

    def update_transition(self, transition_id: str, fields: Dict[str, Any]) -> Transition:
        ...

    def delete_transition(self, transition_id: str) -> None:
        ...

    def get_workflow_structure(self, workflow_id: str) -> WorkflowStructure:
        ...

    def get_workflow_steps(self, workflow_id: str) -> List[Step]:
        ...

    def get_valid_transitions_from_step(self, step_id: str) -> List[Transition]:
        ...


class InMemoryWorkflowBackend:
    """Dict-backed backend; `fail_next` queues an error for the next call of an operation."""

    def __init__(self) -> None:
        self._workflows: Dict[str, WorkflowDefinition] = {}
        self._steps: Dict[str, Step] = {}
        self._transitions: Dict[str, Transition] = {}
        self._failures: Dict[str, List[BaseException]] = {}
        self.calls: List[str] = []
        self._lock = threading.Lock()

    def fail_next(self, operation: str, error: Optional[BaseException] = None) -> None:
        self._failures.setdefault(operation, []).append(
            error or ConnectionError(f"{operation} failed")
        )

    def _enter(self, operation: str) -> None:
        self.calls.append(operation)
        queued = self._failures.get(operation)
        if queued:
            raise queued.pop(0)

    @staticmethod
    def _new_id() -> str:
        return str(uuid.uuid4())

    # -- workflows --------------------------------------------------------

    def list_workflows(self) -> List[WorkflowDefinition]:
        self._enter("list_workflows")
        with self._lock:
            return [self._with_counts(item) for item in self._workflows.values()]

    def get_workflow(self, workflow_id: str) -> WorkflowDefinition:
        self._enter("get_workflow")
        with self._lock:
            return self._with_counts(self._require_workflow(workflow_id))

    def create_workflow(self, name: str, description: str) -> WorkflowDefinition:
        self._enter("create_workflow")
        now = utc_now()
        record = WorkflowDefinition(
            id=self._new_id(), name=name, description=description, created_at=now, updated_at=now
        )
        with self._lock:
            self._workflows[record.id] = record
        return record.model_copy()

    def update_workflow(self, workflow_id: str, fields: Dict[str, Any]) -> WorkflowDefinition:
        self._enter("update_workflow")
        with self._lock:
            current = self._require_workflow(workflow_id)
            payload = current.model_dump(by_alias=True)
            payload.update(fields)
            payload["updated_at"] = utc_now()
            record = WorkflowDefinition.model_validate(payload)
            self._workflows[workflow_id] = record
            return record.model_copy()

    def delete_workflow(self, workflow_id: str) -> None:
        """Delete a workflow with every step and transition it owns."""

        self._enter("delete_workflow")
        with self._lock:
            self._require_workflow(workflow_id)
            del self._workflows[workflow_id]
            self._steps = {k: v for k, v in self._steps.items() if v.workflow_id != workflow_id}
            self._transitions = {
                k: v for k, v in self._transitions.items() if v.workflow_id != workflow_id
            }

    # -- steps ------------------------------------------------------------

    def create_step(self, data: Dict[str, Any]) -> Step:
        self._enter("create_step")
        now = utc_now()
        with self._lock:
            self._require_workflow(data["workflow_id"])
            payload = dict(data)
            payload.update(id=self._new_id(), created_at=now, updated_at=now)
            record = Step.model_validate(payload)
            self._steps[record.id] = record
            return record.model_copy(deep=True)

    def update_step(self, step_id: str, fields: Dict[str, Any]) -> Step:
        self._enter("update_step")
        with self._lock:
            current = self._require_step(step_id)
            payload = current.model_dump(by_alias=True)
            payload.update(fields)
            payload["updated_at"] = utc_now()
            record = Step.model_validate(payload)
            self._steps[step_id] = record
            return record.model_copy(deep=True)

    def delete_step(self, step_id: str) -> None:
        self._enter("delete_step")
        with self._lock:
            self._require_step(step_id)
            del self._steps[step_id]
            self._transitions = {
                k: v
                for k, v in self._transitions.items()
                if v.from_step_id != step_id and v.to_step_id != step_id
            }

    def get_workflow_steps(self, workflow_id: str) -> List[Step]:
        self._enter("get_workflow_steps")
        with self._lock:
            self._require_workflow(workflow_id)
            steps = [v for v in self._steps.values() if v.workflow_id == workflow_id]
            return [item.model_copy(deep=True) for item in sorted(steps, key=lambda s: s.order)]

    # -- transitions ------------------------------------------------------

    def create_transition(self, data: Dict[str, Any]) -> Transition:
        self._enter("create_transition")
        now = utc_now()
        with self._lock:
            self._require_workflow(data["workflow_id"])
            for key in ("from_step_id", "to_step_id"):
                step = self._require_step(data[key])
                if step.workflow_id != data["workflow_id"]:
                    raise ValueError(f"Step {step.id} belongs to another workflow.")
            payload = dict(data)
            payload.update(id=self._new_id(), created_at=now, updated_at=now)
            record = Transition.model_validate(payload)
            self._transitions[record.id] = record
            return record.model_copy(deep=True)

    def update_transition(self, transition_id: str, fields: Dict[str, Any]) -> Transition:
        self._enter("update_transition")
        with self._lock:
            current = self._require_transition(transition_id)
            payload = current.to_wire()
            payload.update(fields)
            payload["updated_at"] = utc_now()
            record = Transition.model_validate(payload)
            self._transitions[transition_id] = record
            return record.model_copy(deep=True)

    def delete_transition(self, transition_id: str) -> None:
        self._enter("delete_transition")
        with self._lock:
            self._require_transition(transition_id)
            del self._transitions[transition_id]

    def get_valid_transitions_from_step(self, step_id: str) -> List[Transition]:
        self._enter("get_valid_transitions_from_step")
        with self._lock:
            self._require_step(step_id)
            return [
                item.model_copy(deep=True)
                for item in self._transitions.values()
                if item.from_step_id == step_id
            ]

    # -- structure --------------------------------------------------------

    def get_workflow_structure(self, workflow_id: str) -> WorkflowStructure:
        self._enter("get_workflow_structure")
        with self._lock:
            definition = self._with_counts(self._require_workflow(workflow_id))
            steps = [v for v in self._steps.values() if v.workflow_id == workflow_id]
            transitions = [v for v in self._transitions.values() if v.workflow_id == workflow_id]
            return WorkflowStructure(
                definition=definition,
                steps=[item.model_copy(deep=True) for item in sorted(steps, key=lambda s: s.order)],
                transitions=[item.model_copy(deep=True) for item in transitions],
            )

    def seed(self, structure: WorkflowStructure) -> None:
        """Load a complete structure as-is, keeping its ids."""

        with self._lock:
            self._workflows[structure.definition.id] = structure.definition.model_copy()
            for step in structure.steps:
                self._steps[step.id] = step.model_copy(deep=True)
            for item in structure.transitions:
                self._transitions[item.id] = item.model_copy(deep=True)

    def _with_counts(self, definition: WorkflowDefinition) -> WorkflowDefinition:
        return definition.model_copy(
            update={
                "step_count": sum(1 for v in self._steps.values() if v.workflow_id == definition.id),
                "transition_count": sum(
                    1 for v in self._transitions.values() if v.workflow_id == definition.id
                ),
            }
        )

    def _require_workflow(self, workflow_id: str) -> WorkflowDefinition:
        try:
            return self._workflows[workflow_id]
        except KeyError:
            raise KeyError(f"Unknown workflow: {workflow_id}") from None

    def _require_step(self, step_id: str) -> Step:
        try:
            return self._steps[step_id]
        except KeyError:
            raise KeyError(f"Unknown step: {step_id}") from None

    def _require_transition(self, transition_id: str) -> Transition:
        try:
            return self._transitions[transition_id]
        except KeyError:
            raise KeyError(f"Unknown transition: {transition_id}") from None
