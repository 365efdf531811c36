"""
Editor session: authoring a workflow graph against the persistence backend.

Elements are created locally under provisional ids and pushed to the
backend one at a time. An element moves provisional -> pending -> reconciled;
only a confirmed create swaps in the authoritative id, and any failed or
interrupted call leaves the graph exactly as it was before the call.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple, Union

from hrflow.errors import (
    PersistenceFailure,
    ReferenceLockedError,
    SessionClosedError,
    UnsyncedReferenceError,
)
from hrflow.graph.model import GraphCheckpoint, IdentityState, WorkflowGraph
from hrflow.ir.schema import (
    Condition,
    PublishedDefinition,
    Step,
    Transition,
    WorkflowStructure,
    condition_to_wire,
)
from hrflow.ir.validators import Violation
from hrflow.ir.versioning import DefinitionVersionManager
from hrflow.runtime.telemetry import TelemetryCollector
from hrflow.services.persistence import WorkflowBackend

if TYPE_CHECKING:  # pragma: no cover
    from hrflow.runtime.directory import ApproverDirectory

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class StepReconciled:
    provisional_id: str
    authoritative_id: str
    revision: int


@dataclass(frozen=True)
class TransitionReconciled:
    provisional_id: str
    authoritative_id: str
    revision: int


ReconciliationEvent = Union[StepReconciled, TransitionReconciled]
Listener = Callable[[ReconciliationEvent], None]

_STEP_WIRE_NAMES = {"name": "step_name", "order": "step_order"}
_STEP_BACKEND_FIELDS = {
    "name",
    "order",
    "initial",
    "final",
    "allowed_roles",
    "requires_all_approvers",
    "min_approvals",
}


def step_create_payload(step: Step) -> Dict[str, Any]:
    return {
        "workflow_id": step.workflow_id,
        "step_name": step.name,
        "step_order": step.order,
        "initial": step.initial,
        "final": step.final,
        "allowed_roles": sorted(role.value for role in step.allowed_roles),
        "requires_all_approvers": step.requires_all_approvers,
        "min_approvals": step.min_approvals,
    }


def transition_create_payload(item: Transition) -> Dict[str, Any]:
    payload = {
        "workflow_id": item.workflow_id,
        "from_step_id": item.from_step_id,
        "to_step_id": item.to_step_id,
        "action_name": item.action_name,
    }
    payload.update(condition_to_wire(item.condition))
    return payload


class EditorSession:
    """
    One author editing one workflow. Open it with `open` or `create`, end it
    with `close`; the session owns its graph for that lifetime.
    """

    def __init__(
        self,
        backend: WorkflowBackend,
        *,
        telemetry: Optional[TelemetryCollector] = None,
        provisional_prefix: str = "tmp-",
    ) -> None:
        self.backend = backend
        self.telemetry = telemetry or TelemetryCollector()
        self.provisional_prefix = provisional_prefix
        self.session_id = f"editor-{uuid.uuid4().hex[:12]}"
        self._graph: Optional[WorkflowGraph] = None
        self._listeners: List[Listener] = []

    # -- lifecycle --------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self._graph is not None

    @property
    def graph(self) -> WorkflowGraph:
        if self._graph is None:
            raise SessionClosedError("No workflow is open in this editor session.")
        return self._graph

    def open(self, workflow_id: str) -> WorkflowGraph:
        try:
            structure = self.backend.get_workflow_structure(workflow_id)
        except Exception as exc:
            raise PersistenceFailure(f"Could not load workflow {workflow_id}: {exc}") from exc
        self._graph = WorkflowGraph.from_structure(
            structure, provisional_prefix=self.provisional_prefix
        )
        self.telemetry.log(self.session_id, "workflow_opened", workflow_id=workflow_id)
        return self._graph

    def create(self, name: str, description: str = "") -> WorkflowGraph:
        try:
            definition = self.backend.create_workflow(name, description)
        except Exception as exc:
            raise PersistenceFailure(f"Could not create workflow '{name}': {exc}") from exc
        self._graph = WorkflowGraph(definition, provisional_prefix=self.provisional_prefix)
        self.telemetry.log(self.session_id, "workflow_created", workflow_id=definition.id)
        return self._graph

    def close(self) -> None:
        if self._graph is None:
            return
        unsynced = self.unsynced_ids()
        if unsynced:
            LOGGER.info(
                "Closing editor session %s with %d unsynced elements discarded",
                self.session_id,
                len(unsynced),
            )
        self.telemetry.log(
            self.session_id,
            "workflow_closed",
            workflow_id=self._graph.definition.id,
            discarded=unsynced,
        )
        self._graph = None

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # -- reads ------------------------------------------------------------

    def snapshot(self) -> WorkflowStructure:
        return self.graph.snapshot()

    def validate(self, directory: Optional["ApproverDirectory"] = None) -> List[Violation]:
        return self.graph.validate(directory)

    def unsynced_ids(self) -> List[str]:
        graph = self.graph
        ids = [step.id for step in graph.steps] + [item.id for item in graph.transitions]
        return [
            element_id
            for element_id in ids
            if graph.identity_state(element_id) != IdentityState.RECONCILED
        ]

    # -- local edits ------------------------------------------------------

    def add_step(self, name: str, **fields: Any) -> Step:
        step = self.graph.add_step(name, **fields)
        self.telemetry.log(self.session_id, "step_added", step_id=step.id, name=name)
        return step

    def add_transition(
        self,
        from_step_id: str,
        to_step_id: str,
        action_name: str,
        *,
        condition: Optional[Condition] = None,
    ) -> Transition:
        item = self.graph.add_transition(
            from_step_id, to_step_id, action_name, condition=condition
        )
        self.telemetry.log(
            self.session_id, "transition_added", transition_id=item.id, action=action_name
        )
        return item

    # -- backend commits --------------------------------------------------

    def commit_step(self, step_id: str) -> Step:
        graph = self.graph
        step = graph.get_step(step_id)
        state = graph.identity_state(step_id)
        if state == IdentityState.RECONCILED:
            return step
        if state == IdentityState.PENDING:
            raise ReferenceLockedError(f"Step {step_id} is already being created.")

        graph.set_identity_state(step_id, IdentityState.PENDING)
        confirmed = False
        try:
            created = self.backend.create_step(step_create_payload(step))
            confirmed = True
        except Exception as exc:
            LOGGER.warning("create_step failed for %s: %s", step_id, exc)
            raise PersistenceFailure(f"Could not create step '{step.name}': {exc}") from exc
        finally:
            if not confirmed:
                graph.set_identity_state(step_id, IdentityState.PROVISIONAL)

        if graph.reconcile_step_id(step_id, created.id):
            graph.update_step(
                created.id, created_at=created.created_at, updated_at=created.updated_at
            )
            self._emit(StepReconciled(step_id, created.id, graph.revision))
            self.telemetry.log(
                self.session_id, "step_reconciled", provisional_id=step_id, step_id=created.id
            )
        return graph.get_step(created.id)

    def commit_transition(self, transition_id: str) -> Transition:
        graph = self.graph
        item = graph.get_transition(transition_id)
        state = graph.identity_state(transition_id)
        if state == IdentityState.RECONCILED:
            return item
        if state == IdentityState.PENDING:
            raise ReferenceLockedError(f"Transition {transition_id} is already being created.")
        for endpoint in (item.from_step_id, item.to_step_id):
            if graph.identity_state(endpoint) != IdentityState.RECONCILED:
                raise UnsyncedReferenceError(
                    f"Transition '{item.action_name}' references unsynced step {endpoint}."
                )

        graph.set_identity_state(transition_id, IdentityState.PENDING)
        confirmed = False
        try:
            created = self.backend.create_transition(transition_create_payload(item))
            confirmed = True
        except Exception as exc:
            LOGGER.warning("create_transition failed for %s: %s", transition_id, exc)
            raise PersistenceFailure(
                f"Could not create transition '{item.action_name}': {exc}"
            ) from exc
        finally:
            if not confirmed:
                graph.set_identity_state(transition_id, IdentityState.PROVISIONAL)

        if graph.reconcile_transition_id(transition_id, created.id):
            graph.update_transition(
                created.id, created_at=created.created_at, updated_at=created.updated_at
            )
            self._emit(TransitionReconciled(transition_id, created.id, graph.revision))
            self.telemetry.log(
                self.session_id,
                "transition_reconciled",
                provisional_id=transition_id,
                transition_id=created.id,
            )
        return graph.get_transition(created.id)

    def sync(self) -> Dict[str, str]:
        """Push every provisional step, then every provisional transition."""

        graph = self.graph
        mapping: Dict[str, str] = {}
        for step in graph.steps:
            if graph.identity_state(step.id) == IdentityState.PROVISIONAL:
                mapping[step.id] = self.commit_step(step.id).id
        for item in graph.transitions:
            if graph.identity_state(item.id) == IdentityState.PROVISIONAL:
                mapping[item.id] = self.commit_transition(item.id).id
        return mapping

    # -- edits of existing elements ---------------------------------------

    def update_step(self, step_id: str, **fields: Any) -> Step:
        graph = self.graph
        state = graph.identity_state(step_id)
        if state == IdentityState.PENDING:
            raise ReferenceLockedError(f"Step {step_id} is awaiting backend confirmation.")
        backend_fields = {
            _STEP_WIRE_NAMES.get(key, key): value
            for key, value in fields.items()
            if key in _STEP_BACKEND_FIELDS
        }
        if "allowed_roles" in backend_fields:
            backend_fields["allowed_roles"] = sorted(
                getattr(role, "value", role) for role in backend_fields["allowed_roles"]
            )

        checkpoint = graph.checkpoint()
        updated = graph.update_step(step_id, **fields)
        if state == IdentityState.RECONCILED and backend_fields:
            self._push(
                checkpoint,
                lambda: self.backend.update_step(step_id, backend_fields),
                f"update step '{updated.name}'",
            )
        return updated

    def update_transition(self, transition_id: str, **fields: Any) -> Transition:
        graph = self.graph
        state = graph.identity_state(transition_id)
        if state == IdentityState.PENDING:
            raise ReferenceLockedError(
                f"Transition {transition_id} is awaiting backend confirmation."
            )
        if state == IdentityState.RECONCILED:
            for key in ("from_step_id", "to_step_id"):
                endpoint = fields.get(key)
                if (
                    endpoint is not None
                    and graph.has_step(endpoint)
                    and graph.identity_state(endpoint) != IdentityState.RECONCILED
                ):
                    raise UnsyncedReferenceError(
                        f"Cannot point transition {transition_id} at unsynced step {endpoint}."
                    )
        checkpoint = graph.checkpoint()
        updated = graph.update_transition(transition_id, **fields)
        if state == IdentityState.RECONCILED:
            backend_fields = {
                key: value for key, value in fields.items() if key != "condition"
            }
            if "condition" in fields:
                backend_fields.update(condition_to_wire(updated.condition))
            self._push(
                checkpoint,
                lambda: self.backend.update_transition(transition_id, backend_fields),
                f"update transition '{updated.action_name}'",
            )
        return updated

    def remove_step(self, step_id: str) -> List[Transition]:
        graph = self.graph
        state = graph.identity_state(step_id)
        locked = [step_id] + [item.id for item in graph.incident(step_id)]
        if any(graph.identity_state(element) == IdentityState.PENDING for element in locked):
            raise ReferenceLockedError(f"Step {step_id} has elements awaiting confirmation.")
        checkpoint = graph.checkpoint()
        removed = graph.remove_step(step_id)
        if state == IdentityState.RECONCILED:
            self._push(checkpoint, lambda: self.backend.delete_step(step_id), f"delete step {step_id}")
        self.telemetry.log(
            self.session_id,
            "step_removed",
            step_id=step_id,
            removed_transitions=[item.id for item in removed],
        )
        return removed

    def remove_transition(self, transition_id: str) -> Transition:
        graph = self.graph
        state = graph.identity_state(transition_id)
        if state == IdentityState.PENDING:
            raise ReferenceLockedError(
                f"Transition {transition_id} is awaiting backend confirmation."
            )
        checkpoint = graph.checkpoint()
        removed = graph.remove_transition(transition_id)
        if state == IdentityState.RECONCILED:
            self._push(
                checkpoint,
                lambda: self.backend.delete_transition(transition_id),
                f"delete transition {transition_id}",
            )
        return removed

    def update_workflow(self, **fields: Any) -> None:
        graph = self.graph
        wire = {("is_active" if key == "active" else key): value for key, value in fields.items()}
        try:
            definition = self.backend.update_workflow(graph.definition.id, wire)
        except Exception as exc:
            raise PersistenceFailure(f"Could not update workflow: {exc}") from exc
        graph.definition = definition

    # -- publishing -------------------------------------------------------

    def publish(
        self,
        versions: DefinitionVersionManager,
        *,
        directory: Optional["ApproverDirectory"] = None,
        bump_part: str = "patch",
    ) -> Tuple[PublishedDefinition, List[Violation]]:
        unsynced = self.unsynced_ids()
        if unsynced:
            raise UnsyncedReferenceError(
                f"Sync {len(unsynced)} provisional elements before publishing."
            )
        return versions.publish(self.snapshot(), bump_part=bump_part, directory=directory)

    # -- internals --------------------------------------------------------

    def _push(self, checkpoint: GraphCheckpoint, call: Callable[[], Any], what: str) -> None:
        confirmed = False
        try:
            call()
            confirmed = True
        except Exception as exc:
            LOGGER.warning("Backend call failed (%s): %s", what, exc)
            raise PersistenceFailure(f"Could not {what}: {exc}") from exc
        finally:
            if not confirmed:
                self.graph.rollback(checkpoint)

    def _emit(self, event: ReconciliationEvent) -> None:
        for listener in list(self._listeners):
            listener(event)
