"""
In-memory workflow graph used while a definition is being authored.

Steps and transitions live in an arena indexed by id. Every effective
mutation bumps `revision`; reads never clone the whole structure.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional

from hrflow.errors import ReferenceLockedError, StructuralViolationError
from hrflow.ir.schema import (
    AlwaysCondition,
    Condition,
    Role,
    Step,
    Transition,
    WorkflowDefinition,
    WorkflowStructure,
    utc_now,
)
from hrflow.ir.validators import Violation, validate_graph

if TYPE_CHECKING:  # pragma: no cover
    from hrflow.runtime.directory import ApproverDirectory

LOGGER = logging.getLogger(__name__)


class IdentityState(str, Enum):
    PROVISIONAL = "provisional"
    PENDING = "pending"
    RECONCILED = "reconciled"


@dataclass(frozen=True)
class GraphCheckpoint:
    definition: WorkflowDefinition
    steps: Dict[str, Step]
    transitions: Dict[str, Transition]
    identity: Dict[str, IdentityState]


class WorkflowGraph:
    def __init__(
        self,
        definition: WorkflowDefinition,
        *,
        provisional_prefix: str = "tmp-",
    ) -> None:
        self.definition = definition
        self.provisional_prefix = provisional_prefix
        self._steps: Dict[str, Step] = {}
        self._transitions: Dict[str, Transition] = {}
        self._identity: Dict[str, IdentityState] = {}
        self._revision = 0

    @classmethod
    def from_structure(
        cls,
        structure: WorkflowStructure,
        *,
        provisional_prefix: str = "tmp-",
    ) -> "WorkflowGraph":
        """Load a backend structure; every element in it is authoritative."""

        graph = cls(structure.definition.model_copy(), provisional_prefix=provisional_prefix)
        for step in structure.steps:
            graph._steps[step.id] = step.model_copy(deep=True)
            graph._identity[step.id] = IdentityState.RECONCILED
        for item in structure.transitions:
            graph._transitions[item.id] = item.model_copy(deep=True)
            graph._identity[item.id] = IdentityState.RECONCILED
        return graph

    @property
    def revision(self) -> int:
        return self._revision

    @property
    def steps(self) -> List[Step]:
        return list(self._steps.values())

    @property
    def transitions(self) -> List[Transition]:
        return list(self._transitions.values())

    def new_id(self) -> str:
        return f"{self.provisional_prefix}{uuid.uuid4().hex[:12]}"

    def has_step(self, step_id: str) -> bool:
        return step_id in self._steps

    def has_transition(self, transition_id: str) -> bool:
        return transition_id in self._transitions

    def get_step(self, step_id: str) -> Step:
        try:
            return self._steps[step_id]
        except KeyError:
            raise KeyError(f"Unknown step: {step_id}") from None

    def get_transition(self, transition_id: str) -> Transition:
        try:
            return self._transitions[transition_id]
        except KeyError:
            raise KeyError(f"Unknown transition: {transition_id}") from None

    def identity_state(self, element_id: str) -> IdentityState:
        try:
            return self._identity[element_id]
        except KeyError:
            raise KeyError(f"Unknown graph element: {element_id}") from None

    def set_identity_state(self, element_id: str, state: IdentityState) -> None:
        self.identity_state(element_id)
        self._identity[element_id] = state

    def outgoing(self, step_id: str) -> List[Transition]:
        """Outgoing transitions of a step in creation order."""
        return [item for item in self._transitions.values() if item.from_step_id == step_id]

    def incident(self, step_id: str) -> List[Transition]:
        return [
            item
            for item in self._transitions.values()
            if item.from_step_id == step_id or item.to_step_id == step_id
        ]

    # -- mutation ---------------------------------------------------------

    def add_step(
        self,
        name: str,
        *,
        initial: bool = False,
        final: bool = False,
        allowed_roles: Iterable[Role] = (),
        requires_all_approvers: bool = False,
        min_approvals: int = 1,
        order: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
        step_id: Optional[str] = None,
    ) -> Step:
        element_id = step_id or self.new_id()
        if element_id in self._steps:
            raise StructuralViolationError(f"Step id already exists: {element_id}")
        step = Step(
            id=element_id,
            workflow_id=self.definition.id,
            name=name,
            order=order if order is not None else len(self._steps) + 1,
            initial=initial,
            final=final,
            allowed_roles=set(allowed_roles),
            requires_all_approvers=requires_all_approvers,
            min_approvals=min_approvals,
            metadata=dict(metadata or {}),
        )
        self._steps[element_id] = step
        self._identity[element_id] = (
            IdentityState.RECONCILED if step_id else IdentityState.PROVISIONAL
        )
        self._touch()
        return step

    def update_step(self, step_id: str, **fields: Any) -> Step:
        current = self.get_step(step_id)
        if "id" in fields or "workflow_id" in fields:
            raise StructuralViolationError("Step identity cannot be changed through update_step.")
        payload = current.model_dump()
        payload.update(fields)
        updated = Step.model_validate(payload)
        if updated == current:
            return current
        self._steps[step_id] = updated
        self._touch()
        return updated

    def remove_step(self, step_id: str) -> List[Transition]:
        """Remove a step and every transition touching it; returns the removed transitions."""

        self.get_step(step_id)
        removed = self.incident(step_id)
        for item in removed:
            del self._transitions[item.id]
            self._identity.pop(item.id, None)
        del self._steps[step_id]
        self._identity.pop(step_id, None)
        self._touch()
        return removed

    def add_transition(
        self,
        from_step_id: str,
        to_step_id: str,
        action_name: str,
        *,
        condition: Optional[Condition] = None,
        transition_id: Optional[str] = None,
    ) -> Transition:
        self._check_endpoints(from_step_id, to_step_id)
        element_id = transition_id or self.new_id()
        if element_id in self._transitions:
            raise StructuralViolationError(f"Transition id already exists: {element_id}")
        item = Transition(
            id=element_id,
            workflow_id=self.definition.id,
            from_step_id=from_step_id,
            to_step_id=to_step_id,
            action_name=action_name,
            condition=condition or AlwaysCondition(),
        )
        if item.is_self_loop:
            LOGGER.info(
                "Self-loop transition '%s' added on step %s", action_name, from_step_id
            )
        self._transitions[element_id] = item
        self._identity[element_id] = (
            IdentityState.RECONCILED if transition_id else IdentityState.PROVISIONAL
        )
        self._touch()
        return item

    def update_transition(self, transition_id: str, **fields: Any) -> Transition:
        current = self.get_transition(transition_id)
        if "id" in fields or "workflow_id" in fields:
            raise StructuralViolationError(
                "Transition identity cannot be changed through update_transition."
            )
        payload = current.model_dump()
        payload.update(fields)
        updated = Transition.model_validate(payload)
        if (updated.from_step_id, updated.to_step_id) != (current.from_step_id, current.to_step_id):
            self._check_endpoints(updated.from_step_id, updated.to_step_id)
        if updated == current:
            return current
        self._transitions[transition_id] = updated
        self._touch()
        return updated

    def remove_transition(self, transition_id: str) -> Transition:
        item = self.get_transition(transition_id)
        del self._transitions[transition_id]
        self._identity.pop(transition_id, None)
        self._touch()
        return item

    def checkpoint(self) -> GraphCheckpoint:
        """Capture the arena before a collaborator call so it can be restored."""

        return GraphCheckpoint(
            definition=self.definition,
            steps=dict(self._steps),
            transitions=dict(self._transitions),
            identity=dict(self._identity),
        )

    def rollback(self, checkpoint: GraphCheckpoint) -> None:
        self.definition = checkpoint.definition
        self._steps = dict(checkpoint.steps)
        self._transitions = dict(checkpoint.transitions)
        self._identity = dict(checkpoint.identity)
        self._revision += 1

    # -- identity reconciliation -----------------------------------------

    def reconcile_step_id(self, provisional_id: str, authoritative_id: str) -> bool:
        """
        Swap a provisional step id for the backend-assigned one.

        Rewrites the step and every transition endpoint in one pass, keeps
        creation order, and touches nothing else. Returns False when there
        was nothing to do (repeat call or stale id).
        """

        if provisional_id not in self._steps:
            if authoritative_id in self._steps:
                LOGGER.debug("Step %s already reconciled to %s", provisional_id, authoritative_id)
            else:
                LOGGER.warning(
                    "Stale reconciliation ignored: step %s no longer exists", provisional_id
                )
            return False
        if provisional_id == authoritative_id:
            self._identity[provisional_id] = IdentityState.RECONCILED
            return False
        if authoritative_id in self._steps:
            raise StructuralViolationError(
                f"Cannot reconcile step {provisional_id}: id {authoritative_id} is already in use."
            )

        steps: Dict[str, Step] = {}
        for key, step in self._steps.items():
            if key == provisional_id:
                steps[authoritative_id] = step.model_copy(update={"id": authoritative_id})
            else:
                steps[key] = step
        transitions: Dict[str, Transition] = {}
        for key, item in self._transitions.items():
            update: Dict[str, str] = {}
            if item.from_step_id == provisional_id:
                update["from_step_id"] = authoritative_id
            if item.to_step_id == provisional_id:
                update["to_step_id"] = authoritative_id
            transitions[key] = item.model_copy(update=update) if update else item

        self._steps = steps
        self._transitions = transitions
        del self._identity[provisional_id]
        self._identity[authoritative_id] = IdentityState.RECONCILED
        self._touch()
        return True

    def reconcile_transition_id(self, provisional_id: str, authoritative_id: str) -> bool:
        if provisional_id not in self._transitions:
            if authoritative_id in self._transitions:
                LOGGER.debug(
                    "Transition %s already reconciled to %s", provisional_id, authoritative_id
                )
            else:
                LOGGER.warning(
                    "Stale reconciliation ignored: transition %s no longer exists",
                    provisional_id,
                )
            return False
        if provisional_id == authoritative_id:
            self._identity[provisional_id] = IdentityState.RECONCILED
            return False
        if authoritative_id in self._transitions:
            raise StructuralViolationError(
                f"Cannot reconcile transition {provisional_id}: id {authoritative_id} is already in use."
            )
        self._transitions = {
            (authoritative_id if key == provisional_id else key): (
                item.model_copy(update={"id": authoritative_id}) if key == provisional_id else item
            )
            for key, item in self._transitions.items()
        }
        del self._identity[provisional_id]
        self._identity[authoritative_id] = IdentityState.RECONCILED
        self._touch()
        return True

    # -- reads ------------------------------------------------------------

    def validate(self, directory: Optional["ApproverDirectory"] = None) -> List[Violation]:
        return validate_graph(self.steps, self.transitions, directory)

    def snapshot(self) -> WorkflowStructure:
        return WorkflowStructure(
            definition=self.definition.model_copy(
                update={
                    "step_count": len(self._steps),
                    "transition_count": len(self._transitions),
                }
            ),
            steps=[step.model_copy(deep=True) for step in self._steps.values()],
            transitions=[item.model_copy(deep=True) for item in self._transitions.values()],
        )

    def _check_endpoints(self, from_step_id: str, to_step_id: str) -> None:
        for endpoint in (from_step_id, to_step_id):
            if endpoint not in self._steps:
                raise StructuralViolationError(
                    f"Transition references missing step: {endpoint}"
                )
            if self._identity.get(endpoint) == IdentityState.PENDING:
                raise ReferenceLockedError(
                    f"Step {endpoint} is awaiting backend confirmation and cannot be referenced."
                )

    def _touch(self) -> None:
        self._revision += 1
        self.definition = self.definition.model_copy(update={"updated_at": utc_now()})
