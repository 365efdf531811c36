"""
Structural validation for workflow definitions.

Violations are returned as values so an author can keep editing a broken
graph; `ensure_publishable` is the only place they become an exception.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Dict, List, Literal, Optional, Sequence, Tuple

from pydantic import BaseModel

from hrflow.errors import StructuralViolationError
from hrflow.ir.reachability import ReachabilityResolver
from hrflow.ir.schema import CustomCondition, Step, Transition, WorkflowStructure

if TYPE_CHECKING:  # pragma: no cover
    from hrflow.runtime.conditions import ConditionRegistry
    from hrflow.runtime.directory import ApproverDirectory


class Violation(BaseModel):
    code: str
    severity: Literal["error", "warning"] = "error"
    message: str
    element_id: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.severity == "error"


def validate_graph(
    steps: Sequence[Step],
    transitions: Sequence[Transition],
    directory: Optional["ApproverDirectory"] = None,
    registry: Optional["ConditionRegistry"] = None,
) -> List[Violation]:
    violations: List[Violation] = []
    if not steps:
        violations.append(
            Violation(code="empty_definition", message="Workflow has no steps yet.")
        )
        return violations

    initial = [step for step in steps if step.initial]
    if not initial:
        violations.append(
            Violation(code="no_initial_step", message="Workflow must have an initial step.")
        )
    elif len(initial) > 1:
        names = ", ".join(sorted(step.name for step in initial))
        violations.append(
            Violation(
                code="multiple_initial_steps",
                message=f"Workflow has more than one initial step: {names}",
            )
        )

    if not any(step.final for step in steps):
        violations.append(
            Violation(code="no_final_step", message="Workflow must have at least one final step.")
        )

    step_ids = {step.id for step in steps}
    for item in transitions:
        for endpoint in (item.from_step_id, item.to_step_id):
            if endpoint not in step_ids:
                violations.append(
                    Violation(
                        code="dangling_transition",
                        message=f"Transition '{item.action_name}' references missing step: {endpoint}",
                        element_id=item.id,
                    )
                )

    if len(initial) == 1:
        resolver = ReachabilityResolver()
        graph = resolver.adjacency(step_ids, transitions)
        names = {step.id: step.name for step in steps}
        for step_id in resolver.unreachable(graph, initial[0].id):
            violations.append(
                Violation(
                    code="unreachable_step",
                    severity="warning",
                    message=f"Step '{names[step_id]}' is not reachable from the initial step.",
                    element_id=step_id,
                )
            )

    if directory is not None:
        for step in steps:
            if step.requires_all_approvers or not step.allowed_roles:
                continue
            eligible = len(directory.approvers_for(step.allowed_roles))
            if step.min_approvals > eligible:
                violations.append(
                    Violation(
                        code="min_approvals_exceeds_approvers",
                        message=(
                            f"Step '{step.name}' requires {step.min_approvals} approvals "
                            f"but only {eligible} approvers are eligible."
                        ),
                        element_id=step.id,
                    )
                )

    if registry is not None:
        known = set(registry.names())
        for item in transitions:
            if isinstance(item.condition, CustomCondition) and item.condition.name not in known:
                violations.append(
                    Violation(
                        code="unknown_condition",
                        message=(
                            f"Transition '{item.action_name}' uses condition '{item.condition.name}', "
                            "which has no registered predicate."
                        ),
                        element_id=item.id,
                    )
                )

    seen: Dict[Tuple[str, str, str], str] = {}
    for item in transitions:
        key = (item.from_step_id, item.action_name, item.condition.model_dump_json())
        if key in seen:
            violations.append(
                Violation(
                    code="shadowed_transition",
                    severity="warning",
                    message=(
                        f"Transition '{item.action_name}' duplicates an earlier transition "
                        "from the same step and can never fire."
                    ),
                    element_id=item.id,
                )
            )
        else:
            seen[key] = item.id

    return violations


def validate_structure(
    structure: WorkflowStructure,
    directory: Optional["ApproverDirectory"] = None,
    registry: Optional["ConditionRegistry"] = None,
) -> List[Violation]:
    return validate_graph(structure.steps, structure.transitions, directory, registry)


def ensure_publishable(
    structure: WorkflowStructure,
    directory: Optional["ApproverDirectory"] = None,
    registry: Optional["ConditionRegistry"] = None,
) -> List[Violation]:
    """Raise on any error-level violation, return the remaining warnings."""

    violations = validate_structure(structure, directory, registry)
    errors = [item for item in violations if item.is_error]
    if errors:
        summary = "; ".join(item.message for item in errors)
        raise StructuralViolationError(
            f"Workflow '{structure.definition.name}' cannot be published: {summary}",
            violations=errors,
        )
    return [item for item in violations if not item.is_error]
