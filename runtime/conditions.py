"""
Transition selection for a completed step.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from hrflow.errors import UnknownConditionError
from hrflow.ir.schema import (
    AlwaysCondition,
    Condition,
    CustomCondition,
    EqualsCondition,
    Role,
    RoleIsCondition,
    Transition,
)

LOGGER = logging.getLogger(__name__)


@dataclass
class EvaluationContext:
    payload: Dict[str, Any] = field(default_factory=dict)
    actor_role: Optional[Role] = None


Predicate = Callable[[Dict[str, Any], EvaluationContext], bool]


class ConditionRegistry:
    """Predicate table for `custom` condition kinds."""

    def __init__(self) -> None:
        self._predicates: Dict[str, Predicate] = {}

    def register(self, name: str, predicate: Predicate) -> None:
        key = name.strip()
        if key in ("always", "equals", "role_is", "custom"):
            raise ValueError(f"Condition kind '{key}' is built in and cannot be replaced.")
        self._predicates[key] = predicate

    def get(self, name: str) -> Predicate:
        try:
            return self._predicates[name]
        except KeyError:
            raise UnknownConditionError(f"No predicate registered for condition '{name}'.") from None

    def names(self) -> List[str]:
        return sorted(self._predicates)


@dataclass
class Evaluation:
    transition: Optional[Transition]
    candidates: List[Transition] = field(default_factory=list)

    @property
    def ambiguous(self) -> bool:
        return len(self.candidates) > 1

    @property
    def warning(self) -> Optional[str]:
        if not self.ambiguous or self.transition is None:
            return None
        return (
            f"Action '{self.transition.action_name}' matched {len(self.candidates)} transitions "
            f"from step {self.transition.from_step_id}; using the first registered ({self.transition.id})."
        )


def _matches_equals(condition: EqualsCondition, context: EvaluationContext) -> bool:
    if condition.field not in context.payload:
        return False
    return str(context.payload[condition.field]) == condition.value


class ConditionEvaluator:
    def __init__(self, registry: Optional[ConditionRegistry] = None) -> None:
        self.registry = registry or ConditionRegistry()

    def matches(self, condition: Condition, context: EvaluationContext) -> bool:
        if isinstance(condition, AlwaysCondition):
            return True
        if isinstance(condition, EqualsCondition):
            return _matches_equals(condition, context)
        if isinstance(condition, RoleIsCondition):
            return context.actor_role == condition.role
        if isinstance(condition, CustomCondition):
            return bool(self.registry.get(condition.name)(condition.params, context))
        raise UnknownConditionError(f"Unsupported condition: {condition!r}")

    def select(
        self,
        outgoing: Sequence[Transition],
        action_name: str,
        context: Optional[EvaluationContext] = None,
    ) -> Evaluation:
        """
        Pick the transition to follow for an action.

        `outgoing` must be in creation order; when several transitions match
        the first one wins and the result is flagged as ambiguous.
        """

        ctx = context or EvaluationContext()
        candidates = [
            item
            for item in outgoing
            if item.action_name == action_name and self.matches(item.condition, ctx)
        ]
        evaluation = Evaluation(
            transition=candidates[0] if candidates else None,
            candidates=candidates,
        )
        if evaluation.ambiguous:
            LOGGER.warning(evaluation.warning)
        return evaluation
