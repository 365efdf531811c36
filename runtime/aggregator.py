"""
Approval quorum decisions for a single step visit.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence

from hrflow.config import DEFAULT_REJECTING_ACTIONS
from hrflow.ir.schema import DecisionOutcome, RecordedAction, Step


@dataclass(frozen=True)
class Decision:
    outcome: DecisionOutcome
    chosen_action: Optional[str] = None
    approvals: int = 0
    required: int = 0
    decided_by: Optional[RecordedAction] = None

    @property
    def is_final(self) -> bool:
        return self.outcome != DecisionOutcome.PENDING


class ApprovalAggregator:
    def __init__(self, rejecting_actions: Optional[Iterable[str]] = None) -> None:
        names = rejecting_actions if rejecting_actions is not None else DEFAULT_REJECTING_ACTIONS
        self.rejecting_actions = frozenset(name.strip().lower() for name in names)

    def is_rejecting(self, action_name: str) -> bool:
        return action_name.strip().lower() in self.rejecting_actions

    def required_approvals(self, step: Step, assignees: Iterable[str]) -> int:
        if step.requires_all_approvers:
            return len(set(assignees))
        return max(step.min_approvals, 1)

    def decide(
        self,
        step: Step,
        assignees: Iterable[str],
        actions: Sequence[RecordedAction],
    ) -> Decision:
        assigned = set(assignees)
        required = self.required_approvals(step, assigned)

        # first approving action per actor, in arrival order
        approvals: "OrderedDict[str, RecordedAction]" = OrderedDict()
        for item in actions:
            if self.is_rejecting(item.action):
                return Decision(
                    outcome=DecisionOutcome.REJECTED,
                    chosen_action=item.action,
                    approvals=len(approvals),
                    required=required,
                    decided_by=item,
                )
            if step.requires_all_approvers and item.actor_id not in assigned:
                continue
            if item.actor_id in approvals:
                continue
            approvals[item.actor_id] = item
            if len(approvals) >= required:
                return Decision(
                    outcome=DecisionOutcome.SATISFIED,
                    chosen_action=self._chosen_action(list(approvals.values())),
                    approvals=len(approvals),
                    required=required,
                    decided_by=item,
                )

        return Decision(
            outcome=DecisionOutcome.PENDING,
            approvals=len(approvals),
            required=required,
        )

    @staticmethod
    def _chosen_action(approvals: List[RecordedAction]) -> str:
        """Verb used by most distinct approvers; ties go to the earliest."""

        counts: Dict[str, int] = {}
        first_seen: Dict[str, int] = {}
        for index, item in enumerate(approvals):
            counts[item.action] = counts.get(item.action, 0) + 1
            first_seen.setdefault(item.action, index)
        return max(counts, key=lambda name: (counts[name], -first_seen[name]))
