"""
Sample HR workflow structures.
"""

from __future__ import annotations

from hrflow.ir.schema import (
    EqualsCondition,
    Role,
    Step,
    Transition,
    WorkflowDefinition,
    WorkflowStructure,
)

LEAVE_APPROVAL_ID = "leave-approval"


def leave_approval_structure(workflow_id: str = LEAVE_APPROVAL_ID) -> WorkflowStructure:
    """
    Submitted -> Pending Manager Review -> Approved / Rejected.

    The submission carries a `long_leave` flag ("true" or "false"); long
    requests are routed through HR review before approval.
    """

    def step_id(suffix: str) -> str:
        return f"{workflow_id}-{suffix}"

    steps = [
        Step(id=step_id("submitted"), workflow_id=workflow_id, name="Submitted", order=1, initial=True),
        Step(
            id=step_id("manager-review"),
            workflow_id=workflow_id,
            name="Pending Manager Review",
            order=2,
            allowed_roles={Role.MANAGER},
        ),
        Step(
            id=step_id("hr-review"),
            workflow_id=workflow_id,
            name="Pending HR Review",
            order=3,
            allowed_roles={Role.HR_MANAGER},
        ),
        Step(id=step_id("approved"), workflow_id=workflow_id, name="Approved", order=4, final=True),
        Step(id=step_id("rejected"), workflow_id=workflow_id, name="Rejected", order=5, final=True),
    ]

    def transition(suffix: str, source: str, target: str, action: str, condition=None) -> Transition:
        fields = {}
        if condition is not None:
            fields["condition"] = condition
        return Transition(
            id=step_id(suffix),
            workflow_id=workflow_id,
            from_step_id=step_id(source),
            to_step_id=step_id(target),
            action_name=action,
            **fields,
        )

    transitions = [
        transition("t-submit", "submitted", "manager-review", "submit"),
        transition(
            "t-manager-long",
            "manager-review",
            "hr-review",
            "approve",
            EqualsCondition(field="long_leave", value="true"),
        ),
        transition(
            "t-manager-approve",
            "manager-review",
            "approved",
            "approve",
            EqualsCondition(field="long_leave", value="false"),
        ),
        transition("t-manager-reject", "manager-review", "rejected", "reject"),
        transition("t-hr-approve", "hr-review", "approved", "approve"),
        transition("t-hr-reject", "hr-review", "rejected", "reject"),
    ]
    return WorkflowStructure(
        definition=WorkflowDefinition(
            id=workflow_id,
            name="Leave Approval",
            description="Employee leave request reviewed by the line manager.",
        ),
        steps=steps,
        transitions=transitions,
    )
