from hrflow.ir.schema import (
    Action,
    Actor,
    AlwaysCondition,
    Condition,
    CustomCondition,
    DecisionOutcome,
    EqualsCondition,
    InstanceStatus,
    PublishedDefinition,
    RecordedAction,
    Role,
    RoleIsCondition,
    Step,
    StepVisit,
    Task,
    TaskStatus,
    Transition,
    WorkflowDefinition,
    WorkflowInstance,
    WorkflowStructure,
    condition_from_wire,
    condition_to_wire,
)
from hrflow.ir.validators import Violation, ensure_publishable, validate_graph, validate_structure
from hrflow.ir.versioning import DefinitionVersionManager

__all__ = [
    "Action",
    "Actor",
    "AlwaysCondition",
    "Condition",
    "CustomCondition",
    "DecisionOutcome",
    "EqualsCondition",
    "InstanceStatus",
    "PublishedDefinition",
    "RecordedAction",
    "Role",
    "RoleIsCondition",
    "Step",
    "StepVisit",
    "Task",
    "TaskStatus",
    "Transition",
    "WorkflowDefinition",
    "WorkflowInstance",
    "WorkflowStructure",
    "condition_from_wire",
    "condition_to_wire",
    "Violation",
    "validate_graph",
    "validate_structure",
    "ensure_publishable",
    "DefinitionVersionManager",
]
