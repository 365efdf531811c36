"""
Error taxonomy for the workflow engine.

Structural violations, ambiguous transitions and stale reconciliations are
reported as values; the exceptions below are what unwinds to callers.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:  # pragma: no cover
    from hrflow.ir.validators import Violation


class WorkflowEngineError(Exception):
    """Base class for every error raised by hrflow."""


class StructuralViolationError(WorkflowEngineError, ValueError):
    """Raised when a graph invariant would be broken or blocks publishing."""

    def __init__(self, message: str, violations: Optional[List["Violation"]] = None) -> None:
        super().__init__(message)
        self.violations = list(violations or [])


class UnknownConditionError(WorkflowEngineError, LookupError):
    """A custom condition names a predicate that is not registered."""


class UnauthorizedActorError(WorkflowEngineError, PermissionError):
    """The actor may not act on the task; task state is left unchanged."""


class PersistenceFailure(WorkflowEngineError):
    """A collaborator call failed; local state was restored to the pre-call snapshot."""


class InstanceNotFoundError(WorkflowEngineError, LookupError):
    pass


class InstanceNotRunningError(WorkflowEngineError):
    pass


class TaskNotFoundError(WorkflowEngineError, LookupError):
    pass


class TaskNotOpenError(WorkflowEngineError):
    pass


class DefinitionNotPublishedError(WorkflowEngineError, LookupError):
    pass


class ReferenceLockedError(WorkflowEngineError):
    """An element id is pending confirmation and may not gain new references."""


class UnsyncedReferenceError(WorkflowEngineError):
    """A transition cannot be pushed while one of its endpoints is unconfirmed."""


class SessionClosedError(WorkflowEngineError):
    pass
