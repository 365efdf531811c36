"""
Authoring services: persistence collaborator and editor sessions.
"""

from hrflow.services.editor_service import (
    EditorSession,
    StepReconciled,
    TransitionReconciled,
)
from hrflow.services.persistence import InMemoryWorkflowBackend, WorkflowBackend

__all__ = [
    "EditorSession",
    "InMemoryWorkflowBackend",
    "StepReconciled",
    "TransitionReconciled",
    "WorkflowBackend",
]
