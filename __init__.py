"""hrflow: HR workflow definition and execution engine."""

from hrflow.main import WorkflowEngine
from hrflow.runtime.router import ProcessResult
from hrflow.services.editor_service import EditorSession

__all__ = ["WorkflowEngine", "EditorSession", "ProcessResult"]
