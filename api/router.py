"""
FastAPI router for hrflow.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from hrflow.errors import (
    DefinitionNotPublishedError,
    InstanceNotFoundError,
    InstanceNotRunningError,
    PersistenceFailure,
    StructuralViolationError,
    TaskNotFoundError,
    TaskNotOpenError,
    UnauthorizedActorError,
    WorkflowEngineError,
)
from hrflow.ir.schema import Action, Actor, TaskStatus, WorkflowStructure
from hrflow.main import WorkflowEngine


class PublishRequest(BaseModel):
    structure: WorkflowStructure
    bump_part: str = Field(default="patch", pattern="^(major|minor|patch)$")


class StartInstanceRequest(BaseModel):
    definition_id: str
    initiator: Actor
    version: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)
    details: Optional[str] = None


class TaskActionRequest(BaseModel):
    actor: Actor
    action: str
    comments: str = ""
    payload: Dict[str, Any] = Field(default_factory=dict)


_STATUS_CODES = [
    ((InstanceNotFoundError, TaskNotFoundError, DefinitionNotPublishedError), 404),
    ((InstanceNotRunningError, TaskNotOpenError), 409),
    ((UnauthorizedActorError,), 403),
    ((StructuralViolationError,), 422),
    ((PersistenceFailure,), 503),
]


def _to_http(exc: WorkflowEngineError) -> HTTPException:
    for types, status_code in _STATUS_CODES:
        if isinstance(exc, types):
            detail: Any = str(exc)
            if isinstance(exc, StructuralViolationError) and exc.violations:
                detail = {
                    "message": str(exc),
                    "violations": [item.model_dump() for item in exc.violations],
                }
            return HTTPException(status_code=status_code, detail=detail)
    return HTTPException(status_code=400, detail=str(exc))


def create_router(engine: WorkflowEngine) -> APIRouter:
    router = APIRouter(prefix="/hrflow", tags=["hrflow"])

    @router.get("/health")
    def health() -> Dict[str, str]:
        return {"status": "ok"}

    @router.post("/definitions/validate")
    def validate_definition(structure: WorkflowStructure) -> Dict[str, Any]:
        violations = engine.validate(structure)
        return {
            "valid": not any(item.is_error for item in violations),
            "violations": [item.model_dump() for item in violations],
        }

    @router.post("/definitions/publish")
    def publish_definition(payload: PublishRequest) -> Dict[str, Any]:
        try:
            record, warnings = engine.publish(payload.structure, bump_part=payload.bump_part)
        except WorkflowEngineError as exc:
            raise _to_http(exc)
        return {
            "definition_id": record.definition_id,
            "version": record.version,
            "published_at": record.published_at,
            "warnings": [item.model_dump() for item in warnings],
        }

    @router.post("/instances")
    def start_instance(payload: StartInstanceRequest) -> Dict[str, Any]:
        try:
            instance = engine.start_instance(
                payload.definition_id,
                payload.initiator,
                context=payload.context,
                version=payload.version,
                details=payload.details,
            )
        except WorkflowEngineError as exc:
            raise _to_http(exc)
        return instance.model_dump(mode="json")

    @router.get("/instances/{instance_id}")
    def get_instance(instance_id: str) -> Dict[str, Any]:
        try:
            instance = engine.get_instance(instance_id)
        except WorkflowEngineError as exc:
            raise _to_http(exc)
        return instance.model_dump(mode="json")

    @router.get("/tasks")
    def get_my_tasks(user_id: str, status: Optional[TaskStatus] = None) -> List[Dict[str, Any]]:
        return [task.model_dump(mode="json") for task in engine.get_my_tasks(user_id, status)]

    @router.post("/instances/{instance_id}/tasks/{task_id}/action")
    def process_task_action(
        instance_id: str, task_id: str, payload: TaskActionRequest
    ) -> Dict[str, Any]:
        action = Action(action=payload.action, comments=payload.comments, payload=payload.payload)
        try:
            result = engine.process_task_action(instance_id, task_id, action, payload.actor)
        except WorkflowEngineError as exc:
            raise _to_http(exc)
        return result.model_dump(mode="json")

    return router
