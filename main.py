"""
hrflow engine entrypoint: the facade used by the CLI and the HTTP router.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from hrflow.config import EngineSettings, configure_logging
from hrflow.errors import StructuralViolationError
from hrflow.ir.schema import (
    Action,
    Actor,
    PublishedDefinition,
    Task,
    TaskStatus,
    WorkflowInstance,
    WorkflowStructure,
)
from hrflow.ir.validators import Violation, validate_structure
from hrflow.ir.versioning import DefinitionVersionManager
from hrflow.runtime.aggregator import ApprovalAggregator
from hrflow.runtime.conditions import ConditionEvaluator, ConditionRegistry
from hrflow.runtime.directory import ApproverDirectory, StaticApproverDirectory
from hrflow.runtime.router import ProcessResult, TaskRouter, TaskRouterConfig
from hrflow.runtime.state_store import InMemoryStateStore
from hrflow.runtime.telemetry import TelemetryCollector
from hrflow.samples import leave_approval_structure
from hrflow.services.editor_service import EditorSession
from hrflow.services.persistence import InMemoryWorkflowBackend, WorkflowBackend

LOGGER = logging.getLogger(__name__)


class WorkflowEngine:
    """
    Wires the definition registry, the task router and the authoring backend
    together from one set of settings.
    """

    def __init__(
        self,
        *,
        settings: Optional[EngineSettings] = None,
        directory: Optional[ApproverDirectory] = None,
        backend: Optional[WorkflowBackend] = None,
        versions: Optional[DefinitionVersionManager] = None,
        registry: Optional[ConditionRegistry] = None,
        persist: bool = False,
    ) -> None:
        self.settings = settings or EngineSettings()
        self.registry = registry or ConditionRegistry()
        telemetry_dir = self.settings.telemetry_dir
        self.telemetry = TelemetryCollector(str(telemetry_dir) if telemetry_dir else None)
        self.versions = versions or DefinitionVersionManager(
            str(self.settings.versions_dir) if persist else None
        )
        self.directory = directory or StaticApproverDirectory()
        self.backend = backend or InMemoryWorkflowBackend()
        self.router = TaskRouter(
            versions=self.versions,
            directory=self.directory,
            state_store=InMemoryStateStore(),
            evaluator=ConditionEvaluator(self.registry),
            aggregator=ApprovalAggregator(self.settings.rejecting_actions),
            telemetry=self.telemetry,
            config=TaskRouterConfig(default_due_days=self.settings.default_due_days),
        )

    # -- definitions ------------------------------------------------------

    def validate(self, structure: WorkflowStructure) -> List[Violation]:
        return validate_structure(structure, self.directory, self.registry)

    def publish(
        self, structure: WorkflowStructure, *, bump_part: str = "patch"
    ) -> Tuple[PublishedDefinition, List[Violation]]:
        return self.versions.publish(
            structure, bump_part=bump_part, directory=self.directory, registry=self.registry
        )

    def open_session(self) -> EditorSession:
        return EditorSession(
            self.backend,
            telemetry=self.telemetry,
            provisional_prefix=self.settings.provisional_prefix,
        )

    # -- runtime ----------------------------------------------------------

    def start_instance(
        self,
        definition_id: str,
        initiator: Actor,
        *,
        context: Optional[Dict[str, Any]] = None,
        version: Optional[str] = None,
        details: Optional[str] = None,
    ) -> WorkflowInstance:
        return self.router.start_instance(
            definition_id, initiator, context=context, version=version, details=details
        )

    def get_instance(self, instance_id: str) -> WorkflowInstance:
        return self.router.get_instance(instance_id)

    def get_my_tasks(self, user_id: str, status: Optional[TaskStatus] = None) -> List[Task]:
        return self.router.get_my_tasks(user_id, status)

    def process_task_action(
        self,
        instance_id: str,
        task_id: str,
        action: Action,
        actor: Actor,
    ) -> ProcessResult:
        return self.router.process_task_action(instance_id, task_id, action, actor)


def _load_structure(file_path: str) -> WorkflowStructure:
    raw = json.loads(Path(file_path).read_text(encoding="utf-8"))
    return WorkflowStructure.model_validate(raw)


def _print_violations(violations: List[Violation]) -> None:
    payload = [item.model_dump() for item in violations]
    print(json.dumps(payload, indent=2, sort_keys=True))


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="hrflow workflow engine")
    parser.add_argument("--log-level", type=str, default=None)
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("sample", help="Print the leave-approval sample structure.")

    validate_parser = subparsers.add_parser("validate", help="Check a structure file.")
    validate_parser.add_argument("--structure-file", type=str, required=True)

    publish_parser = subparsers.add_parser("publish", help="Register a new version.")
    publish_parser.add_argument("--structure-file", type=str, required=True)
    publish_parser.add_argument(
        "--bump", type=str, default="patch", choices=["major", "minor", "patch"]
    )
    publish_parser.add_argument("--data-root", type=str, default=None)
    args = parser.parse_args(argv)

    settings = EngineSettings.from_env()
    if args.log_level:
        settings.log_level = args.log_level.upper()
    if getattr(args, "data_root", None):
        settings.data_root = args.data_root
    configure_logging(settings.log_level)

    if args.command == "sample":
        print(leave_approval_structure().to_json())
        return 0

    structure = _load_structure(args.structure_file)
    if args.command == "validate":
        violations = validate_structure(structure)
        _print_violations(violations)
        return 1 if any(item.is_error for item in violations) else 0

    versions = DefinitionVersionManager(str(settings.versions_dir))
    try:
        record, warnings = versions.publish(structure, bump_part=args.bump)
    except StructuralViolationError as exc:
        LOGGER.error("%s", exc)
        _print_violations(exc.violations)
        return 1
    print(
        json.dumps(
            {
                "definition_id": record.definition_id,
                "version": record.version,
                "published_at": record.published_at,
                "warnings": [item.model_dump() for item in warnings],
            },
            indent=2,
            sort_keys=True,
        )
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
