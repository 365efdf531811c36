"""
Task routing: advances workflow instances as approvers act on tasks.
"""

from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from hrflow.errors import (
    InstanceNotFoundError,
    InstanceNotRunningError,
    StructuralViolationError,
    TaskNotFoundError,
    TaskNotOpenError,
    UnauthorizedActorError,
)
from hrflow.ir.schema import (
    Action,
    Actor,
    DecisionOutcome,
    InstanceStatus,
    RecordedAction,
    Step,
    StepVisit,
    Task,
    TaskStatus,
    WorkflowInstance,
    WorkflowStructure,
    utc_now,
)
from hrflow.ir.versioning import DefinitionVersionManager
from hrflow.runtime.aggregator import ApprovalAggregator, Decision
from hrflow.runtime.conditions import ConditionEvaluator, EvaluationContext
from hrflow.runtime.directory import ApproverDirectory
from hrflow.runtime.state_store import InMemoryStateStore
from hrflow.runtime.telemetry import TelemetryCollector

LOGGER = logging.getLogger(__name__)


class Outcome(str, Enum):
    PENDING = "pending"
    ADVANCED = "advanced"
    COMPLETED = "completed"
    TERMINATED = "terminated"


class ProcessResult(BaseModel):
    instance_id: str
    task_id: str
    outcome: Outcome
    decision: DecisionOutcome
    chosen_action: Optional[str] = None
    new_step_id: Optional[str] = None
    new_task_ids: List[str] = Field(default_factory=list)
    skipped_task_ids: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    termination_reason: Optional[str] = None


class TaskRouterConfig(BaseModel):
    default_due_days: Optional[int] = Field(default=3, ge=0)


class TaskRouter:
    def __init__(
        self,
        *,
        versions: DefinitionVersionManager,
        directory: ApproverDirectory,
        state_store: Optional[InMemoryStateStore] = None,
        evaluator: Optional[ConditionEvaluator] = None,
        aggregator: Optional[ApprovalAggregator] = None,
        telemetry: Optional[TelemetryCollector] = None,
        config: Optional[TaskRouterConfig] = None,
    ) -> None:
        self.versions = versions
        self.directory = directory
        self.config = config or TaskRouterConfig()
        self.state_store = state_store or InMemoryStateStore()
        self.evaluator = evaluator or ConditionEvaluator()
        self.aggregator = aggregator or ApprovalAggregator()
        self.telemetry = telemetry or TelemetryCollector()
        self._instance_locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, instance_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._instance_locks.setdefault(instance_id, threading.Lock())

    def _release_lock(self, instance_id: str) -> None:
        # Only for finished instances: every later action fails the status check.
        with self._locks_guard:
            self._instance_locks.pop(instance_id, None)

    # -- queries ----------------------------------------------------------

    def get_instance(self, instance_id: str) -> WorkflowInstance:
        instance = self.state_store.get_instance(instance_id)
        if instance is None:
            raise InstanceNotFoundError(f"Unknown workflow instance: {instance_id}")
        return instance

    def list_tasks(self, instance_id: str) -> List[Task]:
        self.get_instance(instance_id)
        return self.state_store.tasks_for_instance(instance_id)

    def get_my_tasks(self, user_id: str, status: Optional[TaskStatus] = None) -> List[Task]:
        return self.state_store.tasks_for_user(user_id, status)

    # -- commands ---------------------------------------------------------

    def start_instance(
        self,
        definition_id: str,
        initiator: Actor,
        *,
        context: Optional[Dict[str, Any]] = None,
        version: Optional[str] = None,
        details: Optional[str] = None,
    ) -> WorkflowInstance:
        published = self.versions.get(definition_id, version)
        structure = published.structure
        initial = structure.initial_step()
        if initial is None:
            raise StructuralViolationError(
                f"Workflow '{definition_id}' {published.version} has no initial step."
            )

        instance = WorkflowInstance(
            id=uuid.uuid4().hex,
            definition_id=definition_id,
            definition_version=published.version,
            current_step_id=initial.id,
            context=dict(context or {}),
            initiated_by=initiator.user_id,
            history=[StepVisit(step_id=initial.id)],
        )
        tasks = self._fan_out(instance, initial, assigned_by=initiator.user_id, details=details)
        self.state_store.commit(instance, tasks)
        self.telemetry.log(
            instance.id,
            "instance_started",
            definition_id=definition_id,
            version=published.version,
            step_id=initial.id,
            task_ids=[task.id for task in tasks],
        )
        LOGGER.info(
            "Started instance %s of %s@%s at step %s",
            instance.id,
            definition_id,
            published.version,
            initial.name,
        )
        return instance

    def process_task_action(
        self,
        instance_id: str,
        task_id: str,
        action: Action,
        actor: Actor,
    ) -> ProcessResult:
        """
        Record an approver's action and advance the instance if the step's
        quorum is decided. Serialized per instance; all effects are staged
        on copies and committed together, or not at all.
        """

        with self._lock_for(instance_id):
            try:
                instance = self.get_instance(instance_id)
            except InstanceNotFoundError:
                self._release_lock(instance_id)
                raise
            if instance.status != InstanceStatus.RUNNING:
                self._release_lock(instance_id)
                LOGGER.warning(
                    "Rejected action on instance %s: status is %s", instance_id, instance.status.value
                )
                raise InstanceNotRunningError(
                    f"Workflow instance {instance_id} is {instance.status.value}."
                )

            task = self.state_store.get_task(task_id)
            if task is None or task.instance_id != instance_id:
                LOGGER.warning("Rejected action: task %s not found on instance %s", task_id, instance_id)
                raise TaskNotFoundError(f"Task {task_id} does not belong to instance {instance_id}.")
            if not task.is_open:
                LOGGER.warning("Rejected action: task %s is %s", task_id, task.status.value)
                raise TaskNotOpenError(f"Task {task_id} is {task.status.value}.")

            structure = self.versions.get(instance.definition_id, instance.definition_version).structure
            steps = structure.step_map()
            step = steps[task.step_id]
            self._authorize(step, task, actor)

            result = self._apply(instance, structure, steps, step, task, action, actor)
            if result.outcome in (Outcome.COMPLETED, Outcome.TERMINATED):
                self._release_lock(instance_id)
            return result

    # -- internals --------------------------------------------------------

    def _authorize(self, step: Step, task: Task, actor: Actor) -> None:
        if actor.user_id != task.assigned_to:
            LOGGER.warning(
                "Unauthorized action on task %s: %s is not the assignee", task.id, actor.user_id
            )
            raise UnauthorizedActorError(
                f"User {actor.user_id} is not assigned to task {task.id}."
            )
        if step.allowed_roles and actor.role not in step.allowed_roles:
            LOGGER.warning(
                "Unauthorized action on task %s: role %s not allowed at step %s",
                task.id,
                actor.role.value,
                step.name,
            )
            raise UnauthorizedActorError(
                f"Role {actor.role.value} may not act at step '{step.name}'."
            )

    def _apply(
        self,
        instance: WorkflowInstance,
        structure: WorkflowStructure,
        steps: Dict[str, Step],
        step: Step,
        task: Task,
        action: Action,
        actor: Actor,
    ) -> ProcessResult:
        now = utc_now()
        visit_tasks = {
            item.id: item
            for item in self.state_store.tasks_for_instance(instance.id, visit=task.visit)
        }
        visit = instance.history[task.visit]
        first_action = not visit.actions

        task = visit_tasks[task.id]
        task.status = TaskStatus.COMPLETED
        task.completed_at = now
        visit.actions.append(
            RecordedAction(
                task_id=task.id,
                actor_id=actor.user_id,
                actor_role=actor.role,
                action=action.action,
                comments=action.comments,
                recorded_at=now,
            )
        )
        if action.payload:
            instance.context.update(action.payload)

        open_tasks = [item for item in visit_tasks.values() if item.is_open]
        if first_action:
            for item in open_tasks:
                item.status = TaskStatus.IN_PROGRESS

        assignees = [item.assigned_to for item in visit_tasks.values()]
        decision = self.aggregator.decide(step, assignees, visit.actions)
        result = ProcessResult(
            instance_id=instance.id,
            task_id=task.id,
            outcome=Outcome.PENDING,
            decision=decision.outcome,
            chosen_action=decision.chosen_action,
        )

        staged: List[Task] = list(visit_tasks.values())
        if decision.is_final:
            for item in open_tasks:
                item.status = TaskStatus.SKIPPED
                result.skipped_task_ids.append(item.id)
            visit.decision = decision.outcome
            visit.chosen_action = decision.chosen_action
            staged.extend(self._advance(instance, structure, steps, step, decision, actor, result))

        self.state_store.commit(instance, staged)
        self._record(instance, task, action, actor, result)
        return result

    def _advance(
        self,
        instance: WorkflowInstance,
        structure: WorkflowStructure,
        steps: Dict[str, Step],
        step: Step,
        decision: Decision,
        actor: Actor,
        result: ProcessResult,
    ) -> List[Task]:
        context = EvaluationContext(
            payload=dict(instance.context),
            actor_role=decision.decided_by.actor_role if decision.decided_by else actor.role,
        )
        evaluation = self.evaluator.select(
            structure.outgoing(step.id), decision.chosen_action or "", context
        )
        if evaluation.warning:
            result.warnings.append(evaluation.warning)

        now = utc_now()
        instance.history[-1].left_at = now
        if evaluation.transition is None:
            reason = "rejected" if decision.outcome == DecisionOutcome.REJECTED else "no_matching_transition"
            instance.status = InstanceStatus.TERMINATED
            instance.termination_reason = reason
            result.outcome = Outcome.TERMINATED
            result.termination_reason = reason
            if reason == "no_matching_transition":
                LOGGER.error(
                    "Instance %s terminated: no transition for action '%s' from step %s",
                    instance.id,
                    decision.chosen_action,
                    step.name,
                )
            return []

        target = steps[evaluation.transition.to_step_id]
        instance.current_step_id = target.id
        instance.history.append(StepVisit(step_id=target.id, entered_at=now))
        result.new_step_id = target.id
        if target.final:
            instance.status = InstanceStatus.COMPLETED
            result.outcome = Outcome.COMPLETED
            return []

        tasks = self._fan_out(instance, target, assigned_by=actor.user_id)
        result.outcome = Outcome.ADVANCED
        result.new_task_ids = [item.id for item in tasks]
        return tasks

    def _fan_out(
        self,
        instance: WorkflowInstance,
        step: Step,
        *,
        assigned_by: Optional[str],
        details: Optional[str] = None,
    ) -> List[Task]:
        """One task per eligible approver; steps without roles go to the initiator."""

        if step.allowed_roles:
            assignees = [item.user_id for item in self.directory.approvers_for(step.allowed_roles)]
        else:
            assignees = [instance.initiated_by] if instance.initiated_by else []
        if not assignees:
            raise StructuralViolationError(f"Step '{step.name}' has no eligible approvers.")
        if not step.requires_all_approvers and step.min_approvals > len(assignees):
            raise StructuralViolationError(
                f"Step '{step.name}' requires {step.min_approvals} approvals "
                f"but only {len(assignees)} approvers are eligible."
            )

        due_date = None
        if self.config.default_due_days is not None:
            due_date = (
                datetime.now(timezone.utc) + timedelta(days=self.config.default_due_days)
            ).isoformat()
        return [
            Task(
                id=uuid.uuid4().hex,
                instance_id=instance.id,
                step_id=step.id,
                visit=instance.current_visit,
                assigned_to=user_id,
                assigned_by=assigned_by,
                due_date=due_date,
                details=details,
            )
            for user_id in assignees
        ]

    def _record(
        self,
        instance: WorkflowInstance,
        task: Task,
        action: Action,
        actor: Actor,
        result: ProcessResult,
    ) -> None:
        self.telemetry.log(
            instance.id,
            "action_recorded",
            task_id=task.id,
            actor_id=actor.user_id,
            action=action.action,
            decision=result.decision.value,
        )
        if result.outcome == Outcome.PENDING:
            return
        self.telemetry.log(
            instance.id,
            f"instance_{result.outcome.value}",
            step_id=result.new_step_id,
            new_task_ids=result.new_task_ids,
            skipped_task_ids=result.skipped_task_ids,
            termination_reason=result.termination_reason,
            warnings=result.warnings,
        )
        LOGGER.info(
            "Instance %s %s (step=%s, decision=%s)",
            instance.id,
            result.outcome.value,
            result.new_step_id or instance.current_step_id,
            result.decision.value,
        )
