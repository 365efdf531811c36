"""
Instance and task state for running workflows.
"""

from __future__ import annotations

import threading
from typing import Dict, Iterable, List, Optional

from hrflow.ir.schema import Task, TaskStatus, WorkflowInstance, utc_now


class InMemoryStateStore:
    """
    Thread-safe store of workflow instances and their tasks.

    Reads hand out copies, so callers can stage changes freely; `commit`
    swaps a whole batch in under one lock acquisition.
    """

    def __init__(self) -> None:
        self._instances: Dict[str, WorkflowInstance] = {}
        self._tasks: Dict[str, Task] = {}
        self._lock = threading.Lock()

    def get_instance(self, instance_id: str) -> Optional[WorkflowInstance]:
        with self._lock:
            instance = self._instances.get(instance_id)
            return instance.model_copy(deep=True) if instance else None

    def get_task(self, task_id: str) -> Optional[Task]:
        with self._lock:
            task = self._tasks.get(task_id)
            return task.model_copy() if task else None

    def tasks_for_instance(
        self,
        instance_id: str,
        *,
        visit: Optional[int] = None,
    ) -> List[Task]:
        with self._lock:
            return [
                task.model_copy()
                for task in self._tasks.values()
                if task.instance_id == instance_id and (visit is None or task.visit == visit)
            ]

    def tasks_for_user(self, user_id: str, status: Optional[TaskStatus] = None) -> List[Task]:
        with self._lock:
            return [
                task.model_copy()
                for task in self._tasks.values()
                if task.assigned_to == user_id and (status is None or task.status == status)
            ]

    def commit(self, instance: WorkflowInstance, tasks: Iterable[Task] = ()) -> None:
        instance.updated_at = utc_now()
        staged = {task.id: task.model_copy() for task in tasks}
        with self._lock:
            self._instances[instance.id] = instance.model_copy(deep=True)
            self._tasks.update(staged)
