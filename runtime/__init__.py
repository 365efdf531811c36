from hrflow.runtime.aggregator import ApprovalAggregator, Decision
from hrflow.runtime.conditions import (
    ConditionEvaluator,
    ConditionRegistry,
    Evaluation,
    EvaluationContext,
)
from hrflow.runtime.directory import ApproverDirectory, StaticApproverDirectory
from hrflow.runtime.router import Outcome, ProcessResult, TaskRouter, TaskRouterConfig
from hrflow.runtime.state_store import InMemoryStateStore
from hrflow.runtime.telemetry import TelemetryCollector, TelemetryEvent

__all__ = [
    "ApprovalAggregator",
    "Decision",
    "ConditionEvaluator",
    "ConditionRegistry",
    "Evaluation",
    "EvaluationContext",
    "ApproverDirectory",
    "StaticApproverDirectory",
    "Outcome",
    "ProcessResult",
    "TaskRouter",
    "TaskRouterConfig",
    "InMemoryStateStore",
    "TelemetryCollector",
    "TelemetryEvent",
]
