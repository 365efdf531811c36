from hrflow.graph.model import GraphCheckpoint, IdentityState, WorkflowGraph

__all__ = ["GraphCheckpoint", "IdentityState", "WorkflowGraph"]
