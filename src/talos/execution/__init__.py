"""Execution layer: one task at a time, with fallback, permissions and cancellation."""
from .executor import ExecutorState, TaskExecutor
from .permissions import PermissionPolicy
from .slot import ExecutionLease, ExecutionSlot

__all__ = [
    "ExecutionLease",
    "ExecutionSlot",
    "ExecutorState",
    "PermissionPolicy",
    "TaskExecutor",
]
