"""Agent adapters for AI coding CLIs."""

from talos.agents.base import BaseAgent
from talos.agents.events import AgentEvent, EventKind
from talos.agents.protocol import (
    AgentAdapter,
    AgentCapabilities,
    ExecuteOptions,
    ExecutionMode,
    ExecutionResult,
    Task,
)
from talos.agents.registry import AgentRegistry

__all__ = [
    "AgentAdapter",
    "AgentCapabilities",
    "AgentEvent",
    "AgentRegistry",
    "BaseAgent",
    "EventKind",
    "ExecuteOptions",
    "ExecutionMode",
    "ExecutionResult",
    "Task",
]
