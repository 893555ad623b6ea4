"""Exception taxonomy for agent execution.

Protocol-layer failures derive from :class:`ProtocolError`; those are the only
errors that make a streaming attempt eligible for a batch-mode retry.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from talos.agents.protocol import ExecutionResult


class TalosError(Exception):
    """Base class for all talos errors.

    ``result`` carries the partial :class:`ExecutionResult` (output accumulated
    before the failure) when the error escapes an adapter.
    """

    def __init__(self, message: str, *, result: "ExecutionResult | None" = None) -> None:
        super().__init__(message)
        self.message = message
        self.result = result


class ProcessSpawnError(TalosError):
    """The backend binary could not be started. Never retried."""


class ProtocolError(TalosError):
    """Protocol-layer failure (handshake, process or connection)."""


class HandshakeError(ProtocolError):
    """The ``initialize`` handshake or session setup failed or timed out."""


class ProtocolDisconnected(ProtocolError):
    """The backend process went away while requests were outstanding."""


class ProtocolParseError(TalosError):
    """A line on the backend's stdout was not a JSON object."""

    def __init__(self, message: str, line: str) -> None:
        super().__init__(message)
        self.line = line


class RequestTimeout(TalosError):
    """A single protocol request got no response in time."""

    def __init__(self, method: str, timeout: float) -> None:
        super().__init__(f"Request {method} timed out after {timeout:g}s")
        self.method = method
        self.timeout = timeout


class RemoteError(TalosError):
    """The backend answered a request with a JSON-RPC error object."""

    def __init__(self, message: str, code: int | None = None, data: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.data = data


class NoSessionError(TalosError):
    """A prompt was sent before a session was created."""


class ApplicationError(TalosError):
    """The backend reported a task-level failure (non-zero exit, failed turn)."""

    def __init__(
        self,
        message: str,
        *,
        exit_code: int = 1,
        result: "ExecutionResult | None" = None,
    ) -> None:
        super().__init__(message, result=result)
        self.exit_code = exit_code


class TaskCancelledError(TalosError):
    """Execution was stopped by the caller."""


class UnknownAgentError(TalosError):
    """No adapter is registered under the requested identifier."""


class NoAgentAvailableError(TalosError):
    """None of the preferred agents is installed."""


class ExecutorBusyError(TalosError):
    """A task is already running; only one may run at a time."""
