"""Single-task-at-a-time execution slot."""

from __future__ import annotations

import logging

from talos.agents.protocol import Task
from talos.errors import ExecutorBusyError

logger = logging.getLogger(__name__)


class ExecutionLease:
    """Handle for the running task; release it to let the next task begin."""

    def __init__(self, slot: "ExecutionSlot", task: Task) -> None:
        self._slot = slot
        self.task = task
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self._slot._release(self)

    def __enter__(self) -> "ExecutionLease":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()


class ExecutionSlot:
    """Grants at most one lease at a time.

    Share one slot between executors to serialize them.
    """

    def __init__(self) -> None:
        self._lease: ExecutionLease | None = None

    @property
    def busy(self) -> bool:
        return self._lease is not None

    @property
    def current_task(self) -> Task | None:
        return self._lease.task if self._lease else None

    def acquire(self, task: Task) -> ExecutionLease:
        """Begin execution of ``task``.

        Raises:
            ExecutorBusyError: another lease has not been released yet.
        """
        if self._lease is not None:
            running = self._lease.task.id or self._lease.task.title or "unnamed task"
            raise ExecutorBusyError(f"A task is already running: {running}")
        self._lease = ExecutionLease(self, task)
        return self._lease

    def _release(self, lease: ExecutionLease) -> None:
        if self._lease is lease:
            self._lease = None
        else:
            logger.debug("Ignoring release of a stale lease")
