"""Tests for the single-task execution slot."""
import pytest

from talos.agents.protocol import Task
from talos.errors import ExecutorBusyError
from talos.execution.slot import ExecutionSlot


def test_acquire_and_release():
    slot = ExecutionSlot()
    lease = slot.acquire(Task(prompt="a", id="task-1"))

    assert slot.busy is True
    assert slot.current_task.id == "task-1"

    lease.release()
    assert slot.busy is False
    assert lease.released is True


def test_second_acquire_is_rejected():
    slot = ExecutionSlot()
    with slot.acquire(Task(prompt="a", id="task-1")):
        with pytest.raises(ExecutorBusyError, match="task-1"):
            slot.acquire(Task(prompt="b"))

    # Released by the context manager
    with slot.acquire(Task(prompt="b")):
        assert slot.busy is True


def test_release_is_idempotent_and_ignores_stale_leases():
    slot = ExecutionSlot()
    first = slot.acquire(Task(prompt="a"))
    first.release()
    second = slot.acquire(Task(prompt="b"))

    first.release()
    assert slot.busy is True
    assert slot.current_task is second.task
