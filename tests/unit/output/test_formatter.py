"""Tests for OutputFormatter."""
import io

from rich.console import Console

from talos.agents.events import AgentEvent, EventKind
from talos.agents.protocol import ExecutionMode, ExecutionResult
from talos.output.formatter import TALOS_THEME, OutputFormatter


def make_formatter(verbose=False):
    formatter = OutputFormatter(color=False, verbose=verbose)
    buffer = io.StringIO()
    formatter.console = Console(file=buffer, theme=TALOS_THEME, no_color=True, width=120)
    return formatter, buffer


def test_streamed_output_is_not_repeated():
    formatter, buffer = make_formatter()
    formatter.print_event(AgentEvent.chunk("Hello [world]"))
    formatter.print_result(ExecutionResult(exit_code=0, output="Hello [world]", agent="copilot"))

    assert buffer.getvalue().count("Hello [world]") == 1


def test_batch_output_printed_with_result():
    formatter, buffer = make_formatter()
    formatter.print_result(
        ExecutionResult(exit_code=0, output="done", agent="codex", mode=ExecutionMode.BATCH),
        show_metadata=True,
    )

    output = buffer.getvalue()
    assert "done" in output
    assert "mode=batch" in output


def test_error_with_brackets():
    formatter, buffer = make_formatter()
    formatter.print_result(ExecutionResult(exit_code=1, output="", agent="fake-agent", error="bad [input]"))

    assert "[fake-agent] Error: bad [input]" in buffer.getvalue()


def test_stderr_only_shown_when_verbose():
    quiet, quiet_buffer = make_formatter()
    loud, loud_buffer = make_formatter(verbose=True)
    event = AgentEvent(EventKind.STDERR, {"text": "warning: slow\n"})

    quiet.print_event(event)
    loud.print_event(event)

    assert quiet_buffer.getvalue() == ""
    assert "warning: slow" in loud_buffer.getvalue()


def test_tool_and_permission_events():
    formatter, buffer = make_formatter()
    formatter.print_event(AgentEvent(EventKind.TOOL_USE, {"tool": "shell(ls)"}))
    formatter.print_event(AgentEvent(EventKind.PERMISSION, {"tool": "write"}))

    output = buffer.getvalue()
    assert "> shell(ls)" in output
    assert "Permission requested: write" in output
