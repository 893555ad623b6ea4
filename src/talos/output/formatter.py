"""Rich rendering of agent events, results and agent tables."""

from typing import Any

from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.table import Table
from rich.theme import Theme

from talos.agents.events import AgentEvent, EventKind
from talos.agents.protocol import ExecutionResult

TALOS_THEME = Theme(
    {
        "agent": "cyan",
        "success": "green",
        "error": "red bold",
        "warning": "yellow",
        "info": "blue",
        "tool": "magenta",
        "stderr": "dim red",
        "metadata": "dim",
    }
)


class OutputFormatter:
    """Handles all output formatting for talos."""

    def __init__(self, color: bool = True, verbose: bool = False) -> None:
        self.console = Console(theme=TALOS_THEME, no_color=not color, highlight=False)
        self.verbose = verbose
        self._streamed = False
        self._mid_line = False

    def print_event(self, event: AgentEvent) -> None:
        """Render one progress event as it arrives."""
        kind = event.kind
        if kind is EventKind.CHUNK:
            self.print_streaming(event.text)
        elif kind is EventKind.INFO:
            self.print_info(event.text)
        elif kind is EventKind.TOOL_USE:
            self._end_stream()
            tool = event.data.get("tool") or event.data.get("name") or "tool"
            self.console.print(f"[tool]> {escape(str(tool))}[/tool]")
        elif kind is EventKind.PERMISSION:
            self._end_stream()
            self.console.print(f"[warning]Permission requested: {escape(str(event.data.get('tool')))}[/warning]")
        elif kind is EventKind.STDERR:
            if self.verbose:
                self.console.print(event.text, style="stderr", end="", markup=False)
        elif kind is EventKind.PARSE_ERROR:
            if self.verbose:
                self.print_warning(f"Unparseable agent output: {event.data.get('line', '')!r}")
        elif self.verbose and not event.is_terminal and kind is not EventKind.STARTED:
            self.console.print(f"[metadata]{kind.value}: {escape(str(event.data))}[/metadata]")

    def print_result(self, result: ExecutionResult, show_metadata: bool = False) -> None:
        """Print an execution result.

        Output already shown through chunk events is not printed again.
        """
        self._end_stream()
        if result.is_error:
            self.print_error(result.error or "Unknown error", result.agent)
        elif not self._streamed and result.output:
            if self._looks_like_markdown(result.output):
                self.console.print(Markdown(result.output))
            else:
                self.console.print(result.output, markup=False)

        if show_metadata:
            metadata = {
                "agent": result.agent,
                "mode": result.mode.value if result.mode else None,
                "exit_code": result.exit_code,
                "duration_ms": result.duration_ms,
            }
            self._print_metadata(metadata)
        self._streamed = False

    def print_error(self, message: str, agent_name: str | None = None) -> None:
        """Print ``message`` as an error, prefixed with the agent when known."""
        self._end_stream()
        prefix = f"[{agent_name}] " if agent_name else ""
        self.console.print(f"[error]{escape(prefix)}Error: {escape(message)}[/error]")

    def print_success(self, message: str) -> None:
        self.console.print(f"[success]{escape(message)}[/success]")

    def print_info(self, message: str) -> None:
        self._end_stream()
        self.console.print(f"[info]{escape(message)}[/info]")

    def print_warning(self, message: str) -> None:
        self._end_stream()
        self.console.print(f"[warning]{escape(message)}[/warning]")

    def print_agent_list(self, agents: list[dict[str, Any]]) -> None:
        """Tabulate registered agents.

        Args:
            agents: Dicts as returned by ``AgentRegistry.detect_available``.
        """
        table = Table(title="Registered Agents")
        table.add_column("ID", style="agent")
        table.add_column("Name")
        table.add_column("Status", justify="center")
        table.add_column("Version")

        for agent in agents:
            status = "[success]available[/success]" if agent["available"] else "[error]unavailable[/error]"
            table.add_row(agent["id"], agent["name"], status, agent.get("version") or "")

        self.console.print(table)

    def print_agent_info(self, info: dict[str, Any], available: bool, version: str | None) -> None:
        table = Table(title=f"{info['name']} ({info['id']})")
        table.add_column("Property", style="agent")
        table.add_column("Value")

        table.add_row("Available", "Yes" if available else "No")
        if version:
            table.add_row("Version", version)

        caps = info["capabilities"]
        table.add_row("Streaming", "Yes" if caps["streaming"] else "No")
        table.add_row("Interactive", "Yes" if caps["interactive"] else "No")
        table.add_row("Session resume", "Yes" if caps["sessionResume"] else "No")
        table.add_row("Plan mode", "Yes" if caps["planMode"] else "No")
        table.add_row("Tools", ", ".join(caps["tools"]) or "-")

        self.console.print(table)

    def print_streaming(self, chunk: str) -> None:
        """Write a raw output chunk as-is."""
        if chunk:
            self._streamed = True
            self._mid_line = not chunk.endswith("\n")
            self.console.print(chunk, end="", markup=False)

    def _end_stream(self) -> None:
        # Finish a partially streamed line before other output
        if self._mid_line:
            self._mid_line = False
            self.console.print()

    def _print_metadata(self, metadata: dict[str, Any]) -> None:
        parts = [f"{k}={v}" for k, v in metadata.items() if v is not None]
        self.console.print(f"[metadata]({escape(', '.join(parts))})[/metadata]")

    @staticmethod
    def _looks_like_markdown(text: str) -> bool:
        return any(marker in text for marker in ("```", "## ", "**", "\n- ", "\n1. "))


# Shared by the CLI commands of one process
_formatter: OutputFormatter | None = None


def get_formatter(color: bool = True, verbose: bool = False) -> OutputFormatter:
    """Process-wide formatter; options apply only on the first call."""
    global _formatter
    if _formatter is None:
        _formatter = OutputFormatter(color=color, verbose=verbose)
    return _formatter


def reset_formatter() -> None:
    global _formatter
    _formatter = None
