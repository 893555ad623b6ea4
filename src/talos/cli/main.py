"""Main CLI entry point for talos."""

import asyncio
import contextlib
import json
import logging
import os
import signal
import sys
import threading
from pathlib import Path
from typing import IO, Any

import click
import toml
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler

from talos.agents.base import CANCELLED_MESSAGE
from talos.agents.permissions import PermissionDecision, PermissionRequest
from talos.agents.protocol import ExecutionResult, Task
from talos.agents.registry import AgentRegistry
from talos.config.manager import ConfigManager
from talos.config.schema import ExecutionConfig, TalosConfig
from talos.errors import TalosError
from talos.execution.executor import TaskExecutor
from talos.output.formatter import get_formatter

EXIT_CANCELLED = 130

logger = logging.getLogger(__name__)


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Verbose output")
@click.option("--no-color", is_flag=True, help="Disable colors")
@click.version_option(package_name="talos")
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    no_color: bool,
) -> None:
    """Talos - run automation tasks through AI coding-agent CLIs.

    \b
    Examples:
        talos run "add a docstring to utils.py"     # Auto-selected agent
        talos run -a claude-code "fix the tests"     # Specific agent
        talos run --mode batch "summarize README"    # One-shot mode
        talos agent list                              # Installed agents
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["no_color"] = no_color

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )

    # Initialize formatter
    get_formatter(color=not no_color, verbose=verbose)


@cli.command()
@click.argument("prompt", nargs=-1, required=True)
@click.option("-a", "--agent", "agent_id", help="Agent to use (default: auto)")
@click.option("--mode", type=click.Choice(["streaming", "batch"]), help="Execution mode")
@click.option("--no-fallback", is_flag=True, help="Do not retry in batch mode if streaming fails")
@click.option("-C", "--cwd", type=click.Path(exists=True, file_okay=False), help="Working directory")
@click.option("-m", "--model", help="Model to use")
@click.option("--plan", is_flag=True, help="Ask the agent to plan before acting")
@click.option("-y", "--yes", is_flag=True, help="Allow all tools without asking")
@click.option("--json", "output_json", is_flag=True, help="JSON output")
@click.option("--metadata", is_flag=True, help="Show metadata")
def run(
    prompt: tuple[str, ...],
    agent_id: str | None,
    mode: str | None,
    no_fallback: bool,
    cwd: str | None,
    model: str | None,
    plan: bool,
    yes: bool,
    output_json: bool,
    metadata: bool,
) -> None:
    """Run a task with a coding agent."""
    workdir = Path(cwd).resolve() if cwd else Path.cwd()
    config = _apply_overrides(
        ConfigManager.load_config(workdir),
        mode=mode,
        no_fallback=no_fallback,
        model=model,
        plan=plan,
        yes=yes,
    )
    task = Task(prompt=" ".join(prompt), working_dir=workdir)

    result = asyncio.run(_run_task(config, task, agent_id, quiet=output_json))

    formatter = get_formatter()
    if output_json:
        formatter.console.print_json(json.dumps(result.to_dict()))
    else:
        formatter.print_result(result, show_metadata=metadata)

    if result.error == CANCELLED_MESSAGE:
        raise SystemExit(EXIT_CANCELLED)
    if not result.success:
        raise SystemExit(1)


def _apply_overrides(
    config: TalosConfig,
    *,
    mode: str | None = None,
    no_fallback: bool = False,
    model: str | None = None,
    plan: bool = False,
    yes: bool = False,
) -> TalosConfig:
    """Layer command-line options over the loaded configuration."""
    updates: dict[str, Any] = {}
    if mode or no_fallback:
        updates["execution"] = ExecutionConfig(
            mode=mode or config.execution.mode,
            fallback_to_batch=config.execution.fallback_to_batch and not no_fallback,
        )
    if model:
        updates["model"] = model
    if plan:
        updates["plan_mode"] = True
    if yes:
        updates["permissions"] = config.permissions.model_copy(update={"allow_all_tools": True})
    return config.model_copy(update=updates) if updates else config


async def _run_task(
    config: TalosConfig,
    task: Task,
    agent_id: str | None,
    quiet: bool = False,
) -> ExecutionResult:
    formatter = get_formatter()
    on_event = None if quiet else formatter.print_event
    executor = TaskExecutor(config, agent_id=agent_id, on_event=on_event)
    terminal = TerminalPrompt()

    async def confirm_permission(request: PermissionRequest) -> PermissionDecision:
        question = f"Allow {request.tool}"
        if request.description:
            question += f" ({request.description})"
        return PermissionDecision.from_bool(await terminal.confirm(question + "?"))

    loop = asyncio.get_running_loop()
    stopping: set[asyncio.Task] = set()

    def on_interrupt() -> None:
        stop = loop.create_task(executor.stop())
        stopping.add(stop)
        stop.add_done_callback(stopping.discard)

    with contextlib.suppress(NotImplementedError, RuntimeError):
        loop.add_signal_handler(signal.SIGINT, on_interrupt)
    try:
        return await executor.execute(task, permission_handler=confirm_permission)
    finally:
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.remove_signal_handler(signal.SIGINT)
        if stopping:
            await asyncio.gather(*stopping, return_exceptions=True)


class TerminalPrompt:
    """Yes/no questions answered on stdin.

    Lines are read on a daemon thread, so a question abandoned by its
    caller (a permission timeout) never keeps the process alive. A line
    typed while no question is waiting is discarded.
    """

    def __init__(self) -> None:
        self._waiter: asyncio.Future | None = None
        self._reading = False

    async def confirm(self, question: str) -> bool:
        """Ask until the answer is yes, no or empty (no)."""
        while True:
            click.echo(f"{question} [y/N]: ", nl=False)
            try:
                line = await self._readline()
            except asyncio.CancelledError:
                click.echo()
                raise
            if not line:  # stdin closed
                click.echo()
                return False
            answer = line.strip().lower()
            if answer in ("y", "yes"):
                return True
            if answer in ("", "n", "no"):
                return False
            click.echo("Error: invalid input")

    async def _readline(self) -> str:
        loop = asyncio.get_running_loop()
        self._waiter = loop.create_future()
        if not self._reading:
            self._reading = True
            threading.Thread(
                target=self._read,
                args=(sys.stdin, loop),
                name="talos-prompt",
                daemon=True,
            ).start()
        try:
            return await self._waiter
        finally:
            self._waiter = None

    def _read(self, stream: IO[str], loop: asyncio.AbstractEventLoop) -> None:
        try:
            line = self._readline_from(stream)
        except (OSError, ValueError) as e:
            logger.debug("Cannot read answer from stdin: %s", e)
            line = ""
        try:
            loop.call_soon_threadsafe(self._deliver, line)
        except RuntimeError:
            logger.debug("Answer arrived after the event loop closed: %r", line)

    @staticmethod
    def _readline_from(stream: IO[str]) -> str:
        try:
            fd = stream.fileno()
        except (OSError, ValueError):  # in-memory stream
            return stream.readline()
        # Unbuffered: an abandoned read must not hold the stdin lock at exit
        data = bytearray()
        while not data.endswith(b"\n"):
            byte = os.read(fd, 1)
            if not byte:
                break
            data += byte
        return data.decode(getattr(stream, "encoding", None) or "utf-8", errors="replace")

    def _deliver(self, line: str) -> None:
        self._reading = False
        waiter = self._waiter
        if waiter is None or waiter.done():
            logger.debug("Discarding unsolicited input %r", line)
            return
        waiter.set_result(line)


# --- Subcommands ---


@cli.group()
def agent() -> None:
    """Inspect agent backends."""
    pass


@agent.command("list")
@click.option("--all", "show_all", is_flag=True, help="Show unavailable agents too")
def agent_list(show_all: bool) -> None:
    """List registered agents."""
    formatter = get_formatter()
    config = ConfigManager.get_config()

    agents = asyncio.run(AgentRegistry.detect_available(config))
    if not show_all:
        agents = [a for a in agents if a["available"]]

    if not agents:
        formatter.print_warning("No agents available (use --all to list every registered agent)")
        return

    formatter.print_agent_list(agents)


@agent.command("info")
@click.argument("agent_id")
def agent_info(agent_id: str) -> None:
    """Show detailed info about an agent."""
    formatter = get_formatter()

    info = AgentRegistry.info(agent_id)
    if info is None:
        formatter.print_error(f"Unknown agent: {agent_id}")
        raise SystemExit(1)

    agent_class = AgentRegistry.get_class(agent_id)
    settings = ConfigManager.get_config().settings_for(agent_id)

    async def probe() -> tuple[bool, str | None]:
        available = await agent_class.is_available(settings)
        version = await agent_class.get_version(settings) if available else None
        return available, version

    available, version = asyncio.run(probe())
    formatter.print_agent_info(info, available, version)


@cli.group()
def config() -> None:
    """Manage configuration."""
    pass


@config.command("show")
def config_show() -> None:
    """Show current configuration."""
    config = ConfigManager.get_config()
    formatter = get_formatter()
    formatter.console.print_json(json.dumps(config.model_dump(mode="json")))


@config.command("set")
@click.argument("key")
@click.argument("value")
def config_set(key: str, value: str) -> None:
    """Set a value in the user config, e.g. ``execution.mode batch``."""
    formatter = get_formatter()
    try:
        ConfigManager.set_value(key, _parse_value(value))
    except (ValidationError, TalosError) as e:
        formatter.print_error(f"Invalid value for {key}: {e}")
        raise SystemExit(1)
    formatter.print_success(f"{key} = {ConfigManager.get_value(key)!r}")


def _parse_value(value: str) -> Any:
    """Interpret VALUE as a TOML literal, falling back to a plain string."""
    try:
        return toml.loads(f"value = {value}")["value"]
    except toml.TomlDecodeError:
        return value


if __name__ == "__main__":
    cli()
