"""Codex CLI agent adapter."""

from talos.agents.base import BaseAgent
from talos.agents.protocol import AgentCapabilities, Task


class CodexAgent(BaseAgent):
    """Adapter for OpenAI Codex CLI.

    Codex CLI supports:
    - 'exec' subcommand for non-interactive execution
    - --json for JSONL output
    - --model for model selection
    - --full-auto for unattended tool approval
    """

    agent_id = "codex"
    display_name = "OpenAI Codex"
    default_command = "codex"
    capabilities = AgentCapabilities(
        streaming=False,
        interactive=False,
        session_resume=True,
        plan_mode=False,
        tools=frozenset({"shell", "write", "read"}),
    )

    def build_args(self, task: Task) -> list[str]:
        settings = self.settings
        # Skip git repo check so tasks can run in scratch directories
        args = ["exec", "--skip-git-repo-check"]

        if settings.output_format == "json":
            args.append("--json")

        if settings.model:
            args.extend(["--model", settings.model])

        if settings.skip_permissions or settings.permissions.allow_all_tools:
            args.append("--full-auto")

        args.extend(settings.extra_args)

        # Prompt as positional argument
        args.append(task.prompt)
        return args

    def _describe(self, command: str, args: list[str]) -> str:
        return super()._describe(command, args[:-1] + ["..."])
