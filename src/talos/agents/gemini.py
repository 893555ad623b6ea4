"""Gemini CLI agent adapter."""

from talos.agents.base import BaseAgent
from talos.agents.protocol import AgentCapabilities, Task


class GeminiAgent(BaseAgent):
    """Adapter for Google Gemini CLI.

    Gemini CLI supports:
    - Positional prompts for one-shot queries
    - --output-format for text/json/stream-json
    - --model for model selection
    - --yolo to auto-approve every tool call
    """

    agent_id = "gemini"
    display_name = "Google Gemini"
    default_command = "gemini"
    capabilities = AgentCapabilities(
        streaming=False,
        interactive=False,
        session_resume=True,
        plan_mode=False,
        tools=frozenset({"shell", "write", "read", "glob", "grep", "web_fetch"}),
    )

    def build_args(self, task: Task) -> list[str]:
        settings = self.settings
        args: list[str] = []

        if settings.output_format:
            args.extend(["--output-format", settings.output_format])

        if settings.model:
            args.extend(["--model", settings.model])

        if settings.skip_permissions or settings.permissions.allow_all_tools:
            args.append("--yolo")

        args.extend(settings.extra_args)

        # Prompt as positional argument
        args.append(task.prompt)
        return args

    def _describe(self, command: str, args: list[str]) -> str:
        return super()._describe(command, args[:-1] + ["..."])
