"""Claude Code CLI agent adapter."""

from talos.agents.base import BaseAgent
from talos.agents.protocol import AgentCapabilities, Task


class ClaudeCodeAgent(BaseAgent):
    """Adapter for Anthropic Claude Code CLI.

    The prompt is piped on stdin with --print; passing it as an argument can
    hang the CLI when no terminal is attached.

    Claude CLI supports:
    - --output-format for text/json/stream-json
    - --model, --max-turns and --system-prompt
    - --allowedTools/--disallowedTools and --dangerously-skip-permissions
    """

    agent_id = "claude-code"
    display_name = "Claude Code"
    default_command = "claude"
    capabilities = AgentCapabilities(
        streaming=False,
        interactive=False,
        session_resume=True,
        plan_mode=False,
        tools=frozenset(
            {"shell", "write", "read", "edit", "glob", "grep", "web_search", "web_fetch"}
        ),
    )
    prompt_via_stdin = True

    def build_args(self, task: Task) -> list[str]:
        settings = self.settings
        args = ["--print"]

        if settings.skip_permissions:
            args.append("--dangerously-skip-permissions")

        if settings.output_format:
            args.extend(["--output-format", settings.output_format])
            # Claude CLI requires --verbose when using stream-json with --print
            if settings.output_format == "stream-json":
                args.append("--verbose")

        if settings.max_turns:
            args.extend(["--max-turns", str(settings.max_turns)])

        if settings.model:
            args.extend(["--model", settings.model])

        if settings.system_prompt:
            args.extend(["--system-prompt", settings.system_prompt])

        for tool in settings.permissions.allow_tools:
            args.extend(["--allowedTools", tool])

        for tool in settings.permissions.deny_tools:
            args.extend(["--disallowedTools", tool])

        args.extend(settings.extra_args)
        return args
