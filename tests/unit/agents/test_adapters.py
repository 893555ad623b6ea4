"""Tests for backend argument building and capability metadata."""
from talos.agents.claude import ClaudeCodeAgent
from talos.agents.codex import CodexAgent
from talos.agents.copilot import CopilotAgent
from talos.agents.gemini import GeminiAgent
from talos.agents.protocol import Task
from talos.config.schema import AgentSettings, PermissionsConfig

TASK = Task(prompt="fix the bug")


def settings(agent_id, **kwargs):
    return AgentSettings(agent_id=agent_id, **kwargs)


def test_copilot_batch_args_defaults():
    agent = CopilotAgent(settings("copilot"))
    assert agent.build_args(TASK) == ["-p", "fix the bug"]


def test_copilot_batch_args_permissions():
    perms = PermissionsConfig(
        allow_tools=("shell(git)", "write"),
        deny_tools=("shell(rm)",),
        allow_all_paths=True,
        allow_urls=("github.com",),
    )
    agent = CopilotAgent(settings("copilot", permissions=perms, model="gpt-5", plan_mode=True))

    args = agent.build_args(TASK)

    assert args[:2] == ["-p", "fix the bug"]
    assert args.count("--allow-tool") == 2
    assert "shell(git)" in args
    assert args[args.index("--deny-tool") + 1] == "shell(rm)"
    assert "--allow-all-paths" in args
    assert args[args.index("--allow-url") + 1] == "github.com"
    assert args[args.index("--model") + 1] == "gpt-5"
    assert "--plan" in args


def test_copilot_allow_all_replaces_individual_grants():
    perms = PermissionsConfig(allow_all_tools=True, allow_tools=("shell",), allow_all_urls=True, allow_urls=("x.com",))
    args = CopilotAgent(settings("copilot", permissions=perms)).build_args(TASK)

    assert "--allow-all-tools" in args
    assert "--allow-tool" not in args
    assert "--allow-all-urls" in args
    assert "--allow-url" not in args


def test_copilot_capabilities():
    caps = CopilotAgent.capabilities
    assert caps.streaming is True
    assert caps.interactive is True
    assert caps.to_dict()["tools"] == sorted(caps.tools)


def test_copilot_description_hides_prompt():
    agent = CopilotAgent(settings("copilot"))
    description = agent._describe("copilot", agent.build_args(Task(prompt="secret plan")))
    assert "secret plan" not in description
    assert description.startswith("copilot -p")


def test_claude_args():
    agent = ClaudeCodeAgent(
        settings(
            "claude-code",
            skip_permissions=True,
            output_format="stream-json",
            max_turns=5,
            model="sonnet",
            system_prompt="be brief",
            permissions=PermissionsConfig(allow_tools=("Read",), deny_tools=("Bash",)),
            extra_args=("--debug",),
        )
    )

    args = agent.build_args(TASK)

    assert args[0] == "--print"
    assert "--dangerously-skip-permissions" in args
    assert args[args.index("--output-format") + 1] == "stream-json"
    assert "--verbose" in args
    assert args[args.index("--max-turns") + 1] == "5"
    assert args[args.index("--allowedTools") + 1] == "Read"
    assert args[args.index("--disallowedTools") + 1] == "Bash"
    assert args[-1] == "--debug"
    # Prompt goes over stdin
    assert "fix the bug" not in args


def test_claude_is_batch_only():
    assert ClaudeCodeAgent.capabilities.streaming is False
    assert ClaudeCodeAgent.capabilities.interactive is False
    assert ClaudeCodeAgent.prompt_via_stdin is True


def test_codex_args():
    agent = CodexAgent(settings("codex", output_format="json", model="o4", skip_permissions=True))
    args = agent.build_args(TASK)

    assert args[:2] == ["exec", "--skip-git-repo-check"]
    assert "--json" in args
    assert "--full-auto" in args
    assert args[-1] == "fix the bug"


def test_gemini_args():
    perms = PermissionsConfig(allow_all_tools=True)
    agent = GeminiAgent(settings("gemini", output_format="json", model="gemini-2.5-pro", permissions=perms))
    args = agent.build_args(TASK)

    assert args[args.index("--output-format") + 1] == "json"
    assert args[args.index("--model") + 1] == "gemini-2.5-pro"
    assert "--yolo" in args
    assert args[-1] == "fix the bug"


def test_configured_command_overrides_default():
    agent = GeminiAgent(settings("gemini", command="/opt/gemini/bin/gemini"))
    assert agent.command == "/opt/gemini/bin/gemini"
    assert GeminiAgent(settings("gemini")).command == "gemini"


def test_candidate_commands_start_with_configured():
    candidates = CodexAgent.candidate_commands(settings("codex", command="my-codex"))
    assert candidates[0] == "my-codex"
    assert "codex" in candidates
    assert "/usr/local/bin/codex" in candidates
    assert len(candidates) == len(set(candidates))
