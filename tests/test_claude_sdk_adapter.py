# tests/test_claude_sdk_adapter.py
# Tests for ClaudeCodeSDKAdapter with the SDK query replaced by scripted messages,
# and for the write-path hook.

import asyncio
import os
from types import SimpleNamespace
from unittest.mock import patch

from agent_library.adapters.claude_sdk import (
    ClaudeCodeSDKAdapter,
    build_write_path_hooks,
    check_write_path,
)
from agent_library.models import MCPServerConfig, OutputFormat, RunOptions


def scripted_query(messages, delay_after=None):
    """Build a stand-in for claude_agent_sdk.query that yields the given messages."""
    calls = []

    def fake_query(prompt=None, options=None):
        calls.append(options)

        async def generate():
            for message in messages:
                yield message
            if delay_after:
                await asyncio.sleep(delay_after)

        return generate()

    fake_query.calls = calls
    return fake_query


def assistant(*blocks):
    return SimpleNamespace(content=list(blocks))


def text_block(text):
    return SimpleNamespace(text=text)


def tool_block(tool_id, name, tool_input):
    return SimpleNamespace(id=tool_id, name=name, input=tool_input)


def tool_result(tool_use_id):
    return SimpleNamespace(content=[SimpleNamespace(tool_use_id=tool_use_id, content="ok")])


def result_message(result="Done", usage=None, cost=None, is_error=False, structured=None, subtype="success"):
    return SimpleNamespace(
        subtype=subtype,
        result=result,
        usage=usage if usage is not None else {"input_tokens": 100, "output_tokens": 20},
        total_cost_usd=cost,
        is_error=is_error,
        structured_output=structured,
    )


# --- run tests ---


def test_run_success_with_reported_cost(tmp_path):
    """Text, a Read tool call and the result message become one successful run."""
    root = os.path.abspath(str(tmp_path))
    fake = scripted_query([
        assistant(text_block("I'll read the file."), tool_block("t1", "Read", {"file_path": f"{root}/src/app.py"})),
        tool_result("t1"),
        assistant(text_block("The file defines the app.")),
        result_message(result="The app is defined in src/app.py", cost=0.0123),
    ])
    adapter = ClaudeCodeSDKAdapter(project_root=root)
    with patch("agent_library.adapters.claude_sdk.query", fake):
        result = adapter.run(RunOptions(prompt="Where is the app defined?", timeout=30))
    assert result.success is True
    assert result.content == "The app is defined in src/app.py"
    assert result.files_examined == ["src/app.py"]
    assert result.tool_call_count == 1
    assert result.usage.input_tokens == 100
    assert result.usage.total_cost_usd == 0.0123
    assert result.usage.cost_reported is True


def test_run_without_reported_cost_is_estimated(tmp_path):
    """A missing total_cost_usd is priced from the model."""
    fake = scripted_query([result_message(cost=None)])
    adapter = ClaudeCodeSDKAdapter(project_root=str(tmp_path))
    with patch("agent_library.adapters.claude_sdk.query", fake):
        result = adapter.run(RunOptions(prompt="p", timeout=30))
    assert result.usage.cost_reported is False
    assert result.usage.total_cost_usd > 0


def test_run_falls_back_to_last_text(tmp_path):
    """Without a result text, the last assistant message is the content."""
    fake = scripted_query([
        assistant(text_block("First draft.")),
        assistant(text_block("Final answer.")),
        result_message(result=""),
    ])
    adapter = ClaudeCodeSDKAdapter(project_root=str(tmp_path))
    with patch("agent_library.adapters.claude_sdk.query", fake):
        result = adapter.run(RunOptions(prompt="p", stream=True, timeout=30))
    assert result.success is True
    assert result.content == "Final answer."


def test_run_native_structured_output(tmp_path):
    """Structured output from the SDK is passed through."""
    fake = scripted_query([result_message(result='{"verdict": "approve"}', structured={"verdict": "approve"})])
    adapter = ClaudeCodeSDKAdapter(project_root=str(tmp_path))
    schema = {"type": "object", "properties": {"verdict": {"type": "string"}}}
    with patch("agent_library.adapters.claude_sdk.query", fake):
        result = adapter.run(RunOptions(prompt="p", output_format=OutputFormat(schema=schema), timeout=30))
    assert result.structured_output == {"verdict": "approve"}
    assert fake.calls[0].output_format == {"type": "json_schema", "schema": schema}


def test_run_error_result(tmp_path):
    """An error result without content is a failed run."""
    fake = scripted_query([result_message(result="", is_error=True, subtype="error_max_turns")])
    adapter = ClaudeCodeSDKAdapter(project_root=str(tmp_path))
    with patch("agent_library.adapters.claude_sdk.query", fake):
        result = adapter.run(RunOptions(prompt="p", timeout=30))
    assert result.success is False
    assert result.error == "Agent run ended with error_max_turns"


def test_run_query_exception(tmp_path):
    """An exception from the SDK comes back as a failed result."""
    def broken_query(prompt=None, options=None):
        raise RuntimeError("claude CLI not found")

    adapter = ClaudeCodeSDKAdapter(project_root=str(tmp_path))
    with patch("agent_library.adapters.claude_sdk.query", broken_query):
        result = adapter.run(RunOptions(prompt="p", timeout=30))
    assert result.success is False
    assert result.error == "claude CLI not found"


def test_run_timeout_cancels_query(tmp_path):
    """A query outliving the timeout is cancelled and diagnosed."""
    fake = scripted_query([assistant(tool_block("t1", "Bash", {"command": "npm test"}))], delay_after=30)
    adapter = ClaudeCodeSDKAdapter(project_root=str(tmp_path))
    with patch("agent_library.adapters.claude_sdk.query", fake):
        result = adapter.run(RunOptions(prompt="p", timeout=1))
    assert result.success is False
    assert result.error == "Timed out after 1 seconds"
    diagnostics = result.timeout_diagnostics
    assert diagnostics.classification == "Session timeout: exceeded 1s total"
    assert diagnostics.pending_tool_call.name == "Bash"
    assert diagnostics.pending_tool_call.target == "npm test"


def test_thinking_blocks_are_not_content(tmp_path):
    """Thinking is logged, never returned as the answer."""
    fake = scripted_query([
        assistant(SimpleNamespace(thinking="Let me consider...", signature="sig"), text_block("Answer.")),
        result_message(result=""),
    ])
    adapter = ClaudeCodeSDKAdapter(project_root=str(tmp_path))
    with patch("agent_library.adapters.claude_sdk.query", fake):
        result = adapter.run(RunOptions(prompt="p", timeout=30))
    assert result.content == "Answer."


# --- options tests ---


def test_sdk_options_read_only(tmp_path):
    """Read-only runs get the read-only tools and the configured model."""
    adapter = ClaudeCodeSDKAdapter(project_root=str(tmp_path))
    options = RunOptions(prompt="p")
    sdk_options = adapter.build_sdk_options(options, adapter.resolve_allowed_tools(options))
    assert sdk_options.allowed_tools == ["Read", "Glob", "Grep", "WebFetch"]
    assert sdk_options.permission_mode == "bypassPermissions"
    assert sdk_options.model == "sonnet"
    assert str(sdk_options.cwd) == os.path.abspath(str(tmp_path))


def test_sdk_options_write_and_mcp(tmp_path):
    """Write runs add the write tools; MCP servers and max turns are passed through."""
    adapter = ClaudeCodeSDKAdapter(project_root=str(tmp_path))
    options = RunOptions(
        prompt="p",
        allow_write=True,
        max_turns=40,
        mcp_servers={"db": MCPServerConfig(command="npx", args=["db-mcp"])},
    )
    sdk_options = adapter.build_sdk_options(options, adapter.resolve_allowed_tools(options))
    assert sdk_options.allowed_tools == ["Read", "Glob", "Grep", "WebFetch", "Edit", "Write", "Bash"]
    assert sdk_options.max_turns == 40
    assert sdk_options.mcp_servers == {"db": {"command": "npx", "args": ["db-mcp"]}}


def test_sdk_options_write_hooks(tmp_path):
    """Allowed write paths install a PreToolUse hook on the write tools."""
    adapter = ClaudeCodeSDKAdapter(project_root=str(tmp_path))
    options = RunOptions(prompt="p", allow_write=True, allowed_write_paths=["docs/"])
    sdk_options = adapter.build_sdk_options(options, adapter.resolve_allowed_tools(options))
    matchers = sdk_options.hooks["PreToolUse"]
    assert len(matchers) == 1
    assert matchers[0].matcher == "Write|Edit|MultiEdit"


def test_sdk_options_plan_mode_is_read_only(tmp_path):
    """Plan mode runs with the read-only tools even when writes are allowed."""
    adapter = ClaudeCodeSDKAdapter(project_root=str(tmp_path))
    options = RunOptions(prompt="p", plan_mode=True, allow_write=True)
    sdk_options = adapter.build_sdk_options(options, adapter.resolve_allowed_tools(options))
    assert sdk_options.allowed_tools == ["Read", "Glob", "Grep", "WebFetch"]


def test_plan_mode_run_passes_read_only_tools(tmp_path):
    """A plan-mode run hands the SDK no write tools."""
    fake = scripted_query([result_message(result="1. Add the model")])
    adapter = ClaudeCodeSDKAdapter(project_root=str(tmp_path))
    with patch("agent_library.adapters.claude_sdk.query", fake):
        result = adapter.run(RunOptions(prompt="Plan it", plan_mode=True, allow_write=True, timeout=30))
    assert result.content == "1. Add the model"
    assert not {"Edit", "Write", "Bash"} & set(fake.calls[0].allowed_tools)


def test_init_strips_nested_session_marker(monkeypatch):
    """init() removes CLAUDECODE so the SDK can start the CLI."""
    monkeypatch.setenv("CLAUDECODE", "1")
    adapter = ClaudeCodeSDKAdapter()
    adapter.init()
    assert adapter.is_initialized() is True
    assert "CLAUDECODE" not in os.environ


# --- check_write_path tests ---


def test_write_path_allowed_relative():
    """Relative paths under an allowed prefix are allowed."""
    assert check_write_path("src/app.py", ["src/"], "/proj") is None


def test_write_path_allowed_absolute_in_project():
    """Absolute paths inside the project are compared project-relative."""
    assert check_write_path("/proj/docs/plan.md", ["./docs/"], "/proj") is None


def test_write_path_outside_prefix_blocked():
    """Paths outside every prefix are blocked with a reason."""
    reason = check_write_path("package.json", ["src/", "docs/"], "/proj")
    assert reason == (
        "Write blocked: package.json is outside allowed paths (src/, docs/). "
        "Only write to the allowed directories."
    )


def test_write_path_outside_project_blocked():
    """Absolute paths outside the project are always blocked."""
    assert check_write_path("/etc/hosts", ["src/"], "/proj") is not None
    assert check_write_path("/project2/src/a.py", ["src/"], "/proj") is not None


def test_write_path_escape_blocked():
    """Relative paths that climb out of the project are blocked."""
    assert check_write_path("../other/src/a.py", ["src/"], "/proj") is not None
    assert check_write_path("src/../../x.py", ["src/"], "/proj") is not None


def test_write_path_empty_allowed():
    """Tool calls without a file path are not restricted."""
    assert check_write_path("", ["src/"], "/proj") is None


# --- build_write_path_hooks tests ---


def test_no_hooks_without_paths():
    """No restriction, no hooks."""
    assert build_write_path_hooks(None, "/proj") is None
    assert build_write_path_hooks([], "/proj") is None


def test_hook_denies_outside_write():
    """The hook returns a deny decision for a blocked write."""
    hooks = build_write_path_hooks(["src/"], "/proj")
    hook = hooks["PreToolUse"][0].hooks[0]
    output = asyncio.run(hook({"tool_name": "Write", "tool_input": {"file_path": "/proj/README.md"}}, "t1", None))
    decision = output["hookSpecificOutput"]
    assert decision["hookEventName"] == "PreToolUse"
    assert decision["permissionDecision"] == "deny"
    assert "README.md" in decision["permissionDecisionReason"]


def test_hook_allows_inside_write():
    """Allowed writes get an empty hook response."""
    hooks = build_write_path_hooks(["src/"], "/proj")
    hook = hooks["PreToolUse"][0].hooks[0]
    assert asyncio.run(hook({"tool_name": "Edit", "tool_input": {"file_path": "src/app.py"}}, "t1", None)) == {}
