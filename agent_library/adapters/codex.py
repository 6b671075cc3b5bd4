"""
OpenAI Codex CLI adapter (@openai/codex).

Prerequisites:
- Install: npm install -g @openai/codex (or brew install --cask codex)
- Login: codex login

CLI reference:
- codex exec "<prompt>"                  non-interactive run
- --json                                 newline-delimited JSON events
- --sandbox read-only|workspace-write    file access
- --model <model>                        model name

Events:

    {"type":"message","role":"assistant","content":"..."}
    {"type":"tool_use","tool":"read_file","tool_id":"id","path":"..."}
    {"type":"tool_result","status":"success"}
    {"type":"turn.completed","usage":{"input_tokens":100,"output_tokens":50}}
    {"type":"result","result":"...","usage":{"input_tokens":100,"output_tokens":50}}

Copyright (c) 2025 Martin Bechard [martin.bechard@DevConsult.ca]
"""

from agent_library.adapters.base import AUTH_PROBE_TIMEOUT_SECONDS, CLIAgentAdapter
from agent_library.errors import InitializationError
from agent_library.models import OPENAI_CODEX, Capabilities, RunOptions
from agent_library.stream import (
    EVENT_ERROR,
    EVENT_RESULT,
    EVENT_TEXT,
    EVENT_TOOL_RESULT,
    EVENT_TOOL_USE,
    StreamEvent,
)

SANDBOX_READ_ONLY = "read-only"
SANDBOX_WORKSPACE_WRITE = "workspace-write"
TURN_COMPLETED_EVENTS = ("turn.completed", "turn_completed")
NOT_LOGGED_IN_MARKERS = ("not logged in", "please login")
AUTH_HINT = "Not authenticated. Run: codex login\nRequires ChatGPT Plus/Pro subscription or API key"


class CodexAdapter(CLIAgentAdapter):
    """Runs prompts through codex exec."""

    name = OPENAI_CODEX
    cli_command = "codex"
    install_hint = "Run: npm install -g @openai/codex"
    capabilities = Capabilities(
        streaming=True,
        file_read=True,
        file_write=True,
        web_fetch=False,
        custom_tools=False,
        timeout=True,
    )
    # Access is controlled by the sandbox mode, not a tool list
    read_only_tools = ["read"]
    write_tools = ["write", "edit", "shell"]

    def check_authentication(self) -> None:
        result = self.execute(["login", "status"], timeout=AUTH_PROBE_TIMEOUT_SECONDS, suppress_stderr=True)
        output = (result.stdout + result.stderr).lower()
        if any(marker in output for marker in NOT_LOGGED_IN_MARKERS):
            raise InitializationError(self.name, AUTH_HINT)
        if result.exit_code != 0 and "logged in" not in output:
            raise InitializationError(self.name, AUTH_HINT)

    def build_args(self, prompt: str, options: RunOptions, allowed_tools: list[str]) -> list[str]:
        writable = options.allow_write and not options.plan_mode
        sandbox = SANDBOX_WORKSPACE_WRITE if writable else SANDBOX_READ_ONLY
        return ["exec", prompt, "--json", "--sandbox", sandbox, "--model", self.model]

    def translate_event(self, obj: dict) -> list[StreamEvent]:
        event_type = obj.get("type")
        if event_type in ("message", "text"):
            if obj.get("role") in (None, "assistant") and obj.get("content"):
                return [StreamEvent(type=EVENT_TEXT, text=obj["content"], raw=obj)]
            return []
        if event_type == "tool_use":
            tool_input = dict(obj.get("input") or {})
            path = obj.get("path")
            if isinstance(path, str) and path:
                tool_input.setdefault("path", path)
            return [StreamEvent(
                type=EVENT_TOOL_USE,
                tool_name=obj.get("tool") or "unknown",
                tool_id=obj.get("tool_id") or "",
                tool_input=tool_input,
                path=path if isinstance(path, str) else "",
                raw=obj,
            )]
        if event_type == "tool_result":
            return [StreamEvent(type=EVENT_TOOL_RESULT, tool_id=obj.get("tool_id") or "", raw=obj)]
        if event_type == "error":
            return [StreamEvent(type=EVENT_ERROR, text=str(obj.get("error") or obj.get("message") or ""), raw=obj)]
        if event_type == "result" or (event_type is None and "result" in obj):
            result = obj.get("result")
            return [StreamEvent(
                type=EVENT_RESULT,
                result=result if isinstance(result, str) and result else None,
                usage=self.usage_from_object(obj),
                raw=obj,
            )]
        # Usage also arrives on turn completion. Progress events that carry
        # usage leave the pending tool call open.
        if event_type in TURN_COMPLETED_EVENTS and isinstance(obj.get("usage"), dict):
            return [StreamEvent(type=EVENT_RESULT, usage=self.usage_from_object(obj), raw=obj)]
        return []
