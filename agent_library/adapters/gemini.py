"""
Gemini CLI adapter (@google/gemini-cli).

Prerequisites:
- Install: npm install -g @google/gemini-cli
- Authenticate: set GEMINI_API_KEY or run `gemini` once for interactive setup

Output (--output-format json) is a single document:

    {"response": "...", "stats": {"models": {"<model>": {"tokens": {"input": 8060, "output": 1}}},
                                   "tools": {"totalCalls": 5}}}

Streaming output (--output-format stream-json) is one event per line:

    {"type":"init","session_id":"uuid","model":"auto-gemini-2.5"}
    {"type":"message","role":"assistant","content":"...","delta":true}
    {"type":"tool_use","tool_name":"read_file","tool_id":"id","parameters":{"path":"..."}}
    {"type":"tool_result","tool_id":"id","status":"success","output":"..."}
    {"type":"result","status":"success","stats":{...}}

Copyright (c) 2025 Martin Bechard [martin.bechard@DevConsult.ca]
"""

from typing import Optional

from agent_library.adapters.base import AUTH_PROBE_TIMEOUT_SECONDS, CLIAgentAdapter
from agent_library.console import verbose_log
from agent_library.errors import InitializationError
from agent_library.models import GEMINI, AgentUsage, Capabilities, RunOptions
from agent_library.stream import (
    EVENT_ERROR,
    EVENT_RESULT,
    EVENT_TEXT,
    EVENT_TOOL_RESULT,
    EVENT_TOOL_USE,
    StreamEvent,
)
from agent_library.usage import parse_model_stats

AUTH_ERROR_MARKERS = ("api key", "authentication", "unauthorized", "not authenticated")
AUTH_HINT = (
    "Not authenticated. Set GEMINI_API_KEY environment variable or run: gemini (interactive setup)\n"
    "Get API key from: https://aistudio.google.com/apikey"
)


class GeminiAdapter(CLIAgentAdapter):
    """Runs prompts through the gemini CLI."""

    name = GEMINI
    cli_command = "gemini"
    install_hint = "Run: npm install -g @google/gemini-cli"
    capabilities = Capabilities(
        streaming=True,
        file_read=True,
        file_write=True,
        web_fetch=False,
        custom_tools=False,
        timeout=True,
    )
    read_only_tools = ["ReadFile", "FindFiles", "SearchText", "ReadManyFiles", "GlobTool", "GrepTool"]
    # --yolo enables every tool; write access has no finer-grained list
    write_tools = ["WriteFile", "Edit", "Shell"]

    def check_authentication(self) -> None:
        result = self.execute(["--help"], timeout=AUTH_PROBE_TIMEOUT_SECONDS, suppress_stderr=True)
        stderr = result.stderr.lower()
        if any(marker in stderr for marker in AUTH_ERROR_MARKERS):
            raise InitializationError(self.name, AUTH_HINT)
        if result.exit_code != 0:
            verbose_log(f"gemini --help failed (exit code {result.exit_code}), continuing", "INIT")

    def build_args(self, prompt: str, options: RunOptions, allowed_tools: list[str]) -> list[str]:
        args = [prompt, "--output-format", "stream-json" if options.stream else "json"]
        if self.model:
            args.extend(["--model", self.model])
        if options.allow_write and not options.plan_mode and options.allowed_tools is None:
            args.append("--yolo")
        else:
            args.extend(["--allowed-tools", ",".join(allowed_tools)])
        return args

    def usage_from_object(self, obj: dict) -> Optional[AgentUsage]:
        return parse_model_stats(obj.get("stats") or {}, self.model)

    def translate_event(self, obj: dict) -> list[StreamEvent]:
        event_type = obj.get("type")
        if event_type in ("message", "text"):
            if obj.get("role") in (None, "assistant") and obj.get("content"):
                return [StreamEvent(type=EVENT_TEXT, text=obj["content"], raw=obj)]
            return []
        if event_type == "tool_use":
            parameters = obj.get("parameters") or {}
            return [StreamEvent(
                type=EVENT_TOOL_USE,
                tool_name=obj.get("tool_name") or "unknown",
                tool_id=obj.get("tool_id") or "",
                tool_input=parameters,
                path=str(parameters.get("path") or ""),
                raw=obj,
            )]
        if event_type == "tool_result":
            return [StreamEvent(type=EVENT_TOOL_RESULT, tool_id=obj.get("tool_id") or "", raw=obj)]
        if event_type == "error":
            return [StreamEvent(type=EVENT_ERROR, text=str(obj.get("error") or obj.get("message") or ""), raw=obj)]
        # The non-streaming document has no type, only a response
        if event_type == "result" or (event_type is None and "response" in obj):
            stats = obj.get("stats") or {}
            tool_calls = (stats.get("tools") or {}).get("totalCalls")
            return [StreamEvent(
                type=EVENT_RESULT,
                result=obj.get("response") or None,
                usage=self.usage_from_object(obj),
                tool_calls=int(tool_calls) if tool_calls is not None else None,
                raw=obj,
            )]
        return []
