"""
Cursor CLI adapter (cursor-agent).

Prerequisites:
- Install: curl https://cursor.com/install -fsS | bash
- Login: cursor-agent login

CLI reference:
- cursor-agent "<prompt>" -p                  print mode, non-interactive
- --output-format json|stream-json            output format
- --stream-partial-output                     stream text as it is generated
- --model <model>                             model name
- --force                                     allow write operations
- --mode=plan                                 read-only planning mode
- --approve-mcps                              auto-approve MCP servers

MCP servers are configured in .cursor/mcp.json and enabled with
"cursor-agent mcp enable <name>".

Copyright (c) 2025 Martin Bechard [martin.bechard@DevConsult.ca]
"""

import json
from pathlib import Path
from typing import Optional

from agent_library.adapters.base import AUTH_PROBE_TIMEOUT_SECONDS, CLIAgentAdapter
from agent_library.console import print_warning, verbose_log
from agent_library.errors import InitializationError
from agent_library.models import CURSOR, Capabilities, MCPServerConfig, RunOptions
from agent_library.stream import (
    EVENT_ERROR,
    EVENT_RESULT,
    EVENT_TEXT,
    EVENT_TOOL_RESULT,
    EVENT_TOOL_USE,
    StreamEvent,
)

MCP_CONFIG_PATH = ".cursor/mcp.json"
MCP_ENABLE_TIMEOUT_SECONDS = 10
READ_FILE_TOOL = "read_file"


class CursorAdapter(CLIAgentAdapter):
    """Runs prompts through cursor-agent in print mode."""

    name = CURSOR
    cli_command = "cursor-agent"
    install_hint = "Run: curl https://cursor.com/install -fsS | bash"
    binary_search_paths = ("~/.local/bin/cursor-agent", "/usr/local/bin/cursor-agent")
    capabilities = Capabilities(
        streaming=True,
        file_read=True,
        file_write=True,
        web_fetch=False,
        custom_tools=True,
        timeout=True,
        plan_mode=True,
    )
    # Cursor has no tool allowlist flag; these only describe the run in the log
    read_only_tools = ["read"]
    write_tools = ["write", "edit", "bash"]

    def check_authentication(self) -> None:
        result = self.execute(["status"], timeout=AUTH_PROBE_TIMEOUT_SECONDS, suppress_stderr=True)
        if "not logged in" in result.stdout.lower():
            raise InitializationError(self.name, "Not authenticated. Run: cursor-agent login")
        if result.exit_code != 0:
            verbose_log(f"cursor-agent status unavailable (exit code {result.exit_code}), continuing", "INIT")

    def build_args(self, prompt: str, options: RunOptions, allowed_tools: list[str]) -> list[str]:
        args = [prompt, "-p", "--model", self.model]
        args.extend(["--output-format", "stream-json" if options.stream else "json"])
        if options.stream:
            args.append("--stream-partial-output")
        # Plan mode is read-only and takes precedence over allow_write
        if options.plan_mode:
            args.append("--mode=plan")
        elif options.allow_write:
            args.append("--force")
        if options.mcp_servers:
            args.append("--approve-mcps")
        return args

    def prepare_run(self, options: RunOptions) -> None:
        if options.mcp_servers:
            self.setup_mcp_servers(options.mcp_servers)

    def translate_event(self, obj: dict) -> list[StreamEvent]:
        event_type = obj.get("type")

        # --stream-partial-output wraps text and tool calls in assistant messages
        if event_type == "assistant":
            events = []
            for block in (obj.get("message") or {}).get("content") or []:
                if block.get("type") == "text" and block.get("text"):
                    events.append(StreamEvent(type=EVENT_TEXT, text=block["text"], raw=obj))
                elif block.get("type") == "tool_use" and block.get("name"):
                    events.append(self._tool_use_event(block.get("name"), block.get("input") or {}, block.get("id", ""), obj))
            return events

        if event_type == "text" and obj.get("content"):
            return [StreamEvent(type=EVENT_TEXT, text=obj["content"], raw=obj)]
        if event_type == "tool_use":
            tool_input = dict(obj.get("input") or {})
            if obj.get("path"):
                tool_input.setdefault("path", obj["path"])
            return [self._tool_use_event(obj.get("name") or "unknown", tool_input, obj.get("tool_call_id", ""), obj)]
        if event_type == "tool_result":
            return [StreamEvent(type=EVENT_TOOL_RESULT, tool_id=obj.get("tool_call_id", ""), raw=obj)]
        if event_type == "error":
            return [StreamEvent(type=EVENT_ERROR, text=str(obj.get("error") or obj.get("content") or ""), raw=obj)]
        if event_type == "result" or (event_type is None and ("result" in obj or "content" in obj)):
            return [self._result_event(obj)]
        return []

    def _tool_use_event(self, name: str, tool_input: dict, tool_id: str, raw: dict) -> StreamEvent:
        path = str(tool_input.get("path") or "") if name == READ_FILE_TOOL else ""
        return StreamEvent(
            type=EVENT_TOOL_USE,
            tool_name=name,
            tool_id=tool_id or "",
            tool_input=tool_input,
            path=path,
            raw=raw,
        )

    def _result_event(self, obj: dict) -> StreamEvent:
        content = obj.get("result") or obj.get("content")
        files = [*(obj.get("files_modified") or []), *(obj.get("files_examined") or [])]
        tool_calls = obj.get("tool_calls_count")
        return StreamEvent(
            type=EVENT_RESULT,
            result=content if isinstance(content, str) else None,
            usage=self.usage_from_object(obj),
            files=[str(f) for f in files],
            tool_calls=int(tool_calls) if tool_calls is not None else None,
            raw=obj,
        )

    # ─── MCP servers ─────────────────────────────────────────────────

    def setup_mcp_servers(self, mcp_servers: dict[str, MCPServerConfig]) -> None:
        """Merge servers into .cursor/mcp.json and enable each one.

        Existing entries are kept; an unreadable config file is replaced.
        """
        config_path = Path(self.project_root) / MCP_CONFIG_PATH
        config_path.parent.mkdir(parents=True, exist_ok=True)

        existing: dict = {}
        if config_path.exists():
            try:
                existing = json.loads(config_path.read_text())
            except (OSError, ValueError):
                existing = {}
            if not isinstance(existing, dict):
                existing = {}

        servers = dict(existing.get("mcpServers") or {})
        for name, server in mcp_servers.items():
            servers[name] = server.to_dict() if isinstance(server, MCPServerConfig) else dict(server)
        existing["mcpServers"] = servers
        config_path.write_text(json.dumps(existing, indent=2))
        verbose_log(f"Wrote {len(mcp_servers)} MCP server(s) to {config_path}", "MCP")

        for name in mcp_servers:
            self.enable_mcp_server(name)

    def enable_mcp_server(self, name: str) -> Optional[str]:
        """Enable one MCP server. Failures are reported as a warning, never raised."""
        result = self.execute(["mcp", "enable", name], timeout=MCP_ENABLE_TIMEOUT_SECONDS, suppress_stderr=True)
        if result.exit_code != 0 and "already" not in result.stderr.lower():
            message = f"Warning: Failed to enable MCP server '{name}': {result.stderr.strip()}"
            print_warning(message)
            return message
        return None
