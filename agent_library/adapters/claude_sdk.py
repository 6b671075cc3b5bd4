"""
Claude Code adapter built on claude-agent-sdk.

The SDK drives the claude CLI itself and yields typed messages; this adapter
runs the async query on a private event loop so run() keeps the same blocking
contract as the CLI adapters. The timeout cancels the query task, and the
SDK tears down its own subprocess on cancellation.

Write restrictions (RunOptions.allowed_write_paths) are enforced with a
PreToolUse hook on the write tools, which the CLI evaluates before running
the tool even in bypassPermissions mode.

Copyright (c) 2025 Martin Bechard [martin.bechard@DevConsult.ca]
"""

import asyncio
import os
from typing import Any, Optional

from claude_agent_sdk import ClaudeAgentOptions, HookMatcher, query

from agent_library import agent_log
from agent_library.adapters.base import AgentLibraryAdapter, RunState
from agent_library.console import Spinner, print_tool_progress, verbose_log
from agent_library.models import CLAUDE_CODE_SDK, Capabilities, MCPServerConfig, RunOptions, RunResult
from agent_library.process import STRIPPED_ENV_VARS
from agent_library.stream import EVENT_RESULT, EVENT_TEXT, EVENT_TOOL_RESULT, EVENT_TOOL_USE, StreamEvent
from agent_library.usage import build_usage

PERMISSION_MODE = "bypassPermissions"
WRITE_TOOL_MATCHER = "Write|Edit|MultiEdit"
READ_TOOL = "Read"


def check_write_path(file_path: str, allowed_write_paths: list[str], project_root: str) -> Optional[str]:
    """Decide whether a write to file_path is allowed.

    Paths are compared project-relative. Absolute paths outside the project
    and relative paths escaping it are always denied.

    Returns:
        None if the write is allowed, otherwise the reason it was blocked.
    """
    if not file_path:
        return None
    root = os.path.normpath(project_root)
    normalized = os.path.normpath(file_path)
    if os.path.isabs(normalized):
        if normalized.startswith(root + os.sep):
            relative = normalized[len(root) + 1:]
        else:
            relative = None
    elif normalized == ".." or normalized.startswith(".." + os.sep):
        relative = None
    else:
        relative = normalized

    if relative is not None:
        for prefix in allowed_write_paths:
            clean_prefix = prefix[2:] if prefix.startswith("./") else prefix
            if relative.startswith(clean_prefix):
                return None

    shown = relative if relative is not None else file_path
    return (
        f"Write blocked: {shown} is outside allowed paths ({', '.join(allowed_write_paths)}). "
        f"Only write to the allowed directories."
    )


def build_write_path_hooks(allowed_write_paths: Optional[list[str]], project_root: str) -> Optional[dict]:
    """PreToolUse hooks restricting Write/Edit to the allowed prefixes, or None."""
    if not allowed_write_paths:
        return None

    async def write_path_hook(input_data: dict, tool_use_id: Optional[str], context: Any) -> dict:
        tool_input = input_data.get("tool_input") or {}
        reason = check_write_path(str(tool_input.get("file_path") or ""), allowed_write_paths, project_root)
        if reason is None:
            return {}
        verbose_log(reason, "HOOK")
        return {
            "hookSpecificOutput": {
                "hookEventName": "PreToolUse",
                "permissionDecision": "deny",
                "permissionDecisionReason": reason,
            }
        }

    return {"PreToolUse": [HookMatcher(matcher=WRITE_TOOL_MATCHER, hooks=[write_path_hook])]}


class ClaudeCodeSDKAdapter(AgentLibraryAdapter):
    """Runs prompts through the Claude Agent SDK."""

    name = CLAUDE_CODE_SDK
    capabilities = Capabilities(
        streaming=True,
        file_read=True,
        file_write=True,
        web_fetch=True,
        custom_tools=True,
        timeout=True,
        # Plan mode is emulated with a read-only tool allowlist
        plan_mode=True,
    )
    read_only_tools = ["Read", "Glob", "Grep", "WebFetch"]
    write_tools = ["Edit", "Write", "Bash"]

    def init(self) -> None:
        # The claude CLI refuses to start inside another Claude Code session
        for var in STRIPPED_ENV_VARS:
            os.environ.pop(var, None)
        self._initialized = True

    def build_sdk_options(self, options: RunOptions, allowed_tools: list[str]) -> ClaudeAgentOptions:
        kwargs: dict[str, Any] = dict(
            allowed_tools=allowed_tools,
            permission_mode=PERMISSION_MODE,
            cwd=self.project_root,
        )
        if self.model:
            kwargs["model"] = self.model
        max_turns = self.resolve_max_turns(options)
        if max_turns is not None:
            kwargs["max_turns"] = max_turns
        if options.output_format:
            kwargs["output_format"] = options.output_format.to_dict()
        if options.mcp_servers:
            kwargs["mcp_servers"] = {
                name: server.to_dict() if isinstance(server, MCPServerConfig) else dict(server)
                for name, server in options.mcp_servers.items()
            }
        hooks = build_write_path_hooks(options.allowed_write_paths, self.project_root)
        if hooks:
            kwargs["hooks"] = hooks
        return ClaudeAgentOptions(**kwargs)

    def run(self, options: RunOptions) -> RunResult:
        state = self.new_run_state(options)
        timeout = self.resolve_timeout(options)
        spinner: Optional[Spinner] = None
        try:
            allowed_tools = self.resolve_allowed_tools(options)
            sdk_options = self.build_sdk_options(options, allowed_tools)
            if state.log_ctx:
                agent_log.log_prompt(state.log_ctx, options.prompt, model=self.model, tools=allowed_tools, timeout=timeout)
            if not options.stream:
                spinner = Spinner(options.progress_label, timeout, lambda: state.tool_call_count)
                spinner.start()
            try:
                timed_out = asyncio.run(self._run_query(options, sdk_options, state, timeout))
            finally:
                if spinner:
                    spinner.stop()
            self.log_usage(state)
            if timed_out:
                return self.timeout_result(state, timeout)
            if state.errors and not state.content:
                return self.error_result(state, "; ".join(state.errors))
            return self.success_result(state, options, state.content)
        except Exception as e:
            verbose_log(f"{self.name} run failed: {type(e).__name__}: {e}", "ERROR")
            return self.error_result(state, str(e) or type(e).__name__)

    async def _run_query(self, options: RunOptions, sdk_options: ClaudeAgentOptions, state: RunState, timeout: int) -> bool:
        """Consume the query, cancelling it at the deadline. Returns True on timeout."""
        task = asyncio.ensure_future(self._consume(options, sdk_options, state))
        done, _ = await asyncio.wait({task}, timeout=timeout if timeout > 0 else None)
        if task in done:
            task.result()
            return False
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            verbose_log(f"Error while cancelling query: {e}", "ERROR")
        return True

    async def _consume(self, options: RunOptions, sdk_options: ClaudeAgentOptions, state: RunState) -> None:
        async def prompt_stream():
            # Streaming input keeps stdin open so hook callbacks can be answered
            yield {"type": "user", "message": {"role": "user", "content": options.prompt}}

        async for message in query(prompt=prompt_stream(), options=sdk_options):
            self.handle_message(message, state, options)

    def handle_message(self, message: Any, state: RunState, options: RunOptions) -> None:
        """Apply one SDK message to the run state.

        Messages are matched by shape rather than class so that assistant,
        user (tool result) and result messages are handled the same way
        across SDK versions.
        """
        content = getattr(message, "content", None)
        if isinstance(content, list):
            texts = []
            for block in content:
                if hasattr(block, "thinking"):
                    if state.log_ctx and block.thinking:
                        agent_log.log_thinking(state.log_ctx, str(block.thinking))
                elif hasattr(block, "text"):
                    texts.append(block.text)
                elif hasattr(block, "name") and hasattr(block, "input"):
                    if texts:
                        self._emit_text(state, "\n".join(texts))
                        texts = []
                    tool_input = block.input if isinstance(block.input, dict) else {}
                    path = str(tool_input.get("file_path") or "") if block.name == READ_TOOL else ""
                    state.handle_event(StreamEvent(
                        type=EVENT_TOOL_USE,
                        tool_name=block.name,
                        tool_id=str(getattr(block, "id", "")),
                        tool_input=tool_input,
                        path=path,
                    ))
                    if options.stream and options.verbose:
                        print_tool_progress(state.elapsed(), block.name)
                elif hasattr(block, "tool_use_id"):
                    state.handle_event(StreamEvent(type=EVENT_TOOL_RESULT, tool_id=str(block.tool_use_id)))
            if texts:
                self._emit_text(state, "\n".join(texts))

        if hasattr(message, "result") and hasattr(message, "usage"):
            self._handle_result(message, state)

    def _emit_text(self, state: RunState, text: str) -> None:
        if not text:
            return
        # Each assistant message is complete, so it replaces the running answer
        state.text = ""
        state.handle_event(StreamEvent(type=EVENT_TEXT, text=text))
        state.flush()

    def _handle_result(self, message: Any, state: RunState) -> None:
        usage = None
        usage_data = getattr(message, "usage", None)
        if isinstance(usage_data, dict):
            usage = build_usage(
                self.model,
                input_tokens=usage_data.get("input_tokens") or 0,
                output_tokens=usage_data.get("output_tokens") or 0,
                cache_read_input_tokens=usage_data.get("cache_read_input_tokens") or 0,
                cache_creation_input_tokens=usage_data.get("cache_creation_input_tokens") or 0,
                reported_cost=getattr(message, "total_cost_usd", None),
            )
        is_error = bool(getattr(message, "is_error", False))
        result_text = message.result if isinstance(message.result, str) else None
        if is_error:
            state.errors.append(result_text or f"Agent run ended with {getattr(message, 'subtype', 'error')}")
            result_text = None
        structured = getattr(message, "structured_output", None)
        if isinstance(structured, dict):
            state.structured_output = structured
        state.handle_event(StreamEvent(type=EVENT_RESULT, result=result_text, usage=usage))
