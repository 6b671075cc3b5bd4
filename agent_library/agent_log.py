"""
Markdown execution log for agent runs.

Each log context writes to agent-logs/<log_id>.md. Adapters pick up the
current context when a run starts and append prompt, tool call, response,
thinking, token usage and error entries as the run progresses. Nothing is
written when no context is set.

Copyright (c) 2025 Martin Bechard [martin.bechard@DevConsult.ca]
"""

import json
import os
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional

from agent_library.console import verbose_log

AGENT_LOG_DIR = "agent-logs"
MAX_TOOL_INPUT_LENGTH = 2000

_write_lock = threading.Lock()
_current_context: Optional["LogContext"] = None


@dataclass
class LogContext:
    """Identifies the log file and the phase being recorded."""
    log_id: str
    title: str = ""
    workflow: str = ""
    phase: str = ""
    mode: str = ""
    library: str = ""
    model: str = ""
    start_time: float = field(default_factory=time.time)
    log_dir: str = AGENT_LOG_DIR

    @property
    def log_path(self) -> Path:
        return Path(self.log_dir) / f"{self.log_id}.md"


def set_log_context(ctx: Optional[LogContext]) -> None:
    global _current_context
    _current_context = ctx


def get_log_context() -> Optional[LogContext]:
    return _current_context


@contextmanager
def log_context(ctx: LogContext) -> Iterator[LogContext]:
    """Make ctx the current log context for the duration of the block."""
    previous = get_log_context()
    set_log_context(ctx)
    try:
        yield ctx
    finally:
        set_log_context(previous)


def _format_time() -> str:
    return datetime.now().strftime("%H:%M:%S")


def _format_duration(seconds: float) -> str:
    seconds = int(seconds)
    if seconds < 60:
        return f"{seconds}s"
    return f"{seconds // 60}m {seconds % 60}s"


def _escape_code_block(content: str) -> str:
    # Nested fences would close the surrounding block early
    return content.replace("```", "````")


def _append(ctx: LogContext, content: str) -> None:
    try:
        with _write_lock:
            ctx.log_path.parent.mkdir(parents=True, exist_ok=True)
            new_file = not ctx.log_path.exists()
            with open(ctx.log_path, "a") as f:
                if new_file:
                    f.write(f"# Agent Log: {ctx.title or ctx.log_id}\n\n")
                    f.write(f"**Created:** {datetime.now().isoformat()}\n\n---\n\n")
                f.write(content)
    except OSError as e:
        verbose_log(f"Could not write agent log {ctx.log_path}: {e}", "LOG")


def log_execution_start(ctx: LogContext) -> None:
    library_info = ""
    if ctx.library:
        library_info = f"**Library:** {ctx.library}"
        library_info += f" | **Model:** {ctx.model}\n" if ctx.model else "\n"
    elif ctx.model:
        library_info = f"**Model:** {ctx.model}\n"
    mode_info = f"**Mode:** {ctx.mode}\n" if ctx.mode else ""
    _append(
        ctx,
        f"## [LOG:PHASE_START] Phase: {ctx.phase}\n\n"
        f"**Agent:** {ctx.workflow}\n"
        f"**Working Directory:** {os.getcwd()}\n"
        f"{mode_info}{library_info}"
        f"**Started:** {datetime.fromtimestamp(ctx.start_time).strftime('%H:%M:%S')}\n\n",
    )


def log_prompt(
    ctx: LogContext,
    prompt: str,
    model: str = "",
    tools: Optional[list[str]] = None,
    timeout: Optional[int] = None,
) -> None:
    tools_list = ", ".join(tools) if tools else "None"
    timeout_str = f"{timeout}s" if timeout else "None"
    _append(
        ctx,
        f"### [LOG:PROMPT] Prompt\n\n"
        f"**Model:** {model or 'Unknown'} | **Tools:** {tools_list} | **Timeout:** {timeout_str}\n\n"
        f"```\n{_escape_code_block(prompt)}\n```\n\n"
        f"### [LOG:EXECUTION_START] Agent Execution\n\n",
    )


def log_tool_call(ctx: LogContext, tool_id: str, tool_name: str, tool_input: object) -> None:
    if isinstance(tool_input, str):
        input_str = tool_input
    else:
        input_str = json.dumps(tool_input, indent=2, default=str)
    if len(input_str) > MAX_TOOL_INPUT_LENGTH:
        input_str = input_str[:MAX_TOOL_INPUT_LENGTH] + "\n... (truncated)"
    _append(
        ctx,
        f"**[{_format_time()}]** [LOG:TOOL_CALL] 🔧 Tool: {tool_name} (ID: {tool_id})\n\n"
        f"```json\n{_escape_code_block(input_str)}\n```\n\n",
    )


def log_thinking(ctx: LogContext, thinking: str) -> None:
    quoted = "\n".join(f"> {line}" for line in thinking.split("\n"))
    _append(ctx, f"**[{_format_time()}]** [LOG:THINKING] 💭 Thinking:\n\n{quoted}\n\n")


def log_text_response(ctx: LogContext, text: str) -> None:
    _append(ctx, f"**[{_format_time()}]** [LOG:RESPONSE] 📝 Response:\n\n{text}\n\n")


def log_error(ctx: LogContext, error: object, is_fatal: bool = False) -> None:
    marker = "[LOG:FATAL]" if is_fatal else "[LOG:ERROR]"
    _append(ctx, f"**[{_format_time()}]** {marker} ❌ Error:\n\n```\n{error}\n```\n\n")


def log_token_usage(ctx: LogContext, input_tokens: int, output_tokens: int, cost: Optional[float] = None) -> None:
    cost_str = f" | **Cost:** ${cost:.4f}" if cost else ""
    _append(
        ctx,
        f"**[{_format_time()}]** [LOG:TOKENS] 📊 Tokens: {input_tokens} in / {output_tokens} out "
        f"({input_tokens + output_tokens} total){cost_str}\n\n",
    )


def log_execution_end(
    ctx: LogContext,
    success: bool,
    tool_calls: int = 0,
    total_tokens: int = 0,
    total_cost: float = 0.0,
) -> None:
    status = "✅ Success" if success else "❌ Failed"
    _append(
        ctx,
        f"### [LOG:EXECUTION_END] Agent Execution\n\n---\n\n"
        f"## [LOG:PHASE_END] Phase: {ctx.phase}\n\n"
        f"**Duration:** {_format_duration(time.time() - ctx.start_time)}\n"
        f"**Tool calls:** {tool_calls}\n"
        f"**Tokens:** {total_tokens}\n"
        f"**Cost:** ${total_cost:.4f}\n"
        f"**Status:** {status}\n\n",
    )
