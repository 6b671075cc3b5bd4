"""
Tool-call tracking and timeout classification.

Copyright (c) 2025 Martin Bechard [martin.bechard@DevConsult.ca]
"""

import os
import time
from collections import deque
from typing import Callable, Optional

from agent_library.models import TimeoutDiagnostics, ToolCallRecord

TOOL_CALL_HISTORY_SIZE = 10
TOOL_HANG_THRESHOLD_SECONDS = 120
API_TIMEOUT_THRESHOLD_SECONDS = 120
MAX_COMMAND_TARGET_LENGTH = 100


def diagnostic_target(tool_input: dict, project_root: str = "") -> str:
    """Summarize what a tool call was acting on: a path, a command or a pattern."""
    if not tool_input:
        return ""
    file_path = tool_input.get("file_path") or tool_input.get("path")
    if file_path:
        return to_project_relative(str(file_path), project_root)
    if tool_input.get("command"):
        return str(tool_input["command"])[:MAX_COMMAND_TARGET_LENGTH]
    if tool_input.get("pattern"):
        return str(tool_input["pattern"])
    return ""


def to_project_relative(path: str, project_root: str) -> str:
    """Normalize a path and strip the project root prefix if it is inside the project.

    The project root itself maps to ".".
    """
    if not path:
        return path
    normalized = os.path.normpath(path)
    if project_root:
        root = os.path.normpath(project_root)
        if normalized == root:
            return "."
        prefix = root.rstrip(os.sep) + os.sep
        if normalized.startswith(prefix):
            return normalized[len(prefix):]
    return normalized


class ToolCallTracker:
    """Records tool activity for one run so a timeout can be explained.

    A call is pending from its tool_use until the next tool result or final
    result. Only the last TOOL_CALL_HISTORY_SIZE calls are kept.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self.clock = clock
        self.history: deque[ToolCallRecord] = deque(maxlen=TOOL_CALL_HISTORY_SIZE)
        self.total_tool_calls = 0
        self.last_tool_call_time: Optional[float] = None
        self.last_tool_response_time: Optional[float] = None
        self.pending_tool_call: Optional[ToolCallRecord] = None

    def record_tool_use(self, name: str, target: str = "", tool_id: str = "") -> ToolCallRecord:
        now = self.clock()
        record = ToolCallRecord(name=name, target=target, timestamp=now, id=tool_id)
        self.history.append(record)
        self.total_tool_calls += 1
        self.last_tool_call_time = now
        self.pending_tool_call = record
        return record

    def record_tool_result(self) -> None:
        self.last_tool_response_time = self.clock()
        self.pending_tool_call = None

    def _ages(self) -> tuple[float, float]:
        now = self.clock()
        since_call = now - self.last_tool_call_time if self.last_tool_call_time is not None else 0
        since_response = now - self.last_tool_response_time if self.last_tool_response_time is not None else 0
        return since_call, since_response

    def classify(self, timeout: int) -> str:
        """Pick the timeout classification, most specific first."""
        since_call, since_response = self._ages()

        if self.pending_tool_call and since_call > TOOL_HANG_THRESHOLD_SECONDS:
            return f"Tool hang: {self.pending_tool_call.name} did not return ({int(since_call)}s)"
        if self.last_tool_response_time is not None and since_response > API_TIMEOUT_THRESHOLD_SECONDS:
            return f"API timeout: no response for {int(since_response)}s after last tool result"
        return f"Session timeout: exceeded {timeout}s total"

    def build_diagnostics(self, timeout: int) -> TimeoutDiagnostics:
        since_call, since_response = self._ages()
        return TimeoutDiagnostics(
            classification=self.classify(timeout),
            last_tool_calls=list(self.history),
            pending_tool_call=self.pending_tool_call,
            total_tool_calls=self.total_tool_calls,
            time_since_last_tool_call=int(since_call),
            time_since_last_response=int(since_response),
        )
