"""
Incremental decoder for newline-delimited JSON agent output.

Each CLI prints one JSON event per line, sometimes interleaved with plain-text
banners, and the bytes arrive in arbitrary chunks. JsonLineParser buffers the
trailing partial line, decodes complete lines and hands every JSON object to a
provider-specific translate function that returns normalized StreamEvents.

Copyright (c) 2025 Martin Bechard [martin.bechard@DevConsult.ca]
"""

import json
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from agent_library.console import verbose_log
from agent_library.models import AgentUsage

# Normalized event types
EVENT_TEXT = "text"
EVENT_TOOL_USE = "tool_use"
EVENT_TOOL_RESULT = "tool_result"
EVENT_RESULT = "result"
EVENT_ERROR = "error"


@dataclass
class StreamEvent:
    """A provider event translated into the common shape.

    path is set on tool_use events that read a file, so the caller can track
    files examined. files and tool_calls are only set on result events from
    providers that report them.
    """
    type: str
    text: str = ""
    tool_name: str = ""
    tool_id: str = ""
    tool_input: dict = field(default_factory=dict)
    path: str = ""
    result: Optional[str] = None
    usage: Optional[AgentUsage] = None
    files: list[str] = field(default_factory=list)
    tool_calls: Optional[int] = None
    raw: Optional[dict] = None


Translator = Callable[[dict], list[StreamEvent]]


class JsonLineParser:
    """Turn a chunked byte stream of JSON lines into ordered StreamEvents.

    Feeding the same stream in one chunk or split at any boundary produces
    the same events in the same order. Never raises.

    feed() and close() may be called from different threads: a reader
    thread can outlive its bounded join when a grandchild process keeps the
    pipe open. Chunks fed after close() are dropped.
    """

    def __init__(self, translate: Translator, on_event: Callable[[StreamEvent], None]) -> None:
        self.translate = translate
        self.on_event = on_event
        self._buffer = ""
        self._closed = False
        self._lock = threading.Lock()

    def feed(self, chunk: str) -> None:
        with self._lock:
            if self._closed:
                verbose_log(f"Dropped {len(chunk)} chars of output received after close", "PARSE")
                return
            self._buffer += chunk
            lines = self._buffer.split("\n")
            # Keep the incomplete last line for the next chunk
            self._buffer = lines.pop()
            for line in lines:
                self._process_line(line)

    def close(self) -> None:
        """Flush whatever is left in the buffer as a final line."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            remaining = self._buffer
            self._buffer = ""
            self._process_line(remaining)

    def _process_line(self, line: str) -> None:
        line = line.strip()
        if not line:
            return
        for event in decode_line(line, self.translate):
            self.on_event(event)


def decode_line(line: str, translate: Translator) -> list[StreamEvent]:
    """Decode one complete line into zero or more events.

    Malformed JSON (a line that starts like JSON but does not parse) is
    dropped. Any other non-JSON line is plain text from the CLI.
    """
    try:
        obj: Any = json.loads(line)
    except (json.JSONDecodeError, ValueError):
        if line.startswith("{") or line.startswith("["):
            return []
        return [StreamEvent(type=EVENT_TEXT, text=line)]

    if not isinstance(obj, dict):
        return []
    try:
        return translate(obj)
    except Exception as e:
        verbose_log(f"Dropped untranslatable event: {e}", "PARSE")
        return []


def decode_output(output: str, translate: Translator) -> list[StreamEvent]:
    """Decode a complete captured output into events."""
    events: list[StreamEvent] = []
    parser = JsonLineParser(translate, events.append)
    parser.feed(output)
    parser.close()
    return events


def scan_for_object(output: str, predicate: Callable[[dict], bool]) -> Optional[dict]:
    """Return the first JSON-object line in output that satisfies predicate."""
    for line in output.split("\n"):
        line = line.strip()
        if not line.startswith("{"):
            continue
        try:
            obj = json.loads(line)
        except (json.JSONDecodeError, ValueError):
            continue
        if isinstance(obj, dict) and predicate(obj):
            return obj
    return None
