"""
Console output for agent runs: timestamped log lines, colored status lines
and the progress spinner shown while a non-streaming run is in flight.

Copyright (c) 2025 Martin Bechard [martin.bechard@DevConsult.ca]
"""

import sys
import threading
import time
from datetime import datetime
from typing import Callable, Optional

# Set by the CLI --verbose flag
VERBOSE = False

SPINNER_FRAMES = ["⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏"]
SPINNER_INTERVAL_SECONDS = 0.1

GREEN = "\x1b[32m"
RED = "\x1b[31m"
YELLOW = "\x1b[33m"
CYAN = "\x1b[36m"
GRAY = "\x1b[90m"
RESET = "\x1b[0m"
CLEAR_LINE = "\x1b[K"


def set_verbose(enabled: bool) -> None:
    global VERBOSE
    VERBOSE = enabled


def log(message: str) -> None:
    """Print a timestamped status message."""
    timestamp = datetime.now().strftime("%H:%M:%S")
    print(f"[{timestamp}] {message}", flush=True)


def verbose_log(message: str, prefix: str = "VERBOSE") -> None:
    """Print a verbose log message if verbose mode is enabled."""
    if VERBOSE:
        timestamp = datetime.now().strftime("%H:%M:%S.%f")[:-3]
        print(f"[{timestamp}] [{prefix}] {message}", flush=True)


def format_usage_info(total_tokens: int, cost_usd: float) -> str:
    return f", {total_tokens:,} tokens, ${cost_usd:.4f}"


def print_success(label: str, duration_seconds: int, tool_calls: int, usage_info: str = "") -> None:
    print(
        f"\r  {GREEN}✓ {label} complete ({duration_seconds}s, {tool_calls} tool calls{usage_info}){RESET}{CLEAR_LINE}",
        flush=True,
    )


def print_failure(message: str) -> None:
    print(f"\r  {RED}✗ {message}{RESET}{CLEAR_LINE}", flush=True)


def print_warning(message: str) -> None:
    print(f"  {YELLOW}⚠ {message}{RESET}", flush=True)


def print_tool_use(elapsed: int, tool_name: str, path: str = "") -> None:
    # Last two path components are enough to identify the file
    target = f" → {'/'.join(path.split('/')[-2:])}" if path else ""
    print(f"  {CYAN}[{elapsed}s] Tool: {tool_name}{target}{RESET}", flush=True)


def print_tool_progress(elapsed: int, tool_name: str) -> None:
    print(f"  {YELLOW}[{elapsed}s] Running {tool_name}...{RESET}", flush=True)


def print_text(text: str) -> None:
    for line in text.split("\n"):
        if line.strip():
            print(f"    {GRAY}{line.strip()}{RESET}", flush=True)


class Spinner:
    """Overwriting progress line redrawn on a background thread.

    The line reads "<frame> <label>... (<elapsed>s/<timeout>s, <n> tools)".
    tool_count is polled so the caller can keep counting on its own thread.
    """

    def __init__(self, label: str, timeout: int, tool_count: Callable[[], int]) -> None:
        self.label = label
        self.timeout = timeout
        self.tool_count = tool_count
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._start_time = 0.0

    def start(self) -> None:
        self._start_time = time.time()
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=1)
            self._thread = None

    def _run(self) -> None:
        frame = 0
        while not self._stop.wait(SPINNER_INTERVAL_SECONDS):
            elapsed = int(time.time() - self._start_time)
            timeout_info = f"/{self.timeout}s" if self.timeout > 0 else ""
            sys.stdout.write(
                f"\r  {SPINNER_FRAMES[frame % len(SPINNER_FRAMES)]} {self.label}... "
                f"({elapsed}s{timeout_info}, {self.tool_count()} tools){CLEAR_LINE}"
            )
            sys.stdout.flush()
            frame += 1
