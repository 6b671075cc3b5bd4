"""
Child process execution for the CLI adapters.

Spawns the agent binary in the project root with all three standard streams
piped and stdin closed, collects stdout/stderr on reader threads and enforces
the run timeout with SIGTERM followed by SIGKILL after a grace period.

Copyright (c) 2025 Martin Bechard [martin.bechard@DevConsult.ca]
"""

import codecs
import os
import shutil
import subprocess
import sys
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from agent_library.console import verbose_log

KILL_GRACE_SECONDS = 5
READER_JOIN_TIMEOUT_SECONDS = 5
READ_CHUNK_SIZE = 4096

# Environment variables to strip from child agent processes
# CLAUDECODE is set by Claude Code to detect nested sessions; it must be
# removed so agents can be spawned from within a Claude Code session.
STRIPPED_ENV_VARS = ["CLAUDECODE"]


@dataclass
class ExecutionResult:
    """Aggregated output of one child process."""
    stdout: str
    stderr: str
    exit_code: int
    timed_out: bool = False


class OutputCollector:
    """Collects decoded output from a pipe and tracks stats."""

    def __init__(self):
        self.chunks: list[str] = []
        self.bytes_received = 0

    def add_chunk(self, chunk: str) -> None:
        self.chunks.append(chunk)
        self.bytes_received += len(chunk.encode("utf-8"))

    def get_output(self) -> str:
        return "".join(self.chunks)


def build_child_env(extra: Optional[dict[str, str]] = None) -> dict[str, str]:
    """Build a clean environment for spawning agent child processes."""
    env = os.environ.copy()
    for var in STRIPPED_ENV_VARS:
        env.pop(var, None)
    if extra:
        env.update(extra)
    return env


def resolve_binary(name: str, search_paths: tuple[str, ...] = ()) -> str:
    """Find an agent CLI, checking PATH then known install locations.

    Returns the bare name when nothing is found so the spawn fails later
    with a clear error.
    """
    found = shutil.which(name)
    if found:
        return found
    for search_path in search_paths:
        candidate = os.path.expanduser(search_path)
        if os.path.isfile(candidate) and os.access(candidate, os.X_OK):
            return candidate
    return name


def stream_pipe(
    pipe,
    prefix: str,
    collector: OutputCollector,
    on_chunk: Optional[Callable[[str], None]] = None,
    echo: bool = False,
) -> None:
    """Read a binary pipe until EOF, decoding UTF-8 incrementally.

    Chunks are delivered to on_chunk in arrival order. A multi-byte character
    split across reads is held back by the decoder until it is complete.
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def deliver(text: str) -> None:
        if not text:
            return
        collector.add_chunk(text)
        if echo:
            sys.stderr.write(text)
            sys.stderr.flush()
        if on_chunk:
            try:
                on_chunk(text)
            except Exception as e:
                verbose_log(f"Error handling {prefix} chunk: {e}", "ERROR")

    try:
        while True:
            data = pipe.read1(READ_CHUNK_SIZE)
            if not data:
                break
            deliver(decoder.decode(data))
        deliver(decoder.decode(b"", final=True))
    except (OSError, ValueError) as e:
        verbose_log(f"Error streaming {prefix}: {e}", "ERROR")


class TimeoutGuard:
    """Aborts a process after a deadline: SIGTERM, then SIGKILL after a grace period.

    Fires at most once. cancel() is safe to call whether or not it fired.
    """

    def __init__(self, process: subprocess.Popen, timeout: float) -> None:
        self.process = process
        self.timed_out = False
        self._kill_timer: Optional[threading.Timer] = None
        self._timer = threading.Timer(timeout, self._abort)
        self._timer.daemon = True

    def start(self) -> None:
        self._timer.start()

    def cancel(self) -> None:
        self._timer.cancel()
        if self._kill_timer:
            self._kill_timer.cancel()

    def _abort(self) -> None:
        # The process may have exited just before the timer fired
        if self.process.poll() is not None:
            return
        self.timed_out = True
        verbose_log(f"Timeout reached, sending SIGTERM to pid {self.process.pid}", "EXEC")
        try:
            self.process.terminate()
        except OSError:
            return
        self._kill_timer = threading.Timer(KILL_GRACE_SECONDS, self._kill_if_running)
        self._kill_timer.daemon = True
        self._kill_timer.start()

    def _kill_if_running(self) -> None:
        if self.process.poll() is None:
            verbose_log(f"Process {self.process.pid} ignored SIGTERM, sending SIGKILL", "EXEC")
            try:
                self.process.kill()
            except OSError:
                pass


def execute_command(
    cmd: list[str],
    timeout: float = 0,
    cwd: Optional[str] = None,
    suppress_stderr: bool = False,
    on_stdout: Optional[Callable[[str], None]] = None,
    env: Optional[dict[str, str]] = None,
) -> ExecutionResult:
    """Run a command to completion and return its aggregated output.

    Args:
        cmd: The command and its arguments.
        timeout: Seconds before the process is aborted; 0 disables the timeout.
        cwd: Working directory for the child, defaulting to the current directory.
        suppress_stderr: Do not echo the child's stderr to ours (quiet probes).
        on_stdout: Receives decoded stdout chunks in arrival order.
        env: Child environment, defaulting to build_child_env().

    Returns:
        An ExecutionResult. Spawn failures are reported with exit_code 1 and
        the error message in stderr; this function never raises.
    """
    verbose_log(f"Command: {cmd[0]} ({len(cmd) - 1} args)", "EXEC")
    try:
        process = subprocess.Popen(
            cmd,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=cwd or os.getcwd(),
            env=env if env is not None else build_child_env(),
        )
    except (OSError, ValueError) as e:
        verbose_log(f"Spawn failed: {e}", "ERROR")
        return ExecutionResult(stdout="", stderr=str(e), exit_code=1, timed_out=False)

    # No adapter expects interactive input
    process.stdin.close()

    stdout_collector = OutputCollector()
    stderr_collector = OutputCollector()
    stdout_thread = threading.Thread(
        target=stream_pipe,
        args=(process.stdout, "stdout", stdout_collector, on_stdout),
        daemon=True,
    )
    stderr_thread = threading.Thread(
        target=stream_pipe,
        args=(process.stderr, "stderr", stderr_collector, None, not suppress_stderr),
        daemon=True,
    )
    stdout_thread.start()
    stderr_thread.start()

    guard = TimeoutGuard(process, timeout) if timeout and timeout > 0 else None
    if guard:
        guard.start()

    try:
        returncode = process.wait()
    finally:
        if guard:
            guard.cancel()

    stdout_thread.join(timeout=READER_JOIN_TIMEOUT_SECONDS)
    stderr_thread.join(timeout=READER_JOIN_TIMEOUT_SECONDS)
    process.stdout.close()
    process.stderr.close()

    verbose_log(f"Process completed with return code: {returncode}", "EXEC")
    return ExecutionResult(
        stdout=stdout_collector.get_output(),
        stderr=stderr_collector.get_output(),
        exit_code=returncode if returncode is not None else 1,
        timed_out=guard.timed_out if guard else False,
    )
