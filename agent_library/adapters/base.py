"""
Adapter contract and the run machinery shared by every adapter.

AgentLibraryAdapter is the interface the factory and orchestrator work with.
RunState holds everything scoped to one run() call. CLIAgentAdapter drives a
provider CLI through process.execute_command and leaves only the argument
list, the event translation and the init probes to each subclass.

Copyright (c) 2025 Martin Bechard [martin.bechard@DevConsult.ca]
"""

import json
import os
import re
import time
from abc import ABC, abstractmethod
from typing import Optional

from agent_library import agent_log
from agent_library.config import AgentLibraryConfig
from agent_library.console import (
    Spinner,
    format_usage_info,
    print_failure,
    print_success,
    print_text,
    print_tool_use,
    verbose_log,
)
from agent_library.diagnostics import ToolCallTracker, diagnostic_target, to_project_relative
from agent_library.errors import InitializationError
from agent_library.models import AgentUsage, Capabilities, RunOptions, RunResult
from agent_library.process import ExecutionResult, execute_command, resolve_binary
from agent_library.stream import (
    EVENT_ERROR,
    EVENT_RESULT,
    EVENT_TEXT,
    EVENT_TOOL_RESULT,
    EVENT_TOOL_USE,
    JsonLineParser,
    StreamEvent,
    decode_output,
    scan_for_object,
)
from agent_library.structured import extract_structured_output, inject_output_schema
from agent_library.usage import parse_result_usage

TEXT_BUFFER_FLUSH_SIZE = 500
DISPLAY_BUFFER_SIZE = 100
VERSION_PROBE_TIMEOUT_SECONDS = 10
AUTH_PROBE_TIMEOUT_SECONDS = 10

SENTENCE_END = re.compile(r"[.!?]$")
SENTENCE_START = re.compile(r"^[A-Z]")


def join_text_fragment(buffer: str, fragment: str) -> str:
    """Append a streamed text fragment, breaking the line after a finished sentence."""
    if buffer and SENTENCE_END.search(buffer.strip()) and SENTENCE_START.match(fragment.strip()):
        buffer += "\n"
    return buffer + fragment


class RunState:
    """Mutable state of one run() call.

    Events are applied in arrival order from a single thread. The spinner
    thread only reads tool_call_count.
    """

    def __init__(
        self,
        project_root: str,
        stream: bool = False,
        log_ctx: Optional[agent_log.LogContext] = None,
        tracker: Optional[ToolCallTracker] = None,
    ) -> None:
        self.project_root = project_root
        self.stream = stream
        self.log_ctx = log_ctx
        self.tracker = tracker or ToolCallTracker()
        self.start_time = time.time()
        self.tool_call_count = 0
        self.files_examined: list[str] = []
        self.text = ""
        self.result_text: Optional[str] = None
        self.usage: Optional[AgentUsage] = None
        self.structured_output: Optional[dict] = None
        self.errors: list[str] = []
        self._log_buffer = ""
        self._display_buffer = ""

    def elapsed(self) -> int:
        return int(time.time() - self.start_time)

    @property
    def content(self) -> Optional[str]:
        """The final result if the agent sent one, else all streamed text."""
        if self.result_text:
            return self.result_text
        return self.text.strip() or None

    def add_file(self, path: str) -> None:
        relative = to_project_relative(path, self.project_root)
        # The project root is a directory listing, not a file
        if relative and relative != "." and relative not in self.files_examined:
            self.files_examined.append(relative)

    def handle_event(self, event: StreamEvent) -> None:
        if event.type == EVENT_TEXT:
            self._on_text(event.text)
        elif event.type == EVENT_TOOL_USE:
            self._on_tool_use(event)
        elif event.type == EVENT_TOOL_RESULT:
            self.tracker.record_tool_result()
        elif event.type == EVENT_RESULT:
            self._on_result(event)
        elif event.type == EVENT_ERROR:
            self.flush()
            if event.text:
                self.errors.append(event.text)
                if self.log_ctx:
                    agent_log.log_error(self.log_ctx, event.text)

    def _on_text(self, fragment: str) -> None:
        if not fragment:
            return
        self.text = join_text_fragment(self.text, fragment)
        self._log_buffer = join_text_fragment(self._log_buffer, fragment)
        if len(self._log_buffer) >= TEXT_BUFFER_FLUSH_SIZE:
            self._flush_log()
        if self.stream:
            self._display_buffer = join_text_fragment(self._display_buffer, fragment)
            if len(self._display_buffer) >= DISPLAY_BUFFER_SIZE:
                self._flush_display()

    def _on_tool_use(self, event: StreamEvent) -> None:
        self.flush()
        self.tool_call_count += 1
        name = event.tool_name or "unknown"
        if self.log_ctx:
            agent_log.log_tool_call(self.log_ctx, event.tool_id, name, event.tool_input)
        if event.path:
            self.add_file(event.path)
        if self.stream:
            print_tool_use(self.elapsed(), name, event.path or str(event.tool_input.get("file_path", "")))
        target_input = event.tool_input or ({"path": event.path} if event.path else {})
        self.tracker.record_tool_use(name, diagnostic_target(target_input, self.project_root), event.tool_id)

    def _on_result(self, event: StreamEvent) -> None:
        self.flush()
        self.tracker.record_tool_result()
        if event.result:
            self.result_text = event.result
        if event.usage:
            self.usage = event.usage
        for path in event.files:
            self.add_file(path)
        if event.tool_calls is not None:
            self.tool_call_count = max(self.tool_call_count, event.tool_calls)

    def _flush_log(self) -> None:
        if self._log_buffer.strip() and self.log_ctx:
            agent_log.log_text_response(self.log_ctx, self._log_buffer.strip())
        self._log_buffer = ""

    def _flush_display(self) -> None:
        if self._display_buffer.strip():
            print_text(self._display_buffer)
        self._display_buffer = ""

    def flush(self) -> None:
        self._flush_display()
        self._flush_log()


class AgentLibraryAdapter(ABC):
    """Common contract for every agent library.

    Instances are long-lived singletons held by the factory. The only state
    shared between runs is the initialized flag; everything else a run needs
    lives in its own RunState.
    """

    name: str = ""
    capabilities: Capabilities = Capabilities(
        streaming=False, file_read=False, file_write=False,
        web_fetch=False, custom_tools=False, timeout=False,
    )
    read_only_tools: list[str] = []
    write_tools: list[str] = []

    def __init__(self, config: Optional[AgentLibraryConfig] = None, project_root: Optional[str] = None) -> None:
        self.config = config or AgentLibraryConfig()
        self.project_root = os.path.abspath(project_root or os.getcwd())
        self._initialized = False

    @property
    def model(self) -> str:
        return self.config.get_model_for_library(self.name)

    def is_initialized(self) -> bool:
        return self._initialized

    @abstractmethod
    def init(self) -> None:
        """Verify the library is usable. Raises InitializationError if not."""

    @abstractmethod
    def run(self, options: RunOptions) -> RunResult:
        """Run the agent. Never raises; failures come back as RunResult.error."""

    def dispose(self) -> None:
        self._initialized = False

    def resolve_allowed_tools(self, options: RunOptions) -> list[str]:
        """Effective tool allowlist for a run.

        An explicit allowed_tools list wins; otherwise read-only tools, plus
        write tools when allow_write is set. additional_tools are appended.
        Plan mode is read-only and takes precedence over allow_write: write
        tools are removed from the result whatever their source.
        """
        writable = options.allow_write and not options.plan_mode
        if options.allowed_tools is not None:
            tools = list(options.allowed_tools)
        elif writable:
            tools = [*self.read_only_tools, *self.write_tools]
        else:
            tools = list(self.read_only_tools)
        for tool in options.additional_tools or []:
            if tool not in tools:
                tools.append(tool)
        if options.plan_mode:
            tools = [tool for tool in tools if tool not in self.write_tools]
        return tools

    def resolve_timeout(self, options: RunOptions) -> int:
        if options.timeout is not None:
            return options.timeout
        return self.config.get_library_settings(self.name).timeout

    def resolve_max_turns(self, options: RunOptions) -> Optional[int]:
        if options.max_turns is not None:
            return options.max_turns
        return self.config.get_library_settings(self.name).max_turns

    def new_run_state(self, options: RunOptions) -> RunState:
        return RunState(self.project_root, stream=options.stream, log_ctx=agent_log.get_log_context())

    # ─── Terminal results ────────────────────────────────────────────

    def timeout_result(self, state: RunState, timeout: int, exit_code: Optional[int] = None) -> RunResult:
        state.flush()
        diagnostics = state.tracker.build_diagnostics(timeout)
        print_failure(f"Timeout after {timeout}s ({diagnostics.classification})")
        error = f"Timed out after {timeout} seconds"
        if state.log_ctx:
            agent_log.log_error(state.log_ctx, f"{error}: {diagnostics.classification}")
        return RunResult(
            success=False,
            content=None,
            error=error,
            files_examined=state.files_examined,
            usage=state.usage,
            duration_seconds=state.elapsed(),
            structured_output=state.structured_output,
            timeout_diagnostics=diagnostics,
            tool_call_count=state.tool_call_count,
            exit_code=exit_code,
        )

    def error_result(
        self,
        state: RunState,
        error: str,
        display: str = "Error",
        exit_code: Optional[int] = None,
    ) -> RunResult:
        state.flush()
        print_failure(display)
        error = error or "Unknown error"
        if state.log_ctx:
            agent_log.log_error(state.log_ctx, error)
        return RunResult(
            success=False,
            content=None,
            error=error,
            files_examined=state.files_examined,
            usage=state.usage,
            duration_seconds=state.elapsed(),
            structured_output=state.structured_output,
            tool_call_count=state.tool_call_count,
            exit_code=exit_code,
        )

    def success_result(
        self,
        state: RunState,
        options: RunOptions,
        content: Optional[str],
        exit_code: Optional[int] = None,
    ) -> RunResult:
        state.flush()
        usage_info = ""
        if state.usage:
            usage_info = format_usage_info(state.usage.total_tokens, state.usage.total_cost_usd)
        duration = state.elapsed()
        print_success(options.progress_label, duration, state.tool_call_count, usage_info)
        structured = state.structured_output
        if structured is None and options.output_format:
            structured = extract_structured_output(content)
        return RunResult(
            success=True,
            content=content,
            files_examined=state.files_examined,
            usage=state.usage,
            duration_seconds=duration,
            structured_output=structured,
            tool_call_count=state.tool_call_count,
            exit_code=exit_code,
        )

    def log_usage(self, state: RunState) -> None:
        if state.log_ctx and state.usage:
            agent_log.log_token_usage(
                state.log_ctx,
                state.usage.input_tokens,
                state.usage.output_tokens,
                state.usage.total_cost_usd,
            )


class CLIAgentAdapter(AgentLibraryAdapter):
    """Adapter for an agent that ships as a command-line tool.

    Subclasses set cli_command and install_hint, and implement build_args()
    and translate_event(). command can be overridden per instance, which is
    how tests substitute a stub script for the real binary.
    """

    cli_command: str = ""
    install_hint: str = ""
    binary_search_paths: tuple[str, ...] = ()

    def __init__(
        self,
        config: Optional[AgentLibraryConfig] = None,
        project_root: Optional[str] = None,
        command: Optional[list[str]] = None,
    ) -> None:
        super().__init__(config, project_root)
        self._command = list(command) if command else None

    @property
    def command(self) -> list[str]:
        if self._command is None:
            self._command = [resolve_binary(self.cli_command, self.binary_search_paths)]
        return self._command

    def execute(self, args: list[str], timeout: float, suppress_stderr: bool = False, on_stdout=None) -> ExecutionResult:
        return execute_command(
            [*self.command, *args],
            timeout=timeout,
            cwd=self.project_root,
            suppress_stderr=suppress_stderr,
            on_stdout=on_stdout,
        )

    # ─── Initialization ──────────────────────────────────────────────

    def init(self) -> None:
        if self._initialized:
            return
        result = self.execute(["--version"], timeout=VERSION_PROBE_TIMEOUT_SECONDS, suppress_stderr=True)
        if result.exit_code != 0:
            detail = result.stderr.strip() or f"exit code {result.exit_code}"
            raise InitializationError(
                self.name,
                f"CLI not installed ({self.cli_command} --version failed: {detail}). {self.install_hint}",
            )
        verbose_log(f"{self.name} version: {result.stdout.strip()}", "INIT")
        self.check_authentication()
        self._initialized = True

    def check_authentication(self) -> None:
        """Raise InitializationError if the CLI reports it is not logged in.

        Probe failures that are not clearly about authentication are ignored.
        """

    # ─── Provider hooks ──────────────────────────────────────────────

    @abstractmethod
    def build_args(self, prompt: str, options: RunOptions, allowed_tools: list[str]) -> list[str]:
        """CLI arguments for one run."""

    @abstractmethod
    def translate_event(self, obj: dict) -> list[StreamEvent]:
        """Map one provider JSON object to normalized events."""

    def prepare_run(self, options: RunOptions) -> None:
        """Provider setup before the process is spawned."""

    def parse_output(self, stdout: str) -> list[StreamEvent]:
        """Decode the complete stdout of a non-streaming run.

        Non-streaming CLIs print either one JSON document or JSON lines.
        """
        stripped = stdout.strip()
        if not stripped:
            return []
        try:
            document = json.loads(stripped)
        except (json.JSONDecodeError, ValueError):
            document = None
        if isinstance(document, dict):
            try:
                return self.translate_event(document)
            except Exception as e:
                verbose_log(f"Could not translate {self.name} output: {e}", "PARSE")
                return []
        return decode_output(stdout, self.translate_event)

    def usage_from_object(self, obj: dict) -> Optional[AgentUsage]:
        return parse_result_usage(obj, self.model)

    def scan_usage(self, stdout: str) -> Optional[AgentUsage]:
        """Find usage anywhere in the captured output when no result event carried it."""
        obj = scan_for_object(stdout, lambda o: self.usage_from_object(o) is not None)
        return self.usage_from_object(obj) if obj else None

    # ─── Run ─────────────────────────────────────────────────────────

    def run(self, options: RunOptions) -> RunResult:
        state = self.new_run_state(options)
        timeout = self.resolve_timeout(options)
        spinner: Optional[Spinner] = None
        try:
            allowed_tools = self.resolve_allowed_tools(options)
            prompt = inject_output_schema(options.prompt, options.output_format)
            self.prepare_run(options)
            args = self.build_args(prompt, options, allowed_tools)
            if state.log_ctx:
                agent_log.log_prompt(state.log_ctx, options.prompt, model=self.model, tools=allowed_tools, timeout=timeout)

            if options.stream:
                parser = JsonLineParser(self.translate_event, state.handle_event)
                result = self.execute(args, timeout, on_stdout=parser.feed)
                parser.close()
            else:
                spinner = Spinner(options.progress_label, timeout, lambda: state.tool_call_count)
                spinner.start()
                result = self.execute(args, timeout)
                spinner.stop()
                spinner = None
                # Events are only seen after exit, so their tool calls carry no
                # real timing and a timeout here classifies as a session timeout
                for event in self.parse_output(result.stdout):
                    state.handle_event(event)
                if state.content is None and result.stdout.strip():
                    state.result_text = result.stdout.strip()

            if state.usage is None:
                state.usage = self.scan_usage(result.stdout)
            self.log_usage(state)
            return self.finish(state, options, result, timeout)
        except Exception as e:
            if spinner:
                spinner.stop()
            verbose_log(f"{self.name} run failed: {type(e).__name__}: {e}", "ERROR")
            return self.error_result(state, str(e) or type(e).__name__)

    def finish(self, state: RunState, options: RunOptions, result: ExecutionResult, timeout: int) -> RunResult:
        if result.timed_out:
            return self.timeout_result(state, timeout, exit_code=result.exit_code)
        content = state.content
        if result.exit_code != 0 and not content:
            error = result.stderr.strip() or "; ".join(state.errors) or f"Exit code {result.exit_code}"
            return self.error_result(
                state, error, display=f"Error (exit code {result.exit_code})", exit_code=result.exit_code
            )
        return self.success_result(state, options, content, exit_code=result.exit_code)
