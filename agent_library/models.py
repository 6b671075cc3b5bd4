"""
Data types shared by every adapter: capabilities, run options, run results,
usage and timeout diagnostics.

Copyright (c) 2025 Martin Bechard [martin.bechard@DevConsult.ca]
"""

from dataclasses import dataclass, field
from typing import Any, Optional

# Library names
CLAUDE_CODE_SDK = "claude-code-sdk"
CURSOR = "cursor"
GEMINI = "gemini"
OPENAI_CODEX = "openai-codex"
FALLBACK_LIBRARY = CLAUDE_CODE_SDK

# Workflow names
WORKFLOW_PRODUCT_DEV = "product-dev"
WORKFLOW_PRODUCT_DESIGN = "product-design"
WORKFLOW_TECH_DESIGN = "tech-design"
WORKFLOW_BUG_INVESTIGATION = "bug-investigation"
WORKFLOW_IMPLEMENTATION = "implementation"
WORKFLOW_PR_REVIEW = "pr-review"
WORKFLOW_CODE_REVIEW = "code-review"
WORKFLOWS: list[str] = [
    WORKFLOW_PRODUCT_DEV,
    WORKFLOW_PRODUCT_DESIGN,
    WORKFLOW_TECH_DESIGN,
    WORKFLOW_BUG_INVESTIGATION,
    WORKFLOW_IMPLEMENTATION,
    WORKFLOW_PR_REVIEW,
    WORKFLOW_CODE_REVIEW,
]

DEFAULT_PROGRESS_LABEL = "Processing"


@dataclass(frozen=True)
class Capabilities:
    """Features an adapter declares; fixed for the lifetime of the adapter."""
    streaming: bool
    file_read: bool
    file_write: bool
    web_fetch: bool
    custom_tools: bool
    timeout: bool
    plan_mode: bool = False


@dataclass
class MCPServerConfig:
    """Launch description for one MCP tool-provider process."""
    command: str
    args: list[str] = field(default_factory=list)
    env: Optional[dict[str, str]] = None

    def to_dict(self) -> dict:
        data: dict[str, Any] = {"command": self.command, "args": list(self.args)}
        if self.env:
            data["env"] = dict(self.env)
        return data


@dataclass
class OutputFormat:
    """A requested JSON-schema-shaped result."""
    schema: dict
    type: str = "json_schema"

    def to_dict(self) -> dict:
        return {"type": self.type, "schema": self.schema}


@dataclass
class RunOptions:
    """Options for a single run() call.

    timeout is in seconds: None means the adapter default, 0 means unbounded.
    allowed_write_paths are project-relative prefixes honoured by adapters
    that can intercept write tools.
    """
    prompt: str
    allowed_tools: Optional[list[str]] = None
    allow_write: bool = False
    stream: bool = False
    timeout: Optional[int] = None
    output_format: Optional[OutputFormat] = None
    plan_mode: bool = False
    mcp_servers: Optional[dict[str, MCPServerConfig]] = None
    additional_tools: Optional[list[str]] = None
    max_turns: Optional[int] = None
    should_use_plan_mode: bool = True
    allowed_write_paths: Optional[list[str]] = None
    workflow: Optional[str] = None
    progress_label: str = DEFAULT_PROGRESS_LABEL
    verbose: bool = False


@dataclass
class AgentUsage:
    """Token usage and cost for one run.

    cost_reported is True when the provider supplied total_cost_usd itself,
    False when the cost was computed from the pricing table.
    """
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_input_tokens: int = 0
    cache_creation_input_tokens: int = 0
    total_cost_usd: float = 0.0
    cost_reported: bool = False

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass
class ToolCallRecord:
    """One tool invocation, kept for timeout diagnostics."""
    name: str
    target: str
    timestamp: float
    id: str = ""


@dataclass
class TimeoutDiagnostics:
    """Why a run hit its timeout, and what it was doing at the time."""
    classification: str
    last_tool_calls: list[ToolCallRecord]
    pending_tool_call: Optional[ToolCallRecord]
    total_tool_calls: int
    time_since_last_tool_call: int
    time_since_last_response: int


@dataclass
class RunResult:
    """Normalized outcome of a run() call.

    error is set if and only if success is False. timeout_diagnostics is set
    if and only if the run was aborted by its own timeout.
    """
    success: bool
    content: Optional[str]
    duration_seconds: int
    files_examined: list[str] = field(default_factory=list)
    error: Optional[str] = None
    usage: Optional[AgentUsage] = None
    structured_output: Optional[dict] = None
    timeout_diagnostics: Optional[TimeoutDiagnostics] = None
    tool_call_count: int = 0
    exit_code: Optional[int] = None
