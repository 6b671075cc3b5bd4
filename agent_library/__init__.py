"""
Agent Library
Uniform run interface over AI coding-agent CLIs and SDKs, with fallback
resolution and plan-then-implement orchestration.

Copyright (c) 2025 Martin Bechard [martin.bechard@DevConsult.ca]
"""

from agent_library.errors import (
    AgentLibraryError,
    FallbackInitializationError,
    InitializationError,
    UnknownLibraryError,
)
from agent_library.factory import AdapterFactory, create_default_factory
from agent_library.models import (
    AgentUsage,
    Capabilities,
    MCPServerConfig,
    OutputFormat,
    RunOptions,
    RunResult,
    TimeoutDiagnostics,
    ToolCallRecord,
)
from agent_library.orchestrator import run_agent

__version__ = "0.1.0"

__all__ = [
    "AdapterFactory",
    "AgentLibraryError",
    "AgentUsage",
    "Capabilities",
    "FallbackInitializationError",
    "InitializationError",
    "MCPServerConfig",
    "OutputFormat",
    "RunOptions",
    "RunResult",
    "TimeoutDiagnostics",
    "ToolCallRecord",
    "UnknownLibraryError",
    "create_default_factory",
    "run_agent",
]
