"""
Built-in agent library adapters.

Copyright (c) 2025 Martin Bechard [martin.bechard@DevConsult.ca]
"""

from agent_library.adapters.base import AgentLibraryAdapter, CLIAgentAdapter, RunState
from agent_library.adapters.claude_sdk import ClaudeCodeSDKAdapter
from agent_library.adapters.codex import CodexAdapter
from agent_library.adapters.cursor import CursorAdapter
from agent_library.adapters.gemini import GeminiAdapter

BUILTIN_ADAPTERS: dict[str, type[AgentLibraryAdapter]] = {
    ClaudeCodeSDKAdapter.name: ClaudeCodeSDKAdapter,
    CursorAdapter.name: CursorAdapter,
    GeminiAdapter.name: GeminiAdapter,
    CodexAdapter.name: CodexAdapter,
}

__all__ = [
    "AgentLibraryAdapter",
    "BUILTIN_ADAPTERS",
    "CLIAgentAdapter",
    "ClaudeCodeSDKAdapter",
    "CodexAdapter",
    "CursorAdapter",
    "GeminiAdapter",
    "RunState",
]
