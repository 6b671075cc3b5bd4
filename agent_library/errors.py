"""
Exceptions raised at the adapter initialization and factory boundaries.

run() never raises; everything that goes wrong inside a run is reported
through RunResult.error instead.

Copyright (c) 2025 Martin Bechard [martin.bechard@DevConsult.ca]
"""


class AgentLibraryError(Exception):
    """Base class for agent library errors."""


class InitializationError(AgentLibraryError):
    """An adapter could not be initialized (binary missing or not authenticated)."""

    def __init__(self, library: str, message: str) -> None:
        super().__init__(message)
        self.library = library


class UnknownLibraryError(AgentLibraryError):
    """A library name was requested that no adapter is registered for."""

    def __init__(self, name: str, available: list[str]) -> None:
        super().__init__(f"Unknown agent library: {name}. Available: {', '.join(available)}")
        self.name = name
        self.available = available


class FallbackInitializationError(AgentLibraryError):
    """The fallback library failed to initialize after the primary failed."""

    def __init__(self, fallback: str, cause: Exception) -> None:
        super().__init__(f"Failed to initialize fallback library {fallback}: {cause}")
        self.fallback = fallback
        self.cause = cause
