"""
Library name to adapter resolution with fallback.

An AdapterFactory owns one adapter instance per library name. Built-in
adapters are created up front by create_default_factory(); extra adapters
can be registered as constructors and are created on first use. When a
library fails to initialize, the factory substitutes the fallback library
once; a failing fallback is fatal.

Copyright (c) 2025 Martin Bechard [martin.bechard@DevConsult.ca]
"""

import os
import threading
from typing import Callable, Optional

from agent_library import agent_log
from agent_library.adapters import BUILTIN_ADAPTERS, AgentLibraryAdapter
from agent_library.config import AgentLibraryConfig
from agent_library.console import GREEN, RESET, log, print_warning
from agent_library.errors import FallbackInitializationError, UnknownLibraryError
from agent_library.models import FALLBACK_LIBRARY

AdapterConstructor = Callable[..., AgentLibraryAdapter]


class AdapterFactory:
    """Resolves library names to initialized singleton adapters."""

    def __init__(
        self,
        config: Optional[AgentLibraryConfig] = None,
        instances: Optional[dict[str, AgentLibraryAdapter]] = None,
        project_root: Optional[str] = None,
        fallback_library: str = FALLBACK_LIBRARY,
    ) -> None:
        self.config = config or AgentLibraryConfig()
        self.project_root = os.path.abspath(project_root or os.getcwd())
        self.instances: dict[str, AgentLibraryAdapter] = dict(instances or {})
        self.registry: dict[str, AdapterConstructor] = {}
        self.fallback_library = fallback_library
        self._lock = threading.RLock()

    def register_adapter(self, name: str, constructor: AdapterConstructor) -> None:
        """Register a constructor called as constructor(config=..., project_root=...)."""
        self.registry[name] = constructor

    def available_libraries(self) -> list[str]:
        names = list(self.instances)
        names.extend(name for name in self.registry if name not in self.instances)
        return names

    def get_adapter_instance(self, name: str, allow_fallback: bool = True) -> AgentLibraryAdapter:
        """Return the initialized adapter for name, falling back if init fails.

        Args:
            name: Library name.
            allow_fallback: Substitute the fallback library when init fails.
                The fallback itself is always resolved with this disabled,
                so there is never more than one substitution.

        Returns:
            An initialized adapter (the fallback one if name failed).

        Raises:
            UnknownLibraryError: No adapter is registered under name.
            FallbackInitializationError: The fallback library failed to init.
        """
        with self._lock:
            adapter = self.instances.get(name)
            created = False
            if adapter is None:
                constructor = self.registry.get(name)
                if constructor is None:
                    raise UnknownLibraryError(name, self.available_libraries())
                adapter = constructor(config=self.config, project_root=self.project_root)
                created = True

            was_initialized = adapter.is_initialized()
            error = self._try_init(adapter)
            if error is None:
                if created:
                    self.instances[name] = adapter
                if not was_initialized:
                    log(f"{GREEN}✓ Initialized agent library: {adapter.name} (model: {adapter.model}){RESET}")
                return adapter

            if allow_fallback and name != self.fallback_library:
                self._log_fallback(name, error)
                return self.get_adapter_instance(self.fallback_library, allow_fallback=False)
            if name == self.fallback_library:
                raise FallbackInitializationError(self.fallback_library, error) from error
            raise error

    def _try_init(self, adapter: AgentLibraryAdapter) -> Optional[Exception]:
        if adapter.is_initialized():
            return None
        try:
            adapter.init()
        except Exception as e:
            return e
        return None

    def _log_fallback(self, library: str, error: Exception) -> None:
        print_warning(f"Failed to initialize {library}: {error}")
        print_warning(f"Falling back to {self.fallback_library}")
        ctx = agent_log.get_log_context()
        if ctx:
            agent_log.log_error(ctx, f"Library init failed: {library} - {error}. Falling back to {self.fallback_library}")

    def get_agent_library(self, workflow: Optional[str] = None) -> AgentLibraryAdapter:
        """The adapter configured for a workflow."""
        return self.get_adapter_instance(self.config.get_library_for_workflow(workflow))

    def get_model_for_workflow(self, workflow: Optional[str] = None) -> str:
        return self.get_agent_library(workflow).model

    def dispose_all(self) -> None:
        with self._lock:
            for adapter in self.instances.values():
                adapter.dispose()
            self.instances.clear()


def create_default_factory(
    config: Optional[AgentLibraryConfig] = None,
    project_root: Optional[str] = None,
) -> AdapterFactory:
    """A factory holding one instance of every built-in adapter."""
    config = config or AgentLibraryConfig()
    root = os.path.abspath(project_root or os.getcwd())
    instances = {
        name: adapter_class(config=config, project_root=root)
        for name, adapter_class in BUILTIN_ADAPTERS.items()
    }
    return AdapterFactory(config=config, instances=instances, project_root=root)
