# tests/test_factory.py
# Unit tests for AdapterFactory resolution, fallback and registration.

import functools

import pytest

from agent_library import agent_log
from agent_library.adapters import BUILTIN_ADAPTERS
from agent_library.adapters.base import AgentLibraryAdapter
from agent_library.config import AgentLibraryConfig
from agent_library.errors import (
    FallbackInitializationError,
    InitializationError,
    UnknownLibraryError,
)
from agent_library.factory import AdapterFactory, create_default_factory
from agent_library.models import Capabilities, RunOptions, RunResult


class FakeAdapter(AgentLibraryAdapter):
    """Adapter whose init() succeeds or fails on demand."""

    capabilities = Capabilities(
        streaming=True, file_read=True, file_write=True,
        web_fetch=False, custom_tools=False, timeout=True,
    )

    def __init__(self, name, fail=False, config=None, project_root=None):
        super().__init__(config, project_root)
        self.name = name
        self.fail = fail
        self.init_calls = 0
        self.disposed = False

    def init(self):
        self.init_calls += 1
        if self.fail:
            raise InitializationError(self.name, f"{self.name} is not installed")
        self._initialized = True

    def run(self, options: RunOptions) -> RunResult:
        return RunResult(success=True, content=f"{self.name}: {options.prompt}", duration_seconds=0)

    def dispose(self):
        super().dispose()
        self.disposed = True


def make_factory(config=None, **adapters):
    instances = {name.replace("_", "-"): adapter for name, adapter in adapters.items()}
    return AdapterFactory(config=config, instances=instances)


# --- get_adapter_instance tests ---


def test_get_adapter_initializes_once():
    """The adapter is initialized on first use and reused afterwards."""
    cursor = FakeAdapter("cursor")
    factory = make_factory(cursor=cursor)
    assert factory.get_adapter_instance("cursor") is cursor
    assert factory.get_adapter_instance("cursor") is cursor
    assert cursor.init_calls == 1


def test_failed_init_falls_back():
    """A library that fails to initialize is replaced by the fallback library."""
    cursor = FakeAdapter("cursor", fail=True)
    sdk = FakeAdapter("claude-code-sdk")
    factory = make_factory(cursor=cursor, claude_code_sdk=sdk)
    assert factory.get_adapter_instance("cursor") is sdk
    assert cursor.init_calls == 1
    assert sdk.init_calls == 1


def test_failed_fallback_is_fatal():
    """When the fallback also fails, resolution stops with an error."""
    cursor = FakeAdapter("cursor", fail=True)
    sdk = FakeAdapter("claude-code-sdk", fail=True)
    factory = make_factory(cursor=cursor, claude_code_sdk=sdk)
    with pytest.raises(FallbackInitializationError) as exc_info:
        factory.get_adapter_instance("cursor")
    assert str(exc_info.value) == (
        "Failed to initialize fallback library claude-code-sdk: claude-code-sdk is not installed"
    )
    assert isinstance(exc_info.value.cause, InitializationError)
    assert sdk.init_calls == 1
    assert cursor.init_calls == 1


def test_fallback_requested_directly_fails():
    """Asking for the fallback library itself never recurses."""
    sdk = FakeAdapter("claude-code-sdk", fail=True)
    factory = make_factory(claude_code_sdk=sdk)
    with pytest.raises(FallbackInitializationError):
        factory.get_adapter_instance("claude-code-sdk")
    assert sdk.init_calls == 1


def test_no_fallback_when_disabled():
    """With fallback disabled the original error is raised."""
    cursor = FakeAdapter("cursor", fail=True)
    sdk = FakeAdapter("claude-code-sdk")
    factory = make_factory(cursor=cursor, claude_code_sdk=sdk)
    with pytest.raises(InitializationError, match="cursor is not installed"):
        factory.get_adapter_instance("cursor", allow_fallback=False)
    assert sdk.init_calls == 0


def test_failed_init_retried_on_next_request():
    """A failed library is not marked initialized, so it is tried again next time."""
    gemini = FakeAdapter("gemini", fail=True)
    sdk = FakeAdapter("claude-code-sdk")
    factory = make_factory(gemini=gemini, claude_code_sdk=sdk)
    factory.get_adapter_instance("gemini")
    gemini.fail = False
    assert factory.get_adapter_instance("gemini") is gemini
    assert gemini.init_calls == 2


def test_unknown_library():
    """Unknown names list the available libraries."""
    factory = make_factory(cursor=FakeAdapter("cursor"), gemini=FakeAdapter("gemini"))
    with pytest.raises(UnknownLibraryError) as exc_info:
        factory.get_adapter_instance("copilot")
    assert str(exc_info.value) == "Unknown agent library: copilot. Available: cursor, gemini"
    assert exc_info.value.available == ["cursor", "gemini"]


def test_fallback_logged_to_agent_log(tmp_path, capsys):
    """The fallback decision goes to the console and the current agent log."""
    factory = make_factory(cursor=FakeAdapter("cursor", fail=True), claude_code_sdk=FakeAdapter("claude-code-sdk"))
    ctx = agent_log.LogContext(log_id="fallback", log_dir=str(tmp_path))
    with agent_log.log_context(ctx):
        factory.get_adapter_instance("cursor")
    out = capsys.readouterr().out
    assert "Failed to initialize cursor: cursor is not installed" in out
    assert "Falling back to claude-code-sdk" in out
    log_text = ctx.log_path.read_text()
    assert "[LOG:ERROR]" in log_text
    assert "Library init failed: cursor" in log_text


# --- register_adapter tests ---


def test_registered_constructor_created_lazily():
    """Registered adapters are constructed on first request with the factory config."""
    config = AgentLibraryConfig()
    factory = AdapterFactory(config=config)
    factory.register_adapter("custom", functools.partial(FakeAdapter, "custom"))
    assert "custom" in factory.available_libraries()
    assert "custom" not in factory.instances
    adapter = factory.get_adapter_instance("custom")
    assert adapter.name == "custom"
    assert adapter.config is config
    assert factory.instances["custom"] is adapter
    assert factory.get_adapter_instance("custom") is adapter


def test_registered_constructor_failure_falls_back():
    """A registered adapter that fails init is not cached and falls back."""
    sdk = FakeAdapter("claude-code-sdk")
    factory = make_factory(claude_code_sdk=sdk)
    factory.register_adapter("custom", functools.partial(FakeAdapter, "custom", True))
    assert factory.get_adapter_instance("custom") is sdk
    assert "custom" not in factory.instances


# --- workflow resolution tests ---


def test_get_agent_library_uses_workflow_override():
    """Workflow overrides route to their library; others use the default."""
    config = AgentLibraryConfig(workflow_overrides={"implementation": "cursor"})
    cursor = FakeAdapter("cursor", config=config)
    sdk = FakeAdapter("claude-code-sdk", config=config)
    factory = make_factory(config=config, cursor=cursor, claude_code_sdk=sdk)
    assert factory.get_agent_library("implementation") is cursor
    assert factory.get_agent_library("pr-review") is sdk
    assert factory.get_agent_library(None) is sdk


def test_get_model_for_workflow():
    """The model is the one configured for the resolved library."""
    config = AgentLibraryConfig(workflow_overrides={"tech-design": "gemini"})
    factory = make_factory(
        config=config,
        gemini=FakeAdapter("gemini", config=config),
        claude_code_sdk=FakeAdapter("claude-code-sdk", config=config),
    )
    assert factory.get_model_for_workflow("tech-design") == "gemini-3-flash-preview"
    assert factory.get_model_for_workflow("code-review") == "sonnet"


def test_get_model_for_workflow_reports_fallback_model():
    """If the configured library falls back, the fallback's model is reported."""
    config = AgentLibraryConfig(workflow_overrides={"tech-design": "gemini"})
    factory = make_factory(
        config=config,
        gemini=FakeAdapter("gemini", fail=True, config=config),
        claude_code_sdk=FakeAdapter("claude-code-sdk", config=config),
    )
    assert factory.get_model_for_workflow("tech-design") == "sonnet"


# --- dispose_all tests ---


def test_dispose_all():
    """Every instance is disposed and the map is cleared."""
    cursor = FakeAdapter("cursor")
    sdk = FakeAdapter("claude-code-sdk")
    factory = make_factory(cursor=cursor, claude_code_sdk=sdk)
    factory.get_adapter_instance("cursor")
    factory.dispose_all()
    assert cursor.disposed and sdk.disposed
    assert cursor.is_initialized() is False
    assert factory.instances == {}


# --- create_default_factory tests ---


def test_default_factory_has_builtin_adapters(tmp_path):
    """The default factory holds one uninitialized instance of each built-in."""
    config = AgentLibraryConfig()
    factory = create_default_factory(config, project_root=str(tmp_path))
    assert factory.available_libraries() == ["claude-code-sdk", "cursor", "gemini", "openai-codex"]
    for name, adapter in factory.instances.items():
        assert isinstance(adapter, BUILTIN_ADAPTERS[name])
        assert adapter.is_initialized() is False
        assert adapter.config is config
        assert adapter.project_root == str(tmp_path)


def test_default_factories_are_independent():
    """Two default factories never share adapter instances."""
    first = create_default_factory()
    second = create_default_factory()
    assert first.instances["cursor"] is not second.instances["cursor"]
