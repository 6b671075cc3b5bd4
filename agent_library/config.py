"""
Agent library configuration: which library each workflow uses, which model
each library runs, and the plan subagent settings.

Loaded from .claude/agent-library.yaml in the project root. Every key is
optional; a missing or unreadable file gives the defaults below.

Example:

    default_library: claude-code-sdk
    workflow_overrides:
      implementation: cursor
    library_models:
      cursor:
        model: opus-4.5
      claude-code-sdk:
        model: sonnet
        max_turns: 100
    force_override_library: claude-code-sdk
    force_override_model: opus
    plan_subagent:
      enabled: true
      timeout: 120

Copyright (c) 2025 Martin Bechard [martin.bechard@DevConsult.ca]
"""

import os
from dataclasses import dataclass, field
from typing import Optional

import yaml

from agent_library.console import log
from agent_library.models import CLAUDE_CODE_SDK, CURSOR, GEMINI, OPENAI_CODEX, WORKFLOWS

AGENT_LIBRARY_CONFIG_PATH = ".claude/agent-library.yaml"

DEFAULT_LIBRARY = CLAUDE_CODE_SDK
DEFAULT_RUN_TIMEOUT_SECONDS = 300
DEFAULT_PLAN_SUBAGENT_TIMEOUT_SECONDS = 120
DEFAULT_LIBRARY_MODELS: dict[str, str] = {
    CLAUDE_CODE_SDK: "sonnet",
    CURSOR: "opus-4.5",
    GEMINI: "gemini-3-flash-preview",
    OPENAI_CODEX: "gpt-5-codex",
}
# Unknown libraries registered at runtime run whatever model their CLI defaults to
UNKNOWN_LIBRARY_MODEL = ""


@dataclass
class LibrarySettings:
    """Per-library model and limits."""
    model: str
    max_turns: Optional[int] = None
    timeout: int = DEFAULT_RUN_TIMEOUT_SECONDS


@dataclass
class PlanSubagentConfig:
    """Read-only planning pass run before implementation workflows."""
    enabled: bool = True
    timeout: int = DEFAULT_PLAN_SUBAGENT_TIMEOUT_SECONDS


def _default_library_settings() -> dict[str, LibrarySettings]:
    return {name: LibrarySettings(model=model) for name, model in DEFAULT_LIBRARY_MODELS.items()}


@dataclass
class AgentLibraryConfig:
    """Library and model selection for every workflow.

    force_override_library routes every workflow to one library, and
    force_override_model (when set) replaces the model of whichever library
    runs. Both are meant for temporarily pinning all agents to one setup.
    """
    default_library: str = DEFAULT_LIBRARY
    workflow_overrides: dict[str, str] = field(default_factory=dict)
    library_models: dict[str, LibrarySettings] = field(default_factory=_default_library_settings)
    force_override_library: Optional[str] = None
    force_override_model: Optional[str] = None
    plan_subagent: PlanSubagentConfig = field(default_factory=PlanSubagentConfig)

    def get_library_for_workflow(self, workflow: Optional[str]) -> str:
        """Resolve the library for a workflow.

        Precedence: force override, then the per-workflow override, then the
        default library.
        """
        if self.force_override_library:
            return self.force_override_library
        if workflow and workflow in self.workflow_overrides:
            return self.workflow_overrides[workflow]
        return self.default_library

    def get_library_settings(self, library: str) -> LibrarySettings:
        settings = self.library_models.get(library)
        if settings is None:
            settings = LibrarySettings(model=DEFAULT_LIBRARY_MODELS.get(library, UNKNOWN_LIBRARY_MODEL))
        return settings

    def get_model_for_library(self, library: str) -> str:
        if self.force_override_model:
            return self.force_override_model
        return self.get_library_settings(library).model


def load_agent_library_config(path: str = AGENT_LIBRARY_CONFIG_PATH) -> dict:
    """Load the raw agent library config dict from YAML.

    Returns the parsed dict, or an empty dict if the file doesn't exist or
    is not valid YAML.
    """
    try:
        with open(path, "r") as f:
            config = yaml.safe_load(f)
        return config if isinstance(config, dict) else {}
    except (IOError, yaml.YAMLError):
        return {}


def _invalid(key: str, value: object, fallback: object) -> None:
    log(f"Invalid {key} in {AGENT_LIBRARY_CONFIG_PATH}: {value!r}, using {fallback!r}")


def _section(raw: dict, key: str) -> dict:
    """A mapping-valued key, or {} when it is missing or not a mapping."""
    value = raw.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        _invalid(key, value, {})
        return {}
    return value


def _int_setting(key: str, value: object, default: Optional[int]) -> Optional[int]:
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        _invalid(key, value, default)
        return default


def _str_setting(key: str, value: object, default: Optional[str]) -> Optional[str]:
    if not value:
        return default
    if not isinstance(value, str):
        _invalid(key, value, default)
        return default
    return value


def parse_agent_library_config(raw: dict) -> AgentLibraryConfig:
    """Build an AgentLibraryConfig from a raw config dict.

    Library model entries may be a mapping ({model, max_turns, timeout}) or a
    bare model string. Entries merge over the built-in defaults, so a config
    that only names one library keeps the models of the others. Workflow
    overrides for unknown workflow names are ignored.

    Values of the wrong type are logged and replaced by their defaults, so a
    bad entry never prevents the rest of the file from loading.

    Args:
        raw: The dict loaded from the YAML config file.

    Returns:
        An AgentLibraryConfig populated from the dict or defaults.
    """
    if not raw or not isinstance(raw, dict):
        return AgentLibraryConfig()

    library_models = _default_library_settings()
    for name, entry in _section(raw, "library_models").items():
        key = f"library_models.{name}"
        base = library_models.get(name) or LibrarySettings(model=UNKNOWN_LIBRARY_MODEL)
        if isinstance(entry, str):
            library_models[name] = LibrarySettings(model=entry, max_turns=base.max_turns, timeout=base.timeout)
        elif isinstance(entry, dict):
            library_models[name] = LibrarySettings(
                model=_str_setting(f"{key}.model", entry.get("model"), base.model),
                max_turns=_int_setting(f"{key}.max_turns", entry.get("max_turns"), base.max_turns),
                timeout=_int_setting(f"{key}.timeout", entry.get("timeout"), base.timeout),
            )
        elif entry is not None:
            _invalid(key, entry, base.model)

    overrides = {
        workflow: library
        for workflow, library in _section(raw, "workflow_overrides").items()
        if workflow in WORKFLOWS and _str_setting(f"workflow_overrides.{workflow}", library, None)
    }

    plan_raw = _section(raw, "plan_subagent")
    plan_subagent = PlanSubagentConfig(
        enabled=bool(plan_raw.get("enabled", True)),
        timeout=_int_setting(
            "plan_subagent.timeout", plan_raw.get("timeout"), DEFAULT_PLAN_SUBAGENT_TIMEOUT_SECONDS
        ),
    )

    return AgentLibraryConfig(
        default_library=_str_setting("default_library", raw.get("default_library"), DEFAULT_LIBRARY),
        workflow_overrides=overrides,
        library_models=library_models,
        force_override_library=_str_setting("force_override_library", raw.get("force_override_library"), None),
        force_override_model=_str_setting("force_override_model", raw.get("force_override_model"), None),
        plan_subagent=plan_subagent,
    )


def get_agent_library_config(project_root: Optional[str] = None) -> AgentLibraryConfig:
    """Load and parse the config file of a project (default: current directory)."""
    path = os.path.join(project_root or os.getcwd(), AGENT_LIBRARY_CONFIG_PATH)
    return parse_agent_library_config(load_agent_library_config(path))
