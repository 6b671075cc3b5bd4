"""
agent-library command line.

    agent-library run --workflow tech-design --prompt "Summarize the auth flow"
    agent-library run --workflow implementation --allow-write --prompt-file task.md
    agent-library check
    agent-library list

Copyright (c) 2025 Martin Bechard [martin.bechard@DevConsult.ca]
"""

import argparse
import json
import os
import sys
from typing import Optional

from agent_library import __version__, agent_log
from agent_library.config import AGENT_LIBRARY_CONFIG_PATH, AgentLibraryConfig, get_agent_library_config
from agent_library.console import GREEN, RED, RESET, set_verbose
from agent_library.errors import AgentLibraryError
from agent_library.factory import AdapterFactory, create_default_factory
from agent_library.models import WORKFLOWS, OutputFormat, RunOptions
from agent_library.orchestrator import run_agent


def read_prompt(args: argparse.Namespace) -> str:
    if args.prompt_file:
        with open(args.prompt_file, "r") as f:
            return f.read()
    return args.prompt


def read_output_format(path: Optional[str]) -> Optional[OutputFormat]:
    """Load a JSON schema file into an OutputFormat."""
    if not path:
        return None
    with open(path, "r") as f:
        return OutputFormat(schema=json.load(f))


def build_config(args: argparse.Namespace) -> AgentLibraryConfig:
    """Project config with the command-line overrides applied."""
    config = get_agent_library_config(args.project_root)
    if getattr(args, "library", None):
        config.force_override_library = args.library
    if getattr(args, "model", None):
        config.force_override_model = args.model
    return config


def cmd_run(args: argparse.Namespace, factory: AdapterFactory) -> int:
    try:
        prompt = read_prompt(args)
        output_format = read_output_format(args.output_schema)
    except (IOError, json.JSONDecodeError) as e:
        print(f"Error: {e}")
        return 1

    options = RunOptions(
        prompt=prompt,
        allow_write=args.allow_write,
        stream=args.stream,
        timeout=args.timeout,
        max_turns=args.max_turns,
        output_format=output_format,
        should_use_plan_mode=not args.no_plan,
        allowed_write_paths=args.allowed_write_path or None,
        workflow=args.workflow,
        verbose=args.verbose,
    )

    log_ctx = None
    if args.log_id:
        adapter_name = factory.config.get_library_for_workflow(args.workflow)
        log_ctx = agent_log.LogContext(
            log_id=args.log_id,
            title=args.title or args.log_id,
            workflow=args.workflow or "agent",
            phase=args.workflow or "run",
            library=adapter_name,
            model=factory.config.get_model_for_library(adapter_name),
            log_dir=os.path.join(args.project_root, agent_log.AGENT_LOG_DIR),
        )

    try:
        if log_ctx:
            with agent_log.log_context(log_ctx):
                agent_log.log_execution_start(log_ctx)
                result = run_agent(options, factory=factory)
                usage = result.usage
                agent_log.log_execution_end(
                    log_ctx,
                    success=result.success,
                    tool_calls=result.tool_call_count,
                    total_tokens=usage.total_tokens if usage else 0,
                    total_cost=usage.total_cost_usd if usage else 0.0,
                )
        else:
            result = run_agent(options, factory=factory)
    except AgentLibraryError as e:
        print(f"Error: {e}")
        return 1
    finally:
        factory.dispose_all()

    if not result.success:
        print(f"Error: {result.error}")
        if result.timeout_diagnostics:
            diagnostics = result.timeout_diagnostics
            print(f"  {diagnostics.classification}")
            for call in diagnostics.last_tool_calls:
                print(f"  - {call.name} {call.target}")
        return 1

    if result.structured_output is not None:
        print(json.dumps(result.structured_output, indent=2))
    elif result.content:
        print(result.content)
    return 0


def cmd_check(args: argparse.Namespace, factory: AdapterFactory) -> int:
    """Initialize every library without fallback and report which are usable."""
    failures = 0
    for name in factory.available_libraries():
        try:
            adapter = factory.get_adapter_instance(name, allow_fallback=False)
            print(f"{GREEN}✓ {name}{RESET} (model: {adapter.model})")
        except Exception as e:
            failures += 1
            print(f"{RED}✗ {name}{RESET}: {e}")
    factory.dispose_all()
    return 1 if failures else 0


def cmd_list(args: argparse.Namespace, factory: AdapterFactory) -> int:
    """Print libraries, their capabilities and the workflow routing."""
    config = factory.config
    print("Libraries:")
    for name in factory.available_libraries():
        adapter = factory.instances.get(name)
        if adapter is None:
            print(f"  {name}")
            continue
        caps = adapter.capabilities
        flags = [flag for flag in ("streaming", "file_read", "file_write", "web_fetch",
                                   "custom_tools", "timeout", "plan_mode") if getattr(caps, flag)]
        print(f"  {name} (model: {adapter.model}): {', '.join(flags)}")
    print("Workflows:")
    for workflow in WORKFLOWS:
        library = config.get_library_for_workflow(workflow)
        print(f"  {workflow}: {library} ({config.get_model_for_library(library)})")
    plan = config.plan_subagent
    print(f"Plan subagent: {'enabled' if plan.enabled else 'disabled'} (timeout: {plan.timeout}s)")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agent-library",
        description="Run AI coding agents through a uniform interface"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--project-root",
        default=os.getcwd(),
        help=f"Project directory holding {AGENT_LIBRARY_CONFIG_PATH} (default: current directory)"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose output with detailed tracing"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run an agent on a prompt")
    prompt_group = run_parser.add_mutually_exclusive_group(required=True)
    prompt_group.add_argument("--prompt", help="Prompt text")
    prompt_group.add_argument("--prompt-file", metavar="PATH", help="Read the prompt from a file")
    run_parser.add_argument(
        "--workflow",
        choices=WORKFLOWS,
        help="Workflow name; selects the library from the config"
    )
    run_parser.add_argument("--library", help="Use this library for the run regardless of workflow")
    run_parser.add_argument("--model", help="Use this model regardless of library")
    run_parser.add_argument("--allow-write", action="store_true", help="Allow the agent to modify files")
    run_parser.add_argument(
        "--allowed-write-path",
        action="append",
        metavar="PREFIX",
        help="Restrict writes to this project-relative prefix (repeatable; claude-code-sdk only)"
    )
    run_parser.add_argument("--stream", action="store_true", help="Print agent events as they arrive")
    run_parser.add_argument(
        "--timeout",
        type=int,
        default=None,
        metavar="SECONDS",
        help="Run timeout in seconds (default: library setting, 0 = no timeout)"
    )
    run_parser.add_argument("--max-turns", type=int, default=None, metavar="N", help="Maximum agent turns")
    run_parser.add_argument(
        "--output-schema",
        metavar="PATH",
        help="JSON schema file; the result is printed as structured JSON"
    )
    run_parser.add_argument(
        "--no-plan",
        action="store_true",
        help="Skip the plan subagent for implementation runs"
    )
    run_parser.add_argument("--log-id", help="Write an agent log to agent-logs/<log-id>.md")
    run_parser.add_argument("--title", help="Title for the agent log (default: log id)")

    subparsers.add_parser("check", help="Check which agent libraries are installed and authenticated")
    subparsers.add_parser("list", help="List libraries, capabilities and workflow routing")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    set_verbose(args.verbose)

    config = build_config(args)
    factory = create_default_factory(config, project_root=args.project_root)

    handlers = {"run": cmd_run, "check": cmd_check, "list": cmd_list}
    return handlers[args.command](args, factory)


if __name__ == "__main__":
    sys.exit(main())
