"""
Entry point for running an agent on a workflow.

run_agent() resolves the adapter for options.workflow and runs it. For
implementation runs that may write files, and when the adapter supports plan
mode, a read-only plan subagent runs first; its plan is spliced into the
implementation prompt. A failed or empty plan never blocks implementation.

Copyright (c) 2025 Martin Bechard [martin.bechard@DevConsult.ca]
"""

import dataclasses
import time
from typing import Optional

from agent_library import agent_log
from agent_library.adapters.base import AgentLibraryAdapter
from agent_library.config import AgentLibraryConfig, get_agent_library_config
from agent_library.console import log, print_warning, verbose_log
from agent_library.factory import AdapterFactory, create_default_factory
from agent_library.models import WORKFLOW_IMPLEMENTATION, RunOptions, RunResult
from agent_library.prompts import augment_prompt_with_plan, build_plan_subagent_prompt
from agent_library.usage import PhaseUsageTracker

PLAN_PHASE = "Plan Subagent"
PLAN_PROGRESS_LABEL = "Creating implementation plan"
PLAN_READ_ONLY_TOOLS = ["Read", "Glob", "Grep", "WebFetch"]


def should_run_plan_subagent(adapter: AgentLibraryAdapter, options: RunOptions, config: AgentLibraryConfig) -> bool:
    """True when the plan subagent should run before this implementation."""
    return (
        options.workflow == WORKFLOW_IMPLEMENTATION
        and options.allow_write
        and adapter.capabilities.plan_mode
        and config.plan_subagent.enabled
        and options.should_use_plan_mode
    )


def run_plan_subagent(
    adapter: AgentLibraryAdapter,
    options: RunOptions,
    timeout: int,
    usage_tracker: Optional[PhaseUsageTracker] = None,
) -> Optional[str]:
    """Run the read-only planning pass.

    Uses the adapter's native plan mode when it declares one, otherwise the
    read-only tool allowlist. The plan phase is recorded in its own section
    of the current log file.

    Args:
        adapter: The adapter that will also run the implementation.
        options: The implementation run options.
        timeout: Plan phase timeout in seconds.
        usage_tracker: Receives the plan phase usage when given.

    Returns:
        The plan text, or None if the subagent failed or produced nothing.
    """
    uses_plan_mode = adapter.capabilities.plan_mode
    mechanism = "plan mode" if uses_plan_mode else "read-only tools"
    log(f"Running plan subagent ({adapter.name}, {mechanism}, timeout: {timeout}s)")

    parent_ctx = agent_log.get_log_context()
    plan_ctx = None
    if parent_ctx:
        plan_ctx = dataclasses.replace(
            parent_ctx,
            phase=PLAN_PHASE,
            start_time=time.time(),
            library=adapter.name,
            model=adapter.model,
        )
        agent_log.log_execution_start(plan_ctx)

    plan_options = RunOptions(
        prompt=build_plan_subagent_prompt(options.prompt),
        allow_write=False,
        stream=True,
        timeout=timeout,
        progress_label=PLAN_PROGRESS_LABEL,
    )
    if uses_plan_mode:
        plan_options.plan_mode = True
    else:
        plan_options.allowed_tools = list(PLAN_READ_ONLY_TOOLS)

    try:
        if plan_ctx:
            with agent_log.log_context(plan_ctx):
                result = adapter.run(plan_options)
        else:
            result = adapter.run(plan_options)
    except Exception as e:
        # run() should never raise, but a broken adapter must not block implementation
        print_warning(f"Plan subagent failed: {e}")
        if plan_ctx:
            agent_log.log_error(plan_ctx, str(e))
            agent_log.log_execution_end(plan_ctx, success=False)
        return None

    if usage_tracker is not None:
        usage_tracker.record(PLAN_PHASE, result.usage, result.duration_seconds, adapter.model, adapter.name)
        log(usage_tracker.format_summary_line(PLAN_PHASE))

    total_tokens = result.usage.total_tokens if result.usage else 0
    total_cost = result.usage.total_cost_usd if result.usage else 0.0
    plan = result.content if result.success and result.content else None
    if plan_ctx:
        if plan is None:
            agent_log.log_error(plan_ctx, result.error or "No plan generated")
        agent_log.log_execution_end(
            plan_ctx,
            success=plan is not None,
            tool_calls=result.tool_call_count,
            total_tokens=total_tokens,
            total_cost=total_cost,
        )
    if plan is None:
        verbose_log(f"Plan subagent produced no plan: {result.error or 'empty content'}", "PLAN")
    return plan


def run_agent(
    options: RunOptions,
    factory: Optional[AdapterFactory] = None,
    config: Optional[AgentLibraryConfig] = None,
) -> RunResult:
    """Run an agent for options.workflow, with a plan phase where applicable.

    Args:
        options: Run options; options.workflow selects the library.
        factory: Adapter factory to resolve the library from. A default
            factory over the built-in adapters is created when omitted.
        config: Library configuration. Defaults to the factory's config, or
            the project's config file when no factory is given either.

    Returns:
        The RunResult of the implementation (main) run.

    Raises:
        UnknownLibraryError: The configured library does not exist.
        FallbackInitializationError: Neither the library nor the fallback
            could be initialized.
    """
    if factory is None:
        factory = create_default_factory(config or get_agent_library_config())
    config = config or factory.config
    adapter = factory.get_adapter_instance(config.get_library_for_workflow(options.workflow))
    usage_tracker = PhaseUsageTracker()
    label = options.workflow or "agent"

    if should_run_plan_subagent(adapter, options, config):
        plan = run_plan_subagent(adapter, options, config.plan_subagent.timeout, usage_tracker)
        if plan:
            options = dataclasses.replace(options, prompt=augment_prompt_with_plan(options.prompt, plan))
            label = "implementation agent"
        else:
            print_warning("Plan subagent did not generate a plan, proceeding without it")
    elif (
        options.workflow == WORKFLOW_IMPLEMENTATION
        and adapter.capabilities.plan_mode
        and config.plan_subagent.enabled
        and not options.should_use_plan_mode
    ):
        log("Plan subagent skipped (should_use_plan_mode: false)")

    log(f"Starting {label} ({adapter.name}, model: {adapter.model})")
    result = adapter.run(options)

    usage_tracker.record(options.workflow or "run", result.usage, result.duration_seconds, adapter.model, adapter.name)
    log(usage_tracker.format_summary_line(options.workflow or "run"))
    if len(usage_tracker.phases) > 1:
        verbose_log(usage_tracker.format_final_summary(), "USAGE")
    return result
