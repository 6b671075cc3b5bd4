"""
Token usage extraction and per-phase aggregation.

Copyright (c) 2025 Martin Bechard [martin.bechard@DevConsult.ca]
"""

from dataclasses import dataclass
from typing import Optional

from agent_library.models import AgentUsage
from agent_library.pricing import calculate_cost


def build_usage(
    model: str,
    input_tokens: int,
    output_tokens: int,
    cache_read_input_tokens: int = 0,
    cache_creation_input_tokens: int = 0,
    reported_cost: Optional[float] = None,
) -> AgentUsage:
    """Create an AgentUsage, pricing it only when the provider gave no cost.

    A reported cost of zero is kept as zero; only an absent cost is computed.
    """
    if reported_cost is not None:
        cost = float(reported_cost)
        cost_reported = True
    else:
        cost = calculate_cost(model, input_tokens, output_tokens)
        cost_reported = False
    return AgentUsage(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        cache_read_input_tokens=cache_read_input_tokens,
        cache_creation_input_tokens=cache_creation_input_tokens,
        total_cost_usd=cost,
        cost_reported=cost_reported,
    )


def parse_result_usage(result_data: dict, model: str) -> Optional[AgentUsage]:
    """Extract usage from a result object shaped like the Claude/Cursor/Codex ones.

    Token counts live under "usage"; the cost may sit at the top level or
    inside "usage".

    Args:
        result_data: The parsed result object.
        model: Model name used to price the run when no cost is reported.

    Returns:
        An AgentUsage, or None if the object carries no usage block.
    """
    usage = result_data.get("usage")
    if not isinstance(usage, dict):
        return None
    reported_cost = result_data.get("total_cost_usd")
    if reported_cost is None:
        reported_cost = usage.get("total_cost_usd")
    return build_usage(
        model,
        input_tokens=usage.get("input_tokens") or 0,
        output_tokens=usage.get("output_tokens") or 0,
        cache_read_input_tokens=usage.get("cache_read_input_tokens") or 0,
        cache_creation_input_tokens=usage.get("cache_creation_input_tokens") or 0,
        reported_cost=reported_cost,
    )


def parse_model_stats(stats: dict, model: str) -> Optional[AgentUsage]:
    """Sum token counts across the per-model stats block Gemini reports.

    Gemini never reports cost, so it is always computed.
    """
    models = stats.get("models") if isinstance(stats, dict) else None
    if not isinstance(models, dict):
        return None
    total_input = 0
    total_output = 0
    total_cached = 0
    for model_stats in models.values():
        tokens = model_stats.get("tokens") if isinstance(model_stats, dict) else None
        if tokens:
            total_input += tokens.get("input") or 0
            total_output += tokens.get("output") or 0
            total_cached += tokens.get("cached") or 0
    return build_usage(
        model,
        input_tokens=total_input,
        output_tokens=total_output,
        cache_read_input_tokens=total_cached,
    )


@dataclass
class PhaseUsage:
    """Usage and wall time of one orchestration phase."""
    usage: AgentUsage
    duration_seconds: int = 0
    model: str = ""
    library: str = ""


class PhaseUsageTracker:
    """Accumulates usage across the phases of one orchestrated run."""

    def __init__(self) -> None:
        self.phases: dict[str, PhaseUsage] = {}

    def record(
        self,
        phase: str,
        usage: Optional[AgentUsage],
        duration_seconds: int = 0,
        model: str = "",
        library: str = "",
    ) -> None:
        """Record usage for a finished phase. Missing usage counts as zero."""
        self.phases[phase] = PhaseUsage(
            usage=usage or AgentUsage(),
            duration_seconds=duration_seconds,
            model=model,
            library=library,
        )

    def get_total_usage(self) -> AgentUsage:
        """Aggregate usage across all recorded phases."""
        total = AgentUsage(cost_reported=bool(self.phases))
        for p in self.phases.values():
            u = p.usage
            total.input_tokens += u.input_tokens
            total.output_tokens += u.output_tokens
            total.cache_read_input_tokens += u.cache_read_input_tokens
            total.cache_creation_input_tokens += u.cache_creation_input_tokens
            total.total_cost_usd += u.total_cost_usd
            total.cost_reported = total.cost_reported and u.cost_reported
        return total

    def get_total_duration(self) -> int:
        return sum(p.duration_seconds for p in self.phases.values())

    def get_cache_hit_rate(self) -> float:
        """Calculate overall cache hit rate.

        Cache hit rate measures what fraction of input context was served
        from cache vs. freshly processed.
        """
        total = self.get_total_usage()
        denom = total.cache_read_input_tokens + total.input_tokens
        return total.cache_read_input_tokens / denom if denom > 0 else 0.0

    def format_summary_line(self, phase: str) -> str:
        """Format a one-line usage summary for a phase."""
        p = self.phases.get(phase)
        if not p:
            return ""
        u = p.usage
        total = self.get_total_usage()
        model_str = f" [{p.model}]" if p.model else ""
        estimated = "" if u.cost_reported else " (estimated)"
        return (
            f"[Usage] Phase {phase}{model_str}: ${u.total_cost_usd:.4f}{estimated} | "
            f"{u.input_tokens:,} in / {u.output_tokens:,} out | {p.duration_seconds}s | "
            f"Running: ${total.total_cost_usd:.4f}"
        )

    def format_final_summary(self) -> str:
        """Format the usage summary printed after all phases complete."""
        total = self.get_total_usage()
        lines = [
            "=== Usage Summary ===",
            f"Total cost: ${total.total_cost_usd:.4f}",
            f"Total tokens: {total.input_tokens:,} input / {total.output_tokens:,} output",
            f"Cache: {total.cache_read_input_tokens:,} read / "
            f"{total.cache_creation_input_tokens:,} created ({self.get_cache_hit_rate():.0%} hit rate)",
            f"Duration: {self.get_total_duration()}s",
            "Per-phase breakdown:",
        ]
        for name, p in self.phases.items():
            lines.append(f"  {name}: ${p.usage.total_cost_usd:.4f} ({p.duration_seconds}s)")
        return "\n".join(lines)
