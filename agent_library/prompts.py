"""
Prompt builders for the plan subagent and the plan-augmented implementation run.

Copyright (c) 2025 Martin Bechard [martin.bechard@DevConsult.ca]
"""

PLAN_HEADING = "## Detailed Implementation Plan (from codebase exploration)"


def build_plan_subagent_prompt(task_prompt: str) -> str:
    """Wrap an implementation prompt in instructions for a read-only planning pass."""
    return f"""You are a planning agent. Explore the codebase and produce a detailed,
step-by-step implementation plan for the task below. Do NOT modify any files.

## Task

{task_prompt}

## Instructions

1. Read the files relevant to the task and identify the existing patterns to follow.
2. List every file that must be created or modified, with the exact path.
3. For each file, describe the specific changes: functions, types, imports.
4. Order the steps so each one builds on the previous ones.
5. Note tests that should be added or updated.

## Output

Return ONLY the plan as a markdown numbered list. Do not include the task
description again and do not write any code blocks longer than a few lines."""


def augment_prompt_with_plan(prompt: str, plan: str) -> str:
    """Splice a generated plan into the original implementation prompt."""
    return f"""{prompt}

---

{PLAN_HEADING}

The following plan was created by exploring the codebase. Follow these steps to implement the feature:

{plan}

---

Follow the plan above while implementing. Adjust as needed based on actual code you encounter."""
