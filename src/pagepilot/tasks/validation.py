# src/pagepilot/tasks/validation.py

from __future__ import annotations

import re
from typing import Any

from ..matching.patterns import pattern_error
from .task_models import AutomationStep, OutputFormat, StepType, TaskDraft, TaskValidationResult

MIN_TEMPLATE_HINT = 10
MAX_TEMPLATE_HINT = 2000
MAX_PATTERNS_HINT = 10

_TEMPLATE_VAR_RE = re.compile(r"\{\{[^}]+\}\}")


def _non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and value.strip() != ""


def step_errors(step: AutomationStep | dict[str, Any]) -> list[str]:
    """Problems with a single automation step (empty list if the step is fine)."""
    if isinstance(step, dict):
        step_type = step.get("type")
        selector = step.get("selector")
    else:
        step_type = step.type
        selector = step.selector

    errors: list[str] = []
    if step_type not in set(StepType):
        errors.append(f"unknown step type {step_type!r}")
        return errors
    if step_type != StepType.WAIT and not _non_empty_str(selector):
        errors.append(f"{step_type} step requires a non-empty selector")
    return errors


def validate_task_data(draft: TaskDraft) -> TaskValidationResult:
    """
    Check every writable task field and collect all problems.

    Errors make the task unstorable; warnings and suggestions are advisory.
    """
    errors: list[str] = []
    warnings: list[str] = []
    suggestions: list[str] = []

    if not _non_empty_str(draft.name):
        errors.append("name must be a non-empty string")
    if not _non_empty_str(draft.description):
        errors.append("description must be a non-empty string")
    if not _non_empty_str(draft.prompt_template):
        errors.append("prompt_template must be a non-empty string")

    if not isinstance(draft.website_patterns, list):
        errors.append("website_patterns must be a list")
    else:
        for pattern in draft.website_patterns:
            reason = pattern_error(pattern)
            if reason:
                errors.append(f'Invalid website pattern "{pattern}": {reason}')

    if draft.output_format not in set(OutputFormat):
        errors.append(f"output_format must be one of: {', '.join(OutputFormat)}")

    if not isinstance(draft.is_enabled, bool):
        errors.append("is_enabled must be a boolean")

    if not isinstance(draft.tags, list):
        errors.append("tags must be a list")
    elif any(not isinstance(t, str) for t in draft.tags):
        errors.append("all tags must be strings")

    for i, step in enumerate(draft.automation_steps or [], start=1):
        for problem in step_errors(step):
            errors.append(f"Invalid automation step {i}: {problem}")

    template = draft.prompt_template if isinstance(draft.prompt_template, str) else ""
    if template:
        if len(template) < MIN_TEMPLATE_HINT:
            warnings.append("Prompt template is very short and may not provide enough context")
        if len(template) > MAX_TEMPLATE_HINT:
            warnings.append("Prompt template is very long and may exceed AI model limits")
        used = _TEMPLATE_VAR_RE.findall(template)
        if used:
            suggestions.append(
                f"Template uses variables: {', '.join(used)}. Ensure these are properly handled."
            )

    if isinstance(draft.website_patterns, list) and len(draft.website_patterns) > MAX_PATTERNS_HINT:
        suggestions.append("Consider reducing the number of website patterns for better performance")
    if isinstance(draft.tags, list) and not draft.tags:
        suggestions.append("Adding tags will help with task organization and discovery")

    return TaskValidationResult(
        is_valid=not errors,
        errors=errors,
        warnings=warnings,
        suggestions=suggestions,
    )
