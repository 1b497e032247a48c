# src/pagepilot/prompts/injector.py

"""
Prompt template injection.

Templates reference page context with {{variable}} placeholders. The set of
variables is closed; an unknown variable is replaced by "[name]" and reported
as a warning instead of failing the execution.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field

from ..tasks.task_models import ExecutionContext

logger = logging.getLogger(__name__)

DEFAULT_MAX_VARIABLE_LENGTH = 2000
DEFAULT_MAX_TEMPLATE_LENGTH = 10000
SHORT_TEMPLATE_HINT = 20

RECOGNIZED_VARIABLES: tuple[str, ...] = (
    "domain",
    "pageTitle",
    "title",  # alias for pageTitle
    "selectedText",
    "mainText",
    "headings",
    "url",
    "category",
    "pageType",
    "textContent",
    "formCount",
    "linkCount",
    "userInput",
)

VARIABLE_DESCRIPTIONS: dict[str, str] = {
    "domain": "Website domain",
    "pageTitle": "Title of the current page",
    "title": "Title of the current page (alias of pageTitle)",
    "selectedText": "Text selected by the user on the page",
    "mainText": "Main text content extracted from the page",
    "headings": "Page headings, one per line",
    "url": "Full page URL",
    "category": "Detected website category",
    "pageType": "Detected page type",
    "textContent": "Raw page text",
    "formCount": "Number of forms on the page",
    "linkCount": "Number of links on the page",
    "userInput": "User-supplied input as JSON",
}

_VAR_TOKEN_RE = re.compile(r"\{\{([^{}]+)\}\}")
_SINGLE_BRACE_RE = re.compile(r"\{[^{}]+\}")
_WS_RE = re.compile(r"\s+")


@dataclass(slots=True)
class TemplateVariable:
    name: str
    description: str
    required: bool = True


@dataclass(slots=True)
class TemplateValidationResult:
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    variables: list[TemplateVariable] = field(default_factory=list)


@dataclass(slots=True)
class InjectionReport:
    prompt: str
    injected: dict[str, str] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)


def truncate_text(text: str, max_length: int) -> str:
    if not text or len(text) <= max_length:
        return text or ""
    return text[: max(0, max_length - 3)] + "..."


def _strip_brace_pairs(text: str) -> str:
    while "{{" in text:
        text = text.replace("{{", "{")
    while "}}" in text:
        text = text.replace("}}", "}")
    return text


class PromptInjector:
    def __init__(
        self,
        *,
        max_variable_length: int = DEFAULT_MAX_VARIABLE_LENGTH,
        max_template_length: int = DEFAULT_MAX_TEMPLATE_LENGTH,
    ) -> None:
        self.max_variable_length = int(max_variable_length)
        self.max_template_length = int(max_template_length)

    def _value_getters(self, context: ExecutionContext) -> dict[str, Callable[[], str]]:
        site = context.website_context
        page = context.page_content
        user_input = context.user_input or {}

        return {
            "domain": lambda: site.domain or "",
            "pageTitle": lambda: page.title or "",
            "title": lambda: page.title or "",
            "selectedText": lambda: str(user_input.get("selectedText") or ""),
            "mainText": lambda: _WS_RE.sub(" ", page.text_content or "").strip(),
            "headings": lambda: "\n".join(page.headings or []),
            "url": lambda: page.url or str(site.extracted_data.get("url") or ""),
            "category": lambda: str(site.category),
            "pageType": lambda: str(site.page_type),
            "textContent": lambda: page.text_content or "",
            "formCount": lambda: str(len(page.forms or [])),
            "linkCount": lambda: str(len(page.links or [])),
            "userInput": lambda: json.dumps(user_input, ensure_ascii=False, sort_keys=True),
        }

    def inject_with_report(self, template: str, context: ExecutionContext) -> InjectionReport:
        getters = self._value_getters(context)
        report = InjectionReport(prompt="")

        def _substitute(m: re.Match[str]) -> str:
            name = m.group(1).strip()
            getter = getters.get(name)
            if getter is None:
                logger.warning("Unrecognized template variable: %s", name)
                report.warnings.append(f"Unrecognized template variable: {name}")
                return f"[{name}]"
            value = truncate_text(getter(), self.max_variable_length)
            report.injected[name] = value
            return value

        # Values may themselves contain braces; the output never keeps a {{ or }} pair.
        report.prompt = _strip_brace_pairs(_VAR_TOKEN_RE.sub(_substitute, template or ""))
        return report

    def inject(self, template: str, context: ExecutionContext) -> str:
        return self.inject_with_report(template, context).prompt

    def validate(self, template: str) -> TemplateValidationResult:
        errors: list[str] = []
        warnings: list[str] = []
        variables: list[TemplateVariable] = []

        if not isinstance(template, str) or not template:
            errors.append("Template must be a non-empty string")
            return TemplateValidationResult(is_valid=False, errors=errors)

        if len(template) > self.max_template_length:
            errors.append(f"Template exceeds maximum length of {self.max_template_length} characters")

        tokens = _VAR_TOKEN_RE.findall(template)
        seen: set[str] = set()
        for raw in tokens:
            name = raw.strip()
            if name in seen:
                continue
            seen.add(name)
            if name not in RECOGNIZED_VARIABLES:
                errors.append(f"Unknown template variable: {name}")
            variables.append(TemplateVariable(name=name, description=VARIABLE_DESCRIPTIONS.get(name, "")))

        remainder = _VAR_TOKEN_RE.sub("", template)
        for bad in _SINGLE_BRACE_RE.findall(remainder):
            errors.append(f"Malformed template variable: {bad}. Use {{{{variableName}}}} format.")

        if len(template) < SHORT_TEMPLATE_HINT:
            warnings.append("Template is very short and may not provide enough context for AI")
        if not tokens:
            warnings.append(
                "Template contains no variables. Consider using {{domain}}, {{pageTitle}}, "
                "or {{selectedText}} for better context"
            )
        if "selectedText" in seen and "pageTitle" not in seen and "title" not in seen:
            warnings.append("Using selectedText without pageTitle may provide incomplete context")

        return TemplateValidationResult(
            is_valid=not errors,
            errors=errors,
            warnings=warnings,
            variables=variables,
        )
