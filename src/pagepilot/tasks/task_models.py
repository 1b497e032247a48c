# src/pagepilot/tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import StrEnum
from typing import Any


class OutputFormat(StrEnum):
    PLAIN_TEXT = "plain_text"
    HTML = "html"
    MARKDOWN = "markdown"
    JSON = "json"

    @classmethod
    def from_db(cls, raw: str | None) -> OutputFormat:
        if not raw:
            return cls.PLAIN_TEXT
        try:
            return cls(raw)
        except ValueError:
            return cls.PLAIN_TEXT


class TaskType(StrEnum):
    GENERATE_TEXT = "generate_text"
    ANALYZE_CONTENT = "analyze_content"
    AUTOMATE_ACTION = "automate_action"
    EXTRACT_DATA = "extract_data"


class SecurityLevel(StrEnum):
    PUBLIC = "public"
    CAUTIOUS = "cautious"
    RESTRICTED = "restricted"


class WebsiteCategory(StrEnum):
    SOCIAL_MEDIA = "social_media"
    ECOMMERCE = "ecommerce"
    PROFESSIONAL = "professional"
    NEWS_CONTENT = "news_content"
    PRODUCTIVITY = "productivity"
    CUSTOM = "custom"


class PageType(StrEnum):
    HOME = "home"
    PRODUCT = "product"
    ARTICLE = "article"
    PROFILE = "profile"
    FORM = "form"
    OTHER = "other"


class StepType(StrEnum):
    CLICK = "click"
    TYPE = "type"
    SELECT = "select"
    EXTRACT = "extract"
    WAIT = "wait"


@dataclass(slots=True)
class AutomationStep:
    type: str
    selector: str = ""
    value: str | None = None
    description: str = ""
    timeout_ms: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": str(self.type),
            "selector": self.selector,
            "value": self.value,
            "description": self.description,
            "timeout_ms": self.timeout_ms,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> AutomationStep:
        timeout = raw.get("timeout_ms")
        return cls(
            type=str(raw.get("type") or ""),
            selector=str(raw.get("selector") or ""),
            value=raw.get("value"),
            description=str(raw.get("description") or ""),
            timeout_ms=int(timeout) if timeout is not None else None,
        )


@dataclass(slots=True)
class TaskDraft:
    """Writable part of a task: everything except id, timestamps and usage_count."""

    name: str
    description: str
    prompt_template: str
    website_patterns: list[str] = field(default_factory=list)
    output_format: OutputFormat = OutputFormat.PLAIN_TEXT
    automation_steps: list[AutomationStep] = field(default_factory=list)
    is_enabled: bool = True
    tags: list[str] = field(default_factory=list)


DRAFT_FIELDS = frozenset(f.name for f in fields(TaskDraft))


@dataclass(slots=True)
class Task:
    id: str
    name: str
    description: str
    website_patterns: list[str]
    prompt_template: str
    output_format: OutputFormat
    created_at: float
    updated_at: float

    automation_steps: list[AutomationStep] = field(default_factory=list)
    is_enabled: bool = True
    usage_count: int = 0
    tags: list[str] = field(default_factory=list)

    def to_draft(self) -> TaskDraft:
        return TaskDraft(
            name=self.name,
            description=self.description,
            prompt_template=self.prompt_template,
            website_patterns=list(self.website_patterns),
            output_format=self.output_format,
            automation_steps=[AutomationStep.from_dict(s.to_dict()) for s in self.automation_steps],
            is_enabled=self.is_enabled,
            tags=list(self.tags),
        )


@dataclass(slots=True)
class WebsiteContext:
    domain: str
    category: WebsiteCategory = WebsiteCategory.CUSTOM
    page_type: PageType = PageType.OTHER
    extracted_data: dict[str, Any] = field(default_factory=dict)
    security_level: SecurityLevel = SecurityLevel.PUBLIC
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(slots=True)
class PageContent:
    url: str = ""
    title: str = ""
    headings: list[str] = field(default_factory=list)
    text_content: str = ""
    forms: list[dict[str, Any]] = field(default_factory=list)
    links: list[dict[str, Any]] = field(default_factory=list)
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class ExecutionContext:
    website_context: WebsiteContext
    page_content: PageContent
    task_id: str = ""
    user_input: dict[str, Any] | None = None


@dataclass(slots=True)
class UsageMetrics:
    task_id: str
    usage_count: int = 0
    success_rate: float = 0.0  # percent, 0..100
    average_execution_time: float = 0.0  # ms
    last_used: float | None = None
    error_count: int = 0


@dataclass(slots=True, frozen=True)
class AssociationRule:
    id: str
    name: str
    url_pattern: str
    priority: int
    is_enabled: bool = True


@dataclass(slots=True, frozen=True)
class SecurityConstraints:
    allow_sensitive_data: bool
    max_content_length: int
    allowed_domains: tuple[str, ...]
    restricted_selectors: tuple[str, ...]


@dataclass(slots=True)
class AIRequest:
    prompt: str
    context: WebsiteContext
    page_content: PageContent
    task_type: TaskType
    output_format: OutputFormat
    constraints: SecurityConstraints
    task_id: str
    user_input: dict[str, Any] | None = None
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(slots=True)
class AIResponse:
    content: str
    format: OutputFormat
    confidence: float
    timestamp: datetime
    request_id: str
    automation_instructions: list[AutomationStep] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "format": str(self.format),
            "confidence": self.confidence,
            "timestamp": self.timestamp.isoformat(),
            "request_id": self.request_id,
            "automation_instructions": [s.to_dict() for s in self.automation_instructions],
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> AIResponse:
        return cls(
            content=str(raw.get("content") or ""),
            format=OutputFormat.from_db(raw.get("format")),
            confidence=float(raw.get("confidence") or 0.0),
            timestamp=datetime.fromisoformat(raw["timestamp"]) if raw.get("timestamp") else datetime.now(),
            request_id=str(raw.get("request_id") or ""),
            automation_instructions=[
                AutomationStep.from_dict(s) for s in raw.get("automation_instructions") or []
            ],
        )


@dataclass(slots=True)
class TaskResult:
    success: bool
    execution_time_ms: float
    format: OutputFormat = OutputFormat.PLAIN_TEXT
    content: str | None = None
    error: str | None = None
    timestamp: datetime = field(default_factory=datetime.now)
    cached: bool = False
    automation_summary: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "content": self.content,
            "error": self.error,
            "format": str(self.format),
            "timestamp": self.timestamp.isoformat(),
            "execution_time_ms": self.execution_time_ms,
            "automation_summary": self.automation_summary,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> TaskResult:
        return cls(
            success=bool(raw.get("success")),
            content=raw.get("content"),
            error=raw.get("error"),
            format=OutputFormat.from_db(raw.get("format")),
            timestamp=datetime.fromisoformat(raw["timestamp"]) if raw.get("timestamp") else datetime.now(),
            execution_time_ms=float(raw.get("execution_time_ms") or 0.0),
            automation_summary=raw.get("automation_summary"),
        )


@dataclass(slots=True)
class TaskValidationResult:
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)


@dataclass(slots=True)
class TaskTestResult:
    success: bool
    execution_time_ms: float
    validation_result: TaskValidationResult
    result: TaskResult | None = None
    error: str | None = None
