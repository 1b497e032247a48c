# src/pagepilot/core/ports.py

"""
Ports (interfaces) used by the core.

The core depends on Protocols instead of concrete implementations.
This keeps storage/AI providers/security policy swappable and makes testing easier.
"""

from __future__ import annotations

from typing import Any, Protocol

from ..tasks.task_models import (
    AIRequest,
    AIResponse,
    PageContent,
    SecurityLevel,
    Task,
    TaskDraft,
    UsageMetrics,
)


class TaskRepo(Protocol):
    # CRUD
    def create_task(self, draft: TaskDraft) -> str: ...
    def get_task(self, task_id: str) -> Task | None: ...
    def get_all_tasks(self) -> dict[str, Task]: ...
    def update_task(self, task_id: str, updates: dict[str, Any]) -> bool: ...
    def delete_task(self, task_id: str) -> bool: ...

    # Raw pattern-only prefilter (enabled tasks whose patterns match the domain)
    def get_tasks_for_website(self, domain: str) -> list[Task]: ...

    # Usage statistics
    def record_usage(self, task_id: str, success: bool, execution_time_ms: float) -> UsageMetrics: ...
    def get_usage_metrics(self, task_id: str) -> UsageMetrics | None: ...
    def get_all_usage_metrics(self) -> dict[str, UsageMetrics]: ...
    def delete_usage_metrics(self, task_id: str) -> None: ...


class AIClient(Protocol):
    """Turns an AIRequest into an AIResponse. May raise AIServiceError."""

    async def process(self, request: AIRequest) -> AIResponse: ...


class SecurityClassifier(Protocol):
    def classify(self, domain: str) -> SecurityLevel: ...
    def sanitize(self, page_content: PageContent, level: SecurityLevel) -> PageContent: ...
