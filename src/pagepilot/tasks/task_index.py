# src/pagepilot/tasks/task_index.py

from __future__ import annotations

import logging
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from ..core.errors import ValidationError
from ..core.ports import TaskRepo
from ..matching.patterns import pattern_error
from ..matching.relevance import RelevanceScorer
from .task_models import DRAFT_FIELDS, Task, TaskDraft, TaskValidationResult, WebsiteContext
from .validation import validate_task_data

if TYPE_CHECKING:
    from ..cache.bounded_cache import BoundedCache

logger = logging.getLogger(__name__)


class TaskIndex:
    """
    Task registry on top of a TaskRepo.

    Storage owns the data; this layer validates writes, keeps cached executions
    consistent with task edits, and ranks tasks for a website.
    """

    def __init__(
        self,
        store: TaskRepo,
        *,
        scorer: RelevanceScorer | None = None,
        execution_cache: BoundedCache | None = None,
        validation_enabled: bool = True,
    ) -> None:
        self._store = store
        self._scorer = scorer or RelevanceScorer()
        self._cache = execution_cache
        self._validation_enabled = validation_enabled

    @property
    def scorer(self) -> RelevanceScorer:
        return self._scorer

    # ---- CRUD ----

    def create_task(self, draft: TaskDraft) -> str:
        if self._validation_enabled:
            self._raise_if_invalid(draft, "Task validation failed")
        task_id = self._store.create_task(draft)
        logger.info("Task created id=%s name=%s", task_id, draft.name)
        return task_id

    def get_task(self, task_id: str) -> Task | None:
        return self._store.get_task(task_id)

    def get_all_tasks(self) -> dict[str, Task]:
        return self._store.get_all_tasks()

    def update_task(self, task_id: str, **updates: Any) -> bool:
        illegal = sorted(k for k in updates if k not in DRAFT_FIELDS)
        if illegal:
            raise ValidationError([f"field {k!r} cannot be updated" for k in illegal])

        existing = self._store.get_task(task_id)
        if existing is None:
            raise KeyError(f"Task {task_id} not found")

        if self._validation_enabled and updates:
            merged = replace(existing.to_draft(), **updates)
            self._raise_if_invalid(merged, "Task update validation failed")

        ok = self._store.update_task(task_id, updates)
        if ok:
            self._invalidate_executions(task_id)
            logger.info("Task updated id=%s fields=%s", task_id, ",".join(sorted(updates)))
        return ok

    def delete_task(self, task_id: str) -> bool:
        ok = self._store.delete_task(task_id)
        if ok:
            self._store.delete_usage_metrics(task_id)
            self._invalidate_executions(task_id)
            logger.info("Task deleted id=%s", task_id)
        return ok

    def duplicate_task(self, task_id: str, new_name: str | None = None) -> str:
        """Copy a task as a template: new id, fresh timestamps, zero usage."""
        original = self._store.get_task(task_id)
        if original is None:
            raise KeyError(f"Task {task_id} not found")
        draft = original.to_draft()
        draft.name = new_name or f"{original.name} (Copy)"
        return self.create_task(draft)

    # ---- website associations ----

    def associate_task_with_website(self, task_id: str, website_patterns: list[str]) -> bool:
        errors = [
            f'Invalid website pattern "{p}": {reason}'
            for p in website_patterns
            if (reason := pattern_error(p))
        ]
        if errors:
            raise ValidationError(errors, field="website_patterns")
        return self.update_task(task_id, website_patterns=list(website_patterns))

    def remove_task_website_association(self, task_id: str, patterns_to_remove: list[str]) -> bool:
        task = self._store.get_task(task_id)
        if task is None:
            raise KeyError(f"Task {task_id} not found")
        remaining = [p for p in task.website_patterns if p not in patterns_to_remove]
        return self.update_task(task_id, website_patterns=remaining)

    def get_all_website_associations(self) -> dict[str, list[str]]:
        return {
            task_id: list(task.website_patterns)
            for task_id, task in self._store.get_all_tasks().items()
            if task.website_patterns
        }

    # ---- validation / ranking ----

    def validate_task(self, task_id: str) -> TaskValidationResult:
        task = self._store.get_task(task_id)
        if task is None:
            return TaskValidationResult(is_valid=False, errors=[f"Task {task_id} not found"])
        return validate_task_data(task.to_draft())

    def tasks_for_website(self, context: WebsiteContext) -> list[Task]:
        candidates = self._store.get_tasks_for_website(context.domain)
        return self._scorer.rank(candidates, context)

    # ---- helpers ----

    def _raise_if_invalid(self, draft: TaskDraft, prefix: str) -> None:
        result = validate_task_data(draft)
        if not result.is_valid:
            logger.info("%s: %s", prefix, "; ".join(result.errors))
            raise ValidationError(result.errors)

    def _invalidate_executions(self, task_id: str) -> None:
        if self._cache is None:
            return
        n = self._cache.invalidate_by_pattern(f"{task_id}_")
        if n:
            logger.debug("Dropped %d cached executions for task_id=%s", n, task_id)
