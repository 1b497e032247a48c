# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from pagepilot.cache.bounded_cache import BoundedCache
from pagepilot.core.state import AppState
from pagepilot.execution.orchestrator import ExecutionOrchestrator
from pagepilot.execution.security import KeywordSecurityClassifier
from pagepilot.tasks.task_index import TaskIndex
from pagepilot.tasks.task_models import (
    ExecutionContext,
    PageContent,
    SecurityLevel,
    TaskDraft,
    WebsiteCategory,
    WebsiteContext,
)
from pagepilot.tasks.task_store import SQLiteTaskStore

from .fakes import FakeAIClient, FakeClock, FakeTaskRepo


def make_draft(**overrides) -> TaskDraft:
    base = dict(
        name="Summarize page",
        description="Summarize the current page",
        prompt_template="Summarize {{pageTitle}} on {{domain}}",
        website_patterns=[r"example\.com"],
        tags=["demo"],
    )
    base.update(overrides)
    return TaskDraft(**base)


def make_context(
    domain: str = "example.com",
    *,
    url: str | None = None,
    title: str = "Example Page",
    text: str = "Some page text.",
    category: WebsiteCategory = WebsiteCategory.CUSTOM,
    level: SecurityLevel = SecurityLevel.PUBLIC,
    user_input: dict | None = None,
) -> ExecutionContext:
    url = url if url is not None else f"https://{domain}/page"
    return ExecutionContext(
        website_context=WebsiteContext(
            domain=domain,
            category=category,
            extracted_data={"url": url},
            security_level=level,
        ),
        page_content=PageContent(url=url, title=title, headings=["Intro"], text_content=text),
        user_input=user_input,
    )


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and the CLI commands.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        data_dir=tmp_path,
        tasks_db_path=tmp_path / "tasks.sqlite3",
        ai_models=["fake/model"],
        offline=True,
        validation_enabled=True,
        max_execution_seconds=5.0,
        cache_max_bytes=64 * 1024,
        cache_ttl_seconds=60.0,
        cache_cleanup_seconds=60.0,
        prompt_max_variable_length=2000,
        prompt_max_template_length=10000,
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def cache(clock: FakeClock) -> BoundedCache:
    return BoundedCache(max_size_bytes=64 * 1024, default_ttl_seconds=60.0, clock=clock)


@pytest.fixture()
def repo() -> FakeTaskRepo:
    return FakeTaskRepo()


@pytest.fixture()
def index(repo: FakeTaskRepo, cache: BoundedCache) -> TaskIndex:
    return TaskIndex(repo, execution_cache=cache)


@pytest.fixture()
def ai() -> FakeAIClient:
    return FakeAIClient("generated")


@pytest.fixture()
def orchestrator(index: TaskIndex, repo: FakeTaskRepo, ai: FakeAIClient, cache: BoundedCache) -> ExecutionOrchestrator:
    orch = ExecutionOrchestrator(index, repo, ai, cache=cache, max_execution_seconds=1.0)
    orch.init()
    return orch


@pytest.fixture()
def state(settings: SimpleNamespace) -> AppState:
    """
    AppState wired with deterministic fakes.

    NOTE: We keep the real SQLite store here because its correctness is
    part of what we want to test.
    """
    store = SQLiteTaskStore(settings.tasks_db_path)
    cache = BoundedCache(max_size_bytes=settings.cache_max_bytes, default_ttl_seconds=settings.cache_ttl_seconds)
    responses = BoundedCache(settings.cache_max_bytes, settings.cache_ttl_seconds, name="ai_responses")
    task_index = TaskIndex(store, execution_cache=cache)
    ai = FakeAIClient("state reply")
    security = KeywordSecurityClassifier()
    return AppState(
        settings=settings,
        store=store,
        task_index=task_index,
        cache=cache,
        ai=ai,
        security=security,
        orchestrator=ExecutionOrchestrator(
            task_index, store, ai, cache=cache, response_cache=responses, security=security
        ),
        ai_mode="offline",
        response_cache=responses,
    )
