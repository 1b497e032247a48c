# src/pagepilot/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires concrete implementations into AppState (storage/caches/AI/orchestrator).
"""

from __future__ import annotations

import logging

from ..cache.bounded_cache import BoundedCache
from ..config import get_settings
from ..core.errors import AIServiceError
from ..core.ports import AIClient
from ..core.state import AppState
from ..execution.orchestrator import ExecutionOrchestrator
from ..execution.security import KeywordSecurityClassifier
from ..llm.client import OpenAICompatibleAIClient, friendly_ai_error_message
from ..llm.offline import OfflineAIClient
from ..prompts.injector import PromptInjector
from ..tasks.task_index import TaskIndex
from ..tasks.task_store import SQLiteTaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.tasks_db_path.parent.mkdir(parents=True, exist_ok=True)


def _make_ai_client(settings) -> tuple[AIClient, str]:
    if settings.offline:
        return OfflineAIClient(), "offline"
    try:
        return OpenAICompatibleAIClient(settings), "online"
    except AIServiceError as e:
        # Fallback for demos / local runs without external services.
        logger.info("%s Using offline mode.", friendly_ai_error_message(e))
        return OfflineAIClient(), "offline"


def create_initial_state(*, settings=None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    store = SQLiteTaskStore(settings.tasks_db_path)
    cache = BoundedCache(
        max_size_bytes=settings.cache_max_bytes,
        default_ttl_seconds=settings.cache_ttl_seconds,
        name="executions",
    )
    response_cache = BoundedCache(
        max_size_bytes=settings.cache_max_bytes,
        default_ttl_seconds=settings.cache_ttl_seconds,
        name="ai_responses",
    )
    task_index = TaskIndex(
        store,
        execution_cache=cache,
        validation_enabled=settings.validation_enabled,
    )
    ai_client, ai_mode = _make_ai_client(settings)
    security = KeywordSecurityClassifier()

    orchestrator = ExecutionOrchestrator(
        task_index,
        store,
        ai_client,
        injector=PromptInjector(
            max_variable_length=settings.prompt_max_variable_length,
            max_template_length=settings.prompt_max_template_length,
        ),
        cache=cache,
        response_cache=response_cache,
        security=security,
        max_execution_seconds=settings.max_execution_seconds,
    )
    orchestrator.init()

    return AppState(
        settings=settings,
        store=store,
        task_index=task_index,
        cache=cache,
        ai=ai_client,
        security=security,
        orchestrator=orchestrator,
        ai_mode=ai_mode,
        response_cache=response_cache,
    )
