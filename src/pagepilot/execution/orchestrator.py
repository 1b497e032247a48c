# src/pagepilot/execution/orchestrator.py

"""
Task execution.

execute() walks one task through:
  validate (optional) -> cache check -> build request -> run -> record

Every failure is turned into a TaskResult; only cancellation propagates
(after the failed attempt has been recorded).
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import datetime

from ..cache.bounded_cache import BoundedCache, CacheMetrics
from ..core.errors import AIServiceError
from ..core.ports import AIClient, SecurityClassifier, TaskRepo
from ..prompts.injector import PromptInjector
from ..tasks.task_index import TaskIndex
from ..tasks.task_models import (
    AIRequest,
    AIResponse,
    ExecutionContext,
    PageContent,
    SecurityLevel,
    Task,
    TaskResult,
    TaskTestResult,
    TaskType,
    WebsiteContext,
)
from .hashing import ai_request_cache_key, execution_cache_key
from .security import KeywordSecurityClassifier, build_security_constraints

logger = logging.getLogger(__name__)

_EXTRACT_WORDS = ("extract", "data", "information")
_ANALYZE_WORDS = ("analyze", "summary", "review")


def infer_task_type(task: Task) -> TaskType:
    if task.automation_steps:
        return TaskType.AUTOMATE_ACTION
    text = f"{task.name} {task.description} {task.prompt_template}".lower()
    if any(w in text for w in _EXTRACT_WORDS):
        return TaskType.EXTRACT_DATA
    if any(w in text for w in _ANALYZE_WORDS):
        return TaskType.ANALYZE_CONTENT
    return TaskType.GENERATE_TEXT


def sample_execution_context() -> ExecutionContext:
    """Context used by test_task when the caller does not supply one."""
    return ExecutionContext(
        website_context=WebsiteContext(
            domain="example.com",
            extracted_data={"url": "https://example.com"},
            security_level=SecurityLevel.PUBLIC,
        ),
        page_content=PageContent(
            url="https://example.com",
            title="Sample Page",
            headings=["Main Heading", "Sub Heading"],
            text_content="This is sample page content for testing purposes.",
        ),
    )


class ExecutionOrchestrator:
    def __init__(
        self,
        task_index: TaskIndex,
        storage: TaskRepo,
        ai_client: AIClient,
        *,
        injector: PromptInjector | None = None,
        cache: BoundedCache | None = None,
        response_cache: BoundedCache | None = None,
        security: SecurityClassifier | None = None,
        max_execution_seconds: float = 30.0,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._tasks = task_index
        self._storage = storage
        self._ai = ai_client
        self._injector = injector or PromptInjector()
        self._cache = cache
        self._response_cache = response_cache
        self._security = security or KeywordSecurityClassifier()
        self._max_execution_seconds = float(max_execution_seconds)
        self._clock = clock
        self._usage_locks: dict[str, asyncio.Lock] = {}
        self._initialized = False

    # ---- lifecycle ----

    def init(self) -> None:
        if self._initialized:
            return
        self._initialized = True
        logger.info(
            "ExecutionOrchestrator ready (timeout=%.1fs, cache=%s, response_cache=%s)",
            self._max_execution_seconds,
            "on" if self._cache is not None else "off",
            "on" if self._response_cache is not None else "off",
        )

    def dispose(self) -> None:
        for cache in (self._cache, self._response_cache):
            if cache is not None:
                cache.dispose()
        self._usage_locks.clear()
        self._initialized = False
        logger.info("ExecutionOrchestrator disposed")

    # ---- helpers ----

    def _elapsed_ms(self, started: float) -> float:
        return (self._clock() - started) * 1000.0

    def _failure(self, error: str, started: float) -> TaskResult:
        return TaskResult(success=False, error=error, execution_time_ms=self._elapsed_ms(started))

    async def _record(self, task_id: str, result: TaskResult) -> None:
        lock = self._usage_locks.setdefault(task_id, asyncio.Lock())
        async with lock:
            try:
                await asyncio.to_thread(
                    self._storage.record_usage, task_id, result.success, result.execution_time_ms
                )
            except Exception:
                logger.exception("Failed to record usage for task_id=%s", task_id)

    def build_request(self, task: Task, context: ExecutionContext) -> AIRequest:
        site = context.website_context
        page = self._security.sanitize(context.page_content, site.security_level)
        return AIRequest(
            prompt=self._injector.inject(task.prompt_template, replace(context, page_content=page)),
            context=site,
            page_content=page,
            task_type=infer_task_type(task),
            output_format=task.output_format,
            constraints=build_security_constraints(site),
            task_id=task.id,
            user_input=context.user_input,
            timestamp=datetime.now(),
        )

    def _simulate(self, task: Task, request: AIRequest) -> AIResponse:
        return AIResponse(
            content=(
                f'[SIMULATED] Task "{task.name}" would execute with context from '
                f"{request.context.domain}"
            ),
            format=task.output_format,
            confidence=1.0,
            timestamp=datetime.now(),
            request_id=f"dry-run-{task.id}",
            automation_instructions=list(task.automation_steps),
        )

    async def _process_ai(self, request: AIRequest) -> AIResponse:
        if self._response_cache is None:
            return await self._ai.process(request)

        key = ai_request_cache_key(request)
        cached = self._response_cache.get(key)
        if cached is not None:
            logger.debug("AI response cache hit task_id=%s key=%s", request.task_id, key)
            return AIResponse.from_dict(cached)

        response = await self._ai.process(request)
        self._response_cache.set(key, response.to_dict())
        return response

    # ---- execution ----

    async def execute(
        self,
        task_id: str,
        context: ExecutionContext,
        *,
        dry_run: bool = False,
        validate_first: bool = False,
    ) -> TaskResult:
        started = self._clock()

        task = self._tasks.get_task(task_id)
        if task is None:
            logger.info("Execute: task not found id=%s", task_id)
            return self._failure(f"Task {task_id} not found", started)

        if not task.is_enabled:
            result = self._failure(f'Task "{task.name}" is disabled', started)
            if not dry_run:
                await self._record(task_id, result)
            return result

        if validate_first:
            validation = self._tasks.validate_task(task_id)
            if not validation.is_valid:
                result = self._failure(
                    "Task validation failed: " + "; ".join(validation.errors), started
                )
                if not dry_run:
                    await self._record(task_id, result)
                return result

        ctx = replace(context, task_id=task_id)
        key = execution_cache_key(task_id, ctx)

        if not dry_run and self._cache is not None:
            cached = self._cache.get(key)
            if cached is not None:
                logger.debug("Execute: cache hit task_id=%s key=%s", task_id, key)
                hit = TaskResult.from_dict(cached)
                hit.cached = True
                return hit

        try:
            request = self.build_request(task, ctx)
            if dry_run:
                response = self._simulate(task, request)
            else:
                logger.info(
                    "Execute: task_id=%s type=%s domain=%s",
                    task_id,
                    request.task_type,
                    request.context.domain,
                )
                response = await asyncio.wait_for(
                    self._process_ai(request), timeout=self._max_execution_seconds
                )
            steps = response.automation_instructions
            result = TaskResult(
                success=True,
                content=response.content,
                format=response.format,
                execution_time_ms=self._elapsed_ms(started),
                automation_summary=(
                    f"{len(steps)} automation step(s): " + ", ".join(str(s.type) for s in steps)
                    if steps
                    else None
                ),
            )
        except asyncio.CancelledError:
            result = self._failure("Execution cancelled", started)
            if not dry_run:
                await asyncio.shield(self._record(task_id, result))
            raise
        except TimeoutError:
            result = self._failure(
                f"Execution timed out after {self._max_execution_seconds:g}s", started
            )
        except AIServiceError as e:
            logger.info("Execute: AI service error task_id=%s retryable=%s: %s", task_id, e.retryable, e)
            result = self._failure(str(e) or "AI service error", started)
        except Exception as e:
            logger.exception("Execute: unexpected error task_id=%s", task_id)
            result = self._failure(str(e) or e.__class__.__name__, started)

        if not dry_run:
            await self._record(task_id, result)
            if result.success and self._cache is not None:
                self._cache.set(key, result.to_dict())

        return result

    async def execute_sequence(
        self,
        task_ids: Iterable[str],
        context: ExecutionContext,
        *,
        dry_run: bool = False,
        validate_first: bool = False,
    ) -> list[TaskResult]:
        """Run tasks in order; outside dry-run the sequence stops at the first failure."""
        results: list[TaskResult] = []
        for task_id in task_ids:
            result = await self.execute(
                task_id, context, dry_run=dry_run, validate_first=validate_first
            )
            results.append(result)
            if not result.success and not dry_run:
                logger.info("Sequence stopped at task_id=%s: %s", task_id, result.error)
                break
        return results

    def rank_tasks(self, context: WebsiteContext) -> list[Task]:
        return self._tasks.tasks_for_website(context)

    # ---- testing ----

    async def test_task(
        self, task_id: str, sample_context: ExecutionContext | None = None
    ) -> TaskTestResult:
        started = self._clock()
        validation = self._tasks.validate_task(task_id)
        if not validation.is_valid:
            return TaskTestResult(
                success=False,
                execution_time_ms=self._elapsed_ms(started),
                validation_result=validation,
                error="Task validation failed: " + "; ".join(validation.errors),
            )

        result = await self.execute(task_id, sample_context or sample_execution_context(), dry_run=True)
        return TaskTestResult(
            success=result.success,
            execution_time_ms=self._elapsed_ms(started),
            validation_result=validation,
            result=result,
            error=result.error,
        )

    async def test_all(self) -> dict[str, TaskTestResult]:
        out: dict[str, TaskTestResult] = {}
        for task_id in self._tasks.get_all_tasks():
            out[task_id] = await self.test_task(task_id)
        passed = sum(1 for r in out.values() if r.success)
        logger.info("Tested %d tasks: %d passed", len(out), passed)
        return out

    def cache_metrics(self) -> CacheMetrics | None:
        return self._cache.metrics() if self._cache is not None else None

    def response_cache_metrics(self) -> CacheMetrics | None:
        return self._response_cache.metrics() if self._response_cache is not None else None
