# tests/test_orchestrator.py

from __future__ import annotations

import asyncio

import pytest

from pagepilot.cache.bounded_cache import BoundedCache
from pagepilot.execution.hashing import ai_request_cache_key
from pagepilot.execution.orchestrator import (
    ExecutionOrchestrator,
    infer_task_type,
    sample_execution_context,
)
from pagepilot.tasks.task_models import (
    AutomationStep,
    SecurityLevel,
    TaskType,
)

from .conftest import make_context, make_draft
from .fakes import FakeAIClient, failing_ai


@pytest.mark.asyncio
async def test_execute_success_records_and_caches(orchestrator, index, repo, ai, cache) -> None:
    task_id = index.create_task(make_draft())

    result = await orchestrator.execute(task_id, make_context())

    assert result.success
    assert result.content == "generated"
    assert result.cached is False
    assert ai.requests[0].prompt == "Summarize Example Page on example.com"
    assert ai.requests[0].task_type == TaskType.GENERATE_TEXT
    assert ai.requests[0].constraints.allowed_domains == ("example.com",)
    assert repo.get_usage_metrics(task_id).usage_count == 1
    assert len(cache) == 1


@pytest.mark.asyncio
async def test_second_execution_is_served_from_cache(orchestrator, index, repo, ai) -> None:
    task_id = index.create_task(make_draft())

    await orchestrator.execute(task_id, make_context())
    again = await orchestrator.execute(task_id, make_context())

    assert again.success
    assert again.cached is True
    assert again.content == "generated"
    assert len(ai.requests) == 1
    assert repo.get_usage_metrics(task_id).usage_count == 1
    assert orchestrator.cache_metrics().hits == 1


@pytest.mark.asyncio
async def test_update_invalidates_cached_result(orchestrator, index, ai) -> None:
    task_id = index.create_task(make_draft())
    await orchestrator.execute(task_id, make_context())

    index.update_task(task_id, prompt_template="Describe {{domain}} in detail")
    result = await orchestrator.execute(task_id, make_context())

    assert result.cached is False
    assert len(ai.requests) == 2


@pytest.mark.asyncio
async def test_dry_run_simulates_without_side_effects(orchestrator, index, repo, ai, cache) -> None:
    task_id = index.create_task(make_draft())

    result = await orchestrator.execute(task_id, make_context(), dry_run=True)

    assert result.success
    assert result.content == '[SIMULATED] Task "Summarize page" would execute with context from example.com'
    assert ai.requests == []
    assert repo.get_usage_metrics(task_id) is None
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_missing_task_records_nothing(orchestrator, repo) -> None:
    result = await orchestrator.execute("nope", make_context())
    assert not result.success
    assert "not found" in result.error
    assert repo.metrics == {}


@pytest.mark.asyncio
async def test_disabled_task_is_recorded_failure(orchestrator, index, repo, ai) -> None:
    task_id = index.create_task(make_draft(is_enabled=False))

    result = await orchestrator.execute(task_id, make_context())

    assert not result.success
    assert "disabled" in result.error
    assert ai.requests == []
    assert repo.get_usage_metrics(task_id).error_count == 1


@pytest.mark.asyncio
async def test_validate_first_blocks_invalid_task(orchestrator, index, repo) -> None:
    task_id = index.create_task(make_draft())
    # Bypass TaskIndex validation to store a broken task.
    repo.update_task(task_id, {"description": ""})

    result = await orchestrator.execute(task_id, make_context(), validate_first=True)

    assert not result.success
    assert result.error.startswith("Task validation failed")
    assert repo.get_usage_metrics(task_id).error_count == 1


@pytest.mark.asyncio
async def test_ai_error_becomes_failure_and_is_not_cached(index, repo, cache) -> None:
    orch = ExecutionOrchestrator(index, repo, failing_ai("boom"), cache=cache)
    task_id = index.create_task(make_draft())

    result = await orch.execute(task_id, make_context())

    assert not result.success
    assert result.error == "boom"
    assert len(cache) == 0
    metrics = repo.get_usage_metrics(task_id)
    assert metrics.error_count == 1
    assert metrics.success_rate == 0


@pytest.mark.asyncio
async def test_timeout_is_recorded_failure(index, repo, cache) -> None:
    orch = ExecutionOrchestrator(
        index, repo, FakeAIClient(delay=1.0), cache=cache, max_execution_seconds=0.05
    )
    task_id = index.create_task(make_draft())

    result = await orch.execute(task_id, make_context())

    assert not result.success
    assert "timed out" in result.error
    assert repo.get_usage_metrics(task_id).error_count == 1


@pytest.mark.asyncio
async def test_cancellation_is_recorded_then_propagates(index, repo, cache) -> None:
    orch = ExecutionOrchestrator(index, repo, FakeAIClient(delay=5.0), cache=cache)
    task_id = index.create_task(make_draft())

    running = asyncio.create_task(orch.execute(task_id, make_context()))
    await asyncio.sleep(0.05)
    running.cancel()
    with pytest.raises(asyncio.CancelledError):
        await running

    assert repo.get_usage_metrics(task_id).error_count == 1


@pytest.mark.asyncio
async def test_concurrent_executions_all_recorded(index, repo) -> None:
    orch = ExecutionOrchestrator(index, repo, FakeAIClient(delay=0.01))
    task_id = index.create_task(make_draft())

    contexts = [make_context(user_input={"n": str(i)}) for i in range(5)]
    results = await asyncio.gather(*(orch.execute(task_id, c) for c in contexts))

    assert all(r.success for r in results)
    assert repo.get_usage_metrics(task_id).usage_count == 5


@pytest.mark.asyncio
async def test_restricted_context_is_sanitized(orchestrator, index, ai) -> None:
    task_id = index.create_task(make_draft())
    ctx = make_context(
        "bank.example.com",
        text="contact joe@bank.com " + "y" * 3000,
        level=SecurityLevel.RESTRICTED,
    )

    await orchestrator.execute(task_id, ctx)

    request = ai.requests[0]
    assert len(request.page_content.text_content) == 1000
    assert "joe@bank.com" not in request.page_content.text_content
    assert request.constraints.max_content_length == 1000
    # caller's context is untouched
    assert "joe@bank.com" in ctx.page_content.text_content


@pytest.mark.asyncio
async def test_automation_summary(index, repo) -> None:
    steps = [AutomationStep(type="click", selector="#a"), AutomationStep(type="wait")]
    orch = ExecutionOrchestrator(index, repo, FakeAIClient(steps=steps))
    task_id = index.create_task(make_draft(automation_steps=steps))

    result = await orch.execute(task_id, make_context())

    assert result.automation_summary == "2 automation step(s): click, wait"


@pytest.mark.asyncio
async def test_execute_sequence_stops_at_first_failure(orchestrator, index) -> None:
    ok = index.create_task(make_draft())
    off = index.create_task(make_draft(name="Off", is_enabled=False))
    never = index.create_task(make_draft(name="Never"))

    results = await orchestrator.execute_sequence([ok, off, never], make_context())
    assert [r.success for r in results] == [True, False]

    dry = await orchestrator.execute_sequence([ok, off, never], make_context(), dry_run=True)
    assert [r.success for r in dry] == [True, False, True]


@pytest.mark.asyncio
async def test_test_all_dry_runs_every_task(orchestrator, index, repo, ai) -> None:
    good = index.create_task(make_draft())
    bad = index.create_task(make_draft(name="Broken"))
    repo.update_task(bad, {"prompt_template": ""})

    results = await orchestrator.test_all()

    assert results[good].success
    assert results[good].result.content.startswith("[SIMULATED]")
    assert "example.com" in results[good].result.content
    assert not results[bad].success
    assert not results[bad].validation_result.is_valid
    assert ai.requests == []
    assert repo.metrics == {}


def test_rank_tasks_delegates_to_index(orchestrator, index) -> None:
    task_id = index.create_task(make_draft())
    ranked = orchestrator.rank_tasks(make_context().website_context)
    assert [t.id for t in ranked] == [task_id]


def test_infer_task_type(index) -> None:
    def _type(**kw):
        return infer_task_type(index.get_task(index.create_task(make_draft(**kw))))

    assert _type(automation_steps=[AutomationStep(type="wait")]) == TaskType.AUTOMATE_ACTION
    assert _type(name="Extract prices", description="d") == TaskType.EXTRACT_DATA
    assert _type(name="Review", description="Review the page") == TaskType.ANALYZE_CONTENT
    assert _type(name="Write", description="Write a reply", prompt_template="Reply to {{title}}") == TaskType.GENERATE_TEXT


def test_sample_context() -> None:
    ctx = sample_execution_context()
    assert ctx.website_context.domain == "example.com"
    assert ctx.page_content.title == "Sample Page"
    assert ctx.page_content.headings == ["Main Heading", "Sub Heading"]


def test_dispose_clears_cache(orchestrator, cache) -> None:
    cache.set("k", 1)
    orchestrator.dispose()
    assert len(cache) == 0


@pytest.fixture()
def responses(clock) -> BoundedCache:
    return BoundedCache(64 * 1024, 60.0, clock=clock, name="ai_responses")


@pytest.mark.asyncio
async def test_identical_prompts_share_one_ai_call(index, repo, ai, cache, responses) -> None:
    orch = ExecutionOrchestrator(index, repo, ai, cache=cache, response_cache=responses)
    first = index.create_task(make_draft())
    second = index.create_task(make_draft(name="Page digest"))

    a = await orch.execute(first, make_context())
    b = await orch.execute(second, make_context())

    assert a.success and b.success
    assert b.content == "generated"
    assert b.cached is False
    assert len(ai.requests) == 1
    assert repo.get_usage_metrics(second).usage_count == 1
    assert orch.response_cache_metrics().hits == 1


@pytest.mark.asyncio
async def test_response_cache_keys_on_user_input(index, repo, ai, responses) -> None:
    orch = ExecutionOrchestrator(index, repo, ai, response_cache=responses)
    task_id = index.create_task(make_draft())

    await orch.execute(task_id, make_context(user_input={"tone": "short"}))
    await orch.execute(task_id, make_context(user_input={"tone": "long"}))
    await orch.execute(task_id, make_context(user_input={"tone": " short "}))

    assert len(ai.requests) == 2


@pytest.mark.asyncio
async def test_response_cache_skips_dry_run_and_failures(index, repo, responses) -> None:
    orch = ExecutionOrchestrator(index, repo, failing_ai("boom"), response_cache=responses)
    task_id = index.create_task(make_draft())

    await orch.execute(task_id, make_context(), dry_run=True)
    failed = await orch.execute(task_id, make_context())

    assert not failed.success
    assert len(responses) == 0
    assert responses.metrics().misses == 1


@pytest.mark.asyncio
async def test_cached_response_keeps_automation_steps(index, repo, responses) -> None:
    steps = [AutomationStep(type="click", selector="#go")]
    ai = FakeAIClient(steps=steps)
    orch = ExecutionOrchestrator(index, repo, ai, response_cache=responses)
    first = index.create_task(make_draft(automation_steps=steps))
    second = index.create_task(make_draft(name="Again", automation_steps=steps))

    await orch.execute(first, make_context())
    again = await orch.execute(second, make_context())

    assert len(ai.requests) == 1
    assert again.automation_summary == "1 automation step(s): click"


def test_ai_request_cache_key_ignores_task_id(orchestrator, index) -> None:
    one = index.get_task(index.create_task(make_draft()))
    two = index.get_task(index.create_task(make_draft(name="Page digest")))
    other = index.get_task(index.create_task(make_draft(prompt_template="Describe {{domain}} in detail")))

    key_one = ai_request_cache_key(orchestrator.build_request(one, make_context()))
    assert key_one.startswith("ai_")
    assert key_one == ai_request_cache_key(orchestrator.build_request(two, make_context()))
    assert key_one != ai_request_cache_key(orchestrator.build_request(other, make_context()))
    assert key_one != ai_request_cache_key(
        orchestrator.build_request(one, make_context("shop.example.com"))
    )
