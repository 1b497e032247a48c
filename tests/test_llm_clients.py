# tests/test_llm_clients.py

from __future__ import annotations

import json
from types import SimpleNamespace

import httpx
import openai
import pytest

from pagepilot.core.errors import AIServiceError
from pagepilot.execution.orchestrator import ExecutionOrchestrator
from pagepilot.llm.client import (
    OpenAICompatibleAIClient,
    build_system_prompt,
    friendly_ai_error_message,
    parse_automation_steps,
)
from pagepilot.llm.offline import OfflineAIClient
from pagepilot.tasks.task_models import OutputFormat, SecurityLevel

from .conftest import make_context, make_draft


def _settings(**overrides) -> SimpleNamespace:
    base = dict(
        ai_api_key="test-key",
        ai_base_url="https://example.invalid/v1",
        ai_models=["m1", "m2"],
        extra_headers={"X-Title": "pagepilot"},
        ai_timeout_seconds=5.0,
    )
    base.update(overrides)
    return SimpleNamespace(**base)


def _completion(text: str, finish: str = "stop") -> SimpleNamespace:
    return SimpleNamespace(
        id="cmpl-1",
        choices=[SimpleNamespace(message=SimpleNamespace(content=text), finish_reason=finish)],
    )


def _api_error(cls, status: int):
    request = httpx.Request("POST", "https://example.invalid/v1/chat/completions")
    response = httpx.Response(status, request=request)
    return cls("err", response=response, body=None)


class FakeCompletions:
    """Scripted chat.completions: each model maps to a result or an exception."""

    def __init__(self, script: dict) -> None:
        self.script = script
        self.calls: list[str] = []

    async def create(self, *, model, messages, extra_headers=None, timeout=None):
        self.calls.append(model)
        outcome = self.script[model]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _client(script: dict, **settings) -> tuple[OpenAICompatibleAIClient, FakeCompletions]:
    completions = FakeCompletions(script)
    fake = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return OpenAICompatibleAIClient(_settings(**settings), client=fake), completions


def _request(index, repo, **draft):
    task_id = index.create_task(make_draft(**draft))
    orch = ExecutionOrchestrator(index, repo, OfflineAIClient())
    return orch.build_request(index.get_task(task_id), make_context())


def test_missing_configuration_raises() -> None:
    with pytest.raises(AIServiceError):
        OpenAICompatibleAIClient(_settings(ai_api_key=None))
    with pytest.raises(AIServiceError):
        OpenAICompatibleAIClient(_settings(ai_models=[]))


def test_configuration_errors_have_friendly_messages() -> None:
    with pytest.raises(AIServiceError) as no_key:
        OpenAICompatibleAIClient(_settings(ai_api_key=" "))
    assert "missing API key" in friendly_ai_error_message(no_key.value)

    with pytest.raises(AIServiceError) as no_models:
        OpenAICompatibleAIClient(_settings(ai_models=[]))
    assert "no models" in friendly_ai_error_message(no_models.value)

    assert friendly_ai_error_message(RuntimeError("")) == "AI error."


@pytest.mark.asyncio
async def test_falls_back_to_next_model(index, repo) -> None:
    client, completions = _client(
        {"m1": _api_error(openai.NotFoundError, 404), "m2": _completion("hello")}
    )
    response = await client.process(_request(index, repo))

    assert response.content == "hello"
    assert response.request_id == "cmpl-1"
    assert completions.calls == ["m1", "m2"]

    # 404 models are skipped for a while
    await client.process(_request(index, repo))
    assert completions.calls == ["m1", "m2", "m2"]


@pytest.mark.asyncio
async def test_auth_error_fails_fast(index, repo) -> None:
    client, completions = _client(
        {"m1": _api_error(openai.AuthenticationError, 401), "m2": _completion("x")}
    )
    with pytest.raises(AIServiceError) as exc_info:
        await client.process(_request(index, repo))

    assert exc_info.value.code == "auth"
    assert exc_info.value.retryable is False
    assert completions.calls == ["m1"]


@pytest.mark.asyncio
async def test_rate_limit_everywhere_is_retryable(index, repo) -> None:
    client, _ = _client(
        {
            "m1": _api_error(openai.RateLimitError, 429),
            "m2": _api_error(openai.RateLimitError, 429),
        }
    )
    with pytest.raises(AIServiceError) as exc_info:
        await client.process(_request(index, repo))
    assert exc_info.value.retryable is True


@pytest.mark.asyncio
async def test_rate_limit_before_missing_model_stays_retryable(index, repo) -> None:
    client, completions = _client(
        {
            "m1": _api_error(openai.RateLimitError, 429),
            "m2": _api_error(openai.NotFoundError, 404),
        }
    )
    with pytest.raises(AIServiceError) as exc_info:
        await client.process(_request(index, repo))
    assert exc_info.value.retryable is True
    assert exc_info.value.code == "rate_limit"
    assert completions.calls == ["m1", "m2"]


@pytest.mark.asyncio
async def test_missing_models_only_is_not_retryable(index, repo) -> None:
    client, _ = _client(
        {
            "m1": _api_error(openai.NotFoundError, 404),
            "m2": _api_error(openai.NotFoundError, 404),
        }
    )
    with pytest.raises(AIServiceError) as exc_info:
        await client.process(_request(index, repo))
    assert exc_info.value.retryable is False
    assert exc_info.value.code == "all_failed"


@pytest.mark.asyncio
async def test_empty_content_tries_next(index, repo) -> None:
    client, completions = _client({"m1": _completion("  "), "m2": _completion("fine", "length")})
    response = await client.process(_request(index, repo))
    assert response.content == "fine"
    assert response.confidence < 0.9


def test_parse_automation_steps() -> None:
    text, steps = parse_automation_steps(
        'Do this.\n<steps>[{"type": "click", "selector": "#go"}, {"type": "fly"}]</steps>'
    )
    assert text == "Do this."
    assert [s.selector for s in steps] == ["#go"]

    untouched, none = parse_automation_steps("a <steps>not json</steps>")
    assert untouched == "a <steps>not json</steps>"
    assert none == []


def test_system_prompt_reflects_constraints(index, repo) -> None:
    request = _request(index, repo, output_format=OutputFormat.JSON)
    request.context.security_level = SecurityLevel.CAUTIOUS
    prompt = build_system_prompt(request)
    assert "JSON" in prompt
    assert "example.com" in prompt


@pytest.mark.asyncio
async def test_offline_client_is_deterministic(index, repo) -> None:
    client = OfflineAIClient()
    request = _request(index, repo, output_format=OutputFormat.JSON)

    first = await client.process(request)
    second = await client.process(request)

    assert first.content == second.content
    assert json.loads(first.content)["domain"] == "example.com"
    assert first.format == OutputFormat.JSON
