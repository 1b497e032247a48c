# src/pagepilot/llm/client.py

from __future__ import annotations

import json
import logging
import re
import time
import uuid
from datetime import datetime
from typing import Any

import httpx
import openai
from openai import AsyncOpenAI

from ..config import Settings
from ..core.errors import AIServiceError
from ..tasks.task_models import (
    AIRequest,
    AIResponse,
    AutomationStep,
    OutputFormat,
    StepType,
    TaskType,
)

logger = logging.getLogger(__name__)

BAD_MODEL_RETRY_SECONDS = 3600.0

_TASK_INSTRUCTIONS: dict[TaskType, str] = {
    TaskType.GENERATE_TEXT: "Generate the requested text using the page context.",
    TaskType.ANALYZE_CONTENT: "Analyze the page content and report the key findings.",
    TaskType.EXTRACT_DATA: "Extract the requested data from the page content. Do not invent values.",
    TaskType.AUTOMATE_ACTION: (
        "Plan browser automation steps. After your answer, output a JSON array of steps "
        'inside <steps>...</steps>, each {"type": "click|type|select|extract|wait", '
        '"selector": "...", "value": "...", "description": "..."}.'
    ),
}

_FORMAT_INSTRUCTIONS: dict[OutputFormat, str] = {
    OutputFormat.PLAIN_TEXT: "Answer in plain text.",
    OutputFormat.MARKDOWN: "Answer in Markdown.",
    OutputFormat.HTML: "Answer with an HTML fragment (no <html> or <body>).",
    OutputFormat.JSON: "Answer with a single valid JSON value and nothing else.",
}

_STEPS_RE = re.compile(r"<steps>(.*?)</steps>", re.DOTALL | re.IGNORECASE)


def _is_auth_error(exc: Exception) -> bool:
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return True
    return exc.__class__.__name__ in {"UnauthorizedError"}


def _is_rate_limit_error(exc: Exception) -> bool:
    return isinstance(exc, openai.RateLimitError)


def _is_connection_error(exc: Exception) -> bool:
    return isinstance(exc, (openai.APIConnectionError, httpx.TimeoutException))


def _is_not_found_error(exc: Exception) -> bool:
    return isinstance(exc, openai.NotFoundError)


def _make_timeout_obj(total_s: float, connect_s: float = 5.0) -> httpx.Timeout:
    return httpx.Timeout(total_s, connect=min(connect_s, total_s))


def build_system_prompt(request: AIRequest) -> str:
    c = request.constraints
    lines = [
        "You are a browser assistant that runs user-defined tasks on web pages.",
        _TASK_INSTRUCTIONS.get(request.task_type, _TASK_INSTRUCTIONS[TaskType.GENERATE_TEXT]),
        _FORMAT_INSTRUCTIONS.get(request.output_format, _FORMAT_INSTRUCTIONS[OutputFormat.PLAIN_TEXT]),
        f"Security level: {request.context.security_level}.",
    ]
    if not c.allow_sensitive_data:
        lines.append("Never repeat passwords, payment details or other personal data.")
    if c.restricted_selectors:
        lines.append("Never interact with elements matching: " + ", ".join(c.restricted_selectors))
    if c.allowed_domains:
        lines.append("Only act on: " + ", ".join(c.allowed_domains))
    return "\n".join(lines)


def build_user_message(request: AIRequest) -> str:
    page = request.page_content
    limit = request.constraints.max_content_length
    parts = [request.prompt, "", f"Page: {page.title} ({page.url or request.context.domain})"]
    if page.headings:
        parts.append("Headings: " + " | ".join(page.headings[:20]))
    if page.text_content:
        parts.append("Content:\n" + page.text_content[:limit])
    return "\n".join(parts)


def parse_automation_steps(content: str) -> tuple[str, list[AutomationStep]]:
    """Split "<steps>[...]</steps>" off a response. Malformed blocks are left in the text."""
    m = _STEPS_RE.search(content or "")
    if not m:
        return content, []
    try:
        raw = json.loads(m.group(1).strip())
    except ValueError:
        logger.info("AI: could not parse automation steps block")
        return content, []
    if not isinstance(raw, list):
        return content, []

    known = {str(t) for t in StepType}
    steps = [
        AutomationStep.from_dict(s)
        for s in raw
        if isinstance(s, dict) and str(s.get("type") or "") in known
    ]
    text = (content[: m.start()] + content[m.end() :]).strip()
    return text, steps


def friendly_ai_error_message(err: Exception) -> str:
    msg = str(err).strip() or "AI error."
    if "API key is not set" in msg:
        return "AI is not configured (missing API key). Set PAGEPILOT_AI_API_KEY in .env."
    if "model list is empty" in msg:
        return "AI is not configured (no models). Set PAGEPILOT_AI_MODELS in .env."
    return msg


class OpenAICompatibleAIClient:
    """
    AIClient backed by any OpenAI-compatible chat completions endpoint.

    Behavior:
    - Tries models in the configured order.
    - 404 (model not available) -> remember for an hour, try next.
    - Rate limit / network issues -> try next; retryable if all fail.
    - Auth issues -> fail fast (no retries across models).
    """

    def __init__(self, settings: Settings, *, client: AsyncOpenAI | None = None) -> None:
        self._models = [m.strip() for m in settings.ai_models if m and m.strip()]
        self._headers = dict(settings.extra_headers or {})
        self._timeout = _make_timeout_obj(float(settings.ai_timeout_seconds))
        self._bad_models: dict[str, float] = {}  # model -> retry_at (monotonic)

        if client is not None:
            self._client = client
            return

        if not settings.ai_api_key or not settings.ai_api_key.strip():
            raise AIServiceError("AI API key is not set. Set PAGEPILOT_AI_API_KEY in your .env.")
        if not self._models:
            raise AIServiceError("AI model list is empty. Set PAGEPILOT_AI_MODELS in your .env.")

        # No SDK retries: fallback across models is handled here.
        self._client = AsyncOpenAI(
            base_url=settings.ai_base_url,
            api_key=settings.ai_api_key,
            timeout=self._timeout,
            max_retries=0,
        )

    @property
    def models(self) -> list[str]:
        return list(self._models)

    async def _complete(self, model: str, messages: list[dict[str, str]]) -> Any:
        return await self._client.chat.completions.create(
            model=model,
            messages=messages,
            extra_headers=self._headers or None,
            timeout=self._timeout,
        )

    async def process(self, request: AIRequest) -> AIResponse:
        if not self._models:
            raise AIServiceError("AI model list is empty. Set PAGEPILOT_AI_MODELS in your .env.")

        messages = [
            {"role": "system", "content": build_system_prompt(request)},
            {"role": "user", "content": build_user_message(request)},
        ]

        last_error: Exception | None = None
        # Rate-limit or network failure seen on any model; a later 404 must not hide it.
        transient_error: Exception | None = None
        now = time.monotonic()

        for model in self._models:
            retry_at = self._bad_models.get(model)
            if retry_at is not None and retry_at > now:
                continue

            logger.info("AI: trying model=%s task_id=%s", model, request.task_id)
            t0 = time.monotonic()
            try:
                completion = await self._complete(model, messages)
            except Exception as e:
                last_error = e

                if _is_auth_error(e):
                    raise AIServiceError(
                        "AI authentication failed. Check PAGEPILOT_AI_API_KEY.",
                        code="auth",
                    ) from e

                if _is_not_found_error(e):
                    self._bad_models[model] = time.monotonic() + BAD_MODEL_RETRY_SECONDS
                    logger.info("AI: model not available (404): %s", model)
                elif _is_rate_limit_error(e):
                    transient_error = transient_error or e
                    logger.info("AI: rate-limited on model=%s, trying next", model)
                elif _is_connection_error(e):
                    transient_error = transient_error or e
                    logger.info("AI: network/timeout error on model=%s, trying next", model)
                else:
                    logger.info("AI: error on model=%s (%s), trying next", model, e.__class__.__name__)
                continue

            try:
                choice0 = completion.choices[0]
                content = choice0.message.content or ""
            except (AttributeError, IndexError):
                content = ""

            if not content.strip():
                last_error = AIServiceError(f"Model returned no content: {model}", retryable=True)
                logger.info("AI: empty response from model=%s, trying next", model)
                continue

            logger.info("AI: response from model=%s (%.2fs)", model, time.monotonic() - t0)
            text, steps = parse_automation_steps(content)
            finish = getattr(choice0, "finish_reason", None)
            return AIResponse(
                content=text,
                format=request.output_format,
                confidence=0.9 if finish in (None, "stop") else 0.6,
                timestamp=datetime.now(),
                request_id=str(getattr(completion, "id", "") or uuid.uuid4()),
                automation_instructions=steps,
            )

        if last_error is not None:
            for err in (last_error, transient_error):
                if err is None:
                    continue
                if _is_rate_limit_error(err):
                    raise AIServiceError(
                        "AI is rate-limited. Try again later.", retryable=True, code="rate_limit"
                    ) from err
                if _is_connection_error(err):
                    raise AIServiceError(
                        "AI network/timeout error. Try again later or change models.",
                        retryable=True,
                        code="network",
                    ) from err
            if isinstance(last_error, AIServiceError):
                raise last_error
            raise AIServiceError("All AI models failed.", code="all_failed") from last_error

        raise AIServiceError("All AI models failed.", code="all_failed")
