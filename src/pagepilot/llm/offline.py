# src/pagepilot/llm/offline.py

from __future__ import annotations

import json
from datetime import datetime

from ..tasks.task_models import AIRequest, AIResponse, OutputFormat, TaskType


class OfflineAIClient:
    """
    Offline deterministic AI client used for demos when no external API is configured.

    Behavior:
    - JSON tasks -> a small JSON object describing the request
    - automation tasks -> echoes no steps (nothing is planned offline)
    - everything else -> a short text built from the prompt and page
    """

    async def process(self, request: AIRequest) -> AIResponse:
        page = request.page_content
        preview = " ".join((page.text_content or "").split())[:200]

        if request.output_format == OutputFormat.JSON:
            content = json.dumps(
                {
                    "offline": True,
                    "task_type": str(request.task_type),
                    "domain": request.context.domain,
                    "title": page.title,
                    "prompt": request.prompt[:500],
                },
                ensure_ascii=False,
            )
        else:
            lines = [
                "Offline demo mode: no external AI is configured.",
                "Set PAGEPILOT_AI_API_KEY (and PAGEPILOT_AI_MODELS) to enable real responses.",
                "",
                f"Task type: {request.task_type}",
                f"Page: {page.title or request.context.domain}",
                f"Prompt: {request.prompt}",
            ]
            if request.task_type == TaskType.AUTOMATE_ACTION:
                lines.append("Automation steps are not planned in offline mode.")
            if preview:
                lines.append(f"Content preview: {preview}")
            content = "\n".join(lines)

        return AIResponse(
            content=content,
            format=request.output_format,
            confidence=0.0,
            timestamp=datetime.now(),
            request_id=f"offline-{request.task_id}",
        )
