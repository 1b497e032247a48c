# src/pagepilot/execution/hashing.py

from __future__ import annotations

import json
from typing import Any

from ..tasks.task_models import AIRequest, ExecutionContext

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _utf16_units(text: str) -> list[int]:
    raw = text.encode("utf-16-le", errors="surrogatepass")
    return [int.from_bytes(raw[i : i + 2], "little") for i in range(0, len(raw), 2)]


def _to_base36(n: int) -> str:
    if n == 0:
        return "0"
    out: list[str] = []
    while n:
        n, r = divmod(n, 36)
        out.append(_BASE36[r])
    return "".join(reversed(out))


def rolling_hash(text: str) -> str:
    """31-multiplier rolling hash with signed 32-bit overflow, returned as abs() in base 36."""
    h = 0
    for unit in _utf16_units(text):
        h = (h * 31 + unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return _to_base36(abs(h))


def sanitize_user_input(user_input: dict[str, Any] | None) -> dict[str, str]:
    if not user_input:
        return {}
    return {
        str(k): str(v).strip()
        for k, v in sorted(user_input.items(), key=lambda kv: str(kv[0]))
        if v is not None
    }


def execution_cache_key(task_id: str, context: ExecutionContext) -> str:
    site = context.website_context
    page = context.page_content
    user_json = json.dumps(sanitize_user_input(context.user_input), ensure_ascii=False, sort_keys=True)
    material = "|".join((task_id, site.domain, page.url, page.title, user_json))
    return f"{task_id}_{rolling_hash(material)}"


def ai_request_cache_key(request: AIRequest) -> str:
    """
    Key for a cached AI response. Built from what the model sees, not from the
    task id, so tasks that render the same prompt for the same page share it.
    """
    site = request.context
    material: dict[str, Any] = {
        "prompt": request.prompt,
        "taskType": str(request.task_type),
        "outputFormat": str(request.output_format),
        "domain": site.domain,
        "category": str(site.category),
        "pageType": str(site.page_type),
    }
    if request.user_input:
        material["userInput"] = sanitize_user_input(request.user_input)
    return "ai_" + rolling_hash(json.dumps(material, ensure_ascii=False, separators=(",", ":")))
