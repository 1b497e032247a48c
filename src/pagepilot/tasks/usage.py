# src/pagepilot/tasks/usage.py

"""
Incremental per-task usage statistics.

The success rate is stored as a percentage and the number of successes is
re-derived from it on every update (rounded half up). Long sequences can drift
because of that rounding; stored metrics depend on this exact arithmetic, so it
is kept as is.
"""

from __future__ import annotations

import math
import time
from dataclasses import replace

from .task_models import UsageMetrics


def js_round(x: float) -> int:
    """Round half up (2.5 -> 3, -2.5 -> -2), unlike Python's banker's round()."""
    return math.floor(x + 0.5)


def apply_usage(
    metrics: UsageMetrics | None,
    *,
    task_id: str,
    success: bool,
    execution_time_ms: float,
    now_ts: float | None = None,
) -> UsageMetrics:
    """Return updated metrics after one execution. The input is not mutated."""
    if metrics is None:
        metrics = UsageMetrics(task_id=task_id)
    if now_ts is None:
        now_ts = time.time()

    n = metrics.usage_count + 1
    prev_rate = metrics.success_rate

    if success:
        total_successes = js_round(prev_rate * (n - 1) / 100) + 1
        avg = (metrics.average_execution_time * (n - 1) + float(execution_time_ms)) / n
        errors = metrics.error_count
    else:
        total_successes = js_round(prev_rate * (n - 1) / 100)
        avg = metrics.average_execution_time
        errors = metrics.error_count + 1

    return replace(
        metrics,
        usage_count=n,
        success_rate=total_successes / n * 100,
        average_execution_time=avg,
        last_used=now_ts,
        error_count=errors,
    )
