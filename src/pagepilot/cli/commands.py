# src/pagepilot/cli/commands.py

from __future__ import annotations

import contextlib
import inspect
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import cast
from urllib.parse import urlsplit

from ..cache.bounded_cache import BoundedCache
from ..core.errors import ValidationError
from ..core.ports import SecurityClassifier
from ..core.state import AppState
from ..matching.relevance import matching_rules
from ..prompts.injector import PromptInjector
from ..tasks.task_models import (
    ExecutionContext,
    PageContent,
    Task,
    TaskDraft,
    WebsiteCategory,
    WebsiteContext,
)

CommandEmitter = Callable[[str], None]
CommandResult = str | Awaitable[str]
CommandHandler2 = Callable[[AppState, list[str]], CommandResult]
CommandHandler3 = Callable[[AppState, list[str], CommandEmitter | None], CommandResult]
CommandHandler = CommandHandler2 | CommandHandler3

logger = logging.getLogger(__name__)

_RULE_CATEGORIES: dict[str, WebsiteCategory] = {
    "social-media": WebsiteCategory.SOCIAL_MEDIA,
    "ecommerce": WebsiteCategory.ECOMMERCE,
    "news": WebsiteCategory.NEWS_CONTENT,
}


class CommandRegistry:
    """Simple slash-command registry used by connectors (/help, /run, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    def handle(
        self,
        state: AppState,
        line: str,
        emit: CommandEmitter | None = None,
    ) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        Async handlers are run to completion through state.run_async().
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        try:
            nparams = len(inspect.signature(handler).parameters)
        except (TypeError, ValueError):
            nparams = 3

        if nparams >= 3:
            out = cast(CommandHandler3, handler)(state, args, emit)
        else:
            out = cast(CommandHandler2, handler)(state, args)

        if inspect.isawaitable(out):
            return state.run_async(_await(out))
        return out

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


async def _await(aw: Awaitable[str]) -> str:
    return await aw


registry = CommandRegistry()


def _ts(ts: float | None) -> str:
    if not ts:
        return "never"
    return datetime.fromtimestamp(ts).astimezone().strftime("%Y-%m-%d %H:%M:%S")


def context_from_url(url: str, security: SecurityClassifier) -> ExecutionContext:
    """Build an execution context for a bare URL (no page content extraction)."""
    raw = url.strip()
    if "://" not in raw:
        raw = "https://" + raw
    domain = (urlsplit(raw).hostname or "").lower()

    site = WebsiteContext(
        domain=domain,
        extracted_data={"url": raw},
        security_level=security.classify(domain),
    )
    rules = matching_rules(site)
    if rules:
        site.category = _RULE_CATEGORIES.get(rules[0].id, WebsiteCategory.CUSTOM)

    return ExecutionContext(
        website_context=site,
        page_content=PageContent(url=raw, title=domain),
    )


def _resolve_task(state: AppState, ref: str) -> Task | None:
    """Exact id, or a unique id prefix."""
    task = state.task_index.get_task(ref)
    if task is not None:
        return task
    found = [t for tid, t in state.task_index.get_all_tasks().items() if tid.startswith(ref)]
    return found[0] if len(found) == 1 else None


def _task_line(task: Task) -> str:
    flag = "on " if task.is_enabled else "off"
    return f"[{flag}] {task.id[:8]}  {task.name}  ({', '.join(task.website_patterns) or '-'})"


# ---- general ----


def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


def cmd_status(state: AppState, args: list[str]) -> str:
    models = getattr(state.ai, "models", None) or getattr(state.settings, "ai_models", None) or []
    m = state.cache.metrics()
    lines = [
        "Status:",
        f"  AI mode: {state.ai_mode.upper()} ({type(state.ai).__name__})",
        f"  Models (priority -> fallback): {', '.join(models)}",
        f"  Tasks: {len(state.task_index.get_all_tasks())}",
        f"  Cache: {m.entry_count} entries, {m.total_size} bytes, hit rate {m.hit_rate:.0%}",
    ]
    if state.response_cache is not None:
        r = state.response_cache.metrics()
        lines.append(f"  AI responses: {r.entry_count} cached, hit rate {r.hit_rate:.0%}")
    return "\n".join(lines)


# ---- task management ----


def cmd_tasks(state: AppState, args: list[str]) -> str:
    tasks = state.task_index.get_all_tasks()
    if not tasks:
        return "No tasks yet. Use /add <name> | <pattern[,pattern]> | <template>."
    return "\n".join(["Tasks:"] + [f"  {_task_line(t)}" for t in tasks.values()])


def cmd_add(state: AppState, args: list[str]) -> str:
    """
    /add <name> | <pattern[,pattern]> | <template>
    """
    parts = [p.strip() for p in " ".join(args).split("|", 2)]
    if len(parts) != 3 or not parts[0]:
        return "Usage: /add <name> | <pattern[,pattern]> | <template>"

    name, raw_patterns, template = parts
    draft = TaskDraft(
        name=name,
        description=name,
        prompt_template=template,
        website_patterns=[p.strip() for p in raw_patterns.split(",") if p.strip()],
    )
    try:
        task_id = state.task_index.create_task(draft)
    except ValidationError as e:
        return "Task not created:\n" + "\n".join(f"  - {err}" for err in e.errors)
    return f"Task created: {task_id}"


def cmd_show(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /show <id>"
    task = _resolve_task(state, args[0])
    if task is None:
        return f"Task not found: {args[0]}"
    lines = [
        f"Task {task.id}",
        f"  Name: {task.name}",
        f"  Enabled: {'yes' if task.is_enabled else 'no'}",
        f"  Patterns: {', '.join(task.website_patterns) or '-'}",
        f"  Format: {task.output_format}",
        f"  Tags: {', '.join(task.tags) or '-'}",
        f"  Uses: {task.usage_count}",
        f"  Template: {task.prompt_template}",
    ]
    if task.automation_steps:
        lines.append(f"  Automation steps: {len(task.automation_steps)}")
    return "\n".join(lines)


def cmd_delete(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /delete <id>"
    task = _resolve_task(state, args[0])
    if task is None or not state.task_index.delete_task(task.id):
        return f"Task not found: {args[0]}"
    return f"Task deleted: {task.name}"


def cmd_dup(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /dup <id> [new name]"
    task = _resolve_task(state, args[0])
    if task is None:
        return f"Task not found: {args[0]}"
    new_name = " ".join(args[1:]).strip() or None
    try:
        new_id = state.task_index.duplicate_task(task.id, new_name)
    except ValidationError as e:
        return f"Task not duplicated: {e}"
    return f"Task duplicated: {new_id}"


def _set_enabled(state: AppState, args: list[str], enabled: bool) -> str:
    verb = "enable" if enabled else "disable"
    if not args:
        return f"Usage: /{verb} <id>"
    task = _resolve_task(state, args[0])
    if task is None:
        return f"Task not found: {args[0]}"
    state.task_index.update_task(task.id, is_enabled=enabled)
    return f"Task {verb}d: {task.name}"


def cmd_enable(state: AppState, args: list[str]) -> str:
    return _set_enabled(state, args, True)


def cmd_disable(state: AppState, args: list[str]) -> str:
    return _set_enabled(state, args, False)


# ---- matching / execution ----


def cmd_rank(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /rank <url>"
    ctx = context_from_url(args[0], state.security)
    site = ctx.website_context
    ranked = state.orchestrator.rank_tasks(site)
    header = f"Tasks for {site.domain} (category={site.category}, security={site.security_level}):"
    if not ranked:
        return header + "\n  (no matching tasks)"
    scorer = state.task_index.scorer
    lines = [header]
    for i, task in enumerate(ranked, start=1):
        lines.append(f"  {i}. ({scorer.score(task, site):.1f}) {_task_line(task)}")
    return "\n".join(lines)


async def cmd_run(state: AppState, args: list[str], emit: CommandEmitter | None = None) -> str:
    """
    /run <id> <url>         -> execute through the AI client
    /run <id> <url> --dry   -> simulate only
    """
    dry = "--dry" in args
    rest = [a for a in args if a != "--dry"]
    if len(rest) < 2:
        return "Usage: /run <id> <url> [--dry]"
    task = _resolve_task(state, rest[0])
    if task is None:
        return f"Task not found: {rest[0]}"

    if emit and not dry:
        with contextlib.suppress(Exception):
            emit(f'[RUN] Executing "{task.name}"...')

    ctx = context_from_url(rest[1], state.security)
    result = await state.orchestrator.execute(task.id, ctx, dry_run=dry)

    head = f"[{'cached' if result.cached else 'done'} in {result.execution_time_ms:.0f} ms]"
    if not result.success:
        return f"{head} FAILED: {result.error}"
    out = f"{head}\n{result.content or ''}"
    if result.automation_summary:
        out += f"\n({result.automation_summary})"
    return out


async def cmd_testall(state: AppState, args: list[str]) -> str:
    results = await state.orchestrator.test_all()
    if not results:
        return "No tasks to test."
    tasks = state.task_index.get_all_tasks()
    lines = ["Task tests:"]
    for task_id, r in results.items():
        name = tasks[task_id].name if task_id in tasks else task_id
        status = "PASS" if r.success else f"FAIL ({r.error})"
        lines.append(f"  {task_id[:8]}  {name}: {status}")
    passed = sum(1 for r in results.values() if r.success)
    lines.append(f"{passed}/{len(results)} passed")
    return "\n".join(lines)


def cmd_stats(state: AppState, args: list[str]) -> str:
    """
    /stats       -> usage for every task
    /stats <id>  -> usage for one task
    """
    if args:
        task = _resolve_task(state, args[0])
        if task is None:
            return f"Task not found: {args[0]}"
        metrics = state.store.get_usage_metrics(task.id)
        if metrics is None:
            return f"No usage recorded for {task.name}."
        return (
            f"Usage for {task.name}:\n"
            f"  Runs: {metrics.usage_count}\n"
            f"  Success rate: {metrics.success_rate:.1f}%\n"
            f"  Average time: {metrics.average_execution_time:.0f} ms\n"
            f"  Errors: {metrics.error_count}\n"
            f"  Last used: {_ts(metrics.last_used)}"
        )

    all_metrics = state.store.get_all_usage_metrics()
    if not all_metrics:
        return "No usage recorded yet."
    tasks = state.task_index.get_all_tasks()
    lines = ["Usage:"]
    for task_id, m in all_metrics.items():
        name = tasks[task_id].name if task_id in tasks else task_id
        lines.append(
            f"  {name}: {m.usage_count} runs, {m.success_rate:.1f}% ok, "
            f"{m.average_execution_time:.0f} ms avg"
        )
    return "\n".join(lines)


def _cache_block(title: str, cache: BoundedCache) -> list[str]:
    m = cache.metrics()
    return [
        f"{title}:",
        f"  Entries: {m.entry_count}",
        f"  Size: {m.total_size} / {cache.max_size_bytes} bytes",
        f"  Hits: {m.hits}  Misses: {m.misses}  Hit rate: {m.hit_rate:.0%}",
        f"  Evictions: {m.evictions}",
    ]


def cmd_cache(state: AppState, args: list[str]) -> str:
    """
    /cache        -> show metrics
    /cache clear  -> drop every cached execution and AI response
    """
    if args and args[0].lower() == "clear":
        state.cache.clear()
        if state.response_cache is not None:
            state.response_cache.clear()
        return "Cache cleared."
    if args:
        return "Usage: /cache [clear]"
    lines = _cache_block("Cache", state.cache)
    if state.response_cache is not None:
        lines += _cache_block("AI response cache", state.response_cache)
    return "\n".join(lines)


def cmd_validate(state: AppState, args: list[str]) -> str:
    template = " ".join(args)
    if not template:
        return "Usage: /validate <template>"
    result = PromptInjector(
        max_template_length=getattr(state.settings, "prompt_max_template_length", 10000),
    ).validate(template)
    lines = ["Template is valid." if result.is_valid else "Template is invalid."]
    lines += [f"  error: {e}" for e in result.errors]
    lines += [f"  warning: {w}" for w in result.warnings]
    if result.variables:
        lines.append("  variables: " + ", ".join(v.name for v in result.variables))
    return "\n".join(lines)


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Show AI mode, models and cache state.")
registry.register("tasks", cmd_tasks, help_text="List tasks.", aliases=["ls"])
registry.register("add", cmd_add, help_text="Create a task: /add <name> | <patterns> | <template>.")
registry.register("show", cmd_show, help_text="Show a task: /show <id>.")
registry.register("delete", cmd_delete, help_text="Delete a task: /delete <id>.", aliases=["rm"])
registry.register("dup", cmd_dup, help_text="Duplicate a task: /dup <id> [name].")
registry.register("enable", cmd_enable, help_text="Enable a task: /enable <id>.")
registry.register("disable", cmd_disable, help_text="Disable a task: /disable <id>.")
registry.register("rank", cmd_rank, help_text="Rank tasks for a page: /rank <url>.")
registry.register("run", cmd_run, help_text="Execute a task: /run <id> <url> [--dry].")
registry.register("testall", cmd_testall, help_text="Dry-run every task against a sample page.")
registry.register("stats", cmd_stats, help_text="Usage statistics: /stats [id].")
registry.register("cache", cmd_cache, help_text="Cache metrics: /cache | /cache clear.")
registry.register("validate", cmd_validate, help_text="Check a prompt template: /validate <template>.")
