# src/pagepilot/tasks/task_store.py

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import time
import uuid
from pathlib import Path
from typing import Any

from ..matching.patterns import matches
from .task_models import (
    DRAFT_FIELDS,
    AutomationStep,
    OutputFormat,
    Task,
    TaskDraft,
    UsageMetrics,
)
from .usage import apply_usage

logger = logging.getLogger(__name__)


class SQLiteTaskStore:
    """
    SQLite task + usage-metrics store.

    The schema is intentionally simple and migration-safe:
    - create tables if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Thread-safety:
    - each method opens its own SQLite connection
    """

    def __init__(self, db_path: str | Path = "tasks.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        try:
            total = self.count_tasks()
        except sqlite3.Error:
            total = -1
        logger.info("SQLiteTaskStore ready db=%s total=%s", self._db_path, total)

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(sqlite3.Error):
            conn.execute("PRAGMA journal_mode=WAL")

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    website_patterns TEXT NOT NULL DEFAULT '[]',
                    prompt_template TEXT NOT NULL,
                    output_format TEXT NOT NULL DEFAULT 'plain_text',
                    automation_steps TEXT NOT NULL DEFAULT '[]',
                    is_enabled INTEGER NOT NULL DEFAULT 1,
                    usage_count INTEGER NOT NULL DEFAULT 0,
                    tags TEXT NOT NULL DEFAULT '[]',
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS usage_metrics (
                    task_id TEXT PRIMARY KEY,
                    usage_count INTEGER NOT NULL DEFAULT 0,
                    success_rate REAL NOT NULL DEFAULT 0,
                    average_execution_time REAL NOT NULL DEFAULT 0,
                    last_used REAL,
                    error_count INTEGER NOT NULL DEFAULT 0
                )
                """
            )

            cur.execute("PRAGMA table_info(tasks)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE tasks ADD COLUMN {name} {decl}")
                logger.info("SQLiteTaskStore migration: added column %s", name)

            add_col("automation_steps", "TEXT NOT NULL DEFAULT '[]'")
            add_col("tags", "TEXT NOT NULL DEFAULT '[]'")
            add_col("usage_count", "INTEGER NOT NULL DEFAULT 0")

            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_enabled ON tasks(is_enabled)")
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _list_to_str(items: list[Any] | None) -> str:
        if not items:
            return "[]"
        try:
            return json.dumps(items, ensure_ascii=False)
        except (TypeError, ValueError):
            logger.exception("Failed to JSON-encode list; storing [].")
            return "[]"

    @staticmethod
    def _str_to_list(s: str | None) -> list[Any]:
        if not s:
            return []
        try:
            val = json.loads(s)
            return val if isinstance(val, list) else []
        except ValueError:
            return []

    def _row_to_task(self, row: sqlite3.Row) -> Task:
        steps = [
            AutomationStep.from_dict(s)
            for s in self._str_to_list(row["automation_steps"])
            if isinstance(s, dict)
        ]
        return Task(
            id=str(row["id"]),
            name=str(row["name"] or ""),
            description=str(row["description"] or ""),
            website_patterns=[str(p) for p in self._str_to_list(row["website_patterns"])],
            prompt_template=str(row["prompt_template"] or ""),
            output_format=OutputFormat.from_db(row["output_format"]),
            automation_steps=steps,
            is_enabled=bool(row["is_enabled"]),
            usage_count=int(row["usage_count"] or 0),
            tags=[str(t) for t in self._str_to_list(row["tags"])],
            created_at=float(row["created_at"] or 0.0),
            updated_at=float(row["updated_at"] or 0.0),
        )

    @staticmethod
    def _row_to_metrics(row: sqlite3.Row) -> UsageMetrics:
        return UsageMetrics(
            task_id=str(row["task_id"]),
            usage_count=int(row["usage_count"] or 0),
            success_rate=float(row["success_rate"] or 0.0),
            average_execution_time=float(row["average_execution_time"] or 0.0),
            last_used=float(row["last_used"]) if row["last_used"] is not None else None,
            error_count=int(row["error_count"] or 0),
        )

    def _column_value(self, name: str, value: Any) -> Any:
        if name in ("website_patterns", "tags"):
            return self._list_to_str(list(value or []))
        if name == "automation_steps":
            return self._list_to_str([s.to_dict() for s in value or []])
        if name == "output_format":
            return str(value)
        if name == "is_enabled":
            return 1 if value else 0
        return value

    # ---- tasks ----

    def count_tasks(self) -> int:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT COUNT(*) FROM tasks")
            (n,) = cur.fetchone()
            return int(n)
        finally:
            conn.close()

    def create_task(self, draft: TaskDraft) -> str:
        task_id = str(uuid.uuid4())
        now = time.time()

        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO tasks(
                    id, name, description, website_patterns, prompt_template,
                    output_format, automation_steps, is_enabled, usage_count, tags,
                    created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?, ?)
                """,
                (
                    task_id,
                    draft.name.strip(),
                    draft.description.strip(),
                    self._column_value("website_patterns", draft.website_patterns),
                    draft.prompt_template,
                    self._column_value("output_format", draft.output_format),
                    self._column_value("automation_steps", draft.automation_steps),
                    self._column_value("is_enabled", draft.is_enabled),
                    self._column_value("tags", draft.tags),
                    now,
                    now,
                ),
            )
            conn.commit()
            logger.debug("Task created id=%s name=%s", task_id, draft.name)
            return task_id
        finally:
            conn.close()

    def get_task(self, task_id: str) -> Task | None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT * FROM tasks WHERE id = ?", (str(task_id),))
            row = cur.fetchone()
            return self._row_to_task(row) if row else None
        finally:
            conn.close()

    def get_all_tasks(self) -> dict[str, Task]:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT * FROM tasks ORDER BY created_at ASC")
            return {t.id: t for t in (self._row_to_task(r) for r in cur.fetchall())}
        finally:
            conn.close()

    def update_task(self, task_id: str, updates: dict[str, Any]) -> bool:
        """
        Apply a partial update. Only writable fields (plus usage_count) are accepted;
        id and created_at never change.
        """
        fields: list[str] = []
        params: list[Any] = []

        for name, value in updates.items():
            if name not in DRAFT_FIELDS and name != "usage_count":
                raise ValueError(f"field {name!r} cannot be updated")
            fields.append(f"{name} = ?")
            params.append(self._column_value(name, value))

        if not fields:
            return self.get_task(task_id) is not None

        fields.append("updated_at = ?")
        params.append(time.time())
        params.append(str(task_id))

        sql = f"UPDATE tasks SET {', '.join(fields)} WHERE id = ?"

        conn = self._get_conn()
        try:
            cur = conn.execute(sql, params)
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()

    def delete_task(self, task_id: str) -> bool:
        conn = self._get_conn()
        try:
            cur = conn.execute("DELETE FROM tasks WHERE id = ?", (str(task_id),))
            conn.commit()
            return cur.rowcount == 1
        finally:
            conn.close()

    def get_tasks_for_website(self, domain: str) -> list[Task]:
        """Raw prefilter: enabled tasks with at least one pattern matching the domain."""
        out: list[Task] = []
        for task in self.get_all_tasks().values():
            if not task.is_enabled:
                continue
            if any(matches(p, domain) for p in task.website_patterns):
                out.append(task)
        return out

    # ---- usage metrics ----

    def get_usage_metrics(self, task_id: str) -> UsageMetrics | None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT * FROM usage_metrics WHERE task_id = ?", (str(task_id),))
            row = cur.fetchone()
            return self._row_to_metrics(row) if row else None
        finally:
            conn.close()

    def get_all_usage_metrics(self) -> dict[str, UsageMetrics]:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT * FROM usage_metrics")
            return {m.task_id: m for m in (self._row_to_metrics(r) for r in cur.fetchall())}
        finally:
            conn.close()

    def record_usage(self, task_id: str, success: bool, execution_time_ms: float) -> UsageMetrics:
        """Update the task's running statistics and mirror usage_count onto the task row."""
        current = self.get_usage_metrics(task_id)
        updated = apply_usage(
            current,
            task_id=str(task_id),
            success=success,
            execution_time_ms=execution_time_ms,
        )

        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO usage_metrics(
                    task_id, usage_count, success_rate, average_execution_time, last_used, error_count
                )
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(task_id) DO UPDATE SET
                    usage_count = excluded.usage_count,
                    success_rate = excluded.success_rate,
                    average_execution_time = excluded.average_execution_time,
                    last_used = excluded.last_used,
                    error_count = excluded.error_count
                """,
                (
                    updated.task_id,
                    updated.usage_count,
                    updated.success_rate,
                    updated.average_execution_time,
                    updated.last_used,
                    updated.error_count,
                ),
            )
            conn.execute(
                "UPDATE tasks SET usage_count = ? WHERE id = ?",
                (updated.usage_count, str(task_id)),
            )
            conn.commit()
        finally:
            conn.close()

        logger.debug(
            "Recorded usage task_id=%s success=%s n=%s rate=%.2f",
            task_id,
            success,
            updated.usage_count,
            updated.success_rate,
        )
        return updated

    def delete_usage_metrics(self, task_id: str) -> None:
        conn = self._get_conn()
        try:
            conn.execute("DELETE FROM usage_metrics WHERE task_id = ?", (str(task_id),))
            conn.commit()
        finally:
            conn.close()
