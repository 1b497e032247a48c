# tests/test_task_store.py

from __future__ import annotations

import sqlite3

import pytest

from pagepilot.tasks.task_models import AutomationStep, OutputFormat
from pagepilot.tasks.task_store import SQLiteTaskStore

from .conftest import make_draft


def test_create_and_get_roundtrip(tmp_path) -> None:
    store = SQLiteTaskStore(tmp_path / "tasks.sqlite3")
    task_id = store.create_task(
        make_draft(
            output_format=OutputFormat.JSON,
            automation_steps=[AutomationStep(type="click", selector="#buy", description="buy")],
        )
    )

    task = store.get_task(task_id)
    assert task is not None
    assert task.name == "Summarize page"
    assert task.website_patterns == [r"example\.com"]
    assert task.output_format == OutputFormat.JSON
    assert task.automation_steps[0].selector == "#buy"
    assert task.usage_count == 0
    assert task.created_at == task.updated_at
    assert store.count_tasks() == 1


def test_update_rejects_unknown_fields(tmp_path) -> None:
    store = SQLiteTaskStore(tmp_path / "tasks.sqlite3")
    task_id = store.create_task(make_draft())

    with pytest.raises(ValueError):
        store.update_task(task_id, {"id": "other"})

    assert store.update_task(task_id, {"name": "Renamed", "is_enabled": False})
    task = store.get_task(task_id)
    assert task.name == "Renamed"
    assert task.is_enabled is False
    assert not store.update_task("missing", {"name": "x"})


def test_prefilter_only_enabled_matching(tmp_path) -> None:
    store = SQLiteTaskStore(tmp_path / "tasks.sqlite3")
    hit = store.create_task(make_draft())
    store.create_task(make_draft(website_patterns=["other.org"]))
    store.create_task(make_draft(is_enabled=False))

    assert [t.id for t in store.get_tasks_for_website("www.example.com")] == [hit]


def test_record_usage_mirrors_count(tmp_path) -> None:
    store = SQLiteTaskStore(tmp_path / "tasks.sqlite3")
    task_id = store.create_task(make_draft())

    store.record_usage(task_id, True, 100)
    m = store.record_usage(task_id, False, 50)

    assert m.usage_count == 2
    assert m.success_rate == pytest.approx(50.0)
    assert store.get_usage_metrics(task_id) == m
    assert store.get_task(task_id).usage_count == 2

    store.delete_usage_metrics(task_id)
    assert store.get_usage_metrics(task_id) is None


def test_migration_adds_missing_columns(tmp_path) -> None:
    db = tmp_path / "old.sqlite3"
    conn = sqlite3.connect(db)
    conn.execute(
        """
        CREATE TABLE tasks (
            id TEXT PRIMARY KEY, name TEXT NOT NULL, description TEXT NOT NULL DEFAULT '',
            website_patterns TEXT NOT NULL DEFAULT '[]', prompt_template TEXT NOT NULL,
            output_format TEXT NOT NULL DEFAULT 'plain_text', is_enabled INTEGER NOT NULL DEFAULT 1,
            created_at REAL NOT NULL, updated_at REAL NOT NULL
        )
        """
    )
    conn.execute(
        "INSERT INTO tasks(id, name, prompt_template, created_at, updated_at) VALUES ('a', 'Old', 'x', 1, 1)"
    )
    conn.commit()
    conn.close()

    task = SQLiteTaskStore(db).get_task("a")
    assert task.tags == []
    assert task.automation_steps == []
    assert task.usage_count == 0
