# tests/test_relevance.py

from __future__ import annotations

import time

import pytest

from pagepilot.matching.patterns import is_valid_pattern, matches, pattern_error
from pagepilot.matching.relevance import RelevanceScorer, matching_rules, rank_tasks
from pagepilot.tasks.task_models import OutputFormat, Task, WebsiteCategory, WebsiteContext


def _task(
    task_id: str = "t1",
    *,
    patterns: list[str] | None = None,
    usage: int = 0,
    enabled: bool = True,
    created_at: float | None = None,
    name: str = "Task",
    description: str = "plain",
    template: str = "Do it for {{domain}}",
) -> Task:
    now = time.time() if created_at is None else created_at
    return Task(
        id=task_id,
        name=name,
        description=description,
        website_patterns=patterns if patterns is not None else [r"example\.com"],
        prompt_template=template,
        output_format=OutputFormat.PLAIN_TEXT,
        created_at=now,
        updated_at=now,
        is_enabled=enabled,
        usage_count=usage,
    )


def test_matches_is_case_insensitive_search() -> None:
    assert matches(r"example\.com", "WWW.Example.COM")
    assert matches("example.com", "shop.example.com")
    assert not matches(r"^example\.com$", "www.example.com")


def test_malformed_pattern_fails_closed() -> None:
    assert matches("([", "anything") is False
    assert pattern_error("([") is not None
    assert not is_valid_pattern("([")
    assert not is_valid_pattern("   ")
    assert is_valid_pattern("example.com")


def test_score_with_capped_usage_bonus() -> None:
    ctx = WebsiteContext(domain="example.com")
    assert RelevanceScorer().score(_task(usage=50), ctx) == pytest.approx(16.0)


def test_score_small_usage_bonus_and_url_match() -> None:
    scorer = RelevanceScorer()
    assert scorer.score(_task(usage=10), WebsiteContext(domain="example.com")) == pytest.approx(12.0)

    with_url = WebsiteContext(domain="example.com", extracted_data={"url": "https://example.com/a"})
    assert scorer.score(_task(usage=10), with_url) == pytest.approx(17.0)


def test_disabled_task_scores_zero() -> None:
    ctx = WebsiteContext(domain="example.com", extracted_data={"url": "https://example.com"})
    assert RelevanceScorer().score(_task(enabled=False, usage=100), ctx) == 0


def test_invalid_pattern_contributes_nothing() -> None:
    ctx = WebsiteContext(domain="example.com")
    assert RelevanceScorer().score(_task(patterns=["([", r"example\.com"]), ctx) == pytest.approx(11.0)


def test_category_keywords_add_two_each() -> None:
    ctx = WebsiteContext(domain="shop.test", category=WebsiteCategory.ECOMMERCE)
    task = _task(patterns=[], name="Compare price", description="Add product to cart")
    # base 1 + price + product + cart
    assert RelevanceScorer().score(task, ctx) == pytest.approx(7.0)


def test_rank_orders_by_score_then_usage_then_newest() -> None:
    ctx = WebsiteContext(domain="example.com")
    best = _task("best", usage=50, created_at=1.0)
    tie_more_used = _task("tie-used", patterns=["nomatch"], usage=20, created_at=2.0)
    tie_newer = _task("tie-new", patterns=["nomatch"], usage=20, created_at=3.0)
    disabled = _task("off", enabled=False)

    ranked = rank_tasks([tie_more_used, disabled, best, tie_newer], ctx)

    assert [t.id for t in ranked] == ["best", "tie-new", "tie-used"]


def test_matching_rules_by_priority() -> None:
    rules = matching_rules(WebsiteContext(domain="www.amazon.com"))
    assert [r.id for r in rules] == ["ecommerce"]
    assert matching_rules(WebsiteContext(domain="example.org")) == []
