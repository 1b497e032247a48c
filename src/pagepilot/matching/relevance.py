# src/pagepilot/matching/relevance.py

"""
Relevance scoring for (task, website) pairs.

Score terms, applied in this order:
- disabled task -> 0, nothing else applies
- base 1
- usage bonus: min(usage_count * 0.1, 5)
- per pattern: +10 if it matches the domain, +5 if it matches the page URL
- category keywords found in the task text: +2 each
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

from ..tasks.task_models import AssociationRule, Task, WebsiteCategory, WebsiteContext
from .patterns import matches

logger = logging.getLogger(__name__)

USAGE_BONUS_PER_USE = 0.1
USAGE_BONUS_CAP = 5.0
DOMAIN_MATCH_BONUS = 10.0
URL_MATCH_BONUS = 5.0
KEYWORD_BONUS = 2.0

CATEGORY_KEYWORDS: Mapping[str, tuple[str, ...]] = {
    WebsiteCategory.SOCIAL_MEDIA: ("post", "share", "like", "comment", "follow"),
    WebsiteCategory.ECOMMERCE: ("buy", "cart", "product", "price", "order"),
    WebsiteCategory.PROFESSIONAL: ("job", "career", "resume", "work"),
    WebsiteCategory.NEWS_CONTENT: ("article", "news", "read", "story", "report"),
}

DEFAULT_ASSOCIATION_RULES: tuple[AssociationRule, ...] = (
    AssociationRule(
        id="social-media",
        name="Social Media Sites",
        url_pattern=r"(facebook|twitter|instagram|linkedin|tiktok|youtube)\.com",
        priority=10,
    ),
    AssociationRule(
        id="ecommerce",
        name="E-commerce Sites",
        url_pattern=r"(amazon|ebay|shopify|etsy|walmart)\.com",
        priority=10,
    ),
    AssociationRule(
        id="news",
        name="News Sites",
        url_pattern=r"(cnn|bbc|reuters|nytimes|washingtonpost)\.com",
        priority=8,
    ),
)


class RelevanceScorer:
    def __init__(self, category_keywords: Mapping[str, Iterable[str]] | None = None) -> None:
        source = CATEGORY_KEYWORDS if category_keywords is None else category_keywords
        self._keywords = {str(k): tuple(v) for k, v in source.items()}

    def score(self, task: Task, context: WebsiteContext) -> float:
        if not task.is_enabled:
            return 0.0

        score = 1.0
        score += min(task.usage_count * USAGE_BONUS_PER_USE, USAGE_BONUS_CAP)

        url = str((context.extracted_data or {}).get("url") or "")
        for pattern in task.website_patterns:
            if matches(pattern, context.domain):
                score += DOMAIN_MATCH_BONUS
            if matches(pattern, url):
                score += URL_MATCH_BONUS

        keywords = self._keywords.get(str(context.category))
        if keywords:
            text = f"{task.name} {task.description} {task.prompt_template}".lower()
            hits = sum(1 for kw in keywords if kw in text)
            score += hits * KEYWORD_BONUS

        return max(score, 0.0)

    def rank(self, tasks: Iterable[Task], context: WebsiteContext) -> list[Task]:
        """Keep score > 0; order by score, then usage_count, then newest first."""
        scored = [(self.score(t, context), t) for t in tasks]
        kept = [(s, t) for s, t in scored if s > 0]
        kept.sort(key=lambda item: (-item[0], -item[1].usage_count, -item[1].created_at))
        logger.debug(
            "Ranked %d/%d tasks for domain=%s", len(kept), len(scored), context.domain
        )
        return [t for _, t in kept]


def rank_tasks(tasks: Iterable[Task], context: WebsiteContext) -> list[Task]:
    return RelevanceScorer().rank(tasks, context)


def matching_rules(
    context: WebsiteContext,
    rules: Iterable[AssociationRule] = DEFAULT_ASSOCIATION_RULES,
) -> list[AssociationRule]:
    """Built-in association rules that apply to the context's domain, highest priority first."""
    found = [r for r in rules if r.is_enabled and matches(r.url_pattern, context.domain)]
    found.sort(key=lambda r: -r.priority)
    return found
