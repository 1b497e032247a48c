# src/pagepilot/execution/security.py

"""
Security tiers for page content sent to the AI.

The classifier is deliberately keyword based: it only looks at the domain.
Constraints travel with the AIRequest so the AI collaborator can honor them.
"""

from __future__ import annotations

import logging
import re
from dataclasses import replace

from ..tasks.task_models import PageContent, SecurityConstraints, SecurityLevel, WebsiteContext

logger = logging.getLogger(__name__)

MAX_CONTENT_LENGTH: dict[SecurityLevel, int] = {
    SecurityLevel.RESTRICTED: 1000,
    SecurityLevel.CAUTIOUS: 5000,
    SecurityLevel.PUBLIC: 10000,
}

BROAD_RESTRICTED_SELECTORS: tuple[str, ...] = (
    'input[type="password"]',
    'input[type="email"]',
    'input[type="tel"]',
    'input[name*="password"]',
    'input[name*="ssn"]',
    'input[name*="credit"]',
    'input[name*="card"]',
    "[data-sensitive]",
)

NARROW_RESTRICTED_SELECTORS: tuple[str, ...] = (
    'input[type="password"]',
    'input[name*="password"]',
    'input[name*="ssn"]',
)

SENSITIVE_KEYWORDS: tuple[str, ...] = (
    "bank", "banking", "credit", "loan", "mortgage", "finance", "financial",
    "health", "medical", "hospital", "clinic", "doctor", "patient",
    "gov", "government", "irs", "tax", "social", "security",
    "legal", "law", "attorney", "lawyer", "court",
)

PERSONAL_DATA_DOMAINS: tuple[str, ...] = (
    "facebook.com", "twitter.com", "x.com", "instagram.com", "linkedin.com",
    "tiktok.com", "snapchat.com", "reddit.com", "discord.com", "telegram.org",
)

_EMAIL_RE = re.compile(r"[\w.+-]+@[\w-]+(?:\.[\w-]+)+")
_CARD_RE = re.compile(r"\b(?:\d[ -]?){13,19}\b")
_DOMAIN_TOKEN_RE = re.compile(r"[a-z0-9]+")


def build_security_constraints(context: WebsiteContext) -> SecurityConstraints:
    level = context.security_level
    if level == SecurityLevel.RESTRICTED:
        selectors = BROAD_RESTRICTED_SELECTORS
    elif level == SecurityLevel.CAUTIOUS:
        selectors = NARROW_RESTRICTED_SELECTORS
    else:
        selectors = ()
    return SecurityConstraints(
        allow_sensitive_data=False,
        max_content_length=MAX_CONTENT_LENGTH.get(level, MAX_CONTENT_LENGTH[SecurityLevel.PUBLIC]),
        allowed_domains=(context.domain,),
        restricted_selectors=selectors,
    )


def _mask(text: str) -> str:
    text = _EMAIL_RE.sub("[email]", text)
    return _CARD_RE.sub("[number]", text)


class KeywordSecurityClassifier:
    def __init__(
        self,
        *,
        sensitive_keywords: tuple[str, ...] = SENSITIVE_KEYWORDS,
        personal_data_domains: tuple[str, ...] = PERSONAL_DATA_DOMAINS,
    ) -> None:
        self._keywords = frozenset(k.lower() for k in sensitive_keywords)
        self._personal = tuple(d.lower() for d in personal_data_domains)

    def _is_sensitive(self, token: str) -> bool:
        # Short keywords ("tax", "law") only match whole labels.
        return token in self._keywords or any(len(k) >= 4 and k in token for k in self._keywords)

    def classify(self, domain: str) -> SecurityLevel:
        d = (domain or "").strip().lower()
        if not d:
            return SecurityLevel.PUBLIC
        if d.endswith((".gov", ".mil")) or any(self._is_sensitive(tok) for tok in _DOMAIN_TOKEN_RE.findall(d)):
            return SecurityLevel.RESTRICTED
        if any(d == p or d.endswith("." + p) for p in self._personal):
            return SecurityLevel.CAUTIOUS
        return SecurityLevel.PUBLIC

    def sanitize(self, page_content: PageContent, level: SecurityLevel) -> PageContent:
        limit = MAX_CONTENT_LENGTH.get(level, MAX_CONTENT_LENGTH[SecurityLevel.PUBLIC])
        text = page_content.text_content or ""
        if level != SecurityLevel.PUBLIC:
            text = _mask(text)
        if len(text) > limit:
            logger.debug("Truncating page text %d -> %d chars (level=%s)", len(text), limit, level)
            text = text[:limit]
        return replace(page_content, text_content=text, headings=list(page_content.headings))
