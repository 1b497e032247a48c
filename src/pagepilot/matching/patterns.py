# src/pagepilot/matching/patterns.py

"""
Website pattern matching.

A task pattern is either a bare domain ("example.com") or a regular expression
("(www\\.)?example\\.com/blog"). Both are evaluated the same way: as a
case-insensitive regex search. Patterns are validated when a task is written and
compiled lazily here; a pattern that does not compile never matches.
"""

from __future__ import annotations

import functools
import logging
import re

logger = logging.getLogger(__name__)

BARE_DOMAIN_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9.-]*[A-Za-z0-9]$")


@functools.lru_cache(maxsize=512)
def _compile(pattern: str) -> re.Pattern[str] | None:
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error as e:
        # Logged once per pattern thanks to the cache.
        logger.warning("Invalid website pattern %r (%s); treating as non-matching", pattern, e)
        return None


def matches(pattern: str, candidate: str) -> bool:
    """Case-insensitive regex search. Fails closed on a malformed pattern."""
    if not pattern:
        return False
    rx = _compile(pattern)
    if rx is None:
        return False
    return rx.search(candidate or "") is not None


def is_valid_pattern(pattern: str) -> bool:
    """A pattern is storable if it compiles as a regex or looks like a bare domain."""
    return pattern_error(pattern) is None


def pattern_error(pattern: str) -> str | None:
    """Human-readable reason a pattern is rejected, or None if it is fine."""
    if not isinstance(pattern, str) or not pattern.strip():
        return "pattern must be a non-empty string"
    if BARE_DOMAIN_RE.match(pattern):
        return None
    try:
        re.compile(pattern)
    except re.error as e:
        return f"not a valid domain or regular expression ({e})"
    return None
