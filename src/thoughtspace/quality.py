"""Contribution gate and quality heuristics.

Provides:
- meets_contribution_threshold(): Is a message worth storing at all?
- classify_contribution(): Flag keyword echoes and orphaned references
- extract_tags(): Reuse existing tags mentioned in the content
"""

import re
from collections.abc import Iterable

from .constants import (
    CONTRIBUTION_MIN_LENGTH,
    ECHO_OVERLAP_THRESHOLD,
    FOLLOW_UP_PREFIXES,
    ORPHANED_REFERENCE_MAX_LENGTH,
    SIGNIFICANT_WORD_MIN_LENGTH,
)

# A single sentence that only asks something
_PURE_QUESTION = re.compile(r"^[^.!]*\?$")
# "see above", "see the docs", "see #12", "see notes.md": a pointer elsewhere
_BARE_SEE_REFERENCE = re.compile(
    r"\bsee\s+(?:(?:the|my|our|your|this|that)\s+)?"
    r"(?:above|below|earlier|previous|prior|attached|#\d+|docs?|documentation|runbook"
    r"|wiki|readme|thread|link|ticket|issue|pr|comments?|notes?|message|answer|response"
    r"|https?://\S+|[\w./-]+\.(?:md|txt|rst|py|ts|js|json|ya?ml))(?!\w)",
    re.IGNORECASE,
)
_PUNCTUATION = re.compile(r"[^\w\s]")


def meets_contribution_threshold(message: str) -> bool:
    """Decide whether a message carries enough substance to persist.

    Args:
        message: Raw prompt text

    Returns:
        True if longer than 50 chars, not a lone question, and not a
        follow-up to a previous answer.
    """
    text = message.strip()
    if len(text) <= CONTRIBUTION_MIN_LENGTH:
        return False
    if _PURE_QUESTION.match(text):
        return False
    lowered = text.lower()
    if any(lowered.startswith(prefix) for prefix in FOLLOW_UP_PREFIXES):
        return False
    return True


def significant_words(text: str) -> set[str]:
    """Lowercased, punctuation-stripped words longer than two characters."""
    cleaned = _PUNCTUATION.sub(" ", text.lower())
    return {w for w in cleaned.split() if len(w) >= SIGNIFICANT_WORD_MIN_LENGTH}


def is_keyword_echo(message: str, recent_queries: Iterable[str]) -> bool:
    """True when most of the message's words come from one recent query."""
    words = significant_words(message)
    if not words:
        return False
    for query in recent_queries:
        query_words = significant_words(query)
        if not query_words:
            continue
        overlap = len(words & query_words) / len(words)
        if overlap > ECHO_OVERLAP_THRESHOLD:
            return True
    return False


def is_orphaned_reference(message: str) -> bool:
    """Short message pointing elsewhere ("see above") without the substance."""
    text = message.strip()
    if len(text) >= ORPHANED_REFERENCE_MAX_LENGTH:
        return False
    return _BARE_SEE_REFERENCE.search(text) is not None


def classify_contribution(message: str, recent_queries: Iterable[str]) -> list[str]:
    """Return quality flags for a submission, in a stable order."""
    flags = []
    if is_keyword_echo(message, recent_queries):
        flags.append("keyword_echo")
    if is_orphaned_reference(message):
        flags.append("orphaned_reference")
    return flags


def extract_tags(content: str, existing_tags: Iterable[str]) -> list[str]:
    """Existing tags that appear in the content (case-insensitive substring)."""
    lowered = content.lower()
    found = []
    for tag in existing_tags:
        if tag and tag.lower() in lowered and tag not in found:
            found.append(tag)
    return found


def merge_tags(supplied: Iterable[str] | None, extracted: Iterable[str]) -> list[str]:
    """Union of supplied and extracted tags, first occurrence wins."""
    merged: list[str] = []
    for tag in list(supplied or []) + list(extracted):
        tag = tag.strip()
        if tag and tag not in merged:
            merged.append(tag)
    return merged
