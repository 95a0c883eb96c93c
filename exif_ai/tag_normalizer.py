"""
Normalization of free-text model output into short metadata tags.
"""

import re
from enum import Enum
from typing import List


MAX_TAGS = 20
MAX_TAG_LENGTH = 50
MAX_TAG_WORDS = 2

_SPLIT_RE = re.compile(r"[,\n;|]")
# Bullets, list numbering ("1.", "2)"), markdown emphasis, closing
# punctuation and quotes in front of a tag. Digits only go when they number
# a list item, so "1990s" and "3D" survive.
_LEADING_RE = re.compile(r"^(?:[\s*\-•·.)\]:\"'`“”‘’]|\d+[.):])+")
# Closing quotes and brackets after a tag
_TRAILING_RE = re.compile(r"[\"'`“”‘’()\[\]{}<>]+$")
_NON_WORD_RE = re.compile(r"[^\w\s]|_", re.UNICODE)
_WHITESPACE_RE = re.compile(r"\s+")


class DedupePolicy(str, Enum):
    """How repeated tags are collapsed."""
    NONE = "none"
    EXACT = "exact"
    CASEFOLD = "casefold"


def clean_tag(candidate: str) -> str:
    """Reduce one candidate to plain words separated by single spaces."""
    candidate = candidate.strip()
    candidate = _LEADING_RE.sub("", candidate)
    candidate = _TRAILING_RE.sub("", candidate)
    candidate = _NON_WORD_RE.sub(" ", candidate)
    return _WHITESPACE_RE.sub(" ", candidate).strip()


def is_valid_tag(tag: str) -> bool:
    return bool(tag) and len(tag) <= MAX_TAG_LENGTH and len(tag.split()) <= MAX_TAG_WORDS


def normalize_tags(raw_text: str, dedupe=DedupePolicy.EXACT) -> List[str]:
    """Convert raw model output into an ordered, bounded list of tags.

    The text is split on commas, newlines, semicolons and pipes. Each piece
    loses list markup, punctuation and surplus whitespace; pieces that end up
    empty, longer than 50 characters or longer than two words are dropped.
    Repeats are collapsed according to ``dedupe`` (first occurrence wins) and
    at most 20 tags are returned, in order of appearance.
    """
    if not raw_text:
        return []

    policy = DedupePolicy(dedupe)
    tags: List[str] = []
    seen = set()

    for candidate in _SPLIT_RE.split(raw_text):
        tag = clean_tag(candidate)
        if not is_valid_tag(tag):
            continue

        if policy is not DedupePolicy.NONE:
            key = tag.casefold() if policy is DedupePolicy.CASEFOLD else tag
            if key in seen:
                continue
            seen.add(key)

        tags.append(tag)
        if len(tags) >= MAX_TAGS:
            break

    return tags
