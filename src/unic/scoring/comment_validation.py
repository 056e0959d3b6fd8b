"""Comment quality gate applied before a comment can earn points.

Rejects short, repetitive or symbol-only text so participants cannot farm
points with filler. Russian and English are both handled.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta

MIN_LENGTH = 10
MAX_LENGTH = 1000
MIN_MEANINGFUL_CHARS = 5
MIN_WORDS = 3
MIN_WORD_LENGTH = 2

_EMOJI = re.compile("[\U0001F300-\U0001F9FF\u2600-\u26FF\u2700-\u27BF]")
_NON_TEXT = re.compile(r"[^\w\s]|_")
_WHITESPACE = re.compile(r"\s+")
_REPEATED_CHAR = re.compile(r"(.)\1{4,}", re.DOTALL)
_SPAM_PATTERNS = (
    re.compile(r"^(пп|pp|up|топ|top|\+\+|--|\.\.\.)$", re.IGNORECASE),
    re.compile(r"^(nice|good|ok|да|нет|yes|no)$", re.IGNORECASE),
)


@dataclass(frozen=True)
class CommentCheck:
    valid: bool
    reason: str | None = None


def _meaningful_text(text: str) -> str:
    text = _EMOJI.sub("", text)
    text = _NON_TEXT.sub(" ", text)
    return _WHITESPACE.sub(" ", text).strip()


def validate_comment(text: str | None) -> CommentCheck:
    """Default comment validator.

    Rules, first failure wins:
      - 10 to 1000 characters after trimming
      - at least 5 characters left once emoji and symbols are stripped
      - at least 3 words of 2+ characters
      - no character repeated 5 or more times in a row
      - not the same word over and over
      - not a generic filler reply
    """
    if not text or not isinstance(text, str):
        return CommentCheck(False, "Empty comment")

    trimmed = text.strip()
    if len(trimmed) < MIN_LENGTH:
        return CommentCheck(False, "Comment too short")
    if len(trimmed) > MAX_LENGTH:
        return CommentCheck(False, "Comment too long")

    text_only = _meaningful_text(trimmed)
    if len(text_only) < MIN_MEANINGFUL_CHARS:
        return CommentCheck(False, "Comment contains no meaningful text")

    words = [w for w in text_only.split(" ") if len(w) >= MIN_WORD_LENGTH]
    if len(words) < MIN_WORDS:
        return CommentCheck(False, "Comment must contain at least 3 words")

    if _REPEATED_CHAR.search(trimmed):
        return CommentCheck(False, "Comment contains repeated characters")

    if len({w.lower() for w in words}) == 1:
        return CommentCheck(False, "Comment repeats the same word")

    lowered = text_only.lower()
    if len(words) < 5 and any(p.match(lowered) for p in _SPAM_PATTERNS):
        return CommentCheck(False, "Comment is too generic")

    return CommentCheck(True)


def is_comment_burst(
    recent: Iterable[datetime],
    now: datetime,
    cooldown: timedelta = timedelta(seconds=30),
    limit: int = 3,
) -> bool:
    """True when *limit* or more comments landed within the last *cooldown*."""
    return sum(1 for ts in recent if now - ts < cooldown) >= limit
