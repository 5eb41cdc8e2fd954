# classroom_realtime/services/spam_filter.py

from __future__ import annotations

import re
from typing import Sequence

from classroom_realtime.models.models import (
    SpamCheckResult,
    SpamReasons,
    SuspiciousCheckResult,
    SuspiciousReasons,
)

SPAM_KEYWORDS = (
    "viagra",
    "casino",
    "lottery",
    "prize",
    "winner",
    "click here",
    "free money",
    "earn money fast",
)

KEYWORD_WEIGHT = 40
CAPS_WEIGHT = 20
LINKS_WEIGHT = 30
EMOJI_WEIGHT = 10
SPAM_THRESHOLD = 50

CAPS_RATIO = 0.7
CAPS_MIN_LENGTH = 10
MAX_LINKS = 3
MAX_EMOJIS = 10

_CAPS_RE = re.compile(r"[A-Z]")
_LINK_RE = re.compile(r"https?://")
_EMOJI_RE = re.compile("[\U0001F600-\U0001F64F]")
_REPEATED_RE = re.compile(r"(.)\1{10,}")
_ONLY_SPECIAL_RE = re.compile(r"^[^a-zA-Z0-9]+$")


def is_spam_score(score: int) -> bool:
    return score >= SPAM_THRESHOLD


class SpamFilter:
    """
    Deterministic content scorer.

    Four independent checks each add a fixed weight; content is spam when the
    total reaches SPAM_THRESHOLD. No other signal contributes to the score.
    """

    def __init__(self, keywords: Sequence[str] = SPAM_KEYWORDS) -> None:
        self.keywords = tuple(k.lower() for k in keywords)

    def check_content_spam(self, text: str) -> SpamCheckResult:
        text = text or ""
        lowered = text.lower()

        has_keywords = any(keyword in lowered for keyword in self.keywords)

        caps_ratio = len(_CAPS_RE.findall(text)) / len(text) if text else 0.0
        excessive_caps = caps_ratio > CAPS_RATIO and len(text) > CAPS_MIN_LENGTH

        excessive_links = len(_LINK_RE.findall(text)) > MAX_LINKS
        excessive_emojis = len(_EMOJI_RE.findall(text)) > MAX_EMOJIS

        score = 0
        if has_keywords:
            score += KEYWORD_WEIGHT
        if excessive_caps:
            score += CAPS_WEIGHT
        if excessive_links:
            score += LINKS_WEIGHT
        if excessive_emojis:
            score += EMOJI_WEIGHT

        return SpamCheckResult(
            is_spam=is_spam_score(score),
            score=score,
            reasons=SpamReasons(
                spam_keywords=has_keywords,
                excessive_caps=excessive_caps,
                excessive_links=excessive_links,
                excessive_emojis=excessive_emojis,
            ),
        )

    def detect_suspicious_content(self, text: str) -> SuspiciousCheckResult:
        """Low-signal patterns worth logging for moderators; never blocks a post."""
        text = text or ""
        repeated_chars = bool(_REPEATED_RE.search(text))
        too_short = len(text.strip()) < 2
        only_special_chars = bool(_ONLY_SPECIAL_RE.match(text))

        return SuspiciousCheckResult(
            is_suspicious=repeated_chars or too_short or only_special_chars,
            reasons=SuspiciousReasons(
                repeated_chars=repeated_chars,
                too_short=too_short,
                only_special_chars=only_special_chars,
            ),
        )
