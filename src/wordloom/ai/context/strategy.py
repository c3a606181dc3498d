"""Context strategy selection and content-type classification.

Both decisions are pure functions of their inputs; nothing here calls the
generation service.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Mapping

from ..utils.tokens import estimate_tokens

DEFAULT_SHORT_DOC_MAX = 1_000
DEFAULT_LONG_DOC_MIN = 3_000

_CODE_FENCE = "```"
_CODE_WORDS = re.compile(r"\bfunction\b|\bclass\s|\bdef \w+\(")
_CITATION = re.compile(r"\[\d+\]|\(\w+(?: et al\.)?,? \d{4}\)")
_BULLET_LINE = re.compile(r"^\s*(?:\d+\.|[-*•])\s")
_BUSINESS_WORDS = ("revenue", "stakeholder", "quarterly", "roadmap", "kpi", "budget", "customer", "market")

_GENRE_ALIASES: Mapping[str, str] = {"non-fiction": "blog", "nonfiction": "blog", "docs": "technical"}

_PURPOSE_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("technical", ("technical", "documentation", "api", "reference")),
    ("fiction", ("story", "novel", "fiction", "chapter", "scene")),
    ("blog", ("blog", "article", "post", "newsletter")),
    ("academic", ("paper", "thesis", "research", "essay")),
    ("business", ("report", "proposal", "memo", "business")),
    ("notes", ("notes", "journal", "meeting")),
)


class ContextStrategy(str, Enum):
    SHORT_DOC = "short-doc"
    MEDIUM_DOC = "medium-doc"
    LONG_DOC = "long-doc"


class ContentType(str, Enum):
    FICTION = "fiction"
    TECHNICAL = "technical"
    BLOG = "blog"
    ACADEMIC = "academic"
    BUSINESS = "business"
    NOTES = "notes"
    OTHER = "other"


@dataclass(slots=True, frozen=True)
class StrategyThresholds:
    """Token thresholds ``T1 < T2`` separating the three strategies.

    ``tokens < short_doc_max`` is short, ``tokens >= long_doc_min`` is long,
    everything in between is medium.
    """

    short_doc_max: int = DEFAULT_SHORT_DOC_MAX
    long_doc_min: int = DEFAULT_LONG_DOC_MIN

    def __post_init__(self) -> None:
        if self.short_doc_max < 1:
            raise ValueError("short_doc_max must be positive")
        if self.short_doc_max >= self.long_doc_min:
            raise ValueError(
                f"short_doc_max ({self.short_doc_max}) must be below long_doc_min ({self.long_doc_min})"
            )


@dataclass(slots=True, frozen=True)
class StrategyPlan:
    """Inclusion rules the assembler follows for one strategy."""

    strategy: ContextStrategy
    whole_document: bool
    include_summary: bool
    request_semantic: bool
    window_scale: float


_PLANS: Mapping[ContextStrategy, StrategyPlan] = {
    ContextStrategy.SHORT_DOC: StrategyPlan(ContextStrategy.SHORT_DOC, True, False, False, 1.0),
    ContextStrategy.MEDIUM_DOC: StrategyPlan(ContextStrategy.MEDIUM_DOC, False, True, False, 0.75),
    ContextStrategy.LONG_DOC: StrategyPlan(ContextStrategy.LONG_DOC, False, True, True, 0.5),
}


def strategy_for_tokens(token_count: int, thresholds: StrategyThresholds | None = None) -> ContextStrategy:
    limits = thresholds or StrategyThresholds()
    if token_count < limits.short_doc_max:
        return ContextStrategy.SHORT_DOC
    if token_count < limits.long_doc_min:
        return ContextStrategy.MEDIUM_DOC
    return ContextStrategy.LONG_DOC


def select_strategy(document_text: str, thresholds: StrategyThresholds | None = None) -> ContextStrategy:
    """Pick the assembly strategy from the estimated size of *document_text*."""

    return strategy_for_tokens(estimate_tokens(document_text or ""), thresholds)


def plan_for(strategy: ContextStrategy) -> StrategyPlan:
    return _PLANS[strategy]


def classify_content(
    text: str,
    project_genre: str | None = None,
    document_purpose: str | None = None,
) -> ContentType:
    """Best-effort content type used to tailor the summary's entity section."""

    genre = (project_genre or "").strip().lower()
    if genre and genre != ContentType.OTHER.value:
        try:
            return ContentType(_GENRE_ALIASES.get(genre, genre))
        except ValueError:
            pass

    purpose = (document_purpose or "").lower()
    if purpose:
        for content_type, keywords in _PURPOSE_KEYWORDS:
            if any(keyword in purpose for keyword in keywords):
                return ContentType(content_type)

    return _classify_text(text or "")


def _classify_text(text: str) -> ContentType:
    if not text.strip():
        return ContentType.OTHER
    if _CODE_FENCE in text or _CODE_WORDS.search(text):
        return ContentType.TECHNICAL
    # Ten or more quote characters reads as dialogue-heavy prose.
    if text.count('"') >= 10:
        return ContentType.FICTION
    lowered = text.lower()
    if "abstract" in lowered[:500] or len(_CITATION.findall(text)) >= 3:
        return ContentType.ACADEMIC
    lines = [line for line in text.splitlines() if line.strip()]
    if len(lines) >= 3:
        bullets = sum(1 for line in lines if _BULLET_LINE.match(line))
        if bullets / len(lines) >= 0.5:
            return ContentType.NOTES
    if sum(lowered.count(word) for word in _BUSINESS_WORDS) >= 3:
        return ContentType.BUSINESS
    return ContentType.OTHER


__all__ = [
    "ContentType",
    "ContextStrategy",
    "DEFAULT_LONG_DOC_MIN",
    "DEFAULT_SHORT_DOC_MAX",
    "StrategyPlan",
    "StrategyThresholds",
    "classify_content",
    "plan_for",
    "select_strategy",
    "strategy_for_tokens",
]
