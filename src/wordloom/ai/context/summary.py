"""Deterministic document summarizer used when no generated summary is injected."""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass

from ..utils.tokens import estimate_tokens
from .strategy import ContentType

_HEADER = re.compile(r"^#{1,6}\s")
_LIST_ITEM = re.compile(r"^\s*(?:\d+\.|[•\-*])\s")
_DIALOGUE = re.compile(r'"[^"]*"')
_PROPER_NOUN = re.compile(r"\b[A-Z][a-z]+\b")
_CODE_BLOCK = re.compile(r"```[\s\S]*?```")
_INLINE_CODE = re.compile(r"`[^`\n]+`")
_WORD = re.compile(r"\b[a-z]{3,}\b")

_MAX_HEADERS = 10
_MAX_LIST_ITEMS = 8
_EXCERPT_CHARS = 200
_MAX_NAMES = 10
_MAX_TERMS = 10
_MAX_CODE_TERMS = 8

_NAME_STOPWORDS = frozenset({"The", "And", "But", "For", "Yet", "Nor", "She", "They", "This", "That", "Then", "When"})
_STOPWORDS = frozenset(
    {
        "the", "and", "but", "for", "with", "are", "was", "were", "been", "have", "has", "had",
        "does", "did", "will", "would", "could", "should", "may", "might", "can", "shall", "must",
        "this", "that", "these", "those", "you", "she", "they", "him", "her", "them", "his", "our",
        "their", "your", "not", "from", "into", "then", "than", "there", "what", "when", "which",
    }
)


@dataclass(slots=True, frozen=True)
class SummaryParts:
    structure: str
    overview: str
    entities: str

    def render(self) -> str:
        return "\n\n".join(part for part in (self.structure, self.overview, self.entities) if part)

    @property
    def token_count(self) -> int:
        return estimate_tokens(self.render())


class DocumentSummarizer:
    """Builds a structure / overview / entities digest without calling a model."""

    def __call__(self, text: str, content_type: ContentType = ContentType.OTHER) -> str:
        return self.summarize(text, content_type).render()

    def summarize(self, text: str, content_type: ContentType = ContentType.OTHER) -> SummaryParts:
        content = text or ""
        if not content.strip():
            return SummaryParts("", "", "")
        return SummaryParts(
            structure=self._structure(content),
            overview=self._overview(content, content_type),
            entities=self._entities(content, content_type),
        )

    def _structure(self, text: str) -> str:
        lines = text.splitlines()
        headers = [line.strip() for line in lines if _HEADER.match(line)][:_MAX_HEADERS]
        if headers:
            return "\n".join(["STRUCTURE:", *headers])
        items = [line.strip() for line in lines if _LIST_ITEM.match(line)][:_MAX_LIST_ITEMS]
        if items:
            return "\n".join(["KEY POINTS:", *items])
        return ""

    def _overview(self, text: str, content_type: ContentType) -> str:
        words = len(text.split())
        paragraphs = [block.strip() for block in text.split("\n\n") if block.strip()]
        lines = [f"CONTENT OVERVIEW ({content_type.value}): {words} words, {len(paragraphs)} sections"]
        if paragraphs:
            lines.append(f"OPENING: {_excerpt(paragraphs[0])}")
        if len(paragraphs) > 1:
            lines.append(f"CURRENT END: {_excerpt(paragraphs[-1])}")
        return "\n".join(lines)

    def _entities(self, text: str, content_type: ContentType) -> str:
        if content_type is ContentType.FICTION:
            found = self._fiction_entities(text)
        elif content_type is ContentType.TECHNICAL:
            found = self._technical_entities(text)
        else:
            found = self._key_terms(text)
        return "\n".join(found)

    def _fiction_entities(self, text: str) -> list[str]:
        found: list[str] = []
        dialogue = _DIALOGUE.findall(text)
        if dialogue:
            found.append(f"DIALOGUE: {len(dialogue)} exchanges found")
        names: list[str] = []
        for noun in _PROPER_NOUN.findall(text):
            if len(noun) > 2 and noun not in _NAME_STOPWORDS and noun not in names:
                names.append(noun)
            if len(names) >= _MAX_NAMES:
                break
        if names:
            found.append(f"KEY NAMES: {', '.join(names)}")
        return found

    def _technical_entities(self, text: str) -> list[str]:
        found: list[str] = []
        blocks = _CODE_BLOCK.findall(text)
        if blocks:
            found.append(f"CODE BLOCKS: {len(blocks)} examples")
        prose = _CODE_BLOCK.sub("", text)
        terms: list[str] = []
        for snippet in _INLINE_CODE.findall(prose):
            term = snippet.strip("`")
            if term and term not in terms:
                terms.append(term)
            if len(terms) >= _MAX_CODE_TERMS:
                break
        if terms:
            found.append(f"TECHNICAL TERMS: {', '.join(terms)}")
        return found

    def _key_terms(self, text: str) -> list[str]:
        counts = Counter(word for word in _WORD.findall(text.lower()) if word not in _STOPWORDS)
        if not counts:
            return []
        # Counter.most_common keeps first-seen order among equal counts.
        ranked = counts.most_common(_MAX_TERMS)
        return ["KEY TERMS: " + ", ".join(f"{word} ({count})" for word, count in ranked)]


def _excerpt(paragraph: str) -> str:
    if len(paragraph) <= _EXCERPT_CHARS:
        return paragraph
    return paragraph[:_EXCERPT_CHARS] + "..."


__all__ = ["DocumentSummarizer", "SummaryParts"]
