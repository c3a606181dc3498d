"""Token-bounded smart context assembly for document-level requests."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Mapping, Sequence

from ...services.settings import ContextSettings
from ..ai_types import ExcerptQuery
from ..memory.result_cache import SummaryCache
from ..utils.tokens import estimate_tokens, truncate_head, truncate_tail
from .sections import (
    SECTION_IMMEDIATE,
    SECTION_METADATA,
    SECTION_SEMANTIC,
    SECTION_SUMMARY,
    ContextBudget,
    DocumentContext,
    ProjectContext,
    render_document_section,
    render_project_guidelines,
    render_project_section,
    render_session_section,
)
from .strategy import (
    ContentType,
    ContextStrategy,
    StrategyThresholds,
    classify_content,
    plan_for,
    strategy_for_tokens,
)
from .summary import DocumentSummarizer

LOGGER = logging.getLogger(__name__)

_QUERY_CHARS = 500
SUMMARY_HEADING = "DOCUMENT SUMMARY:\n"
EXCERPTS_HEADING = "RELATED EXCERPTS:\n"
EXCERPT_SEPARATOR = "\n---\n"


Summarizer = Callable[[str, ContentType], "str | Awaitable[str]"]
Retriever = Callable[[ExcerptQuery], "Sequence[str] | Awaitable[Sequence[str]]"]


@dataclass(slots=True, frozen=True)
class ImmediateContext:
    before: str = ""
    after: str = ""
    tokens: int = 0


@dataclass(slots=True, frozen=True)
class ContextInspection:
    """Read-only view consumed by preview surfaces and the inspect CLI."""

    strategy: ContextStrategy
    content_type: ContentType
    section_tokens: Mapping[str, int]
    total_tokens: int
    token_limit: int
    document_tokens: int

    def as_dict(self) -> dict[str, Any]:
        return {
            "strategy": self.strategy.value,
            "content_type": self.content_type.value,
            "section_tokens": dict(self.section_tokens),
            "total_tokens": self.total_tokens,
            "token_limit": self.token_limit,
            "document_tokens": self.document_tokens,
        }


@dataclass(slots=True, frozen=True)
class SmartContextResult:
    strategy: ContextStrategy
    content_type: ContentType
    project_context: str
    document_context: str
    session_context: str
    document_summary: str
    immediate: ImmediateContext
    semantic_chunks: tuple[str, ...]
    section_tokens: Mapping[str, int]
    total_tokens: int
    budget: ContextBudget
    document_tokens: int = 0
    guidelines: str = field(default="", repr=False)

    @property
    def metadata_text(self) -> str:
        return "\n\n".join(part for part in (self.project_context, self.document_context, self.session_context) if part)

    def inspect(self) -> ContextInspection:
        return ContextInspection(
            strategy=self.strategy,
            content_type=self.content_type,
            section_tokens=self.section_tokens,
            total_tokens=self.total_tokens,
            token_limit=self.budget.total_token_limit,
            document_tokens=self.document_tokens,
        )


class ContextAssembler:
    """Builds :class:`SmartContextResult` objects under a :class:`ContextBudget`.

    Sections are filled in priority order (immediate window, summary,
    metadata, semantic excerpts); each one is clamped to the smaller of its own
    limit and what the earlier sections left over, so the total never exceeds
    the budget.
    """

    def __init__(
        self,
        *,
        settings: ContextSettings | None = None,
        budget: ContextBudget | None = None,
        thresholds: StrategyThresholds | None = None,
        summarizer: Summarizer | None = None,
        retriever: Retriever | None = None,
        summary_cache: SummaryCache | None = None,
    ) -> None:
        self._settings = settings or ContextSettings()
        self._budget = budget
        self._thresholds = thresholds
        self._summarizer: Summarizer = summarizer or DocumentSummarizer()
        self._retriever = retriever
        self._summary_cache = summary_cache or SummaryCache(
            max_entries=self._settings.summary_cache_capacity,
            ttl_seconds=self._settings.summary_cache_ttl_seconds,
        )

    @property
    def budget(self) -> ContextBudget:
        return self._budget or ContextBudget.from_settings(self._settings)

    @property
    def thresholds(self) -> StrategyThresholds:
        return self._thresholds or StrategyThresholds(
            short_doc_max=self._settings.short_doc_threshold,
            long_doc_min=self._settings.long_doc_threshold,
        )

    @property
    def summary_cache(self) -> SummaryCache:
        return self._summary_cache

    def update_settings(self, settings: ContextSettings) -> None:
        self._settings = settings

    def set_retriever(self, retriever: Retriever | None) -> None:
        self._retriever = retriever

    async def build(
        self,
        document_text: str,
        *,
        project: ProjectContext | None = None,
        document: DocumentContext | None = None,
        session_notes: str = "",
        selection: tuple[int, int] | None = None,
    ) -> SmartContextResult:
        text = document_text or ""
        budget = self.budget
        start, end = _normalize_selection(selection, len(text))
        document_tokens = estimate_tokens(text)
        strategy = strategy_for_tokens(document_tokens, self.thresholds)
        plan = plan_for(strategy)
        content_type = classify_content(
            text,
            project.genre if project is not None else None,
            document.purpose if document is not None else None,
        )
        section_tokens: dict[str, int] = {}
        used = 0

        # Immediate window.
        if plan.whole_document:
            before_raw, after_raw = text[:start], text[end:]
        else:
            span = max(0, int(self._settings.window_chars * plan.window_scale))
            before_raw, after_raw = text[max(0, start - span) : start], text[end : end + span]
        immediate = _fit_window(before_raw, after_raw, budget.allowance(SECTION_IMMEDIATE, used))
        section_tokens[SECTION_IMMEDIATE] = immediate.tokens
        used += immediate.tokens

        # Document summary; its heading is charged to the same allowance.
        summary = ""
        summary_tokens = 0
        if plan.include_summary:
            heading_tokens = estimate_tokens(SUMMARY_HEADING)
            allowance = budget.allowance(SECTION_SUMMARY, used) - heading_tokens
            if allowance > 0:
                raw_summary = await self._summarize(text, content_type, document)
                summary = truncate_head(raw_summary.strip(), allowance)
            if summary:
                summary_tokens = heading_tokens + estimate_tokens(summary)
        section_tokens[SECTION_SUMMARY] = summary_tokens
        used += section_tokens[SECTION_SUMMARY]

        # Project, document and session metadata share one allowance.
        allowance = budget.allowance(SECTION_METADATA, used)
        metadata: list[str] = []
        metadata_tokens = 0
        for rendered in (
            render_project_section(project),
            render_document_section(document),
            render_session_section(session_notes),
        ):
            fitted = truncate_head(rendered, allowance - metadata_tokens)
            metadata.append(fitted)
            metadata_tokens += estimate_tokens(fitted)
        section_tokens[SECTION_METADATA] = metadata_tokens
        used += metadata_tokens

        # Semantic excerpts, whole or not at all.
        excerpts: list[str] = []
        semantic_tokens = 0
        if plan.request_semantic and self._retriever is not None and self._settings.max_semantic_excerpts > 0:
            allowance = budget.allowance(SECTION_SEMANTIC, used)
            if allowance > 0:
                query = ExcerptQuery(
                    document_text=text,
                    query_text=text[start:end].strip() or before_raw[-_QUERY_CHARS:],
                    window_start=start - len(immediate.before),
                    window_end=end + len(immediate.after),
                    limit=self._settings.max_semantic_excerpts,
                )
                for passage in await _maybe_await(self._retriever(query)):
                    framing = EXCERPT_SEPARATOR if excerpts else EXCERPTS_HEADING
                    cost = estimate_tokens(framing) + estimate_tokens(passage)
                    if not passage or semantic_tokens + cost > allowance:
                        continue
                    excerpts.append(passage)
                    semantic_tokens += cost
                    if len(excerpts) >= query.limit:
                        break
        section_tokens[SECTION_SEMANTIC] = semantic_tokens
        used += semantic_tokens

        LOGGER.debug(
            "Assembled %s context (%s): %s of %s tokens",
            strategy.value,
            content_type.value,
            used,
            budget.total_token_limit,
        )
        return SmartContextResult(
            strategy=strategy,
            content_type=content_type,
            project_context=metadata[0],
            document_context=metadata[1],
            session_context=metadata[2],
            document_summary=summary,
            immediate=immediate,
            semantic_chunks=tuple(excerpts),
            section_tokens=MappingProxyType(section_tokens),
            total_tokens=used,
            budget=budget,
            document_tokens=document_tokens,
            guidelines=render_project_guidelines(project),
        )

    async def _summarize(self, text: str, content_type: ContentType, document: DocumentContext | None) -> str:
        key = f"{SummaryCache.key_for(document.document_id if document else None, text)}:{content_type.value}"
        cached = self._summary_cache.get(key)
        if cached is not None:
            return cached
        summary = await _maybe_await(self._summarizer(text, content_type))
        summary = summary or ""
        self._summary_cache.put(key, summary)
        return summary


def render_user_prompt(result: SmartContextResult, selected_text: str, task_instruction: str) -> str:
    """Lay out the assembled sections followed by the selection and the task."""

    sections = [result.project_context, result.document_context, result.session_context]
    if result.document_summary:
        sections.append(SUMMARY_HEADING + result.document_summary)
    if result.semantic_chunks:
        sections.append(EXCERPTS_HEADING + EXCERPT_SEPARATOR.join(result.semantic_chunks))
    if result.immediate.before:
        sections.append(f"LEFT CONTEXT:\n{result.immediate.before}")
    if selected_text:
        sections.append(f"SELECTED:\n{selected_text}")
    if result.immediate.after:
        sections.append(f"RIGHT CONTEXT:\n{result.immediate.after}")
    sections.append(f"TASK:\n{task_instruction}")
    return "\n\n".join(section for section in sections if section.strip())


def render_system_message(base_message: str, project: ProjectContext | None) -> str:
    guidelines = render_project_guidelines(project)
    if not guidelines:
        return base_message
    return f"{base_message}\n\nPROJECT GUIDELINES:\n{guidelines}"


def _normalize_selection(selection: tuple[int, int] | None, length: int) -> tuple[int, int]:
    if selection is None:
        return length, length
    start, end = (max(0, min(length, int(value))) for value in selection)
    if start > end:
        start, end = end, start
    return start, end


def _fit_window(before: str, after: str, allowance: int) -> ImmediateContext:
    """Trim the window from its outer edges until both sides fit *allowance*."""

    before_tokens = estimate_tokens(before)
    after_tokens = estimate_tokens(after)
    if before_tokens + after_tokens > allowance:
        half = allowance // 2
        if before_tokens <= half:
            after_budget = allowance - before_tokens
            before_budget = before_tokens
        elif after_tokens <= allowance - half:
            before_budget = allowance - after_tokens
            after_budget = after_tokens
        else:
            before_budget, after_budget = half, allowance - half
        before = truncate_tail(before, before_budget)
        after = truncate_head(after, after_budget)
        before_tokens = estimate_tokens(before)
        after_tokens = estimate_tokens(after)
    return ImmediateContext(before=before, after=after, tokens=before_tokens + after_tokens)


async def _maybe_await(value: Any) -> Any:
    if asyncio.iscoroutine(value) or isinstance(value, Awaitable):  # type: ignore[arg-type]
        return await value
    return value


__all__ = [
    "ContextAssembler",
    "ContextInspection",
    "ImmediateContext",
    "Retriever",
    "SmartContextResult",
    "Summarizer",
    "render_system_message",
    "render_user_prompt",
]
