"""Shared typing contracts for the completion pipeline."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Protocol

COMMIT_SUGGESTION_COMMAND = "editor.action.inlineSuggest.commit"


class TriggerKind(str, Enum):
    """How a completion request was initiated."""

    AUTOMATIC = "automatic"
    EXPLICIT = "explicit"


class OutcomeStatus(str, Enum):
    """Terminal status of a scheduled completion request."""

    SUGGESTED = "suggested"
    CACHED = "cached"
    EMPTY = "empty"
    SUPPRESSED = "suppressed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class GenerationService(Protocol):
    """Boundary to the external text generation service."""

    def generate(
        self,
        *,
        system_message: str,
        user_prompt: str,
        temperature: float | None = None,
        max_tokens: int | None = None,
        token: Any | None = None,
    ) -> AsyncIterator[str]:
        """Return an async stream of text fragments, honouring ``token`` cancellation."""
        ...


@dataclass(slots=True, frozen=True)
class EditorEvent:
    """Edit or cursor event forwarded by the editor widget."""

    text_before: str
    text_after: str = ""
    trigger_kind: TriggerKind = TriggerKind.AUTOMATIC
    document_context: str = ""


@dataclass(slots=True, frozen=True)
class CompletionRequest:
    """Immutable request built per scheduling decision.

    ``provider``/``model``/``temperature`` are captured at submit time so a
    later settings change cannot alter a request that is already running.
    """

    request_id: str
    trigger_kind: TriggerKind
    text_before: str
    text_after: str
    document_context: str
    fingerprint: str
    provider: str
    model: str
    temperature: float
    completion_length: str
    max_completion_chars: int
    max_completion_tokens: int = 100
    requested_at: float = field(default_factory=time.monotonic)

    @property
    def anchor_position(self) -> int:
        return len(self.text_before)


@dataclass(slots=True, frozen=True)
class ExcerptQuery:
    """What the context assembler asks a semantic retriever for.

    ``window_start``/``window_end`` bound the immediate window in document
    offsets; passages overlapping it would only repeat that text.
    """

    document_text: str
    query_text: str
    window_start: int
    window_end: int
    limit: int


@dataclass(slots=True, frozen=True)
class InlineSuggestion:
    """A single ghost-text suggestion returned to the editor."""

    insert_text: str
    anchor_position: int
    commit_command: str | None = COMMIT_SUGGESTION_COMMAND


@dataclass(slots=True, frozen=True)
class CompletionOutcome:
    """Result of :meth:`CompletionScheduler.submit`.

    ``suggestion`` is populated only for ``suggested`` and ``cached``
    outcomes. ``failed`` is distinct from ``empty`` so callers never confuse a
    transport problem with "nothing to suggest".
    """

    status: OutcomeStatus
    suggestion: InlineSuggestion | None = None
    reason: str | None = None
    error: str | None = None
    request_id: str | None = None

    @property
    def has_suggestion(self) -> bool:
        return self.suggestion is not None

    @classmethod
    def suppressed(cls, reason: str) -> "CompletionOutcome":
        return cls(status=OutcomeStatus.SUPPRESSED, reason=reason)

    @classmethod
    def cancelled(cls, reason: str, request_id: str | None = None) -> "CompletionOutcome":
        return cls(status=OutcomeStatus.CANCELLED, reason=reason, request_id=request_id)


__all__ = [
    "COMMIT_SUGGESTION_COMMAND",
    "CompletionOutcome",
    "CompletionRequest",
    "EditorEvent",
    "ExcerptQuery",
    "GenerationService",
    "InlineSuggestion",
    "OutcomeStatus",
    "TriggerKind",
]
