"""Completion request pipeline: scheduling, cancellation, streaming."""

from .cancellation import CancellationToken, CompletionChannel
from .scheduler import CompletionScheduler, SchedulerState
from .service import AssistantTask, AutocompleteService, DocumentAssistant, PreviewResult, apply_preview
from .streaming import StreamSession, StreamSnapshot, StreamStatus

__all__ = [
    "AssistantTask",
    "AutocompleteService",
    "CancellationToken",
    "CompletionChannel",
    "CompletionScheduler",
    "DocumentAssistant",
    "PreviewResult",
    "SchedulerState",
    "StreamSession",
    "StreamSnapshot",
    "StreamStatus",
    "apply_preview",
]
