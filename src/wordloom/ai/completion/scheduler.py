"""Debounced, single-flight scheduler for inline completion requests.

The scheduler turns raw editor events into at most one live generation
request. All bookkeeping runs on the event loop thread; the only shared state
is the channel's current token, which every continuation checks by identity
before applying a result.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, replace
from enum import Enum
from typing import Awaitable, Callable

from ...events import (
    CompletionCancelled,
    CompletionDispatched,
    CompletionFailed,
    CompletionSucceeded,
    EventBus,
    NoticePosted,
)
from ...services import telemetry as telemetry_service
from ...services.settings import Settings
from ...utils.logging import bound_request
from ..ai_types import (
    CompletionOutcome,
    CompletionRequest,
    EditorEvent,
    InlineSuggestion,
    OutcomeStatus,
    TriggerKind,
)
from ..errors import GenerationError
from ..memory.result_cache import CompletionCache
from .cancellation import CancellationToken, CompletionChannel

LOGGER = logging.getLogger(__name__)

FetchCompletion = Callable[[CompletionRequest, CancellationToken], Awaitable["str | None"]]


class SchedulerState(str, Enum):
    IDLE = "idle"
    DEBOUNCING = "debouncing"
    IN_FLIGHT = "in_flight"
    CANCELLED = "cancelled"


@dataclass(slots=True)
class SchedulerCounters:
    """Running totals exposed for inspection and tests."""

    submitted: int = 0
    suppressed: int = 0
    dispatched: int = 0
    cancelled: int = 0
    failed: int = 0
    cache_hits: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "submitted": self.submitted,
            "suppressed": self.suppressed,
            "dispatched": self.dispatched,
            "cancelled": self.cancelled,
            "failed": self.failed,
            "cache_hits": self.cache_hits,
        }


class CompletionScheduler:
    """Owns the debounce timer, the single live token, and the completion cache."""

    def __init__(
        self,
        fetch: FetchCompletion,
        *,
        settings: Settings | None = None,
        cache: CompletionCache | None = None,
        event_bus: EventBus | None = None,
        channel: CompletionChannel | None = None,
    ) -> None:
        self._fetch = fetch
        self._settings = _snapshot(settings or Settings())
        auto = self._settings.autocomplete
        self._cache = cache or CompletionCache(max_entries=auto.cache_capacity, ttl_seconds=auto.cache_ttl_seconds)
        self._events = event_bus or EventBus()
        self._channel = channel or CompletionChannel("inline")
        self._state = SchedulerState.IDLE
        self._disposed = False
        self._tasks: set[asyncio.Task[str | None]] = set()
        self.counters = SchedulerCounters()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------
    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def cache(self) -> CompletionCache:
        return self._cache

    @property
    def events(self) -> EventBus:
        return self._events

    @property
    def channel(self) -> CompletionChannel:
        return self._channel

    @property
    def disposed(self) -> bool:
        return self._disposed

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def update_settings(self, settings: Settings) -> None:
        """Swap the settings used by requests submitted from now on."""

        self._settings = _snapshot(settings)
        LOGGER.debug(
            "Scheduler settings updated (enabled=%s, delay=%sms)",
            self._settings.autocomplete.enabled,
            self._settings.autocomplete.trigger_delay_ms,
        )

    async def submit(self, event: EditorEvent) -> CompletionOutcome:
        """Schedule a completion for *event* and wait for its outcome.

        Superseded, stopped, and disposed requests resolve to ``cancelled``;
        policy guards resolve to ``suppressed``. Neither raises.
        """

        if self._disposed:
            return CompletionOutcome.suppressed("disposed")
        self.counters.submitted += 1
        settings = self._settings
        auto = settings.autocomplete

        reason = self._guard(event, settings)
        if reason is not None:
            self.counters.suppressed += 1
            # Text changed under the pending request; its anchor is now stale.
            self._channel.cancel("suppressed")
            LOGGER.debug("Completion suppressed: %s", reason)
            telemetry_service.emit("completion.suppressed", {"reason": reason, "trigger": event.trigger_kind.value})
            return CompletionOutcome.suppressed(reason)

        profile = settings.resolved_profile()
        fingerprint = self._cache.fingerprint(event.text_before, event.text_after, profile.name, profile.model)
        cached = self._cache.get(fingerprint)
        if cached is not None:
            return self._serve_cached(event, cached)

        request = CompletionRequest(
            request_id=uuid.uuid4().hex[:12],
            trigger_kind=event.trigger_kind,
            text_before=event.text_before,
            text_after=event.text_after,
            document_context=event.document_context,
            fingerprint=fingerprint,
            provider=profile.name,
            model=profile.model,
            temperature=auto.temperature,
            completion_length=auto.completion_length,
            max_completion_chars=auto.max_completion_chars,
            max_completion_tokens=auto.max_completion_tokens,
        )
        with bound_request(request.request_id):
            return await self._schedule(request, auto.trigger_delay_ms)

    def cancel(self, reason: str = "stopped") -> bool:
        """Explicit stop: invalidate the pending or in-flight request."""

        return self._channel.cancel(reason)

    async def aclose(self) -> None:
        """Dispose the scheduler; later submits are suppressed."""

        if self._disposed:
            return
        self._disposed = True
        self._channel.cancel("disposed")
        pending = list(self._tasks)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._state = SchedulerState.IDLE
        LOGGER.debug("Completion scheduler disposed")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    async def _schedule(self, request: CompletionRequest, delay_ms: int) -> CompletionOutcome:
        token = self._channel.replace("superseded")
        token.on_cancel(lambda why: self._handle_token_cancelled(request, why))

        try:
            if request.trigger_kind is TriggerKind.AUTOMATIC and delay_ms > 0:
                self._transition(SchedulerState.DEBOUNCING, request)
                if await token.wait_cancelled(delay_ms / 1000.0):
                    return CompletionOutcome.cancelled(token.reason or "superseded", request.request_id)
            if not self._channel.is_current(token):
                return CompletionOutcome.cancelled(token.reason or "superseded", request.request_id)
            return await self._dispatch(request, token)
        except asyncio.CancelledError:
            token.cancel("task_cancelled")
            self._channel.release(token)
            raise

    def _guard(self, event: EditorEvent, settings: Settings) -> str | None:
        auto = settings.autocomplete
        if not auto.enabled:
            return "disabled"
        if len(event.text_before.strip()) < auto.min_context_chars:
            return "context_too_short"
        if event.text_before and auto.boundary_characters and event.text_before[-1] in auto.boundary_characters:
            return "boundary"
        return None

    def _serve_cached(self, event: EditorEvent, text: str) -> CompletionOutcome:
        self._channel.cancel("superseded")
        self.counters.cache_hits += 1
        request_id = uuid.uuid4().hex[:12]
        suggestion = InlineSuggestion(insert_text=text, anchor_position=len(event.text_before))
        self._events.publish(CompletionSucceeded(request_id=request_id, insert_text=text, from_cache=True))
        self._state = SchedulerState.IDLE
        LOGGER.debug("Completion served from cache (%d chars)", len(text))
        return CompletionOutcome(status=OutcomeStatus.CACHED, suggestion=suggestion, request_id=request_id)

    async def _dispatch(self, request: CompletionRequest, token: CancellationToken) -> CompletionOutcome:
        self._transition(SchedulerState.IN_FLIGHT, request)
        self.counters.dispatched += 1
        self._events.publish(CompletionDispatched(request_id=request.request_id, trigger_kind=request.trigger_kind.value))
        telemetry_service.emit(
            "completion.dispatched",
            {"trigger": request.trigger_kind.value, "provider": request.provider, "model": request.model},
        )

        task: asyncio.Task[str | None] = asyncio.create_task(self._fetch(request, token))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        token.attach(task)
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            raise

        if task.cancelled() or not self._channel.is_current(token):
            if not task.cancelled() and task.exception() is not None:
                LOGGER.debug("Discarding failure of stale request %s", request.request_id)
            return CompletionOutcome.cancelled(token.reason or "superseded", request.request_id)

        self._channel.release(token)
        self._state = SchedulerState.IDLE
        error = task.exception()
        if error is not None:
            if isinstance(error, GenerationError):
                return self._handle_failure(request, error)
            raise error

        text = task.result() or ""
        if not text:
            LOGGER.debug("Request %s produced no suggestion", request.request_id)
            return CompletionOutcome(status=OutcomeStatus.EMPTY, request_id=request.request_id)
        self._cache.put(request.fingerprint, text)
        self._events.publish(CompletionSucceeded(request_id=request.request_id, insert_text=text))
        suggestion = InlineSuggestion(insert_text=text, anchor_position=request.anchor_position)
        return CompletionOutcome(status=OutcomeStatus.SUGGESTED, suggestion=suggestion, request_id=request.request_id)

    def _handle_failure(self, request: CompletionRequest, error: GenerationError) -> CompletionOutcome:
        self.counters.failed += 1
        LOGGER.warning("Completion request %s failed: %s", request.request_id, error)
        telemetry_service.emit(
            "completion.failed",
            {"request_id": request.request_id, "error_code": error.error_code, "retryable": error.retryable},
        )
        self._events.publish(
            CompletionFailed(
                request_id=request.request_id,
                trigger_kind=request.trigger_kind.value,
                error=str(error),
            )
        )
        if request.trigger_kind is TriggerKind.EXPLICIT:
            self._events.publish(NoticePosted(title="Completion failed", message=error.message))
        return CompletionOutcome(
            status=OutcomeStatus.FAILED,
            error=str(error),
            reason=error.error_code,
            request_id=request.request_id,
        )

    def _handle_token_cancelled(self, request: CompletionRequest, reason: str) -> None:
        self.counters.cancelled += 1
        self._state = SchedulerState.CANCELLED
        LOGGER.debug("Request %s cancelled (%s)", request.request_id, reason)
        telemetry_service.emit("completion.cancelled", {"request_id": request.request_id, "reason": reason})
        self._events.publish(CompletionCancelled(request_id=request.request_id, reason=reason))

    def _transition(self, state: SchedulerState, request: CompletionRequest) -> None:
        LOGGER.debug("Scheduler %s -> %s for %s", self._state.value, state.value, request.request_id)
        self._state = state


def _snapshot(settings: Settings) -> Settings:
    return replace(
        settings,
        autocomplete=replace(settings.autocomplete),
        context=replace(settings.context),
        default_headers=dict(settings.default_headers),
    )


__all__ = [
    "CompletionScheduler",
    "FetchCompletion",
    "SchedulerCounters",
    "SchedulerState",
]
