"""Tests for the debounced single-flight completion scheduler."""

from __future__ import annotations

import asyncio
import time
from typing import Any

import pytest

from wordloom.ai.ai_types import EditorEvent, OutcomeStatus, TriggerKind
from wordloom.ai.completion.cancellation import CancellationToken
from wordloom.ai.completion.scheduler import CompletionScheduler, SchedulerState
from wordloom.ai.errors import ErrorCode, GenerationError
from wordloom.events import (
    CompletionCancelled,
    CompletionDispatched,
    CompletionFailed,
    CompletionSucceeded,
    NoticePosted,
)
from wordloom.services.settings import Settings
from wordloom.utils.logging import current_request_id


class _Fetch:
    def __init__(self, result: str | None = "suggestion", *, delay: float = 0.0, error: BaseException | None = None):
        self.result = result
        self.delay = delay
        self.error = error
        self.requests: list[Any] = []
        self.tokens: list[CancellationToken] = []

    async def __call__(self, request, token: CancellationToken) -> str | None:
        self.requests.append(request)
        self.tokens.append(token)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


def _settings(delay_ms: int = 200) -> Settings:
    settings = Settings()
    settings.autocomplete.trigger_delay_ms = delay_ms
    settings.autocomplete.min_context_chars = 3
    return settings


def _event(text: str, *, explicit: bool = False, after: str = "") -> EditorEvent:
    kind = TriggerKind.EXPLICIT if explicit else TriggerKind.AUTOMATIC
    return EditorEvent(text_before=text, text_after=after, trigger_kind=kind)


def _record(scheduler: CompletionScheduler, *event_types: type) -> list[Any]:
    seen: list[Any] = []
    for event_type in event_types:
        scheduler.events.subscribe(event_type, seen.append)
    return seen


@pytest.mark.asyncio
async def test_rapid_automatic_triggers_dispatch_only_the_last() -> None:
    fetch = _Fetch()
    scheduler = CompletionScheduler(fetch, settings=_settings(200))
    cancelled = _record(scheduler, CompletionCancelled)

    tasks = []
    for index in range(5):
        tasks.append(asyncio.create_task(scheduler.submit(_event(f"The story begins {index}"))))
        await asyncio.sleep(0.01)
    outcomes = await asyncio.gather(*tasks)

    assert [outcome.status for outcome in outcomes[:-1]] == [OutcomeStatus.CANCELLED] * 4
    assert all(outcome.reason == "superseded" for outcome in outcomes[:-1])
    assert outcomes[-1].status is OutcomeStatus.SUGGESTED
    assert len(fetch.requests) == 1
    assert fetch.requests[0].text_before == "The story begins 4"
    assert scheduler.counters.dispatched == 1
    assert scheduler.counters.cancelled == 4
    assert len(cancelled) == 4


@pytest.mark.asyncio
async def test_triggers_fifty_ms_apart_with_half_second_debounce() -> None:
    fetch = _Fetch()
    scheduler = CompletionScheduler(fetch, settings=_settings(500))
    dispatched = _record(scheduler, CompletionDispatched)

    first = asyncio.create_task(scheduler.submit(_event("Once upon a time")))
    await asyncio.sleep(0.05)
    second = asyncio.create_task(scheduler.submit(_event("Once upon a time,")))
    first_outcome, second_outcome = await asyncio.gather(first, second)

    assert first_outcome.status is OutcomeStatus.CANCELLED
    assert second_outcome.status is OutcomeStatus.SUGGESTED
    assert len(dispatched) == 1
    assert dispatched[0].request_id == second_outcome.request_id


@pytest.mark.asyncio
async def test_explicit_trigger_bypasses_debounce_and_cancels_pending() -> None:
    fetch = _Fetch("explicit answer")
    scheduler = CompletionScheduler(fetch, settings=_settings(5000))

    pending = asyncio.create_task(scheduler.submit(_event("Pending automatic")))
    await asyncio.sleep(0.01)
    assert scheduler.state is SchedulerState.DEBOUNCING

    started = time.monotonic()
    explicit = await scheduler.submit(_event("Pending automatic!", explicit=True))
    pending_outcome = await pending

    assert time.monotonic() - started < 1.0
    assert explicit.status is OutcomeStatus.SUGGESTED
    assert explicit.suggestion is not None
    assert explicit.suggestion.insert_text == "explicit answer"
    assert explicit.suggestion.anchor_position == len("Pending automatic!")
    assert pending_outcome.status is OutcomeStatus.CANCELLED
    assert scheduler.counters.dispatched == 1
    assert scheduler.counters.cancelled == 1
    assert scheduler.state is SchedulerState.IDLE


@pytest.mark.asyncio
async def test_guards_suppress_without_dispatch() -> None:
    fetch = _Fetch()
    settings = _settings(0)
    scheduler = CompletionScheduler(fetch, settings=settings)

    too_short = await scheduler.submit(_event("ab", explicit=True))
    boundary = await scheduler.submit(_event("A full line\n", explicit=True))
    settings.autocomplete.enabled = False
    scheduler.update_settings(settings)
    disabled = await scheduler.submit(_event("Plenty of context", explicit=True))

    assert (too_short.status, too_short.reason) == (OutcomeStatus.SUPPRESSED, "context_too_short")
    assert (boundary.status, boundary.reason) == (OutcomeStatus.SUPPRESSED, "boundary")
    assert (disabled.status, disabled.reason) == (OutcomeStatus.SUPPRESSED, "disabled")
    assert fetch.requests == []
    assert scheduler.counters.suppressed == 3


@pytest.mark.asyncio
async def test_suppressed_event_cancels_pending_request() -> None:
    scheduler = CompletionScheduler(_Fetch(), settings=_settings(5000))

    pending = asyncio.create_task(scheduler.submit(_event("Typing along")))
    await asyncio.sleep(0.01)
    suppressed = await scheduler.submit(_event("Typing along\n"))
    outcome = await pending

    assert suppressed.status is OutcomeStatus.SUPPRESSED
    assert outcome.status is OutcomeStatus.CANCELLED
    assert outcome.reason == "suppressed"


@pytest.mark.asyncio
async def test_failure_is_distinct_from_empty() -> None:
    failure = GenerationError(error_code=ErrorCode.SERVICE_STATUS, message="HTTP 503")
    failing = CompletionScheduler(_Fetch(error=failure), settings=_settings(0))
    empty = CompletionScheduler(_Fetch(None), settings=_settings(0))
    failed_events = _record(failing, CompletionFailed, NoticePosted)

    failed = await failing.submit(_event("Some context"))
    nothing = await empty.submit(_event("Some context"))

    assert failed.status is OutcomeStatus.FAILED
    assert failed.reason == ErrorCode.SERVICE_STATUS
    assert "HTTP 503" in (failed.error or "")
    assert failed.suggestion is None
    assert nothing.status is OutcomeStatus.EMPTY
    assert failing.state is SchedulerState.IDLE
    assert failing.counters.failed == 1
    assert empty.counters.failed == 0
    assert [type(event) for event in failed_events] == [CompletionFailed]
    assert len(failing.cache) == 0


@pytest.mark.asyncio
async def test_explicit_failure_posts_notice() -> None:
    scheduler = CompletionScheduler(_Fetch(error=GenerationError(message="unreachable")), settings=_settings(0))
    notices = _record(scheduler, NoticePosted)

    outcome = await scheduler.submit(_event("Some context", explicit=True))

    assert outcome.status is OutcomeStatus.FAILED
    assert len(notices) == 1
    assert notices[0].message == "unreachable"


@pytest.mark.asyncio
async def test_unexpected_fetch_error_propagates() -> None:
    scheduler = CompletionScheduler(_Fetch(error=RuntimeError("bug")), settings=_settings(0))

    with pytest.raises(RuntimeError):
        await scheduler.submit(_event("Some context", explicit=True))


@pytest.mark.asyncio
async def test_superseded_in_flight_result_is_never_applied() -> None:
    slow = _Fetch("old answer", delay=0.2)
    scheduler = CompletionScheduler(slow, settings=_settings(0))
    succeeded = _record(scheduler, CompletionSucceeded)

    first = asyncio.create_task(scheduler.submit(_event("First context", explicit=True)))
    await asyncio.sleep(0.02)
    assert scheduler.state is SchedulerState.IN_FLIGHT
    slow.result = "new answer"
    slow.delay = 0.0
    second = await scheduler.submit(_event("Second context", explicit=True))
    first_outcome = await first

    assert first_outcome.status is OutcomeStatus.CANCELLED
    assert first_outcome.reason == "superseded"
    assert slow.tokens[0].cancelled
    assert second.suggestion is not None and second.suggestion.insert_text == "new answer"
    assert [event.insert_text for event in succeeded] == ["new answer"]
    assert len(scheduler.cache) == 1


@pytest.mark.asyncio
async def test_result_arriving_after_stop_is_discarded() -> None:
    async def _stubborn(request, token):
        try:
            await asyncio.sleep(0.05)
        except asyncio.CancelledError:
            pass
        return "late text"

    scheduler = CompletionScheduler(_stubborn, settings=_settings(0))
    succeeded = _record(scheduler, CompletionSucceeded)

    task = asyncio.create_task(scheduler.submit(_event("Some context", explicit=True)))
    await asyncio.sleep(0.01)
    assert scheduler.cancel() is True
    outcome = await task

    assert outcome.status is OutcomeStatus.CANCELLED
    assert outcome.reason == "stopped"
    assert succeeded == []
    assert len(scheduler.cache) == 0


@pytest.mark.asyncio
async def test_cache_hit_skips_network_and_token() -> None:
    fetch = _Fetch("cached answer")
    scheduler = CompletionScheduler(fetch, settings=_settings(0))
    succeeded = _record(scheduler, CompletionSucceeded)

    first = await scheduler.submit(_event("Same context", explicit=True))
    token_count = len(fetch.tokens)
    second = await scheduler.submit(_event("Same context"))

    assert first.status is OutcomeStatus.SUGGESTED
    assert second.status is OutcomeStatus.CACHED
    assert second.suggestion is not None and second.suggestion.insert_text == "cached answer"
    assert len(fetch.requests) == 1
    assert len(fetch.tokens) == token_count
    assert scheduler.channel.current is None
    assert scheduler.counters.cache_hits == 1
    assert [event.from_cache for event in succeeded] == [False, True]


@pytest.mark.asyncio
async def test_settings_are_snapshotted_per_request() -> None:
    fetch = _Fetch(delay=0.05)
    settings = _settings(0)
    settings.autocomplete.temperature = 0.2
    scheduler = CompletionScheduler(fetch, settings=settings)
    settings.autocomplete.enabled = False

    task = asyncio.create_task(scheduler.submit(_event("Context one", explicit=True)))
    await asyncio.sleep(0.01)
    updated = _settings(0)
    updated.autocomplete.temperature = 0.9
    scheduler.update_settings(updated)
    first = await task
    second = await scheduler.submit(_event("Context two", explicit=True))

    assert first.status is OutcomeStatus.SUGGESTED
    assert second.status is OutcomeStatus.SUGGESTED
    assert [request.temperature for request in fetch.requests] == [0.2, 0.9]
    assert fetch.requests[0].provider == "lmstudio"


@pytest.mark.asyncio
async def test_aclose_cancels_in_flight_and_suppresses_later_submits() -> None:
    fetch = _Fetch(delay=5)
    scheduler = CompletionScheduler(fetch, settings=_settings(0))

    task = asyncio.create_task(scheduler.submit(_event("Some context", explicit=True)))
    await asyncio.sleep(0.01)
    await scheduler.aclose()
    outcome = await task
    later = await scheduler.submit(_event("Other context", explicit=True))

    assert outcome.status is OutcomeStatus.CANCELLED
    assert outcome.reason == "disposed"
    assert later.status is OutcomeStatus.SUPPRESSED
    assert later.reason == "disposed"
    assert scheduler.disposed
    assert scheduler.state is SchedulerState.IDLE


@pytest.mark.asyncio
async def test_cancelling_the_caller_cancels_the_token() -> None:
    fetch = _Fetch(delay=5)
    scheduler = CompletionScheduler(fetch, settings=_settings(0))

    task = asyncio.create_task(scheduler.submit(_event("Some context", explicit=True)))
    await asyncio.sleep(0.01)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert fetch.tokens[0].reason == "task_cancelled"
    assert scheduler.channel.current is None


@pytest.mark.asyncio
async def test_dispatch_is_tagged_with_request_id(telemetry_sink) -> None:
    seen_ids: list[str | None] = []

    async def _fetch(request, token: CancellationToken) -> str:
        seen_ids.append(current_request_id())
        return "tagged"

    scheduler = CompletionScheduler(_fetch, settings=_settings(0))

    outcome = await scheduler.submit(_event("Tag this request", explicit=True))

    assert seen_ids == [outcome.request_id]
    dispatched = [record.payload for record in telemetry_sink.tail() if record.name == "completion.dispatched"]
    assert dispatched[-1]["request_id"] == outcome.request_id
    assert current_request_id() is None
