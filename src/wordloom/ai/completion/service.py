"""Inline autocomplete and document-level assistant built on the pipeline."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Callable

from ...events import EventBus, NoticePosted, PreviewFinished, PreviewUpdated
from ...services.settings import Settings
from ...utils.logging import bound_request
from ..ai_types import (
    CompletionOutcome,
    CompletionRequest,
    EditorEvent,
    GenerationService,
    InlineSuggestion,
    TriggerKind,
)
from ..context.assembler import ContextAssembler, SmartContextResult, render_system_message, render_user_prompt
from ..context.sections import DocumentContext, ProjectContext
from ..errors import GenerationError
from ..memory.result_cache import CompletionCache
from .cancellation import CancellationToken, CompletionChannel
from .prompts import (
    CORE_SYSTEM_MESSAGE,
    TaskPrompt,
    build_autocomplete_prompt,
    clean_completion,
    get_task_prompt,
    task_instruction,
)
from .scheduler import CompletionScheduler
from .streaming import StreamSession, StreamSnapshot, StreamStatus, stop_at_natural_break

LOGGER = logging.getLogger(__name__)

PreviewCallback = Callable[[str, StreamSnapshot], None]


class AutocompleteService:
    """Ghost-text completions: prompt, stream, clean, and cache."""

    def __init__(
        self,
        generator: GenerationService,
        *,
        settings: Settings | None = None,
        cache: CompletionCache | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self._generator = generator
        self._scheduler = CompletionScheduler(self._fetch, settings=settings, cache=cache, event_bus=event_bus)

    @property
    def scheduler(self) -> CompletionScheduler:
        return self._scheduler

    async def request(self, event: EditorEvent) -> CompletionOutcome:
        return await self._scheduler.submit(event)

    async def suggest(
        self,
        text_before: str,
        text_after: str = "",
        *,
        explicit: bool = False,
        document_context: str = "",
    ) -> InlineSuggestion | None:
        """Convenience wrapper returning only the suggestion, if any."""

        event = EditorEvent(
            text_before=text_before,
            text_after=text_after,
            trigger_kind=TriggerKind.EXPLICIT if explicit else TriggerKind.AUTOMATIC,
            document_context=document_context,
        )
        outcome = await self._scheduler.submit(event)
        return outcome.suggestion

    def cancel(self, reason: str = "stopped") -> bool:
        return self._scheduler.cancel(reason)

    def clear_cache(self) -> None:
        self._scheduler.cache.clear()

    def update_settings(self, settings: Settings) -> None:
        self._scheduler.update_settings(settings)

    async def aclose(self) -> None:
        await self._scheduler.aclose()

    async def _fetch(self, request: CompletionRequest, token: CancellationToken) -> str | None:
        system_message, user_prompt = build_autocomplete_prompt(
            request.text_before,
            request.text_after,
            document_context=request.document_context,
            completion_length=request.completion_length,
        )
        session = StreamSession(token, stop_when=stop_at_natural_break(request.max_completion_chars))
        snapshot = await session.consume(
            self._generator.generate(
                system_message=system_message,
                user_prompt=user_prompt,
                temperature=request.temperature,
                max_tokens=request.max_completion_tokens,
                token=token,
            )
        )
        if snapshot.status is StreamStatus.ABORTED:
            return None
        return clean_completion(snapshot.text)


@dataclass(slots=True, frozen=True)
class AssistantTask:
    """A document-level generation request on a selection or the whole document."""

    mode: str
    document_text: str
    selection: tuple[int, int] | None = None
    custom_prompt: str | None = None
    project: ProjectContext | None = None
    document: DocumentContext | None = None
    session_notes: str = ""

    @property
    def selected_text(self) -> str:
        if self.selection is None:
            return ""
        start, end = sorted(self.selection)
        return self.document_text[max(0, start) : max(0, end)]


@dataclass(slots=True, frozen=True)
class PreviewResult:
    run_id: str
    mode: str
    status: str
    text: str
    context: SmartContextResult | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == StreamStatus.DONE.value and bool(self.text.strip())


class DocumentAssistant:
    """Runs one document-level generation at a time into a preview buffer.

    Starting a new run or calling :meth:`stop` cancels the previous run. A
    failed run posts a notice; the document itself is only changed by
    :func:`apply_preview`.
    """

    def __init__(
        self,
        generator: GenerationService,
        *,
        assembler: ContextAssembler | None = None,
        settings: Settings | None = None,
        event_bus: EventBus | None = None,
        on_snapshot: PreviewCallback | None = None,
    ) -> None:
        self._generator = generator
        self._settings = settings or Settings()
        self._assembler = assembler or ContextAssembler(settings=self._settings.context)
        self._events = event_bus or EventBus()
        self._on_snapshot = on_snapshot
        self._channel = CompletionChannel("document")

    @property
    def assembler(self) -> ContextAssembler:
        return self._assembler

    @property
    def events(self) -> EventBus:
        return self._events

    @property
    def running(self) -> bool:
        token = self._channel.current
        return token is not None and not token.cancelled

    def update_settings(self, settings: Settings) -> None:
        self._settings = settings
        self._assembler.update_settings(settings.context)

    def stop(self, reason: str = "stopped") -> bool:
        return self._channel.cancel(reason)

    async def run(self, task: AssistantTask) -> PreviewResult:
        prompt = get_task_prompt(task.mode)
        run_id = uuid.uuid4().hex[:12]
        with bound_request(run_id):
            return await self._run(task, prompt, run_id)

    async def _run(self, task: AssistantTask, prompt: TaskPrompt, run_id: str) -> PreviewResult:
        token = self._channel.replace("superseded")
        temperature = self._settings.document_temperature if task.mode == "custom" else prompt.temperature
        LOGGER.debug("Assistant run %s started (%s)", run_id, task.mode)
        context: SmartContextResult | None = None
        session = StreamSession(token, on_snapshot=lambda snapshot: self._forward(run_id, snapshot))
        try:
            context = await self._assembler.build(
                task.document_text,
                project=task.project,
                document=task.document,
                session_notes=task.session_notes,
                selection=task.selection,
            )
            selected = task.selected_text
            system_message = render_system_message(CORE_SYSTEM_MESSAGE, task.project)
            instruction = task_instruction(task.mode, task.custom_prompt, has_selection=bool(selected.strip()))
            user_prompt = render_user_prompt(context, selected, instruction)
            if token.cancelled:
                return self._finish(run_id, task.mode, StreamStatus.ABORTED.value, "", context)

            consumer = asyncio.create_task(
                session.consume(
                    self._generator.generate(
                        system_message=system_message,
                        user_prompt=user_prompt,
                        temperature=temperature,
                        token=token,
                    )
                )
            )
            token.attach(consumer)
            try:
                await asyncio.wait({consumer})
            except asyncio.CancelledError:
                consumer.cancel()
                raise
            if consumer.cancelled() or not self._channel.is_current(token):
                return self._finish(run_id, task.mode, StreamStatus.ABORTED.value, session.accumulated_text, context)
            error = consumer.exception()
            if error is not None:
                raise error
            snapshot = consumer.result()
            return self._finish(run_id, task.mode, snapshot.status.value, snapshot.text, context)
        except GenerationError as exc:
            if not self._channel.is_current(token):
                return self._finish(run_id, task.mode, StreamStatus.ABORTED.value, exc.partial_text, context)
            LOGGER.warning("Assistant run %s failed: %s", run_id, exc)
            self._events.publish(NoticePosted(title="Generation failed", message=exc.message))
            return self._finish(run_id, task.mode, "failed", exc.partial_text, context, error=str(exc))
        except asyncio.CancelledError:
            token.cancel("task_cancelled")
            raise
        finally:
            self._channel.release(token)

    def _forward(self, run_id: str, snapshot: StreamSnapshot) -> None:
        if snapshot.is_terminal:
            return
        self._events.publish(PreviewUpdated(run_id=run_id, text=snapshot.text, fragment_count=snapshot.fragment_count))
        if self._on_snapshot is not None:
            self._on_snapshot(run_id, snapshot)

    def _finish(
        self,
        run_id: str,
        mode: str,
        status: str,
        text: str,
        context: SmartContextResult | None,
        *,
        error: str | None = None,
    ) -> PreviewResult:
        LOGGER.debug("Assistant run %s finished: %s (%d chars)", run_id, status, len(text))
        self._events.publish(PreviewFinished(run_id=run_id, status=status, text=text))
        return PreviewResult(run_id=run_id, mode=mode, status=status, text=text, context=context, error=error)


def apply_preview(document_text: str, selection: tuple[int, int] | None, preview: str, mode: str) -> str:
    """Return the document with *preview* applied for *mode*.

    Replacing modes swap out a non-empty selection; every other case inserts
    the preview on its own line after the selection, or at the end of the
    document when nothing is selected.
    """

    text = document_text or ""
    body = (preview or "").strip("\n")
    if not body.strip():
        return text
    if selection is None:
        if not text.strip():
            return body
        return f"{text.rstrip(chr(10))}\n\n{body}"
    start, end = (max(0, min(len(text), int(value))) for value in sorted(selection))
    if get_task_prompt(mode).replaces_selection and start != end:
        return text[:start] + body + text[end:]
    head, tail = text[:end], text[end:]
    lead = "\n" if head and not head.endswith("\n") else ""
    trail = "\n" if tail and not tail.startswith("\n") else ""
    return f"{head}{lead}{body}{trail}{tail}"


__all__ = [
    "AssistantTask",
    "AutocompleteService",
    "DocumentAssistant",
    "PreviewCallback",
    "PreviewResult",
    "apply_preview",
]
