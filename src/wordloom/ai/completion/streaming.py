"""Accumulate streamed text fragments into a growing, always-displayable buffer."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterable, Callable

from ..errors import ErrorCode, GenerationError
from .cancellation import CancellationToken

LOGGER = logging.getLogger(__name__)


class StreamStatus(str, Enum):
    ACTIVE = "active"
    DONE = "done"
    ABORTED = "aborted"
    ERRORED = "errored"


@dataclass(slots=True, frozen=True)
class StreamSnapshot:
    """Point-in-time view of a stream session."""

    text: str
    fragment_count: int
    status: StreamStatus

    @property
    def is_terminal(self) -> bool:
        return self.status is not StreamStatus.ACTIVE


SnapshotCallback = Callable[[StreamSnapshot], None]
StopPredicate = Callable[[str], bool]


class StreamSession:
    """Single-use consumer for one generation stream.

    Fragments are appended only while the owning token is live; anything that
    arrives after cancellation is discarded, so the buffer always equals the
    fragments received strictly before the cancel.
    """

    def __init__(
        self,
        token: CancellationToken,
        *,
        on_snapshot: SnapshotCallback | None = None,
        stop_when: StopPredicate | None = None,
    ) -> None:
        self._token = token
        self._on_snapshot = on_snapshot
        self._stop_when = stop_when
        self._parts: list[str] = []
        self._text = ""
        self._fragment_count = 0
        self._status = StreamStatus.ACTIVE
        self._error: BaseException | None = None
        self._started = False

    @property
    def token(self) -> CancellationToken:
        return self._token

    @property
    def accumulated_text(self) -> str:
        return self._text

    @property
    def is_active(self) -> bool:
        return self._status is StreamStatus.ACTIVE

    @property
    def status(self) -> StreamStatus:
        return self._status

    @property
    def error(self) -> BaseException | None:
        return self._error

    def snapshot(self) -> StreamSnapshot:
        return StreamSnapshot(text=self._text, fragment_count=self._fragment_count, status=self._status)

    async def consume(self, fragments: AsyncIterable[str]) -> StreamSnapshot:
        """Drain *fragments* and return the terminal snapshot.

        Raises :class:`GenerationError` for transport failures and re-raises
        :class:`asyncio.CancelledError` when the surrounding task is cancelled;
        in both cases the session keeps its partial text.
        """

        if self._started:
            raise RuntimeError("StreamSession.consume() may only be called once")
        self._started = True
        iterator = fragments.__aiter__()
        try:
            while True:
                if self._token.cancelled:
                    self._finish(StreamStatus.ABORTED)
                    break
                try:
                    fragment = await iterator.__anext__()
                except StopAsyncIteration:
                    self._finish(StreamStatus.DONE)
                    break
                if self._token.cancelled:
                    self._finish(StreamStatus.ABORTED)
                    break
                if not fragment:
                    continue
                self._append(str(fragment))
                if self._stop_when is not None and self._stop_when(self._text):
                    self._finish(StreamStatus.DONE)
                    break
        except asyncio.CancelledError:
            self._finish(StreamStatus.ABORTED)
            raise
        except GenerationError as exc:
            self._fail(exc)
            exc.partial_text = self._text
            raise
        except Exception as exc:
            self._fail(exc)
            raise GenerationError(
                error_code=ErrorCode.MALFORMED_STREAM,
                message=f"Generation stream failed: {exc}",
                partial_text=self._text,
            ) from exc
        finally:
            await _close_iterator(iterator)
        return self.snapshot()

    def _append(self, fragment: str) -> None:
        self._parts.append(fragment)
        self._text = "".join(self._parts)
        self._fragment_count += 1
        self._notify()

    def _finish(self, status: StreamStatus) -> None:
        if self._status is not StreamStatus.ACTIVE:
            return
        self._status = status
        LOGGER.debug(
            "Stream for token %s finished: %s after %d fragment(s)",
            self._token.token_id,
            status.value,
            self._fragment_count,
        )
        self._notify()

    def _fail(self, exc: BaseException) -> None:
        self._error = exc
        self._finish(StreamStatus.ERRORED)

    def _notify(self) -> None:
        if self._on_snapshot is None:
            return
        try:
            self._on_snapshot(self.snapshot())
        except Exception:  # pragma: no cover - observers must not break the stream
            LOGGER.debug("Snapshot observer failed", exc_info=True)


def stop_at_natural_break(max_chars: int) -> StopPredicate:
    """Stop rule for inline completions: a blank line or *max_chars* characters."""

    def _predicate(text: str) -> bool:
        return "\n\n" in text or len(text) > max_chars

    return _predicate


async def _close_iterator(iterator: Any) -> None:
    closer = getattr(iterator, "aclose", None)
    if closer is None:
        return
    try:
        await closer()
    except (RuntimeError, GeneratorExit):  # pragma: no cover - generator already closing
        LOGGER.debug("Stream iterator close skipped", exc_info=True)


__all__ = [
    "SnapshotCallback",
    "StopPredicate",
    "StreamSession",
    "StreamSnapshot",
    "StreamStatus",
    "stop_at_natural_break",
]
