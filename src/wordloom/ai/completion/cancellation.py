"""Cancellation tokens and the single-slot completion channel."""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any, Callable

LOGGER = logging.getLogger(__name__)

_TOKEN_IDS = itertools.count(1)


class CancellationToken:
    """Handle owned by exactly one request.

    Cancelling is idempotent and never raises. It wakes anything waiting in
    :meth:`wait_cancelled`, cancels the attached network task, and runs the
    registered abort callbacks once.
    """

    __slots__ = ("token_id", "label", "_event", "_reason", "_task", "_callbacks")

    def __init__(self, label: str = "") -> None:
        self.token_id = next(_TOKEN_IDS)
        self.label = label
        self._event = asyncio.Event()
        self._reason: str | None = None
        self._task: asyncio.Task[Any] | None = None
        self._callbacks: list[Callable[[str], None]] = []

    def __repr__(self) -> str:
        state = f"cancelled:{self._reason}" if self.cancelled else "live"
        return f"CancellationToken(id={self.token_id}, label={self.label!r}, {state})"

    @property
    def cancelled(self) -> bool:
        return self._reason is not None

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> bool:
        """Invalidate the token. Returns ``False`` when it was already cancelled."""

        if self._reason is not None:
            return False
        self._reason = reason or "cancelled"
        self._event.set()
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback(self._reason)
            except Exception:  # pragma: no cover - abort hooks must not break cancellation
                LOGGER.debug("Abort callback %s failed", callback, exc_info=True)
        LOGGER.debug("Token %s cancelled (%s)", self.token_id, self._reason)
        return True

    def attach(self, task: asyncio.Task[Any]) -> None:
        """Bind the in-flight task so cancellation aborts the network call."""

        if self.cancelled:
            task.cancel()
            return
        self._task = task

    def on_cancel(self, callback: Callable[[str], None]) -> None:
        if self.cancelled:
            callback(self._reason or "cancelled")
            return
        self._callbacks.append(callback)

    async def wait_cancelled(self, timeout: float | None = None) -> bool:
        """Sleep up to *timeout* seconds; return ``True`` if cancelled meanwhile."""

        if self.cancelled:
            return True
        if timeout is not None and timeout <= 0:
            await asyncio.sleep(0)
            return self.cancelled
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
        except asyncio.TimeoutError:
            return self.cancelled
        return True


class CompletionChannel:
    """Owns the single live token for one logical completion channel.

    ``replace`` always cancels the previous token before handing out the new
    one, so two live tokens never coexist. Continuations compare identity via
    :meth:`is_current` before applying results.
    """

    def __init__(self, name: str = "inline") -> None:
        self.name = name
        self._current: CancellationToken | None = None

    @property
    def current(self) -> CancellationToken | None:
        return self._current

    def replace(self, reason: str = "superseded") -> CancellationToken:
        previous = self._current
        if previous is not None:
            previous.cancel(reason)
        token = CancellationToken(label=self.name)
        self._current = token
        return token

    def is_current(self, token: CancellationToken | None) -> bool:
        return token is not None and token is self._current and not token.cancelled

    def cancel(self, reason: str = "stopped") -> bool:
        token = self._current
        self._current = None
        if token is None:
            return False
        return token.cancel(reason)

    def release(self, token: CancellationToken) -> None:
        """Clear the slot if *token* still occupies it (request finished)."""

        if self._current is token:
            self._current = None


__all__ = ["CancellationToken", "CompletionChannel"]
