"""Event bus for completion pipeline notifications.

The scheduler and the document assistant publish here; editor adapters and
notification surfaces subscribe. Handlers never see each other's failures.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, TypeVar
from weakref import WeakMethod

logger = logging.getLogger(__name__)

E = TypeVar("E", bound="Event")

Handler = Callable[[Any], None]


@dataclass(slots=True)
class Event:
    """Base class for all pipeline events."""


# =============================================================================
# Inline completion events
# =============================================================================


@dataclass(slots=True)
class CompletionDispatched(Event):
    """A request left the debounce window and was sent to the service.

    Attributes:
        request_id: Identifier of the dispatched request.
        trigger_kind: ``automatic`` or ``explicit``.
    """

    request_id: str
    trigger_kind: str


@dataclass(slots=True)
class CompletionSucceeded(Event):
    """A live request produced a suggestion (or a confirmed empty answer)."""

    request_id: str
    insert_text: str
    from_cache: bool = False


@dataclass(slots=True)
class CompletionCancelled(Event):
    """A request was superseded, stopped, or disposed before it finished."""

    request_id: str
    reason: str


@dataclass(slots=True)
class CompletionFailed(Event):
    """The generation service failed for a live request."""

    request_id: str
    trigger_kind: str
    error: str


# =============================================================================
# Document-level generation events
# =============================================================================


@dataclass(slots=True)
class PreviewUpdated(Event):
    """Incremental snapshot of a document-level generation preview."""

    run_id: str
    text: str
    fragment_count: int


@dataclass(slots=True)
class PreviewFinished(Event):
    """Terminal state of a document-level generation preview."""

    run_id: str
    status: str
    text: str


@dataclass(slots=True)
class NoticePosted(Event):
    """User-visible notification for a recoverable failure."""

    title: str
    message: str
    level: str = "error"


# Streaming snapshots are too frequent to log per publish.
_QUIET_EVENT_TYPES: frozenset[type[Event]] = frozenset({PreviewUpdated})

_Resolver = Callable[[], "Handler | None"]


class EventBus:
    """Synchronous publish-subscribe hub keyed by event class.

    A handler registered for a base class also receives its subclasses, so a
    subscriber to :class:`Event` sees every notification. Bound methods are
    held weakly and pruned once their owner is collected. Not thread-safe:
    publish from the event loop thread.
    """

    __slots__ = ("_handlers",)

    def __init__(self) -> None:
        self._handlers: dict[type[Event], list[_Resolver]] = {}

    def subscribe(self, event_type: type[E], handler: Callable[[E], None]) -> Callable[[], None]:
        """Register *handler* for *event_type*; the returned callable unsubscribes it."""
        self._handlers.setdefault(event_type, []).append(_resolver_for(handler))
        logger.debug("Subscribed %s to %s", _handler_name(handler), event_type.__name__)
        return lambda: self.unsubscribe(event_type, handler)

    def unsubscribe(self, event_type: type[E], handler: Callable[[E], None]) -> None:
        resolvers = self._handlers.get(event_type, [])
        for index, resolve in enumerate(resolvers):
            if resolve() == handler:
                del resolvers[index]
                return

    def publish(self, event: Event) -> int:
        """Run handlers for *event*'s class, then for its bases, in registration order.

        Returns the number of handlers invoked. A handler that raises is
        logged and the rest still run.
        """
        event_type = type(event)
        delivered = 0
        for registered_type in event_type.__mro__:
            resolvers = self._handlers.get(registered_type)
            if not resolvers:
                continue
            for resolve in list(resolvers):
                handler = resolve()
                if handler is None:
                    continue
                delivered += 1
                try:
                    handler(event)
                except Exception:
                    logger.exception("Handler %s failed on %s", _handler_name(handler), event_type.__name__)
            resolvers[:] = [resolve for resolve in resolvers if resolve() is not None]
        if delivered and event_type not in _QUIET_EVENT_TYPES:
            logger.debug("Published %s to %d handler(s)", event_type.__name__, delivered)
        return delivered

    def clear(self) -> None:
        self._handlers.clear()

    def handler_count(self, event_type: type[Event] | None = None) -> int:
        if event_type is not None:
            return len(self._handlers.get(event_type, ()))
        return sum(len(resolvers) for resolvers in self._handlers.values())


def _resolver_for(handler: Handler) -> _Resolver:
    if inspect.ismethod(handler):
        return WeakMethod(handler)
    return lambda: handler


def _handler_name(handler: Handler) -> str:
    if inspect.ismethod(handler):
        return f"{type(handler.__self__).__name__}.{handler.__func__.__name__}"
    return getattr(handler, "__qualname__", None) or repr(handler)


__all__ = [
    "Event",
    "EventBus",
    "Handler",
    "CompletionDispatched",
    "CompletionSucceeded",
    "CompletionCancelled",
    "CompletionFailed",
    "PreviewUpdated",
    "PreviewFinished",
    "NoticePosted",
]
