"""In-process telemetry helpers bridging pipeline activity to observers."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Callable, Mapping

from ..utils.logging import current_request_id

LOGGER = logging.getLogger(__name__)

_EVENT_LISTENERS: dict[str, list[Callable[[dict[str, Any]], None]]] = {}
_WILDCARD = "*"


@dataclass(slots=True)
class TelemetryRecord:
    """A single emitted telemetry payload retained by :class:`InMemoryTelemetrySink`."""

    name: str
    payload: dict[str, Any] = field(default_factory=dict)


class InMemoryTelemetrySink:
    """Ring-buffer listener for local inspection and tests."""

    def __init__(self, capacity: int = 200) -> None:
        self._capacity = max(10, capacity)
        self._buffer: deque[TelemetryRecord] = deque(maxlen=self._capacity)
        self._lock = Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def __call__(self, payload: dict[str, Any]) -> None:
        name = str(payload.get("event") or "")
        with self._lock:
            self._buffer.append(TelemetryRecord(name=name, payload=dict(payload)))

    def tail(self, limit: int | None = None) -> list[TelemetryRecord]:
        with self._lock:
            events = list(self._buffer)
        if limit is None or limit >= len(events):
            return events
        return events[-limit:]

    def names(self) -> list[str]:
        return [record.name for record in self.tail()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffer)


def register_event_listener(event_name: str, callback: Callable[[dict[str, Any]], None]) -> None:
    """Register a callback invoked whenever :func:`emit` fires *event_name*.

    Use ``"*"`` to receive every event.
    """

    if not event_name or callback is None:
        return
    listeners = _EVENT_LISTENERS.setdefault(event_name, [])
    if callback not in listeners:
        listeners.append(callback)


def unregister_event_listener(event_name: str, callback: Callable[[dict[str, Any]], None]) -> None:
    listeners = _EVENT_LISTENERS.get(event_name)
    if not listeners:
        return
    if callback in listeners:
        listeners.remove(callback)
    if not listeners:
        _EVENT_LISTENERS.pop(event_name, None)


def emit(event_name: str, payload: Mapping[str, Any] | None = None) -> None:
    """Send *payload* to listeners of *event_name* and to wildcard listeners.

    Events emitted while a completion request or preview run is bound carry
    its id as ``request_id`` unless the payload names one already.
    """

    if not event_name:
        return
    event_payload: dict[str, Any] = {"event": event_name, **(payload or {})}
    request_id = current_request_id()
    if request_id is not None:
        event_payload.setdefault("request_id", request_id)
    listeners = (*_EVENT_LISTENERS.get(event_name, ()), *_EVENT_LISTENERS.get(_WILDCARD, ()))
    for callback in listeners:
        try:
            callback(dict(event_payload))
        except Exception:  # pragma: no cover - listeners must not break emitters
            LOGGER.debug("Telemetry listener %s failed", callback, exc_info=True)
    LOGGER.debug("Telemetry emit %s: %s", event_name, event_payload)


__all__ = [
    "InMemoryTelemetrySink",
    "TelemetryRecord",
    "emit",
    "register_event_listener",
    "unregister_event_listener",
]
