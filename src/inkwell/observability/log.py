"""Event log — bounded, thread-safe store of report events.

Every session writes into one ``EventLog`` (sessions opened through a
``SessionRegistry`` share it), so the log is keyed in practice by
``document_id``.  Queries filter on event type, document, reactive
generation and timestamp; results come back newest first.

Thread Safety:
    All methods hold a ``threading.Lock``.  Input stores may notify from
    watcher threads while the event loop records events.
"""

import threading
from collections import Counter, deque
from collections.abc import Callable, Iterable
from typing import Any

from inkwell.observability.events import ReportEvent

type EventFilter = Callable[[ReportEvent], bool]


class EventLog:
    """Ring buffer of ``ReportEvent`` objects.

    When ``max_events`` is reached the oldest events fall off.

    Args:
        max_events: Maximum number of events to retain.

    """

    __slots__ = ("_dropped", "_events", "_lock", "_max_events")

    def __init__(self, max_events: int = 10_000) -> None:
        self._max_events = max_events
        self._events: deque[ReportEvent] = deque(maxlen=max_events)
        self._lock = threading.Lock()
        self._dropped = 0

    @property
    def max_events(self) -> int:
        return self._max_events

    def append(self, event: ReportEvent) -> None:
        with self._lock:
            if len(self._events) == self._max_events:
                self._dropped += 1
            self._events.append(event)

    def append_many(self, events: Iterable[ReportEvent]) -> None:
        with self._lock:
            for event in events:
                if len(self._events) == self._max_events:
                    self._dropped += 1
                self._events.append(event)

    def query(
        self,
        *,
        event_type: type | tuple[type, ...] | None = None,
        document_id: str | None = None,
        generation: int | None = None,
        since_ns: int = 0,
        limit: int = 100,
    ) -> list[ReportEvent]:
        """Return matching events, newest first.

        Args:
            event_type: Event class (or tuple of classes) to keep.
            document_id: Only events of this report.
            generation: Only events stamped with this reactive generation.
                Events without a generation never match.
            since_ns: Only events at or after this ``timestamp_ns``.
            limit: Maximum number of events returned.

        """
        checks: list[EventFilter] = []
        if event_type is not None:
            checks.append(lambda e: isinstance(e, event_type))
        if document_id is not None:
            checks.append(lambda e: e.document_id == document_id)
        if generation is not None:
            checks.append(lambda e: getattr(e, "generation", None) == generation)
        if since_ns:
            checks.append(lambda e: e.timestamp_ns >= since_ns)

        with self._lock:
            snapshot = list(self._events)

        found: list[ReportEvent] = []
        for event in reversed(snapshot):
            if all(check(event) for check in checks):
                found.append(event)
                if len(found) >= limit:
                    break
        return found

    def latest(self, event_type: type, document_id: str | None = None) -> ReportEvent | None:
        """The most recent event of ``event_type``, or None."""
        matches = self.query(event_type=event_type, document_id=document_id, limit=1)
        return matches[0] if matches else None

    def recent(self, n: int = 20) -> list[ReportEvent]:
        """The last ``n`` events in the order they were recorded."""
        with self._lock:
            events = list(self._events)
        return events[-n:] if n > 0 else []

    def clear(self, document_id: str | None = None) -> int:
        """Drop events (only those of ``document_id`` if given); return the count."""
        with self._lock:
            if document_id is None:
                count = len(self._events)
                self._events.clear()
                return count
            kept = [e for e in self._events if e.document_id != document_id]
            count = len(self._events) - len(kept)
            self._events = deque(kept, maxlen=self._max_events)
            return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def stats(self) -> dict[str, Any]:
        """Counts by event type and by document."""
        with self._lock:
            events = list(self._events)
            dropped = self._dropped
        return {
            "total": len(events),
            "max_events": self._max_events,
            "dropped": dropped,
            "by_type": dict(Counter(type(e).__name__ for e in events)),
            "by_document": dict(Counter(e.document_id for e in events)),
        }
