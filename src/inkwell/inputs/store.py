"""In-memory input store — the current value of every report input.

UI controls (or the CLI) write values with ``set`` / ``update``; report
sessions ``subscribe`` and receive a fresh snapshot after every write that
changes something.

Thread-safe: the value map, subscriber list and delivery queue are protected
by a lock.  Callbacks run outside the lock.  Each write queues its snapshot
while still holding the lock, and one thread at a time drains the queue, so
subscribers see snapshots in the order the writes were applied even when
several threads write at once.  A write made from inside a callback is
delivered after the current snapshot has reached every subscriber.
"""

from __future__ import annotations

import threading
from collections import deque
from typing import TYPE_CHECKING, Any

from inkwell.inputs.differ import values_equal

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from inkwell._types import InputCallback, ParamName


class InputStore:
    """Holds input parameter values and notifies subscribers on change.

    Args:
        initial: Optional starting values.  Subscribers are not notified
            for these.

    """

    def __init__(self, initial: Mapping[ParamName, Any] | None = None) -> None:
        self._values: dict[ParamName, Any] = dict(initial or {})
        self._subscribers: list[InputCallback] = []
        self._pending: deque[tuple[list[InputCallback], dict[ParamName, Any]]] = deque()
        self._delivering = False
        self._lock = threading.Lock()

    def get(self, name: ParamName, default: Any = None) -> Any:
        with self._lock:
            return self._values.get(name, default)

    def has(self, name: ParamName) -> bool:
        with self._lock:
            return name in self._values

    def snapshot(self) -> dict[ParamName, Any]:
        """Shallow copy of all current values."""
        with self._lock:
            return dict(self._values)

    def set(self, name: ParamName, value: Any) -> None:
        """Set one value; notifies subscribers if it differs from the current one."""
        self.update({name: value})

    def update(self, values: Mapping[ParamName, Any]) -> None:
        """Set several values at once with a single notification."""
        with self._lock:
            changed = False
            for name, value in values.items():
                if name not in self._values or not values_equal(self._values[name], value):
                    self._values[name] = value
                    changed = True
            if not changed:
                return
            self._enqueue(self._subscribers)
        self._deliver()

    def replace(self, values: Mapping[ParamName, Any]) -> None:
        """Replace the whole value map (names absent from ``values`` are removed)."""
        with self._lock:
            if self._values.keys() == values.keys() and all(
                values_equal(self._values[k], v) for k, v in values.items()
            ):
                return
            self._values = dict(values)
            self._enqueue(self._subscribers)
        self._deliver()

    def delete(self, name: ParamName) -> None:
        with self._lock:
            if name not in self._values:
                return
            del self._values[name]
            self._enqueue(self._subscribers)
        self._deliver()

    def subscribe(self, callback: InputCallback) -> Callable[[], None]:
        """Register ``callback`` and return a function that unregisters it.

        The callback receives the current snapshot first, so a subscriber
        always starts from a known state.  That first snapshot is queued
        like any other, so it never arrives after a later write's.

        """
        with self._lock:
            self._subscribers.append(callback)
            self._enqueue([callback])

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        self._deliver()
        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    # -------------------------------------------------------------------------
    # Delivery
    # -------------------------------------------------------------------------

    def _enqueue(self, subscribers: list[InputCallback]) -> None:
        # Caller holds self._lock
        if subscribers:
            self._pending.append((list(subscribers), dict(self._values)))

    def _deliver(self) -> None:
        """Drain queued snapshots in order, unless another call is already draining."""
        with self._lock:
            if self._delivering:
                return
            self._delivering = True
        try:
            while True:
                with self._lock:
                    if not self._pending:
                        self._delivering = False
                        return
                    subscribers, snapshot = self._pending.popleft()
                for callback in subscribers:
                    callback(dict(snapshot))
        except BaseException:
            with self._lock:
                self._delivering = False
            raise
