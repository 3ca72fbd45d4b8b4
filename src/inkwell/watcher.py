"""Inputs file watcher — feeds an InputStore from a file on disk.

``inkwell watch`` edits a report's inputs in a YAML/TOML file instead of
UI controls.  The watcher runs watchfiles in a background thread, reloads
the file on every change and replaces the store's values, which in turn
drives the attached ``ReportSession``.

An unreadable or malformed file is reported to stderr and skipped; the
store keeps its previous values until the file is valid again.
"""

from __future__ import annotations

import sys
import threading
from pathlib import Path
from typing import TYPE_CHECKING

from inkwell._errors import ConfigError
from inkwell.config_loader import load_inputs

if TYPE_CHECKING:
    from inkwell.inputs.store import InputStore


class InputsWatcher:
    """Reloads an inputs file into a store whenever the file changes.

    Args:
        path: The inputs file.
        store: Receives the reloaded values via ``InputStore.replace``.
        debounce: watchfiles debounce window in milliseconds.

    """

    def __init__(self, path: Path, store: InputStore, *, debounce: int = 300) -> None:
        self._path = path.resolve()
        self._store = store
        self._debounce = debounce
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self.reloads = 0

    @property
    def is_running(self) -> bool:
        """Whether the watcher background thread is active."""
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start watching in a background thread."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._watch_loop,
            name="inkwell-inputs-watcher",
            daemon=True,
        )
        self._thread.start()

    def stop(self) -> None:
        """Signal the watcher to stop and wait for the thread to finish."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=5.0)
            self._thread = None

    def reload(self) -> bool:
        """Read the file and push its values into the store.

        Returns False (after printing a warning) when the file is unusable.
        """
        try:
            values = load_inputs(self._path)
        except ConfigError as exc:
            print(f"  Inputs not reloaded: {exc}", file=sys.stderr)
            return False
        self._store.replace(values)
        self.reloads += 1
        return True

    def _watch_loop(self) -> None:
        """Background thread: run watchfiles and reload on changes to the file."""
        from watchfiles import watch

        for raw_changes in watch(
            self._path.parent,
            stop_event=self._stop_event,
            debounce=self._debounce,
            step=100,
        ):
            if any(_same_file(path_str, self._path) for _, path_str in raw_changes):
                self.reload()


def _same_file(path_str: str, target: Path) -> bool:
    return Path(path_str).resolve() == target
