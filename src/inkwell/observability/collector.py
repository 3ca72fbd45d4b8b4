"""Event collector — the reactive session's single recording point.

The session never builds events itself; it calls one ``record_*`` method
per occurrence and the collector stamps and stores the event.  Tests swap
in a collector over a private ``EventLog`` to assert on what happened.

Thread Safety:
    The collector delegates to ``EventLog`` which is internally locked.
    Safe for use from the event loop and from store callbacks on other threads.

"""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal

from inkwell.observability.events import (
    BlockExecuted,
    BlocksAffected,
    CleanupFailed,
    DependenciesAnalyzed,
    InputsDiffed,
    InterpolationMissing,
    ReactiveRunFailed,
    RunDiscarded,
    ValidationIssue,
    now_ns,
)
from inkwell.observability.log import EventLog

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping


class EventCollector:
    """Records report events into an ``EventLog``.

    Args:
        log: The EventLog to store events in.  A private log is created
            when omitted.

    """

    __slots__ = ("_log",)

    def __init__(self, log: EventLog | None = None) -> None:
        self._log = log if log is not None else EventLog()

    @property
    def log(self) -> EventLog:
        """The underlying event log."""
        return self._log

    # ----- Analysis events -----

    def record_analysis(
        self,
        document_id: str,
        *,
        block_count: int = 0,
        edge_count: int = 0,
        cycles: Iterable[Iterable[str]] = (),
        missing: Iterable[str] = (),
    ) -> None:
        """Record a dependency analysis."""
        self._log.append(
            DependenciesAnalyzed(
                document_id=document_id,
                block_count=block_count,
                edge_count=edge_count,
                cycles=tuple(tuple(c) for c in cycles),
                missing=tuple(missing),
                timestamp_ns=now_ns(),
            )
        )

    def record_validation_issue(self, document_id: str, block_id: str, message: str) -> None:
        """Record a block that violates a reference rule."""
        self._log.append(
            ValidationIssue(
                document_id=document_id,
                block_id=block_id,
                message=message,
                timestamp_ns=now_ns(),
            )
        )

    # ----- Reactive events -----

    def record_diff(
        self,
        document_id: str,
        *,
        generation: int = 0,
        changed: Iterable[str] = (),
        added: Iterable[str] = (),
        removed: Iterable[str] = (),
    ) -> None:
        """Record an input snapshot diff."""
        self._log.append(
            InputsDiffed(
                document_id=document_id,
                generation=generation,
                changed=tuple(changed),
                added=tuple(added),
                removed=tuple(removed),
                timestamp_ns=now_ns(),
            )
        )

    def record_affected(
        self,
        document_id: str,
        *,
        generation: int = 0,
        direct: Iterable[str] = (),
        transitive: Iterable[str] = (),
        provenance: Mapping[str, Iterable[str]] | None = None,
    ) -> None:
        """Record the blocks selected for re-execution."""
        pairs = tuple((block_id, tuple(names)) for block_id, names in (provenance or {}).items())
        self._log.append(
            BlocksAffected(
                document_id=document_id,
                generation=generation,
                direct=tuple(direct),
                transitive=tuple(transitive),
                provenance=pairs,
                timestamp_ns=now_ns(),
            )
        )

    def record_block_executed(
        self,
        document_id: str,
        block_id: str,
        *,
        table_name: str = "",
        success: bool = True,
        error: str | None = None,
        reason: Literal["full", "reactive"] = "reactive",
        duration_ms: float = 0.0,
    ) -> None:
        """Record a single block execution."""
        self._log.append(
            BlockExecuted(
                document_id=document_id,
                block_id=block_id,
                table_name=table_name,
                success=success,
                error=error,
                reason=reason,
                duration_ms=duration_ms,
                timestamp_ns=now_ns(),
            )
        )

    def record_interpolation_missing(
        self, document_id: str, block_id: str, missing: Iterable[str]
    ) -> None:
        """Record template variables that had no value."""
        self._log.append(
            InterpolationMissing(
                document_id=document_id,
                block_id=block_id,
                missing=tuple(missing),
                timestamp_ns=now_ns(),
            )
        )

    def record_cleanup_failed(self, document_id: str, table_name: str, error: str) -> None:
        """Record a stale table that could not be dropped."""
        self._log.append(
            CleanupFailed(
                document_id=document_id,
                table_name=table_name,
                error=error,
                timestamp_ns=now_ns(),
            )
        )

    def record_run_discarded(
        self,
        document_id: str,
        *,
        generation: int,
        latest_generation: int,
        pending_blocks: Iterable[str] = (),
    ) -> None:
        """Record a reactive run superseded by a newer input change."""
        self._log.append(
            RunDiscarded(
                document_id=document_id,
                generation=generation,
                latest_generation=latest_generation,
                pending_blocks=tuple(pending_blocks),
                timestamp_ns=now_ns(),
            )
        )

    def record_run_failed(
        self,
        document_id: str,
        *,
        generation: int,
        error: str,
        applied_blocks: Iterable[str] = (),
    ) -> None:
        """Record a reactive run that raised."""
        self._log.append(
            ReactiveRunFailed(
                document_id=document_id,
                generation=generation,
                error=error,
                applied_blocks=tuple(applied_blocks),
                timestamp_ns=now_ns(),
            )
        )
