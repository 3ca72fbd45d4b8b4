"""Reactive run profiler — where the time of an input change goes.

A reactive run has five stages: ``diff`` (compare snapshots), ``resolve``
(find affected blocks), ``invalidate`` (drop stale tables), ``execute``
(re-run blocks) and ``propagate`` (refresh charts).  The session wraps each
in ``profiler.stage(name)``; a run that completes calls ``finish()``, which
appends a ``PipelineProfile`` to the event log.  Runs that stop early (no
changes, discarded, failed) never call ``finish()`` and leave no profile.

Thread Safety:
    One profiler per session, used only inside the session's serialized
    run.  ``compute_aggregate_stats`` reads through the locked ``EventLog``.
"""

from __future__ import annotations

import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from inkwell.observability.events import PipelineProfile, now_ns

if TYPE_CHECKING:
    from inkwell.observability.log import EventLog

STAGES = ("diff", "resolve", "invalidate", "execute", "propagate")


class PipelineProfiler:
    """Accumulates per-stage wall time for the current reactive run.

    Usage::

        profiler = PipelineProfiler(event_log)
        profiler.begin("quarterly", generation=7)
        with profiler.stage("diff"):
            changes = compare_snapshots(new, old)
        ...
        profiler.finish(blocks_updated=2)

    A stage entered twice in one run accumulates.  Names outside ``STAGES``
    raise ``KeyError`` so a typo cannot silently drop timing.

    Args:
        log: Receives the ``PipelineProfile`` events.
        verbose: Also print a one-line summary per run to stderr.

    """

    __slots__ = ("_document_id", "_generation", "_log", "_started", "_totals", "_verbose")

    def __init__(self, log: EventLog, *, verbose: bool = False) -> None:
        self._log = log
        self._verbose = verbose
        self._document_id = ""
        self._generation = 0
        self._started: float | None = None
        self._totals = dict.fromkeys(STAGES, 0.0)

    @property
    def running(self) -> bool:
        """Whether ``begin()`` was called without a matching ``finish()``."""
        return self._started is not None

    def begin(self, document_id: str, *, generation: int = 0) -> None:
        """Reset all stage totals and start the run clock."""
        self._document_id = document_id
        self._generation = generation
        self._totals = dict.fromkeys(STAGES, 0.0)
        self._started = time.perf_counter()

    @contextmanager
    def stage(self, name: str) -> Iterator[None]:
        """Time the enclosed block as part of stage ``name``."""
        if name not in self._totals:
            raise KeyError(f"unknown pipeline stage {name!r}")
        t0 = time.perf_counter()
        try:
            yield
        finally:
            self._totals[name] += (time.perf_counter() - t0) * 1000

    def elapsed(self, name: str) -> float:
        """Milliseconds recorded so far for stage ``name``."""
        return self._totals[name]

    def finish(self, *, blocks_updated: int = 0) -> PipelineProfile:
        """Close the run and record its ``PipelineProfile``."""
        started = self._started
        total_ms = (time.perf_counter() - started) * 1000 if started is not None else 0.0
        self._started = None

        profile = PipelineProfile(
            document_id=self._document_id,
            generation=self._generation,
            blocks_updated=blocks_updated,
            diff_ms=self._totals["diff"],
            resolve_ms=self._totals["resolve"],
            invalidate_ms=self._totals["invalidate"],
            execute_ms=self._totals["execute"],
            propagate_ms=self._totals["propagate"],
            total_ms=total_ms,
            timestamp_ns=now_ns(),
        )
        self._log.append(profile)
        if self._verbose:
            print(_summary(profile), file=sys.stderr)
        return profile


def _summary(p: PipelineProfile) -> str:
    noun = "block" if p.blocks_updated == 1 else "blocks"
    slowest = max(STAGES, key=lambda name: getattr(p, f"{name}_ms"))
    return (
        f"  [{p.total_ms:.0f}ms] {p.document_id}#{p.generation}: "
        f"{p.blocks_updated} {noun} re-executed "
        f"(slowest: {slowest} {getattr(p, f'{slowest}_ms'):.0f}ms)"
    )


def _percentile(ordered: list[float], pct: int) -> float:
    index = min(len(ordered) - 1, len(ordered) * pct // 100)
    return ordered[index]


def compute_aggregate_stats(
    log: EventLog, *, document_id: str | None = None, limit: int = 100
) -> dict[str, Any]:
    """Latency percentiles and per-stage means over recent reactive runs.

    Returns ``{"count": 0}`` when no run has been profiled.
    """
    profiles = [
        p
        for p in log.query(event_type=PipelineProfile, document_id=document_id, limit=limit)
        if isinstance(p, PipelineProfile)
    ]
    if not profiles:
        return {"count": 0}

    count = len(profiles)
    totals = sorted(p.total_ms for p in profiles)
    return {
        "count": count,
        "total_ms": {
            "p50": round(_percentile(totals, 50), 1),
            "p95": round(_percentile(totals, 95), 1),
            "p99": round(_percentile(totals, 99), 1),
            "min": round(totals[0], 1),
            "max": round(totals[-1], 1),
        },
        "avg_by_stage_ms": {
            name: round(sum(getattr(p, f"{name}_ms") for p in profiles) / count, 1)
            for name in STAGES
        },
        "avg_blocks_updated": round(sum(p.blocks_updated for p in profiles) / count, 1),
    }
