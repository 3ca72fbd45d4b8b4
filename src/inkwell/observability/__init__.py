"""Report observability — structured events for analysis and reactive runs.

Records:
- **Analysis**: dependency graph shape, cycles, unresolved references,
  self-referencing blocks
- **Reactive runs**: input diffs, affected blocks, per-block execution,
  cleanup failures, superseded and failed runs, per-stage timing

All events are frozen dataclasses with nanosecond timestamps, safe to share
across threads.  Pure analysis functions never record anything; the
``ReportSession`` records through an injected ``EventCollector``.

Quick Start:
    >>> from inkwell.observability import EventCollector, EventLog
    >>> log = EventLog()
    >>> collector = EventCollector(log)
    >>> # ReportSession(..., collector=collector)
    >>> # log.query(event_type=BlockExecuted)

"""

from inkwell.observability.collector import EventCollector
from inkwell.observability.events import (
    BlockExecuted,
    BlocksAffected,
    CleanupFailed,
    DependenciesAnalyzed,
    InputsDiffed,
    InterpolationMissing,
    PipelineProfile,
    ReactiveRunFailed,
    ReportEvent,
    RunDiscarded,
    ValidationIssue,
    now_ns,
)
from inkwell.observability.log import EventLog
from inkwell.observability.profiler import PipelineProfiler, compute_aggregate_stats

__all__ = [
    "BlockExecuted",
    "BlocksAffected",
    "CleanupFailed",
    "DependenciesAnalyzed",
    "EventCollector",
    "EventLog",
    "InputsDiffed",
    "InterpolationMissing",
    "PipelineProfile",
    "PipelineProfiler",
    "ReactiveRunFailed",
    "ReportEvent",
    "RunDiscarded",
    "ValidationIssue",
    "compute_aggregate_stats",
    "now_ns",
]
