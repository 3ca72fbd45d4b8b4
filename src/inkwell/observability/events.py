"""Event model for report observability.

Defines the structured events emitted while analyzing and (re-)executing a
report.  Pure analysis functions never emit anything; the report session
records these through an injected ``EventCollector``.

All events are frozen dataclasses with:
- ``document_id``: The report the event belongs to
- ``timestamp_ns``: Monotonic nanosecond timestamp
- Descriptive fields for the specific event type

Thread Safety:
    All events are frozen (immutable) and safe to share across threads.

"""

import time
from dataclasses import dataclass
from typing import Literal


# ---------------------------------------------------------------------------
# Analysis events
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class DependenciesAnalyzed:
    """A report's block dependency graph was analyzed.

    Attributes:
        document_id: Report identifier.
        block_count: Number of SQL blocks in the graph.
        edge_count: Number of dependency edges.
        cycles: Cycles found (closed paths); empty if acyclic.
        missing: Unresolved ``${name}`` references as ``block_id:name``.
        timestamp_ns: Monotonic nanosecond timestamp.

    """

    document_id: str
    block_count: int
    edge_count: int
    cycles: tuple[tuple[str, ...], ...]
    missing: tuple[str, ...]
    timestamp_ns: int


@dataclass(frozen=True, slots=True)
class ValidationIssue:
    """A block violates a reference rule (e.g., it references itself).

    Attributes:
        document_id: Report identifier.
        block_id: The offending block.
        message: Human-readable description.
        timestamp_ns: Monotonic nanosecond timestamp.

    """

    document_id: str
    block_id: str
    message: str
    timestamp_ns: int


# ---------------------------------------------------------------------------
# Reactive events
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class InputsDiffed:
    """Two input snapshots were compared.

    Attributes:
        document_id: Report identifier.
        generation: Reactive generation that triggered the diff.
        changed: Names whose value changed.
        added: Names that appeared.
        removed: Names that disappeared.
        timestamp_ns: Monotonic nanosecond timestamp.

    """

    document_id: str
    generation: int
    changed: tuple[str, ...]
    added: tuple[str, ...]
    removed: tuple[str, ...]
    timestamp_ns: int


@dataclass(frozen=True, slots=True)
class BlocksAffected:
    """Blocks were selected for re-execution.

    Attributes:
        document_id: Report identifier.
        generation: Reactive generation.
        direct: Blocks that read a changed input.
        transitive: Blocks stale only through another block's result.
        provenance: ``(block_id, input names)`` pairs for the direct blocks.
        timestamp_ns: Monotonic nanosecond timestamp.

    """

    document_id: str
    generation: int
    direct: tuple[str, ...]
    transitive: tuple[str, ...]
    provenance: tuple[tuple[str, tuple[str, ...]], ...]
    timestamp_ns: int


@dataclass(frozen=True, slots=True)
class BlockExecuted:
    """A single block was executed.

    Attributes:
        document_id: Report identifier.
        block_id: The executed block.
        table_name: Physical table holding the result ("" on failure).
        success: Whether the executor reported success.
        error: Executor error message, if any.
        reason: Full run or reactive re-execution.
        duration_ms: Executor time in milliseconds.
        timestamp_ns: Monotonic nanosecond timestamp.

    """

    document_id: str
    block_id: str
    table_name: str
    success: bool
    error: str | None
    reason: Literal["full", "reactive"]
    duration_ms: float
    timestamp_ns: int


@dataclass(frozen=True, slots=True)
class InterpolationMissing:
    """Template variables had no value and were substituted with NULL or left unresolved.

    Attributes:
        document_id: Report identifier.
        block_id: Block whose SQL was interpolated.
        missing: Qualified variable names (``inputs.region``, ``sales``).
        timestamp_ns: Monotonic nanosecond timestamp.

    """

    document_id: str
    block_id: str
    missing: tuple[str, ...]
    timestamp_ns: int


@dataclass(frozen=True, slots=True)
class CleanupFailed:
    """Dropping a stale result table failed (non-fatal).

    Attributes:
        document_id: Report identifier.
        table_name: Table that could not be dropped.
        error: Error message.
        timestamp_ns: Monotonic nanosecond timestamp.

    """

    document_id: str
    table_name: str
    error: str
    timestamp_ns: int


@dataclass(frozen=True, slots=True)
class RunDiscarded:
    """A reactive run was superseded by a newer input change.

    Attributes:
        document_id: Report identifier.
        generation: The discarded run's generation.
        latest_generation: The generation that superseded it.
        pending_blocks: Blocks marked for re-execution by the next run.
        timestamp_ns: Monotonic nanosecond timestamp.

    """

    document_id: str
    generation: int
    latest_generation: int
    pending_blocks: tuple[str, ...]
    timestamp_ns: int


@dataclass(frozen=True, slots=True)
class ReactiveRunFailed:
    """A reactive run raised; the session returned to steady state.

    Attributes:
        document_id: Report identifier.
        generation: Generation of the failed run.
        error: ``ExceptionType: message``.
        applied_blocks: Blocks whose new results were applied before the failure.
        timestamp_ns: Monotonic nanosecond timestamp.

    """

    document_id: str
    generation: int
    error: str
    applied_blocks: tuple[str, ...]
    timestamp_ns: int


@dataclass(frozen=True, slots=True)
class PipelineProfile:
    """Per-stage timing of one reactive run.

    Attributes:
        document_id: Report identifier.
        generation: Generation of the run.
        blocks_updated: Number of blocks re-executed.
        diff_ms: Snapshot diff time.
        resolve_ms: Affected-set resolution time.
        invalidate_ms: Stale table cleanup time.
        execute_ms: Block re-execution time.
        propagate_ms: Artifact refresh time.
        total_ms: End-to-end time.
        timestamp_ns: Monotonic nanosecond timestamp.

    """

    document_id: str
    generation: int
    blocks_updated: int
    diff_ms: float
    resolve_ms: float
    invalidate_ms: float
    execute_ms: float
    propagate_ms: float
    total_ms: float
    timestamp_ns: int


# ---------------------------------------------------------------------------
# Union type
# ---------------------------------------------------------------------------

type ReportEvent = (
    DependenciesAnalyzed
    | ValidationIssue
    | InputsDiffed
    | BlocksAffected
    | BlockExecuted
    | InterpolationMissing
    | CleanupFailed
    | RunDiscarded
    | ReactiveRunFailed
    | PipelineProfile
)


def now_ns() -> int:
    """Return the current monotonic clock value in nanoseconds."""
    return time.monotonic_ns()
