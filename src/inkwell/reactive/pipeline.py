"""Report session — the per-document reactive control loop.

Lifecycle of a session::

    uninitialized -> awaiting_baseline -> steady <-> re_executing
                                    (any) -> closed

A session is created ``awaiting_baseline``.  Input changes that arrive
before the first manual ``execute()`` only record the snapshot; reports
seed their inputs with default values and nothing should run for that.

Once the baseline exists, each input change runs the reactive step:

    1. Diff the new snapshot against the previous one
    2. Resolve blocks that read a changed input, plus their transitive
       dependents (and blocks left dirty by a discarded run)
    3. Invalidate: drop the result tables of exactly those blocks
    4. Re-execute them in dependency order of the affected subgraph
    5. Propagate: refresh derived artifacts (charts) reading from them
    6. Record the snapshot as the new baseline for diffing
    7. Notify the observer with the updated document state

Concurrency:
    Reactive runs are serialized by an ``asyncio.Lock``.  Every input change
    bumps ``generation``; a run checks it before applying each block result
    and stops as soon as a newer change is pending.  The discarded run's
    blocks are marked dirty so the run that superseded it re-executes them
    even if its own diff would not select them.

Errors:
    Only ``execute()`` raises to its caller.  A reactive run that fails is
    printed to stderr, recorded as ``ReactiveRunFailed`` and the session
    returns to ``steady``; block results already applied stay applied.
"""

from __future__ import annotations

import asyncio
import sys
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Literal

from inkwell._errors import ExecutionError, ReactiveError, ValidationError
from inkwell.document.blocks import sql_blocks
from inkwell.document.parser import parse_report
from inkwell.document.references import extract_input_references
from inkwell.execution.executor import BlockError, register_table, run_block
from inkwell.inputs.differ import compare_snapshots
from inkwell.observability.collector import EventCollector
from inkwell.observability.log import EventLog
from inkwell.observability.profiler import PipelineProfiler
from inkwell.reactive.graph import analyze_dependencies, order_blocks, subgraph, topo_sort
from inkwell.reactive.resolver import affected_artifacts, expand_affected, find_affected
from inkwell.sql.template import TemplateContext

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping, Sequence

    from inkwell._types import SessionState
    from inkwell.config import InkwellConfig
    from inkwell.document.blocks import Block
    from inkwell.execution.executor import BlockResult, QueryExecutor
    from inkwell.inputs.store import InputStore
    from inkwell.reactive.graph import DependencyAnalysis, DependencyGraph


_TRANSITIONS: dict[str, frozenset[str]] = {
    "uninitialized": frozenset({"awaiting_baseline", "closed"}),
    "awaiting_baseline": frozenset({"steady", "closed"}),
    "steady": frozenset({"steady", "re_executing", "closed"}),
    "re_executing": frozenset({"steady", "closed"}),
    "closed": frozenset(),
}


@dataclass(frozen=True, slots=True)
class ArtifactBinding:
    """Default artifact: which table a chart-like block reads from."""

    block_id: str
    data_source: str
    table_name: str | None


@dataclass(frozen=True, slots=True)
class RunResult:
    """What a full or reactive run did.

    Attributes:
        document_id: The report.
        generation: Generation the run belonged to.
        reason: ``full`` for ``execute()``, ``reactive`` for input changes.
        executed: Block ids whose results were applied, in execution order.
        errors: Blocks whose execution failed.
        artifacts: Artifact block ids that were refreshed.
        issues: Validation messages (self-references, cycles).
        discarded: The run was superseded and stopped early.
        error: ``ExceptionType: message`` when a reactive run raised.

    """

    document_id: str
    generation: int
    reason: Literal["full", "reactive"]
    executed: tuple[str, ...] = ()
    errors: tuple[BlockError, ...] = ()
    artifacts: tuple[str, ...] = ()
    issues: tuple[str, ...] = ()
    discarded: bool = False
    error: str | None = None

    @property
    def success(self) -> bool:
        return not self.errors and not self.discarded and self.error is None


@dataclass(frozen=True, slots=True)
class DocumentState:
    """Snapshot of a session handed to the observer after each run."""

    document_id: str
    generation: int
    blocks: tuple[Block, ...]
    inputs: dict[str, Any]
    table_mapping: dict[str, str]
    results: dict[str, BlockResult]
    artifacts: dict[str, Any]
    updated: tuple[str, ...] = field(default=())


class ReportSession:
    """Owns the execution state of one report document.

    Args:
        document_id: Identifier used in events and observer snapshots.
        executor: Runs rendered SQL and materializes result tables.
        config: Parser languages, verbosity and event log size.
        collector: Event sink.  A private collector is created if omitted.
        observer: Called with a ``DocumentState`` after every applied run.
        artifact_builder: Called as ``builder(block, table_name)`` for each
            artifact that needs refreshing; its return value is stored as
            the artifact.  ``ArtifactBinding`` is stored when omitted.

    """

    def __init__(
        self,
        document_id: str,
        executor: QueryExecutor,
        *,
        config: InkwellConfig | None = None,
        collector: EventCollector | None = None,
        observer: Callable[[DocumentState], Any] | None = None,
        artifact_builder: Callable[[Block, str | None], Any] | None = None,
    ) -> None:
        self._document_id = document_id
        self._executor = executor
        self._config = config
        self._observer = observer
        self._artifact_builder = artifact_builder
        if collector is None:
            max_events = config.max_events if config is not None else 10_000
            collector = EventCollector(EventLog(max_events))
        self._collector = collector
        self._profiler = PipelineProfiler(
            collector.log, verbose=config.verbose if config is not None else False
        )

        self._state: SessionState = "uninitialized"
        self._lock = asyncio.Lock()
        self._generation = 0

        self._blocks: tuple[Block, ...] = ()
        self._metadata: dict[str, Any] = {}
        self._analysis: DependencyAnalysis | None = None
        self._table_mapping: dict[str, str] = {}
        self._previous_inputs: dict[str, Any] = {}
        self._baseline_established = False
        self._dirty: set[str] = set()
        self._results: dict[str, BlockResult] = {}
        self._artifacts: dict[str, Any] = {}

        self._unsubscribe: Callable[[], None] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._tasks: set[asyncio.Task[Any]] = set()

        self._transition("awaiting_baseline")

    # ----- Read-only state -----

    @property
    def document_id(self) -> str:
        return self._document_id

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def baseline_established(self) -> bool:
        return self._baseline_established

    @property
    def blocks(self) -> tuple[Block, ...]:
        return self._blocks

    @property
    def metadata(self) -> dict[str, Any]:
        return dict(self._metadata)

    @property
    def analysis(self) -> DependencyAnalysis | None:
        return self._analysis

    @property
    def table_mapping(self) -> dict[str, str]:
        return dict(self._table_mapping)

    @property
    def previous_inputs(self) -> dict[str, Any]:
        return dict(self._previous_inputs)

    @property
    def dirty(self) -> frozenset[str]:
        return frozenset(self._dirty)

    @property
    def results(self) -> dict[str, BlockResult]:
        return dict(self._results)

    @property
    def artifacts(self) -> dict[str, Any]:
        return dict(self._artifacts)

    @property
    def collector(self) -> EventCollector:
        return self._collector

    # ----- Full run -----

    async def execute(
        self,
        source: str | Sequence[Block],
        inputs: Mapping[str, Any] | None = None,
        *,
        metadata: Mapping[str, Any] | None = None,
    ) -> RunResult:
        """Run the whole report and establish the reactive baseline.

        Args:
            source: Markdown report text, or already-parsed blocks.
            inputs: Input values for the run.  Defaults to the last snapshot
                the session has seen.
            metadata: Report metadata when ``source`` is blocks; front matter
                supplies it when ``source`` is text.

        Raises:
            ParseError: The report text could not be parsed.
            ValidationError: Two blocks share an id.
            ExecutionError: The executor raised.
            ReactiveError: The session is closed.

        """
        if self._state == "closed":
            raise ReactiveError(f"session {self._document_id!r} is closed")

        # A manual run supersedes any reactive run still in flight.
        self._generation += 1
        generation = self._generation

        async with self._lock:
            if self._state == "closed":
                raise ReactiveError(f"session {self._document_id!r} is closed")

            blocks, report_metadata = self._load(source, metadata)
            analysis = analyze_dependencies(blocks)
            issues = self._record_analysis(analysis)

            snapshot = dict(inputs) if inputs is not None else dict(self._previous_inputs)
            ordered = order_blocks(sql_blocks(blocks), analysis.execution_order)
            context = TemplateContext(inputs=snapshot, metadata=report_metadata)

            try:
                report = await self._executor.execute(ordered, context)
            except Exception as exc:
                raise ExecutionError(
                    f"executing report {self._document_id!r} failed: {exc}"
                ) from exc

            self._blocks = blocks
            self._metadata = report_metadata
            self._analysis = analysis
            self._table_mapping = dict(report.table_mapping)
            self._results = {}
            self._dirty.clear()

            executed: list[str] = []
            for block_id, result in report.results.items():
                self._apply_result(block_id, result, reason="full", update_mapping=False)
                if result.success:
                    executed.append(block_id)
                else:
                    print(f"  Block {block_id} failed: {result.error}", file=sys.stderr)

            self._artifacts = {}
            artifacts = self._refresh_artifacts(
                [b for b in blocks if not b.is_sql and b.data_source is not None]
            )

            self._previous_inputs = snapshot
            self._baseline_established = True
            self._transition("steady")

            self._notify(generation, tuple(executed))

            return RunResult(
                document_id=self._document_id,
                generation=generation,
                reason="full",
                executed=tuple(executed),
                errors=report.errors,
                artifacts=tuple(artifacts),
                issues=tuple(issues),
            )

    # ----- Reactive run -----

    async def on_inputs_changed(self, snapshot: Mapping[str, Any]) -> RunResult | None:
        """React to a new input snapshot.

        Returns None when nothing ran (before the baseline, no changes, no
        affected blocks, or superseded before starting).

        """
        if self._state == "closed":
            return None

        snapshot = dict(snapshot)
        self._generation += 1
        generation = self._generation

        async with self._lock:
            if self._state == "closed":
                return None

            if not self._baseline_established:
                self._previous_inputs = snapshot
                return None

            if generation != self._generation:
                # A newer snapshot is queued; it diffs against the same baseline.
                return None

            return await self._run(snapshot, generation)

    async def _run(self, snapshot: dict[str, Any], generation: int) -> RunResult | None:
        profiler = self._profiler
        profiler.begin(self._document_id, generation=generation)
        self._transition("re_executing")

        affected_ids: list[str] = []
        applied: list[str] = []
        errors: list[BlockError] = []

        try:
            with profiler.stage("diff"):
                changes = compare_snapshots(snapshot, self._previous_inputs)
            if not changes.has_changes and not self._dirty:
                return None

            self._collector.record_diff(
                self._document_id,
                generation=generation,
                changed=changes.changed,
                added=changes.added,
                removed=changes.removed,
            )

            with profiler.stage("resolve"):
                graph = self._graph()
                direct = find_affected(self._blocks, changes.names)
                seeds = [*direct.block_ids, *(i for i in self._dirty if i in graph)]
                affected_ids = expand_affected(graph, seeds)
            if not affected_ids:
                return None

            direct_ids = set(direct.block_ids)
            self._collector.record_affected(
                self._document_id,
                generation=generation,
                direct=direct.block_ids,
                transitive=[i for i in affected_ids if i not in direct_ids],
                provenance=direct.provenance,
            )

            with profiler.stage("invalidate"):
                await self._invalidate(affected_ids)

            with profiler.stage("execute"):
                order = topo_sort(subgraph(graph, affected_ids)) or affected_ids
                context = TemplateContext(inputs=snapshot, metadata=self._metadata)
                by_id = {b.id: b for b in self._blocks}

                for block_id in order:
                    if generation != self._generation:
                        return self._discard(generation, affected_ids, applied)
                    result = await run_block(self._executor, by_id[block_id], self._table_mapping, context)
                    if generation != self._generation:
                        return self._discard(generation, affected_ids, applied)
                    self._apply_result(block_id, result, reason="reactive")
                    applied.append(block_id)
                    if not result.success:
                        errors.append(BlockError(block_id=block_id, message=result.error or "unknown error"))
                        print(f"  Block {block_id} failed: {result.error}", file=sys.stderr)

            with profiler.stage("propagate"):
                artifacts = self._refresh_artifacts(
                    affected_artifacts(self._blocks, applied, self._table_mapping)
                )

            self._previous_inputs = snapshot
            self._dirty.difference_update(affected_ids)
            profiler.finish(blocks_updated=len(applied))

            self._notify(generation, tuple(applied))

            return RunResult(
                document_id=self._document_id,
                generation=generation,
                reason="reactive",
                executed=tuple(applied),
                errors=tuple(errors),
                artifacts=tuple(artifacts),
            )
        except Exception as exc:
            message = f"{type(exc).__name__}: {exc}"
            print(f"  Reactive run failed ({self._document_id}): {message}", file=sys.stderr)
            self._dirty.update(i for i in affected_ids if i not in applied)
            self._collector.record_run_failed(
                self._document_id,
                generation=generation,
                error=message,
                applied_blocks=applied,
            )
            return RunResult(
                document_id=self._document_id,
                generation=generation,
                reason="reactive",
                executed=tuple(applied),
                errors=tuple(errors),
                error=message,
            )
        finally:
            if self._state == "re_executing":
                self._transition("steady")

    def _discard(self, generation: int, affected_ids: list[str], applied: list[str]) -> RunResult:
        """Stop a superseded run and leave its blocks for the next one."""
        self._dirty.update(affected_ids)
        self._collector.record_run_discarded(
            self._document_id,
            generation=generation,
            latest_generation=self._generation,
            pending_blocks=sorted(self._dirty),
        )
        return RunResult(
            document_id=self._document_id,
            generation=generation,
            reason="reactive",
            executed=tuple(applied),
            discarded=True,
        )

    async def _invalidate(self, block_ids: Iterable[str]) -> None:
        """Drop the result tables of ``block_ids``.  Failures are warnings."""
        for block_id in block_ids:
            table = self._table_mapping.get(block_id)
            if table is None:
                continue
            try:
                await self._executor.drop_table(table)
            except Exception as exc:
                print(f"  Could not drop {table}: {exc}", file=sys.stderr)
                self._collector.record_cleanup_failed(self._document_id, table, str(exc))

    # ----- Input store wiring -----

    def attach(self, store: InputStore) -> None:
        """Subscribe to ``store``; every change schedules a reactive step.

        Must be called from a running event loop.  The store may notify from
        any thread.
        """
        if self._state == "closed":
            raise ReactiveError(f"session {self._document_id!r} is closed")
        if self._unsubscribe is not None:
            raise ReactiveError(f"session {self._document_id!r} is already attached")
        self._loop = asyncio.get_running_loop()
        self._unsubscribe = store.subscribe(self._on_store_change)

    def _on_store_change(self, snapshot: dict[str, Any]) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self._spawn(snapshot)
        else:
            loop.call_soon_threadsafe(self._spawn, snapshot)

    def _spawn(self, snapshot: dict[str, Any]) -> None:
        task = asyncio.get_running_loop().create_task(self.on_inputs_changed(snapshot))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for every scheduled reactive step to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def close(self) -> None:
        """Detach from the input store and stop reacting.  Idempotent."""
        if self._state == "closed":
            return
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._generation += 1
        for task in list(self._tasks):
            task.cancel()
        self._transition("closed")

    # ----- Internals -----

    def _transition(self, target: SessionState) -> None:
        if target not in _TRANSITIONS[self._state]:
            raise ReactiveError(f"invalid session transition {self._state} -> {target}")
        self._state = target

    def _load(
        self,
        source: str | Sequence[Block],
        metadata: Mapping[str, Any] | None,
    ) -> tuple[tuple[Block, ...], dict[str, Any]]:
        if isinstance(source, str):
            report = parse_report(source, self._config)
            blocks, report_metadata = report.blocks, dict(report.metadata)
        else:
            blocks, report_metadata = tuple(source), {}
        if metadata is not None:
            report_metadata.update(metadata)

        seen: set[str] = set()
        for block in blocks:
            if block.id in seen:
                raise ValidationError(f"duplicate block id {block.id!r}")
            seen.add(block.id)
        return blocks, report_metadata

    def _graph(self) -> DependencyGraph:
        if self._analysis is None:
            return {}
        return self._analysis.graph

    def _record_analysis(self, analysis: DependencyAnalysis) -> list[str]:
        graph = analysis.graph
        self._collector.record_analysis(
            self._document_id,
            block_count=len(graph),
            edge_count=sum(len(node.dependencies) for node in graph.values()),
            cycles=analysis.cycles or (),
            missing=[
                f"{entry.block_id}:{name}"
                for entry in analysis.missing_dependencies
                for name in entry.missing
            ],
        )

        issues: list[str] = []
        for block_id in analysis.self_references:
            message = f"block {block_id} references itself"
            issues.append(message)
            self._collector.record_validation_issue(self._document_id, block_id, message)
        for cycle in analysis.cycles or ():
            issues.append(f"circular dependency: {' -> '.join(cycle)}")
        if analysis.cycles:
            print(
                f"  Circular dependencies in {self._document_id}; running in declaration order",
                file=sys.stderr,
            )
        return issues

    def _apply_result(
        self,
        block_id: str,
        result: BlockResult,
        *,
        reason: Literal["full", "reactive"],
        update_mapping: bool = True,
    ) -> None:
        """Store a block result and record the execution."""
        block = next(b for b in self._blocks if b.id == block_id)
        self._results[block_id] = result

        if result.success:
            if update_mapping:
                register_table(self._table_mapping, block, result.table_name)
            self._refresh_input_deps(block)
        elif update_mapping:
            # The old table was invalidated; dependents must not resolve to it.
            for name in block.names:
                self._table_mapping.pop(name, None)

        self._collector.record_block_executed(
            self._document_id,
            block_id,
            table_name=result.table_name if result.success else "",
            success=result.success,
            error=result.error,
            reason=reason,
            duration_ms=result.duration_ms,
        )
        if result.missing:
            self._collector.record_interpolation_missing(self._document_id, block_id, result.missing)

    def _refresh_input_deps(self, block: Block) -> None:
        """Remember the inputs a block read on its last successful execution."""
        deps = tuple(extract_input_references(block.content))
        if deps == block.stored_input_deps:
            return
        updated = replace(block, stored_input_deps=deps)
        self._blocks = tuple(updated if b.id == block.id else b for b in self._blocks)

    def _refresh_artifacts(self, artifact_blocks: Iterable[Block]) -> list[str]:
        refreshed: list[str] = []
        for block in artifact_blocks:
            source = block.data_source
            if source is None:
                continue
            table = self._table_mapping.get(source)
            if self._artifact_builder is not None:
                self._artifacts[block.id] = self._artifact_builder(block, table)
            else:
                self._artifacts[block.id] = ArtifactBinding(
                    block_id=block.id, data_source=source, table_name=table
                )
            refreshed.append(block.id)
        return refreshed

    def _notify(self, generation: int, updated: tuple[str, ...]) -> None:
        if self._observer is None:
            return
        self._observer(
            DocumentState(
                document_id=self._document_id,
                generation=generation,
                blocks=self._blocks,
                inputs=dict(self._previous_inputs),
                table_mapping=dict(self._table_mapping),
                results=dict(self._results),
                artifacts=dict(self._artifacts),
                updated=updated,
            )
        )


class SessionRegistry:
    """One ``ReportSession`` per document id.

    Sessions share a collector so a single event log covers every open
    report; each session gets its own executor from ``executor_factory``.

    Args:
        executor_factory: Creates the executor for a new session.
        config: Passed to every session.
        collector: Shared event sink.  Created if omitted.

    """

    __slots__ = ("_collector", "_config", "_executor_factory", "_sessions")

    def __init__(
        self,
        executor_factory: Callable[[], QueryExecutor],
        *,
        config: InkwellConfig | None = None,
        collector: EventCollector | None = None,
    ) -> None:
        self._executor_factory = executor_factory
        self._config = config
        if collector is None:
            collector = EventCollector(EventLog(config.max_events if config is not None else 10_000))
        self._collector = collector
        self._sessions: dict[str, ReportSession] = {}

    @property
    def collector(self) -> EventCollector:
        return self._collector

    def open(self, document_id: str, **kwargs: Any) -> ReportSession:
        """Return the session for ``document_id``, creating it if needed.

        ``kwargs`` (``observer``, ``artifact_builder``) apply only when the
        session is created.
        """
        session = self._sessions.get(document_id)
        if session is None:
            session = ReportSession(
                document_id,
                self._executor_factory(),
                config=self._config,
                collector=self._collector,
                **kwargs,
            )
            self._sessions[document_id] = session
        return session

    def get(self, document_id: str) -> ReportSession | None:
        return self._sessions.get(document_id)

    def close(self, document_id: str) -> bool:
        """Close and forget a session.  Returns False if it was not open."""
        session = self._sessions.pop(document_id, None)
        if session is None:
            return False
        session.close()
        return True

    def close_all(self) -> None:
        for document_id in list(self._sessions):
            self.close(document_id)

    def __contains__(self, document_id: object) -> bool:
        return document_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
