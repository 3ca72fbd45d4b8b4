"""Tests for inkwell.reactive.pipeline — report sessions."""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from inkwell._errors import ExecutionError, ParseError, ReactiveError, ValidationError
from inkwell.document.blocks import Block
from inkwell.execution.dry_run import DryRunExecutor
from inkwell.inputs.store import InputStore
from inkwell.observability.collector import EventCollector
from inkwell.observability.events import (
    BlockExecuted,
    BlocksAffected,
    CleanupFailed,
    DependenciesAnalyzed,
    InterpolationMissing,
    PipelineProfile,
    ReactiveRunFailed,
    RunDiscarded,
    ValidationIssue,
)
from inkwell.reactive.pipeline import ArtifactBinding, ReportSession, SessionRegistry
from tests.conftest import chart, sql

BASE_INPUTS = {"region": "East", "threshold": 10, "year": 2024}


class GatedExecutor(DryRunExecutor):
    """Dry-run executor that can hold the next block until released."""

    def __init__(self) -> None:
        super().__init__()
        self.gate: asyncio.Event | None = None
        self.entered = asyncio.Event()

    async def execute_block(self, block: Block, sql_text: str, table_name: str):
        gate = self.gate
        if gate is not None:
            self.gate = None
            self.entered.set()
            await gate.wait()
        return await super().execute_block(block, sql_text, table_name)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def collector() -> EventCollector:
    return EventCollector()


@pytest.fixture
def session(executor: DryRunExecutor, collector: EventCollector) -> ReportSession:
    return ReportSession("doc", executor, collector=collector)


async def _baseline(session: ReportSession, blocks: list[Block]) -> None:
    await session.execute(blocks, BASE_INPUTS)


# ---------------------------------------------------------------------------
# Full execution
# ---------------------------------------------------------------------------


class TestExecute:
    def test_new_session_awaits_baseline(self, session: ReportSession) -> None:
        assert session.state == "awaiting_baseline"
        assert not session.baseline_established

    @pytest.mark.asyncio
    async def test_execute_markdown(
        self, session: ReportSession, executor: DryRunExecutor, report_source: str
    ) -> None:
        result = await session.execute(report_source, {"region": "EU", "year": 2024})

        assert result.success
        assert result.reason == "full"
        assert result.executed == ("block_0", "block_1", "block_2")
        assert session.state == "steady"
        assert session.baseline_established
        assert session.previous_inputs == {"region": "EU", "year": 2024}
        assert session.metadata == {"title": "Regional sales"}
        assert session.table_mapping["sales"] == "chart_data_block_0"
        assert executor.statements["block_1"].startswith(
            "SELECT product, SUM(amount) AS total FROM chart_data_block_0"
        )
        assert session.artifacts["block_3"] == ArtifactBinding(
            block_id="block_3", data_source="top", table_name="chart_data_block_1"
        )
        assert result.artifacts == ("block_3",)

    @pytest.mark.asyncio
    async def test_dependencies_run_first(
        self, session: ReportSession, executor: DryRunExecutor
    ) -> None:
        blocks = [
            sql("report", "SELECT * FROM ${base}"),
            sql("src", "SELECT 1", alias="base"),
        ]
        await session.execute(blocks, {})
        assert executor.calls == ["src", "report"]
        assert executor.statements["report"] == "SELECT * FROM chart_data_src"

    @pytest.mark.asyncio
    async def test_parse_error_propagates(self, session: ReportSession) -> None:
        with pytest.raises(ParseError):
            await session.execute("---\n- not\n- a mapping\n---\n")
        assert session.state == "awaiting_baseline"

    @pytest.mark.asyncio
    async def test_executor_error_propagates(self, collector: EventCollector) -> None:
        executor = MagicMock()
        executor.execute = AsyncMock(side_effect=RuntimeError("engine down"))
        session = ReportSession("doc", executor, collector=collector)

        with pytest.raises(ExecutionError, match="engine down"):
            await session.execute([sql("a", "SELECT 1")], {})
        assert not session.baseline_established

    @pytest.mark.asyncio
    async def test_duplicate_ids_rejected(self, session: ReportSession) -> None:
        with pytest.raises(ValidationError):
            await session.execute([sql("a", "SELECT 1"), sql("a", "SELECT 2")], {})

    @pytest.mark.asyncio
    async def test_self_reference_is_validation_issue(
        self, session: ReportSession, collector: EventCollector
    ) -> None:
        result = await session.execute([sql("a", "SELECT * FROM ${me}", alias="me")], {})

        assert result.issues == ("block a references itself",)
        issues = collector.log.query(event_type=ValidationIssue)
        assert [e.block_id for e in issues] == ["a"]

    @pytest.mark.asyncio
    async def test_cycle_runs_in_declaration_order(
        self, session: ReportSession, executor: DryRunExecutor, collector: EventCollector
    ) -> None:
        result = await session.execute(
            [sql("a", "SELECT * FROM ${b}"), sql("b", "SELECT * FROM ${a}")], {}
        )

        assert executor.calls == ["a", "b"]
        assert any(issue.startswith("circular dependency") for issue in result.issues)
        analyzed = collector.log.query(event_type=DependenciesAnalyzed)[0]
        assert analyzed.cycles == (("a", "b", "a"),)

    @pytest.mark.asyncio
    async def test_inputs_default_to_last_seen(
        self, session: ReportSession, executor: DryRunExecutor
    ) -> None:
        await session.on_inputs_changed({"region": "West"})
        await session.execute([sql("a", "SELECT ${inputs.region}")])
        assert executor.statements["a"] == "SELECT 'West'"

    @pytest.mark.asyncio
    async def test_block_events_recorded(
        self, session: ReportSession, collector: EventCollector
    ) -> None:
        await session.execute([sql("a", "SELECT ${inputs.missing}")], {})

        executed = collector.log.query(event_type=BlockExecuted)
        assert [(e.block_id, e.reason, e.success) for e in executed] == [("a", "full", True)]
        missing = collector.log.query(event_type=InterpolationMissing)
        assert missing[0].missing == ("inputs.missing",)

    @pytest.mark.asyncio
    async def test_observer_notified(self, executor: DryRunExecutor) -> None:
        observer = MagicMock()
        session = ReportSession("doc", executor, observer=observer)
        await session.execute([sql("a", "SELECT 1")], {"x": 1})

        observer.assert_called_once()
        state = observer.call_args.args[0]
        assert state.document_id == "doc"
        assert state.updated == ("a",)
        assert state.inputs == {"x": 1}

    @pytest.mark.asyncio
    async def test_stored_input_deps_recorded(self, session: ReportSession) -> None:
        await session.execute([sql("a", "SELECT ${inputs.r} ${inputs.y}")], {})
        assert session.blocks[0].stored_input_deps == ("r", "y")


# ---------------------------------------------------------------------------
# Baseline gating
# ---------------------------------------------------------------------------


class TestBaselineGating:
    @pytest.mark.asyncio
    async def test_changes_before_baseline_only_record(
        self, session: ReportSession, executor: DryRunExecutor
    ) -> None:
        assert await session.on_inputs_changed({"region": "East"}) is None
        assert await session.on_inputs_changed({"region": "West"}) is None

        assert executor.calls == []
        assert session.previous_inputs == {"region": "West"}
        assert session.state == "awaiting_baseline"


# ---------------------------------------------------------------------------
# Reactive re-execution
# ---------------------------------------------------------------------------


class TestReactiveRun:
    @pytest.mark.asyncio
    async def test_affected_and_dependents_reexecute(
        self, session: ReportSession, executor: DryRunExecutor, chain_blocks: list[Block]
    ) -> None:
        await _baseline(session, chain_blocks)
        executor.reset()

        result = await session.on_inputs_changed({**BASE_INPUTS, "region": "West"})

        assert result is not None
        assert result.success
        assert result.reason == "reactive"
        assert result.executed == ("block_0", "block_1", "block_2")
        assert executor.calls == ["block_0", "block_1", "block_2"]
        assert "'West'" in executor.statements["block_0"]
        assert executor.dropped == [
            "chart_data_block_0",
            "chart_data_block_1",
            "chart_data_block_2",
        ]
        assert session.previous_inputs["region"] == "West"
        assert session.state == "steady"

    @pytest.mark.asyncio
    async def test_only_affected_blocks(
        self, session: ReportSession, executor: DryRunExecutor, chain_blocks: list[Block]
    ) -> None:
        await _baseline(session, chain_blocks)
        executor.reset()

        result = await session.on_inputs_changed({**BASE_INPUTS, "year": 2025})

        assert result is not None
        assert result.executed == ("block_3",)
        assert executor.dropped == ["chart_data_block_3"]

    @pytest.mark.asyncio
    async def test_subgraph_order_not_declaration_order(
        self, session: ReportSession, executor: DryRunExecutor
    ) -> None:
        blocks = [
            sql("late", "SELECT * FROM ${early} WHERE r = ${inputs.r}"),
            sql("first", "SELECT ${inputs.r}", alias="early"),
        ]
        await session.execute(blocks, {"r": 1})
        executor.reset()

        await session.on_inputs_changed({"r": 2})

        assert executor.calls == ["first", "late"]

    @pytest.mark.asyncio
    async def test_no_changes_is_noop(
        self, session: ReportSession, executor: DryRunExecutor, chain_blocks: list[Block]
    ) -> None:
        await _baseline(session, chain_blocks)
        executor.reset()

        assert await session.on_inputs_changed(dict(BASE_INPUTS)) is None
        assert executor.calls == []
        assert session.state == "steady"

    @pytest.mark.asyncio
    async def test_unused_input_is_noop(
        self, session: ReportSession, executor: DryRunExecutor, chain_blocks: list[Block]
    ) -> None:
        await _baseline(session, chain_blocks)
        executor.reset()

        assert await session.on_inputs_changed({**BASE_INPUTS, "color": "red"}) is None
        assert executor.calls == []

    @pytest.mark.asyncio
    async def test_artifacts_refreshed(
        self, session: ReportSession, chain_blocks: list[Block]
    ) -> None:
        blocks = [*chain_blocks, chart("c_summary", "summary"), chart("c_cal", "cal")]
        await _baseline(session, blocks)

        result = await session.on_inputs_changed({**BASE_INPUTS, "threshold": 99})

        assert result is not None
        assert result.executed == ("block_1", "block_2")
        assert result.artifacts == ("c_summary",)

    @pytest.mark.asyncio
    async def test_artifact_builder(self, executor: DryRunExecutor) -> None:
        built: list[tuple[str, str | None]] = []

        def builder(block: Block, table: str | None) -> dict[str, Any]:
            built.append((block.id, table))
            return {"table": table}

        session = ReportSession("doc", executor, artifact_builder=builder)
        await session.execute(
            [sql("a", "SELECT ${inputs.x}", alias="src"), chart("c", "src")], {"x": 1}
        )
        await session.on_inputs_changed({"x": 2})

        assert built == [("c", "chart_data_a"), ("c", "chart_data_a")]
        assert session.artifacts["c"] == {"table": "chart_data_a"}

    @pytest.mark.asyncio
    async def test_events_and_profile(
        self, session: ReportSession, collector: EventCollector, chain_blocks: list[Block]
    ) -> None:
        await _baseline(session, chain_blocks)
        await session.on_inputs_changed({**BASE_INPUTS, "region": "West"})

        affected = collector.log.query(event_type=BlocksAffected)[0]
        assert affected.direct == ("block_0",)
        assert affected.transitive == ("block_1", "block_2")
        assert affected.provenance == (("block_0", ("region",)),)

        profile = collector.log.query(event_type=PipelineProfile)[0]
        assert profile.document_id == "doc"
        assert profile.blocks_updated == 3
        assert profile.total_ms >= 0

        reactive = [
            e for e in collector.log.query(event_type=BlockExecuted) if e.reason == "reactive"
        ]
        assert len(reactive) == 3


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


class TestReactiveFailures:
    @pytest.mark.asyncio
    async def test_cleanup_failure_is_not_fatal(
        self,
        session: ReportSession,
        executor: DryRunExecutor,
        collector: EventCollector,
        chain_blocks: list[Block],
    ) -> None:
        await _baseline(session, chain_blocks)
        executor.drop_table = AsyncMock(side_effect=OSError("locked"))  # type: ignore[method-assign]

        result = await session.on_inputs_changed({**BASE_INPUTS, "year": 2030})

        assert result is not None
        assert result.success
        failures = collector.log.query(event_type=CleanupFailed)
        assert [f.table_name for f in failures] == ["chart_data_block_3"]
        assert failures[0].error == "locked"

    @pytest.mark.asyncio
    async def test_block_failure_recorded(
        self, session: ReportSession, executor: DryRunExecutor, collector: EventCollector
    ) -> None:
        blocks = [
            sql("a", "SELECT ${inputs.x}", alias="src"),
            sql("b", "SELECT * FROM ${src}"),
        ]
        await session.execute(blocks, {"x": 1})

        original = executor.execute_block

        async def failing(block, sql_text, table_name):
            if block.id == "a":
                raise RuntimeError("syntax error")
            return await original(block, sql_text, table_name)

        executor.execute_block = failing  # type: ignore[method-assign]
        result = await session.on_inputs_changed({"x": 2})

        assert result is not None
        assert [e.block_id for e in result.errors] == ["a"]
        assert result.executed == ("a", "b")
        assert "src" not in session.table_mapping
        assert session.results["b"].missing == ("src",)
        assert session.state == "steady"
        assert collector.log.query(event_type=InterpolationMissing)

    @pytest.mark.asyncio
    async def test_observer_failure_returns_to_steady(
        self, executor: DryRunExecutor, collector: EventCollector
    ) -> None:
        calls: list[int] = []

        def observer(state) -> None:
            calls.append(state.generation)
            if len(calls) == 2:
                raise RuntimeError("render crashed")

        session = ReportSession("doc", executor, collector=collector, observer=observer)
        await session.execute([sql("a", "SELECT ${inputs.x}")], {"x": 1})

        result = await session.on_inputs_changed({"x": 2})

        assert result is not None
        assert result.error == "RuntimeError: render crashed"
        assert result.executed == ("a",)
        assert session.state == "steady"
        assert session.dirty == frozenset()
        failed = collector.log.query(event_type=ReactiveRunFailed)
        assert failed[0].applied_blocks == ("a",)

        again = await session.on_inputs_changed({"x": 3})
        assert again is not None
        assert again.success
        assert calls[-1] == again.generation

    @pytest.mark.asyncio
    async def test_artifact_failure_caught(self, executor: DryRunExecutor) -> None:
        def builder(block: Block, table: str | None) -> object:
            if builder.armed:  # type: ignore[attr-defined]
                raise ValueError("bad chart")
            return table

        builder.armed = False  # type: ignore[attr-defined]
        session = ReportSession("doc", executor, artifact_builder=builder)
        await session.execute([sql("a", "SELECT ${inputs.x}", alias="s"), chart("c", "s")], {"x": 1})

        builder.armed = True  # type: ignore[attr-defined]
        result = await session.on_inputs_changed({"x": 2})

        assert result is not None
        assert result.error == "ValueError: bad chart"
        assert session.state == "steady"


# ---------------------------------------------------------------------------
# Superseded runs
# ---------------------------------------------------------------------------


class TestSupersededRuns:
    @pytest.mark.asyncio
    async def test_stale_run_discarded(
        self, collector: EventCollector, chain_blocks: list[Block]
    ) -> None:
        executor = GatedExecutor()
        session = ReportSession("doc", executor, collector=collector)
        await _baseline(session, chain_blocks)
        executor.reset()

        gate = asyncio.Event()
        executor.gate = gate
        first = asyncio.create_task(session.on_inputs_changed({**BASE_INPUTS, "region": "West"}))
        await executor.entered.wait()

        generation = session.generation
        second = asyncio.create_task(session.on_inputs_changed({**BASE_INPUTS, "region": "North"}))
        while session.generation == generation:
            await asyncio.sleep(0)
        gate.set()

        stale = await first
        fresh = await second

        assert stale is not None and stale.discarded
        assert stale.executed == ()
        assert fresh is not None and fresh.success
        assert fresh.executed == ("block_0", "block_1", "block_2")
        assert "'North'" in executor.statements["block_0"]
        assert session.previous_inputs["region"] == "North"
        assert session.dirty == frozenset()

        discarded = collector.log.query(event_type=RunDiscarded)
        assert discarded[0].generation == stale.generation
        assert discarded[0].latest_generation == fresh.generation

    @pytest.mark.asyncio
    async def test_dirty_blocks_rerun_even_if_inputs_revert(
        self, chain_blocks: list[Block]
    ) -> None:
        executor = GatedExecutor()
        session = ReportSession("doc", executor)
        await _baseline(session, chain_blocks)
        executor.reset()

        gate = asyncio.Event()
        executor.gate = gate
        first = asyncio.create_task(session.on_inputs_changed({**BASE_INPUTS, "region": "West"}))
        await executor.entered.wait()

        generation = session.generation
        # back to the baseline values: the diff alone would find nothing
        second = asyncio.create_task(session.on_inputs_changed(dict(BASE_INPUTS)))
        while session.generation == generation:
            await asyncio.sleep(0)
        gate.set()

        assert (await first).discarded  # type: ignore[union-attr]
        fresh = await second

        assert fresh is not None
        assert fresh.executed == ("block_0", "block_1", "block_2")
        assert "'East'" in executor.statements["block_0"]


# ---------------------------------------------------------------------------
# Store wiring and lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_attach_drives_reactive_runs(
        self, session: ReportSession, executor: DryRunExecutor, chain_blocks: list[Block]
    ) -> None:
        store = InputStore(BASE_INPUTS)
        await session.execute(chain_blocks, store.snapshot())
        session.attach(store)
        await session.drain()
        executor.reset()

        store.set("year", 1999)
        await session.drain()

        assert executor.calls == ["block_3"]
        assert session.previous_inputs["year"] == 1999

    @pytest.mark.asyncio
    async def test_attach_twice_rejected(self, session: ReportSession) -> None:
        store = InputStore()
        session.attach(store)
        await session.drain()
        with pytest.raises(ReactiveError):
            session.attach(store)
        session.close()

    @pytest.mark.asyncio
    async def test_close(self, session: ReportSession, chain_blocks: list[Block]) -> None:
        store = InputStore(BASE_INPUTS)
        await _baseline(session, chain_blocks)
        session.attach(store)
        await session.drain()
        session.close()
        session.close()

        assert session.state == "closed"
        assert store.subscriber_count == 0
        assert await session.on_inputs_changed({"region": "X"}) is None
        with pytest.raises(ReactiveError):
            await session.execute(chain_blocks, BASE_INPUTS)


class TestSessionRegistry:
    def test_one_session_per_document(self) -> None:
        registry = SessionRegistry(DryRunExecutor)
        first = registry.open("q3")
        assert registry.open("q3") is first
        assert registry.open("q4") is not first
        assert len(registry) == 2
        assert "q3" in registry

    def test_sessions_share_collector(self) -> None:
        registry = SessionRegistry(DryRunExecutor)
        assert registry.open("a").collector is registry.collector
        assert registry.open("b").collector is registry.collector

    def test_sessions_are_isolated(self) -> None:
        registry = SessionRegistry(DryRunExecutor)
        assert registry.open("a")._executor is not registry.open("b")._executor

    def test_close(self) -> None:
        registry = SessionRegistry(DryRunExecutor)
        session = registry.open("q3")
        assert registry.close("q3")
        assert not registry.close("q3")
        assert session.state == "closed"
        assert registry.get("q3") is None

    def test_close_all(self) -> None:
        registry = SessionRegistry(DryRunExecutor)
        sessions = [registry.open(name) for name in ("a", "b")]
        registry.close_all()
        assert len(registry) == 0
        assert all(s.state == "closed" for s in sessions)
