"""Query executor contract — the seam between inkwell and a data engine.

Inkwell never talks to a database.  It renders each block's SQL and hands
it to a ``QueryExecutor``, which runs it and materializes the result into a
named table that later blocks (and charts) read from.

``BaseExecutor`` implements the full-report run (``execute``) on top of the
two primitive operations, so a concrete executor only has to provide
``execute_block`` and ``drop_table``.

Per-block failures are data: they land in ``ExecutionReport.errors`` and the
run continues with the next block.  Only an exception escaping ``execute``
itself aborts a run.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from inkwell.config import InkwellConfig
from inkwell.document.blocks import sql_blocks
from inkwell.sql.template import interpolate_full

if TYPE_CHECKING:
    from collections.abc import Sequence

    from inkwell.document.blocks import Block
    from inkwell.sql.template import TemplateContext


@dataclass(frozen=True, slots=True)
class BlockResult:
    """Outcome of executing one block.

    Attributes:
        block_id: The executed block.
        table_name: Table holding the materialized result.
        sql: The rendered SQL that was executed.
        row_count: Rows materialized (0 when unknown).
        error: Error message when execution failed.
        missing: Template variables that had no value when rendering.
        duration_ms: Time spent in the executor.

    """

    block_id: str
    table_name: str
    sql: str = ""
    row_count: int = 0
    error: str | None = None
    missing: tuple[str, ...] = ()
    duration_ms: float = 0.0

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass(frozen=True, slots=True)
class BlockError:
    """A block that failed during a run."""

    block_id: str
    message: str


@dataclass(frozen=True, slots=True)
class ExecutionReport:
    """Result of a full report run.

    Attributes:
        results: Block id -> result, in execution order.
        table_mapping: Block alias and id -> physical table, for every block
            that succeeded.
        errors: Failed blocks, in execution order.
        total_ms: Wall-clock time of the run.

    """

    results: dict[str, BlockResult] = field(default_factory=dict)
    table_mapping: dict[str, str] = field(default_factory=dict)
    errors: tuple[BlockError, ...] = ()
    total_ms: float = 0.0

    @property
    def success(self) -> bool:
        return not self.errors

    @property
    def executed_count(self) -> int:
        return sum(1 for r in self.results.values() if r.success)

    @property
    def failed_count(self) -> int:
        return len(self.errors)


@runtime_checkable
class QueryExecutor(Protocol):
    """What the report session needs from a data engine."""

    def table_name(self, block_id: str) -> str:
        """Physical table for a block's result."""
        ...

    async def execute(self, blocks: Sequence[Block], context: TemplateContext) -> ExecutionReport:
        """Run every SQL block of ``blocks`` in the given order."""
        ...

    async def execute_block(self, block: Block, sql: str, table_name: str) -> BlockResult:
        """Run rendered ``sql`` and materialize its result as ``table_name``."""
        ...

    async def drop_table(self, table_name: str) -> None:
        """Drop a materialized result table.  May raise."""
        ...


class BaseExecutor:
    """Full-run logic shared by concrete executors.

    Subclasses implement ``execute_block`` and ``drop_table``.

    Args:
        config: Names the result tables through ``InkwellConfig.table_name``.
            A default ``InkwellConfig`` is used when omitted.

    """

    def __init__(self, config: InkwellConfig | None = None) -> None:
        self.config = config if config is not None else InkwellConfig()

    def table_name(self, block_id: str) -> str:
        return self.config.table_name(block_id)

    async def execute(self, blocks: Sequence[Block], context: TemplateContext) -> ExecutionReport:
        """Render and execute each SQL block, threading the table mapping along.

        Block references resolve against the tables produced so far, so
        ``blocks`` should already be in execution order.
        """
        t0 = time.perf_counter()
        mapping: dict[str, str] = {}
        results: dict[str, BlockResult] = {}
        errors: list[BlockError] = []

        for block in sql_blocks(blocks):
            result = await run_block(self, block, mapping, context)
            results[block.id] = result
            if result.success:
                register_table(mapping, block, result.table_name)
            else:
                errors.append(BlockError(block_id=block.id, message=result.error or "unknown error"))

        return ExecutionReport(
            results=results,
            table_mapping=mapping,
            errors=tuple(errors),
            total_ms=(time.perf_counter() - t0) * 1000,
        )

    async def execute_block(self, block: Block, sql: str, table_name: str) -> BlockResult:
        raise NotImplementedError

    async def drop_table(self, table_name: str) -> None:
        raise NotImplementedError


def register_table(mapping: dict[str, str], block: Block, table_name: str) -> None:
    """Record a block's result table under its alias and its id."""
    if block.alias_name:
        mapping[block.alias_name] = table_name
    mapping[block.id] = table_name


async def run_block(
    executor: QueryExecutor,
    block: Block,
    table_mapping: dict[str, str],
    context: TemplateContext,
) -> BlockResult:
    """Render one block and execute it.

    An exception from the executor becomes a failed ``BlockResult``; the
    caller decides whether to carry on with the next block.
    """
    rendered = interpolate_full(block.content, table_mapping, context)
    table = executor.table_name(block.id)
    t0 = time.perf_counter()
    try:
        result = await executor.execute_block(block, rendered.output, table)
    except Exception as exc:
        return BlockResult(
            block_id=block.id,
            table_name=table,
            sql=rendered.output,
            error=f"{type(exc).__name__}: {exc}",
            missing=rendered.missing,
            duration_ms=(time.perf_counter() - t0) * 1000,
        )
    return replace(
        result,
        missing=rendered.missing,
        duration_ms=result.duration_ms or (time.perf_counter() - t0) * 1000,
    )
