"""Dry-run executor — records rendered SQL instead of running it.

Used by the CLI (``inkwell render`` / ``inkwell watch``) and by tests.  Every
block "succeeds" and is assigned its ``<prefix><block id>`` table, so the
whole reactive machinery runs without a data engine.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from inkwell.execution.executor import BaseExecutor, BlockResult

if TYPE_CHECKING:
    from inkwell.config import InkwellConfig
    from inkwell.document.blocks import Block


class DryRunExecutor(BaseExecutor):
    """Executor that keeps what it was asked to do.

    Attributes:
        statements: Block id -> the most recent SQL it was executed with.
        calls: Block ids in execution order, across all runs.
        tables: Tables currently "materialized".
        dropped: Tables dropped, in order.

    """

    def __init__(self, config: InkwellConfig | None = None) -> None:
        super().__init__(config)
        self.statements: dict[str, str] = {}
        self.calls: list[str] = []
        self.tables: set[str] = set()
        self.dropped: list[str] = []

    async def execute_block(self, block: Block, sql: str, table_name: str) -> BlockResult:
        self.statements[block.id] = sql
        self.calls.append(block.id)
        self.tables.add(table_name)
        return BlockResult(block_id=block.id, table_name=table_name, sql=sql)

    async def drop_table(self, table_name: str) -> None:
        self.tables.discard(table_name)
        self.dropped.append(table_name)

    def reset(self) -> None:
        """Forget recorded calls (tables stay)."""
        self.statements.clear()
        self.calls.clear()
        self.dropped.clear()
