"""Tests for inkwell.execution — executor protocol and dry-run executor."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from inkwell.config import InkwellConfig
from inkwell.execution.dry_run import DryRunExecutor
from inkwell.execution.executor import BlockResult, QueryExecutor, run_block
from inkwell.sql.template import TemplateContext
from tests.conftest import chart, sql


class TestDryRunExecutor:
    def test_satisfies_protocol(self, executor: DryRunExecutor) -> None:
        assert isinstance(executor, QueryExecutor)

    def test_default_table_prefix(self, executor: DryRunExecutor) -> None:
        assert executor.table_name("block_3") == "chart_data_block_3"

    def test_configured_table_prefix(self, tmp_path) -> None:
        executor = DryRunExecutor(InkwellConfig(root=tmp_path, table_prefix="r_"))
        assert executor.table_name("block_0") == "r_block_0"

    def test_table_names_come_from_config(self, tmp_path) -> None:
        config = InkwellConfig(root=tmp_path, table_prefix="t_")
        executor = DryRunExecutor(config)
        assert executor.config is config
        assert executor.table_name("b") == config.table_name("b") == "t_b"

    @pytest.mark.asyncio
    async def test_run_block_uses_config_table_name(self, tmp_path) -> None:
        executor = DryRunExecutor(InkwellConfig(root=tmp_path, table_prefix="rpt_"))
        result = await run_block(executor, sql("block_1", "SELECT 1"), {}, TemplateContext())
        assert result.table_name == "rpt_block_1"
        assert executor.tables == {"rpt_block_1"}

    @pytest.mark.asyncio
    async def test_execute_threads_table_mapping(self, executor: DryRunExecutor) -> None:
        blocks = [
            sql("block_0", "SELECT * FROM t WHERE r = ${inputs.r}", alias="base"),
            sql("block_1", "SELECT * FROM ${base}"),
            chart("block_2", "base"),
        ]
        report = await executor.execute(blocks, TemplateContext(inputs={"r": "E"}))

        assert report.success
        assert report.executed_count == 2
        assert report.table_mapping == {
            "base": "chart_data_block_0",
            "block_0": "chart_data_block_0",
            "block_1": "chart_data_block_1",
        }
        assert executor.statements["block_0"] == "SELECT * FROM t WHERE r = 'E'"
        assert executor.statements["block_1"] == "SELECT * FROM chart_data_block_0"
        assert executor.calls == ["block_0", "block_1"]
        assert executor.tables == {"chart_data_block_0", "chart_data_block_1"}

    @pytest.mark.asyncio
    async def test_missing_values_reported(self, executor: DryRunExecutor) -> None:
        report = await executor.execute(
            [sql("block_0", "SELECT ${inputs.r} FROM ${ghost}")], TemplateContext()
        )
        assert report.results["block_0"].missing == ("ghost", "inputs.r")

    @pytest.mark.asyncio
    async def test_drop_table(self, executor: DryRunExecutor) -> None:
        await executor.execute([sql("block_0", "SELECT 1")], TemplateContext())
        await executor.drop_table("chart_data_block_0")
        assert executor.tables == set()
        assert executor.dropped == ["chart_data_block_0"]


class TestBlockFailures:
    @pytest.mark.asyncio
    async def test_failed_block_does_not_stop_run(self, executor: DryRunExecutor) -> None:
        original = executor.execute_block

        async def flaky(block, sql_text, table_name):
            if block.id == "block_0":
                raise RuntimeError("boom")
            return await original(block, sql_text, table_name)

        executor.execute_block = flaky  # type: ignore[method-assign]
        report = await executor.execute(
            [sql("block_0", "SELECT 1", alias="a"), sql("block_1", "SELECT * FROM ${a}")],
            TemplateContext(),
        )

        assert not report.success
        assert report.failed_count == 1
        assert report.errors[0].block_id == "block_0"
        assert "RuntimeError: boom" in report.errors[0].message
        assert "block_0" not in report.table_mapping
        # the dependent ran with the reference unresolved
        assert report.results["block_1"].missing == ("a",)

    @pytest.mark.asyncio
    async def test_run_block_wraps_exception(self) -> None:
        executor = AsyncMock()
        executor.table_name = lambda block_id: f"t_{block_id}"
        executor.execute_block.side_effect = ValueError("bad sql")

        result = await run_block(executor, sql("b", "SELECT 1"), {}, TemplateContext())

        assert not result.success
        assert result.table_name == "t_b"
        assert result.error == "ValueError: bad sql"
        assert result.sql == "SELECT 1"

    @pytest.mark.asyncio
    async def test_run_block_keeps_executor_result(self) -> None:
        executor = AsyncMock()
        executor.table_name = lambda block_id: f"t_{block_id}"
        executor.execute_block.return_value = BlockResult(
            block_id="b", table_name="t_b", sql="SELECT 1", row_count=7
        )

        result = await run_block(executor, sql("b", "SELECT 1"), {}, TemplateContext())

        assert result.success
        assert result.row_count == 7
        executor.execute_block.assert_awaited_once()
