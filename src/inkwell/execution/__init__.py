"""Query execution seam: the executor protocol and a dry-run implementation."""

from inkwell.execution.dry_run import DryRunExecutor
from inkwell.execution.executor import (
    BaseExecutor,
    BlockError,
    BlockResult,
    ExecutionReport,
    QueryExecutor,
    register_table,
    run_block,
)

__all__ = [
    "BaseExecutor",
    "BlockError",
    "BlockResult",
    "DryRunExecutor",
    "ExecutionReport",
    "QueryExecutor",
    "register_table",
    "run_block",
]
