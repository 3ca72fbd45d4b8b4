"""Shared test fixtures for inkwell."""

from __future__ import annotations

from pathlib import Path

import pytest

from inkwell.document.blocks import Block
from inkwell.execution.dry_run import DryRunExecutor


def sql(block_id: str, content: str, alias: str | None = None, deps: tuple[str, ...] = ()) -> Block:
    """Build a SQL block."""
    return Block(id=block_id, content=content, kind="sql", alias_name=alias, stored_input_deps=deps)


def chart(block_id: str, data_source: str) -> Block:
    """Build a chart block reading from ``data_source``."""
    return Block(
        id=block_id,
        content=f"type: bar\ndata: {data_source}",
        kind="other",
        language="chart",
        data_source=data_source,
    )


REPORT = """\
---
title: Regional sales
---

# Regional sales

```sql sales
SELECT * FROM orders WHERE region = ${inputs.region}
```

Some prose between blocks.

```sql top
SELECT product, SUM(amount) AS total FROM ${sales} GROUP BY 1
```

```sql targets
SELECT * FROM targets WHERE year = ${inputs.year}
```

```chart
type: bar
data: top
```
"""


@pytest.fixture
def report_source() -> str:
    return REPORT


@pytest.fixture
def report_file(tmp_path: Path) -> Path:
    path = tmp_path / "sales.md"
    path.write_text(REPORT)
    return path


@pytest.fixture
def executor() -> DryRunExecutor:
    return DryRunExecutor()


@pytest.fixture
def chain_blocks() -> list[Block]:
    """base <- filtered <- summary, plus an unrelated block."""
    return [
        sql("block_0", "SELECT * FROM raw WHERE region = ${inputs.region}", alias="base"),
        sql("block_1", "SELECT * FROM ${base} WHERE amount > ${inputs.threshold}", alias="filtered"),
        sql("block_2", "SELECT COUNT(*) FROM filtered", alias="summary"),
        sql("block_3", "SELECT * FROM calendar WHERE year = ${inputs.year}", alias="cal"),
    ]
