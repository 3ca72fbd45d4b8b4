"""Report blocks — the unit of analysis.

A report is parsed into an ordered tuple of frozen ``Block`` values.  Every
edit produces a fresh tuple; nothing downstream mutates a block in place, so
an analysis of one parse can never observe a later edit.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from inkwell._types import BlockKind


@dataclass(frozen=True, slots=True)
class Block:
    """A named, independently identifiable unit of report text.

    Attributes:
        id: Unique identifier within the report (e.g., "block_0").
        content: Raw source text of the block.
        kind: "sql" for query blocks; everything else is "other".
        alias_name: Optional human-readable name usable as ``${alias}``.
        stored_input_deps: Input names recorded by a previous execution.
            Empty means "unknown" and triggers derivation from ``content``.
        language: Fence language the block was declared with.
        data_source: Logical name of the block result an artifact reads
            (charts and other derived views). None for SQL blocks.

    """

    id: str
    content: str
    kind: BlockKind = "sql"
    alias_name: str | None = None
    stored_input_deps: tuple[str, ...] = field(default=())
    language: str = "sql"
    data_source: str | None = None

    @property
    def is_sql(self) -> bool:
        return self.kind == "sql"

    @property
    def names(self) -> tuple[str, ...]:
        """Every name that resolves to this block (alias first)."""
        if self.alias_name:
            return (self.alias_name, self.id)
        return (self.id,)


def sql_blocks(blocks: tuple[Block, ...] | list[Block]) -> list[Block]:
    """Filter to SQL blocks, preserving declaration order."""
    return [b for b in blocks if b.is_sql]


def find_block(blocks: tuple[Block, ...] | list[Block], identifier: str) -> Block | None:
    """Find a block by id or alias."""
    for block in blocks:
        if block.id == identifier or block.alias_name == identifier:
            return block
    return None
