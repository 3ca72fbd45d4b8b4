"""Affected-block resolver — maps changed inputs to blocks.

Given the names of input parameters that just changed, determines which SQL
blocks read one of them directly.  A block's input dependencies come from
the last execution when recorded (``Block.stored_input_deps``) and are
otherwise derived from its text.

Direct matches are not the whole story: a block that reads an affected
block's result table is stale too.  ``expand_affected`` walks the dependency
graph to add those.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from inkwell.document.references import extract_input_references
from inkwell.reactive.graph import transitive_dependents

if TYPE_CHECKING:
    from collections.abc import Collection, Iterable, Sequence

    from inkwell._types import BlockId, ParamName
    from inkwell.document.blocks import Block
    from inkwell.reactive.graph import DependencyGraph


@dataclass(frozen=True, slots=True)
class AffectedSet:
    """Blocks that read a changed input directly.

    Attributes:
        affected_blocks: Affected SQL blocks in declaration order.
        per_block_input_deps: Effective input dependencies of every SQL
            block that was examined.
        provenance: Block id -> the changed names that triggered it.

    """

    affected_blocks: tuple[Block, ...] = field(default=())
    per_block_input_deps: dict[BlockId, list[ParamName]] = field(default_factory=dict)
    provenance: dict[BlockId, list[ParamName]] = field(default_factory=dict)

    @property
    def block_ids(self) -> tuple[BlockId, ...]:
        return tuple(b.id for b in self.affected_blocks)

    def __bool__(self) -> bool:
        return bool(self.affected_blocks)


def input_dependencies(block: Block) -> list[ParamName]:
    """Effective input dependencies: stored if recorded, else derived from the text."""
    if block.stored_input_deps:
        return list(block.stored_input_deps)
    return extract_input_references(block.content)


def find_affected(blocks: Sequence[Block], changed_names: Iterable[ParamName]) -> AffectedSet:
    """Find SQL blocks whose input dependencies intersect ``changed_names``."""
    changed = list(dict.fromkeys(changed_names))
    if not changed:
        return AffectedSet()

    changed_set = set(changed)
    affected: list[Block] = []
    per_block: dict[str, list[str]] = {}
    provenance: dict[str, list[str]] = {}

    for block in blocks:
        if not block.is_sql:
            continue
        deps = input_dependencies(block)
        per_block[block.id] = deps
        triggering = [name for name in deps if name in changed_set]
        if triggering:
            affected.append(block)
            provenance[block.id] = triggering

    return AffectedSet(
        affected_blocks=tuple(affected),
        per_block_input_deps=per_block,
        provenance=provenance,
    )


def expand_affected(graph: DependencyGraph, block_ids: Collection[BlockId]) -> list[BlockId]:
    """Union ``block_ids`` with all of their transitive dependents.

    Returned in graph declaration order; ids not in the graph are dropped.
    """
    result = set(block_ids)
    for block_id in block_ids:
        result.update(transitive_dependents(graph, block_id))
    return [node_id for node_id in graph if node_id in result]


def affected_artifacts(
    blocks: Sequence[Block],
    block_ids: Collection[BlockId],
    table_mapping: dict[str, str],
) -> list[Block]:
    """Derived-artifact blocks (charts etc.) that read an affected block's result.

    An artifact is affected when its ``data_source`` names an affected block
    by alias or id, or maps to the same physical table as one.
    """
    ids = set(block_ids)
    affected_names: set[str] = set(ids)
    affected_tables = {table_mapping[i] for i in ids if i in table_mapping}
    for block in blocks:
        if block.id in ids and block.alias_name:
            affected_names.add(block.alias_name)

    result: list[Block] = []
    for block in blocks:
        source = block.data_source
        if block.is_sql or source is None:
            continue
        if source in affected_names or table_mapping.get(source) in affected_tables:
            result.append(block)
    return result
