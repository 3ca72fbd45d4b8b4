"""Block dependency graph — who reads whose result table.

An edge ``A -> B`` means block A's SQL references block B (``${b_alias}``,
``${block_1}``, or a bare ``FROM b_alias``), so B must execute first.

The graph answers the questions the reactive session asks:

- In what order can every block run?  (``topo_sort``)
- Is that order even defined?  (``detect_cycles``)
- If block B is recomputed, which blocks are stale?  (``transitive_dependents``)

All functions are pure.  ``DependencyGraph`` is a plain ordered dict whose
insertion order is block declaration order; every traversal that has a
choice to make resolves it by that order, so results are reproducible.
"""

from __future__ import annotations

import heapq
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from inkwell._types import BlockId
from inkwell.document.blocks import sql_blocks
from inkwell.document.references import extract_references

if TYPE_CHECKING:
    from collections.abc import Collection, Sequence

    from inkwell.document.blocks import Block


@dataclass(slots=True)
class DependencyNode:
    """One SQL block in the graph.

    ``dependencies`` and ``dependents`` are inverse relations and are only
    ever updated together (see ``_link``).

    Attributes:
        block_id: The block's id.
        alias_name: The block's alias, if it has one.
        dependencies: Ids of blocks this block reads from.
        dependents: Ids of blocks that read from this block.

    """

    block_id: BlockId
    alias_name: str | None = None
    dependencies: set[BlockId] = field(default_factory=set)
    dependents: set[BlockId] = field(default_factory=set)


type DependencyGraph = dict[BlockId, DependencyNode]


@dataclass(frozen=True, slots=True)
class MissingDependency:
    """``${name}`` references in a block that resolve to no block."""

    block_id: BlockId
    missing: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class DependencyAnalysis:
    """Full dependency analysis of a report.

    Attributes:
        execution_order: Block ids, dependencies first.  Declaration order
            when the graph is cyclic.
        dependency_map: Block id -> ids it depends on (declaration order).
        cycles: Each cycle as a closed path (``[a, b, a]``), or None.
        missing_dependencies: Unresolvable ``${name}`` references per block.
        self_references: Ids of blocks that reference themselves.  The edge
            is left out of the graph; callers treat these as validation
            errors.
        graph: The graph itself, for further queries.

    """

    execution_order: tuple[BlockId, ...]
    dependency_map: dict[BlockId, list[BlockId]]
    cycles: list[list[BlockId]] | None
    missing_dependencies: tuple[MissingDependency, ...]
    self_references: tuple[BlockId, ...]
    graph: DependencyGraph

    @property
    def has_cycles(self) -> bool:
        return self.cycles is not None

    @property
    def is_valid(self) -> bool:
        return self.cycles is None and not self.self_references


def build_name_map(blocks: Sequence[Block]) -> dict[str, BlockId]:
    """Map every alias and id of the SQL blocks to the block id.

    Ids win over aliases: a block aliased ``block_1`` cannot hijack the real
    ``block_1``.
    """
    name_to_id: dict[str, str] = {}
    sql = sql_blocks(blocks)
    for block in sql:
        if block.alias_name:
            name_to_id.setdefault(block.alias_name, block.id)
    for block in sql:
        name_to_id[block.id] = block.id
    return name_to_id


def build_graph(blocks: Sequence[Block]) -> DependencyGraph:
    """Build the dependency graph of the SQL blocks in ``blocks``.

    Every SQL block gets a node, edges or not.  A reference that resolves
    to the referencing block itself adds no edge.
    """
    sql = sql_blocks(blocks)
    graph: DependencyGraph = {
        b.id: DependencyNode(block_id=b.id, alias_name=b.alias_name) for b in sql
    }
    name_to_id = build_name_map(sql)
    known = name_to_id.keys()

    for block in sql:
        for ref in extract_references(block.content, known).all:
            target = name_to_id.get(ref)
            if target is not None and target != block.id:
                _link(graph, block.id, target)

    return graph


def _link(graph: DependencyGraph, source: BlockId, target: BlockId) -> None:
    graph[source].dependencies.add(target)
    graph[target].dependents.add(source)


def find_self_references(blocks: Sequence[Block]) -> list[BlockId]:
    """Ids of SQL blocks whose text references the block itself."""
    sql = sql_blocks(blocks)
    name_to_id = build_name_map(sql)
    known = name_to_id.keys()
    return [
        block.id
        for block in sql
        if any(name_to_id.get(ref) == block.id for ref in extract_references(block.content, known).all)
    ]


def find_missing_dependencies(blocks: Sequence[Block]) -> list[MissingDependency]:
    """Explicit ``${name}`` references that match no block id or alias."""
    sql = sql_blocks(blocks)
    name_to_id = build_name_map(sql)
    known = name_to_id.keys()
    result: list[MissingDependency] = []
    for block in sql:
        refs = extract_references(block.content, known)
        missing = tuple(ref for ref in refs.template_refs if ref not in name_to_id)
        if missing:
            result.append(MissingDependency(block_id=block.id, missing=missing))
    return result


# ---------------------------------------------------------------------------
# Cycle detection
# ---------------------------------------------------------------------------


def detect_cycles(graph: DependencyGraph) -> list[list[BlockId]] | None:
    """Find cycles with a depth-first search.

    Each cycle is reported as the DFS path from the first node on the cycle
    back to itself, e.g. ``["a", "b", "a"]``.  Dependencies are explored in
    declaration order.  Iterative, so deep chains don't hit the recursion
    limit.

    Returns:
        The cycles found, or None if the graph is acyclic.

    """
    position = _positions(graph)
    cycles: list[list[str]] = []
    visited: set[str] = set()
    on_stack: set[str] = set()
    path: list[str] = []

    for root in graph:
        if root in visited:
            continue

        visited.add(root)
        on_stack.add(root)
        path.append(root)
        stack = [iter(_ordered(graph[root].dependencies, position))]

        while stack:
            dep = next(stack[-1], None)
            if dep is None:
                stack.pop()
                on_stack.discard(path.pop())
                continue
            if dep not in graph:
                continue
            if dep not in visited:
                visited.add(dep)
                on_stack.add(dep)
                path.append(dep)
                stack.append(iter(_ordered(graph[dep].dependencies, position)))
            elif dep in on_stack:
                start = path.index(dep)
                cycles.append([*path[start:], dep])

    return cycles or None


# ---------------------------------------------------------------------------
# Topological sort
# ---------------------------------------------------------------------------


def topo_sort(graph: DependencyGraph) -> list[BlockId] | None:
    """Order the graph dependencies-first with Kahn's algorithm.

    When several nodes are ready at once the one declared first goes first.

    Returns:
        Block ids in execution order, or None if the graph has a cycle.

    """
    position = _positions(graph)
    in_degree = {node_id: len(node.dependencies) for node_id, node in graph.items()}
    ready = [position[node_id] for node_id, degree in in_degree.items() if degree == 0]
    heapq.heapify(ready)
    order_ids = list(graph)
    result: list[str] = []

    while ready:
        node_id = order_ids[heapq.heappop(ready)]
        result.append(node_id)
        for dependent in graph[node_id].dependents:
            if dependent not in in_degree:
                continue
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                heapq.heappush(ready, position[dependent])

    if len(result) < len(graph):
        return None
    return result


# ---------------------------------------------------------------------------
# Closures and restriction
# ---------------------------------------------------------------------------


def transitive_dependents(graph: DependencyGraph, block_id: BlockId) -> list[BlockId]:
    """Every block that directly or indirectly reads ``block_id``'s result.

    Breadth-first, so nearer dependents come first.  ``block_id`` itself is
    excluded even on a cycle.
    """
    return _closure(graph, block_id, lambda node: node.dependents)


def transitive_dependencies(graph: DependencyGraph, block_id: BlockId) -> list[BlockId]:
    """Every block ``block_id`` directly or indirectly reads from."""
    return _closure(graph, block_id, lambda node: node.dependencies)


def _closure(graph: DependencyGraph, start: BlockId, edges) -> list[BlockId]:
    if start not in graph:
        return []
    position = _positions(graph)
    seen = {start}
    result: list[str] = []
    queue = deque([start])
    while queue:
        current = queue.popleft()
        for neighbor in _ordered(edges(graph[current]), position):
            if neighbor not in seen and neighbor in graph:
                seen.add(neighbor)
                result.append(neighbor)
                queue.append(neighbor)
    return result


def subgraph(graph: DependencyGraph, block_ids: Collection[BlockId]) -> DependencyGraph:
    """Restrict ``graph`` to ``block_ids``, keeping only edges between them."""
    keep = set(block_ids)
    result: DependencyGraph = {}
    for node_id, node in graph.items():
        if node_id not in keep:
            continue
        result[node_id] = DependencyNode(
            block_id=node_id,
            alias_name=node.alias_name,
            dependencies=node.dependencies & keep,
            dependents=node.dependents & keep,
        )
    return result


def order_blocks(blocks: Sequence[Block], order: Sequence[BlockId]) -> list[Block]:
    """Arrange ``blocks`` by ``order``; blocks not listed follow in their original order."""
    by_id = {b.id: b for b in blocks}
    listed = set(order)
    ordered = [by_id[block_id] for block_id in order if block_id in by_id]
    ordered.extend(b for b in blocks if b.id not in listed)
    return ordered


# ---------------------------------------------------------------------------
# Analysis entry point
# ---------------------------------------------------------------------------


def analyze_dependencies(blocks: Sequence[Block]) -> DependencyAnalysis:
    """Analyze the SQL blocks of a report.

    A cyclic graph is not an error: ``cycles`` is populated and the
    execution order falls back to declaration order.
    """
    sql = sql_blocks(blocks)
    graph = build_graph(sql)
    cycles = detect_cycles(graph)
    declared = [b.id for b in sql]

    order = None if cycles else topo_sort(graph)
    execution_order = tuple(order if order is not None else declared)

    position = _positions(graph)
    dependency_map = {
        node_id: _ordered(node.dependencies, position) for node_id, node in graph.items()
    }

    return DependencyAnalysis(
        execution_order=execution_order,
        dependency_map=dependency_map,
        cycles=cycles,
        missing_dependencies=tuple(find_missing_dependencies(sql)),
        self_references=tuple(find_self_references(sql)),
        graph=graph,
    )


def _positions(graph: DependencyGraph) -> dict[BlockId, int]:
    return {node_id: index for index, node_id in enumerate(graph)}


def _ordered(ids: Collection[BlockId], position: dict[BlockId, int]) -> list[BlockId]:
    """Sort ids by declaration position; ids outside the graph go last."""
    return sorted(ids, key=lambda i: (position.get(i, len(position)), i))
