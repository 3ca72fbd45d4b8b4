"""Reactive layer — dependency graph, affected-block resolution, report sessions.

Connects input changes to block re-execution through the dependency graph
and the per-document ``ReportSession``.
"""

from inkwell.reactive.graph import (
    DependencyAnalysis,
    DependencyGraph,
    DependencyNode,
    MissingDependency,
    analyze_dependencies,
    build_graph,
    detect_cycles,
    order_blocks,
    subgraph,
    topo_sort,
    transitive_dependencies,
    transitive_dependents,
)
from inkwell.reactive.pipeline import (
    ArtifactBinding,
    DocumentState,
    ReportSession,
    RunResult,
    SessionRegistry,
)
from inkwell.reactive.resolver import AffectedSet, expand_affected, find_affected

__all__ = [
    "AffectedSet",
    "ArtifactBinding",
    "DependencyAnalysis",
    "DependencyGraph",
    "DependencyNode",
    "DocumentState",
    "MissingDependency",
    "ReportSession",
    "RunResult",
    "SessionRegistry",
    "analyze_dependencies",
    "build_graph",
    "detect_cycles",
    "expand_affected",
    "find_affected",
    "order_blocks",
    "subgraph",
    "topo_sort",
    "transitive_dependencies",
    "transitive_dependents",
]
