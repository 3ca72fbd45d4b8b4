"""Reference extraction — finds what a block's text points at.

Block text refers to other blocks and to external values through
``${...}`` template variables, and to other blocks implicitly by naming
them after ``FROM`` or ``JOIN``:

    ``${sales}``              another block's result table
    ``${inputs.region}``      an input parameter
    ``${metadata.title}``     report metadata
    ``${query.total}``        a column of a prior query result
    ``${query.total[0]}``     an indexed column value

Every function here is pure: same text in, same references out.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from collections.abc import Iterable, Set

# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------

TEMPLATE_VAR = re.compile(r"\$\{([a-zA-Z_][a-zA-Z0-9_]*)\}")
INPUT_VAR = re.compile(r"\$\{inputs\.(\w+)\}")
METADATA_VAR = re.compile(r"\$\{metadata\.(\w+)\}")
PARAM_VAR = re.compile(r"\$\{(inputs|metadata)\.(\w+)\}")
QUERY_VAR = re.compile(r"\$\{query\.(\w+)\}")
QUERY_INDEXED_VAR = re.compile(r"\$\{query\.(\w+)\[(\d+)\]\}")
ANY_VAR = re.compile(r"\$\{[^}]+\}")
TABLE_REF = re.compile(
    r"""(?:FROM|JOIN)\s+["']?([a-zA-Z_][a-zA-Z0-9_]*)["']?""", re.IGNORECASE
)

VARIABLE_NAME = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")
MAX_NAME_LENGTH = 64
RESERVED_NAMES = frozenset({"inputs", "metadata", "query", "null", "true", "false"})

type ReferenceKind = Literal["template_block", "implicit_sql", "input", "metadata", "query_column"]


@dataclass(frozen=True, slots=True)
class Reference:
    """A single mention detected inside block text.

    Attributes:
        kind: Which reference class matched.
        name: The resolved name (block name, input name, column name).
        raw: The exact matched text, e.g. ``${inputs.region}``.
        index: Row index for ``${query.column[i]}``; None otherwise.

    """

    kind: ReferenceKind
    name: str
    raw: str
    index: int | None = None


@dataclass(frozen=True, slots=True)
class BlockReferences:
    """Block references found in one block's text.

    Attributes:
        all: ``template_refs`` followed by ``sql_refs``.
        template_refs: Names from ``${name}`` tokens.
        sql_refs: Known names found after FROM/JOIN.

    """

    all: tuple[str, ...] = field(default=())
    template_refs: tuple[str, ...] = field(default=())
    sql_refs: tuple[str, ...] = field(default=())


def extract_references(text: str, known_names: Set[str]) -> BlockReferences:
    """Extract block references from SQL text.

    ``${name}`` tokens are explicit references whether or not ``name`` is
    known (unknown ones surface later as missing dependencies).  Dotted
    tokens (``${inputs.x}``) never match.  Bare identifiers after FROM/JOIN
    count only when they are in ``known_names``.  Each name is reported
    once, at its first occurrence.
    """
    seen: set[str] = set()
    template_refs: list[str] = []
    sql_refs: list[str] = []

    for match in TEMPLATE_VAR.finditer(text):
        name = match.group(1)
        if name not in seen:
            seen.add(name)
            template_refs.append(name)

    for match in TABLE_REF.finditer(text):
        name = match.group(1)
        if name in known_names and name not in seen:
            seen.add(name)
            sql_refs.append(name)

    return BlockReferences(
        all=(*template_refs, *sql_refs),
        template_refs=tuple(template_refs),
        sql_refs=tuple(sql_refs),
    )


def extract_input_references(text: str) -> list[str]:
    """Return input parameter names used as ``${inputs.NAME}``, deduplicated."""
    return _unique(m.group(1) for m in INPUT_VAR.finditer(text))


def extract_all_references(text: str) -> list[Reference]:
    """Classify every template variable in ``text``.

    Indexed query columns are matched before plain ones so
    ``${query.total[0]}`` is not half-read as ``${query.total}``.
    Deduplicated by raw token.
    """
    refs: list[Reference] = []
    seen: set[str] = set()

    def add(ref: Reference) -> None:
        if ref.raw not in seen:
            seen.add(ref.raw)
            refs.append(ref)

    for m in INPUT_VAR.finditer(text):
        add(Reference(kind="input", name=m.group(1), raw=m.group(0)))
    for m in METADATA_VAR.finditer(text):
        add(Reference(kind="metadata", name=m.group(1), raw=m.group(0)))
    for m in QUERY_INDEXED_VAR.finditer(text):
        add(Reference(kind="query_column", name=m.group(1), raw=m.group(0), index=int(m.group(2))))
    for m in QUERY_VAR.finditer(text):
        add(Reference(kind="query_column", name=m.group(1), raw=m.group(0)))
    for m in TEMPLATE_VAR.finditer(text):
        add(Reference(kind="template_block", name=m.group(1), raw=m.group(0)))

    return refs


def has_template_variables(text: str) -> bool:
    return ANY_VAR.search(text) is not None


def has_input_variables(text: str) -> bool:
    return INPUT_VAR.search(text) is not None


def validate_variable_name(name: str) -> list[str]:
    """Check a block alias or input name. Returns error messages (empty if valid)."""
    if not name:
        return ["Variable name cannot be empty"]
    if len(name) > MAX_NAME_LENGTH:
        return [f"Variable name too long (max {MAX_NAME_LENGTH})"]
    if not VARIABLE_NAME.match(name):
        return [
            "Variable name must start with letter/underscore "
            "and contain only alphanumeric/underscore"
        ]
    if name.lower() in RESERVED_NAMES:
        return [f'"{name}" is a reserved word']
    return []


def _unique(names: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for name in names:
        if name not in seen:
            seen.add(name)
            result.append(name)
    return result
