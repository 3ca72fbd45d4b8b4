"""SQL template interpolation — block references and parameter values.

Two kinds of substitution happen before a block's SQL reaches the engine:

1. **Block references** — ``${sales}`` becomes the physical table that holds
   the ``sales`` block's result (``chart_data_block_0``).  Table names are
   identifiers and are inserted verbatim.
2. **Parameters** — ``${inputs.region}`` and ``${metadata.title}`` become
   SQL literals, escaped by ``escape_literal``.

``interpolate_full`` always resolves block references first so a table name
is never run through literal escaping.  Nothing here raises on a missing
value: unresolved block references stay in place, missing parameters become
``NULL``, and both are reported on the result so callers can surface them.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import TYPE_CHECKING, Any

from inkwell.document.references import INPUT_VAR, METADATA_VAR, PARAM_VAR, TEMPLATE_VAR

if TYPE_CHECKING:
    import re
    from collections.abc import Iterable, Mapping

    from inkwell._types import TableMapping


@dataclass(frozen=True, slots=True)
class TemplateContext:
    """Values available to ``${inputs.*}`` and ``${metadata.*}``."""

    inputs: Mapping[str, Any] = field(default_factory=dict)
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Interpolation:
    """Result of a substitution pass.

    Attributes:
        output: The rewritten text.
        resolved: Variables that were substituted, in match order.
        missing: Variables left unresolved (block refs) or replaced with
            ``NULL`` (parameters).  Parameters are qualified, e.g.
            ``inputs.region``.

    """

    output: str
    resolved: tuple[str, ...] = field(default=())
    missing: tuple[str, ...] = field(default=())

    @property
    def complete(self) -> bool:
        return not self.missing


@dataclass(frozen=True, slots=True)
class ExtractedVariables:
    """Template variable names found in a text, by class."""

    input_names: tuple[str, ...] = field(default=())
    metadata_names: tuple[str, ...] = field(default=())
    block_names: tuple[str, ...] = field(default=())


def extract_variables(text: str) -> ExtractedVariables:
    """Partition the template variables in ``text``, each list deduplicated."""
    inputs = _unique(m.group(1) for m in INPUT_VAR.finditer(text))
    metadata = _unique(m.group(1) for m in METADATA_VAR.finditer(text))
    blocks = _unique(m.group(1) for m in TEMPLATE_VAR.finditer(text))
    return ExtractedVariables(
        input_names=tuple(inputs),
        metadata_names=tuple(metadata),
        block_names=tuple(blocks),
    )


def escape_literal(value: Any) -> str:
    """Render a Python value as a SQL literal.

    - ``str``: single-quoted, embedded quotes doubled (``O'Brien`` ->
      ``'O''Brien'``).
    - ``bool``: ``true`` / ``false``.
    - ``int`` / ``float``: literal text; NaN and infinities become ``NULL``.
    - ``datetime`` / ``date``: single-quoted ISO-8601.
    - ``list`` / ``tuple``: ``(a, b, c)`` with each element escaped by these
      rules, for ``IN (...)`` clauses.
    - Anything else, including ``None``: ``NULL``.

    """
    if value is None:
        return "NULL"
    if isinstance(value, str):
        return "'" + value.replace("'", "''") + "'"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            return "NULL"
        return repr(value)
    if isinstance(value, (datetime, date)):
        return "'" + value.isoformat() + "'"
    if isinstance(value, (list, tuple)):
        return "(" + ", ".join(escape_literal(v) for v in value) + ")"
    return "NULL"


def resolve_block_refs(text: str, table_mapping: TableMapping) -> Interpolation:
    """Replace ``${name}`` with ``table_mapping[name]``.

    Unknown names keep their original token and are reported in ``missing``.

    """
    resolved: list[str] = []
    missing: list[str] = []

    def replace(match: re.Match[str]) -> str:
        name = match.group(1)
        table = table_mapping.get(name)
        if table:
            resolved.append(name)
            return table
        missing.append(name)
        return match.group(0)

    output = TEMPLATE_VAR.sub(replace, text)
    return Interpolation(output=output, resolved=tuple(resolved), missing=tuple(missing))


def interpolate_params(text: str, context: TemplateContext) -> Interpolation:
    """Replace ``${inputs.X}`` and ``${metadata.X}`` with escaped literals.

    Both namespaces are substituted in a single scan of ``text``; a value's
    escaped literal is never scanned again, so ``${...}`` text inside an
    input value stays inside its quotes.

    A missing or ``None`` value is written as ``NULL`` and reported in
    ``missing``; execution is expected to continue.

    """
    resolved: list[str] = []
    missing: list[str] = []
    namespaces = {"inputs": context.inputs, "metadata": context.metadata}

    def replace(match: re.Match[str]) -> str:
        namespace, name = match.group(1), match.group(2)
        qualified = f"{namespace}.{name}"
        value = namespaces[namespace].get(name)
        if value is None:
            missing.append(qualified)
            return "NULL"
        resolved.append(qualified)
        return escape_literal(value)

    output = PARAM_VAR.sub(replace, text)
    return Interpolation(output=output, resolved=tuple(resolved), missing=tuple(missing))


def interpolate_full(
    text: str,
    table_mapping: TableMapping,
    context: TemplateContext,
) -> Interpolation:
    """Resolve block references, then substitute parameter values."""
    blocks = resolve_block_refs(text, table_mapping)
    params = interpolate_params(blocks.output, context)
    return Interpolation(
        output=params.output,
        resolved=(*blocks.resolved, *params.resolved),
        missing=(*blocks.missing, *params.missing),
    )


def validate_context(text: str, context: TemplateContext) -> list[str]:
    """Qualified names of parameters in ``text`` with no value in ``context``."""
    variables = extract_variables(text)
    missing = [f"inputs.{n}" for n in variables.input_names if context.inputs.get(n) is None]
    missing += [
        f"metadata.{n}" for n in variables.metadata_names if context.metadata.get(n) is None
    ]
    return missing


def _unique(names: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for name in names:
        if name not in seen:
            seen.add(name)
            result.append(name)
    return result
