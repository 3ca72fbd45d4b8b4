"""Report parser — markdown source to blocks.

Reports are markdown files.  Front matter (YAML between ``---`` lines)
becomes report metadata for ``${metadata.*}``; every fenced code block
becomes a ``Block``:

    ```sql sales
    SELECT * FROM orders WHERE region = ${inputs.region}
    ```

The fence language decides the kind (``sql`` joins the dependency graph);
the rest of the info string is the block alias.  Chart-like fences name
the block they visualize with a ``data:`` line.

Parsing is delegated to Patitas; this module only walks its AST.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import yaml

from inkwell._errors import ParseError
from inkwell.document.blocks import Block

if TYPE_CHECKING:
    from collections.abc import Iterator

    from inkwell.config import InkwellConfig


@dataclass(frozen=True, slots=True)
class ParsedReport:
    """Result of parsing a report document.

    Attributes:
        blocks: Every fenced block in document order.
        metadata: Front matter values.

    """

    blocks: tuple[Block, ...]
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def sql_blocks(self) -> tuple[Block, ...]:
        return tuple(b for b in self.blocks if b.is_sql)


def split_frontmatter(source: str) -> tuple[str, str]:
    """Split ``source`` into (front matter text, body).

    Front matter is delimited by ``---`` on its own line at the start of the
    file.  Without a closing delimiter the whole source is body.

    """
    if not source.startswith("---"):
        return "", source
    end = source.find("\n---", 3)
    if end == -1:
        return "", source
    front = source[3:end].strip("\n")
    body = source[end + 4:]
    # Drop the remainder of the closing delimiter line
    newline = body.find("\n")
    body = "" if newline == -1 else body[newline + 1:]
    return front, body


def parse_report(source: str, config: InkwellConfig | None = None) -> ParsedReport:
    """Parse a markdown report into blocks and metadata.

    Raises:
        ParseError: Front matter is not a YAML mapping, or Patitas rejected
            the markdown body.

    """
    from patitas import parse

    sql_languages = config.sql_languages if config is not None else ("sql",)
    artifact_languages = (
        config.artifact_languages if config is not None else ("chart", "histogram")
    )

    front, body = split_frontmatter(source)
    metadata = _parse_metadata(front)

    try:
        doc = parse(body)
    except Exception as exc:
        msg = f"Failed to parse report markdown: {exc}"
        raise ParseError(msg) from exc

    blocks: list[Block] = []
    for index, node in enumerate(_iter_fences(doc)):
        language, _, rest = (node.info or "").strip().partition(" ")
        language = language.lower() or "text"
        content = _fence_code(node, body)
        block_id = f"block_{index}"

        if language in sql_languages:
            blocks.append(
                Block(
                    id=block_id,
                    content=content,
                    kind="sql",
                    alias_name=rest.strip() or None,
                    language=language,
                )
            )
            continue

        data_source = None
        if language in artifact_languages:
            data_source = _chart_data_source(content)
        blocks.append(
            Block(
                id=block_id,
                content=content,
                kind="other",
                alias_name=rest.strip() or None,
                language=language,
                data_source=data_source,
            )
        )

    return ParsedReport(blocks=tuple(blocks), metadata=metadata)


def _parse_metadata(front: str) -> dict[str, Any]:
    if not front:
        return {}
    try:
        data = yaml.safe_load(front)
    except yaml.YAMLError as exc:
        msg = f"Invalid front matter: {exc}"
        raise ParseError(msg) from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        msg = "Front matter must be a mapping"
        raise ParseError(msg)
    return data


def _iter_fences(node: Any) -> Iterator[Any]:
    """Yield FencedCode nodes depth-first in document order."""
    from patitas.nodes import FencedCode

    for child in getattr(node, "children", None) or ():
        if isinstance(child, FencedCode):
            yield child
        else:
            yield from _iter_fences(child)


def _fence_code(node: Any, source: str) -> str:
    """Code text of a fence.

    Patitas stores fence contents as offsets into the source it parsed;
    ``content_override`` is set when the node was built from a string.

    """
    if node.content_override is not None:
        return node.content_override.rstrip("\n")
    return source[node.source_start:node.source_end].rstrip("\n")


def _chart_data_source(content: str) -> str | None:
    for line in content.splitlines():
        key, sep, value = line.strip().partition(":")
        if sep and key.strip() == "data":
            return value.strip() or None
    return None
