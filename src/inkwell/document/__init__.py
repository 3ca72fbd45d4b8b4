"""Document layer — blocks, reference extraction, and report parsing."""

from inkwell.document.blocks import Block, find_block, sql_blocks
from inkwell.document.parser import ParsedReport, parse_report
from inkwell.document.references import (
    BlockReferences,
    Reference,
    extract_all_references,
    extract_input_references,
    extract_references,
)

__all__ = [
    "Block",
    "BlockReferences",
    "ParsedReport",
    "Reference",
    "extract_all_references",
    "extract_input_references",
    "extract_references",
    "find_block",
    "parse_report",
    "sql_blocks",
]
