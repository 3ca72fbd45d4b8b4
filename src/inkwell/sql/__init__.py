"""SQL layer — template variable substitution with literal escaping."""

from inkwell.sql.template import (
    ExtractedVariables,
    Interpolation,
    TemplateContext,
    escape_literal,
    extract_variables,
    interpolate_full,
    interpolate_params,
    resolve_block_refs,
    validate_context,
)

__all__ = [
    "ExtractedVariables",
    "Interpolation",
    "TemplateContext",
    "escape_literal",
    "extract_variables",
    "interpolate_full",
    "interpolate_params",
    "resolve_block_refs",
    "validate_context",
]
