"""Inkwell error hierarchy.

All inkwell-specific errors inherit from InkwellError for easy catching.
Cycles, unresolved references and missing template values are reported as
data on analysis results, never raised.
"""


class InkwellError(Exception):
    """Base error for all inkwell operations."""


class ConfigError(InkwellError):
    """Invalid or missing configuration."""


class ParseError(InkwellError):
    """The report document could not be parsed into blocks."""


class ValidationError(InkwellError):
    """A block or variable name violates the naming or reference rules."""


class ExecutionError(InkwellError):
    """The query executor failed during a full report run."""


class ReactiveError(InkwellError):
    """Error in the reactive session (state transitions, re-execution)."""
