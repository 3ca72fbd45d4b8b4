"""Input layer — parameter values and change detection."""

from inkwell.inputs.differ import InputChanges, compare_snapshots, list_changed_names, values_equal
from inkwell.inputs.store import InputStore

__all__ = [
    "InputChanges",
    "InputStore",
    "compare_snapshots",
    "list_changed_names",
    "values_equal",
]
