"""Input snapshot differ — structural diff of two input snapshots.

Compares the input values a report was last executed with against the
current values and reports which parameter names changed, appeared, or
disappeared.  Values are compared structurally rather than by identity, so
a freshly built ``["East", "West"]`` list equals the previous one.
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from inkwell._types import InputSnapshot, ParamName


@dataclass(frozen=True, slots=True)
class InputChanges:
    """Differences between two input snapshots.

    Attributes:
        changed: Names present in both snapshots with unequal values.
        added: Names present only in the new snapshot.
        removed: Names present only in the previous snapshot.

    """

    changed: tuple[ParamName, ...] = field(default=())
    added: tuple[ParamName, ...] = field(default=())
    removed: tuple[ParamName, ...] = field(default=())

    @property
    def has_changes(self) -> bool:
        return bool(self.changed or self.added or self.removed)

    @property
    def names(self) -> tuple[ParamName, ...]:
        """``changed + added + removed``, in that order."""
        return (*self.changed, *self.added, *self.removed)


def compare_snapshots(next_inputs: InputSnapshot, prev_inputs: InputSnapshot) -> InputChanges:
    """Diff ``next_inputs`` against ``prev_inputs``.

    Key order follows ``next_inputs`` for changed/added names and
    ``prev_inputs`` for removed names.

    """
    changed: list[ParamName] = []
    added: list[ParamName] = []
    for key, value in next_inputs.items():
        if key not in prev_inputs:
            added.append(key)
        elif not values_equal(value, prev_inputs[key]):
            changed.append(key)

    removed = [key for key in prev_inputs if key not in next_inputs]

    return InputChanges(changed=tuple(changed), added=tuple(added), removed=tuple(removed))


def list_changed_names(next_inputs: InputSnapshot, prev_inputs: InputSnapshot) -> list[ParamName]:
    """Names of every changed, added, or removed parameter."""
    return list(compare_snapshots(next_inputs, prev_inputs).names)


def values_equal(a: object, b: object) -> bool:
    """Deep structural equality for input values.

    - Sequences (list or tuple) compare element-wise.
    - Dates and datetimes compare by instant; a date never equals a datetime.
    - Mappings compare by key set and recursive value equality.
    - Type mismatches are never equal: ``True`` differs from ``1`` and
      ``"1"`` differs from ``1``.  Ints and floats are both numbers.
    - Two NaNs are equal, so an unchanged NaN input is not a change.

    """
    if a is b:
        return True
    if a is None or b is None:
        return False

    if isinstance(a, bool) or isinstance(b, bool):
        return type(a) is type(b) and a == b

    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        if isinstance(a, float) and isinstance(b, float) and math.isnan(a) and math.isnan(b):
            return True
        return a == b

    if isinstance(a, str) or isinstance(b, str):
        return isinstance(a, str) and isinstance(b, str) and a == b

    if isinstance(a, date) and isinstance(b, date):
        return type(a) is type(b) and a == b

    if isinstance(a, Mapping) and isinstance(b, Mapping):
        if a.keys() != b.keys():
            return False
        return all(values_equal(a[k], b[k]) for k in a)

    if _is_array(a) and _is_array(b):
        if len(a) != len(b):  # type: ignore[arg-type]
            return False
        return all(values_equal(x, y) for x, y in zip(a, b, strict=True))  # type: ignore[call-overload]

    return type(a) is type(b) and a == b


def _is_array(value: object) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes))
