"""Shared type definitions for inkwell."""

from collections.abc import Callable, Mapping, Sequence
from datetime import date, datetime
from typing import Any, Literal

# Kind of a document block; only "sql" blocks join the dependency graph
type BlockKind = Literal["sql", "other"]

# Unique block identifier (e.g., "block_0")
type BlockId = str

# Name of an external input parameter (the NAME in ${inputs.NAME})
type ParamName = str

# Scalar input value
type Primitive = str | int | float | bool | None

# Any value an input parameter may hold
type InputValue = Primitive | datetime | date | Sequence[Primitive]

# Parameter name -> value
type InputSnapshot = Mapping[ParamName, InputValue]

# Logical block name or id -> physical table name
type TableMapping = Mapping[str, str]

# Lifecycle of a report session
type SessionState = Literal[
    "uninitialized", "awaiting_baseline", "steady", "re_executing", "closed"
]

# Input store subscriber
type InputCallback = Callable[[dict[ParamName, Any]], None]
