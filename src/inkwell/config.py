"""Inkwell configuration.

InkwellConfig is the central configuration object, frozen after creation.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path


@dataclass(frozen=True, slots=True)
class InkwellConfig:
    """Configuration for an Inkwell report workspace.

    Attributes:
        root: Path to the workspace root (contains reports and inkwell.yaml).
              Always resolved to an absolute path on construction.
        table_prefix: Prefix for the physical tables that hold block results.
            A block ``block_3`` materializes into ``chart_data_block_3``.
        sql_languages: Fence languages treated as SQL blocks.
        artifact_languages: Fence languages treated as derived artifacts
            (charts and similar consumers of a block's result table).
        max_events: Capacity of the observability event log.
        verbose: Print a one-line timing summary after each reactive run.
        inputs_file: Default inputs file (YAML or TOML) for ``render`` and ``watch``.

    """

    root: Path = field(default_factory=Path.cwd)
    table_prefix: str = "chart_data_"
    sql_languages: tuple[str, ...] = ("sql",)
    artifact_languages: tuple[str, ...] = ("chart", "histogram")
    max_events: int = 10_000
    verbose: bool = False
    inputs_file: str | None = None

    def __post_init__(self) -> None:
        if not self.root.is_absolute():
            object.__setattr__(self, "root", self.root.resolve())
        object.__setattr__(self, "sql_languages", _languages(self.sql_languages))
        object.__setattr__(self, "artifact_languages", _languages(self.artifact_languages))

    @property
    def inputs_path(self) -> Path | None:
        """Absolute path to the default inputs file, if configured."""
        if self.inputs_file is None:
            return None
        path = Path(self.inputs_file)
        if path.is_absolute():
            return path
        return self.root / path

    def table_name(self, block_id: str) -> str:
        """Physical table name for a block's materialized result."""
        return f"{self.table_prefix}{block_id}"


def _languages(value: str | Iterable[str]) -> tuple[str, ...]:
    """Normalize a fence language setting to a lowercase tuple.

    Config files may give a single name (``sql_languages: sql``) or a list.
    Fence languages are matched lowercased, so entries are lowercased too.
    """
    if isinstance(value, str):
        return (value.lower(),)
    return tuple(name.lower() for name in value)
