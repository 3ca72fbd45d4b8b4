"""Load InkwellConfig from inkwell.yaml if present.

Merges file config with CLI kwargs. CLI overrides file.
"""

from __future__ import annotations

import tomllib
from pathlib import Path

import yaml

from inkwell._errors import ConfigError
from inkwell.config import InkwellConfig

_CONFIG_KEYS = (
    "table_prefix", "sql_languages", "artifact_languages",
    "max_events", "verbose", "inputs_file",
)


def load_config(root: Path, **overrides: object) -> InkwellConfig:
    """Load InkwellConfig from root, optionally merging inkwell.yaml.

    Looks for inkwell.yaml, inkwell.yml, or inkwell.toml in root. If found,
    loads and merges with overrides. Overrides take precedence; ``None``
    overrides are ignored so unset CLI flags don't mask file values.
    """
    file_config = _read_inkwell_config(root)
    merged = {**file_config, **{k: v for k, v in overrides.items() if v is not None}}
    unknown = sorted(set(merged) - set(_CONFIG_KEYS))
    if unknown:
        msg = f"Unknown config keys: {', '.join(unknown)}"
        raise ConfigError(msg)
    return InkwellConfig(root=root, **merged)  # type: ignore[arg-type]


def _read_inkwell_config(root: Path) -> dict[str, object]:
    """Read inkwell config from yaml/toml if present. Returns empty dict otherwise."""
    for name in ("inkwell.yaml", "inkwell.yml"):
        path = root / name
        if path.is_file():
            return _parse_yaml(path)
    toml_path = root / "inkwell.toml"
    if toml_path.is_file():
        return _parse_toml(toml_path)
    return {}


def _parse_yaml(path: Path) -> dict[str, object]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        msg = f"Invalid YAML in {path.name}: {exc}"
        raise ConfigError(msg) from exc
    if not isinstance(data, dict):
        msg = f"{path.name} must contain a mapping"
        raise ConfigError(msg)
    return _flatten_inkwell_section(data)


def _parse_toml(path: Path) -> dict[str, object]:
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        msg = f"Invalid TOML in {path.name}: {exc}"
        raise ConfigError(msg) from exc
    return _flatten_inkwell_section(data)


def _flatten_inkwell_section(data: dict[str, object]) -> dict[str, object]:
    """Extract inkwell.* keys into top-level config."""
    result: dict[str, object] = {}
    section = data.get("inkwell")
    if isinstance(section, dict):
        result.update(section)
    for k, v in data.items():
        if k != "inkwell" and k in _CONFIG_KEYS:
            result[k] = v
    return result


def load_inputs(path: Path) -> dict[str, object]:
    """Read input values from a YAML or TOML file.

    Values may sit at the top level or under an ``inputs:`` section.
    TOML is chosen by the ``.toml`` suffix; anything else is read as YAML.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        msg = f"Cannot read inputs file {path}: {exc}"
        raise ConfigError(msg) from exc

    try:
        if path.suffix == ".toml":
            data = tomllib.loads(text)
        else:
            data = yaml.safe_load(text) or {}
    except (yaml.YAMLError, tomllib.TOMLDecodeError) as exc:
        msg = f"Invalid inputs file {path.name}: {exc}"
        raise ConfigError(msg) from exc

    if not isinstance(data, dict):
        msg = f"{path.name} must contain a mapping"
        raise ConfigError(msg)
    section = data.get("inputs")
    if isinstance(section, dict):
        return dict(section)
    return data
