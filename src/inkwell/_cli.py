"""Inkwell CLI — inkwell analyze / inkwell render / inkwell watch.

Entry point for the ``inkwell`` command-line interface.  All commands run
against the dry-run executor: they show what would execute, in which order,
with which SQL, without touching a database.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from inkwell._types import ParamName
    from inkwell.config import InkwellConfig
    from inkwell.document.blocks import Block
    from inkwell.execution.dry_run import DryRunExecutor
    from inkwell.reactive.pipeline import DocumentState


def _build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the inkwell CLI."""
    parser = argparse.ArgumentParser(
        prog="inkwell",
        description="Dependency analysis and reactive re-execution for SQL reports.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {_get_version()}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # inkwell analyze
    analyze_parser = subparsers.add_parser(
        "analyze",
        help="Show execution order, cycles and unresolved references",
    )
    analyze_parser.add_argument("report", help="Markdown report file")
    analyze_parser.add_argument("--root", default=None, help="Workspace root (default: report directory)")

    # inkwell render
    render_parser = subparsers.add_parser(
        "render",
        help="Print each block's interpolated SQL in execution order",
    )
    render_parser.add_argument("report", help="Markdown report file")
    render_parser.add_argument("--root", default=None, help="Workspace root (default: report directory)")
    render_parser.add_argument(
        "--input",
        action="append",
        default=[],
        metavar="NAME=VALUE",
        help="Input value (YAML scalar or list); repeatable",
    )
    render_parser.add_argument("--inputs", default=None, help="YAML or TOML inputs file")

    # inkwell watch
    watch_parser = subparsers.add_parser(
        "watch",
        help="Re-execute affected blocks whenever the inputs file changes",
    )
    watch_parser.add_argument("report", help="Markdown report file")
    watch_parser.add_argument("--root", default=None, help="Workspace root (default: report directory)")
    watch_parser.add_argument("--inputs", default=None, help="YAML or TOML inputs file")
    watch_parser.add_argument("--verbose", action="store_true", default=None, help="Print stage timings")

    return parser


def _get_version() -> str:
    """Get the package version."""
    from inkwell import __version__

    return __version__


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    from inkwell._errors import InkwellError

    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    try:
        if args.command == "analyze":
            status = _analyze(args)
        elif args.command == "render":
            status = _render(args)
        else:
            status = _watch(args)
    except InkwellError as exc:
        print(f"inkwell: {exc}", file=sys.stderr)
        sys.exit(1)

    sys.exit(status)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _analyze(args: argparse.Namespace) -> int:
    from inkwell.document.parser import parse_report
    from inkwell.reactive.graph import analyze_dependencies

    report_path = Path(args.report)
    config = _load_config(report_path, args.root)
    report = parse_report(_read_report(report_path), config)
    analysis = analyze_dependencies(report.blocks)
    aliases = {b.id: b.alias_name for b in report.blocks}

    print("Execution order:")
    for position, block_id in enumerate(analysis.execution_order, 1):
        deps = analysis.dependency_map.get(block_id, [])
        label = _label(block_id, aliases.get(block_id))
        after = f"  <- {', '.join(deps)}" if deps else ""
        print(f"  {position}. {label}{after}")

    if analysis.cycles:
        print("Cycles:")
        for cycle in analysis.cycles:
            print(f"  {' -> '.join(cycle)}")
    for entry in analysis.missing_dependencies:
        print(f"Unresolved in {entry.block_id}: {', '.join(entry.missing)}")
    for block_id in analysis.self_references:
        print(f"Self-reference: {block_id}")

    return 0 if analysis.is_valid else 1


def _render(args: argparse.Namespace) -> int:
    from inkwell.execution.dry_run import DryRunExecutor
    from inkwell.reactive.pipeline import ReportSession

    report_path = Path(args.report)
    config = _load_config(report_path, args.root)
    inputs = _collect_inputs(config, args.inputs, args.input)
    source = _read_report(report_path)

    executor = DryRunExecutor(config)
    session = ReportSession(report_path.stem, executor, config=config)
    result = asyncio.run(session.execute(source, inputs))

    _print_statements(session.blocks, executor, result.executed)
    for issue in result.issues:
        print(f"-- warning: {issue}", file=sys.stderr)
    return 0 if result.success else 1


def _watch(args: argparse.Namespace) -> int:
    from inkwell.config_loader import load_inputs
    from inkwell.execution.dry_run import DryRunExecutor
    from inkwell.inputs.store import InputStore
    from inkwell.reactive.pipeline import ReportSession
    from inkwell.watcher import InputsWatcher

    report_path = Path(args.report)
    config = _load_config(report_path, args.root, verbose=args.verbose)
    inputs_path = Path(args.inputs) if args.inputs else config.inputs_path
    if inputs_path is None:
        print("inkwell watch: --inputs FILE is required (or set inputs_file)", file=sys.stderr)
        return 2

    source = _read_report(report_path)
    executor = DryRunExecutor(config)

    def on_update(state: DocumentState) -> None:
        names = ", ".join(state.updated) or "nothing"
        print(f"-- generation {state.generation}: re-executed {names}")
        _print_statements(state.blocks, executor, state.updated)

    async def run() -> None:
        store = InputStore(load_inputs(inputs_path))
        session = ReportSession(report_path.stem, executor, config=config, observer=on_update)
        await session.execute(source, store.snapshot())
        session.attach(store)

        watcher = InputsWatcher(inputs_path, store)
        watcher.start()
        print(f"  Watching {inputs_path} (Ctrl+C to stop)", file=sys.stderr)
        try:
            while watcher.is_running:
                await asyncio.sleep(0.2)
        finally:
            watcher.stop()
            session.close()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass
    return 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_config(report_path: Path, root: str | None, **overrides: Any) -> InkwellConfig:
    from inkwell.config_loader import load_config

    base = Path(root) if root else report_path.parent
    return load_config(base, **overrides)


def _read_report(path: Path) -> str:
    from inkwell._errors import ConfigError

    try:
        return path.read_text(encoding="utf-8")
    except OSError as exc:
        msg = f"Cannot read report {path}: {exc}"
        raise ConfigError(msg) from exc


def _collect_inputs(
    config: InkwellConfig,
    inputs_file: str | None,
    pairs: list[str],
) -> dict[ParamName, Any]:
    """Merge the inputs file (if any) with ``--input NAME=VALUE`` pairs."""
    from inkwell.config_loader import load_inputs

    inputs: dict[ParamName, Any] = {}
    path = Path(inputs_file) if inputs_file else config.inputs_path
    if path is not None:
        inputs.update(load_inputs(path))
    for pair in pairs:
        name, value = _parse_pair(pair)
        inputs[name] = value
    return inputs


def _parse_pair(pair: str) -> tuple[ParamName, Any]:
    """Split ``NAME=VALUE``; VALUE is read as a YAML scalar or flow list."""
    import yaml

    from inkwell._errors import ConfigError

    name, sep, raw = pair.partition("=")
    name = name.strip()
    if not sep or not name:
        msg = f"Expected NAME=VALUE, got {pair!r}"
        raise ConfigError(msg)
    try:
        value = yaml.safe_load(raw) if raw.strip() else ""
    except yaml.YAMLError:
        value = raw
    return name, value


def _print_statements(blocks: tuple[Block, ...], executor: DryRunExecutor, block_ids: tuple[str, ...]) -> None:
    aliases = {b.id: b.alias_name for b in blocks}
    for block_id in block_ids:
        sql = executor.statements.get(block_id)
        if sql is None:
            continue
        label = _label(block_id, aliases.get(block_id))
        print(f"-- {label} -> {executor.table_name(block_id)}")
        print(sql.rstrip())
        print()


def _label(block_id: str, alias: str | None) -> str:
    return f"{block_id} ({alias})" if alias else block_id


if __name__ == "__main__":
    main()
