"""Inkwell — reactive SQL reports.

A report is a markdown document whose fenced SQL blocks read from each
other (``${sales}``, ``FROM sales``) and from external inputs
(``${inputs.region}``).  Inkwell works out the order blocks must run in,
and when an input changes, re-executes exactly the blocks that are stale.

Quick start::

    import inkwell

    session = inkwell.ReportSession("q3", inkwell.DryRunExecutor())
    await session.execute(markdown_text, {"region": "EU"})
    await session.on_inputs_changed({"region": "US"})

Pure analysis, no executor needed::

    report = inkwell.parse_report(markdown_text)
    analysis = inkwell.analyze_dependencies(report.blocks)
    analysis.execution_order

"""

# PEP 703: Declare this module as free-threading safe
_Py_mod_gil = 0

__version__ = "0.1.0.dev0"
__all__ = [
    "DryRunExecutor",
    "InkwellConfig",
    "InputStore",
    "ReportSession",
    "SessionRegistry",
    "__version__",
    "analyze_dependencies",
    "compare_snapshots",
    "find_affected",
    "interpolate_full",
    "load_config",
    "parse_report",
]

# name -> defining module, imported on first access
_LAZY = {
    "DryRunExecutor": "inkwell.execution.dry_run",
    "InkwellConfig": "inkwell.config",
    "InputStore": "inkwell.inputs.store",
    "ReportSession": "inkwell.reactive.pipeline",
    "SessionRegistry": "inkwell.reactive.pipeline",
    "analyze_dependencies": "inkwell.reactive.graph",
    "compare_snapshots": "inkwell.inputs.differ",
    "find_affected": "inkwell.reactive.resolver",
    "interpolate_full": "inkwell.sql.template",
    "load_config": "inkwell.config_loader",
    "parse_report": "inkwell.document.parser",
}


def __getattr__(name: str) -> object:
    """Lazy imports for the public API.

    Keeps ``import inkwell`` fast while providing a clean top-level API.
    """
    module_name = _LAZY.get(name)
    if module_name is None:
        msg = f"module {__name__!r} has no attribute {name!r}"
        raise AttributeError(msg)

    import importlib

    return getattr(importlib.import_module(module_name), name)
