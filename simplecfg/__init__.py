"""simplecfg — control-flow based checks for Java sources.

Builds a simplified control-flow graph for every method, constructor and
initializer of a Java compilation unit and runs forward dataflow
analyses over it to report two kinds of findings: calls on a resource
that may already have been closed, and dereferences of variables
declared ``@Nullable``.

Submodules
----------
ast_helper
    javalang front-end: ``parse_unit``, body enumeration, local
    variables, the closeable type hierarchy, expression helpers.

ctrlflow_graph
    ``FlowNode`` / ``CFG`` and the builder; DOT output, summaries and
    test generation.

dataflow_engine
    Lattices (``FlatLattice``, ``MapLattice``) and the worklist
    ``IntraproceduralSolver``.

checkers
    ``AlreadyClosedChecker``, ``NullableDereferenceChecker`` and the
    ``CheckerRunner``.

findings
    ``Finding`` / ``Fix`` / ``Replacement`` value objects.

frontend
    ``analyze_source``, ``analyze_file`` and the batch ``analyze``.

adapter
    pydantic ``Note`` models for the wire.

service
    FastAPI application and ``serve`` (uvicorn, port 10008).

errors, config
    Exception hierarchy and ``AnalyzerConfig``.

Usage
-----
Command-line::

    python -m simplecfg analyze Foo.java
    python -m simplecfg print-cfg --summary Foo.java
    python -m simplecfg serve --port 10008

Programmatic::

    from simplecfg.frontend import analyze_source

    for finding in analyze_source(source, "Foo.java"):
        print(finding)
"""

from __future__ import annotations

__version__: str = "0.1.0"
__all__: list[str] = [
    "__version__",
    "adapter",
    "ast_helper",
    "checkers",
    "config",
    "ctrlflow_graph",
    "dataflow_engine",
    "errors",
    "findings",
    "frontend",
    "service",
]
