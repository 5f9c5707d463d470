#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
simplecfg/__main__.py
=====================

Command-line entry point.

Usage
-----
    python -m simplecfg [global options] <command> [options] FILE...

Commands
--------
    analyze     Report already-closed and nullable-dereference findings
    print-cfg   Print the control-flow graph of every body as DOT
    gen-test    Print a pytest test asserting the CFG of the first body
    serve       Run the HTTP analyzer service

Pipeline
--------

    .java source
        │
        ▼
    ┌──────────────┐
    │  javalang     │   source → syntax tree
    └────┬─────────┘
         │
         ▼
    ┌──────────────┐
    │  CFG builder  │   one graph per method / constructor / initializer
    └────┬─────────┘
         │
         ▼
    ┌──────────────┐
    │  Checkers     │   forward dataflow over each graph
    └────┬─────────┘
         │
         ▼
    findings  ──▶  stdout  |  notes over HTTP (serve)
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import textwrap
import traceback
from typing import List, Optional, Sequence

from . import __version__
from .ast_helper import iter_bodies, parse_unit
from .config import DEFAULT_CONFIG, DEFAULT_PORT, AnalyzerConfig
from .ctrlflow_graph import build_all_cfgs, build_cfg, cfg_summary, generate_cfg_test
from .errors import AnalyzerError, SimpleCfgError
from .findings import Finding
from .frontend import analyze

__description__ = "Control-flow based checks for Java source files."


def _read_source(path: str) -> str:
    with open(path, encoding="utf-8") as fh:
        return fh.read()


def config_from_args(args: argparse.Namespace) -> AnalyzerConfig:
    """Build an :class:`AnalyzerConfig` from the parsed global options."""
    return DEFAULT_CONFIG.with_options(
        port=getattr(args, "port", None),
        host=getattr(args, "host", None),
        nullable_annotations=args.nullable_annotation,
        extra_closeable_types=args.closeable_type,
        disabled_checkers=args.disable,
    )


def _test_name(path: str) -> str:
    stem = os.path.splitext(os.path.basename(path))[0]
    name = "".join(c if c.isalnum() else "_" for c in stem).lower()
    return name or "cfg"


# ═══════════════════════════════════════════════════════════════════════════
#  COMMAND HANDLERS
# ═══════════════════════════════════════════════════════════════════════════

def cmd_analyze(args: argparse.Namespace) -> int:
    """Handle the 'analyze' command."""
    config = config_from_args(args)
    failed = False
    try:
        findings: List[Finding] = analyze(None, args.files, config)
    except AnalyzerError as exc:
        findings = exc.findings
        failed = True
        for failure in exc.failures:
            sys.stderr.write(f"{failure.message}\n")

    sys.stdout.write(f"Found {len(findings)} findings.\n")
    for finding in findings:
        sys.stdout.write(f"{finding}\n")

    if failed:
        return 2
    return 1 if findings else 0


def cmd_print_cfg(args: argparse.Namespace) -> int:
    """Handle the 'print-cfg' command."""
    for path in args.files:
        unit = parse_unit(_read_source(path), path)
        for body, cfg in build_all_cfgs(unit).items():
            if args.summary:
                sys.stdout.write(cfg_summary(cfg) + "\n")
            else:
                sys.stdout.write(cfg.to_dot(title=body.qualified_name,
                                            reverse=args.reverse))
                sys.stdout.write("\n")
    return 0


def cmd_gen_test(args: argparse.Namespace) -> int:
    """Handle the 'gen-test' command."""
    unit = parse_unit(_read_source(args.file), args.file)
    body = next(iter_bodies(unit), None)
    if body is None:
        sys.stderr.write(f"{args.file}: no method, constructor or initializer found\n")
        return 1
    cfg = build_cfg(body)
    sys.stdout.write(generate_cfg_test(cfg, args.name or _test_name(args.file), args.file))
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    """Handle the 'serve' command."""
    from .service import serve

    if not args.verbose:
        logging.getLogger("simplecfg").setLevel(logging.INFO)
    serve(config_from_args(args))
    return 0


# ═══════════════════════════════════════════════════════════════════════════
#  ARGUMENT PARSER
# ═══════════════════════════════════════════════════════════════════════════

def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the simplecfg CLI."""

    parser = argparse.ArgumentParser(
        prog="simplecfg",
        description=__description__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            examples:
              %(prog)s analyze src/main/java/Foo.java
              %(prog)s --nullable-annotation MaybeNull analyze Foo.java
              %(prog)s print-cfg --summary Foo.java
              %(prog)s gen-test Foo.java > test_foo.py
              %(prog)s serve --port 10008
        """),
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        default=False,
        help="Log debug output to stderr",
    )
    parser.add_argument(
        "--nullable-annotation",
        action="append",
        default=[],
        metavar="NAME",
        help="Treat @NAME as a nullable annotation (repeatable)",
    )
    parser.add_argument(
        "--closeable-type",
        action="append",
        default=[],
        metavar="TYPE",
        help="Treat TYPE as a closeable resource (repeatable)",
    )
    parser.add_argument(
        "--disable",
        action="append",
        default=[],
        metavar="CHECKER",
        help="Skip the named checker: already-closed or nullable-dereference (repeatable)",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        title="commands",
        description="available commands",
        metavar="<command>",
    )

    # ── analyze ──────────────────────────────────────────────────────────

    p_analyze = subparsers.add_parser(
        "analyze",
        help="Report findings for Java source files",
        description=(
            "Analyze Java source files and print one finding per line. "
            "Exits with 1 when findings were reported and 2 when a file "
            "could not be analyzed."
        ),
    )
    p_analyze.add_argument("files", nargs="+", metavar="FILE",
                           help="Java source files")
    p_analyze.set_defaults(func=cmd_analyze)

    # ── print-cfg ────────────────────────────────────────────────────────

    p_print = subparsers.add_parser(
        "print-cfg",
        help="Print the CFG of every body as Graphviz DOT",
    )
    p_print.add_argument("files", nargs="+", metavar="FILE",
                         help="Java source files")
    p_print.add_argument(
        "--reverse",
        action="store_true",
        default=False,
        help="Draw edges from successor to predecessor",
    )
    p_print.add_argument(
        "--summary",
        action="store_true",
        default=False,
        help="Print a plain-text node listing instead of DOT",
    )
    p_print.set_defaults(func=cmd_print_cfg)

    # ── gen-test ─────────────────────────────────────────────────────────

    p_gen = subparsers.add_parser(
        "gen-test",
        help="Print a pytest test asserting the CFG of the first body",
    )
    p_gen.add_argument("file", metavar="FILE", help="Java source file")
    p_gen.add_argument("--name", default=None,
                       help="Test function suffix (default: derived from FILE)")
    p_gen.set_defaults(func=cmd_gen_test)

    # ── serve ────────────────────────────────────────────────────────────

    p_serve = subparsers.add_parser(
        "serve",
        help="Run the HTTP analyzer service",
    )
    p_serve.add_argument("--host", default=None,
                         help=f"Interface to bind (default: {DEFAULT_CONFIG.host})")
    p_serve.add_argument("--port", type=int, default=None,
                         help=f"Port to listen on (default: {DEFAULT_PORT})")
    p_serve.set_defaults(func=cmd_serve)

    return parser


# ═══════════════════════════════════════════════════════════════════════════
#  MAIN
# ═══════════════════════════════════════════════════════════════════════════

def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point for the simplecfg CLI.

    Returns
    -------
    int
        0 when clean, 1 when findings were reported, 2 on an analyzer
        error, 130 when interrupted.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return 0

    try:
        return args.func(args)
    except SimpleCfgError as e:
        sys.stderr.write(f"{e}\n")
        return 2
    except KeyboardInterrupt:
        sys.stderr.write("\nInterrupted.\n")
        return 130
    except BrokenPipeError:
        devnull = os.open(os.devnull, os.O_WRONLY)
        os.dup2(devnull, sys.stdout.fileno())
        return 0
    except OSError as e:
        sys.stderr.write(f"{e}\n")
        return 2
    except Exception as e:
        sys.stderr.write(f"Internal error: {e}\n")
        traceback.print_exc()
        return 2


if __name__ == "__main__":
    sys.exit(main())
