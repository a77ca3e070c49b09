#!/usr/bin/env python3
"""metal_analyzer/cli.py — command-line entry point.

Usage examples
--------------
    # Analyze a corpus directory with the default (metal) platform
    metal-analyzer analyze shaders/

    # Provide the macro an owner-only header expects, search include/ first
    metal-analyzer analyze shaders/ -D OWNER_ONLY_DEFINE=2.0f -I include

    # Host fallback build, machine-readable output
    python -m metal_analyzer analyze shaders/ --platform host --format json

Exit codes
----------
    0   No error-severity diagnostics.
    1   One or more diagnostics with severity ERROR were reported.
    2   Infrastructure failure (bad corpus root, bad config file, etc.).

The module doubles as ``python -m metal_analyzer`` via the companion
``metal_analyzer/__main__.py`` which simply calls :func:`main`.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import textwrap
from dataclasses import replace
from pathlib import Path
from typing import (
    Any,
    Dict,
    Optional,
    Sequence,
    TextIO,
)

from . import __version__
from .analyzer import AnalysisResult, Analyzer
from .config import PLATFORM_PRESETS, AnalyzerConfig, parse_macro_definitions
from .corpus import Corpus
from .errors import ConfigError, CorpusError

_log = logging.getLogger("metal_analyzer")

# Exit codes ----------------------------------------------------------------

EXIT_OK: int = 0
EXIT_ERROR: int = 1
EXIT_INFRA: int = 2


# ===========================================================================
# Utility helpers
# ===========================================================================

def _configure_logging(verbosity: int) -> None:
    """Set up the ``metal_analyzer`` logger.

    Parameters
    ----------
    verbosity:
        0 → WARNING, 1 → INFO, 2+ → DEBUG.
    """
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    root = logging.getLogger("metal_analyzer")
    root.setLevel(level)
    if not any(getattr(h, "_metal_analyzer_cli", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s [%(levelname)-5.5s] %(name)s: %(message)s",
                datefmt="%H:%M:%S",
            )
        )
        handler._metal_analyzer_cli = True  # type: ignore[attr-defined]
        root.addHandler(handler)


def _open_output(dest: Optional[str]) -> TextIO:
    """Return a writable text stream.

    *dest* ``None`` or ``"-"`` → ``sys.stdout``; otherwise open the path
    for writing (creating parent directories as needed).
    """
    if dest is None or dest == "-":
        return sys.stdout
    p = Path(dest).expanduser().resolve()
    p.parent.mkdir(parents=True, exist_ok=True)
    return open(p, "w", encoding="utf-8")


def _load_config_file(raw: Optional[str]) -> Dict[str, Any]:
    if raw is None:
        return {}
    path = Path(raw).expanduser()
    try:
        with open(path, encoding="utf-8") as fh:
            data = json.load(fh)
    except OSError as exc:
        raise ConfigError(f"cannot read config file '{path}': {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"config file '{path}' is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"config file '{path}' must contain a JSON object")
    return data


def _build_config(args: argparse.Namespace) -> AnalyzerConfig:
    """Config file first, then command-line flags on top."""
    config = AnalyzerConfig.from_mapping(_load_config_file(args.config))
    overrides: Dict[str, Any] = {}
    if args.include_dirs:
        overrides["search_roots"] = tuple(config.search_roots) + tuple(args.include_dirs)
    if args.platform is not None:
        overrides["platform"] = args.platform
    if args.suppress:
        overrides["suppressed_codes"] = tuple(config.suppressed_codes) + tuple(args.suppress)
    if args.suppress_paths:
        overrides["suppressed_paths"] = tuple(config.suppressed_paths) + tuple(args.suppress_paths)
    if args.owner_context is not None:
        overrides["owner_context_for_headers"] = args.owner_context
    if args.strict_system_includes:
        overrides["strict_system_includes"] = True
    if args.jobs is not None:
        overrides["scan_workers"] = args.jobs
    return replace(config, **overrides) if overrides else config


def _emit(result: AnalysisResult, fmt: str, stream: TextIO) -> None:
    if fmt == "json":
        json.dump(result.to_dict(), stream, indent=2)
        stream.write("\n")
        return
    for diag in result.diagnostics:
        stream.write(diag.to_gcc_format() + "\n")


# ===========================================================================
# Sub-command: analyze
# ===========================================================================

def cmd_analyze(args: argparse.Namespace) -> int:
    """Load the corpus under ROOT, analyze it and report diagnostics.

    Workflow:
        1. Build an ``AnalyzerConfig`` from ``--config`` and the flags.
        2. Load the corpus with ``Corpus.from_directory``.
        3. Run the ``Analyzer`` with the ``-D`` macros.
        4. Emit diagnostics and return an appropriate exit code.
    """
    try:
        macros = parse_macro_definitions(args.defines or [], "-D")
        analyzer = Analyzer(_build_config(args))
        corpus = Corpus.from_directory(args.root, analyzer.config)
    except (ConfigError, CorpusError) as exc:
        _log.error("%s", exc)
        return EXIT_INFRA

    if not len(corpus):
        _log.warning("No analyzable files under %s", args.root)

    result = analyzer.analyze(corpus, macros)

    stream = _open_output(args.output)
    try:
        _emit(result, args.format, stream)
    finally:
        if stream is not sys.stdout:
            stream.close()

    _log.info(
        "%d diagnostic(s), %d error(s), %d warning(s)",
        len(result.diagnostics), result.error_count, result.warning_count,
    )
    return EXIT_ERROR if result.has_errors else EXIT_OK


# ===========================================================================
# Argument parser
# ===========================================================================

def _build_parser() -> argparse.ArgumentParser:
    """Construct the CLI argument parser with subcommands."""
    parser = argparse.ArgumentParser(
        prog="metal-analyzer",
        description=(
            "metal-analyzer — static analysis for Metal Shading Language\n"
            "corpora: conditional compilation, include graphs and symbol\n"
            "resolution without a full compiler."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            examples:
              metal-analyzer analyze shaders/
              metal-analyzer analyze shaders/ -D OWNER_ONLY_DEFINE=2.0f -I include
              metal-analyzer analyze shaders/ --platform host --format json
        """),
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v info, -vv debug).",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        title="commands",
        metavar="<command>",
    )

    p = subparsers.add_parser(
        "analyze",
        help="Analyze a corpus directory.",
        description="Analyze every header and source file under ROOT.",
    )
    p.add_argument("root", metavar="ROOT", help="Corpus root directory.")
    p.add_argument(
        "-D", "--define",
        dest="defines",
        action="append",
        metavar="NAME[=VALUE]",
        help="Predefine a macro (repeatable). NAME alone defines it as 1.",
    )
    p.add_argument(
        "-I", "--include-dir",
        dest="include_dirs",
        action="append",
        metavar="DIR",
        help="Corpus-relative include search root (repeatable, in order).",
    )
    p.add_argument(
        "--platform",
        choices=sorted(PLATFORM_PRESETS),
        default=None,
        help="Platform preset supplying predefined macros (default: metal).",
    )
    p.add_argument(
        "--config",
        default=None,
        metavar="FILE.json",
        help="JSON configuration (camelCase or snake_case keys).",
    )
    p.add_argument(
        "--suppress",
        action="append",
        metavar="CODE",
        help="Suppress a diagnostic code globally (repeatable).",
    )
    p.add_argument(
        "--suppress-path",
        dest="suppress_paths",
        action="append",
        metavar="[CODE:]PATTERN",
        help="Suppress CODE (or every code) in files matching PATTERN (repeatable).",
    )
    p.add_argument(
        "--owner-context",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Analyze included headers only through the files that include them "
             "(default; --no-owner-context makes every file a translation unit).",
    )
    p.add_argument(
        "--strict-system-includes",
        action="store_true",
        help="Report unknown <...> includes as missing.",
    )
    p.add_argument(
        "-j", "--jobs",
        type=int,
        default=None,
        metavar="N",
        help="Threads used for lexing (default: 1).",
    )
    p.add_argument(
        "-o", "--output",
        default=None,
        metavar="FILE",
        help='Output file ("-" or omit for stdout).',
    )
    p.add_argument(
        "-f", "--format",
        choices=["text", "json"],
        default="text",
        help="Output format (default: text).",
    )
    p.set_defaults(func=cmd_analyze)

    return parser


# ===========================================================================
# Main entry point
# ===========================================================================

def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the metal-analyzer CLI.

    Parameters
    ----------
    argv:
        Command-line arguments.  ``None`` → ``sys.argv[1:]``.

    Returns
    -------
    int
        Exit code (see module docstring for semantics).
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    _configure_logging(args.verbose)

    # No subcommand given → print help.
    if not hasattr(args, "func"):
        parser.print_help(sys.stderr)
        return EXIT_INFRA

    try:
        return args.func(args)
    except KeyboardInterrupt:
        _log.info("Interrupted by user.")
        return 130
    except Exception as exc:
        _log.error("Unhandled exception: %s", exc, exc_info=True)
        return EXIT_INFRA


if __name__ == "__main__":
    raise SystemExit(main())
