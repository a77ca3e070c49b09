"""metal_analyzer — static analysis for Metal Shading Language corpora.

Builds a model of what each file of a header/source corpus declares and
requires, then reports missing macro dependencies, unresolved symbols,
overload conflicts and broken include graphs without running a compiler.

Submodules
----------
macros, expression, conditional
    Macro environment, ``#if`` expression grammar (parsimonious) and the
    conditional-compilation stack.
lexer, scanner, preprocessor
    Tokens, logical lines and directives, and the per-file macro-aware
    walk.
includes
    Include graph keyed by (path, macro fingerprint), with cycle detection
    and memoization.
declarations, symbols, resolver
    Declaration model, overload sets, call-site resolution.
diagnostics
    ``Diagnostic`` model, suppressions and the ordering engine.
config, corpus, analyzer, cli
    Run configuration, corpus loading, orchestration and the command line.

Usage
-----
Command-line::

    python -m metal_analyzer analyze shaders/ -D OWNER_ONLY_DEFINE=2.0f

Programmatic::

    from metal_analyzer import Analyzer, AnalyzerConfig, Corpus

    corpus = Corpus.from_directory("shaders")
    result = Analyzer(AnalyzerConfig(platform="metal-ios")).analyze(corpus)
    for diag in result.diagnostics:
        print(diag.to_gcc_format())
"""

from __future__ import annotations

__version__: str = "0.1.0"

from .analyzer import AnalysisResult, Analyzer, analyze
from .config import PLATFORM_PRESETS, AnalyzerConfig
from .corpus import Corpus, SourceFile
from .diagnostics import Diagnostic, DiagnosticCode, Severity, SourceLocation
from .errors import (
    AnalyzerError,
    ConditionError,
    ConfigError,
    CorpusError,
    DirectiveError,
    MalformedDirectiveError,
)

__all__: list[str] = [
    "__version__",
    "AnalysisResult",
    "Analyzer",
    "analyze",
    "AnalyzerConfig",
    "PLATFORM_PRESETS",
    "Corpus",
    "SourceFile",
    "Diagnostic",
    "DiagnosticCode",
    "Severity",
    "SourceLocation",
    "AnalyzerError",
    "DirectiveError",
    "MalformedDirectiveError",
    "ConditionError",
    "ConfigError",
    "CorpusError",
]
