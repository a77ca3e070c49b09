# tests/conftest.py
"""
Shared fixtures and helpers for the metal-analyzer test-suite.
"""

from pathlib import Path
from typing import Dict, Optional

import pytest

from metal_analyzer.config import AnalyzerConfig
from metal_analyzer.corpus import Corpus
from metal_analyzer.diagnostics import Diagnostic, DiagnosticCode
from metal_analyzer.macros import MacroEnvironment, MacroSnapshot
from metal_analyzer.preprocessor import PreprocessedFile, preprocess
from metal_analyzer.scanner import scan_text

FIXTURE_ROOT = Path(__file__).parent / "fixtures" / "corpus_cases"

OWNER_ONLY_HEADER = "matmul/common/problematic_owner_only.h"
TEMPLATE_MATH_HEADER = "matmul/common/template_math.h"
GENERATED_MATMUL_HEADER = "generated/matmul.h"


def snapshot_of(macros: Optional[Dict[str, Optional[str]]] = None) -> MacroSnapshot:
    """Snapshot defining ``macros`` (``None`` values mean "1")."""
    return MacroEnvironment.from_mapping(macros or {}).snapshot()


def run_preprocessor(
    text: str,
    macros: Optional[Dict[str, Optional[str]]] = None,
    path: str = "test.h",
    **handlers,
) -> PreprocessedFile:
    """Scan ``text`` and preprocess it under ``macros``."""
    return preprocess(scan_text(path, text), snapshot_of(macros), **handlers)


def texts(tokens) -> list:
    return [t.text for t in tokens]


def codes(diagnostics) -> list:
    return [d.code for d in diagnostics]


def only(diagnostics, code: DiagnosticCode) -> list:
    return [d for d in diagnostics if d.code is code]


@pytest.fixture(scope="session")
def fixture_root() -> Path:
    return FIXTURE_ROOT


@pytest.fixture
def fixture_corpus() -> Corpus:
    """The seven-file corpus under tests/fixtures/corpus_cases."""
    return Corpus.from_directory(FIXTURE_ROOT, AnalyzerConfig())


@pytest.fixture
def make_corpus():
    """Factory: ``make_corpus({"a.metal": "..."})`` → Corpus."""
    def _make(files: Dict[str, str]) -> Corpus:
        return Corpus.from_pairs(files)
    return _make
