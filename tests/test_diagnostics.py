# tests/test_diagnostics.py
"""
Tests for the diagnostic model, suppressions and the final merge stage.
"""

import json

import pytest

from metal_analyzer.diagnostics import (
    Diagnostic,
    DiagnosticCode,
    DiagnosticEngine,
    Severity,
    SourceLocation,
    SuppressionManager,
    count_by_severity,
)


def diag(code=DiagnosticCode.MISSING_INCLUDE, file="a.h", line=1, column=1, message="m"):
    return Diagnostic.make(code, SourceLocation(file, line, column), message)


class TestDiagnostic:

    def test_default_severity(self):
        assert diag(DiagnosticCode.EXPLICIT_ERROR).severity is Severity.ERROR
        assert diag(DiagnosticCode.MACRO_REDEFINITION).severity is Severity.WARNING
        assert diag(DiagnosticCode.AMBIGUOUS_OVERLOAD).severity is Severity.WARNING
        assert diag(DiagnosticCode.UNRESOLVED_REFERENCE).severity is Severity.ERROR

    def test_gcc_format(self):
        d = diag(DiagnosticCode.EXPLICIT_ERROR, "x/y.h", 4, 1, "owner_missing_symbol")
        assert d.to_gcc_format() == "x/y.h:4:1: error: owner_missing_symbol [explicit-error]"

    def test_location_without_column(self):
        assert str(SourceLocation("a.h", 3)) == "a.h:3"

    def test_json(self):
        d = diag(message="cannot find include file \"x.h\"")
        assert json.loads(d.to_json_str()) == d.to_dict()
        assert d.to_dict()["code"] == "missing-include"
        assert d.to_dict()["severity"] == "error"

    def test_parse_code(self):
        assert DiagnosticCode.parse("include-cycle") is DiagnosticCode.INCLUDE_CYCLE
        with pytest.raises(ValueError):
            DiagnosticCode.parse("no-such-code")

    def test_count_by_severity(self):
        counts = count_by_severity([diag(), diag(DiagnosticCode.EXPLICIT_WARNING)])
        assert counts == {Severity.ERROR: 1, Severity.WARNING: 1}


class TestSuppressionManager:

    def test_inline_same_line_and_line_above(self):
        mgr = SuppressionManager()
        mgr.load_inline_suppressions("a.h", {5: {"missing-include"}})
        assert mgr.is_suppressed(diag(line=5))
        assert mgr.is_suppressed(diag(line=6))
        assert not mgr.is_suppressed(diag(line=7))
        assert not mgr.is_suppressed(diag(line=5, file="b.h"))
        assert not mgr.is_suppressed(diag(DiagnosticCode.INCLUDE_CYCLE, line=5))

    def test_inline_wildcard(self):
        mgr = SuppressionManager()
        mgr.load_inline_suppressions("a.h", {2: {"*"}})
        assert mgr.is_suppressed(diag(DiagnosticCode.INCLUDE_CYCLE, line=2))

    def test_file_pattern(self):
        mgr = SuppressionManager()
        mgr.add_file_suppression("unresolved-reference", "generated/*")
        assert mgr.is_suppressed(diag(DiagnosticCode.UNRESOLVED_REFERENCE, file="generated/m.h"))
        assert not mgr.is_suppressed(diag(DiagnosticCode.UNRESOLVED_REFERENCE, file="src/m.h"))

    def test_global(self):
        mgr = SuppressionManager()
        mgr.add_global_suppression("missing-include")
        assert mgr.filter_diagnostics([diag(), diag(DiagnosticCode.INCLUDE_CYCLE)]) == [
            diag(DiagnosticCode.INCLUDE_CYCLE)
        ]


class TestDiagnosticEngine:

    def test_sorted_and_deduplicated(self):
        engine = DiagnosticEngine()
        engine.extend([diag(file="b.h"), diag(file="a.h", line=9)])
        engine.extend([diag(file="a.h", line=2), diag(file="b.h")])
        engine.add(diag(file="a.h", line=2, column=1, code=DiagnosticCode.EXPLICIT_ERROR))
        out = engine.finalize()
        assert [(d.file, d.line, d.code.value) for d in out] == [
            ("a.h", 2, "explicit-error"),
            ("a.h", 2, "missing-include"),
            ("a.h", 9, "missing-include"),
            ("b.h", 1, "missing-include"),
        ]

    def test_order_does_not_depend_on_batches(self):
        items = [diag(file=f, line=n) for f in ("b.h", "a.h") for n in (3, 1)]
        first = DiagnosticEngine()
        first.extend(items)
        second = DiagnosticEngine()
        for item in reversed(items):
            second.add(item)
        assert first.finalize() == second.finalize()

    def test_suppressions_applied(self):
        mgr = SuppressionManager()
        mgr.add_global_suppression("*")
        engine = DiagnosticEngine(mgr)
        engine.add(diag())
        assert engine.finalize() == ()
        assert engine.suppressions is mgr

    def test_file_pattern_suppression_applied(self):
        mgr = SuppressionManager()
        mgr.add_file_suppression("missing-include", "gen/*")
        engine = DiagnosticEngine(mgr)
        engine.extend([diag(file="gen/a.h"), diag(file="src/a.h"), diag(file="gen/a.h")])
        assert [d.file for d in engine.finalize()] == ["src/a.h"]
