"""
metal_analyzer/diagnostics.py
═════════════════════════════

Diagnostic model, suppressions and the final merge/sort stage.

Every stage of the engine (preprocessor, include resolver, declaration
extractor, overload resolver) returns its findings as a *batch* — a plain
list of frozen ``Diagnostic`` values.  The ``DiagnosticEngine`` is the only
place where batches meet:

    preprocess batch ─┐
    include batch    ─┤
    duplicate batch  ─┼──►  suppress  ──►  dedupe  ──►  sort  ──► tuple
    reference batch  ─┘

Ordering is (file, line, column, code, message) so two runs over the same
corpus case produce byte-identical output, whatever order the batches were
produced in.

License: MIT — same as metal-analyzer.
"""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from fnmatch import fnmatch
from typing import (
    Any,
    Dict,
    Iterable,
    List,
    Mapping,
    Set,
    Tuple,
)

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════
#  PART 1 — DIAGNOSTIC MODEL
# ═════════════════════════════════════════════════════════════════════════

class Severity(Enum):
    """Severity levels reported by the analyzer."""
    ERROR = "error"
    WARNING = "warning"


class DiagnosticCode(Enum):
    """
    Classification codes.

    The string values are part of the output contract consumed by golden
    comparisons; renaming one is a breaking change.
    """
    EXPLICIT_ERROR = "explicit-error"
    EXPLICIT_WARNING = "explicit-warning"
    MALFORMED_DIRECTIVE = "malformed-directive"
    MISSING_INCLUDE = "missing-include"
    INCLUDE_CYCLE = "include-cycle"
    MACRO_REDEFINITION = "macro-redefinition"
    DUPLICATE_DEFINITION = "duplicate-definition"
    UNRESOLVED_REFERENCE = "unresolved-reference"
    AMBIGUOUS_OVERLOAD = "ambiguous-overload"

    @property
    def default_severity(self) -> Severity:
        if self in _WARNING_CODES:
            return Severity.WARNING
        return Severity.ERROR

    @classmethod
    def parse(cls, value: str) -> "DiagnosticCode":
        """Look up a code by its string value (``"include-cycle"``)."""
        for code in cls:
            if code.value == value:
                return code
        raise ValueError(f"unknown diagnostic code: {value!r}")


_WARNING_CODES = frozenset({
    DiagnosticCode.EXPLICIT_WARNING,
    DiagnosticCode.MACRO_REDEFINITION,
    DiagnosticCode.AMBIGUOUS_OVERLOAD,
})


@dataclass(frozen=True, slots=True)
class SourceLocation:
    """A specific point in a corpus file (1-based line and column)."""
    file: str = ""
    line: int = 0
    column: int = 0

    def __str__(self) -> str:
        if self.column:
            return f"{self.file}:{self.line}:{self.column}"
        return f"{self.file}:{self.line}"


@dataclass(frozen=True, slots=True)
class Diagnostic:
    """
    A single finding.

    Attributes
    ----------
    code     : DiagnosticCode classification
    severity : Severity
    location : where the finding is reported
    message  : human-readable description
    """
    code: DiagnosticCode
    severity: Severity
    location: SourceLocation
    message: str

    @classmethod
    def make(
        cls,
        code: DiagnosticCode,
        location: SourceLocation,
        message: str,
    ) -> "Diagnostic":
        """Build a diagnostic with the code's default severity."""
        return cls(code, code.default_severity, location, message)

    @property
    def file(self) -> str:
        return self.location.file

    @property
    def line(self) -> int:
        return self.location.line

    @property
    def column(self) -> int:
        return self.location.column

    def sort_key(self) -> Tuple[str, int, int, str, str]:
        loc = self.location
        return (loc.file, loc.line, loc.column, self.code.value, self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file": self.location.file,
            "line": self.location.line,
            "column": self.location.column,
            "severity": self.severity.value,
            "code": self.code.value,
            "message": self.message,
        }

    def to_json_str(self) -> str:
        """Single-line JSON string."""
        return json.dumps(self.to_dict(), sort_keys=True)

    def to_gcc_format(self) -> str:
        """GCC-style diagnostic string: file:line:col: severity: message."""
        sev = self.severity.value
        return f"{self.location}: {sev}: {self.message} [{self.code.value}]"


# ═════════════════════════════════════════════════════════════════════════
#  PART 2 — SUPPRESSION MANAGER
# ═════════════════════════════════════════════════════════════════════════

INLINE_SUPPRESS_MARKER = "metal-analyzer-suppress"


class SuppressionManager:
    """
    Manages diagnostic suppressions from multiple sources.

    Sources:
      1. Inline comments:  ``// metal-analyzer-suppress unresolved-reference``
         on the reported line or the line above it
      2. File-level suppressions (path or fnmatch pattern)
      3. Global suppressions (configuration)

    ``"*"`` suppresses every code at that level.
    """

    def __init__(self) -> None:
        # {(file, line)} → codes suppressed at that location
        self._inline: Dict[Tuple[str, int], Set[str]] = defaultdict(set)
        # file pattern → codes
        self._file_level: Dict[str, Set[str]] = defaultdict(set)
        self._global: Set[str] = set()

    def load_inline_suppressions(
        self, path: str, suppressions: Mapping[int, Iterable[str]]
    ) -> None:
        """Register the inline markers the scanner found in ``path``."""
        for line, codes in suppressions.items():
            self._inline[(path, line)].update(codes)

    def add_file_suppression(self, code: str, file_pattern: str) -> None:
        self._file_level[file_pattern].add(code)

    def add_global_suppression(self, code: str) -> None:
        self._global.add(code)

    def is_suppressed(self, diag: Diagnostic) -> bool:
        code = diag.code.value
        if code in self._global or "*" in self._global:
            return True

        loc = diag.location
        for line_offset in (0, 1):
            ids = self._inline.get((loc.file, loc.line - line_offset), ())
            if code in ids or "*" in ids:
                return True

        for pattern, ids in self._file_level.items():
            if code in ids or "*" in ids:
                if pattern == loc.file or fnmatch(loc.file, pattern):
                    return True
        return False

    def filter_diagnostics(
        self, diagnostics: Iterable[Diagnostic]
    ) -> List[Diagnostic]:
        """Return only non-suppressed diagnostics."""
        return [d for d in diagnostics if not self.is_suppressed(d)]


# ═════════════════════════════════════════════════════════════════════════
#  PART 3 — DIAGNOSTIC ENGINE
# ═════════════════════════════════════════════════════════════════════════

class DiagnosticEngine:
    """
    Sink for all diagnostic batches of one analysis run.

    Batches may arrive in any order; ``finalize()`` applies suppressions,
    drops exact duplicates (a header analyzed under two macro environments
    can raise the same finding twice) and returns the deterministic order.
    """

    def __init__(self, suppressions: SuppressionManager | None = None) -> None:
        self._batches: List[List[Diagnostic]] = []
        self._suppressions = suppressions or SuppressionManager()

    @property
    def suppressions(self) -> SuppressionManager:
        return self._suppressions

    def extend(self, batch: Iterable[Diagnostic]) -> None:
        self._batches.append(list(batch))

    def add(self, diag: Diagnostic) -> None:
        self._batches.append([diag])

    def finalize(self) -> Tuple[Diagnostic, ...]:
        unique: Dict[Diagnostic, None] = {}
        for batch in self._batches:
            for diag in batch:
                unique.setdefault(diag, None)
        merged = self._suppressions.filter_diagnostics(unique)
        suppressed = len(unique) - len(merged)
        merged.sort(key=Diagnostic.sort_key)
        if suppressed:
            logger.debug("Suppressed %d diagnostic(s)", suppressed)
        return tuple(merged)


def count_by_severity(
    diagnostics: Iterable[Diagnostic],
) -> Dict[Severity, int]:
    counts = {sev: 0 for sev in Severity}
    for diag in diagnostics:
        counts[diag.severity] += 1
    return counts


__all__ = [
    "Severity",
    "DiagnosticCode",
    "SourceLocation",
    "Diagnostic",
    "INLINE_SUPPRESS_MARKER",
    "SuppressionManager",
    "DiagnosticEngine",
    "count_by_severity",
]
