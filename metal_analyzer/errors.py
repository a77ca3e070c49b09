"""
metal_analyzer/errors.py
════════════════════════

Exception hierarchy for the analysis engine.

    ┌──────────────────────────────────────────────────────────────┐
    │  AnalyzerError (base)                                        │
    │  ├── DirectiveError        - per-file preprocessing failure  │
    │  │   ├── MalformedDirectiveError - broken #if chain / syntax │
    │  │   └── ConditionError    - #if expression cannot evaluate  │
    │  ├── ConfigError           - invalid AnalyzerConfig values   │
    │  └── CorpusError           - unreadable / empty corpus root  │
    └──────────────────────────────────────────────────────────────┘

``DirectiveError`` never escapes the preprocessing of a single file: the
include resolver converts it into a ``malformed-directive`` diagnostic and
moves on to sibling files.  ``ConfigError`` and ``CorpusError`` are
startup-time failures and propagate to the caller.

License: MIT — same as metal-analyzer.
"""

from __future__ import annotations

from typing import Optional


class AnalyzerError(Exception):
    """Base exception for all metal-analyzer errors."""

    pass


class DirectiveError(AnalyzerError):
    """
    A preprocessing directive could not be processed.

    Attributes
    ----------
    line : int
        1-based line of the offending directive (0 when unknown).
    column : int
        1-based column of the offending directive (0 when unknown).
    """

    def __init__(self, message: str, line: int = 0, column: int = 0) -> None:
        super().__init__(message)
        self.message = message
        self.line = line
        self.column = column

    def at(self, line: int, column: int) -> "DirectiveError":
        """Attach a location if none was recorded yet and return ``self``."""
        if not self.line:
            self.line = line
            self.column = column
        return self


class MalformedDirectiveError(DirectiveError):
    """Unbalanced conditional chain or syntactically invalid directive."""

    pass


class ConditionError(DirectiveError):
    """An ``#if`` / ``#elif`` expression failed to parse or evaluate."""

    pass


class ConfigError(AnalyzerError):
    """Raised when configuration values have the wrong shape."""

    def __init__(self, message: str, key: Optional[str] = None) -> None:
        super().__init__(message)
        self.key = key


class CorpusError(AnalyzerError):
    """Raised when a corpus root cannot be loaded."""

    pass


__all__ = [
    "AnalyzerError",
    "DirectiveError",
    "MalformedDirectiveError",
    "ConditionError",
    "ConfigError",
    "CorpusError",
]
