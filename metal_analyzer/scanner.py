"""
metal_analyzer/scanner.py
═════════════════════════

Directive scanner: turns a file's raw text into an ordered sequence of
*logical lines*, each either a preprocessing ``Directive`` or a
``CodeLine`` of lexed tokens.

    raw text
      │  blank comments (columns and newlines preserved,
      │                  suppression markers collected)
      ▼
    physical lines
      │  join backslash continuations
      ▼
    logical lines ──► Directive(name, argument, line, column)
                  └─► CodeLine(line, tokens)

The scan is independent of any macro environment, so it runs once per
physical file and may run in parallel across files; conditional
evaluation happens later in ``metal_analyzer.preprocessor``.

License: MIT — same as metal-analyzer.
"""

from __future__ import annotations

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import (
    Dict,
    FrozenSet,
    Iterable,
    List,
    Mapping,
    Tuple,
    Union,
)

from .diagnostics import INLINE_SUPPRESS_MARKER
from .lexer import Token, tokenize

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  PART 1 — LOGICAL LINES
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, slots=True)
class Directive:
    """
    A preprocessing directive.

    Attributes
    ----------
    name : str
        Directive keyword (``"include"``, ``"ifdef"``, ...); empty for the
        null directive ``#``.
    argument : str
        Raw text after the keyword, continuations joined, comments blanked.
    line, column : int
        Position of the ``#``.
    argument_column : int
        Column where ``argument`` starts.
    """
    name: str
    argument: str
    line: int
    column: int
    argument_column: int

    def argument_tokens(self) -> List[Token]:
        return tokenize(self.argument, self.line, self.argument_column)


@dataclass(frozen=True, slots=True)
class CodeLine:
    line: int
    tokens: Tuple[Token, ...]


LogicalLine = Union[Directive, CodeLine]


@dataclass(frozen=True)
class ScannedFile:
    """Result of scanning one physical file."""
    path: str
    lines: Tuple[LogicalLine, ...]
    suppressions: Mapping[int, FrozenSet[str]] = field(default_factory=dict)
    line_count: int = 0

    def directives(self) -> List[Directive]:
        return [ln for ln in self.lines if isinstance(ln, Directive)]

    def include_targets(self) -> List[Tuple[str, bool, int]]:
        """
        Literal ``#include`` targets regardless of conditionals.

        Returns ``(target, angled, line)`` triples; used to build the
        header → owners map before any macro-aware pass runs.
        """
        found: List[Tuple[str, bool, int]] = []
        for d in self.directives():
            if d.name != "include":
                continue
            parsed = parse_include_target(d.argument)
            if parsed is not None:
                found.append((parsed[0], parsed[1], d.line))
        return found


# ═══════════════════════════════════════════════════════════════════════════
#  PART 2 — COMMENT BLANKING
# ═══════════════════════════════════════════════════════════════════════════

_COMMENT_OR_LITERAL_RE = re.compile(
    r"""
      (?P<line_comment>//[^\n]*)
    | (?P<block_comment>/\*.*?\*/)
    | (?P<open_comment>/\*.*)
    | (?P<literal>"(?:\\.|[^"\\\n])*"|'(?:\\.|[^'\\\n])*')
    """,
    re.VERBOSE | re.DOTALL,
)

_SUPPRESS_RE = re.compile(
    re.escape(INLINE_SUPPRESS_MARKER) + r"\s+([\w\-*]+(?:\s*,\s*[\w\-*]+)*)"
)


def blank_comments(text: str) -> Tuple[str, Dict[int, FrozenSet[str]]]:
    """
    Replace comments by spaces, keeping newlines so positions survive.

    Returns the blanked text and the inline suppression markers found,
    keyed by 1-based line.
    """
    suppressions: Dict[int, FrozenSet[str]] = {}
    pieces: List[str] = []
    last = 0
    for m in _COMMENT_OR_LITERAL_RE.finditer(text):
        if m.lastgroup == "literal":
            continue
        comment = m.group()
        pieces.append(text[last:m.start()])
        pieces.append(re.sub(r"[^\n]", " ", comment))
        last = m.end()

        marker = _SUPPRESS_RE.search(comment)
        if marker is not None:
            line = text.count("\n", 0, m.start() + marker.start()) + 1
            codes = frozenset(c.strip() for c in marker.group(1).split(","))
            suppressions[line] = suppressions.get(line, frozenset()) | codes
    pieces.append(text[last:])
    return "".join(pieces), suppressions


# ═══════════════════════════════════════════════════════════════════════════
#  PART 3 — SCANNING
# ═══════════════════════════════════════════════════════════════════════════

_DIRECTIVE_RE = re.compile(r"^(?P<indent>\s*)#\s*(?P<name>[A-Za-z_]\w*)?(?P<rest>.*)$", re.DOTALL)
_INCLUDE_RE = re.compile(r'^\s*(?:"(?P<quoted>[^"]+)"|<(?P<angled>[^>]+)>)')


def parse_include_target(argument: str) -> Tuple[str, bool] | None:
    """``"a.h"`` → ("a.h", False); ``<a.h>`` → ("a.h", True); else None."""
    m = _INCLUDE_RE.match(argument)
    if m is None:
        return None
    if m.group("quoted") is not None:
        return m.group("quoted").strip(), False
    return m.group("angled").strip(), True


def _logical_lines(text: str) -> Iterable[Tuple[int, str]]:
    """Yield ``(first_line, text)`` with backslash continuations joined."""
    start_line = 0
    buffer: List[str] = []
    for idx, physical in enumerate(text.split("\n"), start=1):
        stripped = physical.rstrip("\r")
        if not buffer:
            start_line = idx
        if stripped.endswith("\\"):
            buffer.append(stripped[:-1])
            continue
        buffer.append(stripped)
        yield start_line, "".join(buffer)
        buffer = []
    if buffer:
        yield start_line, "".join(buffer)


def scan_text(path: str, text: str) -> ScannedFile:
    """Scan one file's text into logical lines."""
    blanked, suppressions = blank_comments(text)
    lines: List[LogicalLine] = []
    line_count = 0
    for line_no, logical in _logical_lines(blanked):
        line_count = line_no
        m = _DIRECTIVE_RE.match(logical)
        if m is not None:
            name = m.group("name") or ""
            rest = m.group("rest")
            column = len(m.group("indent")) + 1
            arg_column = len(logical) - len(rest) + 1
            lines.append(Directive(name, rest.strip(), line_no, column,
                                   arg_column + (len(rest) - len(rest.lstrip()))))
            continue
        if not logical.strip():
            continue
        tokens = tuple(tokenize(logical, line_no, 1))
        if tokens:
            lines.append(CodeLine(line_no, tokens))
    logger.debug("Scanned %s: %d logical line(s)", path, len(lines))
    return ScannedFile(path, tuple(lines), suppressions, line_count)


def scan_corpus(
    files: Mapping[str, str], workers: int = 1
) -> Dict[str, ScannedFile]:
    """
    Scan every ``path → text`` entry.

    With ``workers > 1`` files are scanned in a thread pool; the result is
    keyed and ordered by path either way.
    """
    paths = sorted(files)
    if workers <= 1 or len(paths) < 2:
        return {p: scan_text(p, files[p]) for p in paths}
    with ThreadPoolExecutor(max_workers=workers) as pool:
        scanned = list(pool.map(lambda p: scan_text(p, files[p]), paths))
    return dict(zip(paths, scanned))


__all__ = [
    "Directive",
    "CodeLine",
    "LogicalLine",
    "ScannedFile",
    "blank_comments",
    "parse_include_target",
    "scan_text",
    "scan_corpus",
]
