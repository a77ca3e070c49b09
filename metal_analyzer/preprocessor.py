"""
metal_analyzer/preprocessor.py
══════════════════════════════

Macro-aware walk over one scanned file under one macro snapshot.

    ScannedFile ─┐
    MacroSnapshot ┼──► Preprocessor.run() ──► PreprocessedFile
    callbacks ───┘         │
                           ├─ #if family   → ConditionalStack
                           ├─ #define/#undef → MacroEnvironment
                           ├─ #include     → include callback (resolver)
                           ├─ #error       → explicit-error, file truncated
                           └─ code lines   → macro-expanded active tokens

The preprocessor never touches other files itself: ``#include`` and
``__has_include`` are delegated to callbacks owned by the include
resolver.  A ``DirectiveError`` raised anywhere in the walk stops this
file only; tokens gathered before the failure are kept.

License: MIT — same as metal-analyzer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

from .conditional import ConditionalStack
from .diagnostics import Diagnostic, DiagnosticCode, SourceLocation
from .errors import DirectiveError, MalformedDirectiveError
from .lexer import Token
from .macros import MacroEnvironment, MacroSnapshot, parse_define
from .scanner import CodeLine, Directive, ScannedFile, parse_include_target

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  PART 1 — RESULT TYPES
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, slots=True)
class IncludeRequest:
    """An ``#include`` met in an active region."""
    target: str
    angled: bool
    location: SourceLocation


# Returns the snapshot the includer should continue with, or None to keep
# its own state.
IncludeHandler = Callable[[IncludeRequest, MacroSnapshot], Optional[MacroSnapshot]]
HasIncludeHandler = Callable[[str, bool], bool]


@dataclass(frozen=True)
class PreprocessedFile:
    """
    Outcome of preprocessing one file under one macro snapshot.

    Attributes
    ----------
    tokens : tuple of Token
        Macro-expanded tokens of every active code line before any
        ``#error`` or structural failure.
    unavailable_tokens : tuple of Token
        Active code following an ``#error``; declarations found here are
        reported as unavailable, never as visible.
    error_location : SourceLocation or None
        The active ``#error`` that truncated the file.
    failed : bool
        Preprocessing stopped on a malformed directive.
    """
    path: str
    input_fingerprint: str
    tokens: Tuple[Token, ...] = ()
    unavailable_tokens: Tuple[Token, ...] = ()
    error_location: Optional[SourceLocation] = None
    diagnostics: Tuple[Diagnostic, ...] = ()
    final_snapshot: Optional[MacroSnapshot] = None
    pragma_once: bool = False
    failed: bool = False
    includes: Tuple[IncludeRequest, ...] = field(default=(), repr=False)


# ═══════════════════════════════════════════════════════════════════════════
#  PART 2 — PREPROCESSOR
# ═══════════════════════════════════════════════════════════════════════════

_IGNORED_DIRECTIVES = frozenset({"line", "ident", "sccs", "assert", "unassert"})


class Preprocessor:
    """
    Walks a ``ScannedFile`` line by line.

    A ``Preprocessor`` instance is single-use: construct, call ``run()``.
    """

    def __init__(
        self,
        scanned: ScannedFile,
        snapshot: MacroSnapshot,
        include_handler: Optional[IncludeHandler] = None,
        has_include: Optional[HasIncludeHandler] = None,
    ) -> None:
        self._file = scanned
        self._input = snapshot
        self._env = MacroEnvironment.from_snapshot(snapshot)
        self._stack = ConditionalStack()
        self._include_handler = include_handler
        self._has_include = has_include

        self._tokens: List[Token] = []
        self._unavailable: List[Token] = []
        self._pending: List[Token] = []
        self._diagnostics: List[Diagnostic] = []
        self._includes: List[IncludeRequest] = []
        self._error_location: Optional[SourceLocation] = None
        self._pragma_once = False
        self._inactive_braces = 0

    @property
    def path(self) -> str:
        return self._file.path

    def run(self) -> PreprocessedFile:
        failed = False
        try:
            for item in self._file.lines:
                if isinstance(item, CodeLine):
                    self._code(item)
                else:
                    self._flush()
                    self._directive(item)
            self._flush()
            self._stack.check_terminated()
        except DirectiveError as exc:
            self._flush()
            failed = True
            self._diagnostics.append(Diagnostic.make(
                DiagnosticCode.MALFORMED_DIRECTIVE,
                SourceLocation(self.path, exc.line, exc.column),
                exc.message,
            ))
            logger.debug("%s: preprocessing stopped: %s", self.path, exc.message)

        return PreprocessedFile(
            path=self.path,
            input_fingerprint=self._input.fingerprint,
            tokens=tuple(self._tokens),
            unavailable_tokens=tuple(self._unavailable),
            error_location=self._error_location,
            diagnostics=tuple(self._diagnostics),
            final_snapshot=self._env.snapshot(),
            pragma_once=self._pragma_once,
            failed=failed,
            includes=tuple(self._includes),
        )

    # ── code ──────────────────────────────────────────────────────────

    def _code(self, line: CodeLine) -> None:
        if self._stack.active:
            self._pending.extend(line.tokens)
            return
        for tok in line.tokens:
            if tok.text == "{":
                self._inactive_braces += 1
            elif tok.text == "}":
                self._inactive_braces -= 1

    def _flush(self) -> None:
        """Macro-expand the buffered run of active code lines."""
        if not self._pending:
            return
        expanded = self._env.expand(self._pending)
        if self._error_location is None:
            self._tokens.extend(expanded)
        else:
            self._unavailable.extend(expanded)
        self._pending = []

    def _close_inactive_region(self, directive: Directive) -> None:
        if self._inactive_braces:
            logger.debug(
                "%s:%d: inactive region has unbalanced braces (%+d)",
                self.path, directive.line, self._inactive_braces,
            )
        self._inactive_braces = 0

    # ── directives ────────────────────────────────────────────────────

    def _location(self, d: Directive) -> SourceLocation:
        return SourceLocation(self.path, d.line, d.column)

    def _directive(self, d: Directive) -> None:
        name = d.name
        if name in ("if", "ifdef", "ifndef"):
            self._if(d)
            return
        if name == "elif":
            cond = False
            if self._stack.needs_elif_evaluation():
                cond = self._evaluate(d)
            self._close_inactive_region(d)
            self._stack.elif_(cond, self._location(d))
            return
        if name == "else":
            self._close_inactive_region(d)
            self._stack.else_(self._location(d))
            return
        if name == "endif":
            self._close_inactive_region(d)
            self._stack.endif(self._location(d))
            return

        if not self._stack.active:
            return

        if name == "define":
            self._define(d)
        elif name == "undef":
            self._undef(d)
        elif name in ("include", "include_next", "import"):
            self._include(d)
        elif name == "pragma":
            if d.argument.split()[:1] == ["once"]:
                self._pragma_once = True
        elif name == "error":
            self._error(d)
        elif name == "warning":
            self._warning(d)
        elif name == "" or name in _IGNORED_DIRECTIVES:
            pass
        else:
            raise MalformedDirectiveError(
                f"unknown preprocessing directive #{name}", d.line, d.column
            )

    def _if(self, d: Directive) -> None:
        cond = False
        if self._stack.needs_evaluation():
            if d.name == "if":
                cond = self._evaluate(d)
            else:
                tokens = d.argument_tokens()
                if not tokens or not tokens[0].is_ident:
                    raise MalformedDirectiveError(
                        f"#{d.name} requires a macro name", d.line, d.column
                    )
                defined = self._env.is_defined(tokens[0].text)
                cond = defined if d.name == "ifdef" else not defined
        self._stack.push_if(cond, self._location(d))

    def _evaluate(self, d: Directive) -> bool:
        try:
            return self._env.evaluate(d.argument_tokens(), self._has_include)
        except DirectiveError as exc:
            raise exc.at(d.line, d.column)

    def _define(self, d: Directive) -> None:
        if not d.argument:
            raise MalformedDirectiveError("#define requires a macro name", d.line, d.column)
        loc = SourceLocation(self.path, d.line, d.argument_column)
        try:
            macro = parse_define(d.argument, loc)
        except DirectiveError as exc:
            raise exc.at(d.line, d.column)
        previous = self._env.add(macro)
        if previous is not None and not previous.same_definition(macro):
            where = f" (previous definition at {previous.location})" if previous.location else ""
            self._diagnostics.append(Diagnostic.make(
                DiagnosticCode.MACRO_REDEFINITION,
                self._location(d),
                f"macro '{macro.name}' redefined{where}",
            ))

    def _undef(self, d: Directive) -> None:
        tokens = d.argument_tokens()
        if not tokens or not tokens[0].is_ident:
            raise MalformedDirectiveError("#undef requires a macro name", d.line, d.column)
        self._env.undef(tokens[0].text)

    def _include(self, d: Directive) -> None:
        if self._error_location is not None:
            return
        parsed = parse_include_target(d.argument)
        if parsed is None:
            # #include MACRO: expand, then re-read as a header name.
            expanded = self._env.expand(d.argument_tokens())
            parsed = parse_include_target("".join(t.text for t in expanded))
        if parsed is None:
            raise MalformedDirectiveError(
                '#include expects "FILENAME" or <FILENAME>', d.line, d.column
            )
        request = IncludeRequest(parsed[0], parsed[1], self._location(d))
        self._includes.append(request)
        if self._include_handler is None:
            return
        continued = self._include_handler(request, self._env.snapshot())
        if continued is not None:
            self._env.restore(continued)

    def _error(self, d: Directive) -> None:
        if self._error_location is not None:
            return
        self._error_location = self._location(d)
        self._diagnostics.append(Diagnostic.make(
            DiagnosticCode.EXPLICIT_ERROR, self._error_location, _message(d.argument)
        ))
        logger.debug("%s:%d: #error reached; rest of file unavailable", self.path, d.line)

    def _warning(self, d: Directive) -> None:
        if self._error_location is not None:
            return
        self._diagnostics.append(Diagnostic.make(
            DiagnosticCode.EXPLICIT_WARNING, self._location(d), _message(d.argument)
        ))


def _message(argument: str) -> str:
    text = argument.strip()
    if len(text) >= 2 and text[0] == text[-1] == '"':
        return text[1:-1]
    return text


def preprocess(
    scanned: ScannedFile,
    snapshot: MacroSnapshot,
    include_handler: Optional[IncludeHandler] = None,
    has_include: Optional[HasIncludeHandler] = None,
) -> PreprocessedFile:
    """Convenience wrapper: ``Preprocessor(...).run()``."""
    return Preprocessor(scanned, snapshot, include_handler, has_include).run()


__all__ = [
    "IncludeRequest",
    "IncludeHandler",
    "HasIncludeHandler",
    "PreprocessedFile",
    "Preprocessor",
    "preprocess",
]
