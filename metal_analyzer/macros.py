"""
metal_analyzer/macros.py
════════════════════════

Macro environment: the preprocessor state a file is scanned under.

Two representations exist on purpose:

    ┌────────────────────┐   snapshot()    ┌─────────────────────┐
    │  MacroEnvironment  │ ──────────────► │    MacroSnapshot    │
    │  mutable, owned by │                 │  immutable, hashed, │
    │  ONE file's scan   │ ◄────────────── │  passed by value    │
    └────────────────────┘  from_snapshot  │  along include edges│
                                           └─────────────────────┘

A file being preprocessed mutates its own ``MacroEnvironment`` as it meets
``#define`` / ``#undef``.  When it reaches an ``#include`` it hands the
included file a ``MacroSnapshot``; the included file builds a fresh
environment from it, so nothing it does can leak back into the
includer's live state.  The snapshot's ``fingerprint`` is the include
memoization key together with the file path.

Macro expansion handles object-like and function-like macros with
``#`` stringification, ``##`` pasting and ``__VA_ARGS__``; a hide set stops
self-referential macros from recursing.

License: MIT — same as metal-analyzer.
"""

from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import (
    Dict,
    FrozenSet,
    Iterator,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
)

from .diagnostics import SourceLocation
from .errors import MalformedDirectiveError
from .expression import HasIncludeFn, evaluate_condition
from .lexer import Token, TokenKind, tokenize

logger = logging.getLogger(__name__)

MAX_EXPANSION_DEPTH = 64


# ═══════════════════════════════════════════════════════════════════════════
#  PART 1 — MACRO DEFINITIONS
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, slots=True)
class Macro:
    """
    One macro definition.

    Attributes
    ----------
    name : str
        The macro name.
    body : tuple of Token
        Replacement list (may be empty: ``#define GUARD_H``).
    params : tuple of str or None
        Parameter names for function-like macros, ``None`` for object-like.
    variadic : bool
        True when the parameter list ends in ``...``.
    location : SourceLocation or None
        Where the macro was defined; ``None`` for externally supplied
        macros.  Ignored by equality.
    """
    name: str
    body: Tuple[Token, ...] = ()
    params: Optional[Tuple[str, ...]] = None
    variadic: bool = False
    location: Optional[SourceLocation] = field(default=None, compare=False)

    @property
    def is_function_like(self) -> bool:
        return self.params is not None

    def replacement_text(self) -> str:
        return " ".join(t.text for t in self.body)

    def same_definition(self, other: "Macro") -> bool:
        """True when ``other`` is a benign redefinition of this macro."""
        return (
            self.params == other.params
            and self.variadic == other.variadic
            and [t.text for t in self.body] == [t.text for t in other.body]
        )

    def describe(self) -> str:
        if self.params is None:
            head = self.name
        else:
            params = list(self.params)
            if self.variadic:
                params.append("...")
            head = f"{self.name}({', '.join(params)})"
        body = self.replacement_text()
        return f"{head} {body}" if body else head


_DEFINE_RE = re.compile(
    r"^(?P<name>[A-Za-z_]\w*)(?P<params>\([^)]*\))?(?P<body>.*)$", re.DOTALL
)


def parse_define(text: str, location: SourceLocation) -> Macro:
    """
    Parse the argument text of a ``#define`` directive.

    A macro is function-like only when ``(`` immediately follows the name,
    as in C: ``#define F(x) x`` versus ``#define F (x)``.
    """
    stripped = text.strip()
    m = _DEFINE_RE.match(stripped)
    if m is None:
        raise MalformedDirectiveError(
            "macro name must be an identifier", location.line, location.column
        )
    body_text = m.group("body")
    body_col = location.column + len(stripped) - len(body_text)
    body = tuple(tokenize(body_text, location.line, body_col))

    params: Optional[Tuple[str, ...]] = None
    variadic = False
    raw_params = m.group("params")
    if raw_params is not None:
        names: List[str] = []
        inner = raw_params[1:-1].strip()
        for part in (p.strip() for p in inner.split(",")) if inner else ():
            if part == "...":
                variadic = True
            elif part.endswith("...") and part[:-3].isidentifier():
                # GNU named variadic: args...
                variadic = True
                names.append(part[:-3])
            elif part.isidentifier():
                names.append(part)
            else:
                raise MalformedDirectiveError(
                    f"invalid macro parameter {part!r} in definition of "
                    f"{m.group('name')!r}",
                    location.line,
                    location.column,
                )
        params = tuple(names)

    return Macro(m.group("name"), body, params, variadic, location)


def macro_from_value(name: str, value: Optional[str]) -> Macro:
    """
    Build a macro from an externally supplied ``name → value`` entry.

    ``None`` means "defined as 1", matching ``-DNAME`` on a compiler
    command line; ``""`` defines the macro with an empty body.
    """
    text = "1" if value is None else value
    return Macro(name, tuple(tokenize(text)), None, False, None)


# ═══════════════════════════════════════════════════════════════════════════
#  PART 2 — IMMUTABLE SNAPSHOT
# ═══════════════════════════════════════════════════════════════════════════

class MacroSnapshot:
    """
    Immutable, hashable view of a macro environment.

    Two snapshots are equal when they define the same macros with the same
    replacement lists, regardless of where the macros were defined.
    """

    __slots__ = ("_macros", "_fingerprint")

    def __init__(self, macros: Mapping[str, Macro] | None = None) -> None:
        self._macros: Mapping[str, Macro] = MappingProxyType(dict(macros or {}))
        self._fingerprint = _fingerprint(self._macros)

    @property
    def fingerprint(self) -> str:
        return self._fingerprint

    @property
    def macros(self) -> Mapping[str, Macro]:
        return self._macros

    def is_defined(self, name: str) -> bool:
        return name in self._macros

    def get(self, name: str) -> Optional[Macro]:
        return self._macros.get(name)

    def names(self) -> List[str]:
        return sorted(self._macros)

    def __contains__(self, name: object) -> bool:
        return name in self._macros

    def __len__(self) -> int:
        return len(self._macros)

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._macros))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MacroSnapshot):
            return NotImplemented
        return self._fingerprint == other._fingerprint

    def __hash__(self) -> int:
        return hash(self._fingerprint)

    def __repr__(self) -> str:
        return f"MacroSnapshot({len(self._macros)} macros, {self._fingerprint})"


def _fingerprint(macros: Mapping[str, Macro]) -> str:
    h = hashlib.sha1()
    for name in sorted(macros):
        macro = macros[name]
        params = "" if macro.params is None else ",".join(macro.params)
        h.update(name.encode("utf-8"))
        h.update(b"\x00")
        h.update(params.encode("utf-8"))
        h.update(b"\x01" if macro.variadic else b"\x00")
        h.update(b"\x00".join(t.text.encode("utf-8") for t in macro.body))
        h.update(b"\x02")
    return h.hexdigest()[:16]


EMPTY_SNAPSHOT = MacroSnapshot()


# ═══════════════════════════════════════════════════════════════════════════
#  PART 3 — MUTABLE ENVIRONMENT
# ═══════════════════════════════════════════════════════════════════════════


class MacroEnvironment:
    """
    Mutable macro state owned by a single file's linear scan.

    Usage::

        env = MacroEnvironment.from_mapping({"OWNER_ONLY_DEFINE": "2.0f"})
        env.define("TILE", tokenize("16"))
        env.evaluate("defined(OWNER_ONLY_DEFINE) && TILE >= 8")   # True
        snap = env.snapshot()                 # hand to an included file
    """

    def __init__(self, snapshot: Optional[MacroSnapshot] = None) -> None:
        self._macros: Dict[str, Macro] = dict(snapshot.macros) if snapshot else {}
        self._snapshot: Optional[MacroSnapshot] = snapshot

    @classmethod
    def from_snapshot(cls, snapshot: MacroSnapshot) -> "MacroEnvironment":
        return cls(snapshot)

    @classmethod
    def from_mapping(
        cls, values: Mapping[str, Optional[str]]
    ) -> "MacroEnvironment":
        env = cls()
        for name in sorted(values):
            env.add(macro_from_value(name, values[name]))
        return env

    # ── mutation ──────────────────────────────────────────────────────

    def define(
        self,
        name: str,
        tokens: Optional[Sequence[Token]] = None,
        params: Optional[Sequence[str]] = None,
        variadic: bool = False,
        location: Optional[SourceLocation] = None,
    ) -> Optional[Macro]:
        """Define ``name``; returns the definition it replaced, if any."""
        macro = Macro(
            name,
            tuple(tokens or ()),
            tuple(params) if params is not None else None,
            variadic,
            location,
        )
        return self.add(macro)

    def add(self, macro: Macro) -> Optional[Macro]:
        previous = self._macros.get(macro.name)
        self._macros[macro.name] = macro
        self._snapshot = None
        return previous

    def undef(self, name: str) -> None:
        if self._macros.pop(name, None) is not None:
            self._snapshot = None

    def restore(self, snapshot: MacroSnapshot) -> None:
        """Replace the whole state with ``snapshot``."""
        self._macros = dict(snapshot.macros)
        self._snapshot = snapshot

    # ── queries ───────────────────────────────────────────────────────

    def is_defined(self, name: str) -> bool:
        return name in self._macros

    def get(self, name: str) -> Optional[Macro]:
        return self._macros.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._macros

    def snapshot(self) -> MacroSnapshot:
        if self._snapshot is None:
            self._snapshot = MacroSnapshot(self._macros)
        return self._snapshot

    @property
    def fingerprint(self) -> str:
        return self.snapshot().fingerprint

    def evaluate(
        self,
        condition: str | Sequence[Token],
        has_include: Optional[HasIncludeFn] = None,
    ) -> bool:
        """
        Evaluate a ``#if`` / ``#elif`` condition under this environment.

        Raises ``ConditionError`` when the expression is malformed.
        """
        tokens = tokenize(condition) if isinstance(condition, str) else list(condition)
        expanded = self.expand(tokens, for_condition=True)
        return evaluate_condition(expanded, self.is_defined, has_include)

    # ── expansion ─────────────────────────────────────────────────────

    def expand(
        self, tokens: Sequence[Token], for_condition: bool = False
    ) -> List[Token]:
        """
        Macro-expand ``tokens``.

        Expanded tokens carry the location of the invocation that produced
        them.  With ``for_condition`` the operands of ``defined`` and
        ``__has_include`` are left untouched.
        """
        if not self._macros:
            return list(tokens)
        return self._expand(list(tokens), frozenset(), for_condition, 0)

    def _expand(
        self,
        tokens: List[Token],
        hidden: FrozenSet[str],
        for_condition: bool,
        depth: int,
    ) -> List[Token]:
        if depth > MAX_EXPANSION_DEPTH:
            logger.debug("Macro expansion depth limit reached; stopping")
            return tokens

        out: List[Token] = []
        i = 0
        n = len(tokens)
        while i < n:
            tok = tokens[i]
            if for_condition and tok.text == "defined":
                j = i + 1
                if j < n and tokens[j].text == "(":
                    j = min(j + 3, n)
                elif j < n:
                    j += 1
                out.extend(tokens[i:j])
                i = j
                continue
            if for_condition and tok.text in ("__has_include", "__has_include_next"):
                j = _skip_parenthesised(tokens, i + 1)
                out.extend(tokens[i:j])
                i = j
                continue

            macro = self._macros.get(tok.text) if tok.is_ident else None
            if macro is None or tok.text in hidden:
                out.append(tok)
                i += 1
                continue

            inner_hidden = hidden | {tok.text}
            if macro.params is None:
                body = [b.at(tok.line, tok.column) for b in macro.body]
                out.extend(self._expand(body, inner_hidden, for_condition, depth + 1))
                i += 1
                continue

            if i + 1 >= n or tokens[i + 1].text != "(":
                # A function-like macro name not followed by '(' is left alone.
                out.append(tok)
                i += 1
                continue
            collected = _collect_arguments(tokens, i + 1)
            if collected is None:
                out.append(tok)
                i += 1
                continue
            args, end = collected
            replaced = self._substitute(macro, args, tok, hidden, for_condition, depth)
            out.extend(self._expand(replaced, inner_hidden, for_condition, depth + 1))
            i = end
        return out

    def _substitute(
        self,
        macro: Macro,
        args: List[List[Token]],
        site: Token,
        hidden: FrozenSet[str],
        for_condition: bool,
        depth: int,
    ) -> List[Token]:
        params = list(macro.params or ())
        if len(args) == 1 and not args[0] and not params and not macro.variadic:
            args = []

        bound: Dict[str, List[Token]] = {}
        for idx, name in enumerate(params):
            bound[name] = args[idx] if idx < len(args) else []
        if macro.variadic:
            rest = args[len(params):]
            joined: List[Token] = []
            for k, arg in enumerate(rest):
                if k:
                    joined.append(Token(TokenKind.PUNCT, ",", site.line, site.column))
                joined.extend(arg)
            bound["__VA_ARGS__"] = joined

        body = list(macro.body)
        result: List[Token] = []
        k = 0
        while k < len(body):
            tok = body[k]
            if tok.text == "#" and k + 1 < len(body) and body[k + 1].text in bound:
                text = " ".join(t.text for t in bound[body[k + 1].text])
                escaped = text.replace("\\", "\\\\").replace('"', '\\"')
                result.append(Token(TokenKind.STRING, f'"{escaped}"', site.line, site.column))
                k += 2
                continue
            if tok.text == "##" and result and k + 1 < len(body):
                right = body[k + 1]
                right_tokens = bound.get(right.text, [right]) if right.is_ident else [right]
                left = result.pop()
                pasted = left.text + (right_tokens[0].text if right_tokens else "")
                result.extend(t.at(site.line, site.column) for t in tokenize(pasted))
                result.extend(t.at(site.line, site.column) for t in right_tokens[1:])
                k += 2
                continue
            if tok.is_ident and tok.text in bound:
                next_is_paste = k + 1 < len(body) and body[k + 1].text == "##"
                arg = bound[tok.text]
                if not next_is_paste:
                    arg = self._expand(list(arg), hidden, for_condition, depth + 1)
                result.extend(t.at(site.line, site.column) for t in arg)
                k += 1
                continue
            result.append(tok.at(site.line, site.column))
            k += 1
        return result


def _skip_parenthesised(tokens: Sequence[Token], start: int) -> int:
    """Index just past the parenthesised group starting at ``start``."""
    if start >= len(tokens) or tokens[start].text != "(":
        return start
    depth = 0
    for j in range(start, len(tokens)):
        if tokens[j].text == "(":
            depth += 1
        elif tokens[j].text == ")":
            depth -= 1
            if depth == 0:
                return j + 1
    return len(tokens)


def _collect_arguments(
    tokens: Sequence[Token], open_index: int
) -> Optional[Tuple[List[List[Token]], int]]:
    """Split a macro invocation's arguments; ``None`` if unterminated."""
    args: List[List[Token]] = [[]]
    depth = 0
    for j in range(open_index, len(tokens)):
        text = tokens[j].text
        if text == "(":
            depth += 1
            if depth == 1:
                continue
        elif text == ")":
            depth -= 1
            if depth == 0:
                return args, j + 1
        elif text == "," and depth == 1:
            args.append([])
            continue
        args[-1].append(tokens[j])
    return None


__all__ = [
    "Macro",
    "MacroSnapshot",
    "MacroEnvironment",
    "EMPTY_SNAPSHOT",
    "parse_define",
    "macro_from_value",
]
