"""
metal_analyzer/declarations.py
══════════════════════════════

Declaration model and the token-level extractor that builds it.

The extractor is a recursive scope walker over the macro-expanded active
tokens of one file.  It does not build an AST; it recognises the heads of
declarations and skips everything else by bracket matching::

    namespace A::B {            ── scope push  ("A", "B")
      using namespace metal;    ── using directive
      typedef struct {…} P;     ── alias P with fields
      template <typename T>     ── template parameter list
      struct R {                ── struct R, member scope ("A","B","R")
        device T* data;         ──   field
        T at(uint i) {…}        ──   member function, body kept
      };
      inline int f(int);        ── function (declaration only)
    }

Types are spelled canonically (``const device float*``): leading cv and
address-space qualifiers are reordered, elaborated-type keywords dropped,
and punctuation spacing normalised, so spellings compare as strings.

License: MIT — same as metal-analyzer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    Any,
    Dict,
    List,
    Optional,
    Sequence,
    Tuple,
)

from .builtins import ADDRESS_SPACES, BUILTIN_TYPES, DECL_SPECIFIERS, KEYWORDS
from .diagnostics import SourceLocation
from .lexer import Token, TokenKind

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  PART 1 — DECLARATION MODEL
# ═══════════════════════════════════════════════════════════════════════════

class DeclKind(Enum):
    FUNCTION = "function"
    OPERATOR = "operator"
    STRUCT = "struct"
    TEMPLATE = "template"
    ALIAS = "alias"
    ENUM = "enum"
    VARIABLE = "variable"


_CALLABLE_KINDS = frozenset({DeclKind.FUNCTION, DeclKind.OPERATOR})
_TYPE_KINDS = frozenset({DeclKind.STRUCT, DeclKind.ALIAS, DeclKind.ENUM})


@dataclass(frozen=True, slots=True)
class Parameter:
    type: str
    name: str = ""
    has_default: bool = False


@dataclass(frozen=True, slots=True)
class Field:
    type: str
    name: str


@dataclass(frozen=True)
class Declaration:
    """
    One declaration found in a file.

    Attributes
    ----------
    kind : DeclKind
        ``TEMPLATE`` declarations carry what they template in
        ``templated_kind``.
    namespace : tuple of str
        Enclosing namespaces, followed by the struct name for members.
    parameters : tuple of Parameter
        Semantic parameter types, address spaces included.
    underlying_type : str
        Target of an alias, type of a variable, base of an enum.
    body : tuple of Token
        Function body tokens (definitions only); not part of equality.
    usings : tuple of namespace paths
        ``using namespace`` directives in effect at the declaration.
    """
    kind: DeclKind
    name: str
    namespace: Tuple[str, ...]
    location: SourceLocation
    parameters: Tuple[Parameter, ...] = ()
    return_type: str = ""
    qualifiers: Tuple[str, ...] = ()
    template_params: Tuple[str, ...] = ()
    templated_kind: Optional[DeclKind] = None
    fields: Tuple[Field, ...] = ()
    underlying_type: str = ""
    is_definition: bool = False
    variadic: bool = False
    body: Tuple[Token, ...] = field(default=(), compare=False, repr=False)
    usings: Tuple[Tuple[str, ...], ...] = field(default=(), compare=False, repr=False)

    @property
    def qualified_name(self) -> str:
        return "::".join(self.namespace + (self.name,))

    @property
    def effective_kind(self) -> DeclKind:
        """What the declaration declares, looking through ``template``."""
        if self.kind is DeclKind.TEMPLATE and self.templated_kind is not None:
            return self.templated_kind
        return self.kind

    @property
    def is_callable(self) -> bool:
        return self.effective_kind in _CALLABLE_KINDS

    @property
    def is_type(self) -> bool:
        return self.effective_kind in _TYPE_KINDS

    @property
    def is_template(self) -> bool:
        return self.kind is DeclKind.TEMPLATE

    @property
    def file(self) -> str:
        return self.location.file

    def min_arity(self) -> int:
        return sum(1 for p in self.parameters if not p.has_default)

    def max_arity(self) -> Optional[int]:
        return None if self.variadic else len(self.parameters)

    def signature(self) -> str:
        params = [p.type for p in self.parameters]
        if self.variadic:
            params.append("...")
        sig = f"{self.qualified_name}({', '.join(params)})"
        if "const" in self.qualifiers:
            sig += " const"
        return sig

    def signature_key(self) -> Tuple[Any, ...]:
        """Identity of the callable signature used for redefinition checks."""
        return (
            self.namespace,
            self.name,
            self.effective_kind,
            tuple(p.type for p in self.parameters),
            self.variadic,
            "const" in self.qualifiers,
            len(self.template_params) if self.is_template else -1,
        )

    def identity(self) -> Tuple[Any, ...]:
        """Physical identity: same source position, same declaration."""
        loc = self.location
        return (loc.file, loc.line, loc.column, self.kind, self.namespace, self.name)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "kind": self.kind.value,
            "name": self.name,
            "namespace": list(self.namespace),
            "file": self.location.file,
            "line": self.location.line,
            "column": self.location.column,
            "definition": self.is_definition,
        }
        if self.templated_kind is not None:
            out["templated_kind"] = self.templated_kind.value
        if self.template_params:
            out["template_params"] = list(self.template_params)
        if self.is_callable:
            out["parameters"] = [p.type for p in self.parameters]
            out["return_type"] = self.return_type
            out["signature"] = self.signature()
        if self.qualifiers:
            out["qualifiers"] = list(self.qualifiers)
        if self.fields:
            out["fields"] = [{"type": f.type, "name": f.name} for f in self.fields]
        if self.underlying_type:
            out["underlying_type"] = self.underlying_type
        return out


@dataclass(frozen=True, slots=True)
class UsingDirective:
    """``using namespace target;`` appearing in ``scope``."""
    scope: Tuple[str, ...]
    target: Tuple[str, ...]
    location: SourceLocation


@dataclass(frozen=True)
class ExtractedFile:
    """
    Declarations of one preprocessed file.

    ``unavailable`` holds declarations that follow an active ``#error``.
    """
    path: str
    declarations: Tuple[Declaration, ...] = ()
    unavailable: Tuple[Declaration, ...] = ()
    using_directives: Tuple[UsingDirective, ...] = ()
    error_location: Optional[SourceLocation] = None


# ═══════════════════════════════════════════════════════════════════════════
#  PART 2 — TOKEN HELPERS
# ═══════════════════════════════════════════════════════════════════════════

_CLOSERS = {"(": ")", "[": "]", "{": "}"}
_ELABORATED = frozenset({"struct", "class", "union", "enum", "typename"})
_CV = ("const", "volatile")
_TYPE_WORDS = frozenset(BUILTIN_TYPES) | {"unsigned", "signed", "long", "short", "auto"}
_NOT_A_NAME = KEYWORDS | _TYPE_WORDS


def strip_attributes(tokens: Sequence[Token]) -> List[Token]:
    """Drop ``[[...]]``, ``__attribute__((...))`` and ``alignas(...)``."""
    out: List[Token] = []
    i = 0
    n = len(tokens)
    while i < n:
        t = tokens[i].text
        if t == "[" and i + 1 < n and tokens[i + 1].text == "[":
            close = find_close(tokens, i, n)
            i = close + 1
            continue
        if t in ("__attribute__", "alignas") and i + 1 < n and tokens[i + 1].text == "(":
            i = find_close(tokens, i + 1, n) + 1
            continue
        out.append(tokens[i])
        i += 1
    return out


def find_close(tokens: Sequence[Token], i: int, end: int) -> int:
    """Index of the bracket closing ``tokens[i]``; ``end - 1`` if unbalanced."""
    opener = tokens[i].text
    closer = _CLOSERS[opener]
    depth = 0
    for k in range(i, end):
        t = tokens[k].text
        if t == opener:
            depth += 1
        elif t == closer:
            depth -= 1
            if depth == 0:
                return k
    return end - 1


def find_angle_close(tokens: Sequence[Token], i: int, end: int) -> int:
    """Index of the ``>`` closing the template argument list at ``i``."""
    depth = 0
    k = i
    while k < end:
        t = tokens[k].text
        if t in _CLOSERS:
            k = find_close(tokens, k, end) + 1
            continue
        if t == "<":
            depth += 1
        elif t == ">":
            depth -= 1
        elif t == ">>":
            depth -= 2
        elif t in (";", "{", "}"):
            return k - 1
        if depth <= 0:
            return k
        k += 1
    return end - 1


def split_top_level(tokens: Sequence[Token], sep: str = ",") -> List[List[Token]]:
    """Split on ``sep`` outside brackets and template argument lists."""
    parts: List[List[Token]] = [[]]
    k = 0
    n = len(tokens)
    while k < n:
        tok = tokens[k]
        if tok.text in _CLOSERS:
            close = find_close(tokens, k, n)
            parts[-1].extend(tokens[k:close + 1])
            k = close + 1
            continue
        if tok.text == "<" and k > 0 and tokens[k - 1].is_ident:
            close = find_angle_close(tokens, k, n)
            parts[-1].extend(tokens[k:close + 1])
            k = close + 1
            continue
        if tok.text == sep:
            parts.append([])
        else:
            parts[-1].append(tok)
        k += 1
    if parts == [[]]:
        return []
    return parts


def spell_type(tokens: Sequence[Token]) -> str:
    """
    Canonical spelling of a type.

    The tokens of ``device const float *`` spell ``const device float*``.
    """
    words = [t.text for t in tokens if t.text not in _ELABORATED]
    leading: List[str] = []
    while words and (words[0] in _CV or words[0] in ADDRESS_SPACES):
        leading.append(words.pop(0))
    cv = [w for w in _CV if w in leading]
    spaces = sorted(w for w in leading if w in ADDRESS_SPACES)

    out = ""
    prev = ""
    for w in cv + spaces + words:
        glue = w in ("*", "&", "&&", "::", ">", ",", "[", "]") or prev in ("::", "<", "[") or w == "<"
        if out and not glue:
            out += " "
        out += w
        prev = w
    return out


def value_type(spelled: str) -> str:
    """Strip top-level cv-qualifiers and references from a spelled type."""
    words = spelled.replace("&", " ").split()
    words = [w for w in words if w not in _CV]
    return " ".join(words).replace(" *", "*")


def _is_name(tok: Token) -> bool:
    return tok.is_ident and tok.text not in _NOT_A_NAME


# ═══════════════════════════════════════════════════════════════════════════
#  PART 3 — EXTRACTOR
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class _Scope:
    namespace: Tuple[str, ...] = ()
    struct: Optional[str] = None
    template_params: Tuple[str, ...] = ()
    usings: List[Tuple[str, ...]] = field(default_factory=list)
    fields: List[Field] = field(default_factory=list)

    def child(
        self,
        namespace: Tuple[str, ...],
        struct: Optional[str] = None,
        template_params: Tuple[str, ...] = (),
    ) -> "_Scope":
        return _Scope(
            namespace,
            struct,
            self.template_params + template_params,
            list(self.usings),
        )


class DeclarationExtractor:
    """
    Extracts declarations from one file's active tokens.

    Usage::

        extracted = DeclarationExtractor("a.h", tokens).extract()
    """

    def __init__(
        self,
        path: str,
        tokens: Sequence[Token],
        unavailable_tokens: Sequence[Token] = (),
        error_location: Optional[SourceLocation] = None,
    ) -> None:
        self.path = path
        self._available_count = len(strip_attributes(tokens))
        self._toks: List[Token] = strip_attributes(list(tokens) + list(unavailable_tokens))
        self._error_location = error_location
        self._decls: List[Tuple[int, Declaration]] = []
        self._usings: List[UsingDirective] = []

    def extract(self) -> ExtractedFile:
        self._parse_scope(0, len(self._toks), _Scope())
        available: List[Declaration] = []
        unavailable: List[Declaration] = []
        for start, decl in self._decls:
            if start >= self._available_count:
                unavailable.append(decl)
            else:
                available.append(decl)
        logger.debug(
            "%s: %d declaration(s), %d unavailable",
            self.path, len(available), len(unavailable),
        )
        return ExtractedFile(
            self.path,
            tuple(available),
            tuple(unavailable),
            tuple(self._usings),
            self._error_location,
        )

    # ── helpers ───────────────────────────────────────────────────────

    def _loc(self, tok: Token) -> SourceLocation:
        return SourceLocation(self.path, tok.line, tok.column)

    def _text(self, i: int) -> str:
        return self._toks[i].text if 0 <= i < len(self._toks) else ""

    def _add(self, start: int, decl: Declaration) -> None:
        self._decls.append((start, decl))

    def _skip_statement(self, i: int, end: int) -> int:
        """Index after the next top-level ``;`` (or a braced block)."""
        k = i
        while k < end:
            t = self._toks[k].text
            if t in ("(", "["):
                k = find_close(self._toks, k, end) + 1
                continue
            if t == "{":
                k = find_close(self._toks, k, end) + 1
                if self._text(k) == ";":
                    return k + 1
                return k
            if t == ";":
                return k + 1
            k += 1
        return end

    # ── scopes ────────────────────────────────────────────────────────

    def _parse_scope(self, i: int, end: int, scope: _Scope) -> None:
        while i < end:
            t = self._toks[i].text
            nxt = self._text(i + 1)
            if t in (";", "}"):
                i += 1
            elif t == "namespace" or (t == "inline" and nxt == "namespace"):
                i = self._namespace(i + (t == "inline"), end, scope)
            elif t == "using":
                i = self._using(i, end, scope, ())
            elif t == "typedef":
                i = self._typedef(i, end, scope)
            elif t == "template":
                i = self._template(i, end, scope)
            elif t in ("public", "private", "protected") and nxt == ":":
                i += 2
            elif t in ("static_assert", "friend"):
                i = self._skip_statement(i, end)
            elif t == "extern" and i + 1 < end and self._toks[i + 1].kind is TokenKind.STRING:
                if self._text(i + 2) == "{":
                    close = find_close(self._toks, i + 2, end)
                    self._parse_scope(i + 3, close, scope)
                    i = close + 1
                else:
                    i += 2
            elif t in ("struct", "class", "union"):
                i = self._record(i, end, scope, ())
            elif t == "enum":
                i = self._enum(i, end, scope, ())
            else:
                i = self._declaration(i, end, scope, ())

    def _namespace(self, i: int, end: int, scope: _Scope) -> int:
        k = i + 1
        names: List[str] = []
        while k < end and self._toks[k].text not in ("{", ";", "="):
            tok = self._toks[k]
            if tok.is_ident and tok.text != "inline":
                names.append(tok.text)
            k += 1
        if self._text(k) != "{":
            # namespace alias or stray token
            return self._skip_statement(k, end)
        close = find_close(self._toks, k, end)
        self._parse_scope(k + 1, close, scope.child(scope.namespace + tuple(names)))
        return close + 1

    def _using(self, i: int, end: int, scope: _Scope, template_params: Tuple[str, ...]) -> int:
        stop = self._skip_statement(i, end)
        body = self._toks[i + 1:stop - 1]
        if body and body[0].text == "namespace":
            target = tuple(t.text for t in body[1:] if t.is_ident)
            if target:
                scope.usings.append(target)
                self._usings.append(
                    UsingDirective(scope.namespace, target, self._loc(self._toks[i]))
                )
            return stop
        if len(body) >= 3 and body[0].is_ident and body[1].text == "=":
            name_tok = body[0]
            self._add(i, self._make(
                DeclKind.ALIAS, name_tok, scope, template_params,
                underlying_type=spell_type(body[2:]),
                is_definition=True,
            ))
        return stop

    def _template(self, i: int, end: int, scope: _Scope) -> int:
        k = i + 1
        params: Tuple[str, ...] = ()
        if self._text(k) == "<":
            close = find_angle_close(self._toks, k, end)
            params = _template_param_names(self._toks[k + 1:close])
            k = close + 1
        t = self._text(k)
        if t == "template":
            # member template of a class template: merge parameter lists
            return self._template(k, end, scope.child(scope.namespace, scope.struct, params))
        if t in ("struct", "class", "union"):
            return self._record(k, end, scope, params)
        if t == "using":
            return self._using(k, end, scope, params)
        if t == "enum":
            return self._enum(k, end, scope, params)
        return self._declaration(k, end, scope, params)

    # ── records, enums, typedefs ──────────────────────────────────────

    def _record_body(
        self, open_: int, end: int, scope: _Scope, name: str, template_params: Tuple[str, ...]
    ) -> Tuple[Tuple[Field, ...], int]:
        close = find_close(self._toks, open_, end)
        member_scope = scope.child(scope.namespace + ((name,) if name else ()), name, template_params)
        self._parse_scope(open_ + 1, close, member_scope)
        return tuple(member_scope.fields), close

    def _record(self, i: int, end: int, scope: _Scope, template_params: Tuple[str, ...]) -> int:
        k = i + 1
        name_tok: Optional[Token] = None
        if k < end and self._toks[k].is_ident and self._toks[k].text not in KEYWORDS:
            name_tok = self._toks[k]
            k += 1
            if self._text(k) == "<":
                k = find_angle_close(self._toks, k, end) + 1
        if self._text(k) == "final":
            k += 1
        if self._text(k) == ":":
            while k < end and self._toks[k].text not in ("{", ";"):
                k += 1

        t = self._text(k)
        if t == ";" and name_tok is not None:
            self._add(i, self._make(DeclKind.STRUCT, name_tok, scope, template_params))
            return k + 1
        if t != "{":
            return self._declaration(i, end, scope, template_params)

        slot = len(self._decls)
        name = name_tok.text if name_tok is not None else ""
        fields, close = self._record_body(k, end, scope, name, template_params)
        if name_tok is not None:
            self._decls.insert(slot, (i, self._make(
                DeclKind.STRUCT, name_tok, scope, template_params,
                fields=fields, is_definition=True,
            )))
        stop = self._skip_statement(close + 1, end)
        self._declarators(self._toks[close + 1:stop - 1], name, scope, close + 1)
        return stop

    def _enum(self, i: int, end: int, scope: _Scope, template_params: Tuple[str, ...]) -> int:
        k = i + 1
        if self._text(k) in ("class", "struct"):
            k += 1
        name_tok: Optional[Token] = None
        if k < end and _is_name(self._toks[k]):
            name_tok = self._toks[k]
            k += 1
        base = ""
        if self._text(k) == ":":
            start = k + 1
            while k < end and self._toks[k].text not in ("{", ";"):
                k += 1
            base = spell_type(self._toks[start:k])
        if self._text(k) != "{":
            if name_tok is not None and self._text(k) == ";":
                self._add(i, self._make(DeclKind.ENUM, name_tok, scope, template_params,
                                        underlying_type=base))
                return k + 1
            return self._declaration(i, end, scope, template_params)
        close = find_close(self._toks, k, end)
        enumerators = _enumerators(self._toks[k + 1:close], name_tok.text if name_tok else "int")
        if name_tok is not None:
            self._add(i, self._make(
                DeclKind.ENUM, name_tok, scope, template_params,
                fields=enumerators, underlying_type=base, is_definition=True,
            ))
        return self._skip_statement(close + 1, end)

    def _typedef(self, i: int, end: int, scope: _Scope) -> int:
        k = i + 1
        t = self._text(k)
        if t in ("struct", "class", "union", "enum"):
            tag: Optional[Token] = None
            j = k + 1
            if j < end and _is_name(self._toks[j]):
                tag = self._toks[j]
                j += 1
            if self._text(j) == "{":
                if t == "enum":
                    close = find_close(self._toks, j, end)
                    fields = _enumerators(self._toks[j + 1:close], tag.text if tag else "int")
                    if tag is not None:
                        self._add(i, self._make(DeclKind.ENUM, tag, scope, (),
                                                fields=fields, is_definition=True))
                else:
                    slot = len(self._decls)
                    fields, close = self._record_body(j, end, scope, tag.text if tag else "", ())
                    if tag is not None:
                        self._decls.insert(slot, (i, self._make(
                            DeclKind.STRUCT, tag, scope, (), fields=fields, is_definition=True,
                        )))
                stop = self._skip_statement(close + 1, end)
                underlying = f"{t} {tag.text}" if tag else f"{t} {{...}}"
                for part in split_top_level(self._toks[close + 1:stop - 1]):
                    names = [tok for tok in part if _is_name(tok)]
                    if names:
                        self._add(i, self._make(
                            DeclKind.ALIAS, names[-1], scope, (),
                            fields=fields, underlying_type=underlying, is_definition=True,
                        ))
                return stop

        stop = self._skip_statement(i, end)
        body = self._toks[i + 1:stop - 1]
        name_tok, type_tokens = _typedef_name(body)
        if name_tok is not None:
            self._add(i, self._make(
                DeclKind.ALIAS, name_tok, scope, (),
                underlying_type=spell_type(type_tokens), is_definition=True,
            ))
        return stop

    # ── generic declarations ──────────────────────────────────────────

    def _declaration(self, i: int, end: int, scope: _Scope, template_params: Tuple[str, ...]) -> int:
        """Function, operator or variable declaration starting at ``i``."""
        toks = self._toks
        k = i
        paren_seen = False
        assign_seen = False
        while k < end:
            t = toks[k].text
            if t == ";":
                self._head(i, k, None, scope, template_params)
                return k + 1
            if t == "(":
                if not assign_seen and k > i:
                    paren_seen = True
                k = find_close(toks, k, end) + 1
                continue
            if t == "[":
                k = find_close(toks, k, end) + 1
                continue
            if t == "=":
                assign_seen = True
            if t == "<" and not assign_seen and k > i and toks[k - 1].is_ident and toks[k - 1].text != "operator":
                k = find_angle_close(toks, k, end) + 1
                continue
            if t == "{":
                if paren_seen and not assign_seen and not _brace_is_initializer(toks, i, k):
                    close = find_close(toks, k, end)
                    self._head(i, k, (k + 1, close), scope, template_params)
                    stop = close + 1
                    if self._text(stop) == ";":
                        stop += 1
                    return stop
                k = find_close(toks, k, end) + 1
                continue
            if t == "}":
                # unbalanced: let the enclosing scope see it
                self._head(i, k, None, scope, template_params)
                return k
            k += 1
        self._head(i, end, None, scope, template_params)
        return end

    def _head(
        self,
        start: int,
        stop: int,
        body: Optional[Tuple[int, int]],
        scope: _Scope,
        template_params: Tuple[str, ...],
    ) -> None:
        head = self._toks[start:stop]
        if not head:
            return
        func = _function_parts(head, scope.struct)
        if func is not None:
            self._function(start, head, func, body, scope, template_params)
            return
        if body is None:
            self._declarators(head, None, scope, start)

    def _function(
        self,
        start: int,
        head: Sequence[Token],
        parts: "_FunctionParts",
        body: Optional[Tuple[int, int]],
        scope: _Scope,
        template_params: Tuple[str, ...],
    ) -> None:
        params, variadic = _parameters(head[parts.open + 1:parts.close])
        qualifiers = [t.text for t in head[:parts.name_start] if t.text in DECL_SPECIFIERS]
        trailing = head[parts.close + 1:]
        return_tokens = [t for t in head[:parts.name_start] if t.text not in DECL_SPECIFIERS]
        is_definition = body is not None
        k = 0
        while k < len(trailing):
            t = trailing[k].text
            if t in ("const", "noexcept", "override", "final", "volatile"):
                qualifiers.append(t)
            elif t == "->":
                stop = k + 1
                while stop < len(trailing) and trailing[stop].text not in ("=", "{"):
                    stop += 1
                return_tokens = list(trailing[k + 1:stop])
                k = stop
                continue
            elif t == "=" and k + 1 < len(trailing):
                nxt = trailing[k + 1].text
                if nxt in ("default", "delete"):
                    qualifiers.append(nxt)
                    is_definition = True
                elif nxt == "0":
                    qualifiers.append("pure")
                k += 2
                continue
            k += 1

        namespace = scope.namespace + parts.qualifier
        kind = DeclKind.OPERATOR if parts.name.startswith("operator") else DeclKind.FUNCTION
        all_template = scope.template_params + template_params
        body_tokens: Tuple[Token, ...] = ()
        if body is not None:
            body_tokens = tuple(self._toks[body[0]:body[1]])
        decl = Declaration(
            kind=DeclKind.TEMPLATE if template_params else kind,
            name=parts.name,
            namespace=namespace,
            location=self._loc(head[parts.name_index]),
            parameters=params,
            return_type=spell_type(return_tokens),
            qualifiers=tuple(dict.fromkeys(qualifiers)),
            template_params=all_template,
            templated_kind=kind if template_params else None,
            is_definition=is_definition,
            variadic=variadic,
            body=body_tokens,
            usings=tuple(scope.usings),
        )
        self._add(start, decl)

    def _declarators(
        self,
        tokens: Sequence[Token],
        base_type: Optional[str],
        scope: _Scope,
        start: int,
    ) -> None:
        """Variables (or fields, inside a struct) named by ``tokens``."""
        parts = split_top_level(tokens)
        if not parts:
            return
        base = base_type
        for idx, part in enumerate(parts):
            decl_part = _before_initializer(part)
            names = [k for k, tok in enumerate(decl_part) if _is_name(tok)]
            if not names:
                continue
            name_index = names[-1]
            if base is None:
                type_tokens = [t for t in decl_part[:name_index] if t.text not in DECL_SPECIFIERS]
                if not type_tokens or not any(t.is_ident for t in type_tokens):
                    return
                ptr = 0
                while ptr < len(type_tokens) and type_tokens[-1 - ptr].text in ("*", "&"):
                    ptr += 1
                base = spell_type(type_tokens[:len(type_tokens) - ptr])
                type_text = spell_type(type_tokens)
            else:
                modifiers = "".join(t.text for t in decl_part[:name_index] if t.text in ("*", "&"))
                type_text = base + modifiers
            if name_index + 1 < len(decl_part) and decl_part[name_index + 1].text == "[":
                type_text += "[]"
            name_tok = decl_part[name_index]
            if scope.struct is not None:
                scope.fields.append(Field(type_text, name_tok.text))
                continue
            qualifiers = tuple(t.text for t in decl_part[:name_index] if t.text in ("static", "constexpr", "extern", "const"))
            self._add(start + idx, self._make(
                DeclKind.VARIABLE, name_tok, scope, (),
                underlying_type=type_text,
                qualifiers=qualifiers,
                is_definition="extern" not in qualifiers,
            ))

    def _make(
        self,
        kind: DeclKind,
        name_tok: Token,
        scope: _Scope,
        template_params: Tuple[str, ...],
        **kwargs: Any,
    ) -> Declaration:
        if template_params:
            kwargs["templated_kind"] = kind
            kind = DeclKind.TEMPLATE
        return Declaration(
            kind=kind,
            name=name_tok.text,
            namespace=scope.namespace,
            location=self._loc(name_tok),
            template_params=scope.template_params + template_params,
            usings=tuple(scope.usings),
            **kwargs,
        )


# ═══════════════════════════════════════════════════════════════════════════
#  PART 4 — DECLARATOR PARSING
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, slots=True)
class _FunctionParts:
    name: str
    name_index: int
    name_start: int          # first token of the (qualified) name
    qualifier: Tuple[str, ...]
    open: int
    close: int


def _function_parts(head: Sequence[Token], struct: Optional[str]) -> Optional[_FunctionParts]:
    """Locate the declarator of a function head, or None for non-functions."""
    n = len(head)
    k = 0
    while k < n:
        t = head[k].text
        if t == "=":
            return None
        if t == "operator":
            j = k + 1
            if j < n and head[j].text == "(" and j + 1 < n and head[j + 1].text == ")":
                j += 2
            else:
                while j < n and head[j].text != "(":
                    j += 1
            if j >= n:
                return None
            name = "operator" + _operator_suffix(head[k + 1:j])
            close = find_close(head, j, n)
            start, qualifier = _qualifier(head, k)
            return _FunctionParts(name, k, start, qualifier, j, close)
        if t == "(":
            if k == 0:
                return None
            prev = head[k - 1]
            if not prev.is_ident or prev.text in KEYWORDS or prev.text in _TYPE_WORDS:
                return None
            close = find_close(head, k, n)
            inner = head[k + 1:close]
            if inner and inner[0].kind in (TokenKind.NUMBER, TokenKind.STRING, TokenKind.CHAR):
                return None
            name = prev.text
            name_index = k - 1
            if name_index > 0 and head[name_index - 1].text == "~":
                name = "~" + name
                name_index -= 1
            start, qualifier = _qualifier(head, name_index)
            has_type = any(tok.is_ident for tok in head[:start] if tok.text not in DECL_SPECIFIERS)
            if not has_type and name.lstrip("~") != (qualifier[-1] if qualifier else struct):
                # no return type and not a constructor: a macro invocation
                return None
            return _FunctionParts(name, k - 1, start, qualifier, k, close)
        if t == "[" or t == "{":
            k = find_close(head, k, n) + 1
            continue
        if t == "<" and k > 0 and head[k - 1].is_ident:
            k = find_angle_close(head, k, n) + 1
            continue
        k += 1
    return None


def _operator_suffix(tokens: Sequence[Token]) -> str:
    texts = [t.text for t in tokens]
    if texts and all(not t[0].isalnum() and t[0] != "_" for t in texts):
        return "".join(texts)
    return " " + spell_type(tokens) if texts else "()"


def _qualifier(head: Sequence[Token], name_index: int) -> Tuple[int, Tuple[str, ...]]:
    """Walk back over ``A::B::`` before the name."""
    parts: List[str] = []
    k = name_index
    while k >= 2 and head[k - 1].text == "::":
        prev = head[k - 2]
        if prev.text == ">":
            # A<T>::f — skip the argument list
            depth = 0
            j = k - 2
            while j >= 0:
                if head[j].text == ">":
                    depth += 1
                elif head[j].text == "<":
                    depth -= 1
                    if depth == 0:
                        break
                j -= 1
            if j <= 0 or not head[j - 1].is_ident:
                break
            parts.append(head[j - 1].text)
            k = j - 1
            continue
        if not prev.is_ident:
            break
        parts.append(prev.text)
        k -= 2
    parts.reverse()
    return k, tuple(parts)


def _parameters(tokens: Sequence[Token]) -> Tuple[Tuple[Parameter, ...], bool]:
    chunks = split_top_level(tokens)
    if len(chunks) == 1 and [t.text for t in chunks[0]] == ["void"]:
        return (), False
    params: List[Parameter] = []
    variadic = False
    for chunk in chunks:
        if not chunk:
            continue
        if any(t.text == "..." for t in chunk):
            # C variadic or a parameter pack: any number of trailing arguments
            variadic = True
            continue
        default = False
        for idx, tok in enumerate(chunk):
            if tok.text == "=":
                chunk = chunk[:idx]
                default = True
                break
        array = False
        if chunk and chunk[-1].text == "]":
            open_ = max(idx for idx, t in enumerate(chunk) if t.text == "[")
            chunk = chunk[:open_]
            array = True
        name = ""
        if len(chunk) > 1 and _is_name(chunk[-1]) and chunk[-2].text != "::":
            name = chunk[-1].text
            chunk = chunk[:-1]
        spelled = spell_type(chunk) + ("*" if array else "")
        params.append(Parameter(spelled, name, default))
    return tuple(params), variadic


def _template_param_names(tokens: Sequence[Token]) -> Tuple[str, ...]:
    names: List[str] = []
    for chunk in split_top_level(tokens):
        for idx, tok in enumerate(chunk):
            if tok.text == "=":
                chunk = chunk[:idx]
                break
        idents = [t for t in chunk if t.is_ident and t.text not in ("typename", "class")]
        if len(chunk) > 1 and idents and chunk[-1].is_ident:
            names.append(chunk[-1].text)
    return tuple(names)


def _enumerators(tokens: Sequence[Token], enum_type: str) -> Tuple[Field, ...]:
    out: List[Field] = []
    for chunk in split_top_level(tokens):
        if chunk and chunk[0].is_ident:
            out.append(Field(enum_type, chunk[0].text))
    return tuple(out)


def _typedef_name(tokens: Sequence[Token]) -> Tuple[Optional[Token], List[Token]]:
    """Name and aliased type of a plain ``typedef``."""
    # function pointer: typedef R (*name)(args);
    for k in range(len(tokens) - 2):
        if tokens[k].text == "(" and tokens[k + 1].text == "*" and tokens[k + 2].is_ident:
            return tokens[k + 2], list(tokens[:k]) + [tokens[k + 1]]
    end = len(tokens)
    if end and tokens[end - 1].text == "]":
        end = max(idx for idx, t in enumerate(tokens) if t.text == "[")
    if end >= 2 and _is_name(tokens[end - 1]):
        return tokens[end - 1], list(tokens[:end - 1])
    return None, []


def _before_initializer(tokens: Sequence[Token]) -> List[Token]:
    out: List[Token] = []
    for k, tok in enumerate(tokens):
        if tok.text in ("=", "{"):
            break
        if tok.text == ":" and k and tokens[k - 1].is_ident:
            break  # bit-field width
        if tok.text == "(" and out and _is_name(out[-1]):
            break  # constructor-style initializer
        out.append(tok)
    return out


def _brace_is_initializer(toks: Sequence[Token], start: int, brace: int) -> bool:
    """
    ``Foo(int x) : a(x), b{x} {`` — the first ``{`` after ``b`` initialises
    a member; the body brace follows ``)`` or ``}`` or a qualifier.
    """
    prev = toks[brace - 1] if brace > start else None
    if prev is None:
        return False
    if prev.is_ident and prev.text not in ("const", "noexcept", "override", "final", "volatile"):
        # only an initializer inside a constructor's member-init list
        for k in range(brace - 1, start, -1):
            if toks[k].text == ":" and toks[k - 1].text == ")":
                return True
        return False
    return False


def extract_declarations(
    path: str,
    tokens: Sequence[Token],
    unavailable_tokens: Sequence[Token] = (),
    error_location: Optional[SourceLocation] = None,
) -> ExtractedFile:
    """Convenience wrapper: ``DeclarationExtractor(...).extract()``."""
    return DeclarationExtractor(path, tokens, unavailable_tokens, error_location).extract()


__all__ = [
    "DeclKind",
    "Parameter",
    "Field",
    "Declaration",
    "UsingDirective",
    "ExtractedFile",
    "DeclarationExtractor",
    "extract_declarations",
    "spell_type",
    "value_type",
    "split_top_level",
    "strip_attributes",
    "find_close",
    "find_angle_close",
]
