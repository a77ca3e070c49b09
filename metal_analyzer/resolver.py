"""
metal_analyzer/resolver.py
══════════════════════════

Overload and reference resolution over function bodies.

For every call ``name(args…)`` in a body::

    skip?  keyword · builtin type cast · member call (. / ->)
           local / parameter · external namespace (metal::, std::)
      │
      ▼
    scope chain   struct → enclosing namespaces → global → using targets
      │           (the first scope declaring the name hides the rest)
      ▼
    arity         defaults and variadics honoured
      │
      ▼
    positional    EXACT · CONVERTIBLE · UNKNOWN · INCOMPATIBLE
    grading       fewest conversions wins, non-templates win ties
      │
      ▼
    one → resolved     none → unresolved-reference
    many → ambiguous-overload (first declared candidate is used)

Argument types are only known for literals, parameters and simply
declared locals; everything else is UNKNOWN and never disqualifies a
candidate.  A tie between equally good candidates is always reported,
whether or not every argument type is known.

License: MIT — same as metal-analyzer.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import (
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Set,
    Tuple,
)

from .builtins import (
    ADDRESS_SPACES,
    BUILTIN_TYPES,
    KEYWORDS,
    NUMERIC_SCALARS,
    is_builtin_function,
    vector_shape,
)
from .declarations import (
    Declaration,
    find_angle_close,
    find_close,
    spell_type,
    split_top_level,
    value_type,
)
from .diagnostics import Diagnostic, DiagnosticCode, SourceLocation
from .lexer import Token, TokenKind, literal_type
from .symbols import OverloadSet, SymbolTable

logger = logging.getLogger(__name__)

DEFAULT_EXTERNAL_NAMESPACES = ("metal", "std", "simd")


# ═══════════════════════════════════════════════════════════════════════════
#  PART 1 — TYPE COMPATIBILITY
# ═══════════════════════════════════════════════════════════════════════════

class Compat(IntEnum):
    EXACT = 0
    CONVERTIBLE = 1
    UNKNOWN = 2
    INCOMPATIBLE = 3


_WORD_RE = re.compile(r"[A-Za-z_]\w*")


def _split_space(spelled: str) -> Tuple[Optional[str], str]:
    words = spelled.split()
    space = next((w for w in words if w in ADDRESS_SPACES), None)
    core = " ".join(w for w in words if w not in ADDRESS_SPACES)
    return space, core.replace(" *", "*")


def type_compatibility(
    arg: Optional[str],
    param: str,
    template_params: Iterable[str] = (),
) -> Compat:
    """Grade passing an argument of type ``arg`` to a parameter ``param``."""
    if arg is None:
        return Compat.UNKNOWN
    p_type = value_type(param)
    if set(_WORD_RE.findall(p_type)) & set(template_params):
        return Compat.UNKNOWN
    a_type = value_type(arg)
    if p_type == a_type:
        return Compat.EXACT

    p_space, p_core = _split_space(p_type)
    a_space, a_core = _split_space(a_type)
    p_ptr = p_core.endswith("*")
    a_ptr = a_core.endswith("*")
    if p_ptr and a_ptr and p_space and a_space and p_space != a_space:
        return Compat.INCOMPATIBLE
    if p_core == a_core:
        return Compat.EXACT
    if p_ptr or a_ptr:
        if p_ptr != a_ptr:
            # an int argument may be a null pointer constant
            value = a_core if p_ptr else p_core
            if value in NUMERIC_SCALARS and a_type != "int":
                return Compat.INCOMPATIBLE
            return Compat.UNKNOWN
        p_base, a_base = p_core.rstrip("*").strip(), a_core.rstrip("*").strip()
        if p_base in BUILTIN_TYPES and a_base in BUILTIN_TYPES:
            return Compat.INCOMPATIBLE
        return Compat.UNKNOWN

    if p_core in NUMERIC_SCALARS and a_core in NUMERIC_SCALARS:
        return Compat.CONVERTIBLE
    if vector_shape(p_core) is not None and a_core in NUMERIC_SCALARS:
        return Compat.CONVERTIBLE
    if p_core in BUILTIN_TYPES and a_core in BUILTIN_TYPES:
        return Compat.INCOMPATIBLE
    return Compat.UNKNOWN


# ═══════════════════════════════════════════════════════════════════════════
#  PART 2 — REFERENCES
# ═══════════════════════════════════════════════════════════════════════════

class ReferenceStatus(Enum):
    RESOLVED = "resolved"
    AMBIGUOUS = "ambiguous"
    EXTERNAL = "external"
    UNAVAILABLE = "unavailable"
    UNRESOLVED = "unresolved"


@dataclass(frozen=True, slots=True)
class CallSite:
    """A call expression found in a function body."""
    name: str
    qualifier: Tuple[str, ...]
    location: SourceLocation
    arg_types: Tuple[Optional[str], ...]
    global_qualified: bool = False

    @property
    def spelled(self) -> str:
        prefix = "::" if self.global_qualified else ""
        return prefix + "::".join(self.qualifier + (self.name,))

    def describe(self) -> str:
        args = ", ".join(a if a is not None else "?" for a in self.arg_types)
        return f"{self.spelled}({args})"


@dataclass(frozen=True)
class Reference:
    """The outcome of resolving one call site."""
    site: CallSite
    status: ReferenceStatus
    target: Optional[Declaration] = None
    candidates: int = 0
    caller: Optional[Declaration] = field(default=None, compare=False, repr=False)

    @property
    def location(self) -> SourceLocation:
        return self.site.location

    def to_dict(self) -> Dict[str, object]:
        out: Dict[str, object] = {
            "file": self.site.location.file,
            "line": self.site.location.line,
            "column": self.site.location.column,
            "name": self.site.spelled,
            "status": self.status.value,
            "candidates": self.candidates,
        }
        if self.target is not None:
            out["target"] = self.target.signature()
            out["target_file"] = self.target.location.file
            out["target_line"] = self.target.location.line
        return out


# ═══════════════════════════════════════════════════════════════════════════
#  PART 3 — CALL-SITE DISCOVERY
# ═══════════════════════════════════════════════════════════════════════════

_STATEMENT_START = frozenset({";", "{", "}", "(", ",", ":", ")"})
_QUALIFIER_WORDS = frozenset({"const", "volatile", "static", "constexpr"}) | ADDRESS_SPACES
_DECLARATOR_FOLLOW = frozenset({"=", ";", ",", "(", "{", "[", ":", ")"})


def collect_locals(
    body: Sequence[Token], is_type_name: Callable[[str], bool]
) -> Dict[str, str]:
    """Names declared in ``body`` as ``[quals] Type [*&] name …`` → type."""
    out: Dict[str, str] = {}
    n = len(body)
    for k in range(n):
        tok = body[k]
        if not tok.is_ident or not is_type_name(tok.text):
            continue
        start = k
        while start > 0 and body[start - 1].text in _QUALIFIER_WORDS:
            start -= 1
        if start > 0 and body[start - 1].text not in _STATEMENT_START:
            continue
        j = k + 1
        if j < n and body[j].text == "<":
            j = find_angle_close(body, j, n) + 1
        while j < n and body[j].text in ("*", "&", "&&", "const"):
            j += 1
        if j + 1 < n and body[j].is_ident and body[j].text not in KEYWORDS \
                and body[j + 1].text in _DECLARATOR_FOLLOW:
            out.setdefault(body[j].text, spell_type(body[start:j]))
    return out


def _argument_type(tokens: Sequence[Token], local_types: Mapping[str, str]) -> Optional[str]:
    if not tokens:
        return None
    if len(tokens) == 1:
        tok = tokens[0]
        lit = literal_type(tok)
        if lit is not None:
            return lit
        if tok.is_ident:
            return local_types.get(tok.text)
        return None
    if len(tokens) == 2 and tokens[0].text in ("-", "+") and tokens[1].kind is TokenKind.NUMBER:
        return literal_type(tokens[1])
    if tokens[0].text in BUILTIN_TYPES and len(tokens) >= 3 and tokens[1].text == "(" \
            and find_close(tokens, 1, len(tokens)) == len(tokens) - 1:
        return tokens[0].text
    if tokens[0].text == "(" and len(tokens) >= 4 and tokens[1].text in BUILTIN_TYPES \
            and tokens[2].text == ")":
        return tokens[1].text
    return None


def find_call_sites(
    body: Sequence[Token],
    local_types: Mapping[str, str],
    skip_names: Set[str],
    path: str = "",
) -> List[CallSite]:
    """Call sites of ``body`` that may refer to user declarations."""
    sites: List[CallSite] = []
    n = len(body)
    for k in range(n):
        tok = body[k]
        if not tok.is_ident or tok.text in KEYWORDS:
            continue
        j = k + 1
        if j < n and body[j].text == "<":
            close = find_angle_close(body, j, n)
            if body[close].text not in (">", ">>") or close + 1 >= n:
                continue
            j = close + 1
        if j >= n or body[j].text != "(":
            continue
        prev = body[k - 1].text if k else ""
        if prev in (".", "->"):
            continue

        qualifier: List[str] = []
        global_qualified = False
        dependent = False
        q = k
        while q >= 1 and body[q - 1].text == "::":
            before = body[q - 2] if q >= 2 else None
            if before is not None and before.is_ident:
                qualifier.insert(0, before.text)
                q -= 2
            elif before is not None and before.text in (">", ">>"):
                dependent = True  # Foo<T>::bar(...)
                break
            else:
                global_qualified = True
                break
        if dependent or (q >= 1 and body[q - 1].text in (".", "->")):
            continue
        if not qualifier and (tok.text in local_types or tok.text in skip_names):
            continue
        if not qualifier and tok.text in BUILTIN_TYPES:
            continue

        close = find_close(body, j, n)
        args = split_top_level(body[j + 1:close])
        sites.append(CallSite(
            tok.text,
            tuple(qualifier),
            SourceLocation(path, tok.line, tok.column),
            tuple(_argument_type(a, local_types) for a in args),
            global_qualified,
        ))
    return sites


# ═══════════════════════════════════════════════════════════════════════════
#  PART 4 — RESOLVER
# ═══════════════════════════════════════════════════════════════════════════

def _decl_order(decl: Declaration) -> Tuple[str, int, int]:
    loc = decl.location
    return (loc.file, loc.line, loc.column)


class ReferenceResolver:
    """
    Resolves the call sites of function bodies against one unit's table.

    Parameters
    ----------
    table : SymbolTable
        Declarations visible to the translation unit.
    unavailable : SymbolTable, optional
        Declarations that exist only after an active ``#error``.
    unavailable_errors : mapping of path → SourceLocation
        The ``#error`` that made each file's tail unavailable.
    external_namespaces : iterable of str
        Namespaces whose members are never resolved (``metal``, ``std``).
    known_symbols : iterable of str
        Extra names (plain or qualified) that count as declared.
    """

    def __init__(
        self,
        table: SymbolTable,
        unavailable: Optional[SymbolTable] = None,
        unavailable_errors: Optional[Mapping[str, SourceLocation]] = None,
        external_namespaces: Iterable[str] = DEFAULT_EXTERNAL_NAMESPACES,
        known_symbols: Iterable[str] = (),
    ) -> None:
        self._table = table
        self._unavailable = unavailable or SymbolTable()
        self._unavailable_errors = dict(unavailable_errors or {})
        self._external = frozenset(external_namespaces)
        self._known = frozenset(known_symbols)

    # ── scopes ────────────────────────────────────────────────────────

    @staticmethod
    def scope_chain(decl: Declaration) -> List[Tuple[str, ...]]:
        """Innermost-first scopes visible from ``decl``, then using targets."""
        ns = decl.namespace
        chain = [ns[:i] for i in range(len(ns), -1, -1)]
        for target in decl.usings:
            for i in range(len(ns), -1, -1):
                candidate = ns[:i] + target
                if candidate not in chain:
                    chain.append(candidate)
        return chain

    def _lookup(
        self, table: SymbolTable, scopes: Sequence[Tuple[str, ...]], name: str
    ) -> Optional[OverloadSet]:
        for scope in scopes:
            ovl = table.lookup(scope, name)
            if ovl is not None and len(ovl):
                return ovl
        return None

    def _qualified_scopes(self, decl: Declaration, site: CallSite) -> List[Tuple[str, ...]]:
        if site.global_qualified:
            return [site.qualifier]
        ns = decl.namespace
        return [ns[:i] + site.qualifier for i in range(len(ns), -1, -1)]

    def is_type_name(self, decl: Declaration, name: str) -> bool:
        if name in BUILTIN_TYPES or name == "auto" or name in decl.template_params:
            return True
        ovl = self._lookup(self._table, self.scope_chain(decl), name)
        return ovl is not None and bool(ovl.types)

    # ── resolution ────────────────────────────────────────────────────

    def resolve(self, decl: Declaration) -> Tuple[List[Reference], List[Diagnostic]]:
        """Resolve every call in ``decl``'s body."""
        if not decl.body:
            return [], []
        locals_ = collect_locals(decl.body, lambda name: self.is_type_name(decl, name))
        for param in decl.parameters:
            if param.name:
                locals_[param.name] = param.type
        skip = set(decl.template_params)

        refs: List[Reference] = []
        diags: List[Diagnostic] = []
        for site in find_call_sites(decl.body, locals_, skip, decl.location.file):
            ref, diag = self.resolve_call(decl, site)
            if ref is not None:
                refs.append(ref)
            if diag is not None:
                diags.append(diag)
        return refs, diags

    def resolve_call(
        self, caller: Declaration, site: CallSite
    ) -> Tuple[Optional[Reference], Optional[Diagnostic]]:
        if site.qualifier and site.qualifier[0] in self._external:
            return Reference(site, ReferenceStatus.EXTERNAL, caller=caller), None
        if site.spelled.lstrip(":") in self._known or site.name in self._known:
            return Reference(site, ReferenceStatus.EXTERNAL, caller=caller), None

        if site.qualifier or site.global_qualified:
            scopes = self._qualified_scopes(caller, site)
        else:
            scopes = self.scope_chain(caller)
        ovl = self._lookup(self._table, scopes, site.name)

        if ovl is not None and not ovl.callables:
            # constructor of a user type, or a call through a variable
            target = ovl.declarations[0]
            return Reference(site, ReferenceStatus.RESOLVED, target, 1, caller), None

        if ovl is None:
            return self._not_found(caller, site, scopes)
        return self._narrow(caller, site, ovl)

    def _not_found(
        self, caller: Declaration, site: CallSite, scopes: Sequence[Tuple[str, ...]]
    ) -> Tuple[Optional[Reference], Optional[Diagnostic]]:
        if not site.qualifier and is_builtin_function(site.name):
            return Reference(site, ReferenceStatus.EXTERNAL, caller=caller), None
        hidden = self._lookup(self._unavailable, scopes, site.name)
        if hidden is not None:
            target = min(hidden.declarations, key=_decl_order)
            error = self._unavailable_errors.get(target.location.file)
            where = f" (#error at {error})" if error is not None else ""
            return (
                Reference(site, ReferenceStatus.UNAVAILABLE, target, len(hidden), caller),
                Diagnostic.make(
                    DiagnosticCode.UNRESOLVED_REFERENCE,
                    site.location,
                    f"'{site.spelled}' is unavailable: it is declared after an "
                    f"active #error{where}",
                ),
            )

        dependent = set(caller.template_params)
        if dependent and any(
            a is None or set(_WORD_RE.findall(a)) & dependent for a in site.arg_types
        ):
            # dependent call in a template: looked up at instantiation
            return Reference(site, ReferenceStatus.EXTERNAL, caller=caller), None

        return (
            Reference(site, ReferenceStatus.UNRESOLVED, caller=caller),
            Diagnostic.make(
                DiagnosticCode.UNRESOLVED_REFERENCE,
                site.location,
                f"use of undeclared identifier '{site.spelled}'",
            ),
        )

    def _narrow(
        self, caller: Declaration, site: CallSite, ovl: OverloadSet
    ) -> Tuple[Optional[Reference], Optional[Diagnostic]]:
        candidates = sorted(ovl.callables, key=_decl_order)
        argc = len(site.arg_types)
        viable = [
            d for d in candidates
            if d.min_arity() <= argc and (d.max_arity() is None or argc <= d.max_arity())
        ]

        scored: List[Tuple[Tuple[int, bool], Declaration]] = []
        for decl in viable:
            grades = [
                type_compatibility(arg, decl.parameters[i].type, decl.template_params)
                for i, arg in enumerate(site.arg_types)
                if i < len(decl.parameters)
            ]
            if Compat.INCOMPATIBLE in grades:
                continue
            conversions = sum(1 for g in grades if g is Compat.CONVERTIBLE)
            scored.append(((conversions, decl.is_template), decl))

        if not scored:
            return (
                Reference(site, ReferenceStatus.UNRESOLVED, candidates=len(candidates), caller=caller),
                Diagnostic.make(
                    DiagnosticCode.UNRESOLVED_REFERENCE,
                    site.location,
                    f"no matching function for call to '{site.describe()}' "
                    f"({len(candidates)} candidate(s) considered)",
                ),
            )

        best = min(score for score, _ in scored)
        winners = [d for score, d in scored if score == best]
        target = winners[0]
        if len(winners) == 1:
            return Reference(site, ReferenceStatus.RESOLVED, target, len(candidates), caller), None

        names = ", ".join(d.signature() for d in winners)
        return (
            Reference(site, ReferenceStatus.AMBIGUOUS, target, len(winners), caller),
            Diagnostic.make(
                DiagnosticCode.AMBIGUOUS_OVERLOAD,
                site.location,
                f"call to '{site.describe()}' is ambiguous between {names}",
            ),
        )


# ═══════════════════════════════════════════════════════════════════════════
#  PART 5 — DUPLICATE DEFINITIONS
# ═══════════════════════════════════════════════════════════════════════════

def find_duplicate_definitions(decls: Iterable[Declaration]) -> List[Diagnostic]:
    """
    ``duplicate-definition`` for each callable definition whose signature
    was already defined at a different source position.
    """
    first: Dict[tuple, Declaration] = {}
    seen: Set[tuple] = set()
    out: List[Diagnostic] = []
    for decl in sorted(decls, key=_decl_order):
        if not decl.is_callable or not decl.is_definition:
            continue
        ident = decl.identity()
        if ident in seen:
            continue
        seen.add(ident)
        key = decl.signature_key()
        previous = first.get(key)
        if previous is None:
            first[key] = decl
            continue
        out.append(Diagnostic.make(
            DiagnosticCode.DUPLICATE_DEFINITION,
            decl.location,
            f"redefinition of '{decl.signature()}' "
            f"(previous definition at {previous.location})",
        ))
    return out


__all__ = [
    "Compat",
    "type_compatibility",
    "ReferenceStatus",
    "CallSite",
    "Reference",
    "collect_locals",
    "find_call_sites",
    "ReferenceResolver",
    "find_duplicate_definitions",
    "DEFAULT_EXTERNAL_NAMESPACES",
]
