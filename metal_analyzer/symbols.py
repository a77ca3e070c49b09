"""
metal_analyzer/symbols.py
═════════════════════════

Overload sets and the symbol table.

    SymbolTable
      └── (namespace path, name) ──► OverloadSet
                                       ├── function / operator / template …
                                       └── struct / alias / enum / variable

A table is built twice in a run: once corpus-wide (reported in the
result) and once per translation unit, from the declarations visible to
that unit, for reference resolution.  Declarations are de-duplicated by
physical identity, so a header that is part of a unit through several
include paths contributes its declarations once.

License: MIT — same as metal-analyzer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import (
    Any,
    Dict,
    Iterable,
    Iterator,
    List,
    Optional,
    Set,
    Tuple,
)

from .declarations import Declaration, DeclKind

ScopeKey = Tuple[Tuple[str, ...], str]


@dataclass
class OverloadSet:
    """All declarations sharing one (namespace path, name)."""
    namespace: Tuple[str, ...]
    name: str
    declarations: List[Declaration] = field(default_factory=list)

    @property
    def qualified_name(self) -> str:
        return "::".join(self.namespace + (self.name,))

    def add(self, decl: Declaration) -> None:
        self.declarations.append(decl)

    def by_kind(self) -> Dict[DeclKind, List[Declaration]]:
        """Declarations partitioned by kind (``template`` looked through)."""
        out: Dict[DeclKind, List[Declaration]] = {}
        for decl in self.declarations:
            out.setdefault(decl.effective_kind, []).append(decl)
        return out

    @property
    def callables(self) -> List[Declaration]:
        return [d for d in self.declarations if d.is_callable]

    @property
    def types(self) -> List[Declaration]:
        return [d for d in self.declarations if d.is_type]

    def __len__(self) -> int:
        return len(self.declarations)

    def __iter__(self) -> Iterator[Declaration]:
        return iter(self.declarations)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "namespace": list(self.namespace),
            "name": self.name,
            "declarations": [d.to_dict() for d in self.declarations],
        }


class SymbolTable:
    """
    Mapping of (namespace path, name) to ``OverloadSet``.

    Usage::

        table = SymbolTable.from_declarations(decls)
        table.lookup(("fixture",), "overloaded")     # OverloadSet or None
    """

    def __init__(self) -> None:
        self._sets: Dict[ScopeKey, OverloadSet] = {}
        self._seen: Set[Tuple[Any, ...]] = set()
        self._namespaces: Set[Tuple[str, ...]] = {()}

    @classmethod
    def from_declarations(cls, decls: Iterable[Declaration]) -> "SymbolTable":
        table = cls()
        table.extend(decls)
        return table

    def add(self, decl: Declaration) -> bool:
        """Add ``decl``; False when the same physical declaration is known."""
        ident = decl.identity()
        if ident in self._seen:
            return False
        self._seen.add(ident)
        key = (decl.namespace, decl.name)
        ovl = self._sets.get(key)
        if ovl is None:
            ovl = self._sets[key] = OverloadSet(decl.namespace, decl.name)
        ovl.add(decl)
        for depth in range(1, len(decl.namespace) + 1):
            self._namespaces.add(decl.namespace[:depth])
        if decl.is_type:
            self._namespaces.add(decl.namespace + (decl.name,))
        return True

    def extend(self, decls: Iterable[Declaration]) -> None:
        for decl in decls:
            self.add(decl)

    def lookup(self, namespace: Tuple[str, ...], name: str) -> Optional[OverloadSet]:
        return self._sets.get((namespace, name))

    def has_scope(self, namespace: Tuple[str, ...]) -> bool:
        """True when ``namespace`` names a known namespace or struct."""
        return namespace in self._namespaces

    def find(self, name: str) -> List[OverloadSet]:
        """Every overload set called ``name``, in any namespace."""
        return [s for (ns, n), s in sorted(self._sets.items()) if n == name]

    def namespaces(self) -> List[Tuple[str, ...]]:
        return sorted({ns for ns, _ in self._sets})

    def names(self, namespace: Tuple[str, ...]) -> List[str]:
        return sorted(n for ns, n in self._sets if ns == namespace)

    def overload_sets(self) -> Iterator[OverloadSet]:
        for key in sorted(self._sets):
            yield self._sets[key]

    def declarations(self) -> Iterator[Declaration]:
        for ovl in self.overload_sets():
            yield from ovl.declarations

    def __len__(self) -> int:
        return len(self._sets)

    def __contains__(self, key: object) -> bool:
        return key in self._sets

    def as_nested(self) -> Dict[str, Dict[str, OverloadSet]]:
        """``"ns::path" → name → OverloadSet`` (global namespace is ``""``)."""
        out: Dict[str, Dict[str, OverloadSet]] = {}
        for ovl in self.overload_sets():
            out.setdefault("::".join(ovl.namespace), {})[ovl.name] = ovl
        return out

    def to_dict(self) -> Dict[str, Dict[str, List[Dict[str, Any]]]]:
        return {
            ns: {name: [d.to_dict() for d in ovl.declarations] for name, ovl in names.items()}
            for ns, names in self.as_nested().items()
        }


__all__ = ["OverloadSet", "SymbolTable", "ScopeKey"]
