"""
metal_analyzer/includes.py
══════════════════════════

Include graph resolver.

Every file is preprocessed under the macro snapshot its includer had at
the ``#include``; the pair is the graph node::

    FileKey(path, fingerprint)

    ┌──────────────────────┐  #include "b.h"   ┌──────────────────────┐
    │ (a.metal, 3f09…)     │ ────────────────► │ (b.h, 91cc…)         │
    └──────────────────────┘  IncludeEdge      └──────────────────────┘

``resolve(path, snapshot)`` is memoized on the key, so a header included
from ten places under the same macros is preprocessed once.  A stack of
in-progress *paths* (not keys) detects cycles: a file that includes
itself through any chain is an error even when the macro state differs on
each lap.

Search order for ``#include "x"``: the includer's directory, the
configured search roots, then (optionally) the includer's ancestor
directories.  ``#include <x>`` skips the includer's directory; when it
cannot be found it names a system header and is recorded without a
diagnostic unless ``strict_system_includes`` is set.

License: MIT — same as metal-analyzer.
"""

from __future__ import annotations

import logging
import posixpath
from dataclasses import dataclass, field
from typing import (
    Dict,
    FrozenSet,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Set,
    Tuple,
)

from .builtins import SYSTEM_HEADERS
from .diagnostics import Diagnostic, DiagnosticCode
from .macros import MacroSnapshot
from .preprocessor import IncludeRequest, PreprocessedFile, Preprocessor
from .scanner import ScannedFile

logger = logging.getLogger(__name__)

DEFAULT_MAX_INCLUDE_DEPTH = 64


# ═══════════════════════════════════════════════════════════════════════════
#  PART 1 — GRAPH TYPES
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True, slots=True, order=True)
class FileKey:
    """Graph node: a physical file preprocessed under one macro snapshot."""
    path: str
    fingerprint: str

    def __str__(self) -> str:
        return f"{self.path}@{self.fingerprint[:8]}"


@dataclass(frozen=True, slots=True)
class IncludeEdge:
    """
    One ``#include`` of an active region.

    Attributes
    ----------
    source : FileKey
        The including file.
    target : str
        The header name as written.
    path : str or None
        Corpus path the target resolved to.
    fingerprint : str
        Fingerprint of the includer's macros at the point of inclusion.
    resolved : FileKey or None
        Node the edge leads to; None for missing, system or cyclic edges.
    """
    source: FileKey
    target: str
    path: Optional[str]
    fingerprint: str
    line: int
    column: int
    angled: bool
    resolved: Optional[FileKey] = None
    cycle: bool = False
    system: bool = False

    def to_dict(self) -> Dict[str, object]:
        return {
            "source": self.source.path,
            "target": self.target,
            "path": self.path,
            "line": self.line,
            "column": self.column,
            "angled": self.angled,
            "cycle": self.cycle,
            "system": self.system,
        }


@dataclass(frozen=True)
class ResolvedFile:
    """A graph node together with its preprocessing result and out-edges."""
    key: FileKey
    preprocessed: PreprocessedFile
    edges: Tuple[IncludeEdge, ...] = ()
    diagnostics: Tuple[Diagnostic, ...] = field(default=(), repr=False)

    @property
    def path(self) -> str:
        return self.key.path

    @property
    def final_snapshot(self) -> Optional[MacroSnapshot]:
        return self.preprocessed.final_snapshot


# ═══════════════════════════════════════════════════════════════════════════
#  PART 2 — SEARCH
# ═══════════════════════════════════════════════════════════════════════════

def _normalize(path: str) -> Optional[str]:
    norm = posixpath.normpath(path)
    if norm == "." or norm.startswith("../") or norm == ".." or norm.startswith("/"):
        return None
    return norm


def _ancestors(directory: str) -> Iterable[str]:
    """Parents of ``directory`` up to and including the corpus root ``""``."""
    current = directory
    while current:
        current = posixpath.dirname(current)
        yield current


def search_candidates(
    includer: str,
    target: str,
    angled: bool,
    search_roots: Sequence[str] = (),
    search_ancestor_dirs: bool = True,
) -> List[str]:
    """Ordered, de-duplicated candidate paths for ``target``."""
    directory = posixpath.dirname(includer)
    raw: List[str] = []
    if not angled:
        raw.append(posixpath.join(directory, target))
    for root in search_roots:
        raw.append(posixpath.join(root, target))
    if search_ancestor_dirs:
        for parent in _ancestors(directory):
            raw.append(posixpath.join(parent, target))

    seen: Set[str] = set()
    ordered: List[str] = []
    for candidate in raw:
        norm = _normalize(candidate)
        if norm is not None and norm not in seen:
            seen.add(norm)
            ordered.append(norm)
    return ordered


# ═══════════════════════════════════════════════════════════════════════════
#  PART 3 — RESOLVER
# ═══════════════════════════════════════════════════════════════════════════

class IncludeResolver:
    """
    Resolves include graphs over a scanned corpus.

    Parameters
    ----------
    files : mapping of path → ScannedFile
        The whole corpus; only these paths can be included.
    search_roots : sequence of str
        Corpus-relative include directories, searched in order.
    max_include_depth : int
        Nesting ceiling; exceeding it is reported as ``include-cycle``.
    export_included_macros : bool
        Let macros defined by an included file reach the includer.
    """

    def __init__(
        self,
        files: Mapping[str, ScannedFile],
        search_roots: Sequence[str] = (),
        search_ancestor_dirs: bool = True,
        max_include_depth: int = DEFAULT_MAX_INCLUDE_DEPTH,
        strict_system_includes: bool = False,
        export_included_macros: bool = False,
    ) -> None:
        self._files = files
        self._search_roots = tuple(search_roots)
        self._search_ancestor_dirs = search_ancestor_dirs
        self._max_depth = max_include_depth
        self._strict_system = strict_system_includes
        self._export = export_included_macros

        self._memo: Dict[FileKey, ResolvedFile] = {}
        self._in_progress: List[str] = []
        self._reported_cycles: Set[FrozenSet[str]] = set()
        self._once: Dict[str, FileKey] = {}

    # ── lookup ────────────────────────────────────────────────────────

    def find(self, includer: str, target: str, angled: bool) -> Optional[str]:
        """First corpus path ``target`` resolves to from ``includer``."""
        for candidate in search_candidates(
            includer, target, angled, self._search_roots, self._search_ancestor_dirs
        ):
            if candidate in self._files:
                return candidate
        return None

    def has_include(self, includer: str, target: str, angled: bool) -> bool:
        if self.find(includer, target, angled) is not None:
            return True
        return angled and target in SYSTEM_HEADERS

    @property
    def resolved_files(self) -> Dict[FileKey, ResolvedFile]:
        return dict(self._memo)

    def get(self, key: FileKey) -> Optional[ResolvedFile]:
        return self._memo.get(key)

    # ── resolution ────────────────────────────────────────────────────

    def resolve_root(self, path: str, snapshot: MacroSnapshot) -> ResolvedFile:
        """Resolve ``path`` as the root of a translation unit."""
        self._once = {}
        return self.resolve(path, snapshot)

    def resolve(self, path: str, snapshot: MacroSnapshot) -> ResolvedFile:
        if path not in self._files:
            raise KeyError(path)
        key = FileKey(path, snapshot.fingerprint)
        cached = self._memo.get(key)
        if cached is not None:
            logger.debug("Include memo hit: %s", key)
            self._remember_once(cached)
            return cached

        edges: List[IncludeEdge] = []
        diagnostics: List[Diagnostic] = []

        def on_include(
            request: IncludeRequest, current: MacroSnapshot
        ) -> Optional[MacroSnapshot]:
            return self._follow(key, request, current, edges, diagnostics)

        def on_has_include(target: str, angled: bool) -> bool:
            return self.has_include(path, target, angled)

        self._in_progress.append(path)
        try:
            preprocessed = Preprocessor(
                self._files[path], snapshot, on_include, on_has_include
            ).run()
        finally:
            self._in_progress.pop()

        resolved = ResolvedFile(
            key,
            preprocessed,
            tuple(edges),
            tuple(diagnostics) + preprocessed.diagnostics,
        )
        self._memo[key] = resolved
        self._remember_once(resolved)
        return resolved

    def _remember_once(self, resolved: ResolvedFile) -> None:
        if resolved.preprocessed.pragma_once:
            self._once.setdefault(resolved.path, resolved.key)

    def _follow(
        self,
        source: FileKey,
        request: IncludeRequest,
        snapshot: MacroSnapshot,
        edges: List[IncludeEdge],
        diagnostics: List[Diagnostic],
    ) -> Optional[MacroSnapshot]:
        loc = request.location
        found = self.find(source.path, request.target, request.angled)

        def edge(**kwargs) -> IncludeEdge:
            e = IncludeEdge(
                source, request.target, found, snapshot.fingerprint,
                loc.line, loc.column, request.angled, **kwargs,
            )
            edges.append(e)
            return e

        if found is None:
            if request.angled and (
                not self._strict_system or request.target in SYSTEM_HEADERS
            ):
                logger.debug("%s: system header <%s> not in corpus", loc, request.target)
                edge(system=True)
                return None
            open_, close = ("<", ">") if request.angled else ('"', '"')
            diagnostics.append(Diagnostic.make(
                DiagnosticCode.MISSING_INCLUDE,
                loc,
                f"cannot find include file {open_}{request.target}{close}",
            ))
            edge()
            return None

        if found in self._in_progress:
            start = self._in_progress.index(found)
            chain = self._in_progress[start:] + [found]
            members = frozenset(chain)
            if members not in self._reported_cycles:
                self._reported_cycles.add(members)
                diagnostics.append(Diagnostic.make(
                    DiagnosticCode.INCLUDE_CYCLE,
                    loc,
                    "include cycle: " + " -> ".join(chain),
                ))
            edge(cycle=True)
            return None

        if len(self._in_progress) >= self._max_depth:
            diagnostics.append(Diagnostic.make(
                DiagnosticCode.INCLUDE_CYCLE,
                loc,
                f"include depth exceeds {self._max_depth} while including '{found}'",
            ))
            edge(cycle=True)
            return None

        once_key = self._once.get(found)
        if once_key is not None:
            logger.debug("%s: '%s' already included (#pragma once)", loc, found)
            edge(resolved=once_key)
            return None

        child = self.resolve(found, snapshot)
        edge(resolved=child.key)
        if self._export:
            return child.final_snapshot
        return None

    # ── graph queries ─────────────────────────────────────────────────

    def closure(self, root: FileKey) -> List[FileKey]:
        """``root`` followed by every key reachable from it, depth-first."""
        order: List[FileKey] = []
        seen: Set[FileKey] = set()
        pending = [root]
        while pending:
            key = pending.pop()
            if key in seen:
                continue
            seen.add(key)
            order.append(key)
            node = self._memo.get(key)
            if node is None:
                continue
            children = [e.resolved for e in node.edges if e.resolved is not None]
            pending.extend(reversed(children))
        return order

    def edges(self) -> List[IncludeEdge]:
        """Every edge of every resolved node, in key order."""
        out: List[IncludeEdge] = []
        for key in sorted(self._memo):
            out.extend(self._memo[key].edges)
        return out


__all__ = [
    "DEFAULT_MAX_INCLUDE_DEPTH",
    "FileKey",
    "IncludeEdge",
    "ResolvedFile",
    "IncludeResolver",
    "search_candidates",
]
