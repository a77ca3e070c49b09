"""
metal_analyzer/analyzer.py
══════════════════════════

Run orchestration.

    Corpus ──► scan_corpus ──► IncludeResolver ──► DeclarationExtractor
                                  (per root)          (per FileKey)
                                                          │
           AnalysisResult ◄── DiagnosticEngine ◄── ReferenceResolver
                                                      (per unit)

A *translation unit* is a root file plus its resolved include closure.
Every corpus file is a root, except a header some other file includes:
it is analyzed through its owners, so macros and declarations the owner
sets up before the ``#include`` are in effect, and on its own only when
no owner reached it.  ``owner_context_for_headers=False`` makes every
file a root again.  Declarations are visible to the calls of the unit they
were resolved in; the corpus-wide symbol table is reported but not used
for lookup.

License: MIT — same as metal-analyzer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import (
    Any,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Set,
    Tuple,
    Union,
)

from .config import AnalyzerConfig, parse_path_suppression
from .corpus import Corpus
from .declarations import Declaration, ExtractedFile, extract_declarations
from .diagnostics import (
    Diagnostic,
    DiagnosticEngine,
    Severity,
    SourceLocation,
    SuppressionManager,
    count_by_severity,
)
from .includes import FileKey, IncludeEdge, IncludeResolver
from .macros import MacroEnvironment
from .resolver import Reference, ReferenceResolver, find_duplicate_definitions
from .scanner import ScannedFile, scan_corpus
from .symbols import SymbolTable

logger = logging.getLogger(__name__)

MacroMap = Mapping[str, Optional[str]]


# ═══════════════════════════════════════════════════════════════════════════
#  PART 1 — RESULT
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class AnalysisResult:
    """
    Everything one run produced.

    Attributes
    ----------
    diagnostics : tuple of Diagnostic
        Suppressed, de-duplicated, ordered by (file, line, column, code,
        message).
    declarations : dict of path → tuple of Declaration
        Available declarations per file, merged over every macro
        environment the file was preprocessed under.
    unavailable : dict of path → tuple of Declaration
        Declarations that follow an active ``#error``.
    symbols : SymbolTable
        Corpus-wide table of every available declaration.
    include_edges : tuple of IncludeEdge
    references : tuple of Reference
        Outcome of every call site in every analyzed function body.
    header_owners : dict of header path → tuple of including paths
    translation_units : tuple of str
        Root paths, in analysis order.
    """
    diagnostics: Tuple[Diagnostic, ...] = ()
    declarations: Dict[str, Tuple[Declaration, ...]] = field(default_factory=dict)
    unavailable: Dict[str, Tuple[Declaration, ...]] = field(default_factory=dict)
    symbols: SymbolTable = field(default_factory=SymbolTable)
    include_edges: Tuple[IncludeEdge, ...] = ()
    references: Tuple[Reference, ...] = ()
    header_owners: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    translation_units: Tuple[str, ...] = ()

    @property
    def error_count(self) -> int:
        return count_by_severity(self.diagnostics)[Severity.ERROR]

    @property
    def warning_count(self) -> int:
        return count_by_severity(self.diagnostics)[Severity.WARNING]

    @property
    def has_errors(self) -> bool:
        return self.error_count > 0

    def diagnostics_for(self, path: str) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.file == path]

    def declarations_named(self, name: str) -> List[Declaration]:
        return [
            d for decls in self.declarations.values() for d in decls if d.name == name
        ]

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready snapshot; key order is deterministic."""
        return {
            "summary": {
                "files": len(self.declarations),
                "translation_units": len(self.translation_units),
                "errors": self.error_count,
                "warnings": self.warning_count,
            },
            "diagnostics": [d.to_dict() for d in self.diagnostics],
            "declarations": {
                path: [d.to_dict() for d in decls]
                for path, decls in sorted(self.declarations.items())
            },
            "unavailable": {
                path: [d.to_dict() for d in decls]
                for path, decls in sorted(self.unavailable.items())
                if decls
            },
            "symbols": self.symbols.to_dict(),
            "include_edges": [e.to_dict() for e in self.include_edges],
            "references": [r.to_dict() for r in self.references],
            "header_owners": {h: list(o) for h, o in sorted(self.header_owners.items())},
        }


# ═══════════════════════════════════════════════════════════════════════════
#  PART 2 — ANALYZER
# ═══════════════════════════════════════════════════════════════════════════

class Analyzer:
    """
    Analyzes a corpus under one configuration.

    Usage::

        analyzer = Analyzer(AnalyzerConfig(platform="metal-ios"))
        result = analyzer.analyze(corpus, {"OWNER_ONLY_DEFINE": "2.0f"})
        for diag in result.diagnostics:
            print(diag.to_gcc_format())

    An ``Analyzer`` holds no state between ``analyze`` calls.
    """

    def __init__(self, config: Optional[AnalyzerConfig] = None) -> None:
        config = config or AnalyzerConfig()
        for w in config.validate():
            logger.warning("AnalyzerConfig: %s", w)
        self._config = config.normalized()

    @property
    def config(self) -> AnalyzerConfig:
        return self._config

    def analyze(
        self,
        corpus: Union[Corpus, Mapping[str, str]],
        macros: Optional[MacroMap] = None,
    ) -> AnalysisResult:
        """Analyze ``corpus`` with ``macros`` layered over the config's."""
        if not isinstance(corpus, Corpus):
            corpus = Corpus.from_pairs(corpus)
        return _Run(self._config, corpus, macros or {}).execute()


class _Run:
    """State of one ``Analyzer.analyze`` call."""

    def __init__(self, config: AnalyzerConfig, corpus: Corpus, macros: MacroMap) -> None:
        self.config = config
        self.corpus = corpus
        self.base = MacroEnvironment.from_mapping(config.base_macros(macros)).snapshot()
        self.scanned: Dict[str, ScannedFile] = {}
        self.resolver: Optional[IncludeResolver] = None
        self.extracted: Dict[FileKey, ExtractedFile] = {}

    def execute(self) -> AnalysisResult:
        cfg = self.config
        self.scanned = scan_corpus(self.corpus.texts(), cfg.scan_workers)
        self.resolver = IncludeResolver(
            self.scanned,
            search_roots=cfg.search_roots,
            search_ancestor_dirs=cfg.search_ancestor_dirs,
            max_include_depth=cfg.max_include_depth,
            strict_system_includes=cfg.strict_system_includes,
            export_included_macros=cfg.export_included_macros,
        )
        owners = self._header_owners()
        roots = self._resolve_roots(owners)

        for key, resolved in sorted(self.resolver.resolved_files.items()):
            pre = resolved.preprocessed
            self.extracted[key] = extract_declarations(
                key.path, pre.tokens, pre.unavailable_tokens, pre.error_location
            )

        engine = DiagnosticEngine(self._suppressions())
        for key, resolved in sorted(self.resolver.resolved_files.items()):
            engine.extend(resolved.diagnostics)

        references: Dict[Reference, None] = {}
        for root in roots:
            refs, diags = self._analyze_unit(root)
            for ref in refs:
                references.setdefault(ref, None)
            engine.extend(diags)

        diagnostics = engine.finalize()
        declarations, unavailable = self._per_file_declarations()
        symbols = SymbolTable.from_declarations(
            d for path in sorted(declarations) for d in declarations[path]
        )
        result = AnalysisResult(
            diagnostics=diagnostics,
            declarations=declarations,
            unavailable=unavailable,
            symbols=symbols,
            include_edges=tuple(self.resolver.edges()),
            references=tuple(references),
            header_owners=owners,
            translation_units=tuple(r.path for r in roots),
        )
        logger.info(
            "Analyzed %d file(s) in %d unit(s): %d error(s), %d warning(s)",
            len(self.corpus), len(roots), result.error_count, result.warning_count,
        )
        return result

    # ── roots ─────────────────────────────────────────────────────────

    def _header_owners(self) -> Dict[str, Tuple[str, ...]]:
        """Header → files whose directives name it, ignoring conditionals."""
        assert self.resolver is not None
        owners: Dict[str, Set[str]] = {}
        for path, scanned in self.scanned.items():
            for target, angled, _line in scanned.include_targets():
                found = self.resolver.find(path, target, angled)
                if found is not None and found != path and self.config.is_header(found):
                    owners.setdefault(found, set()).add(path)
        return {h: tuple(sorted(o)) for h, o in sorted(owners.items())}

    def _resolve_roots(self, owners: Mapping[str, Tuple[str, ...]]) -> List[FileKey]:
        assert self.resolver is not None
        owned = set(owners) if self.config.owner_context_for_headers else set()
        roots: List[FileKey] = []
        for path in self.scanned:
            if path in owned:
                continue
            roots.append(self.resolver.resolve_root(path, self.base).key)

        for path in sorted(owned):
            if any(k.path == path for k in self.resolver.resolved_files):
                continue
            logger.debug("Header %s not reached through its owners", path)
            roots.append(self.resolver.resolve_root(path, self.base).key)
        return roots

    # ── units ─────────────────────────────────────────────────────────

    def _analyze_unit(self, root: FileKey) -> Tuple[List[Reference], List[Diagnostic]]:
        assert self.resolver is not None
        closure = self.resolver.closure(root)
        visible: List[Declaration] = []
        hidden: List[Declaration] = []
        errors: Dict[str, SourceLocation] = {}
        for key in closure:
            extracted = self.extracted.get(key)
            if extracted is None:
                continue
            visible.extend(extracted.declarations)
            hidden.extend(extracted.unavailable)
            if extracted.error_location is not None:
                errors.setdefault(key.path, extracted.error_location)

        resolver = ReferenceResolver(
            SymbolTable.from_declarations(visible),
            SymbolTable.from_declarations(hidden),
            errors,
            external_namespaces=self.config.external_namespaces,
            known_symbols=self.config.known_symbols,
        )
        refs: List[Reference] = []
        diags: List[Diagnostic] = list(find_duplicate_definitions(visible))
        for decl in visible:
            if not decl.body:
                continue
            r, d = resolver.resolve(decl)
            refs.extend(r)
            diags.extend(d)
        logger.debug(
            "Unit %s: %d file(s), %d declaration(s), %d reference(s)",
            root.path, len(closure), len(visible), len(refs),
        )
        return refs, diags

    # ── output ────────────────────────────────────────────────────────

    def _suppressions(self) -> SuppressionManager:
        manager = SuppressionManager()
        for path, scanned in self.scanned.items():
            manager.load_inline_suppressions(path, scanned.suppressions)
        for code in self.config.suppressed_codes:
            manager.add_global_suppression(code)
        for entry in self.config.suppressed_paths:
            code, pattern = parse_path_suppression(entry)
            manager.add_file_suppression(code, pattern)
        return manager

    def _per_file_declarations(
        self,
    ) -> Tuple[Dict[str, Tuple[Declaration, ...]], Dict[str, Tuple[Declaration, ...]]]:
        available: Dict[str, Dict[tuple, Declaration]] = {p: {} for p in self.scanned}
        hidden: Dict[str, Dict[tuple, Declaration]] = {p: {} for p in self.scanned}
        for key in sorted(self.extracted):
            extracted = self.extracted[key]
            for decl in extracted.declarations:
                available[key.path].setdefault(decl.identity(), decl)
            for decl in extracted.unavailable:
                hidden[key.path].setdefault(decl.identity(), decl)
        return (
            {p: _in_source_order(d.values()) for p, d in available.items()},
            {p: _in_source_order(d.values()) for p, d in hidden.items()},
        )


def _in_source_order(decls: Iterable[Declaration]) -> Tuple[Declaration, ...]:
    return tuple(sorted(
        decls, key=lambda d: (d.location.line, d.location.column, d.namespace, d.name)
    ))


def analyze(
    corpus: Union[Corpus, Mapping[str, str]],
    macros: Optional[MacroMap] = None,
    config: Optional[AnalyzerConfig] = None,
) -> AnalysisResult:
    """Convenience wrapper: ``Analyzer(config).analyze(corpus, macros)``."""
    return Analyzer(config).analyze(corpus, macros)


__all__ = ["AnalysisResult", "Analyzer", "analyze", "MacroMap"]
