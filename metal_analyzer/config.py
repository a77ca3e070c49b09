"""
metal_analyzer/config.py
════════════════════════

Run configuration.

    ┌────────────────────────────┐   from_mapping()   ┌──────────────────┐
    │ {"searchRoots": [...],     │ ─────────────────► │ AnalyzerConfig   │
    │  "platform": "metal-ios"}  │                    │  .validate()     │
    └────────────────────────────┘                    │  .base_macros()  │
                                                      └──────────────────┘

The engine never reads files or environment variables to configure
itself; the CLI loads JSON and hands the mapping to ``from_mapping``.
Values of the wrong *type* raise ``ConfigError``; values of the right
type but out of range are clamped by ``normalized()`` and reported by
``validate()`` as warnings.

License: MIT — same as metal-analyzer.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, fields, replace
from typing import (
    Any,
    Dict,
    List,
    Mapping,
    Optional,
    Tuple,
)

from .diagnostics import DiagnosticCode
from .errors import ConfigError
from .includes import DEFAULT_MAX_INCLUDE_DEPTH

logger = logging.getLogger(__name__)

MIN_INCLUDE_DEPTH = 1
MAX_INCLUDE_DEPTH = 512
MIN_MAX_FILE_SIZE_KB = 16
MAX_MAX_FILE_SIZE_KB = 1024 * 64
MAX_SCAN_WORKERS = 32

METAL_VERSION = "310"

# Platform preset → macros it predefines.  ``None`` means "defined as 1".
PLATFORM_PRESETS: Dict[str, Dict[str, Optional[str]]] = {
    "metal": {"__METAL_VERSION__": METAL_VERSION},
    "metal-macos": {"__METAL_VERSION__": METAL_VERSION, "__METAL_MACOS__": None},
    "metal-ios": {"__METAL_VERSION__": METAL_VERSION, "__METAL_IOS__": None},
    "host": {},
}

DEFAULT_HEADER_EXTENSIONS = (".h", ".hh", ".hpp", ".hxx")
DEFAULT_SOURCE_EXTENSIONS = (".metal",)


# ═══════════════════════════════════════════════════════════════════════════
#  PART 1 — CONFIG DATACLASS
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class AnalyzerConfig:
    """
    Tuning knobs for one analysis run.

    Attributes
    ----------
    search_roots : tuple of str
        Corpus-relative include directories, searched in order after the
        includer's own directory.
    platform : str
        One of ``PLATFORM_PRESETS``; supplies ``__METAL_VERSION__`` and the
        platform define.
    predefined_macros : dict
        Extra ``name → value`` macros layered over the platform preset.
    owner_context_for_headers : bool
        Analyze a header only through the files that include it (default);
        a header no owner reaches is still analyzed on its own.
    external_namespaces : tuple of str
        Qualified calls into these namespaces are never reported.
    known_symbols : tuple of str
        Unqualified names treated as externally provided.
    suppressed_codes : tuple of str
        Diagnostic codes dropped globally (``"*"`` drops all).
    suppressed_paths : tuple of str
        ``"CODE:PATTERN"`` entries dropping one code in files matching an
        fnmatch pattern; a bare ``"PATTERN"`` drops every code there.
    """
    search_roots: Tuple[str, ...] = ()
    search_ancestor_dirs: bool = True
    max_include_depth: int = DEFAULT_MAX_INCLUDE_DEPTH
    platform: str = "metal"
    predefined_macros: Dict[str, Optional[str]] = field(default_factory=dict)
    strict_system_includes: bool = False
    export_included_macros: bool = False
    owner_context_for_headers: bool = True
    external_namespaces: Tuple[str, ...] = ("metal", "std", "simd")
    known_symbols: Tuple[str, ...] = ()
    suppressed_codes: Tuple[str, ...] = ()
    suppressed_paths: Tuple[str, ...] = ()
    header_extensions: Tuple[str, ...] = DEFAULT_HEADER_EXTENSIONS
    source_extensions: Tuple[str, ...] = DEFAULT_SOURCE_EXTENSIONS
    exclude_paths: Tuple[str, ...] = ()
    max_file_size_kb: int = 512
    scan_workers: int = 1

    def validate(self) -> List[str]:
        """Return a list of validation warnings (empty if valid)."""
        warnings: List[str] = []
        if not MIN_INCLUDE_DEPTH <= self.max_include_depth <= MAX_INCLUDE_DEPTH:
            warnings.append(
                f"max_include_depth {self.max_include_depth} outside "
                f"{MIN_INCLUDE_DEPTH}..{MAX_INCLUDE_DEPTH}; clamped"
            )
        if self.platform not in PLATFORM_PRESETS:
            warnings.append(
                f"unknown platform '{self.platform}'; using 'metal' "
                f"(choices: {', '.join(sorted(PLATFORM_PRESETS))})"
            )
        if not MIN_MAX_FILE_SIZE_KB <= self.max_file_size_kb <= MAX_MAX_FILE_SIZE_KB:
            warnings.append(
                f"max_file_size_kb {self.max_file_size_kb} outside "
                f"{MIN_MAX_FILE_SIZE_KB}..{MAX_MAX_FILE_SIZE_KB}; clamped"
            )
        if not 1 <= self.scan_workers <= MAX_SCAN_WORKERS:
            warnings.append(
                f"scan_workers {self.scan_workers} outside 1..{MAX_SCAN_WORKERS}; clamped"
            )
        known_codes = {c.value for c in DiagnosticCode} | {"*"}
        for code in self.suppressed_codes:
            if code not in known_codes:
                warnings.append(f"suppressed code '{code}' is not a diagnostic code")
        for entry in self.suppressed_paths:
            code, pattern = parse_path_suppression(entry)
            if not pattern:
                warnings.append(f"suppressed path '{entry}' has no file pattern")
            elif code not in known_codes:
                warnings.append(f"suppressed path '{entry}' names unknown code '{code}'")
        for root in self.search_roots:
            if root.startswith("/") or root.split("/")[:1] == [".."]:
                warnings.append(f"search root '{root}' is outside the corpus")
        for name in self.predefined_macros:
            if not _IDENT_RE.match(name):
                warnings.append(f"predefined macro '{name}' is not an identifier; ignored")
        return warnings

    def normalized(self) -> "AnalyzerConfig":
        """Copy with out-of-range values clamped and lists de-duplicated."""
        platform = self.platform if self.platform in PLATFORM_PRESETS else "metal"
        return replace(
            self,
            max_include_depth=_clamp(self.max_include_depth, MIN_INCLUDE_DEPTH, MAX_INCLUDE_DEPTH),
            max_file_size_kb=_clamp(self.max_file_size_kb, MIN_MAX_FILE_SIZE_KB, MAX_MAX_FILE_SIZE_KB),
            scan_workers=_clamp(self.scan_workers, 1, MAX_SCAN_WORKERS),
            platform=platform,
            search_roots=_dedupe(r.strip().strip("/") for r in self.search_roots),
            exclude_paths=_dedupe(p.strip().strip("/") for p in self.exclude_paths),
            suppressed_paths=_dedupe(p.strip() for p in self.suppressed_paths),
            predefined_macros={
                k: v for k, v in self.predefined_macros.items() if _IDENT_RE.match(k)
            },
        )

    def base_macros(
        self, extra: Optional[Mapping[str, Optional[str]]] = None
    ) -> Dict[str, Optional[str]]:
        """Platform preset, then ``predefined_macros``, then ``extra``."""
        macros: Dict[str, Optional[str]] = dict(
            PLATFORM_PRESETS.get(self.platform, PLATFORM_PRESETS["metal"])
        )
        macros.update(self.predefined_macros)
        if extra:
            macros.update(extra)
        return macros

    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_kb * 1024

    def is_header(self, path: str) -> bool:
        return path.lower().endswith(tuple(e.lower() for e in self.header_extensions))

    def is_analyzable(self, path: str) -> bool:
        exts = self.header_extensions + self.source_extensions
        return path.lower().endswith(tuple(e.lower() for e in exts))

    # ── construction from plain data ──────────────────────────────────

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "AnalyzerConfig":
        """
        Build a config from a JSON-style mapping.

        Keys may be camelCase (``searchRoots``) or snake_case
        (``search_roots``).  Unknown keys are logged and ignored.

        Raises
        ------
        ConfigError
            When a known key holds a value of the wrong type.
        """
        if not isinstance(data, Mapping):
            raise ConfigError(
                f"configuration must be an object, got {type(data).__name__}"
            )
        known = {f.name for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for raw_key, value in data.items():
            key = _snake_case(str(raw_key))
            if key not in known:
                logger.warning("AnalyzerConfig: ignoring unknown key '%s'", raw_key)
                continue
            kwargs[key] = _coerce(key, value)
        return cls(**kwargs)


# ═══════════════════════════════════════════════════════════════════════════
#  PART 2 — HELPERS
# ═══════════════════════════════════════════════════════════════════════════

_IDENT_RE = re.compile(r"^[A-Za-z_]\w*$")
_CAMEL_RE = re.compile(r"(?<=[a-z0-9])([A-Z])")
_CODE_RE = re.compile(r"^(\*|[a-z]+(-[a-z]+)*)$")

_BOOL_KEYS = frozenset({
    "search_ancestor_dirs",
    "strict_system_includes",
    "export_included_macros",
    "owner_context_for_headers",
})
_INT_KEYS = frozenset({"max_include_depth", "max_file_size_kb", "scan_workers"})
_STR_KEYS = frozenset({"platform"})
_MAP_KEYS = frozenset({"predefined_macros"})


def _snake_case(key: str) -> str:
    return _CAMEL_RE.sub(r"_\1", key).lower()


def _clamp(value: int, lo: int, hi: int) -> int:
    return max(lo, min(hi, value))


def _dedupe(items) -> Tuple[str, ...]:
    seen: Dict[str, None] = {}
    for item in items:
        if item:
            seen.setdefault(item, None)
    return tuple(seen)


def _coerce(key: str, value: Any) -> Any:
    if key in _BOOL_KEYS:
        if not isinstance(value, bool):
            raise ConfigError(f"'{key}' must be a boolean", key)
        return value
    if key in _INT_KEYS:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ConfigError(f"'{key}' must be an integer", key)
        return value
    if key in _STR_KEYS:
        if not isinstance(value, str):
            raise ConfigError(f"'{key}' must be a string", key)
        return value
    if key in _MAP_KEYS:
        return _macro_map(key, value)
    if isinstance(value, str) or not isinstance(value, (list, tuple)):
        raise ConfigError(f"'{key}' must be a list of strings", key)
    if not all(isinstance(v, str) for v in value):
        raise ConfigError(f"'{key}' must be a list of strings", key)
    return tuple(value)


def _macro_map(key: str, value: Any) -> Dict[str, Optional[str]]:
    """Accept ``{"NAME": "value" | null}`` or ``["NAME", "NAME=value"]``."""
    if isinstance(value, Mapping):
        out: Dict[str, Optional[str]] = {}
        for name, val in value.items():
            if val is not None and not isinstance(val, (str, int)):
                raise ConfigError(f"'{key}.{name}' must be a string, number or null", key)
            out[str(name)] = None if val is None else str(val)
        return out
    if isinstance(value, (list, tuple)):
        return parse_macro_definitions(value, key)
    raise ConfigError(f"'{key}' must be an object or a list", key)


def parse_path_suppression(entry: str) -> Tuple[str, str]:
    """``"missing-include:generated/*"`` → ``("missing-include", "generated/*")``.

    An entry with no code prefix applies to every code (``"*"``).
    """
    code, sep, pattern = entry.partition(":")
    if sep and _CODE_RE.match(code.strip()):
        return code.strip(), pattern.strip()
    return "*", entry.strip()


def parse_macro_definitions(
    items, key: str = "predefined_macros"
) -> Dict[str, Optional[str]]:
    """``["A", "B=2"]`` → ``{"A": None, "B": "2"}`` (``-D`` syntax)."""
    out: Dict[str, Optional[str]] = {}
    for item in items:
        if not isinstance(item, str) or not item:
            raise ConfigError(f"'{key}' entries must be non-empty strings", key)
        name, sep, val = item.partition("=")
        out[name.strip()] = val if sep else None
    return out


__all__ = [
    "AnalyzerConfig",
    "parse_path_suppression",
    "PLATFORM_PRESETS",
    "METAL_VERSION",
    "DEFAULT_HEADER_EXTENSIONS",
    "DEFAULT_SOURCE_EXTENSIONS",
    "MIN_INCLUDE_DEPTH",
    "MAX_INCLUDE_DEPTH",
    "parse_macro_definitions",
]
