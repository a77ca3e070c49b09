"""
metal_analyzer/corpus.py
════════════════════════

The set of files one run analyzes.

    Corpus.from_directory(root, config)       Corpus.from_pairs([...])
              │                                        │
              └──────────► {relative/posix/path: SourceFile} ◄─┘

Paths are corpus-relative POSIX strings; they are the stable key every
later stage refers to a file by.  Loading is the only place the engine
touches the file system.

License: MIT — same as metal-analyzer.
"""

from __future__ import annotations

import logging
import os
import posixpath
from dataclasses import dataclass
from pathlib import Path
from typing import (
    Dict,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    Tuple,
    Union,
)

from .config import AnalyzerConfig
from .errors import CorpusError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SourceFile:
    """One corpus file: relative POSIX path and raw text."""
    path: str
    text: str

    @property
    def directory(self) -> str:
        return posixpath.dirname(self.path)


def normalize_path(path: str) -> str:
    """``a\\b/./c.h`` → ``a/b/c.h``; rejects paths escaping the root."""
    norm = posixpath.normpath(path.replace("\\", "/"))
    if norm in (".", "") or norm == ".." or norm.startswith("../") or norm.startswith("/"):
        raise CorpusError(f"path '{path}' is not inside the corpus")
    return norm


class Corpus:
    """
    Ordered mapping of relative path → ``SourceFile``.

    Usage::

        corpus = Corpus.from_pairs([("a.metal", "#include \\"b.h\\"\\n"),
                                    ("b.h", "void f();\\n")])
        corpus.paths()          # ['a.metal', 'b.h']
    """

    def __init__(self, files: Iterable[SourceFile] = ()) -> None:
        self._files: Dict[str, SourceFile] = {}
        for f in files:
            self.add(f)

    @classmethod
    def from_pairs(
        cls, pairs: Union[Mapping[str, str], Iterable[Tuple[str, str]]]
    ) -> "Corpus":
        items = pairs.items() if isinstance(pairs, Mapping) else pairs
        return cls(SourceFile(normalize_path(p), text) for p, text in items)

    @classmethod
    def from_directory(
        cls,
        root: Union[str, os.PathLike],
        config: Optional[AnalyzerConfig] = None,
    ) -> "Corpus":
        """
        Load every analyzable file under ``root``.

        Files are filtered by the configured header and source extensions,
        ``exclude_paths`` prefixes and ``max_file_size_kb``.

        Raises
        ------
        CorpusError
            When ``root`` is not a readable directory.
        """
        config = config or AnalyzerConfig()
        base = Path(root)
        if not base.is_dir():
            raise CorpusError(f"corpus root '{root}' is not a directory")

        corpus = cls()
        skipped_size = 0
        try:
            candidates = sorted(p for p in base.rglob("*") if p.is_file())
        except OSError as exc:
            raise CorpusError(f"cannot walk corpus root '{root}': {exc}") from exc

        for file_path in candidates:
            rel = file_path.relative_to(base).as_posix()
            if not config.is_analyzable(rel):
                continue
            if _excluded(rel, config.exclude_paths):
                logger.debug("Excluded by configuration: %s", rel)
                continue
            try:
                size = file_path.stat().st_size
                if size > config.max_file_size_bytes:
                    skipped_size += 1
                    logger.debug("Skipping %s: %d bytes exceeds size cap", rel, size)
                    continue
                text = file_path.read_text(encoding="utf-8", errors="replace")
            except OSError as exc:
                raise CorpusError(f"cannot read '{file_path}': {exc}") from exc
            corpus.add(SourceFile(rel, text))

        if skipped_size:
            logger.info("Skipped %d file(s) above %d KiB", skipped_size, config.max_file_size_kb)
        logger.info("Loaded %d file(s) from %s", len(corpus), base)
        return corpus

    def add(self, source: SourceFile) -> None:
        if source.path in self._files:
            raise CorpusError(f"duplicate corpus path '{source.path}'")
        self._files[source.path] = source

    def get(self, path: str) -> Optional[SourceFile]:
        return self._files.get(path)

    def paths(self) -> List[str]:
        return sorted(self._files)

    def texts(self) -> Dict[str, str]:
        """``path → text`` in path order."""
        return {p: self._files[p].text for p in self.paths()}

    def __contains__(self, path: object) -> bool:
        return path in self._files

    def __len__(self) -> int:
        return len(self._files)

    def __iter__(self) -> Iterator[SourceFile]:
        for p in self.paths():
            yield self._files[p]


def _excluded(path: str, prefixes: Iterable[str]) -> bool:
    for prefix in prefixes:
        prefix = prefix.strip("/")
        if prefix and (path == prefix or path.startswith(prefix + "/")):
            return True
    return False


__all__ = ["SourceFile", "Corpus", "normalize_path"]
