# tests/test_corpus.py
"""
Tests for corpus loading and path normalization.
"""

import pytest

from metal_analyzer.config import AnalyzerConfig
from metal_analyzer.corpus import Corpus, SourceFile, normalize_path
from metal_analyzer.errors import CorpusError


class TestNormalizePath:

    @pytest.mark.parametrize("raw, expected", [
        ("a/b.h", "a/b.h"),
        ("a\\b.h", "a/b.h"),
        ("./a/./b.h", "a/b.h"),
        ("a/x/../b.h", "a/b.h"),
    ])
    def test_normalized(self, raw, expected):
        assert normalize_path(raw) == expected

    @pytest.mark.parametrize("raw", ["../a.h", "/abs.h", ".", ""])
    def test_rejected(self, raw):
        with pytest.raises(CorpusError):
            normalize_path(raw)


class TestCorpus:

    def test_from_pairs(self, make_corpus):
        corpus = make_corpus({"b.h": "int b;", "a.metal": "int a;"})
        assert corpus.paths() == ["a.metal", "b.h"]
        assert list(corpus.texts()) == ["a.metal", "b.h"]
        assert "b.h" in corpus and len(corpus) == 2
        assert [f.path for f in corpus] == ["a.metal", "b.h"]
        assert corpus.get("b.h") == SourceFile("b.h", "int b;")

    def test_duplicate_path(self):
        with pytest.raises(CorpusError):
            Corpus.from_pairs([("a.h", ""), ("./a.h", "")])

    def test_directory(self):
        assert SourceFile("x/y/z.h", "").directory == "x/y"


class TestFromDirectory:

    def test_fixture_corpus(self, fixture_corpus):
        assert fixture_corpus.paths() == [
            "common/defines.h",
            "common/types.h",
            "common/utils.h",
            "generated/matmul.h",
            "matmul/common/operators.h",
            "matmul/common/problematic_owner_only.h",
            "matmul/common/template_math.h",
        ]

    def test_filters(self, tmp_path):
        (tmp_path / "src").mkdir()
        (tmp_path / "src" / "k.metal").write_text("kernel void k() {}\n")
        (tmp_path / "src" / "notes.txt").write_text("skip me\n")
        (tmp_path / "third_party").mkdir()
        (tmp_path / "third_party" / "big.h").write_text("int x;\n")
        (tmp_path / "huge.h").write_text("x" * (17 * 1024))

        config = AnalyzerConfig(exclude_paths=("third_party",), max_file_size_kb=16)
        corpus = Corpus.from_directory(tmp_path, config)
        assert corpus.paths() == ["src/k.metal"]

    def test_not_a_directory(self, tmp_path):
        with pytest.raises(CorpusError):
            Corpus.from_directory(tmp_path / "missing")

    def test_invalid_utf8_is_replaced(self, tmp_path):
        (tmp_path / "a.h").write_bytes(b"int \xff;\n")
        corpus = Corpus.from_directory(tmp_path)
        assert "\ufffd" in corpus.get("a.h").text
