# tests/test_scanner.py
"""
Tests for comment blanking, logical lines and directive scanning.
"""

from metal_analyzer.scanner import (
    CodeLine,
    Directive,
    blank_comments,
    parse_include_target,
    scan_corpus,
    scan_text,
)

from tests.conftest import texts


class TestBlankComments:

    def test_line_comment_keeps_length(self):
        blanked, _ = blank_comments("int x; // note\n")
        assert blanked == "int x; " + " " * len("// note") + "\n"

    def test_block_comment_keeps_newlines(self):
        text = "/* a\n b */ int x;"
        blanked, _ = blank_comments(text)
        assert len(blanked) == len(text)
        assert blanked.count("\n") == 1
        assert blanked.endswith(" int x;")

    def test_comment_markers_in_strings_survive(self):
        blanked, _ = blank_comments('const char* s = "// not a comment";')
        assert "// not a comment" in blanked

    def test_unterminated_block_comment_is_blanked(self):
        blanked, _ = blank_comments("a /* open\nb")
        assert blanked.split("\n")[1].strip() == ""

    def test_suppression_markers(self):
        text = (
            "int a;\n"
            "f(); // metal-analyzer-suppress unresolved-call, missing-include\n"
            "/* metal-analyzer-suppress * */\n"
        )
        _, sup = blank_comments(text)
        assert sup[2] == frozenset({"unresolved-call", "missing-include"})
        assert sup[3] == frozenset({"*"})
        assert 1 not in sup


class TestParseIncludeTarget:

    def test_quoted(self):
        assert parse_include_target('"a/b.h"') == ("a/b.h", False)

    def test_angled(self):
        assert parse_include_target("<metal_stdlib>") == ("metal_stdlib", True)

    def test_macro_include_is_not_literal(self):
        assert parse_include_target("HEADER_NAME") is None


class TestScanText:

    def test_directives_and_code(self):
        scanned = scan_text("a.h", "#pragma once\n\n  #  define X 1\nint y;\n")
        first, second, third = scanned.lines
        assert isinstance(first, Directive)
        assert (first.name, first.argument, first.line) == ("pragma", "once", 1)
        assert (second.name, second.argument, second.line, second.column) == ("define", "X 1", 3, 3)
        assert isinstance(third, CodeLine)
        assert texts(third.tokens) == ["int", "y", ";"]

    def test_argument_column(self):
        (d,) = scan_text("a.h", "#define  TILE 16").directives()
        assert d.argument_column == 10
        assert d.argument_tokens()[0].column == 10

    def test_continuation_joins_directive(self):
        scanned = scan_text("a.h", "#define F(x) \\\n  ((x) + 1)\nint z;\n")
        d = scanned.lines[0]
        assert isinstance(d, Directive)
        assert d.line == 1
        assert "((x) + 1)" in d.argument
        assert scanned.lines[1].line == 3

    def test_block_comment_tokens_keep_columns(self):
        (code,) = scan_text("a.h", "/* a\n b */ int x;").lines
        assert code.tokens[0].text == "int"
        assert (code.tokens[0].line, code.tokens[0].column) == (2, 7)

    def test_null_directive(self):
        (d,) = scan_text("a.h", "#\n").directives()
        assert d.name == ""

    def test_commented_directive_is_ignored(self):
        scanned = scan_text("a.h", "// #include \"x.h\"\n")
        assert scanned.directives() == []

    def test_include_targets_ignore_conditionals(self):
        scanned = scan_text(
            "a.metal",
            '#if 0\n#include "never.h"\n#endif\n#include <metal_stdlib>\n',
        )
        assert scanned.include_targets() == [("never.h", False, 2), ("metal_stdlib", True, 4)]

    def test_line_count(self):
        assert scan_text("a.h", "a\nb\nc").line_count == 3


class TestScanCorpus:

    def test_sorted_and_parallel_agree(self):
        files = {"b.h": "int b;", "a.h": "int a;", "c.metal": "#include \"a.h\""}
        serial = scan_corpus(files)
        parallel = scan_corpus(files, workers=4)
        assert list(serial) == ["a.h", "b.h", "c.metal"]
        assert serial == parallel
