# tests/test_lexer.py
"""
Tests for the token lexer and literal typing.
"""

import pytest

from metal_analyzer.lexer import Token, TokenKind, literal_type, tokenize

from tests.conftest import texts


class TestTokenize:

    def test_identifiers_and_punctuation(self):
        toks = tokenize("float4 v = a->b + c::d;")
        assert texts(toks) == ["float4", "v", "=", "a", "->", "b", "+", "c", "::", "d", ";"]
        assert toks[0].kind is TokenKind.IDENT
        assert toks[4].kind is TokenKind.PUNCT

    def test_multi_char_operators(self):
        assert texts(tokenize("a <<= b && c || d ## e ...")) == [
            "a", "<<=", "b", "&&", "c", "||", "d", "##", "e", "...",
        ]

    def test_numbers(self):
        toks = tokenize("1 0x1F 2.5f 1e-3 .5 3u 1'000")
        assert [t.kind for t in toks] == [TokenKind.NUMBER] * 7
        assert texts(toks) == ["1", "0x1F", "2.5f", "1e-3", ".5", "3u", "1'000"]

    def test_strings_and_chars(self):
        toks = tokenize('"a \\"b\\"" \'c\' u8"x"')
        assert [t.kind for t in toks] == [TokenKind.STRING, TokenKind.CHAR, TokenKind.STRING]

    def test_comments_are_skipped(self):
        assert texts(tokenize("a // b\nc /* d */ e")) == ["a", "c", "e"]

    def test_positions(self):
        toks = tokenize("ab  cd\n  ef", line=3, column=5)
        assert [(t.line, t.column) for t in toks] == [(3, 5), (3, 9), (4, 3)]

    def test_unknown_character_is_other(self):
        (tok,) = tokenize("$")
        assert tok.kind is TokenKind.OTHER

    def test_relocate(self):
        tok = tokenize("x")[0].at(9, 4)
        assert (tok.text, tok.line, tok.column) == ("x", 9, 4)
        assert tok.is_ident


class TestLiteralType:

    @pytest.mark.parametrize("text, expected", [
        ("1", "int"),
        ("1u", "uint"),
        ("1U", "uint"),
        ("1l", "long"),
        ("1ul", "ulong"),
        ("0x10", "int"),
        ("0x10u", "uint"),
        ("1.0f", "float"),
        ("1.0", "float"),
        ("1e3", "float"),
        ("1.0h", "half"),
        ("2h", "half"),
    ])
    def test_numbers(self, text, expected):
        assert literal_type(Token(TokenKind.NUMBER, text)) == expected

    def test_other_literals(self):
        assert literal_type(Token(TokenKind.IDENT, "true")) == "bool"
        assert literal_type(Token(TokenKind.CHAR, "'a'")) == "char"
        assert literal_type(Token(TokenKind.STRING, '"s"')) == "const char*"

    def test_non_literal(self):
        assert literal_type(Token(TokenKind.IDENT, "x")) is None
        assert literal_type(Token(TokenKind.PUNCT, "+")) is None
