# tests/test_expression.py
"""
Tests for the ``#if`` expression grammar and evaluator.
"""

import pytest
from parsimonious.exceptions import ParseError

from metal_analyzer.errors import ConditionError
from metal_analyzer.expression import (
    CONDITION_GRAMMAR,
    Binary,
    Defined,
    HasInclude,
    Literal,
    Ternary,
    evaluate,
    evaluate_condition,
    is_unsigned,
    parse_condition,
)
from metal_analyzer.lexer import tokenize
from metal_analyzer.macros import MacroEnvironment


def value(text, defined=(), has_include=None):
    return evaluate(parse_condition(text), set(defined).__contains__, has_include)


class TestGrammar:
    """The PEG accepts preprocessor expressions and rejects junk."""

    def test_grammar_parses_simple_expression(self):
        tree = CONDITION_GRAMMAR.parse("1 + 2")
        assert tree.text == "1 + 2"

    def test_grammar_rejects_trailing_operator(self):
        with pytest.raises(ParseError):
            CONDITION_GRAMMAR.parse("1 +")

    def test_ast_shapes(self):
        assert parse_condition("42") == Literal(42)
        assert parse_condition("defined(FOO)") == Defined("FOO")
        assert parse_condition("defined FOO") == Defined("FOO")
        assert isinstance(parse_condition("1 + 2"), Binary)
        assert isinstance(parse_condition("1 ? 2 : 3"), Ternary)

    def test_has_include_ast(self):
        assert parse_condition('__has_include("a/b.h")') == HasInclude("a/b.h", False)
        assert parse_condition("__has_include(<metal_stdlib>)") == HasInclude("metal_stdlib", True)


class TestArithmetic:

    @pytest.mark.parametrize("text,expected", [
        ("1 + 2 * 3", 7),
        ("(1 + 2) * 3", 9),
        ("10 - 4 - 3", 3),
        ("7 % 4", 3),
        ("-7 / 2", -3),
        ("1 << 4", 16),
        ("256 >> 4", 16),
        ("(6 & 3) == 2", 1),
        ("6 | 1", 7),
        ("6 ^ 3", 5),
        ("~0", -1),
        ("!0", 1),
        ("!5", 0),
        ("+3", 3),
        ("2 >= 2", 1),
        ("2 > 2", 0),
        ("1 < 2", 1),
        ("3 <= 1", 0),
        ("3 != 3", 0),
    ])
    def test_operators(self, text, expected):
        assert value(text) == expected

    @pytest.mark.parametrize("text,expected", [
        ("0x10", 16),
        ("0XfF", 255),
        ("010", 8),
        ("0b101", 5),
        ("10u", 10),
        ("1UL", 1),
        ("0", 0),
    ])
    def test_integer_literals(self, text, expected):
        assert value(text) == expected

    def test_char_literals(self):
        assert value("'A'") == 65
        assert value(r"'\n'") == 10
        assert value(r"'\x41'") == 65

    def test_ternary_nests_to_the_right(self):
        assert value("0 ? 1 : 2") == 2
        assert value("1 ? 0 ? 5 : 6 : 7") == 6

    def test_logical_precedence(self):
        assert value("1 || 0 && 0") == 1
        assert value("(1 || 0) && 0") == 0


class TestUnsigned:
    """A ``u`` suffix or an out-of-range literal makes the arithmetic unsigned."""

    def test_suffix_is_carried_on_literal(self):
        assert parse_condition("10u") == Literal(10, True)
        assert parse_condition("10") == Literal(10, False)

    def test_large_literal_is_unsigned(self):
        assert is_unsigned(parse_condition("0xFFFFFFFFFFFFFFFF"))

    def test_negative_compares_greater_than_unsigned_zero(self):
        assert value("-1 > 0u") == 1
        assert value("-1 < 0") == 1

    def test_unsigned_subtraction_wraps(self):
        assert value("0u - 1 > 0") == 1
        assert value("0u - 1") == 2 ** 64 - 1

    def test_complement_of_unsigned_zero(self):
        assert value("~0u") == 2 ** 64 - 1
        assert value("~0") == -1

    def test_ternary_takes_common_type(self):
        assert value("(1 ? -1 : 0u) > 0") == 1

    def test_comparison_result_is_signed(self):
        assert not is_unsigned(parse_condition("1u < 2u"))
        assert value("(1u < 2u) - 2 < 0") == 1

    def test_shift_follows_left_operand(self):
        assert value("-1 >> 1u") == -1
        assert value("1u << 63 > 0") == 1

    def test_macro_environment_uses_unsigned_rules(self):
        assert MacroEnvironment().evaluate("-1 > 0u") is True
        assert MacroEnvironment().evaluate("0u - 1 > 0") is True


class TestShortCircuit:
    """Unevaluated operands may contain errors, as in C."""

    def test_and_skips_division_by_zero(self):
        assert value("0 && (1 / 0)") == 0

    def test_or_skips_division_by_zero(self):
        assert value("1 || 1 / 0") == 1

    def test_ternary_skips_untaken_branch(self):
        assert value("1 ? 2 : 1 / 0") == 2

    def test_evaluated_division_by_zero_raises(self):
        with pytest.raises(ConditionError, match="division by zero"):
            value("1 / 0")

    def test_modulo_by_zero_raises(self):
        with pytest.raises(ConditionError):
            value("1 % 0")


class TestIdentifiers:

    def test_unknown_identifier_is_zero(self):
        assert value("UNKNOWN_THING") == 0
        assert value("UNKNOWN_THING + 1") == 1

    def test_true_and_false(self):
        assert value("true") == 1
        assert value("false") == 0

    def test_defined(self):
        assert value("defined(FOO) && !defined BAR", defined={"FOO"}) == 1
        assert value("defined(FOO) && !defined BAR", defined={"FOO", "BAR"}) == 0

    def test_defined_with_spaces(self):
        assert value("defined ( FOO )", defined={"FOO"}) == 1

    def test_has_include_uses_callback(self):
        seen = []

        def has_include(target, angled):
            seen.append((target, angled))
            return target == "present.h"

        assert value('__has_include("present.h")', has_include=has_include) == 1
        assert value("__has_include(<absent.h>)", has_include=has_include) == 0
        assert seen == [("present.h", False), ("absent.h", True)]

    def test_has_include_without_callback_is_false(self):
        assert value('__has_include("x.h")') == 0


class TestErrors:

    @pytest.mark.parametrize("text", ["", "   ", "1 +", "(1", "1 2", "1.5"])
    def test_invalid_expressions_raise_condition_error(self, text):
        with pytest.raises(ConditionError):
            parse_condition(text)


class TestEvaluateCondition:
    """``evaluate_condition`` works on (already expanded) tokens."""

    def test_tokens_are_joined(self):
        assert evaluate_condition(tokenize("1 + 1 == 2"), lambda n: False)

    def test_angled_has_include_tokens(self):
        tokens = tokenize("__has_include(<metal_stdlib.h>)")
        assert evaluate_condition(
            tokens, lambda n: False, lambda target, angled: target == "metal_stdlib.h" and angled
        )
