# tests/test_macros.py
"""
Tests for macro definitions, snapshots and expansion.
"""

import pytest

from metal_analyzer.diagnostics import SourceLocation
from metal_analyzer.errors import ConditionError, MalformedDirectiveError
from metal_analyzer.macros import (
    EMPTY_SNAPSHOT,
    MacroEnvironment,
    MacroSnapshot,
    macro_from_value,
    parse_define,
)
from metal_analyzer.lexer import tokenize

from tests.conftest import texts

LOC = SourceLocation("t.h", 1, 9)


def env_with(*defines: str) -> MacroEnvironment:
    env = MacroEnvironment()
    for text in defines:
        env.add(parse_define(text, LOC))
    return env


class TestParseDefine:

    def test_object_like(self):
        m = parse_define("TILE 16", LOC)
        assert m.name == "TILE"
        assert m.params is None
        assert not m.is_function_like
        assert texts(m.body) == ["16"]

    def test_function_like(self):
        m = parse_define("SQ(x) ((x) * (x))", LOC)
        assert m.params == ("x",)
        assert m.is_function_like
        assert m.replacement_text() == "( ( x ) * ( x ) )"

    def test_space_before_paren_is_object_like(self):
        m = parse_define("F (x) x", LOC)
        assert m.params is None
        assert texts(m.body) == ["(", "x", ")", "x"]

    def test_variadic(self):
        m = parse_define("LOG(fmt, ...) emit(fmt, __VA_ARGS__)", LOC)
        assert m.params == ("fmt",)
        assert m.variadic

    def test_named_variadic(self):
        m = parse_define("LOG(args...) emit(args)", LOC)
        assert m.params == ("args",)
        assert m.variadic

    def test_empty_body(self):
        m = parse_define("GUARD_H", LOC)
        assert m.body == ()
        assert m.describe() == "GUARD_H"

    def test_describe(self):
        assert parse_define("F(a, b) a + b", LOC).describe() == "F(a, b) a + b"

    @pytest.mark.parametrize("text", ["1X 2", "F(1) x", "F(a-b) a"])
    def test_malformed(self, text):
        with pytest.raises(MalformedDirectiveError):
            parse_define(text, LOC)

    def test_same_definition_ignores_location(self):
        a = parse_define("A 1 + 2", SourceLocation("a.h", 1, 1))
        b = parse_define("A 1 + 2", SourceLocation("b.h", 7, 3))
        c = parse_define("A 1 + 3", SourceLocation("b.h", 7, 3))
        assert a.same_definition(b)
        assert not a.same_definition(c)


class TestExternalValues:

    def test_none_means_one(self):
        assert texts(macro_from_value("A", None).body) == ["1"]

    def test_empty_string_is_empty_body(self):
        assert macro_from_value("A", "").body == ()

    def test_value_is_tokenized(self):
        assert texts(macro_from_value("SCALE", "2.0f").body) == ["2.0f"]


class TestSnapshot:
    """Snapshots are immutable and compared by content."""

    def test_fingerprint_is_content_based(self):
        a = env_with("A 1").snapshot()
        b = MacroEnvironment()
        b.add(parse_define("A 1", SourceLocation("elsewhere.h", 9, 9)))
        assert a.fingerprint == b.snapshot().fingerprint
        assert a == b.snapshot()
        assert hash(a) == hash(b.snapshot())
        assert len(a.fingerprint) == 16

    def test_fingerprint_changes_with_body(self):
        assert env_with("A 1").fingerprint != env_with("A 2").fingerprint

    def test_fingerprint_distinguishes_function_like(self):
        assert env_with("A(x) x").fingerprint != env_with("A x").fingerprint

    def test_empty_snapshot(self):
        assert len(EMPTY_SNAPSHOT) == 0
        assert MacroEnvironment().snapshot() == EMPTY_SNAPSHOT

    def test_mapping_is_read_only(self):
        snap = env_with("A 1").snapshot()
        with pytest.raises(TypeError):
            snap.macros["B"] = snap.macros["A"]  # type: ignore[index]

    def test_later_changes_do_not_leak_into_snapshot(self):
        env = env_with("A 1")
        snap = env.snapshot()
        env.define("B", tokenize("2"))
        env.undef("A")
        assert snap.is_defined("A")
        assert not snap.is_defined("B")
        assert env.is_defined("B") and not env.is_defined("A")

    def test_from_snapshot_copies_state(self):
        snap = env_with("A 1").snapshot()
        child = MacroEnvironment.from_snapshot(snap)
        child.define("CHILD")
        assert "CHILD" not in snap
        assert child.is_defined("A")

    def test_restore(self):
        env = env_with("A 1")
        other = env_with("B 2").snapshot()
        env.restore(other)
        assert env.snapshot() == other
        assert not env.is_defined("A")

    def test_iteration_is_sorted(self):
        snap = MacroEnvironment.from_mapping({"Z": None, "A": None}).snapshot()
        assert list(snap) == ["A", "Z"]
        assert snap.names() == ["A", "Z"]

    def test_define_returns_previous(self):
        env = MacroEnvironment()
        assert env.define("A", tokenize("1")) is None
        previous = env.define("A", tokenize("2"))
        assert previous is not None and texts(previous.body) == ["1"]

    def test_snapshot_type(self):
        assert isinstance(env_with("A 1").snapshot(), MacroSnapshot)


class TestExpansion:

    def test_object_like_chain(self):
        env = env_with("A B", "B 3")
        assert texts(env.expand(tokenize("A + 1"))) == ["3", "+", "1"]

    def test_self_reference_stops(self):
        env = env_with("X X + 1")
        assert texts(env.expand(tokenize("X"))) == ["X", "+", "1"]

    def test_mutual_recursion_stops(self):
        env = env_with("A B", "B A")
        assert texts(env.expand(tokenize("A"))) == ["A"]

    def test_function_like(self):
        env = env_with("SQ(x) ((x) * (x))")
        assert texts(env.expand(tokenize("SQ(3)"))) == [
            "(", "(", "3", ")", "*", "(", "3", ")", ")",
        ]

    def test_nested_arguments(self):
        env = env_with("FIRST(a, b) a")
        assert texts(env.expand(tokenize("FIRST(f(1, 2), 3)"))) == [
            "f", "(", "1", ",", "2", ")",
        ]

    def test_function_like_without_call_is_left_alone(self):
        env = env_with("F(x) x")
        assert texts(env.expand(tokenize("F + 1"))) == ["F", "+", "1"]

    def test_stringify(self):
        env = env_with("STR(x) #x")
        assert texts(env.expand(tokenize("STR(a b)"))) == ['"a b"']

    def test_paste(self):
        env = env_with("CAT(a, b) a ## b")
        assert texts(env.expand(tokenize("CAT(foo, bar)"))) == ["foobar"]

    def test_va_args(self):
        env = env_with("CALL(f, ...) f(__VA_ARGS__)")
        assert texts(env.expand(tokenize("CALL(g, 1, 2)"))) == [
            "g", "(", "1", ",", "2", ")",
        ]

    def test_arguments_are_expanded(self):
        env = env_with("TILE 16", "TWICE(x) (x * 2)")
        assert texts(env.expand(tokenize("TWICE(TILE)"))) == ["(", "16", "*", "2", ")"]

    def test_expanded_tokens_take_invocation_position(self):
        env = env_with("TILE 16")
        out = env.expand(tokenize("x = TILE;", line=5))
        sixteen = out[2]
        assert sixteen.text == "16"
        assert (sixteen.line, sixteen.column) == (5, 5)

    def test_empty_environment_is_identity(self):
        tokens = tokenize("a b c")
        assert MacroEnvironment().expand(tokens) == tokens


class TestEvaluate:

    def test_object_like_substitution(self):
        env = MacroEnvironment.from_mapping({"TILE": "16"})
        assert env.evaluate("TILE * 2 == 32")

    def test_function_like_substitution(self):
        env = env_with("SQ(x) ((x) * (x))")
        assert env.evaluate("SQ(3) == 9")

    def test_defined_operand_not_expanded(self):
        env = MacroEnvironment.from_mapping({"FOO": "0"})
        assert env.evaluate("defined(FOO)")
        assert env.evaluate("defined FOO")
        assert not env.evaluate("FOO")

    def test_external_none_is_true(self):
        env = MacroEnvironment.from_mapping({"__METAL_IOS__": None})
        assert env.evaluate("__METAL_IOS__")

    def test_empty_macro_in_condition_is_error(self):
        env = MacroEnvironment.from_mapping({"EMPTY": ""})
        with pytest.raises(ConditionError):
            env.evaluate("EMPTY")

    def test_has_include_passthrough(self):
        env = MacroEnvironment.from_mapping({"HDR": "1"})
        assert env.evaluate('__has_include("HDR")', lambda t, a: t == "HDR")
