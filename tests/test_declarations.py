# tests/test_declarations.py
"""
Tests for the declaration extractor and type spelling.
"""

import pytest

from metal_analyzer.declarations import (
    DeclKind,
    Field,
    Parameter,
    extract_declarations,
    spell_type,
    split_top_level,
    strip_attributes,
    value_type,
)
from metal_analyzer.diagnostics import SourceLocation
from metal_analyzer.lexer import tokenize

from tests.conftest import texts


def extract(text: str):
    return extract_declarations("t.h", tokenize(text))


def named(extracted, name):
    (decl,) = [d for d in extracted.declarations if d.name == name]
    return decl


class TestSpelling:

    @pytest.mark.parametrize("source, expected", [
        ("float", "float"),
        ("device const float *", "const device float*"),
        ("const device float*", "const device float*"),
        ("struct Foo", "Foo"),
        ("metal::array<float, 4>", "metal::array<float, 4>"),
        ("thread T &", "thread T&"),
        ("unsigned int", "unsigned int"),
    ])
    def test_spell_type(self, source, expected):
        assert spell_type(tokenize(source)) == expected

    def test_value_type(self):
        assert value_type("const device float&") == "device float"
        assert value_type("const float*") == "float*"
        assert value_type("float") == "float"

    def test_split_top_level(self):
        parts = split_top_level(tokenize("a, f(b, c), vec<float, 2> d"))
        assert [texts(p) for p in parts] == [
            ["a"],
            ["f", "(", "b", ",", "c", ")"],
            ["vec", "<", "float", ",", "2", ">", "d"],
        ]
        assert split_top_level([]) == []

    def test_strip_attributes(self):
        toks = strip_attributes(tokenize(
            "device float* out [[buffer(0)]] __attribute__((unused)) alignas(16) x"
        ))
        assert texts(toks) == ["device", "float", "*", "out", "x"]


class TestFunctions:

    def test_definition_with_default(self):
        extracted = extract(
            "namespace fixture {\n"
            "inline float scale(float x, int n = 2) { return x * n; }\n"
            "}\n"
        )
        decl = named(extracted, "scale")
        assert decl.kind is DeclKind.FUNCTION
        assert decl.namespace == ("fixture",)
        assert decl.qualified_name == "fixture::scale"
        assert decl.parameters == (Parameter("float", "x"), Parameter("int", "n", True))
        assert decl.return_type == "float"
        assert decl.qualifiers == ("inline",)
        assert decl.is_definition
        assert (decl.min_arity(), decl.max_arity()) == (1, 2)
        assert decl.signature() == "fixture::scale(float, int)"
        assert texts(decl.body) == ["return", "x", "*", "n", ";"]
        assert (decl.location.line, decl.location.column) == (2, 14)

    def test_prototype(self):
        decl = named(extract("float f(int);"), "f")
        assert not decl.is_definition
        assert decl.parameters == (Parameter("int"),)
        assert decl.body == ()

    def test_void_parameter_list(self):
        assert named(extract("void g(void);"), "g").parameters == ()

    def test_variadic(self):
        decl = named(extract("void log_all(int level, ...);"), "log_all")
        assert decl.variadic
        assert decl.max_arity() is None
        assert decl.signature() == "log_all(int, ...)"

    def test_kernel_with_attributes(self):
        decl = named(extract(
            "kernel void k(device float* out [[buffer(0)]],\n"
            "              uint id [[thread_position_in_grid]]) {\n"
            "    out[id] = 1.0f;\n"
            "}\n"
        ), "k")
        assert decl.qualifiers == ("kernel",)
        assert decl.return_type == "void"
        assert [p.type for p in decl.parameters] == ["device float*", "uint"]
        assert [p.name for p in decl.parameters] == ["out", "id"]

    def test_address_space_is_part_of_signature(self):
        extracted = extract(
            "void put(device float* p);\n"
            "void put(threadgroup float* p);\n"
        )
        a, b = extracted.declarations
        assert a.signature_key() != b.signature_key()

    def test_operator(self):
        decl = named(extract("float2 operator+(float2 a, float2 b);"), "operator+")
        assert decl.kind is DeclKind.OPERATOR
        assert decl.is_callable

    def test_out_of_line_member(self):
        decl = named(extract("float Pair::sum() const { return 0.0f; }"), "sum")
        assert decl.namespace == ("Pair",)
        assert decl.qualifiers == ("const",)
        assert decl.signature() == "Pair::sum() const"

    def test_macro_invocation_is_not_a_declaration(self):
        assert extract("SOME_MACRO(x);").declarations == ()

    def test_function_template(self):
        decl = named(extract("template <typename T> T twice(T v) { return v + v; }"), "twice")
        assert decl.kind is DeclKind.TEMPLATE
        assert decl.templated_kind is DeclKind.FUNCTION
        assert decl.effective_kind is DeclKind.FUNCTION
        assert decl.template_params == ("T",)
        assert decl.is_callable and decl.is_template


class TestRecords:

    def test_struct_fields_and_members(self):
        extracted = extract(
            "struct Pair {\n"
            "    float lo;\n"
            "    device float* hi;\n"
            "    float sum() const { return lo; }\n"
            "};\n"
        )
        struct, method = extracted.declarations
        assert struct.kind is DeclKind.STRUCT
        assert struct.fields == (Field("float", "lo"), Field("device float*", "hi"))
        assert struct.is_type
        assert method.name == "sum"
        assert method.namespace == ("Pair",)

    def test_constructor(self):
        extracted = extract("struct S { S(int v) : x(v) {} int x; };")
        struct, ctor = extracted.declarations
        assert struct.fields == (Field("int", "x"),)
        assert (ctor.name, ctor.namespace) == ("S", ("S",))

    def test_forward_declaration(self):
        decl = named(extract("struct Later;"), "Later")
        assert decl.kind is DeclKind.STRUCT
        assert not decl.is_definition

    def test_template_struct(self):
        extracted = extract(
            "template <typename T>\n"
            "struct Box {\n"
            "    T value;\n"
            "    T get() const { return value; }\n"
            "};\n"
        )
        box, get = extracted.declarations
        assert box.kind is DeclKind.TEMPLATE
        assert box.templated_kind is DeclKind.STRUCT
        assert box.fields == (Field("T", "value"),)
        assert get.kind is DeclKind.FUNCTION
        assert get.template_params == ("T",)

    def test_typedef_anonymous_struct(self):
        decl = named(extract("typedef struct { float a; int b; } Params;"), "Params")
        assert decl.kind is DeclKind.ALIAS
        assert decl.underlying_type == "struct {...}"
        assert [f.name for f in decl.fields] == ["a", "b"]

    def test_enum(self):
        decl = named(extract("enum class Mode : uint { Fast, Slow = 2 };"), "Mode")
        assert decl.kind is DeclKind.ENUM
        assert decl.underlying_type == "uint"
        assert [f.name for f in decl.fields] == ["Fast", "Slow"]


class TestOtherDeclarations:

    def test_using_alias(self):
        decl = named(extract("using real = float;"), "real")
        assert decl.kind is DeclKind.ALIAS
        assert decl.underlying_type == "float"

    def test_plain_typedef(self):
        decl = named(extract("typedef unsigned int index_t;"), "index_t")
        assert decl.underlying_type == "unsigned int"

    def test_using_namespace(self):
        extracted = extract("using namespace metal;\nfloat f(float x) { return x; }\n")
        (directive,) = extracted.using_directives
        assert directive.target == ("metal",)
        assert named(extracted, "f").usings == (("metal",),)

    def test_variable(self):
        decl = named(extract("constant float kScale = 2.0f;"), "kScale")
        assert decl.kind is DeclKind.VARIABLE
        assert decl.underlying_type == "constant float"

    def test_initializer_call_is_not_a_function(self):
        extracted = extract("constant Pair kDefault = Pair(1.0f, 2.0f);\nvoid after();\n")
        assert named(extracted, "kDefault").kind is DeclKind.VARIABLE
        assert named(extracted, "after").kind is DeclKind.FUNCTION
        assert [d.name for d in extracted.declarations] == ["kDefault", "after"]

    def test_nested_namespaces(self):
        extracted = extract("namespace a::b { namespace c { void f(); } }")
        assert named(extracted, "f").namespace == ("a", "b", "c")


class TestAvailability:

    def test_declarations_after_error_are_unavailable(self):
        loc = SourceLocation("t.h", 2, 1)
        extracted = extract_declarations(
            "t.h", tokenize("int before();"), tokenize("int after();", line=3), loc,
        )
        assert [d.name for d in extracted.declarations] == ["before"]
        assert [d.name for d in extracted.unavailable] == ["after"]
        assert extracted.error_location == loc

    def test_to_dict(self):
        decl = named(extract("float f(int n) { return n; }"), "f")
        out = decl.to_dict()
        assert out["kind"] == "function"
        assert out["parameters"] == ["int"]
        assert out["signature"] == "f(int)"
        assert out["definition"] is True
