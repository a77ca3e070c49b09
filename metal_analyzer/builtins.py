"""
metal_analyzer/builtins.py
══════════════════════════

Static knowledge about the Metal Shading Language standard library.

The overload resolver consults these tables to tell apart

    float4(x)          a builtin type used as a constructor / cast
    sqrt(x)            a standard library function (never unresolved)
    device float* p    an address-space qualified declaration
    if (x)             a keyword that merely looks like a call

from calls into user code, which must resolve against the corpus.

License: MIT — same as metal-analyzer.
"""

from __future__ import annotations

from typing import FrozenSet, Optional, Tuple


# ═══════════════════════════════════════════════════════════════════════════
#  PART 1 — TYPES
# ═══════════════════════════════════════════════════════════════════════════

SCALAR_TYPES: FrozenSet[str] = frozenset({
    "bool", "char", "uchar", "short", "ushort", "int", "uint", "long",
    "ulong", "half", "float", "double", "bfloat", "size_t", "ptrdiff_t",
    "int8_t", "int16_t", "int32_t", "int64_t",
    "uint8_t", "uint16_t", "uint32_t", "uint64_t",
    "bfloat16_t", "unsigned", "signed", "void",
})

_VECTOR_BASES = ("bool", "char", "uchar", "short", "ushort", "int", "uint",
                 "long", "ulong", "half", "float", "bfloat")
_PACKED_BASES = ("char", "uchar", "short", "ushort", "int", "uint", "half", "float")
_MATRIX_BASES = ("half", "float", "bfloat")

VECTOR_TYPES: FrozenSet[str] = frozenset(
    f"{base}{n}" for base in _VECTOR_BASES for n in (2, 3, 4)
) | frozenset(
    f"packed_{base}{n}" for base in _PACKED_BASES for n in (2, 3, 4)
)

MATRIX_TYPES: FrozenSet[str] = frozenset(
    f"{base}{c}x{r}" for base in _MATRIX_BASES for c in (2, 3, 4) for r in (2, 3, 4)
)

OBJECT_TYPES: FrozenSet[str] = frozenset({
    "texture1d", "texture1d_array", "texture2d", "texture2d_array",
    "texture2d_ms", "texture2d_ms_array", "texture3d", "texturecube",
    "texturecube_array", "depth2d", "depth2d_array", "depth2d_ms",
    "depth2d_ms_array", "depthcube", "depthcube_array", "texture_buffer",
    "sampler", "const_sampler",
    "atomic_int", "atomic_uint", "atomic_bool", "atomic_float", "atomic",
    "ray", "intersector", "intersection_result",
    "instance_acceleration_structure", "primitive_acceleration_structure",
    "render_grid_type", "object_grid_type", "mem_flags", "thread_scope",
    "memory_order", "simdgroup_matrix", "array", "vec", "matrix",
    "packed_vec", "uniform", "visible_function_table",
    "simdgroup_float8x8", "simdgroup_half8x8", "simdgroup_bfloat8x8",
})

BUILTIN_TYPES: FrozenSet[str] = SCALAR_TYPES | VECTOR_TYPES | MATRIX_TYPES | OBJECT_TYPES

ADDRESS_SPACES: FrozenSet[str] = frozenset({
    "device", "constant", "thread", "threadgroup",
    "threadgroup_imageblock", "ray_data", "object_data",
})

# Numeric scalars that convert implicitly into each other.
NUMERIC_SCALARS: FrozenSet[str] = SCALAR_TYPES - {"void"}


def vector_shape(type_name: str) -> Optional[Tuple[str, int]]:
    """``"float4"`` → ("float", 4); ``None`` for non-vector types."""
    name = type_name[len("packed_"):] if type_name.startswith("packed_") else type_name
    if name and name[-1] in "234" and name[:-1] in _VECTOR_BASES:
        return name[:-1], int(name[-1])
    return None


# ═══════════════════════════════════════════════════════════════════════════
#  PART 2 — FUNCTIONS
# ═══════════════════════════════════════════════════════════════════════════

MATH_FUNCTIONS = frozenset({
    "abs", "acos", "acosh", "asin", "asinh", "atan", "atan2", "atanh",
    "ceil", "clamp", "copysign", "cos", "cosh", "cospi", "divide", "exp",
    "exp2", "exp10", "fabs", "fdim", "floor", "fma", "fmax", "fmax3",
    "fmin", "fmin3", "fmedian3", "fmod", "fract", "frexp", "ilogb",
    "isfinite", "isinf", "isnan", "isnormal", "isordered", "isunordered",
    "ldexp", "log", "log2", "log10", "max", "max3", "median3", "min",
    "min3", "mix", "modf", "nan", "nextafter", "pow", "pown", "powr",
    "remainder", "rint", "round", "rsqrt", "saturate", "sign", "signbit",
    "sin", "sincos", "sinh", "sinpi", "smoothstep", "sqrt", "step", "tan",
    "tanh", "tanpi", "trunc",
    # integer
    "absdiff", "addsat", "clz", "ctz", "extract_bits", "hadd", "insert_bits",
    "mad24", "madhi", "madsat", "mul24", "mulhi", "popcount", "reverse_bits",
    "rhadd", "rotate", "subsat",
})

GEOMETRIC_FUNCTIONS = frozenset({
    "cross", "distance", "distance_squared", "dot", "faceforward", "length",
    "length_squared", "normalize", "reflect", "refract",
    "determinant", "transpose",
})

RELATIONAL_FUNCTIONS = frozenset({"all", "any", "select"})

SYNC_FUNCTIONS = frozenset({
    "threadgroup_barrier", "simdgroup_barrier",
    "device_memory_barrier_with_hint", "threadgroup_memory_barrier_with_hint",
})

SIMD_FUNCTIONS = frozenset({
    "simd_sum", "simd_product", "simd_min", "simd_max", "simd_and",
    "simd_or", "simd_xor", "simd_all", "simd_any", "simd_is_first",
    "simd_prefix_exclusive_sum", "simd_prefix_inclusive_sum",
    "simd_prefix_exclusive_product", "simd_prefix_inclusive_product",
    "simd_shuffle", "simd_shuffle_down", "simd_shuffle_up",
    "simd_shuffle_xor", "simd_shuffle_rotate_down", "simd_shuffle_rotate_up",
    "simd_broadcast", "simd_broadcast_first", "simd_ballot",
    "quad_broadcast", "quad_shuffle", "quad_shuffle_up", "quad_shuffle_down",
    "quad_shuffle_xor", "quad_sum", "quad_min", "quad_max",
    "simdgroup_load", "simdgroup_store", "simdgroup_multiply",
    "simdgroup_multiply_accumulate", "make_filled_simdgroup_matrix",
})

ATOMIC_FUNCTIONS = frozenset({
    "atomic_store_explicit", "atomic_load_explicit",
    "atomic_exchange_explicit", "atomic_compare_exchange_weak_explicit",
    "atomic_compare_exchange_strong_explicit", "atomic_fetch_add_explicit",
    "atomic_fetch_sub_explicit", "atomic_fetch_or_explicit",
    "atomic_fetch_xor_explicit", "atomic_fetch_and_explicit",
    "atomic_fetch_min_explicit", "atomic_fetch_max_explicit",
    "atomic_thread_fence",
})

CONVERSION_FUNCTIONS = frozenset({
    "as_type", "static_cast", "reinterpret_cast", "const_cast",
    "dynamic_cast", "convert", "pack_float_to_unorm4x8",
    "pack_float_to_snorm4x8", "pack_half_to_unorm4x8", "unpack_unorm4x8_to_float",
    "unpack_snorm4x8_to_float", "unpack_unorm4x8_to_half",
    "dfdx", "dfdy", "fwidth", "discard_fragment",
})

BUILTIN_FUNCTIONS: FrozenSet[str] = (
    MATH_FUNCTIONS
    | GEOMETRIC_FUNCTIONS
    | RELATIONAL_FUNCTIONS
    | SYNC_FUNCTIONS
    | SIMD_FUNCTIONS
    | ATOMIC_FUNCTIONS
    | CONVERSION_FUNCTIONS
)


# ═══════════════════════════════════════════════════════════════════════════
#  PART 3 — KEYWORDS AND HEADERS
# ═══════════════════════════════════════════════════════════════════════════

KEYWORDS: FrozenSet[str] = frozenset({
    "alignas", "alignof", "auto", "break", "case", "catch", "class",
    "const", "constexpr", "continue", "decltype", "default", "delete", "do",
    "else", "enum", "explicit", "extern", "false", "for", "friend", "goto",
    "if", "inline", "mutable", "namespace", "new", "noexcept", "nullptr",
    "operator", "private", "protected", "public", "return", "sizeof",
    "static", "static_assert", "struct", "switch", "template", "this",
    "throw", "true", "try", "typedef", "typename", "union", "using",
    "virtual", "volatile", "while", "__attribute__", "defined",
    # Metal function qualifiers
    "kernel", "vertex", "fragment",
}) | ADDRESS_SPACES

# Declaration specifiers skipped when reading a declaration's type.
DECL_SPECIFIERS: FrozenSet[str] = frozenset({
    "inline", "static", "constexpr", "extern", "virtual", "explicit",
    "friend", "mutable", "kernel", "vertex", "fragment", "visible",
    "stitchable", "METAL_FUNC", "__forceinline", "consteval", "constinit",
})

# Headers Metal compilers always provide.
SYSTEM_HEADERS: FrozenSet[str] = frozenset({
    "metal_stdlib", "metal_math", "metal_common", "metal_geometric",
    "metal_integer", "metal_relational", "metal_atomic", "metal_compute",
    "metal_graphics", "metal_texture", "metal_matrix", "metal_simdgroup",
    "metal_simdgroup_matrix", "metal_types", "metal_pack",
    "metal_raytracing", "metal_numeric", "metal_limits", "metal_tensor",
    "simd/simd.h",
})


def is_builtin_type(name: str) -> bool:
    return name in BUILTIN_TYPES


def is_builtin_function(name: str) -> bool:
    return name in BUILTIN_FUNCTIONS


__all__ = [
    "SCALAR_TYPES",
    "VECTOR_TYPES",
    "MATRIX_TYPES",
    "OBJECT_TYPES",
    "BUILTIN_TYPES",
    "ADDRESS_SPACES",
    "NUMERIC_SCALARS",
    "BUILTIN_FUNCTIONS",
    "KEYWORDS",
    "DECL_SPECIFIERS",
    "SYSTEM_HEADERS",
    "vector_shape",
    "is_builtin_type",
    "is_builtin_function",
]
