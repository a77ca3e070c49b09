"""
metal_analyzer/expression.py
════════════════════════════

Preprocessor constant expressions (``#if`` / ``#elif``).

Pipeline::

    macro-expanded tokens ──join──► text ──PEG──► parse tree
                                                    │ ConditionASTBuilder
                                                    ▼
                                    CondExpr AST ──evaluate──► int

The grammar is a Parsimonious PEG with one rule per C precedence level.
Evaluation is a separate pass over the AST so that ``&&``, ``||`` and
``?:`` short-circuit: ``#if 0 && (1 / 0)`` is valid, just as it is for a
C compiler.

Identifiers still present after macro expansion evaluate to 0, except
``true`` (1) and ``false`` (0).

Depends on:
    - parsimonious (PEG parser)

License: MIT — same as metal-analyzer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Union

from parsimonious.exceptions import ParseError, VisitationError
from parsimonious.grammar import Grammar
from parsimonious.nodes import Node, NodeVisitor

from .errors import ConditionError
from .lexer import Token

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════
#  PART 1 — CONDITION GRAMMAR (Parsimonious PEG)
# ═══════════════════════════════════════════════════════════════════

CONDITION_GRAMMAR = Grammar(r'''
    expression          = _ conditional _

    conditional         = logical_or ternary_tail?
    ternary_tail        = _ "?" _ conditional _ ":" _ conditional

    logical_or          = logical_and (_ "||" _ logical_and)*
    logical_and         = bit_or (_ "&&" _ bit_or)*
    bit_or              = bit_xor (_ bit_or_op _ bit_xor)*
    bit_xor             = bit_and (_ "^" _ bit_and)*
    bit_and             = equality (_ bit_and_op _ equality)*
    equality            = relational (_ equality_op _ relational)*
    relational          = shift (_ relational_op _ shift)*
    shift               = additive (_ shift_op _ additive)*
    additive            = multiplicative (_ additive_op _ multiplicative)*
    multiplicative      = unary (_ multiplicative_op _ unary)*

    bit_or_op           = ~r"\|(?!\|)"
    bit_and_op          = ~r"&(?!&)"
    equality_op         = "==" / "!="
    relational_op       = "<=" / ">=" / ~r"<(?!<)" / ~r">(?!>)"
    shift_op            = "<<" / ">>"
    additive_op         = "+" / "-"
    multiplicative_op   = "*" / "/" / "%"

    unary               = prefixed / primary
    prefixed            = unary_op _ unary
    unary_op            = ~r"!(?!=)" / "~" / "-" / "+"

    primary             = defined_call / has_include / number / char_literal
                        / identifier / group
    defined_call        = ~r"defined\b" _ (("(" _ identifier _ ")") / identifier)
    has_include         = ~r"__has_include(_next)?\b" _ "(" _ header_name _ ")"
    header_name         = ~r'"[^"]*"' / ~r"<[^>]*>"
    group               = "(" _ conditional _ ")"

    number              = ~r"(0[xX][0-9a-fA-F]+|0[bB][01]+|[0-9]+)[uUlL]*"
    char_literal        = ~r"'(\\.|[^'\\])+'"
    identifier          = ~r"[A-Za-z_][A-Za-z0-9_]*"

    _                   = ~r"[ \t]*"
''')


# ═══════════════════════════════════════════════════════════════════
#  PART 2 — AST NODES
# ═══════════════════════════════════════════════════════════════════

@dataclass(frozen=True, slots=True)
class Literal:
    value: int
    unsigned: bool = False


@dataclass(frozen=True, slots=True)
class Identifier:
    name: str


@dataclass(frozen=True, slots=True)
class Defined:
    name: str


@dataclass(frozen=True, slots=True)
class HasInclude:
    target: str
    angled: bool


@dataclass(frozen=True, slots=True)
class Unary:
    op: str
    operand: "CondExpr"


@dataclass(frozen=True, slots=True)
class Binary:
    op: str
    left: "CondExpr"
    right: "CondExpr"


@dataclass(frozen=True, slots=True)
class Ternary:
    condition: "CondExpr"
    then: "CondExpr"
    otherwise: "CondExpr"


CondExpr = Union[Literal, Identifier, Defined, HasInclude, Unary, Binary, Ternary]


# ═══════════════════════════════════════════════════════════════════
#  PART 3 — AST VISITOR (Parse Tree → AST)
# ═══════════════════════════════════════════════════════════════════

_CHAR_ESCAPES = {
    "n": 10, "t": 9, "r": 13, "0": 0, "a": 7, "b": 8, "f": 12, "v": 11,
    "\\": 92, "'": 39, '"': 34, "?": 63,
}


class ConditionASTBuilder(NodeVisitor):
    """Transforms the Parsimonious parse tree into a ``CondExpr``."""

    unwrapped_exceptions = (ConditionError,)

    def generic_visit(self, node, visited_children):
        """Default: return children, or the node itself for leaves."""
        return visited_children or node

    # ─────────────────────────────────────────────────────────────
    # Structure
    # ─────────────────────────────────────────────────────────────

    def visit_expression(self, node, visited_children):
        _, expr, _ = visited_children
        return expr

    def visit_conditional(self, node, visited_children):
        condition, tail = visited_children
        if isinstance(tail, Node):
            return condition
        then, otherwise = tail[0]
        return Ternary(condition, then, otherwise)

    def visit_ternary_tail(self, node, visited_children):
        _, _, _, then, _, _, _, otherwise = visited_children
        return then, otherwise

    def _chain(self, node, visited_children):
        left, rest = visited_children
        if isinstance(rest, Node):
            return left
        for _, op, _, right in rest:
            left = Binary(_text(op), left, right)
        return left

    visit_logical_or = _chain
    visit_logical_and = _chain
    visit_bit_or = _chain
    visit_bit_xor = _chain
    visit_bit_and = _chain
    visit_equality = _chain
    visit_relational = _chain
    visit_shift = _chain
    visit_additive = _chain
    visit_multiplicative = _chain

    def visit_unary(self, node, visited_children):
        return visited_children[0]

    def visit_prefixed(self, node, visited_children):
        op, _, operand = visited_children
        return Unary(_text(op), operand)

    def visit_primary(self, node, visited_children):
        return visited_children[0]

    def visit_group(self, node, visited_children):
        _, _, expr, _, _ = visited_children
        return expr

    # ─────────────────────────────────────────────────────────────
    # Operators
    # ─────────────────────────────────────────────────────────────

    def _operator(self, node, visited_children):
        return node.text

    visit_bit_or_op = _operator
    visit_bit_and_op = _operator
    visit_equality_op = _operator
    visit_relational_op = _operator
    visit_shift_op = _operator
    visit_additive_op = _operator
    visit_multiplicative_op = _operator
    visit_unary_op = _operator

    # ─────────────────────────────────────────────────────────────
    # Atoms
    # ─────────────────────────────────────────────────────────────

    def visit_defined_call(self, node, visited_children):
        name = node.text[len("defined"):].strip()
        if name.startswith("("):
            name = name[1:-1].strip()
        return Defined(name)

    def visit_has_include(self, node, visited_children):
        text = node.text
        inner = text[text.index("(") + 1 : text.rindex(")")].strip()
        angled = inner.startswith("<")
        return HasInclude("".join(inner[1:-1].split()), angled)

    def visit_number(self, node, visited_children):
        text = node.text.rstrip("uUlL")
        suffix = node.text[len(text):]
        if len(text) > 1 and text[0] == "0" and text.isdigit():
            number = int(text, 8)
        else:
            number = int(text, 0)
        return Literal(number, "u" in suffix.lower() or number > _INTMAX)

    def visit_char_literal(self, node, visited_children):
        body = node.text[1:-1]
        if body.startswith("\\"):
            esc = body[1:]
            if esc in _CHAR_ESCAPES:
                return Literal(_CHAR_ESCAPES[esc])
            if esc.startswith("x"):
                return Literal(int(esc[1:], 16))
            if esc.isdigit():
                return Literal(int(esc, 8))
            return Literal(ord(esc[0]))
        return Literal(ord(body[0]))

    def visit_identifier(self, node, visited_children):
        return Identifier(node.text)


def _text(value) -> str:
    return value.text if isinstance(value, Node) else value


# ═══════════════════════════════════════════════════════════════════
#  PART 4 — PARSING AND EVALUATION
# ═══════════════════════════════════════════════════════════════════

IsDefinedFn = Callable[[str], bool]
HasIncludeFn = Callable[[str, bool], bool]

# Preprocessor arithmetic is done in intmax_t / uintmax_t.
_INTMAX = (1 << 63) - 1
_UINTMAX_MASK = (1 << 64) - 1

_BOOLEAN_OPS = frozenset({"<", "<=", ">", ">=", "==", "!=", "&&", "||"})
_SHIFT_OPS = frozenset({"<<", ">>"})


def parse_condition(text: str) -> CondExpr:
    """Parse ``text`` into a ``CondExpr``; raises ``ConditionError``."""
    if not text.strip():
        raise ConditionError("#if with no expression")
    try:
        tree = CONDITION_GRAMMAR.parse(text)
    except ParseError as exc:
        raise ConditionError(
            f"invalid preprocessor expression {text.strip()!r}"
        ) from exc
    try:
        return ConditionASTBuilder().visit(tree)
    except VisitationError as exc:
        raise ConditionError(
            f"invalid preprocessor expression {text.strip()!r}"
        ) from exc


def tokens_to_text(tokens: Sequence[Token]) -> str:
    return " ".join(t.text for t in tokens)


def is_unsigned(expr: CondExpr) -> bool:
    """Whether ``expr`` has type ``uintmax_t`` under the usual conversions."""
    if isinstance(expr, Literal):
        return expr.unsigned
    if isinstance(expr, Unary):
        return expr.op != "!" and is_unsigned(expr.operand)
    if isinstance(expr, Binary):
        if expr.op in _BOOLEAN_OPS:
            return False
        if expr.op in _SHIFT_OPS:
            return is_unsigned(expr.left)
        return is_unsigned(expr.left) or is_unsigned(expr.right)
    if isinstance(expr, Ternary):
        return is_unsigned(expr.then) or is_unsigned(expr.otherwise)
    return False


def evaluate(
    expr: CondExpr,
    is_defined: IsDefinedFn,
    has_include: Optional[HasIncludeFn] = None,
) -> int:
    """
    Evaluate a parsed condition to an integer.

    Unsigned results are reduced modulo 2**64, so ``-1 > 0u`` holds.
    """
    if isinstance(expr, Literal):
        return expr.value
    if isinstance(expr, Identifier):
        return 1 if expr.name == "true" else 0
    if isinstance(expr, Defined):
        return 1 if is_defined(expr.name) else 0
    if isinstance(expr, HasInclude):
        if has_include is None:
            return 0
        return 1 if has_include(expr.target, expr.angled) else 0
    if isinstance(expr, Unary):
        value = evaluate(expr.operand, is_defined, has_include)
        if expr.op == "!":
            return 0 if value else 1
        if expr.op == "~":
            value = ~value
        elif expr.op == "-":
            value = -value
        return value & _UINTMAX_MASK if is_unsigned(expr) else value
    if isinstance(expr, Ternary):
        if evaluate(expr.condition, is_defined, has_include):
            value = evaluate(expr.then, is_defined, has_include)
        else:
            value = evaluate(expr.otherwise, is_defined, has_include)
        return value & _UINTMAX_MASK if is_unsigned(expr) else value

    op = expr.op
    left = evaluate(expr.left, is_defined, has_include)
    if op == "&&":
        return 1 if left and evaluate(expr.right, is_defined, has_include) else 0
    if op == "||":
        return 1 if left or evaluate(expr.right, is_defined, has_include) else 0
    right = evaluate(expr.right, is_defined, has_include)

    if op in _SHIFT_OPS:
        unsigned = is_unsigned(expr.left)
    else:
        unsigned = is_unsigned(expr.left) or is_unsigned(expr.right)
    if not unsigned:
        return _apply_binary(op, left, right)
    if op not in _SHIFT_OPS:
        right &= _UINTMAX_MASK
    result = _apply_binary(op, left & _UINTMAX_MASK, right)
    return result if op in _BOOLEAN_OPS else result & _UINTMAX_MASK


def _apply_binary(op: str, left: int, right: int) -> int:
    if op in ("/", "%"):
        if right == 0:
            raise ConditionError("division by zero in preprocessor expression")
        quotient = abs(left) // abs(right)
        if (left < 0) != (right < 0):
            quotient = -quotient
        return quotient if op == "/" else left - quotient * right
    if op == "*":
        return left * right
    if op == "+":
        return left + right
    if op == "-":
        return left - right
    if op == "<<":
        return left << right if right >= 0 else left >> -right
    if op == ">>":
        return left >> right if right >= 0 else left << -right
    if op == "<":
        return int(left < right)
    if op == "<=":
        return int(left <= right)
    if op == ">":
        return int(left > right)
    if op == ">=":
        return int(left >= right)
    if op == "==":
        return int(left == right)
    if op == "!=":
        return int(left != right)
    if op == "&":
        return left & right
    if op == "^":
        return left ^ right
    if op == "|":
        return left | right
    raise ConditionError(f"unsupported operator {op!r}")


def evaluate_condition(
    tokens: Sequence[Token],
    is_defined: IsDefinedFn,
    has_include: Optional[HasIncludeFn] = None,
) -> bool:
    """Parse and evaluate already macro-expanded condition tokens."""
    expr = parse_condition(tokens_to_text(tokens))
    return evaluate(expr, is_defined, has_include) != 0


__all__ = [
    "CONDITION_GRAMMAR",
    "CondExpr",
    "Literal",
    "Identifier",
    "Defined",
    "HasInclude",
    "Unary",
    "Binary",
    "Ternary",
    "ConditionASTBuilder",
    "parse_condition",
    "evaluate",
    "is_unsigned",
    "evaluate_condition",
    "tokens_to_text",
]
