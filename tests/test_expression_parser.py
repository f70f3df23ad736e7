"""Tests for the guard expression tokenizer and parser"""
import pytest

from stepflow.domain.errors import GuardEvaluationError
from stepflow.domain.expressions import (
    BinaryOp, Literal, LogicalOp, PropertyAccess, UnaryNot, parse_expression, tokenize
)
from stepflow.domain.models import Expression


def test_parses_comparison_of_path_and_literal():
    node = parse_expression("output.count > 5")
    assert node == BinaryOp(">", PropertyAccess(("output", "count")), Literal(5))


def test_and_binds_tighter_than_or():
    node = parse_expression("a || b && c")
    assert isinstance(node, LogicalOp)
    assert node.op == "||"
    assert node.left == PropertyAccess(("a",))
    assert node.right == LogicalOp("&&", PropertyAccess(("b",)), PropertyAccess(("c",)))


def test_parentheses_override_precedence():
    node = parse_expression("(a || b) && c")
    assert node.op == "&&"
    assert node.left == LogicalOp("||", PropertyAccess(("a",)), PropertyAccess(("b",)))


def test_keywords_become_literals():
    assert parse_expression("true") == Literal(True)
    assert parse_expression("false") == Literal(False)
    assert parse_expression("null") == Literal(None)


def test_not_nests():
    assert parse_expression("!!flag") == UnaryNot(UnaryNot(PropertyAccess(("flag",))))


@pytest.mark.parametrize("raw, expected", [
    ("x === 3", 3),
    ("x === 3.5", 3.5),
    ("x === -2", -2),
    ("x === 1e3", 1000.0),
    ("x === 'it\\'s'", "it's"),
    ('x === "two words"', "two words"),
])
def test_literal_values(raw, expected):
    assert parse_expression(raw).right == Literal(expected)


def test_string_token_keeps_source_text():
    tokens = tokenize("'a\\nb'")
    assert tokens[0].kind == "STRING"
    assert tokens[0].text == "'a\\nb'"
    assert tokens[0].value == "a\nb"
    assert tokens[-1].kind == "EOF"


@pytest.mark.parametrize("raw", [
    "",
    "   ",
    "a ==  b",
    "a != b",
    "a = b",
    "a === ",
    "(a === b",
    "a === b)",
    "1 < x < 3",
    "len(x) > 1",
    "a - 1",
    "a + b",
    "output.",
    "'unterminated",
    "a; b",
])
def test_rejects_text_outside_grammar(raw):
    with pytest.raises(GuardEvaluationError):
        parse_expression(raw)


def test_loose_equality_error_points_at_strict_operators():
    with pytest.raises(GuardEvaluationError) as exc:
        parse_expression("output.ok == true")
    assert "===" in exc.value.message
    assert exc.value.position == 10
    assert exc.value.raw == "output.ok == true"


def test_expression_caches_ast():
    expression = Expression(raw="output.ok === true")
    first = expression.compiled()
    assert expression.compiled() is first


def test_expression_accepts_plain_string_and_compares_by_text():
    assert Expression.model_validate("a === 1") == Expression(raw="a === 1")
    assert hash(Expression(raw="a")) == hash(Expression(raw="a"))
