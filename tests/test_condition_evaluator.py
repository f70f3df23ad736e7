"""Tests for guard evaluation"""
from types import MappingProxyType

import pytest

from stepflow.domain.errors import GuardEvaluationError
from stepflow.engine.condition_evaluator import ConditionEvaluator


@pytest.fixture
def evaluator():
    return ConditionEvaluator()


def test_and_of_comparisons(evaluator):
    context = {"output": {"count": 9, "flag": True}}
    assert evaluator.evaluate("output.count > 5 && output.flag === true", context) is True


def test_missing_path_fails_closed(evaluator):
    assert evaluator.evaluate("output.missing.deep", {"output": {}}) is False


def test_missing_path_inside_negation_still_fails_closed(evaluator):
    assert evaluator.evaluate("!output.missing", {"output": {}}) is False


def test_or_short_circuits_past_missing_path(evaluator):
    context = {"output": {"ok": True}}
    assert evaluator.evaluate("output.ok === true || output.missing", context) is True
    assert evaluator.evaluate("output.missing || output.ok === true", context) is False


def test_and_short_circuits(evaluator):
    assert evaluator.evaluate("output.ok === true && output.missing", {"output": {"ok": False}}) is False


def test_strict_equality_does_not_coerce(evaluator):
    context = {"output": {"n": 1, "s": "1", "b": True, "z": None}}
    assert evaluator.evaluate("output.n === 1", context) is True
    assert evaluator.evaluate("output.s === 1", context) is False
    assert evaluator.evaluate("output.b === 1", context) is False
    assert evaluator.evaluate("output.n !== '1'", context) is True
    assert evaluator.evaluate("output.z === null", context) is True
    assert evaluator.evaluate("output.z === false", context) is False


def test_int_and_float_compare_equal(evaluator):
    assert evaluator.evaluate("output.n === 2", {"output": {"n": 2.0}}) is True


def test_ordering_requires_matching_types(evaluator):
    assert evaluator.evaluate("output.name > 'a'", {"output": {"name": "b"}}) is True
    assert evaluator.evaluate("output.name > 1", {"output": {"name": "b"}}) is False
    assert evaluator.evaluate("output.flag >= 0", {"output": {"flag": True}}) is False


def test_bare_path_uses_truthiness(evaluator):
    assert evaluator.evaluate("input.note", {"input": {"note": "x"}}) is True
    assert evaluator.evaluate("input.note", {"input": {"note": ""}}) is False
    assert evaluator.evaluate("input.count", {"input": {"count": 0}}) is False
    assert evaluator.evaluate("input.items", {"input": {"items": []}}) is True


def test_reads_read_only_mappings(evaluator):
    context = MappingProxyType({"steps": MappingProxyType({"charge": {"id": "c1"}})})
    assert evaluator.evaluate("steps.charge.id === 'c1'", context) is True


def test_path_through_non_mapping_fails_closed(evaluator):
    assert evaluator.evaluate("output.value.length > 1", {"output": {"value": "abc"}}) is False


def test_malformed_syntax_raises(evaluator):
    with pytest.raises(GuardEvaluationError):
        evaluator.evaluate("output.ok == true", {"output": {"ok": True}})


def test_no_host_evaluation(evaluator):
    with pytest.raises(GuardEvaluationError):
        evaluator.evaluate("__import__('os')", {})
