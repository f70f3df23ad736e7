"""Condition Evaluator - Safe evaluation of guard expressions"""
from collections.abc import Mapping
from numbers import Number
from typing import Any, Union

from ..domain.expressions import BinaryOp, Literal, LogicalOp, Node, PropertyAccess, UnaryNot
from ..domain.models import Expression
from ..utils.logger import get_logger

logger = get_logger(__name__)


class _Unresolved(Exception):
    """A property path did not resolve against the context"""

    def __init__(self, path: str):
        super().__init__(path)
        self.path = path


class ConditionEvaluator:
    """
    Evaluate guard expressions against a read-only context

    Walks the cached AST - no eval() or exec(). A property path that does
    not resolve fails the whole evaluation closed (False); logical
    operators short-circuit, so `a === true || b.missing` can still pass.
    """

    def evaluate(self, expression: Union[Expression, str], context: Mapping) -> bool:
        """
        Evaluate an expression

        Args:
            expression: Expression (or raw text) to evaluate
            context: Read-only mapping, e.g. {"output": ..., "steps": ..., "input": ...}

        Returns:
            True if the guard passes

        Raises:
            GuardEvaluationError: Only for malformed syntax
        """
        if isinstance(expression, str):
            expression = Expression(raw=expression)

        ast = expression.compiled()
        try:
            return _truthy(self._eval(ast, context))
        except _Unresolved as e:
            logger.debug(f"Guard '{expression.raw}' failed closed: '{e.path}' did not resolve")
            return False

    def _eval(self, node: Node, context: Mapping) -> Any:
        if isinstance(node, Literal):
            return node.value

        if isinstance(node, PropertyAccess):
            return self._resolve(node, context)

        if isinstance(node, UnaryNot):
            return not _truthy(self._eval(node.operand, context))

        if isinstance(node, LogicalOp):
            left = _truthy(self._eval(node.left, context))
            if node.op == "&&":
                return left and _truthy(self._eval(node.right, context))
            return left or _truthy(self._eval(node.right, context))

        if isinstance(node, BinaryOp):
            return _compare(node.op, self._eval(node.left, context), self._eval(node.right, context))

        # Parser only produces the node types above
        raise TypeError(f"Unknown expression node: {type(node).__name__}")

    def _resolve(self, node: PropertyAccess, context: Mapping) -> Any:
        """
        Get value from context using dot notation

        Example: "output.success" -> context["output"]["success"]
        """
        value: Any = context
        for part in node.path:
            if isinstance(value, Mapping) and part in value:
                value = value[part]
            else:
                raise _Unresolved(node.dotted)
        return value


def _is_number(value: Any) -> bool:
    return isinstance(value, Number) and not isinstance(value, bool)


def _truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    if _is_number(value):
        return value != 0
    if isinstance(value, str):
        return value != ""
    return True


def _strict_equals(left: Any, right: Any) -> bool:
    if _is_number(left) and _is_number(right):
        return left == right
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left is right
    if left is None or right is None:
        return left is None and right is None
    if type(left) is not type(right):
        return False
    return left == right


def _compare(op: str, left: Any, right: Any) -> bool:
    """Compare values using operator"""
    if op == "===":
        return _strict_equals(left, right)
    if op == "!==":
        return not _strict_equals(left, right)

    # Ordering only between two numbers or two strings
    comparable = (_is_number(left) and _is_number(right)) or (
        isinstance(left, str) and isinstance(right, str)
    )
    if not comparable:
        return False

    if op == ">":
        return left > right
    if op == "<":
        return left < right
    if op == ">=":
        return left >= right
    if op == "<=":
        return left <= right
    return False
