"""Evaluate correction formulas against readings.

Expressions are parsed with :mod:`ast` and walked by a small interpreter that
only understands arithmetic over the reading's own fields, so user supplied
formulas never reach ``eval``.
"""

from __future__ import annotations

import ast
import logging
import math
import operator
from functools import lru_cache
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

from pydantic import ValidationError

from models.telemetry import METRIC_NAMES, Correction, Reading

logger = logging.getLogger(__name__)

_BINARY_OPERATORS: Dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: math.pow,
    # formulas are written with ``^`` for powers
    ast.BitXor: math.pow,
}

_UNARY_OPERATORS: Dict[type, Callable[[Any], Any]] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
    ast.Not: operator.not_,
}

_COMPARISONS: Dict[type, Callable[[Any, Any], Any]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
}

FUNCTIONS: Dict[str, Callable[..., Any]] = {
    "abs": abs,
    "min": min,
    "max": max,
    "round": round,
    "sqrt": math.sqrt,
    "log": math.log,
    "log10": math.log10,
    "exp": math.exp,
    "pow": math.pow,
}


class ExpressionError(ValueError):
    """Raised for formulas that are malformed or use unsupported syntax."""


@lru_cache(maxsize=256)
def compile_expression(expression: str) -> ast.expr:
    try:
        tree = ast.parse(expression.strip(), mode="eval")
    except SyntaxError as exc:
        raise ExpressionError(f"invalid expression {expression!r}") from exc
    _check(tree.body)
    return tree.body


def _check(node: ast.AST) -> None:
    if isinstance(node, ast.Constant):
        if isinstance(node.value, (bool, int, float)):
            return
        raise ExpressionError(f"unsupported literal {node.value!r}")
    if isinstance(node, ast.Name):
        return
    if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPERATORS:
        _check(node.left)
        _check(node.right)
        return
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPERATORS:
        _check(node.operand)
        return
    if isinstance(node, ast.Compare) and all(type(op) in _COMPARISONS for op in node.ops):
        _check(node.left)
        for comparator in node.comparators:
            _check(comparator)
        return
    if isinstance(node, ast.IfExp):
        for child in (node.test, node.body, node.orelse):
            _check(child)
        return
    if (
        isinstance(node, ast.Call)
        and isinstance(node.func, ast.Name)
        and node.func.id in FUNCTIONS
        and not node.keywords
    ):
        for arg in node.args:
            _check(arg)
        return
    raise ExpressionError(f"unsupported syntax: {ast.dump(node)}")


def _evaluate(node: ast.expr, variables: Mapping[str, Any]) -> Any:
    if isinstance(node, ast.Constant):
        return node.value
    if isinstance(node, ast.Name):
        value = variables.get(node.id)
        return math.nan if value is None else value
    if isinstance(node, ast.BinOp):
        op = _BINARY_OPERATORS[type(node.op)]
        return op(_evaluate(node.left, variables), _evaluate(node.right, variables))
    if isinstance(node, ast.UnaryOp):
        return _UNARY_OPERATORS[type(node.op)](_evaluate(node.operand, variables))
    if isinstance(node, ast.Compare):
        left = _evaluate(node.left, variables)
        for op, comparator in zip(node.ops, node.comparators):
            right = _evaluate(comparator, variables)
            if not _COMPARISONS[type(op)](left, right):
                return False
            left = right
        return True
    if isinstance(node, ast.IfExp):
        if _evaluate(node.test, variables):
            return _evaluate(node.body, variables)
        return _evaluate(node.orelse, variables)
    if isinstance(node, ast.Call):
        args = [_evaluate(arg, variables) for arg in node.args]
        return FUNCTIONS[node.func.id](*args)  # type: ignore[attr-defined]
    raise ExpressionError(f"unsupported syntax: {ast.dump(node)}")


def evaluate_expression(expression: str, variables: Mapping[str, Any]) -> Optional[Any]:
    """Evaluate ``expression`` with ``variables`` bound by name.

    Unknown or null variables evaluate to NaN, and a NaN or failed arithmetic
    result comes back as ``None``. Malformed formulas raise
    :class:`ExpressionError`.
    """
    tree = compile_expression(expression)
    try:
        result = _evaluate(tree, variables)
    except (ArithmeticError, TypeError, ValueError):
        return None
    if isinstance(result, float) and math.isnan(result):
        return None
    if isinstance(result, complex):
        return None
    return result


def corrections_for(reading: Reading, corrections: Iterable[Correction]) -> list[Correction]:
    return [
        correction
        for correction in corrections
        if correction.device == reading.device
        and correction.reading_type == reading.reading_type
    ]


def apply_corrections(raw: Reading, corrections: Iterable[Correction]) -> Reading:
    """Return the ``processed=True`` copy of ``raw`` with corrections applied.

    Every formula sees the raw field values only, never the output of
    another correction.
    """
    variables = raw.field_map()
    updates: Dict[str, Any] = {"processed": True}
    for correction in corrections:
        if correction.metric not in METRIC_NAMES:
            logger.warning(
                "Skipping correction for unknown metric",
                extra={"device_id": raw.device, "metric": correction.metric},
            )
            continue
        try:
            value = evaluate_expression(correction.expression, variables)
        except ExpressionError as exc:
            logger.warning(
                "Invalid correction expression",
                extra={
                    "device_id": raw.device,
                    "sensor_type": raw.reading_type,
                    "metric": correction.metric,
                    "reason": str(exc),
                },
            )
            value = None
        updates[correction.metric] = value
    return _validated(raw, updates)


def _validated(raw: Reading, updates: Dict[str, Any]) -> Reading:
    """Build the corrected reading, nulling results that do not fit their field."""
    fields = {**raw.model_dump(), **updates}
    try:
        return Reading.model_validate(fields)
    except ValidationError as exc:
        rejected = {error["loc"][0] for error in exc.errors() if error["loc"]}
    for metric in sorted(rejected):
        logger.warning(
            "Correction result does not fit its metric",
            extra={
                "device_id": raw.device,
                "sensor_type": raw.reading_type,
                "metric": metric,
                "reason": repr(fields[metric]),
            },
        )
        fields[metric] = None
    return Reading.model_validate(fields)
