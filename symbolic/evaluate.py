"""Immediate evaluation of IR nodes against concrete argument values."""

from __future__ import annotations

from typing import Any

from .errors import InvalidOperandError, MissingEvaluationRuleError, UndeclaredNameError
from .ir import Constant, Expr, Node, Read, VariableRef, Write, post_order


def evaluate(node: Node, values: dict[str, Any]) -> Any:
    """Evaluate ``node`` with argument names bound in ``values``.

    Args:
        node: Any non-Write node of a Context.
        values: Argument name → value (floats, dicts for structs, lists for templates).

    Returns:
        The computed value.
    """
    if isinstance(node, Write):
        raise InvalidOperandError(f"Can't evaluate {node}")
    memo: dict[str, Any] = {}
    for n in post_order([node]):
        if isinstance(n, Constant):
            result = n.value
        elif isinstance(n, VariableRef):
            if n.name not in values:
                raise UndeclaredNameError(f"No value bound for {n.name}")
            result = values[n.name]
        elif isinstance(n, Read):
            result = memo[n.address.key]
        elif isinstance(n, Expr):
            if n.op_info.imm is None:
                raise MissingEvaluationRuleError(n.op, n.arg_typenames())
            result = n.op_info.imm(*(memo[a.key] for a in n.args))
        else:
            raise InvalidOperandError(f"Can't evaluate {n}")
        memo[n.key] = result
    return memo[node.key]
