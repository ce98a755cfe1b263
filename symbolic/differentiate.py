"""Forward-mode differentiation — d(node)/d(wrt) built as new nodes in the same Context."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .errors import InvalidOperandError, MissingDerivativeRuleError, NotAnAddressError
from .ir import Constant, Expr, Read, VariableRef, Write, post_order

if TYPE_CHECKING:
    from .context import Context
    from .ir import Node


def derivative(ctx: Context, wrt: Node, node: Node) -> Node:
    """Derivative of ``node`` with respect to the address ``wrt`` (or a Read of it).

    Results are cached on the Context per ``(wrt, node)``. Operands are
    differentiated first, so a rule's own ``ctx.derivative`` calls are lookups.
    """
    if isinstance(wrt, Read):
        wrt = wrt.address
    if not wrt.is_address:
        raise NotAnAddressError(f"Can't differentiate with respect to {wrt}")
    if isinstance(node, Write):
        raise InvalidOperandError(f"Can't differentiate a write: {node}")

    cache = ctx.derivatives

    def pending(n: Node) -> tuple[Node, ...]:
        if not isinstance(n, Expr) or (wrt.key, n.key) in cache:
            return ()
        return n.args

    if (wrt.key, node.key) not in cache:
        for n in post_order([node], pending):
            if (wrt.key, n.key) not in cache:
                cache[(wrt.key, n.key)] = _derivative_of(ctx, wrt, n)
    return cache[(wrt.key, node.key)]


def _derivative_of(ctx: Context, wrt: Node, node: Node) -> Node:
    if isinstance(node, Read):
        return ctx.constant(node.type, 1 if node.address is wrt else 0)
    if isinstance(node, VariableRef):
        return ctx.constant(node.type, 1 if node is wrt else 0)
    if isinstance(node, Constant):
        return ctx.constant(node.type, 0)
    if isinstance(node, Expr):
        rule = node.op_info.deriv
        if rule is None:
            raise MissingDerivativeRuleError(node.op, node.arg_typenames())
        return rule(ctx, wrt, *node.args)
    raise InvalidOperandError(f"Can't differentiate {node}")
