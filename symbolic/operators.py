"""Standard operator library — scalar arithmetic and elementary functions.

Every floating-point operator carries C++ and JavaScript renderers, an
``imm`` evaluator, forward and reverse differentiation rules, and a small set
of ``replace`` rewrites (identity elements, annihilators, constant folding).
"""

from __future__ import annotations

import math
import operator
from typing import TYPE_CHECKING, Any, Callable

from . import constants
from .ir import Constant, Expr
from .registry import OperatorRegistry

if TYPE_CHECKING:
    from .context import Context
    from .gradients import GradientAccumulator
    from .ir import Node


def _infix(symbol: str) -> Callable[[str, str], str]:
    def render(a: str, b: str) -> str:
        return f"({a} {symbol} {b})"

    return render


def _prefix(symbol: str) -> Callable[[str], str]:
    def render(a: str) -> str:
        return f"({symbol}{a})"

    return render


def _call(name: str) -> Callable[..., str]:
    def render(*args: str) -> str:
        return f"{name}({', '.join(args)})"

    return render


def _all_constant(*args: Node) -> bool:
    return all(isinstance(a, Constant) for a in args)


# ── Floating-point scalars ───────────────────────────────────────


def install_scalar_operators(registry: OperatorRegistry, scalar: str = "double") -> None:
    """Register arithmetic and elementary functions over one floating scalar type."""

    def fold(ctx: Context, fn: Callable[..., Any], *args: Node) -> Node | None:
        if not _all_constant(*args):
            return None
        try:
            value = fn(*(a.value for a in args))
        except (ValueError, ZeroDivisionError, OverflowError):
            return None
        if isinstance(value, complex):
            return None
        return ctx.constant(scalar, value)

    def zero(ctx: Context) -> Node:
        return ctx.constant(scalar, 0)

    def one(ctx: Context) -> Node:
        return ctx.constant(scalar, 1)

    def D(ctx: Context, wrt: Node, a: Node) -> Node:
        return ctx.derivative(wrt, a)

    # +

    def add_replace(ctx, a, b):
        if a.is_zero():
            return b
        if b.is_zero():
            return a
        return fold(ctx, operator.add, a, b)

    def add_gradient(ctx, grads, g, a, b):
        grads.push(a, g)
        grads.push(b, g)

    registry.defop(
        scalar, "+", scalar, scalar,
        c=_infix("+"),
        js=_infix("+"),
        imm=operator.add,
        deriv=lambda ctx, wrt, a, b: ctx.apply("+", D(ctx, wrt, a), D(ctx, wrt, b)),
        gradient=add_gradient,
        replace=add_replace,
    )

    # binary -

    def sub_replace(ctx, a, b):
        if b.is_zero():
            return a
        if a.is_zero():
            return ctx.apply("-", b)
        if a is b:
            return zero(ctx)
        return fold(ctx, operator.sub, a, b)

    def sub_gradient(ctx, grads, g, a, b):
        grads.push(a, g)
        grads.push(b, ctx.apply("-", g))

    registry.defop(
        scalar, "-", scalar, scalar,
        c=_infix("-"),
        js=_infix("-"),
        imm=operator.sub,
        deriv=lambda ctx, wrt, a, b: ctx.apply("-", D(ctx, wrt, a), D(ctx, wrt, b)),
        gradient=sub_gradient,
        replace=sub_replace,
    )

    # unary -

    def neg_replace(ctx, a):
        if a.is_zero():
            return a
        if isinstance(a, Expr) and a.op == "-" and len(a.args) == 1:
            return a.args[0]
        return fold(ctx, operator.neg, a)

    registry.defop(
        scalar, "-", scalar,
        c=_prefix("-"),
        js=_prefix("-"),
        imm=operator.neg,
        deriv=lambda ctx, wrt, a: ctx.apply("-", D(ctx, wrt, a)),
        gradient=lambda ctx, grads, g, a: grads.push(a, ctx.apply("-", g)),
        replace=neg_replace,
        is_zero=lambda ctx, a: a.is_zero(),
    )

    # *

    def mul_replace(ctx, a, b):
        if a.is_zero() or b.is_zero():
            return zero(ctx)
        if a.is_one():
            return b
        if b.is_one():
            return a
        return fold(ctx, operator.mul, a, b)

    def mul_deriv(ctx, wrt, a, b):
        return ctx.apply(
            "+",
            ctx.apply("*", a, D(ctx, wrt, b)),
            ctx.apply("*", D(ctx, wrt, a), b),
        )

    def mul_gradient(ctx, grads, g, a, b):
        grads.push(a, ctx.apply("*", g, b))
        grads.push(b, ctx.apply("*", g, a))

    registry.defop(
        scalar, "*", scalar, scalar,
        c=_infix("*"),
        js=_infix("*"),
        imm=operator.mul,
        deriv=mul_deriv,
        gradient=mul_gradient,
        replace=mul_replace,
        is_zero=lambda ctx, a, b: a.is_zero() or b.is_zero(),
    )

    # /

    def div_replace(ctx, a, b):
        if a.is_zero() and not b.is_zero():
            return zero(ctx)
        if b.is_one():
            return a
        return fold(ctx, operator.truediv, a, b)

    def div_deriv(ctx, wrt, a, b):
        # (a'b - ab') / b²
        return ctx.apply(
            "/",
            ctx.apply(
                "-",
                ctx.apply("*", D(ctx, wrt, a), b),
                ctx.apply("*", a, D(ctx, wrt, b)),
            ),
            ctx.apply("*", b, b),
        )

    def div_gradient(ctx, grads, g, a, b):
        grads.push(a, ctx.apply("/", g, b))
        grads.push(
            b,
            ctx.apply("-", ctx.apply("/", ctx.apply("*", g, a), ctx.apply("*", b, b))),
        )

    registry.defop(
        scalar, "/", scalar, scalar,
        c=_infix("/"),
        js=_infix("/"),
        imm=operator.truediv,
        deriv=div_deriv,
        gradient=div_gradient,
        replace=div_replace,
    )

    # Elementary functions: name → (c name, js name, imm, d/da as a node builder)

    def d_sin(ctx, a):
        return ctx.apply("cos", a)

    def d_cos(ctx, a):
        return ctx.apply("-", ctx.apply("sin", a))

    def d_tan(ctx, a):
        c = ctx.apply("cos", a)
        return ctx.apply("/", one(ctx), ctx.apply("*", c, c))

    def d_exp(ctx, a):
        return ctx.apply("exp", a)

    def d_log(ctx, a):
        return ctx.apply("/", one(ctx), a)

    def d_sqrt(ctx, a):
        return ctx.apply("/", ctx.constant(scalar, 0.5), ctx.apply("sqrt", a))

    def d_tanh(ctx, a):
        t = ctx.apply("tanh", a)
        return ctx.apply("-", one(ctx), ctx.apply("*", t, t))

    unary_functions: dict[str, tuple[str, str, Callable[[float], float], Callable]] = {
        "sin": ("sin", "Math.sin", math.sin, d_sin),
        "cos": ("cos", "Math.cos", math.cos, d_cos),
        "tan": ("tan", "Math.tan", math.tan, d_tan),
        "exp": ("exp", "Math.exp", math.exp, d_exp),
        "log": ("log", "Math.log", math.log, d_log),
        "sqrt": ("sqrt", "Math.sqrt", math.sqrt, d_sqrt),
        "tanh": ("tanh", "Math.tanh", math.tanh, d_tanh),
    }
    for name, (c_name, js_name, fn, local_deriv) in unary_functions.items():
        _install_unary(registry, scalar, name, c_name, js_name, fn, local_deriv, fold)

    # pow

    def pow_deriv(ctx, wrt, a, b):
        # d(a^b) = b a^(b-1) a' + a^b log(a) b'
        return ctx.apply(
            "+",
            ctx.apply(
                "*",
                ctx.apply("*", b, ctx.apply("pow", a, ctx.apply("-", b, one(ctx)))),
                D(ctx, wrt, a),
            ),
            ctx.apply(
                "*",
                ctx.apply("*", ctx.apply("pow", a, b), ctx.apply("log", a)),
                D(ctx, wrt, b),
            ),
        )

    def pow_gradient(ctx, grads, g, a, b):
        power = ctx.apply("pow", a, ctx.apply("-", b, one(ctx)))
        grads.push(a, ctx.apply("*", g, ctx.apply("*", b, power)))
        if not isinstance(b, Constant):
            grads.push(
                b,
                ctx.apply("*", g, ctx.apply("*", ctx.apply("pow", a, b), ctx.apply("log", a))),
            )

    def pow_replace(ctx, a, b):
        if b.is_zero():
            return one(ctx)
        if b.is_one():
            return a
        return fold(ctx, math.pow, a, b)

    registry.defop(
        scalar, "pow", scalar, scalar,
        c=_call("pow"),
        js=_call("Math.pow"),
        imm=math.pow,
        deriv=pow_deriv,
        gradient=pow_gradient,
        replace=pow_replace,
    )


def _install_unary(
    registry: OperatorRegistry,
    scalar: str,
    name: str,
    c_name: str,
    js_name: str,
    fn: Callable[[float], float],
    local_deriv: Callable,
    fold: Callable,
) -> None:
    def deriv(ctx: Context, wrt: Node, a: Node) -> Node:
        return ctx.apply("*", local_deriv(ctx, a), ctx.derivative(wrt, a))

    def gradient(ctx: Context, grads: GradientAccumulator, g: Node, a: Node) -> None:
        grads.push(a, ctx.apply("*", g, local_deriv(ctx, a)))

    registry.defop(
        scalar, name, scalar,
        c=_call(c_name),
        js=_call(js_name),
        imm=fn,
        deriv=deriv,
        gradient=gradient,
        replace=lambda ctx, a: fold(ctx, fn, a),
    )


# ── Integers ─────────────────────────────────────────────────────


def install_integer_operators(registry: OperatorRegistry, integer: str = "int") -> None:
    """Integer arithmetic: derivatives are zero and no gradient flows through."""

    def zero_deriv(ctx, wrt, *args):
        return ctx.constant(integer, 0)

    def no_gradient(ctx, grads, g, *args):
        return None

    def fold(ctx, fn, *args):
        if _all_constant(*args):
            return ctx.constant(integer, fn(*(a.value for a in args)))
        return None

    for symbol, fn in (("+", operator.add), ("-", operator.sub), ("*", operator.mul)):
        registry.defop(
            integer, symbol, integer, integer,
            c=_infix(symbol),
            js=_infix(symbol),
            imm=fn,
            deriv=zero_deriv,
            gradient=no_gradient,
            replace=lambda ctx, a, b, fn=fn: fold(ctx, fn, a, b),
        )
    registry.defop(
        integer, "-", integer,
        c=_prefix("-"),
        js=_prefix("-"),
        imm=operator.neg,
        deriv=zero_deriv,
        gradient=no_gradient,
        replace=lambda ctx, a: fold(ctx, operator.neg, a),
    )


def default_registry() -> OperatorRegistry:
    """A frozen registry with ``double``, ``float`` and ``int`` operators installed."""
    registry = OperatorRegistry()
    install_scalar_operators(registry, constants.DEFAULT_LITERAL_TYPE)
    install_scalar_operators(registry, "float")
    install_integer_operators(registry, "int")
    return registry.freeze()
