"""Address-aware derived operators — member access, indexing, matrix elements and constructors.

These are not registered operators: the Context synthesizes their OpImpl
from the struct or template type of the operand when it builds the Expr.
Member and index access keep the address-ness of their operand, so chained
access (``a.b.c``) and chained writes (``a.b.c = v``) both work.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

from . import constants
from .errors import InvalidOperandError, MissingGradientRuleError
from .ir import Constant, Expr, Node
from .registry import OpImpl
from .type_registry import StructType, TemplateType, Type

if TYPE_CHECKING:
    from .context import Context
    from .gradients import GradientAccumulator

_MATRIX_ELEM_RE = re.compile(constants.MATRIX_ELEM_OP_PATTERN)


def member_op(name: str) -> str:
    return f"{constants.MEMBER_OP_PREFIX}{name}"


def index_op(index: int) -> str:
    return constants.INDEX_OP_TEMPLATE.format(index=index)


def matrix_elem_op(row: int, col: int) -> str:
    return constants.MATRIX_ELEM_OP_TEMPLATE.format(row=row, col=col)


def slot_selectors(aggregate: Type) -> list[str]:
    """Member or index ops that pick each slot of a struct or fixed-size template, in order."""
    if isinstance(aggregate, StructType):
        return [member_op(name) for name in aggregate.fields]
    if isinstance(aggregate, TemplateType) and aggregate.size:
        return [index_op(i) for i in range(aggregate.size)]
    return []


def _is_constructor_of(node: Node, aggregate: Type) -> bool:
    return (
        isinstance(node, Expr)
        and not node.is_address
        and node.op == aggregate.typename
        and node.type is aggregate
    )


def _slot_aggregate(ctx: Context, aggregate: Type, slot: int, g: Node) -> Node:
    """Build an aggregate holding ``g`` at ``slot`` and zeros everywhere else."""
    if isinstance(aggregate, StructType):
        slot_types = list(aggregate.fields.values())
    else:
        slot_types = [aggregate.element_type] * (aggregate.size or 0)
    parts = [
        g if i == slot else ctx.constant(t, 0) for i, t in enumerate(slot_types)
    ]
    return ctx.apply(aggregate.typename, *parts)


def lift_gradient(ctx: Context, access: Expr, g: Node) -> Node:
    """Turn a gradient on ``a.x`` (or ``a[i]``, ``a(r,c)``) into one on ``a``."""
    aggregate = access.args[0].type
    op = access.op
    m = _MATRIX_ELEM_RE.match(op)
    if m and isinstance(aggregate, TemplateType):
        offset = aggregate.linear_index(int(m.group(1)), int(m.group(2)))
        op = index_op(offset) if offset is not None else op
    selectors = slot_selectors(aggregate)
    if op not in selectors:
        raise MissingGradientRuleError(op, [aggregate.typename])
    return _slot_aggregate(ctx, aggregate, selectors.index(op), g)


def member_impl(struct_type: StructType, name: str) -> OpImpl:
    field_type = struct_type.fields[name]
    op = member_op(name)

    def render(a: str) -> str:
        return f"{a}.{name}"

    def imm(value: Any) -> Any:
        return value[name] if isinstance(value, dict) else value

    def deriv(ctx: Context, wrt: Node, a: Node) -> Node:
        return ctx.apply(op, ctx.derivative(wrt, a))

    def gradient(ctx: Context, grads: GradientAccumulator, g: Node, a: Node) -> None:
        slot = list(struct_type.fields).index(name)
        grads.push(a, _slot_aggregate(ctx, struct_type, slot, g))

    def replace(ctx: Context, a: Node) -> Node | None:
        if a.is_zero():
            return ctx.constant(field_type, 0)
        if a.is_one():
            return ctx.constant(field_type, 1)
        if isinstance(a, Constant) and isinstance(a.value, dict):
            return ctx.constant(field_type, a.value.get(name, 0))
        if _is_constructor_of(a, struct_type):
            part = a.args[list(struct_type.fields).index(name)]
            if part.type is field_type:
                return part
        return None

    return OpImpl(
        render={constants.LANG_C: render, constants.LANG_JS: render},
        deriv=deriv,
        gradient=gradient,
        replace=replace,
        imm=imm,
    )


def index_impl(template_type: TemplateType, index: int) -> OpImpl:
    element_type = template_type.element_type
    op = index_op(index)

    def render(a: str) -> str:
        return f"{a}[{index}]"

    def imm(value: Any) -> Any:
        return value[index] if isinstance(value, (list, tuple)) else value

    def deriv(ctx: Context, wrt: Node, a: Node) -> Node:
        return ctx.apply(op, ctx.derivative(wrt, a))

    def gradient(ctx: Context, grads: GradientAccumulator, g: Node, a: Node) -> None:
        grads.push(a, _slot_aggregate(ctx, template_type, index, g))

    def replace(ctx: Context, a: Node) -> Node | None:
        if a.is_zero():
            return ctx.constant(element_type, 0)
        if a.is_one():
            return ctx.constant(element_type, 1)
        if isinstance(a, Constant) and isinstance(a.value, (list, tuple)):
            if index < len(a.value):
                return ctx.constant(element_type, a.value[index])
        if _is_constructor_of(a, template_type) and index < len(a.args):
            if a.args[index].type is element_type:
                return a.args[index]
        return None

    return OpImpl(
        render={constants.LANG_C: render, constants.LANG_JS: render},
        deriv=deriv,
        # Without a fixed size there is no aggregate to carry the gradient back
        gradient=gradient if template_type.size else None,
        replace=replace,
        imm=imm,
    )


def matrix_elem_impl(matrix_type: TemplateType, row: int, col: int) -> OpImpl:
    """``m(r,c)`` on ``arma::Mat`` types. Fixed shapes store elements column-major."""
    element_type = matrix_type.element_type
    op = matrix_elem_op(row, col)
    offset = matrix_type.linear_index(row, col)

    def render_c(a: str) -> str:
        return f"{a}({row}, {col})"

    def render_js(a: str) -> str:
        return f"{a}[{offset}]"

    def imm(value: Any) -> Any:
        if isinstance(value, (list, tuple)):
            if value and isinstance(value[0], (list, tuple)):
                return value[row][col]
            if offset is None:
                raise InvalidOperandError(f"{op}: a flat value needs a fixed row count")
            return value[offset]
        return value

    def deriv(ctx: Context, wrt: Node, a: Node) -> Node:
        return ctx.apply(op, ctx.derivative(wrt, a))

    def gradient(ctx: Context, grads: GradientAccumulator, g: Node, a: Node) -> None:
        grads.push(a, _slot_aggregate(ctx, matrix_type, offset, g))

    def replace(ctx: Context, a: Node) -> Node | None:
        if a.is_zero():
            return ctx.constant(element_type, 0)
        if a.is_one():
            return ctx.constant(element_type, 1)
        if offset is None:
            return None
        if isinstance(a, Constant) and isinstance(a.value, (list, tuple)):
            if offset < len(a.value):
                return ctx.constant(element_type, a.value[offset])
        if _is_constructor_of(a, matrix_type) and offset < len(a.args):
            if a.args[offset].type is element_type:
                return a.args[offset]
        return None

    render = {constants.LANG_C: render_c}
    if offset is not None:
        render[constants.LANG_JS] = render_js
    return OpImpl(
        render=render,
        deriv=deriv,
        gradient=gradient if offset is not None else None,
        replace=replace,
        imm=imm,
    )


def constructor_impl(aggregate: Type) -> OpImpl:
    """Type-name-as-constructor: ``Vec3(x, y, z)``, ``Pose(pos, rot)``."""
    op = aggregate.typename
    is_template = isinstance(aggregate, TemplateType)

    def render_c(*args: str) -> str:
        if is_template and aggregate.typename.startswith(constants.ARMA_TEMPLATE_PREFIX):
            return f"{aggregate.typename}{{{', '.join(args)}}}"
        return f"{aggregate.typename}({', '.join(args)})"

    def render_js(*args: str) -> str:
        if is_template:
            return f"Float64Array.of({', '.join(args)})"
        members = ", ".join(
            f"{name}:{arg}" for name, arg in zip(aggregate.fields, args)
        )
        return f"{{__type:'{aggregate.js_typename}', {members}}}"

    def imm(*values: Any) -> Any:
        if is_template:
            return list(values)
        return dict(zip(aggregate.fields, values))

    def deriv(ctx: Context, wrt: Node, *args: Node) -> Node:
        return ctx.apply(op, *(ctx.derivative(wrt, a) for a in args))

    def gradient(ctx: Context, grads: GradientAccumulator, g: Node, *args: Node) -> None:
        if is_template:
            selectors = [index_op(i) for i in range(len(args))]
        else:
            selectors = slot_selectors(aggregate)
        for selector, arg in zip(selectors, args):
            grads.push(arg, ctx.apply(selector, g))

    def is_zero(ctx: Context, *args: Node) -> bool:
        return bool(args) and all(a.is_zero() for a in args)

    def replace(ctx: Context, *args: Node) -> Node | None:
        if is_zero(ctx, *args):
            return ctx.constant(aggregate, 0)
        return None

    return OpImpl(
        render={constants.LANG_C: render_c, constants.LANG_JS: render_js},
        deriv=deriv,
        gradient=gradient,
        replace=replace,
        is_zero=is_zero,
        imm=imm,
    )
