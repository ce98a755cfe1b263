"""Reverse-mode gradient synthesis — builds the adjoint of a Context as a new Context."""

from __future__ import annotations

import logging
from typing import Iterable

from . import constants
from .context import Context
from .dataflow import analyze
from .derived import lift_gradient, slot_selectors
from .errors import (
    GradientFinalizedError,
    InvalidOperandError,
    MissingGradientRuleError,
    UnresolvedOperatorError,
)
from .ir import ArgOptions, Constant, Expr, Node, Read, VariableRef, Write, post_order

logger = logging.getLogger(__name__)


class GradientAccumulator:
    """Per-node gradient contributions for one reverse sweep.

    Contributions are summed lazily by ``total``; once a node's total has been
    taken it is final, and a later ``push`` to it is an error.
    """

    def __init__(self, ctx: Context, grad_refs: dict[str, VariableRef]):
        self.ctx = ctx
        self.grad_refs = grad_refs
        self._contributions: dict[str, list[Node]] = {}
        self._totals: dict[str, Node] = {}

    def push(self, node: Node, g: Node) -> None:
        if g.is_zero():
            return
        if node.key in self._totals:
            raise GradientFinalizedError(
                f"Gradient {g.key} pushed to {node.key} after its total was taken"
            )
        self._contributions.setdefault(node.key, []).append(g)

    def contributions(self, node: Node) -> list[Node]:
        return list(self._contributions.get(node.key, []))

    def total(self, node: Node) -> Node:
        if node.is_address:
            address = self.gradient_address(node)
            return address if address is not None else self.ctx.constant(node.type, 0)
        if node.key in self._totals:
            return self._totals[node.key]
        parts = self._contributions.get(node.key, [])
        if not parts:
            result: Node = self.ctx.constant(node.type, 0)
        else:
            result = parts[0]
            for part in parts[1:]:
                result = self._add(result, part)
        self._totals[node.key] = result
        return result

    def _add(self, a: Node, b: Node) -> Node:
        """Sum two gradients; aggregates without a registered ``+`` are summed slot by slot."""
        ctx = self.ctx
        t = a.type
        if t.is_aggregate and ctx.registry.resolve("+", [t, b.type], ctx.types) is None:
            selectors = slot_selectors(t)
            if not selectors:
                raise UnresolvedOperatorError("+", [t.typename, b.type.typename])
            parts = [self._add(ctx.apply(s, a), ctx.apply(s, b)) for s in selectors]
            return ctx.apply(t.typename, *parts)
        return ctx.apply("+", a, b)

    def gradient_address(self, address: Node) -> Node | None:
        """The address holding the gradient of ``address``, or None if it has none."""
        if isinstance(address, VariableRef):
            return self.grad_refs.get(address.key)
        if isinstance(address, Expr) and address.is_address:
            inner = self.gradient_address(address.args[0])
            if inner is None:
                return None
            return self.ctx.apply(address.op, inner)
        return None


def _grad_name(name: str) -> str:
    return f"{name}{constants.GRAD_SUFFIX}"


def _grad_options(ref: VariableRef) -> ArgOptions:
    return ArgOptions(no_grad=ref.options.no_grad, is_grad=True)


class _Copier:
    """Memoized deep copy of nodes from one Context into another, by content key."""

    def __init__(self, target: Context):
        self.target = target
        self.copied: dict[str, Node] = {}

    def copy(self, node: Node) -> Node:
        def uncopied(n: Node) -> tuple[Node, ...]:
            return () if n.key in self.copied else n.operands()

        for n in post_order([node], uncopied):
            if n.key not in self.copied:
                self.copied[n.key] = self._copy_one(n)
        return self.copied[node.key]

    def _copy_one(self, node: Node) -> Node:
        t = self.target
        c = self.copied
        if isinstance(node, Constant):
            return t.constant(node.type, node.value)
        if isinstance(node, VariableRef):
            return t.ref(node.name)
        if isinstance(node, Read):
            return t.read(c[node.address.key])
        if isinstance(node, Write):
            return t.write(c[node.address.key], c[node.value.key])
        if isinstance(node, Expr):
            return t.apply(node.op, *(c[a.key] for a in node.args))
        raise InvalidOperandError(f"Can't copy {node}")


def adjoint_of(ctx: Context, name: str | None = None, excluded: Iterable[str] = ()) -> Context:
    """Build the gradient function of ``ctx``.

    Args:
        ctx: The function to differentiate. It is not modified.
        name: Name of the new function, ``<name>Grad`` by default.
        excluded: Argument names that get no gradient argument.

    Returns:
        A new Context computing the original outputs plus, for each input
        argument, its gradient ``<in>Grad`` given the output gradients
        ``<out>Grad``. Update arguments get a paired ``<update>Grad`` update.
    """
    excluded = set(excluded)
    name = name or _grad_name(ctx.name)

    def wants_grad(ref: VariableRef) -> bool:
        return not ref.options.no_grad and ref.name not in excluded

    def spec(ref: VariableRef) -> tuple:
        return (ref.name, ref.type, ref.options)

    def grad_spec(ref: VariableRef) -> tuple:
        return (_grad_name(ref.name), ref.type, _grad_options(ref))

    out_args = [spec(r) for r in ctx.out_args] + [
        grad_spec(r) for r in ctx.in_args if wants_grad(r)
    ]
    update_args = [spec(r) for r in ctx.update_args] + [
        grad_spec(r) for r in ctx.update_args if wants_grad(r)
    ]
    in_args = [spec(r) for r in ctx.in_args] + [
        grad_spec(r) for r in ctx.out_args if wants_grad(r)
    ]

    c2 = Context(ctx.registry, ctx.types, name, out_args, update_args, in_args)
    c2.pre_defn = ctx.pre_defn
    c2.pre_code = ctx.pre_code
    c2.post_code = ctx.post_code

    if not ctx.writes:
        logger.warning("%s has no writes; adjoint %s computes nothing", ctx.name, name)

    copier = _Copier(c2)
    for w in ctx.writes.values():
        copier.copy(w)

    grad_refs: dict[str, VariableRef] = {}
    for ref in ctx.args():
        if wants_grad(ref):
            grad_refs[c2.ref(ref.name).key] = c2.ref(_grad_name(ref.name))
    grads = GradientAccumulator(c2, grad_refs)

    graph = analyze(c2)
    for node in reversed(graph.in_order):
        _backprop(c2, grads, node)

    added = _write_gradients(c2, grads, graph.reads)

    logger.info(
        "Synthesized %s from %s: %d gradient writes, %d nodes",
        name,
        ctx.name,
        added,
        c2.node_count,
    )
    return c2


def _backprop(ctx: Context, grads: GradientAccumulator, node: Node) -> None:
    if isinstance(node, Write):
        grads.push(node.value, grads.total(node.address))
    elif isinstance(node, Expr) and not node.is_address:
        rule = node.op_info.gradient
        if rule is None:
            raise MissingGradientRuleError(node.op, node.arg_typenames())
        g = grads.total(node)
        if not g.is_zero():
            rule(ctx, grads, g, *node.args)


def _access_depth(rd: Read) -> int:
    depth = 0
    node = rd.address
    while isinstance(node, Expr) and node.is_address:
        depth += 1
        node = node.args[0]
    return depth


def _enclosing_read(rd: Read, by_address: dict[str, Read]) -> Read | None:
    node = rd.address
    while isinstance(node, Expr) and node.is_address:
        node = node.args[0]
        if node.key in by_address:
            return by_address[node.key]
    return None


def _write_gradients(ctx: Context, grads: GradientAccumulator, reads: list[Read]) -> int:
    """Write each read's total gradient, once per outermost address read.

    A read of ``p.x`` alongside a read of ``p`` folds into ``p``'s total, lifted
    through the member access, so ``pGrad`` gets a single write. Deeper reads
    are settled first, before the totals they feed are taken.
    """
    by_address = {
        rd.address.key: rd for rd in reads if grads.gradient_address(rd.address) is not None
    }
    added = 0
    for rd in sorted(by_address.values(), key=_access_depth, reverse=True):
        g = grads.total(rd)
        enclosing = _enclosing_read(rd, by_address)
        if enclosing is not None:
            access = rd.address
            while access.key != enclosing.address.key:
                g = lift_gradient(ctx, access, g)
                access = access.args[0]
            grads.push(enclosing, g)
            continue
        if isinstance(g, Constant) and g.is_zero():
            logger.debug("Dropping zero gradient for %s", rd.address.key)
            continue
        ctx.write(grads.gradient_address(rd.address), g)
        added += 1
    return added
