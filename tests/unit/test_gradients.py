"""Tests for reverse-mode adjoint synthesis and gradient accumulation."""

import logging

import pytest

from symbolic.context import Context
from symbolic.errors import GradientFinalizedError, MissingGradientRuleError
from symbolic.gradients import GradientAccumulator, adjoint_of
from symbolic.ir import Constant, Direction, Write, root_variable
from symbolic.operators import default_registry
from symbolic.registry import OperatorRegistry
from symbolic.type_registry import TypeRegistry


def _make_types() -> TypeRegistry:
    types = TypeRegistry()
    types.struct("Vec", [("x", "double"), ("y", "double")])
    return types


def _square() -> Context:
    ctx = Context(
        default_registry(),
        TypeRegistry(),
        "square",
        out_args=[("y", "double")],
        in_args=[("x", "double")],
    )
    x = ctx.ref("x")
    ctx.write(ctx.ref("y"), ctx.apply("*", x, x))
    return ctx


def _write_to(ctx: Context, name: str) -> Write:
    target = ctx.ref(name)
    matches = [w for w in ctx.writes.values() if w.address is target]
    assert len(matches) == 1
    return matches[0]


def _writes_under(ctx: Context, name: str) -> list[Write]:
    target = ctx.ref(name)
    return [w for w in ctx.writes.values() if root_variable(w.address) is target]


class TestAdjointSignature:
    def test_default_name(self):
        assert _square().adjoint().name == "squareGrad"

    def test_explicit_name(self):
        assert adjoint_of(_square(), name="dsquare").name == "dsquare"

    def test_reflected_arguments(self):
        grad = _square().adjoint()
        assert [r.name for r in grad.out_args] == ["y", "xGrad"]
        assert [r.name for r in grad.in_args] == ["x", "yGrad"]
        assert grad.ref("xGrad").direction == Direction.OUT
        assert grad.ref("yGrad").direction == Direction.IN
        assert grad.ref("xGrad").options.is_grad

    def test_update_arguments_get_paired_gradients(self):
        ctx = Context(
            default_registry(),
            TypeRegistry(),
            "decay",
            update_args=[("s", "double")],
            in_args=[("k", "double")],
        )
        ctx.write(ctx.ref("s"), ctx.apply("*", ctx.ref("s"), ctx.ref("k")))
        grad = ctx.adjoint()
        assert [r.name for r in grad.update_args] == ["s", "sGrad"]
        assert [r.name for r in grad.out_args] == ["kGrad"]
        value = _write_to(grad, "sGrad").value
        assert grad.evaluate(value, {"s": 2.0, "k": 0.5, "sGrad": 3.0}) == 1.5

    def test_no_grad_and_excluded_arguments(self):
        ctx = Context(
            default_registry(),
            TypeRegistry(),
            "f",
            out_args=[("y", "double")],
            in_args=[("a", "double"), ("b", "double", {"no_grad": True}), ("c", "double")],
        )
        ctx.write(
            ctx.ref("y"),
            ctx.apply("*", ctx.apply("*", ctx.ref("a"), ctx.ref("b")), ctx.ref("c")),
        )
        grad = ctx.adjoint(excluded=["c"])
        assert [r.name for r in grad.out_args] == ["y", "aGrad"]

    def test_emission_hooks_are_shared(self):
        ctx = _square()

        def hook(language, emit_line):
            emit_line("// hook")

        ctx.pre_code.append(hook)
        assert ctx.adjoint().pre_code == [hook]


class TestAdjointValues:
    def test_square_gradient_at_three(self):
        grad = _square().adjoint()
        value = _write_to(grad, "xGrad").value
        assert grad.evaluate(value, {"x": 3.0, "yGrad": 1.0}) == 6.0

    def test_primal_writes_are_kept(self):
        grad = _square().adjoint()
        value = _write_to(grad, "y").value
        assert grad.evaluate(value, {"x": 3.0}) == 9.0

    def test_original_is_not_modified(self):
        ctx = _square()
        keys = set(ctx.writes)
        count = ctx.node_count
        ctx.adjoint()
        assert set(ctx.writes) == keys
        assert ctx.node_count == count
        assert [r.name for r in ctx.args()] == ["y", "x"]

    def test_multiple_outputs_accumulate(self):
        ctx = Context(
            default_registry(),
            TypeRegistry(),
            "f",
            out_args=[("u", "double"), ("v", "double")],
            in_args=[("x", "double")],
        )
        x = ctx.ref("x")
        ctx.write(ctx.ref("u"), ctx.apply("sin", x))
        ctx.write(ctx.ref("v"), ctx.apply("*", x, 3))
        grad = ctx.adjoint()
        value = _write_to(grad, "xGrad").value
        got = grad.evaluate(value, {"x": 0.0, "uGrad": 2.0, "vGrad": 1.0})
        assert got == pytest.approx(2.0 * 1.0 + 3.0)

    def test_struct_member_gradients(self):
        ctx = Context(
            default_registry(),
            _make_types(),
            "dot",
            out_args=[("y", "double")],
            in_args=[("p", "Vec")],
        )
        p = ctx.ref("p")
        ctx.write(ctx.ref("y"), ctx.apply("*", ctx.member(p, "x"), ctx.member(p, "y")))
        grad = ctx.adjoint()
        writes = {w.address.op: w for w in _writes_under(grad, "pGrad")}
        assert set(writes) == {".x", ".y"}
        values = {"p": {"x": 2.0, "y": 5.0}, "yGrad": 1.0}
        assert grad.evaluate(writes[".x"].value, values) == 5.0
        assert grad.evaluate(writes[".y"].value, values) == 2.0

    def test_constructor_gradients_flow_to_operands(self):
        ctx = Context(
            default_registry(),
            _make_types(),
            "pack",
            out_args=[("v", "Vec")],
            in_args=[("a", "double"), ("b", "double")],
        )
        ctx.write(ctx.ref("v"), ctx.apply("Vec", ctx.ref("a"), ctx.apply("*", ctx.ref("b"), 2)))
        grad = ctx.adjoint()
        values = {"vGrad": {"x": 3.0, "y": 4.0}}
        assert grad.evaluate(_write_to(grad, "aGrad").value, values) == 3.0
        assert grad.evaluate(_write_to(grad, "bGrad").value, values) == 8.0

    def test_unused_input_gets_no_gradient_write(self):
        ctx = Context(
            default_registry(),
            TypeRegistry(),
            "f",
            out_args=[("y", "double")],
            in_args=[("x", "double"), ("unused", "double")],
        )
        ctx.write(ctx.ref("y"), ctx.apply("*", ctx.ref("x"), 2))
        grad = ctx.adjoint()
        assert _writes_under(grad, "unusedGrad") == []
        assert len(_writes_under(grad, "xGrad")) == 1

    def test_no_writes_logs_warning(self, caplog):
        ctx = Context(default_registry(), TypeRegistry(), "empty", in_args=[("x", "double")])
        with caplog.at_level(logging.WARNING, logger="symbolic.gradients"):
            grad = ctx.adjoint()
        assert grad.writes == {}
        assert "has no writes" in caplog.text

    def test_missing_gradient_rule(self):
        registry = OperatorRegistry()
        registry.defop("double", "frob", "double", c=lambda a: f"frob({a})")
        ctx = Context(
            registry, TypeRegistry(), "g", out_args=[("y", "double")], in_args=[("x", "double")]
        )
        ctx.write(ctx.ref("y"), ctx.apply("frob", ctx.ref("x")))
        with pytest.raises(MissingGradientRuleError, match=r"No gradient impl for frob\(double\)"):
            ctx.adjoint()

    def test_missing_gradient_rule_even_without_incoming_gradient(self):
        registry = OperatorRegistry()
        registry.defop("double", "frob", "double", c=lambda a: f"frob({a})")
        ctx = Context(
            registry, TypeRegistry(), "g", out_args=[("y", "double")], in_args=[("x", "double")]
        )
        ctx.write(ctx.ref("y"), ctx.apply("frob", ctx.ref("x")))
        with pytest.raises(MissingGradientRuleError, match=r"frob\(double\)"):
            ctx.adjoint(excluded=["y"])

    def test_whole_struct_and_member_reads_share_one_gradient_write(self):
        ctx = Context(
            default_registry(),
            _make_types(),
            "split",
            out_args=[("q", "Vec"), ("s", "double")],
            in_args=[("p", "Vec")],
        )
        p = ctx.ref("p")
        ctx.write(ctx.ref("q"), p)
        ctx.write(ctx.ref("s"), ctx.apply("*", ctx.member(p, "x"), 2))
        grad = ctx.adjoint()
        writes = _writes_under(grad, "pGrad")
        assert len(writes) == 1
        assert writes[0].address is grad.ref("pGrad")
        values = {"qGrad": {"x": 1.0, "y": 2.0}, "sGrad": 3.0}
        assert grad.evaluate(writes[0].value, values) == {"x": 7.0, "y": 2.0}

    def test_fixed_column_element_folds_into_whole_read(self):
        col = "arma::Col< double >::fixed< 2 >"
        ctx = Context(
            default_registry(),
            TypeRegistry(),
            "split",
            out_args=[("c", col), ("s", "double")],
            in_args=[("w", col)],
        )
        w = ctx.ref("w")
        ctx.write(ctx.ref("c"), w)
        ctx.write(ctx.ref("s"), ctx.apply("sin", ctx.index(w, 1)))
        grad = ctx.adjoint()
        writes = _writes_under(grad, "wGrad")
        assert len(writes) == 1
        values = {"w": [0.0, 0.0], "cGrad": [1.0, 2.0], "sGrad": 3.0}
        assert grad.evaluate(writes[0].value, values) == [1.0, 5.0]


class TestGradientAccumulator:
    def _make(self):
        ctx = Context(
            default_registry(),
            TypeRegistry(),
            "f",
            out_args=[("y", "double")],
            in_args=[("a", "double"), ("b", "double"), ("x", "double")],
        )
        grads = GradientAccumulator(ctx, {})
        return ctx, grads

    def test_fan_out_contributions_are_summed(self):
        ctx, grads = self._make()
        node = ctx.read(ctx.ref("x"))
        g1 = ctx.read(ctx.ref("a"))
        g2 = ctx.read(ctx.ref("b"))
        grads.push(node, g1)
        grads.push(node, g2)
        assert grads.total(node) is ctx.apply("+", g1, g2)

    def test_struct_contributions_are_summed_per_field(self):
        ctx = Context(
            default_registry(),
            _make_types(),
            "f",
            in_args=[("p", "Vec"), ("u", "Vec"), ("v", "Vec")],
        )
        grads = GradientAccumulator(ctx, {})
        node = ctx.read(ctx.ref("p"))
        grads.push(node, ctx.read(ctx.ref("u")))
        grads.push(node, ctx.read(ctx.ref("v")))
        total = grads.total(node)
        assert total.op == "Vec"
        values = {"u": {"x": 1.0, "y": 2.0}, "v": {"x": 10.0, "y": 20.0}}
        assert ctx.evaluate(total, values) == {"x": 11.0, "y": 22.0}

    def test_total_is_memoized(self):
        ctx, grads = self._make()
        node = ctx.read(ctx.ref("x"))
        grads.push(node, ctx.read(ctx.ref("a")))
        assert grads.total(node) is grads.total(node)

    def test_push_after_total_raises(self):
        ctx, grads = self._make()
        node = ctx.read(ctx.ref("x"))
        grads.total(node)
        with pytest.raises(GradientFinalizedError):
            grads.push(node, ctx.read(ctx.ref("a")))

    def test_zero_contributions_are_dropped(self):
        ctx, grads = self._make()
        node = ctx.read(ctx.ref("x"))
        grads.push(node, ctx.constant("double", 0))
        assert grads.contributions(node) == []
        total = grads.total(node)
        assert isinstance(total, Constant)
        assert total.is_zero()

    def test_zero_push_after_total_is_ignored(self):
        ctx, grads = self._make()
        node = ctx.read(ctx.ref("x"))
        grads.total(node)
        grads.push(node, ctx.constant("double", 0))

    def test_address_without_gradient_totals_to_zero(self):
        ctx, grads = self._make()
        assert grads.gradient_address(ctx.ref("y")) is None
        assert grads.total(ctx.ref("y")).is_zero()
