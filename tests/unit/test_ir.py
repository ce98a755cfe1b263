"""Tests for IR nodes: content keys, address-ness and root-variable lookup."""

import pytest

from symbolic.context import Context
from symbolic.errors import NotAnAddressError
from symbolic.ir import (
    ArgOptions,
    Constant,
    Direction,
    Expr,
    Read,
    VariableRef,
    Write,
    content_key,
    root_variable,
)
from symbolic.operators import default_registry
from symbolic.type_registry import TypeRegistry


def _make_ctx() -> Context:
    types = TypeRegistry()
    types.struct("Vec", [("x", "double"), ("y", "double")])
    return Context(
        default_registry(),
        types,
        "f",
        out_args=[("y", "double"), ("v", "Vec")],
        in_args=[("x", "double"), ("p", "Vec")],
    )


class TestContentKey:
    def test_prefix_and_length(self):
        key = content_key("_c", "double", "1.0")
        assert key.startswith("_c")
        assert len(key) == 2 + 16

    def test_deterministic(self):
        assert content_key("_e", "double", "+", "a,b") == content_key("_e", "double", "+", "a,b")

    def test_sensitive_to_parts(self):
        assert content_key("_e", "double", "+", "a,b") != content_key("_e", "double", "+", "b,a")


class TestNodes:
    def test_constant_key_depends_on_type_and_value(self):
        ctx = _make_ctx()
        assert ctx.constant("double", 1).key != ctx.constant("double", 2).key
        assert ctx.constant("double", 1).key != ctx.constant("int", 1).key

    def test_constant_zero_and_one(self):
        ctx = _make_ctx()
        assert ctx.constant("double", 0).is_zero()
        assert ctx.constant("double", 1).is_one()
        assert not ctx.constant("double", 2).is_zero()

    def test_variable_ref_is_address(self):
        ctx = _make_ctx()
        x = ctx.ref("x")
        assert isinstance(x, VariableRef)
        assert x.is_address
        assert x.direction == Direction.IN
        assert x.options == ArgOptions()

    def test_read_operands(self):
        ctx = _make_ctx()
        rd = ctx.read(ctx.ref("x"))
        assert isinstance(rd, Read)
        assert not rd.is_address
        assert rd.operands() == (ctx.ref("x"),)

    def test_read_of_value_rejected(self):
        ctx = _make_ctx()
        with pytest.raises(NotAnAddressError):
            Read(ctx=ctx, type=ctx.types.get_type("double"), address=ctx.constant("double", 1))

    def test_write_operands_value_first(self):
        ctx = _make_ctx()
        w = ctx.write(ctx.ref("y"), ctx.ref("x"))
        assert isinstance(w, Write)
        assert w.operands() == (w.value, ctx.ref("y"))

    def test_member_of_address_is_address(self):
        ctx = _make_ctx()
        vx = ctx.apply(".x", ctx.ref("v"))
        assert isinstance(vx, Expr)
        assert vx.is_address
        assert vx.args == (ctx.ref("v"),)

    def test_equality_is_by_context_and_key(self):
        a = _make_ctx()
        b = _make_ctx()
        assert a.constant("double", 1) == a.constant("double", 1)
        assert a.constant("double", 1) != b.constant("double", 1)
        assert a.constant("double", 1).key == b.constant("double", 1).key

    def test_describe(self):
        ctx = _make_ctx()
        c = ctx.constant("double", 1)
        assert isinstance(c, Constant)
        assert str(c) == f"{c.key}=double(1.0)"


class TestRootVariable:
    def test_variable_is_its_own_root(self):
        ctx = _make_ctx()
        assert root_variable(ctx.ref("x")) is ctx.ref("x")

    def test_member_chain_root(self):
        ctx = _make_ctx()
        assert root_variable(ctx.apply(".y", ctx.ref("p"))) is ctx.ref("p")

    def test_value_has_no_root(self):
        ctx = _make_ctx()
        assert root_variable(ctx.constant("double", 1)) is None
