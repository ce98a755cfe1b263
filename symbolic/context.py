"""Context — owns one function's arguments, interned nodes and recorded writes."""

from __future__ import annotations

import logging
import re
from typing import Any, Callable, Iterable, Sequence

from . import constants
from .derived import (
    constructor_impl,
    index_impl,
    index_op,
    matrix_elem_impl,
    matrix_elem_op,
    member_impl,
    member_op,
)
from .differentiate import derivative
from .errors import (
    ContextMismatchError,
    DirectionError,
    DuplicateArgumentError,
    InvalidOperandError,
    NotAnAddressError,
    NotIndexableError,
    ReplaceLimitError,
    UndeclaredNameError,
    UnknownMemberError,
    UnresolvedOperatorError,
)
from .evaluate import evaluate
from .ir import (
    ArgOptions,
    Constant,
    Direction,
    Expr,
    Node,
    Read,
    VariableRef,
    Write,
    root_variable,
)
from .registry import OperatorRegistry, OpImpl
from .type_registry import StructType, TemplateType, Type, TypeRegistry

logger = logging.getLogger(__name__)

_INDEX_RE = re.compile(constants.INDEX_OP_PATTERN)
_MATRIX_ELEM_RE = re.compile(constants.MATRIX_ELEM_OP_PATTERN)

EmitHook = Callable[[str, Callable[[str], None]], None]
ArgSpec = Sequence[Any]


def _unwrap_read(node: Node) -> Node:
    return node.address if isinstance(node, Read) else node


class Context:
    """A function under construction.

    Every node built here is interned by content key, so structurally equal
    subexpressions are the same object. Writes are recorded by key; their
    execution order is reconstructed later by the dependency analyzer.
    """

    def __init__(
        self,
        registry: OperatorRegistry,
        types: TypeRegistry,
        name: str,
        out_args: Iterable[ArgSpec] = (),
        update_args: Iterable[ArgSpec] = (),
        in_args: Iterable[ArgSpec] = (),
    ):
        self.registry = registry
        self.types = types
        self.name = name
        self.out_args: list[VariableRef] = []
        self.update_args: list[VariableRef] = []
        self.in_args: list[VariableRef] = []
        self.bindings: dict[str, VariableRef] = {}
        self.writes: dict[str, Write] = {}
        self.pre_defn: list[EmitHook] = []
        self.pre_code: list[EmitHook] = []
        self.post_code: list[EmitHook] = []
        self._interned: dict[str, Node] = {}
        self._array_index: dict[str, int] = {}
        self._derived_impls: dict[tuple[str, str], OpImpl] = {}
        self.derivatives: dict[tuple[str, str], Node] = {}
        self.declare_args(out_args, update_args, in_args)

    def __repr__(self) -> str:
        return f"Context({self.name!r}, args={len(self.bindings)}, writes={len(self.writes)})"

    # ── Arguments ────────────────────────────────────────────────

    def declare_args(
        self,
        out_args: Iterable[ArgSpec] = (),
        update_args: Iterable[ArgSpec] = (),
        in_args: Iterable[ArgSpec] = (),
    ) -> None:
        """Declare arguments as ``(name, typename)`` or ``(name, typename, options)``."""
        for direction, specs, target in (
            (Direction.OUT, out_args, self.out_args),
            (Direction.UPDATE, update_args, self.update_args),
            (Direction.IN, in_args, self.in_args),
        ):
            for spec in specs:
                target.append(self._declare(direction, spec))

    def _declare(self, direction: Direction, spec: ArgSpec) -> VariableRef:
        name, typename, *rest = spec
        options = rest[0] if rest else ArgOptions()
        if isinstance(options, dict):
            options = ArgOptions(**options)
        if name in self.bindings:
            raise DuplicateArgumentError(f"Duplicate argument {name} in {self.name}")
        arg_type = self.types.require_type(typename, create=True)
        ref = self.dedup(
            VariableRef(
                ctx=self, type=arg_type, name=name, direction=direction, options=options
            )
        )
        self.bindings[name] = ref
        return ref

    def ref(self, name: str) -> VariableRef:
        ref = self.bindings.get(name)
        if ref is None:
            raise UndeclaredNameError(f"No argument named {name} in {self.name}")
        return ref

    def args(self) -> list[VariableRef]:
        """All arguments in signature order: outputs, updates, inputs."""
        return [*self.out_args, *self.update_args, *self.in_args]

    # ── Node construction ────────────────────────────────────────

    def constant(self, type: str | Type, value: Any) -> Constant:
        t = self.types.require_type(type, create=True)
        return self.dedup(Constant(ctx=self, type=t, value=t.coerce_value(value)))

    def read(self, address: Node) -> Read:
        self._check_owned(address)
        if not address.is_address:
            raise NotAnAddressError(f"Read of {address}: not an address")
        root = root_variable(address)
        if root is not None and root.direction == Direction.OUT:
            raise DirectionError(f"Can't read output argument {root.name}")
        return self.dedup(Read(ctx=self, type=address.type, address=address))

    def apply(self, op: str, *args: Any) -> Node:
        """Build ``op(*args)``, resolving member, index, registered and constructor ops in turn."""
        operands = [self._operand(a) for a in args]

        derived = self._resolve_derived(op, operands)
        if derived is not None:
            impl, result_type = derived
            target = _unwrap_read(operands[0])
            return self.dedup(
                Expr(
                    ctx=self,
                    type=result_type,
                    op=op,
                    args=(target,),
                    op_info=impl,
                    address=target.is_address,
                )
            )

        arg_types = [a.type for a in operands]
        overload = self.registry.resolve(op, arg_types, self.types)
        if overload is not None:
            impl = overload.impl
            result_type = self.types.require_type(overload.return_type, create=True)
        else:
            aggregate = self.types.types.get(op)
            if not isinstance(aggregate, (StructType, TemplateType)):
                raise UnresolvedOperatorError(op, [t.typename for t in arg_types])
            impl = self._derived_impl(aggregate.typename, op, lambda: constructor_impl(aggregate))
            result_type = aggregate

        if impl.address:
            node_args = tuple(operands)
            address = bool(operands) and operands[0].is_address
        else:
            node_args = tuple(self._as_value(a) for a in operands)
            address = False
        return self.dedup(
            Expr(
                ctx=self,
                type=result_type,
                op=op,
                args=node_args,
                op_info=impl,
                address=address,
            )
        )

    def _operand(self, value: Any) -> Node:
        if isinstance(value, Node):
            self._check_owned(value)
            return value
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return self.constant(constants.DEFAULT_LITERAL_TYPE, value)
        raise InvalidOperandError(f"Can't use {value!r} as an operand")

    def _as_value(self, node: Node) -> Node:
        return self.read(node) if node.is_address else node

    def _check_owned(self, node: Node) -> None:
        if node.ctx is not self:
            raise ContextMismatchError(
                f"Node {node.key} belongs to {node.ctx.name}, not {self.name}"
            )

    def _derived_impl(self, typename: str, op: str, build: Callable[[], OpImpl]) -> OpImpl:
        key = (typename, op)
        if key not in self._derived_impls:
            self._derived_impls[key] = build()
        return self._derived_impls[key]

    def _resolve_derived(self, op: str, operands: list[Node]) -> tuple[OpImpl, Type] | None:
        if len(operands) != 1:
            return None
        target_type = _unwrap_read(operands[0]).type

        if op.startswith(constants.MEMBER_OP_PREFIX):
            name = op[len(constants.MEMBER_OP_PREFIX):]
            if not isinstance(target_type, StructType):
                raise UnknownMemberError(f"{op}: {target_type} is not a struct")
            if name not in target_type.fields:
                raise UnknownMemberError(f"No member {name} in {target_type}")
            impl = self._derived_impl(
                target_type.typename, op, lambda: member_impl(target_type, name)
            )
            return impl, target_type.fields[name]

        m = _INDEX_RE.match(op)
        if m:
            index = int(m.group(1))
            if not isinstance(target_type, TemplateType) or not target_type.is_indexable:
                raise NotIndexableError(f"{op}: {target_type} is not indexable")
            if target_type.size is not None and index >= target_type.size:
                raise NotIndexableError(
                    f"{op}: index out of range for {target_type}"
                )
            impl = self._derived_impl(
                target_type.typename, op, lambda: index_impl(target_type, index)
            )
            return impl, target_type.element_type

        m = _MATRIX_ELEM_RE.match(op)
        if m:
            row, col = int(m.group(1)), int(m.group(2))
            if not isinstance(target_type, TemplateType) or not target_type.is_matrix:
                raise NotIndexableError(f"{op}: {target_type} is not a matrix")
            if target_type.rows and (
                row >= target_type.rows or col >= target_type.size // target_type.rows
            ):
                raise NotIndexableError(f"{op}: element out of range for {target_type}")
            impl = self._derived_impl(
                target_type.typename, op, lambda: matrix_elem_impl(target_type, row, col)
            )
            return impl, target_type.element_type
        return None

    def member(self, address: Node, name: str, field_type: str | Type | None = None) -> Node:
        """Access ``address.name``, adding the field first on auto-extensible structs."""
        struct = _unwrap_read(address).type
        if (
            isinstance(struct, StructType)
            and struct.auto_extend
            and name not in struct.fields
        ):
            if field_type is None:
                raise UnknownMemberError(
                    f"No member {name} in {struct}; give a field type to add it"
                )
            struct.add_field(name, self.types.require_type(field_type, create=True))
        return self.apply(member_op(name), address)

    def index(self, address: Node, index: int) -> Node:
        return self.apply(index_op(index), address)

    def matrix_elem(self, matrix: Node, row: int, col: int) -> Node:
        """Element ``(row, col)`` of an ``arma::Mat``; folds through constructors of fixed shape."""
        return self.apply(matrix_elem_op(row, col), matrix)

    def dedup(self, node: Node) -> Node:
        """Apply ``replace`` rewrites to a fixpoint, then intern by content key."""
        for _ in range(constants.MAX_REPLACE_ITERATIONS):
            if not isinstance(node, Expr) or node.op_info.replace is None:
                break
            replacement = node.op_info.replace(self, *node.args)
            if replacement is None or replacement.key == node.key:
                break
            node = replacement
        else:
            raise ReplaceLimitError(
                f"replace did not converge after {constants.MAX_REPLACE_ITERATIONS} rewrites"
            )
        return self._interned.setdefault(node.key, node)

    # ── Writes ───────────────────────────────────────────────────

    def write(self, address: Node, value: Any) -> Write:
        self._check_owned(address)
        if not address.is_address:
            raise NotAnAddressError(f"Write to {address}: not an address")
        root = root_variable(address)
        if root is not None and root.direction == Direction.IN:
            raise DirectionError(f"Can't write input argument {root.name}")
        if isinstance(value, Node):
            self._check_owned(value)
        elif isinstance(value, (int, float)) and not isinstance(value, bool):
            value = self.constant(address.type, value)
        else:
            raise InvalidOperandError(f"Can't write {value!r}")
        value = self._as_value(value)
        if value.type is not address.type:
            raise InvalidOperandError(
                f"Can't write {value.type} to {address.type} address {address.key}"
            )
        w = self.dedup(Write(ctx=self, type=address.type, address=address, value=value))
        self.writes[w.key] = w
        return w

    def write_indexed(self, address: Node, value: Any) -> Write:
        """Write to the next unused index of ``address``: successive calls fill [0], [1], ..."""
        index = self._array_index.get(address.key, 0)
        self._array_index[address.key] = index + 1
        return self.write(self.index(address, index), value)

    def write_field(self, address: Node, name: str, value: Any) -> Write:
        field_type = value.type if isinstance(value, Node) else constants.DEFAULT_LITERAL_TYPE
        return self.write(self.member(address, name, field_type), value)

    # ── Passes ───────────────────────────────────────────────────

    def derivative(self, wrt: Node, node: Node) -> Node:
        return derivative(self, wrt, node)

    def evaluate(self, node: Node, values: dict[str, Any]) -> Any:
        return evaluate(node, values)

    def adjoint(self, name: str | None = None, excluded: Iterable[str] = ()) -> Context:
        from .gradients import adjoint_of

        return adjoint_of(self, name=name, excluded=excluded)

    # ── Introspection ────────────────────────────────────────────

    def nodes(self) -> list[Node]:
        return list(self._interned.values())

    @property
    def node_count(self) -> int:
        return len(self._interned)

    def referenced_types(self) -> list[Type]:
        seen: list[Type] = []
        for arg in self.args():
            for t in arg.type.referenced_types():
                if t not in seen:
                    seen.append(t)
        return seen
