"""IR node model — constants, variable references, reads, writes and operator applications.

Nodes are immutable once built and are owned by exactly one Context, which
interns them by content key: a deterministic hash over the node's type, its
kind or operator, and its operands' content keys.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Iterable

from . import constants
from .errors import NotAnAddressError

if TYPE_CHECKING:
    from .context import Context
    from .registry import OpImpl
    from .type_registry import Type


class Direction(str, Enum):
    IN = "in"
    OUT = "out"
    UPDATE = "update"


class AccessMode(str, Enum):
    READ = "rd"
    WRITE = "wr"


def content_key(prefix: str, *parts: Any) -> str:
    digest = hmac.new(
        constants.CONTENT_KEY_SECRET,
        ",".join(str(p) for p in parts).encode("utf-8"),
        hashlib.sha1,
    ).hexdigest()
    return prefix + digest[: constants.CONTENT_KEY_LENGTH]


def _literal_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str)


@dataclass(frozen=True)
class ArgOptions:
    no_grad: bool = False
    is_grad: bool = False

    def to_dict(self) -> dict[str, bool]:
        return {"no_grad": self.no_grad, "is_grad": self.is_grad}


# ── Nodes ────────────────────────────────────────────────────────


@dataclass(frozen=True, eq=False)
class Node:
    ctx: Context = field(repr=False)
    type: Type
    key: str = field(init=False, default="")

    def __hash__(self) -> int:
        return hash(self.key)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Node):
            return NotImplemented
        return self.ctx is other.ctx and self.key == other.key

    def _set_key(self, key: str) -> None:
        object.__setattr__(self, "key", key)

    @property
    def is_address(self) -> bool:
        return False

    def operands(self) -> tuple[Node, ...]:
        return ()

    def is_zero(self) -> bool:
        return False

    def is_one(self) -> bool:
        return False

    def describe(self) -> str:
        return self.key

    def __str__(self) -> str:
        return self.describe()


@dataclass(frozen=True, eq=False)
class Constant(Node):
    value: Any

    def __post_init__(self):
        self._set_key(
            content_key(
                constants.CONST_KEY_PREFIX,
                self.type.typename,
                _literal_json(self.value),
            )
        )

    def is_zero(self) -> bool:
        return self.type.is_zero_value(self.value)

    def is_one(self) -> bool:
        return self.type.is_one_value(self.value)

    def describe(self) -> str:
        return f"{self.key}={self.type.typename}({self.value})"


@dataclass(frozen=True, eq=False)
class VariableRef(Node):
    """A declared argument. Its direction fixes the names used to read and write it."""

    name: str
    direction: Direction
    options: ArgOptions = field(default_factory=ArgOptions)

    def __post_init__(self):
        self._set_key(
            content_key(
                constants.VAR_KEY_PREFIX,
                self.type.typename,
                self.name,
                self.direction.value,
                True,
                _literal_json(self.options.to_dict()),
            )
        )

    @property
    def is_address(self) -> bool:
        return True

    def describe(self) -> str:
        return f"{self.key}=ref({self.name})"


@dataclass(frozen=True, eq=False)
class Read(Node):
    """A snapshot of the value stored at an address."""

    address: Node

    def __post_init__(self):
        if not self.address.is_address:
            raise NotAnAddressError(f"Read of {self.address}: not an address")
        self._set_key(
            content_key(
                constants.READ_KEY_PREFIX, self.type.typename, self.address.key
            )
        )

    def operands(self) -> tuple[Node, ...]:
        return (self.address,)

    def describe(self) -> str:
        return f"{self.key}=read({self.address.key})"


@dataclass(frozen=True, eq=False)
class Write(Node):
    address: Node
    value: Node

    def __post_init__(self):
        if not self.address.is_address:
            raise NotAnAddressError(f"Write to {self.address}: not an address")
        self._set_key(
            content_key(
                constants.WRITE_KEY_PREFIX,
                self.type.typename,
                self.address.key,
                self.value.key,
            )
        )

    def operands(self) -> tuple[Node, ...]:
        return (self.value, self.address)

    def describe(self) -> str:
        return f"{self.key}=write({self.address}, {self.value.key})"


@dataclass(frozen=True, eq=False)
class Expr(Node):
    """An operator application. ``address`` is set for member/index access into an address."""

    op: str
    args: tuple[Node, ...]
    op_info: OpImpl = field(repr=False)
    address: bool = False
    _zero: bool | None = field(default=None, init=False, repr=False)
    _one: bool | None = field(default=None, init=False, repr=False)

    def __post_init__(self):
        self._set_key(
            content_key(
                constants.EXPR_KEY_PREFIX,
                self.type.typename,
                self.op,
                ",".join(a.key for a in self.args),
            )
        )

    @property
    def is_address(self) -> bool:
        return self.address

    def operands(self) -> tuple[Node, ...]:
        return self.args

    def arg_typenames(self) -> list[str]:
        return [a.type.typename for a in self.args]

    # Memoized. Operands answered already when this node was simplified.
    def is_zero(self) -> bool:
        if self._zero is None:
            hook = self.op_info.is_zero
            object.__setattr__(
                self, "_zero", hook is not None and bool(hook(self.ctx, *self.args))
            )
        return self._zero

    def is_one(self) -> bool:
        if self._one is None:
            hook = self.op_info.is_one
            object.__setattr__(
                self, "_one", hook is not None and bool(hook(self.ctx, *self.args))
            )
        return self._one

    def describe(self) -> str:
        return f"{self.key}={self.op}({' '.join(a.key for a in self.args)})"


def post_order(
    roots: Iterable[Node],
    children: Callable[[Node], Iterable[Node]] | None = None,
) -> list[Node]:
    """Every node reachable from ``roots``, each once, operands before consumers.

    ``children`` picks the edges to follow (all operands by default). The walk
    keeps its own stack, so expression depth is not bounded by recursion.
    """
    children = children or (lambda n: n.operands())
    seen: set[str] = set()
    order: list[Node] = []
    for root in roots:
        stack: list[tuple[Node, bool]] = [(root, False)]
        while stack:
            node, expanded = stack.pop()
            if expanded:
                order.append(node)
                continue
            if node.key in seen:
                continue
            seen.add(node.key)
            stack.append((node, True))
            for child in reversed(tuple(children(node))):
                if child.key not in seen:
                    stack.append((child, False))
    return order


def root_variable(node: Node) -> VariableRef | None:
    """Follow address-producing Exprs down to the declared argument they access."""
    while isinstance(node, Expr) and node.is_address and node.args:
        node = node.args[0]
    return node if isinstance(node, VariableRef) else None
