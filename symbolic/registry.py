"""Operator Registry — per-operator overloads with algebraic and code-generation hooks.

Resolution is ordered, first-match-wins: overloads for an operator name are
scanned in registration order and the first whose positional type patterns
all match is used. Overlapping patterns are not disambiguated, so register
the most specific overloads first.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Sequence

from . import constants
from .errors import RegistryFrozenError

if TYPE_CHECKING:
    from .type_registry import Type, TypeRegistry

logger = logging.getLogger(__name__)

HOOK_NAMES: frozenset[str] = frozenset(
    {"deriv", "gradient", "replace", "is_zero", "is_one", "imm", "address"}
)


@dataclass(frozen=True, eq=False)
class OpImpl:
    """Per-operator behaviour.

    ``render`` maps a target language to ``(*arg_texts) -> str``. The optional
    hooks are:

    - ``deriv(ctx, wrt, *args) -> Node``: forward-mode derivative.
    - ``gradient(ctx, grads, g, *args)``: push reverse-mode contributions for
      upstream gradient ``g`` onto ``grads``.
    - ``replace(ctx, *args) -> Node | None``: greedy algebraic rewrite.
    - ``is_zero(ctx, *args)`` / ``is_one(ctx, *args)``: value predicates.
    - ``imm(*values)``: immediate evaluation for constant folding.
    """

    render: dict[str, Callable[..., str]] = field(default_factory=dict)
    deriv: Callable[..., Any] | None = None
    gradient: Callable[..., None] | None = None
    replace: Callable[..., Any] | None = None
    is_zero: Callable[..., bool] | None = None
    is_one: Callable[..., bool] | None = None
    imm: Callable[..., Any] | None = None
    address: bool = False

    @classmethod
    def from_hooks(cls, **hooks: Any) -> OpImpl:
        render = {k: v for k, v in hooks.items() if k not in HOOK_NAMES}
        named = {k: v for k, v in hooks.items() if k in HOOK_NAMES}
        return cls(render=render, **named)


@dataclass(frozen=True, eq=False)
class Overload:
    op: str
    return_type: str
    arg_patterns: tuple[str, ...]
    impl: OpImpl

    def matches(self, arg_types: Sequence[Type], types: TypeRegistry) -> bool:
        for i, pattern in enumerate(self.arg_patterns):
            if pattern == constants.VARIADIC:
                return True
            if i >= len(arg_types):
                return False
            if pattern == constants.ANY_TYPE:
                continue
            if types.get_type(pattern) is not arg_types[i]:
                return False
        return len(arg_types) == len(self.arg_patterns)


class OperatorRegistry:
    """Operator name → ordered overloads. Build once at setup, then ``freeze()``."""

    def __init__(self):
        self._overloads: dict[str, list[Overload]] = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> OperatorRegistry:
        self._frozen = True
        return self

    def defop(self, return_type: str, op: str, *arg_patterns: str, **hooks: Any) -> Overload:
        """Register one overload: ``defop("double", "*", "double", "double", c=..., deriv=...)``."""
        if self._frozen:
            raise RegistryFrozenError(f"defop({op}): registry is frozen")
        overload = Overload(
            op=op,
            return_type=return_type,
            arg_patterns=tuple(arg_patterns),
            impl=OpImpl.from_hooks(**hooks),
        )
        self._overloads.setdefault(op, []).append(overload)
        logger.debug("defop %s(%s) -> %s", op, ", ".join(arg_patterns), return_type)
        return overload

    def overloads(self, op: str) -> list[Overload]:
        return list(self._overloads.get(op, []))

    def resolve(
        self, op: str, arg_types: Sequence[Type], types: TypeRegistry
    ) -> Overload | None:
        for overload in self._overloads.get(op, []):
            if overload.matches(arg_types, types):
                return overload
        return None

    def ops(self) -> list[str]:
        return list(self._overloads)

    def __contains__(self, op: str) -> bool:
        return op in self._overloads
