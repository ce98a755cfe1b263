"""Declarative function descriptions — JSON-shaped pydantic models and their builder.

Value expressions inside a ``WriteDecl`` are one of:

- a number: a literal, typed by where it is used;
- a path string: ``"x"``, ``"p.pos"``, ``"v[0]"``, ``"p.pos[2]"``;
- a typed constant: ``{"type": "Vec3", "value": 0}``;
- an operator application: ``["*", "a", ["+", "b", 1]]``.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from pydantic import BaseModel

from .context import Context
from .errors import InvalidOperandError
from .ir import ArgOptions, Node
from .registry import OperatorRegistry
from .type_registry import TypeRegistry

logger = logging.getLogger(__name__)

_PATH_ROOT_RE = re.compile(r"^[A-Za-z_]\w*")
_PATH_STEP_RE = re.compile(r"\.(?P<member>[A-Za-z_]\w*)|\[(?P<index>\d+)\]")


class ArgDecl(BaseModel):
    name: str
    type: str
    no_grad: bool = False


class WriteDecl(BaseModel):
    target: str
    value: Any


class StructDecl(BaseModel):
    name: str
    fields: dict[str, str] = {}
    auto_extend: bool = False
    includes: list[str] = []


class FunctionDecl(BaseModel):
    name: str
    out_args: list[ArgDecl] = []
    update_args: list[ArgDecl] = []
    in_args: list[ArgDecl] = []
    writes: list[WriteDecl] = []
    gradient: bool = False
    no_grad: list[str] = []


class ModuleDecl(BaseModel):
    structs: list[StructDecl] = []
    templates: list[str] = []
    functions: list[FunctionDecl] = []


def register_structs(module: ModuleDecl, types: TypeRegistry) -> None:
    for s in module.structs:
        types.struct(s.name, s.fields, auto_extend=s.auto_extend, includes=s.includes)
    for t in module.templates:
        types.template(t)


def _arg_spec(arg: ArgDecl) -> tuple:
    return (arg.name, arg.type, ArgOptions(no_grad=arg.no_grad))


def parse_path(path: str) -> tuple[str, list[str | int]]:
    """Split ``"p.pos[2]"`` into ``("p", ["pos", 2])``."""
    m = _PATH_ROOT_RE.match(path)
    if not m:
        raise InvalidOperandError(f"Bad path {path!r}")
    steps: list[str | int] = []
    pos = m.end()
    while pos < len(path):
        step = _PATH_STEP_RE.match(path, pos)
        if not step:
            raise InvalidOperandError(f"Bad path {path!r} at offset {pos}")
        if step.group("member") is not None:
            steps.append(step.group("member"))
        else:
            steps.append(int(step.group("index")))
        pos = step.end()
    return m.group(0), steps


def resolve_path(ctx: Context, path: str, field_type: Any = None) -> Node:
    """The address named by ``path``. ``field_type`` types a new trailing field on auto-extensible structs."""
    root, steps = parse_path(path)
    node: Node = ctx.ref(root)
    for i, step in enumerate(steps):
        if isinstance(step, int):
            node = ctx.index(node, step)
        else:
            last = i == len(steps) - 1
            node = ctx.member(node, step, field_type if last else None)
    return node


def build_value(ctx: Context, value: Any) -> Any:
    if isinstance(value, bool):
        raise InvalidOperandError(f"Can't use {value!r} as a value")
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        return resolve_path(ctx, value)
    if isinstance(value, dict):
        if "type" not in value or "value" not in value:
            raise InvalidOperandError(f"Typed constant needs 'type' and 'value': {value!r}")
        return ctx.constant(value["type"], value["value"])
    if isinstance(value, list) and value and isinstance(value[0], str):
        op, *args = value
        return ctx.apply(op, *(build_value(ctx, a) for a in args))
    raise InvalidOperandError(f"Can't build a value from {value!r}")


def build_function(
    decl: FunctionDecl, registry: OperatorRegistry, types: TypeRegistry
) -> Context:
    ctx = Context(
        registry,
        types,
        decl.name,
        out_args=[_arg_spec(a) for a in decl.out_args],
        update_args=[_arg_spec(a) for a in decl.update_args],
        in_args=[_arg_spec(a) for a in decl.in_args],
    )
    for w in decl.writes:
        value = build_value(ctx, w.value)
        field_type = value.type if isinstance(value, Node) else None
        ctx.write(resolve_path(ctx, w.target, field_type), value)
    logger.info("Built %s: %d writes, %d nodes", ctx.name, len(ctx.writes), ctx.node_count)
    return ctx
