"""Code emission — C++ and JavaScript function text from a Context's writes."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterable

from pydantic import BaseModel

from . import constants
from .dataflow import DependencyGraph, analyze
from .errors import (
    DirectionError,
    InvalidOperandError,
    MissingRenderRuleError,
    UnsupportedLanguageError,
)
from .ir import (
    AccessMode,
    Constant,
    Direction,
    Expr,
    Node,
    Read,
    VariableRef,
    Write,
    post_order,
)

if TYPE_CHECKING:
    from .context import Context

logger = logging.getLogger(__name__)

BODY_INDENT = "  "


class EmittedFunction(BaseModel):
    """One function rendered for one target language."""

    name: str
    language: str
    signature: str
    declaration: str = ""
    body: list[str] = []
    definition: str
    referenced_types: list[str] = []
    includes: list[str] = []


def _check_language(language: str) -> None:
    if language not in constants.SUPPORTED_LANGUAGES:
        raise UnsupportedLanguageError(
            f"Unsupported language {language!r}; expected one of {constants.SUPPORTED_LANGUAGES}"
        )


def ref_name(ref: VariableRef, mode: AccessMode) -> str:
    """The identifier for an argument: ``name``, or ``namePrev``/``nameNext`` for updates."""
    if ref.direction == Direction.UPDATE:
        suffix = constants.PREV_SUFFIX if mode == AccessMode.READ else constants.NEXT_SUFFIX
        return f"{ref.name}{suffix}"
    if ref.direction == Direction.IN and mode == AccessMode.READ:
        return ref.name
    if ref.direction == Direction.OUT and mode == AccessMode.WRITE:
        return ref.name
    raise DirectionError(f"Can't {mode.name.lower()} {ref.direction.value} argument {ref.name}")


# ── Signatures ───────────────────────────────────────────────────


def _c_params(ref: VariableRef) -> list[str]:
    typename = ref.type.typename
    if ref.direction == Direction.OUT:
        return [f"{typename} &{ref.name}"]
    if ref.direction == Direction.UPDATE:
        return [
            f"{typename} &{ref_name(ref, AccessMode.WRITE)}",
            f"{typename} const &{ref_name(ref, AccessMode.READ)}",
        ]
    return [f"{typename} const &{ref.name}"]


def _js_params(ref: VariableRef) -> list[str]:
    if ref.direction == Direction.UPDATE:
        return [ref_name(ref, AccessMode.WRITE), ref_name(ref, AccessMode.READ)]
    return [ref.name]


def signature(ctx: Context, language: str) -> str:
    _check_language(language)
    if language == constants.LANG_C:
        params = [p for ref in ctx.args() for p in _c_params(ref)]
        return f"void {ctx.name}({', '.join(params)})"
    params = [p for ref in ctx.args() for p in _js_params(ref)]
    return f"function {ctx.name}({', '.join(params)})"


def declaration(ctx: Context, language: str) -> str:
    """A forward declaration; JavaScript has none, so it is empty there."""
    _check_language(language)
    if language == constants.LANG_C:
        return f"{signature(ctx, language)};"
    return ""


# ── Bodies ───────────────────────────────────────────────────────


class Emitter:
    """Renders a Context's writes as statements, hoisting shared subexpressions into temporaries."""

    def __init__(self, ctx: Context, language: str, graph: DependencyGraph | None = None):
        _check_language(language)
        self.ctx = ctx
        self.language = language
        self.graph = graph if graph is not None else analyze(ctx)
        self.available: set[str] = set()

    def render(self, node: Node, mode: AccessMode = AccessMode.READ) -> str:
        """Expression text for ``node``; hoisted temporaries are used by name."""
        text: dict[tuple[str, AccessMode], str] = {}
        stack: list[tuple[Node, AccessMode, bool]] = [(node, mode, False)]
        while stack:
            n, m, ready = stack.pop()
            if (n.key, m) in text:
                continue
            parts = self._parts(n, m)
            if not ready:
                stack.append((n, m, True))
                stack.extend((p, pm, False) for p, pm in reversed(parts))
                continue
            rendered = [text[(p.key, pm)] for p, pm in parts]
            text[(n.key, m)] = self._render_one(n, m, rendered)
        return text[(node.key, mode)]

    def _parts(self, node: Node, mode: AccessMode) -> list[tuple[Node, AccessMode]]:
        if isinstance(node, Read):
            return [(node.address, AccessMode.READ)]
        if isinstance(node, Expr) and node.key not in self.available:
            arg_mode = mode if node.is_address else AccessMode.READ
            return [(a, arg_mode) for a in node.args]
        return []

    def _render_one(self, node: Node, mode: AccessMode, parts: list[str]) -> str:
        if isinstance(node, Read):
            return parts[0]
        if isinstance(node, VariableRef):
            return ref_name(node, mode)
        if isinstance(node, Constant):
            if mode != AccessMode.READ:
                raise InvalidOperandError(f"Can't write to constant {node}")
            return node.type.format_value(self.language, node.value)
        if isinstance(node, Expr):
            if node.key in self.available:
                return node.key
            renderer = node.op_info.render.get(self.language)
            if renderer is None:
                raise MissingRenderRuleError(node.op, node.arg_typenames(), self.language)
            return renderer(*parts)
        raise InvalidOperandError(f"Can't render {node}")

    def _hoist(self, node: Node, emit_line) -> None:
        def unhoisted_args(n: Node) -> tuple[Node, ...]:
            if isinstance(n, Expr) and n.key not in self.available:
                return n.args
            return ()

        for n in post_order([node], unhoisted_args):
            if not isinstance(n, Expr) or n.key in self.available:
                continue
            if n.is_address or self.graph.use_count(n) <= 1:
                continue
            value = self.render(n)
            if self.language == constants.LANG_C:
                emit_line(f"{n.type.typename} {n.key} = {value};")
            else:
                emit_line(f"let {n.key} = {value};")
            logger.debug("Hoisted %s (%d uses)", n.key, self.graph.use_count(n))
            self.available.add(n.key)

    def emit_write(self, w: Write, emit_line) -> None:
        self._hoist(w.value, emit_line)
        emit_line(f"{self.render(w.address, AccessMode.WRITE)} = {self.render(w.value)};")

    def emit_body(self) -> list[str]:
        lines: list[str] = []
        for w in self.graph.writes:
            self.emit_write(w, lines.append)
        return lines


def emit_definition(ctx: Context, language: str, body: list[str] | None = None) -> str:
    """Full function text: export line (JS), pre-definition hooks, signature, hooks and body."""
    _check_language(language)
    if body is None:
        body = Emitter(ctx, language).emit_body()
    lines: list[str] = []
    if language == constants.LANG_JS:
        lines.append(f"exports.{ctx.name} = {ctx.name};")
    for hook in ctx.pre_defn:
        hook(language, lines.append)
    lines.append(f"{signature(ctx, language)} {{")
    for hook in ctx.pre_code:
        hook(language, lines.append)
    lines.extend(BODY_INDENT + line for line in body)
    for hook in ctx.post_code:
        hook(language, lines.append)
    lines.append("}")
    return "\n".join(lines)


def _includes(ctx: Context) -> list[str]:
    seen: list[str] = []
    for t in ctx.referenced_types():
        for include in t.includes:
            if include not in seen:
                seen.append(include)
    return seen


def emit_function(ctx: Context, language: str) -> EmittedFunction:
    body = Emitter(ctx, language).emit_body()
    return EmittedFunction(
        name=ctx.name,
        language=language,
        signature=signature(ctx, language),
        declaration=declaration(ctx, language),
        body=body,
        definition=emit_definition(ctx, language, body),
        referenced_types=[t.typename for t in ctx.referenced_types()],
        includes=_includes(ctx),
    )


def emit_module(contexts: Iterable[Context], language: str) -> str:
    """Concatenate includes (C), declarations and definitions for several functions."""
    _check_language(language)
    functions = [emit_function(ctx, language) for ctx in contexts]
    logger.info("Emitting %d functions as %s", len(functions), language)

    sections: list[str] = []
    if language == constants.LANG_C:
        includes: list[str] = []
        for fn in functions:
            for include in fn.includes:
                if include not in includes:
                    includes.append(include)
        if includes:
            sections.append("\n".join(includes))
        declarations = [fn.declaration for fn in functions if fn.declaration]
        if declarations:
            sections.append("\n".join(declarations))
    sections.extend(fn.definition for fn in functions)
    return "\n\n".join(sections) + "\n"
