"""Composable API functions for the symbolic compiler pipelines.

Each function corresponds to a CLI workflow (--ir-only, --mermaid, --stats)
but is callable programmatically without argparse.
"""

from __future__ import annotations

import logging
from typing import Any

from .context import Context
from .dataflow import analyze, graph_to_mermaid
from .decl import FunctionDecl, ModuleDecl, build_function as _build_from_decl, register_structs
from .emit import emit_module
from .ir_stats import count_node_kinds, count_operators
from .operators import default_registry
from .registry import OperatorRegistry
from .type_registry import TypeRegistry
from . import constants

logger = logging.getLogger(__name__)


def build_function(
    decl: FunctionDecl | dict[str, Any],
    registry: OperatorRegistry | None = None,
    types: TypeRegistry | None = None,
) -> Context:
    """Build one Context from a function description.

    Args:
        decl: A FunctionDecl or its JSON-shaped dict.
        registry: Operator registry; the default scalar operators when omitted.
        types: Type registry; a fresh one with builtins when omitted.

    Returns:
        The constructed Context.
    """
    if isinstance(decl, dict):
        decl = FunctionDecl.model_validate(decl)
    return _build_from_decl(decl, registry or default_registry(), types or TypeRegistry())


def load_module(
    source: str | dict[str, Any] | ModuleDecl,
    registry: OperatorRegistry | None = None,
    types: TypeRegistry | None = None,
) -> list[Context]:
    """Build every function in a module description, plus adjoints where requested.

    Args:
        source: JSON text, a dict, or a ModuleDecl.
        registry: Operator registry; the default scalar operators when omitted.
        types: Type registry; a fresh one with builtins when omitted.

    Returns:
        Contexts in declaration order, each gradient function right after its primal.
    """
    if isinstance(source, str):
        module = ModuleDecl.model_validate_json(source)
    elif isinstance(source, dict):
        module = ModuleDecl.model_validate(source)
    else:
        module = source
    registry = registry or default_registry()
    types = types or TypeRegistry()
    register_structs(module, types)

    contexts: list[Context] = []
    for decl in module.functions:
        ctx = _build_from_decl(decl, registry, types)
        contexts.append(ctx)
        if decl.gradient:
            contexts.append(ctx.adjoint(excluded=decl.no_grad))
    logger.info("Loaded %d functions", len(contexts))
    return contexts


def compile_module(
    source: str | dict[str, Any] | ModuleDecl,
    language: str = constants.LANG_C,
) -> str:
    """Load a module description and emit all of its functions.

    Args:
        source: JSON text, a dict, or a ModuleDecl.
        language: Target language, "c" or "js".

    Returns:
        The emitted source text.
    """
    return emit_module(load_module(source), language)


def dump_ir(ctx: Context) -> str:
    """Return a human-readable dump of a Context's reachable nodes, producers first."""
    return "\n".join(f"  {line}" for line in str(analyze(ctx)).splitlines())


def dump_mermaid(ctx: Context) -> str:
    return graph_to_mermaid(analyze(ctx))


def node_stats(ctx: Context) -> dict[str, dict[str, int]]:
    """Node-kind and operator frequencies over everything reachable from the writes."""
    nodes = analyze(ctx).in_order
    return {"kinds": count_node_kinds(nodes), "operators": count_operators(nodes)}
