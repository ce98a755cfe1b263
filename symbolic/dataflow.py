"""Dependency analysis on IR — operand/consumer edges, reference counts, execution order."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .ir import Constant, Expr, Node, Read, VariableRef, Write, post_order

if TYPE_CHECKING:
    from .context import Context

logger = logging.getLogger(__name__)


@dataclass
class DependencyGraph:
    """Everything reachable from a Context's writes.

    ``fwd`` maps a node key to its operands, ``rev`` to its consumers (one entry
    per occurrence), ``uses`` to the consumer count. ``in_order`` lists every
    reachable node once, producers before consumers.
    """

    fwd: dict[str, list[Node]] = field(default_factory=dict)
    rev: dict[str, list[Node]] = field(default_factory=dict)
    uses: Counter = field(default_factory=Counter)
    in_order: list[Node] = field(default_factory=list)
    writes: list[Write] = field(default_factory=list)
    reads: list[Read] = field(default_factory=list)

    def use_count(self, node: Node) -> int:
        return self.uses.get(node.key, 0)

    def consumers(self, node: Node) -> list[Node]:
        return list(self.rev.get(node.key, []))

    def __str__(self) -> str:
        return "\n".join(
            f"{node.describe()} uses={self.use_count(node)}" for node in self.in_order
        )


def analyze(ctx: Context) -> DependencyGraph:
    """Post-order walk from each recorded Write, in recording order."""
    graph = DependencyGraph()
    graph.in_order = post_order(ctx.writes.values())
    for node in graph.in_order:
        operands = list(node.operands())
        graph.fwd[node.key] = operands
        for operand in operands:
            graph.rev.setdefault(operand.key, []).append(node)
            graph.uses[operand.key] += 1

    graph.writes = [n for n in graph.in_order if isinstance(n, Write)]
    graph.reads = [n for n in graph.in_order if isinstance(n, Read)]
    logger.info(
        "Analyzed %s: %d nodes, %d writes, %d reads",
        ctx.name,
        len(graph.in_order),
        len(graph.writes),
        len(graph.reads),
    )
    return graph


# ── Mermaid ──────────────────────────────────────────────────────


def _escape_mermaid(text: str) -> str:
    return text.replace('"', "#quot;").replace("<", "#lt;").replace(">", "#gt;")


def _node_label(node: Node) -> str:
    if isinstance(node, Constant):
        return f"{node.value}"
    if isinstance(node, VariableRef):
        return f"{node.name}: {node.type}"
    if isinstance(node, Read):
        return "read"
    if isinstance(node, Write):
        return "write"
    if isinstance(node, Expr):
        return node.op
    return node.key


def graph_to_mermaid(graph: DependencyGraph) -> str:
    """Render the dependency DAG as a Mermaid flowchart, operands pointing at consumers."""
    lines: list[str] = ["flowchart TD"]
    for node in graph.in_order:
        lines.append(f'    {node.key}["{_escape_mermaid(_node_label(node))}"]')
    for node in graph.in_order:
        for operand in graph.fwd[node.key]:
            lines.append(f"    {operand.key} --> {node.key}")
    return "\n".join(lines)
