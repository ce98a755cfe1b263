"""Pure functions for computing statistics over IR node lists."""

from __future__ import annotations

from collections import Counter

from symbolic.ir import Expr, Node


def count_node_kinds(nodes: list[Node]) -> dict[str, int]:
    """Return a frequency map of node kinds (``Constant``, ``Read``, ...) in the given list.

    Args:
        nodes: A list of IR nodes.

    Returns:
        A dict mapping node class names to their occurrence counts.
        Empty dict for an empty input list.
    """
    return dict(Counter(type(node).__name__ for node in nodes))


def count_operators(nodes: list[Node]) -> dict[str, int]:
    """Return a frequency map of operator names over the Expr nodes in the list."""
    return dict(Counter(node.op for node in nodes if isinstance(node, Expr)))
