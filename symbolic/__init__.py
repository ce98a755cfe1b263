"""Symbolic expression compiler package."""

from .context import Context  # noqa: F401
from .operators import default_registry  # noqa: F401
from .type_registry import TypeRegistry  # noqa: F401
from .api import (  # noqa: F401
    build_function,
    load_module,
    compile_module,
    dump_ir,
    dump_mermaid,
    node_stats,
)
