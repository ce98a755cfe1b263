"""Command-line front end: compile a JSON module description to C++ or JavaScript."""

from __future__ import annotations

import argparse
import json
import logging
import sys

from .api import dump_ir, dump_mermaid, load_module, node_stats
from .emit import emit_module
from . import constants

DEMO_MODULE = """\
{
  "functions": [
    {
      "name": "square",
      "out_args": [{"name": "y", "type": "double"}],
      "in_args": [{"name": "x", "type": "double"}],
      "writes": [{"target": "y", "value": ["*", "x", "x"]}],
      "gradient": true
    }
  ]
}
"""


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Symbolic expression compiler")
    parser.add_argument("file", nargs="?",
                        help="JSON module description")
    parser.add_argument("--language", "-l", default=constants.LANG_C,
                        choices=list(constants.SUPPORTED_LANGUAGES),
                        help="Target language (default: c)")
    parser.add_argument("--ir-only", action="store_true",
                        help="Only print the IR of each function")
    parser.add_argument("--mermaid", action="store_true",
                        help="Print each function's dependency graph as Mermaid")
    parser.add_argument("--stats", action="store_true",
                        help="Print node and operator counts per function")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Log analysis and emission progress")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if not args.file:
        # Demo mode: use a built-in example
        source = DEMO_MODULE
        print("No file provided. Using built-in demo:\n", file=sys.stderr)
        print(source, file=sys.stderr)
    else:
        with open(args.file) as f:
            source = f.read()

    contexts = load_module(source)

    if args.ir_only:
        for ctx in contexts:
            print(f"═══ {ctx.name} ═══")
            print(dump_ir(ctx))
        return 0

    if args.mermaid:
        for ctx in contexts:
            print(dump_mermaid(ctx))
        return 0

    if args.stats:
        print(json.dumps({ctx.name: node_stats(ctx) for ctx in contexts}, indent=2))
        return 0

    sys.stdout.write(emit_module(contexts, args.language))
    return 0


if __name__ == "__main__":
    sys.exit(main())
