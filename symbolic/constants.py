"""Named constants — eliminates magic strings across the codebase."""

from __future__ import annotations

LANG_C = "c"
LANG_JS = "js"

SUPPORTED_LANGUAGES: tuple[str, ...] = (LANG_C, LANG_JS)

# Operator pattern markers
ANY_TYPE = "ANY"
VARIADIC = "..."

MEMBER_OP_PREFIX = "."
INDEX_OP_PATTERN = r"^\[(\d+)\]$"
INDEX_OP_TEMPLATE = "[{index}]"
MATRIX_ELEM_OP_PATTERN = r"^\((\d+),(\d+)\)$"
MATRIX_ELEM_OP_TEMPLATE = "({row},{col})"

# Content keys
CONTENT_KEY_SECRET = b"key"
CONTENT_KEY_LENGTH = 16
CONST_KEY_PREFIX = "_c"
VAR_KEY_PREFIX = "_v"
READ_KEY_PREFIX = "_r"
WRITE_KEY_PREFIX = "_w"
EXPR_KEY_PREFIX = "_e"

# Argument naming
GRAD_SUFFIX = "Grad"
PREV_SUFFIX = "Prev"
NEXT_SUFFIX = "Next"

DEFAULT_LITERAL_TYPE = "double"

MAX_REPLACE_ITERATIONS = 100

CANONICAL_TYPENAME_VIOLATIONS: tuple[str, ...] = (r"<\S", r"\S>", r",\S")

TEMPLATE_TYPENAME_PATTERN = (
    r"^(?P<name>[\w:]+)< (?P<args>.+?) >(?:::fixed< (?P<size>\d+)(?:, (?P<cols>\d+))? >)?$"
)
FIXED_TEMPLATE_SUFFIX = "::fixed"

INDEXABLE_TEMPLATES: frozenset[str] = frozenset(
    {
        "vector",
        "arma::Col",
        "arma::Col::fixed",
        "arma::Row",
        "arma::Row::fixed",
        "arma::Mat",
        "arma::Mat::fixed",
    }
)

ARMA_TEMPLATE_PREFIX = "arma::"

MATRIX_TEMPLATES: frozenset[str] = frozenset({"arma::Mat", "arma::Mat::fixed"})
