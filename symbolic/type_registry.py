"""Type registry — canonical type objects and their per-language literal formatters."""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Iterable

from . import constants
from .errors import UnknownTypeError

logger = logging.getLogger(__name__)

_CANONICAL_VIOLATIONS = [re.compile(p) for p in constants.CANONICAL_TYPENAME_VIOLATIONS]
_TEMPLATE_RE = re.compile(constants.TEMPLATE_TYPENAME_PATTERN)


def enforce_canonical_typename(typename: str) -> None:
    """Require ``T< U, V >`` spacing, so nested templates never emit ``>>``."""
    if any(p.search(typename) for p in _CANONICAL_VIOLATIONS):
        raise UnknownTypeError(
            f"{typename} missing some spaces from canonical form. Should be: T< U, V >"
        )


def _split_template_args(text: str) -> list[str]:
    """Split ``A, B< C, D >`` at top-level commas only."""
    parts: list[str] = []
    depth = 0
    current = ""
    for ch in text:
        if ch == "<":
            depth += 1
        elif ch == ">":
            depth -= 1
        if ch == "," and depth == 0:
            parts.append(current.strip())
            current = ""
        else:
            current += ch
    parts.append(current.strip())
    return [p for p in parts if p]


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _format_float(language: str, value: float) -> str:
    if math.isnan(value):
        return "NAN" if language == constants.LANG_C else "NaN"
    if math.isinf(value):
        word = "INFINITY" if language == constants.LANG_C else "Infinity"
        return word if value > 0 else f"-{word}"
    return repr(value)


# ── Types ────────────────────────────────────────────────────────


@dataclass(eq=False)
class Type:
    """A named type. Equality is identity: the registry hands out one object per name."""

    typename: str
    includes: tuple[str, ...] = ()

    @property
    def js_typename(self) -> str:
        return re.sub(r"\W+", "_", self.typename).strip("_")

    @property
    def is_aggregate(self) -> bool:
        return False

    def coerce_value(self, value: Any) -> Any:
        return value

    def zero_value(self) -> Any:
        return 0

    def is_zero_value(self, value: Any) -> bool:
        return _is_number(value) and value == 0

    def is_one_value(self, value: Any) -> bool:
        return _is_number(value) and value == 1

    def format_value(self, language: str, value: Any) -> str:
        raise NotImplementedError(f"No literal formatter for {self.typename}")

    def referenced_types(self) -> list[Type]:
        return [self]

    def __str__(self) -> str:
        return self.typename


@dataclass(eq=False)
class PrimitiveType(Type):
    kind: str = "float"

    def coerce_value(self, value: Any) -> Any:
        if not _is_number(value):
            return value
        if self.kind == "float":
            return float(value)
        if self.kind == "int":
            return int(value)
        return value

    def format_value(self, language: str, value: Any) -> str:
        if self.kind == "bool":
            return "true" if value else "false"
        if self.kind == "int":
            return str(int(value))
        if self.kind == "float":
            return _format_float(language, float(value))
        raise UnknownTypeError(f"Can't format a {self.typename} literal")


@dataclass(eq=False)
class StructType(Type):
    """A record type. Values are dicts by field name, or a scalar broadcast to every field."""

    fields: dict[str, Type] = field(default_factory=dict)
    auto_extend: bool = False

    @property
    def is_aggregate(self) -> bool:
        return True

    def add_field(self, name: str, field_type: Type) -> None:
        if name in self.fields:
            return
        logger.debug("Adding field %s: %s to %s", name, field_type, self.typename)
        self.fields[name] = field_type

    def coerce_value(self, value: Any) -> Any:
        if isinstance(value, dict):
            return {
                name: self.fields[name].coerce_value(v) if name in self.fields else v
                for name, v in value.items()
            }
        if self.fields:
            return next(iter(self.fields.values())).coerce_value(value)
        return value

    def field_values(self, value: Any) -> list[Any]:
        if isinstance(value, dict):
            return [value.get(name, 0) for name in self.fields]
        return [value for _ in self.fields]

    def is_zero_value(self, value: Any) -> bool:
        if isinstance(value, dict):
            return all(
                ft.is_zero_value(v)
                for ft, v in zip(self.fields.values(), self.field_values(value))
            )
        return super().is_zero_value(value)

    def format_value(self, language: str, value: Any) -> str:
        parts = [
            ft.format_value(language, v)
            for ft, v in zip(self.fields.values(), self.field_values(value))
        ]
        if language == constants.LANG_JS:
            members = ", ".join(f"{name}:{p}" for name, p in zip(self.fields, parts))
            return f"{{__type:'{self.js_typename}', {members}}}"
        return f"{self.typename}({', '.join(parts)})"

    def referenced_types(self) -> list[Type]:
        seen: list[Type] = [self]
        for ft in self.fields.values():
            for t in ft.referenced_types():
                if t not in seen:
                    seen.append(t)
        return seen


@dataclass(eq=False)
class TemplateType(Type):
    """An instantiated template such as ``vector< double >`` or ``arma::Col< double >::fixed< 3 >``."""

    template_name: str = ""
    template_args: tuple[Type, ...] = ()
    size: int | None = None
    rows: int | None = None

    @property
    def is_aggregate(self) -> bool:
        return True

    @property
    def is_indexable(self) -> bool:
        return self.template_name in constants.INDEXABLE_TEMPLATES and bool(
            self.template_args
        )

    @property
    def element_type(self) -> Type | None:
        return self.template_args[0] if self.is_indexable else None

    @property
    def is_matrix(self) -> bool:
        return self.template_name in constants.MATRIX_TEMPLATES and self.is_indexable

    def linear_index(self, row: int, col: int) -> int | None:
        """Column-major element offset, when the row count is fixed."""
        return row + col * self.rows if self.rows else None

    def coerce_value(self, value: Any) -> Any:
        elem = self.element_type
        if elem is None:
            return value
        if isinstance(value, (list, tuple)):
            return [elem.coerce_value(v) for v in value]
        return elem.coerce_value(value)

    def element_values(self, value: Any) -> list[Any]:
        if isinstance(value, (list, tuple)):
            return list(value)
        return [value] * (self.size or 0)

    def is_zero_value(self, value: Any) -> bool:
        if isinstance(value, (list, tuple)):
            elem = self.element_type
            return elem is not None and all(elem.is_zero_value(v) for v in value)
        return super().is_zero_value(value)

    def format_value(self, language: str, value: Any) -> str:
        elem = self.element_type
        values = self.element_values(value)
        parts = [elem.format_value(language, v) for v in values] if elem else []
        if language == constants.LANG_JS:
            if not parts:
                return "[]"
            return f"Float64Array.of({', '.join(parts)})"
        if not parts:
            return f"{self.typename}()"
        return f"{self.typename}{{{', '.join(parts)}}}"

    def referenced_types(self) -> list[Type]:
        seen: list[Type] = [self]
        for arg in self.template_args:
            for t in arg.referenced_types():
                if t not in seen:
                    seen.append(t)
        return seen


# ── Registry ─────────────────────────────────────────────────────


class TypeRegistry:
    """Maps canonical type names (and aliases) to type objects."""

    def __init__(self):
        self.types: dict[str, Type] = {}
        self._setup_builtins()

    def _setup_builtins(self) -> None:
        self.primitive("void", kind="void")
        self.primitive("bool", kind="bool")
        self.primitive("float")
        self.primitive("double")
        self.alias("double", "R")
        self.primitive("S32", kind="int")
        self.alias("S32", "int")
        self.alias("S32", "I")
        self.primitive("S64", kind="int")
        self.primitive("U32", kind="int")
        self.alias("U32", "u_int")
        self.primitive("U64", kind="int")

    def primitive(
        self, typename: str, kind: str = "float", includes: Iterable[str] = ()
    ) -> PrimitiveType:
        enforce_canonical_typename(typename)
        existing = self.types.get(typename)
        if isinstance(existing, PrimitiveType):
            return existing
        t = PrimitiveType(typename=typename, includes=tuple(includes), kind=kind)
        self.types[typename] = t
        return t

    def struct(
        self,
        typename: str,
        fields: Iterable[tuple[str, str]] | dict[str, str] = (),
        auto_extend: bool = False,
        includes: Iterable[str] = (),
    ) -> StructType:
        enforce_canonical_typename(typename)
        if typename in self.types:
            raise UnknownTypeError(f"{typename} already defined")
        items = fields.items() if isinstance(fields, dict) else fields
        t = StructType(
            typename=typename,
            includes=tuple(includes),
            fields={name: self.require_type(tn, create=True) for name, tn in items},
            auto_extend=auto_extend,
        )
        self.types[typename] = t
        return t

    def template(self, typename: str, includes: Iterable[str] = ()) -> TemplateType:
        enforce_canonical_typename(typename)
        existing = self.types.get(typename)
        if isinstance(existing, TemplateType):
            return existing
        m = _TEMPLATE_RE.match(typename)
        if not m:
            raise UnknownTypeError(f"Can't parse template type {typename}")
        template_name = m.group("name")
        size = m.group("size")
        rows = None
        if size is not None:
            template_name += constants.FIXED_TEMPLATE_SUFFIX
            if m.group("cols") is not None:
                rows = int(size)
                size = rows * int(m.group("cols"))
        t = TemplateType(
            typename=typename,
            includes=tuple(includes),
            template_name=template_name,
            template_args=tuple(
                self.require_type(arg, create=True)
                for arg in _split_template_args(m.group("args"))
            ),
            size=int(size) if size is not None else None,
            rows=rows,
        )
        self.types[typename] = t
        return t

    def alias(self, existing: str, new_name: str) -> Type:
        enforce_canonical_typename(new_name)
        t = self.get_type(existing)
        if t is None:
            raise UnknownTypeError(f"No such type {existing}")
        self.types[new_name] = t
        return t

    def get_type(self, typename: str | Type | None, create: bool = False) -> Type | None:
        """Look up a type by name; ``create`` instantiates unseen template names."""
        if typename is None:
            return None
        if isinstance(typename, Type):
            return typename
        enforce_canonical_typename(typename)
        t = self.types.get(typename)
        if t is None and create and "<" in typename:
            t = self.template(typename)
        return t

    def require_type(self, typename: str | Type, create: bool = False) -> Type:
        t = self.get_type(typename, create=create)
        if t is None:
            raise UnknownTypeError(f"Unknown type {typename}")
        return t
