"""Construction and analysis errors.

Every failure aborts the current build: it signals a malformed function
description that has to be fixed at the call site, never retried.
"""

from __future__ import annotations


class SymbolicError(ValueError):
    """Base class for all symbolic-compiler errors."""


class UnknownTypeError(SymbolicError):
    pass


class DuplicateArgumentError(SymbolicError):
    pass


class UndeclaredNameError(SymbolicError):
    pass


class ContextMismatchError(SymbolicError):
    pass


class InvalidOperandError(SymbolicError):
    pass


class NotAnAddressError(SymbolicError):
    pass


class DirectionError(SymbolicError):
    pass


class UnknownMemberError(SymbolicError):
    pass


class NotIndexableError(SymbolicError):
    pass


class GradientFinalizedError(SymbolicError):
    pass


class ReplaceLimitError(SymbolicError):
    pass


class RegistryFrozenError(SymbolicError):
    pass


def _signature(op: str, arg_types: list[str]) -> str:
    return f"{op}({', '.join(arg_types)})"


class UnresolvedOperatorError(SymbolicError):
    def __init__(self, op: str, arg_types: list[str]):
        self.op = op
        self.arg_types = list(arg_types)
        super().__init__(f"No op named {op} for types ({', '.join(self.arg_types)})")


class MissingRuleError(SymbolicError):
    """An operator lacks the hook a pass needs."""

    rule = "rule"

    def __init__(self, op: str, arg_types: list[str]):
        self.op = op
        self.arg_types = list(arg_types)
        super().__init__(f"No {self.rule} impl for {_signature(op, self.arg_types)}")


class MissingDerivativeRuleError(MissingRuleError):
    rule = "deriv"


class MissingGradientRuleError(MissingRuleError):
    rule = "gradient"


class MissingEvaluationRuleError(MissingRuleError):
    rule = "imm"


class MissingRenderRuleError(MissingRuleError):
    def __init__(self, op: str, arg_types: list[str], language: str):
        self.language = language
        self.rule = language
        super().__init__(op, arg_types)


class UnsupportedLanguageError(SymbolicError):
    pass
