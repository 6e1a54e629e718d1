"""Error types.

Configuration-time errors abort before anything is applied. Provider errors
are raised by handlers during apply and are isolated to the failing instance
and its dependents.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from topoform.engine.types import ApplyResult


class TopoformError(Exception):
    """Base exception for all topoform errors."""


# ── Configuration ───────────────────────────────────────────────────


class ConfigurationError(TopoformError):
    """The declarations cannot be turned into a plan."""


class ExpressionSyntaxError(ConfigurationError):
    """An interpolated expression could not be parsed."""

    def __init__(self, message: str, *, source: str, position: int) -> None:
        super().__init__(f"{message} at position {position} in {source!r}")
        self.source = source
        self.position = position


class EvaluationError(ConfigurationError):
    """An expression parsed but could not be evaluated."""


class EmptyListError(EvaluationError):
    """``element()`` was called on an empty list."""


class FormatError(EvaluationError):
    """``format()`` verbs and arguments do not line up."""


class FunctionCallError(EvaluationError):
    """Unknown function or invalid arguments to a built-in."""


class UnknownVariableError(EvaluationError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Reference to undeclared variable: var.{name}")
        self.name = name


class UnresolvedReferenceError(ConfigurationError):
    """A reference names something that does not exist or cannot be resolved."""


class InvalidCountError(ConfigurationError):
    def __init__(self, address: str, value: object) -> None:
        super().__init__(
            f"Invalid count for {address}: {value!r} (expected a non-negative integer)"
        )
        self.address = address
        self.value = value


class UnknownResourceTypeError(ConfigurationError):
    """Raised when a resource type has no registered handler."""

    def __init__(self, resource_type: str) -> None:
        super().__init__(f"Unknown resource type: {resource_type}")
        self.resource_type = resource_type


class DuplicateAddressError(ConfigurationError):
    """Raised when two declarations share the same type and name."""

    def __init__(self, address: str) -> None:
        super().__init__(f"Duplicate resource address: {address}")
        self.address = address


class CyclicDependencyError(ConfigurationError):
    """Raised when the dependency graph contains a cycle."""

    def __init__(self, cycles: list[list[str]]) -> None:
        msg = "Dependency cycle detected"
        if cycles:
            msg += ": " + "; ".join(" -> ".join(c) for c in cycles)
        super().__init__(msg)
        self.cycles = cycles

    @property
    def addresses(self) -> list[str]:
        return sorted({a for c in self.cycles for a in c})


class ValidationError(ConfigurationError):
    """One or more resource instances failed provider validation."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        msg = "Validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        super().__init__(msg)


# ── Provider ────────────────────────────────────────────────────────


class ProviderError(TopoformError):
    """A provider call failed."""


class TransientProviderError(ProviderError):
    """Rate limiting, throttling or a network blip. Safe to retry."""


class PermanentProviderError(ProviderError):
    """Validation or permission failure. Retrying will not help."""


# ── State ───────────────────────────────────────────────────────────


class StateCorruptionError(TopoformError):
    """The state file cannot be trusted. Requires manual intervention."""


class StateLockError(TopoformError):
    """Raised when the state lock cannot be acquired or released."""


class StalePlanError(TopoformError):
    """Raised when applying a plan against a different state than planned."""


# ── Apply ───────────────────────────────────────────────────────────


class ApplyError(TopoformError):
    """One or more actions failed during apply.

    Carries the full result so callers can inspect what was applied, what
    failed and what was skipped because an upstream action failed.
    """

    def __init__(self, result: ApplyResult) -> None:
        self.result = result
        failed = ", ".join(f.address for f in result.failed)
        super().__init__(f"{len(result.failed)} action(s) failed: {failed}")


class ApplyCanceled(TopoformError):
    """Raised when an apply is canceled (e.g., Ctrl-C)."""

    def __init__(self, result: ApplyResult) -> None:
        self.result = result
        super().__init__("Apply canceled")
