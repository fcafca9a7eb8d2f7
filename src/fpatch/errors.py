"""Exceptions raised by the resolver, registry and lifecycle controller."""

from __future__ import annotations

from typing import Any, Mapping


class PatchError(RuntimeError):
    """Base error for patch resolution and lifecycle failures."""

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = dict(details or {})


class DirectiveArityError(PatchError):
    """Raised when a directive receives the wrong number of arguments."""

    def __init__(self, directive: str, *, expected: str, actual: int) -> None:
        super().__init__(
            f"Directive '{directive}' expects {expected} argument(s), got {actual}",
            details={"directive": directive, "expected": expected, "actual": actual},
        )
        self.directive = directive
        self.expected = expected
        self.actual = actual


class DirectiveTypeError(PatchError):
    """Raised when a directive argument has the wrong shape."""


class TrimRangeError(DirectiveTypeError):
    """Raised when a wrap/splice trim is not a valid non-negative count."""


class UnknownPatchError(PatchError):
    """Raised when no patch is registered for an identifier and kind."""

    def __init__(self, identifier: str, kind: str) -> None:
        super().__init__(
            f"There is no patch for {kind} '{identifier}'",
            details={"identifier": identifier, "kind": kind},
        )


class EmptyRegistryError(PatchError):
    """Raised when a bulk operation finds no registered patches."""


class PatchFileError(PatchError):
    """Raised when a patch file or encoded tree cannot be decoded."""


class ConfigError(PatchError):
    """Raised when configuration cannot be loaded or validated."""


__all__ = [
    "ConfigError",
    "DirectiveArityError",
    "DirectiveTypeError",
    "EmptyRegistryError",
    "PatchError",
    "PatchFileError",
    "TrimRangeError",
    "UnknownPatchError",
]
