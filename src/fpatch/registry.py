"""Process-scoped registry of declared patch definitions."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, Iterator, List, Mapping, Optional, Tuple

from .errors import PatchFileError, UnknownPatchError
from .tree import Atom, Form, Node

LOGGER = logging.getLogger(__name__)


class PatchKind(str, Enum):
    """Broad category of definition a patch targets."""

    FUNCTION = "function"
    VARIABLE = "variable"
    COMPOSITE = "composite"


PatchKey = Tuple[str, PatchKind]


@dataclass(frozen=True, slots=True)
class PatchDefinition:
    """Annotated source of a single patched definition."""

    kind: PatchKind
    identifier: str
    body: Node

    @property
    def key(self) -> PatchKey:
        return (self.identifier, self.kind)

    def with_body(self, body: Node) -> "PatchDefinition":
        return replace(self, body=body)


DEFAULT_DEFINITION_TYPES: Mapping[str, PatchKind] = {
    "defun": PatchKind.FUNCTION,
    "defmacro": PatchKind.FUNCTION,
    "defsubst": PatchKind.FUNCTION,
    "define-inline": PatchKind.FUNCTION,
    "defvar": PatchKind.VARIABLE,
    "defconst": PatchKind.VARIABLE,
    "defcustom": PatchKind.VARIABLE,
    "define-minor-mode": PatchKind.COMPOSITE,
    "define-derived-mode": PatchKind.COMPOSITE,
}


class DefinitionTypes:
    """Table mapping a definition form's head symbol to its patch kind."""

    def __init__(self, types: Mapping[str, PatchKind | str] | None = None) -> None:
        source = DEFAULT_DEFINITION_TYPES if types is None else types
        self._types: Dict[str, PatchKind] = {head: PatchKind(kind) for head, kind in source.items()}

    def register(self, head: str, kind: PatchKind | str) -> None:
        self._types[head] = PatchKind(kind)

    def kind_of(self, head: str) -> Optional[PatchKind]:
        return self._types.get(head)

    def classify(self, body: Node) -> Tuple[str, PatchKind]:
        """Derive ``(identifier, kind)`` from a ``(head identifier ...)`` form.

        The head and identifier positions are read literally, so they must
        not be wrapped in directives.
        """
        if not isinstance(body, Form) or len(body) < 2:
            raise PatchFileError(f"Cannot classify definition {body!r}: expected (head identifier ...)")
        head, identifier = body.items[0], body.items[1]
        if not isinstance(head, Atom) or not head.is_symbol:
            raise PatchFileError(f"Definition head must be a symbol, got {head!r}")
        kind = self.kind_of(head.value.name)
        if kind is None:
            known = ", ".join(sorted(self._types))
            raise PatchFileError(
                f"Unknown definition type '{head.value.name}'. Expected one of: {known}"
            )
        if not isinstance(identifier, Atom) or not identifier.is_symbol:
            raise PatchFileError(f"Definition identifier must be a symbol, got {identifier!r}")
        return identifier.value.name, kind

    def to_dict(self) -> Dict[str, str]:
        return {head: kind.value for head, kind in self._types.items()}


class PatchRegistry:
    """Authoritative record of the patches currently declared.

    Created once per process and passed to the lifecycle controller.  Only
    declarations add entries; nothing clears the registry implicitly.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, Dict[PatchKind, PatchDefinition]] = {}

    def register(self, definition: PatchDefinition) -> Optional[PatchDefinition]:
        """Store ``definition``, returning the one it replaced (if any)."""
        by_kind = self._entries.setdefault(definition.identifier, {})
        previous = by_kind.get(definition.kind)
        by_kind[definition.kind] = definition
        if previous is not None:
            LOGGER.debug("Replaced %s patch for '%s'", definition.kind.value, definition.identifier)
        return previous

    def get(self, identifier: str, kind: PatchKind | str) -> Optional[PatchDefinition]:
        return self._entries.get(identifier, {}).get(PatchKind(kind))

    def require(self, identifier: str, kind: PatchKind | str) -> PatchDefinition:
        definition = self.get(identifier, kind)
        if definition is None:
            raise UnknownPatchError(identifier, PatchKind(kind).value)
        return definition

    def kinds(self, identifier: str) -> List[PatchKind]:
        return list(self._entries.get(identifier, {}))

    def keys(self) -> List[PatchKey]:
        """Registered ``(identifier, kind)`` pairs in declaration order."""
        return [(identifier, kind) for identifier, by_kind in self._entries.items() for kind in by_kind]

    def __iter__(self) -> Iterator[PatchDefinition]:
        for by_kind in self._entries.values():
            yield from by_kind.values()

    def __len__(self) -> int:
        return sum(len(by_kind) for by_kind in self._entries.values())

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, tuple) or len(key) != 2:
            return False
        identifier, kind = key
        try:
            return self.get(identifier, kind) is not None
        except ValueError:
            return False


__all__ = [
    "DEFAULT_DEFINITION_TYPES",
    "DefinitionTypes",
    "PatchDefinition",
    "PatchKey",
    "PatchKind",
    "PatchRegistry",
]
