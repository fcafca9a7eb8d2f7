"""Scoped placeholder bindings used by ``Let`` directives."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Dict, Iterator, Optional, Sequence, Tuple

from .tree import Atom, Node

_MISSING = object()


class BindingTable:
    """Mapping from identifier to an already-resolved node sequence.

    Scopes are entered with :meth:`scope`; every name bound inside a scope is
    restored to its previous value (or removed) when the scope exits.
    """

    def __init__(self, initial: Optional[Dict[str, Sequence[Node]]] = None) -> None:
        self._entries: Dict[str, Tuple[Node, ...]] = {
            name: tuple(value) for name, value in (initial or {}).items()
        }

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def lookup(self, node: Node) -> Optional[Tuple[Node, ...]]:
        """Return the bound sequence for a symbol atom, or ``None``."""
        if not isinstance(node, Atom) or not node.is_symbol:
            return None
        return self._entries.get(node.value.name)

    def get(self, name: str) -> Optional[Tuple[Node, ...]]:
        return self._entries.get(name)

    @contextmanager
    def scope(self) -> Iterator["_Scope"]:
        """Open a scope whose bindings are undone on exit."""
        frame = _Scope(self)
        try:
            yield frame
        finally:
            frame.restore()


class _Scope:
    """Single ``Let`` scope: records prior values so they can be restored."""

    def __init__(self, table: BindingTable) -> None:
        self._table = table
        self._saved: Dict[str, object] = {}

    def bind(self, name: str, value: Sequence[Node]) -> None:
        if name not in self._saved:
            self._saved[name] = self._table._entries.get(name, _MISSING)
        self._table._entries[name] = tuple(value)

    def bound(self, name: str) -> bool:
        return name in self._saved

    def restore(self) -> None:
        entries = self._table._entries
        for name, previous in self._saved.items():
            if previous is _MISSING:
                entries.pop(name, None)
            else:
                entries[name] = previous  # type: ignore[assignment]
        self._saved.clear()


__all__ = ["BindingTable"]
