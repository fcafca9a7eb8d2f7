"""Symbolic tree model shared by the resolver, registry and stores."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Mapping, Optional, Sequence

__all__ = [
    "Atom",
    "DEFAULT_TAGS",
    "DEFAULT_TAG_TABLE",
    "Directive",
    "Form",
    "Node",
    "Symbol",
    "TagTable",
    "directive_of",
    "form",
    "iter_nodes",
    "render",
    "sym",
]


@dataclass(frozen=True, slots=True)
class Symbol:
    """Identifier atom payload, distinct from string literals."""

    name: str

    def __str__(self) -> str:
        return self.name


class Node:
    """Base class for tree nodes.  Not instantiated directly."""

    __slots__ = ()


@dataclass(frozen=True, slots=True, eq=False)
class Atom(Node):
    """Opaque leaf value: a symbol, string, number, boolean or ``None``."""

    value: Any

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Atom):
            return NotImplemented
        # bool is an int subclass, so compare types before values.
        return type(self.value) is type(other.value) and self.value == other.value

    def __hash__(self) -> int:
        return hash((type(self.value).__name__, self.value))

    @property
    def is_symbol(self) -> bool:
        return isinstance(self.value, Symbol)

    @property
    def symbol_name(self) -> Optional[str]:
        return self.value.name if isinstance(self.value, Symbol) else None

    def __repr__(self) -> str:
        if isinstance(self.value, Symbol):
            return f"sym({self.value.name!r})"
        return f"Atom({self.value!r})"


@dataclass(frozen=True, slots=True)
class Form(Node):
    """Ordered sequence of nodes."""

    items: tuple[Node, ...] = ()

    def __len__(self) -> int:
        return len(self.items)

    @property
    def head(self) -> Optional[Node]:
        return self.items[0] if self.items else None

    @property
    def args(self) -> tuple[Node, ...]:
        return self.items[1:]

    def __repr__(self) -> str:
        return f"form({', '.join(repr(item) for item in self.items)})"


def sym(name: str) -> Atom:
    """Return a symbol atom named ``name``."""
    return Atom(Symbol(name))


def form(*items: Any) -> Form:
    """Build a :class:`Form`, coercing bare Python values into atoms.

    Strings become symbols; use ``Atom("text")`` for string literals.
    Lists and tuples become nested forms.
    """
    return Form(tuple(_coerce(item) for item in items))


def _coerce(item: Any) -> Node:
    if isinstance(item, Node):
        return item
    if isinstance(item, Symbol):
        return Atom(item)
    if isinstance(item, str):
        return sym(item)
    if isinstance(item, (list, tuple)):
        return form(*item)
    return Atom(item)


class Directive(str, Enum):
    """Closed set of directive kinds recognised at the head of a form."""

    ADD = "add"
    REMOVE = "remove"
    SWAP = "swap"
    WRAP = "wrap"
    SPLICE = "splice"
    LET = "let"
    LITERAL = "literal"


DEFAULT_TAGS: Mapping[Directive, str] = {
    directive: f"patch-{directive.value}" for directive in Directive
}


class TagTable:
    """Bidirectional mapping between directive kinds and their head symbols."""

    def __init__(self, names: Mapping[Directive | str, str] | None = None) -> None:
        spelled: dict[Directive, str] = dict(DEFAULT_TAGS)
        for key, value in (names or {}).items():
            spelled[Directive(key)] = value
        by_name: dict[str, Directive] = {}
        for directive, name in spelled.items():
            if not name:
                raise ValueError(f"Empty tag name for directive '{directive.value}'")
            if name in by_name:
                raise ValueError(
                    f"Tag '{name}' is assigned to both '{by_name[name].value}' and '{directive.value}'"
                )
            by_name[name] = directive
        self._names = spelled
        self._by_name = by_name

    def name_of(self, directive: Directive) -> str:
        return self._names[directive]

    def lookup(self, name: str) -> Optional[Directive]:
        return self._by_name.get(name)

    def tag(self, directive: Directive) -> Atom:
        """Return the head atom used to spell ``directive``."""
        return sym(self._names[directive])

    def to_dict(self) -> dict[str, str]:
        return {directive.value: name for directive, name in self._names.items()}


DEFAULT_TAG_TABLE = TagTable()


def directive_of(node: Node, tags: TagTable | None = None) -> Optional[Directive]:
    """Return the directive a form is headed by, or ``None`` for anything else."""
    if not isinstance(node, Form):
        return None
    head = node.head
    if not isinstance(head, Atom) or not head.is_symbol:
        return None
    return (tags or DEFAULT_TAG_TABLE).lookup(head.value.name)


def iter_nodes(node: Node) -> Iterable[Node]:
    """Yield ``node`` and every descendant in source order."""
    yield node
    if isinstance(node, Form):
        for child in node.items:
            yield from iter_nodes(child)


def render(node: Node | Sequence[Node] | None) -> str:
    """Render a tree (or a resolved sequence) as parenthesised text."""
    if node is None:
        return "<unbound>"
    if isinstance(node, Node):
        return _render_node(node)
    return " ".join(_render_node(item) for item in node)


def _render_node(node: Node) -> str:
    if isinstance(node, Form):
        return "(" + " ".join(_render_node(item) for item in node.items) + ")"
    assert isinstance(node, Atom)
    value = node.value
    if isinstance(value, Symbol):
        return value.name
    if isinstance(value, str):
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    if value is None:
        return "nil"
    if isinstance(value, bool):
        return "true" if value else "false"
    return repr(value)
