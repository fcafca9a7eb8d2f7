"""Resolve annotated trees into their original or patched view.

A view is selected by the ``want_patched`` flag.  Ordinary forms are rebuilt
element by element; forms headed by a directive tag are replaced by whatever
that directive contributes to the selected view, spliced into the parent in
source order.

``Remove`` is ``Add`` with inverted polarity and ``Splice`` is ``Wrap`` with
inverted polarity, so each pair shares one implementation taking ``invert``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, List, Mapping, Sequence, Tuple, Union

from .bindings import BindingTable
from .errors import DirectiveArityError, DirectiveTypeError, TrimRangeError
from .tree import (
    DEFAULT_TAG_TABLE,
    Atom,
    Directive,
    Form,
    Node,
    TagTable,
    directive_of,
    iter_nodes,
)

if TYPE_CHECKING:
    from .registry import PatchDefinition

LOGGER = logging.getLogger(__name__)

BindingsArg = Union[BindingTable, Mapping[str, Sequence[Node]], None]


class Resolver:
    """Single-view resolver bound to a binding table and tag spelling."""

    def __init__(
        self,
        want_patched: bool,
        bindings: BindingsArg = None,
        *,
        tags: TagTable | None = None,
    ) -> None:
        self.want_patched = want_patched
        if isinstance(bindings, BindingTable):
            self.bindings = bindings
        else:
            self.bindings = BindingTable(dict(bindings or {}))
        self.tags = tags or DEFAULT_TAG_TABLE

    def resolve(self, node: Node) -> List[Node]:
        if isinstance(node, Atom):
            bound = self.bindings.lookup(node)
            if bound is not None:
                return list(bound)
            return [node]

        if not isinstance(node, Form):
            raise DirectiveTypeError(f"Cannot resolve non-tree value {node!r}")

        directive = directive_of(node, self.tags)
        if directive is None:
            return [Form(tuple(self._resolve_each(node.items)))]

        args = node.args
        if directive is Directive.ADD:
            return self._resolve_add(directive, args, invert=False)
        if directive is Directive.REMOVE:
            return self._resolve_add(directive, args, invert=True)
        if directive is Directive.SWAP:
            return self._resolve_swap(directive, args)
        if directive is Directive.WRAP:
            return self._resolve_wrap(directive, args, invert=False)
        if directive is Directive.SPLICE:
            return self._resolve_wrap(directive, args, invert=True)
        if directive is Directive.LET:
            return self._resolve_let(directive, args)
        if directive is Directive.LITERAL:
            return self._resolve_literal(directive, args)
        raise AssertionError(f"Unhandled directive {directive!r}")

    def _resolve_each(self, nodes: Sequence[Node]) -> List[Node]:
        resolved: List[Node] = []
        for child in nodes:
            resolved.extend(self.resolve(child))
        return resolved

    def _name(self, directive: Directive) -> str:
        return self.tags.name_of(directive)

    def _resolve_add(self, directive: Directive, args: Sequence[Node], *, invert: bool) -> List[Node]:
        if not args:
            raise DirectiveArityError(self._name(directive), expected="at least 1", actual=0)
        if self.want_patched != invert:
            return self._resolve_each(args)
        return []

    def _resolve_swap(self, directive: Directive, args: Sequence[Node]) -> List[Node]:
        if len(args) != 2:
            raise DirectiveArityError(self._name(directive), expected="exactly 2", actual=len(args))
        old, new = args
        return self.resolve(new if self.want_patched else old)

    def _resolve_wrap(self, directive: Directive, args: Sequence[Node], *, invert: bool) -> List[Node]:
        name = self._name(directive)
        if not 1 <= len(args) <= 3:
            raise DirectiveArityError(name, expected="1 to 3", actual=len(args))
        body = args[-1]
        triml = _trim_count(name, "triml", args[0]) if len(args) >= 2 else 0
        trimr = _trim_count(name, "trimr", args[1]) if len(args) == 3 else 0
        if not isinstance(body, Form):
            raise DirectiveTypeError(
                f"Directive '{name}' requires a form as its body, got {body!r}",
                details={"directive": name, "body": repr(body)},
            )
        if triml + trimr > len(body):
            raise TrimRangeError(
                f"Directive '{name}' trims {triml}+{trimr} element(s) from a body of length {len(body)}",
                details={"directive": name, "triml": triml, "trimr": trimr, "length": len(body)},
            )

        if self.want_patched != invert:
            return [Form(tuple(self._resolve_each(body.items)))]
        kept = body.items[triml : len(body.items) - trimr]
        return self._resolve_each(kept)

    def _resolve_let(self, directive: Directive, args: Sequence[Node]) -> List[Node]:
        name = self._name(directive)
        if len(args) != 2:
            raise DirectiveArityError(name, expected="exactly 2", actual=len(args))
        pairs, body = args
        if not isinstance(pairs, Form):
            raise DirectiveTypeError(
                f"Directive '{name}' requires a list of bindings, got {pairs!r}",
                details={"directive": name},
            )
        with self.bindings.scope() as frame:
            for pair in pairs.items:
                if not isinstance(pair, Form) or len(pair) != 2:
                    raise DirectiveTypeError(
                        f"Directive '{name}' bindings must be (identifier value) pairs, got {pair!r}",
                        details={"directive": name, "binding": repr(pair)},
                    )
                identifier, value = pair.items
                if not isinstance(identifier, Atom) or not identifier.is_symbol:
                    raise DirectiveTypeError(
                        f"Directive '{name}' can only bind symbols, got {identifier!r}",
                        details={"directive": name, "identifier": repr(identifier)},
                    )
                key = identifier.value.name
                if frame.bound(key):
                    raise DirectiveTypeError(
                        f"Directive '{name}' binds '{key}' more than once",
                        details={"directive": name, "identifier": key},
                    )
                frame.bind(key, self.resolve(value))
            return self.resolve(body)

    def _resolve_literal(self, directive: Directive, args: Sequence[Node]) -> List[Node]:
        if not args:
            raise DirectiveArityError(self._name(directive), expected="at least 1", actual=0)
        return list(args)


def _trim_count(directive: str, label: str, node: Node) -> int:
    value = node.value if isinstance(node, Atom) else None
    if not isinstance(value, int) or isinstance(value, bool):
        raise TrimRangeError(
            f"Directive '{directive}' {label} must be an integer, got {node!r}",
            details={"directive": directive, label: repr(node)},
        )
    if value < 0:
        raise TrimRangeError(
            f"Directive '{directive}' {label} must not be negative, got {value}",
            details={"directive": directive, label: value},
        )
    return value


def resolve(
    node: Node,
    want_patched: bool,
    bindings: BindingsArg = None,
    *,
    tags: TagTable | None = None,
) -> List[Node]:
    """Resolve ``node`` into the flat sequence it contributes to one view."""
    return Resolver(want_patched, bindings, tags=tags).resolve(node)


def resolve_body(body: Node, want_patched: bool, *, tags: TagTable | None = None) -> Node:
    """Resolve a whole definition body, which must yield exactly one node."""
    resolved = resolve(body, want_patched, tags=tags)
    if len(resolved) != 1:
        view = "patched" if want_patched else "original"
        raise DirectiveTypeError(
            f"Definition must resolve to exactly one form in the {view} view, got {len(resolved)}",
            details={"view": view, "count": len(resolved)},
        )
    return resolved[0]


def resolve_definition(
    definition: "PatchDefinition",
    want_patched: bool,
    *,
    tags: TagTable | None = None,
) -> "PatchDefinition":
    """Return ``definition`` with its body replaced by the selected view."""
    body = resolve_body(definition.body, want_patched, tags=tags)
    return definition.with_body(body)


def resolve_views(definition: "PatchDefinition", *, tags: TagTable | None = None) -> Tuple[Node, Node]:
    """Resolve both views of ``definition`` as ``(original, patched)``."""
    original = resolve_body(definition.body, False, tags=tags)
    patched = resolve_body(definition.body, True, tags=tags)
    LOGGER.debug(
        "Resolved %s '%s' (identity=%s)",
        definition.kind.value,
        definition.identifier,
        original == patched,
    )
    return original, patched


def contains_directives(node: Node, tags: TagTable | None = None) -> bool:
    """Return whether any form in ``node`` is headed by a directive tag."""
    return any(directive_of(child, tags) is not None for child in iter_nodes(node))


__all__ = [
    "Resolver",
    "contains_directives",
    "resolve",
    "resolve_body",
    "resolve_definition",
    "resolve_views",
]
