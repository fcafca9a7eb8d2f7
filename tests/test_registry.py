from __future__ import annotations

import pytest

from fpatch.errors import PatchFileError, UnknownPatchError
from fpatch.registry import DefinitionTypes, PatchDefinition, PatchKind, PatchRegistry
from fpatch.tree import Atom, form


def _definition(identifier: str, kind: PatchKind, value: int = 1) -> PatchDefinition:
    return PatchDefinition(kind=kind, identifier=identifier, body=form("def", identifier, value))


def test_registry_keeps_one_definition_per_kind() -> None:
    registry = PatchRegistry()
    first = _definition("f", PatchKind.FUNCTION)
    replacement = _definition("f", PatchKind.FUNCTION, 2)
    variable = _definition("f", PatchKind.VARIABLE)

    assert registry.register(first) is None
    assert registry.register(variable) is None
    assert registry.register(replacement) is first

    assert len(registry) == 2
    assert registry.get("f", PatchKind.FUNCTION) is replacement
    assert registry.get("f", "variable") is variable
    assert registry.kinds("f") == [PatchKind.FUNCTION, PatchKind.VARIABLE]
    assert list(registry) == [replacement, variable]


def test_registry_keys_follow_declaration_order() -> None:
    registry = PatchRegistry()
    registry.register(_definition("b", PatchKind.FUNCTION))
    registry.register(_definition("a", PatchKind.COMPOSITE))

    assert registry.keys() == [("b", PatchKind.FUNCTION), ("a", PatchKind.COMPOSITE)]
    assert ("a", PatchKind.COMPOSITE) in registry
    assert ("a", "bogus") not in registry
    assert "a" not in registry


def test_require_raises_for_unknown_patch() -> None:
    registry = PatchRegistry()

    with pytest.raises(UnknownPatchError) as excinfo:
        registry.require("missing", PatchKind.VARIABLE)

    assert excinfo.value.details == {"identifier": "missing", "kind": "variable"}


def test_definition_types_classify_by_head() -> None:
    types = DefinitionTypes()

    assert types.classify(form("defun", "f", ["x"], "x")) == ("f", PatchKind.FUNCTION)
    assert types.classify(form("defcustom", "limit", 3)) == ("limit", PatchKind.VARIABLE)
    assert types.classify(form("define-minor-mode", "m")) == ("m", PatchKind.COMPOSITE)

    types.register("deftask", "composite")
    assert types.classify(form("deftask", "build")) == ("build", PatchKind.COMPOSITE)


@pytest.mark.parametrize(
    "body",
    [
        form("defun"),
        form("unknown-head", "f"),
        form(Atom("defun"), "f"),
        form("defun", Atom("f")),
        Atom(1),
    ],
)
def test_definition_types_reject_unclassifiable_bodies(body) -> None:
    with pytest.raises(PatchFileError):
        DefinitionTypes().classify(body)
