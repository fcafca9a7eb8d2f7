"""Plain-data encoding of trees and loading of YAML patch files.

Encoding rules:
    list / tuple       -> Form
    str                -> symbol
    {"str": "text"}    -> string literal
    int, float, bool   -> atom
    None               -> atom holding ``None``
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from .errors import PatchFileError
from .registry import DefinitionTypes, PatchDefinition, PatchKind
from .tree import Atom, Form, Node, Symbol

STRING_KEY = "str"


def to_data(node: Node) -> Any:
    """Convert a tree into JSON/YAML-friendly Python data."""
    if isinstance(node, Form):
        return [to_data(item) for item in node.items]
    if not isinstance(node, Atom):
        raise PatchFileError(f"Cannot encode non-tree value {node!r}")
    value = node.value
    if isinstance(value, Symbol):
        return value.name
    if isinstance(value, str):
        return {STRING_KEY: value}
    if value is None or isinstance(value, (bool, int, float)):
        return value
    raise PatchFileError(f"Cannot encode atom value of type {type(value).__name__}")


def from_data(data: Any) -> Node:
    """Inverse of :func:`to_data`."""
    if isinstance(data, (list, tuple)):
        return Form(tuple(from_data(item) for item in data))
    if isinstance(data, str):
        if not data:
            raise PatchFileError("Symbols must not be empty")
        return Atom(Symbol(data))
    if isinstance(data, Mapping):
        if set(data) != {STRING_KEY} or not isinstance(data[STRING_KEY], str):
            raise PatchFileError(f"Unsupported mapping in tree data: {dict(data)!r}")
        return Atom(data[STRING_KEY])
    if data is None or isinstance(data, (bool, int, float)):
        return Atom(data)
    raise PatchFileError(f"Unsupported value in tree data: {data!r}")


def dumps(node: Node) -> str:
    """Serialise a tree to a compact JSON string."""
    return json.dumps(to_data(node), separators=(",", ":"), ensure_ascii=True)


def loads(text: Optional[str]) -> Optional[Node]:
    """Decode a value produced by :func:`dumps`.

    ``None`` stands for a missing value (a NULL column); JSON ``null`` decodes
    to ``Atom(None)``.
    """
    if text is None:
        return None
    try:
        data = json.loads(text)
    except ValueError as error:
        raise PatchFileError(f"Invalid encoded tree: {error}") from error
    return from_data(data)


def definition_from_data(entry: Mapping[str, Any], *, types: DefinitionTypes | None = None) -> PatchDefinition:
    """Build a :class:`PatchDefinition` from one patch-file entry."""
    if "body" not in entry:
        raise PatchFileError(f"Patch entry is missing 'body': {dict(entry)!r}")
    unknown = set(entry) - {"identifier", "kind", "body"}
    if unknown:
        raise PatchFileError(f"Unknown patch entry field(s): {', '.join(sorted(unknown))}")

    body = from_data(entry["body"])
    identifier = entry.get("identifier")
    kind_value = entry.get("kind")
    if identifier is None or kind_value is None:
        classified_identifier, classified_kind = (types or DefinitionTypes()).classify(body)
        identifier = identifier if identifier is not None else classified_identifier
        kind_value = kind_value if kind_value is not None else classified_kind

    if not isinstance(identifier, str) or not identifier:
        raise PatchFileError(f"Patch identifier must be a non-empty string, got {identifier!r}")
    try:
        kind = PatchKind(kind_value)
    except ValueError as error:
        valid = ", ".join(item.value for item in PatchKind)
        raise PatchFileError(f"Unknown patch kind '{kind_value}'. Expected one of: {valid}") from error
    return PatchDefinition(kind=kind, identifier=identifier, body=body)


def definition_to_data(definition: PatchDefinition) -> Dict[str, Any]:
    return {
        "identifier": definition.identifier,
        "kind": definition.kind.value,
        "body": to_data(definition.body),
    }


def load_patch_file(path: Path | str, *, types: DefinitionTypes | None = None) -> List[PatchDefinition]:
    """Load every patch declared in a YAML patch file."""
    patch_path = Path(path)
    if not patch_path.exists():
        raise PatchFileError(f"Patch file not found: {patch_path}")
    try:
        with patch_path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except yaml.YAMLError as error:
        raise PatchFileError(f"Failed to parse patch file {patch_path}: {error}") from error

    if not isinstance(data, Mapping):
        raise PatchFileError(f"Expected mapping at top level of {patch_path}")
    entries = data.get("patches") or []
    if not isinstance(entries, list):
        raise PatchFileError(f"'patches' in {patch_path} must be a list")

    definitions: List[PatchDefinition] = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, Mapping):
            raise PatchFileError(f"Patch #{index} in {patch_path} must be a mapping")
        try:
            definitions.append(definition_from_data(entry, types=types))
        except PatchFileError as error:
            raise PatchFileError(
                f"Patch #{index} in {patch_path}: {error}",
                details={"path": patch_path.as_posix(), "index": index},
            ) from error
    return definitions


def write_patch_file(path: Path | str, definitions: List[PatchDefinition]) -> None:
    """Persist ``definitions`` as a YAML patch file."""
    patch_path = Path(path)
    patch_path.parent.mkdir(parents=True, exist_ok=True)
    payload = {"patches": [definition_to_data(definition) for definition in definitions]}
    with patch_path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(payload, handle, sort_keys=False)


__all__ = [
    "definition_from_data",
    "definition_to_data",
    "dumps",
    "from_data",
    "load_patch_file",
    "loads",
    "to_data",
    "write_patch_file",
]
