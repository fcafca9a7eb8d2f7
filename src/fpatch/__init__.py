"""Derive original and patched views from annotated definitions and manage their installation."""

from .bindings import BindingTable
from .errors import (
    ConfigError,
    DirectiveArityError,
    DirectiveTypeError,
    EmptyRegistryError,
    PatchError,
    PatchFileError,
    TrimRangeError,
    UnknownPatchError,
)
from .lifecycle import (
    ApplyResult,
    PatchController,
    UnpatchResult,
    UnpatchStatus,
    ValidationReport,
    ValidationStatus,
    ValidationSummary,
)
from .registry import DefinitionTypes, PatchDefinition, PatchKind, PatchRegistry
from .resolver import contains_directives, resolve, resolve_definition, resolve_views
from .store import (
    DefinitionLookup,
    DefinitionStore,
    InMemoryDefinitionStore,
    PristineLookup,
    SnapshotRecord,
    SnapshotTable,
    SQLiteDefinitionStore,
)
from .tree import Atom, Directive, Form, Node, Symbol, TagTable, form, render, sym

__all__ = [
    "ApplyResult",
    "Atom",
    "BindingTable",
    "ConfigError",
    "DefinitionLookup",
    "DefinitionStore",
    "DefinitionTypes",
    "Directive",
    "DirectiveArityError",
    "DirectiveTypeError",
    "EmptyRegistryError",
    "Form",
    "InMemoryDefinitionStore",
    "Node",
    "PatchController",
    "PatchDefinition",
    "PatchError",
    "PatchFileError",
    "PatchKind",
    "PatchRegistry",
    "PristineLookup",
    "SQLiteDefinitionStore",
    "SnapshotRecord",
    "SnapshotTable",
    "Symbol",
    "TagTable",
    "TrimRangeError",
    "UnknownPatchError",
    "UnpatchResult",
    "UnpatchStatus",
    "ValidationReport",
    "ValidationStatus",
    "ValidationSummary",
    "contains_directives",
    "form",
    "render",
    "resolve",
    "resolve_definition",
    "resolve_views",
    "sym",
]
