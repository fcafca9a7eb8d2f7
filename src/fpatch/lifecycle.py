"""Declare, validate, apply and unpatch registered patch definitions.

``PatchController`` ties the resolver to a :class:`PatchRegistry`, an external
:class:`DefinitionStore` and an installed-state side-table.  Every operation
resolves the annotated source before touching the store, so malformed
directives raise without mutating external state.  Drift between the store
and what the engine expects is reported through result statuses and warnings,
never by raising.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .errors import EmptyRegistryError
from .registry import PatchDefinition, PatchKey, PatchKind, PatchRegistry
from .resolver import resolve_views
from .store import DefinitionLookup, DefinitionStore, SnapshotStore, SnapshotTable
from .tree import Node, TagTable, render

LOGGER = logging.getLogger(__name__)
TELEMETRY_LOGGER = logging.getLogger("fpatch.telemetry")


class ValidationStatus(str, Enum):
    """Outcome of comparing an original view against the live definition."""

    VALID = "valid"
    MISMATCH = "mismatch"
    NOT_FOUND = "not_found"


class UnpatchStatus(str, Enum):
    """Outcome of restoring a definition to its pre-patch state."""

    RESTORED = "restored"
    REMOVED = "removed"
    REFUSED = "refused"
    NOT_INSTALLED = "not_installed"


@dataclass(slots=True)
class ValidationReport:
    """Validation result for a single patch."""

    identifier: str
    kind: PatchKind
    status: ValidationStatus
    expected: Node
    actual: Optional[Node] = None

    @property
    def ok(self) -> bool:
        return self.status is ValidationStatus.VALID

    def describe(self) -> str:
        label = f"{self.kind.value} '{self.identifier}'"
        if self.status is ValidationStatus.VALID:
            return f"{label}: valid"
        if self.status is ValidationStatus.NOT_FOUND:
            return f"{label}: definition not found"
        return f"{label}: definition has changed"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "identifier": self.identifier,
            "kind": self.kind.value,
            "status": self.status.value,
            "expected": render(self.expected),
            "actual": None if self.actual is None else render(self.actual),
        }


@dataclass(slots=True)
class ValidationSummary:
    """Accumulated validation results across the registry."""

    reports: List[ValidationReport] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(report.ok for report in self.reports)

    @property
    def failures(self) -> List[ValidationReport]:
        return [report for report in self.reports if not report.ok]

    def count(self, status: ValidationStatus) -> int:
        return sum(1 for report in self.reports if report.status is status)

    def format_summary(self) -> str:
        lines = [
            f"Validated {len(self.reports)} patch(es): "
            f"{self.count(ValidationStatus.VALID)} valid, "
            f"{self.count(ValidationStatus.MISMATCH)} changed, "
            f"{self.count(ValidationStatus.NOT_FOUND)} not found"
        ]
        for report in self.failures:
            lines.append(f"- {report.describe()}")
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        return {"ok": self.ok, "reports": [report.to_dict() for report in self.reports]}


@dataclass(slots=True)
class ApplyResult:
    """Outcome of installing a patched view."""

    identifier: str
    kind: PatchKind
    applied: Node
    pristine: Optional[Node]
    first_apply: bool


@dataclass(slots=True)
class UnpatchResult:
    """Outcome of an unpatch attempt."""

    identifier: str
    kind: PatchKind
    status: UnpatchStatus
    live: Optional[Node] = None
    expected: Optional[Node] = None
    restored: Optional[Node] = None
    patch_changed: bool = False

    @property
    def ok(self) -> bool:
        return self.status in (UnpatchStatus.RESTORED, UnpatchStatus.REMOVED)

    def describe(self) -> str:
        label = f"{self.kind.value} '{self.identifier}'"
        if self.status is UnpatchStatus.RESTORED:
            return f"{label}: restored pristine definition"
        if self.status is UnpatchStatus.REMOVED:
            return f"{label}: removed (no definition existed before patching)"
        if self.status is UnpatchStatus.NOT_INSTALLED:
            return f"{label}: not installed"
        return f"{label}: refused, live definition changed since it was applied"


def _serialise_event_value(value: Any) -> Any:
    """Convert telemetry payload values into JSON-friendly representations."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, Node):
        return render(value)
    if isinstance(value, (list, tuple, set)):
        return [_serialise_event_value(item) for item in value]
    if isinstance(value, Mapping):
        return {str(key): _serialise_event_value(child) for key, child in value.items()}
    return str(value)


def _emit_patch_event(event: str, **fields: Any) -> None:
    """Log one structured telemetry event as compact JSON."""
    if not TELEMETRY_LOGGER.isEnabledFor(logging.INFO):
        return
    payload = {"event": event, "timestamp": datetime.now(timezone.utc).isoformat()}
    for key, value in fields.items():
        payload[key] = _serialise_event_value(value)
    TELEMETRY_LOGGER.info(json.dumps(payload, separators=(",", ":"), ensure_ascii=True))


class PatchController:
    """Lifecycle operations over a registry and an external definition store.

    ``source`` is where validation looks for the upstream definition; it
    defaults to ``store``.  Hosts calling in from several threads must
    serialise ``apply``/``unpatch`` per identifier themselves.
    """

    def __init__(
        self,
        registry: PatchRegistry,
        store: DefinitionStore,
        snapshots: SnapshotStore | None = None,
        *,
        source: DefinitionLookup | None = None,
        tags: TagTable | None = None,
    ) -> None:
        self.registry = registry
        self.store = store
        self.snapshots: SnapshotStore = snapshots if snapshots is not None else SnapshotTable()
        self.source: DefinitionLookup = source if source is not None else store
        self.tags = tags

    # Registration ---------------------------------------------------------------------
    def register(self, definition: PatchDefinition) -> None:
        """Record ``definition`` without installing it."""
        resolve_views(definition, tags=self.tags)
        self.registry.register(definition)
        _emit_patch_event("patch_registered", identifier=definition.identifier, kind=definition.kind)

    def declare(self, definition: PatchDefinition) -> ApplyResult:
        """Register ``definition`` and immediately install its patched view."""
        self.register(definition)
        return self.apply(definition.identifier, definition.kind)

    def patches(self) -> List[PatchKey]:
        return self.registry.keys()

    def views(self, identifier: str, kind: PatchKind | str) -> Tuple[Node, Node]:
        """Return the resolved ``(original, patched)`` bodies of a patch."""
        definition = self.registry.require(identifier, kind)
        return resolve_views(definition, tags=self.tags)

    def is_installed(self, identifier: str, kind: PatchKind | str) -> bool:
        return self.snapshots.get(identifier, PatchKind(kind)) is not None

    # Apply ----------------------------------------------------------------------------
    def apply(self, identifier: str, kind: PatchKind | str) -> ApplyResult:
        """Install the patched view, snapshotting the pristine value on first use."""
        definition = self.registry.require(identifier, kind)
        kind = definition.kind
        _, patched = resolve_views(definition, tags=self.tags)

        live_before = self.store.find_live_definition(identifier, kind)
        first_apply = self.snapshots.get(identifier, kind) is None
        self.store.set_live_definition(identifier, kind, patched)
        record = self.snapshots.record_apply(identifier, kind, live_before=live_before, applied=patched)

        LOGGER.info("Applied %s patch for '%s'", kind.value, identifier)
        _emit_patch_event(
            "patch_applied",
            identifier=identifier,
            kind=kind,
            first_apply=first_apply,
            had_pristine=record.pristine is not None,
        )
        return ApplyResult(
            identifier=identifier,
            kind=kind,
            applied=patched,
            pristine=record.pristine,
            first_apply=first_apply,
        )

    # Validation -----------------------------------------------------------------------
    def validate(self, identifier: str, kind: PatchKind | str) -> ValidationReport:
        """Compare the original view against the live definition."""
        definition = self.registry.require(identifier, kind)
        kind = definition.kind
        original, _ = resolve_views(definition, tags=self.tags)

        try:
            actual = self.source.find_live_definition(identifier, kind)
        except LookupError as error:
            LOGGER.debug("Lookup of %s '%s' failed: %s", kind.value, identifier, error)
            actual = None

        if actual is None:
            status = ValidationStatus.NOT_FOUND
        elif actual == original:
            status = ValidationStatus.VALID
        else:
            status = ValidationStatus.MISMATCH

        report = ValidationReport(
            identifier=identifier,
            kind=kind,
            status=status,
            expected=original,
            actual=actual,
        )
        if not report.ok:
            LOGGER.warning("Patch validation failed: %s", report.describe())
        _emit_patch_event("patch_validated", identifier=identifier, kind=kind, status=status)
        return report

    def validate_all(self) -> ValidationSummary:
        """Validate every registered patch, accumulating failures."""
        keys = self.registry.keys()
        if not keys:
            raise EmptyRegistryError("No patches defined")
        summary = ValidationSummary()
        for identifier, kind in keys:
            summary.reports.append(self.validate(identifier, kind))
        return summary

    # Unpatch --------------------------------------------------------------------------
    def unpatch(self, identifier: str, kind: PatchKind | str) -> UnpatchResult:
        """Restore the definition recorded before the first apply.

        The restore only happens while the live definition still equals the
        value this controller last installed.
        """
        definition = self.registry.require(identifier, kind)
        kind = definition.kind
        _, patched = resolve_views(definition, tags=self.tags)

        record = self.snapshots.get(identifier, kind)
        if record is None:
            LOGGER.warning("Cannot unpatch %s '%s': it is not installed", kind.value, identifier)
            return UnpatchResult(identifier=identifier, kind=kind, status=UnpatchStatus.NOT_INSTALLED)

        patch_changed = patched != record.current_applied
        if patch_changed:
            LOGGER.info("Patch for %s '%s' changed since it was applied", kind.value, identifier)

        live = self.store.find_live_definition(identifier, kind)
        if live != record.current_applied:
            LOGGER.warning(
                "Refusing to unpatch %s '%s': live definition changed since it was applied",
                kind.value,
                identifier,
            )
            _emit_patch_event("patch_unpatch_refused", identifier=identifier, kind=kind)
            return UnpatchResult(
                identifier=identifier,
                kind=kind,
                status=UnpatchStatus.REFUSED,
                live=live,
                expected=record.current_applied,
                patch_changed=patch_changed,
            )

        if record.pristine is None:
            self.store.remove_live_definition(identifier, kind)
            status = UnpatchStatus.REMOVED
        else:
            self.store.set_live_definition(identifier, kind, record.pristine)
            status = UnpatchStatus.RESTORED
        self.snapshots.clear(identifier, kind)

        LOGGER.info("Unpatched %s '%s' (%s)", kind.value, identifier, status.value)
        _emit_patch_event("patch_unpatched", identifier=identifier, kind=kind, status=status)
        return UnpatchResult(
            identifier=identifier,
            kind=kind,
            status=status,
            live=live,
            expected=record.current_applied,
            restored=record.pristine,
            patch_changed=patch_changed,
        )

    def unpatch_all(self) -> List[UnpatchResult]:
        """Unpatch every registered patch that is currently installed."""
        return [
            self.unpatch(identifier, kind)
            for identifier, kind in self.registry.keys()
            if self.is_installed(identifier, kind)
        ]


__all__ = [
    "ApplyResult",
    "PatchController",
    "UnpatchResult",
    "UnpatchStatus",
    "ValidationReport",
    "ValidationStatus",
    "ValidationSummary",
]
