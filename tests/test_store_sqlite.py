from __future__ import annotations

from fpatch.lifecycle import PatchController, UnpatchStatus
from fpatch.registry import PatchDefinition, PatchKind, PatchRegistry
from fpatch.store import DefinitionStore, InMemoryDefinitionStore, SQLiteDefinitionStore
from fpatch.tree import Atom, form


def test_sqlite_store_roundtrip(tmp_path) -> None:
    db_path = tmp_path / "nested" / "fpatch.sqlite"
    value = form("message", Atom("hi \"there\""), 1.5, True, None, ["list", -3])

    with SQLiteDefinitionStore(db_path) as store:
        assert isinstance(store, DefinitionStore)
        assert store.find_live_definition("greet", PatchKind.FUNCTION) is None

        store.set_live_definition("greet", PatchKind.FUNCTION, value)
        store.set_live_definition("greet", PatchKind.VARIABLE, form("defvar", "greet"))

        assert store.find_live_definition("greet", PatchKind.FUNCTION) == value
        assert store.keys() == [("greet", PatchKind.FUNCTION), ("greet", PatchKind.VARIABLE)]

        store.remove_live_definition("greet", PatchKind.FUNCTION)
        assert store.find_live_definition("greet", PatchKind.FUNCTION) is None

    with SQLiteDefinitionStore(db_path) as reopened:
        assert reopened.find_live_definition("greet", PatchKind.VARIABLE) == form("defvar", "greet")


def test_snapshots_survive_reopening_the_store(tmp_path) -> None:
    db_path = tmp_path / "fpatch.sqlite"
    original = form("defun", "f", ["x"], "x")
    definition = PatchDefinition(
        kind=PatchKind.FUNCTION,
        identifier="f",
        body=form("defun", "f", ["x"], ["patch-wrap", ["log", "x"]]),
    )

    with SQLiteDefinitionStore(db_path) as store:
        store.set_live_definition("f", PatchKind.FUNCTION, original)
        controller = PatchController(PatchRegistry(), store, store.snapshots)
        controller.declare(definition)
        controller.apply("f", PatchKind.FUNCTION)
        assert store.snapshots.installed() == [("f", PatchKind.FUNCTION)]

    with SQLiteDefinitionStore(db_path) as store:
        record = store.snapshots.get("f", PatchKind.FUNCTION)
        assert record is not None
        assert record.pristine == original
        assert record.current_applied == form("defun", "f", ["x"], ["log", "x"])

        controller = PatchController(PatchRegistry(), store, store.snapshots)
        controller.register(definition)
        result = controller.unpatch("f", PatchKind.FUNCTION)

        assert result.status is UnpatchStatus.RESTORED
        assert store.find_live_definition("f", PatchKind.FUNCTION) == original
        assert store.snapshots.installed() == []


def test_sqlite_snapshot_without_pristine_value(tmp_path) -> None:
    with SQLiteDefinitionStore(tmp_path / "fpatch.sqlite") as store:
        record = store.snapshots.record_apply("v", PatchKind.VARIABLE, live_before=None, applied=form("defvar", "v"))
        again = store.snapshots.record_apply(
            "v", PatchKind.VARIABLE, live_before=form("defvar", "v"), applied=form("defvar", "v", 2)
        )

        assert record.pristine is None
        assert again.pristine is None
        stored = store.snapshots.get("v", PatchKind.VARIABLE)
        assert stored is not None
        assert stored.pristine is None
        assert stored.current_applied == form("defvar", "v", 2)


def test_in_memory_store_satisfies_protocol() -> None:
    store = InMemoryDefinitionStore({("f", "function"): form("f")})

    assert isinstance(store, DefinitionStore)
    assert store.find_live_definition("f", PatchKind.FUNCTION) == form("f")
    store.remove_live_definition("f", PatchKind.FUNCTION)
    store.remove_live_definition("f", PatchKind.FUNCTION)
    assert store.keys() == []


def test_nil_atom_survives_as_live_and_pristine_value(tmp_path) -> None:
    definition = PatchDefinition(
        kind=PatchKind.VARIABLE,
        identifier="v",
        body=form("defvar", "v", ["patch-swap", None, 1]),
    )

    with SQLiteDefinitionStore(tmp_path / "fpatch.sqlite") as store:
        store.set_live_definition("v", PatchKind.VARIABLE, Atom(None))
        assert store.find_live_definition("v", PatchKind.VARIABLE) == Atom(None)

        controller = PatchController(PatchRegistry(), store, store.snapshots)
        controller.declare(definition)
        record = store.snapshots.get("v", PatchKind.VARIABLE)
        assert record is not None
        assert record.pristine == Atom(None)

        result = controller.unpatch("v", PatchKind.VARIABLE)

        assert result.status is UnpatchStatus.RESTORED
        assert store.find_live_definition("v", PatchKind.VARIABLE) == Atom(None)
