from __future__ import annotations

import sys
import textwrap
from dataclasses import dataclass
from pathlib import Path

import pytest
import yaml

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from fpatch.lifecycle import PatchController  # noqa: E402
from fpatch.registry import PatchRegistry  # noqa: E402
from fpatch.store import InMemoryDefinitionStore, SnapshotTable  # noqa: E402


@pytest.fixture()
def store() -> InMemoryDefinitionStore:
    return InMemoryDefinitionStore()


@pytest.fixture()
def controller(store: InMemoryDefinitionStore) -> PatchController:
    return PatchController(PatchRegistry(), store, SnapshotTable())


@dataclass(slots=True)
class PatchProject:
    """Fixture payload: a config file, a patch file and a database path."""

    root: Path
    config_path: Path
    patch_path: Path
    db_path: Path

    def write_patches(self, text: str) -> None:
        self.patch_path.write_text(textwrap.dedent(text).lstrip(), encoding="utf-8")


@pytest.fixture()
def patch_project(tmp_path: Path) -> PatchProject:
    """Create a project directory with configuration for CLI tests."""

    root = tmp_path / "project"
    root.mkdir()
    config_path = root / "config.yaml"
    patch_path = root / "patches.yaml"
    db_path = root / "data" / "fpatch.sqlite"

    config = {
        "project": {"name": "demo"},
        "paths": {"data": "data", "db_path": "data/fpatch.sqlite"},
        "patches": ["patches.yaml"],
        "logging": {"level": "WARNING"},
    }
    with config_path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(config, handle, sort_keys=False)
    patch_path.write_text("patches: []\n", encoding="utf-8")

    return PatchProject(root=root, config_path=config_path, patch_path=patch_path, db_path=db_path)
