from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from fpatch.config import copy_config_template, load_config, write_config
from fpatch.errors import ConfigError
from fpatch.registry import PatchKind
from fpatch.tree import Directive


def _write(path: Path, text: str) -> Path:
    path.write_text(textwrap.dedent(text).lstrip(), encoding="utf-8")
    return path


def test_default_template_loads(tmp_path: Path) -> None:
    config_path = tmp_path / "config.yaml"
    write_config(config_path, copy_config_template())

    config = load_config(config_path)

    assert config.logging.level == "WARNING"
    assert config.patch_files(tmp_path) == [(tmp_path / "patches.yaml").resolve()]
    assert config.db_path(tmp_path) == (tmp_path / "data" / "fpatch.sqlite").resolve()
    assert config.tag_table().name_of(Directive.SPLICE) == "patch-splice"
    assert config.definition_type_table().kind_of("defcustom") is PatchKind.VARIABLE


def test_template_copies_are_independent() -> None:
    first = copy_config_template()
    first["patches"].append("extra.yaml")

    assert copy_config_template()["patches"] == ["patches.yaml"]


def test_custom_tags_and_definition_types(tmp_path: Path) -> None:
    config_path = _write(
        tmp_path / "config.yaml",
        """
        tags:
          add: el-patch-add
          literal: el-patch-literal
        definition_types:
          deftask: composite
        logging:
          level: debug
        """,
    )

    config = load_config(config_path)
    tags = config.tag_table()
    types = config.definition_type_table()

    assert tags.lookup("el-patch-add") is Directive.ADD
    assert tags.lookup("patch-add") is None
    assert tags.name_of(Directive.REMOVE) == "patch-remove"
    assert types.kind_of("deftask") is PatchKind.COMPOSITE
    assert types.kind_of("defun") is PatchKind.FUNCTION
    assert config.logging.level == "DEBUG"


def test_absolute_paths_are_kept(tmp_path: Path) -> None:
    db_path = tmp_path / "elsewhere" / "store.sqlite"
    config_path = _write(
        tmp_path / "config.yaml",
        f"""
        paths:
          db_path: "{db_path.as_posix()}"
        """,
    )

    assert load_config(config_path).db_path(tmp_path / "other") == db_path


@pytest.mark.parametrize(
    "text, message",
    [
        ("unknown_section: {}\n", "Invalid configuration"),
        ("logging:\n  level: LOUD\n", "Invalid configuration"),
        ("tags:\n  bogus: patch-bogus\n", "Invalid configuration"),
        ("definition_types:\n  deftask: macro\n", "Invalid configuration"),
        ("tags:\n  add: patch-remove\n", "Invalid tags"),
        ("tags:\n  add: ''\n", "Invalid tags"),
        ("- a\n- b\n", "must be a mapping"),
        ("project: [\n", "Failed to parse config"),
    ],
)
def test_invalid_configuration(tmp_path: Path, text: str, message: str) -> None:
    config_path = tmp_path / "config.yaml"
    config_path.write_text(text, encoding="utf-8")

    with pytest.raises(ConfigError) as excinfo:
        load_config(config_path)

    assert message in str(excinfo.value)


def test_missing_config_file(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="not found"):
        load_config(tmp_path / "absent.yaml")
