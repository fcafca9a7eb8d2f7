"""CLI commands for declaring, validating and restoring patches."""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

import typer
import yaml

from .codec import from_data, load_patch_file
from .config import (
    DEFAULT_CONFIG_NAME,
    EngineConfig,
    copy_config_template,
    load_config,
    write_config,
)
from .errors import ConfigError, EmptyRegistryError, PatchError
from .lifecycle import PatchController, UnpatchStatus
from .registry import PatchKey, PatchKind, PatchRegistry
from .store import PristineLookup, SQLiteDefinitionStore
from .tree import render

APP_HELP = "Maintain patched copies of external definitions."
CONFIG_HELP = "Path to the fpatch configuration file."

PATCH_FILE_TEMPLATE = """\
# Each entry is a definition annotated with patch directives.
# Lists are forms, strings are symbols, {str: "..."} is a string literal.
patches: []
"""

app = typer.Typer(help=APP_HELP)


@dataclass(slots=True)
class Session:
    """Open store plus the controller built from the loaded configuration."""

    store: SQLiteDefinitionStore
    controller: PatchController


def _configure_logging(level: str, *, verbose: bool) -> None:
    resolved = logging.DEBUG if verbose else getattr(logging, level.upper(), logging.WARNING)
    logging.basicConfig(level=resolved, format="%(levelname)s %(name)s: %(message)s")


def _load_config_or_exit(config_path: Path) -> EngineConfig:
    try:
        return load_config(config_path)
    except ConfigError as error:
        typer.echo(str(error))
        raise typer.Exit(code=1) from error


@contextmanager
def _open_session(config: str, *, verbose: bool = False) -> Iterator[Session]:
    """Load configuration, open the store, and register every configured patch."""
    config_path = Path(config)
    engine_config = _load_config_or_exit(config_path)
    _configure_logging(engine_config.logging.level, verbose=verbose)

    base = config_path.resolve().parent
    types = engine_config.definition_type_table()
    with SQLiteDefinitionStore(engine_config.db_path(base)) as store:
        controller = PatchController(
            PatchRegistry(),
            store,
            store.snapshots,
            source=PristineLookup(store, store.snapshots),
            tags=engine_config.tag_table(),
        )
        try:
            for patch_file in engine_config.patch_files(base):
                for definition in load_patch_file(patch_file, types=types):
                    controller.register(definition)
        except PatchError as error:
            typer.echo(f"Failed to load patches: {error}")
            raise typer.Exit(code=1) from error
        yield Session(store=store, controller=controller)


def _parse_kind(kind: Optional[str]) -> Optional[PatchKind]:
    if kind is None:
        return None
    try:
        return PatchKind(kind)
    except ValueError as error:
        valid = ", ".join(item.value for item in PatchKind)
        raise typer.BadParameter(f"Unknown kind '{kind}'. Expected one of: {valid}") from error


def _select_patches(
    controller: PatchController,
    identifier: Optional[str],
    kind: Optional[str],
) -> List[PatchKey]:
    """Resolve CLI selection options into registered ``(identifier, kind)`` pairs."""
    parsed_kind = _parse_kind(kind)
    keys = controller.patches()
    if identifier is None:
        return [key for key in keys if parsed_kind is None or key[1] is parsed_kind]

    matches = [
        (identifier, registered)
        for registered in controller.registry.kinds(identifier)
        if parsed_kind is None or registered is parsed_kind
    ]
    if not matches:
        label = f"{parsed_kind.value} '{identifier}'" if parsed_kind else f"'{identifier}'"
        typer.echo(f"There is no patch for {label}")
        raise typer.Exit(code=1)
    return matches


def _single_patch(controller: PatchController, identifier: str, kind: Optional[str]) -> Tuple[str, PatchKind]:
    matches = _select_patches(controller, identifier, kind)
    if len(matches) > 1:
        kinds = ", ".join(key[1].value for key in matches)
        typer.echo(f"'{identifier}' is patched as several kinds ({kinds}); pass --kind")
        raise typer.Exit(code=1)
    return matches[0]


@app.command()
def init(
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help=CONFIG_HELP),
) -> None:
    """Write a default configuration and an empty patch file."""
    config_path = Path(config)
    if config_path.exists():
        typer.echo(f"Configuration already exists at {config_path}")
    else:
        write_config(config_path, copy_config_template())
        typer.echo(f"Wrote default configuration to {config_path}")

    engine_config = _load_config_or_exit(config_path)
    for patch_file in engine_config.patch_files(config_path.resolve().parent):
        if patch_file.exists():
            continue
        patch_file.parent.mkdir(parents=True, exist_ok=True)
        patch_file.write_text(PATCH_FILE_TEMPLATE, encoding="utf-8")
        typer.echo(f"Created patch file {patch_file}")


@app.command("list")
def list_patches(
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help=CONFIG_HELP),
) -> None:
    """List every declared patch and whether it is installed."""
    with _open_session(config) as session:
        controller = session.controller
        keys = controller.patches()
        if not keys:
            typer.echo("No patches defined.")
            return
        for identifier, kind in keys:
            state = "installed" if controller.is_installed(identifier, kind) else "declared"
            typer.echo(f"- {kind.value} {identifier} [{state}]")


@app.command()
def apply(
    identifier: Optional[str] = typer.Option(None, "--identifier", "-i", help="Only apply this identifier."),
    kind: Optional[str] = typer.Option(None, "--kind", "-k", help="Only apply patches of this kind."),
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help=CONFIG_HELP),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Install the patched view of the selected patches."""
    with _open_session(config, verbose=verbose) as session:
        selected = _select_patches(session.controller, identifier, kind)
        if not selected:
            typer.echo("No patches defined.")
            return
        for key in selected:
            try:
                result = session.controller.apply(*key)
            except PatchError as error:
                typer.echo(f"Failed to apply {key[1].value} '{key[0]}': {error}")
                raise typer.Exit(code=1) from error
            note = " (first install)" if result.first_apply else ""
            typer.echo(f"Applied {result.kind.value} '{result.identifier}'{note}")


@app.command()
def validate(
    as_json: bool = typer.Option(False, "--json", help="Print the report as JSON."),
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help=CONFIG_HELP),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Compare every patch's original view against the live definition."""
    with _open_session(config, verbose=verbose) as session:
        try:
            summary = session.controller.validate_all()
        except EmptyRegistryError as error:
            typer.echo(str(error))
            raise typer.Exit(code=2) from error
        except PatchError as error:
            typer.echo(f"Validation aborted: {error}")
            raise typer.Exit(code=1) from error

    if as_json:
        typer.echo(json.dumps(summary.to_dict(), indent=2))
    else:
        typer.echo(summary.format_summary())
    if not summary.ok:
        raise typer.Exit(code=1)


@app.command()
def unpatch(
    identifier: Optional[str] = typer.Option(None, "--identifier", "-i", help="Only unpatch this identifier."),
    kind: Optional[str] = typer.Option(None, "--kind", "-k", help="Only unpatch patches of this kind."),
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help=CONFIG_HELP),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """Restore the definitions that existed before patches were applied."""
    refused = False
    with _open_session(config, verbose=verbose) as session:
        controller = session.controller
        selected = [
            key for key in _select_patches(controller, identifier, kind) if controller.is_installed(*key)
        ]
        if not selected:
            typer.echo("Nothing to unpatch.")
            return
        for key in selected:
            try:
                result = controller.unpatch(*key)
            except PatchError as error:
                typer.echo(f"Failed to unpatch {key[1].value} '{key[0]}': {error}")
                raise typer.Exit(code=1) from error
            typer.echo(result.describe())
            refused = refused or result.status is UnpatchStatus.REFUSED
    if refused:
        raise typer.Exit(code=1)


@app.command()
def show(
    identifier: str = typer.Argument(..., help="Identifier of the patched definition."),
    kind: Optional[str] = typer.Option(None, "--kind", "-k", help="Kind of the definition."),
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help=CONFIG_HELP),
) -> None:
    """Print the original, patched and live views of a patch."""
    with _open_session(config) as session:
        key = _single_patch(session.controller, identifier, kind)
        try:
            original, patched = session.controller.views(*key)
        except PatchError as error:
            typer.echo(f"Failed to resolve {key[1].value} '{key[0]}': {error}")
            raise typer.Exit(code=1) from error
        live = session.store.find_live_definition(*key)

    typer.echo(f"Original: {render(original)}")
    typer.echo(f"Patched:  {render(patched)}")
    typer.echo(f"Live:     {render(live)}")


@app.command()
def live(
    identifier: str = typer.Argument(..., help="Identifier of the definition."),
    kind: str = typer.Option(PatchKind.FUNCTION.value, "--kind", "-k", help="Kind of the definition."),
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help=CONFIG_HELP),
) -> None:
    """Print the live definition stored for an identifier."""
    parsed_kind = _parse_kind(kind)
    assert parsed_kind is not None
    with _open_session(config) as session:
        value = session.store.find_live_definition(identifier, parsed_kind)
    if value is None:
        typer.echo(f"No live definition for {parsed_kind.value} '{identifier}'")
        raise typer.Exit(code=1)
    typer.echo(render(value))


@app.command("set-live")
def set_live(
    identifier: str = typer.Argument(..., help="Identifier of the definition."),
    source: Path = typer.Argument(..., help="YAML file holding the definition tree."),
    kind: str = typer.Option(PatchKind.FUNCTION.value, "--kind", "-k", help="Kind of the definition."),
    config: str = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help=CONFIG_HELP),
) -> None:
    """Overwrite the live definition of an identifier."""
    parsed_kind = _parse_kind(kind)
    assert parsed_kind is not None
    if not source.exists():
        raise typer.BadParameter(f"Definition file not found: {source}")
    try:
        with source.open("r", encoding="utf-8") as handle:
            value = from_data(yaml.safe_load(handle))
    except (yaml.YAMLError, PatchError) as error:
        typer.echo(f"Failed to read definition: {error}")
        raise typer.Exit(code=1) from error

    with _open_session(config) as session:
        session.store.set_live_definition(identifier, parsed_kind, value)
    typer.echo(f"Set live {parsed_kind.value} '{identifier}'")


if __name__ == "__main__":
    app()
