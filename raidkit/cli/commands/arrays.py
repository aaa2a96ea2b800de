"""
Existing array status and removal commands.
"""

from typing import NoReturn, Optional

import typer

from raidkit.cli.lib.config import load_config
from raidkit.cli.lib.validators import validate_array_name, validate_root
from raidkit.core import inventory
from raidkit.core.exceptions import RaidKitError
from raidkit.core.guard import classify
from raidkit.core.lifecycle import ArrayLifecycleManager, always_confirm
from raidkit.core.report import render_status_report

app = typer.Typer(help="Existing array status and removal")


def _fail(e: RaidKitError) -> NoReturn:
    typer.echo(f"Error: {e.message}", err=True)
    if e.remedy:
        typer.echo(f"  Remedy: {e.remedy}", err=True)
    raise typer.Exit(1)


def _prompt(message: str) -> bool:
    return typer.confirm(message, default=False)


@app.command()
def status():
    """
    List md arrays with their SYSTEM/DATA classification.
    """
    try:
        snapshot = inventory.capture_snapshot()
    except RaidKitError as e:
        _fail(e)

    verdicts = {a.name: classify(a, snapshot.arrays, snapshot) for a in snapshot.arrays}
    typer.echo(render_status_report(snapshot, verdicts))


@app.command()
def remove(
    array: Optional[str] = typer.Option(None, "--array", help="Remove only this array (e.g., md1)"),
    force: bool = typer.Option(False, "--force", help="Skip confirmation and allow forced unmount"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Preview every step without changing anything"),
):
    """
    Remove DATA arrays.

    Without --array every DATA array is removed after one confirmation.
    SYSTEM arrays are always preserved.
    """
    try:
        if array:
            validate_array_name(array)
        if not dry_run:
            validate_root()
    except ValueError as e:
        typer.echo(f"Error removing arrays: {e}", err=True)
        raise typer.Exit(1)

    cfg = load_config()
    manager = ArrayLifecycleManager(config=cfg, dry_run=dry_run)
    confirm = always_confirm if (force or dry_run) else _prompt
    try:
        batch = manager.teardown_batch([array] if array else None, force=force, confirm=confirm)
    except RaidKitError as e:
        _fail(e)

    for verdict in batch.preserved:
        typer.echo(f"Preserved SYSTEM array /dev/{verdict.array}: {verdict.reason}")

    if array and batch.preserved:
        typer.echo(f"Error: {array} backs the running system and cannot be removed", err=True)
        raise typer.Exit(1)

    if batch.cancelled:
        typer.echo("Cancelled")
        return

    if not batch.results:
        typer.echo("No data arrays to remove")
        return

    for result in batch.results:
        if result.ok:
            prefix = "[DRY RUN] Would remove" if dry_run else "Removed"
            typer.echo(f"{prefix} /dev/{result.array}")
            for warning in result.warnings:
                typer.echo(f"  Warning: {warning.message}", err=True)
        else:
            typer.echo(f"Failed to remove /dev/{result.array}: {result.error.message}", err=True)
            if result.error.remedy:
                typer.echo(f"  Remedy: {result.error.remedy}", err=True)
    for warning in batch.warnings:
        typer.echo(f"Warning: {warning.message}", err=True)

    if not batch.ok:
        raise typer.Exit(1)
