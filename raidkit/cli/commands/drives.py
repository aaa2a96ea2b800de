"""
Drive inventory, planning and array creation commands.
"""

from typing import List, NoReturn, Optional, Tuple

import typer

from raidkit.cli.lib.config import RaidKitConfig, load_config
from raidkit.cli.lib.validators import validate_device_path, validate_plan_id, validate_root, validate_tolerance
from raidkit.cli.lib.zfs import zfs_available
from raidkit.core import inventory, planner
from raidkit.core.exceptions import RaidKitError
from raidkit.core.grouping import group
from raidkit.core.lifecycle import ArrayLifecycleManager
from raidkit.core.models import DeviceGroup, RaidPlan
from raidkit.core.report import render_inventory, render_plan_report

app = typer.Typer(help="Drive inventory, planning and array creation")


def _fail(e: RaidKitError) -> NoReturn:
    typer.echo(f"Error: {e.message}", err=True)
    if e.remedy:
        typer.echo(f"  Remedy: {e.remedy}", err=True)
    raise typer.Exit(1)


def _plans(cfg: RaidKitConfig, tolerance: float) -> Tuple[List[DeviceGroup], List[RaidPlan], RaidPlan]:
    devices = inventory.candidate_devices(inventory.scan(mount_base=cfg.mount_base))
    groups = group(devices, tolerance)
    plans = planner.plan(groups, zfs_available=cfg.enable_zfs and zfs_available())
    return groups, plans, planner.recommend(plans)


def _execute(cfg: RaidKitConfig, chosen: RaidPlan, dry_run: bool, force: bool) -> None:
    if not chosen.layouts:
        typer.echo("No devices to configure")
        return

    if not dry_run and not force:
        prompt = (
            f"Apply {chosen.plan_id}? All data on {chosen.device_count} device(s) will be destroyed."
        )
        if not typer.confirm(prompt, default=False):
            typer.echo("Cancelled")
            return

    manager = ArrayLifecycleManager(config=cfg, dry_run=dry_run)
    try:
        results = manager.apply_plan(chosen)
    except RaidKitError as e:
        for warning in manager.warnings:
            typer.echo(f"Warning: {warning.message}", err=True)
        _fail(e)

    for array in results:
        mounts = ", ".join(array.mount_points) or "-"
        typer.echo(f"  {array.name}: {array.state.value} ({mounts})")
        for warning in array.warnings:
            typer.echo(f"  Warning: {warning.message}", err=True)
    for warning in manager.warnings:
        typer.echo(f"Warning: {warning.message}", err=True)

    if dry_run:
        typer.echo(f"[DRY RUN] Plan {chosen.plan_id} previewed, nothing changed")
    else:
        typer.echo(f"Plan {chosen.plan_id} applied successfully")


@app.command()
def scan():
    """
    List physical disks with size, model, serial and status.
    """
    try:
        devices = inventory.scan(mount_base=load_config().mount_base)
    except RaidKitError as e:
        _fail(e)

    typer.echo(render_inventory(devices))


@app.command()
def plan(
    tolerance: Optional[float] = typer.Option(None, "--tolerance", help="Size tolerance in percent (default from config)"),
):
    """
    Scan drives and preview the recommended layout with its alternatives.
    """
    cfg = load_config()
    tolerance_pct = cfg.size_tolerance_pct if tolerance is None else tolerance
    try:
        validate_tolerance(tolerance_pct)
        groups, _, best = _plans(cfg, tolerance_pct)
    except RaidKitError as e:
        _fail(e)
    except ValueError as e:
        typer.echo(f"Error planning drives: {e}", err=True)
        raise typer.Exit(1)

    typer.echo(render_plan_report(best, groups))


@app.command()
def apply(
    config: Optional[str] = typer.Option(None, "--config", help="Plan id to apply instead of the recommendation"),
    tolerance: Optional[float] = typer.Option(None, "--tolerance", help="Size tolerance in percent (default from config)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Preview every step without changing anything"),
    force: bool = typer.Option(False, "--force", help="Skip the confirmation prompt"),
):
    """
    Build the recommended (or selected) layout.

    Creates the arrays, formats them, mounts them under the mount base and
    registers them with the storage manager. Safe to re-run after an
    interruption.
    """
    cfg = load_config()
    tolerance_pct = cfg.size_tolerance_pct if tolerance is None else tolerance
    try:
        if config:
            validate_plan_id(config)
        validate_tolerance(tolerance_pct)
        if not dry_run:
            validate_root()

        groups, plans, best = _plans(cfg, tolerance_pct)
        chosen = best
        if config and config != best.plan_id:
            chosen = planner.find_plan(plans, config)
            chosen.alternatives = [p for p in [best] + best.alternatives if p is not chosen]
            chosen.rationale = f"Selected with --config (recommended: {best.plan_id})."
    except RaidKitError as e:
        _fail(e)
    except ValueError as e:
        typer.echo(f"Error applying plan: {e}", err=True)
        raise typer.Exit(1)

    typer.echo(render_plan_report(chosen, groups, dry_run=dry_run))
    _execute(cfg, chosen, dry_run=dry_run, force=force)


@app.command()
def create(
    devices: List[str] = typer.Argument(..., help="Devices to build the array from (e.g., /dev/sdb /dev/sdc)"),
    level: str = typer.Option(..., "--level", help="RAID level: 1, 5, 6 or 10"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Preview every step without changing anything"),
    force: bool = typer.Option(False, "--force", help="Skip the confirmation prompt"),
):
    """
    Build one array from an explicit level and device list.

    Only disks that `drives plan` would consider are accepted. The array is
    formatted, mounted and registered exactly like a planned one.
    """
    cfg = load_config()
    try:
        for path in devices:
            validate_device_path(path)
        if not dry_run:
            validate_root()
        candidates = inventory.candidate_devices(inventory.scan(mount_base=cfg.mount_base))
        chosen = planner.custom_plan(candidates, devices, level)
    except RaidKitError as e:
        _fail(e)
    except ValueError as e:
        typer.echo(f"Error creating array: {e}", err=True)
        raise typer.Exit(1)

    typer.echo(render_plan_report(chosen, chosen.groups, dry_run=dry_run))
    _execute(cfg, chosen, dry_run=dry_run, force=force)
