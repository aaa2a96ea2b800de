#!/usr/bin/env python3
"""
Main CLI entry point using Typer.
"""

import sys

import typer

from raidkit.cli.commands import arrays, drives
from raidkit.cli.lib.config import load_config
from raidkit.cli.lib.logs import configure_logging

app = typer.Typer(
    name="raidkit",
    help="RAID drive discovery, planning and array lifecycle tool",
    add_completion=False,
)

# Add command groups
app.add_typer(drives.app, name="drives", help="Drive inventory, planning and array creation")
app.add_typer(arrays.app, name="arrays", help="Existing array status and removal")


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """
    Scan drives, plan redundant layouts and manage md arrays.
    """
    cfg = load_config()
    configure_logging("DEBUG" if verbose else cfg.log_level, cfg.log_file)


def main() -> int:
    """Main entry point."""
    try:
        app()
        return 0
    except KeyboardInterrupt:
        typer.echo("\nOperation cancelled by user", err=True)
        return 130
    except Exception as e:
        typer.echo(f"Error: {e}", err=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
