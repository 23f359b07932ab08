"""Output formatting for the PyVaultSync CLI."""

import json
from typing import Any

import click



class OutputFormatter:
    """Formats CLI output as colored text or JSON."""

    def __init__(self, json_output: bool = False, quiet: bool = False):
        """Initialize output formatter.

        Args:
            json_output: Emit machine-readable JSON instead of text
            quiet: Suppress non-essential output
        """
        self.json_output = json_output
        self.quiet = quiet

    def print(self, message: str) -> None:
        """Print a plain message unless quiet or in JSON mode."""
        if self.quiet or self.json_output:
            return
        click.echo(message)

    def info(self, message: str) -> None:
        """Print an informational message."""
        if self.quiet or self.json_output:
            return
        click.echo(message)

    def success(self, message: str) -> None:
        """Print a success message in green."""
        if self.quiet or self.json_output:
            return
        click.secho(f"✓ {message}", fg="green")

    def warning(self, message: str) -> None:
        """Print a warning to stderr (shown even in quiet mode)."""
        click.secho(f"⚠ {message}", fg="yellow", err=True)

    def error(self, message: str) -> None:
        """Print an error to stderr (always shown)."""
        click.secho(f"✗ {message}", fg="red", err=True)

    def output_json(self, data: Any) -> None:
        """Print data as indented JSON."""
        click.echo(json.dumps(data, indent=2, default=str))
