"""Version command - show converge version."""

import click
from ... import __version__


@click.command()
def version():
    """Show converge version."""
    click.echo(f"converge version {__version__}")
