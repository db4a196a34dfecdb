"""Main CLI entry point for converge."""

import click
from .commands.plan import plan
from .commands.apply import apply, destroy
from .commands.validate import validate
from .commands.output import output
from .commands.state import state, force_unlock
from ..utils.logging import get_logger, setup_logging
from .. import __version__

logger = get_logger("cli.main")


@click.group()
@click.version_option(version=__version__, prog_name="converge", message="%(prog)s version %(version)s")
@click.option('--log-level', type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False),
              help='Override the configured log level')
@click.pass_context
def cli(ctx, log_level):
    """converge - Declarative infrastructure provisioning."""
    ctx.ensure_object(dict)
    if log_level:
        ctx.obj["log_level"] = log_level.upper()
        setup_logging(log_level)


cli.add_command(validate)
cli.add_command(plan)
cli.add_command(apply)
cli.add_command(destroy)
cli.add_command(output)
cli.add_command(state)
cli.add_command(force_unlock)

# Import and add version command at the end
from .commands.version import version as version_command
cli.add_command(version_command)
