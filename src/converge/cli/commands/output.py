"""Output command - show outputs recorded by the last apply."""

import json
import sys
import click
from ...ingest.module_loader import load_module
from ...presentation.human_formatter import SENSITIVE, format_outputs, format_value
from ...utils.errors import ConvergeError
from ...utils.logging import get_logger
from ..utils import format_error, resolve_settings, sensitive_outputs, state_store_for

logger = get_logger("cli.output")


@click.command()
@click.argument('name', required=False)
@click.option('--module', 'module_path', type=click.Path(), help='Module whose sensitive outputs are masked')
@click.option('--state', 'state_path', type=click.Path(), help='State file (default from configuration)')
@click.option('--config', 'config_path', type=click.Path(), help='Config file overriding the project config')
@click.option('--json', 'json_output', is_flag=True, help='Output structured JSON (values are never masked)')
def output(name, module_path, state_path, config_path, json_output):
    """Show all recorded outputs, or the output NAME."""
    try:
        settings = resolve_settings(config_path=config_path, state_path=state_path)
        outputs = state_store_for(settings).snapshot().outputs
        hidden = sensitive_outputs(load_module(module_path)) if module_path else []

        if name is not None:
            if name not in outputs:
                click.echo(format_error(f"Output '{name}' not found in state",
                                        "Run 'converge apply' first, or check the output name."), err=True)
                sys.exit(1)
            if json_output:
                click.echo(json.dumps(outputs[name], indent=2, default=str))
            else:
                click.echo(SENSITIVE if name in hidden else format_value(outputs[name]))
            return

        if json_output:
            click.echo(json.dumps(outputs, indent=2, default=str))
        else:
            click.echo(format_outputs(outputs, hidden))

    except ConvergeError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(1)
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        click.echo(format_error(f"Reading outputs failed: {e}"), err=True)
        sys.exit(1)
