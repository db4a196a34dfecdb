"""Validate command - check a module without touching state."""

import json
import sys
import click
from ...utils.errors import ConvergeError
from ...utils.logging import get_logger
from ..utils import build_engine, collect_variables, format_error, resolve_settings, suggestion_for

logger = get_logger("cli.validate")


@click.command()
@click.argument('module', type=click.Path(exists=False))
@click.option('--var', 'var_pairs', multiple=True, metavar='NAME=VALUE', help='Set a variable (repeatable)')
@click.option('--var-file', 'var_files', multiple=True, type=click.Path(), help='YAML/JSON file of variable values')
@click.option('--config', 'config_path', type=click.Path(), help='Config file overriding the project config')
@click.option('--json', 'json_output', is_flag=True, help='Output structured JSON instead of human-readable')
def validate(module, var_pairs, var_files, config_path, json_output):
    """
    Check variables, references and resource types of MODULE.

    Runs variable validation rules and builds the resource graph; no state
    is read and no provider operation is called.
    """
    try:
        settings = resolve_settings(config_path=config_path)
        engine, loaded = build_engine(module, settings)
        variables = collect_variables(var_pairs, var_files)

        graph = engine.validate(variables, coerce_strings=True)
        instances = graph.get_all_instances()
        for instance in instances:
            engine.providers.schema(instance.type)

        if json_output:
            click.echo(json.dumps({
                "valid": True,
                "instances": [str(address) for address in graph.topological_order()],
                "outputs": [output.name for output in loaded.outputs],
            }, indent=2))
        else:
            click.echo(
                f"✅ Module is valid: {len(instances)} resource instance(s), {len(loaded.outputs)} output(s)."
            )

    except click.ClickException:
        raise
    except FileNotFoundError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(1)
    except ConvergeError as e:
        if json_output:
            click.echo(json.dumps({"valid": False, "error": str(e)}, indent=2))
        click.echo(format_error(str(e), suggestion_for(e)), err=True)
        sys.exit(1)
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        click.echo(format_error(f"Validation failed: {e}"), err=True)
        sys.exit(1)
