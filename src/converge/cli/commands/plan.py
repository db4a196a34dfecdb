"""Plan command - show what an apply would change."""

import sys
import click
from ...presentation.human_formatter import format_plan
from ...utils.errors import ConvergeError
from ...utils.logging import get_logger
from ..utils import (
    build_engine,
    collect_variables,
    format_error,
    module_options,
    resolve_settings,
    sensitive_outputs,
    suggestion_for,
    to_json,
    write_output,
)

logger = get_logger("cli.plan")


@click.command()
@module_options
@click.option('--destroy', is_flag=True, help='Plan the destruction of every recorded resource')
@click.option('--out', 'out_file', type=click.Path(), help='Save the plan as JSON for a later apply --plan')
@click.option('--detailed-exitcode', is_flag=True, help='Exit 2 when the plan has changes, 0 when it has none')
def plan(module, var_pairs, var_files, state_path, config_path, lock_timeout, no_refresh, json_output, quiet,
         destroy, out_file, detailed_exitcode):
    """
    Compute and show the operations needed to converge MODULE.

    MODULE is a module.yaml/module.json file or a directory containing one.
    Planning never changes infrastructure or state.
    """
    try:
        settings = resolve_settings(
            config_path=config_path,
            state_path=state_path,
            lock_timeout=lock_timeout,
            refresh=False if no_refresh else None,
        )
        engine, loaded = build_engine(module, settings)
        variables = collect_variables(var_pairs, var_files)

        if not quiet:
            click.echo(f"✨ Planning module: {module}", err=True)

        with engine.run(variables, operation="plan", coerce_strings=True) as run:
            result = run.plan(destroy=destroy, pin_state=bool(out_file))

        if out_file:
            write_output(to_json(result), out_file, quiet=quiet)

        if json_output:
            write_output(to_json(result), None)
        else:
            write_output(format_plan(result, sensitive_outputs(loaded)), None)

        if detailed_exitcode and result.has_changes:
            sys.exit(2)

    except click.ClickException:
        raise
    except FileNotFoundError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(1)
    except ConvergeError as e:
        click.echo(format_error(str(e), suggestion_for(e)), err=True)
        sys.exit(1)
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        click.echo(format_error(f"Plan failed: {e}"), err=True)
        sys.exit(1)
