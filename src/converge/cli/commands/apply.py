"""Apply and destroy commands - converge infrastructure to the module."""

import sys
import click
from ...contracts.results import ApplyResult
from ...presentation.human_formatter import format_apply_result, format_plan
from ...utils.errors import ConvergeError, LockedError
from ...utils.logging import get_logger
from ..utils import (
    build_engine,
    collect_variables,
    format_error,
    load_plan_file,
    module_options,
    resolve_settings,
    sensitive_outputs,
    suggestion_for,
    to_json,
    write_output,
)

logger = get_logger("cli.apply")


def _execute(module, var_pairs, var_files, state_path, config_path, lock_timeout, no_refresh, json_output, quiet,
             parallelism, destroy=False, plan_file=None):
    """Shared body of apply and destroy: plan (or load a plan), apply, report."""
    operation = "destroy" if destroy else "apply"
    try:
        settings = resolve_settings(
            config_path=config_path,
            state_path=state_path,
            parallelism=parallelism,
            lock_timeout=lock_timeout,
            refresh=False if no_refresh else None,
        )
        engine, loaded = build_engine(module, settings)
        variables = collect_variables(var_pairs, var_files)
        hidden = sensitive_outputs(loaded)

        if not quiet:
            click.echo(f"✨ Starting {operation} of module: {module}", err=True)

        with engine.run(variables, operation=operation, coerce_strings=True) as run:
            planned = load_plan_file(plan_file) if plan_file else run.plan(destroy=destroy)
            if not json_output and not quiet:
                click.echo(format_plan(planned, hidden), err=True)
            if not quiet:
                click.echo(f"🚀 Applying {len(planned.changes)} operation(s)...", err=True)
            result = run.apply(planned)

        if json_output:
            write_output(to_json(result), None)
        else:
            write_output(format_apply_result(result, hidden), None)
        sys.exit(result.exit_code)

    except click.ClickException:
        raise
    except LockedError as e:
        # Contention is reported as an aborted run.
        if json_output:
            write_output(to_json(ApplyResult.aborted(run_id="-", message=str(e))), None)
        click.echo(format_error(f"Run aborted: {e}", suggestion_for(e)), err=True)
        sys.exit(1)
    except FileNotFoundError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(1)
    except ConvergeError as e:
        click.echo(format_error(str(e), suggestion_for(e)), err=True)
        sys.exit(1)
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        click.echo(format_error(f"{operation.capitalize()} failed: {e}"), err=True)
        sys.exit(1)


@click.command()
@module_options
@click.option('--plan', 'plan_file', type=click.Path(), help='Apply a plan saved with plan --out instead of re-planning')
@click.option('--parallelism', type=click.IntRange(min=1), help='Maximum concurrent provider operations')
def apply(module, var_pairs, var_files, state_path, config_path, lock_timeout, no_refresh, json_output, quiet,
          plan_file, parallelism):
    """
    Create, update and replace resources so they match MODULE.

    A saved plan is rejected when state, configuration or variables changed
    since it was computed. Exits 1 when any operation failed, was skipped, or
    the run was aborted.
    """
    _execute(module, var_pairs, var_files, state_path, config_path, lock_timeout, no_refresh, json_output, quiet,
             parallelism, plan_file=plan_file)


@click.command()
@module_options
@click.option('--parallelism', type=click.IntRange(min=1), help='Maximum concurrent provider operations')
def destroy(module, var_pairs, var_files, state_path, config_path, lock_timeout, no_refresh, json_output, quiet,
            parallelism):
    """Destroy every resource recorded in state, dependents first."""
    _execute(module, var_pairs, var_files, state_path, config_path, lock_timeout, no_refresh, json_output, quiet,
             parallelism, destroy=True)
