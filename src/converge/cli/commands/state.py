"""State commands - inspect and edit the recorded state."""

import json
import sys
import click
from ...contracts.address import Address
from ...presentation.human_formatter import format_record
from ...utils.errors import ConvergeError
from ...utils.logging import get_logger
from ..utils import format_error, resolve_settings, state_store_for, suggestion_for

logger = get_logger("cli.state")

_state_option = click.option('--state', 'state_path', type=click.Path(), help='State file (default from configuration)')
_config_option = click.option('--config', 'config_path', type=click.Path(), help='Config file overriding the project config')


def _parse_address(text: str) -> Address:
    try:
        return Address.parse(text)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="ADDRESS")


@click.group()
def state():
    """State inspection commands."""
    pass


@state.command('list')
@_state_option
@_config_option
@click.option('--json', 'json_output', is_flag=True, help='Output structured JSON')
def list_resources(state_path, config_path, json_output):
    """List recorded resource addresses."""
    try:
        settings = resolve_settings(config_path=config_path, state_path=state_path)
        snapshot = state_store_for(settings).snapshot()
        addresses = sorted((record.address for record in snapshot.resources), key=Address.sort_key)

        if json_output:
            click.echo(json.dumps({
                "serial": snapshot.serial,
                "lineage": snapshot.lineage,
                "resources": [{"address": str(a), "identity": snapshot.get(a).identity} for a in addresses],
            }, indent=2))
        elif not addresses:
            click.echo("No resources recorded in state.")
        else:
            for address in addresses:
                click.echo(str(address))

    except ConvergeError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(1)


@state.command('show')
@click.argument('address')
@_state_option
@_config_option
@click.option('--json', 'json_output', is_flag=True, help='Output structured JSON')
def show(address, state_path, config_path, json_output):
    """Show the recorded attributes of ADDRESS."""
    target = _parse_address(address)
    try:
        settings = resolve_settings(config_path=config_path, state_path=state_path)
        record = state_store_for(settings).get(target)
        if record is None:
            click.echo(format_error(f"No resource recorded at {target}", "Run 'converge state list' to see addresses."), err=True)
            sys.exit(1)

        if json_output:
            click.echo(json.dumps(record.model_dump(), indent=2, default=str))
        else:
            click.echo(format_record(record))

    except ConvergeError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(1)


@state.command('rm')
@click.argument('address')
@_state_option
@_config_option
@click.option('--lock-timeout', type=click.FloatRange(min=0), help='Seconds to wait for a held state lock')
def remove(address, state_path, config_path, lock_timeout):
    """
    Forget ADDRESS without destroying it.

    The resource keeps existing in the provider; the next plan will
    propose creating it again if it is still declared.
    """
    target = _parse_address(address)
    try:
        settings = resolve_settings(config_path=config_path, state_path=state_path, lock_timeout=lock_timeout)
        store = state_store_for(settings)
        with store.lock(timeout=settings.lock_timeout, operation="state rm"):
            if store.get(target) is None:
                click.echo(format_error(f"No resource recorded at {target}"), err=True)
                sys.exit(1)
            store.remove(target)
        click.echo(f"Removed {target} from state.")

    except ConvergeError as e:
        click.echo(format_error(str(e), suggestion_for(e)), err=True)
        sys.exit(1)


@click.command('force-unlock')
@click.argument('lock_id')
@_state_option
@_config_option
def force_unlock(lock_id, state_path, config_path):
    """
    Release a state lock left behind by a crashed run.

    LOCK_ID must match the id recorded in the lock file.
    """
    try:
        settings = resolve_settings(config_path=config_path, state_path=state_path)
        state_store_for(settings).force_unlock(lock_id)
        click.echo(f"🔓 Lock {lock_id} released.")
    except ConvergeError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(1)
