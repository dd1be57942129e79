"""
keyshell CLI - Main entry point.

Manage local accounts and open the interactive account shell.
"""

import asyncio
import json
import logging
import sys
from pathlib import Path

import click
import structlog
from tabulate import tabulate

from keyshell import __version__
from keyshell.accounts.service import AccountService
from keyshell.config import KeyshellConfig, StorageConfig, config
from keyshell.errors import KeyshellError
from keyshell.shell.commands import run_shell
from keyshell.shell.history import CommandHistory


def configure_logging(level: str, fmt: str) -> None:
    """Configure structlog once for the process."""
    renderer = (
        structlog.processors.JSONRenderer()
        if fmt == "json"
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.WARNING)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )


def _run(ctx: click.Context, operation):
    """
    Build and load the account service, then run ``operation(service)``.

    Keyshell errors and rejected input are reported and turned into a
    non-zero exit.
    """
    cfg: KeyshellConfig = ctx.obj["config"]

    async def main():
        service = AccountService.from_config(cfg)
        await service.load()
        try:
            return await operation(service)
        finally:
            await service.close()

    try:
        return asyncio.run(main())
    except (KeyshellError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        raise click.Abort()


@click.group()
@click.version_option(version=__version__)
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose output')
@click.option(
    '--home',
    type=click.Path(file_okay=False, path_type=Path),
    help='keyshell state directory (default: $KEYSHELL_HOME or ~/.keyshell)',
)
@click.pass_context
def cli(ctx, verbose, home):
    """
    keyshell - Manage local identity accounts.

    \b
    Examples:
        keyshell account list          List accounts
        keyshell account create        Create an account
        keyshell shell                 Open the interactive shell
    """
    cfg = config
    if home is not None:
        cfg = config.model_copy(update={"storage": StorageConfig(home=home)})

    configure_logging("DEBUG" if verbose else cfg.log_level, cfg.log_format)

    ctx.ensure_object(dict)
    ctx.obj['verbose'] = verbose
    ctx.obj['config'] = cfg


@cli.group()
def account():
    """Manage accounts."""
    pass


@account.command('list')
@click.option('--format', type=click.Choice(['table', 'json']), default='table', help='Output format')
@click.pass_context
def list_accounts(ctx, format):
    """List all accounts."""
    async def get_accounts(service: AccountService):
        return [(handle, service.store.identity(handle)) for handle in service.accounts]

    accounts = _run(ctx, get_accounts)

    if format == 'json':
        data = [
            {
                'handle': handle,
                'pubkeys': [key.model_dump(by_alias=True) for key in identity.pubkeys],
            }
            for handle, identity in accounts
        ]
        click.echo(json.dumps(data, indent=2))
        return

    if not accounts:
        click.echo("No accounts found. Create one with: keyshell account create")
        return

    table_data = []
    for handle, identity in accounts:
        for key in identity.pubkeys:
            table_data.append([handle, key.type, key.network_name or '-', key.fingerprint])

    click.echo(
        tabulate(
            table_data,
            headers=['Handle', 'Key Type', 'Network', 'Fingerprint'],
            tablefmt='grid'
        )
    )


@account.command('create')
@click.option('--handle', prompt='Account handle', help='Name for this account')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True,
              help='Password protecting the account keys')
@click.pass_context
def create_account(ctx, handle, password):
    """Create a new account with a fresh identity."""
    async def create(service: AccountService):
        return await service.sessions.create_account(handle, password)

    identity = _run(ctx, create)

    click.echo(f"Account created: {handle.lower()}")
    for key in identity.pubkeys:
        click.echo(f"  {key.type} ({key.network_name or '-'}): {key.fingerprint}")


@account.command('delete')
@click.argument('handle')
@click.option('--password', prompt=True, hide_input=True, help='Account password')
@click.option('--yes', is_flag=True, help='Do not ask for confirmation')
@click.pass_context
def delete_account(ctx, handle, password, yes):
    """Delete an account and all of its data."""
    if not yes:
        click.confirm(f"Permanently delete account {handle.lower()}?", abort=True)

    async def delete(service: AccountService):
        await service.sessions.delete_account(handle, password)

    _run(ctx, delete)
    click.echo(f"Account deleted: {handle.lower()}")


@account.command('verify')
@click.argument('handle')
@click.option('--password', prompt=True, hide_input=True, help='Account password')
@click.pass_context
def verify_account(ctx, handle, password):
    """Check an account password."""
    async def verify(service: AccountService):
        await service.sessions.check_password(handle, password)

    _run(ctx, verify)
    click.echo("Password OK")


@cli.command()
@click.option('--script', type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help='Run commands from this file before prompting')
@click.option('--history-file', type=click.Path(dir_okay=False, path_type=Path),
              help='Command history file')
@click.pass_context
def shell(ctx, script, history_file):
    """Open the interactive account shell."""
    cfg: KeyshellConfig = ctx.obj["config"]
    history = CommandHistory(history_file or cfg.repl.history_path)

    async def interact(service: AccountService):
        await run_shell(service, history, prompt=cfg.repl.prompt, script=script)

    _run(ctx, interact)


if __name__ == "__main__":
    cli()
