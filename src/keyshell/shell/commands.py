"""
Interactive shell commands.

Exposes the account service as named commands and constants. Usage strings
live in static tables; ``help`` reads them directly.
"""

import asyncio
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional

import click
import structlog
from tabulate import tabulate

from keyshell.accounts.service import AccountService
from keyshell.accounts.session import SessionState
from keyshell.errors import KeyshellError
from keyshell.shell.history import CommandHistory

logger = structlog.get_logger()


@dataclass(frozen=True)
class CommandSpec:
    usage: str
    description: str


COMMANDS: Dict[str, CommandSpec] = {
    "login": CommandSpec("login <handle> [password]", "log in to an account"),
    "logout": CommandSpec("logout", "log out of the current account"),
    "create-account": CommandSpec("create-account <handle> [password]", "create a new account"),
    "delete-account": CommandSpec("delete-account <handle> [password]", "delete an account"),
    "accounts": CommandSpec("accounts", "existing accounts list"),
    "node": CommandSpec("node", "the logged in account's node"),
    "sync": CommandSpec("sync", "sync the logged in account's node with the blockchain now"),
    "set": CommandSpec("set <constant> <value>", "change a constant"),
    "help": CommandSpec("help [command-or-constant]", "print usage for a command or constant"),
    "exit": CommandSpec("exit", "log out and leave the shell"),
}

CONSTANTS: Dict[str, str] = {
    "network": "the current network being used",
    "sync-interval": "how often to sync with the blockchain (seconds)",
    "confirmed-after": "how many confirmations to monitor transactions for",
}

# arguments after the handle are passwords
PASSWORD_COMMANDS = frozenset({"login", "create-account", "delete-account"})

PasswordPrompt = Callable[[str, bool], Awaitable[str]]


async def prompt_password(prompt: str, confirm: bool) -> str:
    return await asyncio.to_thread(
        click.prompt, prompt, hide_input=True, confirmation_prompt=confirm
    )


def redact(line: str) -> str:
    """Mask inline passwords before a line is written to history."""
    try:
        argv = shlex.split(line)
    except ValueError:
        # unbalanced quotes, often inside the password itself
        argv = line.split()

    if len(argv) > 2 and argv[0] in PASSWORD_COMMANDS:
        return " ".join(argv[:2] + ["***"] * (len(argv) - 2))
    return line


class ShellBinding:
    """Maps shell command lines onto account service operations."""

    def __init__(
        self,
        service: AccountService,
        echo: Callable[..., None] = click.echo,
        password_prompt: PasswordPrompt = prompt_password,
    ):
        self.service = service
        self.echo = echo
        self.password_prompt = password_prompt
        self._handlers: Dict[str, Callable[[List[str]], Awaitable[bool]]] = {
            "login": self.login,
            "logout": self.logout,
            "create-account": self.create_account,
            "delete-account": self.delete_account,
            "accounts": self.accounts,
            "node": self.node,
            "sync": self.sync,
            "set": self.set,
            "help": self.help,
            "exit": self.exit,
        }

    @property
    def sessions(self):
        return self.service.sessions

    async def execute(self, line: str) -> bool:
        """
        Run one command line.

        Returns:
            False when the shell should exit
        """
        try:
            argv = shlex.split(line)
        except ValueError as e:
            self.echo(f"Error: {e}", err=True)
            return True

        if not argv:
            return True

        name, args = argv[0], argv[1:]
        handler = self._handlers.get(name)
        if handler is None:
            if name in CONSTANTS and not args:
                self.echo(str(self._constant_value(name)))
                return True
            self.echo(f"unknown command or constant: {name}\n")
            self._print_all()
            return True

        try:
            return await handler(args)
        except KeyshellError as e:
            logger.debug("command_failed", command=name, error=str(e))
            self.echo(f"Error: {e}", err=True)
        except ValueError as e:
            self.echo(f"Error: {e}", err=True)
        return True

    # ============== HELPERS ==============

    def _require(self, name: str, args: List[str], minimum: int, maximum: int) -> None:
        if not minimum <= len(args) <= maximum:
            raise ValueError(f"usage: {COMMANDS[name].usage}")

    async def _password(self, args: List[str], confirm: bool = False) -> str:
        if len(args) > 1:
            return args[1]
        return await self.password_prompt("Password", confirm)

    def _constant_value(self, name: str):
        return {
            "network": self.sessions.network_name,
            "sync-interval": self.sessions.sync_interval,
            "confirmed-after": self.sessions.confirmed_after,
        }[name]

    def _print_all(self) -> None:
        for spec in COMMANDS.values():
            self.echo(f"  {spec.usage}: {spec.description}")
        for name, description in CONSTANTS.items():
            self.echo(f"  {name} = {self._constant_value(name)}: {description}")

    # ============== COMMANDS ==============

    async def login(self, args: List[str]) -> bool:
        self._require("login", args, 1, 2)
        password = await self._password(args)
        node = await self.sessions.login(args[0], password)
        self.echo(f"logged in as {self.sessions.active_handle} ({node.address})")
        return True

    async def logout(self, args: List[str]) -> bool:
        self._require("logout", args, 0, 0)
        handle = self.sessions.active_handle
        await self.sessions.logout()
        self.echo(f"logged out of {handle}")
        return True

    async def create_account(self, args: List[str]) -> bool:
        self._require("create-account", args, 1, 2)
        password = await self._password(args, confirm=True)
        identity = await self.sessions.create_account(args[0], password)
        self.echo(f"created account {args[0].lower()}")
        for key in identity.pubkeys:
            self.echo(f"  {key.type} ({key.network_name or '-'}): {key.fingerprint}")
        return True

    async def delete_account(self, args: List[str]) -> bool:
        self._require("delete-account", args, 1, 2)
        password = await self._password(args)
        await self.sessions.delete_account(args[0], password)
        self.echo(f"deleted account {args[0].lower()}")
        return True

    async def accounts(self, args: List[str]) -> bool:
        self._require("accounts", args, 0, 0)
        handles = self.service.accounts
        if not handles:
            self.echo("no accounts yet, create one with: create-account <handle>")
            return True

        active = self.sessions.active_handle
        rows = [["*" if handle == active else "", handle] for handle in handles]
        self.echo(tabulate(rows, headers=["", "Handle"], tablefmt="simple"))
        return True

    async def node(self, args: List[str]) -> bool:
        self._require("node", args, 0, 0)
        node = self.sessions.node
        if node is None:
            self.echo("not logged in")
            return True

        self.echo(f"  account: {self.sessions.active_handle}")
        self.echo(f"  network: {node.network_name}")
        self.echo(f"  address: {node.address}")
        if node.last_sync:
            self.echo(f"  balance: {node.last_sync['balance']}")
            self.echo(f"  block:   {node.last_sync['block_number']}")
        return True

    async def sync(self, args: List[str]) -> bool:
        self._require("sync", args, 0, 0)
        node = self.sessions.node
        if node is None:
            self.echo("not logged in")
            return True

        state = await node.sync()
        self.echo(f"synced at block {state['block_number']}, balance {state['balance']}")
        return True

    async def set(self, args: List[str]) -> bool:
        self._require("set", args, 2, 2)
        name, value = args
        if name == "network":
            self.sessions.network_name = value
        elif name == "sync-interval":
            interval = float(value)
            if interval <= 0:
                raise ValueError("sync-interval must be positive")
            self.sessions.sync_interval = interval
        elif name == "confirmed-after":
            confirmations = int(value)
            if confirmations < 0:
                raise ValueError("confirmed-after must not be negative")
            self.sessions.confirmed_after = confirmations
        else:
            raise ValueError(f"unknown constant {name!r}")

        if self.sessions.state is SessionState.LOGGED_IN:
            self.echo(f"{name} = {value} (applies from the next login)")
        else:
            self.echo(f"{name} = {value}")
        return True

    async def help(self, args: List[str]) -> bool:
        if not args:
            self._print_all()
            return True

        name = args[0]
        if name in COMMANDS:
            spec = COMMANDS[name]
            self.echo(f"  {spec.usage}: {spec.description}")
        elif name in CONSTANTS:
            self.echo(f"  {name} = {self._constant_value(name)}: {CONSTANTS[name]}")
        else:
            self.echo("unknown command or constant\n")
            self._print_all()
        return True

    async def exit(self, args: List[str]) -> bool:
        return False


def read_script(path: Path) -> List[str]:
    """Command lines of a startup script, skipping blanks and # comments."""
    lines = Path(path).read_text(encoding="utf-8").splitlines()
    return [line for line in lines if line.strip() and not line.lstrip().startswith("#")]


async def run_shell(
    service: AccountService,
    history: CommandHistory,
    prompt: str = "keyshell > ",
    script: Optional[Path] = None,
    input_func: Callable[[str], str] = input,
    binding: Optional[ShellBinding] = None,
) -> None:
    """
    Run the interactive shell until ``exit`` or end of input.

    Any active session is logged out and the history saved on the way out.
    """
    binding = binding or ShellBinding(service)
    _preload_readline(history.load())

    try:
        if script is not None:
            for line in read_script(script):
                binding.echo(f"{prompt}{redact(line)}")
                if not await binding.execute(line):
                    return

        while True:
            try:
                line = await asyncio.to_thread(input_func, prompt)
            except EOFError:
                binding.echo("")
                break

            if line.strip():
                history.record(redact(line))
            if not await binding.execute(line):
                break
    finally:
        await service.close()
        history.save()


def _preload_readline(previous: List[str]) -> None:
    try:
        import readline
    except ImportError:
        return

    # readline wants oldest first
    for line in reversed(previous):
        readline.add_history(line)


__all__ = [
    "COMMANDS",
    "CONSTANTS",
    "CommandSpec",
    "ShellBinding",
    "read_script",
    "redact",
    "run_shell",
]
