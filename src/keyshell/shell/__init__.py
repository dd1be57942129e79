"""
Interactive shell over the account service.
"""

from keyshell.shell.commands import COMMANDS, CONSTANTS, ShellBinding, run_shell
from keyshell.shell.history import CommandHistory

__all__ = [
    "COMMANDS",
    "CONSTANTS",
    "CommandHistory",
    "ShellBinding",
    "run_shell",
]
