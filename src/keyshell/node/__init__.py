"""
Session runtime - the node and its keeper.
"""

from keyshell.node.keeper import Keeper
from keyshell.node.runtime import Node

__all__ = [
    "Keeper",
    "Node",
]
