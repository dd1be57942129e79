"""
keyshell - local identity accounts with password-encrypted keys.

Creates identities, stores their keys encrypted under a password, and logs in
to a single active session backed by a blockchain-synced node.
"""

__version__ = "1.0.0"

from keyshell.config import config

__all__ = ["config", "__version__"]
