"""
Account management - identities, encrypted keys, and sessions.
"""

from keyshell.accounts.encryption import EncryptionParameters, KeyCipher
from keyshell.accounts.identity import Identity, IdentityGenerator, PrivateKey
from keyshell.accounts.repository import AccountStore
from keyshell.accounts.session import SessionManager, SessionState
from keyshell.accounts.service import AccountService
from keyshell.accounts.wallet import Transactor

__all__ = [
    "AccountService",
    "AccountStore",
    "EncryptionParameters",
    "KeyCipher",
    "Identity",
    "IdentityGenerator",
    "PrivateKey",
    "SessionManager",
    "SessionState",
    "Transactor",
]
