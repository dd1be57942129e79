"""
Error types raised by keyshell.

Every account error carries the handle it concerns so that callers can tell a
wrong password from a missing account or a missing network key.
"""

from typing import Optional


class KeyshellError(Exception):
    """Base class for all keyshell errors."""


class AccountError(KeyshellError):
    """An operation on a specific account failed."""

    def __init__(self, message: str, handle: Optional[str] = None):
        super().__init__(message)
        self.handle = handle


class InvalidHandleError(AccountError, ValueError):
    pass


class AlreadyExistsError(AccountError):
    def __init__(self, handle: str):
        super().__init__(f'account "{handle}" already exists', handle)


class AccountConflictError(AccountError):
    """A directory that is not a readable account occupies the handle."""

    def __init__(self, handle: str, path):
        super().__init__(
            f'account directory for "{handle}" exists but is not a readable account: {path}',
            handle,
        )
        self.path = path


class NotFoundError(AccountError):
    def __init__(self, handle: str):
        super().__init__(f'no such account "{handle}"', handle)


class AuthenticationError(AccountError):
    """Wrong password, or an encrypted blob that cannot be decrypted."""

    def __init__(self, message: str = "wrong password or corrupt key blob", handle: Optional[str] = None):
        super().__init__(message, handle)


class NotLoggedInError(KeyshellError):
    def __init__(self):
        super().__init__("not logged in")


class NoMatchingKeyError(AccountError):
    def __init__(self, handle: str, key_type: str, network_name: str):
        super().__init__(
            f'account "{handle}" has no {key_type} key for network "{network_name}"',
            handle,
        )
        self.key_type = key_type
        self.network_name = network_name


class IdentityGenerationError(KeyshellError):
    pass


class TeardownError(KeyshellError):
    """The session runtime object failed to shut down cleanly."""

    def __init__(self, message: str, handle: Optional[str] = None):
        super().__init__(message)
        self.handle = handle


class StorageClosedError(KeyshellError):
    pass


__all__ = [
    "KeyshellError",
    "AccountError",
    "InvalidHandleError",
    "AlreadyExistsError",
    "AccountConflictError",
    "NotFoundError",
    "AuthenticationError",
    "NotLoggedInError",
    "NoMatchingKeyError",
    "IdentityGenerationError",
    "TeardownError",
    "StorageClosedError",
]
