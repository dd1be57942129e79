"""
Filesystem-backed account catalog.

Layout under the accounts directory:

    <handle>/identity.json   public identity document
    <handle>/keys            encrypted private key blob
    <handle>/data/           node runtime storage
    <handle>/keeper/         keeper storage
"""

import asyncio
import shutil
from pathlib import Path
from typing import Dict, List, Union

import structlog

from keyshell.accounts.identity import Identity
from keyshell.errors import (
    AccountConflictError,
    AlreadyExistsError,
    InvalidHandleError,
    NotFoundError,
)
from keyshell.fsutil import atomic_write

logger = structlog.get_logger()

IDENTITY_FILE = "identity.json"
KEYS_FILE = "keys"
DATA_DIR = "data"
KEEPER_DIR = "keeper"


def normalize_handle(handle: str) -> str:
    """Lower-case a handle and reject anything that is not a plain name."""
    if not isinstance(handle, str):
        raise InvalidHandleError("account handle must be a string")

    normalized = handle.lower()
    if (
        not normalized.strip()
        or normalized in (".", "..")
        or any(sep in normalized for sep in ("/", "\\", "\0"))
    ):
        raise InvalidHandleError(f"invalid account handle {handle!r}", handle)
    return normalized


class AccountStore:
    """Catalog of local accounts and their on-disk artifacts."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)
        self._identities: Dict[str, Identity] = {}
        self._lock = asyncio.Lock()

    # ============== PATHS ==============

    def account_path(self, handle: str) -> Path:
        return self.root / normalize_handle(handle)

    def identity_path(self, handle: str) -> Path:
        return self.account_path(handle) / IDENTITY_FILE

    def keys_path(self, handle: str) -> Path:
        return self.account_path(handle) / KEYS_FILE

    def data_path(self, handle: str) -> Path:
        return self.account_path(handle) / DATA_DIR

    def keeper_path(self, handle: str) -> Path:
        return self.account_path(handle) / KEEPER_DIR

    # ============== CATALOG ==============

    @property
    def handles(self) -> List[str]:
        return sorted(self._identities)

    def has(self, handle: str) -> bool:
        try:
            return normalize_handle(handle) in self._identities
        except InvalidHandleError:
            return False

    def identity(self, handle: str) -> Identity:
        """Get identity by handle."""
        normalized = normalize_handle(handle)
        try:
            return self._identities[normalized]
        except KeyError:
            raise NotFoundError(normalized) from None

    async def load(self) -> List[str]:
        """
        Rebuild the in-memory catalog from disk.

        Directories without both artifacts, or with an unreadable identity,
        are skipped with a warning.

        Returns:
            Sorted list of account handles
        """
        async with self._lock:
            self._identities = await asyncio.to_thread(self._scan)

        logger.info("accounts_loaded", root=str(self.root), count=len(self._identities))
        return self.handles

    def _scan(self) -> Dict[str, Identity]:
        found: Dict[str, Identity] = {}
        if not self.root.is_dir():
            return found

        for entry in sorted(self.root.iterdir()):
            if not entry.is_dir():
                continue

            name = entry.name
            try:
                if normalize_handle(name) != name:
                    _skip(name, "handle_not_normalized")
                    continue
            except InvalidHandleError:
                _skip(name, "invalid_handle")
                continue

            if not (entry / KEYS_FILE).is_file():
                _skip(name, "missing_keys")
                continue

            try:
                identity = Identity.model_validate_json((entry / IDENTITY_FILE).read_bytes())
            except FileNotFoundError:
                _skip(name, "missing_identity")
                continue
            except (OSError, ValueError) as e:
                _skip(name, "unreadable_identity", error=str(e))
                continue

            found[name] = identity

        return found

    # ============== MUTATIONS ==============

    async def create(self, handle: str, identity: Identity, encrypted_keys: bytes) -> None:
        """
        Persist a new account.

        The key blob is written before the identity document; the catalog only
        treats a directory holding both as an account. A directory left by an
        interrupted create is replaced; any other existing directory raises
        AccountConflictError.
        """
        handle = normalize_handle(handle)

        async with self._lock:
            if handle in self._identities:
                raise AlreadyExistsError(handle)

            await asyncio.to_thread(self._write_account, handle, identity, encrypted_keys)
            self._identities[handle] = identity

        logger.info("account_stored", handle=handle, path=str(self.account_path(handle)))

    def check_available(self, handle: str) -> None:
        """
        Check that ``handle`` can be created, without writing anything.

        Raises:
            AlreadyExistsError: the handle is in the catalog
            AccountConflictError: an unreadable account directory holds the handle
        """
        handle = normalize_handle(handle)
        if handle in self._identities:
            raise AlreadyExistsError(handle)

        account_path = self.account_path(handle)
        if account_path.exists() and not _is_interrupted_create(account_path):
            raise AccountConflictError(handle, account_path)

    def _write_account(self, handle: str, identity: Identity, encrypted_keys: bytes) -> None:
        account_path = self.account_path(handle)
        self.root.mkdir(parents=True, exist_ok=True)

        if account_path.exists():
            if not _is_interrupted_create(account_path):
                logger.warning("account_directory_conflict", handle=handle, path=str(account_path))
                raise AccountConflictError(handle, account_path)

            logger.warning("interrupted_create_removed", handle=handle, path=str(account_path))
            shutil.rmtree(account_path)

        account_path.mkdir()

        try:
            atomic_write(self.keys_path(handle), encrypted_keys)
            atomic_write(self.identity_path(handle), identity.to_json())
        except Exception as e:
            logger.error("account_write_failed", handle=handle, error=str(e))
            shutil.rmtree(account_path, ignore_errors=True)
            raise

    async def load_encrypted_keys(self, handle: str) -> bytes:
        """Read the encrypted key blob of an account."""
        handle = normalize_handle(handle)
        if handle not in self._identities:
            raise NotFoundError(handle)

        try:
            return await asyncio.to_thread(self.keys_path(handle).read_bytes)
        except FileNotFoundError:
            raise NotFoundError(handle) from None

    async def delete(self, handle: str) -> None:
        """
        Delete an account permanently, including its node and keeper data.

        No authentication happens here; callers verify the password first.
        """
        handle = normalize_handle(handle)

        async with self._lock:
            if handle not in self._identities:
                raise NotFoundError(handle)

            try:
                await asyncio.to_thread(shutil.rmtree, self.account_path(handle))
            except FileNotFoundError:
                logger.warning("account_directory_missing", handle=handle)
            del self._identities[handle]

        logger.info("account_deleted", handle=handle)

    def ensure_data_path(self, handle: str) -> Path:
        path = self.data_path(handle)
        path.mkdir(parents=True, exist_ok=True)
        return path


def _is_interrupted_create(account_path: Path) -> bool:
    # keys are written before identity.json, so a directory without an
    # identity is what a create left behind when it died midway
    return account_path.is_dir() and not (account_path / IDENTITY_FILE).exists()


def _skip(name: str, reason: str, **kw) -> None:
    logger.warning("account_skipped", handle=name, reason=reason, **kw)


__all__ = ["AccountStore", "normalize_handle"]
