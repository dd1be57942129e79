"""
Encrypted record storage for a logged in account.

One key is derived from the account password and a per-keeper salt, then each
record is sealed individually under it. Record files are named by the SHA-256
of their key.
"""

import asyncio
import hashlib
import json
import os
from pathlib import Path
from typing import Any, Optional, Union

import aiofiles
import structlog

from keyshell.accounts.encryption import EncryptionParameters, KeyCipher
from keyshell.errors import StorageClosedError
from keyshell.fsutil import atomic_write

logger = structlog.get_logger()

SALT_FILE = ".salt"


class Keeper:
    """Password-protected key/value store for JSON documents."""

    def __init__(
        self,
        encryption: EncryptionParameters,
        path: Union[str, Path],
        validate_on_put: bool = True,
        cipher: Optional[KeyCipher] = None,
    ):
        if encryption.password is None:
            raise ValueError("keeper needs encryption parameters with a password")

        self.encryption = encryption
        self.path = Path(path)
        self.validate_on_put = validate_on_put
        self._cipher = cipher or KeyCipher()
        self._key: Optional[bytes] = None
        self._lock = asyncio.Lock()
        self._closed = False

    def __repr__(self) -> str:
        return f"Keeper({str(self.path)!r}, closed={self._closed})"

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_open(self) -> None:
        if self._closed:
            raise StorageClosedError(f"keeper at {self.path} is closed")

    async def _get_key(self) -> bytes:
        self._check_open()
        if self._key is None:
            async with self._lock:
                if self._key is None:
                    self._key = await asyncio.to_thread(self._derive_key)
        return self._key

    def _derive_key(self) -> bytes:
        self.path.mkdir(parents=True, exist_ok=True)
        salt_path = self.path / SALT_FILE
        if salt_path.exists():
            salt = salt_path.read_bytes()
        else:
            salt = os.urandom(self.encryption.salt_bytes)
            atomic_write(salt_path, salt)

        return self._cipher.derive_key(
            self.encryption.password.get_secret_value(),
            salt,
            self.encryption,
        )

    def _record_path(self, key: str) -> Path:
        return self.path / hashlib.sha256(key.encode("utf-8")).hexdigest()

    @staticmethod
    def _validate(key: str, value: Any) -> None:
        if not isinstance(key, str) or not key:
            raise ValueError("keeper keys must be non-empty strings")
        try:
            json.dumps(value, allow_nan=False)
        except (TypeError, ValueError) as e:
            raise ValueError(f"keeper value for {key!r} is not a JSON document") from e

    async def put(self, key: str, value: Any) -> None:
        """Store ``value`` under ``key``, replacing any previous record."""
        if self.validate_on_put:
            self._validate(key, value)

        enc_key = await self._get_key()
        data = json.dumps(value, sort_keys=True).encode("utf-8")
        sealed = self._cipher.seal(enc_key, data, self.encryption, aad=key.encode("utf-8"))
        await asyncio.to_thread(atomic_write, self._record_path(key), sealed)

    async def get(self, key: str, default: Any = None) -> Any:
        """
        Load the record stored under ``key``.

        Raises:
            AuthenticationError: the record was sealed under another password
        """
        enc_key = await self._get_key()
        try:
            async with aiofiles.open(self._record_path(key), "rb") as f:
                sealed = await f.read()
        except FileNotFoundError:
            return default

        raw = self._cipher.unseal(enc_key, sealed, self.encryption, aad=key.encode("utf-8"))
        return json.loads(raw)

    async def delete(self, key: str) -> bool:
        self._check_open()
        try:
            await asyncio.to_thread(os.unlink, self._record_path(key))
        except FileNotFoundError:
            return False
        return True

    def close(self) -> None:
        """Release the derived key. Further use raises StorageClosedError."""
        if self._closed:
            return
        self._closed = True
        self._key = None
        logger.debug("keeper_closed", path=str(self.path))


__all__ = ["Keeper"]
