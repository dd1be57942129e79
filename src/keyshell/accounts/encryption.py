"""
Password-based key encryption and decryption utilities.

Keys are derived from the user's password with PBKDF2-HMAC and a fresh random
salt per blob. The default cipher is AES-256-GCM; AES-256-CBC is supported as
encrypt-then-MAC (HMAC-SHA256) so that a wrong password is always detected.

Blob layout: salt || iv || ciphertext (|| tag)
"""

import os
from typing import Optional

from cryptography.exceptions import InvalidSignature, InvalidTag
from cryptography.hazmat.primitives import hashes, hmac, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator, model_validator
import structlog

from keyshell.errors import AuthenticationError

logger = structlog.get_logger()

AES_256_GCM = "aes-256-gcm"
AES_256_CBC = "aes-256-cbc"

# algorithm -> required key length
SUPPORTED_ALGORITHMS = {
    AES_256_GCM: 32,
    AES_256_CBC: 32,
}

DIGESTS = {
    "sha256": hashes.SHA256,
    "sha384": hashes.SHA384,
    "sha512": hashes.SHA512,
}

GCM_TAG_BYTES = 16
MAC_BYTES = 32
CBC_BLOCK_BITS = 128


class EncryptionParameters(BaseModel):
    """
    Fixed key derivation and cipher settings, plus a per-call password.

    The same parameters must be used to decrypt a blob as were used to
    encrypt it; only the salt and IV travel inside the blob.
    """

    model_config = ConfigDict(frozen=True)

    # key derivation
    salt_bytes: int = Field(default=32, gt=0)
    digest: str = "sha256"
    key_bytes: int = 32
    iterations: int = Field(default=64000, gt=0)

    # cipher
    algorithm: str = AES_256_GCM
    iv_bytes: int = Field(default=12, gt=0)

    password: Optional[SecretStr] = Field(default=None, repr=False)

    @field_validator("digest")
    @classmethod
    def _check_digest(cls, value: str) -> str:
        value = value.lower()
        if value not in DIGESTS:
            raise ValueError(f"unsupported digest {value!r}")
        return value

    @field_validator("algorithm")
    @classmethod
    def _check_algorithm(cls, value: str) -> str:
        value = value.lower()
        if value not in SUPPORTED_ALGORITHMS:
            raise ValueError(f"unsupported algorithm {value!r}")
        return value

    @model_validator(mode="after")
    def _check_lengths(self) -> "EncryptionParameters":
        if self.key_bytes != SUPPORTED_ALGORITHMS[self.algorithm]:
            raise ValueError(
                f"{self.algorithm} needs a {SUPPORTED_ALGORITHMS[self.algorithm]} byte key"
            )
        if self.algorithm == AES_256_CBC and self.iv_bytes != 16:
            raise ValueError(f"{AES_256_CBC} needs a 16 byte IV")
        return self

    def with_password(self, password: str) -> "EncryptionParameters":
        """Copy of these parameters carrying ``password``."""
        return self.model_copy(update={"password": SecretStr(password)})

    @property
    def overhead(self) -> int:
        """Minimum sealed length beyond the plaintext, excluding the salt."""
        if self.algorithm == AES_256_GCM:
            return self.iv_bytes + GCM_TAG_BYTES
        return self.iv_bytes + CBC_BLOCK_BITS // 8 + MAC_BYTES


class KeyCipher:
    """
    Encrypt and decrypt serialized key material under a password.

    Key derivation is deliberately slow (``iterations``); callers on an event
    loop should run ``encrypt``/``decrypt`` in a worker thread.
    """

    def derive_key(self, password: str, salt: bytes, params: EncryptionParameters) -> bytes:
        """Derive the symmetric key (cipher key + MAC key for CBC)."""
        length = params.key_bytes
        if params.algorithm == AES_256_CBC:
            length *= 2

        kdf = PBKDF2HMAC(
            algorithm=DIGESTS[params.digest](),
            length=length,
            salt=salt,
            iterations=params.iterations,
        )
        return kdf.derive(password.encode("utf-8"))

    def seal(
        self,
        key: bytes,
        plaintext: bytes,
        params: EncryptionParameters,
        aad: bytes = b"",
    ) -> bytes:
        """Encrypt with an already derived key. Returns iv || ciphertext."""
        iv = os.urandom(params.iv_bytes)

        if params.algorithm == AES_256_GCM:
            return iv + AESGCM(key).encrypt(iv, plaintext, aad or None)

        enc_key, mac_key = key[:params.key_bytes], key[params.key_bytes:]
        padder = padding.PKCS7(CBC_BLOCK_BITS).padder()
        padded = padder.update(plaintext) + padder.finalize()
        encryptor = Cipher(algorithms.AES(enc_key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()

        mac = hmac.HMAC(mac_key, hashes.SHA256())
        mac.update(aad + iv + ciphertext)
        return iv + ciphertext + mac.finalize()

    def unseal(
        self,
        key: bytes,
        sealed: bytes,
        params: EncryptionParameters,
        aad: bytes = b"",
    ) -> bytes:
        """Reverse of ``seal``. Raises AuthenticationError on any mismatch."""
        if len(sealed) < params.overhead:
            raise AuthenticationError("encrypted blob is truncated")

        iv, body = sealed[:params.iv_bytes], sealed[params.iv_bytes:]

        try:
            if params.algorithm == AES_256_GCM:
                return AESGCM(key).decrypt(iv, body, aad or None)

            ciphertext, tag = body[:-MAC_BYTES], body[-MAC_BYTES:]
            enc_key, mac_key = key[:params.key_bytes], key[params.key_bytes:]
            mac = hmac.HMAC(mac_key, hashes.SHA256())
            mac.update(aad + iv + ciphertext)
            mac.verify(tag)

            decryptor = Cipher(algorithms.AES(enc_key), modes.CBC(iv)).decryptor()
            padded = decryptor.update(ciphertext) + decryptor.finalize()
            unpadder = padding.PKCS7(CBC_BLOCK_BITS).unpadder()
            return unpadder.update(padded) + unpadder.finalize()

        except (InvalidTag, InvalidSignature, ValueError) as e:
            raise AuthenticationError() from e

    def encrypt(self, plaintext: bytes, params: EncryptionParameters) -> bytes:
        """
        Encrypt plaintext bytes under ``params.password``.

        Args:
            plaintext: Serialized key material
            params: Encryption parameters carrying the password

        Returns:
            salt || iv || ciphertext
        """
        password = _require_password(params)
        salt = os.urandom(params.salt_bytes)
        key = self.derive_key(password, salt, params)
        return salt + self.seal(key, plaintext, params, aad=salt)

    def decrypt(self, blob: bytes, params: EncryptionParameters) -> bytes:
        """
        Decrypt a blob produced by ``encrypt``.

        Raises:
            AuthenticationError: wrong password, tampered or malformed blob
        """
        password = _require_password(params)
        if len(blob) < params.salt_bytes + params.overhead:
            logger.warning("decryption_failed", reason="blob_too_short", size=len(blob))
            raise AuthenticationError("encrypted blob is malformed")

        salt, sealed = blob[:params.salt_bytes], blob[params.salt_bytes:]
        key = self.derive_key(password, salt, params)
        try:
            return self.unseal(key, sealed, params, aad=salt)
        except AuthenticationError:
            logger.warning("decryption_failed", reason="authentication")
            raise


def _require_password(params: EncryptionParameters) -> str:
    if params.password is None:
        raise ValueError("encryption parameters carry no password")
    return params.password.get_secret_value()


__all__ = [
    "EncryptionParameters",
    "KeyCipher",
    "AES_256_GCM",
    "AES_256_CBC",
]
