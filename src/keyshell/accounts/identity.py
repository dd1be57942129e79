"""
Identity documents and key sets.

An identity is the public document published for an account. The matching
private keys are only ever held in memory or encrypted on disk.
"""

import json
from typing import List, Optional, Sequence, Tuple

from eth_account import Account
from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError
from web3 import Web3
import structlog

from keyshell.errors import AuthenticationError, IdentityGenerationError

logger = structlog.get_logger()

IDENTITY_KEY_TYPE = "ec"


class KeyDescriptor(BaseModel):
    """Public half of a key, as listed in an identity."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    type: str
    network_name: Optional[str] = Field(default=None, alias="networkName")
    purpose: str
    fingerprint: str


class PrivateKey(KeyDescriptor):
    """A key record with its secret. Never persisted unencrypted."""

    priv: SecretStr = Field(repr=False)

    def describe(self) -> KeyDescriptor:
        return KeyDescriptor(
            type=self.type,
            network_name=self.network_name,
            purpose=self.purpose,
            fingerprint=self.fingerprint,
        )


class Identity(BaseModel):
    """Public identity document (identity.json)."""

    model_config = ConfigDict(extra="allow", frozen=True)

    v: int = 1
    pubkeys: List[KeyDescriptor] = Field(default_factory=list)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


def dump_key_set(keys: Sequence[PrivateKey]) -> bytes:
    """Serialize a key set, secrets included, for encryption."""
    records = []
    for key in keys:
        record = key.describe().model_dump(by_alias=True)
        record["priv"] = key.priv.get_secret_value()
        records.append(record)
    return json.dumps(records).encode("utf-8")


def load_key_set(raw: bytes) -> List[PrivateKey]:
    """Parse decrypted key material produced by ``dump_key_set``."""
    try:
        records = json.loads(raw.decode("utf-8"))
        if not isinstance(records, list):
            raise ValueError("key set must be a list")
        return [PrivateKey.model_validate(record) for record in records]
    except (UnicodeDecodeError, ValueError, ValidationError) as e:
        raise AuthenticationError("decrypted key set is not readable") from e


def select_network_key(
    keys: Sequence[PrivateKey],
    key_type: str,
    network_name: str,
) -> Optional[PrivateKey]:
    """First key of ``key_type`` bound to ``network_name``, if any."""
    for key in keys:
        if key.type == key_type and key.network_name == network_name:
            return key
    return None


class IdentityGenerator:
    """
    Generates a fresh identity and its private keys.

    Each identity gets one signing key for the network plus one identity
    key that is not bound to any network.
    """

    def __init__(self, key_type: str = "ethereum"):
        self.key_type = key_type

    def _new_key(self, key_type: str, purpose: str, network_name: Optional[str]) -> PrivateKey:
        account = Account.create()
        return PrivateKey(
            type=key_type,
            network_name=network_name,
            purpose=purpose,
            fingerprint=account.address,
            priv=SecretStr(Web3.to_hex(account.key)),
        )

    def generate(self, network_name: str) -> Tuple[Identity, List[PrivateKey]]:
        """
        Create a new identity for ``network_name``.

        Returns:
            (identity, private key set)
        """
        try:
            keys = [
                self._new_key(self.key_type, "payment", network_name),
                self._new_key(IDENTITY_KEY_TYPE, "sign", None),
            ]
        except Exception as e:
            logger.error("identity_generation_failed", network=network_name, error=str(e))
            raise IdentityGenerationError(f"could not generate identity: {e}") from e

        identity = Identity(pubkeys=[key.describe() for key in keys])
        logger.info(
            "identity_generated",
            network=network_name,
            fingerprints=[key.fingerprint for key in keys],
        )
        return identity, keys


__all__ = [
    "KeyDescriptor",
    "PrivateKey",
    "Identity",
    "IdentityGenerator",
    "dump_key_set",
    "load_key_set",
    "select_network_key",
]
