"""
Global configuration using Pydantic Settings.
All settings can be overridden from environment variables or a .env file.
"""

from pathlib import Path
from typing import Dict, Literal

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env file
load_dotenv()


class StorageConfig(BaseSettings):
    """Where account artifacts live on disk."""

    model_config = SettingsConfigDict(env_prefix="KEYSHELL_", extra="ignore")

    home: Path = Field(
        default=Path.home() / ".keyshell",
        description="Root directory for keyshell state"
    )

    @property
    def accounts_dir(self) -> Path:
        return self.home / "accounts"


class EncryptionConfig(BaseSettings):
    """Password-based key encryption parameters."""

    model_config = SettingsConfigDict(env_prefix="ENCRYPTION_", extra="ignore")

    # key derivation
    salt_bytes: int = Field(default=32, description="Salt length in bytes")
    digest: str = Field(default="sha256", description="PBKDF2 digest")
    key_bytes: int = Field(default=32, description="Derived key length")
    iterations: int = Field(default=64000, description="PBKDF2 iterations")

    # cipher
    algorithm: str = Field(default="aes-256-gcm", description="Cipher algorithm")
    iv_bytes: int = Field(default=12, description="IV / nonce length")

    def parameters(self):
        """Fixed process-wide parameters, without a password."""
        from keyshell.accounts.encryption import EncryptionParameters

        return EncryptionParameters(
            salt_bytes=self.salt_bytes,
            digest=self.digest,
            key_bytes=self.key_bytes,
            iterations=self.iterations,
            algorithm=self.algorithm,
            iv_bytes=self.iv_bytes,
        )


class NetworkConfig(BaseSettings):
    """Blockchain network configuration."""

    model_config = SettingsConfigDict(env_prefix="NETWORK_", extra="ignore")

    name: str = Field(default="testnet", description="Active network name")
    key_type: str = Field(
        default="ethereum",
        description="Key type used to sign on the active network"
    )
    sync_interval_seconds: float = Field(
        default=60.0,
        description="How often a logged in node syncs with the chain"
    )
    confirmed_after: int = Field(
        default=10,
        description="Confirmations before a transaction counts as confirmed"
    )
    rpc_urls: Dict[str, str] = Field(
        default={
            "testnet": "https://ethereum-sepolia-rpc.publicnode.com",
            "mainnet": "https://ethereum-rpc.publicnode.com",
        },
        description="RPC endpoint per network name"
    )
    request_timeout: float = Field(default=10.0, description="RPC timeout (s)")


class ShellConfig(BaseSettings):
    """Interactive shell configuration."""

    model_config = SettingsConfigDict(env_prefix="REPL_", extra="ignore")

    prompt: str = Field(default="keyshell > ", description="Shell prompt")
    history_path: Path = Field(
        default=Path.home() / ".keyshell_repl_history",
        description="Command history file"
    )


class KeyshellConfig(BaseSettings):
    """Master configuration aggregating all sub-configs."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    environment: Literal["development", "staging", "production"] = Field(
        default="development"
    )
    debug: bool = Field(default=False)
    log_level: str = Field(default="WARNING")
    log_format: Literal["console", "json"] = Field(default="console")

    # Sub-configurations
    storage: StorageConfig = Field(default_factory=StorageConfig)
    encryption: EncryptionConfig = Field(default_factory=EncryptionConfig)
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    repl: ShellConfig = Field(default_factory=ShellConfig)


# Global config instance
config = KeyshellConfig()


__all__ = [
    "KeyshellConfig",
    "StorageConfig",
    "EncryptionConfig",
    "NetworkConfig",
    "ShellConfig",
    "config",
]
