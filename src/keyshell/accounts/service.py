"""
Account management service.

Owns the account catalog, the blockchain client pool and the session manager.
Constructed once per process; ``load()`` reads the catalog from disk.
"""

from typing import List, Optional

import structlog

from keyshell.accounts.encryption import KeyCipher
from keyshell.accounts.identity import IdentityGenerator
from keyshell.accounts.repository import AccountStore
from keyshell.accounts.session import SessionManager, SessionState
from keyshell.chain.client import BlockchainClientPool
from keyshell.config import KeyshellConfig, config as default_config
from keyshell.errors import TeardownError

logger = structlog.get_logger()


class AccountService:
    """Process-wide owner of accounts and the active session."""

    def __init__(
        self,
        store: AccountStore,
        sessions: SessionManager,
    ):
        self.store = store
        self.sessions = sessions

    @classmethod
    def from_config(cls, cfg: Optional[KeyshellConfig] = None, **factories) -> "AccountService":
        """
        Build a service from configuration.

        ``factories`` are passed through to SessionManager (client pool,
        node/keeper/transactor factories, identity generator).
        """
        cfg = cfg or default_config
        store = AccountStore(cfg.storage.accounts_dir)
        clients = factories.pop("clients", None) or BlockchainClientPool()
        sessions = SessionManager(
            store=store,
            clients=clients,
            encryption=cfg.encryption.parameters(),
            network_name=cfg.network.name,
            key_type=cfg.network.key_type,
            sync_interval=cfg.network.sync_interval_seconds,
            confirmed_after=cfg.network.confirmed_after,
            cipher=factories.pop("cipher", None) or KeyCipher(),
            generator=factories.pop("generator", None) or IdentityGenerator(cfg.network.key_type),
            **factories,
        )
        return cls(store, sessions)

    @property
    def accounts(self) -> List[str]:
        return self.store.handles

    @property
    def clients(self) -> BlockchainClientPool:
        return self.sessions.clients

    async def load(self) -> List[str]:
        """Load the account catalog from disk."""
        return await self.store.load()

    async def close(self) -> None:
        """Log out of any active session. Used on process exit."""
        if self.sessions.state is SessionState.LOGGED_OUT:
            return
        try:
            await self.sessions.logout()
        except TeardownError as e:
            logger.warning("shutdown_teardown_failed", handle=e.handle, error=str(e))


__all__ = ["AccountService"]
