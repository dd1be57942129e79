"""
Login/logout and the single active session.

At most one account is logged in at a time. Logging in while another session
is active tears the old one down first. Every change to the session slot
happens under one lock.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, List, Optional

import structlog

from keyshell.accounts.encryption import EncryptionParameters, KeyCipher
from keyshell.accounts.identity import (
    Identity,
    IdentityGenerator,
    PrivateKey,
    dump_key_set,
    load_key_set,
    select_network_key,
)
from keyshell.accounts.repository import AccountStore, normalize_handle
from keyshell.accounts.wallet import Transactor
from keyshell.chain.client import BlockchainClientPool
from keyshell.errors import (
    AuthenticationError,
    NoMatchingKeyError,
    NotFoundError,
    NotLoggedInError,
    TeardownError,
)

logger = structlog.get_logger()


class SessionState(str, Enum):
    LOGGED_OUT = "logged_out"
    LOGGED_IN = "logged_in"


@dataclass
class Session:
    handle: str
    node: Any
    keeper: Any
    transactor: Any
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class SessionManager:
    """
    Manages account creation, deletion and the active session.

    Collaborators that talk to the outside world (signer, keeper, node) are
    built through the injected factories.
    """

    def __init__(
        self,
        store: AccountStore,
        clients: BlockchainClientPool,
        encryption: EncryptionParameters,
        network_name: str,
        key_type: str,
        sync_interval: float,
        confirmed_after: int,
        cipher: Optional[KeyCipher] = None,
        generator: Optional[IdentityGenerator] = None,
        transactor_factory: Callable[..., Any] = Transactor,
        keeper_factory: Optional[Callable[..., Any]] = None,
        node_factory: Optional[Callable[..., Any]] = None,
    ):
        self.store = store
        self.clients = clients
        self.encryption = encryption
        self.cipher = cipher or KeyCipher()
        self.generator = generator or IdentityGenerator(key_type)

        # read at login time; the shell may change them between sessions
        self.network_name = network_name
        self.key_type = key_type
        self.sync_interval = sync_interval
        self.confirmed_after = confirmed_after

        # keyshell.node builds on this package, so resolve defaults late
        from keyshell.node import Keeper, Node

        self.transactor_factory = transactor_factory
        self.keeper_factory = keeper_factory or Keeper
        self.node_factory = node_factory or Node

        self._session: Optional[Session] = None
        self._lock = asyncio.Lock()

    # ============== STATE ==============

    @property
    def state(self) -> SessionState:
        return SessionState.LOGGED_OUT if self._session is None else SessionState.LOGGED_IN

    @property
    def active_handle(self) -> Optional[str]:
        return self._session.handle if self._session else None

    @property
    def node(self) -> Optional[Any]:
        return self._session.node if self._session else None

    @property
    def session(self) -> Optional[Session]:
        return self._session

    # ============== PASSWORDS ==============

    async def _load_keys(self, handle: str, password: str) -> List[PrivateKey]:
        blob = await self.store.load_encrypted_keys(handle)
        params = self.encryption.with_password(password)
        try:
            raw = await asyncio.to_thread(self.cipher.decrypt, blob, params)
            return load_key_set(raw)
        except AuthenticationError as e:
            logger.warning("authentication_failed", handle=handle)
            raise AuthenticationError(f'wrong password for account "{handle}"', handle) from e

    async def check_password(self, handle: str, password: str) -> None:
        """
        Verify ``password`` without logging in.

        Raises:
            NotFoundError: unknown account
            AuthenticationError: wrong password
        """
        handle = normalize_handle(handle)
        await self._load_keys(handle, password)
        logger.debug("password_verified", handle=handle)

    # ============== SESSIONS ==============

    async def login(self, handle: str, password: str) -> Any:
        """
        Log in to an account, replacing any active session.

        Returns:
            The node bound to the new session
        """
        handle = normalize_handle(handle)

        async with self._lock:
            if not self.store.has(handle):
                raise NotFoundError(handle)

            if self._session is not None:
                try:
                    await self._teardown()
                except TeardownError as e:
                    logger.warning("previous_session_teardown_failed", handle=e.handle, error=str(e))

            self._session = await self._open_session(handle, password)

        logger.info("logged_in", handle=handle, network=self.network_name)
        return self._session.node

    async def _open_session(self, handle: str, password: str) -> Session:
        network_name = self.network_name
        keys = await self._load_keys(handle, password)

        key = select_network_key(keys, self.key_type, network_name)
        if key is None:
            raise NoMatchingKeyError(handle, self.key_type, network_name)

        client = await self.clients.get(network_name)
        transactor = self.transactor_factory(key.priv.get_secret_value(), client)
        keeper = self.keeper_factory(
            encryption=self.encryption.with_password(password),
            path=self.store.keeper_path(handle),
            validate_on_put=True,
        )

        try:
            data_dir = await asyncio.to_thread(self.store.ensure_data_path, handle)
            node = self.node_factory(
                dir=data_dir,
                network_name=network_name,
                client=client,
                transactor=transactor,
                keys=keys,
                keeper=keeper,
                identity=self.store.identity(handle),
                sync_interval=self.sync_interval,
                confirmed_after=self.confirmed_after,
            )
            node.add_destroy_listener(keeper.close)
            node.start()
        except Exception as e:
            logger.error("session_start_failed", handle=handle, error=str(e))
            keeper.close()
            raise

        return Session(handle=handle, node=node, keeper=keeper, transactor=transactor)

    async def logout(self) -> None:
        """
        Log out of the active session.

        Raises:
            NotLoggedInError: no active session
            TeardownError: the node failed to shut down; the session is
                cleared regardless
        """
        async with self._lock:
            if self._session is None:
                raise NotLoggedInError()
            await self._teardown()

    async def _teardown(self) -> None:
        session = self._session
        try:
            await session.node.destroy()
        except Exception as e:
            logger.error("logout_teardown_failed", handle=session.handle, error=str(e))
            raise TeardownError(
                f'logout of "{session.handle}" did not complete cleanly: {e}',
                session.handle,
            ) from e
        finally:
            self._session = None
            logger.info("logged_out", handle=session.handle)

    # ============== ACCOUNTS ==============

    async def create_account(self, handle: str, password: str) -> Identity:
        """
        Create a new account with a freshly generated identity.

        Returns:
            The new identity
        """
        handle = normalize_handle(handle)
        if not password:
            raise ValueError("password must not be empty")
        await asyncio.to_thread(self.store.check_available, handle)

        identity, keys = await asyncio.to_thread(self.generator.generate, self.network_name)

        params = self.encryption.with_password(password)
        encrypted_keys = await asyncio.to_thread(self.cipher.encrypt, dump_key_set(keys), params)
        await self.store.create(handle, identity, encrypted_keys)

        logger.info(
            "account_created",
            handle=handle,
            network=self.network_name,
            fingerprints=[key.fingerprint for key in identity.pubkeys],
        )
        return identity

    async def delete_account(self, handle: str, password: str) -> None:
        """
        Delete an account permanently after verifying its password.

        WARNING: This is irreversible! The encrypted keys are removed.
        """
        handle = normalize_handle(handle)
        await self.check_password(handle, password)

        async with self._lock:
            if self._session is not None and self._session.handle == handle:
                try:
                    await self._teardown()
                except TeardownError as e:
                    logger.warning("deleted_session_teardown_failed", handle=handle, error=str(e))

            await self.store.delete(handle)


__all__ = ["SessionManager", "SessionState", "Session"]
