"""
Session runtime node.

A node is created on login and owns everything a logged in account needs:
the transaction signer, the key set, the keeper and a background loop that
keeps balance, chain height and submitted transactions in sync.
"""

import asyncio
import inspect
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

import structlog

from keyshell.accounts.identity import Identity, PrivateKey
from keyshell.errors import TeardownError
from keyshell.fsutil import atomic_write

logger = structlog.get_logger()

STATE_FILE = "state.json"


class Node:
    """
    Runtime object bound to one logged in account.

    Responsibilities:
    - Periodic sync with the chain (balance, block height)
    - Tracking submitted transactions until ``confirmed_after`` confirmations
    - Running destroy listeners (closing the keeper) on teardown
    """

    def __init__(
        self,
        *,
        dir: Path,
        network_name: str,
        client: Any,
        transactor: Any,
        keys: Sequence[PrivateKey],
        keeper: Any,
        identity: Identity,
        sync_interval: float,
        confirmed_after: int,
    ):
        self.dir = Path(dir)
        self.network_name = network_name
        self.client = client
        self.transactor = transactor
        self.keeper = keeper
        self.identity = identity
        self.sync_interval = sync_interval
        self.confirmed_after = confirmed_after

        self._keys: List[PrivateKey] = list(keys)
        self._pending: Dict[str, dict] = {}
        self._confirmed: Dict[str, dict] = {}
        self._listeners: List[Callable[[], Any]] = []
        self._sync_task: Optional[asyncio.Task] = None
        self._sync_lock = asyncio.Lock()
        self._destroyed = False

        self.last_sync: Optional[dict] = None

    def __repr__(self) -> str:
        return f"Node(network={self.network_name!r}, address={self.address!r})"

    @property
    def address(self) -> str:
        return self.transactor.address

    @property
    def running(self) -> bool:
        return self._sync_task is not None and not self._sync_task.done()

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    @property
    def pending(self) -> Dict[str, dict]:
        return dict(self._pending)

    @property
    def confirmed(self) -> Dict[str, dict]:
        return dict(self._confirmed)

    def add_destroy_listener(self, listener: Callable[[], Any]) -> None:
        """Register a callable (sync or async) to run after the node stops."""
        self._listeners.append(listener)

    def start(self) -> None:
        """Start the background sync loop."""
        if self._destroyed:
            raise RuntimeError("node has been destroyed")

        if self.running:
            logger.warning("node_already_running", network=self.network_name)
            return

        self._sync_task = asyncio.create_task(self._sync_loop())
        logger.info(
            "node_started",
            network=self.network_name,
            address=self.address,
            sync_interval=self.sync_interval,
        )

    async def sync(self) -> dict:
        """
        Sync once with the chain and persist the resulting state.

        Runs one at a time; the background loop and explicit calls queue on
        the same lock.
        """
        async with self._sync_lock:
            return await self._sync()

    async def _sync(self) -> dict:
        balance = await self.transactor.get_balance()
        block_number = await self.client.get_block_number()
        await self._check_pending(block_number)

        state = {
            "address": self.address,
            "network": self.network_name,
            "balance": str(balance),
            "block_number": block_number,
            "synced_at": datetime.now(timezone.utc).isoformat(),
            "pending": sorted(self._pending),
            "confirmed": sorted(self._confirmed),
        }

        await self.keeper.put("sync", state)
        await asyncio.to_thread(self._write_state, state)
        self.last_sync = state

        logger.info(
            "node_synced",
            network=self.network_name,
            block_number=block_number,
            pending=len(self._pending),
        )
        return state

    def _write_state(self, state: dict) -> None:
        self.dir.mkdir(parents=True, exist_ok=True)
        atomic_write(self.dir / STATE_FILE, json.dumps(state, indent=2))

    async def _check_pending(self, block_number: int) -> None:
        for tx_hash in list(self._pending):
            receipt = await self.client.get_receipt(tx_hash)
            if receipt is None:
                continue

            confirmations = block_number - receipt["blockNumber"] + 1
            if confirmations < self.confirmed_after:
                continue

            record = self._pending.pop(tx_hash)
            record.update(
                block_number=receipt["blockNumber"],
                status=receipt.get("status"),
                confirmations=confirmations,
            )
            self._confirmed[tx_hash] = record
            logger.info(
                "transaction_confirmed",
                tx_hash=tx_hash,
                confirmations=confirmations,
            )

        if self._confirmed:
            await self.keeper.put("confirmed", self._confirmed)
        await self.keeper.put("pending", self._pending)

    async def send(self, to: str, amount_wei: int) -> str:
        """Submit a transfer and track it until confirmed."""
        if self._destroyed:
            raise RuntimeError("node has been destroyed")

        tx_hash = await self.transactor.send_transfer(to, amount_wei)
        async with self._sync_lock:
            self._pending[tx_hash] = {
                "to": to,
                "amount_wei": amount_wei,
                "submitted_at": datetime.now(timezone.utc).isoformat(),
            }
            await self.keeper.put("pending", self._pending)
        return tx_hash

    async def _restore(self) -> None:
        async with self._sync_lock:
            self._pending.update(await self.keeper.get("pending", {}))
            self._confirmed.update(await self.keeper.get("confirmed", {}))

    async def _sync_loop(self) -> None:
        """Sync every ``sync_interval`` seconds until cancelled."""
        logger.info("sync_loop_started", network=self.network_name)

        try:
            try:
                await self._restore()
            except Exception as e:
                logger.error("node_restore_failed", network=self.network_name, error=str(e))

            while True:
                try:
                    await self.sync()
                except Exception as e:
                    logger.error(
                        "sync_loop_error",
                        network=self.network_name,
                        error=str(e),
                    )

                await asyncio.sleep(self.sync_interval)

        except asyncio.CancelledError:
            logger.info("sync_loop_cancelled", network=self.network_name)
            raise

    async def destroy(self) -> None:
        """
        Stop background work, then run destroy listeners.

        Every listener runs even if an earlier one fails. Calling destroy
        again is a no-op.

        Raises:
            TeardownError: one or more listeners failed
        """
        if self._destroyed:
            return
        self._destroyed = True

        if self._sync_task is not None:
            self._sync_task.cancel()
            await asyncio.gather(self._sync_task, return_exceptions=True)
            self._sync_task = None

        self._keys = []

        errors = []
        for listener in self._listeners:
            try:
                result = listener()
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error("destroy_listener_failed", network=self.network_name, error=str(e))
                errors.append(e)
        self._listeners.clear()

        logger.info("node_destroyed", network=self.network_name)

        if errors:
            raise TeardownError(f"node teardown failed: {errors[0]}") from errors[0]


__all__ = ["Node"]
