"""
Blockchain network clients.

One client per network name is created lazily and shared for the lifetime of
the process.
"""

import asyncio
from decimal import Decimal
from typing import Any, Callable, Dict, Optional

from web3 import Web3
from web3.exceptions import TransactionNotFound
import structlog

from keyshell.config import config

logger = structlog.get_logger()


class BlockchainClient:
    """
    Thin async wrapper around a web3 HTTP provider for one network.

    Constructing a client performs no network I/O.
    """

    def __init__(
        self,
        network_name: str,
        rpc_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        if rpc_url is None:
            try:
                rpc_url = config.network.rpc_urls[network_name]
            except KeyError:
                raise ValueError(f"no RPC endpoint configured for network {network_name!r}") from None

        self.network_name = network_name
        self.rpc_url = rpc_url
        self.w3 = Web3(Web3.HTTPProvider(
            rpc_url,
            request_kwargs={"timeout": timeout or config.network.request_timeout},
        ))

    def __repr__(self) -> str:
        return f"BlockchainClient({self.network_name!r}, {self.rpc_url!r})"

    async def get_chain_id(self) -> int:
        return await asyncio.to_thread(lambda: self.w3.eth.chain_id)

    async def get_block_number(self) -> int:
        return await asyncio.to_thread(lambda: self.w3.eth.block_number)

    async def get_balance(self, address: str) -> Decimal:
        """Balance of ``address`` in ether."""
        balance_wei = await asyncio.to_thread(self.w3.eth.get_balance, address)
        return Decimal(balance_wei) / Decimal(10 ** 18)

    async def get_transaction_count(self, address: str) -> int:
        return await asyncio.to_thread(self.w3.eth.get_transaction_count, address)

    async def get_gas_price(self) -> int:
        return await asyncio.to_thread(lambda: self.w3.eth.gas_price)

    async def get_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        """Transaction receipt, or None while the transaction is unmined."""
        try:
            receipt = await asyncio.to_thread(self.w3.eth.get_transaction_receipt, tx_hash)
        except TransactionNotFound:
            return None
        return dict(receipt)

    async def send_raw_transaction(self, raw_tx: str) -> str:
        tx_hash = await asyncio.to_thread(self.w3.eth.send_raw_transaction, raw_tx)
        return Web3.to_hex(tx_hash)


class BlockchainClientPool:
    """
    Cache of one client per network name.

    Clients are never evicted or closed.
    """

    def __init__(self, factory: Callable[[str], Any] = BlockchainClient):
        self._factory = factory
        self._clients: Dict[str, Any] = {}
        self._lock = asyncio.Lock()

    def __contains__(self, network_name: str) -> bool:
        return network_name in self._clients

    def __len__(self) -> int:
        return len(self._clients)

    async def get(self, network_name: str) -> Any:
        """Get the client for ``network_name``, creating it on first use."""
        client = self._clients.get(network_name)
        if client is not None:
            return client

        async with self._lock:
            client = self._clients.get(network_name)
            if client is None:
                client = self._factory(network_name)
                self._clients[network_name] = client
                logger.info("blockchain_client_created", network=network_name)

        return client


__all__ = ["BlockchainClient", "BlockchainClientPool"]
