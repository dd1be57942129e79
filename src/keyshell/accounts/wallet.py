"""
Transaction signing for a logged in account.

Handles balance checks, transfer building and transaction signing.
"""

import asyncio
from decimal import Decimal
from typing import Any

from eth_account import Account
from web3 import Web3
import structlog

logger = structlog.get_logger()

TRANSFER_GAS = 21000


class Transactor:
    """
    Signs and submits transactions with one private key on one network.

    Handles:
    - Balance queries
    - Transfer preparation
    - Transaction signing
    """

    def __init__(self, private_key: str, client: Any):
        self._account = Account.from_key(private_key)
        self.client = client

    def __repr__(self) -> str:
        return f"Transactor(address={self.address!r})"

    @property
    def address(self) -> str:
        return self._account.address

    async def get_balance(self) -> Decimal:
        """Balance of this account in ether."""
        return await self.client.get_balance(self.address)

    async def build_transfer(self, to: str, amount_wei: int, gas: int = TRANSFER_GAS) -> dict:
        """
        Build a value transfer transaction.

        Args:
            to: Recipient address
            amount_wei: Amount to send in wei
            gas: Gas limit

        Returns:
            Transaction dictionary
        """
        nonce, gas_price, chain_id = await asyncio.gather(
            self.client.get_transaction_count(self.address),
            self.client.get_gas_price(),
            self.client.get_chain_id(),
        )

        return {
            "to": Web3.to_checksum_address(to),
            "value": amount_wei,
            "gas": gas,
            "gasPrice": gas_price,
            "nonce": nonce,
            "chainId": chain_id,
        }

    def sign_transaction(self, transaction: dict) -> str:
        """
        Sign transaction with this account's key.

        Returns:
            Raw signed transaction (hex)
        """
        try:
            signed_tx = self._account.sign_transaction(transaction)
            return Web3.to_hex(signed_tx.raw_transaction)

        except Exception as e:
            logger.error("tx_sign_failed", address=self.address, error=str(e))
            raise

    async def send_transfer(self, to: str, amount_wei: int) -> str:
        """Build, sign and submit a transfer. Returns the transaction hash."""
        transaction = await self.build_transfer(to, amount_wei)
        raw_tx = self.sign_transaction(transaction)
        tx_hash = await self.client.send_raw_transaction(raw_tx)

        logger.info(
            "transfer_submitted",
            address=self.address,
            to=transaction["to"],
            amount_wei=amount_wei,
            tx_hash=tx_hash,
        )
        return tx_hash


__all__ = ["Transactor"]
