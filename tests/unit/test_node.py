"""
Test the session runtime node against an in-memory chain.
"""

import asyncio
import json

import pytest
from eth_account import Account
from web3 import Web3

from keyshell.accounts.identity import Identity
from keyshell.accounts.wallet import Transactor
from keyshell.errors import TeardownError
from keyshell.node.keeper import Keeper
from keyshell.node.runtime import STATE_FILE, Node

RECIPIENT = "0x" + "22" * 20


@pytest.fixture
def client(client_factory):
    return client_factory("testnet")


@pytest.fixture
def node(tmp_path, client, encryption_params):
    account = Account.create()
    transactor = Transactor(Web3.to_hex(account.key), client)
    keeper = Keeper(encryption_params.with_password("pw1"), tmp_path / "keeper")
    return Node(
        dir=tmp_path / "data",
        network_name="testnet",
        client=client,
        transactor=transactor,
        keys=[],
        keeper=keeper,
        identity=Identity(),
        sync_interval=3600,
        confirmed_after=10,
    )


@pytest.mark.asyncio
class TestNode:
    """Test Node sync and teardown."""

    async def test_sync_persists_state(self, node, tmp_path):
        state = await node.sync()

        assert state["block_number"] == 100
        assert state["balance"] == "1.5"
        assert state["address"] == node.address
        assert node.last_sync == state

        on_disk = json.loads((tmp_path / "data" / STATE_FILE).read_text())
        assert on_disk["block_number"] == 100
        assert await node.keeper.get("sync") == state

    async def test_transfer_confirms_after_enough_blocks(self, node, client):
        tx_hash = await node.send(RECIPIENT, 1000)

        assert len(client.sent) == 1
        assert tx_hash in node.pending

        client.receipts[tx_hash] = {"blockNumber": 95, "status": 1}
        await node.sync()
        assert tx_hash in node.pending

        client.block_number = 104
        state = await node.sync()

        assert tx_hash not in node.pending
        assert node.confirmed[tx_hash]["confirmations"] == 10
        assert state["confirmed"] == [tx_hash]
        assert await node.keeper.get("pending") == {}

    async def test_overlapping_syncs_confirm_once(self, node, client, monkeypatch):
        """A background sync and an explicit sync never process the same receipt twice."""
        tx_hash = await node.send(RECIPIENT, 1000)
        client.receipts[tx_hash] = {"blockNumber": 80, "status": 1}
        real_get_receipt = client.get_receipt

        async def slow_get_receipt(tx):
            await asyncio.sleep(0)
            return await real_get_receipt(tx)

        monkeypatch.setattr(client, "get_receipt", slow_get_receipt)

        results = await asyncio.gather(node.sync(), node.sync(), return_exceptions=True)

        assert not [r for r in results if isinstance(r, BaseException)]
        assert list(node.confirmed) == [tx_hash]
        assert node.pending == {}
        assert await node.keeper.get("pending") == {}
        assert await node.keeper.get("sync") == node.last_sync

    async def test_start_and_destroy(self, node):
        node.start()
        assert node.running

        await node.destroy()

        assert not node.running
        assert node.destroyed
        with pytest.raises(RuntimeError):
            node.start()

    async def test_destroy_runs_listeners_once(self, node):
        calls = []

        async def async_listener():
            calls.append("async")

        node.add_destroy_listener(node.keeper.close)
        node.add_destroy_listener(lambda: calls.append("sync"))
        node.add_destroy_listener(async_listener)

        await node.destroy()
        await node.destroy()

        assert node.keeper.closed
        assert calls == ["sync", "async"]

    async def test_failing_listener_does_not_stop_others(self, node):
        def broken():
            raise OSError("cannot close")

        node.add_destroy_listener(broken)
        node.add_destroy_listener(node.keeper.close)

        with pytest.raises(TeardownError):
            await node.destroy()

        assert node.keeper.closed

    async def test_sync_loop_restores_pending(self, node, client):
        await node.keeper.put("pending", {"0xfeed": {"to": RECIPIENT, "amount_wei": 1}})

        node.start()
        for _ in range(100):
            if node.last_sync is not None:
                break
            await asyncio.sleep(0.01)
        await node.destroy()

        assert node.last_sync is not None
        assert "0xfeed" in node.last_sync["pending"]
