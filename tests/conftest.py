"""
Test configuration and fixtures.
"""

import hashlib
import sys
from decimal import Decimal
from pathlib import Path

import pytest
import structlog

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from keyshell.accounts.encryption import EncryptionParameters
from keyshell.accounts.repository import AccountStore
from keyshell.accounts.service import AccountService
from keyshell.accounts.session import SessionManager
from keyshell.chain.client import BlockchainClientPool


# Cheap key derivation so tests stay fast
FAST_ITERATIONS = 1000


# ============== FAKES ==============

class FakeClient:
    """In-memory stand-in for BlockchainClient."""

    def __init__(self, network_name: str):
        self.network_name = network_name
        self.block_number = 100
        self.balance = Decimal("1.5")
        self.receipts = {}
        self.sent = []

    async def get_chain_id(self):
        return 11155111

    async def get_block_number(self):
        return self.block_number

    async def get_balance(self, address):
        return self.balance

    async def get_transaction_count(self, address):
        return len(self.sent)

    async def get_gas_price(self):
        return 10 ** 9

    async def get_receipt(self, tx_hash):
        return self.receipts.get(tx_hash)

    async def send_raw_transaction(self, raw_tx):
        self.sent.append(raw_tx)
        return "0x" + hashlib.sha256(raw_tx.encode()).hexdigest()


class RecordingClientFactory:
    """Client factory that records every construction."""

    def __init__(self):
        self.calls = []

    def __call__(self, network_name):
        self.calls.append(network_name)
        return FakeClient(network_name)


class FakeNode:
    """Session runtime stand-in that records construction and destroy order."""

    def __init__(self, events, fail_destroy=False, **kwargs):
        self.kwargs = kwargs
        self.handle = Path(kwargs["dir"]).parent.name
        self.network_name = kwargs["network_name"]
        self.transactor = kwargs["transactor"]
        self.keeper = kwargs["keeper"]
        self.events = events
        self.fail_destroy = fail_destroy
        self.destroy_calls = 0
        self.started = False
        self.last_sync = None
        self._listeners = []
        events.append(("construct", self.handle))

    @property
    def address(self):
        return self.transactor.address

    def add_destroy_listener(self, listener):
        self._listeners.append(listener)

    def start(self):
        self.started = True

    async def sync(self):
        self.last_sync = {"block_number": 100, "balance": "1.5"}
        return self.last_sync

    async def destroy(self):
        self.destroy_calls += 1
        self.events.append(("destroy", self.handle))
        for listener in self._listeners:
            listener()
        if self.fail_destroy:
            raise RuntimeError("disk on fire")


class NodeFactory:
    def __init__(self):
        self.events = []
        self.nodes = []
        self.fail_destroy = False

    def __call__(self, **kwargs):
        node = FakeNode(self.events, fail_destroy=self.fail_destroy, **kwargs)
        self.nodes.append(node)
        return node


# ============== FIXTURES ==============

@pytest.fixture(autouse=True)
def reset_structlog():
    """CLI tests configure structlog against a captured stream."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def encryption_params():
    """Encryption parameters with a low iteration count."""
    return EncryptionParameters(iterations=FAST_ITERATIONS)


@pytest.fixture
def accounts_dir(tmp_path):
    return tmp_path / "accounts"


@pytest.fixture
def store(accounts_dir):
    return AccountStore(accounts_dir)


@pytest.fixture
def client_factory():
    return RecordingClientFactory()


@pytest.fixture
def node_factory():
    return NodeFactory()


@pytest.fixture
def sessions(store, client_factory, node_factory, encryption_params):
    """Session manager wired to fakes for network and node."""
    return SessionManager(
        store=store,
        clients=BlockchainClientPool(client_factory),
        encryption=encryption_params,
        network_name="testnet",
        key_type="ethereum",
        sync_interval=60.0,
        confirmed_after=10,
        node_factory=node_factory,
    )


@pytest.fixture
def service(store, sessions):
    return AccountService(store, sessions)
