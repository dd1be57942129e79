"""
Blockchain network access.
"""

from keyshell.chain.client import BlockchainClient, BlockchainClientPool

__all__ = [
    "BlockchainClient",
    "BlockchainClientPool",
]
