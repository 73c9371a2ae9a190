"""Chain-client collaborators.

- DryRunChainClient: in-memory balances, allowances and receipts
- EvmRpcClient: Ethereum JSON-RPC over httpx
"""

from bridgeroute.chain.base import ChainClient, Receipt, ReceiptStatus
from bridgeroute.chain.dry_run import DryRunChainClient
from bridgeroute.chain.evm import EvmRpcClient, RpcError

__all__ = [
    "ChainClient",
    "Receipt",
    "ReceiptStatus",
    "DryRunChainClient",
    "EvmRpcClient",
    "RpcError",
]
