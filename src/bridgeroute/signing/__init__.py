"""Wallet signing collaborators.

- DryRunSigner: simulated broadcast with deterministic hashes
- LocalAccountSigner: in-memory EVM key, broadcast over JSON-RPC
"""

from bridgeroute.signing.base import SigningError, WalletSigner
from bridgeroute.signing.dry_run import DryRunSigner

__all__ = [
    "SigningError",
    "WalletSigner",
    "DryRunSigner",
]
