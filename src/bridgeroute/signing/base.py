"""Wallet collaborator interface.

The engine never holds private keys. It hands unsigned transaction
requests to a wallet backend which signs, broadcasts and returns the
transaction hash.
"""

import logging
from abc import ABC, abstractmethod

from bridgeroute.routing.base import TxRequest

logger = logging.getLogger(__name__)


class SigningError(Exception):
    """Wallet could not sign or broadcast the transaction."""

    def __init__(self, message: str, rejected: bool = False):
        self.rejected = rejected
        super().__init__(message)


class WalletSigner(ABC):
    """Abstract base class for wallet backends.

    Implementations should raise SigningError(rejected=True) when the user
    declines, and SigningError for other wallet failures.
    """

    @abstractmethod
    async def get_address(self, chain_id: int) -> str:
        """Sending account for a chain."""
        pass

    @abstractmethod
    async def sign_and_send(self, chain_id: int, tx_request: TxRequest) -> str:
        """Sign and broadcast a transaction. Returns the transaction hash."""
        pass
