"""Chain-client collaborator interface."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from bridgeroute.routing.base import TxRequest

logger = logging.getLogger(__name__)

# ERC-20 function selectors
APPROVE_SELECTOR = "0x095ea7b3"  # approve(address,uint256)
ALLOWANCE_SELECTOR = "0xdd62ed3e"  # allowance(address,address)
BALANCE_OF_SELECTOR = "0x70a08231"  # balanceOf(address)

APPROVAL_GAS_LIMIT = 100_000


def _pad_address(address: str) -> str:
    return address[2:].lower().zfill(64)


def encode_approve(spender: str, amount: int) -> str:
    """Calldata for ERC-20 approve(spender, amount)."""
    return APPROVE_SELECTOR + _pad_address(spender) + hex(amount)[2:].zfill(64)


def encode_allowance(owner: str, spender: str) -> str:
    """Calldata for ERC-20 allowance(owner, spender)."""
    return ALLOWANCE_SELECTOR + _pad_address(owner) + _pad_address(spender)


def encode_balance_of(owner: str) -> str:
    """Calldata for ERC-20 balanceOf(owner)."""
    return BALANCE_OF_SELECTOR + _pad_address(owner)


class ReceiptStatus(str, Enum):
    SUCCESS = "success"
    REVERTED = "reverted"


@dataclass(frozen=True)
class Receipt:
    """Mined transaction receipt."""

    tx_hash: str
    status: ReceiptStatus
    block_number: int
    revert_reason: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status is ReceiptStatus.SUCCESS


class ChainClient(ABC):
    """Read access to chains plus receipt waiting."""

    @abstractmethod
    async def get_allowance(self, chain_id: int, token: str, owner: str, spender: str) -> int:
        """ERC-20 allowance of `spender` over `owner`'s tokens."""
        pass

    @abstractmethod
    async def get_balance(self, chain_id: int, token: str, owner: str) -> int:
        """Balance of `owner` in smallest units (native or ERC-20)."""
        pass

    @abstractmethod
    async def wait_for_receipt(self, chain_id: int, tx_hash: str) -> Receipt:
        """Block until the transaction is mined. Callers bound this with a timeout."""
        pass

    def build_approval(self, chain_id: int, token: str, spender: str, amount: int) -> TxRequest:
        """Unsigned ERC-20 approval request."""
        return TxRequest(
            chain_id=chain_id,
            to=token,
            data=encode_approve(spender, amount),
            value=0,
            gas_limit=APPROVAL_GAS_LIMIT,
        )
