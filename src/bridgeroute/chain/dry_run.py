"""Dry-run chain client (no real network)."""

import asyncio
import logging
from typing import Optional

from bridgeroute.chain.base import APPROVE_SELECTOR, ChainClient, Receipt, ReceiptStatus
from bridgeroute.chains import is_native_address
from bridgeroute.routing.base import TxRequest

logger = logging.getLogger(__name__)

DEFAULT_DRY_RUN_BALANCE = 10**24


def _decode_approve(data: str) -> Optional[tuple[str, int]]:
    """(spender, amount) if `data` is ERC-20 approve calldata."""
    if not data or not data.lower().startswith(APPROVE_SELECTOR):
        return None
    body = data[len(APPROVE_SELECTOR):]
    if len(body) < 128:
        return None
    spender = "0x" + body[24:64]
    return spender, int(body[64:128], 16)


class DryRunChainClient(ChainClient):
    """In-memory chain state.

    Balances default to a large amount, allowances to zero. Transactions
    recorded by the dry-run signer are mined after `block_time` seconds;
    approvals update the allowance table when they are mined.
    """

    def __init__(self, block_time: float = 0.0, default_balance: int = DEFAULT_DRY_RUN_BALANCE):
        self.block_time = block_time
        self.default_balance = default_balance
        self._balances: dict[tuple[int, str, str], int] = {}
        self._allowances: dict[tuple[int, str, str, str], int] = {}
        self._mined: dict[str, asyncio.Event] = {}
        self._receipts: dict[str, Receipt] = {}
        self._reverting: set[str] = set()
        self._block_number = 1_000_000

    # ======================
    # Test / simulation controls
    # ======================

    def set_balance(self, chain_id: int, token: str, owner: str, amount: int) -> None:
        self._balances[(chain_id, token.lower(), owner.lower())] = amount

    def set_allowance(self, chain_id: int, token: str, owner: str, spender: str, amount: int) -> None:
        self._allowances[(chain_id, token.lower(), owner.lower(), spender.lower())] = amount

    def revert_calls_to(self, address: str) -> None:
        """Make every future transaction sent to `address` revert."""
        self._reverting.add(address.lower())

    def record_transaction(self, chain_id: int, tx_hash: str, sender: str, tx_request: TxRequest) -> None:
        """Register a broadcast transaction and schedule its mining."""
        self._mined[tx_hash] = asyncio.Event()
        asyncio.ensure_future(self._mine(chain_id, tx_hash, sender, tx_request))

    async def _mine(self, chain_id: int, tx_hash: str, sender: str, tx_request: TxRequest) -> None:
        if self.block_time > 0:
            await asyncio.sleep(self.block_time)
        self._block_number += 1

        if tx_request.to.lower() in self._reverting:
            status = ReceiptStatus.REVERTED
        else:
            status = ReceiptStatus.SUCCESS
            approval = _decode_approve(tx_request.data)
            if approval is not None:
                spender, amount = approval
                self.set_allowance(chain_id, tx_request.to, sender, spender, amount)

        self._receipts[tx_hash] = Receipt(
            tx_hash=tx_hash,
            status=status,
            block_number=self._block_number,
            revert_reason="execution reverted" if status is ReceiptStatus.REVERTED else None,
        )
        self._mined[tx_hash].set()
        logger.debug(f"[DRY RUN] Mined {tx_hash[:10]}... on chain {chain_id}: {status.value}")

    # ======================
    # ChainClient
    # ======================

    async def get_allowance(self, chain_id: int, token: str, owner: str, spender: str) -> int:
        if is_native_address(token):
            return 2**256 - 1
        return self._allowances.get((chain_id, token.lower(), owner.lower(), spender.lower()), 0)

    async def get_balance(self, chain_id: int, token: str, owner: str) -> int:
        return self._balances.get((chain_id, token.lower(), owner.lower()), self.default_balance)

    async def wait_for_receipt(self, chain_id: int, tx_hash: str) -> Receipt:
        event = self._mined.setdefault(tx_hash, asyncio.Event())
        await event.wait()
        return self._receipts[tx_hash]
