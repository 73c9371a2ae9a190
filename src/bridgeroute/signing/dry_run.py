"""Dry-run signer for simulated execution."""

import hashlib
import logging
from typing import Optional

from bridgeroute.chain.dry_run import DryRunChainClient
from bridgeroute.routing.base import TxRequest
from bridgeroute.signing.base import SigningError, WalletSigner

logger = logging.getLogger(__name__)

DRY_RUN_ADDRESS = "0x000000000000000000000000000000000000dEaD"


class DryRunSigner(WalletSigner):
    """Pretends to sign and broadcast.

    Hashes are deterministic per (chain, nonce, request) and every sent
    request is recorded on the dry-run chain so receipts arrive.
    """

    def __init__(self, chain: Optional[DryRunChainClient] = None, address: Optional[str] = None):
        self.chain = chain
        self.address = address or DRY_RUN_ADDRESS
        self.sent: list[tuple[int, TxRequest]] = []
        self.reject_next = False

    async def get_address(self, chain_id: int) -> str:
        return self.address

    async def sign_and_send(self, chain_id: int, tx_request: TxRequest) -> str:
        if self.reject_next:
            self.reject_next = False
            raise SigningError("User rejected the request", rejected=True)

        nonce = len(self.sent)
        payload = f"{chain_id}:{nonce}:{self.address}:{tx_request.to}:{tx_request.data}:{tx_request.value}"
        tx_hash = "0x" + hashlib.sha256(payload.encode()).hexdigest()
        self.sent.append((chain_id, tx_request))

        if self.chain is not None:
            self.chain.record_transaction(chain_id, tx_hash, self.address, tx_request)

        logger.info(f"[DRY RUN] Sent {tx_hash[:10]}... to {tx_request.to} on chain {chain_id}")
        return tx_hash
