"""Local signing backend.

Signs with an in-memory private key and broadcasts through the EVM RPC
client. Suitable for development and small hot wallets only.
"""

import logging
from typing import Optional

from eth_account import Account
from eth_utils import to_checksum_address

from bridgeroute.chain.evm import EvmRpcClient, RpcError
from bridgeroute.routing.base import TxRequest
from bridgeroute.signing.base import SigningError, WalletSigner

logger = logging.getLogger(__name__)

# Margin added on top of eth_estimateGas
GAS_BUFFER_PERCENT = 20


class LocalAccountSigner(WalletSigner):
    """Wallet backend holding one EVM account, valid on every chain."""

    def __init__(self, private_key: str, rpc: EvmRpcClient):
        self._account = Account.from_key(private_key)
        self._rpc = rpc
        logger.info(f"Local signer loaded for {self._account.address}")

    async def get_address(self, chain_id: int) -> str:
        return self._account.address

    async def sign_and_send(self, chain_id: int, tx_request: TxRequest) -> str:
        sender = self._account.address
        try:
            nonce = await self._rpc.get_nonce(chain_id, sender)
            gas_price = await self._rpc.get_gas_price(chain_id)
            gas_limit = tx_request.gas_limit or await self._estimate_gas(chain_id, tx_request)

            tx = {
                "nonce": nonce,
                "gasPrice": gas_price,
                "gas": gas_limit,
                "to": to_checksum_address(tx_request.to),
                "value": tx_request.value,
                "data": tx_request.data,
                "chainId": chain_id,
            }
            signed = self._account.sign_transaction(tx)
            raw = signed.raw_transaction.hex()
            tx_hash = await self._rpc.send_raw_transaction(chain_id, raw)
        except RpcError as e:
            logger.error(f"Broadcast on chain {chain_id} failed: {e}")
            raise SigningError(str(e)) from e

        logger.info(f"Broadcast {tx_hash} on chain {chain_id} (nonce {nonce})")
        return tx_hash

    async def _estimate_gas(self, chain_id: int, tx_request: TxRequest) -> int:
        estimate = await self._rpc.estimate_gas(
            chain_id,
            {
                "from": self._account.address,
                "to": tx_request.to,
                "data": tx_request.data,
                "value": hex(tx_request.value),
            },
        )
        return estimate * (100 + GAS_BUFFER_PERCENT) // 100


def create_local_signer(private_key: Optional[str], rpc: EvmRpcClient) -> Optional[LocalAccountSigner]:
    """Create the local signer, or None when no key is configured."""
    if not private_key:
        return None
    return LocalAccountSigner(private_key, rpc)
