"""EVM chain client over JSON-RPC.

Reads allowances and balances with eth_call / eth_getBalance and waits
for receipts by polling eth_getTransactionReceipt. The same client also
exposes the nonce, gas price and raw broadcast calls the local signer
needs.
"""

import asyncio
import logging
from typing import Any, Callable, Optional

import httpx

from bridgeroute.chain.base import (
    ChainClient,
    Receipt,
    ReceiptStatus,
    encode_allowance,
    encode_balance_of,
)
from bridgeroute.chains import is_native_address

logger = logging.getLogger(__name__)


class RpcError(Exception):
    """JSON-RPC call failed or returned an error object."""

    def __init__(self, method: str, message: str, code: Optional[int] = None):
        self.method = method
        self.code = code
        super().__init__(f"{method}: {message}")


def _hex_to_int(value: Optional[str]) -> int:
    if not value or value == "0x":
        return 0
    return int(value, 16)


class EvmRpcClient(ChainClient):
    """Chain client speaking Ethereum JSON-RPC over httpx.

    Args:
        rpc_url_for: callable returning the RPC URL for a chain id, or None
        timeout: per-request timeout in seconds
        poll_interval: delay between receipt polls
        transport: optional httpx transport (tests use MockTransport)
    """

    def __init__(
        self,
        rpc_url_for: Callable[[int], Optional[str]],
        timeout: float = 15.0,
        poll_interval: float = 3.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._rpc_url_for = rpc_url_for
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._transport = transport
        self._request_id = 0

    def _url(self, chain_id: int) -> str:
        url = self._rpc_url_for(chain_id)
        if not url:
            raise RpcError("rpc_url", f"no RPC endpoint configured for chain {chain_id}")
        return url

    async def _call(self, chain_id: int, method: str, params: list) -> Any:
        self._request_id += 1
        payload = {"jsonrpc": "2.0", "method": method, "params": params, "id": self._request_id}
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(self._url(chain_id), json=payload)

        if response.status_code != 200:
            raise RpcError(method, f"HTTP {response.status_code}")

        data = response.json()
        if "error" in data and data["error"]:
            error = data["error"]
            raise RpcError(method, error.get("message", str(error)), error.get("code"))
        return data.get("result")

    # ======================
    # Reads
    # ======================

    async def get_allowance(self, chain_id: int, token: str, owner: str, spender: str) -> int:
        if is_native_address(token):
            return 2**256 - 1
        result = await self._call(
            chain_id,
            "eth_call",
            [{"to": token, "data": encode_allowance(owner, spender)}, "latest"],
        )
        return _hex_to_int(result)

    async def get_balance(self, chain_id: int, token: str, owner: str) -> int:
        if is_native_address(token):
            result = await self._call(chain_id, "eth_getBalance", [owner, "latest"])
        else:
            result = await self._call(
                chain_id,
                "eth_call",
                [{"to": token, "data": encode_balance_of(owner)}, "latest"],
            )
        return _hex_to_int(result)

    async def get_receipt(self, chain_id: int, tx_hash: str) -> Optional[Receipt]:
        """Receipt if mined, otherwise None."""
        result = await self._call(chain_id, "eth_getTransactionReceipt", [tx_hash])
        if result is None:
            return None
        status = ReceiptStatus.SUCCESS if _hex_to_int(result.get("status")) == 1 else ReceiptStatus.REVERTED
        return Receipt(
            tx_hash=tx_hash,
            status=status,
            block_number=_hex_to_int(result.get("blockNumber")),
        )

    async def wait_for_receipt(self, chain_id: int, tx_hash: str) -> Receipt:
        """Poll until mined. Transient RPC errors are logged and polling continues."""
        while True:
            try:
                receipt = await self.get_receipt(chain_id, tx_hash)
            except (RpcError, httpx.HTTPError) as e:
                logger.warning(f"Receipt poll for {tx_hash[:10]}... on chain {chain_id} failed: {e}")
                receipt = None
            if receipt is not None:
                logger.info(
                    f"Receipt {tx_hash[:10]}... on chain {chain_id}: "
                    f"{receipt.status.value} in block {receipt.block_number}"
                )
                return receipt
            await asyncio.sleep(self.poll_interval)

    # ======================
    # Sending (used by the local signer)
    # ======================

    async def get_nonce(self, chain_id: int, address: str) -> int:
        result = await self._call(chain_id, "eth_getTransactionCount", [address, "pending"])
        return _hex_to_int(result)

    async def get_gas_price(self, chain_id: int) -> int:
        result = await self._call(chain_id, "eth_gasPrice", [])
        return _hex_to_int(result)

    async def estimate_gas(self, chain_id: int, tx: dict) -> int:
        result = await self._call(chain_id, "eth_estimateGas", [tx])
        return _hex_to_int(result)

    async def send_raw_transaction(self, chain_id: int, raw_tx: str) -> str:
        """Broadcast a signed transaction. Returns the transaction hash."""
        if not raw_tx.startswith("0x"):
            raw_tx = f"0x{raw_tx}"
        return await self._call(chain_id, "eth_sendRawTransaction", [raw_tx])
