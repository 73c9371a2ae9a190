"""LI.FI cross-chain aggregator integration.

API docs: https://docs.li.fi/li.fi-api/li.fi-api
LI.FI executes its whole route (optional source swap + bridge) in one
source-chain transaction, so a quote maps to at most two steps here:
an ERC-20 approval and a single bridge step.
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import httpx

from bridgeroute.chains import TokenRef, get_token
from bridgeroute.errors import ProviderError, ProviderUnsupportedRoute
from bridgeroute.routing.base import (
    BridgeProvider,
    DeliveryStatus,
    Quote,
    RouteRequest,
    Step,
    StepKind,
    TxRequest,
    apply_slippage,
)

logger = logging.getLogger(__name__)

LIFI_API = "https://li.quest/v1"

# Chains LI.FI serves that are also in our catalog
LIFI_CHAINS = frozenset({1, 10, 137, 8453, 42161})

# Used as fromAddress when quoting before the sender is known
QUOTE_PLACEHOLDER_ADDRESS = "0x000000000000000000000000000000000000dEaD"


def _parse_int(raw: Any) -> int:
    """Parse decimal or 0x-prefixed hex integers."""
    if raw is None or raw == "":
        return 0
    if isinstance(raw, int):
        return raw
    text = str(raw)
    return int(text, 16) if text.startswith("0x") else int(text)


def _parse_decimal(raw: Any) -> Optional[Decimal]:
    if raw is None:
        return None
    try:
        return Decimal(str(raw))
    except (InvalidOperation, ValueError):
        return None


class LiFiProvider(BridgeProvider):
    """LI.FI bridge aggregator provider."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = LIFI_API,
        timeout: float = 5.0,
        quote_address: str = QUOTE_PLACEHOLDER_ADDRESS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize LI.FI provider.

        Args:
            api_key: Optional LI.FI API key for higher rate limits
            base_url: API base URL
            timeout: Request timeout in seconds
            quote_address: fromAddress used when quoting without a known sender
            transport: Optional httpx transport (tests)
        """
        super().__init__(timeout=timeout)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.quote_address = quote_address
        self._transport = transport

    @property
    def name(self) -> str:
        return "LI.FI"

    @property
    def supported_chains(self) -> frozenset[int]:
        return LIFI_CHAINS

    def _get_headers(self) -> dict:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["x-lifi-api-key"] = self.api_key
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers=self._get_headers(),
            transport=self._transport,
        )

    async def _request_quote(
        self,
        request: RouteRequest,
        from_address: str,
        to_address: Optional[str] = None,
    ) -> dict:
        params = {
            "fromChain": str(request.from_chain.chain_id),
            "toChain": str(request.to_chain.chain_id),
            "fromToken": request.from_token.address,
            "toToken": request.to_token.address,
            "fromAmount": str(request.amount),
            "fromAddress": from_address,
            "slippage": str(Decimal(request.slippage_bps) / Decimal(10_000)),
        }
        to_address = to_address or request.recipient
        if to_address:
            params["toAddress"] = to_address

        async with self._client() as client:
            response = await client.get("/quote", params=params)

        if response.status_code in (400, 404, 422):
            logger.debug(f"LI.FI has no route: {response.status_code} - {response.text}")
            raise ProviderUnsupportedRoute(self.name, f"no quote ({response.status_code})")
        if response.status_code != 200:
            raise ProviderError(self.name, f"API error {response.status_code}")
        return response.json()

    def _token_from(self, data: Optional[dict], fallback: TokenRef) -> TokenRef:
        if not data or not data.get("address"):
            return fallback
        chain_id = int(data.get("chainId", fallback.chain_id))
        known = get_token(chain_id, data["address"])
        if known is not None:
            return known
        return TokenRef(
            chain_id=chain_id,
            address=data["address"],
            symbol=data.get("symbol", "?"),
            decimals=int(data.get("decimals", 18)),
            name=data.get("name", ""),
        )

    def parse_quote(self, request: RouteRequest, data: dict) -> Quote:
        """Normalize a LI.FI quote response."""
        estimate = data.get("estimate") or {}
        amount_out = _parse_int(estimate.get("toAmount"))
        if amount_out <= 0:
            raise ProviderError(self.name, "quote has no output amount")
        min_amount_out = _parse_int(estimate.get("toAmountMin")) or apply_slippage(
            amount_out, request.slippage_bps
        )
        duration = int(float(estimate.get("executionDuration") or 0))

        fee_amount = 0
        fee_usd = Decimal("0")
        fee_token = request.from_token
        for cost in estimate.get("feeCosts") or []:
            fee_token = self._token_from(cost.get("token"), fee_token)
            fee_amount += _parse_int(cost.get("amount"))
            fee_usd += _parse_decimal(cost.get("amountUSD")) or Decimal("0")

        action = data.get("action") or {}
        tx_data = data.get("transactionRequest") or {}
        tx_request = None
        if tx_data.get("to"):
            tx_request = TxRequest(
                chain_id=int(tx_data.get("chainId", request.from_chain.chain_id)),
                to=tx_data["to"],
                data=tx_data.get("data", "0x"),
                value=_parse_int(tx_data.get("value")),
                gas_limit=_parse_int(tx_data.get("gasLimit")) or None,
            )

        steps: list[Step] = []
        approval_address = estimate.get("approvalAddress")
        if approval_address and not request.from_token.is_native:
            steps.append(
                Step(
                    kind=StepKind.APPROVE,
                    from_token=request.from_token,
                    to_token=request.from_token,
                    amount_in=request.amount,
                    amount_out=request.amount,
                    estimated_duration_seconds=0,
                    tool="erc20",
                    spender=approval_address,
                )
            )
        tool = (data.get("toolDetails") or {}).get("name") or data.get("tool") or self.name
        steps.append(
            Step(
                kind=StepKind.BRIDGE,
                from_token=request.from_token,
                to_token=request.to_token,
                amount_in=request.amount,
                amount_out=amount_out,
                estimated_duration_seconds=duration,
                fee_amount=fee_amount if fee_token == request.from_token else 0,
                tool=tool,
                tx_request=tx_request,
            )
        )

        return Quote(
            provider=self.name,
            request=request,
            amount_out=amount_out,
            min_amount_out=min_amount_out,
            fee_amount=fee_amount,
            fee_token=fee_token,
            estimated_duration_seconds=duration,
            steps=tuple(steps),
            fee_usd=fee_usd,
            provider_data={
                "tool": data.get("tool"),
                "lifi_id": data.get("id"),
                "from_address": action.get("fromAddress"),
                "to_address": action.get("toAddress") or action.get("fromAddress"),
                "included_steps": [s.get("type") for s in data.get("includedSteps") or []],
            },
        )

    async def _fetch_quote(self, request: RouteRequest) -> Quote:
        data = await self._request_quote(request, self.quote_address)
        action = data.setdefault("action", {})
        action.setdefault("fromAddress", self.quote_address)
        if request.recipient:
            action.setdefault("toAddress", request.recipient)
        quote = self.parse_quote(request, data)
        logger.debug(
            f"LI.FI quote via {quote.provider_data.get('tool')}: {request.describe()} -> "
            f"{quote.amount_out_decimal} ({quote.estimated_duration_seconds}s)"
        )
        return quote

    async def build_transaction(
        self,
        quote: Quote,
        step_index: int,
        sender: str,
        recipient: str,
    ) -> TxRequest:
        """LI.FI calldata binds fromAddress and toAddress.

        The quoted calldata is reused only when both match the accepted
        sender and recipient; otherwise the route is re-quoted for them.
        """
        quoted_from = (quote.provider_data.get("from_address") or "").lower()
        quoted_to = (quote.provider_data.get("to_address") or quoted_from).lower()
        step = quote.steps[step_index]
        if step.tx_request is not None and quoted_from == sender.lower() and quoted_to == recipient.lower():
            return step.tx_request

        logger.info(f"LI.FI re-quoting {quote.id} for sender {sender} and recipient {recipient}")
        data = await self._request_quote(quote.request, sender, to_address=recipient)
        fresh = self.parse_quote(quote.request, data)
        fresh_step = fresh.steps[-1]
        if fresh_step.tx_request is None:
            raise ProviderError(self.name, "re-quote returned no transaction request")
        if fresh.min_amount_out < quote.min_amount_out:
            raise ProviderError(
                self.name,
                f"re-quote minimum {fresh.min_amount_out} below accepted {quote.min_amount_out}",
            )
        return fresh_step.tx_request

    async def get_status(
        self, quote: Quote, tx_hash: str, tracking_id: Optional[str] = None
    ) -> DeliveryStatus:
        """Check cross-chain transfer status via /status."""
        params = {
            "txHash": tx_hash,
            "fromChain": str(quote.request.from_chain.chain_id),
            "toChain": str(quote.request.to_chain.chain_id),
        }
        if quote.provider_data.get("tool"):
            params["bridge"] = quote.provider_data["tool"]

        async with self._client() as client:
            response = await client.get("/status", params=params)

        if response.status_code == 404:
            return DeliveryStatus.PENDING
        if response.status_code != 200:
            raise ProviderError(self.name, f"status API error {response.status_code}")

        data = response.json()
        status = (data.get("status") or "").upper()
        substatus = (data.get("substatus") or "").upper()
        if status == "DONE":
            return DeliveryStatus.REFUNDED if substatus == "REFUNDED" else DeliveryStatus.DONE
        if status in ("FAILED", "INVALID"):
            return DeliveryStatus.FAILED
        return DeliveryStatus.PENDING
