"""Relay bridge integration.

API docs: https://docs.relay.link/
"""

import logging
from dataclasses import replace
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import httpx

from bridgeroute.chains import ZERO_ADDRESS, TokenRef, get_token
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

RELAY_API = "https://api.relay.link"
RELAY_CHAINS = frozenset({1, 10, 137, 8453, 42161, 11155111})

# Used as the quoting user before the sender is known
QUOTE_PLACEHOLDER_ADDRESS = "0x000000000000000000000000000000000000dEaD"

_STATUS_MAP = {
    "success": DeliveryStatus.DONE,
    "refund": DeliveryStatus.REFUNDED,
    "refunded": DeliveryStatus.REFUNDED,
    "failure": DeliveryStatus.FAILED,
    "failed": DeliveryStatus.FAILED,
}


def _to_int(raw: Any) -> int:
    if raw is None or raw == "":
        return 0
    text = str(raw)
    return int(text, 16) if text.startswith("0x") else int(text)


def _decode_spender(calldata: str) -> Optional[str]:
    """Spender argument of an ERC-20 approve(address,uint256) call."""
    if not calldata or not calldata.lower().startswith("0x095ea7b3") or len(calldata) < 74:
        return None
    return "0x" + calldata[34:74]


class RelayProvider(BridgeProvider):
    """Relay cross-chain bridge provider."""

    def __init__(
        self,
        base_url: str = RELAY_API,
        timeout: float = 5.0,
        quote_address: str = QUOTE_PLACEHOLDER_ADDRESS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(timeout=timeout)
        self.base_url = base_url.rstrip("/")
        self.quote_address = quote_address
        self._transport = transport

    @property
    def name(self) -> str:
        return "Relay"

    @property
    def supported_chains(self) -> frozenset[int]:
        return RELAY_CHAINS

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers={"accept": "application/json", "content-type": "application/json"},
            transport=self._transport,
        )

    # Relay addresses native currency with the zero address
    @staticmethod
    def _currency(token: TokenRef) -> str:
        return ZERO_ADDRESS if token.is_native else token.address

    async def _request_quote(
        self,
        request: RouteRequest,
        user: str,
        recipient: Optional[str] = None,
    ) -> dict:
        payload = {
            "user": user,
            "originChainId": request.from_chain.chain_id,
            "destinationChainId": request.to_chain.chain_id,
            "originCurrency": self._currency(request.from_token),
            "destinationCurrency": self._currency(request.to_token),
            "amount": str(request.amount),
            "tradeType": "EXACT_INPUT",
            "recipient": recipient or request.recipient or user,
            "slippageTolerance": str(request.slippage_bps),
        }
        async with self._client() as client:
            response = await client.post("/quote", json=payload)

        if response.status_code in (400, 404, 422):
            logger.debug(f"Relay has no route: {response.status_code} - {response.text}")
            raise ProviderUnsupportedRoute(self.name, f"no quote ({response.status_code})")
        if response.status_code != 200:
            raise ProviderError(self.name, f"API error {response.status_code}")
        return response.json()

    def parse_quote(self, request: RouteRequest, data: dict) -> Quote:
        """Normalize a Relay quote response."""
        details = data.get("details") or {}
        currency_out = details.get("currencyOut") or {}
        amount_out = _to_int(currency_out.get("amount"))
        if amount_out <= 0:
            raise ProviderError(self.name, "quote has no output amount")
        min_amount_out = _to_int(currency_out.get("minimumAmount")) or apply_slippage(
            amount_out, request.slippage_bps
        )
        duration = int(float(details.get("timeEstimate") or 0))

        fee_amount = 0
        fee_usd = Decimal("0")
        for fee in (data.get("fees") or {}).values():
            if not isinstance(fee, dict):
                continue
            currency = (fee.get("currency") or {}).get("address", "")
            if currency and get_token(request.from_chain.chain_id, currency) == request.from_token:
                fee_amount += _to_int(fee.get("amount"))
            try:
                fee_usd += Decimal(str(fee.get("amountUsd") or 0))
            except InvalidOperation:
                continue

        steps: list[Step] = []
        bridge_tx: Optional[TxRequest] = None
        request_id = data.get("requestId")
        for raw_step in data.get("steps") or []:
            items = raw_step.get("items") or []
            tx_data = next((i.get("data") for i in items if isinstance(i.get("data"), dict)), None)
            request_id = request_id or raw_step.get("requestId")
            if not tx_data:
                continue
            if raw_step.get("id") == "approve":
                spender = _decode_spender(tx_data.get("data", ""))
                if spender and not request.from_token.is_native:
                    steps.append(
                        Step(
                            kind=StepKind.APPROVE,
                            from_token=request.from_token,
                            to_token=request.from_token,
                            amount_in=request.amount,
                            amount_out=request.amount,
                            estimated_duration_seconds=0,
                            tool="erc20",
                            spender=spender,
                        )
                    )
            elif bridge_tx is None:
                bridge_tx = TxRequest(
                    chain_id=int(tx_data.get("chainId", request.from_chain.chain_id)),
                    to=tx_data["to"],
                    data=tx_data.get("data", "0x"),
                    value=_to_int(tx_data.get("value")),
                    gas_limit=_to_int(tx_data.get("gas")) or None,
                )

        if bridge_tx is None:
            raise ProviderError(self.name, "quote has no deposit transaction")
        # Status is tracked per request id, which each re-quote renews
        bridge_tx = replace(bridge_tx, tracking_id=request_id)

        steps.append(
            Step(
                kind=StepKind.BRIDGE,
                from_token=request.from_token,
                to_token=request.to_token,
                amount_in=request.amount,
                amount_out=amount_out,
                estimated_duration_seconds=duration,
                fee_amount=fee_amount,
                tool=self.name,
                tx_request=bridge_tx,
            )
        )

        return Quote(
            provider=self.name,
            request=request,
            amount_out=amount_out,
            min_amount_out=min_amount_out,
            fee_amount=fee_amount,
            fee_token=request.from_token,
            estimated_duration_seconds=duration,
            steps=tuple(steps),
            fee_usd=fee_usd,
            provider_data={
                "request_id": request_id,
                "user": data.get("user"),
                "recipient": data.get("recipient") or data.get("user"),
            },
        )

    async def _fetch_quote(self, request: RouteRequest) -> Quote:
        user = self.quote_address
        data = await self._request_quote(request, user)
        data.setdefault("user", user)
        data.setdefault("recipient", request.recipient or user)
        quote = self.parse_quote(request, data)
        logger.debug(f"Relay quote: {request.describe()} -> {quote.amount_out_decimal}")
        return quote

    async def build_transaction(
        self,
        quote: Quote,
        step_index: int,
        sender: str,
        recipient: str,
    ) -> TxRequest:
        """Deposit calldata is bound to the quoting user and recipient.

        A fresh quote is requested when either differs from the accepted
        pair. The returned request carries that quote's request id so the
        intent actually broadcast is the one tracked.
        """
        step = quote.steps[step_index]
        quoted_user = (quote.provider_data.get("user") or "").lower()
        quoted_recipient = (quote.provider_data.get("recipient") or quoted_user).lower()
        if step.tx_request is not None and quoted_user == sender.lower() and quoted_recipient == recipient.lower():
            return step.tx_request

        logger.info(f"Relay re-quoting {quote.id} for sender {sender} and recipient {recipient}")
        data = await self._request_quote(quote.request, sender, recipient=recipient)
        fresh = self.parse_quote(quote.request, data)
        if fresh.min_amount_out < quote.min_amount_out:
            raise ProviderError(
                self.name,
                f"re-quote minimum {fresh.min_amount_out} below accepted {quote.min_amount_out}",
            )
        return fresh.steps[-1].tx_request

    async def get_status(
        self,
        quote: Quote,
        tx_hash: str,
        tracking_id: Optional[str] = None,
    ) -> DeliveryStatus:
        """Check intent status by request id, preferring the broadcast one."""
        request_id = tracking_id or quote.provider_data.get("request_id")
        if not request_id:
            raise ProviderError(self.name, "quote has no request id to track")

        async with self._client() as client:
            response = await client.get("/intents/status", params={"requestId": request_id})

        if response.status_code != 200:
            raise ProviderError(self.name, f"status API error {response.status_code}")
        status = (response.json().get("status") or "").lower()
        return _STATUS_MAP.get(status, DeliveryStatus.PENDING)
