"""Tests for the LI.FI and Relay adapters against mocked HTTP APIs."""

import json

import httpx
import pytest

from bridgeroute.chains import ZERO_ADDRESS
from bridgeroute.errors import ProviderError, ProviderUnsupportedRoute
from bridgeroute.routing.base import DeliveryStatus, StepKind
from bridgeroute.routing.lifi import QUOTE_PLACEHOLDER_ADDRESS, LiFiProvider
from bridgeroute.routing.relay import RelayProvider

from factories import ACCOUNT, ETH_MAINNET, ETH_OP, OTHER_ACCOUNT, WETH_ETH, route_request

LIFI_DIAMOND = "0x1231DEB6f5749EF6cE6943a275A1D3E7486F4EaE"
RELAY_RECEIVER = "0xa5F565650890fBA1824Ee0F21EbBbF660a179934"


def lifi_quote(to_amount: str = "99800000000000000", to_amount_min: str = "99301000000000000") -> dict:
    return {
        "id": "lifi-quote-1",
        "tool": "across",
        "toolDetails": {"name": "Across"},
        "action": {"fromAddress": ACCOUNT},
        "estimate": {
            "toAmount": to_amount,
            "toAmountMin": to_amount_min,
            "executionDuration": 120,
            "approvalAddress": LIFI_DIAMOND,
            "feeCosts": [
                {
                    "amount": "100000000000000",
                    "amountUSD": "0.20",
                    "token": {"address": WETH_ETH.address, "chainId": 1, "symbol": "WETH", "decimals": 18},
                }
            ],
        },
        "transactionRequest": {
            "to": LIFI_DIAMOND,
            "data": "0xabcdef",
            "value": "0x0",
            "gasLimit": "0x30d40",
            "chainId": 1,
        },
        "includedSteps": [{"type": "cross"}],
    }


def relay_quote(amount: str = "99900000000000000", minimum: str = "99400000000000000") -> dict:
    approve_data = "0x095ea7b3" + RELAY_RECEIVER[2:].lower().zfill(64) + "f" * 64
    return {
        "steps": [
            {
                "id": "approve",
                "items": [{"data": {"to": WETH_ETH.address, "data": approve_data, "value": "0", "chainId": 1}}],
            },
            {
                "id": "deposit",
                "requestId": "0xrequest",
                "items": [
                    {"data": {"to": RELAY_RECEIVER, "data": "0x1234", "value": "0", "chainId": 1, "gas": "150000"}}
                ],
            },
        ],
        "fees": {
            "gas": {"currency": {"address": ZERO_ADDRESS}, "amount": "1000", "amountUsd": "0.01"},
            "relayer": {"currency": {"address": WETH_ETH.address}, "amount": "50000000000000", "amountUsd": "0.10"},
        },
        "details": {
            "currencyOut": {"amount": amount, "minimumAmount": minimum},
            "timeEstimate": 12,
        },
    }


class Recorder:
    """MockTransport handler returning queued responses and keeping requests."""

    def __init__(self, *responses: httpx.Response):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


class TestLiFiProvider:
    """Tests for LI.FI quote parsing and status mapping."""

    @pytest.mark.asyncio
    async def test_quote_parsed(self):
        recorder = Recorder(httpx.Response(200, json=lifi_quote()))
        provider = LiFiProvider(api_key="secret", transport=recorder.transport, quote_address=ACCOUNT)

        quote = await provider.get_quote(route_request())

        assert quote.provider == "LI.FI"
        assert quote.amount_out == 99_800_000_000_000_000
        assert quote.min_amount_out == 99_301_000_000_000_000
        assert quote.estimated_duration_seconds == 120
        assert quote.is_consistent
        assert [s.kind for s in quote.steps] == [StepKind.APPROVE, StepKind.BRIDGE]
        assert quote.steps[0].spender == LIFI_DIAMOND
        assert quote.steps[1].tool == "Across"
        assert quote.steps[1].tx_request.gas_limit == 200_000
        assert quote.fee_token == WETH_ETH
        assert quote.fee_amount == 10**14

        sent = recorder.requests[0]
        assert sent.url.path.endswith("/quote")
        assert sent.url.params["fromChain"] == "1"
        assert sent.url.params["toChain"] == "10"
        assert sent.url.params["fromAmount"] == str(10**17)
        assert sent.url.params["slippage"] == "0.005"
        assert sent.headers["x-lifi-api-key"] == "secret"

    @pytest.mark.asyncio
    async def test_native_source_has_no_approval(self):
        data = lifi_quote()
        data["transactionRequest"]["value"] = hex(10**17)
        provider = LiFiProvider(transport=Recorder(httpx.Response(200, json=data)).transport)

        quote = await provider.get_quote(route_request(from_token=ETH_MAINNET, to_token=ETH_OP))

        assert [s.kind for s in quote.steps] == [StepKind.BRIDGE]
        assert quote.steps[0].tx_request.value == 10**17

    @pytest.mark.asyncio
    async def test_no_route_is_unsupported(self):
        provider = LiFiProvider(
            transport=Recorder(httpx.Response(404, json={"message": "No available quotes"})).transport
        )
        with pytest.raises(ProviderUnsupportedRoute):
            await provider.get_quote(route_request())

    @pytest.mark.asyncio
    async def test_server_error(self):
        provider = LiFiProvider(transport=Recorder(httpx.Response(500, text="oops")).transport)
        with pytest.raises(ProviderError, match="500"):
            await provider.get_quote(route_request())

    @pytest.mark.asyncio
    async def test_missing_amount_is_error(self):
        data = lifi_quote(to_amount="0")
        provider = LiFiProvider(transport=Recorder(httpx.Response(200, json=data)).transport)
        with pytest.raises(ProviderError, match="no output amount"):
            await provider.get_quote(route_request())

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "body,expected",
        [
            ({"status": "DONE", "substatus": "COMPLETED"}, DeliveryStatus.DONE),
            ({"status": "DONE", "substatus": "REFUNDED"}, DeliveryStatus.REFUNDED),
            ({"status": "FAILED"}, DeliveryStatus.FAILED),
            ({"status": "PENDING"}, DeliveryStatus.PENDING),
        ],
    )
    async def test_status_mapping(self, body, expected):
        quote_recorder = Recorder(httpx.Response(200, json=lifi_quote()))
        quote = await LiFiProvider(transport=quote_recorder.transport).get_quote(route_request())
        status_recorder = Recorder(httpx.Response(200, json=body))
        provider = LiFiProvider(transport=status_recorder.transport)

        assert await provider.get_status(quote, "0xabc") == expected
        assert status_recorder.requests[0].url.params["txHash"] == "0xabc"
        assert status_recorder.requests[0].url.params["bridge"] == "across"

    @pytest.mark.asyncio
    async def test_status_not_indexed_yet(self):
        recorder = Recorder(httpx.Response(200, json=lifi_quote()), httpx.Response(404))
        provider = LiFiProvider(transport=recorder.transport)
        quote = await provider.get_quote(route_request())

        assert await provider.get_status(quote, "0xabc") == DeliveryStatus.PENDING

    @pytest.mark.asyncio
    async def test_build_transaction_reuses_quoted_calldata(self):
        recorder = Recorder(httpx.Response(200, json=lifi_quote()))
        provider = LiFiProvider(transport=recorder.transport, quote_address=ACCOUNT)
        quote = await provider.get_quote(route_request())

        tx = await provider.build_transaction(quote, 1, sender=ACCOUNT, recipient=ACCOUNT)

        assert tx is quote.steps[1].tx_request
        assert len(recorder.requests) == 1

    @pytest.mark.asyncio
    async def test_build_transaction_requotes_for_other_sender(self):
        fresh = lifi_quote()
        fresh["transactionRequest"]["data"] = "0xfeed"
        recorder = Recorder(httpx.Response(200, json=lifi_quote()), httpx.Response(200, json=fresh))
        provider = LiFiProvider(transport=recorder.transport)
        quote = await provider.get_quote(route_request())

        tx = await provider.build_transaction(quote, 1, sender=OTHER_ACCOUNT, recipient=OTHER_ACCOUNT)

        assert tx.data == "0xfeed"
        assert recorder.requests[1].url.params["fromAddress"] == OTHER_ACCOUNT

    @pytest.mark.asyncio
    async def test_requote_below_accepted_minimum_rejected(self):
        worse = lifi_quote(to_amount="90000000000000000", to_amount_min="89000000000000000")
        recorder = Recorder(httpx.Response(200, json=lifi_quote()), httpx.Response(200, json=worse))
        provider = LiFiProvider(transport=recorder.transport)
        quote = await provider.get_quote(route_request())

        with pytest.raises(ProviderError, match="below accepted"):
            await provider.build_transaction(quote, 1, sender=OTHER_ACCOUNT, recipient=OTHER_ACCOUNT)

    @pytest.mark.asyncio
    async def test_quotes_from_placeholder_not_recipient(self):
        recorder = Recorder(httpx.Response(200, json=lifi_quote()))
        provider = LiFiProvider(transport=recorder.transport)

        await provider.get_quote(route_request(recipient=OTHER_ACCOUNT))

        params = recorder.requests[0].url.params
        assert params["fromAddress"] == QUOTE_PLACEHOLDER_ADDRESS
        assert params["toAddress"] == OTHER_ACCOUNT

    @pytest.mark.asyncio
    async def test_build_transaction_requotes_for_other_recipient(self):
        fresh = lifi_quote()
        fresh["transactionRequest"]["data"] = "0xfeed"
        recorder = Recorder(httpx.Response(200, json=lifi_quote()), httpx.Response(200, json=fresh))
        provider = LiFiProvider(transport=recorder.transport, quote_address=ACCOUNT)
        quote = await provider.get_quote(route_request())

        tx = await provider.build_transaction(quote, 1, sender=ACCOUNT, recipient=OTHER_ACCOUNT)

        assert tx.data == "0xfeed"
        assert len(recorder.requests) == 2
        params = recorder.requests[1].url.params
        assert params["fromAddress"] == ACCOUNT
        assert params["toAddress"] == OTHER_ACCOUNT


class TestRelayProvider:
    """Tests for Relay quote parsing and status mapping."""

    @pytest.mark.asyncio
    async def test_quote_parsed(self):
        recorder = Recorder(httpx.Response(200, json=relay_quote()))
        provider = RelayProvider(transport=recorder.transport)

        quote = await provider.get_quote(route_request())

        assert quote.provider == "Relay"
        assert quote.amount_out == 99_900_000_000_000_000
        assert quote.min_amount_out == 99_400_000_000_000_000
        assert quote.estimated_duration_seconds == 12
        assert quote.is_consistent
        assert [s.kind for s in quote.steps] == [StepKind.APPROVE, StepKind.BRIDGE]
        assert quote.steps[0].spender.lower() == RELAY_RECEIVER.lower()
        assert quote.steps[1].tx_request.to == RELAY_RECEIVER
        assert quote.steps[1].tx_request.gas_limit == 150_000
        assert quote.fee_amount == 5 * 10**13
        assert quote.provider_data["request_id"] == "0xrequest"

        body = json.loads(recorder.requests[0].content)
        assert body["originChainId"] == 1
        assert body["destinationChainId"] == 10
        assert body["amount"] == str(10**17)
        assert body["tradeType"] == "EXACT_INPUT"

    @pytest.mark.asyncio
    async def test_native_currency_uses_zero_address(self):
        data = relay_quote()
        data["steps"] = data["steps"][1:]
        recorder = Recorder(httpx.Response(200, json=data))
        provider = RelayProvider(transport=recorder.transport)

        quote = await provider.get_quote(route_request(from_token=ETH_MAINNET, to_token=ETH_OP))

        body = json.loads(recorder.requests[0].content)
        assert body["originCurrency"] == ZERO_ADDRESS
        assert [s.kind for s in quote.steps] == [StepKind.BRIDGE]

    @pytest.mark.asyncio
    async def test_quote_without_deposit_is_error(self):
        data = relay_quote()
        data["steps"] = data["steps"][:1]
        provider = RelayProvider(transport=Recorder(httpx.Response(200, json=data)).transport)
        with pytest.raises(ProviderError, match="no deposit transaction"):
            await provider.get_quote(route_request())

    @pytest.mark.asyncio
    async def test_bad_request_is_unsupported(self):
        provider = RelayProvider(transport=Recorder(httpx.Response(400, json={"message": "no route"})).transport)
        with pytest.raises(ProviderUnsupportedRoute):
            await provider.get_quote(route_request())

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,expected",
        [
            ("success", DeliveryStatus.DONE),
            ("refund", DeliveryStatus.REFUNDED),
            ("failure", DeliveryStatus.FAILED),
            ("pending", DeliveryStatus.PENDING),
            ("waiting", DeliveryStatus.PENDING),
        ],
    )
    async def test_status_mapping(self, status, expected):
        recorder = Recorder(httpx.Response(200, json=relay_quote()), httpx.Response(200, json={"status": status}))
        provider = RelayProvider(transport=recorder.transport)
        quote = await provider.get_quote(route_request())

        assert await provider.get_status(quote, "0xabc") == expected
        assert recorder.requests[1].url.params["requestId"] == "0xrequest"

    @pytest.mark.asyncio
    async def test_status_without_request_id(self):
        data = relay_quote()
        data["steps"][1].pop("requestId")
        provider = RelayProvider(transport=Recorder(httpx.Response(200, json=data)).transport)
        quote = await provider.get_quote(route_request())

        with pytest.raises(ProviderError, match="request id"):
            await provider.get_status(quote, "0xabc")

    @pytest.mark.asyncio
    async def test_deposit_carries_request_id(self):
        recorder = Recorder(httpx.Response(200, json=relay_quote()))
        provider = RelayProvider(transport=recorder.transport, quote_address=ACCOUNT)
        quote = await provider.get_quote(route_request())

        tx = await provider.build_transaction(quote, 1, sender=ACCOUNT, recipient=ACCOUNT)

        assert tx is quote.steps[1].tx_request
        assert tx.tracking_id == "0xrequest"
        assert len(recorder.requests) == 1

    @pytest.mark.asyncio
    async def test_build_transaction_requotes_for_other_recipient(self):
        recorder = Recorder(httpx.Response(200, json=relay_quote()))
        provider = RelayProvider(transport=recorder.transport, quote_address=ACCOUNT)
        quote = await provider.get_quote(route_request())

        await provider.build_transaction(quote, 1, sender=ACCOUNT, recipient=OTHER_ACCOUNT)

        assert len(recorder.requests) == 2
        body = json.loads(recorder.requests[1].content)
        assert body["user"] == ACCOUNT
        assert body["recipient"] == OTHER_ACCOUNT

    @pytest.mark.asyncio
    async def test_status_follows_requoted_intent(self):
        fresh = relay_quote()
        fresh["steps"][1]["requestId"] = "0xfresh"
        fresh["steps"][1]["items"][0]["data"]["data"] = "0xfeed"
        recorder = Recorder(
            httpx.Response(200, json=relay_quote()),
            httpx.Response(200, json=fresh),
            httpx.Response(200, json={"status": "success"}),
        )
        provider = RelayProvider(transport=recorder.transport)
        quote = await provider.get_quote(route_request())

        tx = await provider.build_transaction(quote, 1, sender=OTHER_ACCOUNT, recipient=OTHER_ACCOUNT)
        status = await provider.get_status(quote, "0xhash", tracking_id=tx.tracking_id)

        assert tx.data == "0xfeed"
        assert tx.tracking_id == "0xfresh"
        assert status == DeliveryStatus.DONE
        assert recorder.requests[2].url.params["requestId"] == "0xfresh"
