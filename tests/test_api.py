"""Tests for the FastAPI endpoints."""

import json

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from bridgeroute.api.app import create_app
from bridgeroute.chain.dry_run import DryRunChainClient
from bridgeroute.config import Settings
from bridgeroute.errors import ProviderError

from factories import ACCOUNT, ETH_MAINNET, ETH_OP, TENTH_ETH, WETH_ETH, WETH_OP, StubProvider


def route_body(**overrides) -> dict:
    body = {
        "from_chain_id": 1,
        "to_chain_id": 10,
        "from_token": WETH_ETH.address,
        "to_token": WETH_OP.address,
        "amount": str(TENTH_ETH),
    }
    body.update(overrides)
    return body


@pytest_asyncio.fixture
async def make_client(make_engine):
    """Factory for clients bound to an app around a test engine."""
    clients: list[AsyncClient] = []

    async def factory(**engine_kwargs) -> AsyncClient:
        engine = make_engine(**engine_kwargs)
        app = create_app(Settings(_env_file=None, dry_run=True), engine=engine)
        client = AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
        clients.append(client)
        return client

    yield factory

    for client in clients:
        await client.aclose()


@pytest_asyncio.fixture
async def client(make_client):
    """Create async test client."""
    return await make_client()


async def accept(client, **route_overrides) -> str:
    response = await client.post("/api/v1/routes", json=route_body(**route_overrides))
    quote_id = response.json()["best"]["id"]
    response = await client.post("/api/v1/transactions", json={"quote_id": quote_id})
    return response.json()["transaction_id"]


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    @pytest.mark.asyncio
    async def test_health_check(self, client):
        """Test basic health check."""
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "bridgeroute"

    @pytest.mark.asyncio
    async def test_detailed_health(self, client):
        """Test detailed health check."""
        response = await client.get("/health/detailed")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "environment" in data["config"]
        assert data["engine"]["providers"] == ["Stub"]


class TestChainEndpoints:
    """Tests for the chain catalog."""

    @pytest.mark.asyncio
    async def test_list_chains(self, client):
        response = await client.get("/api/v1/chains")

        assert response.status_code == 200
        ids = {c["chain_id"] for c in response.json()}
        assert {1, 10, 42161} <= ids

    @pytest.mark.asyncio
    async def test_list_tokens_native_first(self, client):
        response = await client.get("/api/v1/chains/1/tokens")

        assert response.status_code == 200
        tokens = response.json()
        assert tokens[0]["is_native"]
        assert any(t["symbol"] == "WETH" for t in tokens)

    @pytest.mark.asyncio
    async def test_unknown_chain(self, client):
        response = await client.get("/api/v1/chains/999/tokens")
        assert response.status_code == 404


class TestRouteEndpoints:
    """Tests for quoting."""

    @pytest.mark.asyncio
    async def test_get_routes(self, make_client):
        client = await make_client(
            providers=[StubProvider("Low", amount_out=10**16), StubProvider("High", amount_out=10**16 * 9)]
        )

        response = await client.post("/api/v1/routes", json=route_body())

        assert response.status_code == 200
        data = response.json()
        assert [q["provider"] for q in data["quotes"]] == ["High", "Low"]
        assert data["best"]["id"] == data["quotes"][0]["id"]
        assert data["best"]["amount_out"] == str(10**16 * 9)
        assert [s["kind"] for s in data["best"]["steps"]] == ["approve", "bridge"]

    @pytest.mark.asyncio
    async def test_get_quote_by_id(self, client):
        routes = (await client.post("/api/v1/routes", json=route_body())).json()
        quote_id = routes["best"]["id"]

        response = await client.get(f"/api/v1/quotes/{quote_id}")

        assert response.status_code == 200
        assert response.json()["id"] == quote_id

    @pytest.mark.asyncio
    async def test_unknown_quote(self, client):
        response = await client.get("/api/v1/quotes/missing")

        assert response.status_code == 404
        assert response.json()["error"] == "quote_not_found"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["0", "-1", "1.5", "lots"])
    async def test_malformed_amount(self, client, amount):
        response = await client.post("/api/v1/routes", json=route_body(amount=amount))
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_same_chain_rejected(self, client):
        response = await client.post(
            "/api/v1/routes", json=route_body(to_chain_id=1, to_token=ETH_MAINNET.address)
        )

        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"

    @pytest.mark.asyncio
    async def test_no_route(self, make_client):
        client = await make_client(providers=[StubProvider("Down", error=ProviderError("Down", "API error 500"))])

        response = await client.post("/api/v1/routes", json=route_body())

        assert response.status_code == 503
        data = response.json()
        assert data["error"] == "no_route_found"
        assert data["providers"][0]["provider"] == "Down"


class TestTransactionEndpoints:
    """Tests for execution and tracking."""

    @pytest.mark.asyncio
    async def test_accept_quote(self, client):
        routes = (await client.post("/api/v1/routes", json=route_body())).json()

        response = await client.post("/api/v1/transactions", json={"quote_id": routes["best"]["id"]})

        assert response.status_code == 202
        data = response.json()
        assert data["status"] == "created"

        response = await client.get(f"/api/v1/transactions/{data['transaction_id']}")
        assert response.status_code == 200
        assert response.json()["quote_id"] == routes["best"]["id"]

    @pytest.mark.asyncio
    async def test_accept_unknown_quote(self, client):
        response = await client.post("/api/v1/transactions", json={"quote_id": "missing"})
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_insufficient_balance(self, make_client):
        chain = DryRunChainClient()
        chain.set_balance(1, WETH_ETH.address, ACCOUNT, 1)
        client = await make_client(chain=chain)
        routes = (await client.post("/api/v1/routes", json=route_body())).json()

        response = await client.post("/api/v1/transactions", json={"quote_id": routes["best"]["id"]})

        assert response.status_code == 409
        assert response.json()["error"] == "insufficient_balance"

    @pytest.mark.asyncio
    async def test_event_stream(self, client):
        tx_id = await accept(client)

        response = await client.get(f"/api/v1/transactions/{tx_id}/events")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/x-ndjson")
        events = [json.loads(line) for line in response.text.splitlines() if line]
        assert events[0]["id"] == tx_id
        assert events[-1]["status"] == "completed"
        assert all(e["step_hashes"][1] for e in events[-1:])

    @pytest.mark.asyncio
    async def test_event_stream_unknown(self, client):
        response = await client.get("/api/v1/transactions/missing/events")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_cancel(self, make_client):
        client = await make_client(chain=DryRunChainClient(block_time=10), confirmation_timeout=30)
        tx_id = await accept(client, from_token=ETH_MAINNET.address, to_token=ETH_OP.address)

        response = await client.post(f"/api/v1/transactions/{tx_id}/cancel")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "failed"
        assert data["failure"]["reason"] in ("cancelled", "cancelled_after_submission")

        response = await client.post(f"/api/v1/transactions/{tx_id}/cancel")
        assert response.status_code == 409
        assert response.json()["error"] == "invalid_transition"

    @pytest.mark.asyncio
    async def test_retry_not_failed(self, client):
        tx_id = await accept(client)
        await client.get(f"/api/v1/transactions/{tx_id}/events")

        response = await client.post(f"/api/v1/transactions/{tx_id}/retry")

        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_unknown_transaction(self, client):
        response = await client.get("/api/v1/transactions/missing")

        assert response.status_code == 404
        assert response.json()["error"] == "transaction_not_found"

    @pytest.mark.asyncio
    async def test_account_history(self, client):
        ids = [await accept(client) for _ in range(3)]

        response = await client.get(
            f"/api/v1/accounts/{ACCOUNT}/transactions", params={"page": 1, "page_size": 2}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 3
        assert data["has_more"]
        assert len(data["items"]) == 2
        assert {item["id"] for item in data["items"]} <= set(ids)

    @pytest.mark.asyncio
    async def test_account_history_page_size_bounded(self, client):
        response = await client.get(f"/api/v1/accounts/{ACCOUNT}/transactions", params={"page_size": 500})
        assert response.status_code == 422
