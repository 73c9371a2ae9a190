"""Route quoting endpoint."""

from fastapi import APIRouter, Depends

from bridgeroute.api.deps import get_bridge_engine
from bridgeroute.engine import BridgeEngine
from bridgeroute.web.contracts.routes import QuoteModel, RouteRequestBody, RouteResponse

router = APIRouter()


@router.post("/routes", response_model=RouteResponse)
async def get_routes(body: RouteRequestBody, engine: BridgeEngine = Depends(get_bridge_engine)):
    """
    Quote a cross-chain transfer across all providers.

    Quotes are ranked best first. Accept one through POST /transactions
    before its expires_at.
    """
    quotes = await engine.get_best_route(
        from_chain_id=body.from_chain_id,
        to_chain_id=body.to_chain_id,
        from_token_address=body.from_token,
        to_token_address=body.to_token,
        amount=body.amount,
        slippage_bps=body.slippage_bps,
        recipient=body.recipient,
    )
    return RouteResponse.from_quotes(quotes)


@router.get("/quotes/{quote_id}", response_model=QuoteModel)
async def get_quote(quote_id: str, engine: BridgeEngine = Depends(get_bridge_engine)):
    """A live quote by id (404 once swept, 409 once expired)."""
    return QuoteModel.from_quote(engine.get_quote(quote_id))
