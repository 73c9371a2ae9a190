"""Transaction execution and tracking endpoints."""

import json

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import StreamingResponse

from bridgeroute.api.deps import get_bridge_engine
from bridgeroute.engine import BridgeEngine
from bridgeroute.store import MAX_PAGE_SIZE
from bridgeroute.web.contracts.transactions import (
    AcceptQuoteBody,
    AcceptQuoteResponse,
    TransactionModel,
    TransactionPageModel,
)

router = APIRouter()


@router.post(
    "/transactions",
    response_model=AcceptQuoteResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def accept_quote(body: AcceptQuoteBody, engine: BridgeEngine = Depends(get_bridge_engine)):
    """
    Accept a quote and start executing it.

    Returns as soon as the transaction is created; follow progress via
    GET /transactions/{id} or the /events stream.
    """
    transaction_id = await engine.accept_quote(
        body.quote_id, recipient=body.recipient, sender=body.sender
    )
    snapshot = engine.get_transaction(transaction_id)
    return AcceptQuoteResponse(transaction_id=transaction_id, status=snapshot.status.value)


@router.get("/transactions/{transaction_id}", response_model=TransactionModel)
async def get_transaction(transaction_id: str, engine: BridgeEngine = Depends(get_bridge_engine)):
    """Current snapshot of a transaction."""
    return TransactionModel.from_snapshot(engine.get_transaction(transaction_id))


@router.get("/transactions/{transaction_id}/events")
async def stream_transaction(transaction_id: str, engine: BridgeEngine = Depends(get_bridge_engine)):
    """
    Newline-delimited JSON stream of snapshots.

    Starts with the current snapshot and ends after a terminal one.
    """
    # Subscribe eagerly so an unknown id is a 404, not an empty stream
    subscription = engine.subscribe_transaction(transaction_id)

    async def stream():
        async with subscription:
            async for snapshot in subscription:
                yield json.dumps(TransactionModel.from_snapshot(snapshot).model_dump()) + "\n"

    return StreamingResponse(stream(), media_type="application/x-ndjson")


@router.post("/transactions/{transaction_id}/cancel", response_model=TransactionModel)
async def cancel_transaction(transaction_id: str, engine: BridgeEngine = Depends(get_bridge_engine)):
    """Cancel a transaction. After broadcast, cancelled_after_submission is set."""
    return TransactionModel.from_snapshot(await engine.cancel_transaction(transaction_id))


@router.post("/transactions/{transaction_id}/retry", response_model=TransactionModel)
async def retry_transaction(transaction_id: str, engine: BridgeEngine = Depends(get_bridge_engine)):
    """Retry a transaction that failed for a retryable reason."""
    return TransactionModel.from_snapshot(await engine.retry_transaction(transaction_id))


@router.get("/accounts/{address}/transactions", response_model=TransactionPageModel)
async def list_account_transactions(
    address: str,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=MAX_PAGE_SIZE),
    engine: BridgeEngine = Depends(get_bridge_engine),
):
    """Account history, most recent first."""
    return TransactionPageModel.from_page(
        engine.list_transactions(address, page=page, page_size=page_size)
    )
