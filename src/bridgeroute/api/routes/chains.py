"""Chain and token catalog endpoints."""

from fastapi import APIRouter, HTTPException, status

from bridgeroute.chains import get_all_chains, get_chain, get_tokens
from bridgeroute.web.contracts.chains import ChainModel, TokenModel

router = APIRouter()


@router.get("/chains", response_model=list[ChainModel])
async def list_chains():
    """All supported chains."""
    return [ChainModel.from_chain(chain) for chain in get_all_chains()]


@router.get("/chains/{chain_id}/tokens", response_model=list[TokenModel])
async def list_tokens(chain_id: int):
    """Tokens registered on a chain, native first."""
    if get_chain(chain_id) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unsupported chain: {chain_id}",
        )
    return [TokenModel.from_token(token) for token in get_tokens(chain_id)]
