"""Chain and token catalog contracts."""

from pydantic import BaseModel, Field

from bridgeroute.chains import ChainRef, TokenRef


class ChainModel(BaseModel):
    chain_id: int
    name: str
    native_symbol: str
    native_decimals: int
    explorer_url: str = ""
    is_l1: bool = False
    is_testnet: bool = False

    @classmethod
    def from_chain(cls, chain: ChainRef) -> "ChainModel":
        return cls(
            chain_id=chain.chain_id,
            name=chain.name,
            native_symbol=chain.native_symbol,
            native_decimals=chain.native_decimals,
            explorer_url=chain.explorer_url,
            is_l1=chain.is_l1,
            is_testnet=chain.is_testnet,
        )


class TokenModel(BaseModel):
    chain_id: int
    address: str
    symbol: str
    decimals: int
    name: str = ""
    is_native: bool = Field(False, description="Chain's native currency")

    @classmethod
    def from_token(cls, token: TokenRef) -> "TokenModel":
        return cls(
            chain_id=token.chain_id,
            address=token.address,
            symbol=token.symbol,
            decimals=token.decimals,
            name=token.name,
            is_native=token.is_native,
        )
