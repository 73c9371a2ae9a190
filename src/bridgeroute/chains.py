"""Static chain and token catalog.

Chains and tokens are registered at import time (or at startup through
register_chain / register_token) and never mutated afterwards. Token
identity is (chain_id, address), compared case-insensitively.
"""

import re
from dataclasses import dataclass
from typing import Optional

# Sentinel address used by aggregators for a chain's native asset
NATIVE_TOKEN = "0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE"
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


@dataclass(frozen=True)
class ChainRef:
    """Immutable chain identifier."""

    chain_id: int
    name: str
    native_symbol: str
    native_decimals: int = 18
    explorer_url: str = ""
    is_l1: bool = False
    is_testnet: bool = False

    def tx_url(self, tx_hash: str) -> str:
        """Explorer link for a transaction hash."""
        return f"{self.explorer_url}/tx/{tx_hash}" if self.explorer_url else ""


@dataclass(frozen=True, eq=False)
class TokenRef:
    """Token scoped to a chain. Equal iff (chain_id, address) match case-insensitively."""

    chain_id: int
    address: str
    symbol: str
    decimals: int
    name: str = ""

    @property
    def key(self) -> tuple[int, str]:
        return (self.chain_id, self.address.lower())

    @property
    def is_native(self) -> bool:
        return is_native_address(self.address)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TokenRef):
            return NotImplemented
        return self.key == other.key

    def __hash__(self) -> int:
        return hash(self.key)

    def __repr__(self) -> str:
        return f"TokenRef({self.symbol}@{self.chain_id}:{self.address})"


def is_native_address(address: str) -> bool:
    """Native asset is addressed by the 0xEeee sentinel or the zero address."""
    return address.lower() in (NATIVE_TOKEN.lower(), ZERO_ADDRESS)


# ======================
# Chain Configurations
# ======================

CHAINS: dict[int, ChainRef] = {}
TOKENS: dict[tuple[int, str], TokenRef] = {}


def register_chain(chain: ChainRef) -> ChainRef:
    """Register a chain. Re-registering an id with different data is rejected."""
    existing = CHAINS.get(chain.chain_id)
    if existing is not None and existing != chain:
        raise ValueError(f"Chain {chain.chain_id} already registered as {existing.name}")
    CHAINS[chain.chain_id] = chain
    return chain


def register_token(token: TokenRef) -> TokenRef:
    """Register a token on an already registered chain."""
    if token.chain_id not in CHAINS:
        raise ValueError(f"Unknown chain {token.chain_id} for token {token.symbol}")
    TOKENS[token.key] = token
    return token


def _native(chain: ChainRef) -> TokenRef:
    return TokenRef(
        chain_id=chain.chain_id,
        address=NATIVE_TOKEN,
        symbol=chain.native_symbol,
        decimals=chain.native_decimals,
        name=chain.native_symbol,
    )


_DEFAULT_CHAINS = [
    ChainRef(1, "Ethereum", "ETH", explorer_url="https://etherscan.io", is_l1=True),
    ChainRef(10, "Optimism", "ETH", explorer_url="https://optimistic.etherscan.io"),
    ChainRef(137, "Polygon", "POL", explorer_url="https://polygonscan.com"),
    ChainRef(8453, "Base", "ETH", explorer_url="https://basescan.org"),
    ChainRef(42161, "Arbitrum One", "ETH", explorer_url="https://arbiscan.io"),
    ChainRef(
        11155111, "Sepolia", "SEP", explorer_url="https://sepolia.etherscan.io",
        is_l1=True, is_testnet=True,
    ),
    ChainRef(
        43113, "Avalanche Fuji", "AVAX", explorer_url="https://testnet.snowtrace.io",
        is_l1=True, is_testnet=True,
    ),
]

# symbol -> (address, decimals) per chain
_DEFAULT_TOKENS: dict[int, dict[str, tuple[str, int]]] = {
    1: {
        "WETH": ("0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2", 18),
        "USDC": ("0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48", 6),
        "USDT": ("0xdAC17F958D2ee523a2206206994597C13D831ec7", 6),
        "DAI": ("0x6B175474E89094C44Da98b954EedcdeCB5BE3830", 18),
    },
    10: {
        "WETH": ("0x4200000000000000000000000000000000000006", 18),
        "USDC": ("0x0b2C639c533813f4Aa9D7837CAf62653d097Ff85", 6),
        "USDT": ("0x94b008aA00579c1307B0EF2c499aD98a8ce58e58", 6),
        "DAI": ("0xDA10009cBd5D07dd0CeCc66161FC93D7c9000da1", 18),
    },
    137: {
        "WETH": ("0x7ceB23fD6bC0adD59E62ac25578270cFf1b9f619", 18),
        "USDC": ("0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359", 6),
        "USDT": ("0xc2132D05D31c914a87C6611C10748AEb04B58e8F", 6),
    },
    8453: {
        "WETH": ("0x4200000000000000000000000000000000000006", 18),
        "USDC": ("0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913", 6),
    },
    42161: {
        "WETH": ("0x82aF49447D8a07e3bd95BD0d56f35241523fBab1", 18),
        "USDC": ("0xaf88d065e77c8cC2239327C5EDb3A432268e5831", 6),
        "USDT": ("0xFd086bC7CD5C481DCC9C85ebE478A1C0b69FCbb9", 6),
        "DAI": ("0xDA10009cBd5D07dd0CeCc66161FC93D7c9000da1", 18),
    },
    11155111: {
        "WETH": ("0xfFf9976782d46CC05630D1f6eBAb18b2324d6B14", 18),
        "USDC": ("0x1c7D4B196Cb0C7B01d743Fbc6116a902379C7238", 6),
    },
    43113: {
        "USDC": ("0x5425890298aed601595a70AB815c96711a31Bc65", 6),
    },
}

for _chain in _DEFAULT_CHAINS:
    register_chain(_chain)
    register_token(_native(_chain))
    for _symbol, (_address, _decimals) in _DEFAULT_TOKENS.get(_chain.chain_id, {}).items():
        register_token(TokenRef(_chain.chain_id, _address, _symbol, _decimals, _symbol))


# ======================
# Lookups
# ======================


def get_chain(chain_id: int) -> Optional[ChainRef]:
    """Get chain by id."""
    return CHAINS.get(chain_id)


def get_all_chains() -> list[ChainRef]:
    """Get all registered chains ordered by id."""
    return [CHAINS[cid] for cid in sorted(CHAINS)]


def get_token(chain_id: int, address: str) -> Optional[TokenRef]:
    """Get token by chain and address (case-insensitive, zero address = native)."""
    if is_native_address(address):
        address = NATIVE_TOKEN
    return TOKENS.get((chain_id, address.lower()))


def get_tokens(chain_id: int) -> list[TokenRef]:
    """Get all tokens registered on a chain, native first."""
    tokens = [t for t in TOKENS.values() if t.chain_id == chain_id]
    return sorted(tokens, key=lambda t: (not t.is_native, t.symbol))


def find_token(chain_id: int, symbol: str) -> Optional[TokenRef]:
    """Find a token on a chain by symbol."""
    symbol = symbol.upper()
    for token in TOKENS.values():
        if token.chain_id == chain_id and token.symbol.upper() == symbol:
            return token
    return None


def get_native_token(chain_id: int) -> Optional[TokenRef]:
    return TOKENS.get((chain_id, NATIVE_TOKEN.lower()))


def is_address(value: str) -> bool:
    """0x-prefixed 20-byte hex address (checksum not verified)."""
    return bool(_ADDRESS_RE.match(value or ""))
