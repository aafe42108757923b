from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Tuple

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


@dataclass(frozen=True)
class ExchangeConfig:
    name: str
    router: str
    factory: str


@dataclass(frozen=True)
class TokenConfig:
    symbol: str
    address: str
    decimals: int


@dataclass(frozen=True)
class ChainConfig:
    """Static per-run network description. Built once at startup, never mutated."""
    name: str
    chain_id: int
    native_symbol: str
    rpc_http: str
    rpc_wss: str
    wrapped_native: str
    max_priority_fee: int  # wei
    min_balance: Decimal  # native units
    relay_url: str
    exchanges: Tuple[ExchangeConfig, ...] = field(default_factory=tuple)
    tokens: Tuple[TokenConfig, ...] = field(default_factory=tuple)
    explorer_url: Optional[str] = None

    def get_exchange(self, name: str) -> Optional[ExchangeConfig]:
        for exchange in self.exchanges:
            if exchange.name.lower() == name.lower():
                return exchange
        return None

    def get_token(self, symbol: str) -> Optional[TokenConfig]:
        for token in self.tokens:
            if token.symbol.upper() == symbol.upper():
                return token
        return None

    def token_by_address(self, address: str) -> Optional[TokenConfig]:
        for token in self.tokens:
            if token.address.lower() == address.lower():
                return token
        return None

    def is_router(self, address: Optional[str]) -> bool:
        if not address:
            return False
        return any(ex.router.lower() == address.lower() for ex in self.exchanges)
