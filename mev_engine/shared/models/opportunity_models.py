from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Union

from web3 import Web3

from .chain_models import ExchangeConfig, TokenConfig


@dataclass(frozen=True)
class ArbitrageOpportunity:
    opportunity_id: str
    token_a: TokenConfig
    token_b: TokenConfig
    buy_exchange: ExchangeConfig
    sell_exchange: ExchangeConfig
    borrow_amount: int  # token A base units
    estimated_profit: int  # token A base units
    profit_percent: float
    pair_address: str
    estimated_profit_native: Optional[int] = None  # wei
    detected_at: datetime = field(default_factory=datetime.now)

    @property
    def strategy(self) -> str:
        return "arbitrage"


@dataclass(frozen=True)
class SandwichOpportunity:
    opportunity_id: str
    target_tx_hash: str
    target_tx_raw: str  # raw signed tx hex, re-submitted verbatim
    router: str
    token_in: str
    token_out: str
    amount_in: int
    estimated_profit: int  # wei
    target_gas_limit: Optional[int] = None
    detected_at: datetime = field(default_factory=datetime.now)

    @property
    def strategy(self) -> str:
        return "sandwich"


Opportunity = Union[ArbitrageOpportunity, SandwichOpportunity]


@dataclass
class Bundle:
    """Ordered raw transactions targeting exactly one block"""
    transactions: List[str]
    target_block: int
    signer_address: Optional[str] = None
    signer_nonces: List[int] = field(default_factory=list)

    @property
    def tx_hashes(self) -> List[str]:
        return [Web3.to_hex(Web3.keccak(hexstr=raw)) for raw in self.transactions]


class TradeStatus(Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class TradeOutcome:
    trade_id: str
    strategy: str
    opportunity_id: str
    status: TradeStatus
    token_a: Dict[str, str]
    token_b: Dict[str, str]
    expected_profit: Decimal
    timestamp: datetime = field(default_factory=datetime.now)
    buy_dex: Optional[str] = None
    sell_dex: Optional[str] = None
    borrow_amount: Optional[Decimal] = None
    gas_cost: Optional[Decimal] = None
    net_profit: Optional[Decimal] = None
    tx_hash: Optional[str] = None
    bundle_hash: Optional[str] = None
    block_number: Optional[int] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.trade_id,
            "timestamp": self.timestamp.isoformat(),
            "status": self.status.value,
            "strategy": self.strategy,
            "opportunityId": self.opportunity_id,
            "tokenA": self.token_a,
            "tokenB": self.token_b,
            "buyDex": self.buy_dex,
            "sellDex": self.sell_dex,
            "borrowAmount": _fmt(self.borrow_amount),
            "expectedProfit": _fmt(self.expected_profit),
            "gasCost": _fmt(self.gas_cost),
            "netProfit": _fmt(self.net_profit),
            "txHash": self.tx_hash,
            "bundleHash": self.bundle_hash,
            "blockNumber": self.block_number,
            "error": self.error,
        }


def _fmt(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)
