import logging
from dataclasses import dataclass
from typing import Dict, List

from ..shared.models.opportunity_models import ArbitrageOpportunity
from .abi_encoder import SwapCallDataEncoder

logger = logging.getLogger(__name__)

BASIS_POINTS = 10_000


@dataclass(frozen=True)
class FlashLoanQuote:
    provider: str
    amount: int
    fee_bps: int
    fee_amount: int
    total_repayment: int


class FlashLoanEngine:
    """Flash-loan fee math and helper-contract calldata for borrowed-principal arbitrage"""

    def __init__(self, fee_bps: int = 9, provider: str = "aave"):
        self.providers: Dict[str, int] = {
            "aave": 9,  # 0.09%
            "balancer": 0,
        }
        self.providers[provider] = fee_bps
        self.provider = provider

    @property
    def fee_bps(self) -> int:
        return self.providers[self.provider]

    def repayment_amount(self, amount: int) -> int:
        """Principal plus fee, rounded down like the on-chain integer math"""
        return amount * (BASIS_POINTS + self.fee_bps) // BASIS_POINTS

    def quote(self, amount: int) -> FlashLoanQuote:
        total = self.repayment_amount(amount)
        return FlashLoanQuote(
            provider=self.provider,
            amount=amount,
            fee_bps=self.fee_bps,
            fee_amount=total - amount,
            total_repayment=total,
        )

    def net_proceeds(self, amount: int, round_trip_output: int) -> int:
        """Round-trip output minus repayment; negative when the loop loses money"""
        return round_trip_output - self.repayment_amount(amount)

    def build_arbitrage_calldata(self, opportunity: ArbitrageOpportunity) -> str:
        path_buy: List[str] = [opportunity.token_a.address, opportunity.token_b.address]
        path_sell: List[str] = [opportunity.token_b.address, opportunity.token_a.address]
        return SwapCallDataEncoder.encode_execute_arbitrage(
            token_borrow=opportunity.token_a.address,
            amount=opportunity.borrow_amount,
            router_buy=opportunity.buy_exchange.router,
            router_sell=opportunity.sell_exchange.router,
            path_buy=path_buy,
            path_sell=path_sell,
        )
