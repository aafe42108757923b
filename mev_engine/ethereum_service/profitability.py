"""
Profitability model for bundle attempts

Pure integer (wei) arithmetic: no I/O, no chain access. The executor feeds it
the opportunity's gross profit and the current fee data.
"""
from dataclasses import dataclass
from typing import Optional, Sequence

FRONT_RUN_GAS_LIMIT = 300_000
BACK_RUN_GAS_LIMIT = 350_000
DEFAULT_VICTIM_GAS_LIMIT = 200_000
ARBITRAGE_GAS_LIMIT = 500_000

DEFAULT_BRIBE_PERCENT = 80


@dataclass(frozen=True)
class FeeData:
    base_fee_per_gas: Optional[int] = None
    max_fee_per_gas: Optional[int] = None
    max_priority_fee_per_gas: Optional[int] = None
    gas_price: Optional[int] = None

    @property
    def is_complete(self) -> bool:
        return self.max_fee_per_gas is not None and self.max_priority_fee_per_gas is not None


@dataclass(frozen=True)
class ProfitEvaluation:
    gross_profit: int
    gas_cost: int
    net_profit: int
    bribe: int
    bribe_priority_fee: int
    settlement_priority_fee: int
    settlement_max_fee: int
    accepted: bool
    reason: Optional[str] = None


def sandwich_gas_limits(victim_gas_limit: Optional[int]) -> Sequence[int]:
    """Front-run, victim pass-through, back-run"""
    return (FRONT_RUN_GAS_LIMIT, victim_gas_limit or DEFAULT_VICTIM_GAS_LIMIT, BACK_RUN_GAS_LIMIT)


def arbitrage_gas_limits() -> Sequence[int]:
    return (ARBITRAGE_GAS_LIMIT,)


def estimate_gas_cost(gas_limits: Sequence[int], max_fee_per_gas: int) -> int:
    return sum(gas_limits) * max_fee_per_gas


def calculate_net_profit(gross_profit: int, gas_cost: int) -> int:
    """Gross minus gas, floored at zero"""
    return gross_profit - gas_cost if gross_profit > gas_cost else 0


def calculate_bribe(net_profit: int, settlement_gas_limit: int, bribe_percent: int = DEFAULT_BRIBE_PERCENT):
    """
    Validator incentive paid as extra priority fee on the settlement transaction

    Returns (bribe_wei, bribe_priority_fee_per_gas).
    """
    bribe = net_profit * bribe_percent // 100
    return bribe, bribe // settlement_gas_limit


def evaluate_profitability(
    gross_profit: int,
    gas_limits: Sequence[int],
    fee_data: FeeData,
    min_net_profit: int,
    bribe_percent: int = DEFAULT_BRIBE_PERCENT,
    base_priority_fee: Optional[int] = None,
) -> ProfitEvaluation:
    """
    Re-check an opportunity against current fee conditions

    The last gas limit in gas_limits belongs to the settlement (back-run or
    sole) transaction, which carries the bribe. base_priority_fee overrides
    the fee data's priority fee for that transaction.
    """
    if not fee_data.is_complete:
        raise ValueError("Insufficient fee data: max fee or priority fee missing")
    if not gas_limits:
        raise ValueError("At least one gas limit is required")

    gas_cost = estimate_gas_cost(gas_limits, fee_data.max_fee_per_gas)
    net_profit = calculate_net_profit(gross_profit, gas_cost)
    bribe, bribe_priority_fee = calculate_bribe(net_profit, gas_limits[-1], bribe_percent)

    priority = fee_data.max_priority_fee_per_gas if base_priority_fee is None else base_priority_fee
    accepted = net_profit >= min_net_profit
    reason = None if accepted else f"net profit {net_profit} wei below minimum {min_net_profit} wei"

    return ProfitEvaluation(
        gross_profit=gross_profit,
        gas_cost=gas_cost,
        net_profit=net_profit,
        bribe=bribe,
        bribe_priority_fee=bribe_priority_fee,
        settlement_priority_fee=priority + bribe_priority_fee,
        settlement_max_fee=max(fee_data.max_fee_per_gas, priority) + bribe_priority_fee,
        accepted=accepted,
        reason=reason,
    )
