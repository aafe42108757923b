from .chain_models import ZERO_ADDRESS, ChainConfig, ExchangeConfig, TokenConfig
from .opportunity_models import (
    ArbitrageOpportunity,
    Bundle,
    Opportunity,
    SandwichOpportunity,
    TradeOutcome,
    TradeStatus,
)

__all__ = [
    'ZERO_ADDRESS',
    'ChainConfig',
    'ExchangeConfig',
    'TokenConfig',
    'ArbitrageOpportunity',
    'SandwichOpportunity',
    'Opportunity',
    'Bundle',
    'TradeOutcome',
    'TradeStatus',
]
