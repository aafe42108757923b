import asyncio
import logging
import time
from dataclasses import dataclass
from itertools import combinations
from typing import Awaitable, Callable, List, Optional

from ..shared.models.chain_models import ZERO_ADDRESS, ChainConfig, ExchangeConfig, TokenConfig
from ..shared.models.opportunity_models import ArbitrageOpportunity
from .config import EngineConfig
from .flashloan_engine import FlashLoanEngine

logger = logging.getLogger(__name__)

OpportunityCallback = Callable[[ArbitrageOpportunity], Awaitable[object]]


@dataclass(frozen=True)
class VenueQuote:
    exchange: ExchangeConfig
    pair_address: str
    amount_out: int


class CrossArbitrageScanner:
    """
    Two-venue price arbitrage between V2-style exchanges, funded by a flash loan

    For every token pair, the venue quoting less token B for the probe amount
    is the buy side and the one quoting more is the sell side. A scan pass
    forwards at most one opportunity: the most profitable one.
    """

    def __init__(
        self,
        engine,
        chain: ChainConfig,
        config: EngineConfig,
        flashloan_engine: Optional[FlashLoanEngine] = None
    ):
        self.engine = engine
        self.chain = chain
        self.config = config
        self.flashloan_engine = flashloan_engine or FlashLoanEngine(fee_bps=config.flash_loan_fee_bps)
        self.running = False
        self.last_scan_time: Optional[float] = None
        self.last_scan_found = 0

    def probe_amount(self, token: TokenConfig) -> int:
        return self.config.probe_amount_units * 10 ** token.decimals

    async def get_venue_quotes(self, token_a: TokenConfig, token_b: TokenConfig, amount_in: int) -> List[VenueQuote]:
        """Quote every exchange that has a pair for token_a/token_b"""
        quotes = []
        for exchange in self.chain.exchanges:
            try:
                pair_address = await self.engine.get_pair(exchange.factory, token_a.address, token_b.address)
                if not pair_address or pair_address == ZERO_ADDRESS:
                    continue

                amounts = await self.engine.get_amounts_out(
                    exchange.router, amount_in, [token_a.address, token_b.address]
                )
                quotes.append(VenueQuote(exchange=exchange, pair_address=pair_address, amount_out=amounts[-1]))
            except Exception as e:
                logger.debug(f"Quote failed on {exchange.name} for {token_a.symbol}/{token_b.symbol}: {e}")
                continue
        return quotes

    async def find_arbitrage(self, token_a: TokenConfig, token_b: TokenConfig) -> List[ArbitrageOpportunity]:
        """All candidates for one token pair that clear the gross profit threshold"""
        borrow_amount = self.probe_amount(token_a)
        quotes = await self.get_venue_quotes(token_a, token_b, borrow_amount)

        opportunities = []
        for first, second in combinations(quotes, 2):
            if first.amount_out < second.amount_out:
                buy, sell = first, second
            else:
                buy, sell = second, first

            try:
                amounts_sell = await self.engine.get_amounts_out(
                    sell.exchange.router, buy.amount_out, [token_b.address, token_a.address]
                )
            except Exception as e:
                logger.debug(f"Sell quote failed on {sell.exchange.name}: {e}")
                continue

            amount_a_out = amounts_sell[-1]
            profit = self.flashloan_engine.net_proceeds(borrow_amount, amount_a_out)
            if profit <= 0:
                continue

            profit_percent = profit * 100 / borrow_amount
            if profit_percent < self.config.min_profit_percent:
                logger.debug(
                    f"{token_a.symbol}/{token_b.symbol} {buy.exchange.name}->{sell.exchange.name}: "
                    f"{profit_percent:.3f}% below minimum"
                )
                continue

            opportunities.append(ArbitrageOpportunity(
                opportunity_id=f"{token_a.symbol}/{token_b.symbol}-{buy.exchange.name}-{sell.exchange.name}-{int(time.time() * 1000)}",
                token_a=token_a,
                token_b=token_b,
                buy_exchange=buy.exchange,
                sell_exchange=sell.exchange,
                borrow_amount=borrow_amount,
                estimated_profit=profit,
                profit_percent=profit_percent,
                pair_address=buy.pair_address,
                estimated_profit_native=await self._profit_in_native(token_a, profit, sell.exchange),
            ))

        return opportunities

    async def _profit_in_native(self, token: TokenConfig, profit: int, exchange: ExchangeConfig) -> Optional[int]:
        """Value the token-denominated profit in wei so it can be compared with gas"""
        if token.address.lower() == self.chain.wrapped_native.lower():
            return profit
        try:
            amounts = await self.engine.get_amounts_out(
                exchange.router, profit, [token.address, self.chain.wrapped_native]
            )
            return amounts[-1]
        except Exception as e:
            logger.debug(f"Could not value {token.symbol} profit in {self.chain.native_symbol}: {e}")
            return None

    async def scan_all_pairs(self) -> List[ArbitrageOpportunity]:
        opportunities = []
        for token_a, token_b in combinations(self.chain.tokens, 2):
            opportunities.extend(await self.find_arbitrage(token_a, token_b))
        return opportunities

    async def scan_once(self) -> Optional[ArbitrageOpportunity]:
        """One scan pass; returns the single best opportunity, if any clears the minimum"""
        opportunities = await self.scan_all_pairs()
        self.last_scan_time = time.time()
        self.last_scan_found = len(opportunities)
        if not opportunities:
            return None

        best = max(opportunities, key=lambda opp: opp.estimated_profit)
        if best.profit_percent < self.config.min_profit_percent:
            return None

        logger.warning(
            f"High-potential opportunity found ({best.profit_percent:.3f}%): "
            f"{best.token_a.symbol}/{best.token_b.symbol} {best.buy_exchange.name} -> {best.sell_exchange.name}"
        )
        return best

    async def start(self, callback: OpportunityCallback) -> None:
        """Scan on a fixed interval until stop() is called"""
        self.running = True
        logger.info(f"Starting cross-venue price scanner on {self.chain.name}...")
        while self.running:
            try:
                opportunity = await self.scan_once()
                if opportunity:
                    await callback(opportunity)
                await asyncio.sleep(self.config.arbitrage_scan_interval)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Scan error: {e}")
                await asyncio.sleep(self.config.arbitrage_scan_interval * 2)

    def stop(self) -> None:
        self.running = False
