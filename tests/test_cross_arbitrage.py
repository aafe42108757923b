import unittest
import asyncio
import sys
import os
from decimal import Decimal
from unittest.mock import AsyncMock

# Add project root to path
sys.path.append(os.path.join(os.path.dirname(__file__), '..'))

from mev_engine.ethereum_service.config import EngineConfig
from mev_engine.ethereum_service.cross_arbitrage import CrossArbitrageScanner
from mev_engine.ethereum_service.flashloan_engine import FlashLoanEngine
from mev_engine.shared.models.chain_models import ZERO_ADDRESS, ChainConfig, ExchangeConfig, TokenConfig

UNIT = 10**18
TOKEN_A = "0x000000000000000000000000000000000000000A"
TOKEN_B = "0x000000000000000000000000000000000000000b"
WRAPPED = "0x00000000000000000000000000000000000000eE"
ROUTER_A = "0x00000000000000000000000000000000000000a1"
ROUTER_B = "0x00000000000000000000000000000000000000b1"


class TestCrossArbitrageScanner(unittest.TestCase):
    """Test suite for the cross-venue price scanner"""

    def setUp(self):
        self.token_a = TokenConfig("TKA", TOKEN_A, 18)
        self.token_b = TokenConfig("TKB", TOKEN_B, 18)
        self.venue_a = ExchangeConfig("VenueA", ROUTER_A, "0x00000000000000000000000000000000000000a2")
        self.venue_b = ExchangeConfig("VenueB", ROUTER_B, "0x00000000000000000000000000000000000000b2")
        self.chain = ChainConfig(
            name="testnet",
            chain_id=31337,
            native_symbol="ETH",
            rpc_http="http://localhost:8545",
            rpc_wss="ws://localhost:8546",
            wrapped_native=TOKEN_A,
            max_priority_fee=2 * 10**9,
            min_balance=Decimal("0.01"),
            relay_url="http://localhost:18545",
            exchanges=(self.venue_a, self.venue_b),
            tokens=(self.token_a, self.token_b),
        )
        self.config = EngineConfig(min_profit_percent=0.15, probe_amount_units=100)

        # (router, path) -> output for the 100-unit probe
        self.quotes = {
            (ROUTER_A, (TOKEN_A, TOKEN_B)): 99 * UNIT,
            (ROUTER_B, (TOKEN_A, TOKEN_B)): 101 * UNIT,
            (ROUTER_B, (TOKEN_B, TOKEN_A)): 100_500 * UNIT // 1000,
            (ROUTER_A, (TOKEN_B, TOKEN_A)): 98 * UNIT,
        }
        self.pairs = {ROUTER_A: "0x00000000000000000000000000000000000000a3",
                      ROUTER_B: "0x00000000000000000000000000000000000000b3"}

        self.mock_engine = AsyncMock()
        self.mock_engine.get_amounts_out.side_effect = self._get_amounts_out
        self.mock_engine.get_pair.side_effect = self._get_pair

        self.scanner = CrossArbitrageScanner(self.mock_engine, self.chain, self.config, FlashLoanEngine(fee_bps=9))

    async def _get_amounts_out(self, router, amount_in, path):
        key = (router, tuple(path))
        if key not in self.quotes:
            raise ValueError(f"no liquidity for {key}")
        return [amount_in, self.quotes[key]]

    async def _get_pair(self, factory, token_a, token_b):
        for exchange in self.chain.exchanges:
            if exchange.factory == factory:
                return self.pairs[exchange.router]
        return ZERO_ADDRESS

    def test_cheaper_venue_is_buy_side(self):
        opportunities = asyncio.run(self.scanner.find_arbitrage(self.token_a, self.token_b))

        self.assertEqual(len(opportunities), 1)
        opportunity = opportunities[0]
        self.assertEqual(opportunity.buy_exchange.name, "VenueA")
        self.assertEqual(opportunity.sell_exchange.name, "VenueB")
        self.assertEqual(opportunity.pair_address, self.pairs[ROUTER_A])
        self.assertEqual(opportunity.borrow_amount, 100 * UNIT)

    def test_profit_is_round_trip_minus_flash_loan_repayment(self):
        opportunity = asyncio.run(self.scanner.find_arbitrage(self.token_a, self.token_b))[0]

        repayment = 100 * UNIT * 10_009 // 10_000
        self.assertEqual(opportunity.estimated_profit, 100_500 * UNIT // 1000 - repayment)
        self.assertAlmostEqual(opportunity.profit_percent, 0.41, places=6)
        # token A is the wrapped native asset, so the native valuation is the profit itself
        self.assertEqual(opportunity.estimated_profit_native, opportunity.estimated_profit)

    def test_sell_leg_uses_buy_leg_output(self):
        asyncio.run(self.scanner.find_arbitrage(self.token_a, self.token_b))

        self.mock_engine.get_amounts_out.assert_any_await(ROUTER_B, 99 * UNIT, [TOKEN_B, TOKEN_A])

    def test_spread_below_minimum_percent_is_not_forwarded(self):
        # 0.10% gross
        self.quotes[(ROUTER_B, (TOKEN_B, TOKEN_A))] = 100_190 * UNIT // 1000

        self.assertEqual(asyncio.run(self.scanner.find_arbitrage(self.token_a, self.token_b)), [])
        self.assertIsNone(asyncio.run(self.scanner.scan_once()))

    def test_losing_round_trip_is_dropped(self):
        self.quotes[(ROUTER_B, (TOKEN_B, TOKEN_A))] = 100 * UNIT

        self.assertEqual(asyncio.run(self.scanner.find_arbitrage(self.token_a, self.token_b)), [])

    def test_missing_pair_skips_venue(self):
        self.pairs[ROUTER_B] = ZERO_ADDRESS

        self.assertEqual(asyncio.run(self.scanner.find_arbitrage(self.token_a, self.token_b)), [])
        for call in self.mock_engine.get_amounts_out.await_args_list:
            self.assertNotEqual(call.args[0], ROUTER_B)

    def test_quote_errors_are_skipped(self):
        del self.quotes[(ROUTER_B, (TOKEN_B, TOKEN_A))]

        self.assertEqual(asyncio.run(self.scanner.find_arbitrage(self.token_a, self.token_b)), [])

    def test_profit_valued_in_native_for_other_tokens(self):
        self.chain = ChainConfig(**{**self.chain.__dict__, "wrapped_native": WRAPPED})
        self.scanner = CrossArbitrageScanner(self.mock_engine, self.chain, self.config)
        self.quotes[(ROUTER_B, (TOKEN_A, WRAPPED))] = 12345

        opportunity = asyncio.run(self.scanner.find_arbitrage(self.token_a, self.token_b))[0]

        self.assertEqual(opportunity.estimated_profit_native, 12345)

    def test_native_valuation_failure_leaves_none(self):
        self.chain = ChainConfig(**{**self.chain.__dict__, "wrapped_native": WRAPPED})
        self.scanner = CrossArbitrageScanner(self.mock_engine, self.chain, self.config)

        opportunity = asyncio.run(self.scanner.find_arbitrage(self.token_a, self.token_b))[0]

        self.assertIsNone(opportunity.estimated_profit_native)

    def test_scan_once_forwards_single_best(self):
        opportunity = asyncio.run(self.scanner.scan_once())

        self.assertIsNotNone(opportunity)
        self.assertEqual(opportunity.buy_exchange.name, "VenueA")
        self.assertEqual(self.scanner.last_scan_found, 1)

    def test_start_invokes_callback_and_stops(self):
        self.config.arbitrage_scan_interval = 0
        received = []

        async def callback(opportunity):
            received.append(opportunity)
            self.scanner.stop()

        asyncio.run(self.scanner.start(callback))

        self.assertEqual(len(received), 1)
        self.assertFalse(self.scanner.running)


if __name__ == '__main__':
    unittest.main()
