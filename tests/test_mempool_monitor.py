import unittest
import asyncio
import json
import sys
import os
from unittest.mock import AsyncMock, MagicMock, patch

from eth_abi import encode

# Add project root to path
sys.path.append(os.path.join(os.path.dirname(__file__), '..'))

from mev_engine.ethereum_service.abi_encoder import SwapCallDataEncoder
from mev_engine.ethereum_service.config import EngineConfig
from mev_engine.ethereum_service.mempool_monitor import MempoolMonitor
from mev_engine.shared.network_config import NetworkConfig

ETHER = 10**18
TX_HASH = "0x" + "ab" * 32
RAW_TX = "0x02f8b0018203e8"
RECIPIENT = "0x1111111111111111111111111111111111111111"


class TestMempoolMonitor(unittest.TestCase):
    """Test suite for the mempool decoder"""

    def setUp(self):
        self.chain = NetworkConfig.get_ethereum_config()
        self.config = EngineConfig()
        self.router = self.chain.get_exchange("UniswapV2").router
        self.weth = self.chain.wrapped_native
        self.usdc = self.chain.get_token("USDC").address

        self.mock_engine = AsyncMock()
        self.monitor = MempoolMonitor(self.mock_engine, self.chain, self.config)

    def _eth_for_tokens_tx(self, value, to=None):
        return {
            "hash": TX_HASH,
            "to": to or self.router,
            "value": value,
            "gas": 180_000,
            "input": SwapCallDataEncoder.encode_swap_exact_eth_for_tokens(
                0, [self.weth, self.usdc], RECIPIENT, 1_900_000_000
            ),
        }

    def test_native_in_swap_becomes_opportunity(self):
        result = self.monitor.build_opportunity_from_tx(self._eth_for_tokens_tx(ETHER), RAW_TX)

        self.assertIsNone(result.error)
        opportunity = result.opportunity
        self.assertIsNotNone(opportunity)
        self.assertEqual(opportunity.target_tx_hash, TX_HASH)
        self.assertEqual(opportunity.target_tx_raw, RAW_TX)
        self.assertEqual(opportunity.amount_in, ETHER)
        self.assertEqual(opportunity.estimated_profit, ETHER * 30 // 10_000)
        self.assertEqual(opportunity.token_in.lower(), self.weth.lower())
        self.assertEqual(opportunity.token_out.lower(), self.usdc.lower())
        self.assertEqual(opportunity.target_gas_limit, 180_000)
        self.assertEqual(opportunity.strategy, "sandwich")

    def test_native_in_swap_below_minimum_is_rejected(self):
        result = self.monitor.build_opportunity_from_tx(self._eth_for_tokens_tx(10**14), RAW_TX)

        self.assertIsNone(result.opportunity)
        self.assertIn("below minimum", result.error)

    def test_tokens_for_tokens_uses_explicit_amount(self):
        amount_in = 5 * ETHER
        data = SwapCallDataEncoder.SWAP_EXACT_TOKENS_FOR_TOKENS + encode(
            ["uint256", "uint256", "address[]", "address", "uint256"],
            [amount_in, 1, [self.usdc, self.weth], RECIPIENT, 1_900_000_000]
        ).hex()
        tx = {"hash": TX_HASH, "to": self.router, "value": 0, "gas": 250_000, "input": data}

        result = self.monitor.build_opportunity_from_tx(tx, RAW_TX)

        self.assertEqual(result.opportunity.amount_in, amount_in)
        self.assertEqual(result.opportunity.estimated_profit, amount_in * 30 // 10_000)

    def test_unknown_selector_is_rejected(self):
        tx = {"hash": TX_HASH, "to": self.router, "value": ETHER, "input": "0xdeadbeef" + "00" * 64}

        result = self.monitor.build_opportunity_from_tx(tx, RAW_TX)

        self.assertIsNone(result.opportunity)
        self.assertIsNotNone(result.error)

    def test_short_path_is_rejected(self):
        data = SwapCallDataEncoder.SWAP_EXACT_ETH_FOR_TOKENS + encode(
            ["uint256", "address[]", "address", "uint256"],
            [0, [self.usdc], RECIPIENT, 1_900_000_000]
        ).hex()
        tx = {"hash": TX_HASH, "to": self.router, "value": ETHER, "input": data}

        result = self.monitor.build_opportunity_from_tx(tx, RAW_TX)

        self.assertIsNone(result.opportunity)
        self.assertIn("path", result.error)

    def test_non_router_transaction_is_ignored(self):
        tx = self._eth_for_tokens_tx(ETHER, to=RECIPIENT)

        result = self.monitor.build_opportunity_from_tx(tx, RAW_TX)

        self.assertIsNone(result.opportunity)
        self.assertIsNone(result.error)

    def test_analyze_pending_transaction_fetches_raw_bytes(self):
        self.mock_engine.get_transaction.return_value = self._eth_for_tokens_tx(ETHER)
        self.mock_engine.get_raw_transaction.return_value = RAW_TX

        result = asyncio.run(self.monitor.analyze_pending_transaction(TX_HASH))

        self.assertEqual(result.opportunity.target_tx_raw, RAW_TX)
        self.mock_engine.get_raw_transaction.assert_awaited_once_with(TX_HASH)

    def test_analyze_pending_transaction_reports_provider_errors(self):
        self.mock_engine.get_transaction.side_effect = ConnectionError("node unavailable")

        result = asyncio.run(self.monitor.analyze_pending_transaction(TX_HASH))

        self.assertIsNone(result.opportunity)
        self.assertIn("node unavailable", result.error)

    def test_analyze_skips_vanished_transaction(self):
        self.mock_engine.get_transaction.return_value = None

        result = asyncio.run(self.monitor.analyze_pending_transaction(TX_HASH))

        self.assertIsNone(result.opportunity)
        self.mock_engine.get_raw_transaction.assert_not_awaited()

    def test_duplicate_hashes_are_skipped(self):
        async def hashes():
            for tx_hash in (TX_HASH, TX_HASH.upper().replace("0X", "0x"), "0x" + "cd" * 32):
                yield tx_hash

        self.monitor.pending_transaction_hashes = MagicMock(return_value=hashes())
        self.monitor.analyze_pending_transaction = AsyncMock(side_effect=lambda h: h)

        async def collect():
            return [result async for result in self.monitor.stream_opportunities()]

        results = asyncio.run(collect())

        self.assertCountEqual(results, [TX_HASH, "0x" + "cd" * 32])

    def test_start_monitoring_dispatches_opportunities(self):
        opportunity = self.monitor.build_opportunity_from_tx(self._eth_for_tokens_tx(ETHER), RAW_TX)
        rejected = self.monitor.build_opportunity_from_tx(self._eth_for_tokens_tx(10**14), RAW_TX)

        async def stream():
            yield rejected
            yield opportunity

        self.monitor.stream_opportunities = MagicMock(return_value=stream())
        callback = AsyncMock()

        async def run():
            await self.monitor.start_monitoring(callback)
            await asyncio.gather(*self.monitor._tasks)

        asyncio.run(run())

        callback.assert_awaited_once_with(opportunity.opportunity)


    def test_slow_analysis_does_not_block_next_hash(self):
        started = []
        release = asyncio.Event()

        async def get_transaction(tx_hash):
            started.append(tx_hash)
            if tx_hash == "0x01":
                await release.wait()
            return None

        async def hashes():
            yield "0x01"
            yield "0x02"

        self.mock_engine.get_transaction.side_effect = get_transaction
        self.monitor.pending_transaction_hashes = MagicMock(return_value=hashes())

        async def run():
            stream = self.monitor.stream_opportunities()
            first = await asyncio.wait_for(stream.__anext__(), timeout=1)
            release.set()
            second = await asyncio.wait_for(stream.__anext__(), timeout=1)
            await stream.aclose()
            return first, second

        first, second = asyncio.run(run())

        self.assertEqual(started, ["0x01", "0x02"])
        self.assertEqual(first.tx_hash, "0x02")
        self.assertEqual(second.tx_hash, "0x01")
        self.assertIn("no longer pending", second.error)

    def test_malformed_frames_do_not_end_subscription(self):
        def notification(tx_hash):
            return json.dumps({
                "jsonrpc": "2.0",
                "method": "eth_subscription",
                "params": {"subscription": "0xsub", "result": tx_hash},
            })

        websocket = MagicMock()
        websocket.send = AsyncMock()
        websocket.recv = AsyncMock(side_effect=[
            json.dumps({"jsonrpc": "2.0", "id": 1, "result": "0xsub"}),
            notification("0x01"),
            "not-json",
            "[1, 2]",
            json.dumps({"method": "eth_subscription", "params": None}),
            notification("0x02"),
        ])

        async def connections(url):
            yield websocket

        async def collect():
            self.monitor.is_monitoring = True
            stream = self.monitor.pending_transaction_hashes()
            collected = []
            try:
                async for tx_hash in stream:
                    collected.append(tx_hash)
                    if len(collected) == 2:
                        break
            finally:
                await stream.aclose()
            return collected

        with patch("mev_engine.ethereum_service.mempool_monitor.websockets.connect", side_effect=connections):
            collected = asyncio.run(collect())

        self.assertEqual(collected, ["0x01", "0x02"])

    def test_stop_monitoring_cancels_running_attempts(self):
        opportunity = self.monitor.build_opportunity_from_tx(self._eth_for_tokens_tx(ETHER), RAW_TX)

        async def stream():
            yield opportunity

        self.monitor.stream_opportunities = MagicMock(return_value=stream())

        async def callback(_):
            await asyncio.Event().wait()

        async def run():
            await self.monitor.start_monitoring(callback)
            attempts = list(self.monitor._tasks)
            await asyncio.sleep(0)
            await self.monitor.stop_monitoring()
            return attempts

        attempts = asyncio.run(run())

        self.assertEqual(len(attempts), 1)
        self.assertTrue(attempts[0].cancelled())
        self.assertFalse(self.monitor.is_monitoring)


if __name__ == '__main__':
    unittest.main()
