import unittest
import asyncio
import sys
import os
from unittest.mock import AsyncMock

# Add project root to path
sys.path.append(os.path.join(os.path.dirname(__file__), '..'))

from mev_engine.ethereum_service.nonce_manager import NonceManager


class TestNonceManager(unittest.TestCase):
    """Test suite for the nonce sequencer"""

    def setUp(self):
        self.mock_engine = AsyncMock()
        self.counts = {"pending": 5, "latest": 5}
        self.mock_engine.get_transaction_count.side_effect = self._get_transaction_count
        self.mock_engine.get_block_number.return_value = 100

        self.nonce_manager = NonceManager(self.mock_engine, stale_blocks=10, max_pending=10)

    async def _get_transaction_count(self, block_identifier="pending", address=None):
        return self.counts[block_identifier]

    def test_allocate_before_initialize_raises(self):
        with self.assertRaises(RuntimeError):
            self.nonce_manager.allocate_pair()
        with self.assertRaises(RuntimeError):
            self.nonce_manager.allocate_single()

    def test_initialize_uses_pending_count(self):
        self.counts["pending"] = 8
        self.counts["latest"] = 5
        asyncio.run(self.nonce_manager.initialize())

        self.assertEqual(self.nonce_manager.get_current_nonce(), 8)
        self.assertEqual(self.nonce_manager.get_pending_count(), 0)
        self.assertEqual(self.nonce_manager.last_sync_block, 100)

    def test_sequential_pairs_never_overlap(self):
        asyncio.run(self.nonce_manager.initialize())

        self.assertEqual(self.nonce_manager.allocate_pair(), (5, 6))
        self.assertEqual(self.nonce_manager.allocate_pair(), (7, 8))
        self.assertEqual(self.nonce_manager.get_current_nonce(), 9)
        self.assertEqual(self.nonce_manager.pending_nonces, {5, 6, 7, 8})

    def test_allocate_single_advances_by_one(self):
        asyncio.run(self.nonce_manager.initialize())

        self.assertEqual(self.nonce_manager.allocate_single(), 5)
        self.assertEqual(self.nonce_manager.allocate_pair(), (6, 7))

    def test_concurrent_allocations_are_unique(self):
        async def run():
            await self.nonce_manager.initialize()

            async def allocate():
                await asyncio.sleep(0)
                return self.nonce_manager.allocate_pair()

            return await asyncio.gather(*(allocate() for _ in range(20)))

        pairs = asyncio.run(run())
        nonces = [n for pair in pairs for n in pair]
        self.assertEqual(len(nonces), len(set(nonces)))
        self.assertEqual(sorted(nonces), list(range(5, 45)))

    def test_confirm_only_clears_in_flight(self):
        asyncio.run(self.nonce_manager.initialize())
        front, back = self.nonce_manager.allocate_pair()

        self.nonce_manager.confirm_pair(front, back)

        self.assertEqual(self.nonce_manager.get_pending_count(), 0)
        self.assertEqual(self.nonce_manager.get_current_nonce(), 7)

    def test_handle_failure_resyncs_from_latest(self):
        asyncio.run(self.nonce_manager.initialize())
        self.nonce_manager.allocate_pair()
        self.nonce_manager.allocate_pair()

        self.counts["latest"] = 6
        self.mock_engine.get_block_number.return_value = 103
        asyncio.run(self.nonce_manager.handle_failure())

        self.assertEqual(self.nonce_manager.get_pending_count(), 0)
        self.assertEqual(self.nonce_manager.last_sync_block, 103)
        self.assertEqual(self.nonce_manager.allocate_pair(), (6, 7))
        self.mock_engine.get_transaction_count.assert_awaited_with("latest")

    def test_resync_if_stale_noop_when_fresh(self):
        asyncio.run(self.nonce_manager.initialize())
        self.nonce_manager.allocate_pair()

        self.mock_engine.get_block_number.return_value = 109
        resynced = asyncio.run(self.nonce_manager.resync_if_stale())

        self.assertFalse(resynced)
        self.assertEqual(self.nonce_manager.get_current_nonce(), 7)
        self.assertEqual(self.nonce_manager.get_pending_count(), 2)

    def test_resync_if_stale_after_block_threshold(self):
        asyncio.run(self.nonce_manager.initialize())
        self.nonce_manager.allocate_pair()

        self.mock_engine.get_block_number.return_value = 110
        resynced = asyncio.run(self.nonce_manager.resync_if_stale())

        self.assertTrue(resynced)
        self.assertEqual(self.nonce_manager.get_current_nonce(), 5)
        self.assertEqual(self.nonce_manager.get_pending_count(), 0)
        self.assertEqual(self.nonce_manager.last_sync_block, 110)

    def test_resync_if_stale_when_too_many_in_flight(self):
        asyncio.run(self.nonce_manager.initialize())
        for _ in range(6):
            self.nonce_manager.allocate_pair()
        self.assertEqual(self.nonce_manager.get_pending_count(), 12)

        self.counts["latest"] = 9
        resynced = asyncio.run(self.nonce_manager.resync_if_stale())

        self.assertTrue(resynced)
        self.assertEqual(self.nonce_manager.get_current_nonce(), 9)
        self.assertEqual(self.nonce_manager.get_pending_count(), 0)

    def test_exactly_max_pending_is_not_stale(self):
        asyncio.run(self.nonce_manager.initialize())
        for _ in range(5):
            self.nonce_manager.allocate_pair()

        self.assertFalse(asyncio.run(self.nonce_manager.resync_if_stale()))


if __name__ == '__main__':
    unittest.main()
