import asyncio
import logging
import threading
from typing import Set, Tuple

logger = logging.getLogger(__name__)


class NonceManager:
    """
    Allocates and recovers transaction nonces for the signing account

    Allocation is optimistic: the counter advances as soon as nonces are handed
    out, before the bundle outcome is known. Any failed attempt, and the
    periodic staleness check, resynchronize from the chain.
    """

    def __init__(self, engine, stale_blocks: int = 10, max_pending: int = 10):
        self.engine = engine
        self.stale_blocks = stale_blocks
        self.max_pending = max_pending

        self.current_nonce = 0
        self.pending_nonces: Set[int] = set()
        self.last_sync_block = 0
        self.initialized = False

        self._counter_lock = threading.Lock()
        self._resync_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Start from the pending count so nonces already queued at the node are skipped"""
        async with self._resync_lock:
            blockchain_nonce = await self.engine.get_transaction_count("pending")
            block_number = await self.engine.get_block_number()
            with self._counter_lock:
                self.current_nonce = blockchain_nonce
                self.pending_nonces.clear()
                self.last_sync_block = block_number
                self.initialized = True

        logger.info(f"NonceManager initialized - starting nonce: {self.current_nonce}")

    def allocate_pair(self) -> Tuple[int, int]:
        """
        Next (front_run, back_run) nonce pair for a sandwich bundle

        Must be called at most once per bundle attempt, before signing.
        """
        with self._counter_lock:
            self._ensure_initialized()
            front_run_nonce = self.current_nonce
            back_run_nonce = self.current_nonce + 1
            self.pending_nonces.add(front_run_nonce)
            self.pending_nonces.add(back_run_nonce)
            self.current_nonce += 2

        logger.info(f"Allocated nonce pair: [{front_run_nonce}, {back_run_nonce}]")
        return front_run_nonce, back_run_nonce

    def allocate_single(self) -> int:
        """Next nonce for a one-transaction bundle"""
        with self._counter_lock:
            self._ensure_initialized()
            nonce = self.current_nonce
            self.pending_nonces.add(nonce)
            self.current_nonce += 1

        logger.info(f"Allocated nonce: {nonce}")
        return nonce

    def confirm_pair(self, front_run_nonce: int, back_run_nonce: int) -> None:
        """Bundle landed: the nonces are used. The counter has already advanced."""
        self.confirm(front_run_nonce, back_run_nonce)

    def confirm(self, *nonces: int) -> None:
        with self._counter_lock:
            for nonce in nonces:
                self.pending_nonces.discard(nonce)
        logger.info(f"Confirmed nonces: {list(nonces)}")

    async def handle_failure(self) -> None:
        """
        Full resync from the confirmed ('latest') count

        Discards every outstanding allocation, not just the failed attempt's.
        """
        logger.warning("Bundle failed - resyncing nonces")
        await self._resync()

    async def resync_if_stale(self) -> bool:
        """Resync when too many blocks passed since the last sync or too many nonces are in flight"""
        current_block = await self.engine.get_block_number()
        blocks_elapsed = current_block - self.last_sync_block

        if blocks_elapsed >= self.stale_blocks or len(self.pending_nonces) > self.max_pending:
            logger.info(
                f"Periodic nonce resync triggered ({blocks_elapsed} blocks since sync, "
                f"{len(self.pending_nonces)} in flight)"
            )
            await self._resync(current_block)
            return True
        return False

    async def _resync(self, block_number: int = None) -> None:
        async with self._resync_lock:
            confirmed_nonce = await self.engine.get_transaction_count("latest")
            if block_number is None:
                block_number = await self.engine.get_block_number()
            with self._counter_lock:
                self.current_nonce = confirmed_nonce
                self.pending_nonces.clear()
                self.last_sync_block = block_number
                self.initialized = True

        logger.info(f"Nonce resynced to: {self.current_nonce}")

    def _ensure_initialized(self) -> None:
        if not self.initialized:
            raise RuntimeError("NonceManager.initialize() must be called before allocating nonces")

    def get_current_nonce(self) -> int:
        return self.current_nonce

    def get_pending_count(self) -> int:
        return len(self.pending_nonces)
