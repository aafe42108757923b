import asyncio
import json
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Set

import websockets

from ..shared.models.chain_models import ChainConfig
from ..shared.models.opportunity_models import SandwichOpportunity
from .abi_encoder import SwapCallDataEncoder
from .config import EngineConfig

logger = logging.getLogger(__name__)

SEEN_HASH_WINDOW = 10_000
RECONNECT_DELAY = 5
MAX_CONCURRENT_ANALYSES = 64

OpportunityCallback = Callable[[SandwichOpportunity], Awaitable[object]]


@dataclass(frozen=True)
class DecodeResult:
    """Outcome of analyzing one pending transaction: an opportunity, an error, or neither"""
    tx_hash: str
    opportunity: Optional[SandwichOpportunity] = None
    error: Optional[str] = None


class MempoolMonitor:
    """Watch pending transactions for large V2 router swaps worth sandwiching"""

    def __init__(self, engine, chain: ChainConfig, config: EngineConfig):
        self.engine = engine
        self.chain = chain
        self.config = config
        self.websocket = None
        self.is_monitoring = False
        self._seen: "OrderedDict[str, None]" = OrderedDict()
        self._analyses: Set[asyncio.Task] = set()
        self._tasks: Set[asyncio.Task] = set()

    def _mark_seen(self, tx_hash: str) -> bool:
        """Record a hash; False if it was already seen inside the window"""
        key = tx_hash.lower()
        if key in self._seen:
            return False
        self._seen[key] = None
        if len(self._seen) > SEEN_HASH_WINDOW:
            self._seen.popitem(last=False)
        return True

    def build_opportunity_from_tx(self, tx: Dict[str, Any], raw_tx: str) -> DecodeResult:
        """Decode a parsed pending transaction into a sandwich candidate"""
        tx_hash = tx.get("hash")
        tx_hash = tx_hash.hex() if isinstance(tx_hash, (bytes, bytearray)) else str(tx_hash)
        if not tx_hash.startswith("0x"):
            tx_hash = "0x" + tx_hash

        router = tx.get("to")
        if not self.chain.is_router(router):
            return DecodeResult(tx_hash=tx_hash)

        swap = SwapCallDataEncoder.decode_router_swap(tx.get("input", tx.get("data", b"")), tx.get("value", 0))
        if swap is None:
            return DecodeResult(tx_hash=tx_hash, error="not a supported router swap")
        if len(swap.path) < 2:
            return DecodeResult(tx_hash=tx_hash, error="swap path shorter than two tokens")

        if swap.amount_in < self.config.min_trade_value_wei:
            return DecodeResult(
                tx_hash=tx_hash,
                error=f"trade size {swap.amount_in} below minimum {self.config.min_trade_value_wei}"
            )

        estimated_profit = swap.amount_in * self.config.sandwich_profit_bps // 10_000

        opportunity = SandwichOpportunity(
            opportunity_id=f"sandwich-{tx_hash[:18]}-{int(time.time() * 1000)}",
            target_tx_hash=tx_hash,
            target_tx_raw=raw_tx,
            router=router,
            token_in=swap.path[0],
            token_out=swap.path[-1],
            amount_in=swap.amount_in,
            estimated_profit=estimated_profit,
            target_gas_limit=tx.get("gas"),
        )
        return DecodeResult(tx_hash=tx_hash, opportunity=opportunity)

    async def analyze_pending_transaction(self, tx_hash: str) -> DecodeResult:
        """Fetch and decode one pending transaction; provider errors are reported, not raised"""
        try:
            tx = await self.engine.get_transaction(tx_hash)
            if not tx:
                return DecodeResult(tx_hash=tx_hash, error="transaction no longer pending")
            if not self.chain.is_router(tx.get("to")):
                return DecodeResult(tx_hash=tx_hash)

            raw_tx = await self.engine.get_raw_transaction(tx_hash)
            if not raw_tx:
                return DecodeResult(tx_hash=tx_hash, error="raw transaction unavailable")

            return self.build_opportunity_from_tx(tx, raw_tx)

        except Exception as e:
            return DecodeResult(tx_hash=tx_hash, error=f"analysis failed: {e}")

    @staticmethod
    def _decode_frame(message) -> Optional[Dict[str, Any]]:
        """Parse one websocket frame; None for anything that is not a JSON object"""
        try:
            payload = json.loads(message)
        except ValueError as e:
            logger.debug(f"Ignoring malformed mempool frame: {e}")
            return None
        if not isinstance(payload, dict):
            logger.debug(f"Ignoring non-object mempool frame: {payload!r}")
            return None
        return payload

    async def pending_transaction_hashes(self) -> AsyncIterator[str]:
        """Hashes from eth_subscribe newPendingTransactions, reconnecting on disconnect"""
        async for websocket in websockets.connect(self.chain.rpc_wss):
            self.websocket = websocket
            try:
                await websocket.send(json.dumps({
                    "jsonrpc": "2.0",
                    "id": 1,
                    "method": "eth_subscribe",
                    "params": ["newPendingTransactions"]
                }))
                response = self._decode_frame(await websocket.recv()) or {}
                logger.info(f"Mempool subscription id: {response.get('result')}")

                while self.is_monitoring:
                    message = self._decode_frame(await websocket.recv())
                    if message is None:
                        continue
                    params = message.get("params")
                    tx_hash = params.get("result") if isinstance(params, dict) else None
                    if isinstance(tx_hash, str):
                        yield tx_hash

            except websockets.exceptions.ConnectionClosed as e:
                if not self.is_monitoring:
                    break
                logger.warning(f"Mempool websocket closed ({e}), reconnecting...")
                await asyncio.sleep(RECONNECT_DELAY)
                continue
            finally:
                self.websocket = None

            if not self.is_monitoring:
                break

    def _spawn(self, tasks: Set[asyncio.Task], coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        tasks.add(task)
        task.add_done_callback(tasks.discard)
        return task

    async def stream_opportunities(self) -> AsyncIterator[DecodeResult]:
        """
        Decode results for every new pending hash, skipping duplicates

        Each hash is analyzed in its own task, at most MAX_CONCURRENT_ANALYSES at a
        time, so results arrive in completion order rather than arrival order.
        """
        results: asyncio.Queue = asyncio.Queue()
        slots = asyncio.Semaphore(MAX_CONCURRENT_ANALYSES)

        async def analyze(tx_hash: str) -> None:
            try:
                results.put_nowait(await self.analyze_pending_transaction(tx_hash))
            finally:
                slots.release()

        async def read_hashes() -> None:
            try:
                async for tx_hash in self.pending_transaction_hashes():
                    if not self._mark_seen(tx_hash):
                        continue
                    await slots.acquire()
                    self._spawn(self._analyses, analyze(tx_hash))
                await asyncio.gather(*list(self._analyses), return_exceptions=True)
            finally:
                results.put_nowait(None)

        reader = asyncio.create_task(read_hashes())
        try:
            while True:
                result = await results.get()
                if result is None:
                    break
                yield result
            # surfaces a subscription failure to the caller
            await reader
        finally:
            reader.cancel()
            for task in list(self._analyses):
                task.cancel()
            await asyncio.gather(reader, return_exceptions=True)

    async def start_monitoring(self, callback: OpportunityCallback) -> None:
        """Run until stop_monitoring(); each opportunity is handed to callback in its own task"""
        self.is_monitoring = True
        logger.info(f"Starting mempool monitoring on {self.chain.name}...")

        stream = self.stream_opportunities()
        try:
            async for result in stream:
                if result.error:
                    logger.debug(f"Skipping {result.tx_hash}: {result.error}")
                    continue
                if result.opportunity is None:
                    continue

                opportunity = result.opportunity
                logger.info(
                    f"Sandwich candidate {opportunity.target_tx_hash}: "
                    f"{opportunity.amount_in} in, est. profit {opportunity.estimated_profit} wei"
                )
                self._spawn(self._tasks, callback(opportunity))

                if not self.is_monitoring:
                    break
        finally:
            await stream.aclose()

    async def stop_monitoring(self) -> None:
        """Close the subscription and cancel in-flight analyses and executor attempts"""
        self.is_monitoring = False
        if self.websocket:
            await self.websocket.close()

        pending = list(self._analyses) + list(self._tasks)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        if pending:
            logger.info(f"Cancelled {len(pending)} in-flight mempool tasks")
        logger.info("Mempool monitoring stopped")
