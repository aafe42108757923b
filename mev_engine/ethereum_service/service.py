import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional

from ..shared.models.chain_models import ChainConfig
from ..shared.models.opportunity_models import Opportunity, TradeOutcome
from ..shared.trade_ledger import TradeLedger
from .bundle_executor import BundleExecutor
from .config import EngineConfig
from .cross_arbitrage import CrossArbitrageScanner
from .engine import EthereumEngine
from .flashbots_relay import FlashbotsRelay
from .flashloan_engine import FlashLoanEngine
from .mempool_monitor import MempoolMonitor
from .nonce_manager import NonceManager

logger = logging.getLogger(__name__)

MONITOR_RESTART_DELAY = 5


@dataclass
class EngineContext:
    """Everything a running engine shares, built once at startup"""
    config: EngineConfig
    chain: ChainConfig
    engine: EthereumEngine
    nonce_manager: NonceManager
    relay: FlashbotsRelay

    @classmethod
    def build(cls, config: EngineConfig) -> 'EngineContext':
        chain = config.get_chain()
        engine = EthereumEngine(chain, config.private_key)
        return cls(
            config=config,
            chain=chain,
            engine=engine,
            nonce_manager=NonceManager(
                engine,
                stale_blocks=config.nonce_stale_blocks,
                max_pending=config.nonce_max_pending,
            ),
            relay=FlashbotsRelay(engine, config.relay_signer_key, config.get_relay_url(chain)),
        )


class MEVService:
    """Wires the scanners to the bundle executor and runs the background loops"""

    def __init__(self, context: EngineContext, ledger: Optional[TradeLedger] = None):
        self.context = context
        self.config = context.config
        self.chain = context.chain
        self.engine = context.engine
        self.nonce_manager = context.nonce_manager

        self.ledger = ledger or TradeLedger(self.config.trade_log_dir)
        flashloan_engine = FlashLoanEngine(fee_bps=self.config.flash_loan_fee_bps)

        self.executor = BundleExecutor(
            self.engine,
            self.nonce_manager,
            context.relay,
            self.config,
            self.chain,
            flashloan_engine=flashloan_engine,
            outcome_handler=self._record_outcome,
        )
        self.mempool_monitor = MempoolMonitor(self.engine, self.chain, self.config)
        self.arbitrage_scanner = CrossArbitrageScanner(self.engine, self.chain, self.config, flashloan_engine)

        self.is_running = False
        self._tasks: List[asyncio.Task] = []

    async def initialize(self) -> None:
        """
        Validate config, connect, check balance and sync nonces

        Raises RuntimeError on any failure; the engine must not start scanning then.
        """
        logger.info(f"Initializing MEV engine on {self.chain.name}...")
        self.config.validate()

        if not await self.engine.initialize():
            raise RuntimeError(f"Could not connect to {self.chain.name} RPC at {self.chain.rpc_http}")

        balance = await self.engine.get_native_balance_formatted()
        min_balance = self.config.get_min_balance(self.chain)
        logger.info(f"Balance: {balance} {self.chain.native_symbol}")
        if balance < min_balance:
            raise RuntimeError(
                f"Insufficient balance: {balance} {self.chain.native_symbol} "
                f"(minimum {min_balance} {self.chain.native_symbol})"
            )

        await self.nonce_manager.initialize()
        logger.info("MEV engine initialized successfully")

    async def start(self) -> None:
        """Run the enabled loops until stop() is called"""
        if self.is_running:
            logger.warning("Service already running")
            return

        self.is_running = True
        logger.info("Starting MEV engine...")

        if self.config.mempool_monitor_enabled:
            self._tasks.append(asyncio.create_task(self._mempool_monitoring()))
        if self.config.arbitrage_scan_enabled:
            self._tasks.append(asyncio.create_task(self.arbitrage_scanner.start(self.handle_opportunity)))
        self._tasks.append(asyncio.create_task(self._nonce_resync_loop()))

        try:
            await asyncio.gather(*self._tasks)
        except asyncio.CancelledError:
            logger.info("MEV engine tasks cancelled")
        finally:
            self.is_running = False

    async def stop(self) -> None:
        logger.info("Stopping MEV engine...")
        self.is_running = False
        self.arbitrage_scanner.stop()
        await self.mempool_monitor.stop_monitoring()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        stats = self.ledger.get_statistics()
        logger.info(
            f"Trades: {stats['totalTrades']} (success rate {stats['successRate']}%), "
            f"net profit {stats['netProfit']} {self.chain.native_symbol}"
        )

    async def handle_opportunity(self, opportunity: Opportunity) -> TradeOutcome:
        logger.info(f"Executing {opportunity.strategy} opportunity {opportunity.opportunity_id}")
        return await self.executor.execute(opportunity)

    def _record_outcome(self, outcome: TradeOutcome) -> None:
        self.ledger.log_trade(outcome)

    async def _mempool_monitoring(self):
        """Keep the mempool subscription alive for as long as the engine runs"""
        while self.is_running:
            try:
                await self.mempool_monitor.start_monitoring(self.handle_opportunity)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error in mempool monitoring: {e}")

            if self.is_running:
                logger.warning(f"Mempool monitoring ended, restarting in {MONITOR_RESTART_DELAY}s")
                await asyncio.sleep(MONITOR_RESTART_DELAY)

    async def _nonce_resync_loop(self):
        """Periodic staleness check, independent of bundle activity"""
        while self.is_running:
            try:
                await asyncio.sleep(self.config.nonce_resync_interval)
                await self.nonce_manager.resync_if_stale()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Nonce resync check failed: {e}")

    def get_status(self) -> dict:
        return {
            "chain": self.chain.name,
            "running": self.is_running,
            "executor_state": self.executor.state.value,
            "executor_stats": dict(self.executor.stats),
            "current_nonce": self.nonce_manager.get_current_nonce(),
            "pending_nonces": self.nonce_manager.get_pending_count(),
            "trades": self.ledger.get_statistics(),
        }
