"""
Bundle executor: turns an opportunity into a signed, nonce-sequenced bundle,
submits it to the private relay and follows it to a terminal state.

    IDLE -> NONCES_ALLOCATED -> SIGNED -> SUBMITTED -> SIMULATED
         -> INCLUDED | NOT_INCLUDED | FAILED

Opportunities that fail the profitability checks end in REJECTED without
touching the nonce sequencer.
"""

import asyncio
import inspect
import logging
import time
import uuid
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from eth_utils import from_wei, to_checksum_address

from ..shared.models.chain_models import ChainConfig
from ..shared.models.opportunity_models import (
    ArbitrageOpportunity,
    Bundle,
    Opportunity,
    SandwichOpportunity,
    TradeOutcome,
    TradeStatus,
)
from .abi_encoder import SwapCallDataEncoder
from .config import EngineConfig
from .flashbots_relay import BundleResolution, FlashbotsRelay, SimulationError
from .flashloan_engine import FlashLoanEngine
from .nonce_manager import NonceManager
from .profitability import (
    ARBITRAGE_GAS_LIMIT,
    BACK_RUN_GAS_LIMIT,
    FRONT_RUN_GAS_LIMIT,
    FeeData,
    ProfitEvaluation,
    arbitrage_gas_limits,
    evaluate_profitability,
    sandwich_gas_limits,
)

logger = logging.getLogger(__name__)

FRONT_RUN_DEADLINE_SECONDS = 300
FRONT_RUN_FEE_MULTIPLIER = (12, 10)  # 1.2x


class ExecutorState(Enum):
    IDLE = "idle"
    REJECTED = "rejected"
    NONCES_ALLOCATED = "nonces_allocated"
    SIGNED = "signed"
    SUBMITTED = "submitted"
    SIMULATED = "simulated"
    INCLUDED = "included"
    NOT_INCLUDED = "not_included"
    FAILED = "failed"


class OpportunityRejected(Exception):
    """Opportunity does not clear the profitability checks"""


OutcomeHandler = Callable[[TradeOutcome], Any]


class BundleExecutor:
    """Executes one opportunity per call; concurrent calls never share nonces"""

    def __init__(
        self,
        engine,
        nonce_manager: NonceManager,
        relay: FlashbotsRelay,
        config: EngineConfig,
        chain: ChainConfig,
        flashloan_engine: Optional[FlashLoanEngine] = None,
        outcome_handler: Optional[OutcomeHandler] = None
    ):
        self.engine = engine
        self.nonce_manager = nonce_manager
        self.relay = relay
        self.config = config
        self.chain = chain
        self.flashloan_engine = flashloan_engine or FlashLoanEngine(fee_bps=config.flash_loan_fee_bps)
        self.outcome_handler = outcome_handler

        self.state = ExecutorState.IDLE
        self._submit_lock = asyncio.Lock()
        self.stats: Dict[str, int] = {
            "attempted": 0,
            "rejected": 0,
            "included": 0,
            "not_included": 0,
            "failed": 0,
        }

    def _set_state(self, state: ExecutorState, opportunity_id: str) -> None:
        self.state = state
        logger.debug(f"[{opportunity_id}] -> {state.value}")

    async def execute(self, opportunity: Opportunity) -> TradeOutcome:
        """
        Evaluate, build, submit and resolve one opportunity

        Never raises: every failure ends in a failed TradeOutcome. Once nonces
        have been requested, any failure triggers a nonce resync.
        """
        self._set_state(ExecutorState.IDLE, opportunity.opportunity_id)

        try:
            self._check_gross_profit(opportunity)
            fee_data = await self.engine.get_fee_data()
            evaluation = self._evaluate(opportunity, fee_data)
        except OpportunityRejected as e:
            self.stats["rejected"] += 1
            self._set_state(ExecutorState.REJECTED, opportunity.opportunity_id)
            logger.info(f"[{opportunity.opportunity_id}] Rejected: {e}")
            return self._build_outcome(opportunity, TradeStatus.FAILED, error=f"rejected: {e}")
        except Exception as e:
            return await self._fail(opportunity, None, f"evaluation failed: {e}")

        self.stats["attempted"] += 1
        bundle = None
        try:
            async with self._submit_lock:
                bundle = await self._build_bundle(opportunity, fee_data, evaluation)
                bundle_hash = await self.relay.send_bundle(bundle)
                self._set_state(ExecutorState.SUBMITTED, opportunity.opportunity_id)

            await self._emit(self._build_outcome(
                opportunity, TradeStatus.PENDING, evaluation=evaluation,
                bundle=bundle, bundle_hash=bundle_hash
            ))

            simulation = await self.relay.simulate_bundle(bundle)
            if simulation.error:
                raise SimulationError(simulation.error)
            self._set_state(ExecutorState.SIMULATED, opportunity.opportunity_id)

            resolution = await self.relay.wait_for_resolution(bundle, timeout=self.config.bundle_timeout)
            if resolution != BundleResolution.BUNDLE_INCLUDED:
                self.stats["not_included"] += 1
                self._set_state(ExecutorState.NOT_INCLUDED, opportunity.opportunity_id)
                await self.nonce_manager.handle_failure()
                outcome = self._build_outcome(
                    opportunity, TradeStatus.FAILED, evaluation=evaluation, bundle=bundle,
                    bundle_hash=bundle_hash, error=f"bundle not included ({resolution.name})"
                )
                await self._emit(outcome)
                return outcome

            self._set_state(ExecutorState.INCLUDED, opportunity.opportunity_id)
            self.stats["included"] += 1
            self.nonce_manager.confirm(*bundle.signer_nonces)
            outcome = await self._settle_included(opportunity, evaluation, bundle, bundle_hash)
            await self._emit(outcome)
            return outcome

        except SimulationError as e:
            return await self._fail(opportunity, bundle, f"simulation failed: {e}", evaluation)
        except Exception as e:
            return await self._fail(opportunity, bundle, str(e), evaluation)

    def _check_gross_profit(self, opportunity: Opportunity) -> None:
        gross = self._gross_profit_wei(opportunity)
        if gross is None:
            raise OpportunityRejected(f"profit could not be valued in {self.chain.native_symbol}")
        if gross < self.config.min_profit_wei:
            raise OpportunityRejected(f"estimated profit {gross} wei below minimum {self.config.min_profit_wei} wei")
        if isinstance(opportunity, SandwichOpportunity):
            if opportunity.token_out.lower() == self.chain.wrapped_native.lower():
                raise OpportunityRejected("swap ends in the wrapped native asset; nothing to front-run")

    @staticmethod
    def _gross_profit_wei(opportunity: Opportunity) -> Optional[int]:
        if isinstance(opportunity, ArbitrageOpportunity):
            return opportunity.estimated_profit_native
        return opportunity.estimated_profit

    def _evaluate(self, opportunity: Opportunity, fee_data: FeeData) -> ProfitEvaluation:
        if isinstance(opportunity, SandwichOpportunity):
            gas_limits = sandwich_gas_limits(opportunity.target_gas_limit)
            base_priority_fee = None
        else:
            gas_limits = arbitrage_gas_limits()
            base_priority_fee = self.chain.max_priority_fee

        evaluation = evaluate_profitability(
            gross_profit=self._gross_profit_wei(opportunity),
            gas_limits=gas_limits,
            fee_data=fee_data,
            min_net_profit=self.config.min_profit_wei,
            bribe_percent=self.config.bribe_percent,
            base_priority_fee=base_priority_fee,
        )
        if not evaluation.accepted:
            raise OpportunityRejected(evaluation.reason)

        logger.info(
            f"[{opportunity.opportunity_id}] Net profit {evaluation.net_profit} wei "
            f"(gas {evaluation.gas_cost}, bribe {evaluation.bribe})"
        )
        return evaluation

    async def _build_bundle(self, opportunity: Opportunity, fee_data: FeeData, evaluation: ProfitEvaluation) -> Bundle:
        """Allocate nonces, sign, and pin the bundle to the next block. Caller holds the submit lock."""
        if isinstance(opportunity, SandwichOpportunity):
            front_nonce, back_nonce = self.nonce_manager.allocate_pair()
            nonces = [front_nonce, back_nonce]
            self._set_state(ExecutorState.NONCES_ALLOCATED, opportunity.opportunity_id)
            front_tx, back_tx = self._sandwich_transactions(opportunity, fee_data, evaluation, front_nonce, back_nonce)
            transactions = [
                self.engine.sign_transaction(front_tx),
                opportunity.target_tx_raw,
                self.engine.sign_transaction(back_tx),
            ]
        else:
            nonce = self.nonce_manager.allocate_single()
            nonces = [nonce]
            self._set_state(ExecutorState.NONCES_ALLOCATED, opportunity.opportunity_id)
            transactions = [self.engine.sign_transaction(self._arbitrage_transaction(opportunity, evaluation, nonce))]
        self._set_state(ExecutorState.SIGNED, opportunity.opportunity_id)

        current_block = await self.engine.get_block_number()
        return Bundle(
            transactions=transactions,
            target_block=current_block + 1,
            signer_address=self.engine.address,
            signer_nonces=nonces,
        )

    def _base_tx(self, nonce: int) -> Dict[str, Any]:
        return {
            "type": 2,
            "chainId": self.engine.chain_id or self.chain.chain_id,
            "nonce": nonce,
        }

    def _sandwich_transactions(
        self,
        opportunity: SandwichOpportunity,
        fee_data: FeeData,
        evaluation: ProfitEvaluation,
        front_nonce: int,
        back_nonce: int
    ) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        helper = to_checksum_address(self.config.helper_contract)
        num, den = FRONT_RUN_FEE_MULTIPLIER
        deadline = int(time.time()) + FRONT_RUN_DEADLINE_SECONDS

        front_tx = {
            **self._base_tx(front_nonce),
            "to": to_checksum_address(opportunity.router),
            "value": self.config.front_run_amount_wei,
            "data": SwapCallDataEncoder.encode_swap_exact_eth_for_tokens(
                0, [self.chain.wrapped_native, opportunity.token_out], helper, deadline
            ),
            "gas": FRONT_RUN_GAS_LIMIT,
            "maxFeePerGas": fee_data.max_fee_per_gas * num // den,
            "maxPriorityFeePerGas": fee_data.max_priority_fee_per_gas * num // den,
        }
        back_tx = {
            **self._base_tx(back_nonce),
            "to": helper,
            "value": 0,
            "data": SwapCallDataEncoder.encode_backrun_settlement(opportunity.token_out, self.engine.address),
            "gas": BACK_RUN_GAS_LIMIT,
            "maxFeePerGas": evaluation.settlement_max_fee,
            "maxPriorityFeePerGas": evaluation.settlement_priority_fee,
        }
        return front_tx, back_tx

    def _arbitrage_transaction(
        self,
        opportunity: ArbitrageOpportunity,
        evaluation: ProfitEvaluation,
        nonce: int
    ) -> Dict[str, Any]:
        return {
            **self._base_tx(nonce),
            "to": to_checksum_address(self.config.helper_contract),
            "value": 0,
            "data": self.flashloan_engine.build_arbitrage_calldata(opportunity),
            "gas": ARBITRAGE_GAS_LIMIT,
            "maxFeePerGas": evaluation.settlement_max_fee,
            "maxPriorityFeePerGas": evaluation.settlement_priority_fee,
        }

    async def _settle_included(
        self,
        opportunity: Opportunity,
        evaluation: ProfitEvaluation,
        bundle: Bundle,
        bundle_hash: str
    ) -> TradeOutcome:
        """Actual gas cost from our own receipts; any revert turns the outcome into a failure"""
        own_hashes = self._own_tx_hashes(opportunity, bundle)
        gas_cost = 0
        reverted: List[str] = []
        for tx_hash in own_hashes:
            receipt = await self.engine.get_transaction_receipt(tx_hash)
            if not receipt:
                continue
            gas_cost += receipt.get("gasUsed", 0) * receipt.get("effectiveGasPrice", 0)
            if receipt.get("status") == 0:
                reverted.append(tx_hash)

        if reverted:
            self.stats["failed"] += 1
            logger.error(f"[{opportunity.opportunity_id}] Included but reverted: {reverted}")
            return self._build_outcome(
                opportunity, TradeStatus.FAILED, evaluation=evaluation, bundle=bundle,
                bundle_hash=bundle_hash, gas_cost_wei=gas_cost,
                error=f"transaction reverted: {', '.join(reverted)}"
            )

        logger.info(f"[{opportunity.opportunity_id}] Bundle landed in block {bundle.target_block}")
        return self._build_outcome(
            opportunity, TradeStatus.SUCCESS, evaluation=evaluation, bundle=bundle,
            bundle_hash=bundle_hash, gas_cost_wei=gas_cost
        )

    @staticmethod
    def _own_tx_hashes(opportunity: Opportunity, bundle: Bundle) -> List[str]:
        hashes = bundle.tx_hashes
        if isinstance(opportunity, SandwichOpportunity):
            return [hashes[0], hashes[-1]]
        return hashes

    async def _fail(
        self,
        opportunity: Opportunity,
        bundle: Optional[Bundle],
        error: str,
        evaluation: Optional[ProfitEvaluation] = None
    ) -> TradeOutcome:
        self.stats["failed"] += 1
        self._set_state(ExecutorState.FAILED, opportunity.opportunity_id)
        logger.error(f"[{opportunity.opportunity_id}] Bundle attempt failed: {error}")

        try:
            await self.nonce_manager.handle_failure()
        except Exception as e:
            logger.error(f"Nonce resync after failure also failed: {e}")

        outcome = self._build_outcome(opportunity, TradeStatus.FAILED, evaluation=evaluation, bundle=bundle, error=error)
        await self._emit(outcome)
        return outcome

    async def _emit(self, outcome: TradeOutcome) -> None:
        if self.outcome_handler is None:
            return
        try:
            result = self.outcome_handler(outcome)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Outcome handler failed for {outcome.trade_id}: {e}")

    def _build_outcome(
        self,
        opportunity: Opportunity,
        status: TradeStatus,
        evaluation: Optional[ProfitEvaluation] = None,
        bundle: Optional[Bundle] = None,
        bundle_hash: Optional[str] = None,
        gas_cost_wei: Optional[int] = None,
        error: Optional[str] = None
    ) -> TradeOutcome:
        if isinstance(opportunity, ArbitrageOpportunity):
            token_a = {"symbol": opportunity.token_a.symbol, "address": opportunity.token_a.address}
            token_b = {"symbol": opportunity.token_b.symbol, "address": opportunity.token_b.address}
            buy_dex = opportunity.buy_exchange.name
            sell_dex = opportunity.sell_exchange.name
            borrow_amount = Decimal(opportunity.borrow_amount) / Decimal(10 ** opportunity.token_a.decimals)
        else:
            token_a = {"address": opportunity.token_in, "amount": str(opportunity.amount_in)}
            token_b = {"address": opportunity.token_out}
            buy_dex = sell_dex = None
            borrow_amount = None

        gross = self._gross_profit_wei(opportunity) or 0
        gas_cost = net_profit = None
        if gas_cost_wei is not None:
            # bribe is paid through the priority fee, so it is already in the receipts
            gas_cost = _native(gas_cost_wei)
            net_profit = _native(gross - gas_cost_wei) if status == TradeStatus.SUCCESS else _native(-gas_cost_wei)
        elif status == TradeStatus.PENDING and evaluation is not None:
            gas_cost = _native(evaluation.gas_cost)
            net_profit = _native(evaluation.net_profit)
        elif bundle is not None:
            # never landed, nothing paid
            gas_cost = net_profit = Decimal(0)

        tx_hash = None
        if bundle is not None and bundle.transactions:
            tx_hash = bundle.tx_hashes[-1]

        return TradeOutcome(
            trade_id=uuid.uuid4().hex[:16],
            strategy=opportunity.strategy,
            opportunity_id=opportunity.opportunity_id,
            status=status,
            token_a=token_a,
            token_b=token_b,
            expected_profit=_native(gross),
            buy_dex=buy_dex,
            sell_dex=sell_dex,
            borrow_amount=borrow_amount,
            gas_cost=gas_cost,
            net_profit=net_profit,
            tx_hash=tx_hash,
            bundle_hash=bundle_hash,
            block_number=bundle.target_block if bundle is not None else None,
            error=error,
        )


def _native(wei: int) -> Decimal:
    """Wei to native units; unlike from_wei this accepts negative amounts"""
    if wei < 0:
        return -Decimal(from_wei(-wei, 'ether'))
    return Decimal(from_wei(wei, 'ether'))
