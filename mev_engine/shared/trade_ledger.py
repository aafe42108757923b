"""
Append-only trade ledger

Each outcome is appended to the day's JSON and CSV files and folded into a
running summary.json. Pending records are written to the files but only
terminal outcomes (success / failed) count towards the totals.
"""
import csv
import json
import logging
import os
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List

from .models.opportunity_models import TradeOutcome, TradeStatus

logger = logging.getLogger(__name__)

CSV_HEADERS = [
    "Timestamp", "Trade ID", "Status", "Strategy", "Token Pair", "Buy DEX", "Sell DEX",
    "Borrow Amount", "Expected Profit", "Gas Cost", "Net Profit", "TX Hash", "Bundle Hash", "Block",
]


class TradeLedger:
    """Persists TradeOutcome records under log_dir"""

    def __init__(self, log_dir: str = "logs"):
        self.log_dir = log_dir
        os.makedirs(self.log_dir, exist_ok=True)
        self.summary_file = os.path.join(self.log_dir, "summary.json")

        self.total_trades = 0
        self.successful_trades = 0
        self.failed_trades = 0
        self.total_profit = Decimal(0)
        self.total_gas_cost = Decimal(0)

        self._load_summary()

    def _day_file(self, extension: str, when: datetime) -> str:
        return os.path.join(self.log_dir, f"trades-{when.strftime('%Y-%m-%d')}.{extension}")

    def log_trade(self, outcome: TradeOutcome) -> None:
        if outcome.status == TradeStatus.SUCCESS:
            self.total_trades += 1
            self.successful_trades += 1
            if outcome.net_profit is not None:
                # gross realized profit; gas is tracked separately
                self.total_profit += outcome.net_profit + (outcome.gas_cost or Decimal(0))
        elif outcome.status == TradeStatus.FAILED:
            self.total_trades += 1
            self.failed_trades += 1

        if outcome.status != TradeStatus.PENDING and outcome.gas_cost is not None:
            self.total_gas_cost += outcome.gas_cost

        record = outcome.to_dict()
        self._append_json(record, outcome.timestamp)
        self._append_csv(outcome)
        self._save_summary()
        self._log_line(outcome)

    def _append_json(self, record: Dict[str, Any], when: datetime) -> None:
        path = self._day_file("json", when)
        trades: List[Dict[str, Any]] = []
        if os.path.exists(path):
            try:
                with open(path, "r") as f:
                    trades = json.load(f)
            except (OSError, ValueError) as e:
                logger.warning(f"Could not read {path}, starting a new file: {e}")
                trades = []

        trades.append(record)
        with open(path, "w") as f:
            json.dump(trades, f, indent=2)

    def _append_csv(self, outcome: TradeOutcome) -> None:
        path = self._day_file("csv", outcome.timestamp)
        write_header = not os.path.exists(path)
        pair = f"{_label(outcome.token_a)}/{_label(outcome.token_b)}"

        with open(path, "a", newline="") as f:
            writer = csv.writer(f)
            if write_header:
                writer.writerow(CSV_HEADERS)
            writer.writerow([
                outcome.timestamp.isoformat(),
                outcome.trade_id,
                outcome.status.value,
                outcome.strategy,
                pair,
                outcome.buy_dex or "N/A",
                outcome.sell_dex or "N/A",
                _or_na(outcome.borrow_amount),
                _or_na(outcome.expected_profit),
                _or_na(outcome.gas_cost),
                _or_na(outcome.net_profit),
                outcome.tx_hash or "N/A",
                outcome.bundle_hash or "N/A",
                outcome.block_number if outcome.block_number is not None else "N/A",
            ])

    def _log_line(self, outcome: TradeOutcome) -> None:
        message = (
            f"TRADE {outcome.status.value.upper()}: {outcome.trade_id} {outcome.strategy} "
            f"{_label(outcome.token_a)}/{_label(outcome.token_b)} expected {outcome.expected_profit}"
        )
        if outcome.net_profit is not None:
            message += f" net {outcome.net_profit}"
        if outcome.tx_hash:
            message += f" tx {outcome.tx_hash}"
        if outcome.error:
            message += f" error: {outcome.error}"

        if outcome.status == TradeStatus.FAILED:
            logger.warning(message)
        else:
            logger.info(message)

    def _load_summary(self) -> None:
        if not os.path.exists(self.summary_file):
            return
        try:
            with open(self.summary_file, "r") as f:
                summary = json.load(f)
            self.total_trades = int(summary.get("totalTrades", 0))
            self.successful_trades = int(summary.get("successfulTrades", 0))
            self.failed_trades = int(summary.get("failedTrades", 0))
            self.total_profit = Decimal(str(summary.get("totalProfit", "0")))
            self.total_gas_cost = Decimal(str(summary.get("totalGasCost", "0")))
        except (OSError, ValueError, InvalidOperation) as e:
            logger.warning(f"Could not load trade summary, starting fresh: {e}")

    def _save_summary(self) -> None:
        summary = self.get_statistics()
        summary["lastUpdated"] = datetime.now().isoformat()
        with open(self.summary_file, "w") as f:
            json.dump(summary, f, indent=2)

    def get_statistics(self) -> Dict[str, Any]:
        success_rate = (self.successful_trades / self.total_trades * 100) if self.total_trades else 0.0
        return {
            "totalTrades": self.total_trades,
            "successfulTrades": self.successful_trades,
            "failedTrades": self.failed_trades,
            "successRate": f"{success_rate:.2f}",
            "totalProfit": str(self.total_profit),
            "totalGasCost": str(self.total_gas_cost),
            "netProfit": str(self.total_profit - self.total_gas_cost),
        }


def _label(token: Dict[str, str]) -> str:
    return token.get("symbol") or token.get("address") or "?"


def _or_na(value) -> str:
    return "N/A" if value is None else str(value)
