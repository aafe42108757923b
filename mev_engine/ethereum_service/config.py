import os
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from dotenv import load_dotenv
from eth_utils import to_wei

from ..shared.models.chain_models import ChainConfig
from ..shared.network_config import NetworkConfig

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


def _env_number(name: str, default: str, cast):
    raw = os.getenv(name, default)
    try:
        return cast(raw)
    except (ValueError, ArithmeticError) as e:
        raise RuntimeError(f"Invalid value for {name}: {raw!r}") from e


@dataclass
class EngineConfig:
    """Runtime configuration for the engine, read from the environment"""

    chain_name: str = "ethereum"

    # Wallet / relay
    private_key: str = ""
    relay_signer_key: str = ""
    relay_url: Optional[str] = None
    helper_contract: str = ""

    # Profit thresholds
    min_profit_eth: Decimal = Decimal("0.001")  # net, native units
    min_profit_percent: float = 0.15  # gross, arbitrage scanner
    min_trade_value_eth: Decimal = Decimal("0.0008")
    min_balance_eth: Optional[Decimal] = None  # falls back to the chain default

    # Strategy parameters
    front_run_amount_eth: Decimal = Decimal("0.1")
    sandwich_profit_bps: int = 30
    bribe_percent: int = 80
    flash_loan_fee_bps: int = 9
    probe_amount_units: int = 100

    # Timing
    bundle_timeout: int = 60
    nonce_resync_interval: float = 12.0
    nonce_stale_blocks: int = 10
    nonce_max_pending: int = 10
    arbitrage_scan_interval: float = 5.0

    # Features
    mempool_monitor_enabled: bool = True
    arbitrage_scan_enabled: bool = True

    # Output
    trade_log_dir: str = "logs"
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @classmethod
    def from_env(cls) -> 'EngineConfig':
        """Create configuration from environment variables"""
        min_balance = os.getenv("MIN_ETH_BALANCE")
        return cls(
            chain_name=os.getenv("CHAIN", "ethereum").lower(),
            private_key=os.getenv("PRIVATE_KEY", os.getenv("WALLET_PRIVATE_KEY", "")),
            relay_signer_key=os.getenv("FLASHBOTS_RELAY_SIGNER_KEY", ""),
            relay_url=os.getenv("FLASHBOTS_RELAY_URL") or None,
            helper_contract=os.getenv("MEV_HELPER_CONTRACT_ADDRESS", ""),
            min_profit_eth=_env_number("MIN_PROFIT_ETH", "0.001", Decimal),
            min_profit_percent=_env_number("MIN_PROFIT_PERCENT", "0.15", float),
            min_trade_value_eth=_env_number("MIN_TRADE_VALUE_ETH", "0.0008", Decimal),
            min_balance_eth=_env_number("MIN_ETH_BALANCE", min_balance, Decimal) if min_balance else None,
            front_run_amount_eth=_env_number("FRONT_RUN_AMOUNT_ETH", "0.1", Decimal),
            sandwich_profit_bps=_env_number("SANDWICH_PROFIT_BPS", "30", int),
            bribe_percent=_env_number("BRIBE_PERCENT", "80", int),
            bundle_timeout=_env_number("BUNDLE_TIMEOUT", "60", int),
            nonce_resync_interval=_env_number("NONCE_RESYNC_INTERVAL", "12", float),
            nonce_stale_blocks=_env_number("NONCE_STALE_BLOCKS", "10", int),
            nonce_max_pending=_env_number("NONCE_MAX_PENDING", "10", int),
            arbitrage_scan_interval=_env_number("ARBITRAGE_SCAN_INTERVAL", "5", float),
            mempool_monitor_enabled=_env_bool("MEMPOOL_MONITOR_ENABLED", "true"),
            arbitrage_scan_enabled=_env_bool("ARBITRAGE_SCAN_ENABLED", "true"),
            trade_log_dir=os.getenv("TRADE_LOG_DIR", "logs"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_file=os.getenv("LOG_FILE") or None,
        )

    @property
    def min_profit_wei(self) -> int:
        return to_wei(self.min_profit_eth, 'ether')

    @property
    def min_trade_value_wei(self) -> int:
        return to_wei(self.min_trade_value_eth, 'ether')

    @property
    def front_run_amount_wei(self) -> int:
        return to_wei(self.front_run_amount_eth, 'ether')

    def get_chain(self) -> ChainConfig:
        return NetworkConfig.get_chain_config(self.chain_name)

    def get_relay_url(self, chain: ChainConfig) -> str:
        return self.relay_url or chain.relay_url

    def get_min_balance(self, chain: ChainConfig) -> Decimal:
        return self.min_balance_eth if self.min_balance_eth is not None else chain.min_balance

    def validate(self) -> None:
        errors = []
        if self.chain_name not in NetworkConfig.supported_chains():
            errors.append(f"CHAIN '{self.chain_name}' is not supported")
        if not self.private_key:
            errors.append("PRIVATE_KEY not set")
        if not self.relay_signer_key:
            errors.append("FLASHBOTS_RELAY_SIGNER_KEY not set")
        if not self.helper_contract:
            errors.append("MEV_HELPER_CONTRACT_ADDRESS not set")
        if not 0 <= self.bribe_percent <= 100:
            errors.append("BRIBE_PERCENT must be between 0 and 100")
        if self.min_profit_eth < 0:
            errors.append("MIN_PROFIT_ETH must not be negative")
        if errors:
            raise RuntimeError(f"Engine config validation errors: {'; '.join(errors)}")
