from .bundle_executor import BundleExecutor, ExecutorState
from .config import EngineConfig
from .cross_arbitrage import CrossArbitrageScanner
from .engine import EthereumEngine
from .flashbots_relay import BundleResolution, BundleSimulation, FlashbotsRelay, RelayError, SimulationError
from .mempool_monitor import DecodeResult, MempoolMonitor
from .nonce_manager import NonceManager
from .service import EngineContext, MEVService

__all__ = [
    'BundleExecutor',
    'ExecutorState',
    'EngineConfig',
    'CrossArbitrageScanner',
    'EthereumEngine',
    'BundleResolution',
    'BundleSimulation',
    'FlashbotsRelay',
    'RelayError',
    'SimulationError',
    'DecodeResult',
    'MempoolMonitor',
    'NonceManager',
    'EngineContext',
    'MEVService',
]
