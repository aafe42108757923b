"""
Static per-chain network tables
RPC endpoints and relay URLs can be overridden from the environment
"""
import os
from decimal import Decimal
from typing import Callable, Dict

from .models.chain_models import ChainConfig, ExchangeConfig, TokenConfig

FLASHBOTS_RELAY_URL = "https://relay.flashbots.net"


class NetworkConfig:
    """Builds the immutable ChainConfig for each supported network"""

    @staticmethod
    def get_ethereum_config() -> ChainConfig:
        return ChainConfig(
            name="ethereum",
            chain_id=1,
            native_symbol="ETH",
            rpc_http=os.getenv("ETH_RPC_URL", "http://localhost:8545"),
            rpc_wss=os.getenv("ETH_WSS_URL", "ws://localhost:8546"),
            wrapped_native="0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2",
            max_priority_fee=2 * 10**9,  # 2 gwei
            min_balance=Decimal("0.008"),
            relay_url=os.getenv("FLASHBOTS_RELAY_URL", FLASHBOTS_RELAY_URL),
            explorer_url="https://etherscan.io",
            exchanges=(
                ExchangeConfig(
                    name="UniswapV2",
                    router="0x7a250d5630B4cF539739dF2C5dAcb4c659F2488D",
                    factory="0x5C69bEe701ef814a2B6a3EDD4B1652CB9cc5aA6f",
                ),
                ExchangeConfig(
                    name="SushiSwap",
                    router="0xd9e1cE17f2641f24aE83637ab66a2cca9C378B9F",
                    factory="0xC0AEe478e3658e2610c5F7A4A2E1777cE9e4f2Ac",
                ),
            ),
            tokens=(
                TokenConfig("WETH", "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2", 18),
                TokenConfig("USDC", "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eb48", 6),
                TokenConfig("USDT", "0xdAC17F958D2ee523a2206206994597C13D831ec7", 6),
                TokenConfig("DAI", "0x6B175474E89094C44Da98b954EedeAC495271d0F", 18),
            ),
        )

    @staticmethod
    def get_polygon_config() -> ChainConfig:
        return ChainConfig(
            name="polygon",
            chain_id=137,
            native_symbol="MATIC",
            rpc_http=os.getenv("POLYGON_RPC", "https://polygon-rpc.com"),
            rpc_wss=os.getenv("POLYGON_WSS", "wss://polygon-bor.publicnode.com"),
            wrapped_native="0x0d500B1d8E8eF31E21C99d1Db9A6444d3ADf1270",
            max_priority_fee=50 * 10**9,  # 50 gwei
            min_balance=Decimal("0.5"),
            relay_url=os.getenv("POLYGON_RELAY_URL", "https://polygon-mev.flashlane.org"),
            explorer_url="https://polygonscan.com",
            exchanges=(
                ExchangeConfig(
                    name="QuickSwap",
                    router="0xa5E0829CaCEd8fFDD4De3c43696c57F7D7A678ff",
                    factory="0x5757371414417b8C6CAad45bAeF941aBc7d3Ab32",
                ),
                ExchangeConfig(
                    name="SushiSwap",
                    router="0x1b02dA8Cb0d097eB8D57A175b88c7D8b47997506",
                    factory="0xc35DADB65012eC5796536bD9864eD8773aBc74C4",
                ),
            ),
            tokens=(
                TokenConfig("WMATIC", "0x0d500B1d8E8eF31E21C99d1Db9A6444d3ADf1270", 18),
                TokenConfig("USDC", "0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174", 6),
                TokenConfig("WETH", "0x7ceB23fD6bC0adD59E62ac25578270cFf1b9f619", 18),
            ),
        )

    @staticmethod
    def get_bsc_config() -> ChainConfig:
        return ChainConfig(
            name="bsc",
            chain_id=56,
            native_symbol="BNB",
            rpc_http=os.getenv("BSC_RPC", "https://bsc-dataseed1.binance.org"),
            rpc_wss=os.getenv("BSC_WSS", "wss://bsc-ws-node.nariox.org"),
            wrapped_native="0xbb4CdB9CBd36B01bD1cBaEBF2De08d9173bc095c",
            max_priority_fee=3 * 10**9,  # 3 gwei
            min_balance=Decimal("0.002"),
            relay_url=os.getenv("BSC_RELAY_URL", "https://rpc.48.club"),
            explorer_url="https://bscscan.com",
            exchanges=(
                ExchangeConfig(
                    name="PancakeSwap",
                    router="0x10ED43C718714eb63d5aA57B78B54704E256024E",
                    factory="0xcA143Ce32Fe78f1f7019d7d551a6402fC5350c73",
                ),
                ExchangeConfig(
                    name="BiSwap",
                    router="0x3a6d8cA21D1CF76F653A67577FA0D27453350dD8",
                    factory="0x858E3312ed3A876947EA49d572A7C42DE08af7EE",
                ),
            ),
            tokens=(
                TokenConfig("WBNB", "0xbb4CdB9CBd36B01bD1cBaEBF2De08d9173bc095c", 18),
                TokenConfig("USDC", "0x8AC76a51cc950d9822D68b83fE1Ad97B32Cd580d", 18),
                TokenConfig("BUSD", "0xe9e7CEA3DedcA5984780Bafc599bD69ADd087D56", 18),
            ),
        )

    @classmethod
    def supported_chains(cls) -> Dict[str, Callable[[], ChainConfig]]:
        return {
            "ethereum": cls.get_ethereum_config,
            "polygon": cls.get_polygon_config,
            "bsc": cls.get_bsc_config,
        }

    @classmethod
    def get_chain_config(cls, name: str) -> ChainConfig:
        """Get the chain table by name (case-insensitive)"""
        builders = cls.supported_chains()
        builder = builders.get(name.lower())
        if builder is None:
            raise ValueError(f"Unsupported chain: {name}. Supported: {', '.join(builders)}")
        return builder()
