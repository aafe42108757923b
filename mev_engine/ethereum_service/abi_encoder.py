import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, Union

from eth_abi import decode, encode
from eth_utils import function_signature_to_4byte_selector, to_checksum_address
from hexbytes import HexBytes

logger = logging.getLogger(__name__)


def _selector(signature: str) -> str:
    return "0x" + function_signature_to_4byte_selector(signature).hex()


# Minimal read ABIs
ROUTER_V2_ABI = [
    {
        "inputs": [
            {"name": "amountIn", "type": "uint256"},
            {"name": "path", "type": "address[]"}
        ],
        "name": "getAmountsOut",
        "outputs": [{"name": "amounts", "type": "uint256[]"}],
        "stateMutability": "view",
        "type": "function"
    }
]

FACTORY_V2_ABI = [
    {
        "constant": True,
        "inputs": [
            {"name": "tokenA", "type": "address"},
            {"name": "tokenB", "type": "address"}
        ],
        "name": "getPair",
        "outputs": [{"name": "pair", "type": "address"}],
        "type": "function"
    }
]


@dataclass(frozen=True)
class DecodedSwap:
    function: str
    path: List[str]
    amount_in: int
    amount_out_min: int
    recipient: str
    deadline: int


class SwapCallDataEncoder:
    """Encode and decode the router and helper-contract calls the engine deals with"""

    # Uniswap V2 Router selectors
    SWAP_EXACT_ETH_FOR_TOKENS = "0x7ff36ab5"  # swapExactETHForTokens
    SWAP_EXACT_TOKENS_FOR_ETH = "0x18cbafe5"  # swapExactTokensForETH
    SWAP_EXACT_TOKENS_FOR_TOKENS = "0x38ed1739"  # swapExactTokensForTokens

    # Helper contract entry points
    EXECUTE_BACKRUN_SWAP = _selector("executeBackRunSwap(address,address)")
    EXECUTE_ARBITRAGE = _selector(
        "executeArbitrage(address,uint256,address,address,address[],address[])"
    )

    ROUTER_SWAPS: Dict[str, Tuple[str, List[str]]] = {
        SWAP_EXACT_ETH_FOR_TOKENS: (
            "swapExactETHForTokens",
            ["uint256", "address[]", "address", "uint256"],
        ),
        SWAP_EXACT_TOKENS_FOR_ETH: (
            "swapExactTokensForETH",
            ["uint256", "uint256", "address[]", "address", "uint256"],
        ),
        SWAP_EXACT_TOKENS_FOR_TOKENS: (
            "swapExactTokensForTokens",
            ["uint256", "uint256", "address[]", "address", "uint256"],
        ),
    }

    @staticmethod
    def decode_router_swap(data: Union[bytes, str], value: int = 0) -> Optional[DecodedSwap]:
        """
        Decode a V2 router swap call

        Returns None for unknown selectors or malformed arguments. For the
        ETH-in swap the input amount is the transaction value.
        """
        raw = HexBytes(data)
        if len(raw) < 4:
            return None

        selector = "0x" + raw[:4].hex().removeprefix("0x")
        entry = SwapCallDataEncoder.ROUTER_SWAPS.get(selector)
        if entry is None:
            return None

        function_name, types = entry
        try:
            args = decode(types, bytes(raw[4:]))
        except Exception as e:
            logger.debug(f"Could not decode {function_name} arguments: {e}")
            return None

        if selector == SwapCallDataEncoder.SWAP_EXACT_ETH_FOR_TOKENS:
            amount_out_min, path, recipient, deadline = args
            amount_in = int(value or 0)
        else:
            amount_in, amount_out_min, path, recipient, deadline = args

        return DecodedSwap(
            function=function_name,
            path=[to_checksum_address(p) for p in path],
            amount_in=int(amount_in),
            amount_out_min=int(amount_out_min),
            recipient=to_checksum_address(recipient),
            deadline=int(deadline),
        )

    @staticmethod
    def encode_swap_exact_eth_for_tokens(
        amount_out_min: int,
        path: List[str],
        to: str,
        deadline: int
    ) -> str:
        """Encode swapExactETHForTokens(uint256,address[],address,uint256)"""
        encoded_params = encode(
            ['uint256', 'address[]', 'address', 'uint256'],
            [amount_out_min, [to_checksum_address(p) for p in path], to_checksum_address(to), deadline]
        )
        return SwapCallDataEncoder.SWAP_EXACT_ETH_FOR_TOKENS + encoded_params.hex()

    @staticmethod
    def encode_backrun_settlement(token: str, profit_recipient: str) -> str:
        """Encode executeBackRunSwap(address token, address profitRecipient)"""
        encoded_params = encode(
            ['address', 'address'],
            [to_checksum_address(token), to_checksum_address(profit_recipient)]
        )
        return SwapCallDataEncoder.EXECUTE_BACKRUN_SWAP + encoded_params.hex()

    @staticmethod
    def encode_execute_arbitrage(
        token_borrow: str,
        amount: int,
        router_buy: str,
        router_sell: str,
        path_buy: List[str],
        path_sell: List[str]
    ) -> str:
        """Encode executeArbitrage on the helper contract (flash loan funded)"""
        encoded_params = encode(
            ['address', 'uint256', 'address', 'address', 'address[]', 'address[]'],
            [
                to_checksum_address(token_borrow),
                amount,
                to_checksum_address(router_buy),
                to_checksum_address(router_sell),
                [to_checksum_address(p) for p in path_buy],
                [to_checksum_address(p) for p in path_sell],
            ]
        )
        return SwapCallDataEncoder.EXECUTE_ARBITRAGE + encoded_params.hex()
