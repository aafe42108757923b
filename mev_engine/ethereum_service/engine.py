import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

import rlp
from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_account.typed_transactions import TypedTransaction
from eth_utils import from_wei, to_checksum_address
from hexbytes import HexBytes
from rlp.sedes import big_endian_int, binary
from web3 import AsyncWeb3, Web3
from web3.exceptions import TransactionNotFound

from ..shared.models.chain_models import ChainConfig
from .abi_encoder import FACTORY_V2_ABI, ROUTER_V2_ABI
from .profitability import FeeData

logger = logging.getLogger(__name__)

TYPED_TX_FIELDS = (
    "type", "chainId", "nonce", "gas", "to", "value", "accessList",
    "gasPrice", "maxFeePerGas", "maxPriorityFeePerGas",
)


class SignedLegacyTransaction(rlp.Serializable):
    fields = [
        ('nonce', big_endian_int),
        ('gasPrice', big_endian_int),
        ('gas', big_endian_int),
        ('to', binary),
        ('value', big_endian_int),
        ('data', binary),
        ('v', big_endian_int),
        ('r', big_endian_int),
        ('s', big_endian_int),
    ]


def serialize_signed_transaction(tx: Dict[str, Any]) -> str:
    """
    Re-encode a parsed, already-signed transaction into its raw wire form

    Used when the node does not expose eth_getRawTransactionByHash.
    """
    tx_type = tx.get("type", 0)
    if isinstance(tx_type, str):
        tx_type = int(tx_type, 16)

    data = HexBytes(tx.get("input", tx.get("data", b"")))
    r = int.from_bytes(HexBytes(tx["r"]), "big")
    s = int.from_bytes(HexBytes(tx["s"]), "big")

    if tx_type == 0:
        to = tx.get("to")
        legacy = SignedLegacyTransaction(
            nonce=tx["nonce"],
            gasPrice=tx["gasPrice"],
            gas=tx["gas"],
            to=bytes(HexBytes(to)) if to else b"",
            value=tx["value"],
            data=bytes(data),
            v=tx["v"],
            r=r,
            s=s,
        )
        return Web3.to_hex(rlp.encode(legacy))

    fields = {key: tx[key] for key in TYPED_TX_FIELDS if key in tx and tx[key] is not None}
    if tx_type == 1:
        fields.pop("maxFeePerGas", None)
        fields.pop("maxPriorityFeePerGas", None)
    else:
        # nodes report the effective gasPrice on dynamic-fee transactions
        fields.pop("gasPrice", None)
    fields["type"] = tx_type
    fields["data"] = data
    fields["accessList"] = [
        {"address": entry["address"], "storageKeys": [Web3.to_hex(HexBytes(k)) for k in entry["storageKeys"]]}
        for entry in tx.get("accessList", [])
    ]
    fields["v"] = tx.get("yParity", tx.get("v"))
    fields["r"] = r
    fields["s"] = s
    return Web3.to_hex(TypedTransaction.from_dict(fields).encode())


class EthereumEngine:
    """Chain-provider abstraction: reads chain state and signs for the controlled account"""

    def __init__(self, chain: ChainConfig, private_key: str):
        self.chain = chain
        self.private_key = private_key
        self.w3: Optional[AsyncWeb3] = None
        self.account: Optional[LocalAccount] = None
        self.chain_id: Optional[int] = None

    @property
    def address(self) -> str:
        if not self.account:
            raise ValueError("Wallet not initialized")
        return self.account.address

    async def initialize(self) -> bool:
        """Initialize Web3 connection and wallet"""
        try:
            self.w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(self.chain.rpc_http))

            if not await self.w3.is_connected():
                raise ConnectionError(f"Failed to connect to {self.chain.name} RPC")

            self.account = Account.from_key(self.private_key)
            logger.info(f"Wallet initialized: {self.account.address}")

            self.chain_id = await self.w3.eth.chain_id
            if self.chain_id != self.chain.chain_id:
                logger.warning(f"Chain ID mismatch: expected {self.chain.chain_id}, got {self.chain_id}")

            logger.info(f"{self.chain.name} engine initialized on chain {self.chain_id}")
            return True

        except Exception as e:
            logger.error(f"Failed to initialize {self.chain.name} engine: {e}")
            return False

    async def get_native_balance(self, account_address: Optional[str] = None) -> int:
        """Native asset balance in wei"""
        return await self.w3.eth.get_balance(account_address or self.address)

    async def get_native_balance_formatted(self, account_address: Optional[str] = None) -> Decimal:
        balance_wei = await self.get_native_balance(account_address)
        return Decimal(from_wei(balance_wei, 'ether'))

    async def get_block_number(self) -> int:
        return await self.w3.eth.block_number

    async def get_transaction(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        """Get a (pending) transaction, or None if the node no longer knows it"""
        try:
            tx = await self.w3.eth.get_transaction(tx_hash)
        except TransactionNotFound:
            return None
        return dict(tx) if tx else None

    async def get_raw_transaction(self, tx_hash: str) -> Optional[str]:
        """
        Raw signed bytes of a transaction as hex

        Falls back to re-serializing the parsed transaction when the node does
        not serve eth_getRawTransactionByHash.
        """
        try:
            raw = await self.w3.eth.get_raw_transaction(tx_hash)
            if raw:
                return Web3.to_hex(raw)
        except TransactionNotFound:
            return None
        except Exception as e:
            logger.debug(f"eth_getRawTransactionByHash unavailable for {tx_hash}: {e}")

        tx = await self.get_transaction(tx_hash)
        if not tx:
            return None
        return serialize_signed_transaction(tx)

    async def get_fee_data(self) -> FeeData:
        """Current EIP-1559 fee data (legacy gas price only on pre-London chains)"""
        gas_price = await self.w3.eth.gas_price
        latest_block = await self.w3.eth.get_block('latest')
        base_fee = latest_block.get('baseFeePerGas')
        if base_fee is None:
            return FeeData(gas_price=gas_price)

        try:
            priority_fee = await self.w3.eth.max_priority_fee
        except Exception as e:
            logger.debug(f"eth_maxPriorityFeePerGas unavailable: {e}")
            priority_fee = self.chain.max_priority_fee

        return FeeData(
            base_fee_per_gas=base_fee,
            max_fee_per_gas=base_fee * 2 + priority_fee,
            max_priority_fee_per_gas=priority_fee,
            gas_price=gas_price,
        )

    async def get_transaction_count(self, block_identifier: str = "pending", address: Optional[str] = None) -> int:
        """Transaction count (nonce) tagged 'pending' or 'latest'"""
        return await self.w3.eth.get_transaction_count(address or self.address, block_identifier)

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        try:
            receipt = await self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        return dict(receipt) if receipt else None

    async def get_amounts_out(self, router: str, amount_in: int, path: List[str]) -> List[int]:
        contract = self.w3.eth.contract(address=to_checksum_address(router), abi=ROUTER_V2_ABI)
        amounts = await contract.functions.getAmountsOut(
            amount_in, [to_checksum_address(p) for p in path]
        ).call()
        return [int(a) for a in amounts]

    async def get_pair(self, factory: str, token_a: str, token_b: str) -> str:
        contract = self.w3.eth.contract(address=to_checksum_address(factory), abi=FACTORY_V2_ABI)
        return await contract.functions.getPair(
            to_checksum_address(token_a), to_checksum_address(token_b)
        ).call()

    def sign_transaction(self, tx: Dict[str, Any]) -> str:
        """Sign with the controlled account; returns the raw transaction hex"""
        if not self.account:
            raise ValueError("Wallet not initialized")
        signed = self.account.sign_transaction(tx)
        return Web3.to_hex(signed.raw_transaction)
