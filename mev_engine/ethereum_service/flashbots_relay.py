"""
Flashbots relay client for private bundle submission

Every request is signed with a dedicated relay-identity key: the
X-Flashbots-Signature header carries an EIP-191 signature of the keccak hash
of the exact request body.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, List, Optional

import aiohttp
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount
from web3 import Web3

from ..shared.models.opportunity_models import Bundle

logger = logging.getLogger(__name__)


class RelayError(Exception):
    """The relay rejected a request or could not be reached"""


class SimulationError(RelayError):
    """The relay simulation reported a failing bundle"""


class BundleResolution(IntEnum):
    BUNDLE_INCLUDED = 0
    BLOCK_PASSED_WITHOUT_INCLUSION = 1
    ACCOUNT_NONCE_TOO_HIGH = 2


@dataclass
class BundleSimulation:
    """Result of eth_callBundle"""
    bundle_hash: str = ""
    coinbase_diff: int = 0
    gas_fees: int = 0
    total_gas_used: int = 0
    results: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None


def _to_int(value: Any) -> int:
    """Relays report quantities either as decimal strings or 0x-hex"""
    if value is None:
        return 0
    if isinstance(value, int):
        return value
    text = str(value)
    if text.startswith("0x"):
        return int(text, 16)
    return int(text or "0")


class FlashbotsRelay:
    """
    JSON-RPC client for a Flashbots-compatible relay
    """

    MAINNET_RELAY_URL = "https://relay.flashbots.net"

    def __init__(self, engine, relay_signer_key: str, relay_url: Optional[str] = None):
        """
        Args:
            engine: EthereumEngine used to follow block height and receipts
            relay_signer_key: key for the relay reputation identity, not the trading key
            relay_url: relay endpoint (defaults to the Flashbots mainnet relay)
        """
        self.engine = engine
        self.signer: LocalAccount = Account.from_key(relay_signer_key)
        self.relay_url = relay_url or self.MAINNET_RELAY_URL

        logger.info(f"Initialized Flashbots relay client for {self.relay_url}")
        logger.info(f"Flashbots identity: {self.signer.address}")

    def _get_signed_headers(self, body: str) -> Dict[str, str]:
        """Generate signed headers for Flashbots authentication"""
        message = encode_defunct(text=Web3.to_hex(Web3.keccak(text=body)))
        signed = Account.sign_message(message, self.signer.key)
        return {
            "Content-Type": "application/json",
            "X-Flashbots-Signature": f"{self.signer.address}:{Web3.to_hex(signed.signature)}",
        }

    async def _rpc_request(self, method: str, params: List[Any], timeout: int = 30) -> Dict[str, Any]:
        payload = {
            "jsonrpc": "2.0",
            "id": int(time.time() * 1000),
            "method": method,
            "params": params,
        }
        body = json.dumps(payload, separators=(",", ":"))
        headers = self._get_signed_headers(body)

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    self.relay_url,
                    data=body,
                    headers=headers,
                    timeout=aiohttp.ClientTimeout(total=timeout)
                ) as response:
                    text = await response.text()
                    status = response.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise RelayError(f"{method} request failed: {e}") from e

        try:
            result = json.loads(text)
        except ValueError as e:
            raise RelayError(f"{method} returned HTTP {status} with non-JSON body: {text[:200]}") from e

        if status != 200 and "error" not in result:
            raise RelayError(f"{method} returned HTTP {status}: {result}")
        return result

    async def send_bundle(self, bundle: Bundle) -> str:
        """
        Submit a bundle for its target block

        Returns:
            Bundle hash assigned by the relay
        """
        params = [{
            "txs": bundle.transactions,
            "blockNumber": hex(bundle.target_block),
        }]
        result = await self._rpc_request("eth_sendBundle", params)

        if "error" in result:
            raise RelayError(f"eth_sendBundle rejected: {result['error']}")

        bundle_hash = (result.get("result") or {}).get("bundleHash", "")
        logger.info(f"Bundle submitted for block {bundle.target_block}: {bundle_hash}")
        return bundle_hash

    async def simulate_bundle(self, bundle: Bundle) -> BundleSimulation:
        """
        Simulate the bundle against the latest state

        Failures are reported in the returned simulation's error field
        rather than raised.
        """
        params = [{
            "txs": bundle.transactions,
            "blockNumber": hex(bundle.target_block),
            "stateBlockNumber": "latest",
        }]
        result = await self._rpc_request("eth_callBundle", params)

        if "error" in result:
            error = result["error"]
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            logger.warning(f"Bundle simulation failed: {message}")
            return BundleSimulation(error=message)

        sim = result.get("result") or {}
        tx_results = sim.get("results") or []
        simulation = BundleSimulation(
            bundle_hash=sim.get("bundleHash", ""),
            coinbase_diff=_to_int(sim.get("coinbaseDiff")),
            gas_fees=_to_int(sim.get("gasFees")),
            total_gas_used=_to_int(sim.get("totalGasUsed")),
            results=tx_results,
        )

        for tx_result in tx_results:
            failure = tx_result.get("error") or tx_result.get("revert")
            if failure:
                simulation.error = f"{tx_result.get('txHash', 'transaction')} failed: {failure}"
                logger.warning(f"Bundle simulation failed: {simulation.error}")
                break

        return simulation

    async def wait_for_resolution(
        self,
        bundle: Bundle,
        timeout: float = 60,
        poll_interval: float = 1.0
    ) -> BundleResolution:
        """
        Wait until the target block exists, then check whether the bundle landed

        Inclusion means every bundle transaction has a receipt in the target
        block. A signer nonce already consumed by some other transaction
        means the bundle can never land.
        """
        deadline = time.monotonic() + timeout
        while True:
            current_block = await self.engine.get_block_number()
            if current_block >= bundle.target_block:
                break
            if time.monotonic() >= deadline:
                logger.warning(f"Timed out waiting for block {bundle.target_block}")
                return BundleResolution.BLOCK_PASSED_WITHOUT_INCLUSION
            await asyncio.sleep(poll_interval)

        included = True
        for tx_hash in bundle.tx_hashes:
            receipt = await self.engine.get_transaction_receipt(tx_hash)
            if not receipt or receipt.get("blockNumber") != bundle.target_block:
                included = False
                break

        if included:
            logger.info(f"Bundle included in block {bundle.target_block}")
            return BundleResolution.BUNDLE_INCLUDED

        if bundle.signer_nonces:
            confirmed = await self.engine.get_transaction_count("latest", bundle.signer_address)
            if min(bundle.signer_nonces) < confirmed:
                logger.warning(
                    f"Bundle nonce {min(bundle.signer_nonces)} already used (account at {confirmed})"
                )
                return BundleResolution.ACCOUNT_NONCE_TOO_HIGH

        logger.info(f"Block {bundle.target_block} passed without bundle inclusion")
        return BundleResolution.BLOCK_PASSED_WITHOUT_INCLUSION
