"""
Private relay client.

Bundles go straight to block builders through a Flashbots-style relay so
the transactions never touch the public mempool. Every request carries an
X-Flashbots-Signature header: an address and its signature over the keccak
of the request body. The reputation key is unrelated to the funded signer.

Reference: https://docs.flashbots.net/flashbots-auction/advanced/rpc-endpoint
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence

import httpx
from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3

from .config import DEFAULT_RELAY_URL

logger = logging.getLogger(__name__)

# JSON-RPC codes for requests the relay will never accept as sent
PERMANENT_ERROR_CODES = {-32600, -32602}
PERMANENT_ERROR_MARKERS = (
    "invalid bundle",
    "invalid transaction",
    "invalid signature",
    "malformed",
    "unable to decode",
    "nonce too low",
)


@dataclass
class RelayResponse:
    """Outcome of one eth_sendBundle call."""
    accepted: bool
    target_block: int
    bundle_hash: Optional[str] = None
    error: Optional[str] = None
    permanent: bool = False


@dataclass
class SimulationResult:
    """Outcome of eth_callBundle against a block's state."""
    success: bool
    error: Optional[str] = None
    failed_index: Optional[int] = None
    total_gas_used: int = 0
    coinbase_diff: int = 0
    results: List[Dict[str, Any]] = field(default_factory=list)


class RelayClient(Protocol):
    """Anything that can take a bundle for a target block."""

    async def submit_bundle(self, raw_txs: Sequence[str], target_block: int) -> RelayResponse:
        ...


def is_permanent_error(error: Dict[str, Any]) -> bool:
    """Whether a relay error rules out resubmitting the same bundle."""
    if error.get("code") in PERMANENT_ERROR_CODES:
        return True
    message = str(error.get("message", "")).lower()
    return any(marker in message for marker in PERMANENT_ERROR_MARKERS)


class FlashbotsRelay:
    """Flashbots relay over JSON-RPC."""

    def __init__(
        self,
        relay_url: str = DEFAULT_RELAY_URL,
        auth_key: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._relay_url = relay_url
        # A throwaway identity is fine; it only builds relay reputation
        self._auth_account = Account.from_key(auth_key) if auth_key else Account.create()
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._request_id = 0

    @property
    def auth_address(self) -> str:
        return self._auth_account.address

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._relay_url,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    def sign_body(self, body: str) -> str:
        """X-Flashbots-Signature value for a request body."""
        message = encode_defunct(text=Web3.to_hex(Web3.keccak(text=body)))
        signed = self._auth_account.sign_message(message)
        return f"{self._auth_account.address}:{Web3.to_hex(signed.signature)}"

    async def _post(self, method: str, params: List[Any]) -> Dict[str, Any]:
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params,
        }
        # Signed bytes must be exactly the bytes sent
        body = json.dumps(payload, separators=(",", ":"))
        headers = {
            "Content-Type": "application/json",
            "X-Flashbots-Signature": self.sign_body(body),
        }

        client = await self._get_client()
        response = await client.post("/", content=body, headers=headers)
        try:
            return response.json()
        except ValueError:
            response.raise_for_status()
            raise

    async def submit_bundle(self, raw_txs: Sequence[str], target_block: int) -> RelayResponse:
        """Submit the bundle for inclusion in exactly `target_block`."""
        params = [{"txs": list(raw_txs), "blockNumber": hex(target_block)}]
        try:
            result = await self._post("eth_sendBundle", params)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Relay request for block {target_block} failed: {e}")
            return RelayResponse(accepted=False, target_block=target_block, error=str(e))

        if "error" in result:
            error = result["error"] if isinstance(result["error"], dict) else {"message": result["error"]}
            return RelayResponse(
                accepted=False,
                target_block=target_block,
                error=error.get("message", "Unknown error"),
                permanent=is_permanent_error(error),
            )

        bundle_hash = (result.get("result") or {}).get("bundleHash")
        return RelayResponse(accepted=True, target_block=target_block, bundle_hash=bundle_hash)

    async def simulate_bundle(
        self,
        raw_txs: Sequence[str],
        target_block: int,
        state_block: str = "latest",
    ) -> SimulationResult:
        """Dry-run the bundle on top of `state_block` with eth_callBundle."""
        params = [{
            "txs": list(raw_txs),
            "blockNumber": hex(target_block),
            "stateBlockNumber": state_block,
        }]
        try:
            result = await self._post("eth_callBundle", params)
        except (httpx.HTTPError, ValueError) as e:
            return SimulationResult(success=False, error=f"Simulation request failed: {e}")

        if "error" in result:
            error = result["error"]
            message = error.get("message", "Unknown error") if isinstance(error, dict) else str(error)
            return SimulationResult(success=False, error=message)

        body = result.get("result") or {}
        tx_results = body.get("results", [])
        for index, tx_result in enumerate(tx_results):
            if tx_result.get("error") or tx_result.get("revert"):
                return SimulationResult(
                    success=False,
                    error=tx_result.get("revert") or tx_result.get("error"),
                    failed_index=index,
                    results=tx_results,
                )

        return SimulationResult(
            success=True,
            total_gas_used=int(body.get("totalGasUsed", 0)),
            coinbase_diff=int(body.get("coinbaseDiff", "0")),
            results=tx_results,
        )

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
