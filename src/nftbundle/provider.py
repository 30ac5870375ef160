"""
Chain provider collaborator.

The purchase pipeline needs only a handful of node primitives: the signer's
pending nonce, raw transaction broadcast, receipts, and the chain head. This
module defines that interface and a plain JSON-RPC implementation over httpx.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Protocol, Union

import httpx
from eth_abi import decode, encode
from web3 import Web3

from .orders import normalize_address

logger = logging.getLogger(__name__)


class RPCError(Exception):
    """JSON-RPC call returned an error object."""

    def __init__(self, message: str, code: Optional[int] = None, data: Any = None):
        self.code = code
        self.data = data
        super().__init__(message)


def _to_int(value: Union[str, int, None]) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, int):
        return value
    return int(value, 16)


@dataclass(frozen=True)
class Receipt:
    """The parts of a transaction receipt the pipeline looks at."""
    tx_hash: str
    status: int
    block_number: Optional[int] = None
    gas_used: Optional[int] = None
    effective_gas_price: Optional[int] = None
    contract_address: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == 1

    @classmethod
    def from_rpc(cls, data: Dict[str, Any]) -> "Receipt":
        return cls(
            tx_hash=data.get("transactionHash", ""),
            status=_to_int(data.get("status", "0x0")) or 0,
            block_number=_to_int(data.get("blockNumber")),
            gas_used=_to_int(data.get("gasUsed")),
            effective_gas_price=_to_int(data.get("effectiveGasPrice")),
            contract_address=data.get("contractAddress"),
        )


@dataclass(frozen=True)
class BlockHeader:
    """Latest block fields used for fee and listing-time decisions."""
    number: int
    timestamp: int
    base_fee_per_gas: int

    @classmethod
    def from_rpc(cls, data: Dict[str, Any]) -> "BlockHeader":
        return cls(
            number=_to_int(data["number"]),
            timestamp=_to_int(data["timestamp"]),
            base_fee_per_gas=_to_int(data.get("baseFeePerGas")) or 0,
        )


class ChainProvider(Protocol):
    """Node primitives the orchestrator and submitters use."""

    async def chain_id(self) -> int:
        ...

    async def current_nonce(self, address: str) -> int:
        ...

    async def send_raw_transaction(self, raw_tx: str) -> str:
        ...

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Receipt]:
        ...

    async def get_block_number(self) -> int:
        ...

    async def get_latest_block(self) -> BlockHeader:
        ...


class JsonRpcProvider:
    """JSON-RPC client for an Ethereum node."""

    def __init__(
        self,
        rpc_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._rpc_url = rpc_url
        self._timeout = timeout
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None
        self._request_id = 0

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self._http_client

    async def _call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        """Make JSON-RPC call."""
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params or [],
        }

        client = await self._get_client()
        response = await client.post(self._rpc_url, json=payload)
        response.raise_for_status()
        result = response.json()

        if "error" in result:
            error = result["error"]
            raise RPCError(
                f"RPC error in {method}: {error.get('message', error)}",
                code=error.get("code"),
                data=error.get("data"),
            )

        return result.get("result")

    async def chain_id(self) -> int:
        return int(await self._call("eth_chainId"), 16)

    async def current_nonce(self, address: str) -> int:
        """Pending transaction count, so queued txs are not reused."""
        result = await self._call("eth_getTransactionCount", [address, "pending"])
        return int(result, 16)

    async def send_raw_transaction(self, raw_tx: str) -> str:
        return await self._call("eth_sendRawTransaction", [raw_tx])

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Receipt]:
        result = await self._call("eth_getTransactionReceipt", [tx_hash])
        if not result:
            return None
        return Receipt.from_rpc(result)

    async def get_block_number(self) -> int:
        return int(await self._call("eth_blockNumber"), 16)

    async def get_latest_block(self) -> BlockHeader:
        result = await self._call("eth_getBlockByNumber", ["latest", False])
        return BlockHeader.from_rpc(result)

    async def get_balance(self, address: str) -> int:
        return int(await self._call("eth_getBalance", [address, "latest"]), 16)

    async def estimate_gas(self, tx: Dict[str, Any]) -> int:
        return int(await self._call("eth_estimateGas", [tx]), 16)

    async def call(self, to: str, data: bytes) -> bytes:
        """eth_call against the latest block."""
        result = await self._call(
            "eth_call",
            [{"to": to, "data": "0x" + data.hex()}, "latest"],
        )
        return bytes.fromhex(result[2:] if result.startswith("0x") else result)

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> "JsonRpcProvider":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()


async def wait_for_receipt(
    provider: ChainProvider,
    tx_hash: str,
    timeout: float,
    poll_interval: float = 2.0,
) -> Optional[Receipt]:
    """Poll for a receipt; None if it did not appear within `timeout` seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        receipt = await provider.get_transaction_receipt(tx_hash)
        if receipt is not None:
            return receipt
        if loop.time() >= deadline:
            return None
        await asyncio.sleep(poll_interval)


OWNER_OF_SELECTOR = Web3.keccak(text="ownerOf(uint256)")[:4]
BALANCE_OF_SELECTOR = Web3.keccak(text="balanceOf(address,uint256)")[:4]


class NFTReader:
    """Read-only access to an NFT contract's ownership data."""

    def __init__(self, provider: JsonRpcProvider, contract: str):
        self._provider = provider
        self._contract = normalize_address(contract)

    async def owner_of(self, token_id: int) -> str:
        data = OWNER_OF_SELECTOR + encode(["uint256"], [token_id])
        result = await self._provider.call(self._contract, data)
        (owner,) = decode(["address"], result)
        return normalize_address(owner)

    async def balance_of(self, owner: str, token_id: int) -> int:
        data = BALANCE_OF_SELECTOR + encode(
            ["address", "uint256"], [normalize_address(owner), token_id]
        )
        result = await self._provider.call(self._contract, data)
        (balance,) = decode(["uint256"], result)
        return balance

    async def balances(self, owner: str, token_ids: Iterable[int]) -> Dict[int, int]:
        token_ids = list(token_ids)
        values = await asyncio.gather(*(self.balance_of(owner, t) for t in token_ids))
        return dict(zip(token_ids, values))
