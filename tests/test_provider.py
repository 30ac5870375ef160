"""
Tests for nftbundle.provider.

JSON-RPC calls go through httpx.MockTransport; each test answers with a
canned result per method.
"""
from __future__ import annotations

import json

import httpx
import pytest
from eth_abi import decode, encode

from conftest import TEST_ADDRESS, FakeProvider
from nftbundle.provider import (
    BALANCE_OF_SELECTOR,
    OWNER_OF_SELECTOR,
    JsonRpcProvider,
    NFTReader,
    Receipt,
    RPCError,
    wait_for_receipt,
)

RPC_URL = "http://node.test"
NFT = "0x" + "11" * 20


def make_provider(results, requests=None):
    """Provider whose node answers `results[method]`, or an error dict."""

    def handler(request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        if requests is not None:
            requests.append(payload)
        reply = results[payload["method"]]
        if callable(reply):
            reply = reply(payload["params"])
        body = {"jsonrpc": "2.0", "id": payload["id"]}
        if isinstance(reply, dict) and "error" in reply:
            body["error"] = reply["error"]
        else:
            body["result"] = reply
        return httpx.Response(200, json=body)

    return JsonRpcProvider(RPC_URL, transport=httpx.MockTransport(handler))


class TestJsonRpcProvider:
    """Tests for the JSON-RPC client."""

    @pytest.mark.asyncio
    async def test_pending_nonce(self):
        requests = []
        provider = make_provider({"eth_getTransactionCount": "0x7"}, requests)

        assert await provider.current_nonce(TEST_ADDRESS) == 7
        assert requests[0]["params"] == [TEST_ADDRESS, "pending"]
        await provider.close()

    @pytest.mark.asyncio
    async def test_rpc_error(self):
        provider = make_provider({
            "eth_sendRawTransaction": {"error": {"code": -32000, "message": "nonce too low"}},
        })

        with pytest.raises(RPCError) as exc_info:
            await provider.send_raw_transaction("0x02")

        assert exc_info.value.code == -32000
        assert "nonce too low" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_http_error_propagates(self):
        def handler(request):
            return httpx.Response(502)

        provider = JsonRpcProvider(RPC_URL, transport=httpx.MockTransport(handler))

        with pytest.raises(httpx.HTTPStatusError):
            await provider.get_block_number()

    @pytest.mark.asyncio
    async def test_missing_receipt(self, sample_tx_hash):
        provider = make_provider({"eth_getTransactionReceipt": None})

        assert await provider.get_transaction_receipt(sample_tx_hash) is None

    @pytest.mark.asyncio
    async def test_receipt_parsing(self, sample_tx_hash):
        provider = make_provider({
            "eth_getTransactionReceipt": {
                "transactionHash": sample_tx_hash,
                "status": "0x1",
                "blockNumber": "0x65",
                "gasUsed": "0x5208",
                "effectiveGasPrice": "0x3b9aca00",
                "contractAddress": None,
            },
        })

        receipt = await provider.get_transaction_receipt(sample_tx_hash)

        assert receipt.succeeded
        assert receipt.block_number == 101
        assert receipt.gas_used == 21000
        assert receipt.effective_gas_price == 10**9

    @pytest.mark.asyncio
    async def test_latest_block(self):
        provider = make_provider({
            "eth_getBlockByNumber": {
                "number": "0x64",
                "timestamp": "0x62500000",
                "baseFeePerGas": "0x2540be400",
            },
        })

        block = await provider.get_latest_block()

        assert block.number == 100
        assert block.timestamp == 0x62500000
        assert block.base_fee_per_gas == 10**10

    @pytest.mark.asyncio
    async def test_call_returns_bytes(self):
        requests = []
        provider = make_provider({"eth_call": "0x" + "00" * 31 + "05"}, requests)

        result = await provider.call(NFT, b"\x12\x34")

        assert result == b"\x00" * 31 + b"\x05"
        assert requests[0]["params"] == [{"to": NFT, "data": "0x1234"}, "latest"]


class TestWaitForReceipt:

    @pytest.mark.asyncio
    async def test_returns_receipt(self, sample_tx_hash):
        provider = FakeProvider()
        provider.receipts[sample_tx_hash] = Receipt(tx_hash=sample_tx_hash, status=1, block_number=5)

        receipt = await wait_for_receipt(provider, sample_tx_hash, timeout=1.0, poll_interval=0)

        assert receipt.block_number == 5

    @pytest.mark.asyncio
    async def test_times_out(self, sample_tx_hash):
        receipt = await wait_for_receipt(FakeProvider(), sample_tx_hash, timeout=0.02, poll_interval=0.005)

        assert receipt is None


class TestNFTReader:
    """Tests for ownership reads."""

    @pytest.mark.asyncio
    async def test_owner_of(self):
        owner = "0x" + "a1" * 20

        def answer(params):
            data = bytes.fromhex(params[0]["data"][2:])
            assert data[:4] == OWNER_OF_SELECTOR
            assert decode(["uint256"], data[4:]) == (468,)
            return "0x" + encode(["address"], [owner]).hex()

        reader = NFTReader(make_provider({"eth_call": answer}), NFT)

        assert (await reader.owner_of(468)).lower() == owner

    @pytest.mark.asyncio
    async def test_balances(self):
        held = {1: 4, 2: 0}

        def answer(params):
            data = bytes.fromhex(params[0]["data"][2:])
            assert data[:4] == BALANCE_OF_SELECTOR
            _, token_id = decode(["address", "uint256"], data[4:])
            return "0x" + encode(["uint256"], [held[token_id]]).hex()

        reader = NFTReader(make_provider({"eth_call": answer}), NFT)

        assert await reader.balances(TEST_ADDRESS, [1, 2]) == {1: 4, 2: 0}
