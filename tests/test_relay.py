"""
Tests for nftbundle.relay.

Tests cover:
- Request signing (X-Flashbots-Signature)
- eth_sendBundle responses: accepted, retryable, permanent, transport failure
- eth_callBundle simulation results
"""
from __future__ import annotations

import json

import httpx
import pytest
from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3

from conftest import TEST_ADDRESS, TEST_PRIVATE_KEY
from nftbundle.relay import FlashbotsRelay, is_permanent_error

RELAY_URL = "https://relay.test"
RAW_TXS = ["0x02aa", "0x02bb"]


def make_relay(reply, requests=None):
    """FlashbotsRelay whose transport answers every request with `reply`."""

    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        if isinstance(reply, Exception):
            raise reply
        return httpx.Response(200, json=reply)

    return FlashbotsRelay(
        RELAY_URL,
        auth_key=TEST_PRIVATE_KEY,
        transport=httpx.MockTransport(handler),
    )


class TestSigning:
    """Tests for relay request authentication."""

    def test_signature_recovers_to_auth_address(self):
        relay = FlashbotsRelay(auth_key=TEST_PRIVATE_KEY)
        body = '{"jsonrpc":"2.0","id":1,"method":"eth_sendBundle","params":[]}'

        address, signature = relay.sign_body(body).split(":")

        message = encode_defunct(text=Web3.to_hex(Web3.keccak(text=body)))
        assert address == TEST_ADDRESS
        assert Account.recover_message(message, signature=signature) == TEST_ADDRESS

    def test_random_identity_without_key(self):
        first = FlashbotsRelay()
        second = FlashbotsRelay()
        assert first.auth_address != second.auth_address
        assert first.auth_address != TEST_ADDRESS

    @pytest.mark.asyncio
    async def test_header_signs_exact_body(self):
        requests = []
        relay = make_relay({"jsonrpc": "2.0", "id": 1, "result": {"bundleHash": "0x1"}}, requests)

        await relay.submit_bundle(RAW_TXS, 101)
        await relay.close()

        request = requests[0]
        address, signature = request.headers["X-Flashbots-Signature"].split(":")
        body = request.content.decode()
        message = encode_defunct(text=Web3.to_hex(Web3.keccak(text=body)))
        assert Account.recover_message(message, signature=signature) == address == TEST_ADDRESS


class TestSubmitBundle:
    """Tests for eth_sendBundle."""

    @pytest.mark.asyncio
    async def test_accepted(self):
        requests = []
        relay = make_relay(
            {"jsonrpc": "2.0", "id": 1, "result": {"bundleHash": "0xfeed"}},
            requests,
        )

        response = await relay.submit_bundle(RAW_TXS, 101)

        assert response.accepted is True
        assert response.bundle_hash == "0xfeed"
        assert response.target_block == 101

        payload = json.loads(requests[0].content)
        assert payload["method"] == "eth_sendBundle"
        assert payload["params"] == [{"txs": RAW_TXS, "blockNumber": "0x65"}]
        await relay.close()

    @pytest.mark.asyncio
    async def test_retryable_error(self):
        relay = make_relay(
            {"jsonrpc": "2.0", "id": 1, "error": {"code": -32000, "message": "block already mined"}}
        )

        response = await relay.submit_bundle(RAW_TXS, 101)

        assert response.accepted is False
        assert response.permanent is False
        assert response.error == "block already mined"

    @pytest.mark.asyncio
    async def test_permanent_error(self):
        relay = make_relay(
            {"jsonrpc": "2.0", "id": 1, "error": {"code": -32602, "message": "bad params"}}
        )

        response = await relay.submit_bundle(RAW_TXS, 101)

        assert response.accepted is False
        assert response.permanent is True

    @pytest.mark.asyncio
    async def test_transport_failure_is_not_raised(self):
        """Should turn a network failure into a retryable rejection."""
        relay = make_relay(httpx.ConnectError("connection refused"))

        response = await relay.submit_bundle(RAW_TXS, 101)

        assert response.accepted is False
        assert response.permanent is False
        assert "connection refused" in response.error


class TestSimulateBundle:
    """Tests for eth_callBundle."""

    @pytest.mark.asyncio
    async def test_success(self):
        requests = []
        relay = make_relay(
            {
                "jsonrpc": "2.0",
                "id": 1,
                "result": {
                    "totalGasUsed": 42000,
                    "coinbaseDiff": "1000",
                    "results": [{"gasUsed": 21000}, {"gasUsed": 21000}],
                },
            },
            requests,
        )

        result = await relay.simulate_bundle(RAW_TXS, 101)

        assert result.success
        assert result.total_gas_used == 42000
        assert result.coinbase_diff == 1000
        payload = json.loads(requests[0].content)
        assert payload["method"] == "eth_callBundle"
        assert payload["params"][0]["stateBlockNumber"] == "latest"

    @pytest.mark.asyncio
    async def test_reverting_transaction(self):
        relay = make_relay(
            {
                "jsonrpc": "2.0",
                "id": 1,
                "result": {
                    "results": [
                        {"gasUsed": 21000},
                        {"error": "execution reverted", "revert": "not owner"},
                    ],
                },
            }
        )

        result = await relay.simulate_bundle(RAW_TXS, 101)

        assert not result.success
        assert result.failed_index == 1
        assert result.error == "not owner"

    @pytest.mark.asyncio
    async def test_request_failure(self):
        relay = make_relay(httpx.ReadTimeout("timed out"))

        result = await relay.simulate_bundle(RAW_TXS, 101)

        assert not result.success
        assert "timed out" in result.error


class TestPermanentErrors:
    """Tests for is_permanent_error."""

    @pytest.mark.parametrize("error", [
        {"code": -32600, "message": "bad request"},
        {"code": -32602, "message": "bad params"},
        {"code": -32000, "message": "Invalid transaction signature"},
        {"code": -32000, "message": "unable to decode txs"},
        {"message": "nonce too low"},
        {"code": -32000, "message": "invalid bundle: tx 0 has no signature"},
    ])
    def test_permanent(self, error):
        assert is_permanent_error(error)

    @pytest.mark.parametrize("error", [
        {"code": -32000, "message": "block already mined"},
        {"code": -32000, "message": "invalid block number"},
        {"code": 429, "message": "rate limited"},
        {},
    ])
    def test_retryable(self, error):
        assert not is_permanent_error(error)
