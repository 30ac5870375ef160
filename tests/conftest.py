"""
Pytest configuration for nftbundle tests.
"""
from __future__ import annotations

import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pytest
from web3 import Web3

# Add package source to path
package_src = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(package_src))

from nftbundle.config import (  # noqa: E402
    NFTBundleConfig,
    PollingConfig,
    RelayConfig,
    set_config,
)
from nftbundle.encoding import build_replacement_pattern, build_transfer_calldata  # noqa: E402
from nftbundle.orders import Order, TokenStandard, normalize_address  # noqa: E402
from nftbundle.provider import BlockHeader, Receipt, RPCError  # noqa: E402
from nftbundle.relay import RelayResponse  # noqa: E402

# Well-known development key (anvil/hardhat account #0)
TEST_PRIVATE_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
TEST_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"

EXCHANGE = normalize_address("0x7be8076f4ea4a4ad08075c2508e481d6c946d12b")
NFT_CONTRACT = normalize_address("0x" + "11" * 20)
SELLER = normalize_address("0x" + "a1" * 20)
BRIBER = normalize_address("0x" + "b2" * 20)
ZERO = "0x0000000000000000000000000000000000000000"


@pytest.fixture(autouse=True)
def test_config():
    """Fast polling, no simulation; reset after each test."""
    config = NFTBundleConfig(
        relay=RelayConfig(max_blocks=3, timeout_seconds=5.0, simulate_first=False),
        polling=PollingConfig(poll_interval_seconds=0, receipt_timeout_seconds=1.0),
    )
    set_config(config)
    yield config
    set_config(None)


def build_order(
    token_id: int = 1,
    standard: TokenStandard = TokenStandard.ERC721,
    quantity: int = 1,
    price: int = 10**17,
    contract: str = NFT_CONTRACT,
    **overrides,
) -> Order:
    """A valid native-currency sell order."""
    calldata = build_transfer_calldata(standard, ZERO, token_id, quantity)
    fields = dict(
        exchange=EXCHANGE,
        maker=SELLER,
        taker=ZERO,
        fee_recipient=normalize_address("0x5b3256965e7c3cf26e11fcaf296dfc8807c01073"),
        target=contract,
        static_target=ZERO,
        payment_token=ZERO,
        maker_relayer_fee=250,
        taker_relayer_fee=0,
        maker_protocol_fee=0,
        taker_protocol_fee=0,
        base_price=price,
        current_price=price,
        extra=0,
        listing_time=1_640_000_000,
        expiration_time=0,
        salt=12345,
        fee_method=1,
        side=1,
        sale_kind=0,
        how_to_call=1,
        calldata=calldata,
        replacement_pattern=build_replacement_pattern(calldata),
        static_extradata=b"",
        v=27,
        r=b"\x01" * 32,
        s=b"\x02" * 32,
        asset_contract=normalize_address(contract),
        token_id=token_id,
        standard=standard,
        quantity=quantity,
        order_hash=Web3.keccak(text=f"order-{token_id}"),
    )
    fields.update(overrides)
    return Order(**fields)


@pytest.fixture
def make_order():
    return build_order


class FakeOrderbook:
    """Orderbook test double keyed by token id."""

    def __init__(self, orders: Dict[int, Order]):
        self.orders = orders
        self.calls: List[int] = []

    async def resolve(self, contract, token_id, standard):
        self.calls.append(token_id)
        return self.orders.get(token_id)


class FakeProvider:
    """
    In-memory chain.

    Broadcast transactions get a receipt right away (status 0 for hashes in
    revert_hashes). When advance_blocks is set every get_block_number call
    moves the head forward by one. Receipt lookups raise RPCError for the
    1-based poll numbers in failing_polls and for hashes in failing_receipts.
    """

    def __init__(
        self,
        nonce: int = 7,
        chain_id: int = 1,
        block_number: int = 100,
        base_fee: int = 10**10,
        timestamp: int = 1_650_000_000,
        advance_blocks: bool = True,
    ):
        self.nonce = nonce
        self._chain_id = chain_id
        self.block_number = block_number
        self.base_fee = base_fee
        self.timestamp = timestamp
        self.advance_blocks = advance_blocks
        self.sent: List[str] = []
        self.receipts: Dict[str, Receipt] = {}
        self.revert_hashes: set = set()
        self.reject_hashes: set = set()
        self.events: List[tuple] = []
        self.receipt_polls = 0
        self.failing_polls: set = set()
        self.failing_receipts: set = set()

    async def chain_id(self) -> int:
        return self._chain_id

    async def current_nonce(self, address: str) -> int:
        self.events.append(("nonce", address))
        return self.nonce

    async def send_raw_transaction(self, raw_tx: str) -> str:
        tx_hash = Web3.to_hex(Web3.keccak(hexstr=raw_tx))
        self.events.append(("send", tx_hash))
        if tx_hash in self.reject_hashes:
            raise RPCError("nonce too low", code=-32000)
        self.sent.append(raw_tx)
        self.block_number += 1
        self.receipts[tx_hash] = Receipt(
            tx_hash=tx_hash,
            status=0 if tx_hash in self.revert_hashes else 1,
            block_number=self.block_number,
        )
        return tx_hash

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Receipt]:
        self.events.append(("receipt", tx_hash))
        self.receipt_polls += 1
        if self.receipt_polls in self.failing_polls or tx_hash in self.failing_receipts:
            raise RPCError("upstream timeout", code=-32000)
        return self.receipts.get(tx_hash)

    async def get_block_number(self) -> int:
        current = self.block_number
        if self.advance_blocks:
            self.block_number += 1
        return current

    async def get_latest_block(self) -> BlockHeader:
        return BlockHeader(
            number=self.block_number,
            timestamp=self.timestamp,
            base_fee_per_gas=self.base_fee,
        )

    def include(self, tx_hashes: Sequence[str], block_number: int) -> None:
        for tx_hash in tx_hashes:
            self.receipts[tx_hash] = Receipt(tx_hash=tx_hash, status=1, block_number=block_number)


class FakeRelay:
    """
    Relay test double.

    Records every submission. The bundle lands when submitted for
    `include_at`; `responses` overrides the response for given target blocks.
    """

    def __init__(
        self,
        provider: FakeProvider,
        include_at: Optional[int] = None,
        responses: Optional[Dict[int, RelayResponse]] = None,
    ):
        self.provider = provider
        self.include_at = include_at
        self.responses = responses or {}
        self.submissions: List[tuple] = []

    async def submit_bundle(self, raw_txs, target_block):
        self.submissions.append((list(raw_txs), target_block))
        if target_block in self.responses:
            return self.responses[target_block]
        if target_block == self.include_at:
            hashes = [Web3.to_hex(Web3.keccak(hexstr=raw)) for raw in raw_txs]
            self.provider.include(hashes, target_block)
        return RelayResponse(accepted=True, target_block=target_block, bundle_hash="0xbundle")

    @property
    def target_blocks(self) -> List[int]:
        return [block for _, block in self.submissions]


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def sample_tx_hash():
    """Valid transaction hash for testing."""
    return "0x" + "a" * 64
