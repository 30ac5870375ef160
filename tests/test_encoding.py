"""
Tests for nftbundle.encoding.

Tests cover:
- Transfer calldata and replacement pattern layout
- Counter-order construction
- atomicMatch_ encoding and determinism
- Quantity and currency validation order
"""
from __future__ import annotations

import pytest
from eth_abi import decode

from conftest import EXCHANGE, SELLER, TEST_ADDRESS, ZERO, build_order
from nftbundle.encoding import (
    ATOMIC_MATCH_SELECTOR,
    ATOMIC_MATCH_TYPES,
    ERC721_TRANSFER_SELECTOR,
    ERC1155_TRANSFER_SELECTOR,
    OPENSEA_FEE_RECIPIENT,
    SettlementEncoder,
    build_replacement_pattern,
    build_transfer_calldata,
    match_sell,
)
from nftbundle.exceptions import (
    CurrencyMismatch,
    InsufficientQuantity,
    InvalidQuantity,
)
from nftbundle.orders import OrderSide, TokenStandard

LISTING_TIME = 1_650_000_000 - 100
RECIPIENT = "0x" + "c3" * 20
WETH = "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"


def decode_match(data: bytes):
    assert data[:4] == ATOMIC_MATCH_SELECTOR
    return decode(ATOMIC_MATCH_TYPES, data[4:])


def decode_1155_transfer(calldata: bytes):
    assert calldata[:4] == ERC1155_TRANSFER_SELECTOR
    return decode(["address", "address", "uint256", "uint256", "bytes"], calldata[4:])


@pytest.fixture
def encoder():
    return SettlementEncoder(buyer=TEST_ADDRESS, listing_time=LISTING_TIME)


class TestTransferCalldata:
    """Tests for buy-side transfer calldata."""

    def test_erc721_layout(self):
        """Should encode transferFrom with a blank from word."""
        calldata = build_transfer_calldata(TokenStandard.ERC721, RECIPIENT, 42)

        assert calldata[:4] == ERC721_TRANSFER_SELECTOR
        assert len(calldata) == 4 + 3 * 32
        from_, to, token_id = decode(["address", "address", "uint256"], calldata[4:])
        assert int(from_, 16) == 0
        assert to.lower() == RECIPIENT.lower()
        assert token_id == 42

    def test_erc1155_carries_quantity(self):
        calldata = build_transfer_calldata(TokenStandard.ERC1155, RECIPIENT, 7, quantity=3)

        _, _, token_id, quantity, data = decode_1155_transfer(calldata)
        assert (token_id, quantity, data) == (7, 3, b"")

    def test_replacement_pattern_masks_from_word(self):
        calldata = build_transfer_calldata(TokenStandard.ERC721, RECIPIENT, 1)
        pattern = build_replacement_pattern(calldata)

        assert len(pattern) == len(calldata)
        assert pattern[:4] == b"\x00" * 4
        assert pattern[4:36] == b"\xff" * 32
        assert set(pattern[36:]) == {0}


class TestMatchSell:
    """Tests for the counter order."""

    def test_mirrors_sell_order(self):
        order = build_order(token_id=3, fee_recipient=OPENSEA_FEE_RECIPIENT)
        buy = match_sell(order, TEST_ADDRESS, RECIPIENT, 1, LISTING_TIME, salt=99)

        assert buy.side == OrderSide.BUY
        assert buy.maker == TEST_ADDRESS
        assert buy.taker == SELLER
        assert buy.exchange == EXCHANGE
        assert buy.target == order.target
        assert buy.base_price == order.current_price
        assert buy.maker_relayer_fee == order.maker_relayer_fee
        assert (buy.extra, buy.expiration_time, buy.listing_time, buy.salt) == (0, 0, LISTING_TIME, 99)
        assert (buy.v, buy.r, buy.s) == (0, b"\x00" * 32, b"\x00" * 32)

    def test_fee_recipient_rule(self):
        """Should use OpenSea's recipient only when the seller left it empty."""
        with_recipient = build_order(fee_recipient=OPENSEA_FEE_RECIPIENT)
        without_recipient = build_order(fee_recipient=ZERO)

        buy = match_sell(with_recipient, TEST_ADDRESS, RECIPIENT, 1, LISTING_TIME, 1)
        assert int(buy.fee_recipient, 16) == 0

        buy = match_sell(without_recipient, TEST_ADDRESS, RECIPIENT, 1, LISTING_TIME, 1)
        assert buy.fee_recipient == OPENSEA_FEE_RECIPIENT


class TestSettlementEncoder:
    """Tests for SettlementEncoder.encode."""

    def test_erc721_settlement(self, encoder):
        order = build_order(token_id=11, price=5 * 10**16)

        call = encoder.encode(order, 1)

        assert call.to == EXCHANGE
        assert call.value == 5 * 10**16
        assert call.quantity == 1
        assert call.kind == "settlement"
        args = decode_match(call.data)
        addrs, uints, kinds = args[0], args[1], args[2]
        assert addrs[1].lower() == TEST_ADDRESS.lower()  # buy maker
        assert addrs[8].lower() == SELLER.lower()  # sell maker
        assert uints[4] == 5 * 10**16  # buy base price
        assert kinds[1] == OrderSide.BUY and kinds[5] == OrderSide.SELL
        assert args[4] == order.calldata
        assert list(args[9]) == [0, order.v]

    def test_deterministic(self, encoder):
        """Should produce byte-identical call data for the same inputs."""
        order = build_order(token_id=4, standard=TokenStandard.ERC1155, quantity=5)

        first = encoder.encode(order, 3)
        second = SettlementEncoder(buyer=TEST_ADDRESS, listing_time=LISTING_TIME).encode(order, 3)

        assert first.data == second.data
        assert first == second

    def test_erc721_quantity_other_than_one(self, encoder):
        """Should reject any ERC721 quantity but 1."""
        order = build_order()
        for quantity in (0, 2):
            with pytest.raises(InvalidQuantity):
                encoder.encode(order, quantity)

    def test_erc1155_partial_fill(self, encoder):
        """Should encode the requested quantity and a proportional price."""
        order = build_order(token_id=8, standard=TokenStandard.ERC1155, quantity=5, price=10**18)

        call = encoder.encode(order, 3)

        buy_calldata = decode_match(call.data)[3]
        _, to, token_id, quantity, _ = decode_1155_transfer(buy_calldata)
        assert quantity == 3
        assert token_id == 8
        assert to.lower() == TEST_ADDRESS.lower()
        assert call.value == 6 * 10**17

    def test_erc1155_over_available(self, encoder):
        order = build_order(standard=TokenStandard.ERC1155, quantity=5)
        with pytest.raises(InsufficientQuantity):
            encoder.encode(order, 6)

    def test_erc1155_zero_quantity(self, encoder):
        order = build_order(standard=TokenStandard.ERC1155, quantity=5)
        with pytest.raises(InvalidQuantity):
            encoder.encode(order, 0)

    def test_currency_checked_first(self):
        """Should reject a currency mismatch before looking at the quantity."""
        encoder = SettlementEncoder(buyer=TEST_ADDRESS, listing_time=LISTING_TIME, funding_token=WETH)
        with pytest.raises(CurrencyMismatch):
            encoder.encode(build_order(), 0)

    def test_recipient_receives_tokens(self):
        encoder = SettlementEncoder(buyer=TEST_ADDRESS, listing_time=LISTING_TIME, recipient=RECIPIENT)
        order = build_order(standard=TokenStandard.ERC1155, quantity=2)

        call = encoder.encode(order, 2)

        _, to, _, _, _ = decode_1155_transfer(decode_match(call.data)[3])
        assert to.lower() == RECIPIENT.lower()

    def test_salt_depends_on_quantity(self, encoder):
        order = build_order(standard=TokenStandard.ERC1155, quantity=5)
        salts = {decode_match(encoder.encode(order, q).data)[1][8] for q in (1, 2)}
        assert len(salts) == 2

    def test_gas_limits_per_standard(self, encoder, test_config):
        erc721 = encoder.encode(build_order(), 1)
        erc1155 = encoder.encode(build_order(standard=TokenStandard.ERC1155, quantity=1), 1)
        assert erc721.gas_limit == test_config.gas.erc721_settlement_gas
        assert erc1155.gas_limit == test_config.gas.erc1155_settlement_gas
