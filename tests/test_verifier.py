"""
Tests for nftbundle.verifier.
"""
from __future__ import annotations

import pytest
from eth_abi import decode

from conftest import BRIBER, NFT_CONTRACT, TEST_ADDRESS
from nftbundle.exceptions import EncodingError
from nftbundle.orders import PurchaseItem, TokenStandard
from nftbundle.verifier import (
    VERIFY_721_SELECTOR,
    VERIFY_1155_SELECTOR,
    build_verifier_call,
    expected_post_balances,
)


class TestExpectedBalances:
    def test_erc721_expects_one_each(self):
        items = [PurchaseItem(1), PurchaseItem(2)]
        assert expected_post_balances(TokenStandard.ERC721, items) == (1, 1)

    def test_erc1155_adds_existing_holdings(self):
        """Should expect existing balance plus the purchased quantity."""
        items = [PurchaseItem(1, 2), PurchaseItem(2, 1)]
        assert expected_post_balances(TokenStandard.ERC1155, items, {1: 4}) == (6, 1)


class TestBuildVerifierCall:
    def test_erc721_call(self):
        call = build_verifier_call(
            TokenStandard.ERC721,
            verifier=BRIBER,
            buyer=TEST_ADDRESS,
            nft_contract=NFT_CONTRACT,
            items=[PurchaseItem(5), PurchaseItem(9)],
            bribe=10**18,
        )

        assert call.to == BRIBER
        assert call.bribe_receiver == BRIBER
        assert call.value == 10**18
        assert call.kind == "verifier"
        assert call.data[:4] == VERIFY_721_SELECTOR
        nft, owner, ids = decode(["address", "address", "uint256[]"], call.data[4:])
        assert nft.lower() == NFT_CONTRACT.lower()
        assert owner.lower() == TEST_ADDRESS.lower()
        assert list(ids) == [5, 9]

    def test_erc1155_call(self):
        call = build_verifier_call(
            TokenStandard.ERC1155,
            verifier=BRIBER,
            buyer=TEST_ADDRESS,
            nft_contract=NFT_CONTRACT,
            items=[PurchaseItem(1, 2), PurchaseItem(2, 1)],
            bribe=10**17,
            existing_balances={2: 3},
        )

        assert call.data[:4] == VERIFY_1155_SELECTOR
        _, _, ids, balances = decode(
            ["address", "address", "uint256[]", "uint256[]"], call.data[4:]
        )
        assert list(ids) == [1, 2]
        assert list(balances) == [2, 4]
        assert call.expected_balances == (2, 4)

    def test_requires_positive_bribe(self):
        with pytest.raises(EncodingError):
            build_verifier_call(
                TokenStandard.ERC721, BRIBER, TEST_ADDRESS, NFT_CONTRACT, [PurchaseItem(1)], 0
            )

    def test_requires_items(self):
        with pytest.raises(EncodingError):
            build_verifier_call(TokenStandard.ERC721, BRIBER, TEST_ADDRESS, NFT_CONTRACT, [], 1)
