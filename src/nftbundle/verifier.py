"""
Binding for the on-chain consistency verifier ("briber") contract.

The verifier is appended as the last transaction of a bundle. At execution
time it reads the buyer's holdings for every purchased token id, reverts the
whole bundle if any expected balance is missing, and otherwise forwards the
attached value (the bribe) to the block builder.

Contract ABI (fixed, deployed separately):
    verifyOwnershipAndPay721(address _nftContract, address _owner, uint256[] _nftIds) payable
    verifyOwnershipAndPay1155(address _nftContract, address _owner, uint256[] _nftIds,
                              uint256[] _expectedBalances) payable

This module only encodes the call; it never performs the check itself.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence, Tuple

from eth_abi import encode
from web3 import Web3

from .config import GasConfig, get_config
from .exceptions import EncodingError, UnsupportedStandard
from .orders import PurchaseItem, TokenStandard, normalize_address

logger = logging.getLogger(__name__)


VERIFY_721_SELECTOR = Web3.keccak(
    text="verifyOwnershipAndPay721(address,address,uint256[])"
)[:4]
VERIFY_1155_SELECTOR = Web3.keccak(
    text="verifyOwnershipAndPay1155(address,address,uint256[],uint256[])"
)[:4]


@dataclass(frozen=True)
class VerifierCall:
    """A fully encoded call to the verifier contract."""
    to: str  # verifier contract, which receives the bribe
    data: bytes
    value: int  # bribe in wei
    buyer: str
    nft_contract: str
    standard: TokenStandard
    token_ids: Tuple[int, ...]
    expected_balances: Tuple[int, ...]
    gas_limit: int

    @property
    def kind(self) -> str:
        return "verifier"

    @property
    def bribe_receiver(self) -> str:
        return self.to


def expected_post_balances(
    standard: TokenStandard,
    items: Sequence[PurchaseItem],
    existing_balances: Optional[Mapping[int, int]] = None,
) -> Tuple[int, ...]:
    """Balance the buyer must hold for each item once the bundle has run."""
    if standard == TokenStandard.ERC721:
        return tuple(1 for _ in items)
    existing_balances = existing_balances or {}
    return tuple(existing_balances.get(item.token_id, 0) + item.quantity for item in items)


def build_verifier_call(
    standard: TokenStandard,
    verifier: str,
    buyer: str,
    nft_contract: str,
    items: Sequence[PurchaseItem],
    bribe: int,
    existing_balances: Optional[Mapping[int, int]] = None,
    gas_config: Optional[GasConfig] = None,
) -> VerifierCall:
    """
    Encode the verifier call for a purchase.

    Args:
        standard: Token standard of the purchased tokens
        verifier: Deployed verifier contract address (bribe receiver)
        buyer: Address that must own the tokens afterwards
        nft_contract: NFT contract being purchased from
        items: Purchased (token id, quantity) items, in request order
        bribe: Wei forwarded to the block builder on success
        existing_balances: ERC1155 balances the buyer already holds, by token id
    """
    if not items:
        raise EncodingError("Verifier call needs at least one item")
    if bribe <= 0:
        raise EncodingError("Verifier call needs a positive bribe", details={"bribe": bribe})

    gas = gas_config or get_config().gas
    verifier = normalize_address(verifier)
    buyer = normalize_address(buyer)
    nft_contract = normalize_address(nft_contract)
    token_ids = tuple(item.token_id for item in items)
    expected = expected_post_balances(standard, items, existing_balances)

    if standard == TokenStandard.ERC721:
        data = VERIFY_721_SELECTOR + encode(
            ["address", "address", "uint256[]"],
            [nft_contract, buyer, list(token_ids)],
        )
    elif standard == TokenStandard.ERC1155:
        data = VERIFY_1155_SELECTOR + encode(
            ["address", "address", "uint256[]", "uint256[]"],
            [nft_contract, buyer, list(token_ids), list(expected)],
        )
    else:
        raise UnsupportedStandard(standard)

    logger.debug(
        f"Verifier call to {verifier}: {len(token_ids)} ids, bribe={bribe} wei"
    )

    return VerifierCall(
        to=verifier,
        data=data,
        value=bribe,
        buyer=buyer,
        nft_contract=nft_contract,
        standard=standard,
        token_ids=token_ids,
        expected_balances=expected,
        gas_limit=gas.verifier_gas,
    )
