"""
Bundle assembly and signing.

A Bundle is the ordered list of signed transactions for one purchase run:
one settlement per requested item, in request order, optionally followed by
the verifier call. Nonces run B, B+1, ... from the signer's current nonce so
inclusion order is fixed. Signing is purely local.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Iterator, List, Optional, Sequence, Tuple, Union

from eth_account import Account

from .config import GasConfig, get_config
from .encoding import SettlementCall
from .exceptions import EmptyBundle, SigningError
from .logging_utils import ChainLogger, get_chain_logger
from .verifier import VerifierCall

logger = logging.getLogger(__name__)

UnsignedCall = Union[SettlementCall, VerifierCall]


@dataclass(frozen=True)
class GasParams:
    """EIP-1559 fee parameters shared by every transaction in a bundle."""
    max_fee_per_gas: int
    max_priority_fee_per_gas: int = 0

    def __post_init__(self) -> None:
        if self.max_priority_fee_per_gas > self.max_fee_per_gas:
            raise ValueError("Priority fee cannot exceed the max fee per gas")


def project_max_base_fee(base_fee: int, config: Optional[GasConfig] = None) -> int:
    """
    Worst-case base fee a few blocks ahead.

    The base fee can rise by 12.5% per block, so a bundle that may land up to
    N blocks later has to tolerate base_fee * 1.125^N.
    """
    config = config or get_config().gas
    projected = base_fee
    for _ in range(config.base_fee_projection_blocks):
        projected = projected * config.base_fee_growth_numerator // config.base_fee_growth_denominator
    return projected


def split_bribe_as_priority_fee(
    gas: GasParams,
    bribe: int,
    calls: Sequence[UnsignedCall],
) -> GasParams:
    """
    Pay a bribe through priority fees instead of a verifier call.

    The bribe is spread over the gas limits of all calls, so the total tip
    never exceeds the bribe.
    """
    total_gas = sum(call.gas_limit for call in calls)
    if total_gas <= 0:
        raise EmptyBundle()
    priority_fee = bribe // total_gas
    logger.info(
        f"Splitting bribe of {bribe} wei across {len(calls)} txs: "
        f"{priority_fee} wei per gas"
    )
    return replace(
        gas,
        max_fee_per_gas=gas.max_fee_per_gas + priority_fee,
        max_priority_fee_per_gas=gas.max_priority_fee_per_gas + priority_fee,
    )


@dataclass(frozen=True)
class SignedTransaction:
    """One signed bundle transaction."""
    index: int
    kind: str
    nonce: int
    to: str
    value: int
    gas_limit: int
    max_fee_per_gas: int
    max_priority_fee_per_gas: int
    raw_transaction: bytes
    tx_hash: str
    token_id: Optional[int] = None

    @property
    def raw_hex(self) -> str:
        return "0x" + self.raw_transaction.hex()


@dataclass(frozen=True)
class Bundle:
    """Ordered, immutable sequence of signed transactions from one signer."""
    transactions: Tuple[SignedTransaction, ...]
    signer: str
    chain_id: int

    def __post_init__(self) -> None:
        if not self.transactions:
            raise EmptyBundle()
        base = self.transactions[0].nonce
        for offset, tx in enumerate(self.transactions):
            if tx.nonce != base + offset or tx.index != offset:
                raise ValueError(
                    f"Bundle nonces must increase by one: index {offset} has nonce {tx.nonce}"
                )

    def __len__(self) -> int:
        return len(self.transactions)

    def __iter__(self) -> Iterator[SignedTransaction]:
        return iter(self.transactions)

    def __getitem__(self, index: int) -> SignedTransaction:
        return self.transactions[index]

    @property
    def base_nonce(self) -> int:
        return self.transactions[0].nonce

    @property
    def next_nonce(self) -> int:
        return self.transactions[-1].nonce + 1

    @property
    def raw_transactions(self) -> List[str]:
        return [tx.raw_hex for tx in self.transactions]

    @property
    def tx_hashes(self) -> List[str]:
        return [tx.tx_hash for tx in self.transactions]

    @property
    def total_value(self) -> int:
        return sum(tx.value for tx in self.transactions)


class BundleBuilder:
    """Signs an ordered call list into a Bundle with consecutive nonces."""

    def __init__(
        self,
        private_key: str,
        chain_id: int,
        chain_logger: Optional[ChainLogger] = None,
    ):
        try:
            self._account = Account.from_key(private_key)
        except Exception as e:
            raise SigningError(f"Invalid signing key: {type(e).__name__}") from e
        self._chain_id = chain_id
        self._chain_logger = chain_logger or get_chain_logger()

    @property
    def address(self) -> str:
        return self._account.address

    def build(
        self,
        calls: Sequence[UnsignedCall],
        base_nonce: int,
        gas: GasParams,
    ) -> Bundle:
        """
        Sign every call, nonce = base_nonce + index.

        Raises:
            EmptyBundle: No calls supplied
            SigningError: Signing a transaction failed
        """
        if not calls:
            raise EmptyBundle()

        signed: List[SignedTransaction] = []
        for index, call in enumerate(calls):
            nonce = base_nonce + index
            tx = {
                "type": 2,
                "chainId": self._chain_id,
                "nonce": nonce,
                "to": call.to,
                "value": call.value,
                "data": call.data,
                "gas": call.gas_limit,
                "maxFeePerGas": gas.max_fee_per_gas,
                "maxPriorityFeePerGas": gas.max_priority_fee_per_gas,
            }
            try:
                result = self._account.sign_transaction(tx)
            except Exception as e:
                raise SigningError(
                    f"Failed to sign transaction {index}: {e}",
                    details={"index": index, "nonce": nonce},
                ) from e

            signed_tx = SignedTransaction(
                index=index,
                kind=call.kind,
                nonce=nonce,
                to=call.to,
                value=call.value,
                gas_limit=call.gas_limit,
                max_fee_per_gas=gas.max_fee_per_gas,
                max_priority_fee_per_gas=gas.max_priority_fee_per_gas,
                raw_transaction=bytes(result.raw_transaction),
                tx_hash="0x" + bytes(result.hash).hex(),
                token_id=getattr(call, "token_id", None),
            )
            self._chain_logger.log_transaction_signed(
                tx_hash=signed_tx.tx_hash,
                index=index,
                kind=signed_tx.kind,
                from_address=self.address,
                to_address=signed_tx.to,
                value_wei=signed_tx.value,
                nonce=nonce,
                gas_limit=signed_tx.gas_limit,
                max_fee_per_gas=signed_tx.max_fee_per_gas,
                max_priority_fee_per_gas=signed_tx.max_priority_fee_per_gas,
            )
            signed.append(signed_tx)

        bundle = Bundle(
            transactions=tuple(signed),
            signer=self.address,
            chain_id=self._chain_id,
        )
        logger.info(
            f"Built bundle of {len(bundle)} txs, nonces {bundle.base_nonce}.."
            f"{bundle.next_nonce - 1}, total value {bundle.total_value} wei"
        )
        return bundle
